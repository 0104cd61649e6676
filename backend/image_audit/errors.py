"""Exceptions raised inside the audit and conversion engine."""


class ImageAuditError(Exception):
    """Base class for engine errors."""


class FetchError(ImageAuditError):
    """A reference could not be retrieved (missing file, bad status, network error)."""

    def __init__(self, reference: str, reason: str):
        super().__init__(f"Could not fetch {reference}: {reason}")
        self.reference = reference
        self.reason = reason


class JobNotFound(ImageAuditError):
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidTransition(ImageAuditError):
    """Job status change that would leave a terminal state or go backwards."""
