from .models import AuditReport, Flag, ImageRecord
from .metadata import extract_metadata
from .service import ImageAuditor

__all__ = ["AuditReport", "Flag", "ImageRecord", "ImageAuditor", "extract_metadata"]
