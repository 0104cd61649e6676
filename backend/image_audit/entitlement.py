"""Pass/fail entitlement decisions supplied by the surrounding application.

Authentication, plans and usage quotas live outside this service. Routes
only ask the installed gate whether a user may use the image tools.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Query

logger = logging.getLogger("image_audit.entitlement")


@dataclass(frozen=True)
class EntitlementDecision:
    allowed: bool
    reason: str = ""
    code: Optional[str] = None  # e.g. "PLAN_RESTRICTION", "USAGE_LIMIT"


class EntitlementGate(ABC):
    @abstractmethod
    def check(self, user_id: str) -> EntitlementDecision:
        raise NotImplementedError


class AllowAllGate(EntitlementGate):
    """Default gate: any identified user is admitted."""

    def check(self, user_id: str) -> EntitlementDecision:
        return EntitlementDecision(allowed=True)


_gate: EntitlementGate = AllowAllGate()


def set_entitlement_gate(gate: EntitlementGate) -> None:
    global _gate
    _gate = gate


def get_entitlement_gate() -> EntitlementGate:
    return _gate


def require_entitlement(user_id: Optional[str] = Query(None, alias="userId")) -> str:
    """FastAPI dependency. 401 without a user id, 403 when the gate denies access."""
    user_id = (user_id or "").strip()
    if not user_id:
        raise HTTPException(401, "User ID is required")
    try:
        decision = get_entitlement_gate().check(user_id)
    except Exception as e:
        logger.exception("Entitlement check failed for %s: %s", user_id, e)
        raise HTTPException(500, "Internal server error checking subscription")
    if not decision.allowed:
        logger.info("Entitlement denied for %s: %s", user_id, decision.code or decision.reason)
        raise HTTPException(403, {"error": decision.reason or "Feature not available", "code": decision.code})
    return user_id
