"""Engine error taxonomy.

Every error carries a machine-readable ``code`` and optional ``details``
(``reset_time``, ``suggested_plan`` ...) that the API layer copies into the
standard error envelope.
"""

from datetime import datetime
from typing import Any


class EngineError(Exception):
    """Base class for all quota/subscription/abuse-prevention errors."""

    code = "ENGINE_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(EngineError):
    code = "VALIDATION_ERROR"
    status_code = 422


class NotFoundError(EngineError):
    code = "NOT_FOUND"
    status_code = 404


class PlanConfigurationError(NotFoundError):
    """A subscription references a plan missing from quota_plans."""

    code = "PLAN_CONFIGURATION_ERROR"
    status_code = 500


class QuotaExceededError(EngineError):
    code = "QUOTA_EXCEEDED"
    status_code = 402

    def __init__(
        self,
        message: str,
        suggested_plan: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = dict(details or {})
        if suggested_plan:
            details["suggested_plan"] = suggested_plan
            details["upgrade_required"] = True
        super().__init__(message, details)
        self.suggested_plan = suggested_plan


class RateLimitExceededError(EngineError):
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(self, message: str, reset_time: datetime | None = None):
        details = {"reset_time": reset_time.isoformat()} if reset_time else {}
        super().__init__(message, details)
        self.reset_time = reset_time


class CooldownActiveError(RateLimitExceededError):
    code = "COOLDOWN_ACTIVE"


class BlacklistedError(EngineError):
    code = "BLACKLISTED"
    status_code = 403


class InvalidTransitionError(EngineError):
    """Subscription state change not allowed from the current state."""

    code = "INVALID_TRANSITION"
    status_code = 409


class StoreError(EngineError):
    """Underlying persistence failure."""

    code = "STORE_ERROR"
    status_code = 503
