"""Named failure policies for check-style operations.

A check whose own evaluation fails (store unreachable, query error) must still
return a decision. Quota checks deny by default, defensive checks (rate limit,
cooldown, blacklist, anomaly scan) allow by default; both are configurable via
``QUOTA_FAILURE_MODE`` and ``DEFENSE_FAILURE_MODE``.
"""

from enum import Enum

from app.config import settings


class FailureMode(str, Enum):
    OPEN = "open"  # allow on internal error
    CLOSED = "closed"  # deny on internal error


def quota_failure_mode() -> FailureMode:
    return FailureMode(settings.quota_failure_mode.lower())


def defense_failure_mode() -> FailureMode:
    return FailureMode(settings.defense_failure_mode.lower())
