"""Sentry error tracking utilities."""

import os

from app.utils.environment import is_debug, get_environment

# Track if Sentry has been initialized
_sentry_initialized = False


def configure_sentry(dsn_env_var: str = "SENTRY_DSN") -> bool:
    """Initialize Sentry for error tracking.

    Only initializes outside debug/test environments and when the DSN
    environment variable is set.

    Returns:
        True if Sentry was initialized, False otherwise
    """
    global _sentry_initialized

    if _sentry_initialized:
        return True

    if is_debug():
        return False

    dsn = os.getenv(dsn_env_var)
    if not dsn:
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=dsn,
        environment=get_environment(),
        traces_sample_rate=0.2,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        send_default_pii=False,
    )

    _sentry_initialized = True
    return True


def is_sentry_initialized() -> bool:
    return _sentry_initialized


def capture_exception(exception: Exception) -> None:
    """Send an exception to Sentry.

    Used where a store failure is converted into a policy decision instead of
    being raised, so the failure is still visible outside the logs.
    """
    if not _sentry_initialized:
        return

    import sentry_sdk

    sentry_sdk.capture_exception(exception)
