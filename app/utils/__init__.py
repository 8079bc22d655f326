"""Utility modules for the quota engine application."""

from app.utils.logger import logger, setup_logger
from app.utils.environment import is_debug, get_environment
from app.utils.sentry_utils import configure_sentry, capture_exception
from app.utils.response_utils import success, error_response, engine_error_response
from app.utils.clock import Clock, utcnow, month_period, add_months
from app.utils.constants import API_VERSION, API_PREFIX

__all__ = [
    # Logger
    "logger",
    "setup_logger",
    # Environment
    "is_debug",
    "get_environment",
    # Sentry
    "configure_sentry",
    "capture_exception",
    # Response
    "success",
    "error_response",
    "engine_error_response",
    # Clock
    "Clock",
    "utcnow",
    "month_period",
    "add_months",
    # Constants
    "API_VERSION",
    "API_PREFIX",
]
