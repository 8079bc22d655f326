"""Environment detection utilities."""

from app.config import settings


def get_environment() -> str:
    """Get the current environment name.

    Returns:
        Environment name: 'local', 'test', 'staging', or 'production'
    """
    return settings.env


def is_debug() -> bool:
    """Check if running in debug/local mode.

    Returns:
        True if ENV is 'local' or 'test'
    """
    return get_environment() in ("local", "test")
