"""API Key authentication service module"""

from app.services.api_key.api_key_auth import (
    verify_api_key,
    get_api_key,
)

__all__ = [
    "verify_api_key",
    "get_api_key",
]
