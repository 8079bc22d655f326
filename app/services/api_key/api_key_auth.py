"""API Key authentication for admin endpoints"""

import hmac

from fastapi import HTTPException, Request, status
from fastapi.security import APIKeyHeader

from app.config import settings
from app.utils import logger

# API Key header configuration
API_KEY_HEADER_NAME = "X-Admin-Key"
api_key_header = APIKeyHeader(name=API_KEY_HEADER_NAME, auto_error=False)


def _get_admin_api_key() -> str:
    """Get the admin API key from settings."""
    api_key = settings.admin_api_key
    if not api_key:
        logger.error("ADMIN_API_KEY is not set; admin endpoints are disabled")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server configuration error",
        )
    return api_key


def verify_api_key(api_key: str) -> bool:
    """
    Verify that the provided API key matches the expected value.

    Args:
        api_key: The API key to verify

    Returns:
        True if the API key is valid, False otherwise
    """
    expected_key = _get_admin_api_key()
    return hmac.compare_digest(api_key.encode(), expected_key.encode())


async def get_api_key(request: Request) -> str:
    """
    FastAPI dependency to extract and validate the admin API key.

    Usage:
        @router.get("/admin/endpoint")
        async def admin_route(api_key: str = Depends(get_api_key)):
            # Route is protected by the admin key
            pass

    Raises:
        HTTPException: 401 if API key is missing or invalid
    """
    api_key = request.headers.get(API_KEY_HEADER_NAME)

    if not api_key:
        logger.warning(f"Missing admin key in request to {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not verify_api_key(api_key):
        logger.warning(f"Invalid admin key in request to {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return api_key
