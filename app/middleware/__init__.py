"""Middleware package."""

from app.middleware.abuse_guard import AbuseGuardMiddleware, get_client_ip

__all__ = ["AbuseGuardMiddleware", "get_client_ip"]
