"""Rate limiting service (per-user and per-IP)."""

from app.services.rate_limit.rate_limit_service import rate_limit_service, RateLimitService

__all__ = ["rate_limit_service", "RateLimitService"]
