"""Processing cooldown service."""

from app.services.cooldown.cooldown_service import (
    cooldown_service,
    CooldownService,
    hash_resource,
    normalize_resource_url,
)

__all__ = ["cooldown_service", "CooldownService", "hash_resource", "normalize_resource_url"]
