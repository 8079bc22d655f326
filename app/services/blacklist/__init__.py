"""Blacklist service for ip/user/email bans."""

from app.services.blacklist.blacklist_service import blacklist_service, BlacklistService

__all__ = ["blacklist_service", "BlacklistService"]
