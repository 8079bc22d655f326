"""Blacklist service for ip/user/email bans with optional expiry."""

import logging
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.db import AsyncSessionLocal, get_db_session, upsert
from app.models.blacklist import ACTIVE_ENTRY_PREDICATE, BlacklistEntry
from app.schemas.limits import BlacklistCheckResult
from app.services.failure_policy import FailureMode, defense_failure_mode
from app.utils.clock import Clock, utcnow
from app.utils.constants import BLACKLIST_TYPES
from app.utils.exceptions import StoreError, ValidationError
from app.utils.sentry_utils import capture_exception

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_REASON = "Access has been blocked"


class BlacklistService:
    """Ban list keyed by (type, value); entries are soft-deactivated, never deleted."""

    def __init__(
        self,
        session_factory: async_sessionmaker | None = None,
        clock: Clock = utcnow,
        failure_mode: FailureMode | None = None,
    ):
        self._session_factory = session_factory or AsyncSessionLocal
        self._clock = clock
        self._failure_mode = failure_mode

    @property
    def failure_mode(self) -> FailureMode:
        return self._failure_mode or defense_failure_mode()

    @staticmethod
    def _validate_type(entry_type: str) -> None:
        if entry_type not in BLACKLIST_TYPES:
            raise ValidationError(
                f"Invalid blacklist type '{entry_type}'",
                {"allowed_types": list(BLACKLIST_TYPES)},
            )

    async def check_blacklist(self, entry_type: str, value: str) -> BlacklistCheckResult:
        """Return whether an active, unexpired entry exists for (type, value)."""
        self._validate_type(entry_type)
        now = self._clock()

        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(BlacklistEntry)
                    .where(
                        BlacklistEntry.type == entry_type,
                        BlacklistEntry.value == value,
                        BlacklistEntry.is_active.is_(True),
                        or_(
                            BlacklistEntry.expires_at.is_(None),
                            BlacklistEntry.expires_at > now,
                        ),
                    )
                    .limit(1)
                )
                entry = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(
                f"Blacklist check failed for {entry_type}={value}: {e}",
                exc_info=True,
            )
            capture_exception(e)
            if self.failure_mode == FailureMode.CLOSED:
                return BlacklistCheckResult(blocked=True, reason="Blacklist check unavailable")
            return BlacklistCheckResult(blocked=False)

        if entry is None:
            return BlacklistCheckResult(blocked=False)

        return BlacklistCheckResult(
            blocked=True,
            reason=entry.reason or DEFAULT_BLOCK_REASON,
            expires_at=entry.expires_at,
        )

    async def add_to_blacklist(
        self,
        entry_type: str,
        value: str,
        reason: str,
        expires_at: datetime | None = None,
        created_by: str | None = None,
    ) -> None:
        """Ban (type, value); repeating the call refreshes reason and expiry."""
        self._validate_type(entry_type)
        now = self._clock()

        try:
            async with get_db_session(self._session_factory) as db:
                await upsert(
                    db,
                    BlacklistEntry,
                    conflict_columns=["type", "value"],
                    index_where=ACTIVE_ENTRY_PREDICATE,
                    values={
                        "type": entry_type,
                        "value": value,
                        "reason": reason,
                        "expires_at": expires_at,
                        "is_active": True,
                        "created_by": created_by,
                        "created_at": now,
                        "updated_at": now,
                    },
                    update_columns=["reason", "expires_at", "created_by", "updated_at"],
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to add {entry_type}={value} to blacklist: {e}", exc_info=True)
            raise StoreError("Failed to add blacklist entry") from e

        logger.warning(
            f"Added to blacklist: {entry_type}={value}, reason='{reason}', "
            f"expires_at={expires_at.isoformat() if expires_at else 'never'}"
        )

    async def remove_from_blacklist(self, entry_type: str, value: str) -> bool:
        """Soft-deactivate the active entry. Returns False if none was active."""
        self._validate_type(entry_type)
        now = self._clock()

        try:
            async with get_db_session(self._session_factory) as db:
                result = await db.execute(
                    update(BlacklistEntry)
                    .where(
                        BlacklistEntry.type == entry_type,
                        BlacklistEntry.value == value,
                        BlacklistEntry.is_active.is_(True),
                    )
                    .values(is_active=False, updated_at=now)
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to remove {entry_type}={value} from blacklist: {e}", exc_info=True)
            raise StoreError("Failed to remove blacklist entry") from e

        removed = result.rowcount > 0
        if removed:
            logger.info(f"Removed from blacklist: {entry_type}={value}")
        return removed

    async def list_blacklist(
        self,
        entry_type: str | None = None,
        active_only: bool = True,
        limit: int = 100,
        offset: int = 0,
    ) -> list[BlacklistEntry]:
        """List entries, newest first (admin view)."""
        if entry_type is not None:
            self._validate_type(entry_type)

        query = select(BlacklistEntry)
        if entry_type is not None:
            query = query.where(BlacklistEntry.type == entry_type)
        if active_only:
            query = query.where(BlacklistEntry.is_active.is_(True))
        query = query.order_by(BlacklistEntry.created_at.desc(), BlacklistEntry.id.desc())

        try:
            async with self._session_factory() as db:
                result = await db.execute(query.limit(limit).offset(offset))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Failed to list blacklist entries: {e}", exc_info=True)
            raise StoreError("Failed to list blacklist entries") from e


# Global instance
blacklist_service = BlacklistService()
