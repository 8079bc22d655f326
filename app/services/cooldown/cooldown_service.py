"""Per-(user, resource) minimum interval between processing runs."""

import hashlib
import logging
import re
from datetime import timedelta
from urllib.parse import parse_qs, urlsplit, urlunsplit

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.config import settings
from app.db import AsyncSessionLocal, atomic_increment, get_db_session
from app.models.cooldown_record import CooldownRecord
from app.schemas.limits import RateLimitResult
from app.services.failure_policy import FailureMode, defense_failure_mode
from app.utils.clock import Clock, utcnow
from app.utils.sentry_utils import capture_exception

logger = logging.getLogger(__name__)

YOUTUBE_HOSTS = {"youtube.com", "youtu.be", "youtube-nocookie.com", "music.youtube.com"}
YOUTUBE_PATH_ID = re.compile(r"^/(?:shorts|embed|live|v)/([A-Za-z0-9_-]{6,})")


def normalize_resource_url(resource_id: str) -> str:
    """Canonicalize a resource identifier so equivalent inputs compare equal.

    YouTube links in any of their forms collapse to
    ``https://youtube.com/watch?v=<id>``; other URLs keep their path and
    query with the host lower-cased, ``www.``/``m.`` and the trailing slash
    removed. Identifiers that are not URLs are only stripped.
    """
    raw = resource_id.strip()
    if "://" not in raw:
        if raw.startswith(("www.", "youtube.com/", "youtu.be/", "m.youtube.com/")):
            raw = f"https://{raw}"
        else:
            return raw

    parts = urlsplit(raw)
    host = (parts.hostname or "").lower()
    for prefix in ("www.", "m."):
        if host.startswith(prefix):
            host = host[len(prefix):]

    if host in YOUTUBE_HOSTS:
        video_id = None
        if host == "youtu.be":
            video_id = parts.path.lstrip("/").split("/")[0] or None
        else:
            match = YOUTUBE_PATH_ID.match(parts.path)
            if match:
                video_id = match.group(1)
            else:
                video_id = parse_qs(parts.query).get("v", [None])[0]
        if video_id:
            return f"https://youtube.com/watch?v={video_id}"

    path = parts.path.rstrip("/")
    return urlunsplit(("https", host, path, parts.query, ""))


def hash_resource(resource_id: str) -> str:
    """SHA256 of the normalized resource identifier."""
    return hashlib.sha256(normalize_resource_url(resource_id).encode()).hexdigest()


class CooldownService:
    """Blocks reprocessing the same resource by the same user within a cooldown."""

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

    async def check_video_processing_cooldown(
        self,
        user_id: str,
        resource_id: str,
        cooldown_minutes: int | None = None,
    ) -> RateLimitResult:
        if cooldown_minutes is None:
            cooldown_minutes = settings.video_cooldown_minutes

        now = self._clock()
        cooldown = timedelta(minutes=cooldown_minutes)
        resource_hash = hash_resource(resource_id)

        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(CooldownRecord.last_processed_at, CooldownRecord.process_count).where(
                        CooldownRecord.user_id == user_id,
                        CooldownRecord.resource_hash == resource_hash,
                    )
                )
                row = result.one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Cooldown check failed for user {user_id}: {e}", exc_info=True)
            capture_exception(e)
            allowed = self.failure_mode == FailureMode.OPEN
            return RateLimitResult(
                allowed=allowed,
                remaining=0,
                reset_time=now,
                reason=None if allowed else "Cooldown check unavailable",
            )

        if row is None or row.last_processed_at <= now - cooldown:
            return RateLimitResult(allowed=True, remaining=1, reset_time=now)

        return RateLimitResult(
            allowed=False,
            remaining=0,
            reset_time=row.last_processed_at + cooldown,
            reason=(
                f"Please wait {cooldown_minutes} minutes before processing the same video again "
                f"(processed {row.process_count} times)"
            ),
        )

    async def record_video_processing(self, user_id: str, resource_id: str) -> None:
        """Mark the resource as processed now; errors are logged, not raised."""
        now = self._clock()
        normalized = normalize_resource_url(resource_id)

        try:
            async with get_db_session(self._session_factory) as db:
                await atomic_increment(
                    db,
                    CooldownRecord,
                    conflict_columns=["user_id", "resource_hash"],
                    values={
                        "user_id": user_id,
                        "resource_hash": hash_resource(resource_id),
                        "resource_url": normalized,
                        "last_processed_at": now,
                        "process_count": 1,
                    },
                    increments={"process_count": 1},
                    overrides={"last_processed_at": now},
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to record processing of {normalized} for user {user_id}: {e}", exc_info=True)
            capture_exception(e)
            return

        logger.debug(f"Video processing recorded: user={user_id}, resource={normalized}")


# Global instance
cooldown_service = CooldownService()
