"""BlacklistEntry model for ip/user/email bans"""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, text

from app.db.database import Base

ACTIVE_ENTRY_PREDICATE = text("is_active = true")


class BlacklistEntry(Base):
    """Ban list entry; only one active entry per (type, value), history is kept"""

    __tablename__ = "blacklist"
    __table_args__ = (
        Index(
            "uq_blacklist_active_type_value",
            "type",
            "value",
            unique=True,
            postgresql_where=ACTIVE_ENTRY_PREDICATE,
            sqlite_where=ACTIVE_ENTRY_PREDICATE,
        ),
        Index("ix_blacklist_active_expires", "is_active", "expires_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(20), nullable=False)  # ip, user, email
    value = Column(String(200), nullable=False)
    reason = Column(String(500), nullable=True)
    expires_at = Column(DateTime, nullable=True)  # None means permanent
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(128), nullable=True)  # admin who created the ban
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<BlacklistEntry(type='{self.type}', value='{self.value}', active={self.is_active})>"
