"""Quota usage models: period aggregates, audit log and duration ledger"""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, UniqueConstraint

from app.db.database import Base


class QuotaUsage(Base):
    """Aggregate usage per user, quota type and calendar month"""

    __tablename__ = "quota_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "quota_type", "period_start", name="uq_quota_usage_user_type_period"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False, index=True)
    quota_type = Column(String(50), nullable=False)  # video_processing, shares, storage, api_calls, exports
    used_amount = Column(Integer, nullable=False, default=0)
    period_start = Column(DateTime, nullable=False)  # first day of month 00:00:00
    period_end = Column(DateTime, nullable=False)  # last day of month 23:59:59
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<QuotaUsage(user_id={self.user_id}, type='{self.quota_type}', "
            f"period={self.period_start:%Y-%m}, used={self.used_amount})>"
        )


class QuotaUsageLog(Base):
    """Immutable audit row written for every recorded usage"""

    __tablename__ = "quota_usage_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False, index=True)
    quota_type = Column(String(50), nullable=False, index=True)
    action = Column(String(100), nullable=False)  # video_processed, share_created, export_generated ...
    amount = Column(Integer, nullable=False, default=1)
    resource_id = Column(String(200), nullable=True)
    resource_type = Column(String(50), nullable=True)
    usage_metadata = Column("metadata", JSON, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)


class DurationUsage(Base):
    """Per-video duration ledger summed for the monthly duration quota"""

    __tablename__ = "duration_usage"
    __table_args__ = (
        Index("ix_duration_usage_user_processed", "user_id", "processed_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False)
    video_id = Column(String(200), nullable=True)
    duration_minutes = Column(Integer, nullable=False)
    processed_at = Column(DateTime, nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
