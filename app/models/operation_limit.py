"""Rate limiting models: per-user fixed-window counters and the per-IP operation log"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text, UniqueConstraint

from app.db.database import Base


class OperationLimitCounter(Base):
    """Fixed-window counter; reset lazily by the next record after the window elapses"""

    __tablename__ = "user_operation_counters"
    __table_args__ = (
        UniqueConstraint("user_id", "operation_type", name="uq_user_operation_counter"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False)
    operation_type = Column(String(50), nullable=False)
    count = Column(Integer, nullable=False, default=0)
    window_start = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, nullable=False)


class IPOperationLog(Base):
    """Append-only log of operations per IP (rate limiting lookback and anomaly scans)"""

    __tablename__ = "ip_operation_logs"
    __table_args__ = (
        Index("ix_ip_operation_logs_ip_created", "ip_address", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    ip_address = Column(String(45), nullable=False)
    operation_type = Column(String(50), nullable=False)
    success = Column(Boolean, nullable=False, default=True)
    user_id = Column(String(128), nullable=True, index=True)  # None for anonymous requests
    request_path = Column(String(200), nullable=True)
    user_agent = Column(Text, nullable=True)
    operation_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)
