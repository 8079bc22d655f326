"""CooldownRecord model for repeated processing of the same resource"""

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from app.db.database import Base


class CooldownRecord(Base):
    """Last time a user processed a resource, keyed by the normalized resource hash"""

    __tablename__ = "cooldown_records"
    __table_args__ = (
        UniqueConstraint("user_id", "resource_hash", name="uq_cooldown_user_resource"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False)
    resource_hash = Column(String(64), nullable=False)  # SHA256 of the normalized URL
    resource_url = Column(Text, nullable=True)
    last_processed_at = Column(DateTime, nullable=False, index=True)
    process_count = Column(Integer, nullable=False, default=1)

    def __repr__(self):
        return f"<CooldownRecord(user_id={self.user_id}, hash={self.resource_hash[:8]}..., count={self.process_count})>"
