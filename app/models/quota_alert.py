"""QuotaAlert model for usage threshold notifications"""

from enum import Enum as PyEnum

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from app.db.database import Base


class AlertType(str, PyEnum):
    WARNING = "warning"
    LIMIT_REACHED = "limit_reached"


class QuotaAlert(Base):
    """Alert raised when usage crosses 80% or 100% of a period limit"""

    __tablename__ = "quota_alerts"
    __table_args__ = (
        Index("ix_quota_alerts_user_sent", "user_id", "is_sent"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False)
    quota_type = Column(String(50), nullable=False)
    alert_type = Column(String(20), nullable=False)
    threshold_percentage = Column(Integer, nullable=False)
    message = Column(Text, nullable=False)
    is_sent = Column(Boolean, nullable=False, default=False)  # True once the user has read it
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return (
            f"<QuotaAlert(user_id={self.user_id}, type='{self.quota_type}', "
            f"alert='{self.alert_type}', threshold={self.threshold_percentage})>"
        )
