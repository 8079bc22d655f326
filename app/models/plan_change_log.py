"""PlanChangeLog model: append-only history of plan transitions"""

from enum import Enum as PyEnum

from sqlalchemy import Column, DateTime, Integer, String, Text

from app.db.database import Base


class ChangeType(str, PyEnum):
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    CANCEL = "cancel"
    REFUND = "refund"
    RENEWAL = "renewal"
    EXPIRY = "expiry"


class ChangeReason(str, PyEnum):
    USER_REQUEST = "user_request"
    PAYMENT_FAILURE = "payment_failure"
    ADMIN_ACTION = "admin_action"
    SYSTEM_AUTO = "system_auto"


class PlanChangeLog(Base):
    __tablename__ = "plan_change_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False, index=True)
    from_plan = Column(String(20), nullable=True)
    to_plan = Column(String(20), nullable=False)
    change_type = Column(String(20), nullable=False, index=True)
    reason = Column(String(100), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<PlanChangeLog(user_id={self.user_id}, {self.from_plan} -> {self.to_plan}, type='{self.change_type}')>"
