"""Subscription model for plan lifecycle tracking"""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, text

from app.db.database import Base


class SubscriptionStatus(str, PyEnum):
    ACTIVE = "active"
    PENDING = "pending"  # Next plan, takes effect when the active one lapses
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


# Predicates of the partial unique indexes below; also used as ON CONFLICT targets
ACTIVE_PREDICATE = text("status = 'active'")
PENDING_PREDICATE = text("status = 'pending'")


class Subscription(Base):
    """One row per plan period; a user has one active and at most one pending row"""

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index(
            "uq_subscriptions_user_active",
            "user_id",
            unique=True,
            postgresql_where=ACTIVE_PREDICATE,
            sqlite_where=ACTIVE_PREDICATE,
        ),
        Index(
            "uq_subscriptions_user_pending",
            "user_id",
            unique=True,
            postgresql_where=PENDING_PREDICATE,
            sqlite_where=PENDING_PREDICATE,
        ),
        Index("ix_subscriptions_status_expires_at", "status", "expires_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False, index=True)
    plan_type = Column(String(20), nullable=False, default="free")
    status = Column(String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value)
    started_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=True)  # None for the free plan
    auto_renew = Column(Boolean, nullable=False, default=False)
    payment_method = Column(String(50), nullable=True)  # alipay, wechat, credit_card, refund, transition ...
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Subscription(user_id={self.user_id}, plan='{self.plan_type}', status='{self.status}')>"
