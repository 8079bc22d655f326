"""Subscription lifecycle and plan change audit services."""

from app.services.subscription.plan_change_service import plan_change_service, PlanChangeService
from app.services.subscription.subscription_service import subscription_service, SubscriptionService

__all__ = [
    "plan_change_service",
    "PlanChangeService",
    "subscription_service",
    "SubscriptionService",
]
