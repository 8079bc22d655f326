from app.db.database import Base
from app.models.subscription import Subscription, SubscriptionStatus
from app.models.quota_plan import QuotaPlan
from app.models.quota_usage import QuotaUsage, QuotaUsageLog, DurationUsage
from app.models.quota_alert import QuotaAlert, AlertType
from app.models.operation_limit import OperationLimitCounter, IPOperationLog
from app.models.blacklist import BlacklistEntry
from app.models.cooldown_record import CooldownRecord
from app.models.plan_change_log import PlanChangeLog, ChangeType, ChangeReason

__all__ = [
    "Base",
    "Subscription",
    "SubscriptionStatus",
    "QuotaPlan",
    "QuotaUsage",
    "QuotaUsageLog",
    "DurationUsage",
    "QuotaAlert",
    "AlertType",
    "OperationLimitCounter",
    "IPOperationLog",
    "BlacklistEntry",
    "CooldownRecord",
    "PlanChangeLog",
    "ChangeType",
    "ChangeReason",
]
