"""Application-wide constants."""

# API Configuration
API_VERSION = "v1"
API_PREFIX = f"/api/{API_VERSION}"

# Plan types
PLAN_FREE = "free"
PLAN_PRO = "pro"
PLAN_MAX = "max"

# Upgrade ladder used for suggestions on denial (max has nothing above it)
UPGRADE_PATH = {
    PLAN_FREE: PLAN_PRO,
    PLAN_PRO: PLAN_MAX,
    PLAN_MAX: PLAN_MAX,
}
DEFAULT_SUGGESTED_PLAN = PLAN_PRO

# Quota types
QUOTA_VIDEO_PROCESSING = "video_processing"
QUOTA_SHARES = "shares"
QUOTA_STORAGE = "storage"
QUOTA_API_CALLS = "api_calls"
QUOTA_EXPORTS = "exports"

QUOTA_TYPES = [
    QUOTA_VIDEO_PROCESSING,
    QUOTA_SHARES,
    QUOTA_STORAGE,
    QUOTA_API_CALLS,
    QUOTA_EXPORTS,
]

# Quota types reported by the usage overview
SUMMARY_QUOTA_TYPES = [
    QUOTA_VIDEO_PROCESSING,
    QUOTA_SHARES,
    QUOTA_STORAGE,
    QUOTA_EXPORTS,
]

QUOTA_TYPE_NAMES = {
    QUOTA_VIDEO_PROCESSING: "video processing",
    QUOTA_SHARES: "shared items",
    QUOTA_STORAGE: "storage",
    QUOTA_API_CALLS: "API calls",
    QUOTA_EXPORTS: "exports",
}

# Alert thresholds (percent of the period limit)
ALERT_WARNING_THRESHOLD = 80
ALERT_LIMIT_THRESHOLD = 100
ALERT_SUPPRESSION_HOURS = 24

# Operation types
OP_PLAN_CHANGE = "plan_change"
OP_VIDEO_PROCESS = "video_process"
OP_SHARE_CREATE = "share_create"
OP_EXPORT_CONTENT = "export_content"
OP_LOGIN_ATTEMPT = "login_attempt"

# User-level fixed windows: (max operations, window hours)
USER_OPERATION_LIMITS = {
    OP_PLAN_CHANGE: (3, 24),
    OP_VIDEO_PROCESS: (100, 24),
    OP_SHARE_CREATE: (50, 24),
    OP_EXPORT_CONTENT: (20, 24),
}

# IP-level lookback windows: (max operations, window minutes)
IP_OPERATION_LIMITS = {
    OP_VIDEO_PROCESS: (10, 60),
    OP_PLAN_CHANGE: (5, 60),
    OP_LOGIN_ATTEMPT: (10, 15),
}

OPERATION_TYPE_NAMES = {
    OP_PLAN_CHANGE: "plan changes",
    OP_VIDEO_PROCESS: "video processing requests",
    OP_SHARE_CREATE: "shares",
    OP_EXPORT_CONTENT: "exports",
    OP_LOGIN_ATTEMPT: "login attempts",
}

# Blacklist entry types
BLACKLIST_TYPES = ("ip", "user", "email")

# Anomaly detection thresholds
ANOMALY_OPERATION_THRESHOLD = 50  # per operation type in the window
ANOMALY_FAILURE_RATE = 0.5
ANOMALY_MIN_ATTEMPTS_FOR_FAILURE_RATE = 10
ANOMALY_TOTAL_THRESHOLD = 100
ANOMALY_HIGH_TOTAL = 200
ANOMALY_MEDIUM_TOTAL = 50
ANOMALY_HIGH_PATTERN_COUNT = 2

# Plan change guards
DOWNGRADE_COOLDOWN_DAYS = 7

# Subscription billing
PRORATION_DAYS_PER_MONTH = 30
RENEWAL_EXTENSION_DAYS = 30

# Retention for cleanup job
OPERATION_COUNTER_RETENTION_DAYS = 7
IP_LOG_RETENTION_DAYS = 30
