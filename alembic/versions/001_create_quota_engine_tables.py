"""Create quota, subscription and abuse prevention tables

Revision ID: 001
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create quota_plans table (reference data, seeded below)
    quota_plans = op.create_table(
        "quota_plans",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("plan_type", sa.String(20), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price_monthly", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("price_yearly", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("monthly_video_quota", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_video_duration", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_file_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("monthly_duration_quota", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_shared_items", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_storage_gb", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("has_priority_processing", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_advanced_export", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_api_access", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_team_management", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_custom_branding", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plan_type"),
    )

    # Create subscriptions table
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("plan_type", sa.String(20), nullable=False, server_default="free"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_status_expires_at", "subscriptions", ["status", "expires_at"])
    # One active and at most one pending subscription per user
    op.create_index(
        "uq_subscriptions_user_active",
        "subscriptions",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )
    op.create_index(
        "uq_subscriptions_user_pending",
        "subscriptions",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    # Create quota_usage table
    op.create_table(
        "quota_usage",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("quota_type", sa.String(50), nullable=False),
        sa.Column("used_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("period_start", sa.DateTime(), nullable=False),
        sa.Column("period_end", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "quota_type", "period_start", name="uq_quota_usage_user_type_period"),
    )
    op.create_index("ix_quota_usage_user_id", "quota_usage", ["user_id"])

    # Create quota_usage_logs table
    op.create_table(
        "quota_usage_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("quota_type", sa.String(50), nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("resource_id", sa.String(200), nullable=True),
        sa.Column("resource_type", sa.String(50), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_quota_usage_logs_user_id", "quota_usage_logs", ["user_id"])
    op.create_index("ix_quota_usage_logs_quota_type", "quota_usage_logs", ["quota_type"])
    op.create_index("ix_quota_usage_logs_created_at", "quota_usage_logs", ["created_at"])

    # Create duration_usage table
    op.create_table(
        "duration_usage",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("video_id", sa.String(200), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=False),
        sa.Column("period_start", sa.DateTime(), nullable=False),
        sa.Column("period_end", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_duration_usage_user_processed", "duration_usage", ["user_id", "processed_at"])

    # Create quota_alerts table
    op.create_table(
        "quota_alerts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("quota_type", sa.String(50), nullable=False),
        sa.Column("alert_type", sa.String(20), nullable=False),
        sa.Column("threshold_percentage", sa.Integer(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_quota_alerts_user_sent", "quota_alerts", ["user_id", "is_sent"])

    # Create user_operation_counters table
    op.create_table(
        "user_operation_counters",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("operation_type", sa.String(50), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("window_start", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "operation_type", name="uq_user_operation_counter"),
    )
    op.create_index("ix_user_operation_counters_window_start", "user_operation_counters", ["window_start"])

    # Create ip_operation_logs table
    op.create_table(
        "ip_operation_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=False),
        sa.Column("operation_type", sa.String(50), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("user_id", sa.String(128), nullable=True),
        sa.Column("request_path", sa.String(200), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("operation_data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ip_operation_logs_ip_created", "ip_operation_logs", ["ip_address", "created_at"])
    op.create_index("ix_ip_operation_logs_user_id", "ip_operation_logs", ["user_id"])
    op.create_index("ix_ip_operation_logs_created_at", "ip_operation_logs", ["created_at"])

    # Create blacklist table
    op.create_table(
        "blacklist",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("value", sa.String(200), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_blacklist_active_type_value",
        "blacklist",
        ["type", "value"],
        unique=True,
        postgresql_where=sa.text("is_active = true"),
        sqlite_where=sa.text("is_active = true"),
    )
    op.create_index("ix_blacklist_active_expires", "blacklist", ["is_active", "expires_at"])

    # Create cooldown_records table
    op.create_table(
        "cooldown_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("resource_hash", sa.String(64), nullable=False),
        sa.Column("resource_url", sa.Text(), nullable=True),
        sa.Column("last_processed_at", sa.DateTime(), nullable=False),
        sa.Column("process_count", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "resource_hash", name="uq_cooldown_user_resource"),
    )
    op.create_index("ix_cooldown_records_last_processed_at", "cooldown_records", ["last_processed_at"])

    # Create plan_change_logs table
    op.create_table(
        "plan_change_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("from_plan", sa.String(20), nullable=True),
        sa.Column("to_plan", sa.String(20), nullable=False),
        sa.Column("change_type", sa.String(20), nullable=False),
        sa.Column("reason", sa.String(100), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_plan_change_logs_user_id", "plan_change_logs", ["user_id"])
    op.create_index("ix_plan_change_logs_change_type", "plan_change_logs", ["change_type"])
    op.create_index("ix_plan_change_logs_created_at", "plan_change_logs", ["created_at"])

    # Seed plans (a limit of 0 means unlimited)
    op.bulk_insert(
        quota_plans,
        [
            {
                "plan_type": "free",
                "name": "Free",
                "description": "Try the service with a couple of videos per month",
                "price_monthly": 0,
                "price_yearly": 0,
                "monthly_video_quota": 2,
                "max_video_duration": 30,
                "max_file_size": 104857600,  # 100MB
                "monthly_duration_quota": 60,
                "max_shared_items": 5,
                "max_storage_gb": 1,
                "has_priority_processing": False,
                "has_advanced_export": False,
                "has_api_access": False,
                "has_team_management": False,
                "has_custom_branding": False,
                "is_active": True,
            },
            {
                "plan_type": "pro",
                "name": "Pro",
                "description": "For regular learners",
                "price_monthly": 30,
                "price_yearly": 300,
                "monthly_video_quota": 50,
                "max_video_duration": 60,
                "max_file_size": 524288000,  # 500MB
                "monthly_duration_quota": 3000,
                "max_shared_items": 100,
                "max_storage_gb": 10,
                "has_priority_processing": True,
                "has_advanced_export": True,
                "has_api_access": False,
                "has_team_management": False,
                "has_custom_branding": False,
                "is_active": True,
            },
            {
                "plan_type": "max",
                "name": "Max",
                "description": "For teams and heavy users",
                "price_monthly": 100,
                "price_yearly": 1000,
                "monthly_video_quota": 200,
                "max_video_duration": 120,
                "max_file_size": 1073741824,  # 1GB
                "monthly_duration_quota": 24000,
                "max_shared_items": 500,
                "max_storage_gb": 100,
                "has_priority_processing": True,
                "has_advanced_export": True,
                "has_api_access": True,
                "has_team_management": True,
                "has_custom_branding": True,
                "is_active": True,
            },
        ],
    )


def downgrade() -> None:
    op.drop_table("plan_change_logs")
    op.drop_table("cooldown_records")
    op.drop_table("blacklist")
    op.drop_table("ip_operation_logs")
    op.drop_table("user_operation_counters")
    op.drop_table("quota_alerts")
    op.drop_table("duration_usage")
    op.drop_table("quota_usage_logs")
    op.drop_table("quota_usage")
    op.drop_table("subscriptions")
    op.drop_table("quota_plans")
