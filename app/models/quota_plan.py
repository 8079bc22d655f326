"""QuotaPlan reference data"""

from sqlalchemy import BigInteger, Boolean, Column, Integer, Numeric, String, Text

from app.db.database import Base


class QuotaPlan(Base):
    """Limits and feature flags of a plan; a limit of 0 means unlimited"""

    __tablename__ = "quota_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plan_type = Column(String(20), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    price_monthly = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    price_yearly = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)

    monthly_video_quota = Column(Integer, nullable=False, default=0)  # videos per month
    max_video_duration = Column(Integer, nullable=False, default=0)  # minutes per video
    max_file_size = Column(BigInteger, nullable=False, default=0)  # bytes
    monthly_duration_quota = Column(Integer, nullable=False, default=0)  # minutes per month
    max_shared_items = Column(Integer, nullable=False, default=0)
    max_storage_gb = Column(Integer, nullable=False, default=1)

    has_priority_processing = Column(Boolean, nullable=False, default=False)
    has_advanced_export = Column(Boolean, nullable=False, default=False)
    has_api_access = Column(Boolean, nullable=False, default=False)
    has_team_management = Column(Boolean, nullable=False, default=False)
    has_custom_branding = Column(Boolean, nullable=False, default=False)

    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<QuotaPlan(plan_type='{self.plan_type}', price_monthly={self.price_monthly})>"
