from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Float, Numeric, JSON, Uuid, Index, UniqueConstraint, Enum as SQLEnum
import uuid
import enum
from datetime import datetime
from app.db.session import Base
from app.models.funnel import enum_values


class AnalyticsPeriod(str, enum.Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class FunnelAnalytics(Base):
    """Time bucket of aggregated session metrics; written only by the analytics rollup"""
    __tablename__ = "funnel_analytics"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    funnel_id = Column(Uuid, ForeignKey("funnels.id", ondelete="CASCADE"), nullable=False, index=True)
    period = Column(SQLEnum(AnalyticsPeriod, name="analytics_period", values_callable=enum_values), nullable=False)
    period_date = Column(DateTime, nullable=False)  # Bucket start (inclusive)
    # Empty string = all variants; keeps the bucket key unique without NULL semantics
    variant_key = Column(String, nullable=False, default="")
    variant_id = Column(Uuid, nullable=True)

    # Traffic metrics
    visitors = Column(Integer, default=0, nullable=False)
    unique_visitors = Column(Integer, default=0, nullable=False)
    page_views = Column(Integer, default=0, nullable=False)
    bounces = Column(Integer, default=0, nullable=False)
    bounce_rate = Column(Float, default=0.0, nullable=False)
    average_time_on_site = Column(Integer, default=0, nullable=False)  # seconds

    # Conversion metrics
    conversions = Column(Integer, default=0, nullable=False)
    conversion_rate = Column(Float, default=0.0, nullable=False)
    revenue = Column(Numeric(15, 2, asdecimal=False), default=0, nullable=False)
    average_order_value = Column(Numeric(10, 2, asdecimal=False), default=0, nullable=False)

    source_breakdown = Column(JSON, nullable=False, default=dict)  # {direct, organic, social, email, paid, referral}
    device_breakdown = Column(JSON, nullable=False, default=dict)  # {desktop, mobile, tablet}
    page_analytics = Column(JSON, nullable=False, default=list)
    dropoff_points = Column(JSON, nullable=False, default=list)

    computed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("funnel_id", "period", "period_date", "variant_key", name="uq_funnel_analytics_bucket"),
        Index("ix_funnel_analytics_lookup", "org_id", "funnel_id", "period", "period_date"),
    )
