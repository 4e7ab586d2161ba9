from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Boolean, Float, Numeric, JSON, Text, Uuid, UniqueConstraint, Enum as SQLEnum
import uuid
import enum
from datetime import datetime
from app.db.session import Base
from app.models.funnel import enum_values


class VariantStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    WINNER = "winner"
    ARCHIVED = "archived"


class FunnelVariant(Base):
    __tablename__ = "funnel_variants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    funnel_id = Column(Uuid, ForeignKey("funnels.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    variant_key = Column(String(10), nullable=False, index=True)  # 'A', 'B', 'C', ...
    description = Column(Text, nullable=True)
    status = Column(
        SQLEnum(VariantStatus, name="variant_status", values_callable=enum_values),
        default=VariantStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    is_control = Column(Boolean, default=False, nullable=False)
    traffic_percentage = Column(Integer, default=50, nullable=False)  # Advisory weight, normalized across active variants

    # Running counters, only ever changed through SQL-side increments
    visitors = Column(Integer, default=0, nullable=False)
    conversions = Column(Integer, default=0, nullable=False)
    conversion_rate = Column(Float, default=0.0, nullable=False)  # Percentage
    revenue = Column(Numeric(15, 2, asdecimal=False), default=0, nullable=False)

    page_overrides = Column(JSON, nullable=True)  # Page-specific content overrides
    declared_winner_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("funnel_id", "variant_key", name="uq_funnel_variants_funnel_key"),
    )
