from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Boolean, Float, Numeric, JSON, Text, Uuid, Enum as SQLEnum
import uuid
import enum
from datetime import datetime
from app.db.session import Base
from app.models.funnel import enum_values


class GoalType(str, enum.Enum):
    PAGE_VISIT = "page_visit"
    FORM_SUBMISSION = "form_submission"
    BUTTON_CLICK = "button_click"
    TIME_ON_SITE = "time_on_site"
    PURCHASE = "purchase"
    CUSTOM_EVENT = "custom_event"


class GoalStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class FunnelGoal(Base):
    __tablename__ = "funnel_goals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    funnel_id = Column(Uuid, ForeignKey("funnels.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(SQLEnum(GoalType, name="goal_type", values_callable=enum_values), nullable=False, index=True)
    status = Column(
        SQLEnum(GoalStatus, name="goal_status", values_callable=enum_values),
        default=GoalStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    is_primary = Column(Boolean, default=False, nullable=False)  # Completing a primary goal converts the session
    # target_page_id, form_id, button_id, minimum_seconds, minimum_order_value, event_name
    config = Column(JSON, nullable=True)
    value = Column(Numeric(15, 2, asdecimal=False), default=0, nullable=False)  # Monetary value of one completion

    completion_count = Column(Integer, default=0, nullable=False)
    completion_rate = Column(Float, default=0.0, nullable=False)  # % of funnel sessions completing the goal
    total_value = Column(Numeric(15, 2, asdecimal=False), default=0, nullable=False)
    average_time_to_complete = Column(Float, default=0.0, nullable=False)  # seconds from session start

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
