from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Boolean, Float, JSON, Text, Uuid, Enum as SQLEnum
import uuid
import enum
from datetime import datetime
from app.db.session import Base
from app.models.funnel import enum_values


class ConditionType(str, enum.Enum):
    PAGE_TRANSITION = "page_transition"  # Control which page to go to next
    CONTENT_DISPLAY = "content_display"  # Show/hide content on a page
    REDIRECT = "redirect"  # Redirect to external URL
    ACTION_TRIGGER = "action_trigger"  # Trigger an action (email, webhook, etc.)


class ConditionOperator(str, enum.Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN_LIST = "in_list"
    NOT_IN_LIST = "not_in_list"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    REGEX_MATCH = "regex_match"


class FunnelCondition(Base):
    __tablename__ = "funnel_conditions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    funnel_id = Column(Uuid, ForeignKey("funnels.id", ondelete="CASCADE"), nullable=False, index=True)
    page_id = Column(Uuid, nullable=True, index=True)  # NULL = applies to every page of the funnel
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(
        SQLEnum(ConditionType, name="condition_type", values_callable=enum_values),
        default=ConditionType.CONTENT_DISPLAY,
        nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False)
    execution_order = Column(Integer, default=0, nullable=False)

    rules = Column(JSON, nullable=False, default=list)  # [{field, operator, value}]
    logic_operator = Column(String(10), default="AND", nullable=False)  # AND | OR
    actions = Column(JSON, nullable=False, default=list)  # [{type, ...}] when rules pass
    else_actions = Column(JSON, nullable=False, default=list)  # [{type, ...}] when rules fail
    targeting = Column(JSON, nullable=True)  # {segments, tags, devices, traffic_sources}

    # Running counters, only ever changed through SQL-side increments
    evaluation_count = Column(Integer, default=0, nullable=False)
    passed_count = Column(Integer, default=0, nullable=False)
    failed_count = Column(Integer, default=0, nullable=False)
    pass_rate = Column(Float, default=0.0, nullable=False)  # Percentage

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
