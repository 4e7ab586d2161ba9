from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Boolean, Numeric, JSON, Uuid, UniqueConstraint, Enum as SQLEnum
import uuid
import enum
from datetime import datetime
from app.db.session import Base
from app.models.funnel import enum_values


class EventType(str, enum.Enum):
    PAGE_VIEW = "page_view"
    BUTTON_CLICK = "button_click"
    FORM_SUBMIT = "form_submit"
    VIDEO_PLAY = "video_play"
    VIDEO_COMPLETE = "video_complete"
    DOWNLOAD = "download"
    ADD_TO_CART = "add_to_cart"
    CHECKOUT_STARTED = "checkout_started"
    PURCHASE = "purchase"
    EXIT_INTENT = "exit_intent"
    SCROLL_DEPTH = "scroll_depth"
    TIME_ON_PAGE = "time_on_page"
    CUSTOM_EVENT = "custom_event"
    CONVERSION_GOAL = "conversion_goal"


class FunnelEvent(Base):
    """Immutable, append-only record of one interaction within a session"""
    __tablename__ = "funnel_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    funnel_id = Column(Uuid, ForeignKey("funnels.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(Uuid, ForeignKey("funnel_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)  # Strictly increasing within a session
    event_type = Column(
        SQLEnum(EventType, name="event_type", values_callable=enum_values),
        nullable=False,
        index=True,
    )
    event_name = Column(String, nullable=True, index=True)  # Custom event name
    page_id = Column(Uuid, nullable=True)
    element_id = Column(String, nullable=True)
    element_type = Column(String, nullable=True)  # button, link, form, ...
    event_data = Column(JSON, nullable=True)  # formData, orderValue, scrollDepth, customProperties, ...

    # Conversion tracking
    is_conversion = Column(Boolean, default=False, nullable=False)
    conversion_value = Column(Numeric(15, 2, asdecimal=False), default=0, nullable=False)
    goal_id = Column(Uuid, nullable=True)

    # Timing
    event_time = Column(DateTime, nullable=False, index=True)
    time_from_start = Column(Integer, nullable=False, default=0)  # seconds since session start
    time_from_last_event = Column(Integer, nullable=False, default=0)  # seconds since previous event
    event_metadata = Column(JSON, nullable=True)  # Renamed from 'metadata' to avoid SQLAlchemy reserved name
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)  # When event was received by API

    __table_args__ = (
        UniqueConstraint("session_id", "sequence", name="uq_funnel_events_session_sequence"),
    )
