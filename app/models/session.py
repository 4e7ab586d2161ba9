from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Boolean, Numeric, JSON, Uuid, Enum as SQLEnum
from sqlalchemy.orm import relationship
import uuid
import enum
from datetime import datetime
from app.db.session import Base
from app.models.funnel import enum_values


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    CONVERTED = "converted"
    ABANDONED = "abandoned"
    BOUNCED = "bounced"


TERMINAL_SESSION_STATUSES = (
    SessionStatus.CONVERTED,
    SessionStatus.ABANDONED,
    SessionStatus.BOUNCED,
)


class FunnelSession(Base):
    __tablename__ = "funnel_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    funnel_id = Column(Uuid, ForeignKey("funnels.id", ondelete="CASCADE"), nullable=False, index=True)
    variant_id = Column(Uuid, ForeignKey("funnel_variants.id", ondelete="SET NULL"), nullable=True, index=True)
    contact_id = Column(Uuid, nullable=True, index=True)  # Authenticated contact, if known
    session_key = Column(String, nullable=False, unique=True, index=True)  # Client-side session token
    visitor_id = Column(String, nullable=True, index=True)  # Anonymous visitor identifier
    status = Column(
        SQLEnum(SessionStatus, name="session_status", values_callable=enum_values),
        default=SessionStatus.ACTIVE,
        nullable=False,
        index=True,
    )

    # Visitor information (opaque strings from the request layer)
    ip_address = Column(String(100), nullable=True)
    user_agent = Column(String(500), nullable=True)
    device = Column(String(20), nullable=True)  # desktop, mobile, tablet
    referrer = Column(String(500), nullable=True, index=True)
    utm_source = Column(String, nullable=True)
    utm_medium = Column(String, nullable=True)
    utm_campaign = Column(String, nullable=True)
    utm_content = Column(String, nullable=True)
    utm_term = Column(String, nullable=True)
    traffic_source = Column(String(20), nullable=True)  # direct, organic, social, email, paid, referral

    # Journey tracking
    entry_page_id = Column(Uuid, nullable=False)
    current_page_id = Column(Uuid, nullable=True)
    exit_page_id = Column(Uuid, nullable=True)
    page_views = Column(JSON, nullable=False, default=list)  # [{page_id, viewed_at, time_spent}]
    total_page_views = Column(Integer, default=0, nullable=False)
    total_time_spent = Column(Integer, default=0, nullable=False)  # seconds

    # Conversion tracking
    converted = Column(Boolean, default=False, nullable=False)
    converted_at = Column(DateTime, nullable=True)
    conversion_page_id = Column(Uuid, nullable=True)
    conversion_value = Column(Numeric(15, 2, asdecimal=False), default=0, nullable=False)

    last_activity_at = Column(DateTime, nullable=True, index=True)
    session_metadata = Column(JSON, nullable=True)  # Renamed from 'metadata' to avoid SQLAlchemy reserved name
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    events = relationship("FunnelEvent", cascade="all, delete-orphan")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES
