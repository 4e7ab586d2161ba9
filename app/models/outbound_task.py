from sqlalchemy import Column, String, DateTime, Integer, JSON, Text, Uuid, Enum as SQLEnum
import uuid
import enum
from datetime import datetime
from app.db.session import Base
from app.models.funnel import enum_values


class OutboundKind(str, enum.Enum):
    WEBHOOK = "webhook"
    EMAIL = "email"


class OutboundStatus(str, enum.Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    DEAD_LETTER = "dead_letter"


class OutboundTask(Base):
    """Queued side effect (webhook/email) delivered outside the runtime's write path"""
    __tablename__ = "outbound_tasks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, nullable=False, index=True)
    funnel_id = Column(Uuid, nullable=True, index=True)
    session_id = Column(Uuid, nullable=True, index=True)
    kind = Column(SQLEnum(OutboundKind, name="outbound_kind", values_callable=enum_values), nullable=False)
    target = Column(String, nullable=False)  # Webhook URL or recipient email
    payload = Column(JSON, nullable=True)
    headers = Column(JSON, nullable=True)
    status = Column(
        SQLEnum(OutboundStatus, name="outbound_status", values_callable=enum_values),
        default=OutboundStatus.PENDING,
        nullable=False,
        index=True,
    )
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)
    next_attempt_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    last_error = Column(Text, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
