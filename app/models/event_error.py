from sqlalchemy import Column, DateTime, JSON, Text, Uuid
import uuid
from datetime import datetime
from app.db.session import Base


class EventError(Base):
    """Error note for a side effect that failed after the canonical write succeeded"""
    __tablename__ = "event_errors"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, nullable=True, index=True)
    funnel_id = Column(Uuid, nullable=True, index=True)
    session_id = Column(Uuid, nullable=True, index=True)
    outbound_task_id = Column(Uuid, nullable=True, index=True)
    payload = Column(JSON, nullable=True)  # Original payload that failed
    reason = Column(Text, nullable=True)  # Error reason/message
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
