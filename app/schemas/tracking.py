from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime
from uuid import UUID

from app.models.event import EventType
from app.models.session import SessionStatus


class VisitorMeta(BaseModel):
    """Raw visitor metadata supplied by the request layer; treated as opaque strings"""
    session_key: Optional[str] = None  # Client session token; generated server-side when absent
    visitor_id: Optional[str] = None
    contact_id: Optional[UUID] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_content: Optional[str] = None
    utm_term: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


# Variant allocation
class AllocateRequest(BaseModel):
    session_id: Optional[UUID] = None


class AllocateResponse(BaseModel):
    variant_id: UUID
    variant_key: str
    page_overrides: Optional[Dict[str, Any]] = None
    session_id: Optional[UUID] = None


# Condition evaluation
class EvaluateRequest(BaseModel):
    page_id: Optional[UUID] = None
    session_id: Optional[UUID] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class ConditionEvaluationOut(BaseModel):
    condition_id: UUID
    name: str
    type: str
    passed: bool
    actions: List[Dict[str, Any]]


class EvaluateResponse(BaseModel):
    results: List[ConditionEvaluationOut]
    queued_tasks: int = 0


# Session tracking
class SessionTrackIn(VisitorMeta):
    funnel_id: UUID
    page_id: UUID
    session_id: Optional[UUID] = None  # Present = record a page view on an existing session
    timestamp: Optional[datetime] = None


class PageView(BaseModel):
    page_id: str
    viewed_at: str
    time_spent: int


class SessionOut(BaseModel):
    id: UUID
    funnel_id: UUID
    variant_id: Optional[UUID] = None
    session_key: str
    visitor_id: Optional[str] = None
    status: SessionStatus
    device: Optional[str] = None
    traffic_source: Optional[str] = None
    entry_page_id: UUID
    current_page_id: Optional[UUID] = None
    exit_page_id: Optional[UUID] = None
    page_views: List[PageView]
    total_page_views: int
    total_time_spent: int
    converted: bool
    converted_at: Optional[datetime] = None
    conversion_page_id: Optional[UUID] = None
    conversion_value: float
    created_at: datetime

    class Config:
        from_attributes = True


# Event tracking
class EventPayload(BaseModel):
    event_name: Optional[str] = Field(None, max_length=100)
    page_id: Optional[UUID] = None
    element_id: Optional[str] = None
    element_type: Optional[str] = None
    event_data: Dict[str, Any] = Field(default_factory=dict)
    is_conversion: bool = False
    conversion_value: float = Field(0, ge=0)
    goal_id: Optional[UUID] = None
    event_timestamp: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EventIn(EventPayload):
    session_id: UUID
    event_type: EventType


class EventOut(BaseModel):
    id: UUID
    session_id: UUID
    funnel_id: UUID
    sequence: int
    event_type: EventType
    event_name: Optional[str] = None
    page_id: Optional[UUID] = None
    is_conversion: bool
    conversion_value: float
    goal_id: Optional[UUID] = None
    event_time: datetime
    time_from_start: int
    time_from_last_event: int

    class Config:
        from_attributes = True
