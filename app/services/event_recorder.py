"""
Append-only event log for funnel sessions.

Events are never updated or deleted. Each one gets the next per-session
`sequence` and an `event_time` that never goes backwards within the
session; late client timestamps are clamped to the previous event and the
original value is kept in metadata as `client_time`.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import InvalidStateError
from app.models.event import EventType, FunnelEvent
from app.models.session import SessionStatus
from app.schemas.tracking import EventPayload
from app.services import goal_tracker, session_tracker
from app.utils.dates import naive_utc

logger = logging.getLogger(__name__)

SEQUENCE_RETRIES = 3


def _seconds_between(later: datetime, earlier: datetime) -> int:
    return max(0, int((later - earlier).total_seconds()))


def record(
    db: Session,
    org_id: UUID,
    session_id: UUID,
    event_type: EventType,
    payload: EventPayload,
    now: Optional[datetime] = None,
) -> FunnelEvent:
    now = naive_utc(now) or datetime.utcnow()
    for attempt in range(1, SEQUENCE_RETRIES + 1):
        try:
            return _record_once(db, org_id, session_id, event_type, payload, now)
        except IntegrityError:
            # Concurrent writer took the same sequence number
            db.rollback()
            if attempt == SEQUENCE_RETRIES:
                raise
            logger.warning("[EVENTS] Sequence conflict on session %s, retrying (%d)", session_id, attempt)


def _record_once(
    db: Session,
    org_id: UUID,
    session_id: UUID,
    event_type: EventType,
    payload: EventPayload,
    now: datetime,
) -> FunnelEvent:
    session = session_tracker.get_session(db, org_id, session_id)

    last_sequence, last_event_time = db.query(
        func.max(FunnelEvent.sequence),
        func.max(FunnelEvent.event_time),
    ).filter(FunnelEvent.session_id == session_id).one()

    metadata = dict(payload.metadata or {})
    event_time = naive_utc(payload.event_timestamp) or now
    if last_event_time is not None and event_time < last_event_time:
        metadata["client_time"] = event_time.isoformat()
        event_time = last_event_time

    time_from_start = _seconds_between(event_time, session.created_at)
    time_from_last_event = _seconds_between(event_time, last_event_time or session.created_at)

    is_conversion = payload.is_conversion
    conversion_value = float(payload.conversion_value or 0)
    goal_id = payload.goal_id
    is_active = session.status == SessionStatus.ACTIVE

    if is_active:
        goal = goal_tracker.match_goal(
            db,
            session,
            event_type,
            page_id=str(payload.page_id) if payload.page_id else None,
            element_id=payload.element_id,
            event_name=payload.event_name,
            event_data=payload.event_data,
            conversion_value=conversion_value,
            time_from_start=time_from_start,
        )
        if goal:
            goal_id = goal.id
            goal_tracker.record_completion(db, goal, goal.value, time_from_start)
            if goal.is_primary:
                is_conversion = True
                if not conversion_value:
                    conversion_value = float(goal.value or 0)

    event = FunnelEvent(
        org_id=org_id,
        funnel_id=session.funnel_id,
        session_id=session.id,
        sequence=(last_sequence or 0) + 1,
        event_type=event_type,
        event_name=payload.event_name,
        page_id=payload.page_id,
        element_id=payload.element_id,
        element_type=payload.element_type,
        event_data=payload.event_data or {},
        is_conversion=is_conversion,
        conversion_value=conversion_value,
        goal_id=goal_id,
        event_time=event_time,
        time_from_start=time_from_start,
        time_from_last_event=time_from_last_event,
        event_metadata=metadata,
        received_at=now,
    )
    db.add(event)
    db.flush()

    if is_conversion and is_active:
        try:
            session_tracker.mark_converted(
                db,
                org_id,
                session.id,
                page_id=payload.page_id,
                value=conversion_value,
                now=event_time,
                commit=False,
            )
        except InvalidStateError:
            # Session finished concurrently; the event itself still stands
            logger.info("[EVENTS] Session %s left active before conversion was applied", session.id)

    db.commit()
    db.refresh(event)
    logger.debug(
        "[EVENTS] Session %s #%d %s%s",
        session.id, event.sequence, event_type.value, " (conversion)" if is_conversion else "",
    )
    return event
