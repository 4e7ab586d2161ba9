"""
Public tracking API used by the funnel page snippet.
No X-Org-Id here: the tenant is resolved from the funnel or session referenced.
"""
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session
from typing import Any, Dict, List
from uuid import UUID
import logging

from app.db.session import get_db
from app.api.deps import visitor_meta_from_request
from app.core.exceptions import NotFoundError
from app.models.funnel import Funnel
from app.models.outbound_task import OutboundKind
from app.models.session import FunnelSession
from app.schemas.tracking import (
    AllocateRequest,
    AllocateResponse,
    EvaluateRequest,
    EvaluateResponse,
    ConditionEvaluationOut,
    SessionTrackIn,
    SessionOut,
    EventIn,
    EventOut,
)
from app.services import (
    variant_allocator,
    rule_evaluator,
    session_tracker,
    event_recorder,
    outbound_queue,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Session attributes exposed to condition rules when the caller passes a session_id
_SESSION_CONTEXT_FIELDS = (
    "device", "traffic_source", "referrer", "visitor_id",
    "utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term",
    "total_page_views", "total_time_spent",
)


def _resolve_funnel(db: Session, funnel_id: UUID) -> Funnel:
    funnel = db.query(Funnel).filter(Funnel.id == funnel_id).first()
    if not funnel:
        raise NotFoundError("Funnel", funnel_id)
    return funnel


def _resolve_session(db: Session, session_id: UUID, funnel_id: UUID = None) -> FunnelSession:
    query = db.query(FunnelSession).filter(FunnelSession.id == session_id)
    if funnel_id is not None:
        query = query.filter(FunnelSession.funnel_id == funnel_id)
    session = query.first()
    if not session:
        raise NotFoundError("Session", session_id)
    return session


def _session_context(session: FunnelSession) -> Dict[str, Any]:
    context = {name: getattr(session, name) for name in _SESSION_CONTEXT_FIELDS}
    context["status"] = session.status.value
    if session.session_metadata:
        context["session"] = dict(session.session_metadata)
    return context


def _enqueue_actions(db: Session, funnel: Funnel, session_id, actions: List[Dict[str, Any]]) -> int:
    """Queue the side-effecting actions; display actions are left to the client"""
    queued = 0
    for action in actions:
        kind = action.get("type")
        if kind == "trigger_webhook" and action.get("url"):
            outbound_queue.enqueue(
                db, funnel.org_id, OutboundKind.WEBHOOK, action["url"],
                payload={**(action.get("payload") or {}), "funnel_id": str(funnel.id),
                         "session_id": str(session_id) if session_id else None},
                funnel_id=funnel.id,
                session_id=session_id,
                headers=action.get("headers") or {},
            )
            queued += 1
        elif kind == "send_email" and action.get("to"):
            outbound_queue.enqueue(
                db, funnel.org_id, OutboundKind.EMAIL, action["to"],
                payload={"subject": action.get("subject") or "", "html_content": action.get("html_content") or ""},
                funnel_id=funnel.id,
                session_id=session_id,
            )
            queued += 1
    return queued


@router.post("/funnels/{funnel_id}/allocate", response_model=AllocateResponse)
def allocate_variant(
    funnel_id: UUID,
    request: AllocateRequest,
    db: Session = Depends(get_db)
):
    """
    Allocate the visitor to an A/B variant.
    With a session_id the allocation is sticky: repeated calls return the same variant.
    """
    funnel = _resolve_funnel(db, funnel_id)

    if request.session_id:
        _resolve_session(db, request.session_id, funnel_id)
        variant = variant_allocator.assign_for_session(db, funnel.org_id, request.session_id)
    else:
        variant = variant_allocator.assign(db, funnel.org_id, funnel_id)

    return AllocateResponse(
        variant_id=variant.id,
        variant_key=variant.variant_key,
        page_overrides=variant.page_overrides,
        session_id=request.session_id,
    )


@router.post("/funnels/{funnel_id}/conditions/evaluate", response_model=EvaluateResponse)
def evaluate_conditions(
    funnel_id: UUID,
    request: EvaluateRequest,
    db: Session = Depends(get_db)
):
    """Evaluate the page's conditions for this visitor and queue webhook/email actions"""
    funnel = _resolve_funnel(db, funnel_id)

    context: Dict[str, Any] = {}
    if request.session_id:
        context.update(_session_context(_resolve_session(db, request.session_id, funnel_id)))
    context.update(request.context)

    evaluations = rule_evaluator.evaluate_conditions(db, funnel.org_id, funnel_id, request.page_id, context)

    queued = 0
    for evaluation in evaluations:
        queued += _enqueue_actions(db, funnel, request.session_id, evaluation.actions)
    if queued:
        db.commit()

    return EvaluateResponse(
        results=[
            ConditionEvaluationOut(
                condition_id=e.condition.id,
                name=e.condition.name,
                type=e.condition.type.value,
                passed=e.passed,
                actions=e.actions,
            )
            for e in evaluations
        ],
        queued_tasks=queued,
    )


@router.post("/sessions", response_model=SessionOut)
def track_session(
    track: SessionTrackIn,
    request: Request,
    db: Session = Depends(get_db)
):
    """Start a session on the entry page, or record a page view when session_id is given"""
    funnel = _resolve_funnel(db, track.funnel_id)

    if track.session_id:
        _resolve_session(db, track.session_id, funnel.id)
        return session_tracker.record_page_view(
            db, funnel.org_id, track.session_id, track.page_id, now=track.timestamp
        )

    meta = visitor_meta_from_request(request, track)
    return session_tracker.create(
        db, funnel.org_id, funnel.id, track.page_id, meta, now=track.timestamp
    )


@router.post("/events", response_model=EventOut, status_code=status.HTTP_201_CREATED)
def track_event(
    event_data: EventIn,
    db: Session = Depends(get_db)
):
    """Append an event to the session's log"""
    session = _resolve_session(db, event_data.session_id)
    return event_recorder.record(
        db,
        session.org_id,
        session.id,
        event_data.event_type,
        event_data,
    )
