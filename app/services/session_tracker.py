"""
Funnel session lifecycle.

A session starts `active` and leaves it exactly once, to `converted`,
`bounced` or `abandoned`. Every write is a conditional UPDATE guarded by
`status = 'active'`; when it matches no row the session is re-read to
report NotFoundError or InvalidStateError.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError, InvalidStateError, ValidationError
from app.models.funnel import Funnel, FunnelPage
from app.models.outbound_task import OutboundKind
from app.models.session import FunnelSession, SessionStatus
from app.models.variant import FunnelVariant
from app.schemas.tracking import VisitorMeta
from app.services import outbound_queue
from app.utils.dates import naive_utc
from app.utils.visitor import classify_device, classify_traffic_source

logger = logging.getLogger(__name__)


def _page_view(page_id: UUID, viewed_at: datetime) -> dict:
    return {"page_id": str(page_id), "viewed_at": viewed_at.isoformat(), "time_spent": 0}


def get_session(db: Session, org_id: UUID, session_id: UUID) -> FunnelSession:
    session = db.query(FunnelSession).filter(
        FunnelSession.id == session_id,
        FunnelSession.org_id == org_id,
    ).first()
    if not session:
        raise NotFoundError("Session", session_id)
    return session


def _raise_for_missed_update(db: Session, org_id: UUID, session_id: UUID, action: str) -> None:
    """A guarded UPDATE touched no row: tell a missing session from a finished one"""
    session = db.query(FunnelSession).populate_existing().filter(
        FunnelSession.id == session_id,
        FunnelSession.org_id == org_id,
    ).first()
    if not session:
        raise NotFoundError("Session", session_id)
    raise InvalidStateError(
        f"Cannot {action}: session is {session.status.value}",
        session_id=str(session_id),
        status=session.status.value,
    )


def _guarded_update(db: Session, org_id: UUID, session_id: UUID, action: str, **values) -> None:
    result = db.execute(
        update(FunnelSession)
        .where(
            FunnelSession.id == session_id,
            FunnelSession.org_id == org_id,
            FunnelSession.status == SessionStatus.ACTIVE,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        _raise_for_missed_update(db, org_id, session_id, action)


def create(
    db: Session,
    org_id: UUID,
    funnel_id: UUID,
    entry_page_id: UUID,
    visitor_meta: VisitorMeta,
    now: Optional[datetime] = None,
) -> FunnelSession:
    """
    Start a session on `entry_page_id`, counted as its first page view.

    `visitor_meta.session_key` makes creation idempotent: a retried request
    with the same key gets the session created the first time.
    """
    now = naive_utc(now) or datetime.utcnow()

    funnel = db.query(Funnel).filter(Funnel.id == funnel_id, Funnel.org_id == org_id).first()
    if not funnel:
        raise NotFoundError("Funnel", funnel_id)
    page = db.query(FunnelPage).filter(
        FunnelPage.id == entry_page_id,
        FunnelPage.funnel_id == funnel_id,
    ).first()
    if not page:
        raise NotFoundError("Page", entry_page_id)

    if visitor_meta.session_key:
        existing = _find_by_key(db, org_id, funnel_id, visitor_meta.session_key)
        if existing:
            return existing

    session = FunnelSession(
        org_id=org_id,
        funnel_id=funnel_id,
        session_key=visitor_meta.session_key or uuid.uuid4().hex,
        visitor_id=visitor_meta.visitor_id,
        contact_id=visitor_meta.contact_id,
        status=SessionStatus.ACTIVE,
        ip_address=visitor_meta.ip_address,
        user_agent=visitor_meta.user_agent,
        device=classify_device(visitor_meta.user_agent),
        referrer=visitor_meta.referrer,
        utm_source=visitor_meta.utm_source,
        utm_medium=visitor_meta.utm_medium,
        utm_campaign=visitor_meta.utm_campaign,
        utm_content=visitor_meta.utm_content,
        utm_term=visitor_meta.utm_term,
        traffic_source=classify_traffic_source(
            visitor_meta.utm_source, visitor_meta.utm_medium, visitor_meta.referrer
        ),
        entry_page_id=entry_page_id,
        current_page_id=entry_page_id,
        exit_page_id=entry_page_id,
        page_views=[_page_view(entry_page_id, now)],
        total_page_views=1,
        total_time_spent=0,
        converted=False,
        conversion_value=0,
        last_activity_at=now,
        session_metadata=visitor_meta.metadata,
        created_at=now,
        updated_at=now,
    )
    db.add(session)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the same session_key first
        db.rollback()
        existing = _find_by_key(db, org_id, funnel_id, visitor_meta.session_key)
        if existing:
            return existing
        raise
    db.refresh(session)
    logger.info("[SESSION] Created session %s on funnel %s (%s, %s)", session.id, funnel_id, session.device, session.traffic_source)
    return session


def _find_by_key(db: Session, org_id: UUID, funnel_id: UUID, session_key: Optional[str]) -> Optional[FunnelSession]:
    if not session_key:
        return None
    existing = db.query(FunnelSession).filter(FunnelSession.session_key == session_key).first()
    if existing and (existing.org_id != org_id or existing.funnel_id != funnel_id):
        raise ValidationError("session_key is already in use by another funnel", field="session_key")
    return existing


def record_page_view(
    db: Session,
    org_id: UUID,
    session_id: UUID,
    page_id: UUID,
    now: Optional[datetime] = None,
) -> FunnelSession:
    """Append a page view; the gap since the previous view becomes that view's time_spent"""
    now = naive_utc(now) or datetime.utcnow()
    session = get_session(db, org_id, session_id)
    if session.is_terminal:
        raise InvalidStateError(
            f"Cannot record page view: session is {session.status.value}",
            session_id=str(session_id),
            status=session.status.value,
        )
    page = db.query(FunnelPage).filter(
        FunnelPage.id == page_id,
        FunnelPage.funnel_id == session.funnel_id,
    ).first()
    if not page:
        raise NotFoundError("Page", page_id)

    views = [dict(v) for v in (session.page_views or [])]
    gap = 0
    if views:
        last_viewed_at = datetime.fromisoformat(views[-1]["viewed_at"])
        gap = max(0, int((now - last_viewed_at).total_seconds()))
        views[-1]["time_spent"] = gap
    views.append(_page_view(page_id, now))

    _guarded_update(
        db, org_id, session_id, "record page view",
        page_views=views,
        current_page_id=page_id,
        exit_page_id=page_id,
        total_page_views=FunnelSession.total_page_views + 1,
        total_time_spent=FunnelSession.total_time_spent + gap,
        last_activity_at=now,
        updated_at=now,
    )
    db.commit()
    db.refresh(session)
    return session


def mark_converted(
    db: Session,
    org_id: UUID,
    session_id: UUID,
    page_id: Optional[UUID] = None,
    value: float = 0,
    now: Optional[datetime] = None,
    commit: bool = True,
) -> FunnelSession:
    """
    Move an active session to `converted`.

    Also credits the session's variant and queues the funnel's conversion
    webhooks. With commit=False the caller owns the transaction.
    """
    now = naive_utc(now) or datetime.utcnow()
    value = float(value or 0)
    session = get_session(db, org_id, session_id)
    conversion_page_id = page_id or session.current_page_id

    _guarded_update(
        db, org_id, session_id, "convert",
        status=SessionStatus.CONVERTED,
        converted=True,
        converted_at=now,
        conversion_page_id=conversion_page_id,
        conversion_value=FunnelSession.conversion_value + value,
        last_activity_at=now,
        updated_at=now,
    )

    if session.variant_id is not None:
        db.execute(
            update(FunnelVariant)
            .where(FunnelVariant.id == session.variant_id)
            .values(
                conversions=FunnelVariant.conversions + 1,
                revenue=FunnelVariant.revenue + value,
                conversion_rate=case(
                    (FunnelVariant.visitors > 0, (FunnelVariant.conversions + 1) * 100.0 / FunnelVariant.visitors),
                    else_=0.0,
                ),
            )
            .execution_options(synchronize_session=False)
        )

    funnel = db.query(Funnel).filter(Funnel.id == session.funnel_id).first()
    for url in funnel.conversion_webhooks() if funnel else []:
        outbound_queue.enqueue(
            db,
            org_id,
            OutboundKind.WEBHOOK,
            url,
            payload={
                "event": "session.converted",
                "funnel_id": str(session.funnel_id),
                "session_id": str(session.id),
                "variant_id": str(session.variant_id) if session.variant_id else None,
                "conversion_page_id": str(conversion_page_id) if conversion_page_id else None,
                "conversion_value": value,
                "converted_at": now.isoformat(),
            },
            funnel_id=session.funnel_id,
            session_id=session.id,
        )

    if commit:
        db.commit()
    else:
        db.flush()
    db.refresh(session)
    logger.info("[SESSION] Session %s converted (value=%.2f)", session_id, value)
    return session


def _terminate(db: Session, org_id: UUID, session_id: UUID, status: SessionStatus, now: Optional[datetime]) -> FunnelSession:
    now = naive_utc(now) or datetime.utcnow()
    session = get_session(db, org_id, session_id)
    _guarded_update(
        db, org_id, session_id, f"mark {status.value}",
        status=status,
        updated_at=now,
    )
    db.commit()
    db.refresh(session)
    return session


def mark_bounced(db: Session, org_id: UUID, session_id: UUID, now: Optional[datetime] = None) -> FunnelSession:
    return _terminate(db, org_id, session_id, SessionStatus.BOUNCED, now)


def mark_abandoned(db: Session, org_id: UUID, session_id: UUID, now: Optional[datetime] = None) -> FunnelSession:
    return _terminate(db, org_id, session_id, SessionStatus.ABANDONED, now)


def sweep_abandoned(
    db: Session,
    now: Optional[datetime] = None,
    timeout_minutes: Optional[int] = None,
    org_id: Optional[UUID] = None,
) -> int:
    """Abandon idle, unconverted multi-page sessions. Returns the number swept."""
    now = naive_utc(now) or datetime.utcnow()
    if timeout_minutes is None:
        timeout_minutes = settings.ABANDON_TIMEOUT_MINUTES
    cutoff = now - timedelta(minutes=timeout_minutes)

    stmt = (
        update(FunnelSession)
        .where(
            FunnelSession.status == SessionStatus.ACTIVE,
            FunnelSession.converted.is_(False),
            FunnelSession.total_page_views > 1,
            FunnelSession.last_activity_at < cutoff,
        )
        .values(status=SessionStatus.ABANDONED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if org_id is not None:
        stmt = stmt.where(FunnelSession.org_id == org_id)

    swept = db.execute(stmt).rowcount
    db.commit()
    logger.info("[SESSION] Swept %d abandoned sessions (idle > %d min)", swept, timeout_minutes)
    return swept
