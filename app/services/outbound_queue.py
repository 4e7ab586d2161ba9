"""
Outbound side effects (webhooks, transactional email) as queued tasks.

The runtime never calls out while handling a tracking request. It writes an
OutboundTask in the same transaction as the session/event change, and
`dispatch_due` delivers due tasks later (scripts/dispatch_outbound.py).

Delivery is at-least-once with bounded retry: a failed attempt is recorded
as an EventError note and rescheduled with exponential backoff until
`max_attempts`, after which the task is parked as `dead_letter`.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.event_error import EventError
from app.models.outbound_task import OutboundKind, OutboundStatus, OutboundTask
from app.utils.dates import naive_utc

logger = logging.getLogger(__name__)

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"


class OutboundDeliveryError(Exception):
    """Delivery attempt failed (non-2xx response or missing configuration)"""


@dataclass
class DispatchSummary:
    delivered: int = 0
    retried: int = 0
    dead_lettered: int = 0

    @property
    def processed(self) -> int:
        return self.delivered + self.retried + self.dead_lettered


def enqueue(
    db: Session,
    org_id: UUID,
    kind: OutboundKind,
    target: str,
    payload: Optional[Dict[str, Any]] = None,
    funnel_id: Optional[UUID] = None,
    session_id: Optional[UUID] = None,
    headers: Optional[Dict[str, str]] = None,
) -> OutboundTask:
    """Add a pending task to the caller's transaction; the caller commits"""
    task = OutboundTask(
        org_id=org_id,
        funnel_id=funnel_id,
        session_id=session_id,
        kind=kind,
        target=target,
        payload=payload or {},
        headers=headers or {},
        status=OutboundStatus.PENDING,
        attempts=0,
        max_attempts=settings.OUTBOUND_MAX_ATTEMPTS,
        next_attempt_at=datetime.utcnow(),
    )
    db.add(task)
    logger.debug("[OUTBOUND] Queued %s task for %s", kind.value, target)
    return task


def backoff_for(attempts: int) -> timedelta:
    """Delay before the next attempt after `attempts` failures"""
    return timedelta(seconds=settings.OUTBOUND_BACKOFF_SECONDS * 2 ** max(attempts - 1, 0))


def _send_webhook(task: OutboundTask, client: httpx.Client) -> None:
    headers = {"content-type": "application/json", **(task.headers or {})}
    resp = client.post(task.target, json=task.payload or {}, headers=headers)
    if not 200 <= resp.status_code < 300:
        raise OutboundDeliveryError(f"Webhook responded {resp.status_code}")


def _send_email(task: OutboundTask, client: httpx.Client) -> None:
    api_key = (settings.BREVO_API_KEY or "").strip()
    if not api_key:
        raise OutboundDeliveryError("BREVO_API_KEY is not configured")

    payload = task.payload or {}
    body = {
        "sender": {"email": settings.EMAIL_SENDER},
        "to": [{"email": task.target.strip().lower()}],
        "subject": payload.get("subject") or "",
        "htmlContent": payload.get("html_content") or "",
    }
    headers = {
        "accept": "application/json",
        "content-type": "application/json",
        "api-key": api_key,
    }
    resp = client.post(BREVO_SEND_URL, json=body, headers=headers)
    if resp.status_code not in (200, 201, 202):
        raise OutboundDeliveryError(f"Brevo responded {resp.status_code}: {resp.text[:200]}")


def deliver(task: OutboundTask, client: httpx.Client) -> None:
    if task.kind == OutboundKind.WEBHOOK:
        _send_webhook(task, client)
    elif task.kind == OutboundKind.EMAIL:
        _send_email(task, client)
    else:
        raise OutboundDeliveryError(f"Unknown outbound kind: {task.kind}")


def _record_failure(db: Session, task: OutboundTask, reason: str, now: datetime) -> bool:
    """Returns True when the task has been dead-lettered"""
    task.attempts = (task.attempts or 0) + 1
    task.last_error = reason
    task.updated_at = now

    db.add(EventError(
        org_id=task.org_id,
        funnel_id=task.funnel_id,
        session_id=task.session_id,
        outbound_task_id=task.id,
        payload={"kind": task.kind.value, "target": task.target, "attempt": task.attempts},
        reason=reason,
    ))

    if task.attempts >= task.max_attempts:
        task.status = OutboundStatus.DEAD_LETTER
        logger.error("[OUTBOUND] Task %s dead-lettered after %d attempts: %s", task.id, task.attempts, reason)
        return True

    task.next_attempt_at = now + backoff_for(task.attempts)
    logger.warning(
        "[OUTBOUND] Task %s attempt %d/%d failed, retrying at %s: %s",
        task.id, task.attempts, task.max_attempts, task.next_attempt_at.isoformat(), reason,
    )
    return False


def dispatch_due(
    db: Session,
    now: Optional[datetime] = None,
    client: Optional[httpx.Client] = None,
    limit: int = 100,
) -> DispatchSummary:
    """Attempt every pending task whose next_attempt_at has passed, oldest first"""
    now = naive_utc(now) or datetime.utcnow()
    summary = DispatchSummary()

    tasks = db.query(OutboundTask).filter(
        OutboundTask.status == OutboundStatus.PENDING,
        OutboundTask.next_attempt_at <= now,
    ).order_by(OutboundTask.next_attempt_at, OutboundTask.created_at).limit(limit).all()

    if not tasks:
        return summary

    owns_client = client is None
    if owns_client:
        client = httpx.Client(timeout=settings.OUTBOUND_TIMEOUT_SECONDS)

    try:
        for task in tasks:
            try:
                deliver(task, client)
            except (httpx.HTTPError, OutboundDeliveryError) as e:
                if _record_failure(db, task, str(e) or e.__class__.__name__, now):
                    summary.dead_lettered += 1
                else:
                    summary.retried += 1
            else:
                task.attempts = (task.attempts or 0) + 1
                task.status = OutboundStatus.DELIVERED
                task.delivered_at = now
                task.last_error = None
                task.updated_at = now
                summary.delivered += 1
            db.commit()
    finally:
        if owns_client:
            client.close()

    logger.info(
        "[OUTBOUND] Dispatched %d tasks: %d delivered, %d retrying, %d dead-lettered",
        summary.processed, summary.delivered, summary.retried, summary.dead_lettered,
    )
    return summary
