"""
Goal matching for recorded events.

A goal completes at most once per session. When several goals match the
same event the primary goal wins, then the oldest.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from app.models.event import EventType, FunnelEvent
from app.models.goal import FunnelGoal, GoalStatus, GoalType
from app.models.session import FunnelSession

logger = logging.getLogger(__name__)


def _order_value(event_data: Dict[str, Any], conversion_value: float) -> float:
    for key in ("order_value", "orderValue", "value", "amount"):
        if key in event_data:
            try:
                return float(event_data[key])
            except (TypeError, ValueError):
                return 0.0
    return float(conversion_value or 0)


def _threshold(config: Dict[str, Any], key: str, default: Optional[float]) -> Optional[float]:
    """Numeric goal threshold; a value that isn't a number disables the goal"""
    raw = config.get(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("[GOAL] Ignoring non-numeric %s=%r", key, raw)
        return None


def goal_matches(
    goal: FunnelGoal,
    event_type: EventType,
    page_id: Optional[str],
    element_id: Optional[str],
    event_name: Optional[str],
    event_data: Dict[str, Any],
    conversion_value: float,
    time_from_start: int,
) -> bool:
    config = goal.config if isinstance(goal.config, dict) else {}

    if goal.type == GoalType.PAGE_VISIT:
        target = config.get("target_page_id")
        return event_type == EventType.PAGE_VIEW and target is not None and str(target) == str(page_id)

    if goal.type == GoalType.FORM_SUBMISSION:
        form_id = config.get("form_id")
        return event_type == EventType.FORM_SUBMIT and (not form_id or form_id == element_id)

    if goal.type == GoalType.BUTTON_CLICK:
        button_id = config.get("button_id")
        return event_type == EventType.BUTTON_CLICK and (not button_id or button_id == element_id)

    if goal.type == GoalType.TIME_ON_SITE:
        minimum = _threshold(config, "minimum_seconds", None)
        return minimum is not None and time_from_start >= minimum

    if goal.type == GoalType.PURCHASE:
        minimum = _threshold(config, "minimum_order_value", 0.0)
        return (
            minimum is not None
            and event_type == EventType.PURCHASE
            and _order_value(event_data, conversion_value) >= minimum
        )

    if goal.type == GoalType.CUSTOM_EVENT:
        wanted = config.get("event_name")
        return event_type == EventType.CUSTOM_EVENT and bool(wanted) and wanted == event_name

    return False


def match_goal(
    db: Session,
    session: FunnelSession,
    event_type: EventType,
    page_id: Optional[str] = None,
    element_id: Optional[str] = None,
    event_name: Optional[str] = None,
    event_data: Optional[Dict[str, Any]] = None,
    conversion_value: float = 0,
    time_from_start: int = 0,
) -> Optional[FunnelGoal]:
    """First active goal this event completes for the session, if any"""
    goals = db.query(FunnelGoal).filter(
        FunnelGoal.org_id == session.org_id,
        FunnelGoal.funnel_id == session.funnel_id,
        FunnelGoal.status == GoalStatus.ACTIVE,
    ).order_by(FunnelGoal.is_primary.desc(), FunnelGoal.created_at).all()
    if not goals:
        return None

    completed = {
        row.goal_id for row in db.query(FunnelEvent.goal_id).filter(
            FunnelEvent.session_id == session.id,
            FunnelEvent.goal_id.isnot(None),
        )
    }

    for goal in goals:
        if goal.id in completed:
            continue
        if goal_matches(
            goal, event_type, page_id, element_id, event_name,
            event_data or {}, conversion_value, time_from_start,
        ):
            return goal
    return None


def record_completion(db: Session, goal: FunnelGoal, value: float, time_to_complete: int) -> None:
    """Bump the goal's counters in one UPDATE; the caller commits"""
    funnel_sessions = db.query(func.count(FunnelSession.id)).filter(
        FunnelSession.funnel_id == goal.funnel_id,
    ).scalar() or 0

    new_count = FunnelGoal.completion_count + 1
    db.execute(
        update(FunnelGoal)
        .where(FunnelGoal.id == goal.id)
        .values(
            completion_count=new_count,
            total_value=FunnelGoal.total_value + float(value or 0),
            average_time_to_complete=(
                FunnelGoal.average_time_to_complete * FunnelGoal.completion_count + time_to_complete
            ) / new_count,
            completion_rate=new_count * 100.0 / max(funnel_sessions, 1),
        )
        .execution_options(synchronize_session=False)
    )
    logger.debug("[GOAL] Goal %s completed (value=%s, t=%ss)", goal.id, value, time_to_complete)
