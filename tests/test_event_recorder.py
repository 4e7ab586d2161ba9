"""Event log ordering, conversions and goal completion"""
from datetime import datetime, timedelta

import pytest

from app.models.event import EventType, FunnelEvent
from app.models.goal import FunnelGoal, GoalType
from app.models.session import SessionStatus
from app.schemas.tracking import EventPayload, VisitorMeta
from app.services import event_recorder, session_tracker, variant_allocator

T0 = datetime(2026, 10, 19, 9, 0, 0)


@pytest.fixture
def session(db, funnel, pages):
    return session_tracker.create(db, funnel.org_id, funnel.id, pages[0].id, VisitorMeta(), now=T0)


def _record(db, session, event_type, seconds, **payload):
    return event_recorder.record(
        db, session.org_id, session.id, event_type, EventPayload(**payload), now=T0 + timedelta(seconds=seconds)
    )


def _goal(db, funnel, goal_type, config, is_primary=False, value=0):
    goal = FunnelGoal(
        org_id=funnel.org_id,
        funnel_id=funnel.id,
        name=goal_type.value,
        type=goal_type,
        config=config,
        is_primary=is_primary,
        value=value,
    )
    db.add(goal)
    db.commit()
    return goal


def test_sequence_and_timing(db, session, pages):
    first = _record(db, session, EventType.PAGE_VIEW, 5, page_id=pages[0].id)
    second = _record(db, session, EventType.BUTTON_CLICK, 20, element_id="cta")

    assert (first.sequence, second.sequence) == (1, 2)
    assert first.time_from_start == 5
    assert first.time_from_last_event == 5
    assert second.time_from_start == 20
    assert second.time_from_last_event == 15
    assert second.funnel_id == session.funnel_id


def test_late_client_time_is_clamped(db, session):
    _record(db, session, EventType.SCROLL_DEPTH, 60)
    late = _record(db, session, EventType.BUTTON_CLICK, 61, event_timestamp=T0 + timedelta(seconds=10))

    assert late.event_time == T0 + timedelta(seconds=60)
    assert late.event_metadata["client_time"] == (T0 + timedelta(seconds=10)).isoformat()
    assert late.time_from_last_event == 0

    events = db.query(FunnelEvent).filter(FunnelEvent.session_id == session.id).order_by(FunnelEvent.sequence).all()
    times = [e.event_time for e in events]
    assert times == sorted(times)


def test_conversion_event_converts_session(db, funnel, session, pages, make_variant):
    variant = make_variant("A", traffic=100, is_control=True)
    variant_allocator.assign_for_session(db, funnel.org_id, session.id)

    event = _record(db, session, EventType.PURCHASE, 30, page_id=pages[2].id, is_conversion=True, conversion_value=49.5)

    assert event.is_conversion is True
    db.refresh(session)
    assert session.status == SessionStatus.CONVERTED
    assert session.conversion_value == pytest.approx(49.5)
    assert session.conversion_page_id == pages[2].id
    assert session.converted_at == T0 + timedelta(seconds=30)
    db.refresh(variant)
    assert variant.conversions == 1
    assert variant.revenue == pytest.approx(49.5)


def test_repeat_conversion_is_logged_but_not_applied(db, funnel, session, make_variant):
    variant = make_variant("A", traffic=100, is_control=True)
    variant_allocator.assign_for_session(db, funnel.org_id, session.id)

    _record(db, session, EventType.PURCHASE, 30, is_conversion=True, conversion_value=20)
    repeat = _record(db, session, EventType.PURCHASE, 40, is_conversion=True, conversion_value=20)

    assert repeat.sequence == 2
    db.refresh(session)
    db.refresh(variant)
    assert session.conversion_value == pytest.approx(20)
    assert variant.conversions == 1


def test_events_on_finished_sessions_are_still_recorded(db, session):
    session_tracker.mark_bounced(db, session.org_id, session.id)
    event = _record(db, session, EventType.EXIT_INTENT, 5)
    assert event.sequence == 1


def test_primary_goal_converts_with_goal_value(db, funnel, session):
    goal = _goal(db, funnel, GoalType.PURCHASE, {"minimum_order_value": 50}, is_primary=True, value=99)

    small = _record(db, session, EventType.PURCHASE, 10, event_data={"order_value": 20})
    assert small.goal_id is None

    event = _record(db, session, EventType.PURCHASE, 30, event_data={"order_value": 120})

    assert event.goal_id == goal.id
    assert event.is_conversion is True
    assert event.conversion_value == pytest.approx(99)
    db.refresh(session)
    db.refresh(goal)
    assert session.status == SessionStatus.CONVERTED
    assert goal.completion_count == 1
    assert goal.total_value == pytest.approx(99)
    assert goal.average_time_to_complete == pytest.approx(30)
    assert goal.completion_rate == pytest.approx(100.0)


def test_goal_completes_once_per_session(db, funnel, session):
    goal = _goal(db, funnel, GoalType.BUTTON_CLICK, {"button_id": "cta"})

    other = _record(db, session, EventType.BUTTON_CLICK, 5, element_id="footer-link")
    first = _record(db, session, EventType.BUTTON_CLICK, 10, element_id="cta")
    second = _record(db, session, EventType.BUTTON_CLICK, 20, element_id="cta")

    assert other.goal_id is None
    assert first.goal_id == goal.id
    assert first.is_conversion is False
    assert second.goal_id is None
    db.refresh(goal)
    assert goal.completion_count == 1
    db.refresh(session)
    assert session.status == SessionStatus.ACTIVE


@pytest.mark.parametrize("goal_type, config, event_type, payload, seconds", [
    (GoalType.PAGE_VISIT, "thank_you", EventType.PAGE_VIEW, {}, 5),
    (GoalType.FORM_SUBMISSION, {"form_id": "optin"}, EventType.FORM_SUBMIT, {"element_id": "optin"}, 5),
    (GoalType.TIME_ON_SITE, {"minimum_seconds": 120}, EventType.SCROLL_DEPTH, {}, 150),
    (GoalType.CUSTOM_EVENT, {"event_name": "video_50"}, EventType.CUSTOM_EVENT, {"event_name": "video_50"}, 5),
])
def test_goal_types(db, funnel, session, pages, goal_type, config, event_type, payload, seconds):
    if config == "thank_you":
        config = {"target_page_id": str(pages[2].id)}
        payload = {"page_id": pages[2].id}
    goal = _goal(db, funnel, goal_type, config)

    event = _record(db, session, event_type, seconds, **payload)

    assert event.goal_id == goal.id


@pytest.mark.parametrize("goal_type, config", [
    (GoalType.TIME_ON_SITE, {"minimum_seconds": "five minutes"}),
    (GoalType.PURCHASE, {"minimum_order_value": "lots"}),
    (GoalType.TIME_ON_SITE, ["not", "a", "dict"]),
])
def test_malformed_goal_config_never_blocks_events(db, funnel, session, goal_type, config):
    _goal(db, funnel, goal_type, config)

    click = _record(db, session, EventType.BUTTON_CLICK, 400, element_id="cta")
    purchase = _record(db, session, EventType.PURCHASE, 410, event_data={"order_value": 500})

    assert (click.sequence, purchase.sequence) == (1, 2)
    assert click.goal_id is None
    assert purchase.goal_id is None
    db.refresh(session)
    assert session.status == SessionStatus.ACTIVE
