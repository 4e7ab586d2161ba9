"""Analytics rollup, bounce classification and insights"""
from datetime import date, datetime, timedelta

import pytest

from app.core.exceptions import NotFoundError
from app.models.analytics import AnalyticsPeriod, FunnelAnalytics
from app.models.session import SessionStatus
from app.schemas.tracking import VisitorMeta
from app.services import analytics_aggregator, session_tracker, variant_allocator
from app.services.analytics_aggregator import bucket_window

T0 = datetime(2026, 10, 19, 9, 0, 0)


def _journey(db, funnel, pages, start, page_count, convert_value=None, **meta):
    session = session_tracker.create(db, funnel.org_id, funnel.id, pages[0].id, VisitorMeta(**meta), now=start)
    for i, page in enumerate(pages[1:page_count], start=1):
        session_tracker.record_page_view(db, funnel.org_id, session.id, page.id, now=start + timedelta(seconds=30 * i))
    if convert_value is not None:
        session_tracker.mark_converted(
            db, funnel.org_id, session.id, value=convert_value, now=start + timedelta(seconds=30 * page_count)
        )
    return session


@pytest.mark.parametrize("period, moment, expected", [
    (AnalyticsPeriod.HOURLY, datetime(2026, 10, 21, 10, 45), (datetime(2026, 10, 21, 10), datetime(2026, 10, 21, 11))),
    (AnalyticsPeriod.DAILY, datetime(2026, 10, 21, 10, 45), (datetime(2026, 10, 21), datetime(2026, 10, 22))),
    (AnalyticsPeriod.WEEKLY, date(2026, 10, 21), (datetime(2026, 10, 19), datetime(2026, 10, 26))),
    (AnalyticsPeriod.MONTHLY, date(2026, 12, 15), (datetime(2026, 12, 1), datetime(2027, 1, 1))),
])
def test_bucket_window(period, moment, expected):
    assert bucket_window(period, moment) == expected


def test_empty_bucket_is_all_zeros(db, funnel, pages):
    bucket = analytics_aggregator.rollup(db, funnel.org_id, funnel.id, AnalyticsPeriod.DAILY, T0)

    assert bucket.period_date == datetime(2026, 10, 19)
    assert bucket.visitors == 0
    assert bucket.conversions == 0
    assert bucket.conversion_rate == 0.0
    assert bucket.bounce_rate == 0.0
    assert bucket.revenue == 0
    assert bucket.average_order_value == 0
    assert bucket.source_breakdown == {k: 0 for k in ("direct", "email", "organic", "paid", "referral", "social")}
    assert bucket.device_breakdown == {"desktop": 0, "mobile": 0, "tablet": 0}
    assert bucket.page_analytics == []
    assert [p["reached"] for p in bucket.dropoff_points] == [0, 0]
    assert [p["dropoff_rate"] for p in bucket.dropoff_points] == [0.0, 0.0]


def test_rollup_metrics_and_dropoff(db, funnel, pages):
    _journey(db, funnel, pages, T0, 1, utm_medium="cpc")
    _journey(db, funnel, pages, T0 + timedelta(minutes=5), 2, utm_source="newsletter")
    _journey(db, funnel, pages, T0 + timedelta(minutes=10), 3, convert_value=100)
    # Outside the bucket
    _journey(db, funnel, pages, T0 + timedelta(days=1), 3, convert_value=500)

    bucket = analytics_aggregator.rollup(db, funnel.org_id, funnel.id, AnalyticsPeriod.DAILY, T0)

    assert bucket.visitors == 3
    assert bucket.page_views == 6
    assert bucket.conversions == 1
    assert bucket.conversion_rate == pytest.approx(33.33)
    assert bucket.revenue == pytest.approx(100)
    assert bucket.average_order_value == pytest.approx(100)
    assert bucket.average_time_on_site == 30
    assert bucket.source_breakdown["paid"] == 1
    assert bucket.source_breakdown["email"] == 1
    assert bucket.source_breakdown["direct"] == 1
    assert bucket.device_breakdown["desktop"] == 3

    landing, checkout, thanks = (str(p.id) for p in pages)
    assert [p["page_id"] for p in bucket.page_analytics] == [landing, checkout, thanks]
    assert [p["views"] for p in bucket.page_analytics] == [3, 2, 1]
    assert [p["dropoff_rate"] for p in bucket.page_analytics] == [33.33, 50.0, 0.0]

    assert bucket.dropoff_points == [
        {"from_page_id": landing, "to_page_id": checkout, "reached": 3, "dropoffs": 1, "dropoff_rate": 33.33},
        {"from_page_id": checkout, "to_page_id": thanks, "reached": 2, "dropoffs": 1, "dropoff_rate": 50.0},
    ]


def test_rollup_is_idempotent(db, funnel, pages):
    _journey(db, funnel, pages, T0, 2)
    first = analytics_aggregator.rollup(db, funnel.org_id, funnel.id, AnalyticsPeriod.DAILY, T0)
    first_id, first_visitors = first.id, first.visitors

    _journey(db, funnel, pages, T0 + timedelta(hours=1), 1)
    second = analytics_aggregator.rollup(db, funnel.org_id, funnel.id, AnalyticsPeriod.DAILY, T0 + timedelta(hours=3))
    third = analytics_aggregator.rollup(db, funnel.org_id, funnel.id, AnalyticsPeriod.DAILY, T0)

    assert first_visitors == 1
    assert second.id == first_id
    assert third.visitors == second.visitors == 2
    assert db.query(FunnelAnalytics).count() == 1


def test_variant_buckets_are_separate(db, funnel, pages, make_variant):
    a = make_variant("A", traffic=100, is_control=True)
    make_variant("B", traffic=0)
    session = _journey(db, funnel, pages, T0, 1)
    variant_allocator.assign_for_session(db, funnel.org_id, session.id)
    _journey(db, funnel, pages, T0, 1)

    overall = analytics_aggregator.rollup(db, funnel.org_id, funnel.id, AnalyticsPeriod.DAILY, T0)
    for_a = analytics_aggregator.rollup(db, funnel.org_id, funnel.id, AnalyticsPeriod.DAILY, T0, variant_id=a.id)

    assert overall.visitors == 2
    assert for_a.visitors == 1
    assert for_a.variant_key == "A"

    stored = analytics_aggregator.get_analytics(db, funnel.org_id, funnel.id, AnalyticsPeriod.DAILY)
    assert [b.id for b in stored] == [overall.id]
    stored_a = analytics_aggregator.get_analytics(db, funnel.org_id, funnel.id, AnalyticsPeriod.DAILY, variant_id=a.id)
    assert [b.id for b in stored_a] == [for_a.id]


def test_rollup_is_tenant_scoped(db, funnel, other_org):
    with pytest.raises(NotFoundError):
        analytics_aggregator.rollup(db, other_org.id, funnel.id, AnalyticsPeriod.DAILY, T0)


def test_classify_bounces(db, funnel, pages):
    single = _journey(db, funnel, pages, T0, 1)
    multi = _journey(db, funnel, pages, T0, 2)
    fresh = _journey(db, funnel, pages, T0 + timedelta(minutes=50), 1)

    bounced = analytics_aggregator.classify_bounces(db, now=T0 + timedelta(hours=1), window_seconds=1800)

    assert bounced == 1
    for s in (single, multi, fresh):
        db.refresh(s)
    assert single.status == SessionStatus.BOUNCED
    assert multi.status == SessionStatus.ACTIVE
    assert fresh.status == SessionStatus.ACTIVE

    bucket = analytics_aggregator.rollup(db, funnel.org_id, funnel.id, AnalyticsPeriod.DAILY, T0)
    assert bucket.bounces == 1
    assert bucket.bounce_rate == pytest.approx(33.33)


def test_insights_flag_low_traffic_and_conversion(db, funnel, pages):
    _journey(db, funnel, pages, T0, 1)
    _journey(db, funnel, pages, T0, 3, convert_value=10)

    insights = analytics_aggregator.generate_insights(db, funnel.org_id, funnel.id, days=30, now=T0 + timedelta(days=1))

    assert insights["period"] == "Last 30 days"
    assert insights["total_sessions"] == 2
    assert insights["total_conversions"] == 1
    assert insights["conversion_rate"] == pytest.approx(50.0)
    assert [i["type"] for i in insights["insights"]] == ["low_traffic"]


def test_insights_on_empty_funnel(db, funnel):
    insights = analytics_aggregator.generate_insights(db, funnel.org_id, funnel.id, now=T0)
    assert insights["total_sessions"] == 0
    assert insights["conversion_rate"] == 0.0
    assert {i["type"] for i in insights["insights"]} == {"low_conversion", "low_traffic"}
