"""
Analytics rollup: raw sessions -> time-bucketed FunnelAnalytics rows.

Buckets are keyed by (funnel, period, period start, variant). A rollup
recomputes the whole bucket from the sessions created inside its window and
overwrites the stored row, so it can be re-run at any time and converges
on the same values. Rates are percentages rounded to two decimals.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.models.analytics import AnalyticsPeriod, FunnelAnalytics
from app.models.funnel import Funnel, FunnelPage
from app.models.session import FunnelSession, SessionStatus
from app.models.variant import FunnelVariant
from app.utils.dates import naive_utc
from app.utils.visitor import DEVICES, TRAFFIC_SOURCES

logger = logging.getLogger(__name__)

LOW_CONVERSION_THRESHOLD = 2.0  # percent
LOW_TRAFFIC_THRESHOLD = 100  # sessions


def _rate(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def _as_datetime(value) -> datetime:
    if isinstance(value, datetime):
        return naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    raise TypeError(f"Expected a date or datetime, got {type(value).__name__}")


def bucket_window(period: AnalyticsPeriod, period_date) -> Tuple[datetime, datetime]:
    """[start, end) of the bucket containing `period_date`"""
    moment = _as_datetime(period_date)
    period = AnalyticsPeriod(period)

    if period == AnalyticsPeriod.HOURLY:
        start = moment.replace(minute=0, second=0, microsecond=0)
        return start, start + timedelta(hours=1)

    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == AnalyticsPeriod.DAILY:
        return day, day + timedelta(days=1)
    if period == AnalyticsPeriod.WEEKLY:
        start = day - timedelta(days=day.weekday())
        return start, start + timedelta(days=7)

    start = day.replace(day=1)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


@dataclass
class _PageStats:
    views: int = 0
    sessions: set = field(default_factory=set)
    visitors: set = field(default_factory=set)
    timed_views: int = 0
    time_total: int = 0
    conversions: int = 0
    exits: int = 0


def _visitor_key(session: FunnelSession) -> str:
    return session.visitor_id or session.session_key


def _canonical_pages(db: Session, org_id: UUID, funnel_id: UUID) -> List[str]:
    pages = db.query(FunnelPage.id).filter(
        FunnelPage.org_id == org_id,
        FunnelPage.funnel_id == funnel_id,
    ).order_by(FunnelPage.position, FunnelPage.created_at).all()
    return [str(row.id) for row in pages]


def _breakdown(values, known) -> Dict[str, int]:
    counts = {key: 0 for key in known}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    return {key: counts[key] for key in sorted(counts)}


def _page_metrics(sessions: List[FunnelSession], canonical: List[str]) -> List[dict]:
    stats: Dict[str, _PageStats] = defaultdict(_PageStats)

    for s in sessions:
        views = s.page_views or []
        for index, view in enumerate(views):
            page = str(view.get("page_id"))
            page_stats = stats[page]
            page_stats.views += 1
            page_stats.sessions.add(s.id)
            page_stats.visitors.add(_visitor_key(s))
            # The last view has no successor, so its time on page is unknown
            if index < len(views) - 1:
                page_stats.timed_views += 1
                page_stats.time_total += int(view.get("time_spent") or 0)
        if s.converted and s.conversion_page_id is not None:
            stats[str(s.conversion_page_id)].conversions += 1
        if not s.converted and s.exit_page_id is not None:
            stats[str(s.exit_page_id)].exits += 1

    ordered = [p for p in canonical if stats.get(p) and stats[p].views]
    ordered += sorted(p for p in stats if p not in canonical and stats[p].views)

    metrics = []
    for page in ordered:
        page_stats = stats[page]
        reached = len(page_stats.sessions)
        metrics.append({
            "page_id": page,
            "views": page_stats.views,
            "unique_sessions": reached,
            "unique_visitors": len(page_stats.visitors),
            "average_time_on_page": round(page_stats.time_total / page_stats.timed_views, 2) if page_stats.timed_views else 0.0,
            "conversions": page_stats.conversions,
            "dropoff_rate": _rate(page_stats.exits, reached),
        })
    return metrics


def _dropoff_points(sessions: List[FunnelSession], canonical: List[str]) -> List[dict]:
    visited = [{str(v.get("page_id")) for v in (s.page_views or [])} for s in sessions]

    points = []
    for current, following in zip(canonical, canonical[1:]):
        reached = sum(1 for pages in visited if current in pages)
        dropoffs = sum(1 for pages in visited if current in pages and following not in pages)
        points.append({
            "from_page_id": current,
            "to_page_id": following,
            "reached": reached,
            "dropoffs": dropoffs,
            "dropoff_rate": _rate(dropoffs, reached),
        })
    return points


def compute_metrics(sessions: List[FunnelSession], canonical: List[str]) -> dict:
    """Bucket metrics for `sessions`; pure so the rollup stays a thin upsert"""
    visitors = len(sessions)
    converted = [s for s in sessions if s.converted]
    conversions = len(converted)
    bounces = sum(1 for s in sessions if s.status == SessionStatus.BOUNCED)
    revenue = round(sum(float(s.conversion_value or 0) for s in converted), 2)
    total_time = sum(s.total_time_spent or 0 for s in sessions)

    return {
        "visitors": visitors,
        "unique_visitors": len({_visitor_key(s) for s in sessions}),
        "page_views": sum(s.total_page_views or 0 for s in sessions),
        "bounces": bounces,
        "bounce_rate": _rate(bounces, visitors),
        "average_time_on_site": int(round(total_time / visitors)) if visitors else 0,
        "conversions": conversions,
        "conversion_rate": _rate(conversions, visitors),
        "revenue": revenue,
        "average_order_value": round(revenue / conversions, 2) if conversions else 0.0,
        "source_breakdown": _breakdown((s.traffic_source or "direct" for s in sessions), TRAFFIC_SOURCES),
        "device_breakdown": _breakdown((s.device or "desktop" for s in sessions), DEVICES),
        "page_analytics": _page_metrics(sessions, canonical),
        "dropoff_points": _dropoff_points(sessions, canonical),
    }


def rollup(
    db: Session,
    org_id: UUID,
    funnel_id: UUID,
    period: AnalyticsPeriod,
    period_date,
    variant_id: Optional[UUID] = None,
) -> FunnelAnalytics:
    """Recompute and upsert one analytics bucket"""
    funnel = db.query(Funnel).filter(Funnel.id == funnel_id, Funnel.org_id == org_id).first()
    if not funnel:
        raise NotFoundError("Funnel", funnel_id)

    variant_key = ""
    if variant_id is not None:
        variant = db.query(FunnelVariant).filter(
            FunnelVariant.id == variant_id,
            FunnelVariant.org_id == org_id,
            FunnelVariant.funnel_id == funnel_id,
        ).first()
        if not variant:
            raise NotFoundError("Variant", variant_id)
        variant_key = variant.variant_key

    period = AnalyticsPeriod(period)
    start, end = bucket_window(period, period_date)

    query = db.query(FunnelSession).filter(
        FunnelSession.org_id == org_id,
        FunnelSession.funnel_id == funnel_id,
        FunnelSession.created_at >= start,
        FunnelSession.created_at < end,
    )
    if variant_id is not None:
        query = query.filter(FunnelSession.variant_id == variant_id)
    sessions = query.order_by(FunnelSession.created_at, FunnelSession.id).all()

    metrics = compute_metrics(sessions, _canonical_pages(db, org_id, funnel_id))
    bucket = _upsert_bucket(db, org_id, funnel_id, period, start, variant_key, variant_id, metrics)

    logger.info(
        "[ROLLUP] Funnel %s %s %s%s: %d sessions, %d conversions",
        funnel_id, period.value, start.isoformat(),
        f" variant {variant_key}" if variant_key else "",
        metrics["visitors"], metrics["conversions"],
    )
    return bucket


def _find_bucket(db: Session, funnel_id: UUID, period: AnalyticsPeriod, start: datetime, variant_key: str):
    return db.query(FunnelAnalytics).filter(
        FunnelAnalytics.funnel_id == funnel_id,
        FunnelAnalytics.period == period,
        FunnelAnalytics.period_date == start,
        FunnelAnalytics.variant_key == variant_key,
    ).first()


def _upsert_bucket(db, org_id, funnel_id, period, start, variant_key, variant_id, metrics) -> FunnelAnalytics:
    now = datetime.utcnow()
    bucket = _find_bucket(db, funnel_id, period, start, variant_key)
    if bucket is None:
        bucket = FunnelAnalytics(
            org_id=org_id,
            funnel_id=funnel_id,
            period=period,
            period_date=start,
            variant_key=variant_key,
            variant_id=variant_id,
        )
        db.add(bucket)

    for key, value in metrics.items():
        setattr(bucket, key, value)
    bucket.computed_at = now

    try:
        db.commit()
    except IntegrityError:
        # A concurrent rollup inserted the bucket first; overwrite it instead
        db.rollback()
        bucket = _find_bucket(db, funnel_id, period, start, variant_key)
        for key, value in metrics.items():
            setattr(bucket, key, value)
        bucket.computed_at = now
        db.commit()

    db.refresh(bucket)
    return bucket


def classify_bounces(
    db: Session,
    org_id: Optional[UUID] = None,
    funnel_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
    window_seconds: Optional[int] = None,
) -> int:
    """Single-page sessions idle past the bounce window become `bounced`. Returns the count."""
    now = naive_utc(now) or datetime.utcnow()
    if window_seconds is None:
        window_seconds = settings.BOUNCE_WINDOW_SECONDS
    cutoff = now - timedelta(seconds=window_seconds)

    stmt = (
        update(FunnelSession)
        .where(
            FunnelSession.status == SessionStatus.ACTIVE,
            FunnelSession.converted.is_(False),
            FunnelSession.total_page_views <= 1,
            FunnelSession.last_activity_at < cutoff,
        )
        .values(status=SessionStatus.BOUNCED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if org_id is not None:
        stmt = stmt.where(FunnelSession.org_id == org_id)
    if funnel_id is not None:
        stmt = stmt.where(FunnelSession.funnel_id == funnel_id)

    bounced = db.execute(stmt).rowcount
    db.commit()
    logger.info("[ROLLUP] Classified %d bounced sessions (idle > %ds)", bounced, window_seconds)
    return bounced


def get_analytics(
    db: Session,
    org_id: UUID,
    funnel_id: UUID,
    period: AnalyticsPeriod,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    variant_id: Optional[UUID] = None,
) -> List[FunnelAnalytics]:
    funnel = db.query(Funnel).filter(Funnel.id == funnel_id, Funnel.org_id == org_id).first()
    if not funnel:
        raise NotFoundError("Funnel", funnel_id)

    query = db.query(FunnelAnalytics).filter(
        FunnelAnalytics.org_id == org_id,
        FunnelAnalytics.funnel_id == funnel_id,
        FunnelAnalytics.period == AnalyticsPeriod(period),
    )
    if variant_id is not None:
        query = query.filter(FunnelAnalytics.variant_id == variant_id)
    else:
        query = query.filter(FunnelAnalytics.variant_key == "")
    if start_date is not None:
        query = query.filter(FunnelAnalytics.period_date >= _as_datetime(start_date))
    if end_date is not None:
        query = query.filter(FunnelAnalytics.period_date <= _as_datetime(end_date))
    return query.order_by(FunnelAnalytics.period_date).all()


def generate_insights(
    db: Session,
    org_id: UUID,
    funnel_id: UUID,
    days: int = 30,
    now: Optional[datetime] = None,
) -> dict:
    """Headline numbers for the last `days` days plus simple heuristic hints"""
    funnel = db.query(Funnel).filter(Funnel.id == funnel_id, Funnel.org_id == org_id).first()
    if not funnel:
        raise NotFoundError("Funnel", funnel_id)

    now = naive_utc(now) or datetime.utcnow()
    base = db.query(FunnelSession).filter(
        FunnelSession.org_id == org_id,
        FunnelSession.funnel_id == funnel_id,
        FunnelSession.created_at >= now - timedelta(days=days),
        FunnelSession.created_at <= now,
    )
    sessions = base.count()
    conversions = base.filter(FunnelSession.converted.is_(True)).count()
    conversion_rate = _rate(conversions, sessions)

    insights = []
    if conversion_rate < LOW_CONVERSION_THRESHOLD:
        insights.append({
            "type": "low_conversion",
            "priority": "high",
            "message": "Conversion rate is below 2%. Consider reviewing your funnel flow and value proposition.",
        })
    if sessions < LOW_TRAFFIC_THRESHOLD:
        insights.append({
            "type": "low_traffic",
            "priority": "medium",
            "message": "Traffic is low. Consider increasing marketing efforts or improving SEO.",
        })

    return {
        "period": f"Last {days} days",
        "total_sessions": sessions,
        "total_conversions": conversions,
        "conversion_rate": conversion_rate,
        "insights": insights,
    }
