#!/usr/bin/env python3
"""
Recompute analytics buckets.

Rolls up one period bucket for a single funnel, or for every funnel when
--funnel-id is omitted. Buckets are overwritten, so re-running is safe.

Usage:
    python scripts/run_rollup.py --period daily --date 2026-10-18
    python scripts/run_rollup.py --period hourly --funnel-id <uuid> --by-variant
"""
import sys
import os
import argparse
import uuid
from datetime import datetime, timedelta

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.db.session import SessionLocal
from app.models.analytics import AnalyticsPeriod
from app.models.funnel import Funnel
from app.models.variant import FunnelVariant
from app.services import analytics_aggregator


def _default_date(period: AnalyticsPeriod) -> datetime:
    """The most recent complete bucket"""
    now = datetime.utcnow()
    if period == AnalyticsPeriod.HOURLY:
        return now - timedelta(hours=1)
    if period == AnalyticsPeriod.DAILY:
        return now - timedelta(days=1)
    if period == AnalyticsPeriod.WEEKLY:
        return now - timedelta(days=7)
    return now.replace(day=1) - timedelta(days=1)


def run_rollup(period: AnalyticsPeriod, period_date: datetime, funnel_id: uuid.UUID = None, by_variant: bool = False) -> int:
    db = SessionLocal()
    try:
        query = db.query(Funnel)
        if funnel_id:
            query = query.filter(Funnel.id == funnel_id)
        funnels = query.order_by(Funnel.created_at).all()
        if not funnels:
            print("⚠️  No funnels to roll up")
            return 0

        start, _ = analytics_aggregator.bucket_window(period, period_date)
        print(f"📊 Rolling up {period.value} bucket starting {start.isoformat()} for {len(funnels)} funnel(s)...")

        buckets = 0
        for funnel in funnels:
            bucket = analytics_aggregator.rollup(db, funnel.org_id, funnel.id, period, period_date)
            buckets += 1
            print(f"   - {funnel.name}: {bucket.visitors} sessions, {bucket.conversions} conversions ({bucket.conversion_rate}%)")

            if by_variant:
                variants = db.query(FunnelVariant).filter(FunnelVariant.funnel_id == funnel.id).all()
                for variant in variants:
                    analytics_aggregator.rollup(db, funnel.org_id, funnel.id, period, period_date, variant_id=variant.id)
                    buckets += 1

        print(f"✅ Wrote {buckets} bucket(s)")
        return buckets
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Recompute funnel analytics buckets")
    parser.add_argument("--period", choices=[p.value for p in AnalyticsPeriod], default=AnalyticsPeriod.DAILY.value)
    parser.add_argument("--date", help="Any date/time inside the bucket (ISO 8601); defaults to the last complete bucket")
    parser.add_argument("--funnel-id", help="Only roll up this funnel")
    parser.add_argument("--by-variant", action="store_true", help="Also write one bucket per variant")
    args = parser.parse_args()

    period = AnalyticsPeriod(args.period)
    try:
        period_date = datetime.fromisoformat(args.date) if args.date else _default_date(period)
        funnel_id = uuid.UUID(args.funnel_id) if args.funnel_id else None
    except ValueError as e:
        print(f"❌ {e}")
        sys.exit(2)

    try:
        run_rollup(period, period_date, funnel_id, by_variant=args.by_variant)
    except Exception as e:
        print(f"❌ Rollup failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
