#!/usr/bin/env python3
"""
Deliver queued webhooks and emails.

Each run attempts every pending task that is due. Failures are retried on
later runs with exponential backoff and dead-lettered after
OUTBOUND_MAX_ATTEMPTS.

Usage:
    python scripts/dispatch_outbound.py [limit]
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.core.config import settings
from app.core.logging import setup_logging
from app.db.session import SessionLocal
from app.services import outbound_queue


def dispatch_outbound(limit: int = 100):
    db = SessionLocal()
    try:
        summary = outbound_queue.dispatch_due(db, limit=limit)
        if not summary.processed:
            print("✅ Nothing due")
            return summary
        print(f"📤 Processed {summary.processed} task(s)")
        print(f"   - Delivered: {summary.delivered}")
        print(f"   - Retrying: {summary.retried}")
        print(f"   - Dead-lettered: {summary.dead_lettered}")
        return summary
    finally:
        db.close()


if __name__ == "__main__":
    setup_logging(settings.LOG_LEVEL)

    limit = 100
    if len(sys.argv) > 1:
        try:
            limit = int(sys.argv[1])
        except ValueError:
            print(f"❌ Invalid limit: {sys.argv[1]}")
            print("Usage: python scripts/dispatch_outbound.py [limit]")
            sys.exit(1)

    try:
        dispatch_outbound(limit)
    except Exception as e:
        print(f"❌ Dispatch failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
