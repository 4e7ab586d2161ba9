#!/usr/bin/env python3
"""
Close out idle sessions.

Single-page sessions idle past BOUNCE_WINDOW_SECONDS become `bounced`;
multi-page sessions idle past ABANDON_TIMEOUT_MINUTES become `abandoned`.
Meant to run on a schedule (e.g. every 5 minutes) before the rollup.

Usage:
    python scripts/sweep_sessions.py [org_id]
"""
import sys
import os
import uuid

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from app.db.session import SessionLocal
from app.services import analytics_aggregator, session_tracker


def sweep_sessions(org_id: uuid.UUID = None):
    db = SessionLocal()
    try:
        if org_id:
            print(f"🧹 Sweeping idle sessions for org {org_id}...")
        else:
            print("🧹 Sweeping idle sessions for all orgs...")

        bounced = analytics_aggregator.classify_bounces(db, org_id=org_id)
        abandoned = session_tracker.sweep_abandoned(db, org_id=org_id)

        print(f"✅ {bounced} bounced, {abandoned} abandoned")
        return bounced, abandoned
    finally:
        db.close()


if __name__ == "__main__":
    org_id = None
    if len(sys.argv) > 1:
        try:
            org_id = uuid.UUID(sys.argv[1])
        except ValueError:
            print(f"❌ Invalid org_id format: {sys.argv[1]}")
            print("Usage: python scripts/sweep_sessions.py [org_id]")
            sys.exit(1)

    try:
        sweep_sessions(org_id)
    except Exception as e:
        print(f"❌ Sweep failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
