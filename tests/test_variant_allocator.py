"""Variant allocation, winner declaration and comparison"""
import random
from collections import Counter
from datetime import datetime

import pytest
from sqlalchemy import update

from app.core.config import settings
from app.core.exceptions import InvalidOperationError, NotFoundError, ValidationError
from app.models.session import FunnelSession
from app.models.variant import VariantStatus
from app.schemas.tracking import VisitorMeta
from app.services import session_tracker, variant_allocator


def test_weighted_draw_follows_traffic_split(make_variant):
    a = make_variant("A", traffic=70, is_control=True)
    b = make_variant("B", traffic=30)
    rng = random.Random(42)

    counts = Counter(variant_allocator.pick_variant([a, b], rng).variant_key for _ in range(1000))

    assert 650 <= counts["A"] <= 750
    assert counts["A"] + counts["B"] == 1000


def test_zero_weights_fall_back_to_uniform(make_variant):
    a = make_variant("A", traffic=0)
    b = make_variant("B", traffic=0)
    rng = random.Random(7)

    counts = Counter(variant_allocator.pick_variant([a, b], rng).variant_key for _ in range(400))

    assert counts["A"] > 100 and counts["B"] > 100


def test_seeded_allocation_is_reproducible(db, funnel, make_variant):
    make_variant("A", traffic=50, is_control=True)
    make_variant("B", traffic=50)

    first = [variant_allocator.assign(db, funnel.org_id, funnel.id, rng=random.Random(3)).variant_key for _ in range(5)]
    second = [variant_allocator.assign(db, funnel.org_id, funnel.id, rng=random.Random(3)).variant_key for _ in range(5)]

    assert first == second


def test_assign_counts_visitors(db, funnel, make_variant):
    a = make_variant("A", traffic=100, is_control=True)
    make_variant("B", traffic=0)
    make_variant("C", traffic=100, status=VariantStatus.PAUSED)

    for _ in range(3):
        assert variant_allocator.assign(db, funnel.org_id, funnel.id).id == a.id

    db.refresh(a)
    assert a.visitors == 3


def test_assign_without_active_variants(db, funnel, make_variant):
    make_variant("A", status=VariantStatus.PAUSED)
    with pytest.raises(NotFoundError):
        variant_allocator.assign(db, funnel.org_id, funnel.id)


def test_assign_is_tenant_scoped(db, funnel, other_org, make_variant):
    make_variant("A")
    with pytest.raises(NotFoundError):
        variant_allocator.assign(db, other_org.id, funnel.id)


def test_session_allocation_is_sticky(db, funnel, pages, make_variant):
    a = make_variant("A", traffic=50, is_control=True)
    b = make_variant("B", traffic=50)
    session = session_tracker.create(db, funnel.org_id, funnel.id, pages[0].id, VisitorMeta(), now=datetime(2026, 10, 19, 9))

    first = variant_allocator.assign_for_session(db, funnel.org_id, session.id, rng=random.Random(1))
    for seed in range(10):
        again = variant_allocator.assign_for_session(db, funnel.org_id, session.id, rng=random.Random(seed))
        assert again.id == first.id

    db.refresh(a)
    db.refresh(b)
    assert a.visitors + b.visitors == 1
    assert db.get(FunnelSession, session.id).variant_id == first.id


def test_concurrent_allocation_keeps_first_writer(db, funnel, pages, make_variant, monkeypatch):
    a = make_variant("A", traffic=100, is_control=True)
    b = make_variant("B", traffic=0)
    session = session_tracker.create(db, funnel.org_id, funnel.id, pages[0].id, VisitorMeta(), now=datetime(2026, 10, 19, 9))
    real_assign = variant_allocator.assign

    def assign_then_lose_race(db, org_id, funnel_id, rng=None):
        chosen = real_assign(db, org_id, funnel_id, rng=rng)
        db.execute(update(FunnelSession).where(FunnelSession.id == session.id).values(variant_id=b.id))
        db.commit()
        return chosen

    monkeypatch.setattr(variant_allocator, "assign", assign_then_lose_race)

    result = variant_allocator.assign_for_session(db, funnel.org_id, session.id)

    assert result.id == b.id
    db.refresh(a)
    assert a.visitors == 0
    assert db.get(FunnelSession, session.id).variant_id == b.id


def test_declare_winner_pauses_the_rest(db, funnel, make_variant):
    a = make_variant("A", is_control=True)
    b = make_variant("B")
    c = make_variant("C", status=VariantStatus.ARCHIVED)

    winner = variant_allocator.declare_winner(db, funnel.org_id, funnel.id, b.id)
    declared_at = winner.declared_winner_at

    assert winner.status == VariantStatus.WINNER
    assert declared_at is not None
    for variant in (a, c):
        db.refresh(variant)
    assert a.status == VariantStatus.PAUSED
    assert c.status == VariantStatus.ARCHIVED

    # Declaring the same winner again changes nothing
    again = variant_allocator.declare_winner(db, funnel.org_id, funnel.id, b.id)
    assert again.status == VariantStatus.WINNER
    assert again.declared_winner_at == declared_at


def test_declare_new_winner_replaces_old(db, funnel, make_variant):
    a = make_variant("A", is_control=True)
    b = make_variant("B")
    variant_allocator.declare_winner(db, funnel.org_id, funnel.id, a.id)
    variant_allocator.declare_winner(db, funnel.org_id, funnel.id, b.id)

    db.refresh(a)
    assert a.status == VariantStatus.PAUSED
    winners = [v for v in variant_allocator.list_variants(db, funnel.org_id, funnel.id) if v.status == VariantStatus.WINNER]
    assert [v.id for v in winners] == [b.id]


def test_declare_winner_rejects_foreign_variant(db, org, funnel, make_variant):
    from app.models.funnel import Funnel

    other_funnel = Funnel(org_id=org.id, name="Other")
    db.add(other_funnel)
    db.commit()
    stranger = make_variant("A", target=other_funnel)

    with pytest.raises(InvalidOperationError):
        variant_allocator.declare_winner(db, org.id, funnel.id, stranger.id)


def test_compare_reports_every_variant(db, funnel, make_variant, monkeypatch):
    monkeypatch.setattr(settings, "SIGNIFICANCE_MIN_VISITORS", 100)
    a = make_variant("A", is_control=True)
    b = make_variant("B")
    a.visitors, a.conversions = 200, 10
    b.visitors, b.conversions = 150, 15
    db.commit()

    report = variant_allocator.compare(db, funnel.org_id, funnel.id)

    assert [v.variant_key for v in report.variants] == ["A", "B"]
    assert report.total_visitors == 350
    assert report.total_conversions == 25
    assert report.overall_conversion_rate == pytest.approx(7.14)
    assert report.best_performing == "B"
    assert report.statistical_significance is True
    assert "100 visitors" in report.significance_method


def test_compare_below_sample_size(db, funnel, make_variant):
    a = make_variant("A", is_control=True)
    a.visitors = 5
    db.commit()

    report = variant_allocator.compare(db, funnel.org_id, funnel.id)
    assert report.statistical_significance is False


def test_compare_ties_go_to_first_variant(db, funnel, make_variant):
    make_variant("A", is_control=True)
    make_variant("B")

    report = variant_allocator.compare(db, funnel.org_id, funnel.id)

    assert report.best_performing == "A"
    assert report.overall_conversion_rate == 0.0


def test_variant_crud_rules(db, funnel, make_variant):
    control = make_variant("A", is_control=True)
    with pytest.raises(ValidationError):
        variant_allocator.create_variant(db, funnel.org_id, funnel.id, {"name": "Dup", "variant_key": "A"})
    with pytest.raises(ValidationError):
        variant_allocator.update_variant(db, funnel.org_id, funnel.id, control.id, {"status": VariantStatus.WINNER})
    with pytest.raises(InvalidOperationError):
        variant_allocator.delete_variant(db, funnel.org_id, control.id)

    b = variant_allocator.create_variant(db, funnel.org_id, funnel.id, {"name": "B", "variant_key": "B"})
    variant_allocator.delete_variant(db, funnel.org_id, b.id)
    assert [v.variant_key for v in variant_allocator.list_variants(db, funnel.org_id, funnel.id)] == ["A"]
