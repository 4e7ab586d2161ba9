"""
A/B variant allocation and lifecycle.

Allocation is a weighted draw over the funnel's active variants. The random
source is passed in by the caller (tests seed it); when omitted a fresh
`random.Random()` is used for the call, so no generator state is shared
between requests.
"""
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import NotFoundError, InvalidOperationError, ValidationError
from app.models.funnel import Funnel
from app.models.session import FunnelSession
from app.models.variant import FunnelVariant, VariantStatus

logger = logging.getLogger(__name__)

SIGNIFICANCE_METHOD = (
    "minimum sample size heuristic: every variant has at least "
    "{min_visitors} visitors; no hypothesis test is performed"
)


@dataclass
class ComparisonReport:
    variants: List[FunnelVariant]
    total_visitors: int
    total_conversions: int
    overall_conversion_rate: float
    best_performing: Optional[str]
    statistical_significance: bool
    significance_method: str


def _get_funnel(db: Session, org_id: UUID, funnel_id: UUID) -> Funnel:
    funnel = db.query(Funnel).filter(Funnel.id == funnel_id, Funnel.org_id == org_id).first()
    if not funnel:
        raise NotFoundError("Funnel", funnel_id)
    return funnel


def _ordered(query):
    return query.order_by(FunnelVariant.variant_key, FunnelVariant.created_at, FunnelVariant.id)


def get_variant(db: Session, org_id: UUID, variant_id: UUID) -> FunnelVariant:
    variant = db.query(FunnelVariant).filter(
        FunnelVariant.id == variant_id,
        FunnelVariant.org_id == org_id,
    ).first()
    if not variant:
        raise NotFoundError("Variant", variant_id)
    return variant


def pick_variant(variants: List[FunnelVariant], rng: random.Random) -> FunnelVariant:
    """
    Weighted draw over `variants` (already in stable order).

    Weights are `traffic_percentage`; they need not sum to 100. When every
    weight is zero or negative the variants are drawn uniformly.
    """
    weights = [max(v.traffic_percentage or 0, 0) for v in variants]
    total_weight = sum(weights)
    if total_weight <= 0:
        weights = [1] * len(variants)
        total_weight = len(variants)

    remaining = rng.random() * total_weight
    chosen = None
    for variant, weight in zip(variants, weights):
        if weight == 0:
            continue
        chosen = variant
        remaining -= weight
        if remaining <= 0:
            return variant
    # Float drift can leave a sliver past the last boundary
    return chosen


def _increment_visitors(db: Session, variant_id: UUID) -> None:
    db.execute(
        update(FunnelVariant)
        .where(FunnelVariant.id == variant_id)
        .values(visitors=FunnelVariant.visitors + 1)
        .execution_options(synchronize_session=False)
    )


def assign(
    db: Session,
    org_id: UUID,
    funnel_id: UUID,
    rng: Optional[random.Random] = None,
) -> FunnelVariant:
    """Allocate one visitor to an active variant and count the visit"""
    _get_funnel(db, org_id, funnel_id)
    variants = _ordered(
        db.query(FunnelVariant).filter(
            FunnelVariant.org_id == org_id,
            FunnelVariant.funnel_id == funnel_id,
            FunnelVariant.status == VariantStatus.ACTIVE,
        )
    ).all()
    if not variants:
        raise NotFoundError("Active variant for funnel", funnel_id)

    variant = pick_variant(variants, rng or random.Random())
    _increment_visitors(db, variant.id)
    db.commit()
    db.refresh(variant)
    logger.debug("[ALLOCATE] Funnel %s -> variant %s", funnel_id, variant.variant_key)
    return variant


def assign_for_session(
    db: Session,
    org_id: UUID,
    session_id: UUID,
    rng: Optional[random.Random] = None,
) -> FunnelVariant:
    """Allocation is sticky: a session keeps the first variant it was given"""
    session = db.query(FunnelSession).filter(
        FunnelSession.id == session_id,
        FunnelSession.org_id == org_id,
    ).first()
    if not session:
        raise NotFoundError("Session", session_id)

    if session.variant_id is not None:
        return get_variant(db, org_id, session.variant_id)

    variant = assign(db, org_id, session.funnel_id, rng=rng)
    result = db.execute(
        update(FunnelSession)
        .where(FunnelSession.id == session_id, FunnelSession.variant_id.is_(None))
        .values(variant_id=variant.id)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    if result.rowcount == 0:
        # A concurrent request attached a variant first; give back our visit
        db.execute(
            update(FunnelVariant)
            .where(FunnelVariant.id == variant.id)
            .values(visitors=FunnelVariant.visitors - 1)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        db.refresh(session)
        return get_variant(db, org_id, session.variant_id)

    db.refresh(session)
    return variant


def declare_winner(db: Session, org_id: UUID, funnel_id: UUID, variant_id: UUID) -> FunnelVariant:
    """Mark `variant_id` as the funnel's single winner and pause its competitors"""
    _get_funnel(db, org_id, funnel_id)
    variant = get_variant(db, org_id, variant_id)
    if variant.funnel_id != funnel_id:
        raise InvalidOperationError(
            "Variant does not belong to this funnel",
            variant_id=str(variant_id),
            funnel_id=str(funnel_id),
        )

    now = datetime.utcnow()
    db.execute(
        update(FunnelVariant)
        .where(
            FunnelVariant.org_id == org_id,
            FunnelVariant.funnel_id == funnel_id,
            FunnelVariant.id != variant_id,
            FunnelVariant.status.in_([VariantStatus.ACTIVE, VariantStatus.WINNER]),
        )
        .values(status=VariantStatus.PAUSED, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    if variant.status != VariantStatus.WINNER:
        variant.status = VariantStatus.WINNER
    if variant.declared_winner_at is None:
        variant.declared_winner_at = now
    db.commit()
    db.refresh(variant)
    logger.info("[ALLOCATE] Variant %s declared winner of funnel %s", variant.variant_key, funnel_id)
    return variant


def list_variants(db: Session, org_id: UUID, funnel_id: UUID) -> List[FunnelVariant]:
    _get_funnel(db, org_id, funnel_id)
    return db.query(FunnelVariant).filter(
        FunnelVariant.org_id == org_id,
        FunnelVariant.funnel_id == funnel_id,
    ).order_by(FunnelVariant.is_control.desc(), FunnelVariant.variant_key).all()


def create_variant(db: Session, org_id: UUID, funnel_id: UUID, data: dict) -> FunnelVariant:
    _get_funnel(db, org_id, funnel_id)
    existing = db.query(FunnelVariant).filter(
        FunnelVariant.funnel_id == funnel_id,
        FunnelVariant.variant_key == data["variant_key"],
    ).first()
    if existing:
        raise ValidationError(
            f"Variant key '{data['variant_key']}' already exists in this funnel",
            field="variant_key",
        )

    variant = FunnelVariant(**data, org_id=org_id, funnel_id=funnel_id)
    db.add(variant)
    db.commit()
    db.refresh(variant)
    return variant


def update_variant(db: Session, org_id: UUID, funnel_id: UUID, variant_id: UUID, data: dict) -> FunnelVariant:
    variant = get_variant(db, org_id, variant_id)
    if variant.funnel_id != funnel_id:
        raise NotFoundError("Variant", variant_id)
    if data.get("status") == VariantStatus.WINNER:
        raise ValidationError("Use declare-winner to promote a variant", field="status")

    for field, value in data.items():
        setattr(variant, field, value)
    variant.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(variant)
    return variant


def delete_variant(db: Session, org_id: UUID, variant_id: UUID) -> None:
    variant = get_variant(db, org_id, variant_id)
    if variant.is_control:
        raise InvalidOperationError("Cannot delete the control variant", variant_id=str(variant_id))
    db.delete(variant)
    db.commit()


def compare(db: Session, org_id: UUID, funnel_id: UUID) -> ComparisonReport:
    """
    Side-by-side counters for every variant of the funnel.

    `statistical_significance` only says each variant has reached
    SIGNIFICANCE_MIN_VISITORS; it is not a significance test.
    """
    _get_funnel(db, org_id, funnel_id)
    variants = _ordered(
        db.query(FunnelVariant).filter(
            FunnelVariant.org_id == org_id,
            FunnelVariant.funnel_id == funnel_id,
        )
    ).all()

    total_visitors = sum(v.visitors for v in variants)
    total_conversions = sum(v.conversions for v in variants)
    overall_rate = round(total_conversions / total_visitors * 100, 2) if total_visitors else 0.0

    best_key = None
    best_rate = -1.0
    for v in variants:
        rate = v.conversions / v.visitors * 100 if v.visitors else 0.0
        if rate > best_rate:
            best_key, best_rate = v.variant_key, rate

    min_visitors = settings.SIGNIFICANCE_MIN_VISITORS
    significant = bool(variants) and all(v.visitors >= min_visitors for v in variants)

    return ComparisonReport(
        variants=variants,
        total_visitors=total_visitors,
        total_conversions=total_conversions,
        overall_conversion_rate=overall_rate,
        best_performing=best_key,
        statistical_significance=significant,
        significance_method=SIGNIFICANCE_METHOD.format(min_visitors=min_visitors),
    )
