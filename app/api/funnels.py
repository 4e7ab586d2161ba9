"""
Funnel Admin API
CRUD for funnels, pages, variants, conditions and goals, plus analytics
queries and on-demand rollups. Every route is scoped to the X-Org-Id tenant.
"""
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from sqlalchemy import desc, asc
from typing import List, Optional
from datetime import datetime
from uuid import UUID

from app.db.session import get_db
from app.api.deps import get_org_id
from app.models.funnel import Funnel, FunnelPage, FunnelStatus
from app.models.condition import FunnelCondition
from app.models.goal import FunnelGoal
from app.models.analytics import AnalyticsPeriod
from app.schemas.funnel import (
    Funnel as FunnelSchema,
    FunnelCreate,
    FunnelUpdate,
    FunnelWithPages,
    FunnelPage as FunnelPageSchema,
    FunnelPageCreate,
    FunnelPageUpdate,
    PageOrder,
    Variant as VariantSchema,
    VariantCreate,
    VariantUpdate,
    DeclareWinnerRequest,
    DeclareWinnerResponse,
    VariantComparison,
    ComparisonSummary,
    Condition as ConditionSchema,
    ConditionCreate,
    ConditionUpdate,
    Goal as GoalSchema,
    GoalCreate,
    GoalUpdate,
    validate_goal_config,
)
from app.schemas.analytics import AnalyticsBucket, RollupRequest, FunnelInsights
from app.services import variant_allocator, analytics_aggregator

router = APIRouter()

# Condition fields stored as JSON; dumped in json mode so UUIDs become strings
_CONDITION_JSON_FIELDS = {"rules", "actions", "else_actions", "targeting"}


def _get_funnel(db: Session, org_id: UUID, funnel_id: UUID) -> Funnel:
    funnel = db.query(Funnel).filter(
        Funnel.id == funnel_id,
        Funnel.org_id == org_id
    ).first()

    if not funnel:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Funnel not found"
        )
    return funnel


def _check_slug_available(db: Session, slug: Optional[str], funnel_id: Optional[UUID] = None):
    if not slug:
        return
    query = db.query(Funnel).filter(Funnel.slug == slug)
    if funnel_id:
        query = query.filter(Funnel.id != funnel_id)
    if query.first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Funnel slug already in use"
        )


def _check_page_in_funnel(db: Session, org_id: UUID, funnel_id: UUID, page_id: Optional[UUID]):
    if page_id is None:
        return
    page = db.query(FunnelPage).filter(
        FunnelPage.id == page_id,
        FunnelPage.funnel_id == funnel_id,
        FunnelPage.org_id == org_id
    ).first()
    if not page:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="page_id does not belong to this funnel"
        )


# Funnel CRUD
@router.get("", response_model=List[FunnelSchema])
def list_funnels(
    status_filter: Optional[FunnelStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """List all funnels for the organization"""
    query = db.query(Funnel).filter(Funnel.org_id == org_id)

    if status_filter:
        query = query.filter(Funnel.status == status_filter)

    return query.order_by(desc(Funnel.created_at)).all()


@router.post("", response_model=FunnelSchema, status_code=status.HTTP_201_CREATED)
def create_funnel(
    funnel_data: FunnelCreate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """Create a new funnel"""
    _check_slug_available(db, funnel_data.slug)

    funnel = Funnel(**funnel_data.model_dump(), org_id=org_id)
    db.add(funnel)
    db.commit()
    db.refresh(funnel)
    return funnel


@router.get("/{funnel_id}", response_model=FunnelWithPages)
def get_funnel(
    funnel_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """Get funnel details with pages in canonical order"""
    funnel = _get_funnel(db, org_id, funnel_id)

    pages = db.query(FunnelPage).filter(
        FunnelPage.funnel_id == funnel_id,
        FunnelPage.org_id == org_id
    ).order_by(asc(FunnelPage.position), asc(FunnelPage.created_at)).all()

    funnel_dict = {
        **FunnelSchema.model_validate(funnel, from_attributes=True).model_dump(),
        "pages": [FunnelPageSchema.model_validate(page, from_attributes=True) for page in pages]
    }
    return FunnelWithPages(**funnel_dict)


@router.patch("/{funnel_id}", response_model=FunnelSchema)
def update_funnel(
    funnel_id: UUID,
    funnel_update: FunnelUpdate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """Update a funnel"""
    funnel = _get_funnel(db, org_id, funnel_id)

    update_data = funnel_update.model_dump(exclude_unset=True)
    if "slug" in update_data:
        _check_slug_available(db, update_data["slug"], funnel_id)

    for field, value in update_data.items():
        setattr(funnel, field, value)

    funnel.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(funnel)
    return funnel


@router.delete("/{funnel_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_funnel(
    funnel_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """Delete a funnel (cascades to pages, variants, goals, conditions, sessions and analytics)"""
    funnel = _get_funnel(db, org_id, funnel_id)
    db.delete(funnel)
    db.commit()
    return None


# Funnel Pages CRUD
@router.get("/{funnel_id}/pages", response_model=List[FunnelPageSchema])
def list_funnel_pages(
    funnel_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    _get_funnel(db, org_id, funnel_id)
    return db.query(FunnelPage).filter(
        FunnelPage.funnel_id == funnel_id,
        FunnelPage.org_id == org_id
    ).order_by(asc(FunnelPage.position), asc(FunnelPage.created_at)).all()


@router.post("/{funnel_id}/pages", response_model=FunnelPageSchema, status_code=status.HTTP_201_CREATED)
def create_funnel_page(
    funnel_id: UUID,
    page_data: FunnelPageCreate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """Add a page to a funnel"""
    _get_funnel(db, org_id, funnel_id)

    page = FunnelPage(**page_data.model_dump(), org_id=org_id, funnel_id=funnel_id)
    db.add(page)
    db.commit()
    db.refresh(page)
    return page


@router.post("/{funnel_id}/pages/reorder", response_model=List[FunnelPageSchema])
def reorder_funnel_pages(
    funnel_id: UUID,
    page_orders: List[PageOrder],
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """Reorder funnel pages by updating position"""
    _get_funnel(db, org_id, funnel_id)

    for item in page_orders:
        page = db.query(FunnelPage).filter(
            FunnelPage.id == item.page_id,
            FunnelPage.funnel_id == funnel_id,
            FunnelPage.org_id == org_id
        ).first()

        if page:
            page.position = item.position
            page.updated_at = datetime.utcnow()

    db.commit()

    return db.query(FunnelPage).filter(
        FunnelPage.funnel_id == funnel_id,
        FunnelPage.org_id == org_id
    ).order_by(asc(FunnelPage.position), asc(FunnelPage.created_at)).all()


@router.patch("/{funnel_id}/pages/{page_id}", response_model=FunnelPageSchema)
def update_funnel_page(
    funnel_id: UUID,
    page_id: UUID,
    page_update: FunnelPageUpdate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    page = db.query(FunnelPage).filter(
        FunnelPage.id == page_id,
        FunnelPage.funnel_id == funnel_id,
        FunnelPage.org_id == org_id
    ).first()

    if not page:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Page not found"
        )

    for field, value in page_update.model_dump(exclude_unset=True).items():
        setattr(page, field, value)

    page.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(page)
    return page


@router.delete("/{funnel_id}/pages/{page_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_funnel_page(
    funnel_id: UUID,
    page_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    page = db.query(FunnelPage).filter(
        FunnelPage.id == page_id,
        FunnelPage.funnel_id == funnel_id,
        FunnelPage.org_id == org_id
    ).first()

    if not page:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Page not found"
        )

    db.delete(page)
    db.commit()
    return None


# Variants
@router.get("/{funnel_id}/variants", response_model=List[VariantSchema])
def list_variants(
    funnel_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """List variants, control first"""
    return variant_allocator.list_variants(db, org_id, funnel_id)


@router.post("/{funnel_id}/variants", response_model=VariantSchema, status_code=status.HTTP_201_CREATED)
def create_variant(
    funnel_id: UUID,
    variant_data: VariantCreate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    return variant_allocator.create_variant(db, org_id, funnel_id, variant_data.model_dump())


@router.get("/{funnel_id}/variants/comparison", response_model=VariantComparison)
def compare_variants(
    funnel_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """
    Side-by-side variant performance.
    statistical_significance is a minimum-sample-size flag, see significance_method.
    """
    report = variant_allocator.compare(db, org_id, funnel_id)
    return VariantComparison(
        variants=[VariantSchema.model_validate(v, from_attributes=True) for v in report.variants],
        summary=ComparisonSummary(
            total_visitors=report.total_visitors,
            total_conversions=report.total_conversions,
            overall_conversion_rate=report.overall_conversion_rate,
            best_performing=report.best_performing,
            statistical_significance=report.statistical_significance,
            significance_method=report.significance_method,
        ),
    )


@router.post("/{funnel_id}/variants/declare-winner", response_model=DeclareWinnerResponse)
def declare_winner(
    funnel_id: UUID,
    request: DeclareWinnerRequest,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """Promote one variant to winner; every other active variant is paused"""
    winner = variant_allocator.declare_winner(db, org_id, funnel_id, request.variant_id)
    others = [v for v in variant_allocator.list_variants(db, org_id, funnel_id) if v.id != winner.id]
    return DeclareWinnerResponse(
        winner=VariantSchema.model_validate(winner, from_attributes=True),
        others=[VariantSchema.model_validate(v, from_attributes=True) for v in others],
    )


@router.patch("/{funnel_id}/variants/{variant_id}", response_model=VariantSchema)
def update_variant(
    funnel_id: UUID,
    variant_id: UUID,
    variant_update: VariantUpdate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    return variant_allocator.update_variant(
        db, org_id, funnel_id, variant_id, variant_update.model_dump(exclude_unset=True)
    )


@router.delete("/{funnel_id}/variants/{variant_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_variant(
    funnel_id: UUID,
    variant_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """Delete a variant. The control variant cannot be deleted (409)."""
    variant = variant_allocator.get_variant(db, org_id, variant_id)
    if variant.funnel_id != funnel_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Variant not found"
        )
    variant_allocator.delete_variant(db, org_id, variant_id)
    return None


# Conditions
@router.get("/{funnel_id}/conditions", response_model=List[ConditionSchema])
def list_conditions(
    funnel_id: UUID,
    page_id: Optional[UUID] = Query(None),
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    _get_funnel(db, org_id, funnel_id)
    query = db.query(FunnelCondition).filter(
        FunnelCondition.funnel_id == funnel_id,
        FunnelCondition.org_id == org_id
    )
    if page_id:
        query = query.filter(FunnelCondition.page_id == page_id)
    return query.order_by(asc(FunnelCondition.execution_order), asc(FunnelCondition.created_at)).all()


@router.post("/{funnel_id}/conditions", response_model=ConditionSchema, status_code=status.HTTP_201_CREATED)
def create_condition(
    funnel_id: UUID,
    condition_data: ConditionCreate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """Create a condition; rules and actions are validated against their tagged shapes"""
    _get_funnel(db, org_id, funnel_id)
    _check_page_in_funnel(db, org_id, funnel_id, condition_data.page_id)

    condition_dict = condition_data.model_dump(exclude=_CONDITION_JSON_FIELDS)
    condition_dict.update(condition_data.model_dump(mode="json", include=_CONDITION_JSON_FIELDS))

    condition = FunnelCondition(**condition_dict, org_id=org_id, funnel_id=funnel_id)
    db.add(condition)
    db.commit()
    db.refresh(condition)
    return condition


@router.patch("/{funnel_id}/conditions/{condition_id}", response_model=ConditionSchema)
def update_condition(
    funnel_id: UUID,
    condition_id: UUID,
    condition_update: ConditionUpdate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    condition = db.query(FunnelCondition).filter(
        FunnelCondition.id == condition_id,
        FunnelCondition.funnel_id == funnel_id,
        FunnelCondition.org_id == org_id
    ).first()

    if not condition:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Condition not found"
        )

    update_data = condition_update.model_dump(exclude_unset=True, exclude=_CONDITION_JSON_FIELDS)
    update_data.update(
        condition_update.model_dump(mode="json", exclude_unset=True, include=_CONDITION_JSON_FIELDS)
    )
    if update_data.get("page_id"):
        _check_page_in_funnel(db, org_id, funnel_id, update_data["page_id"])

    for field, value in update_data.items():
        if field in ("rules", "actions", "else_actions") and value is None:
            value = []
        setattr(condition, field, value)

    condition.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(condition)
    return condition


@router.delete("/{funnel_id}/conditions/{condition_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_condition(
    funnel_id: UUID,
    condition_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    condition = db.query(FunnelCondition).filter(
        FunnelCondition.id == condition_id,
        FunnelCondition.funnel_id == funnel_id,
        FunnelCondition.org_id == org_id
    ).first()

    if not condition:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Condition not found"
        )

    db.delete(condition)
    db.commit()
    return None


# Goals
@router.get("/{funnel_id}/goals", response_model=List[GoalSchema])
def list_goals(
    funnel_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """List goals, primary first"""
    _get_funnel(db, org_id, funnel_id)
    return db.query(FunnelGoal).filter(
        FunnelGoal.funnel_id == funnel_id,
        FunnelGoal.org_id == org_id
    ).order_by(desc(FunnelGoal.is_primary), asc(FunnelGoal.created_at)).all()


@router.post("/{funnel_id}/goals", response_model=GoalSchema, status_code=status.HTTP_201_CREATED)
def create_goal(
    funnel_id: UUID,
    goal_data: GoalCreate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    _get_funnel(db, org_id, funnel_id)

    goal = FunnelGoal(**goal_data.model_dump(), org_id=org_id, funnel_id=funnel_id)
    db.add(goal)
    db.commit()
    db.refresh(goal)
    return goal


@router.patch("/{funnel_id}/goals/{goal_id}", response_model=GoalSchema)
def update_goal(
    funnel_id: UUID,
    goal_id: UUID,
    goal_update: GoalUpdate,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    goal = db.query(FunnelGoal).filter(
        FunnelGoal.id == goal_id,
        FunnelGoal.funnel_id == funnel_id,
        FunnelGoal.org_id == org_id
    ).first()

    if not goal:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Goal not found"
        )

    update_data = goal_update.model_dump(exclude_unset=True)
    if update_data.get("config") is not None:
        try:
            update_data["config"] = validate_goal_config(goal.type, update_data["config"])
        except PydanticValidationError as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=e.errors(include_url=False, include_context=False)
            )

    for field, value in update_data.items():
        setattr(goal, field, value)

    goal.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(goal)
    return goal


@router.delete("/{funnel_id}/goals/{goal_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_goal(
    funnel_id: UUID,
    goal_id: UUID,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    goal = db.query(FunnelGoal).filter(
        FunnelGoal.id == goal_id,
        FunnelGoal.funnel_id == funnel_id,
        FunnelGoal.org_id == org_id
    ).first()

    if not goal:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Goal not found"
        )

    db.delete(goal)
    db.commit()
    return None


# Analytics
@router.get("/{funnel_id}/analytics", response_model=List[AnalyticsBucket])
def get_funnel_analytics(
    funnel_id: UUID,
    period: AnalyticsPeriod = Query(AnalyticsPeriod.DAILY),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    variant_id: Optional[UUID] = Query(None),
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """Stored analytics buckets for the funnel, oldest first"""
    return analytics_aggregator.get_analytics(
        db, org_id, funnel_id, period,
        start_date=start_date, end_date=end_date, variant_id=variant_id,
    )


@router.post("/{funnel_id}/analytics/rollup", response_model=AnalyticsBucket)
def rollup_funnel_analytics(
    funnel_id: UUID,
    request: RollupRequest,
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    """Recompute one bucket now (same computation as scripts/run_rollup.py)"""
    return analytics_aggregator.rollup(
        db, org_id, funnel_id, request.period, request.period_date, variant_id=request.variant_id
    )


@router.get("/{funnel_id}/insights", response_model=FunnelInsights)
def get_funnel_insights(
    funnel_id: UUID,
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id)
):
    return analytics_aggregator.generate_insights(db, org_id, funnel_id, days=days)
