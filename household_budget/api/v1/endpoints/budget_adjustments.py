from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
import uuid

from household_budget.core.deps import get_db, get_household_id, get_actor_id
from household_budget.schemas.budget import (
    ApplyAdjustmentsRequest,
    ApplyAdjustmentsResult,
    BudgetAdjustment,
    BudgetAdjustmentCreate,
    CategoryAdjustmentHistory,
    CategoryInsights,
    PendingAdjustmentsSummary,
)
from household_budget.services.budget_adjustment_service import BudgetAdjustmentService

router = APIRouter()


@router.post("/", response_model=BudgetAdjustment, status_code=status.HTTP_201_CREATED)
def schedule_adjustment(
    adjustment_in: BudgetAdjustmentCreate,
    household_id: uuid.UUID = Depends(get_household_id),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Schedule a category limit change for the start of next month"""
    return BudgetAdjustmentService(db).schedule(
        household_id,
        category_name=adjustment_in.category_name,
        current_limit=adjustment_in.current_limit,
        new_limit=adjustment_in.new_limit,
        reason=adjustment_in.reason,
        new_category_settings=adjustment_in.new_category_settings,
        created_by=actor_id,
    )


@router.get("/pending", response_model=List[BudgetAdjustment])
def list_pending_adjustments(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """Pending adjustments for a month (next month when omitted)"""
    return BudgetAdjustmentService(db).list_pending(household_id, year, month)


@router.get("/pending/all", response_model=List[BudgetAdjustment])
def list_all_pending_adjustments(
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    return BudgetAdjustmentService(db).list_all_pending(household_id)


@router.delete("/pending")
def cancel_pending_adjustments(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    cancelled = BudgetAdjustmentService(db).cancel_all(household_id, year, month)
    return {"cancelled": cancelled}


@router.get("/applied", response_model=List[BudgetAdjustment])
def list_applied_adjustments(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    return BudgetAdjustmentService(db).list_applied(household_id, year, month)


@router.get("/next-month", response_model=PendingAdjustmentsSummary)
def get_next_month_summary(
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """What will change in the template when next month starts"""
    return BudgetAdjustmentService(db).next_month_summary(household_id)


@router.post("/apply", response_model=ApplyAdjustmentsResult)
def apply_adjustments(
    request: ApplyAdjustmentsRequest,
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """Apply a month's pending adjustments now. Safe to repeat."""
    return BudgetAdjustmentService(db).apply(
        household_id, request.year, request.month, regenerate_locked=request.regenerate_locked
    )


@router.get("/history", response_model=List[CategoryAdjustmentHistory])
def list_category_histories(
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    return BudgetAdjustmentService(db).list_category_histories(household_id)


@router.get("/history/most-adjusted", response_model=List[CategoryAdjustmentHistory])
def get_most_adjusted_categories(
    limit: int = Query(5, ge=1, le=50),
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    return BudgetAdjustmentService(db).most_adjusted_categories(household_id, limit=limit)


@router.get("/history/{category_name}", response_model=CategoryAdjustmentHistory)
def get_category_history(
    category_name: str,
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    return BudgetAdjustmentService(db).get_category_history(household_id, category_name)


@router.get("/history/{category_name}/insights", response_model=CategoryInsights)
def get_category_insights(
    category_name: str,
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    return BudgetAdjustmentService(db).category_insights(household_id, category_name)


@router.delete("/{adjustment_id}", status_code=status.HTTP_204_NO_CONTENT)
def cancel_adjustment(
    adjustment_id: uuid.UUID,
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    BudgetAdjustmentService(db).cancel(household_id, adjustment_id)
