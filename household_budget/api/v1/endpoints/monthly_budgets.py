from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session
from typing import List, Optional
import uuid

from household_budget.core.deps import get_db, get_household_id
from household_budget.schemas.budget import (
    BudgetComparisonSummary,
    CategoryLimitUpdate,
    ConsolidatedMonthView,
    MonthlyBudget,
    SyncCategoriesRequest,
    SyncCategoriesResult,
)
from household_budget.services.monthly_budget_service import MonthlyBudgetService

router = APIRouter()


@router.get("/", response_model=List[MonthlyBudget])
def list_monthly_budgets(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    limit: int = Query(12, ge=1, le=120),
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """Existing monthly budgets for a year, or the most recent ones"""
    service = MonthlyBudgetService(db)
    if year is not None:
        return service.list_for_year(household_id, year)
    return service.list_recent(household_id, limit=limit)


@router.get("/{year}/{month}", response_model=MonthlyBudget)
def get_monthly_budget(
    year: int = Path(..., ge=2000, le=2100),
    month: int = Path(..., ge=1, le=12),
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """Monthly budget for the period, created from the active template on first access"""
    return MonthlyBudgetService(db).get_or_create(household_id, year, month)


@router.get("/{year}/{month}/compare/original", response_model=BudgetComparisonSummary)
def compare_to_original(
    year: int = Path(..., ge=2000, le=2100),
    month: int = Path(..., ge=1, le=12),
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """In-month edits against the month-start limits; empty when nothing was edited"""
    return MonthlyBudgetService(db).compare_to_original(household_id, year, month)


@router.get("/{year}/{month}/compare/template", response_model=BudgetComparisonSummary)
def compare_to_template(
    year: int = Path(..., ge=2000, le=2100),
    month: int = Path(..., ge=1, le=12),
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    return MonthlyBudgetService(db).compare_to_template(household_id, year, month)


@router.get("/{year}/{month}/consolidated", response_model=ConsolidatedMonthView)
def get_consolidated_view(
    year: int = Path(..., ge=2000, le=2100),
    month: int = Path(..., ge=1, le=12),
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """Month limits with merged categories combined into their current target"""
    return MonthlyBudgetService(db).consolidated_view(household_id, year, month)


@router.put("/{snapshot_id}/categories/{category_name}", response_model=MonthlyBudget)
def update_category_limit(
    snapshot_id: uuid.UUID,
    category_name: str,
    update: CategoryLimitUpdate,
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """Change a category limit for this month only"""
    return MonthlyBudgetService(db).update_category_limit(
        household_id, snapshot_id, category_name, update.monthly_limit
    )


@router.post("/{snapshot_id}/sync-categories", response_model=SyncCategoriesResult)
def sync_new_categories(
    snapshot_id: uuid.UUID,
    request: SyncCategoriesRequest,
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """Pull template categories the month is missing; requires explicit_opt_in"""
    added, snapshot = MonthlyBudgetService(db).sync_new_categories_from_template(
        household_id, snapshot_id, explicit_opt_in=request.explicit_opt_in
    )
    return SyncCategoriesResult(added=added, monthly_budget=snapshot)


@router.post("/{snapshot_id}/lock", response_model=MonthlyBudget)
def lock_monthly_budget(
    snapshot_id: uuid.UUID,
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    return MonthlyBudgetService(db).lock(household_id, snapshot_id)


@router.post("/{snapshot_id}/unlock", response_model=MonthlyBudget)
def unlock_monthly_budget(
    snapshot_id: uuid.UUID,
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    return MonthlyBudgetService(db).unlock(household_id, snapshot_id)
