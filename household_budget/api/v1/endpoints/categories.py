from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Dict, Any, Literal, Optional
import uuid

from household_budget.core.deps import get_db, get_household_id, get_actor_id
from household_budget.schemas.category import (
    CategoryCreate,
    CategoryUpdate,
    CategoryRename,
    CategoryRetire,
    CategoryResponse,
    CategoryWithUsage,
    CategoryMergeRequest,
    CategoryMergeResult,
    CategoryMergeHistoryEntry,
)
from household_budget.services.category_service import CategoryService

router = APIRouter()


@router.get("/", response_model=List[CategoryResponse])
def get_categories(
    include_inactive: bool = Query(False, description="Include inactive categories"),
    include_deleted: bool = Query(False, description="Include deleted and merged categories"),
    category_type: Optional[Literal["expense", "income"]] = Query(None, alias="type", description="Only expense or income categories"),
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """Get all categories for the household"""
    return CategoryService.get_household_categories(
        db=db,
        household_id=household_id,
        include_inactive=include_inactive,
        include_deleted=include_deleted,
        category_type=category_type,
    )


@router.get("/stats", response_model=Dict[str, Any])
def get_category_stats(
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """Get category usage statistics"""
    return CategoryService.get_category_usage_stats(db=db, household_id=household_id)


@router.get("/merge-history", response_model=List[CategoryMergeHistoryEntry])
def get_merge_history(
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    return CategoryService.get_merge_history(db=db, household_id=household_id)


@router.post("/merge", response_model=CategoryMergeResult)
def merge_categories(
    merge_request: CategoryMergeRequest,
    household_id: uuid.UUID = Depends(get_household_id),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Fold one category into another, combining limits and moving transactions"""
    return CategoryService.merge_categories(
        db=db,
        household_id=household_id,
        source_category_id=merge_request.source_category_id,
        target_category_id=merge_request.target_category_id,
        merged_by=actor_id,
        reason=merge_request.reason,
    )


@router.post("/", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
def create_category(
    category_data: CategoryCreate,
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """Create a new category"""
    return CategoryService.create_category(db=db, household_id=household_id, category_data=category_data)


@router.get("/{category_id}", response_model=CategoryWithUsage)
def get_category(
    category_id: uuid.UUID,
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    category = CategoryService.get_category(db, household_id, category_id)
    response = CategoryWithUsage.model_validate(category)
    response.transaction_count = CategoryService.usage_count(db, household_id, category_id)
    return response


@router.get("/{category_id}/lineage", response_model=List[CategoryMergeHistoryEntry])
def get_category_lineage(
    category_id: uuid.UUID,
    household_id: uuid.UUID = Depends(get_household_id),
    db: Session = Depends(get_db)
):
    """Every merge that fed into this category, including chained ones"""
    CategoryService.get_category(db, household_id, category_id)
    return CategoryService.get_merge_lineage(db, household_id, category_id)


@router.put("/{category_id}", response_model=CategoryResponse)
def update_category(
    category_id: uuid.UUID,
    category_data: CategoryUpdate,
    household_id: uuid.UUID = Depends(get_household_id),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Update an existing category"""
    return CategoryService.update_category(
        db=db,
        household_id=household_id,
        category_id=category_id,
        category_data=category_data,
        actor_id=actor_id,
    )


@router.post("/{category_id}/rename", response_model=CategoryResponse)
def rename_category(
    category_id: uuid.UUID,
    rename: CategoryRename,
    household_id: uuid.UUID = Depends(get_household_id),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    return CategoryService.rename_category(db, household_id, category_id, rename.name, actor_id=actor_id)


@router.post("/{category_id}/deactivate", response_model=CategoryResponse)
def deactivate_category(
    category_id: uuid.UUID,
    retire: Optional[CategoryRetire] = None,
    household_id: uuid.UUID = Depends(get_household_id),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Deactivate a category; fails while transactions use it unless reassign_to is given"""
    return CategoryService.deactivate_category(
        db, household_id, category_id, reassign_to=retire.reassign_to if retire else None, actor_id=actor_id
    )


@router.post("/{category_id}/reactivate", response_model=CategoryResponse)
def reactivate_category(
    category_id: uuid.UUID,
    household_id: uuid.UUID = Depends(get_household_id),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    return CategoryService.reactivate_category(db, household_id, category_id, actor_id=actor_id)


@router.post("/{category_id}/restore", response_model=CategoryResponse)
def restore_category(
    category_id: uuid.UUID,
    household_id: uuid.UUID = Depends(get_household_id),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Undo a delete. Merged categories cannot be restored."""
    return CategoryService.restore_category(db, household_id, category_id, actor_id=actor_id)


@router.delete("/{category_id}", response_model=CategoryResponse)
def delete_category(
    category_id: uuid.UUID,
    reassign_to: Optional[uuid.UUID] = Query(None, description="Move transactions to this category first"),
    household_id: uuid.UUID = Depends(get_household_id),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
    db: Session = Depends(get_db)
):
    """Soft delete a category"""
    return CategoryService.delete_category(
        db, household_id, category_id, reassign_to=reassign_to, actor_id=actor_id
    )
