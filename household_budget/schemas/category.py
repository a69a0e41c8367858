from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Literal
from datetime import datetime
from decimal import Decimal
import uuid


CategoryTypeLiteral = Literal["expense", "income"]


class CategoryBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    type: CategoryTypeLiteral = "expense"
    color: Optional[str] = Field(None, pattern=r'^#[0-9A-Fa-f]{6}$')  # Hex color validation
    description: Optional[str] = Field(None, max_length=255)
    monthly_limit: Decimal = Field(Decimal("0"), ge=0)
    warning_threshold: int = Field(80, ge=0, le=100)
    is_active: bool = True
    sort_order: int = 0


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    type: Optional[CategoryTypeLiteral] = None
    color: Optional[str] = Field(None, pattern=r'^#[0-9A-Fa-f]{6}$')
    description: Optional[str] = Field(None, max_length=255)
    monthly_limit: Optional[Decimal] = Field(None, ge=0)
    warning_threshold: Optional[int] = Field(None, ge=0, le=100)
    sort_order: Optional[int] = None


class CategoryRename(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)


class CategoryRetire(BaseModel):
    """Body for deactivate/delete; transactions move to ``reassign_to`` first when given."""
    reassign_to: Optional[uuid.UUID] = None


class CategoryResponse(CategoryBase):
    id: uuid.UUID
    household_id: uuid.UUID
    state: Literal["active", "inactive", "deleted", "merged"]
    deleted_at: Optional[datetime] = None
    deleted_reason: Optional[Literal["merged", "user_deleted"]] = None
    merged_into_id: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CategoryWithUsage(CategoryResponse):
    transaction_count: int = 0  # Number of transactions using this category


class CategoryMergeRequest(BaseModel):
    source_category_id: uuid.UUID
    target_category_id: uuid.UUID
    reason: Optional[str] = Field(None, max_length=500)


class CategoryMergeResult(BaseModel):
    merge_id: uuid.UUID
    source_category_id: uuid.UUID
    target_category_id: uuid.UUID
    combined_limit: Decimal
    transactions_updated: int
    monthly_budgets_updated: int
    adjustments_cancelled: int
    source_deleted: bool = True


class CategoryMergeHistoryEntry(BaseModel):
    id: uuid.UUID
    household_id: uuid.UUID
    source_category_id: uuid.UUID
    target_category_id: uuid.UUID
    source_category_name: str
    target_category_name: str
    source_category_color: Optional[str] = None
    source_category_monthly_limit: Optional[Decimal] = None
    source_category_settings: Optional[dict] = None
    transactions_affected: int
    monthly_budgets_affected: int
    adjustments_cancelled: int
    merged_at: Optional[datetime] = None
    merged_by: Optional[uuid.UUID] = None
    merge_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
