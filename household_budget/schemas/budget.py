from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Dict, List, Literal, Optional
from datetime import datetime
from decimal import Decimal
import uuid


class CategoryConfig(BaseModel):
    """Budget settings for one category inside a template or month snapshot."""
    monthly_limit: Decimal = Field(Decimal("0"), ge=0)
    warning_threshold: int = Field(80, ge=0, le=100)
    is_active: bool = True
    color: Optional[str] = None
    description: Optional[str] = None
    type: Optional[Literal["expense", "income"]] = None
    # Registry identity of the category this display name points at
    category_id: Optional[uuid.UUID] = None


class GlobalBudgetSettings(BaseModel):
    currency: str = "USD"
    warning_notifications: bool = True
    email_alerts: bool = False
    active_expense_categories: List[str] = []


class TemplateDraft(BaseModel):
    """Mutable working copy handed to template mutators."""
    name: str
    categories: Dict[str, CategoryConfig]
    global_settings: GlobalBudgetSettings
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Personal budget (template versions)
# ---------------------------------------------------------------------------

class PersonalBudgetCreate(BaseModel):
    name: str = Field("Personal Budget", min_length=1, max_length=100)
    categories: Dict[str, CategoryConfig] = {}
    global_settings: GlobalBudgetSettings = Field(default_factory=GlobalBudgetSettings)
    notes: Optional[str] = None

    @field_validator("categories")
    @classmethod
    def _names_not_blank(cls, value):
        for name in value:
            if not name.strip():
                raise ValueError("Category names cannot be blank")
        return value


class PersonalBudgetUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    categories: Optional[Dict[str, CategoryConfig]] = None
    global_settings: Optional[GlobalBudgetSettings] = None
    notes: Optional[str] = None


class PersonalBudget(BaseModel):
    id: uuid.UUID
    household_id: uuid.UUID
    version: int
    name: str
    categories: Dict[str, CategoryConfig]
    global_settings: GlobalBudgetSettings
    is_active: bool
    notes: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TemplateStatus(BaseModel):
    """Active-template read that reports the setup-needed state instead of failing."""
    setup_required: bool
    template: Optional[PersonalBudget] = None
    message: Optional[str] = None


# ---------------------------------------------------------------------------
# Monthly budgets (snapshots)
# ---------------------------------------------------------------------------

class MonthlyBudget(BaseModel):
    id: uuid.UUID
    household_id: uuid.UUID
    personal_budget_id: Optional[uuid.UUID] = None
    year: int
    month: int
    categories: Dict[str, CategoryConfig]
    original_categories: Dict[str, CategoryConfig]
    global_settings: GlobalBudgetSettings
    adjustment_count: int
    is_locked: bool
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CategoryLimitUpdate(BaseModel):
    monthly_limit: Decimal = Field(..., ge=0)


class SyncCategoriesRequest(BaseModel):
    explicit_opt_in: bool = False


class SyncCategoriesResult(BaseModel):
    added: List[str]
    monthly_budget: MonthlyBudget


class ConsolidatedCategory(BaseModel):
    category: str
    category_id: Optional[uuid.UUID] = None
    monthly_limit: Decimal
    original_limit: Decimal
    # Per-name breakdown of figures folded in from merged categories
    breakdown: Dict[str, Decimal] = {}


class ConsolidatedMonthView(BaseModel):
    year: int
    month: int
    categories: List[ConsolidatedCategory]


# ---------------------------------------------------------------------------
# Comparisons
# ---------------------------------------------------------------------------

ComparisonStatus = Literal["added", "removed", "increased", "decreased", "unchanged"]


class CategoryComparison(BaseModel):
    category: str
    category_id: Optional[uuid.UUID] = None
    baseline_limit: Optional[Decimal] = None
    current_limit: Optional[Decimal] = None
    difference: Decimal
    difference_percentage: float
    status: ComparisonStatus


class BudgetComparisonSummary(BaseModel):
    baseline_label: str = ""
    current_label: str = ""
    currency: Optional[str] = None
    has_changes: bool
    comparisons: List[CategoryComparison] = []
    total_categories: int = 0
    adjusted_categories: int = 0
    added_categories: int = 0
    removed_categories: int = 0
    unchanged_categories: int = 0
    total_baseline_limit: Decimal = Decimal("0")
    total_current_limit: Decimal = Decimal("0")
    total_difference: Decimal = Decimal("0")


# ---------------------------------------------------------------------------
# Scheduled adjustments
# ---------------------------------------------------------------------------

class NewCategorySettings(BaseModel):
    type: Literal["expense", "income"] = "expense"
    warning_threshold: Optional[int] = Field(None, ge=0, le=100)
    color: Optional[str] = Field(None, pattern=r'^#[0-9A-Fa-f]{6}$')
    description: Optional[str] = None
    is_active: bool = True


class BudgetAdjustmentCreate(BaseModel):
    category_name: str = Field(..., min_length=1, max_length=50)
    current_limit: Decimal = Field(..., ge=0)
    new_limit: Decimal = Field(..., ge=0)
    reason: Optional[str] = Field(None, max_length=500)
    new_category_settings: Optional[NewCategorySettings] = None


class BudgetAdjustment(BaseModel):
    id: uuid.UUID
    household_id: uuid.UUID
    category_name: str
    current_limit: Decimal
    adjustment_type: Literal["increase", "decrease"]
    adjustment_amount: Decimal
    new_limit: Decimal
    effective_year: int
    effective_month: int
    reason: Optional[str] = None
    new_category_settings: Optional[NewCategorySettings] = None
    is_applied: bool
    applied_at: Optional[datetime] = None
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PendingAdjustmentsSummary(BaseModel):
    effective_year: int
    effective_month: int
    effective_date: str  # "November 2025"
    adjustment_count: int
    total_increase: Decimal
    total_decrease: Decimal
    net_change: Decimal
    adjustments: List[BudgetAdjustment]


class ApplyAdjustmentsRequest(BaseModel):
    year: int = Field(..., ge=2000, le=2100)
    month: int = Field(..., ge=1, le=12)
    regenerate_locked: Optional[bool] = None


class ApplyAdjustmentsResult(BaseModel):
    year: int
    month: int
    applied_count: int
    personal_budget: Optional[PersonalBudget] = None
    snapshot_deleted: bool = False
    snapshot_locked: bool = False


class CategoryAdjustmentHistory(BaseModel):
    id: uuid.UUID
    household_id: uuid.UUID
    category_name: str
    adjustment_count: int
    first_adjustment_at: Optional[datetime] = None
    last_adjusted_at: Optional[datetime] = None
    total_increased_amount: Decimal
    total_decreased_amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class CategoryInsights(BaseModel):
    category_name: str
    current_limit: Optional[Decimal] = None
    adjustment_count: int
    average_adjustment: Decimal
    net_adjustment: Decimal
    trend: Literal["increasing", "decreasing", "stable"]
    last_adjusted_at: Optional[datetime] = None
    total_increased: Decimal
    total_decreased: Decimal
