# Import all models here for Alembic
from household_budget.models.category import Category
from household_budget.models.transaction import Transaction
from household_budget.models.personal_budget import PersonalBudget
from household_budget.models.monthly_budget import MonthlyBudget
from household_budget.models.budget_adjustment import BudgetAdjustment
from household_budget.models.category_adjustment_history import CategoryAdjustmentHistory
from household_budget.models.category_merge_history import CategoryMergeHistory

__all__ = [
    "Category",
    "Transaction",
    "PersonalBudget",
    "MonthlyBudget",
    "BudgetAdjustment",
    "CategoryAdjustmentHistory",
    "CategoryMergeHistory",
]
