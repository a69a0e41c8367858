from fastapi import APIRouter
from household_budget.api.v1.endpoints import budget_templates, monthly_budgets, budget_adjustments, categories

api_router = APIRouter()

api_router.include_router(budget_templates.router, prefix="/budget-templates", tags=["budget-templates"])
api_router.include_router(monthly_budgets.router, prefix="/monthly-budgets", tags=["monthly-budgets"])
api_router.include_router(budget_adjustments.router, prefix="/budget-adjustments", tags=["budget-adjustments"])
api_router.include_router(categories.router, prefix="/categories", tags=["categories"])
