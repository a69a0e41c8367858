from sqlalchemy import Column, DateTime, Boolean, Integer, Text, JSON, UniqueConstraint
from sqlalchemy.sql import func
import uuid

from household_budget.core.database import Base
from household_budget.core.types import GUID, CategoryMap


class MonthlyBudget(Base):
    __tablename__ = "monthly_budgets"
    __table_args__ = (
        UniqueConstraint("household_id", "year", "month", name="uq_monthly_budgets_household_year_month"),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    household_id = Column(GUID(), nullable=False, index=True)
    # Template version this month was built from (weak reference, no FK)
    personal_budget_id = Column(GUID(), nullable=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)  # 1-12
    categories = Column(CategoryMap(), nullable=False, default=dict)
    # Month-start snapshot; written at creation only
    original_categories = Column(CategoryMap(), nullable=False, default=dict)
    global_settings = Column(JSON, nullable=False, default=dict)
    adjustment_count = Column(Integer, nullable=False, default=0)
    is_locked = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def has_adjustments(self) -> bool:
        return (self.adjustment_count or 0) > 0

    def __repr__(self):
        return f"<MonthlyBudget {self.year}-{self.month:02d} edits={self.adjustment_count}>"
