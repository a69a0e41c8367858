from sqlalchemy import Column, String, DateTime, Boolean, Integer, Numeric, Text, JSON, Index, text
from sqlalchemy.sql import func
import uuid

from household_budget.core.database import Base
from household_budget.core.types import GUID


class AdjustmentType:
    INCREASE = "increase"
    DECREASE = "decrease"


class BudgetAdjustment(Base):
    """A category limit change scheduled to fold into the template at a future month."""
    __tablename__ = "budget_adjustments"
    __table_args__ = (
        # One pending adjustment per category and effective month
        Index(
            "uq_budget_adjustments_pending",
            "household_id", "category_name", "effective_year", "effective_month",
            unique=True,
            sqlite_where=text("is_applied = 0"),
            postgresql_where=text("NOT is_applied"),
        ),
        Index("idx_budget_adjustments_effective", "household_id", "effective_year", "effective_month"),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    household_id = Column(GUID(), nullable=False)
    category_name = Column(String, nullable=False)
    current_limit = Column(Numeric(12, 2), nullable=False)
    adjustment_type = Column(String(10), nullable=False)  # increase | decrease
    adjustment_amount = Column(Numeric(12, 2), nullable=False)  # Absolute value
    new_limit = Column(Numeric(12, 2), nullable=False)
    effective_year = Column(Integer, nullable=False)
    effective_month = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)
    # Threshold/color/description for categories introduced by this adjustment
    new_category_settings = Column(JSON, nullable=True)
    is_applied = Column(Boolean, nullable=False, default=False)
    applied_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(GUID(), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return (
            f"<BudgetAdjustment {self.category_name} {self.current_limit}->{self.new_limit} "
            f"@{self.effective_year}-{self.effective_month:02d} applied={self.is_applied}>"
        )
