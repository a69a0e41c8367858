from sqlalchemy import Column, String, DateTime, Integer, Numeric, UniqueConstraint
from sqlalchemy.sql import func
import uuid

from household_budget.core.database import Base
from household_budget.core.types import GUID


class CategoryAdjustmentHistory(Base):
    """Running totals of applied adjustments per category. Insight data only."""
    __tablename__ = "category_adjustment_history"
    __table_args__ = (
        UniqueConstraint("household_id", "category_name", name="uq_category_adjustment_history"),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    household_id = Column(GUID(), nullable=False)
    category_name = Column(String, nullable=False)
    adjustment_count = Column(Integer, nullable=False, default=0)
    first_adjustment_at = Column(DateTime(timezone=True), nullable=True)
    last_adjusted_at = Column(DateTime(timezone=True), nullable=True)
    total_increased_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_decreased_amount = Column(Numeric(12, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
