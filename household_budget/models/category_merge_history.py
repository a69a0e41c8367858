from sqlalchemy import Column, String, DateTime, Integer, Numeric, Text, JSON
from sqlalchemy.sql import func
import uuid

from household_budget.core.database import Base
from household_budget.core.types import GUID


class CategoryMergeHistory(Base):
    """Append-only audit row written once per category merge."""
    __tablename__ = "category_merge_history"

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    household_id = Column(GUID(), nullable=False, index=True)

    source_category_id = Column(GUID(), nullable=False, index=True)
    target_category_id = Column(GUID(), nullable=False, index=True)

    # Snapshot of source/target at merge time
    source_category_name = Column(String, nullable=False)
    target_category_name = Column(String, nullable=False)
    source_category_color = Column(String, nullable=True)
    source_category_monthly_limit = Column(Numeric(12, 2), nullable=True)
    source_category_settings = Column(JSON, nullable=True)

    transactions_affected = Column(Integer, nullable=False, default=0)
    monthly_budgets_affected = Column(Integer, nullable=False, default=0)
    adjustments_cancelled = Column(Integer, nullable=False, default=0)

    merged_at = Column(DateTime(timezone=True), server_default=func.now())
    merged_by = Column(GUID(), nullable=True)
    merge_reason = Column(Text, nullable=True)
