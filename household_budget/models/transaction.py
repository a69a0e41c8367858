from sqlalchemy import Column, String, DateTime, Date, ForeignKey, Numeric, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from household_budget.core.database import Base
from household_budget.core.types import GUID


class Transaction(Base):
    """Ledger row owned by the transaction store.

    Only the columns the budget engine reads or rewrites are modelled here.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        Index("idx_transactions_household_category", "household_id", "category_id"),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    household_id = Column(GUID(), nullable=False)
    category_id = Column(GUID(), ForeignKey("categories.id"), nullable=True)
    category = Column(String)  # Denormalized display name
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String)
    transaction_date = Column(Date, nullable=False)

    # Category change audit
    original_category_id = Column(GUID(), nullable=True)  # First category ever assigned before a move
    category_changed_at = Column(DateTime(timezone=True), nullable=True)
    category_change_reason = Column(String(30), nullable=True)  # merge | reassigned

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    category_ref = relationship("Category", foreign_keys=[category_id])
