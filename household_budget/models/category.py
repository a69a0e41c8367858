from sqlalchemy import Column, String, DateTime, ForeignKey, Text, Boolean, Integer, Numeric, Index, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from household_budget.core.database import Base
from household_budget.core.types import GUID


class CategoryType:
    EXPENSE = "expense"
    INCOME = "income"


class CategoryDeletedReason:
    MERGED = "merged"
    USER_DELETED = "user_deleted"


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (
        Index("idx_categories_household", "household_id"),
        Index("idx_categories_type", "household_id", "type"),
        CheckConstraint("type IN ('expense', 'income')", name="ck_categories_type"),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    household_id = Column(GUID(), nullable=False)
    name = Column(String, nullable=False)
    type = Column(String(20), nullable=False, default=CategoryType.EXPENSE)  # expense | income
    color = Column(String, nullable=True)  # Hex color code for UI
    description = Column(Text, nullable=True)
    monthly_limit = Column(Numeric(12, 2), nullable=False, default=0)
    warning_threshold = Column(Integer, nullable=False, default=80)  # Percentage (0-100)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)

    # Soft-delete tracking
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_reason = Column(String(20), nullable=True)  # merged | user_deleted
    merged_into_id = Column(GUID(), ForeignKey("categories.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    merged_into = relationship("Category", remote_side=[id])

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_merged(self) -> bool:
        return self.deleted_reason == CategoryDeletedReason.MERGED

    @property
    def state(self) -> str:
        """Lifecycle state: active, inactive, deleted or merged."""
        if self.is_merged:
            return "merged"
        if self.is_deleted:
            return "deleted"
        return "active" if self.is_active else "inactive"

    def __repr__(self):
        return f"<Category {self.name} ({self.state})>"
