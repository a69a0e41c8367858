from sqlalchemy import Column, String, DateTime, Boolean, Integer, Text, JSON, Index, UniqueConstraint, text
from sqlalchemy.sql import func
import uuid

from household_budget.core.database import Base
from household_budget.core.types import GUID, CategoryMap


class PersonalBudget(Base):
    """One immutable version of a household's budget template."""
    __tablename__ = "personal_budgets"
    __table_args__ = (
        UniqueConstraint("household_id", "version", name="uq_personal_budgets_household_version"),
        # At most one active version per household
        Index(
            "uq_personal_budgets_one_active",
            "household_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    household_id = Column(GUID(), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    name = Column(String, nullable=False, default="Personal Budget")
    categories = Column(CategoryMap(), nullable=False, default=dict)
    global_settings = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_by = Column(GUID(), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<PersonalBudget v{self.version} active={self.is_active}>"
