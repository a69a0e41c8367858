"""
Boundary to the transaction store.

Transaction CRUD lives outside the budget engine; category lifecycle
operations only need to count, list and re-point transactions. ``TransactionStore``
names that contract and ``SqlTransactionStore`` fulfils it against the shared
database session so reassignment commits atomically with the category change.
"""
from datetime import datetime, timezone
from typing import List, Optional, Protocol
import uuid

from sqlalchemy import func
from sqlalchemy.orm import Session

from household_budget.models.transaction import Transaction


class TransactionStore(Protocol):
    def list_by_category(self, household_id: uuid.UUID, category_id: uuid.UUID) -> List[Transaction]: ...

    def count_by_category(self, household_id: uuid.UUID, category_id: uuid.UUID) -> int: ...

    def reassign_category(
        self,
        household_id: uuid.UUID,
        from_category_id: uuid.UUID,
        to_category_id: uuid.UUID,
        to_category_name: str,
        reason: str,
    ) -> int: ...

    def relabel_category(self, household_id: uuid.UUID, category_id: uuid.UUID, new_name: str) -> int: ...


class SqlTransactionStore:
    def __init__(self, db: Session):
        self.db = db

    def list_by_category(self, household_id: uuid.UUID, category_id: uuid.UUID) -> List[Transaction]:
        return self.db.query(Transaction).filter(
            Transaction.household_id == household_id,
            Transaction.category_id == category_id
        ).order_by(Transaction.transaction_date.desc()).all()

    def count_by_category(self, household_id: uuid.UUID, category_id: uuid.UUID) -> int:
        return self.db.query(func.count(Transaction.id)).filter(
            Transaction.household_id == household_id,
            Transaction.category_id == category_id
        ).scalar() or 0

    def reassign_category(
        self,
        household_id: uuid.UUID,
        from_category_id: uuid.UUID,
        to_category_id: uuid.UUID,
        to_category_name: str,
        reason: str,
        changed_at: Optional[datetime] = None,
    ) -> int:
        """Move every transaction of one category to another.

        ``original_category_id`` is set only on the first move so chained
        merges keep pointing at the category the transaction started in.
        Flushes but does not commit.
        """
        changed_at = changed_at or datetime.now(timezone.utc)
        transactions = self.db.query(Transaction).filter(
            Transaction.household_id == household_id,
            Transaction.category_id == from_category_id
        ).all()

        for transaction in transactions:
            if transaction.original_category_id is None:
                transaction.original_category_id = from_category_id
            transaction.category_id = to_category_id
            transaction.category = to_category_name
            transaction.category_changed_at = changed_at
            transaction.category_change_reason = reason

        self.db.flush()
        return len(transactions)

    def relabel_category(self, household_id: uuid.UUID, category_id: uuid.UUID, new_name: str) -> int:
        """Rewrite the denormalized category name; identity is untouched."""
        updated = self.db.query(Transaction).filter(
            Transaction.household_id == household_id,
            Transaction.category_id == category_id
        ).update({Transaction.category: new_name}, synchronize_session="fetch")
        return updated
