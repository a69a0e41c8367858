from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging
import uuid

from household_budget.models.category import Category
from household_budget.models.monthly_budget import MonthlyBudget
from household_budget.schemas.budget import (
    BudgetComparisonSummary,
    CategoryConfig,
    ConsolidatedCategory,
    ConsolidatedMonthView,
)
from household_budget.services.budget_comparison import compare_category_maps, empty_comparison
from household_budget.services.personal_budget_service import PersonalBudgetService
from household_budget.core.config import settings
from household_budget.core.exceptions import (
    BaseAppException,
    ConcurrentVersionConflict,
    LockedMonthMutation,
    NotFoundError,
    ValidationError,
)
from household_budget.utils.audit import audit
from household_budget.utils.dates import format_month_year, has_month_started

logger = logging.getLogger(__name__)


def _validate_period(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month: {month}")
    if not 2000 <= year <= 2100:
        raise ValidationError(f"Invalid year: {year}")


class MonthlyBudgetService:
    """Per-month snapshots of the active template.

    ``original_categories`` is written when the snapshot is created and never
    edited afterwards; in-month edits only touch ``categories``.
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(self, household_id: uuid.UUID, year: int, month: int) -> Optional[MonthlyBudget]:
        return self.db.query(MonthlyBudget).filter(
            MonthlyBudget.household_id == household_id,
            MonthlyBudget.year == year,
            MonthlyBudget.month == month
        ).first()

    def get(self, household_id: uuid.UUID, year: int, month: int) -> MonthlyBudget:
        snapshot = self.find(household_id, year, month)
        if snapshot is None:
            raise NotFoundError(f"No monthly budget for {format_month_year(year, month)}")
        return snapshot

    def get_by_id(self, household_id: uuid.UUID, snapshot_id: uuid.UUID) -> MonthlyBudget:
        snapshot = self.db.query(MonthlyBudget).filter(
            MonthlyBudget.id == snapshot_id,
            MonthlyBudget.household_id == household_id
        ).first()
        if not snapshot:
            raise NotFoundError("Monthly budget not found")
        return snapshot

    def list_for_year(self, household_id: uuid.UUID, year: int) -> List[MonthlyBudget]:
        return self.db.query(MonthlyBudget).filter(
            MonthlyBudget.household_id == household_id,
            MonthlyBudget.year == year
        ).order_by(MonthlyBudget.month).all()

    def list_recent(self, household_id: uuid.UUID, limit: int = 12) -> List[MonthlyBudget]:
        return self.db.query(MonthlyBudget).filter(
            MonthlyBudget.household_id == household_id
        ).order_by(MonthlyBudget.year.desc(), MonthlyBudget.month.desc()).limit(limit).all()

    def get_or_create(self, household_id: uuid.UUID, year: int, month: int, today: Optional[date] = None) -> MonthlyBudget:
        """Snapshot for the month, built from the active template on first access.

        Once the month has begun, due scheduled adjustments are applied first
        so the snapshot starts from the post-adjustment template.
        """
        _validate_period(year, month)

        if settings.APPLY_ADJUSTMENTS_ON_ACCESS and has_month_started(year, month, today):
            # Import here to avoid circular import
            from household_budget.services.budget_adjustment_service import BudgetAdjustmentService
            BudgetAdjustmentService(self.db).apply(household_id, year, month)

        snapshot = self.find(household_id, year, month)
        if snapshot is not None:
            return snapshot

        template = PersonalBudgetService(self.db).get_active(household_id)
        categories = {name: config.model_copy(deep=True) for name, config in template.categories.items()}

        snapshot = MonthlyBudget(
            household_id=household_id,
            personal_budget_id=template.id,
            year=year,
            month=month,
            categories=categories,
            original_categories={name: config.model_copy(deep=True) for name, config in categories.items()},
            global_settings=dict(template.global_settings or {}),
            adjustment_count=0,
            is_locked=False,
        )
        try:
            self.db.add(snapshot)
            self.db.commit()
        except IntegrityError:
            # Someone else created the month first
            self.db.rollback()
            existing = self.find(household_id, year, month)
            if existing is None:
                raise
            return existing

        self.db.refresh(snapshot)
        logger.info(f"Created monthly budget {year}-{month:02d} from template v{template.version} for household {household_id}")
        return snapshot

    # ------------------------------------------------------------------
    # In-month edits
    # ------------------------------------------------------------------

    def update_category_limit(self, household_id: uuid.UUID, snapshot_id: uuid.UUID, category_name: str, new_limit: Decimal) -> MonthlyBudget:
        """Change one category's limit for this month only."""
        snapshot = self.get_by_id(household_id, snapshot_id)
        if snapshot.is_locked:
            raise LockedMonthMutation(snapshot.year, snapshot.month)

        new_limit = Decimal(str(new_limit))
        if new_limit < 0:
            raise ValidationError("Monthly limit cannot be negative")

        categories = dict(snapshot.categories or {})
        if category_name not in categories:
            raise NotFoundError(f"Category '{category_name}' is not part of this monthly budget")
        categories[category_name] = categories[category_name].model_copy(update={"monthly_limit": new_limit})

        self._guarded_write(snapshot, categories)
        logger.info(f"Set {category_name} to {new_limit} for {snapshot.year}-{snapshot.month:02d} (household {household_id})")
        return snapshot

    def sync_new_categories_from_template(
        self,
        household_id: uuid.UUID,
        snapshot_id: uuid.UUID,
        explicit_opt_in: bool = False,
    ) -> Tuple[List[str], MonthlyBudget]:
        """Add template categories the month does not have yet.

        Nothing happens unless the caller opts in. Existing entries are never
        touched and ``original_categories`` stays as it was.
        """
        snapshot = self.get_by_id(household_id, snapshot_id)
        if not explicit_opt_in:
            return [], snapshot
        if snapshot.is_locked:
            raise LockedMonthMutation(snapshot.year, snapshot.month)

        template = PersonalBudgetService(self.db).get_active(household_id)
        categories = dict(snapshot.categories or {})
        known_ids = {c.category_id for c in categories.values() if c.category_id}

        added = []
        for name, config in template.categories.items():
            if name in categories or (config.category_id and config.category_id in known_ids):
                continue
            categories[name] = config.model_copy(deep=True)
            added.append(name)

        if not added:
            return [], snapshot

        self._guarded_write(snapshot, categories)
        logger.info(f"Synced {len(added)} new categories into {snapshot.year}-{snapshot.month:02d}")
        return added, snapshot

    def lock(self, household_id: uuid.UUID, snapshot_id: uuid.UUID) -> MonthlyBudget:
        return self._set_locked(household_id, snapshot_id, True)

    def unlock(self, household_id: uuid.UUID, snapshot_id: uuid.UUID) -> MonthlyBudget:
        return self._set_locked(household_id, snapshot_id, False)

    # ------------------------------------------------------------------
    # Comparisons
    # ------------------------------------------------------------------

    def compare_to_original(self, household_id: uuid.UUID, year: int, month: int) -> BudgetComparisonSummary:
        """In-month edits against the month-start snapshot.

        An unedited month returns an empty comparison, not a list of
        unchanged rows.
        """
        snapshot = self.get(household_id, year, month)
        labels = {
            "baseline_label": f"{format_month_year(year, month)} (start)",
            "current_label": f"{format_month_year(year, month)} (current)",
            "currency": (snapshot.global_settings or {}).get("currency"),
        }
        if not snapshot.has_adjustments:
            return empty_comparison(**labels)
        return compare_category_maps(snapshot.original_categories, snapshot.categories, **labels)

    def compare_to_template(self, household_id: uuid.UUID, year: int, month: int) -> BudgetComparisonSummary:
        """The month's current limits against the live template."""
        snapshot = self.get(household_id, year, month)
        template = PersonalBudgetService(self.db).get_active(household_id)
        return compare_category_maps(
            template.categories,
            snapshot.categories,
            baseline_label=f"{template.name} v{template.version}",
            current_label=format_month_year(year, month),
            currency=(template.global_settings or {}).get("currency"),
        )

    def consolidated_view(self, household_id: uuid.UUID, year: int, month: int) -> ConsolidatedMonthView:
        """Month limits with merged categories folded into their surviving target.

        Stored maps are not modified; each row carries the per-name figures
        it was built from.
        """
        snapshot = self.get(household_id, year, month)
        resolved: Dict[uuid.UUID, Optional[Category]] = {}

        def survivor(config: CategoryConfig) -> Optional[Category]:
            if config.category_id is None:
                return None
            if config.category_id not in resolved:
                resolved[config.category_id] = self._follow_merges(household_id, config.category_id)
            return resolved[config.category_id]

        rows: Dict[object, ConsolidatedCategory] = {}

        def row_for(name: str, config: CategoryConfig) -> ConsolidatedCategory:
            target = survivor(config)
            key = target.id if target is not None else name
            if key not in rows:
                rows[key] = ConsolidatedCategory(
                    category=target.name if target is not None else name,
                    category_id=target.id if target is not None else config.category_id,
                    monthly_limit=Decimal("0"),
                    original_limit=Decimal("0"),
                    breakdown={},
                )
            return rows[key]

        for name, config in (snapshot.categories or {}).items():
            if not config.is_active:
                continue
            row = row_for(name, config)
            row.monthly_limit += config.monthly_limit
            row.breakdown[name] = row.breakdown.get(name, Decimal("0")) + config.monthly_limit

        for name, config in (snapshot.original_categories or {}).items():
            if not config.is_active:
                continue
            row = row_for(name, config)
            row.original_limit += config.monthly_limit
            row.breakdown.setdefault(name, Decimal("0"))

        return ConsolidatedMonthView(
            year=year,
            month=month,
            categories=sorted(rows.values(), key=lambda r: r.category.lower()),
        )

    # ------------------------------------------------------------------
    # Regeneration
    # ------------------------------------------------------------------

    def delete_for_regeneration(self, household_id: uuid.UUID, year: int, month: int, regenerate_locked: bool = False) -> Tuple[bool, bool]:
        """Drop the month's snapshot so the next access rebuilds it.

        Returns ``(deleted, locked)``. Locked snapshots are kept unless
        ``regenerate_locked``. Flushes only; the caller commits.
        """
        snapshot = self.find(household_id, year, month)
        if snapshot is None:
            return False, False
        if snapshot.is_locked and not regenerate_locked:
            logger.info(f"Keeping locked monthly budget {year}-{month:02d} for household {household_id}")
            return False, True

        self.db.delete(snapshot)
        self.db.flush()
        return True, snapshot.is_locked

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _guarded_write(self, snapshot: MonthlyBudget, categories: Dict[str, CategoryConfig]) -> None:
        """Write ``categories`` as one more edit, provided nobody edited since we read."""
        expected = snapshot.adjustment_count or 0
        try:
            updated = self.db.query(MonthlyBudget).filter(
                MonthlyBudget.id == snapshot.id,
                MonthlyBudget.adjustment_count == expected,
                MonthlyBudget.is_locked == False
            ).update({
                MonthlyBudget.categories: categories,
                MonthlyBudget.adjustment_count: expected + 1,
            }, synchronize_session=False)
            if updated != 1:
                raise ConcurrentVersionConflict("Monthly budget changed concurrently")
            self.db.commit()
        except BaseAppException:
            self.db.rollback()
            raise
        self.db.refresh(snapshot)

    def _set_locked(self, household_id: uuid.UUID, snapshot_id: uuid.UUID, locked: bool) -> MonthlyBudget:
        snapshot = self.get_by_id(household_id, snapshot_id)
        if snapshot.is_locked == locked:
            return snapshot
        snapshot.is_locked = locked
        self.db.commit()
        self.db.refresh(snapshot)
        audit(
            "monthly_budget.locked" if locked else "monthly_budget.unlocked",
            household_id=household_id,
            year=snapshot.year,
            month=snapshot.month,
        )
        return snapshot

    def _follow_merges(self, household_id: uuid.UUID, category_id: uuid.UUID) -> Optional[Category]:
        category = self.db.query(Category).filter(
            Category.id == category_id,
            Category.household_id == household_id
        ).first()
        seen = set()
        while category is not None and category.merged_into_id and category.id not in seen:
            seen.add(category.id)
            category = category.merged_into
        return category
