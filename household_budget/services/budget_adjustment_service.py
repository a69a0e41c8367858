from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
import logging
import uuid

from household_budget.models.budget_adjustment import AdjustmentType, BudgetAdjustment
from household_budget.models.category_adjustment_history import CategoryAdjustmentHistory
from household_budget.schemas.budget import (
    ApplyAdjustmentsResult,
    CategoryConfig,
    CategoryInsights,
    NewCategorySettings,
    PendingAdjustmentsSummary,
    PersonalBudget as PersonalBudgetSchema,
    TemplateDraft,
)
from household_budget.services.category_service import CategoryService
from household_budget.services.monthly_budget_service import MonthlyBudgetService
from household_budget.services.personal_budget_service import PersonalBudgetService
from household_budget.core.config import settings
from household_budget.core.exceptions import (
    BaseAppException,
    ConcurrentVersionConflict,
    DuplicatePendingAdjustment,
    NotFoundError,
    SetupRequiredError,
    ValidationError,
)
from household_budget.utils.audit import audit
from household_budget.utils.dates import current_year_month, format_month_year, next_year_month, today_in_budget_tz

logger = logging.getLogger(__name__)


def net_adjustment(history: CategoryAdjustmentHistory) -> Decimal:
    return Decimal(history.total_increased_amount or 0) - Decimal(history.total_decreased_amount or 0)


def average_adjustment(history: CategoryAdjustmentHistory) -> Decimal:
    """Mean absolute size of the category's applied adjustments"""
    if not history.adjustment_count:
        return Decimal("0")
    total = Decimal(history.total_increased_amount or 0) + Decimal(history.total_decreased_amount or 0)
    return (total / history.adjustment_count).quantize(Decimal("0.01"))


class BudgetAdjustmentService:
    """Template changes scheduled for the start of next month.

    ``apply`` folds a month's pending rows into one new template version and
    marks them applied. It is safe to call repeatedly from the beat task, the
    snapshot read path or the API.
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(
        self,
        household_id: uuid.UUID,
        category_name: str,
        current_limit: Decimal,
        new_limit: Decimal,
        reason: Optional[str] = None,
        new_category_settings: Optional[NewCategorySettings] = None,
        created_by: Optional[uuid.UUID] = None,
        today: Optional[date] = None,
    ) -> BudgetAdjustment:
        category_name = (category_name or "").strip()
        if not category_name:
            raise ValidationError("Category name is required")

        current_limit = Decimal(str(current_limit))
        new_limit = Decimal(str(new_limit))
        if current_limit < 0 or new_limit < 0:
            raise ValidationError("Limits cannot be negative")
        if new_limit == current_limit:
            raise ValidationError("New limit is the same as the current limit", error_code="no_change")

        # Store the registry spelling so one category has one pending row per month
        registered = CategoryService.get_by_name(self.db, household_id, category_name)
        if registered is not None:
            category_name = registered.name

        year, month = next_year_month(today)
        if self._find_pending(household_id, category_name, year, month):
            raise DuplicatePendingAdjustment(category_name, year, month)

        difference = new_limit - current_limit
        adjustment = BudgetAdjustment(
            household_id=household_id,
            category_name=category_name,
            current_limit=current_limit,
            adjustment_type=AdjustmentType.INCREASE if difference > 0 else AdjustmentType.DECREASE,
            adjustment_amount=abs(difference),
            new_limit=new_limit,
            effective_year=year,
            effective_month=month,
            reason=reason,
            new_category_settings=new_category_settings.model_dump(mode="json") if new_category_settings else None,
            is_applied=False,
            created_by=created_by,
        )
        try:
            self.db.add(adjustment)
            self.db.commit()
        except IntegrityError as exc:
            # Lost the race against an identical schedule call
            self.db.rollback()
            raise DuplicatePendingAdjustment(category_name, year, month) from exc

        self.db.refresh(adjustment)
        logger.info(f"Scheduled {category_name} {current_limit}->{new_limit} for {year}-{month:02d} (household {household_id})")
        audit(
            "adjustment.scheduled",
            household_id=household_id,
            actor_id=created_by,
            adjustment_id=adjustment.id,
            category=category_name,
            current_limit=current_limit,
            new_limit=new_limit,
            effective=f"{year}-{month:02d}",
        )
        return adjustment

    def cancel(self, household_id: uuid.UUID, adjustment_id: uuid.UUID) -> None:
        adjustment = self.get_by_id(household_id, adjustment_id)
        if adjustment.is_applied:
            raise ValidationError("Applied adjustments cannot be cancelled", error_code="adjustment_applied")

        self.db.delete(adjustment)
        self.db.commit()
        audit(
            "adjustment.cancelled",
            household_id=household_id,
            adjustment_id=adjustment_id,
            category=adjustment.category_name,
        )

    def cancel_all(self, household_id: uuid.UUID, year: Optional[int] = None, month: Optional[int] = None, today: Optional[date] = None) -> int:
        """Cancel every pending adjustment for a month (next month by default)."""
        if year is None or month is None:
            year, month = next_year_month(today)
        cancelled = self._pending_query(household_id, year, month).delete(synchronize_session="fetch")
        self.db.commit()
        if cancelled:
            audit("adjustment.cancelled_all", household_id=household_id, effective=f"{year}-{month:02d}", count=cancelled)
        return cancelled

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, household_id: uuid.UUID, adjustment_id: uuid.UUID) -> BudgetAdjustment:
        adjustment = self.db.query(BudgetAdjustment).filter(
            BudgetAdjustment.id == adjustment_id,
            BudgetAdjustment.household_id == household_id
        ).first()
        if not adjustment:
            raise NotFoundError("Budget adjustment not found")
        return adjustment

    def list_pending(self, household_id: uuid.UUID, year: Optional[int] = None, month: Optional[int] = None, today: Optional[date] = None) -> List[BudgetAdjustment]:
        if year is None or month is None:
            year, month = next_year_month(today)
        return self._pending_query(household_id, year, month).order_by(BudgetAdjustment.category_name).all()

    def list_all_pending(self, household_id: uuid.UUID) -> List[BudgetAdjustment]:
        return self.db.query(BudgetAdjustment).filter(
            BudgetAdjustment.household_id == household_id,
            BudgetAdjustment.is_applied == False
        ).order_by(
            BudgetAdjustment.effective_year,
            BudgetAdjustment.effective_month,
            BudgetAdjustment.category_name
        ).all()

    def list_applied(self, household_id: uuid.UUID, year: Optional[int] = None, month: Optional[int] = None) -> List[BudgetAdjustment]:
        query = self.db.query(BudgetAdjustment).filter(
            BudgetAdjustment.household_id == household_id,
            BudgetAdjustment.is_applied == True
        )
        if year is not None:
            query = query.filter(BudgetAdjustment.effective_year == year)
        if month is not None:
            query = query.filter(BudgetAdjustment.effective_month == month)
        return query.order_by(
            BudgetAdjustment.effective_year.desc(),
            BudgetAdjustment.effective_month.desc(),
            BudgetAdjustment.category_name
        ).all()

    def next_month_summary(self, household_id: uuid.UUID, today: Optional[date] = None) -> PendingAdjustmentsSummary:
        year, month = next_year_month(today)
        adjustments = self.list_pending(household_id, year, month)

        total_increase = sum(
            (a.adjustment_amount for a in adjustments if a.adjustment_type == AdjustmentType.INCREASE), Decimal("0")
        )
        total_decrease = sum(
            (a.adjustment_amount for a in adjustments if a.adjustment_type == AdjustmentType.DECREASE), Decimal("0")
        )
        return PendingAdjustmentsSummary(
            effective_year=year,
            effective_month=month,
            effective_date=format_month_year(year, month),
            adjustment_count=len(adjustments),
            total_increase=total_increase,
            total_decrease=total_decrease,
            net_change=total_increase - total_decrease,
            adjustments=adjustments,
        )

    def has_pending_next_month(self, household_id: uuid.UUID, today: Optional[date] = None) -> bool:
        year, month = next_year_month(today)
        return self._pending_query(household_id, year, month).count() > 0

    # ------------------------------------------------------------------
    # Month rollover
    # ------------------------------------------------------------------

    def apply(self, household_id: uuid.UUID, year: int, month: int, regenerate_locked: Optional[bool] = None) -> ApplyAdjustmentsResult:
        """Fold the month's pending adjustments into the template.

        All pending rows become a single new template version, their category
        histories are updated, the rows are marked applied and the month's
        snapshot is dropped so it is rebuilt from the new template. Either
        everything commits or nothing does.
        """
        if regenerate_locked is None:
            regenerate_locked = settings.REGENERATE_LOCKED_SNAPSHOTS

        adjustments = self._pending_query(household_id, year, month).order_by(BudgetAdjustment.created_at).all()
        if not adjustments:
            return ApplyAdjustmentsResult(year=year, month=month, applied_count=0)

        templates = PersonalBudgetService(self.db)
        now = datetime.now(timezone.utc)

        def fold(draft: TemplateDraft):
            keys = {name.lower(): name for name in draft.categories}
            for adjustment in adjustments:
                key = keys.get(adjustment.category_name.lower())
                if key is not None:
                    draft.categories[key] = draft.categories[key].model_copy(update={"monthly_limit": adjustment.new_limit})
                else:
                    extra = NewCategorySettings.model_validate(adjustment.new_category_settings or {})
                    draft.categories[adjustment.category_name] = CategoryConfig(
                        monthly_limit=adjustment.new_limit,
                        warning_threshold=extra.warning_threshold if extra.warning_threshold is not None else settings.DEFAULT_WARNING_THRESHOLD,
                        is_active=extra.is_active,
                        color=extra.color,
                        description=extra.description,
                        type=extra.type,
                    )
                    keys[adjustment.category_name.lower()] = adjustment.category_name

        try:
            budget = templates.update(household_id, fold, commit=False)

            for adjustment in adjustments:
                self._record_history(household_id, adjustment, now)

            ids = [a.id for a in adjustments]
            marked = self.db.query(BudgetAdjustment).filter(
                BudgetAdjustment.id.in_(ids),
                BudgetAdjustment.is_applied == False
            ).update({
                BudgetAdjustment.is_applied: True,
                BudgetAdjustment.applied_at: now,
            }, synchronize_session="fetch")
            if marked != len(ids):
                raise ConcurrentVersionConflict("Adjustments were applied concurrently")

            deleted, locked = MonthlyBudgetService(self.db).delete_for_regeneration(
                household_id, year, month, regenerate_locked=regenerate_locked
            )
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConcurrentVersionConflict(details=str(exc.orig)) from exc
        except BaseAppException:
            self.db.rollback()
            raise

        self.db.refresh(budget)
        logger.info(
            f"Applied {len(adjustments)} adjustments for {year}-{month:02d} "
            f"(household {household_id}) -> template v{budget.version}"
        )
        audit(
            "adjustment.applied",
            household_id=household_id,
            effective=f"{year}-{month:02d}",
            count=len(adjustments),
            template_version=budget.version,
            snapshot_deleted=deleted,
            snapshot_locked=locked,
        )
        return ApplyAdjustmentsResult(
            year=year,
            month=month,
            applied_count=len(adjustments),
            personal_budget=PersonalBudgetSchema.model_validate(budget),
            snapshot_deleted=deleted,
            snapshot_locked=locked and not deleted,
        )

    def apply_due(self, today: Optional[date] = None) -> Dict[str, int]:
        """Apply every pending adjustment whose month has begun, across households."""
        today = today or today_in_budget_tz()
        current = current_year_month(today)

        due = self._due_periods(current)

        stats = {"periods": 0, "applied": 0, "skipped": 0, "conflicts": 0}
        for household_id, year, month in due:
            try:
                result = self.apply(household_id, year, month)
            except SetupRequiredError:
                logger.warning(f"Household {household_id} has adjustments for {year}-{month:02d} but no budget template")
                stats["skipped"] += 1
                continue
            except ConcurrentVersionConflict:
                logger.warning(f"Concurrent apply for household {household_id} {year}-{month:02d}; will retry next run")
                stats["conflicts"] += 1
                continue
            stats["periods"] += 1
            stats["applied"] += result.applied_count

        logger.info(f"Adjustment rollover for {today}: {stats}")
        return stats

    # ------------------------------------------------------------------
    # Category history and insights
    # ------------------------------------------------------------------

    def get_category_history(self, household_id: uuid.UUID, category_name: str) -> CategoryAdjustmentHistory:
        history = self._find_history(household_id, category_name)
        if history is None:
            raise NotFoundError(f"No adjustment history for '{category_name}'")
        return history

    def list_category_histories(self, household_id: uuid.UUID) -> List[CategoryAdjustmentHistory]:
        return self.db.query(CategoryAdjustmentHistory).filter(
            CategoryAdjustmentHistory.household_id == household_id
        ).order_by(CategoryAdjustmentHistory.last_adjusted_at.desc()).all()

    def most_adjusted_categories(self, household_id: uuid.UUID, limit: int = 5) -> List[CategoryAdjustmentHistory]:
        return self.db.query(CategoryAdjustmentHistory).filter(
            CategoryAdjustmentHistory.household_id == household_id
        ).order_by(
            CategoryAdjustmentHistory.adjustment_count.desc(),
            CategoryAdjustmentHistory.category_name
        ).limit(limit).all()

    def category_insights(self, household_id: uuid.UUID, category_name: str) -> CategoryInsights:
        history = self.get_category_history(household_id, category_name)
        template = PersonalBudgetService(self.db).find_active(household_id)
        current_limit = None
        if template is not None and category_name in template.categories:
            current_limit = template.categories[category_name].monthly_limit

        net = net_adjustment(history)
        if net > 0:
            trend = "increasing"
        elif net < 0:
            trend = "decreasing"
        else:
            trend = "stable"

        return CategoryInsights(
            category_name=history.category_name,
            current_limit=current_limit,
            adjustment_count=history.adjustment_count,
            average_adjustment=average_adjustment(history),
            net_adjustment=net,
            trend=trend,
            last_adjusted_at=history.last_adjusted_at,
            total_increased=history.total_increased_amount,
            total_decreased=history.total_decreased_amount,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _pending_query(self, household_id: uuid.UUID, year: int, month: int):
        return self.db.query(BudgetAdjustment).filter(
            BudgetAdjustment.household_id == household_id,
            BudgetAdjustment.effective_year == year,
            BudgetAdjustment.effective_month == month,
            BudgetAdjustment.is_applied == False
        )

    def _find_pending(self, household_id: uuid.UUID, category_name: str, year: int, month: int) -> Optional[BudgetAdjustment]:
        return self._pending_query(household_id, year, month).filter(
            func.lower(BudgetAdjustment.category_name) == category_name.lower()
        ).first()

    def _find_history(self, household_id: uuid.UUID, category_name: str) -> Optional[CategoryAdjustmentHistory]:
        return self.db.query(CategoryAdjustmentHistory).filter(
            CategoryAdjustmentHistory.household_id == household_id,
            CategoryAdjustmentHistory.category_name == category_name
        ).first()

    def _due_periods(self, current: Tuple[int, int]) -> List[Tuple[uuid.UUID, int, int]]:
        year, month = current
        rows = self.db.query(
            BudgetAdjustment.household_id,
            BudgetAdjustment.effective_year,
            BudgetAdjustment.effective_month,
        ).filter(
            BudgetAdjustment.is_applied == False,
            (BudgetAdjustment.effective_year < year)
            | ((BudgetAdjustment.effective_year == year) & (BudgetAdjustment.effective_month <= month))
        ).distinct().order_by(
            BudgetAdjustment.effective_year,
            BudgetAdjustment.effective_month
        ).all()
        return [(row[0], row[1], row[2]) for row in rows]

    def _record_history(self, household_id: uuid.UUID, adjustment: BudgetAdjustment, applied_at: datetime) -> None:
        history = self._find_history(household_id, adjustment.category_name)
        if history is None:
            history = CategoryAdjustmentHistory(
                household_id=household_id,
                category_name=adjustment.category_name,
                adjustment_count=0,
                first_adjustment_at=applied_at,
                total_increased_amount=Decimal("0"),
                total_decreased_amount=Decimal("0"),
            )
            self.db.add(history)

        history.adjustment_count = (history.adjustment_count or 0) + 1
        history.last_adjusted_at = applied_at
        amount = Decimal(adjustment.adjustment_amount)
        if adjustment.adjustment_type == AdjustmentType.INCREASE:
            history.total_increased_amount = Decimal(history.total_increased_amount or 0) + amount
        else:
            history.total_decreased_amount = Decimal(history.total_decreased_amount or 0) + amount
        self.db.flush()
