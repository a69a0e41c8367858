from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional, Dict, Any, Mapping
import logging
import uuid

from household_budget.models.category import Category, CategoryDeletedReason, CategoryType
from household_budget.models.category_merge_history import CategoryMergeHistory
from household_budget.models.category_adjustment_history import CategoryAdjustmentHistory
from household_budget.models.budget_adjustment import BudgetAdjustment
from household_budget.models.monthly_budget import MonthlyBudget
from household_budget.models.personal_budget import PersonalBudget
from household_budget.schemas.budget import CategoryConfig, TemplateDraft
from household_budget.schemas.category import CategoryCreate, CategoryUpdate, CategoryMergeResult
from household_budget.services.transaction_store import SqlTransactionStore, TransactionStore
from household_budget.core.config import settings
from household_budget.core.exceptions import (
    BaseAppException,
    CategoryInUse,
    ConcurrentVersionConflict,
    NotFoundError,
    ValidationError,
)
from household_budget.utils.audit import audit
from household_budget.utils.dates import current_year_month, today_in_budget_tz

logger = logging.getLogger(__name__)

# Default colors handed out to categories created without one
DEFAULT_CATEGORY_COLORS = [
    "#3B82F6",  # Blue
    "#10B981",  # Green
    "#F59E0B",  # Amber
    "#EF4444",  # Red
    "#8B5CF6",  # Purple
    "#EC4899",  # Pink
    "#06B6D4",  # Cyan
    "#F97316",  # Orange
    "#84CC16",  # Lime
    "#6366F1",  # Indigo
]


def _next_color(existing: List[Category]) -> str:
    used = {(c.color or "").lower() for c in existing}
    for color in DEFAULT_CATEGORY_COLORS:
        if color.lower() not in used:
            return color
    return settings.DEFAULT_CATEGORY_COLOR


def _entry_key(categories: Mapping[str, CategoryConfig], category: Category, name: Optional[str] = None) -> Optional[str]:
    """Key under which ``category`` appears in a name-keyed map, matching identity first."""
    for key, config in categories.items():
        if config.category_id == category.id:
            return key
    name = name or category.name
    config = categories.get(name)
    if config is not None and config.category_id in (None, category.id):
        return name
    return None


def _archived_name(taken, name: str) -> str:
    candidate = f"{name} (archived)"
    counter = 2
    while candidate.lower() in taken:
        candidate = f"{name} (archived {counter})"
        counter += 1
    return candidate


def _rename_key(categories: Mapping[str, CategoryConfig], category: Category, old_name: str, new_name: str, retired_ids) -> Optional[Dict[str, CategoryConfig]]:
    """Copy of ``categories`` with the category's key renamed, or None if untouched.

    An entry already holding the new name is moved aside to an archived key
    when it belongs to a deleted or merged category. Any other holder makes
    the rename impossible and raises ``ValidationError``.
    """
    key = _entry_key(categories, category, old_name)
    if key is None or key == new_name:
        return None

    holder = next((name for name in categories if name.lower() == new_name.lower() and name != key), None)
    archived = None
    if holder is not None:
        if categories[holder].category_id not in retired_ids:
            raise ValidationError(
                f"Cannot rename '{key}' to '{new_name}': the name is still used by another budget entry",
                error_code="duplicate_category",
            )
        archived = _archived_name({name.lower() for name in categories} | {new_name.lower()}, holder)

    renamed = {}
    for name, config in categories.items():
        if name == key:
            renamed[new_name] = config.model_copy(update={"category_id": category.id})
        elif name == holder:
            renamed[archived] = config
        else:
            renamed[name] = config
    return renamed


class CategoryService:

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def get_household_categories(db: Session, household_id: uuid.UUID, include_inactive: bool = False, include_deleted: bool = False, category_type: Optional[str] = None) -> List[Category]:
        """Get all categories for a household

        Args:
            db: Database session
            household_id: Household ID
            include_inactive: Whether to include deactivated categories
            include_deleted: Whether to include soft-deleted and merged categories
            category_type: Only return expense or income categories
        """
        query = db.query(Category).filter(Category.household_id == household_id)

        if not include_deleted:
            query = query.filter(Category.deleted_at.is_(None))

        if not include_inactive:
            query = query.filter(Category.is_active == True)

        if category_type:
            query = query.filter(Category.type == category_type)

        return query.order_by(Category.sort_order, Category.name).all()

    @staticmethod
    def get_category(db: Session, household_id: uuid.UUID, category_id: uuid.UUID) -> Category:
        category = db.query(Category).filter(
            Category.id == category_id,
            Category.household_id == household_id
        ).first()
        if not category:
            raise NotFoundError("Category not found")
        return category

    @staticmethod
    def get_by_name(db: Session, household_id: uuid.UUID, name: str) -> Optional[Category]:
        """Live (not deleted) category with this name, case-insensitive"""
        return db.query(Category).filter(
            Category.household_id == household_id,
            func.lower(Category.name) == name.strip().lower(),
            Category.deleted_at.is_(None)
        ).first()

    @staticmethod
    def usage_count(db: Session, household_id: uuid.UUID, category_id: uuid.UUID, store: Optional[TransactionStore] = None) -> int:
        store = store or SqlTransactionStore(db)
        return store.count_by_category(household_id, category_id)

    @staticmethod
    def get_category_usage_stats(db: Session, household_id: uuid.UUID, store: Optional[TransactionStore] = None) -> Dict[str, Any]:
        """Get usage statistics for household categories"""
        store = store or SqlTransactionStore(db)
        categories = CategoryService.get_household_categories(db, household_id, include_inactive=True)
        stats = {
            "total_categories": len(categories),
            "active_categories": len([c for c in categories if c.is_active]),
            "inactive_categories": len([c for c in categories if not c.is_active]),
            "expense_categories": len([c for c in categories if c.type == CategoryType.EXPENSE]),
            "income_categories": len([c for c in categories if c.type == CategoryType.INCOME]),
            "usage_by_category": {}
        }

        for category in categories:
            stats["usage_by_category"][category.name] = {
                "category_id": str(category.id),
                "transaction_count": store.count_by_category(household_id, category.id),
                "state": category.state,
                "type": category.type,
            }

        return stats

    @staticmethod
    def get_merge_history(db: Session, household_id: uuid.UUID) -> List[CategoryMergeHistory]:
        return db.query(CategoryMergeHistory).filter(
            CategoryMergeHistory.household_id == household_id
        ).order_by(CategoryMergeHistory.merged_at.desc()).all()

    @staticmethod
    def get_merge_lineage(db: Session, household_id: uuid.UUID, category_id: uuid.UUID) -> List[CategoryMergeHistory]:
        """Every merge that folded some category, directly or through a chain, into ``category_id``."""
        lineage = []
        frontier = {category_id}
        seen = set()
        while frontier:
            rows = db.query(CategoryMergeHistory).filter(
                CategoryMergeHistory.household_id == household_id,
                CategoryMergeHistory.target_category_id.in_(list(frontier))
            ).all()
            seen |= frontier
            frontier = set()
            for row in rows:
                lineage.append(row)
                if row.source_category_id not in seen:
                    frontier.add(row.source_category_id)
        return lineage

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @staticmethod
    def create_category(db: Session, household_id: uuid.UUID, category_data: CategoryCreate, commit: bool = True) -> Category:
        """Create a new category for a household"""
        category_name = category_data.name.strip()
        if not category_name:
            raise ValidationError("Category name cannot be blank")

        if CategoryService.get_by_name(db, household_id, category_name):
            raise ValidationError(f"Category '{category_name}' already exists", error_code="duplicate_category")

        color = category_data.color
        if not color:
            color = _next_color(CategoryService.get_household_categories(db, household_id, include_inactive=True))

        category = Category(
            household_id=household_id,
            name=category_name,
            type=category_data.type,
            color=color,
            description=category_data.description,
            monthly_limit=category_data.monthly_limit,
            warning_threshold=category_data.warning_threshold,
            is_active=category_data.is_active,
            sort_order=category_data.sort_order,
        )

        db.add(category)
        if commit:
            db.commit()
            db.refresh(category)
        else:
            db.flush()
        return category

    @staticmethod
    def get_or_create_category(db: Session, household_id: uuid.UUID, name: str, defaults: Optional[Dict[str, Any]] = None, commit: bool = True) -> Category:
        existing = CategoryService.get_by_name(db, household_id, name)
        if existing:
            return existing
        return CategoryService.create_category(
            db, household_id, CategoryCreate(name=name, **(defaults or {})), commit=commit
        )

    @staticmethod
    def ensure_categories(db: Session, household_id: uuid.UUID, categories: Mapping[str, CategoryConfig]) -> Dict[str, CategoryConfig]:
        """Give every entry of a name-keyed map a registry identity.

        Missing categories are created on first use; existing ones take the
        map's limit, threshold and color as their defaults. Flushes only.
        """
        existing = CategoryService.get_household_categories(db, household_id, include_inactive=True)
        by_id = {c.id: c for c in existing}
        by_name = {c.name.lower(): c for c in existing}

        resolved = {}
        claimed = {}
        for name, config in categories.items():
            category = by_id.get(config.category_id) if config.category_id else None
            if category is None:
                category = by_name.get(name.lower())

            if category is None:
                category = Category(
                    household_id=household_id,
                    name=name,
                    type=config.type or CategoryType.EXPENSE,
                    color=config.color or _next_color(existing),
                    description=config.description,
                    monthly_limit=config.monthly_limit,
                    warning_threshold=config.warning_threshold,
                    is_active=True,
                    sort_order=len(existing),
                )
                db.add(category)
                db.flush()
                existing.append(category)
                by_id[category.id] = category
                by_name[name.lower()] = category
                logger.info(f"Created category '{name}' on first use for household {household_id}")
            else:
                category.monthly_limit = config.monthly_limit
                category.warning_threshold = config.warning_threshold
                if config.color:
                    category.color = config.color

            if category.id in claimed:
                raise ValidationError(
                    f"'{claimed[category.id]}' and '{name}' both refer to category '{category.name}'",
                    error_code="duplicate_category",
                )
            claimed[category.id] = name

            resolved[name] = config.model_copy(update={
                "category_id": category.id,
                "color": config.color or category.color,
                "type": category.type,
            })

        db.flush()
        return resolved

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def update_category(db: Session, household_id: uuid.UUID, category_id: uuid.UUID, category_data: CategoryUpdate, actor_id: Optional[uuid.UUID] = None) -> Category:
        """Update display attributes and defaults; a name change goes through rename."""
        category = CategoryService._get_live(db, household_id, category_id)

        if category_data.name and category_data.name.strip() != category.name:
            category = CategoryService.rename_category(db, household_id, category_id, category_data.name, actor_id=actor_id)

        if category_data.type is not None:
            category.type = category_data.type

        if category_data.color is not None:
            category.color = category_data.color

        if category_data.description is not None:
            category.description = category_data.description

        if category_data.monthly_limit is not None:
            category.monthly_limit = category_data.monthly_limit

        if category_data.warning_threshold is not None:
            category.warning_threshold = category_data.warning_threshold

        if category_data.sort_order is not None:
            category.sort_order = category_data.sort_order

        db.commit()
        db.refresh(category)
        return category

    @staticmethod
    def rename_category(
        db: Session,
        household_id: uuid.UUID,
        category_id: uuid.UUID,
        new_name: str,
        actor_id: Optional[uuid.UUID] = None,
        store: Optional[TransactionStore] = None,
    ) -> Category:
        """Change a category's display name everywhere it is denormalized.

        Identity, limits, thresholds and transaction membership are untouched.
        Template versions, both maps of every month snapshot, scheduled
        adjustments, adjustment history and transaction labels are relabelled
        in one transaction.
        """
        store = store or SqlTransactionStore(db)
        category = CategoryService._get_live(db, household_id, category_id)
        new_name = new_name.strip()
        if not new_name:
            raise ValidationError("Category name cannot be blank")

        old_name = category.name
        if new_name == old_name:
            return category

        clash = CategoryService.get_by_name(db, household_id, new_name)
        if clash and clash.id != category.id:
            raise ValidationError(f"Category '{new_name}' already exists", error_code="duplicate_category")

        retired_ids = {
            row.id for row in db.query(Category.id).filter(
                Category.household_id == household_id,
                Category.deleted_at.isnot(None)
            ).all()
        }

        try:
            category.name = new_name

            versions = 0
            for budget in db.query(PersonalBudget).filter(PersonalBudget.household_id == household_id).all():
                renamed = _rename_key(budget.categories or {}, category, old_name, new_name, retired_ids)
                if renamed is not None:
                    budget.categories = renamed
                    versions += 1
                active_list = (budget.global_settings or {}).get("active_expense_categories") or []
                if old_name in active_list:
                    budget.global_settings = {
                        **budget.global_settings,
                        "active_expense_categories": [new_name if n == old_name else n for n in active_list],
                    }

            snapshots = 0
            for snapshot in db.query(MonthlyBudget).filter(MonthlyBudget.household_id == household_id).all():
                renamed = _rename_key(snapshot.categories or {}, category, old_name, new_name, retired_ids)
                renamed_original = _rename_key(snapshot.original_categories or {}, category, old_name, new_name, retired_ids)
                if renamed is not None:
                    snapshot.categories = renamed
                if renamed_original is not None:
                    snapshot.original_categories = renamed_original
                if renamed is not None or renamed_original is not None:
                    snapshots += 1

            db.query(BudgetAdjustment).filter(
                BudgetAdjustment.household_id == household_id,
                BudgetAdjustment.category_name == old_name
            ).update({BudgetAdjustment.category_name: new_name}, synchronize_session="fetch")

            CategoryService._rename_history(db, household_id, old_name, new_name)

            transactions = store.relabel_category(household_id, category.id, new_name)

            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConcurrentVersionConflict(details=str(exc.orig)) from exc
        except BaseAppException:
            db.rollback()
            raise

        db.refresh(category)
        logger.info(f"Renamed category '{old_name}' -> '{new_name}' ({versions} template versions, {snapshots} snapshots, {transactions} transactions)")
        audit(
            "category.renamed",
            household_id=household_id,
            actor_id=actor_id,
            category_id=category.id,
            old_name=old_name,
            new_name=new_name,
            template_versions=versions,
            monthly_budgets=snapshots,
            transactions=transactions,
        )
        return category

    @staticmethod
    def deactivate_category(
        db: Session,
        household_id: uuid.UUID,
        category_id: uuid.UUID,
        reassign_to: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
        store: Optional[TransactionStore] = None,
    ) -> Category:
        """Mark a category inactive. Blocked while transactions use it unless they are reassigned."""
        store = store or SqlTransactionStore(db)
        category = CategoryService._get_live(db, household_id, category_id)
        if not category.is_active:
            return category

        try:
            moved = CategoryService._release_transactions(db, household_id, category, reassign_to, store)
            category.is_active = False
            CategoryService._set_template_entry(
                db, household_id, category, actor_id,
                lambda categories, key: categories.__setitem__(key, categories[key].model_copy(update={"is_active": False})),
            )
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConcurrentVersionConflict(details=str(exc.orig)) from exc
        except BaseAppException:
            db.rollback()
            raise

        db.refresh(category)
        audit("category.deactivated", household_id=household_id, actor_id=actor_id, category_id=category.id, transactions_moved=moved)
        return category

    @staticmethod
    def reactivate_category(db: Session, household_id: uuid.UUID, category_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> Category:
        category = CategoryService._get_live(db, household_id, category_id)
        if category.is_active:
            return category

        try:
            category.is_active = True
            CategoryService._set_template_entry(
                db, household_id, category, actor_id,
                lambda categories, key: categories.__setitem__(key, categories[key].model_copy(update={"is_active": True})),
            )
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConcurrentVersionConflict(details=str(exc.orig)) from exc
        except BaseAppException:
            db.rollback()
            raise

        db.refresh(category)
        audit("category.reactivated", household_id=household_id, actor_id=actor_id, category_id=category.id)
        return category

    @staticmethod
    def delete_category(
        db: Session,
        household_id: uuid.UUID,
        category_id: uuid.UUID,
        reassign_to: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
        store: Optional[TransactionStore] = None,
    ) -> Category:
        """Soft delete a category. The row stays so history can still resolve it."""
        store = store or SqlTransactionStore(db)
        category = CategoryService._get_live(db, household_id, category_id)

        try:
            moved = CategoryService._release_transactions(db, household_id, category, reassign_to, store)
            category.deleted_at = datetime.now(timezone.utc)
            category.deleted_reason = CategoryDeletedReason.USER_DELETED
            category.is_active = False
            cancelled = CategoryService._cancel_pending_adjustments(db, household_id, category.name)
            CategoryService._set_template_entry(
                db, household_id, category, actor_id,
                lambda categories, key: categories.pop(key),
            )
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConcurrentVersionConflict(details=str(exc.orig)) from exc
        except BaseAppException:
            db.rollback()
            raise

        db.refresh(category)
        audit(
            "category.deleted",
            household_id=household_id,
            actor_id=actor_id,
            category_id=category.id,
            transactions_moved=moved,
            adjustments_cancelled=cancelled,
        )
        return category

    @staticmethod
    def restore_category(db: Session, household_id: uuid.UUID, category_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> Category:
        """Undo a user delete. Merged categories stay merged."""
        category = CategoryService.get_category(db, household_id, category_id)
        if not category.is_deleted:
            return category
        if category.is_merged:
            raise ValidationError("Merged categories cannot be restored", error_code="category_merged")

        clash = CategoryService.get_by_name(db, household_id, category.name)
        if clash:
            raise ValidationError(f"Category '{category.name}' already exists", error_code="duplicate_category")

        category.deleted_at = None
        category.deleted_reason = None
        category.is_active = True
        db.commit()
        db.refresh(category)
        audit("category.restored", household_id=household_id, actor_id=actor_id, category_id=category.id)
        return category

    @staticmethod
    def merge_categories(
        db: Session,
        household_id: uuid.UUID,
        source_category_id: uuid.UUID,
        target_category_id: uuid.UUID,
        merged_by: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
        store: Optional[TransactionStore] = None,
        today: Optional[date] = None,
    ) -> CategoryMergeResult:
        """Fold ``source`` into ``target``.

        The target's limit becomes source + target in the live template and in
        every current or future unlocked month; elapsed months keep their
        split. Transactions move to the target, the source is soft-deleted
        with a forward pointer and a merge history row is appended.
        """
        # Import here to avoid circular import
        from household_budget.services.personal_budget_service import PersonalBudgetService

        if source_category_id == target_category_id:
            raise ValidationError("Cannot merge a category into itself")

        store = store or SqlTransactionStore(db)
        source = CategoryService._get_live(db, household_id, source_category_id)
        target = CategoryService._get_live(db, household_id, target_category_id)
        for category in (source, target):
            if not category.is_active:
                raise ValidationError(
                    f"Category '{category.name}' is inactive; reactivate it before merging",
                    error_code="category_inactive",
                )
        if source.type != target.type:
            raise ValidationError(
                f"Cannot merge {source.type} category '{source.name}' into {target.type} category '{target.name}'",
                error_code="category_type_mismatch",
            )
        now = datetime.now(timezone.utc)
        current_period = current_year_month(today or today_in_budget_tz())

        templates = PersonalBudgetService(db)
        template = templates.find_active(household_id)
        source_limit = Decimal(source.monthly_limit or 0)
        target_limit = Decimal(target.monthly_limit or 0)
        if template is not None:
            source_key = _entry_key(template.categories, source)
            target_key = _entry_key(template.categories, target)
            if source_key:
                source_limit = template.categories[source_key].monthly_limit
            if target_key:
                target_limit = template.categories[target_key].monthly_limit
        combined_limit = source_limit + target_limit

        try:
            moved = store.reassign_category(household_id, source.id, target.id, target.name, "merge")

            if template is not None:
                def fold_into_target(draft: TemplateDraft):
                    src_key = _entry_key(draft.categories, source)
                    tgt_key = _entry_key(draft.categories, target)
                    if src_key:
                        draft.categories.pop(src_key)
                    if tgt_key:
                        draft.categories[tgt_key] = draft.categories[tgt_key].model_copy(update={"monthly_limit": combined_limit})
                    else:
                        draft.categories[target.name] = CategoryConfig(
                            monthly_limit=combined_limit,
                            type=target.type,
                            warning_threshold=target.warning_threshold,
                            is_active=target.is_active,
                            color=target.color,
                            description=target.description,
                            category_id=target.id,
                        )
                    active_list = draft.global_settings.active_expense_categories
                    if source.name in active_list:
                        draft.global_settings.active_expense_categories = [n for n in active_list if n != source.name]

                templates.update(household_id, fold_into_target, created_by=merged_by, commit=False)

            snapshots = CategoryService._fold_snapshots(db, household_id, source, target, current_period)
            cancelled = CategoryService._cancel_pending_adjustments(db, household_id, source.name)

            target.monthly_limit = combined_limit
            source.is_active = False
            source.deleted_at = now
            source.deleted_reason = CategoryDeletedReason.MERGED
            source.merged_into_id = target.id

            history = CategoryMergeHistory(
                household_id=household_id,
                source_category_id=source.id,
                target_category_id=target.id,
                source_category_name=source.name,
                target_category_name=target.name,
                source_category_color=source.color,
                source_category_monthly_limit=source_limit,
                source_category_settings={
                    "type": source.type,
                    "description": source.description,
                    "warning_threshold": source.warning_threshold,
                    "sort_order": source.sort_order,
                    "default_monthly_limit": str(source.monthly_limit) if source.monthly_limit is not None else None,
                },
                transactions_affected=moved,
                monthly_budgets_affected=snapshots,
                adjustments_cancelled=cancelled,
                merged_at=now,
                merged_by=merged_by,
                merge_reason=reason,
            )
            db.add(history)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConcurrentVersionConflict(details=str(exc.orig)) from exc
        except BaseAppException:
            db.rollback()
            raise

        logger.info(f"Merged category '{source.name}' into '{target.name}': {moved} transactions, {snapshots} monthly budgets")
        audit(
            "category.merged",
            household_id=household_id,
            actor_id=merged_by,
            source_category_id=source.id,
            target_category_id=target.id,
            combined_limit=combined_limit,
            transactions=moved,
            monthly_budgets=snapshots,
            adjustments_cancelled=cancelled,
        )
        return CategoryMergeResult(
            merge_id=history.id,
            source_category_id=source.id,
            target_category_id=target.id,
            combined_limit=combined_limit,
            transactions_updated=moved,
            monthly_budgets_updated=snapshots,
            adjustments_cancelled=cancelled,
            source_deleted=True,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _get_live(db: Session, household_id: uuid.UUID, category_id: uuid.UUID) -> Category:
        category = CategoryService.get_category(db, household_id, category_id)
        if category.is_deleted:
            raise NotFoundError(f"Category '{category.name}' has been {category.state}")
        return category

    @staticmethod
    def _release_transactions(db: Session, household_id: uuid.UUID, category: Category, reassign_to: Optional[uuid.UUID], store: TransactionStore) -> int:
        count = store.count_by_category(household_id, category.id)
        if count == 0:
            return 0
        if reassign_to is None:
            raise CategoryInUse(category.name, count)
        if reassign_to == category.id:
            raise ValidationError("Cannot reassign transactions to the same category")
        target = CategoryService._get_live(db, household_id, reassign_to)
        return store.reassign_category(household_id, category.id, target.id, target.name, "reassigned")

    @staticmethod
    def _set_template_entry(db: Session, household_id: uuid.UUID, category: Category, actor_id, edit) -> None:
        """Apply ``edit(categories, key)`` to the live template as a new version, if the category is in it."""
        from household_budget.services.personal_budget_service import PersonalBudgetService

        templates = PersonalBudgetService(db)
        template = templates.find_active(household_id)
        if template is None or _entry_key(template.categories, category) is None:
            return

        def mutate(draft: TemplateDraft):
            key = _entry_key(draft.categories, category)
            if key is not None:
                edit(draft.categories, key)

        templates.update(household_id, mutate, created_by=actor_id, commit=False)

    @staticmethod
    def _fold_snapshots(db: Session, household_id: uuid.UUID, source: Category, target: Category, current_period) -> int:
        year, month = current_period
        snapshots = db.query(MonthlyBudget).filter(
            MonthlyBudget.household_id == household_id,
            MonthlyBudget.is_locked == False,
            (MonthlyBudget.year > year) | ((MonthlyBudget.year == year) & (MonthlyBudget.month >= month))
        ).all()

        touched = 0
        for snapshot in snapshots:
            categories = dict(snapshot.categories or {})
            src_key = _entry_key(categories, source)
            if src_key is None:
                continue
            src_config = categories.pop(src_key)
            tgt_key = _entry_key(categories, target)
            if tgt_key:
                tgt_config = categories[tgt_key]
                categories[tgt_key] = tgt_config.model_copy(update={
                    "monthly_limit": tgt_config.monthly_limit + src_config.monthly_limit,
                    "category_id": target.id,
                })
            else:
                categories[target.name] = src_config.model_copy(update={
                    "category_id": target.id,
                    "color": target.color,
                    "warning_threshold": target.warning_threshold,
                    "type": target.type,
                })
            snapshot.categories = categories
            snapshot.adjustment_count = (snapshot.adjustment_count or 0) + 1
            touched += 1
        db.flush()
        return touched

    @staticmethod
    def _cancel_pending_adjustments(db: Session, household_id: uuid.UUID, category_name: str) -> int:
        return db.query(BudgetAdjustment).filter(
            BudgetAdjustment.household_id == household_id,
            BudgetAdjustment.category_name == category_name,
            BudgetAdjustment.is_applied == False
        ).delete(synchronize_session="fetch")

    @staticmethod
    def _rename_history(db: Session, household_id: uuid.UUID, old_name: str, new_name: str) -> None:
        rows = db.query(CategoryAdjustmentHistory).filter(
            CategoryAdjustmentHistory.household_id == household_id
        ).all()
        old = next((row for row in rows if row.category_name == old_name), None)
        holder = next((row for row in rows if row.category_name.lower() == new_name.lower() and row is not old), None)
        if holder is not None:
            # Left behind by a deleted or merged category that used the name
            holder.category_name = _archived_name({row.category_name.lower() for row in rows} | {new_name.lower()}, holder.category_name)
            db.flush()
        if old is not None:
            old.category_name = new_name
