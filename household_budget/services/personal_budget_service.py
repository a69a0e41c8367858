from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import Callable, Dict, List, Mapping, Optional, Union
import logging
import uuid

from household_budget.models.category import Category
from household_budget.models.personal_budget import PersonalBudget
from household_budget.schemas.budget import CategoryConfig, GlobalBudgetSettings, TemplateDraft
from household_budget.core.config import settings
from household_budget.core.exceptions import (
    ActiveVersionProtected,
    BaseAppException,
    ConcurrentVersionConflict,
    HouseholdHasNoTemplate,
    NotFoundError,
    ValidationError,
)
from household_budget.utils.audit import audit

logger = logging.getLogger(__name__)

TemplateMutator = Callable[[TemplateDraft], Optional[TemplateDraft]]
CategoryInput = Mapping[str, Union[CategoryConfig, dict]]


def _coerce_categories(categories: Optional[CategoryInput]) -> Dict[str, CategoryConfig]:
    result = {}
    seen = set()
    for name, config in (categories or {}).items():
        clean_name = name.strip()
        if not clean_name:
            raise ValidationError("Category names cannot be blank")
        # Names are matched case-insensitively everywhere else
        if clean_name.lower() in seen:
            raise ValidationError(f"Category '{clean_name}' appears more than once")
        seen.add(clean_name.lower())
        if not isinstance(config, CategoryConfig):
            config = CategoryConfig.model_validate(config)
        result[clean_name] = config.model_copy(deep=True)
    return result


class PersonalBudgetService:
    """Versioned budget templates.

    Every create/update inserts a new version row and moves the household's
    single active flag onto it. Old versions are kept as they were written.
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_active(self, household_id: uuid.UUID) -> Optional[PersonalBudget]:
        return self.db.query(PersonalBudget).filter(
            PersonalBudget.household_id == household_id,
            PersonalBudget.is_active == True
        ).first()

    def get_active(self, household_id: uuid.UUID) -> PersonalBudget:
        """Active version, or ``HouseholdHasNoTemplate`` for unconfigured households."""
        budget = self.find_active(household_id)
        if budget is None:
            raise HouseholdHasNoTemplate(household_id)
        return budget

    def get_history(self, household_id: uuid.UUID) -> List[PersonalBudget]:
        """All versions, newest first"""
        return self.db.query(PersonalBudget).filter(
            PersonalBudget.household_id == household_id
        ).order_by(PersonalBudget.version.desc()).all()

    def get_by_id(self, household_id: uuid.UUID, budget_id: uuid.UUID) -> PersonalBudget:
        budget = self.db.query(PersonalBudget).filter(
            PersonalBudget.id == budget_id,
            PersonalBudget.household_id == household_id
        ).first()
        if not budget:
            raise NotFoundError("Budget template version not found")
        return budget

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        household_id: uuid.UUID,
        categories: Optional[CategoryInput] = None,
        global_settings: Optional[Union[GlobalBudgetSettings, dict]] = None,
        name: str = "Personal Budget",
        notes: Optional[str] = None,
        created_by: Optional[uuid.UUID] = None,
        commit: bool = True,
    ) -> PersonalBudget:
        """Create a new template version from scratch and make it active."""
        if global_settings is None:
            global_settings = GlobalBudgetSettings(currency=settings.DEFAULT_CURRENCY)
        elif not isinstance(global_settings, GlobalBudgetSettings):
            global_settings = GlobalBudgetSettings.model_validate(global_settings)

        draft = TemplateDraft(
            name=name,
            categories=_coerce_categories(categories),
            global_settings=global_settings,
            notes=notes,
        )
        current = self.find_active(household_id)
        return self._write_version(
            household_id,
            draft,
            expected_active_id=current.id if current else None,
            created_by=created_by,
            commit=commit,
        )

    def update(
        self,
        household_id: uuid.UUID,
        mutator: TemplateMutator,
        created_by: Optional[uuid.UUID] = None,
        commit: bool = True,
    ) -> PersonalBudget:
        """Derive a new version from the active one.

        ``mutator`` receives a deep copy of the active version as a
        ``TemplateDraft``; it may edit it in place or return a replacement.
        """
        active = self.get_active(household_id)
        draft = self.draft_from(active)
        result = mutator(draft)
        if result is not None:
            draft = result
        draft.categories = _coerce_categories(draft.categories)

        return self._write_version(
            household_id,
            draft,
            expected_active_id=active.id,
            created_by=created_by,
            commit=commit,
        )

    def set_active(self, household_id: uuid.UUID, budget_id: uuid.UUID, created_by: Optional[uuid.UUID] = None) -> PersonalBudget:
        """Re-activate an existing version (rollback).

        A version that still lists deleted or merged categories is not
        flipped back on. A new version is written from it without those
        entries, so the active template never points at a retired category.
        """
        target = self.get_by_id(household_id, budget_id)
        if target.is_active:
            return target

        current = self.find_active(household_id)
        retired = self._retired_entries(household_id, target)
        if retired:
            draft = self.draft_from(target)
            for name in retired:
                del draft.categories[name]
            budget = self._write_version(
                household_id,
                draft,
                expected_active_id=current.id if current else None,
                created_by=created_by,
                commit=True,
            )
            logger.info(
                f"Restored budget template v{target.version} as v{budget.version} for household {household_id}, "
                f"dropping retired categories {retired}"
            )
            audit(
                "template.activated",
                household_id=household_id,
                actor_id=created_by,
                version=budget.version,
                restored_from=target.version,
                previous_version=current.version if current else None,
                dropped_categories=retired,
            )
            return budget

        try:
            self._deactivate_current(household_id, current.id if current else None)
            updated = self.db.query(PersonalBudget).filter(
                PersonalBudget.id == target.id,
                PersonalBudget.household_id == household_id,
                PersonalBudget.is_active == False
            ).update({PersonalBudget.is_active: True}, synchronize_session="fetch")
            if updated != 1:
                raise ConcurrentVersionConflict("Template version changed while activating")
            self.db.flush()
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConcurrentVersionConflict(details=str(exc.orig)) from exc
        except ConcurrentVersionConflict:
            self.db.rollback()
            raise

        self.db.refresh(target)
        logger.info(f"Activated budget template v{target.version} for household {household_id}")
        audit(
            "template.activated",
            household_id=household_id,
            version=target.version,
            previous_version=current.version if current else None,
        )
        return target

    def delete(self, household_id: uuid.UUID, budget_id: uuid.UUID) -> None:
        """Delete an inactive version. The active version is protected."""
        target = self.get_by_id(household_id, budget_id)
        if target.is_active:
            raise ActiveVersionProtected(target.version)

        version = target.version
        self.db.delete(target)
        self.db.commit()
        audit("template.deleted", household_id=household_id, version=version)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def draft_from(budget: PersonalBudget) -> TemplateDraft:
        return TemplateDraft(
            name=budget.name,
            categories={name: config.model_copy(deep=True) for name, config in (budget.categories or {}).items()},
            global_settings=GlobalBudgetSettings.model_validate(budget.global_settings or {}),
            notes=budget.notes,
        )

    def _next_version(self, household_id: uuid.UUID) -> int:
        current_max = self.db.query(func.max(PersonalBudget.version)).filter(
            PersonalBudget.household_id == household_id
        ).scalar()
        return (current_max or 0) + 1

    def _retired_entries(self, household_id: uuid.UUID, budget: PersonalBudget) -> List[str]:
        """Names in ``budget`` whose category has since been deleted or merged"""
        ids = {config.category_id for config in (budget.categories or {}).values() if config.category_id}
        if not ids:
            return []
        retired_ids = {row.id for row in self.db.query(Category.id).filter(
            Category.household_id == household_id,
            Category.id.in_(ids),
            Category.deleted_at.isnot(None)
        ).all()}
        return sorted(
            name for name, config in budget.categories.items()
            if config.category_id in retired_ids
        )

    def _deactivate_current(self, household_id: uuid.UUID, expected_active_id: Optional[uuid.UUID]) -> None:
        """Flip the active version off, provided it is still the one we read."""
        active_query = self.db.query(PersonalBudget).filter(
            PersonalBudget.household_id == household_id,
            PersonalBudget.is_active == True
        )
        if expected_active_id is None:
            if active_query.count() > 0:
                raise ConcurrentVersionConflict("Another template version became active concurrently")
            return

        updated = active_query.filter(
            PersonalBudget.id == expected_active_id
        ).update({PersonalBudget.is_active: False}, synchronize_session="fetch")
        if updated != 1:
            raise ConcurrentVersionConflict("Active template version changed concurrently")

    def _write_version(
        self,
        household_id: uuid.UUID,
        draft: TemplateDraft,
        expected_active_id: Optional[uuid.UUID],
        created_by: Optional[uuid.UUID],
        commit: bool,
    ) -> PersonalBudget:
        # Import here to avoid circular import
        from household_budget.services.category_service import CategoryService

        try:
            categories = CategoryService.ensure_categories(self.db, household_id, draft.categories)
            self._deactivate_current(household_id, expected_active_id)

            budget = PersonalBudget(
                household_id=household_id,
                version=self._next_version(household_id),
                name=draft.name,
                categories=categories,
                global_settings=draft.global_settings.model_dump(mode="json"),
                is_active=True,
                notes=draft.notes,
                created_by=created_by,
            )
            self.db.add(budget)
            self.db.flush()
            if commit:
                self.db.commit()
                self.db.refresh(budget)
        except IntegrityError as exc:
            self.db.rollback()
            raise ConcurrentVersionConflict(details=str(exc.orig)) from exc
        except BaseAppException:
            self.db.rollback()
            raise

        logger.info(f"Created budget template v{budget.version} for household {household_id}")
        if not commit:
            # Caller owns the transaction and the audit record
            return budget
        audit(
            "template.version_created",
            household_id=household_id,
            actor_id=created_by,
            version=budget.version,
            categories=len(categories),
        )
        return budget
