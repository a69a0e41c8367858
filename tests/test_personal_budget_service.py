import uuid
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from household_budget.core.exceptions import (
    ActiveVersionProtected,
    ConcurrentVersionConflict,
    HouseholdHasNoTemplate,
    ValidationError,
)
from household_budget.models.personal_budget import PersonalBudget
from household_budget.services.category_service import CategoryService
from household_budget.services.personal_budget_service import PersonalBudgetService


def _active_count(db, household_id):
    return db.query(PersonalBudget).filter(
        PersonalBudget.household_id == household_id,
        PersonalBudget.is_active == True
    ).count()


def test_create_first_version_is_active(db_session, household_id, template, category_by_name):
    assert template.version == 1
    assert template.is_active is True
    assert template.categories["Groceries"].monthly_limit == Decimal("500")
    # Every entry is tied to a registry row
    groceries = category_by_name("Groceries")
    assert template.categories["Groceries"].category_id == groceries.id
    assert groceries.monthly_limit == Decimal("500")


def test_category_names_differing_only_in_case_are_rejected(db_session, household_id, template):
    service = PersonalBudgetService(db_session)
    with pytest.raises(ValidationError):
        service.create(uuid.uuid4(), categories={"Rent": {"monthly_limit": "900"}, "rent": {"monthly_limit": "950"}})

    def add_lowercase_dining(draft):
        draft.categories["dining"] = draft.categories["Dining"].model_copy(update={"category_id": None})

    with pytest.raises(ValidationError):
        service.update(household_id, add_lowercase_dining)
    assert service.get_active(household_id).id == template.id


def test_update_writes_new_version_and_keeps_old(db_session, household_id, template):
    service = PersonalBudgetService(db_session)

    def raise_groceries(draft):
        draft.categories["Groceries"].monthly_limit = Decimal("550")

    v2 = service.update(household_id, raise_groceries)

    assert v2.version == 2
    assert v2.categories["Groceries"].monthly_limit == Decimal("550")
    v1 = service.get_by_id(household_id, template.id)
    assert v1.is_active is False
    assert v1.categories["Groceries"].monthly_limit == Decimal("500")
    assert _active_count(db_session, household_id) == 1
    assert [b.version for b in service.get_history(household_id)] == [2, 1]


def test_mutator_may_return_replacement_draft(db_session, household_id, template):
    service = PersonalBudgetService(db_session)

    def rename(draft):
        return draft.model_copy(update={"name": "Lean months"})

    v2 = service.update(household_id, rename)
    assert v2.name == "Lean months"
    assert set(v2.categories) == {"Groceries", "Dining", "Food"}


def test_get_active_without_template_signals_setup(db_session):
    service = PersonalBudgetService(db_session)
    new_household = uuid.uuid4()

    assert service.find_active(new_household) is None
    with pytest.raises(HouseholdHasNoTemplate):
        service.get_active(new_household)


def test_set_active_rolls_back_to_earlier_version(db_session, household_id, template):
    service = PersonalBudgetService(db_session)
    def drop_dining(draft):
        del draft.categories["Dining"]

    service.update(household_id, drop_dining)

    restored = service.set_active(household_id, template.id)

    assert restored.is_active is True
    assert service.get_active(household_id).id == template.id
    assert _active_count(db_session, household_id) == 1


def test_set_active_drops_categories_retired_since(db_session, household_id, template, today, category_by_name):
    service = PersonalBudgetService(db_session)
    dining = category_by_name("Dining")
    food = category_by_name("Food")
    CategoryService.merge_categories(db_session, household_id, dining.id, food.id, today=today)

    restored = service.set_active(household_id, template.id)

    # Written as a new version so the old one stays as it was
    assert restored.id != template.id
    assert restored.version == 3
    assert set(restored.categories) == {"Groceries", "Food"}
    assert restored.categories["Food"].monthly_limit == Decimal("200")
    assert service.get_active(household_id).id == restored.id
    assert _active_count(db_session, household_id) == 1

    old = service.get_by_id(household_id, template.id)
    assert old.is_active is False
    assert old.categories["Dining"].category_id == dining.id


def test_set_active_skips_deleted_category(db_session, household_id, template, category_by_name):
    service = PersonalBudgetService(db_session)
    CategoryService.delete_category(db_session, household_id, category_by_name("Groceries").id)

    restored = service.set_active(household_id, template.id)

    assert "Groceries" not in restored.categories
    assert restored.is_active is True


def test_delete_protects_active_version(db_session, household_id, template):
    service = PersonalBudgetService(db_session)
    with pytest.raises(ActiveVersionProtected):
        service.delete(household_id, template.id)

    service.update(household_id, lambda draft: None)
    service.delete(household_id, template.id)
    assert [b.version for b in service.get_history(household_id)] == [2]


def test_stale_active_read_raises_conflict(db_session, household_id, template):
    service = PersonalBudgetService(db_session)
    with pytest.raises(ConcurrentVersionConflict):
        service._deactivate_current(household_id, uuid.uuid4())


def test_database_rejects_second_active_version(db_session, household_id, template):
    db_session.add(PersonalBudget(
        household_id=household_id,
        version=99,
        name="Rogue",
        categories={},
        global_settings={},
        is_active=True,
    ))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_duplicate_names_after_trimming_are_rejected(db_session, household_id):
    service = PersonalBudgetService(db_session)
    with pytest.raises(ValidationError):
        service.create(household_id, categories={"Rent": {"monthly_limit": 1}, " Rent ": {"monthly_limit": 2}})
