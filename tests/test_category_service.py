from decimal import Decimal

import pytest

from household_budget.core.exceptions import CategoryInUse, NotFoundError, ValidationError
from household_budget.models.transaction import Transaction
from household_budget.schemas.budget import CategoryConfig
from household_budget.schemas.category import CategoryCreate, CategoryUpdate
from household_budget.services.budget_adjustment_service import BudgetAdjustmentService
from household_budget.services.category_service import CategoryService
from household_budget.services.monthly_budget_service import MonthlyBudgetService
from household_budget.services.personal_budget_service import PersonalBudgetService


def _active_template(db, household_id):
    return PersonalBudgetService(db).get_active(household_id)


def test_create_category_rejects_duplicate_live_name(db_session, household_id, template):
    with pytest.raises(ValidationError):
        CategoryService.create_category(db_session, household_id, CategoryCreate(name="groceries"))

    pets = CategoryService.create_category(db_session, household_id, CategoryCreate(name="Pets"))
    assert pets.color  # picked from the palette
    assert CategoryService.get_or_create_category(db_session, household_id, "pets").id == pets.id


def test_rename_rewrites_every_name_keyed_copy(db_session, household_id, template, today, category_by_name, add_transactions):
    food = category_by_name("Food")
    add_transactions(food, 3)
    snapshots = MonthlyBudgetService(db_session)
    november = snapshots.get_or_create(household_id, 2025, 11, today=today)
    adjustment = BudgetAdjustmentService(db_session).schedule(
        household_id, "Food", Decimal("200"), Decimal("250"), today=today
    )

    renamed = CategoryService.rename_category(db_session, household_id, food.id, "Household Food")

    assert renamed.id == food.id
    assert renamed.name == "Household Food"
    active = _active_template(db_session, household_id)
    assert "Food" not in active.categories
    entry = active.categories["Household Food"]
    assert entry.monthly_limit == Decimal("200")
    assert entry.color == "#10B981"
    assert entry.category_id == food.id
    assert entry.warning_threshold == 80
    assert entry.is_active is True

    db_session.refresh(november)
    assert "Household Food" in november.categories
    month_entry = november.categories["Household Food"]
    assert month_entry.monthly_limit == Decimal("200")
    assert month_entry.warning_threshold == 80
    assert month_entry.is_active is True
    assert month_entry.category_id == food.id
    assert "Food" not in november.categories
    assert "Household Food" in november.original_categories
    db_session.refresh(adjustment)
    assert adjustment.category_name == "Household Food"

    rows = db_session.query(Transaction).filter(Transaction.category_id == food.id).all()
    assert len(rows) == 3
    assert {row.category for row in rows} == {"Household Food"}


def test_rename_to_existing_name_is_rejected(db_session, household_id, template, category_by_name):
    with pytest.raises(ValidationError):
        CategoryService.rename_category(db_session, household_id, category_by_name("Food").id, "Dining")


def test_rename_onto_name_of_deleted_category_archives_old_entries(db_session, household_id, template, today, category_by_name):
    dining = category_by_name("Dining")
    food = category_by_name("Food")
    november = MonthlyBudgetService(db_session).get_or_create(household_id, 2025, 11, today=today)
    CategoryService.delete_category(db_session, household_id, dining.id)

    CategoryService.rename_category(db_session, household_id, food.id, "Dining")

    db_session.refresh(november)
    db_session.refresh(template)
    for categories in (november.categories, november.original_categories, template.categories):
        assert "Food" not in categories
        assert categories["Dining"].category_id == food.id
        assert categories["Dining"].monthly_limit == Decimal("200")
        archived = categories["Dining (archived)"]
        assert archived.category_id == dining.id
        assert archived.monthly_limit == Decimal("100")
        assert archived.warning_threshold == 70
    active = _active_template(db_session, household_id)
    assert set(active.categories) == {"Groceries", "Dining"}
    assert active.categories["Dining"].category_id == food.id


def test_rename_blocked_by_entry_without_identity_changes_nothing(db_session, household_id, template, today, category_by_name):
    food = category_by_name("Food")
    november = MonthlyBudgetService(db_session).get_or_create(household_id, 2025, 11, today=today)
    november.categories = {**november.categories, "Pets": CategoryConfig(monthly_limit=Decimal("40"))}
    db_session.commit()

    with pytest.raises(ValidationError):
        CategoryService.rename_category(db_session, household_id, food.id, "Pets")

    db_session.refresh(food)
    db_session.refresh(november)
    assert food.name == "Food"
    assert "Food" in november.categories
    assert november.categories["Pets"].category_id is None
    assert "Food" in _active_template(db_session, household_id).categories



def test_update_category_routes_name_change_through_rename(db_session, household_id, template, category_by_name):
    dining = category_by_name("Dining")
    updated = CategoryService.update_category(
        db_session, household_id, dining.id, CategoryUpdate(name="Eating Out", sort_order=3)
    )
    assert updated.name == "Eating Out"
    assert updated.sort_order == 3
    assert "Eating Out" in _active_template(db_session, household_id).categories


def test_merge_combines_limits_and_moves_transactions(db_session, household_id, template, today, category_by_name, add_transactions):
    dining = category_by_name("Dining")
    food = category_by_name("Food")
    add_transactions(dining, 2)
    add_transactions(food, 1)
    BudgetAdjustmentService(db_session).schedule(household_id, "Dining", Decimal("100"), Decimal("120"), today=today)

    result = CategoryService.merge_categories(
        db_session, household_id, dining.id, food.id, reason="Same thing", today=today
    )

    assert result.combined_limit == Decimal("300")
    assert result.transactions_updated == 2
    assert result.adjustments_cancelled == 1
    active = _active_template(db_session, household_id)
    assert active.categories["Food"].monthly_limit == Decimal("300")
    assert "Dining" not in active.categories

    moved = db_session.query(Transaction).filter(Transaction.category_id == food.id).all()
    assert len(moved) == 3
    from_dining = [t for t in moved if t.original_category_id == dining.id]
    assert len(from_dining) == 2
    assert all(t.category_change_reason == "merge" and t.category == "Food" for t in from_dining)

    db_session.refresh(dining)
    assert dining.state == "merged"
    assert dining.merged_into_id == food.id
    assert dining.is_active is False
    assert BudgetAdjustmentService(db_session).list_all_pending(household_id) == []

    history = CategoryService.get_merge_history(db_session, household_id)
    assert len(history) == 1
    assert history[0].source_category_name == "Dining"
    assert history[0].transactions_affected == 2


def test_merge_leaves_elapsed_months_untouched(db_session, household_id, template, today, category_by_name):
    snapshots = MonthlyBudgetService(db_session)
    october = snapshots.get_or_create(household_id, 2025, 10, today=today)
    november = snapshots.get_or_create(household_id, 2025, 11, today=today)
    dining = category_by_name("Dining")
    food = category_by_name("Food")

    result = CategoryService.merge_categories(db_session, household_id, dining.id, food.id, today=today)

    assert result.monthly_budgets_updated == 1
    db_session.refresh(october)
    db_session.refresh(november)
    assert october.categories["Dining"].monthly_limit == Decimal("100")
    assert october.original_categories["Dining"].monthly_limit == Decimal("100")
    assert october.adjustment_count == 0
    assert "Dining" not in november.categories
    assert november.categories["Food"].monthly_limit == Decimal("300")
    assert november.original_categories["Dining"].monthly_limit == Decimal("100")
    assert november.adjustment_count == 1

    # Reporting folds the pre-merge split back together without rewriting it
    view = snapshots.consolidated_view(household_id, 2025, 10)
    row = next(r for r in view.categories if r.category_id == food.id)
    assert row.monthly_limit == Decimal("300")
    assert row.breakdown == {"Dining": Decimal("100"), "Food": Decimal("200")}


def test_chained_merge_keeps_first_original_category(db_session, household_id, template, today, category_by_name, add_transactions):
    dining = category_by_name("Dining")
    food = category_by_name("Food")
    groceries = category_by_name("Groceries")
    add_transactions(dining, 1)

    CategoryService.merge_categories(db_session, household_id, dining.id, food.id, today=today)
    CategoryService.merge_categories(db_session, household_id, food.id, groceries.id, today=today)

    row = db_session.query(Transaction).filter(Transaction.household_id == household_id).one()
    assert row.category_id == groceries.id
    assert row.original_category_id == dining.id
    assert _active_template(db_session, household_id).categories["Groceries"].monthly_limit == Decimal("800")

    lineage = CategoryService.get_merge_lineage(db_session, household_id, groceries.id)
    assert {m.source_category_name for m in lineage} == {"Food", "Dining"}


def test_merge_rejects_self_and_retired_categories(db_session, household_id, template, today, category_by_name):
    dining = category_by_name("Dining")
    food = category_by_name("Food")
    with pytest.raises(ValidationError):
        CategoryService.merge_categories(db_session, household_id, dining.id, dining.id, today=today)

    CategoryService.merge_categories(db_session, household_id, dining.id, food.id, today=today)
    with pytest.raises(NotFoundError):
        CategoryService.merge_categories(db_session, household_id, dining.id, food.id, today=today)


def test_deactivate_blocked_while_in_use(db_session, household_id, template, category_by_name, add_transactions):
    dining = category_by_name("Dining")
    food = category_by_name("Food")
    add_transactions(dining, 4)

    with pytest.raises(CategoryInUse) as excinfo:
        CategoryService.deactivate_category(db_session, household_id, dining.id)
    assert excinfo.value.count == 4
    assert dining.is_active is True

    CategoryService.deactivate_category(db_session, household_id, dining.id, reassign_to=food.id)
    assert dining.state == "inactive"
    assert _active_template(db_session, household_id).categories["Dining"].is_active is False
    assert CategoryService.usage_count(db_session, household_id, food.id) == 4

    reactivated = CategoryService.reactivate_category(db_session, household_id, dining.id)
    assert reactivated.is_active is True
    assert _active_template(db_session, household_id).categories["Dining"].is_active is True


def test_delete_and_restore(db_session, household_id, template, category_by_name):
    dining = category_by_name("Dining")

    deleted = CategoryService.delete_category(db_session, household_id, dining.id)

    assert deleted.state == "deleted"
    assert "Dining" not in _active_template(db_session, household_id).categories
    assert dining.id not in {c.id for c in CategoryService.get_household_categories(db_session, household_id, include_inactive=True)}

    restored = CategoryService.restore_category(db_session, household_id, dining.id)
    assert restored.state == "active"


def test_merged_category_cannot_be_restored(db_session, household_id, template, today, category_by_name):
    dining = category_by_name("Dining")
    CategoryService.merge_categories(db_session, household_id, dining.id, category_by_name("Food").id, today=today)

    with pytest.raises(ValidationError):
        CategoryService.restore_category(db_session, household_id, dining.id)


def test_usage_stats(db_session, household_id, template, category_by_name, add_transactions):
    add_transactions(category_by_name("Groceries"), 2)
    stats = CategoryService.get_category_usage_stats(db_session, household_id)

    assert stats["total_categories"] == 3
    assert stats["usage_by_category"]["Groceries"]["transaction_count"] == 2
    assert stats["usage_by_category"]["Dining"]["transaction_count"] == 0


def test_ensure_categories_rejects_two_names_for_one_category(db_session, household_id, template, category_by_name):
    groceries = category_by_name("Groceries")
    with pytest.raises(ValidationError) as excinfo:
        CategoryService.ensure_categories(db_session, household_id, {
            "Groceries": CategoryConfig(monthly_limit=Decimal("500"), category_id=groceries.id),
            "Weekly shop": CategoryConfig(monthly_limit=Decimal("80"), category_id=groceries.id),
        })
    assert excinfo.value.error_code == "duplicate_category"
    db_session.rollback()

    # A differently spelled key resolves to the same registry row
    with pytest.raises(ValidationError):
        CategoryService.ensure_categories(db_session, household_id, {
            "Groceries": CategoryConfig(monthly_limit=Decimal("500")),
            "GROCERIES": CategoryConfig(monthly_limit=Decimal("80")),
        })


def test_category_type_defaults_to_expense_and_filters(db_session, household_id, template, category_by_name):
    salary = CategoryService.create_category(db_session, household_id, CategoryCreate(name="Salary", type="income"))

    assert salary.type == "income"
    assert category_by_name("Groceries").type == "expense"
    income = CategoryService.get_household_categories(db_session, household_id, category_type="income")
    assert [c.name for c in income] == ["Salary"]
    expense = CategoryService.get_household_categories(db_session, household_id, category_type="expense")
    assert {c.name for c in expense} == {"Groceries", "Dining", "Food"}

    stats = CategoryService.get_category_usage_stats(db_session, household_id)
    assert stats["income_categories"] == 1
    assert stats["expense_categories"] == 3


def test_template_entries_carry_registry_type(db_session, household_id, template):
    active = PersonalBudgetService(db_session).update(
        household_id,
        lambda draft: draft.model_copy(update={"categories": {
            **draft.categories,
            "Bonus": CategoryConfig(monthly_limit=Decimal("0"), type="income"),
        }}),
    )

    assert active.categories["Bonus"].type == "income"
    assert active.categories["Groceries"].type == "expense"
    bonus = CategoryService.get_by_name(db_session, household_id, "Bonus")
    assert bonus.type == "income"


def test_merge_records_type_and_rejects_mixed_types(db_session, household_id, template, today, category_by_name):
    dining = category_by_name("Dining")
    food = category_by_name("Food")
    salary = CategoryService.create_category(db_session, household_id, CategoryCreate(name="Salary", type="income"))

    with pytest.raises(ValidationError) as excinfo:
        CategoryService.merge_categories(db_session, household_id, dining.id, salary.id, today=today)
    assert excinfo.value.error_code == "category_type_mismatch"
    assert dining.state == "active"

    CategoryService.merge_categories(db_session, household_id, dining.id, food.id, today=today)
    history = CategoryService.get_merge_history(db_session, household_id)
    assert history[0].source_category_settings["type"] == "expense"
    assert _active_template(db_session, household_id).categories["Food"].type == "expense"


def test_merge_rejects_inactive_categories(db_session, household_id, template, today, category_by_name):
    dining = category_by_name("Dining")
    food = category_by_name("Food")
    CategoryService.deactivate_category(db_session, household_id, dining.id)

    with pytest.raises(ValidationError) as excinfo:
        CategoryService.merge_categories(db_session, household_id, dining.id, food.id, today=today)
    assert excinfo.value.error_code == "category_inactive"
    with pytest.raises(ValidationError):
        CategoryService.merge_categories(db_session, household_id, food.id, dining.id, today=today)

    db_session.refresh(dining)
    assert dining.state == "inactive"
    assert CategoryService.get_merge_history(db_session, household_id) == []
