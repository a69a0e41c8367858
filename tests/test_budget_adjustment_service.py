import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from household_budget.core.exceptions import (
    ConcurrentVersionConflict,
    DuplicatePendingAdjustment,
    HouseholdHasNoTemplate,
    NotFoundError,
    ValidationError,
)
from household_budget.models.budget_adjustment import BudgetAdjustment
from household_budget.models.category_adjustment_history import CategoryAdjustmentHistory
from household_budget.models.personal_budget import PersonalBudget
from household_budget.schemas.budget import NewCategorySettings
from household_budget.services.budget_adjustment_service import (
    BudgetAdjustmentService,
    average_adjustment,
    net_adjustment,
)
from household_budget.services.monthly_budget_service import MonthlyBudgetService
from household_budget.services.personal_budget_service import PersonalBudgetService


def test_schedule_targets_next_month(db_session, household_id, template, today):
    adjustment = BudgetAdjustmentService(db_session).schedule(
        household_id, "Groceries", Decimal("500"), Decimal("650"), reason="Bigger family shop", today=today
    )

    assert (adjustment.effective_year, adjustment.effective_month) == (2025, 12)
    assert adjustment.adjustment_type == "increase"
    assert adjustment.adjustment_amount == Decimal("150")
    assert adjustment.is_applied is False


def test_schedule_rolls_over_the_year(db_session, household_id, template):
    adjustment = BudgetAdjustmentService(db_session).schedule(
        household_id, "Dining", Decimal("100"), Decimal("60"), today=date(2025, 12, 31)
    )
    assert (adjustment.effective_year, adjustment.effective_month) == (2026, 1)
    assert adjustment.adjustment_type == "decrease"


def test_schedule_rejects_no_change_and_negative(db_session, household_id, template, today):
    service = BudgetAdjustmentService(db_session)
    with pytest.raises(ValidationError):
        service.schedule(household_id, "Groceries", Decimal("500"), Decimal("500"), today=today)
    with pytest.raises(ValidationError):
        service.schedule(household_id, "Groceries", Decimal("500"), Decimal("-5"), today=today)


def test_duplicate_pending_must_be_cancelled_first(db_session, household_id, template, today):
    service = BudgetAdjustmentService(db_session)
    first = service.schedule(household_id, "Groceries", Decimal("500"), Decimal("650"), today=today)

    with pytest.raises(DuplicatePendingAdjustment):
        service.schedule(household_id, "Groceries", Decimal("500"), Decimal("700"), today=today)

    service.cancel(household_id, first.id)
    second = service.schedule(household_id, "Groceries", Decimal("500"), Decimal("700"), today=today)
    assert second.new_limit == Decimal("700")


def test_schedule_uses_registry_spelling_of_category(db_session, household_id, template, today):
    service = BudgetAdjustmentService(db_session)
    adjustment = service.schedule(household_id, "groceries", Decimal("500"), Decimal("650"), today=today)

    assert adjustment.category_name == "Groceries"
    with pytest.raises(DuplicatePendingAdjustment):
        service.schedule(household_id, "GROCERIES ", Decimal("500"), Decimal("700"), today=today)
    assert [a.category_name for a in service.list_pending(household_id, 2025, 12)] == ["Groceries"]

    result = service.apply(household_id, 2025, 12)
    assert result.applied_count == 1
    active = PersonalBudgetService(db_session).get_active(household_id)
    assert set(active.categories) == {"Groceries", "Dining", "Food"}
    assert active.categories["Groceries"].monthly_limit == Decimal("650")


def test_apply_regenerates_early_snapshot(db_session, household_id, template, today):
    adjustments = BudgetAdjustmentService(db_session)
    snapshots = MonthlyBudgetService(db_session)

    scheduled = adjustments.schedule(household_id, "Groceries", Decimal("500"), Decimal("650"), today=today)
    # December built early from the old template
    early = snapshots.get_or_create(household_id, 2025, 12, today=today)
    assert early.original_categories["Groceries"].monthly_limit == Decimal("500")

    result = adjustments.apply(household_id, 2025, 12)

    assert result.applied_count == 1
    assert result.snapshot_deleted is True
    active = PersonalBudgetService(db_session).get_active(household_id)
    assert active.version == template.version + 1
    assert active.categories["Groceries"].monthly_limit == Decimal("650")
    db_session.refresh(scheduled)
    assert scheduled.is_applied is True
    assert scheduled.applied_at is not None
    assert snapshots.find(household_id, 2025, 12) is None

    december = snapshots.get_or_create(household_id, 2025, 12, today=today)
    assert december.original_categories["Groceries"].monthly_limit == Decimal("650")
    assert december.categories["Groceries"].monthly_limit == Decimal("650")


def test_apply_is_idempotent(db_session, household_id, template, today):
    service = BudgetAdjustmentService(db_session)
    service.schedule(household_id, "Groceries", Decimal("500"), Decimal("650"), today=today)
    service.schedule(household_id, "Dining", Decimal("100"), Decimal("80"), today=today)

    first = service.apply(household_id, 2025, 12)
    versions_after_first = db_session.query(PersonalBudget).filter(PersonalBudget.household_id == household_id).count()
    second = service.apply(household_id, 2025, 12)

    assert first.applied_count == 2
    assert second.applied_count == 0
    assert second.personal_budget is None
    # One version for the whole batch, none for the repeat
    assert versions_after_first == 2
    assert db_session.query(PersonalBudget).filter(PersonalBudget.household_id == household_id).count() == 2
    assert service.list_pending(household_id, 2025, 12) == []
    assert len(service.list_applied(household_id, 2025, 12)) == 2


def test_apply_creates_new_category(db_session, household_id, template, today, category_by_name):
    service = BudgetAdjustmentService(db_session)
    service.schedule(
        household_id,
        "Pets",
        Decimal("0"),
        Decimal("75"),
        new_category_settings=NewCategorySettings(color="#EC4899", warning_threshold=90),
        today=today,
    )

    result = service.apply(household_id, 2025, 12)

    pets = result.personal_budget.categories["Pets"]
    assert pets.monthly_limit == Decimal("75")
    assert pets.warning_threshold == 90
    assert pets.color == "#EC4899"
    assert pets.category_id == category_by_name("Pets").id


def test_apply_new_category_uses_default_threshold(db_session, household_id, template, today):
    service = BudgetAdjustmentService(db_session)
    service.schedule(household_id, "Books", Decimal("0"), Decimal("30"), today=today)

    result = service.apply(household_id, 2025, 12)

    assert result.personal_budget.categories["Books"].warning_threshold == 80


def test_apply_keeps_locked_snapshot_by_default(db_session, household_id, template, today):
    adjustments = BudgetAdjustmentService(db_session)
    snapshots = MonthlyBudgetService(db_session)
    adjustments.schedule(household_id, "Groceries", Decimal("500"), Decimal("650"), today=today)
    december = snapshots.get_or_create(household_id, 2025, 12, today=today)
    snapshots.lock(household_id, december.id)

    result = adjustments.apply(household_id, 2025, 12)

    assert result.applied_count == 1
    assert result.snapshot_deleted is False
    assert result.snapshot_locked is True
    kept = snapshots.get(household_id, 2025, 12)
    assert kept.original_categories["Groceries"].monthly_limit == Decimal("500")


def test_apply_can_regenerate_locked_snapshot(db_session, household_id, template, today):
    adjustments = BudgetAdjustmentService(db_session)
    snapshots = MonthlyBudgetService(db_session)
    adjustments.schedule(household_id, "Groceries", Decimal("500"), Decimal("650"), today=today)
    december = snapshots.get_or_create(household_id, 2025, 12, today=today)
    snapshots.lock(household_id, december.id)

    result = adjustments.apply(household_id, 2025, 12, regenerate_locked=True)

    assert result.snapshot_deleted is True
    assert snapshots.find(household_id, 2025, 12) is None


def test_apply_without_template_leaves_rows_pending(db_session, household_id, today):
    service = BudgetAdjustmentService(db_session)
    service.schedule(household_id, "Groceries", Decimal("0"), Decimal("400"), today=today)

    with pytest.raises(HouseholdHasNoTemplate):
        service.apply(household_id, 2025, 12)
    assert len(service.list_pending(household_id, 2025, 12)) == 1


def test_lazy_apply_on_snapshot_access(db_session, household_id, template, today):
    BudgetAdjustmentService(db_session).schedule(household_id, "Groceries", Decimal("500"), Decimal("650"), today=today)

    december = MonthlyBudgetService(db_session).get_or_create(household_id, 2025, 12, today=date(2025, 12, 1))

    assert december.original_categories["Groceries"].monthly_limit == Decimal("650")


def test_apply_due_covers_every_household(db_session, household_id, template, today):
    other = PersonalBudgetService(db_session).create(
        uuid.uuid4(),
        categories={"Rent": {"monthly_limit": "900"}},
    )
    service = BudgetAdjustmentService(db_session)
    service.schedule(household_id, "Groceries", Decimal("500"), Decimal("650"), today=today)
    service.schedule(other.household_id, "Rent", Decimal("900"), Decimal("950"), today=today)

    assert service.apply_due(today=today)["applied"] == 0
    stats = service.apply_due(today=date(2025, 12, 1))

    assert stats["applied"] == 2
    assert stats["periods"] == 2
    assert service.apply_due(today=date(2025, 12, 2))["applied"] == 0


def test_next_month_summary(db_session, household_id, template, today):
    service = BudgetAdjustmentService(db_session)
    assert service.has_pending_next_month(household_id, today=today) is False

    service.schedule(household_id, "Groceries", Decimal("500"), Decimal("650"), today=today)
    service.schedule(household_id, "Dining", Decimal("100"), Decimal("60"), today=today)
    summary = service.next_month_summary(household_id, today=today)

    assert summary.effective_date == "December 2025"
    assert summary.adjustment_count == 2
    assert summary.total_increase == Decimal("150")
    assert summary.total_decrease == Decimal("40")
    assert summary.net_change == Decimal("110")
    assert service.has_pending_next_month(household_id, today=today) is True

    assert service.cancel_all(household_id, today=today) == 2
    assert service.list_all_pending(household_id) == []


def test_cancel_applied_adjustment_is_rejected(db_session, household_id, template, today):
    service = BudgetAdjustmentService(db_session)
    adjustment = service.schedule(household_id, "Groceries", Decimal("500"), Decimal("650"), today=today)
    service.apply(household_id, 2025, 12)

    with pytest.raises(ValidationError):
        service.cancel(household_id, adjustment.id)


def test_category_history_and_insights(db_session, household_id, template, today):
    service = BudgetAdjustmentService(db_session)
    service.schedule(household_id, "Groceries", Decimal("500"), Decimal("650"), today=today)
    service.apply(household_id, 2025, 12)
    service.schedule(household_id, "Groceries", Decimal("650"), Decimal("600"), today=date(2025, 12, 10))
    service.apply(household_id, 2026, 1)

    history = service.get_category_history(household_id, "Groceries")
    assert history.adjustment_count == 2
    assert history.total_increased_amount == Decimal("150")
    assert history.total_decreased_amount == Decimal("50")
    assert net_adjustment(history) == Decimal("100")
    assert average_adjustment(history) == Decimal("100.00")

    insights = service.category_insights(household_id, "Groceries")
    assert insights.trend == "increasing"
    assert insights.current_limit == Decimal("600")
    assert service.most_adjusted_categories(household_id)[0].category_name == "Groceries"

    with pytest.raises(NotFoundError):
        service.get_category_history(household_id, "Dining")


def test_pending_index_allows_reschedule_after_apply(db_session, household_id, template, today):
    service = BudgetAdjustmentService(db_session)
    service.schedule(household_id, "Groceries", Decimal("500"), Decimal("650"), today=today)
    service.apply(household_id, 2025, 12)

    # Applied rows do not count against the one-pending rule
    db_session.add(BudgetAdjustment(
        household_id=household_id,
        category_name="Groceries",
        current_limit=Decimal("650"),
        adjustment_type="decrease",
        adjustment_amount=Decimal("50"),
        new_limit=Decimal("600"),
        effective_year=2025,
        effective_month=12,
        is_applied=False,
    ))
    db_session.commit()


def test_apply_rolls_back_when_a_row_is_applied_concurrently(monkeypatch, engine, db_session, household_id, template, today):
    service = BudgetAdjustmentService(db_session)
    groceries = service.schedule(household_id, "Groceries", Decimal("500"), Decimal("650"), today=today)
    service.schedule(household_id, "Dining", Decimal("100"), Decimal("80"), today=today)
    groceries_id = groceries.id

    original_update = PersonalBudgetService.update

    def update_after_other_worker(self, *args, **kwargs):
        # Another worker marks one row between our read and our mark step
        other = sessionmaker(bind=engine)()
        try:
            other.query(BudgetAdjustment).filter(
                BudgetAdjustment.id == groceries_id
            ).update({BudgetAdjustment.is_applied: True}, synchronize_session=False)
            other.commit()
        finally:
            other.close()
        return original_update(self, *args, **kwargs)

    monkeypatch.setattr(PersonalBudgetService, "update", update_after_other_worker)

    with pytest.raises(ConcurrentVersionConflict):
        service.apply(household_id, 2025, 12)

    db_session.expire_all()
    assert db_session.query(PersonalBudget).filter(PersonalBudget.household_id == household_id).count() == 1
    assert PersonalBudgetService(db_session).get_active(household_id).id == template.id
    assert [a.category_name for a in service.list_pending(household_id, 2025, 12)] == ["Dining"]
    assert db_session.query(CategoryAdjustmentHistory).filter(
        CategoryAdjustmentHistory.household_id == household_id
    ).count() == 0
