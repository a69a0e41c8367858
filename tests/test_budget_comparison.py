from decimal import Decimal

from household_budget.schemas.budget import CategoryConfig
from household_budget.services.budget_comparison import compare_category_maps, empty_comparison, total_limit


def cfg(limit, **kwargs):
    return CategoryConfig(monthly_limit=Decimal(str(limit)), **kwargs)


def test_statuses_and_percentages():
    baseline = {"Groceries": cfg(500), "Dining": cfg(100), "Rent": cfg(1200), "Gym": cfg(40)}
    current = {"Groceries": cfg(600), "Dining": cfg(80), "Rent": cfg(1200), "Travel": cfg(300)}

    summary = compare_category_maps(baseline, current)
    rows = {row.category: row for row in summary.comparisons}

    assert rows["Groceries"].status == "increased"
    assert rows["Groceries"].difference == Decimal("100")
    assert rows["Groceries"].difference_percentage == 20.0
    assert rows["Dining"].status == "decreased"
    assert rows["Dining"].difference_percentage == -20.0
    assert rows["Rent"].status == "unchanged"
    assert rows["Travel"].status == "added"
    assert rows["Travel"].difference_percentage == 0.0
    assert rows["Gym"].status == "removed"
    assert rows["Gym"].difference == Decimal("-40")

    assert summary.has_changes is True
    assert summary.adjusted_categories == 2
    assert summary.added_categories == 1
    assert summary.removed_categories == 1
    assert summary.unchanged_categories == 1
    assert summary.total_baseline_limit == Decimal("1840")
    assert summary.total_current_limit == Decimal("2180")
    assert summary.total_difference == Decimal("340")


def test_inactive_entries_count_as_absent():
    baseline = {"Hobbies": cfg(50)}
    current = {"Hobbies": cfg(50, is_active=False)}

    summary = compare_category_maps(baseline, current)

    assert summary.comparisons[0].status == "removed"
    assert summary.total_current_limit == Decimal("0")


def test_identical_maps_have_no_changes():
    same = {"Groceries": cfg(500)}
    summary = compare_category_maps(same, dict(same))
    assert summary.has_changes is False
    assert summary.unchanged_categories == 1


def test_empty_comparison_and_total_limit():
    assert empty_comparison().comparisons == []
    assert empty_comparison().has_changes is False
    assert total_limit({"A": cfg(10), "B": cfg(5, is_active=False)}) == Decimal("10")
