from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Mapping, Optional

from household_budget.schemas.budget import (
    BudgetComparisonSummary,
    CategoryComparison,
    CategoryConfig,
)


def _active(config: Optional[CategoryConfig]) -> Optional[CategoryConfig]:
    # An inactive entry is treated the same as a missing one
    if config is None or not config.is_active:
        return None
    return config


def _percentage(difference: Decimal, baseline: Optional[Decimal]) -> float:
    if not baseline:
        return 0.0
    pct = (difference / baseline * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(pct)


def compare_category_maps(
    baseline: Mapping[str, CategoryConfig],
    current: Mapping[str, CategoryConfig],
    *,
    baseline_label: str = "",
    current_label: str = "",
    currency: Optional[str] = None,
) -> BudgetComparisonSummary:
    """Diff two category maps.

    Each category present in either map gets a row with status added, removed,
    increased, decreased or unchanged. Totals only count active categories.
    Percentages are relative to the baseline limit.
    """
    comparisons = []
    counts: Dict[str, int] = {"added": 0, "removed": 0, "increased": 0, "decreased": 0, "unchanged": 0}
    total_baseline = Decimal("0")
    total_current = Decimal("0")

    names = sorted(set(baseline) | set(current), key=str.lower)
    for name in names:
        before = _active(baseline.get(name))
        after = _active(current.get(name))
        if before is None and after is None:
            continue

        baseline_limit = before.monthly_limit if before else None
        current_limit = after.monthly_limit if after else None

        if before is None:
            status = "added"
            difference = current_limit
        elif after is None:
            status = "removed"
            difference = -baseline_limit
        else:
            difference = current_limit - baseline_limit
            if difference > 0:
                status = "increased"
            elif difference < 0:
                status = "decreased"
            else:
                status = "unchanged"

        if baseline_limit is not None:
            total_baseline += baseline_limit
        if current_limit is not None:
            total_current += current_limit
        counts[status] += 1

        source = after or before
        comparisons.append(CategoryComparison(
            category=name,
            category_id=source.category_id,
            baseline_limit=baseline_limit,
            current_limit=current_limit,
            difference=difference,
            difference_percentage=_percentage(difference, baseline_limit),
            status=status,
        ))

    adjusted = counts["increased"] + counts["decreased"]
    return BudgetComparisonSummary(
        baseline_label=baseline_label,
        current_label=current_label,
        currency=currency,
        has_changes=bool(adjusted or counts["added"] or counts["removed"]),
        comparisons=comparisons,
        total_categories=len(comparisons),
        adjusted_categories=adjusted,
        added_categories=counts["added"],
        removed_categories=counts["removed"],
        unchanged_categories=counts["unchanged"],
        total_baseline_limit=total_baseline,
        total_current_limit=total_current,
        total_difference=total_current - total_baseline,
    )


def empty_comparison(*, baseline_label: str = "", current_label: str = "", currency: Optional[str] = None) -> BudgetComparisonSummary:
    """The explicit "nothing changed this month" result."""
    return BudgetComparisonSummary(
        baseline_label=baseline_label,
        current_label=current_label,
        currency=currency,
        has_changes=False,
        comparisons=[],
    )


def total_limit(categories: Mapping[str, CategoryConfig]) -> Decimal:
    """Sum of monthly limits across active categories."""
    return sum((c.monthly_limit for c in categories.values() if c.is_active), Decimal("0"))
