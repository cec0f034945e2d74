from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional

from backend.recurrence import RecurrenceDescriptor, monthly_equivalent, occurrences_in_month

BUDGET_TYPES = ("income", "expense", "savings")

# Largest amount, in minor units, accepted for a single item or transaction.
MAX_AMOUNT = 999_999_999_999


@dataclass(frozen=True)
class BudgetCategory:
    id: int
    user_id: int
    type: str
    name: str
    emoji: Optional[str] = None
    color: Optional[str] = None
    sort_order: float = 0.0
    is_archived: bool = False
    archived_at: Optional[datetime] = None


@dataclass(frozen=True)
class BudgetItem:
    id: int
    category_id: int
    type: str
    name: str
    amount: int
    recurrence: RecurrenceDescriptor = field(default_factory=RecurrenceDescriptor)
    sort_order: float = 0.0
    is_archived: bool = False
    archived_at: Optional[datetime] = None


@dataclass(frozen=True)
class BudgetTransaction:
    id: int
    user_id: int
    category_id: int
    type: str
    label: Optional[str]
    amount: int
    date: date
    memo: Optional[str] = None


@dataclass(frozen=True)
class ItemTotal:
    item_id: int
    occurrences: int
    monthly_total: int


@dataclass(frozen=True)
class CategoryTotal:
    category_id: int
    type: str
    monthly_total: int
    items: tuple[ItemTotal, ...] = ()


@dataclass(frozen=True)
class BudgetSummary:
    month: date
    income_total: int
    expense_total: int
    savings_total: int
    net_total: int
    categories: tuple[CategoryTotal, ...] = ()


def compute_monthly_total(items: Iterable[BudgetItem], reference_month: date) -> int:
    total = 0
    for item in items:
        if item.is_archived:
            continue
        total += monthly_equivalent(item.amount, item.recurrence, reference_month)
    return total


def summarize_budget(
    categories: Iterable[BudgetCategory],
    items: Iterable[BudgetItem],
    reference_month: date,
) -> BudgetSummary:
    """Monthly totals per active category and per budget type.

    Items are grouped under their category and take the category's type.
    Archived categories and archived items are left out.
    """
    month = reference_month.replace(day=1)
    items_by_category: dict[int, list[BudgetItem]] = {}
    for item in items:
        if item.is_archived:
            continue
        items_by_category.setdefault(item.category_id, []).append(item)

    type_totals = {budget_type: 0 for budget_type in BUDGET_TYPES}
    category_totals: list[CategoryTotal] = []
    for category in sorted(categories, key=lambda row: (row.sort_order, row.id)):
        if category.is_archived:
            continue
        category_items = sorted(
            items_by_category.get(category.id, []),
            key=lambda row: (row.sort_order, row.id),
        )
        item_totals = tuple(_item_total(item, month) for item in category_items)
        monthly_total = compute_monthly_total(category_items, month)
        category_totals.append(
            CategoryTotal(
                category_id=category.id,
                type=category.type,
                monthly_total=monthly_total,
                items=item_totals,
            )
        )
        if category.type in type_totals:
            type_totals[category.type] += monthly_total

    return BudgetSummary(
        month=month,
        income_total=type_totals["income"],
        expense_total=type_totals["expense"],
        savings_total=type_totals["savings"],
        net_total=net_total(
            type_totals["income"], type_totals["expense"], type_totals["savings"]
        ),
        categories=tuple(category_totals),
    )


def net_total(income_total: int, expense_total: int, savings_total: int) -> int:
    return income_total - expense_total - savings_total


def _item_total(item: BudgetItem, reference_month: date) -> ItemTotal:
    return ItemTotal(
        item_id=item.id,
        occurrences=occurrences_in_month(item.recurrence, reference_month),
        monthly_total=monthly_equivalent(item.amount, item.recurrence, reference_month),
    )
