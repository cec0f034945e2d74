"""
Budget category, item and transaction persistence.

All queries are scoped by ``user_id``. Functions taking a ``Connection`` run
inside the caller's transaction; functions taking an ``Engine`` open their
own transaction and report failures as an ``ActionResult`` instead of
raising, so the request layer can render a message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Optional, Union

from sqlalchemy import Table, func, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from backend.budget_engine import BudgetCategory, BudgetItem, BudgetTransaction
from backend.recurrence import RecurrenceDescriptor
from backend.schema import budget_categories, budget_items, transactions
from backend.sort_order import SiblingKey, SingleUpdate, next_sort_order, plan_reorder

logger = logging.getLogger(__name__)

CATEGORY_NOT_FOUND = "Budget category not found."
ITEM_NOT_FOUND = "Budget item not found."


class NotFoundError(LookupError):
    """A referenced row does not exist or is outside the caller's scope."""


class TransactionError(RuntimeError):
    """A multi-row write could not be completed and was rolled back."""


@dataclass(frozen=True)
class ActionResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error_kind: str, error: str) -> "ActionResult":
        return cls(success=False, error=error, error_kind=error_kind)


@dataclass(frozen=True)
class ExistingCategory:
    id: int


@dataclass(frozen=True)
class NewCategory:
    name: str
    emoji: Optional[str] = None


CategoryReference = Union[ExistingCategory, NewCategory]


@dataclass(frozen=True)
class NewBudgetItem:
    category: CategoryReference
    type: str
    name: str
    amount: int
    recurrence: RecurrenceDescriptor
    sort_order: Optional[float] = None


@dataclass(frozen=True)
class CategoryUpdate:
    name: Optional[str] = None
    emoji: Optional[str] = None
    color: Optional[str] = None

    def values(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if self.name is not None:
            values["name"] = self.name
        if self.emoji is not None:
            values["emoji"] = self.emoji
        if self.color is not None:
            values["color"] = self.color
        return values


@dataclass(frozen=True)
class ItemUpdate:
    name: Optional[str] = None
    amount: Optional[int] = None
    recurrence: Optional[RecurrenceDescriptor] = None

    def values(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if self.name is not None:
            values["name"] = self.name
        if self.amount is not None:
            values["amount"] = self.amount
        if self.recurrence is not None:
            values.update(_recurrence_values(self.recurrence))
            # A schedule change without a start date keeps the stored anchor.
            if self.recurrence.start_date is None:
                del values["start_date"]
        return values


@dataclass(frozen=True)
class NewTransaction:
    category_name: str
    type: str
    label: str
    amount: int
    date: date
    memo: Optional[str] = None


def run_action(
    engine: Engine,
    operation: Callable[[Connection], Any],
    failure_message: str,
) -> ActionResult:
    """Run ``operation`` in one transaction and tag its outcome.

    ``ValueError`` is not caught: it signals bad input and belongs to the
    caller's validation handling.
    """
    try:
        with engine.begin() as conn:
            data = operation(conn)
    except NotFoundError as exc:
        return ActionResult.failure("not_found", str(exc))
    except TransactionError as exc:
        logger.error("%s %s", failure_message, exc)
        return ActionResult.failure("transaction", failure_message)
    except SQLAlchemyError:
        logger.exception(failure_message)
        return ActionResult.failure("transaction", failure_message)
    return ActionResult.ok(data)


def list_categories(
    conn: Connection,
    user_id: int,
    budget_type: str | None = None,
    include_archived: bool = False,
) -> list[BudgetCategory]:
    conditions = [budget_categories.c.user_id == user_id]
    if budget_type is not None:
        conditions.append(budget_categories.c.type == budget_type)
    if not include_archived:
        conditions.append(budget_categories.c.is_archived.is_(False))
    rows = conn.execute(
        select(budget_categories)
        .where(*conditions)
        .order_by(budget_categories.c.sort_order.asc(), budget_categories.c.id.asc())
    ).mappings().all()
    return [_category_from_row(row) for row in rows]


def get_category(conn: Connection, user_id: int, category_id: int) -> BudgetCategory | None:
    row = conn.execute(
        select(budget_categories).where(
            budget_categories.c.id == category_id,
            budget_categories.c.user_id == user_id,
        )
    ).mappings().first()
    return _category_from_row(row) if row else None


def create_category(
    conn: Connection,
    user_id: int,
    budget_type: str,
    name: str,
    emoji: str | None = None,
    color: str | None = None,
    sort_order: float | None = None,
) -> BudgetCategory:
    """Create a category, or return the active one with the same type and name."""
    existing = conn.execute(
        select(budget_categories).where(
            budget_categories.c.user_id == user_id,
            budget_categories.c.type == budget_type,
            budget_categories.c.name == name,
            budget_categories.c.is_archived.is_(False),
        )
        .order_by(budget_categories.c.id.asc())
    ).mappings().first()
    if existing:
        return _category_from_row(existing)

    if sort_order is None:
        sort_order = _next_order(
            conn,
            budget_categories,
            budget_categories.c.user_id == user_id,
            budget_categories.c.type == budget_type,
        )
    row = conn.execute(
        budget_categories.insert()
        .values(
            user_id=user_id,
            type=budget_type,
            name=name,
            emoji=emoji,
            color=color,
            sort_order=sort_order,
        )
        .returning(*budget_categories.c)
    ).mappings().first()
    return _category_from_row(row)


def update_category(
    conn: Connection, user_id: int, category_id: int, changes: CategoryUpdate
) -> BudgetCategory | None:
    values = changes.values()
    if not values:
        return get_category(conn, user_id, category_id)
    if "name" in values:
        category = get_category(conn, user_id, category_id)
        if category is None:
            return None
        duplicate = conn.execute(
            select(budget_categories.c.id).where(
                budget_categories.c.user_id == user_id,
                budget_categories.c.type == category.type,
                budget_categories.c.name == values["name"],
                budget_categories.c.is_archived.is_(False),
                budget_categories.c.id != category_id,
            )
        ).first()
        if duplicate:
            raise ValueError("A category with this name already exists.")
    row = conn.execute(
        update(budget_categories)
        .where(
            budget_categories.c.id == category_id,
            budget_categories.c.user_id == user_id,
        )
        .values(**values)
        .returning(*budget_categories.c)
    ).mappings().first()
    return _category_from_row(row) if row else None


def resolve_category_reference(
    conn: Connection, user_id: int, budget_type: str, reference: CategoryReference
) -> int:
    if isinstance(reference, NewCategory):
        return create_category(
            conn, user_id, budget_type, reference.name, emoji=reference.emoji
        ).id

    category = get_category(conn, user_id, reference.id)
    if category is None or category.is_archived:
        raise NotFoundError(CATEGORY_NOT_FOUND)
    if category.type != budget_type:
        raise ValueError("Budget item type must match its category type.")
    return category.id


def list_items(
    conn: Connection,
    user_id: int,
    budget_type: str | None = None,
    category_id: int | None = None,
    include_archived: bool = False,
) -> list[BudgetItem]:
    conditions = [budget_items.c.user_id == user_id]
    if budget_type is not None:
        conditions.append(budget_items.c.type == budget_type)
    if category_id is not None:
        conditions.append(budget_items.c.budget_category_id == category_id)
    if not include_archived:
        conditions.append(budget_items.c.is_archived.is_(False))
    rows = conn.execute(
        select(budget_items)
        .where(*conditions)
        .order_by(
            budget_items.c.budget_category_id.asc(),
            budget_items.c.sort_order.asc(),
            budget_items.c.id.asc(),
        )
    ).mappings().all()
    return [_item_from_row(row) for row in rows]


def get_item(conn: Connection, user_id: int, item_id: int) -> BudgetItem | None:
    row = conn.execute(
        select(budget_items).where(
            budget_items.c.id == item_id,
            budget_items.c.user_id == user_id,
        )
    ).mappings().first()
    return _item_from_row(row) if row else None


def create_item(conn: Connection, user_id: int, new_item: NewBudgetItem) -> BudgetItem:
    """Insert a budget item, creating its category first when it is new."""
    category_id = resolve_category_reference(
        conn, user_id, new_item.type, new_item.category
    )
    sort_order = new_item.sort_order
    if sort_order is None:
        sort_order = _next_order(
            conn,
            budget_items,
            budget_items.c.user_id == user_id,
            budget_items.c.budget_category_id == category_id,
        )
    row = conn.execute(
        budget_items.insert()
        .values(
            user_id=user_id,
            budget_category_id=category_id,
            type=new_item.type,
            name=new_item.name,
            amount=new_item.amount,
            sort_order=sort_order,
            **_recurrence_values(new_item.recurrence),
        )
        .returning(*budget_items.c)
    ).mappings().first()
    return _item_from_row(row)


def update_item(
    conn: Connection, user_id: int, item_id: int, changes: ItemUpdate
) -> BudgetItem | None:
    values = changes.values()
    if not values:
        return get_item(conn, user_id, item_id)
    row = conn.execute(
        update(budget_items)
        .where(budget_items.c.id == item_id, budget_items.c.user_id == user_id)
        .values(**values)
        .returning(*budget_items.c)
    ).mappings().first()
    return _item_from_row(row) if row else None


def add_transaction(
    conn: Connection, user_id: int, new_transaction: NewTransaction
) -> BudgetTransaction:
    """Record a transaction under the active category with its name and type.

    The category is created when the user has none by that name.
    """
    category = create_category(
        conn, user_id, new_transaction.type, new_transaction.category_name
    )
    row = conn.execute(
        transactions.insert()
        .values(
            user_id=user_id,
            budget_category_id=category.id,
            type=new_transaction.type,
            label=new_transaction.label,
            amount=new_transaction.amount,
            date=new_transaction.date,
            memo=new_transaction.memo,
        )
        .returning(*transactions.c)
    ).mappings().first()
    return _transaction_from_row(row)


def list_transactions(
    conn: Connection,
    user_id: int,
    budget_type: str | None = None,
    category_id: int | None = None,
) -> list[BudgetTransaction]:
    conditions = [transactions.c.user_id == user_id]
    if budget_type is not None:
        conditions.append(transactions.c.type == budget_type)
    if category_id is not None:
        conditions.append(transactions.c.budget_category_id == category_id)
    rows = conn.execute(
        select(transactions)
        .where(*conditions)
        .order_by(transactions.c.date.desc(), transactions.c.id.desc())
    ).mappings().all()
    return [_transaction_from_row(row) for row in rows]


def list_category_transactions(
    conn: Connection, user_id: int, budget_types: Iterable[str]
) -> list[tuple[BudgetCategory, list[BudgetTransaction]]]:
    """Active categories of ``budget_types`` with their transactions, newest first."""
    budget_types = tuple(budget_types)
    categories = [
        category
        for category in list_categories(conn, user_id)
        if category.type in budget_types
    ]
    by_category: dict[int, list[BudgetTransaction]] = {
        category.id: [] for category in categories
    }
    for transaction in list_transactions(conn, user_id):
        if transaction.category_id in by_category:
            by_category[transaction.category_id].append(transaction)
    return [(category, by_category[category.id]) for category in categories]


def archive_category(engine: Engine, user_id: int, category_id: int) -> ActionResult:
    """Archive a category and, in the same transaction, its active items.

    Items that were already archived keep their original ``archived_at``.
    """

    def operation(conn: Connection) -> dict:
        category = get_category(conn, user_id, category_id)
        if category is None:
            raise NotFoundError(CATEGORY_NOT_FOUND)
        archived_at = _utcnow()
        if not category.is_archived:
            conn.execute(
                update(budget_categories)
                .where(
                    budget_categories.c.id == category_id,
                    budget_categories.c.user_id == user_id,
                )
                .values(is_archived=True, archived_at=archived_at)
            )
        result = conn.execute(
            update(budget_items)
            .where(
                budget_items.c.budget_category_id == category_id,
                budget_items.c.user_id == user_id,
                budget_items.c.is_archived.is_(False),
            )
            .values(is_archived=True, archived_at=archived_at)
        )
        return {"id": category_id, "archived_items": result.rowcount}

    return run_action(engine, operation, "Failed to archive budget category.")


def unarchive_category(engine: Engine, user_id: int, category_id: int) -> ActionResult:
    """Restore a category. Its items stay archived until restored one by one."""

    def operation(conn: Connection) -> dict:
        _set_archived(conn, budget_categories, user_id, category_id, False, CATEGORY_NOT_FOUND)
        return {"id": category_id}

    return run_action(engine, operation, "Failed to restore budget category.")


def archive_item(engine: Engine, user_id: int, item_id: int) -> ActionResult:
    def operation(conn: Connection) -> dict:
        _set_archived(conn, budget_items, user_id, item_id, True, ITEM_NOT_FOUND)
        return {"id": item_id}

    return run_action(engine, operation, "Failed to archive budget item.")


def unarchive_item(engine: Engine, user_id: int, item_id: int) -> ActionResult:
    def operation(conn: Connection) -> dict:
        _set_archived(conn, budget_items, user_id, item_id, False, ITEM_NOT_FOUND)
        return {"id": item_id}

    return run_action(engine, operation, "Failed to restore budget item.")


def reorder_category(
    engine: Engine,
    user_id: int,
    category_id: int,
    previous_id: int | None,
    next_id: int | None,
) -> ActionResult:
    """Move a category between two siblings of the same user and type."""

    def operation(conn: Connection) -> dict:
        moved = conn.execute(
            select(budget_categories.c.id, budget_categories.c.type).where(
                budget_categories.c.id == category_id,
                budget_categories.c.user_id == user_id,
            )
        ).mappings().first()
        if not moved:
            raise NotFoundError(CATEGORY_NOT_FOUND)
        return _reorder(
            conn,
            budget_categories,
            user_id,
            (
                budget_categories.c.user_id == user_id,
                budget_categories.c.type == moved["type"],
            ),
            category_id,
            previous_id,
            next_id,
            CATEGORY_NOT_FOUND,
        )

    return run_action(engine, operation, "Failed to reorder budget category.")


def reorder_item(
    engine: Engine,
    user_id: int,
    item_id: int,
    previous_id: int | None,
    next_id: int | None,
) -> ActionResult:
    """Move an item between two siblings in the same category."""

    def operation(conn: Connection) -> dict:
        moved = conn.execute(
            select(budget_items.c.id, budget_items.c.budget_category_id).where(
                budget_items.c.id == item_id,
                budget_items.c.user_id == user_id,
            )
        ).mappings().first()
        if not moved:
            raise NotFoundError(ITEM_NOT_FOUND)
        return _reorder(
            conn,
            budget_items,
            user_id,
            (
                budget_items.c.user_id == user_id,
                budget_items.c.budget_category_id == moved["budget_category_id"],
            ),
            item_id,
            previous_id,
            next_id,
            ITEM_NOT_FOUND,
        )

    return run_action(engine, operation, "Failed to reorder budget item.")


def _reorder(
    conn: Connection,
    table: Table,
    user_id: int,
    scope: tuple,
    moved_id: int,
    previous_id: int | None,
    next_id: int | None,
    not_found_message: str,
) -> dict:
    # Locks the sibling set so concurrent reorders cannot splice stale reads.
    rows = conn.execute(
        select(table.c.id, table.c.sort_order)
        .where(*scope)
        .order_by(table.c.sort_order.asc(), table.c.id.asc())
        .with_for_update()
    ).all()
    siblings = [SiblingKey(id=row.id, sort_order=row.sort_order) for row in rows]
    sibling_ids = {sibling.id for sibling in siblings}

    for neighbor_id in (previous_id, next_id):
        if neighbor_id is None or neighbor_id in sibling_ids:
            continue
        # Ids the user does not own count as a list boundary; the user's own
        # rows from another list do not.
        outside_scope = conn.execute(
            select(table.c.id).where(
                table.c.id == neighbor_id, table.c.user_id == user_id
            )
        ).first()
        if outside_scope:
            raise NotFoundError(not_found_message)

    plan = plan_reorder(moved_id, previous_id, next_id, siblings)
    if isinstance(plan, SingleUpdate):
        assignments = [SiblingKey(id=plan.id, sort_order=plan.sort_order)]
    else:
        assignments = list(plan.assignments)
        logger.info(
            "Rebalancing %d %s rows after moving id %s.",
            len(assignments),
            table.name,
            moved_id,
        )

    for assignment in assignments:
        result = conn.execute(
            update(table)
            .where(table.c.id == assignment.id, *scope)
            .values(sort_order=assignment.sort_order)
        )
        if result.rowcount != 1:
            raise TransactionError(
                f"{table.name} row {assignment.id} changed while reordering."
            )

    return {
        "kind": plan.kind,
        "sort_orders": [
            {"id": assignment.id, "sort_order": assignment.sort_order}
            for assignment in assignments
        ],
    }


def _set_archived(
    conn: Connection,
    table: Table,
    user_id: int,
    row_id: int,
    archived: bool,
    not_found_message: str,
) -> None:
    result = conn.execute(
        update(table)
        .where(table.c.id == row_id, table.c.user_id == user_id)
        .values(is_archived=archived, archived_at=_utcnow() if archived else None)
    )
    if result.rowcount == 0:
        raise NotFoundError(not_found_message)


def _next_order(conn: Connection, table: Table, *scope) -> float:
    current_max = conn.execute(
        select(func.max(table.c.sort_order)).where(*scope)
    ).scalar_one_or_none()
    return next_sort_order([current_max])


def _recurrence_values(recurrence: RecurrenceDescriptor) -> dict[str, Any]:
    return {
        "frequency": recurrence.frequency,
        "start_date": recurrence.start_date,
        "day_of_week": recurrence.day_of_week,
        "day_of_month": recurrence.day_of_month,
        "day_of_month_is_last": recurrence.day_of_month_is_last,
        "second_day_of_month": recurrence.second_day_of_month,
        "second_day_of_month_is_last": recurrence.second_day_of_month_is_last,
    }


def _category_from_row(row) -> BudgetCategory:
    return BudgetCategory(
        id=row["id"],
        user_id=row["user_id"],
        type=row["type"],
        name=row["name"],
        emoji=row["emoji"],
        color=row["color"],
        sort_order=row["sort_order"],
        is_archived=bool(row["is_archived"]),
        archived_at=row["archived_at"],
    )


def _item_from_row(row) -> BudgetItem:
    return BudgetItem(
        id=row["id"],
        category_id=row["budget_category_id"],
        type=row["type"],
        name=row["name"],
        amount=row["amount"],
        recurrence=RecurrenceDescriptor(
            frequency=row["frequency"],
            day_of_week=row["day_of_week"],
            day_of_month=row["day_of_month"],
            day_of_month_is_last=bool(row["day_of_month_is_last"]),
            second_day_of_month=row["second_day_of_month"],
            second_day_of_month_is_last=bool(row["second_day_of_month_is_last"]),
            start_date=row["start_date"],
        ),
        sort_order=row["sort_order"],
        is_archived=bool(row["is_archived"]),
        archived_at=row["archived_at"],
    )


def _transaction_from_row(row) -> BudgetTransaction:
    return BudgetTransaction(
        id=row["id"],
        user_id=row["user_id"],
        category_id=row["budget_category_id"],
        type=row["type"],
        label=row["label"],
        amount=row["amount"],
        date=row["date"],
        memo=row["memo"],
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
