"""
Fractional sort keys for drag-and-drop ordering of sibling rows.

A moved row normally gets the mean of its new neighbours' keys, so only that
row is written. When the neighbours are closer than ``HEAL_GAP`` (or both
keys are still zero), every sibling is renumbered 1..n instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Union

DEFAULT_GAP = 1000.0
HEAL_GAP = 1.0


@dataclass(frozen=True)
class SiblingKey:
    id: int
    sort_order: float


@dataclass(frozen=True)
class SingleUpdate:
    id: int
    sort_order: float

    kind = "single"


@dataclass(frozen=True)
class FullRebalance:
    assignments: tuple[SiblingKey, ...]

    kind = "rebalance"


ReorderPlan = Union[SingleUpdate, FullRebalance]


def next_sort_order(existing_orders: Iterable[float | None]) -> float:
    orders = [order for order in existing_orders if order is not None]
    if not orders:
        return 0.0
    return float(max(orders)) + 1


def needs_heal(previous_order: float, next_order: float) -> bool:
    if previous_order == 0 and next_order == 0:
        return True
    return next_order - previous_order < HEAL_GAP


def plan_reorder(
    moved_id: int,
    previous_id: Optional[int],
    next_id: Optional[int],
    siblings: Sequence[SiblingKey],
) -> ReorderPlan:
    """Work out the writes that place ``moved_id`` between two siblings.

    Neighbour ids that are ``None`` or not among ``siblings`` count as the
    list boundary. The caller is responsible for scope checks and for
    applying a FullRebalance atomically.
    """
    keys = {sibling.id: float(sibling.sort_order) for sibling in siblings if sibling.id != moved_id}

    previous_order = keys.get(previous_id, 0.0) if previous_id is not None else 0.0
    if next_id is not None and next_id in keys:
        next_order = keys[next_id]
    else:
        next_order = previous_order + DEFAULT_GAP

    if not needs_heal(previous_order, next_order):
        return SingleUpdate(id=moved_id, sort_order=(previous_order + next_order) / 2)

    return FullRebalance(
        assignments=tuple(rebalance(moved_id, previous_id, next_id, siblings))
    )


def rebalance(
    moved_id: int,
    previous_id: Optional[int],
    next_id: Optional[int],
    siblings: Sequence[SiblingKey],
) -> list[SiblingKey]:
    base = sorted(
        (sibling for sibling in siblings if sibling.id != moved_id),
        key=lambda sibling: (sibling.sort_order, sibling.id),
    )
    ordered_ids = [sibling.id for sibling in base]

    if previous_id is not None and previous_id in ordered_ids:
        insert_at = ordered_ids.index(previous_id) + 1
    elif next_id is not None and next_id in ordered_ids:
        insert_at = ordered_ids.index(next_id)
    else:
        insert_at = 0
    ordered_ids.insert(insert_at, moved_id)

    return [
        SiblingKey(id=sibling_id, sort_order=float(position))
        for position, sibling_id in enumerate(ordered_ids, start=1)
    ]
