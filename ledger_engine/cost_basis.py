"""Weighted-average cost basis.

Stateless helpers that mutate only the ``Lot`` they are given. Full-history
replay and cutoff replay both go through these functions, so P&L semantics
are the same at any date.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Optional

from ledger_engine.constants import QUANTITY_EPSILON
from ledger_engine.data_objects import Lot, Transaction, market_settles_whole_units


@dataclass(frozen=True)
class Removal:
    """Outcome of taking quantity out of a lot."""

    requested_quantity: float
    removed_quantity: float
    removed_cost: float

    @property
    def clamped(self) -> bool:
        return self.removed_quantity + QUANTITY_EPSILON < self.requested_quantity


def gross_amount(price: float, quantity: float, market) -> float:
    """price x quantity, floored to a whole unit for whole-unit-settlement markets."""
    value = price * quantity
    if market_settles_whole_units(market):
        value = float(math.floor(value + 1e-9))
    return value


def acquisition_cost(txn: Transaction) -> float:
    """Cost added to a lot by a buy-like event: explicit amount, else gross + fees."""
    if txn.amount is not None:
        return txn.amount
    return gross_amount(txn.price, txn.quantity, txn.market) + txn.fees


def sale_proceeds(txn: Transaction) -> float:
    """Cash received by a sell-like event: explicit amount, else gross - fees."""
    if txn.amount is not None:
        return txn.amount
    return gross_amount(txn.price, txn.quantity, txn.market) - txn.fees


def add_to_lot(lot: Lot, quantity: float, cost: float, when: Optional[date] = None) -> Lot:
    lot.quantity += quantity
    lot.total_cost += max(cost, 0.0)
    if when is not None and (lot.first_date is None or when < lot.first_date):
        lot.first_date = when
    return lot


def remove_from_lot(lot: Lot, quantity: float) -> Removal:
    """Remove quantity at the lot's average cost.

    Quantity never goes negative: a request larger than the holding removes
    everything and the returned ``Removal`` reports ``clamped``. Emptying the
    lot resets its cost to exactly 0, so later purchases start a fresh basis.
    """
    if lot.quantity <= QUANTITY_EPSILON:
        lot.quantity = 0.0
        lot.total_cost = 0.0
        lot.first_date = None
        return Removal(requested_quantity=quantity, removed_quantity=0.0, removed_cost=0.0)

    removed_quantity = min(quantity, lot.quantity)
    removed_cost = lot.avg_cost * removed_quantity
    if market_settles_whole_units(lot.market):
        removed_cost = float(round(removed_cost))

    lot.quantity -= removed_quantity
    lot.total_cost -= removed_cost
    if lot.quantity <= QUANTITY_EPSILON:
        lot.quantity = 0.0
        lot.total_cost = 0.0
        lot.first_date = None
    elif lot.total_cost < 0:
        lot.total_cost = 0.0

    return Removal(
        requested_quantity=quantity,
        removed_quantity=removed_quantity,
        removed_cost=removed_cost,
    )
