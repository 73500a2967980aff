"""Weighted-average cost basis."""

from datetime import date

import pytest

from ledger_engine.cost_basis import (
    acquisition_cost,
    add_to_lot,
    gross_amount,
    remove_from_lot,
    sale_proceeds,
)
from ledger_engine.constants import Market
from ledger_engine.data_objects import Lot

from conftest import buy, sell


def test_buy_cost_includes_fees():
    txn = buy("t1", date(2024, 1, 2), "2330", 100, 90.0, fees=20.0)
    lot = add_to_lot(Lot(account_id="tw", market=txn.market, ticker="2330"), txn.quantity, acquisition_cost(txn))

    assert lot.total_cost == 9_020
    assert lot.quantity == 100
    assert lot.avg_cost == pytest.approx(90.2)


def test_partial_sell_keeps_average_cost():
    lot = Lot(account_id="us", market=Market.US, ticker="AAPL")
    add_to_lot(lot, 100, acquisition_cost(buy("t1", date(2024, 1, 2), "AAPL", 100, 10.0, market="US", account_id="us")))

    txn = sell("t2", date(2024, 2, 1), "AAPL", 40, 12.0, market="US", account_id="us")
    removal = remove_from_lot(lot, txn.quantity)

    assert lot.quantity == 60
    assert lot.total_cost == pytest.approx(600)
    assert lot.avg_cost == pytest.approx(10)
    assert removal.removed_cost == pytest.approx(400)
    assert not removal.clamped
    assert sale_proceeds(txn) == pytest.approx(480)


def test_explicit_amount_overrides_price_times_quantity():
    txn = buy("t1", date(2024, 1, 2), "AAPL", 10, 100.0, market="US", fees=5.0, amount=1_234.5)
    assert acquisition_cost(txn) == 1_234.5


def test_whole_unit_market_floors_gross_amount():
    assert gross_amount(10.37, 3, "TW") == 31.0
    assert gross_amount(10.37, 3, "US") == pytest.approx(31.11)


def test_full_sell_resets_cost_to_zero():
    lot = Lot(account_id="tw", market=Market.TW, ticker="0050")
    add_to_lot(lot, 3, 100.0, date(2024, 1, 1))

    remove_from_lot(lot, 3)

    assert lot.quantity == 0
    assert lot.total_cost == 0
    assert lot.first_date is None

    add_to_lot(lot, 10, 1_500.0, date(2024, 6, 1))
    assert lot.avg_cost == 150
    assert lot.first_date == date(2024, 6, 1)


def test_oversell_clamps_and_reports():
    lot = Lot(account_id="us", market=Market.US, ticker="MSFT")
    add_to_lot(lot, 5, 500.0)

    removal = remove_from_lot(lot, 8)

    assert removal.clamped
    assert removal.removed_quantity == 5
    assert removal.removed_cost == pytest.approx(500)
    assert lot.quantity == 0
    assert lot.total_cost == 0


def test_sell_from_empty_lot_removes_nothing():
    lot = Lot(account_id="us", market=Market.US, ticker="MSFT")
    removal = remove_from_lot(lot, 1)
    assert removal.removed_quantity == 0
    assert removal.clamped


def test_whole_unit_market_rounds_removed_cost():
    lot = Lot(account_id="tw", market=Market.TW, ticker="2330")
    add_to_lot(lot, 3, 100.0)

    removal = remove_from_lot(lot, 1)

    assert removal.removed_cost == 33.0
    assert lot.total_cost == 67.0
