"""Per-account performance and asset allocation."""

from datetime import date

import pytest

from ledger_engine.constants import CASH_ALLOCATION_NAME
from ledger_engine.currency import HistoricalRates
from ledger_engine.data_objects import Account, CashFlow, LedgerData, Transaction
from ledger_engine.replay import accounts_with_balances, replay_ledger
from ledger_engine.rollups import calculate_account_performance, calculate_asset_allocation
from ledger_engine.valuation import Holding, value_lots

from conftest import buy, deposit


def _holding(ticker, value, account_id="tw"):
    return Holding(
        ticker=ticker,
        market="TW",
        account_id=account_id,
        currency="TWD",
        quantity=1,
        avg_cost=value,
        total_cost=value,
        current_price=value,
        current_value=value,
        value_reporting=value,
    )


def test_account_performance(twd_account, usd_account, rates):
    ledger = LedgerData(
        accounts=[twd_account, usd_account],
        transactions=[buy("t1", date(2023, 1, 2), "VT", 10, 100.0, market="US", account_id="us")],
        cash_flows=[
            deposit("c1", date(2023, 1, 1), 64_000.0),
            CashFlow(id="c2", date=date(2023, 1, 1), type="TRANSFER", amount=32_000.0, account_id="tw",
                     target_account_id="us", exchange_rate=32.0),
        ],
        prices={"US-VT": 110.0},
    )
    replay = replay_ledger(ledger.transactions, ledger.cash_flows, ledger.accounts, rates=rates)
    accounts = accounts_with_balances(ledger.accounts, replay)
    holdings = value_lots(replay, ledger.prices, rates)

    rows = calculate_account_performance(
        ledger, accounts, holdings, HistoricalRates(current=rates), replay, as_of=date(2024, 1, 1)
    )
    tw, us = rows

    assert tw.id == "tw"
    assert tw.net_invested == pytest.approx(32_000)
    assert tw.total_assets == pytest.approx(32_000)
    assert tw.roi == pytest.approx(0)

    assert us.cash_balance == 0
    assert us.market_value == pytest.approx(10 * 110 * 32)
    assert us.net_invested == pytest.approx(32_000)
    assert us.profit == pytest.approx(3_200)
    assert us.roi == pytest.approx(10.0)
    assert us.annualized_return == pytest.approx(10.0, abs=0.05)
    assert us.to_dict()["currency"] == "USD"


def test_paired_stock_transfer_moves_invested_capital_between_accounts(usd_account, rates):
    broker = Account(id="us2", name="Second US Broker", currency="USD")
    moved = dict(date=date(2023, 6, 1), ticker="VT", market="US", price=0.0, quantity=10)
    ledger = LedgerData(
        accounts=[usd_account, broker],
        transactions=[
            buy("t1", date(2023, 1, 2), "VT", 10, 100.0, market="US", account_id="us"),
            Transaction(id="out", type="TRANSFER_OUT", account_id="us", **moved),
            Transaction(id="in", type="TRANSFER_IN", account_id="us2", **moved),
        ],
        cash_flows=[deposit("c1", date(2023, 1, 1), 1_000.0, account_id="us")],
        prices={"US-VT": 100.0},
    )
    replay = replay_ledger(ledger.transactions, ledger.cash_flows, ledger.accounts, rates=rates)
    accounts = accounts_with_balances(ledger.accounts, replay)
    holdings = value_lots(replay, ledger.prices, rates)

    source, target = calculate_account_performance(
        ledger, accounts, holdings, HistoricalRates(current=rates), replay, as_of=date(2024, 1, 1)
    )

    assert source.total_assets == pytest.approx(0)
    assert source.net_invested == pytest.approx(0)
    assert source.profit == pytest.approx(0)
    assert target.total_assets == pytest.approx(32_000)
    assert target.net_invested == pytest.approx(32_000)
    assert target.profit == pytest.approx(0)
    assert target.roi == pytest.approx(0)


def test_allocation_puts_cash_first_then_largest():
    items = calculate_asset_allocation([_holding("A", 100), _holding("B", 300), _holding("A", 50, "x")], 50)

    assert [i.name for i in items] == [CASH_ALLOCATION_NAME, "B", "A"]
    assert [i.value for i in items] == [50, 300, 150]
    assert sum(i.ratio for i in items) == pytest.approx(100)


def test_allocation_without_cash():
    items = calculate_asset_allocation([_holding("A", 100)], 0)
    assert [i.name for i in items] == ["A"]
    assert items[0].ratio == pytest.approx(100)


def test_allocation_of_empty_portfolio():
    assert calculate_asset_allocation([], 0) == []
