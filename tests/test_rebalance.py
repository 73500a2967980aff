"""Target-weight rebalancing worksheet."""

import pytest

from ledger_engine.currency import FxRates
from ledger_engine.rebalance import build_rebalance_plan, target_key, targets_from_current
from ledger_engine.valuation import Holding


def _holding(ticker, market, account_id, currency, price, quantity, value_reporting):
    return Holding(
        ticker=ticker,
        market=market,
        account_id=account_id,
        currency=currency,
        quantity=quantity,
        avg_cost=price,
        total_cost=price * quantity,
        current_price=price,
        current_value=price * quantity,
        value_reporting=value_reporting,
    )


@pytest.fixture
def holdings():
    return [
        _holding("2330", "TW", "tw", "TWD", 600.0, 100, 60_000.0),
        _holding("VT", "US", "us", "USD", 100.0, 10, 32_000.0),
    ]


def test_plan_rows_and_cash_residual(holdings, rates):
    plan = build_rebalance_plan(holdings, 8_000.0, {"tw-TW-2330": 50, "us-US-VT": 40}, rates)

    assert plan.total_portfolio_value == pytest.approx(100_000)
    tw, us = plan.rows
    assert tw.key == "tw-TW-2330"
    assert tw.current_pct == pytest.approx(60)
    assert tw.diff_value == pytest.approx(-10_000)
    assert tw.diff_shares == pytest.approx(-10_000 / 600)
    assert tw.side == "SELL"
    assert us.diff_value == pytest.approx(8_000)
    assert us.diff_shares == pytest.approx(8_000 / 32 / 100)
    assert us.side == "BUY"
    assert plan.cash_target_pct == pytest.approx(10)
    assert plan.cash_diff_value == pytest.approx(2_000)
    assert plan.total_target_pct == pytest.approx(100)
    assert plan.warnings == []


def test_targets_over_hundred_warn(holdings, rates):
    plan = build_rebalance_plan(holdings, 8_000.0, {"tw-TW-2330": 70, "us-US-VT": 40}, rates)
    assert plan.cash_target_pct == pytest.approx(-10)
    assert plan.warnings


def test_missing_rate_leaves_share_diff_at_zero(holdings):
    plan = build_rebalance_plan(holdings, 8_000.0, {"us-US-VT": 50}, FxRates(rates={}, reporting_currency="TWD"))
    us = plan.rows[1]
    assert us.diff_shares == 0
    assert any("No exchange rate for USD" in w for w in plan.warnings)


def test_seed_targets_from_current_weights(holdings):
    targets = targets_from_current(holdings, 100_000.0)
    assert targets == {target_key("tw", "TW", "2330"): 60.0, target_key("us", "US", "VT"): 32.0}


def test_untargeted_holding_sells_down(holdings, rates):
    plan = build_rebalance_plan(holdings, 8_000.0, {}, rates)
    assert all(r.side == "SELL" for r in plan.rows)
    assert plan.cash_target_pct == 100
    assert plan.to_dict()["cash"]["targetPct"] == 100


def test_same_ticker_in_two_markets_gets_separate_targets(rates):
    holdings = [
        _holding("ABC", "US", "us", "USD", 10.0, 100, 32_000.0),
        _holding("ABC", "UK", "us", "GBP", 10.0, 100, 40_000.0),
    ]
    plan = build_rebalance_plan(holdings, 28_000.0, {"us-US-ABC": 40, "us-UK-ABC": 30}, rates)

    us, uk = plan.rows
    assert (us.key, us.target_pct) == ("us-US-ABC", 40)
    assert (uk.key, uk.target_pct) == ("us-UK-ABC", 30)
    assert targets_from_current(holdings, 100_000.0) == {"us-US-ABC": 32.0, "us-UK-ABC": 40.0}


def test_older_account_ticker_keys_still_apply(holdings, rates):
    plan = build_rebalance_plan(holdings, 8_000.0, {"tw-2330": 50, "us-VT": 40}, rates)
    assert [r.target_pct for r in plan.rows] == [50, 40]

    ambiguous = [
        _holding("ABC", "US", "us", "USD", 10.0, 100, 32_000.0),
        _holding("ABC", "UK", "us", "GBP", 10.0, 100, 40_000.0),
    ]
    plan = build_rebalance_plan(ambiguous, 0.0, {"us-ABC": 50}, rates)
    assert [r.target_pct for r in plan.rows] == [0, 0]
