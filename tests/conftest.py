"""Shared fixtures for ledger tests."""

from __future__ import annotations

from datetime import date

import pytest

from ledger_engine import config
from ledger_engine.currency import FxRates, HistoricalRates
from ledger_engine.data_objects import Account, CashFlow, LedgerData, Transaction, reset_market_map
from ledger_engine.providers import set_fx_provider, set_price_provider


@pytest.fixture(autouse=True)
def _isolated_engine_state(monkeypatch):
    """Default market map, TWD reporting and no providers for every test."""
    monkeypatch.setattr(config, "MARKET_MAP_PATH", "")
    monkeypatch.setitem(config.LEDGER_DEFAULTS, "reporting_currency", "TWD")
    monkeypatch.setitem(config.LEDGER_DEFAULTS, "quote_currency", "TWD")
    reset_market_map()
    set_price_provider(None)
    set_fx_provider(None)
    yield
    reset_market_map()
    set_price_provider(None)
    set_fx_provider(None)


@pytest.fixture
def twd_account():
    return Account(id="tw", name="Taiwan Broker", currency="TWD")


@pytest.fixture
def usd_account():
    return Account(id="us", name="US Broker", currency="USD")


@pytest.fixture
def rates():
    return FxRates(rates={"USD": 32.0, "JPY": 0.21}, reporting_currency="TWD")


@pytest.fixture
def historical_rates(rates):
    return HistoricalRates(current=rates)


def deposit(id, when, amount, account_id="tw", **kwargs):
    return CashFlow(id=id, date=when, type="DEPOSIT", amount=amount, account_id=account_id, **kwargs)


def buy(id, when, ticker, quantity, price, account_id="tw", market="TW", **kwargs):
    return Transaction(
        id=id,
        date=when,
        ticker=ticker,
        market=market,
        type="BUY",
        price=price,
        quantity=quantity,
        account_id=account_id,
        **kwargs,
    )


def sell(id, when, ticker, quantity, price, account_id="tw", market="TW", **kwargs):
    return Transaction(
        id=id,
        date=when,
        ticker=ticker,
        market=market,
        type="SELL",
        price=price,
        quantity=quantity,
        account_id=account_id,
        **kwargs,
    )


@pytest.fixture
def basic_ledger(twd_account):
    """Deposit 10,000 then BUY 100 @ 90 with a 20 fee, priced at 100."""
    return LedgerData(
        accounts=[twd_account],
        transactions=[buy("t1", date(2024, 1, 2), "2330", 100, 90.0, fees=20.0)],
        cash_flows=[deposit("c1", date(2024, 1, 1), 10_000.0)],
        prices={"TW-2330": 100.0},
        exchange_rates={"USD": 32.0},
    )


@pytest.fixture
def ledger_document():
    return {
        "accounts": [
            {"id": "tw", "name": "Taiwan Broker", "currency": "TWD"},
            {"id": "us", "name": "US Broker", "currency": "USD"},
        ],
        "transactions": [
            {
                "id": "t1",
                "date": "2023-03-01",
                "ticker": "2330",
                "market": "TW",
                "type": "BUY",
                "price": 500,
                "quantity": 100,
                "fees": 71,
                "accountId": "tw",
            },
            {
                "id": "t2",
                "date": "2023-06-01",
                "ticker": "AAPL",
                "market": "US",
                "type": "BUY",
                "price": 180,
                "quantity": 10,
                "fees": 1,
                "accountId": "us",
            },
            {
                "id": "t3",
                "date": "2024-07-15",
                "ticker": "2330",
                "market": "TW",
                "type": "CASH_DIVIDEND",
                "price": 4,
                "quantity": 100,
                "accountId": "tw",
            },
        ],
        "cashFlows": [
            {"id": "c1", "date": "2023-01-05", "type": "DEPOSIT", "amount": 200000, "accountId": "tw"},
            {
                "id": "c2",
                "date": "2023-05-20",
                "type": "TRANSFER",
                "amount": 64000,
                "accountId": "tw",
                "targetAccountId": "us",
                "exchangeRate": 32,
            },
        ],
        "currentPrices": {"TW-2330": 600, "US-AAPL": 200},
        "priceDetails": {"US-AAPL": {"change": 2.5, "changePercent": 1.27}},
        "exchangeRate": 32,
        "historicalData": {
            "2023": {"prices": {"TPE:2330": 550, "AAPL": 190}, "exchangeRate": 30.5},
        },
    }
