"""Year-by-year chart reconstruction and annual performance."""

from datetime import date

import pytest

from ledger_engine.currency import HistoricalRates
from ledger_engine.data_objects import HistoricalYear, LedgerData
from ledger_engine.timeseries import (
    calculate_annual_performance,
    chart_frame,
    generate_chart_data,
    lookup_historical_price,
)

from conftest import buy, deposit


AS_OF = date(2024, 6, 30)


@pytest.fixture
def history_ledger(twd_account):
    return LedgerData(
        accounts=[twd_account],
        transactions=[buy("t1", date(2022, 3, 2), "2330", 100, 50.0)],
        cash_flows=[deposit("c1", date(2022, 3, 1), 10_000.0), deposit("c2", date(2023, 6, 1), 5_000.0)],
        historical_data={2022: {"prices": {"TPE:2330": 60}}},
    )


def _chart(ledger, rates, total=20_000.0, warnings=None):
    return generate_chart_data(ledger, total, HistoricalRates(current=rates), as_of=AS_OF, warnings=warnings)


def test_one_point_per_year(history_ledger, rates):
    points = _chart(history_ledger, rates)
    assert [p.year for p in points] == [2022, 2023, 2024]
    assert [p.cost for p in points] == [10_000, 15_000, 15_000]


def test_stored_year_is_valued_from_year_end_replay(history_ledger, rates):
    first = _chart(history_ledger, rates)[0]
    assert first.total_assets == pytest.approx(100 * 60 + 5_000)
    assert first.profit == pytest.approx(1_000)
    assert first.is_real_data
    assert first.asset_cost_ratio == pytest.approx(1.1)


def test_year_without_entry_is_interpolated(history_ledger, rates):
    middle = _chart(history_ledger, rates)[1]
    # cost + today's profit x (years elapsed / total years)
    assert middle.total_assets == pytest.approx(15_000 + 5_000 * 2 / 3)
    assert not middle.is_real_data


def test_current_year_uses_live_total(history_ledger, rates):
    last = _chart(history_ledger, rates)[-1]
    assert last.total_assets == 20_000
    assert last.is_real_data


def test_projection_curve_compounds_inflows(history_ledger, rates):
    points = _chart(history_ledger, rates)
    assert [p.est_total_assets for p in points] == pytest.approx([10_800, 17_064, 18_429.12])


def test_missing_stored_price_falls_back_to_average_cost(history_ledger, rates):
    history_ledger.historical_data = {2022: HistoricalYear(prices={})}
    warnings = []
    first = _chart(history_ledger, rates, warnings=warnings)[0]

    assert first.total_assets == pytest.approx(100 * 50 + 5_000)
    assert not first.is_real_data
    assert any("valued at average cost" in w for w in warnings)


def test_earlier_price_is_carried_forward(history_ledger, rates):
    history_ledger.historical_data = {2022: HistoricalYear(prices={"2330": 60}), 2023: HistoricalYear()}
    points = _chart(history_ledger, rates)

    assert points[1].total_assets == pytest.approx(100 * 60 + 10_000)
    assert not points[1].is_real_data


def test_empty_ledger_has_no_points(twd_account, rates):
    assert _chart(LedgerData(accounts=[twd_account]), rates) == []


def test_annual_performance_from_consecutive_points(history_ledger, rates):
    items = calculate_annual_performance(_chart(history_ledger, rates), as_of=AS_OF)

    assert [i.year for i in items] == ["2022", "2023", "2024 (to month 6)"]
    first, second, _ = items
    assert first.start_assets == 0
    assert first.net_inflow == 10_000
    assert first.profit == pytest.approx(1_000)
    assert first.roi == pytest.approx(10.0)
    assert second.start_assets == pytest.approx(11_000)
    assert second.net_inflow == 5_000
    assert second.roi == pytest.approx((15_000 + 5_000 * 2 / 3 - 16_000) / 16_000 * 100)
    assert not second.is_real_data


def test_chart_frame_is_indexed_by_year(history_ledger, rates):
    frame = chart_frame(_chart(history_ledger, rates))
    assert list(frame.index) == [2022, 2023, 2024]
    assert chart_frame([]).empty


@pytest.mark.parametrize(
    "prices, market, ticker, expected",
    [
        ({"TPE:2330": 550}, "TW", "2330", 550),
        ({"2330": 550}, "TW", "TPE:2330", 550),
        ({"0050": 130}, "TW", "0050(BAK)", 130),
        ({"VT": 95}, "US", "VT(BAK)", 95),
        ({"VT": 0}, "US", "VT", None),
        ({}, "US", "VT", None),
    ],
)
def test_lookup_historical_price(prices, market, ticker, expected):
    assert lookup_historical_price(prices, market, ticker) == expected
