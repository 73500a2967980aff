"""End-to-end ledger analysis."""

import json
from datetime import date

import pytest

from core.ledger_analysis import analyze_ledger
from ledger_engine.ledger_io import LedgerImportError, parse_ledger_document
from ledger_engine.providers import set_fx_provider, set_price_provider


AS_OF = date(2024, 12, 31)


@pytest.fixture
def result(ledger_document):
    return analyze_ledger(ledger_document, as_of=AS_OF)


def test_summary_totals(result):
    s = result.summary
    # tw cash: 200,000 - 50,071 - 64,000 + 400 dividend; us cash: 2,000 - 1,801 USD
    assert s.cash_balance == pytest.approx(86_329 + 199 * 32)
    assert s.holdings_value == pytest.approx(60_000 + 2_000 * 32)
    assert s.total_assets == pytest.approx(216_697)
    assert s.net_invested == pytest.approx(200_000)
    assert s.total_pl == pytest.approx(16_697)
    assert s.cash_dividends == pytest.approx(400)
    assert s.annualized_return > 0
    assert s.avg_usd_rate == pytest.approx(32.0)


def test_holdings_and_weights(result):
    assert [h.price_key for h in result.holdings] == ["TW-2330", "US-AAPL"]
    cash_weight = result.summary.cash_weight
    assert sum(h.weight for h in result.holdings) + cash_weight == pytest.approx(100)
    aapl = result.holdings[1]
    assert aapl.daily_change == 2.5
    assert [h.account_ids for h in result.merged_holdings] == [["tw"], ["us"]]


def test_chart_and_annual_performance(result):
    first, last = result.chart_data
    assert first.year == 2023
    assert first.is_real_data
    assert first.total_assets == pytest.approx(85_929 + 55_000 + (199 + 1_900) * 30.5)
    assert last.total_assets == pytest.approx(result.summary.total_assets)
    assert [i.year for i in result.annual_performance] == ["2023", "2024 (to month 12)"]


def test_accounts_and_allocation(result):
    assert [a.id for a in result.accounts] == ["tw", "us"]
    assert result.accounts[1].balance == pytest.approx(199)
    assert [a.id for a in result.account_performance] == ["tw", "us"]
    assert result.asset_allocation[0].name == "Cash"
    assert sum(a.ratio for a in result.asset_allocation) == pytest.approx(100)


def test_rebalance_defaults_to_current_weights(result):
    plan = result.rebalance
    assert plan.total_target_pct == pytest.approx(100)
    assert all(abs(r.diff_value) < 0.001 * plan.total_portfolio_value for r in plan.rows)


def test_clean_ledger_has_only_success_flag(result):
    assert result.warnings == []
    assert [f["type"] for f in result.flags] == ["clean_positive_return"]


def test_missing_price_is_flagged(ledger_document):
    del ledger_document["currentPrices"]["US-AAPL"]
    result = analyze_ledger(ledger_document, as_of=AS_OF)

    assert result.holdings[1].is_price_missing
    assert "missing_prices" in [f["type"] for f in result.flags]
    assert result.get_agent_snapshot()["data_quality"]["missing_price_tickers"] == ["US-AAPL"]


def test_missing_fx_rate_is_flagged(ledger_document):
    del ledger_document["exchangeRate"]
    result = analyze_ledger(ledger_document, as_of=AS_OF)

    assert result.holdings[1].value_reporting == 0
    assert result.get_agent_snapshot()["data_quality"]["missing_fx_currencies"] == ["USD"]
    assert "missing_fx_rates" in [f["type"] for f in result.flags]


def test_as_of_is_a_replay_cutoff(ledger_document):
    result = analyze_ledger(ledger_document, as_of=date(2023, 12, 31))

    assert result.summary.cash_dividends == 0
    assert [p.year for p in result.chart_data] == [2023]
    assert result.accounts[0].balance == pytest.approx(85_929)


def test_overrides_and_providers(ledger_document):
    del ledger_document["currentPrices"]["US-AAPL"]

    class Quotes:
        def get_prices(self, price_keys):
            return {key: 250.0 for key in price_keys}

    class Fx:
        def get_fx_rate(self, currency, reporting_currency):
            return 30.0

    set_price_provider(Quotes())
    set_fx_provider(Fx())
    result = analyze_ledger(ledger_document, as_of=AS_OF, prices={"TW-2330": 700.0}, exchange_rates={"JPY": 0.2})

    by_key = {h.price_key: h for h in result.holdings}
    assert by_key["TW-2330"].current_price == 700
    assert by_key["US-AAPL"].current_price == 250
    # snapshot USD rate wins over the provider
    assert by_key["US-AAPL"].value_reporting == pytest.approx(2_500 * 32)


def test_accepts_parsed_ledger_and_file(tmp_path, ledger_document):
    path = tmp_path / "ledger.json"
    path.write_text(json.dumps(ledger_document), encoding="utf-8")

    from_file = analyze_ledger(str(path), as_of=AS_OF)
    from_data = analyze_ledger(parse_ledger_document(ledger_document), as_of=AS_OF)

    assert from_file.summary.total_assets == pytest.approx(from_data.summary.total_assets)
    assert from_file.cache_key == from_data.cache_key


def test_malformed_document_raises(ledger_document):
    ledger_document["transactions"][0]["type"] = "SHORT"
    with pytest.raises(LedgerImportError):
        analyze_ledger(ledger_document, as_of=AS_OF)


def test_api_response_is_json_safe(result):
    response = result.to_api_response()
    text = json.dumps(response)
    assert response["status"] == "success"
    assert response["asOf"] == "2024-12-31"
    assert "NaN" not in text
    assert response["summary"]["reportingCurrency"] == "TWD"


def test_cli_report_sections(result):
    report = result.to_cli_report(merged=True, include_rebalance=True)
    for heading in ("Ledger Report", "Holdings", "Accounts", "Annual Performance", "Asset Allocation", "Rebalance"):
        assert heading in report
