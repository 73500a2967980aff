"""Ledger flags derived from the agent snapshot."""

from core.ledger_flags import generate_ledger_flags


def _snapshot(**overrides):
    snapshot = {
        "returns": {"total_pl": 1_000.0, "total_pl_pct": 10.0, "annualized_return_pct": 8.0},
        "cash": {"balance": 500.0, "weight_pct": 5.0, "negative_accounts": []},
        "data_quality": {
            "clamped_sell_count": 0,
            "orphan_transaction_count": 0,
            "orphan_cash_flow_count": 0,
            "skipped_count": 0,
            "missing_price_tickers": [],
            "missing_fx_currencies": [],
            "estimated_years": [],
        },
    }
    for section, values in overrides.items():
        snapshot[section].update(values)
    return snapshot


def _types(flags):
    return [f["type"] for f in flags]


def test_clean_positive_return():
    flags = generate_ledger_flags(_snapshot())
    assert _types(flags) == ["clean_positive_return"]
    assert flags[0]["severity"] == "success"


def test_negative_returns_warn():
    flags = generate_ledger_flags(_snapshot(returns={"total_pl_pct": -12.3, "annualized_return_pct": -4.0}))
    assert _types(flags) == ["negative_total_return", "negative_annualized_return"]
    assert flags[0]["total_pl_pct"] == -12.3


def test_data_quality_flags_sorted_by_severity():
    flags = generate_ledger_flags(
        _snapshot(
            cash={"negative_accounts": ["us"]},
            data_quality={
                "clamped_sell_count": 2,
                "orphan_cash_flow_count": 1,
                "skipped_count": 3,
                "missing_price_tickers": ["US-VT"],
                "missing_fx_currencies": ["GBP"],
                "estimated_years": [2021, 2022],
            },
        )
    )
    assert _types(flags) == [
        "clamped_sells",
        "orphan_records",
        "missing_prices",
        "missing_fx_rates",
        "negative_cash",
        "skipped_events",
        "estimated_history",
    ]
    severities = [f["severity"] for f in flags]
    assert severities == sorted(severities, key=["warning", "info"].index)


def test_empty_snapshot_gives_no_flags():
    assert generate_ledger_flags({}) == []
    assert generate_ledger_flags(None) == []


def test_non_finite_values_are_ignored():
    flags = generate_ledger_flags(_snapshot(returns={"total_pl_pct": float("nan"), "annualized_return_pct": None}))
    assert flags == []
