"""Ledger-level interpretive flags for agent-oriented responses."""

from __future__ import annotations

import math
from typing import Any


def _to_float(value: Any) -> float | None:
    """Convert to finite float; return None for missing/invalid values."""
    if value is None:
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric):
        return None
    return numeric


def _count(value: Any) -> int:
    return int(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else 0


def generate_ledger_flags(snapshot: dict) -> list[dict]:
    """Generate actionable flags from a ledger snapshot payload."""
    flags: list[dict] = []
    returns = snapshot.get("returns", {}) if isinstance(snapshot, dict) else {}
    data_quality = snapshot.get("data_quality", {}) if isinstance(snapshot, dict) else {}
    cash = snapshot.get("cash", {}) if isinstance(snapshot, dict) else {}

    total_pl_pct = _to_float(returns.get("total_pl_pct"))
    annualized = _to_float(returns.get("annualized_return_pct"))

    if total_pl_pct is not None and total_pl_pct < 0:
        flags.append(
            {
                "type": "negative_total_return",
                "severity": "warning",
                "message": f"Portfolio is down {abs(total_pl_pct):.1f}% on net invested capital",
                "total_pl_pct": round(total_pl_pct, 2),
            }
        )

    if annualized is not None and annualized < 0:
        flags.append(
            {
                "type": "negative_annualized_return",
                "severity": "warning",
                "message": f"Annualized return is {annualized:.1f}%",
                "annualized_return_pct": round(annualized, 2),
            }
        )

    clamped = _count(data_quality.get("clamped_sell_count"))
    if clamped > 0:
        flags.append(
            {
                "type": "clamped_sells",
                "severity": "warning",
                "message": f"{clamped} sell/transfer(s) exceeded the held quantity and were clamped to zero",
                "clamped_sell_count": clamped,
            }
        )

    orphan_txn = _count(data_quality.get("orphan_transaction_count"))
    orphan_flow = _count(data_quality.get("orphan_cash_flow_count"))
    if orphan_txn + orphan_flow > 0:
        flags.append(
            {
                "type": "orphan_records",
                "severity": "warning",
                "message": f"{orphan_txn + orphan_flow} record(s) reference unknown accounts and were excluded from cash balances",
                "orphan_transaction_count": orphan_txn,
                "orphan_cash_flow_count": orphan_flow,
            }
        )

    missing_prices = list(data_quality.get("missing_price_tickers") or [])
    if missing_prices:
        flags.append(
            {
                "type": "missing_prices",
                "severity": "warning",
                "message": f"No current price for {', '.join(missing_prices[:5])}; valued at 0",
                "tickers": missing_prices,
            }
        )

    missing_fx = list(data_quality.get("missing_fx_currencies") or [])
    if missing_fx:
        flags.append(
            {
                "type": "missing_fx_rates",
                "severity": "warning",
                "message": f"No exchange rate for {', '.join(missing_fx)}; those amounts are estimated at 0",
                "currencies": missing_fx,
            }
        )

    negative_cash = list(cash.get("negative_accounts") or [])
    if negative_cash:
        flags.append(
            {
                "type": "negative_cash",
                "severity": "info",
                "message": f"Negative cash balance in {', '.join(negative_cash)} (missing deposit or transfer?)",
                "accounts": negative_cash,
            }
        )

    skipped = _count(data_quality.get("skipped_count"))
    if skipped > 0:
        flags.append(
            {
                "type": "skipped_events",
                "severity": "info",
                "message": f"{skipped} event(s) with invalid price/quantity were skipped",
                "skipped_count": skipped,
            }
        )

    estimated_years = list(data_quality.get("estimated_years") or [])
    if estimated_years:
        flags.append(
            {
                "type": "estimated_history",
                "severity": "info",
                "message": f"{len(estimated_years)} historical year(s) are estimates (no complete year-end prices)",
                "years": estimated_years,
            }
        )

    if annualized is not None and annualized > 0 and not flags:
        flags.append(
            {
                "type": "clean_positive_return",
                "severity": "success",
                "message": f"Annualized return of {annualized:.1f}% with no data-quality issues",
                "annualized_return_pct": round(annualized, 2),
            }
        )

    severity_order = {"error": 0, "warning": 1, "info": 2, "success": 3}
    flags.sort(key=lambda flag: severity_order.get(flag.get("severity"), 9))
    return flags
