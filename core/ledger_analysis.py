"""
Core ledger analysis business logic.

Agent orientation:
    This is the canonical pure-function entrypoint for ledger replay and
    valuation. Start here when debugging drift between CLI and API numbers.

Called by:
    - ``run_ledger.run_ledger`` (CLI wrapper)

Primary flow:
    1) Resolve the ledger (path, raw document or ``LedgerData``).
    2) Fill missing prices/FX from registered providers.
    3) Replay events as of ``as_of`` into lots and cash balances.
    4) Value holdings (two-pass weights), merge, summarize, solve XIRR.
    5) Build chart/annual/account/allocation/rebalance rollups.
    6) Derive flags and return ``LedgerAnalysisResult``.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from core.ledger_flags import generate_ledger_flags
from core.result_objects import LedgerAnalysisResult
from ledger_engine import config
from ledger_engine._logging import ledger_logger, log_errors, log_ledger_operation, log_operation, log_timing
from ledger_engine.currency import FxRates, HistoricalRates
from ledger_engine.data_objects import LedgerData, _to_date, market_currency, price_key
from ledger_engine.ledger_io import load_ledger_document, parse_ledger_document
from ledger_engine.providers import get_fx_provider, get_price_provider
from ledger_engine.rebalance import build_rebalance_plan, targets_from_current
from ledger_engine.replay import accounts_with_balances, replay_ledger
from ledger_engine.rollups import calculate_account_performance, calculate_asset_allocation
from ledger_engine.timeseries import calculate_annual_performance, generate_chart_data
from ledger_engine.valuation import (
    apply_weights,
    build_portfolio_summary,
    cash_reporting_total,
    merge_holdings_by_security,
    value_lots,
)
from ledger_engine.xirr import collect_external_flows, net_invested, terminal_xirr


def _resolve_ledger(ledger: Union[str, Path, Mapping[str, Any], LedgerData]) -> LedgerData:
    if isinstance(ledger, LedgerData):
        return ledger
    if isinstance(ledger, (str, Path)):
        return load_ledger_document(ledger)
    return parse_ledger_document(ledger)


def _fill_from_providers(ledger: LedgerData, prices: Dict[str, float], rates: Dict[str, float], reporting: str) -> None:
    """Ask registered providers only for what the snapshot lacks (mutates the local copies)."""
    needed_keys = sorted({price_key(t.market, t.ticker) for t in ledger.transactions} - set(prices))
    provider = get_price_provider()
    if provider is not None and needed_keys:
        try:
            fetched = provider.get_prices(needed_keys) or {}
        except Exception as exc:
            ledger_logger.warning("price provider failed (%s); continuing with snapshot prices", exc)
        else:
            for key, value in fetched.items():
                if key in needed_keys and value is not None:
                    prices[key] = float(value)

    currencies = {a.currency.value for a in ledger.accounts} | {market_currency(t.market) for t in ledger.transactions}
    missing = sorted(c for c in currencies if c != reporting and c not in rates)
    fx = get_fx_provider()
    if fx is not None:
        for ccy in missing:
            try:
                rate = fx.get_fx_rate(ccy, reporting)
            except Exception as exc:
                ledger_logger.warning("fx provider failed for %s (%s)", ccy, exc)
                continue
            if rate:
                rates[ccy] = float(rate)


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


@log_errors("high")
@log_operation("ledger_analysis")
@log_timing(3.0)
def analyze_ledger(
    ledger: Union[str, Path, Mapping[str, Any], LedgerData],
    *,
    as_of: Optional[Union[date, str]] = None,
    prices: Optional[Mapping[str, float]] = None,
    exchange_rates: Optional[Mapping[str, float]] = None,
    reporting_currency: Optional[str] = None,
    rebalance_targets: Optional[Mapping[str, float]] = None,
) -> LedgerAnalysisResult:
    """
    Replay, value and roll up a ledger; return ``LedgerAnalysisResult``.

    Contract notes:
    - ``ledger`` accepts a JSON file path, a raw document dict or ``LedgerData``.
      Only a malformed document raises (``LedgerImportError``).
    - ``prices`` / ``exchange_rates`` override the snapshot's own maps.
    - ``as_of`` (default today) is the inclusive replay cutoff and the date of
      the terminal XIRR flow.
    """
    data = _resolve_ledger(ledger)
    as_of_date = _to_date(as_of) if as_of is not None else date.today()
    reporting = (reporting_currency or config.reporting_currency()).upper()

    price_map: Dict[str, float] = dict(data.prices)
    price_map.update(prices or {})
    rate_map: Dict[str, float] = dict(data.exchange_rates)
    rate_map.update({str(k).upper(): v for k, v in (exchange_rates or {}).items()})
    _fill_from_providers(data, price_map, rate_map, reporting)

    current = FxRates(rates=rate_map, reporting_currency=reporting)
    rates = HistoricalRates.from_historical_data(current, data.historical_data)
    warnings: List[str] = []

    # ─── 1. Replay ─────────────────────────────
    replay = replay_ledger(data.transactions, data.cash_flows, data.accounts, rates=current, cutoff=as_of_date)
    warnings.extend(replay.warnings)
    accounts = accounts_with_balances(data.accounts, replay)

    # ─── 2. Valuation (two-pass) ───────────────
    raw_holdings = value_lots(replay, price_map, current, price_details=data.price_details, as_of=as_of_date, warnings=warnings)
    cash_total = cash_reporting_total(accounts, current, warnings)
    total_value = sum(h.value_reporting for h in raw_holdings) + cash_total
    holdings = apply_weights(raw_holdings, total_value)
    merged = merge_holdings_by_security(holdings, total_value, replay=replay, as_of=as_of_date)

    # ─── 3. Returns ────────────────────────────
    flows = collect_external_flows(data, rates=rates, replay=replay, cutoff=as_of_date, warnings=warnings)
    invested = net_invested(flows)
    annualized = terminal_xirr(flows, total_value, as_of_date, warnings)
    summary = build_portfolio_summary(
        holdings,
        accounts,
        [c for c in data.cash_flows if c.date <= as_of_date],
        [t for t in data.transactions if t.date <= as_of_date],
        rates,
        invested,
        annualized,
        warnings,
        replay=replay,
    )

    # ─── 4. Rollups ────────────────────────────
    chart = generate_chart_data(data, total_value, rates, as_of=as_of_date, warnings=warnings)
    annual = calculate_annual_performance(chart, as_of=as_of_date)
    account_perf = calculate_account_performance(data, accounts, holdings, rates, replay, as_of=as_of_date, warnings=warnings)
    allocation = calculate_asset_allocation(holdings, cash_total)
    targets = dict(rebalance_targets or data.rebalance_targets or {}) or targets_from_current(holdings, total_value)
    plan = build_rebalance_plan(holdings, cash_total, targets, current)

    result = LedgerAnalysisResult(
        as_of=as_of_date,
        summary=summary,
        holdings=holdings,
        merged_holdings=merged,
        accounts=accounts,
        chart_data=chart,
        annual_performance=annual,
        account_performance=account_perf,
        asset_allocation=allocation,
        rebalance=plan,
        warnings=_dedupe(warnings + plan.warnings),
        inconsistencies=list(replay.inconsistencies),
        orphan_transaction_ids=list(replay.orphan_transaction_ids),
        orphan_cash_flow_ids=list(replay.orphan_cash_flow_ids),
        skipped_ids=list(replay.skipped_ids),
        cache_key=data.get_cache_key(),
    )
    result.flags = generate_ledger_flags(result.get_agent_snapshot())

    log_ledger_operation(
        "ledger_analysis_complete",
        {
            "as_of": as_of_date.isoformat(),
            "holdings": len(holdings),
            "accounts": len(accounts),
            "warnings": len(result.warnings),
        },
    )
    return result
