"""Money-weighted annualized return (XIRR).

Called by:
- ``ledger_engine.valuation`` (per-holding return over its trade flows)
- ``ledger_engine.rollups`` (per-account return)
- ``core.ledger_analysis`` (portfolio return)

Contract notes:
- Flows are ``(date, amount)`` pairs from the investor's point of view:
  contributions are negative, withdrawals and the terminal value positive.
- Newton-Raphson from ``XIRR_DEFAULTS["initial_guess"]``; bisection over
  ``[bracket_low, bracket_high]`` when Newton stalls or diverges.
- Degenerate input (no flows, nothing invested, a single date, no sign
  change) returns 0. Result is a percentage and always finite.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from ledger_engine import config
from ledger_engine._logging import ledger_logger
from ledger_engine.constants import CashFlowType
from ledger_engine.currency import FxRates, HistoricalRates, cash_flow_reporting_amount
from ledger_engine.data_objects import LedgerData, market_currency
from ledger_engine.replay import ReplayResult, replay_ledger


Flow = Tuple[date, float]


def _prepare(flows: Iterable[Flow]) -> Tuple[np.ndarray, np.ndarray]:
    min_amount = float(config.XIRR_DEFAULTS.get("min_flow_amount", 1e-4))
    days_per_year = float(config.LEDGER_DEFAULTS.get("days_per_year", 365.0))
    clean = sorted(
        (d, float(a)) for d, a in flows if a is not None and np.isfinite(a) and abs(a) > min_amount
    )
    if not clean:
        return np.array([]), np.array([])
    t0 = clean[0][0]
    years = np.array([(d - t0).days / days_per_year for d, _ in clean], dtype=float)
    amounts = np.array([a for _, a in clean], dtype=float)
    return years, amounts


def _npv(rate: float, years: np.ndarray, amounts: np.ndarray) -> float:
    return float(np.sum(amounts / np.power(1.0 + rate, years)))


def _npv_derivative(rate: float, years: np.ndarray, amounts: np.ndarray) -> float:
    return float(np.sum(-years * amounts / np.power(1.0 + rate, years + 1.0)))


def _newton(years: np.ndarray, amounts: np.ndarray) -> Optional[float]:
    params = config.XIRR_DEFAULTS
    rate = float(params.get("initial_guess", 0.10))
    tolerance = float(params.get("tolerance", 1e-7))
    floor = float(params.get("derivative_floor", 1e-10))

    for _ in range(int(params.get("max_iterations", 100))):
        value = _npv(rate, years, amounts)
        if not np.isfinite(value):
            return None
        if abs(value) < tolerance:
            return rate
        slope = _npv_derivative(rate, years, amounts)
        if not np.isfinite(slope) or abs(slope) < floor:
            return None
        rate = rate - value / slope
        # (1 + r) must stay positive for fractional year exponents
        if not np.isfinite(rate) or rate <= -1.0:
            return None
    return None


def _bisect(years: np.ndarray, amounts: np.ndarray) -> Optional[float]:
    params = config.XIRR_DEFAULTS
    low = float(params.get("bracket_low", -0.99))
    high = float(params.get("bracket_high", 10.0))
    tolerance = float(params.get("tolerance", 1e-7))

    f_low = _npv(low, years, amounts)
    f_high = _npv(high, years, amounts)
    if not (np.isfinite(f_low) and np.isfinite(f_high)) or f_low * f_high > 0:
        return None

    mid = (low + high) / 2.0
    for _ in range(int(params.get("bisection_iterations", 200))):
        mid = (low + high) / 2.0
        f_mid = _npv(mid, years, amounts)
        if abs(f_mid) < tolerance or (high - low) / 2.0 < 1e-12:
            return mid
        if f_low * f_mid < 0:
            high, f_high = mid, f_mid
        else:
            low, f_low = mid, f_mid
    return mid


def xirr(flows: Iterable[Flow], warnings: Optional[List[str]] = None) -> float:
    """Annualized money-weighted return in percent.

    Example:
        xirr([(date(2023, 1, 1), -1000.0), (date(2024, 1, 1), 1100.0)])  # ~10.0
    """
    years, amounts = _prepare(flows)
    if amounts.size < 2:
        return 0.0
    invested = float(-amounts[amounts < 0].sum())
    if invested <= 0 or not (amounts > 0).any():
        return 0.0
    if years[-1] <= 0:
        return 0.0

    with np.errstate(over="ignore", divide="ignore", invalid="ignore"):
        rate = _newton(years, amounts)
        if rate is None:
            ledger_logger.debug("xirr: Newton did not converge, falling back to bisection")
            rate = _bisect(years, amounts)

    if rate is None or not np.isfinite(rate):
        message = "Annualized return did not converge; reported as 0."
        if warnings is not None and message not in warnings:
            warnings.append(message)
        ledger_logger.warning(message)
        return 0.0
    result = rate * 100.0
    return float(result) if np.isfinite(result) else 0.0


def _security_rate(market: str, when: date, rates: HistoricalRates, warnings: Optional[List[str]]) -> float:
    currency = market_currency(market)
    rate = rates.rate_for(currency, when.year)
    if rate is None:
        message = f"Missing exchange rate for {currency}; valued at 0 as an estimate."
        if warnings is not None and message not in warnings:
            warnings.append(message)
        return 0.0
    return rate


def collect_external_flows(
    ledger: LedgerData,
    account_ids: Optional[Iterable[str]] = None,
    rates: Optional[HistoricalRates] = None,
    replay: Optional[ReplayResult] = None,
    cutoff: Optional[date] = None,
    warnings: Optional[List[str]] = None,
) -> List[Flow]:
    """Reporting-currency external flows for an account set (all accounts when ``None``).

    Deposits are negative and withdrawals positive. Cash transfers count only
    when they cross the set boundary. Unpaired security transfers count at
    their recorded value; paired ones count at their carried cost when they
    cross the set boundary. Interest and dividends are returns, not flows.
    """
    accounts = ledger.account_map()
    scope: Set[str] = set(account_ids) if account_ids is not None else set(accounts)
    if rates is None:
        rates = HistoricalRates.from_historical_data(FxRates(rates=ledger.exchange_rates), ledger.historical_data)
    if replay is None:
        replay = replay_ledger(
            ledger.transactions, ledger.cash_flows, ledger.accounts, rates=rates.current, cutoff=cutoff
        )
    orphans = set(replay.orphan_cash_flow_ids)
    skipped = set(replay.skipped_ids)

    flows: List[Flow] = []
    for flow in ledger.cash_flows:
        if cutoff is not None and flow.date > cutoff:
            continue
        if flow.id in orphans or flow.id in skipped:
            continue
        source_in = flow.account_id in scope
        value = cash_flow_reporting_amount(flow, accounts.get(flow.account_id), rates, warnings)
        if flow.type == CashFlowType.DEPOSIT and source_in:
            flows.append((flow.date, -value))
        elif flow.type == CashFlowType.WITHDRAW and source_in:
            flows.append((flow.date, value))
        elif flow.type == CashFlowType.TRANSFER and flow.target_account_id is not None:
            target_in = flow.target_account_id in scope
            if source_in and not target_in:
                flows.append((flow.date, value))
            elif target_in and not source_in:
                flows.append((flow.date, -value))

    for transfer in replay.external_security_transfers:
        if transfer.account_id not in scope:
            continue
        rate = _security_rate(transfer.market, transfer.date, rates, warnings)
        flows.append((transfer.date, -transfer.value * rate))

    for moved in replay.paired_transfers:
        source_in = moved.from_account_id in scope
        target_in = moved.to_account_id in scope
        if source_in == target_in:
            continue
        value = moved.cost * _security_rate(moved.market, moved.date, rates, warnings)
        flows.append((moved.date, value if source_in else -value))

    flows.sort(key=lambda f: (f[0], f[1]))
    return flows


def net_invested(flows: Sequence[Flow]) -> float:
    """Net external contribution in reporting currency (deposits minus withdrawals)."""
    return float(-sum(amount for _, amount in flows))


def terminal_xirr(flows: Sequence[Flow], terminal_value: float, as_of: date, warnings: Optional[List[str]] = None) -> float:
    """XIRR of ``flows`` closed by ``terminal_value`` on ``as_of``."""
    return xirr(list(flows) + [(as_of, float(terminal_value))], warnings)
