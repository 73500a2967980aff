"""Target-weight rebalancing worksheet.

Targets are percentages of total portfolio value (holdings + cash) keyed by
``"{account_id}-{market}-{ticker}"``. Saved worksheets keyed by the older
``"{account_id}-{ticker}"`` form still apply when that ticker is held in only
one market of the account. Whatever the targets leave over is the cash
target. Diffs are in reporting currency; share diffs are native units.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping

from ledger_engine import config
from ledger_engine._vendor import _safe_div, make_json_safe
from ledger_engine.currency import FxRates
from ledger_engine.valuation import Holding


def target_key(account_id: str, market: str, ticker: str) -> str:
    return f"{account_id}-{market}-{ticker}"


def legacy_target_key(account_id: str, ticker: str) -> str:
    return f"{account_id}-{ticker}"


def _target_pct(targets: Mapping[str, float], h: Holding, legacy_counts: Mapping[str, int]) -> float:
    key = target_key(h.account_id, h.market, h.ticker)
    if key in targets:
        return float(targets[key] or 0.0)
    legacy = legacy_target_key(h.account_id, h.ticker)
    if legacy_counts.get(legacy) == 1:
        return float(targets.get(legacy, 0.0) or 0.0)
    return 0.0


@dataclass
class RebalanceRow:
    key: str
    ticker: str
    market: str
    account_id: str
    current_value: float
    current_pct: float
    target_pct: float
    target_value: float
    diff_value: float
    diff_shares: float
    price: float

    @property
    def side(self) -> str:
        if self.diff_value > 0:
            return "BUY"
        if self.diff_value < 0:
            return "SELL"
        return "HOLD"

    def to_dict(self) -> Dict[str, Any]:
        return make_json_safe(
            {
                "key": self.key,
                "ticker": self.ticker,
                "market": self.market,
                "accountId": self.account_id,
                "side": self.side,
                "currentValue": self.current_value,
                "currentPct": self.current_pct,
                "targetPct": self.target_pct,
                "targetValue": self.target_value,
                "diffValue": self.diff_value,
                "diffShares": self.diff_shares,
                "price": self.price,
            }
        )


@dataclass
class RebalancePlan:
    total_portfolio_value: float
    rows: List[RebalanceRow] = field(default_factory=list)
    cash_value: float = 0.0
    cash_current_pct: float = 0.0
    cash_target_pct: float = 100.0
    cash_target_value: float = 0.0
    cash_diff_value: float = 0.0
    warnings: List[str] = field(default_factory=list)

    @property
    def total_target_pct(self) -> float:
        return sum(r.target_pct for r in self.rows) + self.cash_target_pct

    def to_dict(self) -> Dict[str, Any]:
        return make_json_safe(
            {
                "totalPortfolioValue": self.total_portfolio_value,
                "rows": [r.to_dict() for r in self.rows],
                "cash": {
                    "value": self.cash_value,
                    "currentPct": self.cash_current_pct,
                    "targetPct": self.cash_target_pct,
                    "targetValue": self.cash_target_value,
                    "diffValue": self.cash_diff_value,
                },
                "totalTargetPct": self.total_target_pct,
                "warnings": list(self.warnings),
            }
        )


def targets_from_current(holdings: Iterable[Holding], total_portfolio_value: float) -> Dict[str, float]:
    """Seed targets from current weights, rounded to the configured precision."""
    digits = int(config.LEDGER_DEFAULTS.get("rebalance_target_precision", 1))
    targets: Dict[str, float] = {}
    for h in holdings:
        if h.account_id is None:
            continue
        pct = _safe_div(h.value_reporting, total_portfolio_value) * 100.0
        key = target_key(h.account_id, h.market, h.ticker)
        targets[key] = round(targets.get(key, 0.0) + pct, digits)
    return targets


def build_rebalance_plan(
    holdings: Iterable[Holding],
    cash_balance: float,
    targets: Mapping[str, float],
    rates: FxRates,
) -> RebalancePlan:
    """Per-holding target/diff rows plus the residual cash row."""
    holdings = [h for h in holdings if h.account_id is not None]
    total = sum(h.value_reporting for h in holdings) + cash_balance
    plan = RebalancePlan(total_portfolio_value=total, cash_value=cash_balance)
    legacy_counts = Counter(legacy_target_key(h.account_id, h.ticker) for h in holdings)

    for h in holdings:
        key = target_key(h.account_id, h.market, h.ticker)
        target_pct = _target_pct(targets, h, legacy_counts)
        target_value = total * target_pct / 100.0
        diff_value = target_value - h.value_reporting
        rate = rates.rate_for(h.currency)
        if rate is None and diff_value:
            plan.warnings.append(f"No exchange rate for {h.currency}; share diff for {key} left at 0.")
        diff_shares = 0.0
        if h.current_price > 0 and rate:
            diff_shares = diff_value / rate / h.current_price
        plan.rows.append(
            RebalanceRow(
                key=key,
                ticker=h.ticker,
                market=h.market,
                account_id=h.account_id,
                current_value=h.value_reporting,
                current_pct=_safe_div(h.value_reporting, total) * 100.0,
                target_pct=target_pct,
                target_value=target_value,
                diff_value=diff_value,
                diff_shares=diff_shares,
                price=h.current_price,
            )
        )

    plan.cash_target_pct = 100.0 - sum(r.target_pct for r in plan.rows)
    plan.cash_current_pct = _safe_div(cash_balance, total) * 100.0
    plan.cash_target_value = total * plan.cash_target_pct / 100.0
    plan.cash_diff_value = plan.cash_target_value - cash_balance
    if plan.cash_target_pct < 0:
        plan.warnings.append(f"Targets sum to {100.0 - plan.cash_target_pct:.1f}%, leaving a negative cash target.")
    return plan
