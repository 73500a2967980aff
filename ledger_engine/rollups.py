"""Per-account and per-ticker rollups of the valued portfolio."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from ledger_engine._vendor import _safe_div, make_json_safe
from ledger_engine.constants import ALLOCATION_COLORS, CASH_ALLOCATION_COLOR, CASH_ALLOCATION_NAME
from ledger_engine.currency import HistoricalRates, convert
from ledger_engine.data_objects import Account, LedgerData
from ledger_engine.replay import ReplayResult
from ledger_engine.valuation import Holding
from ledger_engine.xirr import collect_external_flows, net_invested, terminal_xirr


@dataclass
class AccountPerformance:
    id: str
    name: str
    currency: str
    cash_balance: float
    market_value: float
    total_assets: float
    net_invested: float
    profit: float
    roi: float
    annualized_return: float

    def to_dict(self) -> Dict[str, Any]:
        return make_json_safe(
            {
                "id": self.id,
                "name": self.name,
                "currency": self.currency,
                "cashBalance": self.cash_balance,
                "marketValue": self.market_value,
                "totalAssets": self.total_assets,
                "netInvested": self.net_invested,
                "profit": self.profit,
                "roi": self.roi,
                "annualizedReturn": self.annualized_return,
            }
        )


@dataclass
class AssetAllocationItem:
    name: str
    value: float
    ratio: float
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return make_json_safe({"name": self.name, "value": self.value, "ratio": self.ratio, "color": self.color})


def calculate_account_performance(
    ledger: LedgerData,
    accounts: Iterable[Account],
    holdings: Iterable[Holding],
    rates: HistoricalRates,
    replay: ReplayResult,
    as_of: Optional[date] = None,
    warnings: Optional[List[str]] = None,
) -> List[AccountPerformance]:
    """One row per account; ``accounts`` must carry replayed balances."""
    as_of = as_of or date.today()
    value_by_account: Dict[str, float] = defaultdict(float)
    for h in holdings:
        if h.account_id is not None:
            value_by_account[h.account_id] += h.value_reporting

    rows = []
    for acc in sorted(accounts, key=lambda a: a.id):
        cash = convert(acc.balance, acc.currency.value, rates.current, warnings).amount
        market_value = value_by_account.get(acc.id, 0.0)
        total = cash + market_value
        flows = collect_external_flows(ledger, [acc.id], rates=rates, replay=replay, cutoff=as_of, warnings=warnings)
        invested = net_invested(flows)
        profit = total - invested
        rows.append(
            AccountPerformance(
                id=acc.id,
                name=acc.name,
                currency=acc.currency.value,
                cash_balance=cash,
                market_value=market_value,
                total_assets=total,
                net_invested=invested,
                profit=profit,
                roi=_safe_div(profit, invested) * 100.0,
                annualized_return=terminal_xirr(flows, total, as_of),
            )
        )
    return rows


def calculate_asset_allocation(holdings: Iterable[Holding], cash_balance: float) -> List[AssetAllocationItem]:
    """Allocation by ticker (largest first) with a leading cash bucket when cash > 0."""
    by_ticker: Dict[str, float] = defaultdict(float)
    for h in holdings:
        by_ticker[h.ticker] += h.value_reporting
    total = cash_balance + sum(by_ticker.values())

    ordered = sorted(by_ticker.items(), key=lambda kv: (-kv[1], kv[0]))
    items = [
        AssetAllocationItem(
            name=ticker,
            value=value,
            ratio=_safe_div(value, total) * 100.0,
            color=ALLOCATION_COLORS[i % len(ALLOCATION_COLORS)],
        )
        for i, (ticker, value) in enumerate(ordered)
    ]
    if cash_balance > 0:
        items.insert(
            0,
            AssetAllocationItem(
                name=CASH_ALLOCATION_NAME,
                value=cash_balance,
                ratio=_safe_div(cash_balance, total) * 100.0,
                color=CASH_ALLOCATION_COLOR,
            ),
        )
    return items
