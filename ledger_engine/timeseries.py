"""Year-by-year performance reconstruction.

Called by:
- ``core.ledger_analysis.analyze_ledger``

Contract notes:
- One ``ChartDataPoint`` per calendar year from the first event's year
  through the ``as_of`` year.
- Past years with a stored historical entry are valued from a cutoff replay
  at Dec 31 (real when every held ticker has a stored price, estimated when
  a carried-forward price had to be used). Past years without an entry
  interpolate profit linearly toward today's profit (estimated).
- The ``as_of`` year uses the live total portfolio value (real).
- ``AnnualPerformanceItem`` rows derive only from consecutive chart points.

Historical reconstruction re-replays the full event list per year. That is
O(events x years), fine for personal-ledger sizes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd

from ledger_engine import config
from ledger_engine._logging import ledger_logger
from ledger_engine._vendor import _safe_div, make_json_safe
from ledger_engine.constants import QUANTITY_EPSILON
from ledger_engine.currency import HistoricalRates, convert, convert_market_amount
from ledger_engine.data_objects import LedgerData, market_settles_whole_units
from ledger_engine.replay import replay_ledger
from ledger_engine.xirr import collect_external_flows


_BAK_SUFFIX = re.compile(r"\(BAK\)", re.IGNORECASE)
_TPE_PREFIX = re.compile(r"^TPE:", re.IGNORECASE)


@dataclass
class ChartDataPoint:
    year: int
    cost: float
    profit: float
    total_assets: float
    est_total_assets: float
    asset_cost_ratio: float
    is_real_data: bool

    def to_dict(self) -> Dict[str, Any]:
        return make_json_safe(
            {
                "year": str(self.year),
                "cost": self.cost,
                "profit": self.profit,
                "totalAssets": self.total_assets,
                "estTotalAssets": self.est_total_assets,
                "assetCostRatio": self.asset_cost_ratio,
                "isRealData": self.is_real_data,
            }
        )


@dataclass
class AnnualPerformanceItem:
    year: str
    start_assets: float
    net_inflow: float
    end_assets: float
    profit: float
    roi: float
    is_real_data: bool

    def to_dict(self) -> Dict[str, Any]:
        return make_json_safe(
            {
                "year": self.year,
                "startAssets": self.start_assets,
                "netInflow": self.net_inflow,
                "endAssets": self.end_assets,
                "profit": self.profit,
                "roi": self.roi,
                "isRealData": self.is_real_data,
            }
        )


def lookup_historical_price(prices: Mapping[str, float], market: str, ticker: str) -> Optional[float]:
    """Stored year-end price for a ticker.

    Tickers marked ``(BAK)`` fall back to their plain code; TW tickers match
    with or without the ``TPE:`` exchange prefix.
    """
    candidates = [ticker]
    clean = _BAK_SUFFIX.sub("", ticker).strip()
    if market == "TW":
        bare = _TPE_PREFIX.sub("", clean)
        candidates += [clean, bare, f"TPE:{bare}"]
    else:
        candidates.append(clean)
    for candidate in candidates:
        price = prices.get(candidate)
        if price is not None and price > 0:
            return float(price)
    return None


def _year_bounds(ledger: LedgerData, as_of: date) -> Optional[Tuple[int, int]]:
    dates = [t.date for t in ledger.transactions] + [c.date for c in ledger.cash_flows]
    dates = [d for d in dates if d <= as_of]
    if not dates:
        return None
    return min(dates).year, as_of.year


def _cumulative_cost_by_year(flows: List[Tuple[date, float]], start_year: int, end_year: int) -> pd.Series:
    years = range(start_year, end_year + 1)
    if not flows:
        return pd.Series(0.0, index=list(years))
    frame = pd.DataFrame(flows, columns=["date", "amount"])
    frame["year"] = [d.year for d in frame["date"]]
    # external flows are investor-signed; contributions are negative
    inflow = (-frame.groupby("year")["amount"].sum()).reindex(list(years), fill_value=0.0)
    return inflow.cumsum()


def _value_year_end(
    ledger: LedgerData,
    year: int,
    rates: HistoricalRates,
    warnings: List[str],
) -> Tuple[float, bool]:
    """(total assets at Dec 31 of ``year``, all prices were stored for that year)."""
    cutoff = date(year, 12, 31)
    year_rates = rates.for_year(year)
    replay = replay_ledger(ledger.transactions, ledger.cash_flows, ledger.accounts, rates=year_rates, cutoff=cutoff)
    stored = ledger.historical_data[year].prices

    all_real = True
    stock_value = 0.0
    for lot in replay.open_lots(QUANTITY_EPSILON):
        market = lot.market.value
        price = lookup_historical_price(stored, market, lot.ticker)
        if price is None:
            all_real = False
            price = _carried_forward_price(ledger, year, market, lot.ticker)
            if price is None:
                price = lot.avg_cost
                warnings.append(f"No stored price for {market}-{lot.ticker} by {year}; valued at average cost.")
            else:
                warnings.append(f"No stored price for {market}-{lot.ticker} in {year}; carried forward an earlier price.")
        value = price * lot.quantity
        if market_settles_whole_units(market):
            value = float(round(value))
        stock_value += convert_market_amount(value, market, year_rates, warnings).amount

    accounts = ledger.account_map()
    cash_value = 0.0
    for acc_id, balance in replay.cash_balances.items():
        cash_value += convert(balance, accounts[acc_id].currency.value, year_rates, warnings).amount
    return stock_value + cash_value, all_real


def _carried_forward_price(ledger: LedgerData, year: int, market: str, ticker: str) -> Optional[float]:
    for earlier in sorted((y for y in ledger.historical_data if y < year), reverse=True):
        price = lookup_historical_price(ledger.historical_data[earlier].prices, market, ticker)
        if price is not None:
            return price
    return None


def generate_chart_data(
    ledger: LedgerData,
    current_total_value: float,
    rates: HistoricalRates,
    as_of: Optional[date] = None,
    warnings: Optional[List[str]] = None,
) -> List[ChartDataPoint]:
    """Build one chart point per year from the first event year through ``as_of``."""
    as_of = as_of or date.today()
    warnings = warnings if warnings is not None else []
    bounds = _year_bounds(ledger, as_of)
    if bounds is None:
        return []
    start_year, end_year = bounds

    flows = collect_external_flows(ledger, rates=rates, cutoff=as_of, warnings=warnings)
    cumulative = _cumulative_cost_by_year(flows, start_year, end_year)
    total_net_invested = float(cumulative.iloc[-1])
    total_profit = current_total_value - total_net_invested
    total_years = end_year - start_year + 1
    growth = float(config.LEDGER_DEFAULTS.get("projection_growth_rate", 0.08))

    frame = pd.DataFrame({"year": list(cumulative.index), "net_invested": cumulative.values})
    frame["net_inflow"] = frame["net_invested"].diff().fillna(frame["net_invested"])
    frame["cost"] = frame["net_invested"].clip(lower=0.0)

    est = []
    running = 0.0
    for inflow in frame["net_inflow"]:
        running = max((running + inflow) * (1.0 + growth), 0.0)
        est.append(running)
    frame["est_total_assets"] = est

    totals = []
    real_flags = []
    for row in frame.itertuples(index=False):
        year = int(row.year)
        progress = (year - start_year + 1) / total_years
        if year == end_year:
            totals.append(current_total_value)
            real_flags.append(True)
        elif year in ledger.historical_data:
            value, all_real = _value_year_end(ledger, year, rates, warnings)
            totals.append(value)
            real_flags.append(all_real)
        else:
            totals.append(row.cost + total_profit * progress)
            real_flags.append(False)
    frame["total_assets"] = totals
    frame["is_real_data"] = real_flags
    frame["profit"] = frame["total_assets"] - frame["cost"]

    points = [
        ChartDataPoint(
            year=int(row.year),
            cost=float(row.cost),
            profit=float(row.profit),
            total_assets=float(row.total_assets),
            est_total_assets=float(row.est_total_assets),
            asset_cost_ratio=_safe_div(float(row.total_assets), float(row.cost)),
            is_real_data=bool(row.is_real_data),
        )
        for row in frame.itertuples(index=False)
    ]
    ledger_logger.debug(
        "chart data: years=%d-%d real=%d",
        start_year,
        end_year,
        sum(1 for p in points if p.is_real_data),
    )
    return points


def calculate_annual_performance(points: List[ChartDataPoint], as_of: Optional[date] = None) -> List[AnnualPerformanceItem]:
    """Per-year start/inflow/end/profit/ROI from consecutive chart points, oldest first."""
    as_of = as_of or date.today()
    items: List[AnnualPerformanceItem] = []
    previous: Optional[ChartDataPoint] = None
    for point in points:
        start_assets = previous.total_assets if previous is not None else 0.0
        net_inflow = point.cost - (previous.cost if previous is not None else 0.0)
        end_assets = point.total_assets
        profit = end_assets - start_assets - net_inflow
        label = str(point.year)
        if point.year == as_of.year:
            label = f"{point.year} (to month {as_of.month})"
        items.append(
            AnnualPerformanceItem(
                year=label,
                start_assets=start_assets,
                net_inflow=net_inflow,
                end_assets=end_assets,
                profit=profit,
                roi=_safe_div(profit, start_assets + net_inflow) * 100.0,
                is_real_data=point.is_real_data,
            )
        )
        previous = point
    return items


def chart_frame(points: List[ChartDataPoint]) -> pd.DataFrame:
    """Chart points as a DataFrame indexed by year (for reports)."""
    if not points:
        return pd.DataFrame(columns=["cost", "profit", "total_assets", "est_total_assets", "asset_cost_ratio", "is_real_data"])
    frame = pd.DataFrame([p.__dict__ for p in points]).set_index("year")
    return frame
