"""Holding valuation and portfolio summary.

Called by:
- ``core.ledger_analysis.analyze_ledger``
- ``ledger_engine.rollups`` / ``ledger_engine.rebalance`` (holding inputs)

Contract notes:
- Two passes: ``value_lots`` computes raw values with weight 0, then
  ``apply_weights`` fills weights once total portfolio value is known.
- A missing price values the position at 0 (full unrealized loss) and sets
  ``is_price_missing``. Missing FX values the reporting side at 0 and sets
  ``is_fx_estimated``.
- Whole-unit-settlement markets round market value to whole units.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ledger_engine import config
from ledger_engine._logging import ledger_logger
from ledger_engine._vendor import _safe_div, _to_float, make_json_safe
from ledger_engine.constants import QUANTITY_EPSILON, CashFlowType, Currency, TransactionType
from ledger_engine.currency import FxRates, HistoricalRates, convert, convert_market_amount
from ledger_engine.data_objects import Account, CashFlow, Lot, Transaction, market_currency, market_settles_whole_units, price_key
from ledger_engine.replay import ReplayResult
from ledger_engine.xirr import terminal_xirr


@dataclass
class Holding:
    """One valued position. ``account_id`` is ``None`` for merged holdings."""

    ticker: str
    market: str
    account_id: Optional[str]
    currency: str
    quantity: float
    avg_cost: float
    total_cost: float
    current_price: float
    current_value: float
    cost_reporting: float = 0.0
    value_reporting: float = 0.0
    unrealized_pl: float = 0.0
    unrealized_pl_percent: float = 0.0
    weight: float = 0.0
    annualized_return: float = 0.0
    daily_change: Optional[float] = None
    daily_change_percent: Optional[float] = None
    first_buy_date: Optional[date] = None
    is_price_missing: bool = False
    is_fx_estimated: bool = False
    account_ids: List[str] = field(default_factory=list)

    @property
    def price_key(self) -> str:
        return price_key(self.market, self.ticker)

    def to_dict(self) -> Dict[str, Any]:
        return make_json_safe(
            {
                "ticker": self.ticker,
                "market": self.market,
                "accountId": self.account_id,
                "accountIds": list(self.account_ids),
                "currency": self.currency,
                "quantity": self.quantity,
                "avgCost": self.avg_cost,
                "totalCost": self.total_cost,
                "currentPrice": self.current_price,
                "currentValue": self.current_value,
                "costReporting": self.cost_reporting,
                "valueReporting": self.value_reporting,
                "unrealizedPL": self.unrealized_pl,
                "unrealizedPLPercent": self.unrealized_pl_percent,
                "weight": self.weight,
                "annualizedReturn": self.annualized_return,
                "dailyChange": self.daily_change,
                "dailyChangePercent": self.daily_change_percent,
                "firstBuyDate": self.first_buy_date,
                "isPriceMissing": self.is_price_missing,
                "isFxEstimated": self.is_fx_estimated,
            }
        )


def _market_value(price: float, quantity: float, market: str) -> float:
    value = price * quantity
    if market_settles_whole_units(market):
        value = float(round(value))
    return value


def _daily_change(details: Mapping[str, Mapping[str, Any]], key: str) -> Tuple[Optional[float], Optional[float]]:
    entry = details.get(key)
    if entry is None:
        return None, None
    change = _to_float(entry.get("change"))
    percent = _to_float(entry.get("changePercent"))
    return (change if change is not None else 0.0), (percent if percent is not None else 0.0)


def value_lot(
    lot: Lot,
    prices: Mapping[str, float],
    rates: FxRates,
    price_details: Optional[Mapping[str, Mapping[str, Any]]] = None,
    flows: Optional[Sequence[Tuple[date, float]]] = None,
    as_of: Optional[date] = None,
    warnings: Optional[List[str]] = None,
) -> Holding:
    market = lot.market.value
    key = price_key(market, lot.ticker)
    raw_price = _to_float(prices.get(key))
    price_missing = raw_price is None or raw_price <= 0
    price = 0.0 if price_missing else raw_price
    if price_missing and warnings is not None:
        message = f"Missing price for {key}; valued at 0."
        if message not in warnings:
            warnings.append(message)
            ledger_logger.warning(message)

    value = _market_value(price, lot.quantity, market)
    value_conv = convert_market_amount(value, market, rates, warnings)
    cost_conv = convert_market_amount(lot.total_cost, market, rates, warnings)
    pl = value_conv.amount - cost_conv.amount
    change, change_pct = _daily_change(price_details or {}, key)

    annualized = 0.0
    if flows and as_of is not None:
        annualized = terminal_xirr(flows, value, as_of)

    return Holding(
        ticker=lot.ticker,
        market=market,
        account_id=lot.account_id,
        account_ids=[lot.account_id],
        currency=market_currency(market),
        quantity=lot.quantity,
        avg_cost=lot.avg_cost,
        total_cost=lot.total_cost,
        current_price=price,
        current_value=value,
        cost_reporting=cost_conv.amount,
        value_reporting=value_conv.amount,
        unrealized_pl=pl,
        unrealized_pl_percent=_safe_div(pl, cost_conv.amount) * 100.0,
        annualized_return=annualized,
        daily_change=change,
        daily_change_percent=change_pct,
        first_buy_date=lot.first_date,
        is_price_missing=price_missing,
        is_fx_estimated=value_conv.is_estimated or cost_conv.is_estimated,
    )


def value_lots(
    replay: ReplayResult,
    prices: Mapping[str, float],
    rates: FxRates,
    price_details: Optional[Mapping[str, Mapping[str, Any]]] = None,
    as_of: Optional[date] = None,
    warnings: Optional[List[str]] = None,
) -> List[Holding]:
    """First pass: one Holding per open lot, weights left at 0."""
    holdings = []
    for lot in replay.open_lots(QUANTITY_EPSILON):
        holdings.append(
            value_lot(
                lot,
                prices,
                rates,
                price_details=price_details,
                flows=replay.security_flows.get(lot.key),
                as_of=as_of,
                warnings=warnings,
            )
        )
    return holdings


def cash_reporting_total(accounts: Iterable[Account], rates: FxRates, warnings: Optional[List[str]] = None) -> float:
    """Sum of account balances in reporting currency."""
    return sum(convert(a.balance, a.currency.value, rates, warnings).amount for a in accounts)


def apply_weights(holdings: Iterable[Holding], total_portfolio_value: float) -> List[Holding]:
    """Second pass: weight = reporting value / total portfolio value x 100 (0 when total <= 0)."""
    return [
        replace(h, weight=_safe_div(h.value_reporting, total_portfolio_value) * 100.0)
        for h in holdings
    ]


def merge_holdings_by_security(
    holdings: Iterable[Holding],
    total_portfolio_value: float,
    replay: Optional[ReplayResult] = None,
    as_of: Optional[date] = None,
) -> List[Holding]:
    """Merge per-account holdings by (market, ticker).

    With ``replay`` and ``as_of`` the merged annualized return is re-solved
    over the combined trade flows; otherwise it is the value-weighted mean.
    """
    groups: Dict[Tuple[str, str], List[Holding]] = defaultdict(list)
    for h in holdings:
        groups[(h.market, h.ticker)].append(h)

    merged: List[Holding] = []
    for (market, ticker), items in sorted(groups.items()):
        quantity = sum(h.quantity for h in items)
        total_cost = sum(h.total_cost for h in items)
        current_value = sum(h.current_value for h in items)
        cost_reporting = sum(h.cost_reporting for h in items)
        value_reporting = sum(h.value_reporting for h in items)
        pl = value_reporting - cost_reporting
        account_ids = sorted({h.account_id for h in items if h.account_id is not None})

        if replay is not None and as_of is not None:
            flows: List[Tuple[date, float]] = []
            for acc in account_ids:
                flows.extend(replay.security_flows.get((acc, market, ticker), []))
            annualized = terminal_xirr(flows, current_value, as_of) if flows else 0.0
        else:
            annualized = _safe_div(
                sum(h.annualized_return * h.value_reporting for h in items), value_reporting
            )

        first_dates = [h.first_buy_date for h in items if h.first_buy_date is not None]
        first = items[0]
        merged.append(
            Holding(
                ticker=ticker,
                market=market,
                account_id=None,
                account_ids=account_ids,
                currency=first.currency,
                quantity=quantity,
                avg_cost=_safe_div(total_cost, quantity),
                total_cost=total_cost,
                current_price=first.current_price,
                current_value=current_value,
                cost_reporting=cost_reporting,
                value_reporting=value_reporting,
                unrealized_pl=pl,
                unrealized_pl_percent=_safe_div(pl, cost_reporting) * 100.0,
                weight=_safe_div(value_reporting, total_portfolio_value) * 100.0,
                annualized_return=annualized,
                daily_change=first.daily_change,
                daily_change_percent=first.daily_change_percent,
                first_buy_date=min(first_dates) if first_dates else None,
                is_price_missing=any(h.is_price_missing for h in items),
                is_fx_estimated=any(h.is_fx_estimated for h in items),
            )
        )
    return merged


@dataclass
class PortfolioSummary:
    """Portfolio-level totals in reporting currency."""

    reporting_currency: str
    net_invested: float
    holdings_value: float
    cash_balance: float
    total_assets: float
    total_pl: float
    total_pl_percent: float
    annualized_return: float
    cash_dividends: float
    stock_dividends: float
    avg_usd_rate: float
    cash_weight: float
    usd_rate: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return make_json_safe(
            {
                "reportingCurrency": self.reporting_currency,
                "netInvested": self.net_invested,
                "holdingsValue": self.holdings_value,
                "cashBalance": self.cash_balance,
                "totalAssets": self.total_assets,
                "totalPL": self.total_pl,
                "totalPLPercent": self.total_pl_percent,
                "annualizedReturn": self.annualized_return,
                "cashDividends": self.cash_dividends,
                "stockDividends": self.stock_dividends,
                "avgUsdRate": self.avg_usd_rate,
                "usdRate": self.usd_rate,
                "cashWeight": self.cash_weight,
            }
        )


def dividend_totals(
    transactions: Iterable[Transaction],
    rates: HistoricalRates,
    cutoff: Optional[date] = None,
    warnings: Optional[List[str]] = None,
    exclude_ids: Iterable[str] = (),
) -> Tuple[float, float]:
    """(cash dividends, stock dividends) received, converted at each event year's rate.

    ``exclude_ids`` drops records replay never credited (skipped or orphaned).
    """
    excluded = set(exclude_ids)
    cash_total = 0.0
    stock_total = 0.0
    for txn in transactions:
        if cutoff is not None and txn.date > cutoff:
            continue
        if txn.id in excluded:
            continue
        if txn.type not in (TransactionType.CASH_DIVIDEND, TransactionType.STOCK_DIVIDEND):
            continue
        native = txn.amount if txn.amount is not None else _to_float(txn.price * txn.quantity - txn.fees)
        if native is None:
            continue
        year_rates = rates.for_year(txn.date.year)
        value = convert_market_amount(native, txn.market.value, year_rates, warnings).amount
        if txn.type == TransactionType.CASH_DIVIDEND:
            cash_total += value
        else:
            stock_total += value
    return cash_total, stock_total


def average_usd_rate(
    cash_flows: Iterable[CashFlow],
    accounts: Mapping[str, Account],
    quote_currency: str,
    reporting_currency: Optional[str] = None,
) -> float:
    """Average home-currency cost of one USD bought through deposits and transfers.

    Deposits into USD accounts count when they carry an explicit rate (fee
    added to cost), or an exact reporting amount while reporting in the quote
    currency. Transfers from a quote-currency account into a USD account count
    when they carry an explicit rate.
    """
    exact_is_quote = reporting_currency is None or reporting_currency == quote_currency
    usd = Currency.USD.value
    usd_bought = 0.0
    reporting_cost = 0.0
    for flow in cash_flows:
        source = accounts.get(flow.account_id)
        if source is None:
            continue
        if flow.type == CashFlowType.DEPOSIT and source.currency.value == usd:
            if exact_is_quote and flow.amount_reporting is not None and flow.amount_reporting > 0:
                usd_bought += flow.amount
                reporting_cost += flow.amount_reporting
            elif flow.exchange_rate is not None and flow.exchange_rate > 0:
                usd_bought += flow.amount
                reporting_cost += flow.amount * flow.exchange_rate + flow.fee
        elif flow.type == CashFlowType.TRANSFER and flow.target_account_id:
            target = accounts.get(flow.target_account_id)
            if (
                target is not None
                and target.currency.value == usd
                and source.currency.value == quote_currency
                and flow.exchange_rate is not None
                and flow.exchange_rate > 0
            ):
                usd_bought += flow.amount / flow.exchange_rate
                reporting_cost += flow.amount + flow.fee
    return _safe_div(reporting_cost, usd_bought)


def build_portfolio_summary(
    holdings: Sequence[Holding],
    accounts: Sequence[Account],
    cash_flows: Sequence[CashFlow],
    transactions: Sequence[Transaction],
    rates: HistoricalRates,
    net_invested: float,
    annualized_return: float,
    warnings: Optional[List[str]] = None,
    replay: Optional[ReplayResult] = None,
) -> PortfolioSummary:
    current = rates.current
    holdings_value = sum(h.value_reporting for h in holdings)
    cash_balance = cash_reporting_total(accounts, current, warnings)
    total_assets = holdings_value + cash_balance
    total_pl = total_assets - net_invested
    uncredited = list(replay.skipped_ids) + list(replay.orphan_transaction_ids) if replay is not None else []
    cash_div, stock_div = dividend_totals(transactions, rates, warnings=warnings, exclude_ids=uncredited)
    return PortfolioSummary(
        reporting_currency=current.reporting_currency,
        net_invested=net_invested,
        holdings_value=holdings_value,
        cash_balance=cash_balance,
        total_assets=total_assets,
        total_pl=total_pl,
        total_pl_percent=_safe_div(total_pl, net_invested) * 100.0,
        annualized_return=annualized_return,
        cash_dividends=cash_div,
        stock_dividends=stock_div,
        avg_usd_rate=average_usd_rate(
            cash_flows, {a.id: a for a in accounts}, config.quote_currency(), current.reporting_currency
        ),
        cash_weight=_safe_div(cash_balance, total_assets) * 100.0,
        usd_rate=current.rate_for(Currency.USD.value),
    )
