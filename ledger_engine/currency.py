"""Currency normalization into the single reporting currency.

Rates are expressed as reporting-currency units per one unit of the
foreign currency (e.g. ``{"USD": 32.0}`` when reporting in TWD). Each
market resolves to its own native currency through the market map; a
currency with no known rate converts to 0 and is marked estimated rather
than borrowing another currency's rate.

Per-record ``exchange_rate`` fields are different: they are stored quotes in
``config.quote_currency()`` per foreign unit and never move with the
reporting currency.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from ledger_engine import config
from ledger_engine._logging import ledger_logger
from ledger_engine._vendor import _to_float
from ledger_engine.data_objects import Account, CashFlow, HistoricalYear, market_currency


@dataclass(frozen=True)
class Conversion:
    amount: float
    rate: float
    is_estimated: bool = False


def _currency_code(currency) -> str:
    return str(getattr(currency, "value", currency) or "").upper()


@dataclass
class FxRates:
    """Current ("live") rates per currency, supplied by the external price oracle."""

    rates: Dict[str, float] = field(default_factory=dict)
    reporting_currency: str = ""

    def __post_init__(self):
        if not self.reporting_currency:
            self.reporting_currency = config.reporting_currency()
        self.reporting_currency = self.reporting_currency.upper()
        clean: Dict[str, float] = {}
        for ccy, rate in (self.rates or {}).items():
            value = _to_float(rate)
            if value is not None and value > 0:
                clean[_currency_code(ccy)] = value
        self.rates = clean

    @classmethod
    def from_scalars(
        cls,
        exchange_rate: Optional[float] = None,
        jpy_exchange_rate: Optional[float] = None,
        extra: Optional[Mapping[str, float]] = None,
        reporting_currency: str = "",
    ) -> "FxRates":
        """Build from the legacy USD scalar, the optional JPY scalar and any explicit rates."""
        rates: Dict[str, float] = dict(extra or {})
        if exchange_rate:
            rates.setdefault("USD", exchange_rate)
        if jpy_exchange_rate:
            rates.setdefault("JPY", jpy_exchange_rate)
        return cls(rates=rates, reporting_currency=reporting_currency)

    def rate_for(self, currency) -> Optional[float]:
        code = _currency_code(currency)
        if code == self.reporting_currency:
            return 1.0
        return self.rates.get(code)


@dataclass
class HistoricalRates:
    """Stored year-end rates by year, each falling back to the current rate."""

    current: FxRates
    by_year: Dict[int, Dict[str, float]] = field(default_factory=dict)

    @classmethod
    def from_historical_data(cls, current: FxRates, historical: Mapping[int, HistoricalYear]) -> "HistoricalRates":
        return cls(current=current, by_year={int(y): dict(h.rates) for y, h in historical.items()})

    def for_year(self, year: int) -> FxRates:
        merged = dict(self.current.rates)
        merged.update(self.by_year.get(int(year), {}))
        return FxRates(rates=merged, reporting_currency=self.current.reporting_currency)

    def rate_for(self, currency, year: int) -> Optional[float]:
        code = _currency_code(currency)
        if code == self.current.reporting_currency:
            return 1.0
        rate = self.by_year.get(int(year), {}).get(code)
        if rate is not None and rate > 0:
            return rate
        return self.current.rate_for(code)


def convert(
    amount: float,
    currency,
    rates: FxRates,
    warnings: Optional[List[str]] = None,
) -> Conversion:
    """Convert a native amount into the reporting currency."""
    rate = rates.rate_for(currency)
    if rate is None:
        code = _currency_code(currency)
        message = f"Missing exchange rate for {code}; valued at 0 as an estimate."
        if warnings is not None and message not in warnings:
            warnings.append(message)
        ledger_logger.warning(message)
        return Conversion(amount=0.0, rate=0.0, is_estimated=True)
    return Conversion(amount=amount * rate, rate=rate, is_estimated=False)


def convert_market_amount(amount: float, market, rates: FxRates, warnings: Optional[List[str]] = None) -> Conversion:
    """Convert an amount quoted in a market's native currency."""
    return convert(amount, market_currency(market), rates, warnings)


def cash_flow_reporting_amount(
    flow: CashFlow,
    account: Optional[Account],
    rates: HistoricalRates,
    warnings: Optional[List[str]] = None,
) -> float:
    """Reporting-currency value of a cash flow's native amount.

    Precedence: the exact ``amount_reporting`` when positive, then the flow's
    explicit rate for foreign-currency accounts, then the stored rate of the
    flow's year (falling back to the current rate). An explicit rate is always
    quoted in ``config.quote_currency()`` per unit of the account currency, so
    it is carried into the reporting currency at that year's quote rate.
    """
    if flow.amount_reporting is not None and flow.amount_reporting > 0:
        return flow.amount_reporting

    amount = _to_float(flow.amount) or 0.0
    reporting = rates.current.reporting_currency
    currency = account.currency.value if account is not None else reporting
    if currency == reporting:
        return amount

    year = flow.date.year
    quote = config.quote_currency()
    if flow.exchange_rate is not None and flow.exchange_rate > 0 and currency != quote:
        quote_rate = rates.rate_for(quote, year)
        if quote_rate is not None:
            return amount * flow.exchange_rate * quote_rate

    rate = rates.rate_for(currency, year)
    if rate is None:
        message = f"Missing exchange rate for {currency}; valued at 0 as an estimate."
        if warnings is not None and message not in warnings:
            warnings.append(message)
        return 0.0
    return amount * rate


def transfer_credit_amount(
    flow: CashFlow,
    source: Account,
    target: Account,
    rates: FxRates,
) -> Optional[float]:
    """Native amount credited to the target account of a cash TRANSFER.

    The flow's ``exchange_rate`` is a stored quote that does not depend on the
    reporting currency: when one side is ``config.quote_currency()`` it is the
    price of the other side in quote units (1,000 TWD at 32 -> 31.25 USD;
    10 USD at 32 -> 320 TWD). Between two other currencies it means target
    units per source unit. Without an explicit rate the current rates are
    used. Returns ``None`` when no rate is available.
    """
    amount = _to_float(flow.amount) or 0.0
    src = source.currency.value
    tgt = target.currency.value
    if src == tgt:
        return amount

    explicit = flow.exchange_rate if flow.exchange_rate is not None and flow.exchange_rate > 0 else None
    if explicit is not None:
        if src == config.quote_currency():
            return amount / explicit
        return amount * explicit

    src_rate = rates.rate_for(src)
    tgt_rate = rates.rate_for(tgt)
    if src_rate is None or tgt_rate is None or tgt_rate <= 0:
        return None
    return amount * src_rate / tgt_rate
