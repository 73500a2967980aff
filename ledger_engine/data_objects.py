"""
Core Data Objects Module

Immutable ledger records and the containers handed to the replay engine.

Classes:
- Account: brokerage account with a native currency (balance is derived by replay)
- Transaction: security event (buy, sell, dividends, security transfers)
- CashFlow: money event (deposit, withdraw, internal transfer, interest)
- Lot: running quantity/cost per (account, market, ticker), mutated only by replay
- HistoricalYear: stored year-end prices and exchange rates for one year
- LedgerData: the full input snapshot for one computation pass

Records are frozen: edits produce a new record with the same id
(``dataclasses.replace``). Structural problems (empty id, unknown enum value,
unparsable date) raise ``ValueError`` at construction. Numeric problems
(negative or non-finite price/quantity) are kept as-is so replay can skip
the event and report it instead of failing.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
import hashlib
import json
import logging

import pandas as pd
import yaml

from ledger_engine import config
from ledger_engine.constants import (
    DEFAULT_MARKET_MAP,
    CashFlowType,
    Currency,
    Market,
    TransactionType,
    coerce_transaction_type,
)
from ledger_engine._vendor import _to_float, make_json_safe


logger = logging.getLogger(__name__)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_market_map_loader: Optional[Callable[[], Dict[str, Any]]] = None
_market_map_cache: Optional[Dict[str, Dict[str, Any]]] = None


def set_market_map_loader(loader: Optional[Callable[[], Dict[str, Any]]]) -> None:
    """Inject a market map loader (e.g. from a database) and reset the cache."""
    global _market_map_loader
    _market_map_loader = loader
    reset_market_map()


def reset_market_map() -> None:
    global _market_map_cache
    _market_map_cache = None


def _normalize_market_map(raw: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    out: Dict[str, Dict[str, Any]] = {k: dict(v) for k, v in DEFAULT_MARKET_MAP.items()}
    for market, entry in (raw or {}).items():
        key = str(market).upper()
        if key not in Market._value2member_map_:
            logger.warning("Market map: ignoring unknown market %s", market)
            continue
        if not isinstance(entry, dict):
            continue
        currency = str(entry.get("currency", out[key]["currency"])).upper()
        if currency not in Currency._value2member_map_:
            logger.warning("Market map: ignoring unknown currency %s for %s", currency, key)
            currency = out[key]["currency"]
        out[key] = {
            "currency": currency,
            "whole_unit_settlement": bool(
                entry.get("whole_unit_settlement", out[key]["whole_unit_settlement"])
            ),
        }
    return out


def load_market_map() -> Dict[str, Dict[str, Any]]:
    """Load market -> native currency/settlement map with 3-tier fallback.

    Order: injected loader, then ``market_map.yaml`` (path from
    ``config.MARKET_MAP_PATH`` or the project root), then hardcoded defaults.
    """
    global _market_map_cache
    if _market_map_cache is not None:
        return _market_map_cache

    if _market_map_loader is not None:
        try:
            raw = _market_map_loader() or {}
            if raw:
                _market_map_cache = _normalize_market_map(raw)
                return _market_map_cache
            logger.warning("Market map: injected loader returned empty mapping, trying YAML")
        except Exception as e:
            logger.warning("Market map: injected loader failed (%s), trying YAML", e)

    yaml_path = Path(config.MARKET_MAP_PATH) if config.MARKET_MAP_PATH else _PROJECT_ROOT / "market_map.yaml"
    try:
        with open(yaml_path, "r") as f:
            raw = yaml.safe_load(f) or {}
        _market_map_cache = _normalize_market_map(raw.get("markets", raw))
        return _market_map_cache
    except Exception as e:
        logger.debug("Market map: YAML unavailable (%s), using hardcoded", e)

    _market_map_cache = _normalize_market_map({})
    return _market_map_cache


def market_currency(market) -> str:
    """Native currency code for a market."""
    key = market.value if isinstance(market, Market) else str(market).upper()
    return load_market_map().get(key, {}).get("currency", config.reporting_currency())


def market_settles_whole_units(market) -> bool:
    key = market.value if isinstance(market, Market) else str(market).upper()
    return bool(load_market_map().get(key, {}).get("whole_unit_settlement", False))


def price_key(market, ticker: str) -> str:
    """Key used by the price and price-detail maps: ``"MARKET-TICKER"``."""
    market_code = market.value if isinstance(market, Market) else str(market)
    return f"{market_code}-{ticker}"


def _to_date(value: Any) -> date:
    """Convert ISO string/datetime/date into a ``date``; raise ``ValueError`` otherwise."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None or str(value).strip() == "":
        raise ValueError("date is required")
    try:
        ts = pd.Timestamp(str(value).strip())
    except Exception as exc:
        raise ValueError(f"unparsable date: {value!r}") from exc
    if pd.isna(ts):
        raise ValueError(f"unparsable date: {value!r}")
    return ts.date()


def _float_or_nan(value: Any) -> float:
    out = _to_float(value)
    return float("nan") if out is None else out


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return _to_float(value)


@dataclass(frozen=True)
class Account:
    """Brokerage account.

    ``balance`` is derived: replay returns copies with the balance populated,
    whatever the input record carried is ignored.
    """

    id: str
    name: str
    currency: Currency
    is_sub_brokerage: bool = False
    balance: float = 0.0

    def __post_init__(self):
        if not self.id:
            raise ValueError("Account id cannot be empty")
        object.__setattr__(self, "id", str(self.id))
        object.__setattr__(self, "currency", Currency(str(getattr(self.currency, "value", self.currency)).upper()))
        object.__setattr__(self, "balance", _to_float(self.balance) or 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "currency": self.currency.value,
            "isSubBrokerage": self.is_sub_brokerage,
            "balance": self.balance,
        }


@dataclass(frozen=True)
class Transaction:
    """Security event owned by one account.

    ``amount`` is an optional precomputed total (native currency) that is
    authoritative for the cash/cost effect when present.
    """

    id: str
    date: date
    ticker: str
    market: Market
    type: TransactionType
    price: float
    quantity: float
    account_id: str
    fees: float = 0.0
    amount: Optional[float] = None
    note: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Transaction id cannot be empty")
        if not self.ticker:
            raise ValueError(f"Transaction {self.id} has empty ticker")
        object.__setattr__(self, "id", str(self.id))
        object.__setattr__(self, "ticker", str(self.ticker).strip())
        object.__setattr__(self, "date", _to_date(self.date))
        object.__setattr__(self, "market", Market(str(getattr(self.market, "value", self.market)).upper()))
        object.__setattr__(self, "type", coerce_transaction_type(self.type))
        object.__setattr__(self, "price", _float_or_nan(self.price))
        object.__setattr__(self, "quantity", _float_or_nan(self.quantity))
        object.__setattr__(self, "fees", _to_float(self.fees) or 0.0)
        object.__setattr__(self, "amount", _optional_float(self.amount))
        object.__setattr__(self, "account_id", str(self.account_id))

    @property
    def price_key(self) -> str:
        return price_key(self.market, self.ticker)

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "id": self.id,
            "date": self.date.isoformat(),
            "ticker": self.ticker,
            "market": self.market.value,
            "type": self.type.value,
            "price": self.price,
            "quantity": self.quantity,
            "fees": self.fees,
            "accountId": self.account_id,
        }
        if self.amount is not None:
            out["amount"] = self.amount
        if self.note:
            out["note"] = self.note
        return out


@dataclass(frozen=True)
class CashFlow:
    """Money event on one account (TRANSFER also names a target account).

    ``amount_reporting`` is the exact reporting-currency value of the flow
    and is authoritative when present and positive.
    """

    id: str
    date: date
    type: CashFlowType
    amount: float
    account_id: str
    target_account_id: Optional[str] = None
    amount_reporting: Optional[float] = None
    fee: float = 0.0
    exchange_rate: Optional[float] = None
    category: Optional[str] = None
    note: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("CashFlow id cannot be empty")
        object.__setattr__(self, "id", str(self.id))
        object.__setattr__(self, "date", _to_date(self.date))
        object.__setattr__(self, "type", CashFlowType(str(getattr(self.type, "value", self.type)).upper()))
        object.__setattr__(self, "amount", _float_or_nan(self.amount))
        object.__setattr__(self, "account_id", str(self.account_id))
        if self.target_account_id is not None:
            object.__setattr__(self, "target_account_id", str(self.target_account_id))
        object.__setattr__(self, "amount_reporting", _optional_float(self.amount_reporting))
        object.__setattr__(self, "fee", _to_float(self.fee) or 0.0)
        object.__setattr__(self, "exchange_rate", _optional_float(self.exchange_rate))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "date": self.date.isoformat(),
            "type": self.type.value,
            "amount": self.amount,
            "accountId": self.account_id,
        }
        if self.target_account_id is not None:
            out["targetAccountId"] = self.target_account_id
        if self.amount_reporting is not None:
            out["amountTWD"] = self.amount_reporting
        if self.fee:
            out["fee"] = self.fee
        if self.exchange_rate is not None:
            out["exchangeRate"] = self.exchange_rate
        if self.category:
            out["category"] = self.category
        if self.note:
            out["note"] = self.note
        return out


@dataclass
class Lot:
    """Running quantity and native-currency cost for one (account, market, ticker)."""

    account_id: str
    market: Market
    ticker: str
    quantity: float = 0.0
    total_cost: float = 0.0
    first_date: Optional[date] = None

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.account_id, self.market.value, self.ticker)

    @property
    def avg_cost(self) -> float:
        if self.quantity <= 0:
            return 0.0
        return self.total_cost / self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accountId": self.account_id,
            "market": self.market.value,
            "ticker": self.ticker,
            "quantity": self.quantity,
            "totalCost": self.total_cost,
            "avgCost": self.avg_cost,
            "firstDate": self.first_date.isoformat() if self.first_date else None,
        }


@dataclass
class HistoricalYear:
    """Year-end (Dec 31) prices keyed by ticker and exchange rates keyed by currency."""

    prices: Dict[str, float] = field(default_factory=dict)
    rates: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "HistoricalYear":
        prices = {}
        for ticker, price in (d.get("prices") or {}).items():
            value = _to_float(price)
            if value is not None and value > 0:
                prices[str(ticker)] = value
        return cls(prices=prices, rates=_rates_from_legacy_fields(d))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"prices": dict(sorted(self.prices.items()))}
        if "USD" in self.rates:
            out["exchangeRate"] = self.rates["USD"]
        if "JPY" in self.rates:
            out["jpyExchangeRate"] = self.rates["JPY"]
        extra = {k: v for k, v in self.rates.items() if k not in ("USD", "JPY")}
        if extra:
            out["exchangeRates"] = dict(sorted(extra.items()))
        return out


def _rates_from_legacy_fields(d: Dict[str, Any]) -> Dict[str, float]:
    """Collect currency -> reporting rates from ``exchangeRate``/``jpyExchangeRate``/``exchangeRates``."""
    rates: Dict[str, float] = {}
    for ccy, rate in (d.get("exchangeRates") or {}).items():
        value = _to_float(rate)
        if value is not None and value > 0:
            rates[str(ccy).upper()] = value
    usd = _to_float(d.get("exchangeRate"))
    if usd is not None and usd > 0:
        rates.setdefault("USD", usd)
    jpy = _to_float(d.get("jpyExchangeRate"))
    if jpy is not None and jpy > 0:
        rates.setdefault("JPY", jpy)
    return rates


@dataclass
class LedgerData:
    """
    Full input snapshot for one engine pass.

    The engine treats every field as read-only. Callers memoize on
    ``get_cache_key()`` to avoid recomputing unchanged inputs.

    Example:
        ledger = LedgerData(accounts=[...], transactions=[...], cash_flows=[...],
                            prices={"US-AAPL": 190.0}, exchange_rates={"USD": 32.0})
        key = ledger.get_cache_key()
    """

    accounts: List[Account] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    cash_flows: List[CashFlow] = field(default_factory=list)
    prices: Dict[str, float] = field(default_factory=dict)
    price_details: Dict[str, Dict[str, float]] = field(default_factory=dict)
    exchange_rates: Dict[str, float] = field(default_factory=dict)
    historical_data: Dict[int, HistoricalYear] = field(default_factory=dict)
    rebalance_targets: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        self.exchange_rates = {str(k).upper(): v for k, v in (self.exchange_rates or {}).items()}
        self.historical_data = {
            int(year): (entry if isinstance(entry, HistoricalYear) else HistoricalYear.from_dict(entry))
            for year, entry in (self.historical_data or {}).items()
        }

    def account_map(self) -> Dict[str, Account]:
        return {a.id: a for a in self.accounts}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accounts": [a.to_dict() for a in sorted(self.accounts, key=lambda a: a.id)],
            "transactions": [t.to_dict() for t in sorted(self.transactions, key=lambda t: (t.date, t.id))],
            "cashFlows": [c.to_dict() for c in sorted(self.cash_flows, key=lambda c: (c.date, c.id))],
            "currentPrices": dict(sorted(self.prices.items())),
            "priceDetails": {k: dict(sorted(v.items())) for k, v in sorted(self.price_details.items())},
            "exchangeRates": dict(sorted(self.exchange_rates.items())),
            "historicalData": {str(y): self.historical_data[y].to_dict() for y in sorted(self.historical_data)},
            "rebalanceTargets": dict(sorted(self.rebalance_targets.items())),
        }

    def get_cache_key(self) -> str:
        payload = json.dumps(make_json_safe(self.to_dict()), sort_keys=True, separators=(",", ":"))
        return hashlib.md5(payload.encode("utf-8")).hexdigest()
