"""
Core Constants Module

Centralized definitions for markets, currencies, event kinds and replay
ordering. This prevents hardcoded values scattered throughout the codebase
and ensures consistency between replay, valuation and import validation.
"""

from enum import Enum


class Market(str, Enum):
    US = "US"
    TW = "TW"
    UK = "UK"
    JP = "JP"


class Currency(str, Enum):
    TWD = "TWD"
    USD = "USD"
    JPY = "JPY"
    GBP = "GBP"


class TransactionType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    STOCK_DIVIDEND = "STOCK_DIVIDEND"  # Reinvested dividend paid in shares
    CASH_DIVIDEND = "CASH_DIVIDEND"
    TRANSFER_IN = "TRANSFER_IN"  # Securities moved into an account
    TRANSFER_OUT = "TRANSFER_OUT"  # Securities moved out of an account


class CashFlowType(str, Enum):
    DEPOSIT = "DEPOSIT"  # External money into an account
    WITHDRAW = "WITHDRAW"  # Account money out to living expenses
    TRANSFER = "TRANSFER"  # Internal: account A -> account B
    INTEREST = "INTEREST"


# Legacy exports wrote reinvested dividends as "DIVIDEND".
TRANSACTION_TYPE_ALIASES = {
    "DIVIDEND": TransactionType.STOCK_DIVIDEND,
}


# Market Defaults
# ===============
# Native currency and settlement rounding per market. Every market declares
# its own currency; no market borrows another currency's exchange rate.
# ``whole_unit_settlement`` markets floor gross trade amounts and round
# removed cost and market value to whole units.

DEFAULT_MARKET_MAP = {
    "US": {"currency": "USD", "whole_unit_settlement": False},
    "TW": {"currency": "TWD", "whole_unit_settlement": True},
    "UK": {"currency": "GBP", "whole_unit_settlement": False},
    "JP": {"currency": "JPY", "whole_unit_settlement": False},
}


# Replay Ordering
# ===============
# Same-date events replay in this class order: inbound cash, income,
# sells, buys, outbound cash.

PRIORITY_INBOUND = 0
PRIORITY_INCOME = 1
PRIORITY_SELL = 2
PRIORITY_BUY = 3
PRIORITY_OUTBOUND = 4

EVENT_PRIORITY = {
    CashFlowType.DEPOSIT: PRIORITY_INBOUND,
    CashFlowType.INTEREST: PRIORITY_INBOUND,
    TransactionType.TRANSFER_IN: PRIORITY_INBOUND,
    TransactionType.CASH_DIVIDEND: PRIORITY_INCOME,
    TransactionType.STOCK_DIVIDEND: PRIORITY_INCOME,
    TransactionType.SELL: PRIORITY_SELL,
    TransactionType.BUY: PRIORITY_BUY,
    CashFlowType.WITHDRAW: PRIORITY_OUTBOUND,
    CashFlowType.TRANSFER: PRIORITY_OUTBOUND,
    TransactionType.TRANSFER_OUT: PRIORITY_OUTBOUND,
}

# Numeric tolerances
QUANTITY_EPSILON = 1e-6  # Lots at or below this quantity are treated as closed
WEIGHT_TOLERANCE = 0.01  # Percent points

# Asset Allocation Colors (for UI)
# ================================

ALLOCATION_COLORS = [
    "#3b82f6",
    "#10b981",
    "#f59e0b",
    "#ef4444",
    "#8b5cf6",
    "#ec4899",
    "#6366f1",
    "#14b8a6",
]
CASH_ALLOCATION_COLOR = "#cbd5e1"
CASH_ALLOCATION_NAME = "Cash"


def is_valid_market(market: str) -> bool:
    """Check if a market code is valid."""
    return market in Market._value2member_map_


def is_valid_currency(currency: str) -> bool:
    """Check if a currency code is valid."""
    return currency in Currency._value2member_map_


def coerce_transaction_type(value) -> TransactionType:
    """Map a raw transaction kind (including legacy aliases) to the enum."""
    if isinstance(value, TransactionType):
        return value
    raw = str(value or "").strip().upper()
    if raw in TRANSACTION_TYPE_ALIASES:
        return TRANSACTION_TYPE_ALIASES[raw]
    return TransactionType(raw)


def event_priority(kind) -> int:
    """Same-date replay priority class for a transaction or cash-flow kind."""
    return EVENT_PRIORITY.get(kind, PRIORITY_OUTBOUND)
