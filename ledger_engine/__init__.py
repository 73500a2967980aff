"""Public API for ledger_engine."""

from ledger_engine.data_objects import (
    Account,
    CashFlow,
    HistoricalYear,
    LedgerData,
    Lot,
    Transaction,
)
from ledger_engine.currency import FxRates, HistoricalRates
from ledger_engine.replay import ReplayResult, replay_ledger
from ledger_engine.valuation import Holding, PortfolioSummary, merge_holdings_by_security
from ledger_engine.xirr import collect_external_flows, xirr
from ledger_engine.ledger_io import (
    LedgerImportError,
    dump_ledger_document,
    load_ledger_document,
    parse_ledger_document,
    validate_ledger_document,
)
from ledger_engine.providers import (
    PriceProvider,
    FXProvider,
    set_price_provider,
    get_price_provider,
    set_fx_provider,
    get_fx_provider,
)

__all__ = [
    "Account",
    "CashFlow",
    "HistoricalYear",
    "LedgerData",
    "Lot",
    "Transaction",
    "FxRates",
    "HistoricalRates",
    "ReplayResult",
    "replay_ledger",
    "Holding",
    "PortfolioSummary",
    "merge_holdings_by_security",
    "collect_external_flows",
    "xirr",
    "LedgerImportError",
    "dump_ledger_document",
    "load_ledger_document",
    "parse_ledger_document",
    "validate_ledger_document",
    "PriceProvider",
    "FXProvider",
    "set_price_provider",
    "get_price_provider",
    "set_fx_provider",
    "get_fx_provider",
]
