"""JSON ledger document import/export.

Document keys follow the exported backup format: ``accounts``,
``transactions``, ``cashFlows``, ``currentPrices``, ``priceDetails``,
``exchangeRate`` (USD), ``jpyExchangeRate``, ``exchangeRates``,
``historicalData`` and ``rebalanceTargets``.

Import is all-or-nothing: ``parse_ledger_document`` either returns a full
``LedgerData`` or raises ``LedgerImportError`` listing every problem found.
Export is canonical so that export -> import -> export is byte-identical.
"""

from __future__ import annotations

import json
import math
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from ledger_engine._logging import log_errors, log_operation, log_timing, ledger_logger
from ledger_engine.constants import (
    CashFlowType,
    TRANSACTION_TYPE_ALIASES,
    TransactionType,
    is_valid_currency,
    is_valid_market,
)
from ledger_engine.data_objects import (
    Account,
    CashFlow,
    HistoricalYear,
    LedgerData,
    Transaction,
    _rates_from_legacy_fields,
    _to_date,
)


DOCUMENT_VERSION = "2.0"
_PROJECT_ROOT = Path(__file__).resolve().parent.parent


class LedgerImportError(ValueError):
    """A ledger document was rejected. ``errors`` lists every problem found."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        preview = "; ".join(self.errors[:5])
        more = f" (+{len(self.errors) - 5} more)" if len(self.errors) > 5 else ""
        super().__init__(f"Invalid ledger document: {preview}{more}")


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    return False


def _check_date(value: Any, where: str, errors: List[str]) -> None:
    try:
        _to_date(value)
    except ValueError:
        errors.append(f"{where}: unparsable date {value!r}")


def _check_number(record: Mapping[str, Any], key: str, where: str, errors: List[str], required: bool = True) -> None:
    if key not in record or record[key] is None:
        if required:
            errors.append(f"{where}: missing {key}")
        return
    if not _is_number(record[key]):
        errors.append(f"{where}: {key} must be a finite number, got {record[key]!r}")


def _check_duplicates(records: List[Any], label: str, errors: List[str]) -> None:
    ids = [r.get("id") for r in records if isinstance(r, dict) and r.get("id")]
    for record_id, count in sorted(Counter(ids).items(), key=lambda kv: str(kv[0])):
        if count > 1:
            errors.append(f"{label}: duplicate id {record_id!r}")


def _validate_accounts(accounts: List[Any], errors: List[str]) -> None:
    for i, acc in enumerate(accounts):
        where = f"accounts[{i}]"
        if not isinstance(acc, dict):
            errors.append(f"{where}: must be an object")
            continue
        if not acc.get("id"):
            errors.append(f"{where}: missing id")
        if not is_valid_currency(str(acc.get("currency", "")).upper()):
            errors.append(f"{where}: unknown currency {acc.get('currency')!r}")


def _validate_transactions(transactions: List[Any], errors: List[str]) -> None:
    valid_types = set(TransactionType._value2member_map_) | set(TRANSACTION_TYPE_ALIASES)
    for i, txn in enumerate(transactions):
        where = f"transactions[{i}]"
        if not isinstance(txn, dict):
            errors.append(f"{where}: must be an object")
            continue
        if not txn.get("id"):
            errors.append(f"{where}: missing id")
        if not txn.get("ticker"):
            errors.append(f"{where}: missing ticker")
        if not txn.get("accountId"):
            errors.append(f"{where}: missing accountId")
        if str(txn.get("type", "")).upper() not in valid_types:
            errors.append(f"{where}: unknown type {txn.get('type')!r}")
        if not is_valid_market(str(txn.get("market", "")).upper()):
            errors.append(f"{where}: unknown market {txn.get('market')!r}")
        _check_date(txn.get("date"), where, errors)
        _check_number(txn, "price", where, errors)
        _check_number(txn, "quantity", where, errors)
        _check_number(txn, "fees", where, errors, required=False)
        _check_number(txn, "amount", where, errors, required=False)


def _validate_cash_flows(cash_flows: List[Any], errors: List[str]) -> None:
    for i, flow in enumerate(cash_flows):
        where = f"cashFlows[{i}]"
        if not isinstance(flow, dict):
            errors.append(f"{where}: must be an object")
            continue
        if not flow.get("id"):
            errors.append(f"{where}: missing id")
        if not flow.get("accountId"):
            errors.append(f"{where}: missing accountId")
        kind = str(flow.get("type", "")).upper()
        if kind not in CashFlowType._value2member_map_:
            errors.append(f"{where}: unknown type {flow.get('type')!r}")
        elif kind == CashFlowType.TRANSFER.value and not flow.get("targetAccountId"):
            errors.append(f"{where}: TRANSFER requires targetAccountId")
        _check_date(flow.get("date"), where, errors)
        _check_number(flow, "amount", where, errors)
        for key in ("amountTWD", "fee", "exchangeRate"):
            _check_number(flow, key, where, errors, required=False)


def _validate_number_map(payload: Mapping[str, Any], key: str, errors: List[str]) -> None:
    value = payload.get(key)
    if value is None:
        return
    if not isinstance(value, dict):
        errors.append(f"{key}: must be an object")
        return
    for name, number in value.items():
        if not _is_number(number):
            errors.append(f"{key}[{name!r}]: must be a finite number")


def _validate_historical(payload: Mapping[str, Any], errors: List[str]) -> None:
    table = payload.get("historicalData")
    if table is None:
        return
    if not isinstance(table, dict):
        errors.append("historicalData: must be an object keyed by year")
        return
    for year, entry in table.items():
        where = f"historicalData[{year!r}]"
        try:
            int(year)
        except (TypeError, ValueError):
            errors.append(f"{where}: year must be an integer")
        if not isinstance(entry, dict):
            errors.append(f"{where}: must be an object")
            continue
        prices = entry.get("prices", {})
        if not isinstance(prices, dict):
            errors.append(f"{where}.prices: must be an object")
        else:
            for ticker, price in prices.items():
                if not _is_number(price):
                    errors.append(f"{where}.prices[{ticker!r}]: must be a finite number")
        for key in ("exchangeRate", "jpyExchangeRate"):
            _check_number(entry, key, where, errors, required=False)
        _validate_number_map(entry, "exchangeRates", errors)


def validate_ledger_document(payload: Any) -> List[str]:
    """Every problem that would make ``payload`` unsafe to import (empty when valid)."""
    if not isinstance(payload, dict):
        return ["document must be a JSON object"]

    errors: List[str] = []
    for key in ("accounts", "transactions"):
        if key not in payload:
            errors.append(f"missing required array '{key}'")
        elif not isinstance(payload[key], list):
            errors.append(f"'{key}' must be an array")
    if "cashFlows" in payload and not isinstance(payload["cashFlows"], list):
        errors.append("'cashFlows' must be an array")

    accounts = payload.get("accounts") if isinstance(payload.get("accounts"), list) else []
    transactions = payload.get("transactions") if isinstance(payload.get("transactions"), list) else []
    cash_flows = payload.get("cashFlows") if isinstance(payload.get("cashFlows"), list) else []

    _validate_accounts(accounts, errors)
    _validate_transactions(transactions, errors)
    _validate_cash_flows(cash_flows, errors)
    _check_duplicates(accounts, "accounts", errors)
    _check_duplicates(transactions, "transactions", errors)
    _check_duplicates(cash_flows, "cashFlows", errors)

    for key in ("exchangeRate", "jpyExchangeRate"):
        _check_number(payload, key, "document", errors, required=False)
    _validate_number_map(payload, "currentPrices", errors)
    _validate_number_map(payload, "exchangeRates", errors)
    _validate_number_map(payload, "rebalanceTargets", errors)
    details = payload.get("priceDetails")
    if details is not None:
        if not isinstance(details, dict) or not all(isinstance(v, dict) for v in details.values()):
            errors.append("priceDetails: must map price keys to {change, changePercent}")
    _validate_historical(payload, errors)
    return errors


def _account_from_dict(d: Mapping[str, Any]) -> Account:
    return Account(
        id=d["id"],
        name=str(d.get("name", d["id"])),
        currency=d["currency"],
        is_sub_brokerage=bool(d.get("isSubBrokerage", False)),
        balance=d.get("balance", 0.0),
    )


def _transaction_from_dict(d: Mapping[str, Any]) -> Transaction:
    return Transaction(
        id=d["id"],
        date=d["date"],
        ticker=d["ticker"],
        market=d["market"],
        type=d["type"],
        price=d["price"],
        quantity=d["quantity"],
        account_id=d["accountId"],
        fees=d.get("fees", 0.0),
        amount=d.get("amount"),
        note=d.get("note"),
    )


def _cash_flow_from_dict(d: Mapping[str, Any]) -> CashFlow:
    return CashFlow(
        id=d["id"],
        date=d["date"],
        type=d["type"],
        amount=d["amount"],
        account_id=d["accountId"],
        target_account_id=d.get("targetAccountId"),
        amount_reporting=d.get("amountTWD"),
        fee=d.get("fee", 0.0),
        exchange_rate=d.get("exchangeRate"),
        category=d.get("category"),
        note=d.get("note"),
    )


@log_errors("medium")
@log_operation("ledger_import")
def parse_ledger_document(payload: Any) -> LedgerData:
    """Validate and build a ``LedgerData``; raise ``LedgerImportError`` on any problem."""
    errors = validate_ledger_document(payload)
    if errors:
        raise LedgerImportError(errors)

    try:
        ledger = LedgerData(
            accounts=[_account_from_dict(a) for a in payload["accounts"]],
            transactions=[_transaction_from_dict(t) for t in payload["transactions"]],
            cash_flows=[_cash_flow_from_dict(c) for c in payload.get("cashFlows", [])],
            prices={str(k): float(v) for k, v in (payload.get("currentPrices") or {}).items()},
            price_details={str(k): dict(v) for k, v in (payload.get("priceDetails") or {}).items()},
            exchange_rates=_rates_from_legacy_fields(payload),
            historical_data={
                int(year): HistoricalYear.from_dict(entry)
                for year, entry in (payload.get("historicalData") or {}).items()
            },
            rebalance_targets={str(k): float(v) for k, v in (payload.get("rebalanceTargets") or {}).items()},
        )
    except ValueError as exc:
        raise LedgerImportError([str(exc)]) from exc

    ledger_logger.info(
        "imported ledger: accounts=%d transactions=%d cash_flows=%d",
        len(ledger.accounts),
        len(ledger.transactions),
        len(ledger.cash_flows),
    )
    return ledger


def ledger_to_document(ledger: LedgerData) -> Dict[str, Any]:
    """Canonical document dict for ``ledger``."""
    doc: Dict[str, Any] = {"version": DOCUMENT_VERSION}
    doc.update(ledger.to_dict())
    if "USD" in ledger.exchange_rates:
        doc["exchangeRate"] = ledger.exchange_rates["USD"]
    if "JPY" in ledger.exchange_rates:
        doc["jpyExchangeRate"] = ledger.exchange_rates["JPY"]
    return doc


def _resolve(path: Union[str, Path]) -> Path:
    resolved = Path(path)
    if not resolved.is_absolute() and not resolved.exists():
        candidate = _PROJECT_ROOT / resolved
        if candidate.exists():
            resolved = candidate
    return resolved


@log_errors("high")
@log_operation("ledger_load")
@log_timing(1.0)
def load_ledger_document(path: Union[str, Path]) -> LedgerData:
    """Read a JSON ledger file; malformed JSON is a ``LedgerImportError`` too."""
    with open(_resolve(path), "r", encoding="utf-8") as f:
        text = f.read()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LedgerImportError([f"not valid JSON: {exc}"]) from exc
    return parse_ledger_document(payload)


def dump_ledger_document(ledger: LedgerData, path: Optional[Union[str, Path]] = None) -> str:
    """Serialize canonically; also write to ``path`` when given."""
    text = json.dumps(ledger_to_document(ledger), indent=2, sort_keys=True, ensure_ascii=False) + "\n"
    if path is not None:
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
    return text
