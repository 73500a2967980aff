"""Ledger replay: fold ordered events into lots and cash balances.

Called by:
- ``ledger_engine.valuation`` (current holdings)
- ``ledger_engine.timeseries`` (year-end state via ``cutoff``)
- ``ledger_engine.rollups`` / ``ledger_engine.xirr`` (external flows)

Contract notes:
- Pure: inputs are never mutated; the same inputs in any order give the
  same ``ReplayResult``.
- Same-date events follow ``constants.EVENT_PRIORITY``; ties break on record
  id, then on record content. A paired stock transfer moves at its
  TRANSFER_OUT slot, so same-day buys land in the source account first.
- Data-entry problems never raise. Oversells clamp to zero, invalid events
  are skipped, records naming unknown accounts are kept for lots but never
  touch cash. Every case lands in ``warnings``.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from ledger_engine._logging import ledger_logger
from ledger_engine._vendor import _as_float
from ledger_engine.constants import (
    CashFlowType,
    TransactionType,
    event_priority,
)
from ledger_engine.cost_basis import (
    acquisition_cost,
    add_to_lot,
    gross_amount,
    remove_from_lot,
    sale_proceeds,
)
from ledger_engine.currency import FxRates, transfer_credit_amount
from ledger_engine.data_objects import Account, CashFlow, Lot, Transaction


LotKey = Tuple[str, str, str]  # (account_id, market, ticker)

_STREAM_TRANSACTION = 0
_STREAM_CASH_FLOW = 1


@dataclass
class ExternalSecurityTransfer:
    """Securities entering/leaving the ledger without a matching leg.

    ``value`` is native-currency, positive for inflows (TRANSFER_IN) and
    negative for outflows (TRANSFER_OUT), from the investor's contribution
    point of view.
    """

    date: date
    account_id: str
    market: str
    ticker: str
    value: float
    transaction_id: str


@dataclass
class PairedSecurityTransfer:
    """A matched TRANSFER_OUT/TRANSFER_IN move between two accounts.

    ``cost`` is the native cost basis carried from the source lot.
    """

    date: date
    market: str
    ticker: str
    from_account_id: str
    to_account_id: str
    quantity: float
    cost: float
    out_id: str
    in_id: str


@dataclass
class ReplayResult:
    lots: Dict[LotKey, Lot] = field(default_factory=dict)
    cash_balances: Dict[str, float] = field(default_factory=dict)
    cash_dividends: Dict[str, float] = field(default_factory=dict)
    stock_dividends: Dict[str, float] = field(default_factory=dict)
    security_flows: Dict[LotKey, List[Tuple[date, float]]] = field(default_factory=dict)
    external_security_transfers: List[ExternalSecurityTransfer] = field(default_factory=list)
    paired_transfers: List[PairedSecurityTransfer] = field(default_factory=list)
    orphan_transaction_ids: List[str] = field(default_factory=list)
    orphan_cash_flow_ids: List[str] = field(default_factory=list)
    skipped_ids: List[str] = field(default_factory=list)
    inconsistencies: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    cutoff: Optional[date] = None

    @property
    def total_dividends_received(self) -> float:
        return sum(self.cash_dividends.values())

    def open_lots(self, epsilon: float = 1e-6) -> List[Lot]:
        """Lots with quantity above ``epsilon`` in deterministic key order."""
        return [self.lots[k] for k in sorted(self.lots) if self.lots[k].quantity > epsilon]

    def quantities_by_security(self) -> Dict[Tuple[str, str], float]:
        """Total quantity per (market, ticker) across accounts."""
        out: Dict[Tuple[str, str], float] = defaultdict(float)
        for (_acc, market, ticker), lot in sorted(self.lots.items()):
            out[(market, ticker)] += lot.quantity
        return dict(out)


def _event_sort_key(record: Union[Transaction, CashFlow]) -> Tuple[Any, ...]:
    if isinstance(record, Transaction):
        return (
            record.date,
            event_priority(record.type),
            record.id,
            _STREAM_TRANSACTION,
            record.account_id,
            record.ticker,
            _as_float(record.quantity, -1.0),
            _as_float(record.price, -1.0),
        )
    return (
        record.date,
        event_priority(record.type),
        record.id,
        _STREAM_CASH_FLOW,
        record.account_id,
        record.target_account_id or "",
        _as_float(record.amount, -1.0),
        0.0,
    )


def order_events(
    transactions: Iterable[Transaction],
    cash_flows: Iterable[CashFlow],
    cutoff: Optional[date] = None,
) -> List[Union[Transaction, CashFlow]]:
    """Merge both streams into the replay total order, optionally up to ``cutoff`` (inclusive)."""
    events: List[Union[Transaction, CashFlow]] = []
    for record in list(transactions) + list(cash_flows):
        if cutoff is not None and record.date > cutoff:
            continue
        events.append(record)
    events.sort(key=_event_sort_key)
    return events


def _is_valid_number(value: float) -> bool:
    return value is not None and math.isfinite(value) and value >= 0


def _transaction_problem(txn: Transaction) -> Optional[str]:
    if not _is_valid_number(txn.quantity):
        return f"quantity={txn.quantity}"
    if txn.amount is None and not _is_valid_number(txn.price):
        return f"price={txn.price}"
    if txn.amount is not None and not math.isfinite(txn.amount):
        return f"amount={txn.amount}"
    return None


def _pair_security_transfers(transactions: List[Transaction]) -> Dict[str, Transaction]:
    """Match same-day TRANSFER_OUT/TRANSFER_IN legs of one security across accounts.

    Returns ``{transfer_out_id: transfer_in_record}``. Matching is greedy in id
    order so it does not depend on input order.
    """
    outs: Dict[Tuple[Any, ...], List[Transaction]] = defaultdict(list)
    ins: Dict[Tuple[Any, ...], List[Transaction]] = defaultdict(list)
    for txn in transactions:
        if txn.type not in (TransactionType.TRANSFER_IN, TransactionType.TRANSFER_OUT):
            continue
        key = (txn.date, txn.market.value, txn.ticker, round(txn.quantity, 6))
        if txn.type == TransactionType.TRANSFER_OUT:
            outs[key].append(txn)
        else:
            ins[key].append(txn)

    pairs: Dict[str, Transaction] = {}
    for key in sorted(ins, key=lambda k: (k[0], k[1], k[2], k[3])):
        available = sorted(outs.get(key, []), key=lambda t: (t.id, t.account_id))
        for txn_in in sorted(ins[key], key=lambda t: (t.id, t.account_id)):
            match = next((o for o in available if o.account_id != txn_in.account_id), None)
            if match is None:
                continue
            available.remove(match)
            pairs[match.id] = txn_in
    return pairs


class _ReplayState:
    """Mutable fold state for one replay pass."""

    def __init__(self, accounts: Dict[str, Account], rates: FxRates, cutoff: Optional[date]):
        self.accounts = accounts
        self.rates = rates
        self.result = ReplayResult(cutoff=cutoff)
        self.result.cash_balances = {acc_id: 0.0 for acc_id in sorted(accounts)}
        self._orphan_txn_ids: Set[str] = set()
        self._orphan_flow_ids: Set[str] = set()

    def warn(self, message: str) -> None:
        self.result.warnings.append(message)
        ledger_logger.warning(message)

    def lot(self, account_id: str, txn: Transaction) -> Lot:
        key = (account_id, txn.market.value, txn.ticker)
        lot = self.result.lots.get(key)
        if lot is None:
            lot = Lot(account_id=account_id, market=txn.market, ticker=txn.ticker)
            self.result.lots[key] = lot
        return lot

    def flow(self, account_id: str, txn: Transaction, when: date, amount: float) -> None:
        key = (account_id, txn.market.value, txn.ticker)
        self.result.security_flows.setdefault(key, []).append((when, amount))

    def adjust_cash(self, account_id: str, delta: float) -> None:
        if account_id in self.accounts:
            self.result.cash_balances[account_id] = self.result.cash_balances.get(account_id, 0.0) + delta

    def mark_orphan_transaction(self, txn: Transaction) -> None:
        if txn.id not in self._orphan_txn_ids:
            self._orphan_txn_ids.add(txn.id)
            self.result.orphan_transaction_ids.append(txn.id)
            self.warn(
                f"Transaction {txn.id} references unknown account {txn.account_id}; "
                "kept in holdings, excluded from cash balances."
            )

    def mark_orphan_flow(self, flow: CashFlow, account_id: str) -> None:
        if flow.id not in self._orphan_flow_ids:
            self._orphan_flow_ids.add(flow.id)
            self.result.orphan_cash_flow_ids.append(flow.id)
            self.warn(f"Cash flow {flow.id} references unknown account {account_id}; excluded from balances.")

    def skip(self, record_id: str, reason: str) -> None:
        self.result.skipped_ids.append(record_id)
        self.warn(f"Skipped {record_id}: {reason}.")

    def remove(self, account_id: str, txn: Transaction, quantity: float):
        removal = remove_from_lot(self.lot(account_id, txn), quantity)
        if removal.clamped:
            self.result.inconsistencies.append(
                {
                    "type": "oversell",
                    "transaction_id": txn.id,
                    "account_id": account_id,
                    "ticker": txn.ticker,
                    "market": txn.market.value,
                    "requested_quantity": removal.requested_quantity,
                    "held_quantity": removal.removed_quantity,
                }
            )
            self.warn(
                f"{txn.type.value} {txn.id} of {removal.requested_quantity:g} {txn.ticker} exceeds "
                f"held {removal.removed_quantity:g} in {account_id}; clamped to zero."
            )
        return removal


def _move_between_accounts(state: _ReplayState, source: Transaction, target: Transaction) -> None:
    """Apply a paired transfer at the TRANSFER_OUT slot, after same-day SELL/BUY."""
    if target.account_id not in state.accounts:
        state.mark_orphan_transaction(target)
    removal = state.remove(source.account_id, source, source.quantity)
    add_to_lot(state.lot(target.account_id, target), removal.removed_quantity, removal.removed_cost, target.date)
    state.adjust_cash(source.account_id, -source.fees)
    state.adjust_cash(target.account_id, -target.fees)
    state.flow(source.account_id, source, source.date, removal.removed_cost)
    state.flow(target.account_id, target, target.date, -removal.removed_cost)
    state.result.paired_transfers.append(
        PairedSecurityTransfer(
            date=source.date,
            market=source.market.value,
            ticker=source.ticker,
            from_account_id=source.account_id,
            to_account_id=target.account_id,
            quantity=removal.removed_quantity,
            cost=removal.removed_cost,
            out_id=source.id,
            in_id=target.id,
        )
    )


def _apply_transaction(
    state: _ReplayState,
    txn: Transaction,
    pairs: Dict[str, Transaction],
    paired_in_ids: Set[str],
) -> None:
    kind = txn.type
    account_id = txn.account_id
    if account_id not in state.accounts:
        state.mark_orphan_transaction(txn)

    if kind == TransactionType.BUY:
        cost = acquisition_cost(txn)
        add_to_lot(state.lot(account_id, txn), txn.quantity, cost, txn.date)
        state.adjust_cash(account_id, -cost)
        state.flow(account_id, txn, txn.date, -cost)

    elif kind == TransactionType.SELL:
        state.remove(account_id, txn, txn.quantity)
        proceeds = sale_proceeds(txn)
        state.adjust_cash(account_id, proceeds)
        state.flow(account_id, txn, txn.date, proceeds)

    elif kind == TransactionType.STOCK_DIVIDEND:
        cost = acquisition_cost(txn)
        add_to_lot(state.lot(account_id, txn), txn.quantity, cost, txn.date)
        value = txn.amount if txn.amount is not None else gross_amount(txn.price, txn.quantity, txn.market) - txn.fees
        state.result.stock_dividends[account_id] = state.result.stock_dividends.get(account_id, 0.0) + value

    elif kind == TransactionType.CASH_DIVIDEND:
        amount = txn.amount if txn.amount is not None else txn.price * txn.quantity - txn.fees
        state.adjust_cash(account_id, amount)
        state.result.cash_dividends[account_id] = state.result.cash_dividends.get(account_id, 0.0) + amount
        state.flow(account_id, txn, txn.date, amount)

    elif kind == TransactionType.TRANSFER_IN:
        if txn.id in paired_in_ids:
            return
        cost = acquisition_cost(txn)
        add_to_lot(state.lot(account_id, txn), txn.quantity, cost, txn.date)
        state.adjust_cash(account_id, -txn.fees)
        state.flow(account_id, txn, txn.date, -cost)
        state.result.external_security_transfers.append(
            ExternalSecurityTransfer(
                date=txn.date,
                account_id=account_id,
                market=txn.market.value,
                ticker=txn.ticker,
                value=cost,
                transaction_id=txn.id,
            )
        )

    elif kind == TransactionType.TRANSFER_OUT:
        target = pairs.get(txn.id)
        if target is not None:
            _move_between_accounts(state, txn, target)
            return
        removal = state.remove(account_id, txn, txn.quantity)
        state.adjust_cash(account_id, -txn.fees)
        if txn.amount is not None:
            value = txn.amount
        elif txn.price > 0:
            value = gross_amount(txn.price, removal.removed_quantity, txn.market)
        else:
            value = removal.removed_cost
        state.flow(account_id, txn, txn.date, value)
        state.result.external_security_transfers.append(
            ExternalSecurityTransfer(
                date=txn.date,
                account_id=account_id,
                market=txn.market.value,
                ticker=txn.ticker,
                value=-value,
                transaction_id=txn.id,
            )
        )


def _apply_cash_flow(state: _ReplayState, flow: CashFlow) -> None:
    kind = flow.type
    unknown = [acc for acc in (flow.account_id, flow.target_account_id) if acc is not None and acc not in state.accounts]
    if unknown:
        state.mark_orphan_flow(flow, unknown[0])
        return

    if kind in (CashFlowType.DEPOSIT, CashFlowType.INTEREST):
        state.adjust_cash(flow.account_id, flow.amount)

    elif kind == CashFlowType.WITHDRAW:
        state.adjust_cash(flow.account_id, -(flow.amount + flow.fee))

    elif kind == CashFlowType.TRANSFER:
        state.adjust_cash(flow.account_id, -(flow.amount + flow.fee))
        if flow.target_account_id is None:
            state.warn(f"Transfer {flow.id} has no target account; treated as a debit only.")
            return
        credited = transfer_credit_amount(
            flow,
            state.accounts[flow.account_id],
            state.accounts[flow.target_account_id],
            state.rates,
        )
        if credited is None:
            state.warn(
                f"Transfer {flow.id} between {state.accounts[flow.account_id].currency.value} and "
                f"{state.accounts[flow.target_account_id].currency.value} has no exchange rate; credited 0."
            )
            credited = 0.0
        state.adjust_cash(flow.target_account_id, credited)


def replay_ledger(
    transactions: Iterable[Transaction],
    cash_flows: Iterable[CashFlow],
    accounts: Iterable[Account],
    rates: Optional[FxRates] = None,
    cutoff: Optional[date] = None,
) -> ReplayResult:
    """Replay every event dated on or before ``cutoff`` (all events when ``None``).

    Returns lots keyed by (account_id, market, ticker), cash balances per known
    account in its native currency, dividend totals, per-lot dated security
    flows, unpaired security transfers and diagnostics.
    """
    rates = rates or FxRates()
    account_map = {a.id: a for a in accounts}
    state = _ReplayState(account_map, rates, cutoff)

    valid_transactions: List[Transaction] = []
    for txn in transactions:
        if cutoff is not None and txn.date > cutoff:
            continue
        problem = _transaction_problem(txn)
        if problem is not None:
            state.skip(txn.id, f"invalid {problem}")
            continue
        valid_transactions.append(txn)

    valid_flows: List[CashFlow] = []
    for flow in cash_flows:
        if cutoff is not None and flow.date > cutoff:
            continue
        if not _is_valid_number(flow.amount):
            state.skip(flow.id, f"invalid amount={flow.amount}")
            continue
        valid_flows.append(flow)

    pairs = _pair_security_transfers(valid_transactions)
    paired_in_ids: Set[str] = {t.id for t in pairs.values()}

    for record in order_events(valid_transactions, valid_flows):
        if isinstance(record, Transaction):
            _apply_transaction(state, record, pairs, paired_in_ids)
        else:
            _apply_cash_flow(state, record)

    result = state.result
    result.lots = {k: result.lots[k] for k in sorted(result.lots)}
    result.security_flows = {k: result.security_flows[k] for k in sorted(result.security_flows)}
    ledger_logger.debug(
        "replay done: cutoff=%s lots=%d accounts=%d warnings=%d",
        cutoff,
        len(result.lots),
        len(result.cash_balances),
        len(result.warnings),
    )
    return result


def accounts_with_balances(accounts: Iterable[Account], replay: ReplayResult) -> List[Account]:
    """Copies of ``accounts`` with ``balance`` set from the replay."""
    return [replace(a, balance=replay.cash_balances.get(a.id, 0.0)) for a in accounts]
