"""
TradeLedger — Ledger Facade
============================
The only stateful object: accounts plus the stock and option transaction
stores. Every mutation validates first, then stores, applies the cash
delta and fires on_change, all under one lock. Positions and analytics
are recomputed from the stores on every read.

Public API
----------
  Ledger(snapshot, on_change, today, enforce_buying_power)
  Ledger.from_file(path)                             → Ledger (persists on change)
  add_account(account) / get_account(id)             → str / Ok | NotFound
  add_stock_transaction(tx)                          → Receipt
  update_stock_transaction(id, patch)                → Ok(Receipt) | NotFound
  delete_stock_transaction(id)                       → Ok(StockTransaction) | NotFound
  add_option_transaction(tx)                         → Receipt
  update_option_transaction(id, patch)               → Ok(Receipt) | NotFound
  delete_option_transaction(id)                      → Ok(OptionTransaction) | NotFound
  close_position(position_id, close_type, …)         → Ok(CloseOutcome) | NotFound | Invalid
  project_stock_positions(account_id)                → list[StockPosition]
  project_option_positions(account_id)               → list[OptionPosition]
  detect_wash_sale(transaction_id)                   → WashSaleInfo | None
  compute_analytics(account_id)                      → OptionsAnalytics
  stock_analytics / portfolio_summary / tax_summary  → see analytics
  snapshot()                                         → LedgerSnapshot
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from typing import Callable, Optional

import pandas as pd

import analytics
import mechanics
from config import (
    DATA_PATH,
    ACT_BUY,
    STO, BTO, OPENING_ACTIONS,
    ST_CLOSED, ST_ASSIGNED, ST_EXERCISED, CLOSE_TYPES,
    ACCOUNT_TYPES, MARGIN_ACCOUNT_TYPES, ENFORCE_BUYING_POWER,
    QTY_EPSILON, MONEY_EPSILON_ROUND,
    DEFAULT_SHORT_TERM_TAX_RATE, DEFAULT_LONG_TERM_TAX_RATE,
)
from ingestion import read_snapshot_file, write_snapshot_file, today as _system_today
from models import (
    Account,
    StockTransaction, OptionTransaction,
    StockTransactionPatch, OptionTransactionPatch,
    StockPosition, OptionPosition,
    OptionsAnalytics, StockAnalytics, PortfolioSummary, TaxSummary,
    WashSaleInfo,
    Ok, NotFound, Invalid, Result,
    Receipt, CloseOutcome, LedgerSnapshot,
)
from validation import (
    ValidationResult,
    validate_stock_transaction, validate_option_transaction,
    find_duplicate_stock, find_duplicate_options,
)
from wash_sales import detect_stock_wash_sale, detect_option_wash_sale, scan_wash_sales

log = logging.getLogger(__name__)


# ── Exceptions ────────────────────────────────────────────────────────────────

class LedgerError(Exception):
    """Base for every error the ledger raises. Messages are safe to show users."""


class TransactionValidationError(LedgerError):
    """The transaction failed validation; nothing was stored. .result has every issue."""
    def __init__(self, result: ValidationResult):
        self.result = result
        super().__init__('; '.join(str(e) for e in result.errors) or 'Invalid transaction')


class InsufficientSharesError(TransactionValidationError):
    """A sell or transfer-out asks for more shares than the account held at that date."""


class InsufficientCashError(TransactionValidationError):
    """A non-margin account cannot cover a purchase or the collateral for a sold put."""


class OverCloseError(TransactionValidationError):
    """More contracts were closed than the position has open (or a count <= 0)."""


class AccountNotFoundError(LedgerError):
    """The transaction references an account the ledger does not know."""
    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__("Account '%s' does not exist" % account_id)


def _new_id() -> str:
    return uuid.uuid4().hex


def _index_of(rows: list, tx_id: str) -> Optional[int]:
    return next((i for i, t in enumerate(rows) if t.id == tx_id), None)


def _rejected(res: ValidationResult, fld: str, msg: str, exc: type) -> None:
    res.error(fld, msg)
    raise exc(res)


def _stock_shortfall_message(row: StockTransaction, held: float, target_id: str) -> str:
    when = row.date.strftime('%Y-%m-%d')
    if row.id == target_id:
        return 'Cannot %s %g shares of %s: only %g held on %s' % (
            row.action, row.shares, row.ticker, held, when)
    return 'This change leaves %s of %g %s on %s (%s) uncovered: only %g held' % (
        row.action, row.shares, row.ticker, when, row.id, held)


def _option_shortfall_message(row: OptionTransaction, available: int, target_id: str) -> str:
    when = row.transaction_date.strftime('%Y-%m-%d')
    if row.id == target_id:
        return 'Cannot close %d contract(s) of %s on %s: only %d open' % (
            row.contracts, row.ticker, when, available)
    return 'This change leaves %s of %d %s contract(s) on %s (%s) uncovered: only %d open' % (
        row.action, row.contracts, row.ticker, when, row.id, available)


# ── Ledger ────────────────────────────────────────────────────────────────────

class Ledger:
    """
    Accounts + transaction stores behind a single re-entrant lock.

    on_change(snapshot) is called after every successful mutation — the
    persistence hook used by from_file(). today is a zero-argument callable
    so tests can pin the date used for defaults and future-date warnings.
    """

    def __init__(self, snapshot: Optional[LedgerSnapshot] = None,
                 on_change: Optional[Callable[[LedgerSnapshot], None]] = None,
                 today: Optional[Callable[[], pd.Timestamp]] = None,
                 enforce_buying_power: bool = ENFORCE_BUYING_POWER):
        snapshot = snapshot or LedgerSnapshot([], [], [])
        self._lock     = threading.RLock()
        self._accounts: dict[str, Account] = {a.id: a for a in snapshot.accounts}
        self._stock:    list[StockTransaction]  = list(snapshot.stock_transactions)
        self._options:  list[OptionTransaction] = list(snapshot.option_transactions)
        self._on_change = on_change
        self._today     = today or _system_today
        self.enforce_buying_power = enforce_buying_power

    @classmethod
    def from_file(cls, path: Optional[str] = None, **kwargs) -> 'Ledger':
        """Load a JSON snapshot (empty ledger if missing) and write it back after every change."""
        path = path or DATA_PATH
        return cls(read_snapshot_file(path),
                   on_change=lambda snap: write_snapshot_file(path, snap),
                   **kwargs)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self.snapshot())

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return LedgerSnapshot(
                accounts            = [replace(a) for a in self._accounts.values()],
                stock_transactions  = list(self._stock),
                option_transactions = list(self._options),
            )

    # ── Accounts ──────────────────────────────────────────────────────────────

    def add_account(self, account: Account) -> str:
        """Store a new account. current_cash starts at initial_cash unless already set."""
        if account.type not in ACCOUNT_TYPES:
            raise LedgerError("Unknown account type '%s'" % account.type)
        account = replace(account)
        with self._lock:
            if not account.id:
                account.id = _new_id()
            if account.id in self._accounts:
                raise LedgerError("Account '%s' already exists" % account.id)
            if account.current_cash == 0 and account.initial_cash:
                account.current_cash = account.initial_cash
            if account.created_date is None:
                account.created_date = self._today()
            self._accounts[account.id] = account
            log.info('Added account %s (%s, %s)', account.id, account.name, account.type)
            self._changed()
        return account.id

    def get_account(self, account_id: str) -> Result:
        with self._lock:
            acct = self._accounts.get(account_id)
            if acct is None:
                return NotFound("Account '%s' not found" % account_id)
            return Ok(replace(acct))

    def accounts(self) -> list[Account]:
        with self._lock:
            return [replace(a) for a in self._accounts.values()]

    def _account(self, account_id: str) -> Account:
        acct = self._accounts.get(account_id)
        if acct is None:
            raise AccountNotFoundError(account_id)
        return acct

    def _apply_cash(self, account_id: str, delta: float) -> None:
        if delta == 0:
            return
        acct = self._account(account_id)
        acct.current_cash = round(acct.current_cash + delta, MONEY_EPSILON_ROUND)

    def _move_cash(self, old, new, effect: Callable) -> None:
        """Apply effect(new) − effect(old), splitting across accounts when the row moved."""
        if old.account_id == new.account_id:
            self._apply_cash(new.account_id, effect(new) - effect(old))
        else:
            self._apply_cash(old.account_id, -effect(old))
            self._apply_cash(new.account_id, effect(new))

    # ── Entry checks ──────────────────────────────────────────────────────────

    def _buying_power_applies(self, acct: Account) -> bool:
        return self.enforce_buying_power and acct.type not in MARGIN_ACCOUNT_TYPES

    def _cash_available(self, acct: Account, old, effect: Callable) -> float:
        # An update first gives back what the old row cost this account.
        if old is not None and old.account_id == acct.id:
            return acct.current_cash - effect(old)
        return acct.current_cash

    def _new_stock_shortfalls(self, candidate: list[StockTransaction], keys: set) -> list:
        """Sells / transfer-outs on keys left short by candidate that were covered in the store."""
        def short(rows):
            return mechanics.oversold_rows([t for t in rows if (t.account_id, t.ticker) in keys])
        before = {t.id for t, _ in short(self._stock)}
        return [(t, held) for t, held in short(candidate) if t.id not in before]

    def _new_option_shortfalls(self, candidate: list[OptionTransaction], keys: set) -> list:
        """Closing rows on keys left over-closed by candidate that were covered in the store."""
        def short(rows):
            return mechanics.overclosed_rows([t for t in rows if t.key in keys])
        before = {t.id for t, _ in short(self._options)}
        return [(t, n) for t, n in short(candidate) if t.id not in before]

    def _check_stock(self, tx: StockTransaction, candidate: list[StockTransaction],
                     old: Optional[StockTransaction] = None,
                     synthesized: bool = False) -> list[str]:
        """
        Validate tx as it would sit in candidate (the store after the change).
        Raises on any error; returns the advisory warnings.
        """
        acct = self._account(tx.account_id)
        res  = validate_stock_transaction(tx, self._accounts.keys(), today=self._today())
        if not res.is_valid:
            raise TransactionValidationError(res)

        # Every sell and transfer-out on the touched keys must stay covered.
        keys = {(tx.account_id, tx.ticker)}
        if old is not None:
            keys.add((old.account_id, old.ticker))
        short = self._new_stock_shortfalls(candidate, keys)
        if short:
            msg = _stock_shortfall_message(*short[0], tx.id)
            if synthesized:
                log.warning('Synthesized leg: %s', msg)
            else:
                _rejected(res, 'shares', msg, InsufficientSharesError)

        if tx.action == ACT_BUY and not synthesized and self._buying_power_applies(acct):
            cost      = tx.total_amount + tx.fees
            available = self._cash_available(acct, old, mechanics.stock_cash_effect)
            if cost > available + QTY_EPSILON:
                _rejected(res, 'total_amount',
                          'Insufficient cash: purchase costs $%.2f, $%.2f available' % (cost, available),
                          InsufficientCashError)

        warnings = [str(w) for w in res.warnings]
        dups = find_duplicate_stock(tx, self._stock)
        if dups:
            warnings.append('Possible duplicate of transaction(s) %s' % ', '.join(d.id for d in dups))
        return warnings

    def _check_option(self, tx: OptionTransaction, candidate: list[OptionTransaction],
                      old: Optional[OptionTransaction] = None,
                      synthesized: bool = False) -> list[str]:
        acct = self._account(tx.account_id)
        res  = validate_option_transaction(tx, self._accounts.keys(), today=self._today())
        if not res.is_valid:
            raise TransactionValidationError(res)

        # Counted at each closing row's place in date order, so a close dated
        # before a later opening row on the same key is caught.
        keys = {tx.key}
        if old is not None:
            keys.add(old.key)
        short = self._new_option_shortfalls(candidate, keys)
        if short:
            _rejected(res, 'contracts', _option_shortfall_message(*short[0], tx.id), OverCloseError)

        if not synthesized and self._buying_power_applies(acct):
            cash = self._cash_available(acct, old, mechanics.option_cash_effect)
            if tx.action == BTO:
                cost = tx.total_premium + tx.fees
                if cost > cash + QTY_EPSILON:
                    _rejected(res, 'total_premium',
                              'Insufficient cash: premium costs $%.2f, $%.2f available' % (cost, cash),
                              InsufficientCashError)
            elif tx.action == STO and tx.option_type == 'put' and tx.collateral_required:
                others   = [t for t in candidate if t.id != tx.id]
                reserved = sum(p.collateral_required
                               for p in mechanics.open_option_positions(others, acct.id))
                # The premium received counts towards the collateral.
                free = cash + mechanics.option_cash_effect(tx) - reserved
                if tx.collateral_required > free + QTY_EPSILON:
                    _rejected(res, 'collateral_required',
                              'Insufficient cash for collateral: need $%.2f, $%.2f available'
                              % (tx.collateral_required, free),
                              InsufficientCashError)

        warnings = [str(w) for w in res.warnings]
        dups = find_duplicate_options(tx, self._options)
        if dups:
            warnings.append('Possible duplicate of transaction(s) %s' % ', '.join(d.id for d in dups))
        return warnings

    @staticmethod
    def _with_default_collateral(tx: OptionTransaction) -> OptionTransaction:
        if tx.collateral_required is None:
            collateral = mechanics.default_collateral(tx)
            if collateral is not None:
                return replace(tx, collateral_required=collateral)
        return tx

    # ── Stock transactions ────────────────────────────────────────────────────

    def add_stock_transaction(self, tx: StockTransaction) -> Receipt:
        with self._lock:
            if not tx.id:
                tx = replace(tx, id=_new_id())
            warnings = self._check_stock(tx, self._stock + [tx])
            self._stock.append(tx)
            self._apply_cash(tx.account_id, mechanics.stock_cash_effect(tx))
            wash = detect_stock_wash_sale(self._stock, tx.id)
            log.info('Added stock %s %g %s @ %.2f in %s (%s)',
                     tx.action, tx.shares, tx.ticker, tx.price_per_share, tx.account_id, tx.id)
            if wash is not None:
                log.warning('Wash sale on %s %s: loss $%.2f, related %s',
                            tx.ticker, tx.id, wash.loss_amount, ', '.join(wash.related_transaction_ids))
            self._changed()
        return Receipt(tx.id, warnings, wash)

    def update_stock_transaction(self, tx_id: str, patch: StockTransactionPatch) -> Result:
        with self._lock:
            idx = _index_of(self._stock, tx_id)
            if idx is None:
                return NotFound("Stock transaction '%s' not found" % tx_id)
            old = self._stock[idx]
            new = mechanics.apply_stock_patch(old, patch)
            candidate = list(self._stock)
            candidate[idx] = new
            warnings = self._check_stock(new, candidate, old=old)
            self._stock[idx] = new
            self._move_cash(old, new, mechanics.stock_cash_effect)
            wash = detect_stock_wash_sale(self._stock, tx_id)
            log.info('Updated stock transaction %s', tx_id)
            self._changed()
        return Ok(Receipt(tx_id, warnings, wash))

    def delete_stock_transaction(self, tx_id: str) -> Result:
        with self._lock:
            idx = _index_of(self._stock, tx_id)
            if idx is None:
                return NotFound("Stock transaction '%s' not found" % tx_id)
            tx = self._stock[idx]
            self._account(tx.account_id)
            short = self._new_stock_shortfalls(self._stock[:idx] + self._stock[idx + 1:],
                                               {(tx.account_id, tx.ticker)})
            if short:
                _rejected(ValidationResult(), 'shares',
                          _stock_shortfall_message(*short[0], tx.id), InsufficientSharesError)
            del self._stock[idx]
            self._apply_cash(tx.account_id, -mechanics.stock_cash_effect(tx))
            log.info('Deleted stock transaction %s (%s %s)', tx_id, tx.action, tx.ticker)
            self._changed()
        return Ok(tx)

    # ── Option transactions ───────────────────────────────────────────────────

    def add_option_transaction(self, tx: OptionTransaction) -> Receipt:
        with self._lock:
            if not tx.id:
                tx = replace(tx, id=_new_id())
            tx = self._with_default_collateral(tx)
            warnings = self._check_option(tx, self._options + [tx])
            self._options.append(tx)
            self._apply_cash(tx.account_id, mechanics.option_cash_effect(tx))
            wash = detect_option_wash_sale(self._options, tx.id)
            log.info('Added option %s %d %s %s %.2f in %s (%s)',
                     tx.action, tx.contracts, tx.ticker, tx.option_type,
                     tx.strike_price, tx.account_id, tx.id)
            if wash is not None and wash.has_wash_sale:
                log.warning('Wash sale on %s %s: loss $%.2f, related %s',
                            tx.ticker, tx.id, wash.loss_amount, ', '.join(wash.related_transaction_ids))
            self._changed()
        return Receipt(tx.id, warnings, wash)

    def update_option_transaction(self, tx_id: str, patch: OptionTransactionPatch) -> Result:
        with self._lock:
            idx = _index_of(self._options, tx_id)
            if idx is None:
                return NotFound("Option transaction '%s' not found" % tx_id)
            old = self._options[idx]
            new = self._with_default_collateral(mechanics.apply_option_patch(old, patch))
            candidate = list(self._options)
            candidate[idx] = new
            warnings = self._check_option(new, candidate, old=old)
            self._options[idx] = new
            self._move_cash(old, new, mechanics.option_cash_effect)
            wash = detect_option_wash_sale(self._options, tx_id)
            log.info('Updated option transaction %s', tx_id)
            self._changed()
        return Ok(Receipt(tx_id, warnings, wash))

    def delete_option_transaction(self, tx_id: str) -> Result:
        with self._lock:
            idx = _index_of(self._options, tx_id)
            if idx is None:
                return NotFound("Option transaction '%s' not found" % tx_id)
            tx = self._options[idx]
            self._account(tx.account_id)
            short = self._new_option_shortfalls(self._options[:idx] + self._options[idx + 1:], {tx.key})
            if short:
                _rejected(ValidationResult(), 'contracts',
                          _option_shortfall_message(*short[0], tx.id), OverCloseError)
            del self._options[idx]
            self._apply_cash(tx.account_id, -mechanics.option_cash_effect(tx))
            log.info('Deleted option transaction %s (%s %s)', tx_id, tx.action, tx.ticker)
            self._changed()
        return Ok(tx)

    # ── Close / expire / assign / exercise ────────────────────────────────────

    def close_position(self, position_id: str, close_type: str,
                       price: Optional[float] = None, fees: Optional[float] = None,
                       contracts: Optional[int] = None,
                       close_date: Optional[pd.Timestamp] = None) -> Result:
        """
        Close some or all of an open option position.

        Synthesizes the closing leg (and, for assigned / exercised, the stock
        leg at the strike), validates both, then stores both and applies cash
        in one locked step. Returns Ok(CloseOutcome) or NotFound / Invalid;
        over-closing raises OverCloseError.
        """
        if close_type not in CLOSE_TYPES:
            return Invalid("Unknown close type '%s'" % close_type)

        with self._lock:
            position = mechanics.find_option_position(self._options, position_id)
            if position is None:
                return NotFound("Position '%s' not found" % position_id)
            if not position.is_open:
                return Invalid("Position '%s' is already %s" % (position_id, position.status))
            opening = [t for t in self._options
                       if t.id in position.transaction_ids and t.action in OPENING_ACTIONS]
            if not opening:
                return NotFound("Opening transaction for position '%s' not found" % position_id)

            is_seller = position.open_action == STO
            if close_type == ST_ASSIGNED and not is_seller:
                return Invalid('Only sold options can be assigned; use exercised for a long option')
            if close_type == ST_EXERCISED and is_seller:
                return Invalid('Only bought options can be exercised; use assigned for a short option')

            n = position.contracts if contracts is None else contracts
            if not isinstance(n, int) or n <= 0 or n > position.contracts:
                res = ValidationResult()
                _rejected(res, 'contracts',
                          'Cannot close %s contract(s): %d open' % (n, position.contracts),
                          OverCloseError)
            self._account(position.account_id)

            close_date = close_date if close_date is not None else self._today()
            last_open = max(t.transaction_date for t in opening)
            if close_date < last_open:
                return Invalid('Close date %s is before the position\'s opening trade on %s'
                               % (close_date.strftime('%Y-%m-%d'), last_open.strftime('%Y-%m-%d')))

            closing = mechanics.build_closing_transaction(
                position, close_type, n,
                close_price = price if price is not None and close_type == ST_CLOSED else 0.0,
                close_fees  = fees or 0.0,
                close_date  = close_date,
            )
            closing = replace(closing, id=_new_id())
            leg = mechanics.build_stock_leg(position, close_type, n, close_date)
            if leg is not None:
                leg = replace(leg, id=_new_id())
                closing = replace(closing, linked_stock_transaction_id=leg.id)

            self._check_option(closing, self._options + [closing], synthesized=True)
            if leg is not None:
                self._check_stock(leg, self._stock + [leg], synthesized=True)

            self._options.append(closing)
            self._apply_cash(closing.account_id, mechanics.option_cash_effect(closing))
            if leg is not None:
                self._stock.append(leg)
                self._apply_cash(leg.account_id, mechanics.stock_cash_effect(leg))

            wash = detect_option_wash_sale(self._options, closing.id)
            log.info('Position %s %s: %d contract(s), P/L $%.2f',
                     position_id, close_type, n, closing.realized_pl)
            if wash is not None and wash.has_wash_sale:
                log.warning('Wash sale on %s close %s: loss $%.2f',
                            closing.ticker, closing.id, wash.loss_amount)
            self._changed()

        return Ok(CloseOutcome(closing, leg, closing.realized_pl, wash))

    # ── Reads ─────────────────────────────────────────────────────────────────

    def stock_transactions(self, account_id: Optional[str] = None) -> list[StockTransaction]:
        with self._lock:
            rows = list(self._stock)
        return mechanics._scoped(rows, account_id)

    def option_transactions(self, account_id: Optional[str] = None) -> list[OptionTransaction]:
        with self._lock:
            rows = list(self._options)
        return mechanics._scoped(rows, account_id)

    def project_stock_positions(self, account_id: Optional[str] = None) -> list[StockPosition]:
        return mechanics.project_stock_positions(self.stock_transactions(), account_id)

    def project_option_positions(self, account_id: Optional[str] = None) -> list[OptionPosition]:
        return mechanics.project_option_positions(self.option_transactions(), account_id)

    def detect_wash_sale(self, transaction_id: str) -> Optional[WashSaleInfo]:
        stock, options = self.stock_transactions(), self.option_transactions()
        if any(t.id == transaction_id for t in stock):
            return detect_stock_wash_sale(stock, transaction_id)
        if any(t.id == transaction_id for t in options):
            return detect_option_wash_sale(options, transaction_id)
        return None

    def scan_wash_sales(self) -> pd.DataFrame:
        return scan_wash_sales(self.stock_transactions(), self.option_transactions())

    def compute_analytics(self, account_id: Optional[str] = None) -> OptionsAnalytics:
        return analytics.options_analytics(self.option_transactions(), account_id)

    def stock_analytics(self, account_id: Optional[str] = None,
                        prices: Optional[dict[str, float]] = None) -> StockAnalytics:
        return analytics.stock_analytics(self.stock_transactions(), account_id,
                                         prices=prices, as_of=self._today())

    def portfolio_summary(self, account_id: Optional[str] = None,
                          prices: Optional[dict[str, float]] = None) -> PortfolioSummary:
        return analytics.portfolio_summary(self.accounts(), self.stock_transactions(),
                                           self.option_transactions(), account_id, prices)

    def tax_summary(self, year: Optional[int] = None, account_id: Optional[str] = None,
                    short_term_rate: float = DEFAULT_SHORT_TERM_TAX_RATE,
                    long_term_rate: float = DEFAULT_LONG_TERM_TAX_RATE) -> TaxSummary:
        return analytics.tax_summary(self.stock_transactions(account_id),
                                     self.option_transactions(account_id),
                                     year, short_term_rate, long_term_rate)
