"""
TradeLedger — Pure Position / P&L Engine
=========================================
All computation that turns ledger rows into positions, cash effects and
realized P&L. Pure functions over lists of transactions — no ledger state,
no I/O. Every call recomputes from the rows it is given.

Public API
----------
  project_stock_positions(txs, account_id)      → list[StockPosition]
  realized_stock_sales(txs, account_id)         → list[RealizedSale]
  shares_held_before(txs, target)               → float
  oversold_rows(txs)                            → list[(StockTransaction, held)]
  project_option_positions(txs, account_id)     → list[OptionPosition]   (history included)
  open_option_positions(txs, account_id)        → list[OptionPosition]
  find_option_position(txs, position_id)        → OptionPosition | None
  overclosed_rows(txs)                          → list[(OptionTransaction, open)]
  stock_cash_effect(tx) / option_cash_effect(tx) → float
  apply_stock_patch(tx, patch)                  → StockTransaction
  apply_option_patch(tx, patch)                 → OptionTransaction
  default_collateral(tx)                        → float | None
  close_pnl(is_seller, close_type, …)           → float
  build_closing_transaction(position, …)        → OptionTransaction
  build_stock_leg(position, …)                  → StockTransaction | None

Internal helpers (also importable and testable)
  _run_average_cost(txs, stop_at, shortfalls)   → (books, sales)
  _run_option_fold(txs, shortfalls)             → list[OptionPosition]
  _consume_lots(lots, qty)                      → list[(qty, date)]
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field, fields, replace
from typing import Iterable, Optional

import pandas as pd

from config import (
    ACT_BUY, ACT_SELL, ACT_DIVIDEND, ACT_SPLIT,
    SHARE_ADD_ACTIONS, SHARE_REMOVE_ACTIONS,
    STO, BTC, STC,
    OPENING_ACTIONS, CLOSING_ACTIONS, CREDIT_ACTIONS, DEBIT_ACTIONS,
    ST_OPEN, ST_CLOSED, ST_EXPIRED, ST_ASSIGNED, ST_EXERCISED,
    STRAT_CSP,
    CONTRACT_MULTIPLIER,
    QTY_EPSILON, QTY_ROUND,
    LONG_TERM_HOLDING_DAYS,
)
from models import (
    StockTransaction, OptionTransaction,
    StockTransactionPatch, OptionTransactionPatch,
    StockPosition, OptionPosition, RealizedSale,
)
from validation import parse_split_ratio

log = logging.getLogger(__name__)


# ── CASH EFFECTS ──────────────────────────────────────────────────────────────
# Signed change to account cash for a single row. Collateral is never part of
# the cash effect. It is a separate reserved figure (see analytics).

def stock_cash_effect(tx: StockTransaction) -> float:
    if tx.action == ACT_BUY:
        return -(tx.total_amount + tx.fees)
    if tx.action == ACT_SELL:
        return tx.total_amount - tx.fees
    if tx.action == ACT_DIVIDEND:
        return tx.total_amount
    return 0.0


def option_cash_effect(tx: OptionTransaction) -> float:
    if tx.action in CREDIT_ACTIONS:
        return tx.total_premium - tx.fees
    if tx.action in DEBIT_ACTIONS:
        return -(tx.total_premium + tx.fees)
    return 0.0


# ── PATCH MERGE ───────────────────────────────────────────────────────────────

def _patch_changes(patch) -> dict:
    return {f.name: getattr(patch, f.name) for f in fields(patch)
            if getattr(patch, f.name) is not None}


def apply_stock_patch(tx: StockTransaction, patch: StockTransactionPatch) -> StockTransaction:
    """
    Merge the non-None fields of patch onto tx.

    total_amount is re-derived as shares × price when either input changes
    and the patch doesn't set total_amount itself (dividends keep theirs).
    The caller re-validates the result.
    """
    changes = _patch_changes(patch)
    merged  = replace(tx, **changes)
    if ('total_amount' not in changes
            and changes.keys() & {'shares', 'price_per_share'}
            and merged.action != ACT_DIVIDEND):
        merged = replace(merged, total_amount=merged.shares * merged.price_per_share)
    return merged


def apply_option_patch(tx: OptionTransaction, patch: OptionTransactionPatch) -> OptionTransaction:
    """Same contract as apply_stock_patch — total_premium follows contracts × 100 × premium."""
    changes = _patch_changes(patch)
    merged  = replace(tx, **changes)
    if ('total_premium' not in changes
            and changes.keys() & {'contracts', 'premium_per_share'}):
        merged = replace(merged, total_premium=(
            merged.contracts * CONTRACT_MULTIPLIER * merged.premium_per_share))
    return merged


def default_collateral(tx: OptionTransaction) -> Optional[float]:
    """Strike × 100 × contracts for a sold cash-secured put; None otherwise."""
    if tx.action == STO and tx.option_type == 'put' and tx.strategy == STRAT_CSP:
        return tx.strike_price * CONTRACT_MULTIPLIER * tx.contracts
    return None


# ── AVERAGE-COST CORE ─────────────────────────────────────────────────────────

@dataclass
class _Book:
    """Running state for one (account, ticker) during the fold."""
    account_id: str
    ticker:     str
    first:      pd.Timestamp
    last:       pd.Timestamp
    shares:     float = 0.0
    cost:       float = 0.0
    ids:        list = field(default_factory=list)
    lots:       deque = field(default_factory=deque)   # [qty, acquired], dates only

    @property
    def average(self) -> float:
        return self.cost / self.shares if self.shares > QTY_EPSILON else 0.0


def _consume_lots(lots: deque, qty: float) -> list[tuple[float, pd.Timestamp]]:
    """Pop qty shares off the front of the date queue (earliest acquired first)."""
    used = []
    remaining = qty
    while remaining > QTY_EPSILON and lots:
        lot_qty, acquired = lots[0]
        take = min(remaining, lot_qty)
        used.append((take, acquired))
        remaining = round(remaining - take, QTY_ROUND)
        leftover  = round(lot_qty - take, QTY_ROUND)
        if leftover < QTY_EPSILON:
            lots.popleft()
        else:
            lots[0] = [leftover, acquired]
    return used


def _sorted_by(txs: Iterable, attr: str) -> list:
    # sorted() is stable: rows on the same date keep store (insertion) order.
    return sorted(txs, key=lambda t: getattr(t, attr))


def _run_average_cost(transactions: Iterable[StockTransaction],
                      stop_at: Optional[str] = None,
                      shortfalls: Optional[list] = None) -> tuple[dict, list[RealizedSale]]:
    """
    Shared average-cost engine — single source of truth for stock cost basis.

    Fold (date-sorted, stable) per (account, ticker):

      BUY / TRANSFER-IN   shares += n, cost += n × price, push (n, date) lot
      SELL / TRANSFER-OUT cost -= average × n   (proportional, not FIFO)
                          position deleted when shares reach ~0
      SPLIT 'new:old'     shares × r, lot quantities × r, cost unchanged
      DIVIDEND            no effect on the position

    Holding periods follow the average-basis convention: the shares sold are
    deemed to be the earliest acquired, so the date queue is consumed FIFO
    while cost comes off at the average. Cost and term split pro rata.

    stop_at: return the books as they stood just BEFORE the row with this id
    (used for "shares held at the time of this sale" checks).

    shortfalls: when a list is passed, every sell or transfer-out that asks
    for more shares than were held at its place in date order is appended
    as (tx, shares_held).

    Examples
    --------
    1. Buy 100 @ 150, sell 50 @ 160:

       BUY  100 → shares 100, cost 15000.00, avg 150.00
       SELL  50 → cost removed 50 × 150 = 7500.00
                  shares 50, cost 7500.00, avg 150.00
                  sale: proceeds 8000.00, cost 7500.00, P/L +500.00

    2. Buy 100 @ 10, buy 100 @ 20, sell 100 @ 18:

       avg after buys = 15.00, so cost removed = 1500.00, P/L +300.00
       The shares sold are the first lot's for term purposes.

    3. 2:1 split with 50 shares @ avg 150:

       shares 100, cost 7500.00, avg 75.00
    """
    books: dict[tuple[str, str], _Book] = {}
    sales: list[RealizedSale] = []

    for tx in _sorted_by(transactions, 'date'):
        if stop_at is not None and tx.id == stop_at:
            break
        key  = (tx.account_id, tx.ticker)
        book = books.get(key)

        if tx.action in SHARE_ADD_ACTIONS:
            if book is None:
                book = books[key] = _Book(tx.account_id, tx.ticker, first=tx.date, last=tx.date)
            book.shares = round(book.shares + tx.shares, QTY_ROUND)
            book.cost  += tx.shares * tx.price_per_share
            book.lots.append([tx.shares, tx.date])
            book.last = tx.date
            book.ids.append(tx.id)

        elif tx.action in SHARE_REMOVE_ACTIONS:
            if book is None:
                # Selling a ticker never held: no position, nothing realized.
                if shortfalls is not None:
                    shortfalls.append((tx, 0.0))
                log.debug('%s of %s in %s with no position — ignored', tx.action, tx.ticker, tx.account_id)
                continue
            qty = min(tx.shares, book.shares)
            if tx.shares > book.shares + QTY_EPSILON:
                if shortfalls is not None:
                    shortfalls.append((tx, book.shares))
                log.warning('%s of %.4f %s exceeds %.4f held in %s',
                            tx.action, tx.shares, tx.ticker, book.shares, tx.account_id)
            removed = book.average * qty
            used    = _consume_lots(book.lots, qty)
            if tx.action == ACT_SELL and qty > QTY_EPSILON:
                long_qty = sum(q for q, acquired in used
                               if (tx.date - acquired).days >= LONG_TERM_HOLDING_DAYS)
                share    = qty / tx.shares
                sales.append(RealizedSale(
                    transaction_id    = tx.id,
                    account_id        = tx.account_id,
                    ticker            = tx.ticker,
                    date              = tx.date,
                    shares            = qty,
                    proceeds          = (tx.total_amount - tx.fees) * share,
                    cost_basis        = removed,
                    short_term_shares = round(qty - long_qty, QTY_ROUND),
                    long_term_shares  = round(long_qty, QTY_ROUND),
                ))
            book.shares = round(book.shares - tx.shares, QTY_ROUND)
            if book.shares <= QTY_EPSILON:
                del books[key]
                continue
            book.cost -= removed
            book.last  = tx.date
            book.ids.append(tx.id)

        elif tx.action == ACT_SPLIT:
            ratio = parse_split_ratio(tx.split_ratio)
            if book is None or ratio is None:
                continue
            book.shares = round(book.shares * ratio, QTY_ROUND)
            for lot in book.lots:
                lot[0] = round(lot[0] * ratio, QTY_ROUND)
            book.last = tx.date
            book.ids.append(tx.id)

    return books, sales


def _scoped(txs: Iterable, account_id: Optional[str]) -> list:
    return [t for t in txs if account_id is None or t.account_id == account_id]


def project_stock_positions(transactions: Iterable[StockTransaction],
                            account_id: Optional[str] = None) -> list[StockPosition]:
    """
    Current holdings per (account, ticker). account_id=None covers every
    account — positions are still kept separate per account.
    """
    books, _ = _run_average_cost(_scoped(transactions, account_id))
    return [
        StockPosition(
            account_id            = b.account_id,
            ticker                = b.ticker,
            shares                = b.shares,
            average_cost_basis    = b.average,
            total_cost_basis      = b.cost,
            first_purchase_date   = b.first,
            last_transaction_date = b.last,
            transaction_ids       = list(b.ids),
        )
        for b in books.values() if b.shares > QTY_EPSILON
    ]


def realized_stock_sales(transactions: Iterable[StockTransaction],
                         account_id: Optional[str] = None) -> list[RealizedSale]:
    _, sales = _run_average_cost(_scoped(transactions, account_id))
    return sales


def shares_held_before(transactions: Iterable[StockTransaction], target: StockTransaction) -> float:
    """
    Shares of target's (account, ticker) held just before target is applied.
    target must already sit in transactions at its store position.
    """
    books, _ = _run_average_cost(
        [t for t in transactions if t.account_id == target.account_id and t.ticker == target.ticker],
        stop_at=target.id,
    )
    book = books.get((target.account_id, target.ticker))
    return book.shares if book is not None else 0.0


def oversold_rows(transactions: Iterable[StockTransaction]) -> list[tuple[StockTransaction, float]]:
    """
    Sells and transfer-outs that exceed the shares held at their place in
    date order, each paired with the shares that were actually held.
    """
    shortfalls: list = []
    _run_average_cost(transactions, shortfalls=shortfalls)
    return shortfalls


# ── OPTION POSITION PROJECTOR ─────────────────────────────────────────────────

def _new_option_position(tx: OptionTransaction) -> OptionPosition:
    terminal = tx.status != ST_OPEN
    return OptionPosition(
        id                  = tx.id,
        account_id          = tx.account_id,
        ticker              = tx.ticker,
        strategy            = tx.strategy,
        option_type         = tx.option_type,
        strike_price        = tx.strike_price,
        expiration_date     = tx.expiration_date,
        contracts           = 0 if terminal else tx.contracts,
        average_premium     = (tx.total_premium / (tx.contracts * CONTRACT_MULTIPLIER)
                               if tx.contracts > 0 else 0.0),
        total_premium       = tx.total_premium,
        status              = tx.status,
        open_date           = tx.transaction_date,
        open_action         = tx.action,
        open_fees           = tx.fees,
        collateral_required = tx.collateral_required or 0.0,
        close_date          = (tx.close_date or tx.transaction_date) if terminal else None,
        realized_pl         = tx.realized_pl if terminal else None,
        transaction_ids     = [tx.id],
    )


def _run_option_fold(transactions: Iterable[OptionTransaction],
                     shortfalls: Optional[list] = None) -> list[OptionPosition]:
    """
    Fold option rows (transaction-date order, stable) into contract
    positions keyed by (account, ticker, strike, expiration, type).

    Opening rows start a lifecycle or merge into the live one (contracts,
    premium, fees and collateral sum; average premium is volume-weighted).
    An opening row that already carries a terminal status is a complete
    historical trade and becomes its own terminal position.

    Closing rows reduce the live position. At zero it becomes terminal
    with the closing row's status, and its realized_pl is that final
    closing row's P&L (earlier partial closes keep theirs on their own
    rows). Above zero the outstanding premium, fees and collateral shrink
    pro rata and the status stays 'open'.

    shortfalls: when a list is passed, every closing row that closes more
    contracts than were open on its key at that point is appended as
    (tx, contracts_open).
    """
    live:    dict[tuple, OptionPosition] = {}
    history: list[OptionPosition] = []

    for tx in _sorted_by(transactions, 'transaction_date'):
        key = tx.key

        if tx.action in OPENING_ACTIONS:
            pos = live.get(key)
            if tx.status != ST_OPEN or pos is None:
                pos = _new_option_position(tx)
                history.append(pos)
                if pos.is_open:
                    live[key] = pos
                continue
            pos.contracts     += tx.contracts
            pos.total_premium += tx.total_premium
            pos.open_fees     += tx.fees
            pos.collateral_required += tx.collateral_required or 0.0
            pos.average_premium = pos.total_premium / (pos.contracts * CONTRACT_MULTIPLIER)
            pos.transaction_ids.append(tx.id)

        elif tx.action in CLOSING_ACTIONS:
            pos = live.get(key)
            if pos is None:
                if shortfalls is not None:
                    shortfalls.append((tx, 0))
                log.debug('Closing row %s has no open position — ignored', tx.id)
                continue
            if tx.contracts > pos.contracts and shortfalls is not None:
                shortfalls.append((tx, pos.contracts))
            pos.transaction_ids.append(tx.id)
            remaining = pos.contracts - tx.contracts
            if remaining <= 0:
                pos.contracts   = 0
                pos.status      = tx.status if tx.status != ST_OPEN else ST_CLOSED
                pos.close_date  = tx.close_date or tx.transaction_date
                pos.realized_pl = tx.realized_pl
                del live[key]
            else:
                keep = remaining / pos.contracts
                pos.total_premium       *= keep
                pos.open_fees           *= keep
                pos.collateral_required *= keep
                pos.contracts = remaining

    return history


def project_option_positions(transactions: Iterable[OptionTransaction],
                             account_id: Optional[str] = None) -> list[OptionPosition]:
    """
    Every option lifecycle (open and terminal) in the order they started.
    Closing rows with no live position are ignored here; the ledger rejects
    them before they are stored (see overclosed_rows).
    """
    return _run_option_fold(_scoped(transactions, account_id))


def overclosed_rows(transactions: Iterable[OptionTransaction]) -> list[tuple[OptionTransaction, int]]:
    """
    Closing rows that close more contracts than were open on their key at
    their place in transaction-date order, each paired with the open count.
    A close dated before a later opening row on the same key shows up here.
    """
    shortfalls: list = []
    _run_option_fold(transactions, shortfalls=shortfalls)
    return shortfalls


def open_option_positions(transactions: Iterable[OptionTransaction],
                          account_id: Optional[str] = None) -> list[OptionPosition]:
    return [p for p in project_option_positions(transactions, account_id) if p.is_open]


def find_option_position(transactions: Iterable[OptionTransaction],
                         position_id: str) -> Optional[OptionPosition]:
    return next((p for p in project_option_positions(transactions) if p.id == position_id), None)


# ── CLOSE / EXPIRE / ASSIGN / EXERCISE ────────────────────────────────────────

def close_pnl(is_seller: bool, close_type: str, open_premium: float, open_fees: float,
              close_premium: float = 0.0, close_fees: float = 0.0) -> float:
    """
    Realized P&L for closing part (or all) of a position.

    open_premium / open_fees must already be the proportional share of the
    contracts being closed. For expired / assigned / exercised the closing
    premium is forced to 0 — the premium was settled at open and assignment
    or exercise only moves the underlying.

      seller:  open_premium − close_premium − open_fees − close_fees
      buyer:   close_premium − open_premium − open_fees − close_fees
    """
    if close_type in (ST_EXPIRED, ST_ASSIGNED, ST_EXERCISED):
        close_premium = 0.0
    if is_seller:
        return open_premium - close_premium - open_fees - close_fees
    return close_premium - open_premium - open_fees - close_fees


def _close_note(position: OptionPosition, close_type: str, contracts: int,
                close_price: float) -> str:
    shares = contracts * CONTRACT_MULTIPLIER
    if close_type == ST_EXPIRED:
        return '%d contract(s) expired worthless' % contracts
    if close_type in (ST_ASSIGNED, ST_EXERCISED):
        # Stock moves in: assigned put / exercised call. Out: assigned call / exercised put.
        bought = (position.option_type == 'put') == (close_type == ST_ASSIGNED)
        return '%d contract(s) %s - %s %d shares of %s at $%.2f' % (
            contracts, close_type, 'bought' if bought else 'sold',
            shares, position.ticker, position.strike_price)
    return 'Closed %d contract(s) at $%.2f/share' % (contracts, close_price)


def build_closing_transaction(position: OptionPosition, close_type: str, contracts: int,
                              close_price: float, close_fees: float,
                              close_date: pd.Timestamp) -> OptionTransaction:
    """
    The synthesized closing leg for close_position().

    Proportional attribution: the fraction contracts / position.contracts
    (contracts still outstanding) scales the outstanding open premium, open
    fees and collateral. For a single opening lot this is exactly
    contracts / opening contracts, and successive partial closes sum to the
    full open premium and fees.
    """
    is_seller  = position.open_action == STO
    proportion = contracts / position.contracts if position.contracts > 0 else 0.0
    open_prem  = position.total_premium * proportion
    open_fees  = position.open_fees * proportion

    if close_type != ST_CLOSED:
        close_price = 0.0
    close_total = close_price * contracts * CONTRACT_MULTIPLIER
    pl = close_pnl(is_seller, close_type, open_prem, open_fees, close_total, close_fees)

    return OptionTransaction(
        account_id          = position.account_id,
        ticker              = position.ticker,
        strategy            = position.strategy,
        option_type         = position.option_type,
        action              = BTC if is_seller else STC,
        contracts           = contracts,
        strike_price        = position.strike_price,
        premium_per_share   = close_price,
        total_premium       = close_total,
        fees                = close_fees,
        expiration_date     = position.expiration_date,
        transaction_date    = close_date,
        status              = close_type,
        close_date          = close_date,
        close_price         = close_price,
        realized_pl         = pl,
        collateral_required = (position.collateral_required * proportion
                               if position.collateral_required else None),
        collateral_released = True,
        notes               = _close_note(position, close_type, contracts, close_price),
    )


def build_stock_leg(position: OptionPosition, close_type: str, contracts: int,
                    close_date: pd.Timestamp) -> Optional[StockTransaction]:
    """
    Shares delivered by an assignment or exercise, at the strike, no fees.

      assigned  sold put   → buy      sold call  → sell
      exercised long call  → buy      long put   → sell
    """
    if close_type not in (ST_ASSIGNED, ST_EXERCISED):
        return None
    shares = contracts * CONTRACT_MULTIPLIER
    buying = (position.option_type == 'put') == (close_type == ST_ASSIGNED)
    return StockTransaction(
        account_id      = position.account_id,
        ticker          = position.ticker,
        action          = ACT_BUY if buying else ACT_SELL,
        shares          = float(shares),
        price_per_share = position.strike_price,
        total_amount    = shares * position.strike_price,
        fees            = 0.0,
        date            = close_date,
        notes           = '%s from %s: %d %s contract(s) at $%.2f strike' % (
            'Assigned' if close_type == ST_ASSIGNED else 'Exercised',
            position.strategy, contracts, position.option_type, position.strike_price),
    )
