"""
TradeLedger — Input Validation
===============================
Field-level checks for ledger rows before they are stored. Returns errors
(blocking) and warnings (advisory) — never raises. The ledger turns a
non-empty error list into a TransactionValidationError.

Public API
----------
  validate_stock_transaction(tx, account_ids, today)    → ValidationResult
  validate_option_transaction(tx, account_ids, today)   → ValidationResult
  parse_split_ratio(text)                               → float | None
  stock_fingerprint(tx) / option_fingerprint(tx)        → str
  find_duplicate_stock(tx, existing)                    → list[StockTransaction]
  find_duplicate_options(tx, existing)                  → list[OptionTransaction]
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Collection, NamedTuple, Optional

import pandas as pd

from config import (
    STOCK_ACTIONS, SHARE_ADD_ACTIONS, SHARE_REMOVE_ACTIONS, ACT_SPLIT,
    OPTION_ACTIONS, OPENING_ACTIONS, OPTION_TYPES, OPTION_STATUSES, OPTION_STRATEGIES,
    CONTRACT_MULTIPLIER,
    TICKER_PATTERN, SPLIT_RATIO_PATTERN,
    PRICE_WARN_THRESHOLD, EXPIRATION_WARN_YEARS,
)
from ingestion import today as _today
from models import StockTransaction, OptionTransaction

_TICKER_RE = re.compile(TICKER_PATTERN)
_SPLIT_RE  = re.compile(SPLIT_RATIO_PATTERN)


class FieldIssue(NamedTuple):
    field:   str
    message: str

    def __str__(self) -> str:
        return f'{self.field}: {self.message}'


@dataclass
class ValidationResult:
    errors:   list[FieldIssue] = field(default_factory=list)
    warnings: list[FieldIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def error(self, fld: str, msg: str) -> None:
        self.errors.append(FieldIssue(fld, msg))

    def warn(self, fld: str, msg: str) -> None:
        self.warnings.append(FieldIssue(fld, msg))


def _is_day(value) -> bool:
    return isinstance(value, pd.Timestamp) and not pd.isna(value)


def parse_split_ratio(text: Optional[str]) -> Optional[float]:
    """'new:old' → new/old, e.g. '2:1' → 2.0 and '1:10' → 0.1. None if malformed."""
    if not text or not _SPLIT_RE.match(text):
        return None
    new, old = (int(p) for p in text.split(':'))
    if new <= 0 or old <= 0:
        return None
    return new / old


def _check_common(res: ValidationResult, account_id: str, ticker: str,
                  account_ids: Collection[str]) -> None:
    if account_id not in account_ids:
        res.error('account_id', 'Account does not exist')
    if not ticker or not _TICKER_RE.match(ticker):
        res.error('ticker', 'Invalid ticker format (must be 1-5 uppercase letters)')


# ── Stock ─────────────────────────────────────────────────────────────────────

def validate_stock_transaction(tx: StockTransaction, account_ids: Collection[str],
                               today: Optional[pd.Timestamp] = None) -> ValidationResult:
    today = today if today is not None else _today()
    res = ValidationResult()
    _check_common(res, tx.account_id, tx.ticker, account_ids)

    if tx.action not in STOCK_ACTIONS:
        res.error('action', f"Unknown stock action '{tx.action}'")

    # Dividends and splits carry no share quantity of their own.
    if tx.action in SHARE_ADD_ACTIONS + SHARE_REMOVE_ACTIONS and not tx.shares > 0:
        res.error('shares', 'Shares must be greater than 0')
    elif tx.shares < 0:
        res.error('shares', 'Shares cannot be negative')

    if tx.price_per_share < 0:
        res.error('price_per_share', 'Price per share cannot be negative')
    if tx.total_amount < 0:
        res.error('total_amount', 'Total amount cannot be negative')
    if tx.fees < 0:
        res.error('fees', 'Fees cannot be negative')

    if not _is_day(tx.date):
        res.error('date', 'Invalid date format')
    elif tx.date > today:
        res.warn('date', 'Transaction date is in the future')

    if tx.action == ACT_SPLIT and parse_split_ratio(tx.split_ratio) is None:
        res.error('split_ratio', 'Split ratio must be in format "new:old" (e.g., "2:1")')

    if tx.price_per_share > PRICE_WARN_THRESHOLD:
        res.warn('price_per_share', f'Price per share is unusually high (>${PRICE_WARN_THRESHOLD:,})')
    return res


# ── Options ───────────────────────────────────────────────────────────────────

def validate_option_transaction(tx: OptionTransaction, account_ids: Collection[str],
                                today: Optional[pd.Timestamp] = None) -> ValidationResult:
    today = today if today is not None else _today()
    res = ValidationResult()
    _check_common(res, tx.account_id, tx.ticker, account_ids)

    if tx.action not in OPTION_ACTIONS:
        res.error('action', f"Unknown option action '{tx.action}'")
    if tx.option_type not in OPTION_TYPES:
        res.error('option_type', "Option type must be 'call' or 'put'")
    if tx.status not in OPTION_STATUSES:
        res.error('status', f"Unknown option status '{tx.status}'")
    if tx.strategy not in OPTION_STRATEGIES:
        res.warn('strategy', f"Unrecognised strategy '{tx.strategy}'")

    if not isinstance(tx.contracts, int) or tx.contracts <= 0:
        res.error('contracts', 'Contracts must be a whole number greater than 0')
    if not tx.strike_price > 0:
        res.error('strike_price', 'Strike price must be greater than 0')
    if tx.premium_per_share < 0:
        res.error('premium_per_share', 'Premium per share cannot be negative')
    if tx.total_premium < 0:
        res.error('total_premium', 'Total premium cannot be negative')
    if tx.fees < 0:
        res.error('fees', 'Fees cannot be negative')
    if tx.collateral_required is not None and tx.collateral_required < 0:
        res.error('collateral_required', 'Collateral cannot be negative')

    tx_ok = _is_day(tx.transaction_date)
    if not tx_ok:
        res.error('transaction_date', 'Invalid transaction date format')
    elif tx.transaction_date > today:
        res.warn('transaction_date', 'Transaction date is in the future')

    if not _is_day(tx.expiration_date):
        res.error('expiration_date', 'Invalid expiration date format')
    else:
        # Closing legs may be booked after expiry (expired / assigned recorded late).
        if tx_ok and tx.action in OPENING_ACTIONS and tx.expiration_date < tx.transaction_date:
            res.error('expiration_date', 'Expiration date cannot be before transaction date')
        if tx.expiration_date > today + pd.DateOffset(years=EXPIRATION_WARN_YEARS):
            res.warn('expiration_date',
                     f'Expiration date is more than {EXPIRATION_WARN_YEARS} years in the future')

    if tx.close_date is not None and tx_ok and _is_day(tx.close_date) \
            and tx.close_date < tx.transaction_date:
        res.error('close_date', 'Close date cannot be before transaction date')

    if tx.strike_price > PRICE_WARN_THRESHOLD:
        res.warn('strike_price', f'Strike price is unusually high (>${PRICE_WARN_THRESHOLD:,})')
    if tx.premium_per_share > tx.strike_price > 0:
        res.warn('premium_per_share', 'Premium is higher than strike price (unusual)')

    expected = tx.contracts * CONTRACT_MULTIPLIER * tx.premium_per_share \
        if isinstance(tx.contracts, int) else tx.total_premium
    if abs(expected - tx.total_premium) > 0.01:
        res.warn('total_premium',
                 'Total premium %.2f does not equal contracts × %d × premium (%.2f)'
                 % (tx.total_premium, CONTRACT_MULTIPLIER, expected))
    return res


# ── Duplicate detection ───────────────────────────────────────────────────────
# Fingerprints cover the economic fields only; id, notes and status are
# ignored so a re-imported statement row matches the stored one.

def stock_fingerprint(tx: StockTransaction) -> str:
    return '|'.join(str(v) for v in (
        tx.account_id, tx.ticker, tx.action, tx.date.strftime('%Y-%m-%d'),
        tx.shares, tx.price_per_share, tx.total_amount,
    ))


def option_fingerprint(tx: OptionTransaction) -> str:
    return '|'.join(str(v) for v in (
        tx.account_id, tx.ticker, tx.option_type, tx.action,
        tx.transaction_date.strftime('%Y-%m-%d'), tx.contracts, tx.strike_price,
        tx.expiration_date.strftime('%Y-%m-%d'), tx.premium_per_share,
    ))


def find_duplicate_stock(tx: StockTransaction,
                         existing: list[StockTransaction]) -> list[StockTransaction]:
    fp = stock_fingerprint(tx)
    return [t for t in existing if t.id != tx.id and stock_fingerprint(t) == fp]


def find_duplicate_options(tx: OptionTransaction,
                           existing: list[OptionTransaction]) -> list[OptionTransaction]:
    fp = option_fingerprint(tx)
    return [t for t in existing if t.id != tx.id and option_fingerprint(t) == fp]
