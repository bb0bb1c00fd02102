"""
TradeLedger — Data Ingestion
=============================
Snapshot (de)serialisation, statement-parser candidate conversion and
tabular views of the ledger. No ledger state lives here — fully importable
and testable on its own.

Public API
----------
  load_snapshot(data)                   → LedgerSnapshot
  dump_snapshot(snapshot)               → str (JSON)
  read_snapshot_file(path)              → LedgerSnapshot
  write_snapshot_file(path, snapshot)   → None   (atomic replace)
  determine_option_action(category, …)  → (action, confidence, reasoning)
  infer_strategy(option_type, action)   → strategy tag
  candidate_to_stock(candidate, acct)   → StockTransaction
  candidate_to_option(candidate, acct)  → OptionTransaction
  stock_frame(transactions)             → DataFrame
  option_frame(transactions)            → DataFrame
  export_transactions_csv(snapshot)     → (stock_csv, option_csv)

Internal helpers (also importable for use in analysis functions)
  as_day(value)                         → normalized Timestamp
  iso(ts)                               → 'YYYY-MM-DD' or None
"""

from __future__ import annotations

import json
import logging
import math
import os
from typing import Any, Optional, Union

import pandas as pd

from config import (
    CONTRACT_MULTIPLIER,
    STO, BTO, BTC, STC,
    ST_OPEN,
    STRAT_CSP, STRAT_CC,
    DEFAULT_CURRENCY,
)
from models import (
    Account,
    StockTransaction,
    OptionTransaction,
    LedgerSnapshot,
    ParsedTransaction,
    ParsedOptionTransaction,
)

log = logging.getLogger(__name__)


# ── Snapshot parse exceptions ─────────────────────────────────────────────────

class SnapshotParseError(Exception):
    """Base exception for all snapshot loading failures.
    Catch this at the entry point to display a clean user-facing message.
    All subclasses carry a message safe to show directly to the user."""


class SnapshotEncodingError(SnapshotParseError):
    """Snapshot bytes could not be decoded as UTF-8.
    Usually caused by editing the file in a tool that re-saved it in a
    legacy code page."""


class SnapshotStructureError(SnapshotParseError):
    """File is not valid JSON, is not an object, or a record is missing a
    required key."""


class SnapshotDateParseError(SnapshotParseError):
    """A date field is not an ISO-8601 date (YYYY-MM-DD)."""


class SnapshotValueError(SnapshotParseError):
    """A numeric field contains a value that could not be converted to a
    number. Usually caused by manual edits."""


# ── Value helpers ─────────────────────────────────────────────────────────────

def as_day(value: Any) -> pd.Timestamp:
    """Coerce a date-like value to a naive Timestamp at midnight.

    Raises ValueError for anything that isn't a date.
    """
    ts = pd.Timestamp(value)
    if pd.isna(ts):
        raise ValueError(f'not a date: {value!r}')
    if ts.tzinfo is not None:
        ts = ts.tz_convert(None)
    return ts.normalize()


def iso(ts: Optional[pd.Timestamp]) -> Optional[str]:
    return None if ts is None else ts.strftime('%Y-%m-%d')


def today() -> pd.Timestamp:
    return pd.Timestamp.today().normalize()


# ── Snapshot field maps ───────────────────────────────────────────────────────
# (json key, attribute, kind, required). kind drives conversion both ways.

_ACCOUNT_FIELDS = [
    ('id',            'id',             'str',   True),
    ('name',          'name',           'str',   True),
    ('type',          'type',           'str',   False),
    ('broker',        'broker',         'str',   False),
    ('accountNumber', 'account_number', 'str',   False),
    ('initialCash',   'initial_cash',   'float', False),
    ('currentCash',   'current_cash',   'float', False),
    ('currency',      'currency',       'str',   False),
    ('isActive',      'is_active',      'bool',  False),
    ('createdDate',   'created_date',   'date',  False),
    ('notes',         'notes',          'str',   False),
]

_STOCK_FIELDS = [
    ('id',            'id',              'str',   True),
    ('accountId',     'account_id',      'str',   True),
    ('ticker',        'ticker',          'str',   True),
    ('companyName',   'company_name',    'str',   False),
    ('action',        'action',          'str',   True),
    ('shares',        'shares',          'float', True),
    ('pricePerShare', 'price_per_share', 'float', True),
    ('totalAmount',   'total_amount',    'float', True),
    ('fees',          'fees',            'float', False),
    ('date',          'date',            'date',  True),
    ('splitRatio',    'split_ratio',     'str',   False),
    ('notes',         'notes',           'str',   False),
]

_OPTION_FIELDS = [
    ('id',                       'id',                          'str',   True),
    ('accountId',                'account_id',                  'str',   True),
    ('ticker',                   'ticker',                      'str',   True),
    ('strategy',                 'strategy',                    'str',   False),
    ('optionType',               'option_type',                 'str',   True),
    ('action',                   'action',                      'str',   True),
    ('contracts',                'contracts',                   'int',   True),
    ('strikePrice',              'strike_price',                'float', True),
    ('premiumPerShare',          'premium_per_share',           'float', True),
    ('totalPremium',             'total_premium',               'float', True),
    ('fees',                     'fees',                        'float', False),
    ('expirationDate',           'expiration_date',             'date',  True),
    ('transactionDate',          'transaction_date',            'date',  True),
    ('status',                   'status',                      'str',   False),
    ('closeDate',                'close_date',                  'date',  False),
    ('closePrice',               'close_price',                 'float', False),
    ('realizedPL',               'realized_pl',                 'float', False),
    ('collateralRequired',       'collateral_required',         'float', False),
    ('collateralReleased',       'collateral_released',         'bool',  False),
    ('linkedStockTransactionId', 'linked_stock_transaction_id', 'str',   False),
    ('notes',                    'notes',                       'str',   False),
]

# Absent optional keys fall back to the dataclass default, except these.
_DEFAULTS = {'fees': 0.0, 'strategy': 'other', 'currency': DEFAULT_CURRENCY}


def _convert(raw: Any, kind: str, where: str) -> Any:
    if kind == 'date':
        try:
            return as_day(raw)
        except (ValueError, TypeError) as exc:
            raise SnapshotDateParseError(
                f"{where}: '{raw}' is not a valid date. Dates must be ISO-8601 (YYYY-MM-DD)."
            ) from exc
    if kind in ('float', 'int'):
        if isinstance(raw, bool):
            raise SnapshotValueError(f"{where}: expected a number, got {raw!r}.")
        try:
            num = float(raw)
        except (ValueError, TypeError) as exc:
            raise SnapshotValueError(f"{where}: expected a number, got {raw!r}.") from exc
        if not math.isfinite(num):
            raise SnapshotValueError(f"{where}: expected a finite number, got {raw!r}.")
        if kind == 'int':
            if num != int(num):
                raise SnapshotValueError(f"{where}: expected a whole number, got {raw!r}.")
            return int(num)
        return num
    if kind == 'bool':
        return bool(raw)
    return str(raw)


def _record_from_json(obj: Any, fields: list, cls: type, label: str, idx: int) -> Any:
    if not isinstance(obj, dict):
        raise SnapshotStructureError(f"{label}[{idx}] is not an object.")
    kwargs = {}
    for key, attr, kind, required in fields:
        raw = obj.get(key)
        where = f"{label}[{idx}].{key}"
        if raw is None:
            if required:
                raise SnapshotStructureError(f"{where} is required but missing.")
            if key in _DEFAULTS:
                kwargs[attr] = _DEFAULTS[key]
            continue
        kwargs[attr] = _convert(raw, kind, where)
    return cls(**kwargs)


def _record_to_json(record: Any, fields: list) -> dict:
    out = {}
    for key, attr, kind, _required in fields:
        val = getattr(record, attr)
        if val is None:
            continue
        out[key] = iso(val) if kind == 'date' else val
    return out


# ── Snapshot entry points ─────────────────────────────────────────────────────

def load_snapshot(data: Union[str, bytes]) -> LedgerSnapshot:
    """
    Parse a persisted snapshot: {accounts, stockTransactions, optionTransactions}.

    Missing top-level lists are treated as empty; unknown keys are ignored
    (the browser build also stored tags, templates and settings).

    Raises
    ------
    SnapshotEncodingError   — bytes are not valid UTF-8.
    SnapshotStructureError  — not JSON / not an object / required key missing.
    SnapshotDateParseError  — a date field is not ISO-8601.
    SnapshotValueError      — a numeric field is not a number.
    """
    if isinstance(data, bytes):
        try:
            data = data.decode('utf-8')
        except UnicodeDecodeError:
            raise SnapshotEncodingError(
                "Snapshot is not valid UTF-8. Restore it from a backup or re-export it."
            )

    try:
        doc = json.loads(data) if data.strip() else {}
    except json.JSONDecodeError as exc:
        raise SnapshotStructureError(
            f"Could not parse the snapshot as JSON: {exc.msg} (line {exc.lineno})."
        ) from exc

    if not isinstance(doc, dict):
        raise SnapshotStructureError("Snapshot must be a JSON object at the top level.")

    sections = []
    for label, fields, cls in (
        ('accounts',           _ACCOUNT_FIELDS, Account),
        ('stockTransactions',  _STOCK_FIELDS,   StockTransaction),
        ('optionTransactions', _OPTION_FIELDS,  OptionTransaction),
    ):
        items = doc.get(label) or []
        if not isinstance(items, list):
            raise SnapshotStructureError(f"'{label}' must be a list.")
        sections.append([_record_from_json(o, fields, cls, label, i) for i, o in enumerate(items)])

    return LedgerSnapshot(*sections)


def dump_snapshot(snapshot: LedgerSnapshot) -> str:
    doc = {
        'accounts':           [_record_to_json(a, _ACCOUNT_FIELDS) for a in snapshot.accounts],
        'stockTransactions':  [_record_to_json(t, _STOCK_FIELDS)   for t in snapshot.stock_transactions],
        'optionTransactions': [_record_to_json(t, _OPTION_FIELDS)  for t in snapshot.option_transactions],
    }
    return json.dumps(doc, indent=2)


def read_snapshot_file(path: str) -> LedgerSnapshot:
    """Load a snapshot file. A missing file is an empty ledger."""
    if not os.path.exists(path):
        log.info('No snapshot at %s — starting with an empty ledger', path)
        return LedgerSnapshot([], [], [])
    with open(path, 'rb') as fh:
        raw = fh.read()
    try:
        snap = load_snapshot(raw)
    except SnapshotParseError:
        log.error('Failed to load snapshot %s', path)
        raise
    log.info('Loaded %s: %d accounts, %d stock rows, %d option rows', path,
             len(snap.accounts), len(snap.stock_transactions), len(snap.option_transactions))
    return snap


def write_snapshot_file(path: str, snapshot: LedgerSnapshot) -> None:
    """Write the snapshot to path.tmp then rename over path."""
    tmp = f'{path}.tmp'
    with open(tmp, 'w', encoding='utf-8') as fh:
        fh.write(dump_snapshot(snapshot))
    os.replace(tmp, path)


# ── Statement-parser candidates ───────────────────────────────────────────────

def determine_option_action(category: str, action: Optional[str] = None,
                            has_realized_gl: bool = False,
                            description: Optional[str] = None) -> tuple[str, str, str]:
    """
    Best-guess open/close action for a statement row that only says whether
    it was a 'Sale' or a 'Purchase'.

    Returns (action, confidence, reasoning) — confidence is 'high', 'medium'
    or 'low'. Rules, strongest first:
      Sale + 'Short Sale'          → sell-to-open   (high)
      Purchase + 'Cover Short'     → buy-to-close   (high)
      Purchase with realized G/L   → buy-to-close   (medium)
      Sale with realized G/L       → sell-to-close  (medium)
      'open' / 'close' in the description decides   (medium)
      Purchase otherwise           → buy-to-open    (low)
      Sale otherwise               → sell-to-close  (low, ambiguous)
    """
    is_purchase = category == 'Purchase'

    if not is_purchase and action == 'Short Sale':
        return STO, 'high', 'Sale with "Short Sale" action opens a short position'
    if is_purchase and action == 'Cover Short':
        return BTC, 'high', 'Purchase with "Cover Short" action closes a short position'

    if has_realized_gl:
        if is_purchase:
            return BTC, 'medium', 'Purchase with realized G/L closes a short position'
        return STC, 'medium', 'Sale with realized G/L closes a long position'

    if description:
        dsc = description.lower()
        if 'open' in dsc:
            return (BTO if is_purchase else STO), 'medium', '"open" in description'
        if 'clos' in dsc:
            return (BTC if is_purchase else STC), 'medium', '"close" in description'

    if is_purchase:
        return BTO, 'low', 'Purchase without clear indicators, defaulting to buy-to-open'
    return STC, 'low', 'Sale without clear indicators, defaulting to sell-to-close (ambiguous)'


def infer_strategy(option_type: str, action: str) -> str:
    """Single-leg strategy tag from type and direction of the opening side."""
    sold = action in (STO, BTC)      # BTC closes a sold option
    if option_type == 'put':
        return STRAT_CSP if sold else 'long-put'
    return STRAT_CC if sold else 'long-call'


def candidate_to_stock(candidate: ParsedTransaction, account_id: str) -> StockTransaction:
    return StockTransaction(
        account_id      = account_id,
        ticker          = candidate.ticker.strip().upper(),
        action          = candidate.action,
        shares          = float(candidate.shares),
        price_per_share = float(candidate.price_per_share),
        total_amount    = float(candidate.shares) * float(candidate.price_per_share),
        fees            = float(candidate.fees or 0.0),
        date            = as_day(candidate.date),
        notes           = candidate.notes,
    )


def candidate_to_option(candidate: ParsedOptionTransaction, account_id: str,
                        strategy: Optional[str] = None) -> OptionTransaction:
    """
    Build a ledger option row from a parser candidate.

    The status is always 'open' — closing candidates are reconciled by the
    projector against their open position, not by the row's own status.
    Collateral is filled in by the ledger for cash-secured puts.
    """
    contracts = int(candidate.contracts)
    premium   = float(candidate.premium_per_share)
    return OptionTransaction(
        account_id        = account_id,
        ticker            = candidate.ticker.strip().upper(),
        strategy          = strategy or infer_strategy(candidate.option_type, candidate.action),
        option_type       = candidate.option_type,
        action            = candidate.action,
        contracts         = contracts,
        strike_price      = float(candidate.strike_price),
        premium_per_share = premium,
        total_premium     = contracts * CONTRACT_MULTIPLIER * premium,
        fees              = float(candidate.fees or 0.0),
        expiration_date   = as_day(candidate.expiration_date),
        transaction_date  = as_day(candidate.date),
        status            = ST_OPEN,
        notes             = candidate.notes,
    )


# ── Tabular views ─────────────────────────────────────────────────────────────

STOCK_COLUMNS = [
    'Id', 'Account', 'Ticker', 'Action', 'Shares', 'Price', 'Amount',
    'Fees', 'Date', 'Split Ratio',
]

OPTION_COLUMNS = [
    'Id', 'Account', 'Ticker', 'Strategy', 'Call or Put', 'Action',
    'Contracts', 'Strike Price', 'Premium', 'Total Premium', 'Fees',
    'Expiration Date', 'Date', 'Status', 'Close Date', 'Realized PL',
    'Collateral',
]


def stock_frame(transactions: list[StockTransaction]) -> pd.DataFrame:
    """One row per stock transaction, in store order (index = store position)."""
    df = pd.DataFrame([(
        t.id, t.account_id, t.ticker, t.action, t.shares, t.price_per_share,
        t.total_amount, t.fees, t.date, t.split_ratio,
    ) for t in transactions], columns=STOCK_COLUMNS)
    df['Date'] = pd.to_datetime(df['Date'])
    return df


def option_frame(transactions: list[OptionTransaction]) -> pd.DataFrame:
    """
    One row per option transaction, in store order.
    Missing realized P&L / collateral are NaN so pandas aggregations skip them.
    """
    df = pd.DataFrame([(
        t.id, t.account_id, t.ticker, t.strategy, t.option_type, t.action,
        t.contracts, t.strike_price, t.premium_per_share, t.total_premium,
        t.fees, t.expiration_date, t.transaction_date, t.status,
        t.close_date, t.realized_pl, t.collateral_required,
    ) for t in transactions], columns=OPTION_COLUMNS)
    for col in ['Realized PL', 'Collateral']:
        df[col] = pd.to_numeric(df[col], errors='coerce')
    for col in ['Expiration Date', 'Date', 'Close Date']:
        df[col] = pd.to_datetime(df[col])
    return df


def export_transactions_csv(snapshot: LedgerSnapshot) -> tuple[str, str]:
    """(stock_csv, option_csv) with ISO dates — for spreadsheets and backups."""
    s = stock_frame(snapshot.stock_transactions)
    o = option_frame(snapshot.option_transactions)
    return (
        s.to_csv(index=False, date_format='%Y-%m-%d'),
        o.to_csv(index=False, date_format='%Y-%m-%d'),
    )
