"""
TradeLedger — Data Models
==========================
Single source of truth for all dataclasses and named tuples used across
the ledger. No I/O — fully importable from any module including tests and
ingestion.

Classes
-------
  Account                 Investment account with its running cash balance
  StockTransaction        One stock ledger row (buy, sell, dividend, split, transfer)
  OptionTransaction       One option ledger row (open / close leg)
  StockTransactionPatch   All-optional update struct for a StockTransaction
  OptionTransactionPatch  All-optional update struct for an OptionTransaction
  StockPosition           Derived holding per (account, ticker)
  OptionPosition          Derived contract position per (account, ticker, strike, expiration, type)
  RealizedSale            One realized stock disposal from the average-cost fold
  WashSaleInfo            Advisory wash-sale flag
  OptionsAnalytics        Option summary statistics
  StockAnalytics          Stock summary statistics
  PortfolioSummary        Cash / collateral / value roll-up across accounts
  TaxSummary              Realized P&L split by tax term
  Ok / NotFound / Invalid Tagged result returned by lookups and the close workflow
  Receipt                 Result of a successful add / update
  CloseOutcome            Result of a successful close_position()
  LedgerSnapshot          The persisted {accounts, stock, options} bundle
  ParsedTransaction       Stock candidate from an external statement parser
  ParsedOptionTransaction Option candidate from an external statement parser
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, NamedTuple, Optional, Union

import pandas as pd

StockAction  = Literal['buy', 'sell', 'dividend', 'split', 'transfer-in', 'transfer-out']
OptionAction = Literal['sell-to-open', 'buy-to-open', 'buy-to-close', 'sell-to-close']
OptionStatus = Literal['open', 'closed', 'expired', 'assigned', 'exercised']
OptionType   = Literal['call', 'put']
AccountType  = Literal['brokerage', 'retirement', 'margin', 'cash', 'other']

# (account_id, ticker, strike_price, expiration_date, option_type)
OptionKey = tuple[str, str, float, pd.Timestamp, str]


# ── Accounts ──────────────────────────────────────────────────────────────────

@dataclass
class Account:
    """
    An investment account.

    current_cash is only ever changed by the ledger's cash updater.
    initial_cash is the fixed reference point for portfolio P&L.
    """
    id:             str
    name:           str
    type:           AccountType = 'brokerage'
    broker:         str = ''
    initial_cash:   float = 0.0
    current_cash:   float = 0.0
    currency:       str = 'USD'
    is_active:      bool = True
    created_date:   Optional[pd.Timestamp] = None
    account_number: Optional[str] = None
    notes:          Optional[str] = None


# ── Ledger rows ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StockTransaction:
    """
    One stock ledger row. Frozen — edits go through apply_stock_patch().

    Fields
    ------
    account_id       Owning account
    ticker           Upper-case symbol, e.g. 'AAPL'
    action           buy | sell | dividend | split | transfer-in | transfer-out
    shares           Share count (>= 0; unused for dividends and splits)
    price_per_share  Execution price
    total_amount     shares × price for trades, cash received for dividends
    fees             Commissions + fees (>= 0)
    date             Trade date (normalized Timestamp)
    split_ratio      'new:old' for splits, e.g. '2:1'
    id               Assigned by the ledger on add when empty
    """
    account_id:      str
    ticker:          str
    action:          StockAction
    shares:          float
    price_per_share: float
    total_amount:    float
    fees:            float
    date:            pd.Timestamp
    split_ratio:     Optional[str] = None
    notes:           Optional[str] = None
    company_name:    Optional[str] = None
    id:              str = ''


@dataclass(frozen=True)
class OptionTransaction:
    """
    One option ledger row — an opening leg, a closing leg, or a complete
    historical trade recorded as a single opening row with a terminal status.

    total_premium is always contracts × CONTRACT_MULTIPLIER × premium_per_share
    and is unsigned; direction comes from action.
    """
    account_id:        str
    ticker:            str
    strategy:          str
    option_type:       OptionType
    action:            OptionAction
    contracts:         int
    strike_price:      float
    premium_per_share: float
    total_premium:     float
    fees:              float
    expiration_date:   pd.Timestamp
    transaction_date:  pd.Timestamp
    status:            OptionStatus = 'open'
    close_date:        Optional[pd.Timestamp] = None
    close_price:       Optional[float] = None
    realized_pl:       Optional[float] = None
    collateral_required: Optional[float] = None
    collateral_released: bool = False
    linked_stock_transaction_id: Optional[str] = None
    notes:             Optional[str] = None
    id:                str = ''

    @property
    def key(self) -> OptionKey:
        return (self.account_id, self.ticker, self.strike_price,
                self.expiration_date, self.option_type)


# ── Patches ───────────────────────────────────────────────────────────────────
# None means "leave unchanged". Merging and re-derivation of totals happens in
# mechanics.apply_stock_patch() / apply_option_patch(); the ledger re-validates
# the merged record before storing it.

@dataclass
class StockTransactionPatch:
    account_id:      Optional[str] = None
    ticker:          Optional[str] = None
    action:          Optional[StockAction] = None
    shares:          Optional[float] = None
    price_per_share: Optional[float] = None
    total_amount:    Optional[float] = None
    fees:            Optional[float] = None
    date:            Optional[pd.Timestamp] = None
    split_ratio:     Optional[str] = None
    notes:           Optional[str] = None
    company_name:    Optional[str] = None


@dataclass
class OptionTransactionPatch:
    account_id:        Optional[str] = None
    ticker:            Optional[str] = None
    strategy:          Optional[str] = None
    option_type:       Optional[OptionType] = None
    action:            Optional[OptionAction] = None
    contracts:         Optional[int] = None
    strike_price:      Optional[float] = None
    premium_per_share: Optional[float] = None
    total_premium:     Optional[float] = None
    fees:              Optional[float] = None
    expiration_date:   Optional[pd.Timestamp] = None
    transaction_date:  Optional[pd.Timestamp] = None
    status:            Optional[OptionStatus] = None
    close_date:        Optional[pd.Timestamp] = None
    close_price:       Optional[float] = None
    realized_pl:       Optional[float] = None
    collateral_required: Optional[float] = None
    collateral_released: Optional[bool] = None
    notes:             Optional[str] = None


# ── Derived positions ─────────────────────────────────────────────────────────

@dataclass
class StockPosition:
    """
    Current holding for one (account, ticker). Never persisted.

    Invariant: total_cost_basis == shares × average_cost_basis.
    Market fields stay None until analytics.mark_to_market() fills them.
    """
    account_id:            str
    ticker:                str
    shares:                float
    average_cost_basis:    float
    total_cost_basis:      float
    first_purchase_date:   pd.Timestamp
    last_transaction_date: pd.Timestamp
    transaction_ids:       list[str] = field(default_factory=list)
    current_price:         Optional[float] = None
    market_value:          Optional[float] = None
    unrealized_pl:         Optional[float] = None
    unrealized_pl_percent: Optional[float] = None


@dataclass
class OptionPosition:
    """
    Contract position for one lifecycle of an option key.

    id is the id of the opening transaction that started the lifecycle.
    A position with contracts == 0 and status != 'open' is terminal —
    kept for history, excluded from open views.

    total_premium, open_fees and collateral_required describe the contracts
    still outstanding: a partial close scales all three down pro rata, so the
    next close attributes exactly its share of what is left. realized_pl is
    None while open and, once terminal, the final closing leg's P&L; earlier
    partial closes keep theirs on their own closing rows.
    """
    id:                  str
    account_id:          str
    ticker:              str
    strategy:            str
    option_type:         OptionType
    strike_price:        float
    expiration_date:     pd.Timestamp
    contracts:           int
    average_premium:     float
    total_premium:       float
    status:              OptionStatus
    open_date:           pd.Timestamp
    open_action:         OptionAction = 'sell-to-open'
    open_fees:           float = 0.0
    collateral_required: float = 0.0
    close_date:          Optional[pd.Timestamp] = None
    realized_pl:         Optional[float] = None
    transaction_ids:     list[str] = field(default_factory=list)

    @property
    def key(self) -> OptionKey:
        return (self.account_id, self.ticker, self.strike_price,
                self.expiration_date, self.option_type)

    @property
    def is_open(self) -> bool:
        return self.status == 'open'


@dataclass(frozen=True)
class RealizedSale:
    """
    One stock sale realized against the average-cost basis.

    short_term_shares + long_term_shares == shares. Cost is split between
    the two terms pro rata by shares.
    """
    transaction_id:    str
    account_id:        str
    ticker:            str
    date:              pd.Timestamp
    shares:            float
    proceeds:          float
    cost_basis:        float
    short_term_shares: float
    long_term_shares:  float

    @property
    def realized_pl(self) -> float:
        return self.proceeds - self.cost_basis

    @property
    def long_term_pl(self) -> float:
        if self.shares <= 0:
            return 0.0
        return self.realized_pl * (self.long_term_shares / self.shares)

    @property
    def short_term_pl(self) -> float:
        return self.realized_pl - self.long_term_pl


@dataclass(frozen=True)
class WashSaleInfo:
    transaction_id:          str
    ticker:                  str
    loss_amount:             float
    wash_sale_period_start:  pd.Timestamp
    wash_sale_period_end:    pd.Timestamp
    has_wash_sale:           bool
    related_transaction_ids: tuple[str, ...] = ()


# ── Analytics output ──────────────────────────────────────────────────────────

@dataclass
class OptionsAnalytics:
    """All rates are percentages (0–100). Every ratio is 0 when its denominator is 0."""
    total_premium_collected:  float
    total_premium_paid:       float
    net_premium:              float
    win_rate:                 float
    average_return_per_trade: float
    annualized_return:        float
    assignment_rate:          float
    average_days_to_close:    float
    collateral_efficiency:    float
    active_collateral:        float
    projected_premium:        float


@dataclass
class StockAnalytics:
    total_stock_value:      float
    total_cost_basis:       float
    total_unrealized_pl:    float
    total_realized_pl:      float
    average_holding_period: float
    position_count:         int


@dataclass
class PortfolioSummary:
    """
    total_cash includes cash reserved as collateral; available_cash does not.
    total_pl is measured against the sum of initial_cash over accounts.
    """
    total_value:          float
    total_cash:           float
    available_cash:       float
    active_collateral:    float
    total_invested:       float
    total_pl:             float
    total_pl_percent:     float
    stock_value:          float
    option_premium_value: float


@dataclass
class TaxSummary:
    short_term_stock_pl: float
    long_term_stock_pl:  float
    option_pl:           float
    short_term_total:    float
    estimated_tax:       float
    dividends:           float = 0.0


# ── Tagged results ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Ok:
    value: Any = None
    is_ok: ClassVar[bool] = True


@dataclass(frozen=True)
class NotFound:
    reason: str
    is_ok: ClassVar[bool] = False


@dataclass(frozen=True)
class Invalid:
    reason: str
    is_ok: ClassVar[bool] = False


Result = Union[Ok, NotFound, Invalid]


class Receipt(NamedTuple):
    """
    Returned from a successful add / update.

    Fields
    ------
    id          Id of the stored transaction
    warnings    Advisory validation messages (never blocking)
    wash_sale   WashSaleInfo when the transaction trips the wash-sale check
    """
    id:        str
    warnings:  list[str]
    wash_sale: Optional[WashSaleInfo]


class CloseOutcome(NamedTuple):
    closing_transaction: OptionTransaction
    stock_transaction:   Optional[StockTransaction]
    realized_pl:         float
    wash_sale:           Optional[WashSaleInfo]


class LedgerSnapshot(NamedTuple):
    """The persisted state — everything else is derived from it."""
    accounts:            list[Account]
    stock_transactions:  list[StockTransaction]
    option_transactions: list[OptionTransaction]


# ── Statement-parser candidates ───────────────────────────────────────────────

class ParsedTransaction(NamedTuple):
    date:            pd.Timestamp
    ticker:          str
    action:          Literal['buy', 'sell']
    shares:          float
    price_per_share: float
    fees:            float = 0.0
    notes:           Optional[str] = None


class ParsedOptionTransaction(NamedTuple):
    date:              pd.Timestamp
    ticker:            str
    option_type:       OptionType
    action:            OptionAction
    contracts:         int
    strike_price:      float
    premium_per_share: float
    expiration_date:   pd.Timestamp
    fees:              float = 0.0
    notes:             Optional[str] = None
