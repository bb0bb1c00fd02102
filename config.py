"""
TradeLedger — Configuration & Constants
========================================
All tuneable parameters and ledger vocabulary live here.
Change a value once and it applies everywhere.
"""

import os

# ── Environment overrides ─────────────────────────────────────────────────────
# Read once at import. The snapshot path is only a default; Ledger.from_file()
# accepts any path.
DATA_PATH = os.environ.get('TRADELEDGER_DATA', 'tradeledger.json')
LOG_LEVEL = os.environ.get('TRADELEDGER_LOG_LEVEL', 'INFO').upper()

# ── Stock transaction actions ─────────────────────────────────────────────────
ACT_BUY          = 'buy'
ACT_SELL         = 'sell'
ACT_DIVIDEND     = 'dividend'
ACT_SPLIT        = 'split'
ACT_TRANSFER_IN  = 'transfer-in'
ACT_TRANSFER_OUT = 'transfer-out'

STOCK_ACTIONS   = [ACT_BUY, ACT_SELL, ACT_DIVIDEND, ACT_SPLIT, ACT_TRANSFER_IN, ACT_TRANSFER_OUT]
SHARE_ADD_ACTIONS    = [ACT_BUY, ACT_TRANSFER_IN]
SHARE_REMOVE_ACTIONS = [ACT_SELL, ACT_TRANSFER_OUT]

# ── Option transaction actions ────────────────────────────────────────────────
STO = 'sell-to-open'
BTO = 'buy-to-open'
BTC = 'buy-to-close'
STC = 'sell-to-close'

OPTION_ACTIONS  = [STO, BTO, BTC, STC]
OPENING_ACTIONS = [STO, BTO]
CLOSING_ACTIONS = [BTC, STC]
CREDIT_ACTIONS  = [STO, STC]     # cash in
DEBIT_ACTIONS   = [BTO, BTC]     # cash out

OPTION_TYPES = ['call', 'put']

# ── Option status values ──────────────────────────────────────────────────────
ST_OPEN      = 'open'
ST_CLOSED    = 'closed'
ST_EXPIRED   = 'expired'
ST_ASSIGNED  = 'assigned'
ST_EXERCISED = 'exercised'

OPTION_STATUSES = [ST_OPEN, ST_CLOSED, ST_EXPIRED, ST_ASSIGNED, ST_EXERCISED]
# Statuses that end a trade. Win rate, assignment rate and annualised return
# are computed over rows carrying one of these.
TERMINAL_STATUSES = [ST_CLOSED, ST_EXPIRED, ST_ASSIGNED, ST_EXERCISED]
CLOSE_TYPES       = TERMINAL_STATUSES

# ── Strategy tags ─────────────────────────────────────────────────────────────
STRAT_CSP = 'cash-secured-put'
STRAT_CC  = 'covered-call'

OPTION_STRATEGIES = [
    STRAT_CSP, STRAT_CC, 'long-call', 'long-put',
    'credit-spread', 'debit-spread', 'iron-condor',
    'straddle', 'strangle', 'other',
]
# Short-premium strategies whose sell-to-open credit lowers the effective
# cost basis of the underlying shares (premium-adjusted basis view).
BASIS_REDUCING_STRATEGIES = [STRAT_CSP, STRAT_CC]

# ── Accounts ──────────────────────────────────────────────────────────────────
ACCOUNT_TYPES = ['brokerage', 'retirement', 'margin', 'cash', 'other']
# Margin accounts may borrow, so buying-power checks are skipped for them.
MARGIN_ACCOUNT_TYPES = {'margin'}
DEFAULT_CURRENCY = 'USD'

# Reject buys / cash-secured puts that exceed available cash in non-margin
# accounts. Set TRADELEDGER_ENFORCE_BUYING_POWER=0 to record trades that the
# broker allowed on credit the ledger doesn't know about.
ENFORCE_BUYING_POWER = os.environ.get('TRADELEDGER_ENFORCE_BUYING_POWER', '1') != '0'

# ── Contract arithmetic ───────────────────────────────────────────────────────
# Standard equity option contract size. Used for total premium, collateral
# and the share count of an assignment / exercise stock leg.
CONTRACT_MULTIPLIER = 100

# ── Share arithmetic precision ────────────────────────────────────────────────
# Floating-point epsilon used to test whether a share quantity is effectively
# zero. Positions below this threshold are treated as fully sold and removed.
# Also used as the rounding precision for share and cash arithmetic so
# accumulated floating-point error doesn't leave ghost positions or drift
# the cash balance after many add/delete cycles.
QTY_EPSILON  = 1e-9
QTY_ROUND    = 9
MONEY_EPSILON_ROUND = 9

# ── Wash sale rule ────────────────────────────────────────────────────────────
# Calendar days before AND after a loss sale in which a purchase of the same
# ticker makes the loss a (potential) wash sale. Inclusive on both ends.
WASH_SALE_WINDOW_DAYS = 30

# ── Tax terms ─────────────────────────────────────────────────────────────────
# Shares held at least this many days are long-term. Option P&L is always
# treated as short-term.
LONG_TERM_HOLDING_DAYS = 365
DAYS_PER_YEAR          = 365

# Default marginal rates (percent) for the estimated-tax figure only.
DEFAULT_SHORT_TERM_TAX_RATE = 24.0
DEFAULT_LONG_TERM_TAX_RATE  = 15.0

# ── Validation ────────────────────────────────────────────────────────────────
TICKER_PATTERN      = r'^[A-Z]{1,5}$'
SPLIT_RATIO_PATTERN = r'^\d+:\d+$'

# Warning thresholds. These never block a transaction.
PRICE_WARN_THRESHOLD   = 10_000
EXPIRATION_WARN_YEARS  = 2
