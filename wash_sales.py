"""
TradeLedger — Wash Sale Detector
=================================
Advisory scan of the transaction log for loss sales with a repurchase of
the same ticker within ±WASH_SALE_WINDOW_DAYS calendar days (inclusive).
Matching is by ticker across every account. Results never block a
transaction — the ledger returns them alongside a successful add.

Public API
----------
  detect_stock_wash_sale(transactions, target_id)   → WashSaleInfo | None
  detect_option_wash_sale(transactions, target_id)  → WashSaleInfo | None
  stock_sale_loss(df, sell_row)                     → float  (> 0 means a loss)
  scan_wash_sales(stock_txs, option_txs)            → DataFrame
"""

from __future__ import annotations

import logging
from typing import Optional

import pandas as pd

from config import (
    ACT_BUY, ACT_SELL,
    OPENING_ACTIONS, CLOSING_ACTIONS,
    WASH_SALE_WINDOW_DAYS,
)
from ingestion import stock_frame, option_frame
from models import StockTransaction, OptionTransaction, WashSaleInfo

log = logging.getLogger(__name__)

_WINDOW = pd.Timedelta(days=WASH_SALE_WINDOW_DAYS)

SCAN_COLUMNS = ['Id', 'Ticker', 'Kind', 'Date', 'Loss', 'Window Start', 'Window End', 'Related']


def _in_window(dates: pd.Series, start: pd.Timestamp, end: pd.Timestamp) -> pd.Series:
    return (dates >= start) & (dates <= end)


# ── Stock ─────────────────────────────────────────────────────────────────────

def stock_sale_loss(df: pd.DataFrame, sell_row: pd.Series) -> float:
    """
    Loss on a sell measured against the most recent earlier buy of the ticker.

    Cost basis = that buy's price per share × shares sold; proceeds = sale
    price × shares sold. Same-date buys are not "prior". When several buys
    share the latest date the last one in store order wins.
    Returns basis − proceeds (positive = loss), or 0.0 with no prior buy.
    """
    prior = df[
        (df['Ticker'] == sell_row['Ticker']) &
        (df['Action'] == ACT_BUY) &
        (df['Date'] < sell_row['Date'])
    ]
    if prior.empty:
        return 0.0
    latest   = prior.sort_values('Date', kind='stable').iloc[-1]
    basis    = latest['Price'] * sell_row['Shares']
    proceeds = sell_row['Price'] * sell_row['Shares']
    return basis - proceeds


def _stock_wash(df: pd.DataFrame, target_id: str) -> Optional[WashSaleInfo]:
    match = df[df['Id'] == target_id]
    if match.empty:
        return None
    row   = match.iloc[0]
    start = row['Date'] - _WINDOW
    end   = row['Date'] + _WINDOW
    nearby = df[
        (df['Id'] != target_id) &
        (df['Ticker'] == row['Ticker']) &
        _in_window(df['Date'], start, end)
    ]

    if row['Action'] == ACT_BUY:
        # Buying back: any loss sale in the window taints this purchase.
        # Each sell is judged by exactly the same test as the sell-side check
        # below, so the flag is symmetric.
        losses = [(s['Id'], stock_sale_loss(df, s))
                  for _, s in nearby[nearby['Action'] == ACT_SELL].iterrows()]
        losses = [(sid, loss) for sid, loss in losses if loss > 0]
        if not losses:
            return None
        return WashSaleInfo(
            transaction_id          = target_id,
            ticker                  = row['Ticker'],
            loss_amount             = sum(loss for _, loss in losses),
            wash_sale_period_start  = start,
            wash_sale_period_end    = end,
            has_wash_sale           = True,
            related_transaction_ids = tuple(sid for sid, _ in losses),
        )

    if row['Action'] == ACT_SELL:
        loss = stock_sale_loss(df, row)
        if loss <= 0:
            return None
        buys = nearby[nearby['Action'] == ACT_BUY]
        if buys.empty:
            return None
        return WashSaleInfo(
            transaction_id          = target_id,
            ticker                  = row['Ticker'],
            loss_amount             = loss,
            wash_sale_period_start  = start,
            wash_sale_period_end    = end,
            has_wash_sale           = True,
            related_transaction_ids = tuple(buys['Id']),
        )

    return None


def detect_stock_wash_sale(transactions: list[StockTransaction],
                           target_id: str) -> Optional[WashSaleInfo]:
    """
    Sell at a loss → flag if any other buy of the ticker is within the window.
    Buy            → flag if any sell of the ticker within the window was a loss.
    Dividends, splits and transfers are never flagged.
    """
    return _stock_wash(stock_frame(transactions), target_id)


# ── Options ───────────────────────────────────────────────────────────────────

def _option_wash(df: pd.DataFrame, target_id: str) -> Optional[WashSaleInfo]:
    match = df[df['Id'] == target_id]
    if match.empty:
        return None
    row = match.iloc[0]
    pl  = row['Realized PL']
    if row['Action'] not in CLOSING_ACTIONS or pd.isna(pl) or pl >= 0:
        return None

    start = row['Date'] - _WINDOW
    end   = row['Date'] + _WINDOW
    # Coarse: same ticker and type is enough; strike and expiration are not compared.
    related = df[
        (df['Id'] != target_id) &
        (df['Ticker'] == row['Ticker']) &
        (df['Call or Put'] == row['Call or Put']) &
        df['Action'].isin(OPENING_ACTIONS) &
        _in_window(df['Date'], start, end)
    ]
    return WashSaleInfo(
        transaction_id          = target_id,
        ticker                  = row['Ticker'],
        loss_amount             = abs(float(pl)),
        wash_sale_period_start  = start,
        wash_sale_period_end    = end,
        has_wash_sale           = not related.empty,
        related_transaction_ids = tuple(related['Id']),
    )


def detect_option_wash_sale(transactions: list[OptionTransaction],
                            target_id: str) -> Optional[WashSaleInfo]:
    """
    Only losing closing legs are candidates. Returns an info object for
    every losing close (has_wash_sale False when nothing was reopened
    nearby), None for anything else.
    """
    return _option_wash(option_frame(transactions), target_id)


# ── Whole-ledger scan ─────────────────────────────────────────────────────────

def scan_wash_sales(stock_txs: list[StockTransaction],
                    option_txs: list[OptionTransaction]) -> pd.DataFrame:
    """
    Every loss sale (stock sells and losing option closes) that trips the
    rule, one row each. Buys are not listed separately — they appear in
    the Related column of the sale they taint.
    """
    rows = []
    sdf = stock_frame(stock_txs)
    for sid in sdf.loc[sdf['Action'] == ACT_SELL, 'Id']:
        info = _stock_wash(sdf, sid)
        if info is not None:
            rows.append((info, 'stock'))
    odf = option_frame(option_txs)
    for oid in odf.loc[odf['Action'].isin(CLOSING_ACTIONS), 'Id']:
        info = _option_wash(odf, oid)
        if info is not None and info.has_wash_sale:
            rows.append((info, 'option'))

    if not rows:
        return pd.DataFrame(columns=SCAN_COLUMNS)
    dates = dict(zip(sdf['Id'], sdf['Date'])) | dict(zip(odf['Id'], odf['Date']))
    out = pd.DataFrame([{
        'Id':           i.transaction_id,
        'Ticker':       i.ticker,
        'Kind':         kind,
        'Date':         dates[i.transaction_id],
        'Loss':         i.loss_amount,
        'Window Start': i.wash_sale_period_start,
        'Window End':   i.wash_sale_period_end,
        'Related':      ', '.join(i.related_transaction_ids),
    } for i, kind in rows], columns=SCAN_COLUMNS)
    log.info('Wash-sale scan flagged %d sale(s)', len(out))
    return out.sort_values('Date', kind='stable').reset_index(drop=True)
