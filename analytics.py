"""
TradeLedger — Analytics Aggregator
===================================
Read-only summary statistics over transactions and projected positions.
Every ratio guards its denominator and returns 0 instead of NaN / inf.

Public API
----------
  options_analytics(option_txs, account_id)                 → OptionsAnalytics
  stock_analytics(stock_txs, account_id, prices, as_of)     → StockAnalytics
  portfolio_summary(accounts, stock_txs, option_txs, …)     → PortfolioSummary
  tax_summary(stock_txs, option_txs, year, rates)           → TaxSummary
  mark_to_market(positions, prices)                         → list[StockPosition]
  premium_adjusted_positions(positions, option_txs)         → DataFrame
  daily_realized_pnl(stock_txs, option_txs, start_date)     → DataFrame [Date, PnL]
  monthly_premium(option_txs)                               → DataFrame [Month, Net Premium]
  premium_by_strategy(option_txs)                           → DataFrame [Strategy, Net Premium, Trades]
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Optional

import pandas as pd

from config import (
    STO, BTO, BTC, STC,
    OPENING_ACTIONS, CREDIT_ACTIONS,
    ACT_DIVIDEND,
    ST_ASSIGNED,
    TERMINAL_STATUSES,
    BASIS_REDUCING_STRATEGIES,
    DAYS_PER_YEAR,
    DEFAULT_SHORT_TERM_TAX_RATE, DEFAULT_LONG_TERM_TAX_RATE,
)
from ingestion import option_frame, today
from mechanics import (
    project_option_positions,
    project_stock_positions,
    realized_stock_sales,
    _scoped,
)
from models import (
    Account,
    StockTransaction, OptionTransaction,
    StockPosition,
    OptionsAnalytics, StockAnalytics, PortfolioSummary, TaxSummary,
)


def _ratio(num: float, den: float) -> float:
    return float(num) / float(den) if den > 0 else 0.0


def _signed_premium(df: pd.DataFrame) -> pd.Series:
    """Option cash from premium alone: + for credits, − for debits (fees excluded)."""
    sign = df['Action'].isin(CREDIT_ACTIONS).map({True: 1.0, False: -1.0})
    return df['Total Premium'] * sign


# ── OPTIONS ───────────────────────────────────────────────────────────────────

def _holding_days(df: pd.DataFrame, option_txs: list[OptionTransaction]) -> pd.Series:
    """
    Days from the position's open to each row's close date (NaN without one).

    A closing leg is dated on its close, so its open date comes from the
    lifecycle it belongs to; a single-row historical trade uses its own
    transaction date.
    """
    opened = {tid: p.open_date
              for p in project_option_positions(option_txs)
              for tid in p.transaction_ids}
    open_dates = pd.to_datetime(df['Id'].map(opened)).fillna(df['Date'])
    return (df['Close Date'] - open_dates).dt.days


def options_analytics(option_txs: Iterable[OptionTransaction],
                      account_id: Optional[str] = None) -> OptionsAnalytics:
    """
    Premium, win-rate and collateral statistics.

    Closed rows are those with a terminal status (closed / expired /
    assigned / exercised) — in practice the closing legs plus any
    single-row historical trades. Annualised return is the simple mean of
    per-trade (P&L / collateral) × (365 / max(1, days held)) × 100 over
    closed rows with collateral and a close date. Not capped.
    """
    txs       = _scoped(option_txs, account_id)
    positions = project_option_positions(txs)
    open_pos  = [p for p in positions if p.is_open]
    active_collateral = sum(p.collateral_required for p in open_pos)
    projected_premium = sum(p.total_premium for p in open_pos)

    df = option_frame(txs)
    if df.empty:
        return OptionsAnalytics(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0,
                                active_collateral, projected_premium)

    by_action = df.groupby('Action')['Total Premium'].sum()
    collected = float(by_action.get(STO, 0.0))
    paid      = float(by_action.get(BTO, 0.0))
    net       = collected - paid - float(by_action.get(BTC, 0.0)) + float(by_action.get(STC, 0.0))

    closed   = df[df['Status'].isin(TERMINAL_STATUSES)].copy()
    n_closed = len(closed)
    pl       = closed['Realized PL'].fillna(0.0)
    win_rate = _ratio((pl > 0).sum(), n_closed) * 100
    avg_ret  = _ratio(pl.sum(), n_closed)
    assign_rate = _ratio((closed['Status'] == ST_ASSIGNED).sum(), n_closed) * 100

    closed['Days'] = _holding_days(closed, txs)
    dated    = closed[closed['Close Date'].notna()]
    avg_days = float(dated['Days'].mean()) if not dated.empty else 0.0

    ann = dated[dated['Collateral'] > 0]
    if ann.empty:
        ann_return = 0.0
    else:
        days = ann['Days'].round().clip(lower=1)
        per_trade = (ann['Realized PL'].fillna(0.0) / ann['Collateral']) * (DAYS_PER_YEAR / days) * 100
        ann_return = float(per_trade.mean())

    opening_collateral = df.loc[df['Action'].isin(OPENING_ACTIONS), 'Collateral'].fillna(0.0).sum()
    efficiency = _ratio(collected, opening_collateral) * 100

    return OptionsAnalytics(
        total_premium_collected  = collected,
        total_premium_paid       = paid,
        net_premium              = net,
        win_rate                 = win_rate,
        average_return_per_trade = avg_ret,
        annualized_return        = ann_return,
        assignment_rate          = assign_rate,
        average_days_to_close    = avg_days,
        collateral_efficiency    = efficiency,
        active_collateral        = active_collateral,
        projected_premium        = projected_premium,
    )


# ── STOCKS ────────────────────────────────────────────────────────────────────

def mark_to_market(positions: Iterable[StockPosition],
                   prices: Optional[dict[str, float]]) -> list[StockPosition]:
    """Fill market fields from a caller-supplied {ticker: price} map. Unpriced tickers are left as-is."""
    prices = prices or {}
    out = []
    for p in positions:
        px = prices.get(p.ticker)
        if px is None:
            out.append(p)
            continue
        mv = p.shares * px
        out.append(replace(
            p,
            current_price         = px,
            market_value          = mv,
            unrealized_pl         = mv - p.total_cost_basis,
            unrealized_pl_percent = _ratio(mv - p.total_cost_basis, p.total_cost_basis) * 100,
        ))
    return out


def stock_analytics(stock_txs: Iterable[StockTransaction],
                    account_id: Optional[str] = None,
                    prices: Optional[dict[str, float]] = None,
                    as_of: Optional[pd.Timestamp] = None) -> StockAnalytics:
    """
    Holdings value and P&L. Realized P&L comes from the same average-cost
    fold that builds the positions, so the two always agree.
    """
    txs       = _scoped(stock_txs, account_id)
    as_of     = as_of if as_of is not None else today()
    positions = mark_to_market(project_stock_positions(txs), prices)
    sales     = realized_stock_sales(txs)

    value = sum(p.market_value if p.market_value is not None else p.total_cost_basis
                for p in positions)
    held  = [(as_of - p.first_purchase_date).days for p in positions]
    return StockAnalytics(
        total_stock_value      = value,
        total_cost_basis       = sum(p.total_cost_basis for p in positions),
        total_unrealized_pl    = sum(p.unrealized_pl or 0.0 for p in positions),
        total_realized_pl      = sum(s.realized_pl for s in sales),
        average_holding_period = _ratio(sum(held), len(held)),
        position_count         = len(positions),
    )


def premium_adjusted_positions(positions: Iterable[StockPosition],
                               option_txs: Iterable[OptionTransaction]) -> pd.DataFrame:
    """
    Stock positions with cost basis reduced by sell-to-open premium from
    covered calls and cash-secured puts on the same account and ticker.
    The adjusted total never goes below 0.
    """
    pos = pd.DataFrame([{
        'Account':    p.account_id,
        'Ticker':     p.ticker,
        'Shares':     p.shares,
        'Avg Cost':   p.average_cost_basis,
        'Total Cost': p.total_cost_basis,
    } for p in positions], columns=['Account', 'Ticker', 'Shares', 'Avg Cost', 'Total Cost'])

    opts = option_frame(list(option_txs))
    credits = opts[
        (opts['Action'] == STO) & opts['Strategy'].isin(BASIS_REDUCING_STRATEGIES)
    ].groupby(['Account', 'Ticker'])['Total Premium'].sum().rename('Applied Premium').reset_index()

    out = pos.merge(credits, on=['Account', 'Ticker'], how='left')
    out['Applied Premium']     = out['Applied Premium'].fillna(0.0)
    out['Adjusted Total Cost'] = (out['Total Cost'] - out['Applied Premium']).clip(lower=0.0)
    out['Adjusted Avg Cost']   = (out['Adjusted Total Cost'] / out['Shares']).where(out['Shares'] > 0, 0.0)
    return out


# ── PORTFOLIO ─────────────────────────────────────────────────────────────────

def portfolio_summary(accounts: Iterable[Account],
                      stock_txs: Iterable[StockTransaction],
                      option_txs: Iterable[OptionTransaction],
                      account_id: Optional[str] = None,
                      prices: Optional[dict[str, float]] = None) -> PortfolioSummary:
    """
    Cash already includes every premium and has every stock purchase
    deducted, so total value = cash + stock value. Open option premium is
    reported separately and NOT added again. Collateral stays inside
    total_cash and is only subtracted for available_cash.
    """
    accts     = [a for a in accounts if account_id is None or a.id == account_id]
    positions = mark_to_market(project_stock_positions(stock_txs, account_id), prices)
    open_pos  = [p for p in project_option_positions(option_txs, account_id) if p.is_open]

    total_cash = sum(a.current_cash for a in accts)
    collateral = sum(p.collateral_required for p in open_pos)
    stock_val  = sum(p.market_value if p.market_value is not None else p.total_cost_basis
                     for p in positions)
    open_prem  = sum(p.total_premium if p.open_action == STO else -p.total_premium
                     for p in open_pos)
    initial    = sum(a.initial_cash for a in accts)
    total_val  = total_cash + stock_val
    total_pl   = total_val - initial
    return PortfolioSummary(
        total_value          = total_val,
        total_cash           = total_cash,
        available_cash       = total_cash - collateral,
        active_collateral    = collateral,
        total_invested       = initial,
        total_pl             = total_pl,
        total_pl_percent     = _ratio(total_pl, initial) * 100,
        stock_value          = stock_val,
        option_premium_value = open_prem,
    )


# ── TAX ───────────────────────────────────────────────────────────────────────

def tax_summary(stock_txs: Iterable[StockTransaction],
                option_txs: Iterable[OptionTransaction],
                year: Optional[int] = None,
                short_term_rate: float = DEFAULT_SHORT_TERM_TAX_RATE,
                long_term_rate: float = DEFAULT_LONG_TERM_TAX_RATE) -> TaxSummary:
    """
    Realized P&L by tax term for one calendar year (all years when None).

    Stock terms come from the average-cost fold (held >= 365 days is
    long-term). Option P&L is always short-term and is dated by close date.
    Estimated tax only taxes net gains in each bucket — losses contribute 0.
    """
    stock_txs = list(stock_txs)
    sales = [s for s in realized_stock_sales(stock_txs) if year is None or s.date.year == year]
    st = sum(s.short_term_pl for s in sales)
    lt = sum(s.long_term_pl for s in sales)

    odf = option_frame(list(option_txs))
    closed = odf[odf['Status'].isin(TERMINAL_STATUSES) & odf['Realized PL'].notna()]
    if year is not None:
        when   = closed['Close Date'].fillna(closed['Date'])
        closed = closed[when.dt.year == year]
    opt = float(closed['Realized PL'].sum())

    divs = [t for t in stock_txs
            if t.action == ACT_DIVIDEND and (year is None or t.date.year == year)]

    tax = (max(0.0, st * short_term_rate / 100)
           + max(0.0, lt * long_term_rate / 100)
           + max(0.0, opt * short_term_rate / 100))
    return TaxSummary(
        short_term_stock_pl = st,
        long_term_stock_pl  = lt,
        option_pl           = opt,
        short_term_total    = st + opt,
        estimated_tax       = tax,
        dividends           = sum(t.total_amount for t in divs),
    )


# ── TIME SERIES ───────────────────────────────────────────────────────────────

def daily_realized_pnl(stock_txs: Iterable[StockTransaction],
                       option_txs: Iterable[OptionTransaction],
                       start_date: Optional[pd.Timestamp] = None) -> pd.DataFrame:
    """
    Realized P/L by day across the ledger:
      - Stock sells: proceeds − average cost on the sale date
      - Options: realized P&L of each terminal row on its close date
      - Dividends: cash received on the day
    Share purchases are excluded — they are capital deployment, not P/L.
    All history is folded so cost basis is correct; only rows on or after
    start_date are returned.
    """
    stock_txs = list(stock_txs)
    records = [{'Date': s.date, 'PnL': s.realized_pl} for s in realized_stock_sales(stock_txs)]
    records += [{'Date': t.date, 'PnL': t.total_amount}
                for t in stock_txs if t.action == ACT_DIVIDEND]

    odf = option_frame(list(option_txs))
    closed = odf[odf['Status'].isin(TERMINAL_STATUSES) & odf['Realized PL'].notna()]
    opt_rows = pd.DataFrame({
        'Date': closed['Close Date'].fillna(closed['Date']),
        'PnL':  closed['Realized PL'],
    })

    parts = [df for df in (pd.DataFrame(records), opt_rows) if not df.empty]
    if not parts:
        return pd.DataFrame(columns=['Date', 'PnL'])
    daily = pd.concat(parts, ignore_index=True)
    daily['Date'] = pd.to_datetime(daily['Date'])
    if start_date is not None:
        daily = daily[daily['Date'] >= start_date]
    return daily.groupby('Date')['PnL'].sum().reset_index()


def monthly_premium(option_txs: Iterable[OptionTransaction]) -> pd.DataFrame:
    """Net option premium (credits − debits, fees excluded) per transaction month."""
    df = option_frame(list(option_txs))
    if df.empty:
        return pd.DataFrame(columns=['Month', 'Net Premium'])
    df['Net Premium'] = _signed_premium(df)
    df['Month'] = df['Date'].dt.to_period('M').astype(str)
    return df.groupby('Month')['Net Premium'].sum().reset_index()


def premium_by_strategy(option_txs: Iterable[OptionTransaction]) -> pd.DataFrame:
    """Net premium and opening-trade count per strategy tag, largest first."""
    df = option_frame(list(option_txs))
    if df.empty:
        return pd.DataFrame(columns=['Strategy', 'Net Premium', 'Trades'])
    df['Net Premium'] = _signed_premium(df)
    df['Opening'] = df['Action'].isin(OPENING_ACTIONS)
    out = df.groupby('Strategy').agg(**{
        'Net Premium': ('Net Premium', 'sum'),
        'Trades':      ('Opening', 'sum'),
    }).reset_index()
    out['Trades'] = out['Trades'].astype(int)
    return out.sort_values('Net Premium', ascending=False, kind='stable').reset_index(drop=True)
