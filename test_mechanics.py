"""
TradeLedger Engine Tests
========================
Tests call the real engine functions directly (_run_average_cost(),
project_option_positions(), build_closing_transaction()) with small
hand-built ledgers. Every expected figure is worked out in the comment
above the check.

Run with:
    pytest test_mechanics.py
or  python test_mechanics.py
"""

import sys
from collections import deque

import pandas as pd
import pytest

from models import (
    StockTransaction, OptionTransaction,
    StockTransactionPatch, OptionTransactionPatch,
)
from mechanics import (
    _consume_lots,
    _run_average_cost,
    project_stock_positions,
    realized_stock_sales,
    shares_held_before,
    oversold_rows,
    project_option_positions,
    open_option_positions,
    find_option_position,
    overclosed_rows,
    stock_cash_effect,
    option_cash_effect,
    apply_stock_patch,
    apply_option_patch,
    default_collateral,
    close_pnl,
    build_closing_transaction,
    build_stock_leg,
)


D = pd.Timestamp


def check(actual, expected, tol=0.01):
    assert abs(actual - expected) <= tol, \
        f'got={actual:.4f}  expected={expected:.4f}  delta={actual - expected:.4f}'


def _stock(id, action, shares, price, date, ticker='AAPL', account='acct',
           fees=0.0, split_ratio=None, total=None):
    return StockTransaction(
        account_id=account, ticker=ticker, action=action, shares=shares,
        price_per_share=price,
        total_amount=shares * price if total is None else total,
        fees=fees, date=D(date), split_ratio=split_ratio, id=id,
    )


def _opt(id, action, contracts, premium, date, *, ticker='AAPL', option_type='put',
         strike=170.0, expiration='2024-02-16', strategy='cash-secured-put', fees=0.0,
         status='open', realized_pl=None, collateral=None, close_date=None, account='acct'):
    return OptionTransaction(
        account_id=account, ticker=ticker, strategy=strategy, option_type=option_type,
        action=action, contracts=contracts, strike_price=strike,
        premium_per_share=premium, total_premium=contracts * 100 * premium,
        fees=fees, expiration_date=D(expiration), transaction_date=D(date),
        status=status, close_date=D(close_date) if close_date else None,
        realized_pl=realized_pl, collateral_required=collateral, id=id,
    )


def _csp(fees=2.0):
    # Sell 2 AAPL 170 puts @ 3.50 → total premium 700, collateral 170 × 100 × 2 = 34000
    return _opt('o1', 'sell-to-open', 2, 3.50, '2024-01-02', fees=fees, collateral=34000.0)


def _covered_call():
    return _opt('o2', 'sell-to-open', 1, 2.25, '2024-01-05', option_type='call',
                strike=185.0, expiration='2024-01-19', strategy='covered-call', fees=1.0)


# ══════════════════════════════════════════════════════════════════════════════
# 1. AVERAGE-COST STOCK POSITIONS
# ══════════════════════════════════════════════════════════════════════════════

def test_aapl_buy_then_partial_sell():
    # Buy 100 @ 150 → 100 sh, total 15000, avg 150
    txs = [_stock('b1', 'buy', 100, 150.0, '2024-01-02')]
    (pos,) = project_stock_positions(txs)
    check(pos.shares, 100)
    check(pos.average_cost_basis, 150.0)
    check(pos.total_cost_basis, 15000.0)

    # Sell 50 @ 160 → cost removed 50 × 150 = 7500; 50 sh left, total 7500, avg 150
    txs.append(_stock('s1', 'sell', 50, 160.0, '2024-01-10'))
    (pos,) = project_stock_positions(txs)
    check(pos.shares, 50)
    check(pos.total_cost_basis, 7500.0)
    check(pos.average_cost_basis, 150.0)
    assert pos.transaction_ids == ['b1', 's1']
    assert pos.first_purchase_date == D('2024-01-02')
    assert pos.last_transaction_date == D('2024-01-10')

    (sale,) = realized_stock_sales(txs)
    check(sale.proceeds, 8000.0)
    check(sale.cost_basis, 7500.0)
    check(sale.realized_pl, 500.0)


def test_sell_uses_average_not_first_lot():
    # avg after buys = (1000 + 2000) / 200 = 15 → removed 1500, proceeds 1800, P/L +300
    txs = [
        _stock('b1', 'buy', 100, 10.0, '2024-01-02'),
        _stock('b2', 'buy', 100, 20.0, '2024-01-03'),
        _stock('s1', 'sell', 100, 18.0, '2024-01-04'),
    ]
    (sale,) = realized_stock_sales(txs)
    check(sale.realized_pl, 300.0)
    (pos,) = project_stock_positions(txs)
    check(pos.total_cost_basis, 1500.0)
    check(pos.average_cost_basis, 15.0)


def test_cost_conservation():
    # Σ buys 1000 + 1500 = 2500 ; sells remove avg × qty ; remainder == final basis
    txs = [
        _stock('b1', 'buy', 100, 10.0, '2024-01-02'),
        _stock('b2', 'buy', 50, 30.0, '2024-01-03'),
        _stock('s1', 'sell', 60, 25.0, '2024-01-04'),
        _stock('s2', 'sell', 20, 12.0, '2024-01-05'),
    ]
    removed = sum(s.cost_basis for s in realized_stock_sales(txs))
    (pos,) = project_stock_positions(txs)
    check(2500.0 - removed, pos.total_cost_basis, tol=1e-6)
    check(pos.total_cost_basis, pos.shares * pos.average_cost_basis, tol=1e-6)
    check(pos.shares, 70)


def test_selling_everything_removes_position():
    txs = [
        _stock('b1', 'buy', 10, 100.0, '2024-01-02'),
        _stock('s1', 'sell', 10, 110.0, '2024-01-03'),
    ]
    assert project_stock_positions(txs) == []
    check(realized_stock_sales(txs)[0].realized_pl, 100.0)


def test_oversell_is_capped_and_prorated():
    # 15 requested, 10 held → 10 sold; proceeds 1800 × 10/15 = 1200, cost 1000
    txs = [
        _stock('b1', 'buy', 10, 100.0, '2024-01-02'),
        _stock('s1', 'sell', 15, 120.0, '2024-01-03'),
    ]
    (sale,) = realized_stock_sales(txs)
    check(sale.shares, 10)
    check(sale.proceeds, 1200.0)
    check(sale.realized_pl, 200.0)
    assert project_stock_positions(txs) == []


def test_sell_without_position_is_ignored():
    txs = [_stock('s1', 'sell', 10, 50.0, '2024-01-02')]
    assert project_stock_positions(txs) == []
    assert realized_stock_sales(txs) == []


def test_sell_fees_reduce_proceeds():
    # proceeds 50 × 160 − 5 = 7995 ; cost 7500 → +495
    txs = [
        _stock('b1', 'buy', 100, 150.0, '2024-01-02'),
        _stock('s1', 'sell', 50, 160.0, '2024-01-10', fees=5.0),
    ]
    check(realized_stock_sales(txs)[0].realized_pl, 495.0)


def test_forward_split_keeps_total_cost():
    # 50 sh @ 150 → 2:1 → 100 sh, total 7500, avg 75
    txs = [
        _stock('b1', 'buy', 50, 150.0, '2024-01-02'),
        _stock('x1', 'split', 0, 0.0, '2024-02-01', split_ratio='2:1'),
    ]
    (pos,) = project_stock_positions(txs)
    check(pos.shares, 100)
    check(pos.total_cost_basis, 7500.0)
    check(pos.average_cost_basis, 75.0)
    assert pos.transaction_ids == ['b1', 'x1']


def test_reverse_split():
    # 100 sh @ 2 → 1:10 → 10 sh, total 200, avg 20
    txs = [
        _stock('b1', 'buy', 100, 2.0, '2024-01-02'),
        _stock('x1', 'split', 0, 0.0, '2024-02-01', split_ratio='1:10'),
    ]
    (pos,) = project_stock_positions(txs)
    check(pos.shares, 10)
    check(pos.average_cost_basis, 20.0)


def test_dividend_does_not_touch_position():
    txs = [
        _stock('b1', 'buy', 100, 150.0, '2024-01-02'),
        _stock('d1', 'dividend', 0, 0.0, '2024-02-01', total=24.0),
    ]
    (pos,) = project_stock_positions(txs)
    check(pos.total_cost_basis, 15000.0)
    assert pos.transaction_ids == ['b1']


def test_transfers_move_shares_without_realizing():
    txs = [
        _stock('t1', 'transfer-in', 100, 40.0, '2024-01-02'),
        _stock('t2', 'transfer-out', 40, 0.0, '2024-01-05'),
    ]
    (pos,) = project_stock_positions(txs)
    check(pos.shares, 60)
    check(pos.total_cost_basis, 2400.0)
    assert realized_stock_sales(txs) == []


def test_same_date_rows_keep_store_order():
    txs = [
        _stock('b1', 'buy', 100, 10.0, '2024-01-02'),
        _stock('s1', 'sell', 100, 12.0, '2024-01-02'),
        _stock('b2', 'buy', 10, 11.0, '2024-01-02'),
    ]
    (pos,) = project_stock_positions(txs)
    check(pos.shares, 10)
    check(pos.average_cost_basis, 11.0)
    check(realized_stock_sales(txs)[0].realized_pl, 200.0)


def test_positions_are_per_account():
    txs = [
        _stock('b1', 'buy', 100, 10.0, '2024-01-02', account='a1'),
        _stock('b2', 'buy', 30, 20.0, '2024-01-02', account='a2'),
    ]
    assert len(project_stock_positions(txs)) == 2
    (pos,) = project_stock_positions(txs, account_id='a2')
    check(pos.shares, 30)


def test_projection_is_idempotent():
    txs = [
        _stock('b1', 'buy', 100, 10.0, '2024-01-02'),
        _stock('s1', 'sell', 40, 12.0, '2024-01-03'),
    ]
    assert project_stock_positions(txs) == project_stock_positions(txs)
    assert project_option_positions([_csp()]) == project_option_positions([_csp()])


def test_shares_held_before():
    txs = [
        _stock('b1', 'buy', 100, 10.0, '2024-01-02'),
        _stock('s1', 'sell', 30, 12.0, '2024-01-03'),
        _stock('s2', 'sell', 50, 12.0, '2024-01-04'),
    ]
    check(shares_held_before(txs, txs[1]), 100)
    check(shares_held_before(txs, txs[2]), 70)


def test_oversold_rows_follow_date_order():
    # b1 100 ; s1 60 on 01-10 ; s2 60 on 01-20 → only 40 left behind s2
    txs = [
        _stock('b1', 'buy', 100, 10.0, '2024-01-02'),
        _stock('s2', 'sell', 60, 12.0, '2024-01-20'),
        _stock('s1', 'sell', 60, 12.0, '2024-01-10'),
    ]
    ((row, held),) = oversold_rows(txs)
    assert row.id == 's2'
    check(held, 40)
    assert oversold_rows(txs[:2]) == []
    # a sell with nothing held at all
    (orphan,) = oversold_rows([_stock('x1', 'transfer-out', 5, 0.0, '2024-01-02')])
    assert orphan[0].id == 'x1' and orphan[1] == 0.0


# ══════════════════════════════════════════════════════════════════════════════
# 2. HOLDING PERIODS
# ══════════════════════════════════════════════════════════════════════════════

def test_consume_lots_earliest_first():
    lots = deque([[100, D('2022-01-03')], [100, D('2023-06-01')]])
    used = _consume_lots(lots, 150)
    assert used == [(100, D('2022-01-03')), (50, D('2023-06-01'))]
    assert list(lots) == [[50, D('2023-06-01')]]


def test_sale_split_between_terms():
    # avg (1000 + 2000) / 200 = 15 ; sell 150 @ 30 → proceeds 4500, cost 2250, P/L 2250
    # deemed sold: 100 from 2022-01-03 (544 days, long) + 50 from 2023-06-01 (short)
    # long P/L 2250 × 100/150 = 1500 ; short 750
    txs = [
        _stock('b1', 'buy', 100, 10.0, '2022-01-03'),
        _stock('b2', 'buy', 100, 20.0, '2023-06-01'),
        _stock('s1', 'sell', 150, 30.0, '2023-07-01'),
    ]
    (sale,) = realized_stock_sales(txs)
    check(sale.long_term_shares, 100)
    check(sale.short_term_shares, 50)
    check(sale.long_term_pl, 1500.0)
    check(sale.short_term_pl, 750.0)


def test_exactly_one_year_is_long_term():
    txs = [
        _stock('b1', 'buy', 10, 10.0, '2023-01-01'),
        _stock('s1', 'sell', 10, 12.0, '2024-01-01'),
    ]
    (sale,) = realized_stock_sales(txs)
    check(sale.long_term_shares, 10)
    check(sale.short_term_pl, 0.0)


def test_split_scales_lot_quantities():
    # 10 sh bought 2022-01-03, 2:1 → 20 sh ; sell 20 on 2023-02-01 → all long-term
    txs = [
        _stock('b1', 'buy', 10, 100.0, '2022-01-03'),
        _stock('x1', 'split', 0, 0.0, '2022-06-01', split_ratio='2:1'),
        _stock('s1', 'sell', 20, 60.0, '2023-02-01'),
    ]
    (sale,) = realized_stock_sales(txs)
    check(sale.long_term_shares, 20)
    check(sale.realized_pl, 200.0)


def test_stop_at_returns_books_before_row():
    txs = [
        _stock('b1', 'buy', 100, 10.0, '2024-01-02'),
        _stock('s1', 'sell', 100, 12.0, '2024-01-03'),
    ]
    books, sales = _run_average_cost(txs, stop_at='s1')
    check(books[('acct', 'AAPL')].shares, 100)
    assert sales == []


# ══════════════════════════════════════════════════════════════════════════════
# 3. CASH EFFECTS, PATCHES, DEFAULTS
# ══════════════════════════════════════════════════════════════════════════════

def test_stock_cash_effects():
    check(stock_cash_effect(_stock('b', 'buy', 100, 150.0, '2024-01-02', fees=1.0)), -15001.0)
    check(stock_cash_effect(_stock('s', 'sell', 50, 160.0, '2024-01-02', fees=1.0)), 7999.0)
    check(stock_cash_effect(_stock('d', 'dividend', 0, 0.0, '2024-01-02', total=24.0)), 24.0)
    check(stock_cash_effect(_stock('x', 'split', 0, 0.0, '2024-01-02', split_ratio='2:1')), 0.0)
    check(stock_cash_effect(_stock('t', 'transfer-in', 10, 5.0, '2024-01-02')), 0.0)


def test_option_cash_effects():
    # STO 700 − 2 fees = +698 ; BTC 100 + 1 fee = −101
    check(option_cash_effect(_csp()), 698.0)
    check(option_cash_effect(_opt('c', 'buy-to-close', 1, 1.00, '2024-01-12', fees=1.0)), -101.0)
    check(option_cash_effect(_opt('l', 'buy-to-open', 1, 5.00, '2024-01-12', fees=1.0)), -501.0)
    check(option_cash_effect(_opt('s', 'sell-to-close', 1, 8.00, '2024-01-12', fees=1.0)), 799.0)


def test_stock_patch_rederives_total():
    tx = _stock('b1', 'buy', 100, 150.0, '2024-01-02')
    patched = apply_stock_patch(tx, StockTransactionPatch(shares=200))
    check(patched.total_amount, 30000.0)
    assert patched.date == tx.date and patched.id == 'b1'

    explicit = apply_stock_patch(tx, StockTransactionPatch(price_per_share=151.0, total_amount=15000.0))
    check(explicit.total_amount, 15000.0)

    div = _stock('d1', 'dividend', 0, 0.0, '2024-02-01', total=24.0)
    check(apply_stock_patch(div, StockTransactionPatch(price_per_share=0.24)).total_amount, 24.0)


def test_option_patch_rederives_total_premium():
    patched = apply_option_patch(_csp(), OptionTransactionPatch(contracts=3))
    check(patched.total_premium, 1050.0)
    assert apply_option_patch(_csp(), OptionTransactionPatch()) == _csp()


def test_default_collateral_only_for_cash_secured_puts():
    check(default_collateral(_csp()), 34000.0)
    assert default_collateral(_covered_call()) is None


# ══════════════════════════════════════════════════════════════════════════════
# 4. OPTION POSITION PROJECTOR
# ══════════════════════════════════════════════════════════════════════════════

def test_single_open_leg():
    (pos,) = project_option_positions([_csp()])
    assert pos.id == 'o1' and pos.is_open
    assert pos.contracts == 2
    check(pos.average_premium, 3.50)
    check(pos.total_premium, 700.0)
    check(pos.collateral_required, 34000.0)


def test_opening_legs_merge_with_weighted_average():
    # (700 + 400) / 300 = 3.6667
    txs = [_csp(), _opt('o3', 'sell-to-open', 1, 4.00, '2024-01-03', collateral=17000.0)]
    (pos,) = project_option_positions(txs)
    assert pos.contracts == 3
    check(pos.average_premium, 3.6667, tol=1e-4)
    check(pos.collateral_required, 51000.0)
    assert pos.transaction_ids == ['o1', 'o3']


def test_partial_close_scales_outstanding_figures():
    txs = [_csp(), _opt('c1', 'buy-to-close', 1, 1.00, '2024-01-12', fees=1.0,
                        status='closed', realized_pl=248.0, close_date='2024-01-12')]
    (pos,) = project_option_positions(txs)
    assert pos.is_open and pos.contracts == 1
    check(pos.total_premium, 350.0)
    check(pos.open_fees, 1.0)
    check(pos.collateral_required, 17000.0)
    assert pos.realized_pl is None


def test_full_close_takes_status_and_final_leg_pnl():
    # each leg keeps its own P&L ; the terminal position carries the last one
    txs = [
        _csp(),
        _opt('c1', 'buy-to-close', 1, 1.00, '2024-01-12', status='closed', realized_pl=248.0),
        _opt('c2', 'buy-to-close', 1, 0.00, '2024-02-16', status='expired', realized_pl=349.0,
             close_date='2024-02-16'),
    ]
    (pos,) = project_option_positions(txs)
    assert pos.status == 'expired' and pos.contracts == 0
    check(pos.realized_pl, 349.0)
    assert pos.close_date == D('2024-02-16')
    assert open_option_positions(txs) == []


def test_historical_terminal_row_is_its_own_position():
    row = _opt('h1', 'sell-to-open', 1, 2.25, '2023-05-01', option_type='call', strike=185.0,
               expiration='2023-05-19', strategy='covered-call', status='expired',
               realized_pl=224.0, close_date='2023-05-19')
    (pos,) = project_option_positions([row])
    assert not pos.is_open and pos.contracts == 0
    check(pos.realized_pl, 224.0)


def test_reopen_after_close_starts_new_lifecycle():
    txs = [
        _csp(),
        _opt('c1', 'buy-to-close', 2, 1.00, '2024-01-12', status='closed', realized_pl=498.0),
        _opt('o9', 'sell-to-open', 1, 2.00, '2024-01-20'),
    ]
    history = project_option_positions(txs)
    assert [p.id for p in history] == ['o1', 'o9']
    assert [p.status for p in history] == ['closed', 'open']
    assert find_option_position(txs, 'o9').contracts == 1
    assert overclosed_rows(txs) == []


def test_orphan_closing_row_is_ignored_but_reported():
    orphan = _opt('c1', 'buy-to-close', 1, 1.00, '2024-01-12', status='closed')
    assert project_option_positions([orphan]) == []
    assert overclosed_rows([orphan]) == [(orphan, 0)]


def test_close_dated_before_a_later_open_is_overclosed():
    # STO 1 on 01-02, STO 1 on 01-20, BTC 2 dated 01-10 → only 1 open at 01-10
    txs = [
        _opt('o1', 'sell-to-open', 1, 3.50, '2024-01-02'),
        _opt('o2', 'sell-to-open', 1, 3.50, '2024-01-20'),
        _opt('c1', 'buy-to-close', 2, 1.00, '2024-01-10', status='closed', realized_pl=500.0),
    ]
    ((row, open_n),) = overclosed_rows(txs)
    assert row.id == 'c1' and open_n == 1
    # the same close dated after the second open is fine
    txs[2] = _opt('c1', 'buy-to-close', 2, 1.00, '2024-01-25', status='closed', realized_pl=500.0)
    assert overclosed_rows(txs) == []


# ══════════════════════════════════════════════════════════════════════════════
# 5. CLOSE / EXPIRE / ASSIGN / EXERCISE
# ══════════════════════════════════════════════════════════════════════════════

def test_close_pnl_formulas():
    check(close_pnl(True,  'closed', 350.0, 1.0, 100.0, 1.0), 248.0)
    check(close_pnl(False, 'closed', 500.0, 1.0, 800.0, 1.0), 298.0)
    # expiry forces the closing premium to 0
    check(close_pnl(True,  'expired', 225.0, 1.0, 999.0), 224.0)
    check(close_pnl(False, 'expired', 500.0, 1.0), -501.0)


def test_csp_partial_close_248():
    # proportion 1/2 → open premium 350, open fees 1 ; close 1 @ 1.00 = 100, fees 1
    # 350 − 100 − 1 − 1 = 248
    pos = find_option_position([_csp()], 'o1')
    tx  = build_closing_transaction(pos, 'closed', 1, 1.00, 1.0, D('2024-01-12'))
    check(tx.realized_pl, 248.0)
    assert tx.action == 'buy-to-close' and tx.status == 'closed'
    assert tx.contracts == 1
    check(tx.total_premium, 100.0)
    check(tx.collateral_required, 17000.0)
    assert tx.collateral_released
    assert tx.transaction_date == tx.close_date == D('2024-01-12')


def test_covered_call_expiry_224():
    # 225 premium − 1 open fee, nothing paid to close
    pos = find_option_position([_covered_call()], 'o2')
    tx  = build_closing_transaction(pos, 'expired', 1, 0.0, 0.0, D('2024-01-19'))
    check(tx.realized_pl, 224.0)
    check(tx.total_premium, 0.0)
    txs = [_covered_call(), tx]
    (after,) = project_option_positions(txs)
    assert after.status == 'expired' and after.contracts == 0


def test_partial_closes_sum_to_full_close():
    # one step: 700 − 200 − 2 = 498 ; two steps: 249 + 249
    full = build_closing_transaction(find_option_position([_csp()], 'o1'),
                                     'closed', 2, 1.00, 0.0, D('2024-01-12'))
    txs = [_csp()]
    first = build_closing_transaction(find_option_position(txs, 'o1'),
                                      'closed', 1, 1.00, 0.0, D('2024-01-12'))
    txs.append(first)
    second = build_closing_transaction(find_option_position(txs, 'o1'),
                                       'closed', 1, 1.00, 0.0, D('2024-01-13'))
    check(first.realized_pl + second.realized_pl, full.realized_pl, tol=1e-9)
    check(full.realized_pl, 498.0)


def test_long_option_closes_with_sell_to_close():
    bto = _opt('l1', 'buy-to-open', 1, 5.00, '2024-01-02', option_type='call', strike=100.0,
               strategy='long-call', fees=1.0)
    pos = find_option_position([bto], 'l1')
    tx  = build_closing_transaction(pos, 'closed', 1, 8.00, 1.0, D('2024-01-20'))
    assert tx.action == 'sell-to-close'
    check(tx.realized_pl, 298.0)
    assert tx.collateral_required is None


def test_stock_leg_directions():
    put_pos  = find_option_position([_opt('p', 'sell-to-open', 1, 1.0, '2024-01-02', strike=50.0)], 'p')
    call_pos = find_option_position([_covered_call()], 'o2')
    leg = build_stock_leg(put_pos, 'assigned', 1, D('2024-02-16'))
    assert leg.action == 'buy' and leg.shares == 100
    check(leg.total_amount, 5000.0)
    assert leg.fees == 0.0 and leg.date == D('2024-02-16')
    assert build_stock_leg(call_pos, 'assigned', 1, D('2024-01-19')).action == 'sell'

    long_call = find_option_position([_opt('lc', 'buy-to-open', 2, 5.0, '2024-01-02',
                                           option_type='call', strike=100.0)], 'lc')
    long_put  = find_option_position([_opt('lp', 'buy-to-open', 1, 5.0, '2024-01-02', strike=90.0)], 'lp')
    ex = build_stock_leg(long_call, 'exercised', 2, D('2024-02-16'))
    assert ex.action == 'buy' and ex.shares == 200
    assert build_stock_leg(long_put, 'exercised', 1, D('2024-02-16')).action == 'sell'
    assert build_stock_leg(put_pos, 'expired', 1, D('2024-02-16')) is None


def test_assignment_keeps_premium():
    # assigned: same as expiry → 350 premium − 1 fee for 1 of 2 contracts
    pos = find_option_position([_csp()], 'o1')
    tx  = build_closing_transaction(pos, 'assigned', 1, 5.00, 0.0, D('2024-02-16'))
    check(tx.realized_pl, 349.0)
    assert tx.premium_per_share == 0.0
    assert 'bought 100 shares' in tx.notes


if __name__ == '__main__':
    sys.exit(pytest.main([__file__, '-v']))
