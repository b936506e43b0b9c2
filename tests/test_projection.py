import pytest

from budget_planner.projection import (
    TOTAL_ACCOUNT_ID,
    CashEvent,
    combine_projections,
    opening_balances,
    project_actual,
    project_balances,
    project_scheduled,
    projections_frame,
    scheduled_events,
)

CHECKING = {'id': 1, 'bank_name': 'First Bank', 'account_type': 'checking', 'starting_balance': 1000.0}
SAVINGS = {'id': 2, 'bank_name': 'Credit Union', 'account_type': 'savings', 'starting_balance': 500.0}

WEEKLY_PAY = {
    'id': 10,
    'account_id': 1,
    'amount': 400.0,
    'pay_dates': '["2026-03-05", "2026-03-12", "2026-03-19", "2026-03-26"]',
}


def test_every_pay_date_steps_the_balance():
    projections = project_scheduled([CHECKING], [WEEKLY_PAY], [], '2026-03-01', '2026-03-31')
    checking = projections[1]
    assert len(checking.points) == 31
    assert checking.ending_balance == pytest.approx(2600.0)

    steps = [p.date for p in checking.points if p.net_change]
    assert steps == ['2026-03-05', '2026-03-12', '2026-03-19', '2026-03-26']
    assert checking.balance_on('2026-03-04') == pytest.approx(1000.0)
    assert checking.balance_on('2026-03-05') == pytest.approx(1400.0)
    assert checking.balance_on('2026-03-18') == pytest.approx(1800.0)
    assert checking.balance_on('2026-04-01') is None


def test_due_dates_subtract_on_their_day():
    rent = {'id': 3, 'account_id': 1, 'amount': 300.0, 'due_dates': ['2026-03-01', '2026-03-15']}
    checking = project_scheduled([CHECKING], [], [rent], '2026-03-01', '2026-03-31')[1]
    first = checking.points[0]
    assert first.expenses == pytest.approx(300.0)
    assert first.net_change == pytest.approx(-300.0)
    assert first.balance == pytest.approx(700.0)
    assert checking.ending_balance == pytest.approx(400.0)


def test_dates_outside_window_are_ignored():
    source = dict(WEEKLY_PAY, pay_dates=['2026-02-27', '2026-03-05', '2026-04-02'])
    events = scheduled_events([source], [], '2026-03-01', '2026-03-31')
    assert [e.date for e in events] == ['2026-03-05']
    checking = project_scheduled([CHECKING], [source], [], '2026-03-01', '2026-03-31')[1]
    assert checking.ending_balance == pytest.approx(1400.0)


def test_deleted_rows_and_unknown_accounts_are_skipped():
    deleted_account = dict(SAVINGS, is_deleted=1)
    deleted_source = dict(WEEKLY_PAY, is_deleted=1)
    stray = dict(WEEKLY_PAY, account_id=99)
    projections = project_scheduled(
        [CHECKING, deleted_account], [deleted_source, stray], [], '2026-03-01', '2026-03-31'
    )
    assert list(projections) == [1]
    assert projections[1].ending_balance == pytest.approx(1000.0)


def test_rows_without_an_amount_are_skipped():
    no_amount = {k: v for k, v in WEEKLY_PAY.items() if k != 'amount'}
    blank_expense = {'id': 20, 'account_id': 1, 'amount': None, 'due_dates': '["2026-03-01"]'}
    events = scheduled_events([no_amount, WEEKLY_PAY], [blank_expense], '2026-03-01', '2026-03-31')
    assert len(events) == 4
    assert all(e.source == 'income' for e in events)


def test_malformed_date_lists_project_nothing():
    broken = dict(WEEKLY_PAY, pay_dates='not json')
    checking = project_scheduled([CHECKING], [broken], [], '2026-03-01', '2026-03-31')[1]
    assert checking.ending_balance == pytest.approx(1000.0)


def test_actual_projection_opens_at_true_balance():
    transactions = [
        {'id': 1, 'date': '2026-02-15', 'type': 'expense', 'amount': 200.0, 'account_id': 1},
        {'id': 2, 'date': '2026-03-10', 'type': 'income', 'amount': 50.0, 'account_id': 1},
        {'id': 3, 'date': '2026-02-01', 'type': 'income', 'amount': 75.0, 'account_id': 1, 'is_deleted': 1},
    ]
    checking = project_actual([CHECKING], transactions, '2026-03-01', '2026-03-31')[1]
    assert checking.starting_balance == pytest.approx(800.0)
    assert checking.points[0].balance == pytest.approx(800.0)
    assert checking.balance_on('2026-03-10') == pytest.approx(850.0)
    assert opening_balances([CHECKING], transactions, '2026-03-01') == {1: pytest.approx(800.0)}


def test_opening_override_seeds_the_sweep():
    events = [CashEvent('2026-03-02', 1, -25.0)]
    checking = project_balances([CHECKING], events, '2026-03-01', '2026-03-03', opening={1: 10.0})[1]
    assert [p.balance for p in checking.points] == pytest.approx([10.0, -15.0, -15.0])


def test_combine_sums_accounts_day_by_day():
    projections = project_scheduled([CHECKING, SAVINGS], [WEEKLY_PAY], [], '2026-03-01', '2026-03-31')
    total = combine_projections(projections, '2026-03-01', '2026-03-31')
    assert total.account_id == TOTAL_ACCOUNT_ID
    assert total.starting_balance == pytest.approx(1500.0)
    assert total.ending_balance == pytest.approx(3100.0)
    assert total.balance_on('2026-03-05') == pytest.approx(1900.0)
    assert sum(p.income for p in total.points) == pytest.approx(1600.0)


def test_combine_without_accounts_is_flat_zero():
    total = combine_projections({}, '2026-03-01', '2026-03-03')
    assert [p.balance for p in total.points] == [0.0, 0.0, 0.0]


def test_frames_for_plotting():
    projections = project_scheduled([CHECKING, SAVINGS], [WEEKLY_PAY], [], '2026-03-01', '2026-03-31')
    frame = projections[1].to_frame()
    assert list(frame.columns) == [
        'date', 'balance', 'income', 'expenses', 'net_change', 'account_id', 'account_name'
    ]
    assert len(frame) == 31
    assert frame['balance'].iloc[-1] == pytest.approx(2600.0)

    stacked = projections_frame(projections)
    assert len(stacked) == 62
    assert set(stacked['account_name']) == {'First Bank', 'Credit Union'}
    assert projections_frame({}).empty
