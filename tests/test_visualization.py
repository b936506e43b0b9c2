import pandas as pd
import plotly.graph_objects as go

from budget_planner import visualization
from budget_planner.ledger import cash_flow_by_period
from budget_planner.projection import AccountProjection, project_scheduled

ACCOUNT = {'id': 1, 'bank_name': 'First Bank', 'account_type': 'checking', 'starting_balance': 100.0}
SOURCE = {'account_id': 1, 'amount': 50.0, 'pay_dates': ['2026-03-02']}


def _projections():
    return project_scheduled([ACCOUNT], [SOURCE], [], '2026-03-01', '2026-03-05')


def test_projection_chart_has_one_line_per_account():
    fig = visualization.create_projection_chart(_projections())
    assert isinstance(fig, go.Figure)
    assert len(fig.data) == 1
    assert fig.data[0].name == 'First Bank'
    assert list(fig.data[0].y) == [100.0, 150.0, 150.0, 150.0, 150.0]
    assert fig.layout.title.text == 'Projected balance'


def test_empty_inputs_give_placeholder_figures():
    empty = AccountProjection('total', 'All accounts', None, 0.0)
    figures = [
        visualization.create_projection_chart({}),
        visualization.create_planned_vs_actual_chart(empty, empty),
        visualization.create_budget_vs_expense_chart([]),
        visualization.create_goals_progress_chart([]),
        visualization.create_cash_flow_chart(pd.DataFrame()),
    ]
    for fig in figures:
        assert len(fig.data) == 0
        assert fig.layout.title.text == 'No data to display'


def test_planned_vs_actual_overlays_two_lines():
    projection = _projections()[1]
    fig = visualization.create_planned_vs_actual_chart(projection, projection, title='March')
    assert [trace.name for trace in fig.data] == ['Planned', 'Actual']
    assert fig.layout.title.text == 'March'


def test_budget_vs_expense_groups_planned_and_actual():
    by_bucket = [
        {'name': 'Major Fixed Expense', 'planned': 300.0, 'actual': 250.0},
        {'name': 'Minor Variable Expense', 'planned': 50.0, 'actual': 80.0},
    ]
    fig = visualization.create_budget_vs_expense_chart(by_bucket)
    assert sorted(trace.name for trace in fig.data) == ['actual', 'planned']
    assert fig.layout.barmode == 'group'


def test_goal_progress_is_capped_at_one_hundred():
    goals = [{'name': 'Trip', 'percent_funded': 140.0}, {'name': 'Car', 'percent_funded': 20.0}]
    fig = visualization.create_goals_progress_chart(goals)
    assert list(fig.data[0].x) == [100.0, 20.0]


def test_cash_flow_chart():
    rows = [
        {'id': 1, 'date': '2026-03-10', 'type': 'income', 'amount': 100.0, 'account_id': 1},
        {'id': 2, 'date': '2026-03-12', 'type': 'expense', 'amount': 40.0, 'account_id': 1},
    ]
    fig = visualization.create_cash_flow_chart(cash_flow_by_period(rows))
    assert [trace.name for trace in fig.data] == ['Income', 'Expenses', 'Net']
    assert list(fig.data[1].y) == [-40.0]
