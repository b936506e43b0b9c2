"""Plotly figures for the budget planner.

Each function takes the plain objects produced by :mod:`projection`,
:mod:`summary` or :mod:`ledger` and returns a ``plotly.graph_objects.Figure``
that Streamlit renders with ``st.plotly_chart``.  An empty input yields an
empty figure titled "No data to display" rather than an error.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Sequence

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from .projection import AccountProjection, projections_frame


def _empty_figure() -> go.Figure:
    fig = go.Figure()
    fig.update_layout(title="No data to display")
    return fig


def create_projection_chart(
    projections: Mapping[Any, AccountProjection],
    title: str | None = None,
) -> go.Figure:
    """Line chart of projected daily balance, one line per account.

    Parameters
    ----------
    projections : mapping
        Account id to :class:`AccountProjection`, as returned by
        :func:`projection.project_balances`.
    title : str, optional
        Chart title.

    Returns
    -------
    plotly.graph_objects.Figure
        Step-shaped line chart of balances over the window.
    """
    df = projections_frame(projections)
    if df.empty:
        return _empty_figure()
    fig = px.line(df, x="date", y="balance", color="account_name", line_shape="hv")
    fig.update_layout(
        title=title or "Projected balance",
        xaxis_title="Date",
        yaxis_title="Balance",
        legend_title="Account",
    )
    return fig


def create_planned_vs_actual_chart(
    projected: AccountProjection,
    actual: AccountProjection,
    title: str | None = None,
) -> go.Figure:
    """Overlay the planned and actual total balance lines.

    Parameters
    ----------
    projected : AccountProjection
        Balance line built from scheduled pay and due dates.
    actual : AccountProjection
        Balance line built from posted transactions.
    title : str, optional
        Chart title.
    """
    if not projected.points and not actual.points:
        return _empty_figure()
    fig = go.Figure()
    for label, series, dash in (("Planned", projected, "dash"), ("Actual", actual, "solid")):
        frame = series.to_frame()
        fig.add_trace(
            go.Scatter(
                x=frame["date"],
                y=frame["balance"],
                mode="lines",
                name=label,
                line={"dash": dash, "shape": "hv"},
            )
        )
    fig.update_layout(
        title=title or "Planned vs actual balance",
        xaxis_title="Date",
        yaxis_title="Balance",
    )
    return fig


def create_budget_vs_expense_chart(
    by_bucket: Sequence[Dict[str, Any]],
    title: str | None = None,
) -> go.Figure:
    """Grouped bars of planned against actual spending per bucket."""
    if not by_bucket:
        return _empty_figure()
    df = pd.DataFrame(by_bucket)
    long = df.melt(
        id_vars=["name"],
        value_vars=["planned", "actual"],
        var_name="Series",
        value_name="Amount",
    )
    fig = px.bar(long, x="name", y="Amount", color="Series", barmode="group")
    fig.update_layout(
        title=title or "Budget vs expense",
        xaxis_title="Bucket",
        yaxis_title="Amount",
    )
    return fig


def create_goals_progress_chart(goals: Sequence[Dict[str, Any]], title: str | None = None) -> go.Figure:
    """Horizontal bars showing the percentage funded for each goal."""
    if not goals:
        return _empty_figure()
    df = pd.DataFrame(goals)
    df["percent_funded"] = df["percent_funded"].clip(upper=100)
    fig = px.bar(df, x="percent_funded", y="name", orientation="h", range_x=[0, 100])
    fig.update_layout(
        title=title or "Goal progress",
        xaxis_title="% funded",
        yaxis_title="Goal",
    )
    return fig


def create_cash_flow_chart(cash_flow: pd.DataFrame, title: str | None = None) -> go.Figure:
    """Income and expense bars with a net line, per period.

    Parameters
    ----------
    cash_flow : pandas.DataFrame
        Output of :func:`ledger.cash_flow_by_period`.
    title : str, optional
        Chart title.
    """
    if cash_flow.empty:
        return _empty_figure()
    periods = cash_flow.index
    fig = go.Figure()
    fig.add_trace(go.Bar(x=periods, y=cash_flow["income"], name="Income"))
    fig.add_trace(go.Bar(x=periods, y=-cash_flow["expenses"], name="Expenses"))
    fig.add_trace(go.Scatter(x=periods, y=cash_flow["net"], mode="lines+markers", name="Net"))
    fig.update_layout(
        title=title or "Cash flow",
        barmode="relative",
        xaxis_title="Period",
        yaxis_title="Amount",
    )
    return fig
