"""Streamlit front end for the budget planner.

Run with ``python run_planner.py`` or ``streamlit run budget_planner/app.py``.
Four views share one set of services: Budget (the real month budget),
Planning (the what-if sandbox), Ledger (posted transactions) and Dashboard
(planned against actual).
"""

from __future__ import annotations

from datetime import date
from types import SimpleNamespace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd
import streamlit as st

from budget_planner import config, visualization
from budget_planner.budget import BudgetService
from budget_planner.db import Store
from budget_planner.events import bus
from budget_planner.ledger import Ledger, cash_flow_by_period
from budget_planner.months import MonthResolver
from budget_planner.projection import combine_projections
from budget_planner.results import Result
from budget_planner.sandbox import SandboxSessionManager
from budget_planner.schemas import ACCOUNT_TYPES, INCOME_TYPES, TRANSACTION_TYPES
from budget_planner.summary import DashboardSummary
from budget_planner.temporal import current_month, month_range, month_start, parse_date_list, table_for

KIND_LABELS = {
    'account': 'Accounts',
    'income_source': 'Income sources',
    'category': 'Categories',
    'planned_expense': 'Planned expenses',
    'goal': 'Goals',
}

DISPLAY_COLUMNS = {
    'account': ['id', 'bank_name', 'account_type', 'starting_balance'],
    'income_source': ['id', 'source_name', 'income_type', 'amount', 'account_id', 'pay_dates'],
    'category': ['id', 'name', 'bucket_id'],
    'planned_expense': ['id', 'description', 'amount', 'bucket_id', 'category_id', 'account_id', 'due_dates'],
    'goal': ['id', 'name', 'target_amount', 'funded_amount', 'target_date'],
    'transaction': ['id', 'date', 'type', 'amount', 'description', 'account_id', 'bucket_id', 'category_id'],
}

# (column, label, widget) per editable kind.  Widgets: text, money, date,
# dates, a CHOICES key, or a lookup key (account, category, bucket).
FORM_FIELDS = {
    'account': [
        ('bank_name', 'Institution', 'text'),
        ('account_type', 'Type', 'account_type'),
        ('starting_balance', 'Starting balance', 'money'),
    ],
    'income_source': [
        ('source_name', 'Name', 'text'),
        ('income_type', 'Income type', 'income_type'),
        ('amount', 'Amount per pay date', 'money'),
        ('account_id', 'Deposit account', 'account'),
        ('pay_dates', 'Pay dates', 'dates'),
    ],
    'category': [
        ('name', 'Name', 'text'),
        ('bucket_id', 'Bucket', 'bucket'),
    ],
    'planned_expense': [
        ('description', 'Description', 'text'),
        ('amount', 'Amount per due date', 'money'),
        ('bucket_id', 'Bucket', 'bucket'),
        ('category_id', 'Category', 'category'),
        ('account_id', 'Paid from', 'account'),
        ('due_dates', 'Due dates', 'dates'),
    ],
    'goal': [
        ('name', 'Name', 'text'),
        ('target_amount', 'Target amount', 'money'),
        ('target_date', 'Target date', 'date'),
        ('funded_amount', 'Funded so far', 'money'),
    ],
    'transaction': [
        ('date', 'Date', 'date'),
        ('type', 'Type', 'transaction_type'),
        ('amount', 'Amount', 'money'),
        ('description', 'Description', 'text'),
        ('account_id', 'Account', 'account'),
        ('bucket_id', 'Bucket', 'bucket'),
        ('category_id', 'Category', 'category'),
    ],
}

CHOICES = {
    'account_type': ACCOUNT_TYPES,
    'income_type': INCOME_TYPES,
    'transaction_type': TRANSACTION_TYPES,
}

LOOKUP_LABELS = {'account': 'bank_name', 'category': 'name', 'bucket': 'name'}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def format_currency(value: Optional[float]) -> str:
    if value is None:
        return "-"
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def entities_frame(rows: Iterable[Dict[str, Any]], columns: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """Tabulate entity rows for ``st.dataframe``.

    Ids are rendered as text so pending sandbox ids display cleanly next to
    stored integer ids.
    """
    df = pd.DataFrame(list(rows))
    if columns:
        df = df.reindex(columns=list(columns))
    if 'id' in df.columns:
        df['id'] = df['id'].map(str)
    return df


def parse_date_text(text: str) -> List[str]:
    """``"2026-03-05, 2026-03-19"`` -> ``['2026-03-05', '2026-03-19']``."""
    return [part.strip() for part in (text or '').split(',') if part.strip()]


def lookup_options(kind: str, rows: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    """Selectbox label -> id for the live rows of ``kind``."""
    column = LOOKUP_LABELS[kind]
    return {
        f"{row[column]} ({row['id']})": row['id']
        for row in rows
        if not row.get('is_deleted')
    }


def build_lookups(accounts, categories, buckets) -> Dict[str, Dict[str, Any]]:
    return {
        'account': lookup_options('account', accounts),
        'category': lookup_options('category', categories),
        'bucket': lookup_options('bucket', buckets),
    }


def show_result(result: Result, success_message: Optional[str] = None) -> bool:
    """Surface a service result inline.  Returns ``result.ok``."""
    if not result.ok:
        st.error(f"{result.error.code}: {result.error.message}")
        return False
    if success_message:
        st.success(success_message)
    return True


def _rerun() -> None:
    rerun_fn = getattr(st, 'rerun', None) or getattr(st, 'experimental_rerun', None)
    if rerun_fn:
        rerun_fn()


def build_services(store: Optional[Store] = None) -> SimpleNamespace:
    """Wire the store, resolver and services together on the shared bus."""
    store = store or Store()
    init = store.init_db()
    if not init.ok:
        raise RuntimeError(init.error.message)
    bus.emit('database:initialized', {'path': str(store.db_path)})
    resolver = MonthResolver(store, bus)
    return SimpleNamespace(
        store=store,
        resolver=resolver,
        budget=BudgetService(store, resolver, bus),
        ledger=Ledger(store, bus),
        summary=DashboardSummary(store, resolver),
        planner=SandboxSessionManager(resolver, store, bus),
    )


@st.cache_resource
def get_services() -> SimpleNamespace:
    config.ensure_data_directories()
    return build_services()


def _month_picker(key: str) -> str:
    picked = st.date_input("Month", value=date.today().replace(day=1), key=key)
    return picked.strftime('%Y-%m')


# ---------------------------------------------------------------------------
# Forms
# ---------------------------------------------------------------------------


def entity_form(
    kind: str,
    key: str,
    lookups: Mapping[str, Mapping[str, Any]],
    current: Optional[Mapping[str, Any]] = None,
    submit_label: str = "Save",
) -> Optional[Dict[str, Any]]:
    """Render a form for ``kind`` and return its values once submitted.

    ``current`` pre-fills the widgets when editing an existing entity.
    """
    current = current or {}
    values: Dict[str, Any] = {}
    with st.form(key):
        for column, label, widget in FORM_FIELDS[kind]:
            widget_key = f"{key}_{column}"
            default = current.get(column)
            if widget == 'text':
                values[column] = st.text_input(label, value=default or "", key=widget_key)
            elif widget == 'money':
                values[column] = st.number_input(label, value=float(default or 0.0), step=50.0, key=widget_key)
            elif widget == 'date':
                picked = st.date_input(
                    label, value=date.fromisoformat(default[:10]) if default else date.today(), key=widget_key
                )
                values[column] = picked.isoformat()
            elif widget == 'dates':
                text = st.text_input(
                    f"{label} (comma separated YYYY-MM-DD)",
                    value=", ".join(parse_date_list(default)),
                    key=widget_key,
                )
                values[column] = parse_date_text(text)
            elif widget in CHOICES:
                options = list(CHOICES[widget])
                index = options.index(default) if default in options else 0
                values[column] = st.selectbox(label, options=options, index=index, key=widget_key)
            else:
                options = dict(lookups.get(widget, {}))
                labels = list(options) or ["-"]
                ids = list(options.values())
                index = ids.index(default) if default in ids else 0
                picked = st.selectbox(label, options=labels, index=index, key=widget_key)
                values[column] = options.get(picked)
        submitted = st.form_submit_button(submit_label)
    return values if submitted else None


def render_entity_editor(
    kind: str,
    rows: List[Dict[str, Any]],
    lookups: Mapping[str, Mapping[str, Any]],
    key: str,
    on_create: Callable[[Dict[str, Any]], Result],
    on_update: Callable[[Any, Dict[str, Any]], Result],
    on_delete: Callable[[Any], Result],
) -> None:
    """Table of ``rows`` with add, edit and delete controls."""
    if rows:
        st.dataframe(entities_frame(rows, DISPLAY_COLUMNS[kind]), use_container_width=True)
    else:
        st.caption("Nothing here yet.")

    add_tab, edit_tab = st.tabs(["Add", "Edit or delete"])
    with add_tab:
        values = entity_form(kind, f"{key}_add", lookups, submit_label="Add")
        if values is not None and show_result(on_create(values), "Added"):
            _rerun()
    with edit_tab:
        if not rows:
            st.caption("Nothing to edit.")
            return
        ids = {str(row['id']): row for row in rows}
        chosen = ids[st.selectbox("Entry", options=list(ids), key=f"{key}_pick")]
        values = entity_form(kind, f"{key}_edit_{chosen['id']}", lookups, current=chosen)
        if values is not None and show_result(on_update(chosen['id'], values), "Saved"):
            _rerun()
        if st.button("Delete", key=f"{key}_delete"):
            if show_result(on_delete(chosen['id'])):
                _rerun()


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


def render_budget_view(services: SimpleNamespace) -> None:
    st.header("Budget")
    month = _month_picker('budget_month')
    resolved = services.budget.get_budget_data_for_month(month)
    if not show_result(resolved):
        return
    snapshot = resolved.data
    lookups = build_lookups(snapshot.accounts, snapshot.categories, snapshot.buckets)
    budget: BudgetService = services.budget

    for kind, label in KIND_LABELS.items():
        rows = snapshot.rows(table_for(kind))
        with st.expander(f"{label} ({len(rows)})", expanded=kind == 'account'):
            render_entity_editor(
                kind,
                rows,
                lookups,
                key=f"budget_{kind}",
                on_create=lambda values, kind=kind: budget.create(
                    kind, {**values, 'effective_from': month_start(month)}
                ),
                on_update=lambda entity_id, values, kind=kind: budget.update(kind, entity_id, values),
                on_delete=lambda entity_id, kind=kind: budget.delete(kind, entity_id),
            )

    goals = [g for g in snapshot.goals if g['funded_amount'] < g['target_amount']]
    if goals:
        with st.form("fund_goal_form"):
            st.subheader("Fund a goal")
            options = {f"{g['name']} ({g['id']})": g['id'] for g in goals}
            chosen = st.selectbox("Goal", options=list(options))
            amount = st.number_input("Amount", min_value=0.0, step=50.0)
            if st.form_submit_button("Add funds") and amount > 0:
                if show_result(budget.fund_goal(options[chosen], amount), "Funded"):
                    _rerun()


def render_planning_view(services: SimpleNamespace) -> None:
    st.header("Planning sandbox")
    st.caption("Changes here never touch your real budget.")
    planner: SandboxSessionManager = services.planner

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        if st.button("Undo", disabled=not planner.can_undo):
            planner.undo()
            _rerun()
    with col2:
        if st.button("Redo", disabled=not planner.can_redo):
            planner.redo()
            _rerun()
    with col3:
        if st.button("Reset to current month"):
            if show_result(planner.reset()):
                _rerun()
    with col4:
        load_month = _month_picker('planning_month')
        if st.button("Load month"):
            if show_result(planner.bootstrap(load_month)):
                _rerun()

    session = planner.get_session()
    if not show_result(session):
        return
    session = session.data
    st.write(f"Working copy of **{session.month}**")
    lookups = build_lookups(session.entities('account'), session.entities('category'), session.buckets)

    for kind, label in KIND_LABELS.items():
        rows = session.entities(kind)
        with st.expander(f"{label} ({len(rows)})"):
            render_entity_editor(
                kind,
                rows,
                lookups,
                key=f"planning_{kind}",
                on_create=lambda values, kind=kind: planner.create(
                    kind, {**values, 'effective_from': month_start(session.month)}
                ),
                on_update=lambda entity_id, values, kind=kind: planner.update(kind, entity_id, values),
                on_delete=lambda entity_id, kind=kind: planner.delete(kind, entity_id),
            )

    projections = planner.project()
    if show_result(projections):
        first, last = month_range(session.month)
        st.plotly_chart(visualization.create_projection_chart(projections.data), use_container_width=True)
        total = combine_projections(projections.data, first, last)
        st.metric("Projected month-end balance", format_currency(total.ending_balance))

    st.subheader("Scenarios")
    name = st.text_input("Scenario name")
    if st.button("Save scenario") and name:
        show_result(planner.save_scenario(name), f"Saved scenario '{name}'")
    scenarios = planner.list_scenarios()
    if show_result(scenarios) and scenarios.data:
        labels = {f"{s['name']} ({s['created_at'][:10]})": s['id'] for s in scenarios.data}
        chosen = st.selectbox("Saved scenarios", options=list(labels))
        load_col, export_col, delete_col = st.columns(3)
        with load_col:
            if st.button("Load scenario"):
                if show_result(planner.load_scenario(labels[chosen])):
                    _rerun()
        with export_col:
            if st.button("Export to file"):
                exported = planner.export_scenario(labels[chosen])
                show_result(exported, f"Exported to {exported.data}" if exported.ok else None)
        with delete_col:
            if st.button("Delete scenario"):
                if show_result(planner.delete_scenario(labels[chosen])):
                    _rerun()


def render_ledger_view(services: SimpleNamespace) -> None:
    st.header("Ledger")
    month = _month_picker('ledger_month')
    resolved = services.budget.get_budget_data_for_month(month)
    if not show_result(resolved):
        return
    snapshot = resolved.data
    lookups = build_lookups(snapshot.accounts, snapshot.categories, snapshot.buckets)

    start, end = month_range(month)
    transactions = services.ledger.list_transactions_by_date_range(start, end)
    if not show_result(transactions):
        return
    ledger: Ledger = services.ledger
    render_entity_editor(
        'transaction',
        transactions.data,
        lookups,
        key="ledger",
        on_create=ledger.create,
        on_update=ledger.update,
        on_delete=ledger.delete,
    )


def render_dashboard_view(services: SimpleNamespace) -> None:
    st.header("Dashboard")
    month = _month_picker('dashboard_month')
    summary = services.summary.get_budget_summary(month)
    if not show_result(summary):
        return
    data = summary.data

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Income (actual)", format_currency(data['income']['actual']),
                delta=format_currency(data['income']['actual'] - data['income']['planned']))
    col2.metric("Expenses (actual)", format_currency(data['expenses']['actual']))
    col3.metric("Net cash flow", format_currency(data['net_cash_flow']))
    col4.metric("Total balance", format_currency(data['total_balance']))

    balances = services.summary.get_account_balances(month)
    if show_result(balances) and balances.data['accounts']:
        st.dataframe(pd.DataFrame(balances.data['accounts']), use_container_width=True)

    start, end = month_range(month)
    projection = services.summary.get_balance_projection(start, end)
    if show_result(projection):
        st.plotly_chart(
            visualization.create_planned_vs_actual_chart(projection.data['projected'], projection.data['actual']),
            use_container_width=True,
        )

    comparison = services.summary.get_budget_vs_expense(month)
    if show_result(comparison):
        st.plotly_chart(visualization.create_budget_vs_expense_chart(comparison.data['by_bucket']),
                        use_container_width=True)

    if data['category_status']:
        st.dataframe(pd.DataFrame(data['category_status']), use_container_width=True)

    goals = services.summary.get_goals_progress(month)
    if show_result(goals):
        st.plotly_chart(visualization.create_goals_progress_chart(goals.data), use_container_width=True)

    transactions = services.ledger.list_transactions()
    if show_result(transactions):
        st.plotly_chart(visualization.create_cash_flow_chart(cash_flow_by_period(transactions.data)),
                        use_container_width=True)


VIEWS = {
    'Budget': render_budget_view,
    'Planning': render_planning_view,
    'Ledger': render_ledger_view,
    'Dashboard': render_dashboard_view,
}


def main() -> None:
    st.set_page_config(page_title="Budget Planner", layout="wide", initial_sidebar_state="expanded")
    config.configure_logging()
    services = get_services()
    choice = st.sidebar.radio("View", options=list(VIEWS), index=0)
    st.sidebar.caption(f"Current month: {current_month()}")
    VIEWS[choice](services)


if __name__ == "__main__":
    main()
