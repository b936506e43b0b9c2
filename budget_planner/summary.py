"""Read-only aggregations for the dashboard view."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from .config import EXPENSE_BUCKET_KEYS
from .db import Store
from .months import MonthResolver, MonthSnapshot
from .projection import (
    TOTAL_ACCOUNT_ID,
    CashEvent,
    opening_balances,
    posted_events,
    project_balances,
    scheduled_events,
)
from .results import Result
from .temporal import month_of, month_range, parse_date_list


def status_label(percent_used: float, remaining: float) -> str:
    """Label for how much of a category's plan has been spent."""
    if remaining < 0:
        return 'over'
    if percent_used >= 90:
        return 'warning'
    if percent_used >= 50:
        return 'on-track'
    return 'under'


def _dates_in_month(value: Any, month: str) -> List[str]:
    return [d for d in parse_date_list(value) if d.startswith(month)]


def _percent(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


def _goal_progress(goal: Mapping[str, Any]) -> Dict[str, Any]:
    target = goal['target_amount']
    funded = goal.get('funded_amount') or 0
    return {
        'id': goal['id'],
        'name': goal['name'],
        'target_amount': target,
        'funded_amount': funded,
        'target_date': goal['target_date'],
        'percent_funded': _percent(funded, target),
        'is_complete': funded >= target,
        'remaining': max(0, target - funded),
    }


class DashboardSummary:
    """Planned versus actual figures for a month, over resolved budget data."""

    def __init__(self, store: Store, resolver: Optional[MonthResolver] = None):
        self.store = store
        self.resolver = resolver or MonthResolver(store)

    def _snapshot(self, month: str) -> Result:
        return self.resolver.resolve(month)

    def _month_transactions(self, month: str, **filters: Any) -> Result:
        start, end = month_range(month)
        return self.store.query('transactions', {**filters, 'date': {'between': [start, end]}})

    def get_budget_summary(self, month: str) -> Result:
        """Income and spending for ``month``, planned against actual."""
        resolved = self._snapshot(month)
        if not resolved.ok:
            return resolved
        transactions = self._month_transactions(month)
        if not transactions.ok:
            return transactions
        snapshot: MonthSnapshot = resolved.data
        posted = transactions.data
        buckets = {b['id']: b for b in snapshot.buckets}

        actual_by_category: Dict[Any, float] = {}
        for t in posted:
            if t['type'] == 'expense':
                actual_by_category[t['category_id']] = actual_by_category.get(t['category_id'], 0) + t['amount']

        planned_by_category: Dict[Any, float] = {}
        for expense in snapshot.planned_expenses:
            occurrences = len(_dates_in_month(expense.get('due_dates'), month))
            if occurrences:
                key = expense['category_id']
                planned_by_category[key] = planned_by_category.get(key, 0) + expense['amount'] * occurrences

        category_status = []
        for category in snapshot.categories:
            bucket = buckets.get(category['bucket_id'])
            planned = planned_by_category.get(category['id'], 0)
            actual = actual_by_category.get(category['id'], 0)
            if not planned and not actual:
                continue
            remaining = planned - actual
            percent_used = _percent(actual, planned)
            category_status.append({
                'id': category['id'],
                'name': category['name'],
                'bucket_id': category['bucket_id'],
                'bucket_name': bucket['name'] if bucket else 'Unknown',
                'bucket_key': bucket['bucket_key'] if bucket else 'unknown',
                'planned': planned,
                'actual': actual,
                'remaining': remaining,
                'percent_used': percent_used,
                'status': status_label(percent_used, remaining),
            })

        planned_income = sum(
            s['amount'] * len(_dates_in_month(s.get('pay_dates'), month))
            for s in snapshot.income_sources
        )
        actual_income = sum(t['amount'] for t in posted if t['type'] == 'income')
        planned_expenses = sum(planned_by_category.values())
        actual_expenses = sum(t['amount'] for t in posted if t['type'] == 'expense')

        return Result.success({
            'month': month,
            'income': {
                'planned': planned_income,
                'actual': actual_income,
                'remaining': planned_income - actual_income,
                'percent_received': _percent(actual_income, planned_income),
            },
            'expenses': {
                'planned': planned_expenses,
                'actual': actual_expenses,
                'remaining': planned_expenses - actual_expenses,
                'percent_used': _percent(actual_expenses, planned_expenses),
            },
            'category_status': category_status,
            'goals': [_goal_progress(g) for g in snapshot.goals],
            'total_balance': sum(a.get('starting_balance') or 0 for a in snapshot.accounts),
            'net_cash_flow': actual_income - actual_expenses,
        })

    def get_balance_projection(self, start: str, end: str) -> Result:
        """Total planned and actual balance lines for the window.

        Both lines come from the same projection sweep over a single
        all-accounts total.  The actual line opens at the starting balances
        plus every transaction posted before ``start``.
        """
        resolved = self._snapshot(month_of(start))
        if not resolved.ok:
            return resolved
        snapshot: MonthSnapshot = resolved.data

        window = self.store.query('transactions', {'date': {'between': [start, end]}}, order_by='date')
        if not window.ok:
            return window
        prior = self.store.query('transactions', {'date': {'lt': start}})
        if not prior.ok:
            return prior

        starting_balance = sum(a.get('starting_balance') or 0 for a in snapshot.accounts)
        total_account = [{'id': TOTAL_ACCOUNT_ID, 'bank_name': 'All accounts', 'starting_balance': starting_balance}]

        planned_events = _as_total(scheduled_events(snapshot.income_sources, snapshot.planned_expenses, start, end))
        projected = project_balances(total_account, planned_events, start, end)[TOTAL_ACCOUNT_ID]

        prior_rows = [{**t, 'account_id': TOTAL_ACCOUNT_ID} for t in prior.data]
        opening = opening_balances(total_account, prior_rows, start)
        actual = project_balances(
            total_account, _as_total(posted_events(window.data, start, end)), start, end, opening
        )[TOTAL_ACCOUNT_ID]

        return Result.success({
            'start_date': start,
            'end_date': end,
            'starting_balance': starting_balance,
            'projected': projected,
            'actual': actual,
        })

    def get_budget_vs_expense(self, month: str) -> Result:
        """Planned against actual spending per expense bucket and category."""
        resolved = self._snapshot(month)
        if not resolved.ok:
            return resolved
        transactions = self._month_transactions(month, type='expense')
        if not transactions.ok:
            return transactions
        snapshot: MonthSnapshot = resolved.data
        buckets = [b for b in snapshot.buckets if b['bucket_key'] in EXPENSE_BUCKET_KEYS]
        bucket_lookup = {b['id']: b for b in buckets}

        def planned_for(predicate) -> float:
            return sum(
                e['amount'] * len(_dates_in_month(e.get('due_dates'), month))
                for e in snapshot.planned_expenses
                if predicate(e)
            )

        by_bucket = [
            {
                'id': bucket['id'],
                'name': bucket['name'],
                'bucket_key': bucket['bucket_key'],
                'color': bucket['color'],
                'planned': planned_for(lambda e, b=bucket: e['bucket_id'] == b['id']),
                'actual': sum(t['amount'] for t in transactions.data if t.get('bucket_id') == bucket['id']),
            }
            for bucket in buckets
        ]

        by_category = []
        for category in snapshot.categories:
            bucket = bucket_lookup.get(category['bucket_id'])
            if bucket is None:
                continue
            planned = planned_for(lambda e, c=category: e['category_id'] == c['id'])
            actual = sum(t['amount'] for t in transactions.data if t.get('category_id') == category['id'])
            if not planned and not actual:
                continue
            by_category.append({
                'id': category['id'],
                'name': category['name'],
                'bucket_id': category['bucket_id'],
                'bucket_name': bucket['name'],
                'bucket_key': bucket['bucket_key'],
                'color': bucket['color'],
                'planned': planned,
                'actual': actual,
            })

        return Result.success({'month': month, 'by_bucket': by_bucket, 'by_category': by_category})

    def get_goals_progress(self, month: str) -> Result:
        resolved = self._snapshot(month)
        if not resolved.ok:
            return resolved
        goals = sorted(resolved.data.goals, key=lambda g: g['target_date'])
        return Result.success([_goal_progress(g) for g in goals])

    def get_account_balances(self, month: str) -> Result:
        """Current balance per account of ``month``.

        Carry-forward gives each month its own copy of an account, so a
        transaction counts towards an account when it is posted to any
        version of it (same ``bank_name`` and ``account_type``) on or after
        the account's ``starting_balance_date``.
        """
        resolved = self._snapshot(month)
        if not resolved.ok:
            return resolved
        transactions = self.store.query('transactions')
        if not transactions.ok:
            return transactions
        versions = self.store.query('accounts', include_deleted=True)
        if not versions.ok:
            return versions

        lineage: Dict[Tuple[str, str], Set[Any]] = {}
        for row in versions.data:
            lineage.setdefault((row['bank_name'], row['account_type']), set()).add(row['id'])

        balances = []
        for account in resolved.data.accounts:
            since = account.get('starting_balance_date') or account['created_at'][:10]
            ids = lineage.get((account['bank_name'], account['account_type']), set()) | {account['id']}
            change = sum(
                t['amount'] if t['type'] == 'income' else -t['amount']
                for t in transactions.data
                if t['account_id'] in ids and t['date'] >= since
            )
            starting = account.get('starting_balance') or 0
            balances.append({
                'id': account['id'],
                'bank_name': account['bank_name'],
                'account_type': account['account_type'],
                'starting_balance': starting,
                'starting_balance_date': since,
                'current_balance': starting + change,
            })
        return Result.success({
            'accounts': balances,
            'total_balance': sum(b['current_balance'] for b in balances),
        })


def _as_total(events: List[CashEvent]) -> List[CashEvent]:
    return [CashEvent(e.date, TOTAL_ACCOUNT_ID, e.amount, e.source) for e in events]
