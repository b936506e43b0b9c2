from datetime import datetime, timedelta, timezone

import pytest

from budget_planner.budget import BudgetService
from budget_planner.db import Store
from budget_planner.events import EventBus
from budget_planner.months import MonthResolver
from budget_planner.sandbox import SandboxSessionManager


class TickingClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self, start=datetime(2026, 1, 1, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current

    def advance(self, **delta):
        self.current += timedelta(**delta)


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def store(tmp_path, clock):
    store = Store(tmp_path / 'budget.db', clock=clock)
    result = store.init_db()
    assert result.ok, result.error
    return store


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorded(bus):
    """List of (name, payload) for every event emitted on ``bus``."""
    events = []
    original = bus.emit

    def record(name, payload=None):
        events.append((name, payload))
        original(name, payload)

    bus.emit = record
    return events


@pytest.fixture
def resolver(store, bus):
    return MonthResolver(store, bus)


@pytest.fixture
def budget(store, resolver, bus):
    return BudgetService(store, resolver, bus, month_provider=lambda: '2026-03')


@pytest.fixture
def manager(resolver, store, bus, clock):
    return SandboxSessionManager(resolver, store, bus, clock=clock, month_provider=lambda: '2026-03')


@pytest.fixture
def seed_month(store):
    """Insert one linked row per month-versioned table for a month."""

    def _seed(month, balance=1000.0, income=400.0, pay_dates=None, due_dates=None):
        start = f"{month}-01"
        account = store.insert('accounts', {
            'bank_name': 'First Bank',
            'account_type': 'checking',
            'starting_balance': balance,
            'starting_balance_date': start,
            'effective_from': start,
        }).data
        category = store.insert('categories', {
            'name': 'Rent',
            'bucket_id': 1,
            'effective_from': start,
        }).data
        source = store.insert('income_sources', {
            'source_name': 'Salary',
            'income_type': 'w2',
            'amount': income,
            'account_id': account['id'],
            'pay_dates': pay_dates if pay_dates is not None else [f"{month}-05", f"{month}-19"],
            'effective_from': start,
        }).data
        expense = store.insert('planned_expenses', {
            'description': 'Rent',
            'amount': 300.0,
            'bucket_id': 1,
            'category_id': category['id'],
            'account_id': account['id'],
            'due_dates': due_dates if due_dates is not None else [f"{month}-01"],
            'effective_from': start,
        }).data
        goal = store.insert('goals', {
            'name': 'Emergency fund',
            'target_amount': 5000.0,
            'target_date': '2026-12-31',
            'funded_amount': 100.0,
            'effective_from': start,
        }).data
        return {
            'account': account,
            'category': category,
            'income_source': source,
            'planned_expense': expense,
            'goal': goal,
        }

    return _seed
