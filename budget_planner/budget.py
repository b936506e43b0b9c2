"""Budget page services: month-versioned CRUD, buckets and goal funding."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Dict, Optional

from .db import Store
from .events import EventBus, bus as default_bus
from .months import MonthResolver
from .results import VALIDATION_ERROR, Result
from .temporal import (
    ENTITY_TABLES,
    FIXED_COLUMNS,
    current_month,
    month_of,
    month_start,
    table_for,
)

logger = logging.getLogger(__name__)


def event_prefix(kind: str) -> str:
    """``'planned_expense'`` -> ``'planned-expense'``."""
    for name, table in ENTITY_TABLES.items():
        if kind in (name, table):
            return name.replace('_', '-')
    raise ValueError(f"Unknown entity kind: {kind!r}")


class BudgetService:
    """Create, edit and summarise the budget for a month.

    Every successful write is followed by a ``<kind>:<action>`` event on the
    bus.
    """

    def __init__(
        self,
        store: Store,
        resolver: Optional[MonthResolver] = None,
        bus: Optional[EventBus] = None,
        month_provider: Optional[Callable[[], str]] = None,
    ):
        self.store = store
        self.bus = bus or default_bus
        self.resolver = resolver or MonthResolver(store, self.bus)
        self._month_provider = month_provider or current_month

    def _normalise_effective_from(self, data: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(data or {})
        value = record.get('effective_from')
        if value:
            record['effective_from'] = month_start(month_of(value))
        else:
            record['effective_from'] = month_start(self._month_provider())
        return record

    # ------------------------------------------------------------------
    # Month-versioned entities
    # ------------------------------------------------------------------

    def create(self, kind: str, data: Dict[str, Any]) -> Result:
        """Insert a new row of ``kind`` effective from its month's start.

        Args:
            kind: Entity kind such as ``'account'`` or ``'goal'``.
            data: Field values. ``effective_from`` defaults to the current
                month; any date given is moved to the first of its month.

        Returns:
            The inserted row, or the store's validation error.
        """
        table = table_for(kind)
        record = self._normalise_effective_from(data)
        if table == 'accounts' and not record.get('starting_balance_date'):
            record['starting_balance_date'] = date.today().isoformat()

        result = self.store.insert(table, record)
        if result.ok:
            self.bus.emit(f"{event_prefix(kind)}:created", {'record': result.data})
        return result

    def update(self, kind: str, record_id: int, changes: Dict[str, Any]) -> Result:
        """Edit a row in place.  The month a row belongs to cannot be changed."""
        table = table_for(kind)
        fixed = [column for column in FIXED_COLUMNS if column in (changes or {})]
        if fixed:
            return Result.failure(VALIDATION_ERROR, f"{', '.join(fixed)}: cannot be changed after creation")
        record = dict(changes or {})
        result = self.store.update(table, record_id, record)
        if result.ok:
            self.bus.emit(f"{event_prefix(kind)}:updated", {'record': result.data, 'changes': record})
        return result

    def delete(self, kind: str, record_id: int) -> Result:
        result = self.store.delete(table_for(kind), record_id)
        if result.ok:
            self.bus.emit(f"{event_prefix(kind)}:deleted", {'id': record_id})
        return result

    def restore(self, kind: str, record_id: int) -> Result:
        """Undo a soft delete."""
        result = self.store.restore(table_for(kind), record_id)
        if result.ok:
            self.bus.emit(f"{event_prefix(kind)}:restored", {'record': result.data})
        return result

    def list(self, kind: str, month: Optional[str] = None) -> Result:
        """Live rows of ``kind`` for ``month`` (default: current month)."""
        return self.resolver.get_month_data(table_for(kind), month or self._month_provider())

    # ------------------------------------------------------------------
    # Buckets
    # ------------------------------------------------------------------

    def get_buckets(self) -> Result:
        return self.store.query('buckets', order_by='sort_order')

    def update_bucket(self, bucket_id: int, changes: Dict[str, Any]) -> Result:
        """Rename or recolour a bucket.  Other fields are ignored."""
        result = self.store.update('buckets', bucket_id, changes)
        if result.ok:
            self.bus.emit('bucket:updated', {'bucket': result.data, 'changes': changes})
        return result

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def fund_goal(self, goal_id: int, amount: float) -> Result:
        """Add ``amount`` to a goal's funded total."""
        current = self.store.get_by_id('goals', goal_id)
        if not current.ok:
            return current
        goal = current.data
        new_total = (goal.get('funded_amount') or 0) + amount

        result = self.store.update('goals', goal_id, {'funded_amount': new_total})
        if result.ok and new_total >= goal['target_amount']:
            logger.info("Goal %s is fully funded", goal_id)
        if result.ok:
            self.bus.emit('goal:funded', {
                'goal': result.data,
                'amount': amount,
                'new_total': new_total,
                'is_complete': new_total >= goal['target_amount'],
            })
        return result

    # ------------------------------------------------------------------
    # Month views
    # ------------------------------------------------------------------

    def get_bucket_total(self, bucket_id: int, month: Optional[str] = None) -> Result:
        """Sum of planned expense amounts in a bucket for ``month``."""
        expenses = self.resolver.get_month_data('planned_expenses', month or self._month_provider())
        if not expenses.ok:
            return expenses
        total = sum(e['amount'] for e in expenses.data if e['bucket_id'] == bucket_id)
        return Result.success(total)

    def get_budget_data_for_month(self, month: Optional[str] = None) -> Result:
        """Resolved budget for ``month``, carrying an earlier month forward if needed."""
        return self.resolver.resolve(month or self._month_provider())

    def get_budget_summary(self, month: Optional[str] = None) -> Result:
        month = month or self._month_provider()
        resolved = self.resolver.resolve(month)
        if not resolved.ok:
            return resolved
        snapshot = resolved.data

        income = sum(s['amount'] for s in snapshot.income_sources)
        expenses = sum(e['amount'] for e in snapshot.planned_expenses)
        data = snapshot.to_dict()
        data['totals'] = {
            'income': income,
            'expenses': expenses,
            'remaining': income - expenses,
            'goal_target': sum(g['target_amount'] for g in snapshot.goals),
            'goal_funded': sum(g.get('funded_amount') or 0 for g in snapshot.goals),
        }
        return Result.success(data)

