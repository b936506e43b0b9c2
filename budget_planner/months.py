"""Month resolution and carry-forward.

A month that has never been configured inherits the budget of the month the
user edited most recently before it.  The inherited rows are real copies:
fresh ids, ``effective_from`` set to the new month, and foreign keys pointing
at the copies rather than at the donor month's rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .db import Store
from .events import EventBus, bus as default_bus
from .results import Result
from .temporal import (
    AUDIT_COLUMNS,
    FOREIGN_KEYS,
    TABLE_ORDERING,
    TEMPORAL_TABLES,
    month_bounds_inclusive,
    month_of,
    month_start,
    parse_month,
)

logger = logging.getLogger(__name__)


@dataclass
class MonthSnapshot:
    """The live rows of every month-versioned table for one month."""

    month: str
    accounts: List[Dict[str, Any]] = field(default_factory=list)
    income_sources: List[Dict[str, Any]] = field(default_factory=list)
    categories: List[Dict[str, Any]] = field(default_factory=list)
    planned_expenses: List[Dict[str, Any]] = field(default_factory=list)
    goals: List[Dict[str, Any]] = field(default_factory=list)
    buckets: List[Dict[str, Any]] = field(default_factory=list)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return getattr(self, table)

    def is_empty(self) -> bool:
        return not any(self.rows(table) for table in TEMPORAL_TABLES)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'month': self.month}
        for table in (*TEMPORAL_TABLES, 'buckets'):
            data[table] = [dict(row) for row in self.rows(table)]
        return data


class MonthResolver:
    """Decides which budget rows are in effect for a calendar month."""

    def __init__(self, store: Store, bus: Optional[EventBus] = None):
        self.store = store
        self.bus = bus or default_bus

    def get_month_data(self, table: str, month: str, order_by: Optional[str] = None) -> Result:
        """Live rows of ``table`` whose ``effective_from`` falls in ``month``."""
        start, end = month_bounds_inclusive(month)
        return self.store.query(
            table,
            {'effective_from': {'between': [start, end]}},
            order_by=order_by or TABLE_ORDERING.get(table),
        )

    def get_buckets(self) -> Result:
        return self.store.query('buckets', order_by='sort_order')

    def load_snapshot(self, month: str, include_buckets: bool = False) -> Result:
        """Load all five tables for ``month``, stopping at the first failure."""
        parse_month(month)
        snapshot = MonthSnapshot(month=month)
        for table in TEMPORAL_TABLES:
            result = self.get_month_data(table, month)
            if not result.ok:
                return result
            setattr(snapshot, table, result.data)
        if include_buckets:
            buckets = self.get_buckets()
            if not buckets.ok:
                return buckets
            snapshot.buckets = buckets.data
        return Result.success(snapshot)

    def month_has_data(self, month: str) -> Result:
        """True when any of the five tables has a live row in ``month``."""
        for table in TEMPORAL_TABLES:
            result = self.get_month_data(table, month)
            if not result.ok:
                return result
            if result.data:
                return Result.success(True)
        return Result.success(False)

    def latest_edited_month_before(self, month: str) -> Result:
        """Month of the most recently updated row effective before ``month``.

        This is the month the user touched last, not the closest calendar
        month with data.

        Returns:
            ``Result`` holding a ``YYYY-MM`` string, or ``None`` when no
            earlier row exists.
        """
        start = month_start(month)
        latest: Optional[Dict[str, Any]] = None
        for table in TEMPORAL_TABLES:
            result = self.store.query(
                table,
                {'effective_from': {'lt': start}},
                order_by='updated_at',
                order='desc',
                limit=1,
            )
            if not result.ok:
                return result
            if not result.data:
                continue
            record = result.data[0]
            record_month = month_of(record.get('effective_from'))
            if not record_month:
                continue
            if latest is None or record['updated_at'] > latest['updated_at']:
                latest = {'month': record_month, 'updated_at': record['updated_at']}
        return Result.success(latest['month'] if latest else None)

    def copy_month_data(self, from_month: str, to_month: str) -> Result:
        """Copy every live row of ``from_month`` into ``to_month``.

        All inserts happen in one transaction: either the whole month is
        copied or nothing is.

        Returns:
            ``Result`` holding the number of rows copied per table.
        """
        if not from_month or from_month == to_month:
            return Result.success({})
        return self.store.run_in_transaction(lambda: self._copy_rows(from_month, to_month))

    def _copy_rows(self, from_month: str, to_month: str) -> Result:
        donor = self.load_snapshot(from_month)
        if not donor.ok:
            return donor

        target_start = month_start(to_month)
        id_maps: Dict[str, Dict[Any, Any]] = {table: {} for table in TEMPORAL_TABLES}
        counts: Dict[str, int] = {}

        for table in TEMPORAL_TABLES:
            for row in donor.data.rows(table):
                record = _copyable_fields(row)
                for column, value in record.items():
                    target = FOREIGN_KEYS.get((table, column))
                    if target and value in id_maps[target]:
                        record[column] = id_maps[target][value]
                record['effective_from'] = target_start

                inserted = self.store.insert(table, record)
                if not inserted.ok:
                    logger.error(
                        "Carry-forward %s -> %s failed on %s: %s",
                        from_month, to_month, table, inserted.error.message,
                    )
                    return inserted
                id_maps[table][row['id']] = inserted.data['id']
            counts[table] = len(id_maps[table])

        return Result.success(counts)

    def ensure_month_data(self, month: str) -> Result:
        """Make sure ``month`` has rows, carrying forward if it has none.

        Returns:
            ``Result`` holding the donor month that was copied, or ``None``
            when the month was already configured or nothing earlier exists.
        """
        parse_month(month)
        bound = month
        while True:
            has_data = self.month_has_data(month)
            if not has_data.ok:
                return has_data
            if has_data.data:
                return Result.success(None if bound == month else bound)

            donor_result = self.latest_edited_month_before(bound)
            if not donor_result.ok:
                return donor_result
            donor = donor_result.data
            if donor is None:
                return Result.success(None)
            assert donor < bound, f"donor month {donor} is not earlier than {bound}"

            copied = self.copy_month_data(donor, month)
            if not copied.ok:
                return copied
            total = sum(copied.data.values())
            if total:
                logger.info("Carried %d rows forward from %s to %s", total, donor, month)
                self.bus.emit('budget:month-carried-forward', {
                    'from_month': donor,
                    'to_month': month,
                    'counts': copied.data,
                })
            # A donor with nothing copyable pushes the search further back.
            bound = donor

    def resolve(self, month: str) -> Result:
        """Snapshot of ``month`` including the bucket taxonomy.

        Carries an earlier month forward first when ``month`` is empty.
        Calling it again without edits returns the same rows.
        """
        ensured = self.ensure_month_data(month)
        if not ensured.ok:
            return ensured
        return self.load_snapshot(month, include_buckets=True)


def _copyable_fields(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        column: value
        for column, value in row.items()
        if column not in AUDIT_COLUMNS and column != 'effective_from' and value is not None
    }
