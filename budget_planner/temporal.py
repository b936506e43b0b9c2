"""Helpers shared by every month-versioned budget record.

Accounts, income sources, categories, planned expenses and goals are all
versioned by ``effective_from``: the first day of the month a row applies
to.  This module owns the month arithmetic, the entity-kind registry and
the JSON date-list encoding used at the storage boundary.
"""

from __future__ import annotations

import calendar
import json
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

DateLike = Union[str, date, datetime]

# Entity kind -> table name.  Order is the copy-forward dependency order:
# rows that are referenced come before the rows that reference them.
ENTITY_TABLES: Dict[str, str] = {
    'account': 'accounts',
    'category': 'categories',
    'income_source': 'income_sources',
    'planned_expense': 'planned_expenses',
    'goal': 'goals',
}
TEMPORAL_TABLES: Tuple[str, ...] = tuple(ENTITY_TABLES.values())

# Default list ordering per table, matching the budget page.
TABLE_ORDERING: Dict[str, str] = {
    'accounts': 'bank_name',
    'categories': 'name',
    'income_sources': 'source_name',
    'planned_expenses': 'description',
    'goals': 'target_date',
    'buckets': 'sort_order',
}

# (table, column) -> referenced temporal table
FOREIGN_KEYS: Dict[Tuple[str, str], str] = {
    ('income_sources', 'account_id'): 'accounts',
    ('planned_expenses', 'account_id'): 'accounts',
    ('planned_expenses', 'category_id'): 'categories',
}

# Columns holding an encoded list of ISO dates.
DATE_LIST_COLUMNS: Dict[str, str] = {
    'income_sources': 'pay_dates',
    'planned_expenses': 'due_dates',
}

AUDIT_COLUMNS = ('id', 'created_at', 'updated_at', 'is_deleted')

# Assigned when a row is created or carried forward, never by an update.
FIXED_COLUMNS = ('effective_from',)


def table_for(kind: str) -> str:
    """Map an entity kind (``'account'``) or table name to its table."""
    if kind in ENTITY_TABLES:
        return ENTITY_TABLES[kind]
    if kind in TEMPORAL_TABLES:
        return kind
    raise ValueError(f"Unknown entity kind: {kind!r}")


@dataclass(frozen=True, order=True)
class PendingId:
    """Identifier of a sandbox entity that has never been persisted.

    Persisted rows carry plain integer ids; a ``PendingId`` can never be
    mistaken for one, whatever the sign of the stored ids.
    """

    local: int

    def __str__(self) -> str:
        return f"pending:{self.local}"


def is_pending(value: Any) -> bool:
    return isinstance(value, PendingId)


# ------------------------------------------------------------------
# Month arithmetic
# ------------------------------------------------------------------

def _to_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def parse_month(month: str) -> Tuple[int, int]:
    """Split a ``YYYY-MM`` identifier into ``(year, month)``.

    Raises:
        ValueError: If the identifier is not a valid calendar month.
    """
    try:
        year_text, month_text = str(month).strip().split('-')[:2]
        year, number = int(year_text), int(month_text)
    except ValueError as exc:
        raise ValueError(f"Month must be in YYYY-MM format: {month!r}") from exc
    if not 1 <= number <= 12:
        raise ValueError(f"Month must be in YYYY-MM format: {month!r}")
    return year, number


def month_start(month: str) -> str:
    year, number = parse_month(month)
    return date(year, number, 1).isoformat()


def month_range(month: str) -> Tuple[str, str]:
    """Return the first and last ISO day of ``month``."""
    year, number = parse_month(month)
    last_day = calendar.monthrange(year, number)[1]
    return date(year, number, 1).isoformat(), date(year, number, last_day).isoformat()


def month_bounds_inclusive(month: str) -> Tuple[str, str]:
    """Range for ``effective_from`` comparisons.

    The upper bound covers full timestamps on the last day as well as bare
    dates, since older rows stored ``effective_from`` with a time part.
    """
    start, end = month_range(month)
    return start, f"{end}T23:59:59.999999"


def month_of(value: Optional[DateLike]) -> Optional[str]:
    """Return the ``YYYY-MM`` month a date or timestamp falls in."""
    if value is None or value == '':
        return None
    if isinstance(value, (date, datetime)):
        return value.strftime('%Y-%m')
    text = str(value)
    if len(text) < 7:
        return None
    return text[:7]


def current_month(today: Optional[date] = None) -> str:
    return (today or date.today()).strftime('%Y-%m')


def previous_month(month: str) -> str:
    year, number = parse_month(month)
    if number == 1:
        return f"{year - 1:04d}-12"
    return f"{year:04d}-{number - 1:02d}"


def date_range(start: DateLike, end: DateLike) -> List[str]:
    """Inclusive list of ISO days between ``start`` and ``end``."""
    current, last = _to_date(start), _to_date(end)
    days: List[str] = []
    while current <= last:
        days.append(current.isoformat())
        current += timedelta(days=1)
    return days


# ------------------------------------------------------------------
# Encoded date lists
# ------------------------------------------------------------------

def parse_date_list(value: Any) -> List[str]:
    """Decode a stored list of ISO dates.

    A malformed encoding decodes to an empty list rather than raising.
    """
    if value is None:
        return []
    if isinstance(value, list):
        items = value
    else:
        try:
            items = json.loads(value)
        except (TypeError, ValueError):
            return []
    if not isinstance(items, list):
        return []
    return [str(item) for item in items if isinstance(item, str)]


def dump_date_list(dates: Iterable[DateLike]) -> str:
    return json.dumps([_to_date(d).isoformat() for d in dates])


def dates_in_range(dates: Iterable[str], start: str, end: str) -> List[str]:
    return [d for d in dates if start <= d[:10] <= end]
