"""SQLite-backed record store for the budget planner.

All reads and writes go through :class:`Store`.  Features:

* schema validation before any write (see :mod:`budget_planner.schemas`)
* structured ``Result`` returns instead of exceptions
* soft deletes via the ``is_deleted`` flag
* automatic ``created_at`` / ``updated_at`` timestamps
* a small filter language for queries (exact match, ``in``, ``gt``,
  ``gte``, ``lt``, ``lte`` and inclusive ``between``)
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Set, Tuple

from .config import DB_PATH, DEFAULT_BUCKETS, ensure_data_directories
from .results import (
    DATABASE_ERROR,
    INVALID_FILTER,
    INVALID_TABLE,
    NOT_FOUND,
    Result,
)
from .schemas import validate
from .temporal import TEMPORAL_TABLES

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    bank_name TEXT NOT NULL,
    account_type TEXT NOT NULL,
    starting_balance REAL NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_deleted INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS income_sources (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_name TEXT NOT NULL,
    income_type TEXT NOT NULL,
    amount REAL NOT NULL,
    account_id INTEGER NOT NULL,
    pay_dates TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_deleted INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS buckets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    bucket_key TEXT NOT NULL UNIQUE,
    color TEXT NOT NULL,
    sort_order INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_deleted INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    bucket_id INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_deleted INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS planned_expenses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    description TEXT NOT NULL,
    amount REAL NOT NULL,
    bucket_id INTEGER NOT NULL,
    category_id INTEGER NOT NULL,
    account_id INTEGER NOT NULL,
    due_dates TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_deleted INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS goals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    target_amount REAL NOT NULL,
    target_date TEXT NOT NULL,
    funded_amount REAL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_deleted INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL,
    type TEXT NOT NULL,
    amount REAL NOT NULL,
    description TEXT,
    account_id INTEGER NOT NULL,
    bucket_id INTEGER,
    category_id INTEGER,
    income_source_id INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_deleted INTEGER DEFAULT 0
);

CREATE INDEX IF NOT EXISTS ix_txn_date ON transactions (date);
CREATE INDEX IF NOT EXISTS ix_txn_account ON transactions (account_id);
CREATE INDEX IF NOT EXISTS ix_txn_type ON transactions (type);

CREATE TABLE IF NOT EXISTS planning_scenarios (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    data TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_deleted INTEGER DEFAULT 0
);
"""

# Columns added after the first release.  Each is applied only when missing.
MIGRATED_COLUMNS: Tuple[Tuple[str, str, str], ...] = (
    ('accounts', 'starting_balance_date', 'TEXT'),
    ('planned_expenses', 'is_recurring', 'INTEGER DEFAULT 0'),
    ('planned_expenses', 'recurrence_end_date', 'TEXT'),
    ('accounts', 'effective_from', 'TEXT'),
    ('income_sources', 'effective_from', 'TEXT'),
    ('categories', 'effective_from', 'TEXT'),
    ('planned_expenses', 'effective_from', 'TEXT'),
    ('goals', 'effective_from', 'TEXT'),
)

TABLES = (
    'accounts',
    'income_sources',
    'buckets',
    'categories',
    'planned_expenses',
    'goals',
    'transactions',
    'planning_scenarios',
)

SUPPORTED_OPERATORS = ('in', 'gt', 'gte', 'lt', 'lte', 'between')
_COMPARISONS = {'gt': '>', 'gte': '>=', 'lt': '<', 'lte': '<='}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_where_clause(
    filters: Optional[Mapping[str, Any]],
    columns: Optional[Set[str]] = None,
) -> Result:
    """Build a ``WHERE`` clause from a filters mapping.

    Args:
        filters: Mapping of column name to either a plain value (exact match)
            or a single-operator dict such as ``{'between': [a, b]}``.
        columns: Known columns of the target table.  Unknown columns are
            rejected when provided.

    Returns:
        ``Result`` holding ``(clause, params)`` or an ``INVALID_FILTER`` error.
    """
    if not filters:
        return Result.success(('', []))

    conditions: List[str] = []
    params: List[Any] = []

    for field, value in filters.items():
        if columns is not None and field not in columns:
            return Result.failure(INVALID_FILTER, f"Unknown filter column: {field}")

        if not isinstance(value, Mapping):
            if value is None:
                conditions.append(f"{field} IS NULL")
            else:
                conditions.append(f"{field} = ?")
                params.append(value)
            continue

        for operator, operand in value.items():
            if operator not in SUPPORTED_OPERATORS:
                return Result.failure(
                    INVALID_FILTER,
                    f"Unsupported filter operator: {operator}. "
                    f"Supported: {', '.join(SUPPORTED_OPERATORS)}",
                )
            if operator == 'in':
                if not isinstance(operand, (list, tuple, set)) or not operand:
                    return Result.failure(INVALID_FILTER, "'in' operator requires a non-empty list")
                operand = list(operand)
                conditions.append(f"{field} IN ({', '.join('?' for _ in operand)})")
                params.extend(operand)
            elif operator == 'between':
                if not isinstance(operand, (list, tuple)) or len(operand) != 2:
                    return Result.failure(
                        INVALID_FILTER, "'between' operator requires exactly 2 values"
                    )
                conditions.append(f"{field} BETWEEN ? AND ?")
                params.extend([operand[0], operand[1]])
            else:
                conditions.append(f"{field} {_COMPARISONS[operator]} ?")
                params.append(operand)

    clause = f"WHERE {' AND '.join(conditions)}" if conditions else ''
    return Result.success((clause, params))


class Store:
    """Keyed record store over a single SQLite file."""

    def __init__(
        self,
        db_path: Optional[Path] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the store.

        Args:
            db_path: Optional database file. Defaults to DB_PATH from config.
            clock: Optional callable returning the current time, used for
                audit timestamps.
        """
        self.db_path = Path(db_path) if db_path else DB_PATH
        self._clock = clock or _utc_now
        self._local = threading.local()
        self._columns: Dict[str, Set[str]] = {}

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        active = getattr(self._local, 'conn', None)
        if active is not None:
            # Inside run_in_transaction: share the open connection.
            yield active
            return
        if self.db_path == DB_PATH:
            ensure_data_directories()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _in_transaction(self) -> bool:
        return getattr(self._local, 'conn', None) is not None

    def _commit(self, conn: sqlite3.Connection) -> None:
        if not self._in_transaction():
            conn.commit()

    def now(self) -> str:
        return self._clock().isoformat()

    def init_db(self) -> Result:
        """Create tables, apply column migrations and seed the buckets."""
        try:
            with self.connect() as conn:
                conn.executescript(SCHEMA_SQL)
                conn.commit()
                added = self._migrate_database(conn)
                seeded = self._seed_buckets(conn)
                for table in TABLES:
                    self._columns[table] = _table_columns(conn, table)
        except sqlite3.Error as exc:
            return Result.failure(DATABASE_ERROR, f"Failed to initialize database: {exc}")
        logger.info(
            "Database ready at %s (%d columns migrated, %d buckets seeded)",
            self.db_path, added, seeded,
        )
        return Result.success({'migrations_run': added, 'buckets_seeded': seeded})

    def _migrate_database(self, conn: sqlite3.Connection) -> int:
        """Add new columns to an existing database if they don't exist."""
        added = 0
        for table, column, column_type in MIGRATED_COLUMNS:
            if column in _table_columns(conn, table):
                continue
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")
            logger.info("Added column %s to %s table", column, table)
            added += 1
        # Rows written before effective dates existed belong to the month they
        # were created in.
        for table in TEMPORAL_TABLES:
            conn.execute(
                f"UPDATE {table} SET effective_from = substr(created_at, 1, 7) || '-01' "
                "WHERE effective_from IS NULL"
            )
        conn.execute(
            "UPDATE accounts SET starting_balance_date = substr(created_at, 1, 10) "
            "WHERE starting_balance_date IS NULL"
        )
        conn.commit()
        return added

    def _seed_buckets(self, conn: sqlite3.Connection) -> int:
        existing = conn.execute("SELECT COUNT(*) FROM buckets").fetchone()[0]
        if existing:
            return 0
        timestamp = self.now()
        conn.executemany(
            "INSERT INTO buckets (name, bucket_key, color, sort_order, created_at, updated_at, is_deleted) "
            "VALUES (?, ?, ?, ?, ?, ?, 0)",
            [(name, key, color, order, timestamp, timestamp) for name, key, color, order in DEFAULT_BUCKETS],
        )
        conn.commit()
        return len(DEFAULT_BUCKETS)

    def _table_columns(self, table: str) -> Set[str]:
        if table not in self._columns:
            with self.connect() as conn:
                self._columns[table] = _table_columns(conn, table)
        return self._columns[table]

    def run_in_transaction(self, work: Callable[[], Result]) -> Result:
        """Run ``work`` with every store call sharing one connection.

        The writes are committed together when ``work`` returns an ok result
        and rolled back together otherwise.
        """
        if self._in_transaction():
            return work()
        with self.connect() as conn:
            self._local.conn = conn
            try:
                result = work()
            except BaseException:
                conn.rollback()
                raise
            finally:
                self._local.conn = None
            if result.ok:
                conn.commit()
            else:
                conn.rollback()
            return result

    # ------------------------------------------------------------------
    # Record operations
    # ------------------------------------------------------------------

    def insert(self, table: str, record: Dict[str, Any]) -> Result:
        """Validate and insert a record, returning the stored row."""
        if table not in TABLES:
            return _unknown_table(table)
        validation = validate(table, 'insert', record)
        if not validation.ok:
            return validation

        timestamp = self.now()
        row = {**validation.data, 'created_at': timestamp, 'updated_at': timestamp, 'is_deleted': 0}
        columns = list(row)
        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        try:
            with self.connect() as conn:
                cursor = conn.execute(sql, [row[c] for c in columns])
                self._commit(conn)
                new_id = cursor.lastrowid
        except sqlite3.Error as exc:
            return Result.failure(DATABASE_ERROR, f"Insert failed: {exc}")
        return Result.success({'id': new_id, **row})

    def update(self, table: str, record_id: Any, changes: Dict[str, Any]) -> Result:
        """Validate ``changes`` and apply them to a live row."""
        existing = self.get_by_id(table, record_id)
        if not existing.ok:
            return existing
        validation = validate(table, 'update', changes)
        if not validation.ok:
            return validation

        changes_with_meta = {**validation.data, 'updated_at': self.now()}
        assignments = ', '.join(f"{column} = ?" for column in changes_with_meta)
        try:
            with self.connect() as conn:
                conn.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?",
                    [*changes_with_meta.values(), record_id],
                )
                self._commit(conn)
        except sqlite3.Error as exc:
            return Result.failure(DATABASE_ERROR, f"Update failed: {exc}")
        return self.get_by_id(table, record_id)

    def delete(self, table: str, record_id: Any) -> Result:
        """Soft-delete a row.  Rows are never physically removed."""
        existing = self.get_by_id(table, record_id)
        if not existing.ok:
            return existing
        try:
            with self.connect() as conn:
                conn.execute(
                    f"UPDATE {table} SET is_deleted = 1, updated_at = ? WHERE id = ?",
                    (self.now(), record_id),
                )
                self._commit(conn)
        except sqlite3.Error as exc:
            return Result.failure(DATABASE_ERROR, f"Delete failed: {exc}")
        return Result.success({'id': record_id, 'deleted': True})

    def restore(self, table: str, record_id: Any) -> Result:
        """Clear the soft-delete flag on a month-versioned row."""
        if table not in TEMPORAL_TABLES:
            return Result.failure(INVALID_TABLE, f"Restore not allowed for table: {table}")
        existing = self.get_by_id(table, record_id, include_deleted=True)
        if not existing.ok:
            return existing
        try:
            with self.connect() as conn:
                conn.execute(
                    f"UPDATE {table} SET is_deleted = 0, updated_at = ? WHERE id = ?",
                    (self.now(), record_id),
                )
                self._commit(conn)
        except sqlite3.Error as exc:
            return Result.failure(DATABASE_ERROR, f"Restore failed: {exc}")
        return self.get_by_id(table, record_id)

    def get_by_id(self, table: str, record_id: Any, include_deleted: bool = False) -> Result:
        if table not in TABLES:
            return _unknown_table(table)
        sql = f"SELECT * FROM {table} WHERE id = ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        try:
            with self.connect() as conn:
                row = conn.execute(sql, (record_id,)).fetchone()
        except sqlite3.Error as exc:
            return Result.failure(DATABASE_ERROR, f"Query failed: {exc}")
        if row is None:
            return Result.failure(NOT_FOUND, f"{table} with id {record_id} not found")
        return Result.success(dict(row))

    def query(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        order: str = 'asc',
        limit: Optional[int] = None,
        include_deleted: bool = False,
    ) -> Result:
        """Fetch rows matching ``filters``.

        Args:
            table: Table name.
            filters: See :func:`build_where_clause`.
            order_by: Optional column to sort by.
            order: ``'asc'`` or ``'desc'``.
            limit: Optional maximum number of rows.
            include_deleted: Include soft-deleted rows.

        Returns:
            ``Result`` holding a list of row dicts.
        """
        if table not in TABLES:
            return _unknown_table(table)
        try:
            columns = self._table_columns(table)
        except sqlite3.Error as exc:
            return Result.failure(DATABASE_ERROR, f"Query failed: {exc}")

        where = build_where_clause(filters, columns)
        if not where.ok:
            return where
        clause, params = where.data

        if not include_deleted:
            clause = f"{clause} AND is_deleted = 0" if clause else "WHERE is_deleted = 0"
        sql = f"SELECT * FROM {table} {clause}".rstrip()

        if order_by:
            if order_by not in columns:
                return Result.failure(INVALID_FILTER, f"Unknown order column: {order_by}")
            direction = 'DESC' if str(order).lower() == 'desc' else 'ASC'
            sql += f" ORDER BY {order_by} {direction}, id {direction}"
        if limit:
            sql += f" LIMIT {int(limit)}"

        try:
            with self.connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            return Result.failure(DATABASE_ERROR, f"Query failed: {exc}")
        return Result.success([dict(row) for row in rows])


def _table_columns(conn: sqlite3.Connection, table: str) -> Set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _unknown_table(table: str) -> Result:
    return Result.failure(INVALID_TABLE, f"Unknown table: {table}")
