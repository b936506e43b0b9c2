"""What-if planning sandbox.

A :class:`SandboxSession` is an in-memory copy of one month's budget.  The
:class:`SandboxSessionManager` owns the single live session, records undo
history and persists named scenarios.  Nothing done to a session ever
reaches the month-versioned tables: the only write the manager makes is to
``planning_scenarios``.
"""

from __future__ import annotations

import copy
import functools
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import SCENARIOS_DIR
from .db import Store
from .events import EventBus, bus as default_bus
from .months import MonthResolver, MonthSnapshot
from .projection import project_scheduled
from .results import CORRUPT_SCENARIO, IO_ERROR, NOT_FOUND, VALIDATION_ERROR, Result
from .schemas import validate
from .temporal import (
    AUDIT_COLUMNS,
    DATE_LIST_COLUMNS,
    FIXED_COLUMNS,
    TEMPORAL_TABLES,
    PendingId,
    current_month,
    dump_date_list,
    month_range,
    month_start,
    parse_month,
    table_for,
)

logger = logging.getLogger(__name__)

SCENARIO_FORMAT_VERSION = 1
_PLACEHOLDER_ID = 1


def _encode_ids(value: Any) -> Any:
    if isinstance(value, PendingId):
        return {'pending': value.local}
    return value


def _decode_ids(value: Any) -> Any:
    if isinstance(value, dict) and set(value) == {'pending'}:
        return PendingId(int(value['pending']))
    return value


@dataclass
class SandboxSession:
    """One month's budget entities, keyed by id within each table."""

    month: str
    tables: Dict[str, Dict[Any, Dict[str, Any]]] = field(
        default_factory=lambda: {table: {} for table in TEMPORAL_TABLES}
    )
    buckets: List[Dict[str, Any]] = field(default_factory=list)
    next_local_id: int = 1

    @classmethod
    def from_snapshot(cls, snapshot: MonthSnapshot) -> 'SandboxSession':
        session = cls(month=snapshot.month)
        for table in TEMPORAL_TABLES:
            session.tables[table] = {row['id']: dict(row) for row in snapshot.rows(table)}
        session.buckets = [dict(row) for row in snapshot.buckets]
        return session

    def clone(self) -> 'SandboxSession':
        return copy.deepcopy(self)

    def allocate_id(self) -> PendingId:
        pending = PendingId(self.next_local_id)
        self.next_local_id += 1
        return pending

    def collection(self, kind: str) -> Dict[Any, Dict[str, Any]]:
        return self.tables[table_for(kind)]

    def get(self, kind: str, entity_id: Any) -> Optional[Dict[str, Any]]:
        return self.collection(kind).get(entity_id)

    def entities(self, kind: str, include_deleted: bool = False) -> List[Dict[str, Any]]:
        rows = self.collection(kind).values()
        if include_deleted:
            return list(rows)
        return [row for row in rows if not row.get('is_deleted')]

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready form.  Pending ids become ``{"pending": n}``."""
        return {
            'version': SCENARIO_FORMAT_VERSION,
            'month': self.month,
            'next_local_id': self.next_local_id,
            'buckets': [dict(row) for row in self.buckets],
            'tables': {
                table: [
                    {column: _encode_ids(value) for column, value in row.items()}
                    for row in rows.values()
                ]
                for table, rows in self.tables.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SandboxSession':
        """Rebuild a session from :meth:`to_dict` output.

        Raises:
            ValueError: If the payload is not a session.
        """
        if not isinstance(data, dict):
            raise ValueError("Scenario payload must be an object")
        try:
            month = data['month']
            parse_month(month)
            session = cls(month=month, next_local_id=int(data.get('next_local_id', 1)))
            session.buckets = [dict(row) for row in data.get('buckets', [])]
            for table, rows in data['tables'].items():
                if table not in TEMPORAL_TABLES:
                    raise ValueError(f"Unknown table in scenario: {table}")
                decoded = {}
                for row in rows:
                    entity = {column: _decode_ids(value) for column, value in row.items()}
                    decoded[entity['id']] = entity
                session.tables[table] = decoded
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"Malformed scenario payload: {exc}") from exc
        return session


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _exclusive(method: Callable) -> Callable:
    """Run ``method`` holding the manager lock: one session operation at a time."""

    @functools.wraps(method)
    def wrapper(self: 'SandboxSessionManager', *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


def _prepare_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    fields = {k: v for k, v in (data or {}).items() if k not in AUDIT_COLUMNS}
    for column in DATE_LIST_COLUMNS.values():
        if isinstance(fields.get(column), (list, tuple)):
            fields[column] = dump_date_list(fields[column])
    return fields


def _validate_entity(table: str, fields: Dict[str, Any]) -> Result:
    """Check sandbox fields against the table's insert schema.

    Pending ids stand in for rows that were never stored, so a foreign key
    holding one is checked as a placeholder id and kept as it is.
    """
    candidate = {
        column: _PLACEHOLDER_ID if isinstance(value, PendingId) else value
        for column, value in fields.items()
    }
    checked = validate(table, 'insert', candidate)
    if not checked.ok:
        return checked
    cleaned = dict(checked.data)
    for column, value in fields.items():
        if isinstance(value, PendingId) and column in cleaned:
            cleaned[column] = value
    return Result.success(cleaned)


def _table_for_kind(kind: str) -> Result:
    try:
        return Result.success(table_for(kind))
    except ValueError as exc:
        return Result.failure(VALIDATION_ERROR, str(exc))


class SandboxSessionManager:
    """Owns the live planning session, its undo history and saved scenarios."""

    def __init__(
        self,
        resolver: MonthResolver,
        store: Optional[Store] = None,
        bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], datetime]] = None,
        month_provider: Optional[Callable[[], str]] = None,
    ):
        self.resolver = resolver
        self.store = store or resolver.store
        self.bus = bus or default_bus
        self._clock = clock or _utc_now
        self._month_provider = month_provider or current_month
        self._session: Optional[SandboxSession] = None
        self._undo: List[SandboxSession] = []
        self._redo: List[SandboxSession] = []
        self._replaying = False
        self._lock = threading.RLock()

    def _now(self) -> str:
        return self._clock().isoformat()

    def _record(self) -> None:
        """Push the pre-mutation session onto the undo stack."""
        if self._replaying or self._session is None:
            return
        self._undo.append(self._session.clone())
        self._redo.clear()

    def _changed(self, action: str, **details: Any) -> None:
        self.bus.emit('planning:session-changed', {'action': action, **details})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @_exclusive
    def bootstrap(self, month: Optional[str] = None) -> Result:
        """Replace the session with a fresh copy of ``month``'s budget."""
        month = month or self._month_provider()
        resolved = self.resolver.resolve(month)
        if not resolved.ok:
            return resolved
        fresh = SandboxSession.from_snapshot(resolved.data)
        self._record()
        self._session = fresh
        self.bus.emit('planning:data-loaded', {'month': month, 'timestamp': self._now()})
        return Result.success(fresh.clone())

    @_exclusive
    def get_session(self) -> Result:
        if self._session is None:
            return self.bootstrap(self._month_provider())
        return Result.success(self._session.clone())

    @_exclusive
    def reset(self) -> Result:
        """Discard unsaved edits and reload the current month."""
        result = self.bootstrap(self._month_provider())
        if result.ok:
            self.bus.emit('planning:reset', {'timestamp': self._now()})
        return result

    def _live_session(self) -> Result:
        if self._session is None:
            loaded = self.bootstrap(self._month_provider())
            if not loaded.ok:
                return loaded
        return Result.success(self._session)

    # ------------------------------------------------------------------
    # Entity operations
    # ------------------------------------------------------------------

    @_exclusive
    def create(self, kind: str, data: Dict[str, Any]) -> Result:
        """Add a new entity with a pending id.

        The fields must satisfy the table's record schema; ``effective_from``
        defaults to the start of the current month.
        """
        table = _table_for_kind(kind)
        if not table.ok:
            return table
        live = self._live_session()
        if not live.ok:
            return live

        fields = {'effective_from': month_start(self._month_provider()), **_prepare_fields(data)}
        checked = _validate_entity(table.data, fields)
        if not checked.ok:
            return checked

        self._record()
        session = self._session
        timestamp = self._now()
        entity = {
            **checked.data,
            'id': session.allocate_id(),
            'created_at': timestamp,
            'updated_at': timestamp,
            'is_deleted': 0,
        }
        session.tables[table.data][entity['id']] = entity
        self._changed('create', kind=kind, id=entity['id'])
        return Result.success(dict(entity))

    def _not_found(self, kind: str, entity_id: Any) -> Result:
        return Result.failure(NOT_FOUND, f"{kind} {entity_id} not found in session")

    @_exclusive
    def update(self, kind: str, entity_id: Any, changes: Dict[str, Any]) -> Result:
        """Merge ``changes`` into an entity; the merged entity must still be valid."""
        table = _table_for_kind(kind)
        if not table.ok:
            return table
        fixed = [column for column in FIXED_COLUMNS if column in (changes or {})]
        if fixed:
            return Result.failure(VALIDATION_ERROR, f"{', '.join(fixed)}: cannot be changed after creation")
        live = self._live_session()
        if not live.ok:
            return live
        existing = live.data.get(kind, entity_id)
        if existing is None:
            return self._not_found(kind, entity_id)

        merged = {k: v for k, v in existing.items() if k not in AUDIT_COLUMNS}
        merged.update(_prepare_fields(changes))
        checked = _validate_entity(table.data, merged)
        if not checked.ok:
            return checked

        self._record()
        entity = {column: existing[column] for column in AUDIT_COLUMNS if column in existing}
        entity.update(checked.data)
        entity['updated_at'] = self._now()
        self._session.tables[table.data][entity_id] = entity
        self._changed('update', kind=kind, id=entity_id)
        return Result.success(dict(entity))

    @_exclusive
    def delete(self, kind: str, entity_id: Any) -> Result:
        """Soft-delete: the entity stays in the session with ``is_deleted`` set."""
        table = _table_for_kind(kind)
        if not table.ok:
            return table
        live = self._live_session()
        if not live.ok:
            return live
        if live.data.get(kind, entity_id) is None:
            return self._not_found(kind, entity_id)

        self._record()
        entity = self._session.get(kind, entity_id)
        entity['is_deleted'] = 1
        entity['updated_at'] = self._now()
        self._changed('delete', kind=kind, id=entity_id)
        return Result.success({'id': entity_id, 'deleted': True})

    @_exclusive
    def get(self, kind: str, entity_id: Any) -> Result:
        table = _table_for_kind(kind)
        if not table.ok:
            return table
        live = self._live_session()
        if not live.ok:
            return live
        entity = live.data.get(kind, entity_id)
        if entity is None:
            return self._not_found(kind, entity_id)
        return Result.success(dict(entity))

    @_exclusive
    def list(self, kind: str, include_deleted: bool = False) -> Result:
        table = _table_for_kind(kind)
        if not table.ok:
            return table
        live = self._live_session()
        if not live.ok:
            return live
        return Result.success([dict(row) for row in live.data.entities(kind, include_deleted)])

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def _replay(self, source: List[SandboxSession], target: List[SandboxSession], action: str) -> Result:
        if not source:
            current = self._session.clone() if self._session is not None else None
            return Result.success(current)
        self._replaying = True
        try:
            restored = source.pop()
            if self._session is not None:
                target.append(self._session)
            self._session = restored
        finally:
            self._replaying = False
        self._changed(action)
        return Result.success(self._session.clone())

    @_exclusive
    def undo(self) -> Result:
        return self._replay(self._undo, self._redo, 'undo')

    @_exclusive
    def redo(self) -> Result:
        return self._replay(self._redo, self._undo, 'redo')

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    @_exclusive
    def project(self, start: Optional[str] = None, end: Optional[str] = None) -> Result:
        """Daily balance per account from the session's pay and due dates.

        The window defaults to the session's month.
        """
        live = self._live_session()
        if not live.ok:
            return live
        session = live.data
        first, last = month_range(session.month)
        projections = project_scheduled(
            session.entities('account'),
            session.entities('income_source'),
            session.entities('planned_expense'),
            start or first,
            end or last,
        )
        return Result.success(projections)

    # ------------------------------------------------------------------
    # Scenarios
    # ------------------------------------------------------------------

    @_exclusive
    def save_scenario(self, name: str) -> Result:
        """Persist the whole session, buckets included, under ``name``."""
        live = self._live_session()
        if not live.ok:
            return live
        payload = json.dumps(live.data.to_dict(), sort_keys=True)
        result = self.store.insert('planning_scenarios', {'name': name, 'data': payload})
        if result.ok:
            logger.info("Saved scenario %r (id %s)", name, result.data['id'])
            self.bus.emit('planning:scenario-saved', {'scenario': _scenario_summary(result.data)})
        return result

    @_exclusive
    def list_scenarios(self) -> Result:
        """Saved scenarios, newest first, without their payloads."""
        result = self.store.query('planning_scenarios', order_by='created_at', order='desc')
        if not result.ok:
            return result
        return Result.success([_scenario_summary(row) for row in result.data])

    @_exclusive
    def load_scenario(self, scenario_id: int) -> Result:
        """Replace the session with a saved scenario and clear undo history.

        A scenario whose payload cannot be decoded is reported as
        ``CORRUPT_SCENARIO`` and the live session is left as it was.
        """
        row = self.store.get_by_id('planning_scenarios', scenario_id)
        if not row.ok:
            return row
        try:
            session = SandboxSession.from_dict(json.loads(row.data['data']))
        except ValueError as exc:
            logger.warning("Scenario %s is corrupt: %s", scenario_id, exc)
            return Result.failure(CORRUPT_SCENARIO, f"Scenario {scenario_id} could not be read: {exc}")

        self._session = session
        self._undo.clear()
        self._redo.clear()
        logger.info("Loaded scenario %s", scenario_id)
        self.bus.emit('planning:scenario-loaded', {'scenario': _scenario_summary(row.data)})
        return Result.success(session.clone())

    @_exclusive
    def delete_scenario(self, scenario_id: int) -> Result:
        result = self.store.delete('planning_scenarios', scenario_id)
        if result.ok:
            logger.info("Deleted scenario %s", scenario_id)
            self.bus.emit('planning:scenario-deleted', {'id': scenario_id})
        return result

    @_exclusive
    def export_scenario(self, scenario_id: int, path: Optional[Path] = None) -> Result:
        """Write a saved scenario to a JSON file.

        Args:
            scenario_id: Scenario row id.
            path: Optional target file. Defaults to
                ``SCENARIOS_DIR/scenario-<id>.json``.

        Returns:
            ``Result`` holding the path written.
        """
        row = self.store.get_by_id('planning_scenarios', scenario_id)
        if not row.ok:
            return row
        try:
            session = json.loads(row.data['data'])
        except ValueError as exc:
            return Result.failure(CORRUPT_SCENARIO, f"Scenario {scenario_id} could not be read: {exc}")

        target = Path(path) if path else SCENARIOS_DIR / f"scenario-{scenario_id}.json"
        payload = {
            'name': row.data['name'],
            'created_at': row.data['created_at'],
            'session': session,
        }
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open('w', encoding='utf-8') as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
        except OSError as exc:
            return Result.failure(IO_ERROR, f"Could not write {target}: {exc}")
        return Result.success(target)

    @_exclusive
    def import_scenario(self, path: Path, name: Optional[str] = None) -> Result:
        """Store a scenario file written by :meth:`export_scenario` as a new row."""
        source = Path(path)
        try:
            with source.open('r', encoding='utf-8') as handle:
                payload = json.load(handle)
        except json.JSONDecodeError as exc:
            return Result.failure(CORRUPT_SCENARIO, f"{source} is not valid JSON: {exc}")
        except OSError as exc:
            return Result.failure(IO_ERROR, f"Could not read {source}: {exc}")

        try:
            if not isinstance(payload, dict):
                raise ValueError("Scenario file must hold an object")
            session = SandboxSession.from_dict(payload.get('session'))
        except ValueError as exc:
            return Result.failure(CORRUPT_SCENARIO, f"{source} is not a scenario: {exc}")

        scenario_name = name or payload.get('name') or source.stem
        data = json.dumps(session.to_dict(), sort_keys=True)
        result = self.store.insert('planning_scenarios', {'name': scenario_name, 'data': data})
        if result.ok:
            self.bus.emit('planning:scenario-saved', {'scenario': _scenario_summary(result.data)})
        return result


def _scenario_summary(row: Dict[str, Any]) -> Dict[str, Any]:
    return {key: row[key] for key in ('id', 'name', 'created_at', 'updated_at') if key in row}
