"""Posted transactions and tabular views over them."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional

import numpy as np
import pandas as pd

from .db import Store
from .events import EventBus, bus as default_bus
from .results import Result

TRANSACTION_COLUMNS = [
    'id', 'date', 'type', 'amount', 'description',
    'account_id', 'bucket_id', 'category_id', 'income_source_id',
]


class Ledger:
    """CRUD for the ``transactions`` table.

    Writes emit ``transaction:created|updated|deleted`` on success.
    """

    def __init__(self, store: Store, bus: Optional[EventBus] = None):
        self.store = store
        self.bus = bus or default_bus

    def create(self, data: Dict[str, Any]) -> Result:
        result = self.store.insert('transactions', data)
        if result.ok:
            self.bus.emit('transaction:created', {'transaction': result.data})
        return result

    def update(self, transaction_id: int, changes: Dict[str, Any]) -> Result:
        result = self.store.update('transactions', transaction_id, changes)
        if result.ok:
            self.bus.emit('transaction:updated', {'transaction': result.data, 'changes': changes})
        return result

    def delete(self, transaction_id: int) -> Result:
        result = self.store.delete('transactions', transaction_id)
        if result.ok:
            self.bus.emit('transaction:deleted', {'id': transaction_id})
        return result

    def get(self, transaction_id: int) -> Result:
        return self.store.get_by_id('transactions', transaction_id)

    def list_transactions(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: str = 'date',
        order: str = 'desc',
        limit: Optional[int] = None,
    ) -> Result:
        """Transactions matching ``filters``, most recent first by default."""
        return self.store.query(
            'transactions', filters or {}, order_by=order_by, order=order, limit=limit
        )

    def list_transactions_by_date_range(
        self,
        start: str,
        end: str,
        filters: Optional[Mapping[str, Any]] = None,
        **options: Any,
    ) -> Result:
        combined = {**(filters or {}), 'date': {'between': [start, end]}}
        return self.list_transactions(combined, **options)


def transactions_frame(transactions: Iterable[Mapping[str, Any]]) -> pd.DataFrame:
    """DataFrame of transaction rows with a signed ``net`` column."""
    df = pd.DataFrame(list(transactions))
    if df.empty:
        return pd.DataFrame(columns=TRANSACTION_COLUMNS + ['net'])
    df = df[[c for c in TRANSACTION_COLUMNS if c in df.columns]].copy()
    df['date'] = pd.to_datetime(df['date'], errors='coerce')
    df['amount'] = pd.to_numeric(df['amount'], errors='coerce').fillna(0.0)
    df['net'] = np.where(df['type'] == 'income', df['amount'], -df['amount'])
    return df.sort_values('date').reset_index(drop=True)


def cash_flow_by_period(transactions: Iterable[Mapping[str, Any]], freq: str = 'MS') -> pd.DataFrame:
    """Income, expenses and net per period.

    Args:
        transactions: Transaction rows.
        freq: pandas offset alias, month start by default.

    Returns:
        DataFrame indexed by period start with ``income``, ``expenses`` and
        ``net`` columns.
    """
    df = transactions_frame(transactions)
    if df.empty:
        return pd.DataFrame(columns=['income', 'expenses', 'net'])
    df = df.dropna(subset=['date'])
    df['income'] = np.where(df['type'] == 'income', df['amount'], 0.0)
    df['expenses'] = np.where(df['type'] == 'expense', df['amount'], 0.0)
    grouped = df.set_index('date').groupby(pd.Grouper(freq=freq))[['income', 'expenses', 'net']].sum()
    return grouped
