"""Day-by-day balance projection.

The same sweep serves the planning sandbox (scheduled pay dates and due
dates) and the live dashboard (posted transactions).  Each account's events
are sorted once and walked together with the day range, so the cost is
linear in events plus days.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from .temporal import DateLike, date_range, parse_date_list

TOTAL_ACCOUNT_ID = 'total'


@dataclass(frozen=True)
class CashEvent:
    """A signed movement of money on one account: positive is income."""

    date: str
    account_id: Any
    amount: float
    source: Optional[str] = None


@dataclass
class BalancePoint:
    date: str
    balance: float
    income: float = 0.0
    expenses: float = 0.0
    net_change: float = 0.0


@dataclass
class AccountProjection:
    account_id: Any
    account_name: str
    account_type: Optional[str]
    starting_balance: float
    points: List[BalancePoint] = field(default_factory=list)

    @property
    def ending_balance(self) -> float:
        return self.points[-1].balance if self.points else self.starting_balance

    def balance_on(self, day: str) -> Optional[float]:
        for point in self.points:
            if point.date == day:
                return point.balance
        return None

    def to_frame(self) -> pd.DataFrame:
        """Return the series as a DataFrame, one row per day.

        Columns: ``date`` (datetime64), ``balance``, ``income``, ``expenses``,
        ``net_change``, ``account_id`` and ``account_name``.
        """
        frame = pd.DataFrame(
            [vars(point) for point in self.points],
            columns=['date', 'balance', 'income', 'expenses', 'net_change'],
        )
        frame['date'] = pd.to_datetime(frame['date'])
        frame['account_id'] = str(self.account_id)
        frame['account_name'] = self.account_name
        return frame


def _day(value: DateLike) -> str:
    return str(value)[:10] if isinstance(value, str) else value.isoformat()[:10]


def _is_live(record: Mapping[str, Any]) -> bool:
    return not record.get('is_deleted')


def project_balances(
    accounts: Iterable[Mapping[str, Any]],
    events: Iterable[CashEvent],
    start: DateLike,
    end: DateLike,
    opening: Optional[Mapping[Any, float]] = None,
) -> Dict[Any, AccountProjection]:
    """Project each account's balance for every day in ``[start, end]``.

    Args:
        accounts: Account rows (``id``, ``bank_name``, ``account_type``,
            ``starting_balance``). Deleted rows are skipped.
        events: Signed cash events.  Events outside the window, or for
            accounts not in ``accounts``, are ignored.
        start: First day of the window.
        end: Last day of the window, inclusive.
        opening: Optional per-account balance to seed the sweep with instead
            of the account's ``starting_balance``.

    Returns:
        Mapping of account id to its projection, in account order.
    """
    start_day, end_day = _day(start), _day(end)
    days = date_range(start_day, end_day)
    opening = opening or {}

    projections: Dict[Any, AccountProjection] = {}
    for account in accounts:
        if not _is_live(account):
            continue
        account_id = account['id']
        seed = opening.get(account_id, account.get('starting_balance') or 0.0)
        projections[account_id] = AccountProjection(
            account_id=account_id,
            account_name=account.get('bank_name', ''),
            account_type=account.get('account_type'),
            starting_balance=seed,
        )

    by_account: Dict[Any, List[CashEvent]] = {account_id: [] for account_id in projections}
    for event in events:
        day = event.date[:10]
        if event.account_id in by_account and start_day <= day <= end_day:
            by_account[event.account_id].append(event)

    for account_id, projection in projections.items():
        pending = sorted(by_account[account_id], key=lambda e: e.date[:10])
        balance = projection.starting_balance
        index = 0
        for day in days:
            income = expenses = 0.0
            while index < len(pending) and pending[index].date[:10] <= day:
                amount = pending[index].amount
                if amount >= 0:
                    income += amount
                else:
                    expenses -= amount
                index += 1
            net_change = income - expenses
            balance += net_change
            projection.points.append(
                BalancePoint(day, balance, income, expenses, net_change)
            )

    return projections


def _amount(record: Mapping[str, Any]) -> Optional[float]:
    try:
        return float(record.get('amount'))
    except (TypeError, ValueError):
        return None


def scheduled_events(
    income_sources: Iterable[Mapping[str, Any]],
    planned_expenses: Iterable[Mapping[str, Any]],
    start: DateLike,
    end: DateLike,
) -> List[CashEvent]:
    """One event per pay date or due date that falls inside the window.

    Rows without a numeric ``amount`` contribute nothing.
    """
    start_day, end_day = _day(start), _day(end)
    events: List[CashEvent] = []
    for rows, column, sign, source_type in (
        (income_sources, 'pay_dates', 1.0, 'income'),
        (planned_expenses, 'due_dates', -1.0, 'expense'),
    ):
        for row in rows:
            amount = _amount(row)
            if not _is_live(row) or amount is None:
                continue
            for day in parse_date_list(row.get(column)):
                if start_day <= day[:10] <= end_day:
                    events.append(CashEvent(day[:10], row.get('account_id'), sign * amount, source_type))
    return events


def _signed(transaction: Mapping[str, Any]) -> float:
    amount = float(transaction.get('amount') or 0.0)
    return amount if transaction.get('type') == 'income' else -amount


def posted_events(
    transactions: Iterable[Mapping[str, Any]],
    start: DateLike,
    end: DateLike,
) -> List[CashEvent]:
    start_day, end_day = _day(start), _day(end)
    return [
        CashEvent(t['date'][:10], t.get('account_id'), _signed(t), t.get('type'))
        for t in transactions
        if _is_live(t) and start_day <= t['date'][:10] <= end_day
    ]


def opening_balances(
    accounts: Iterable[Mapping[str, Any]],
    transactions: Iterable[Mapping[str, Any]],
    start: DateLike,
) -> Dict[Any, float]:
    """Starting balance plus every posted transaction dated before ``start``."""
    start_day = _day(start)
    balances = {
        account['id']: float(account.get('starting_balance') or 0.0)
        for account in accounts
        if _is_live(account)
    }
    for transaction in transactions:
        if not _is_live(transaction) or transaction['date'][:10] >= start_day:
            continue
        account_id = transaction.get('account_id')
        if account_id in balances:
            balances[account_id] += _signed(transaction)
    return balances


def project_scheduled(
    accounts: Iterable[Mapping[str, Any]],
    income_sources: Iterable[Mapping[str, Any]],
    planned_expenses: Iterable[Mapping[str, Any]],
    start: DateLike,
    end: DateLike,
) -> Dict[Any, AccountProjection]:
    events = scheduled_events(income_sources, planned_expenses, start, end)
    return project_balances(accounts, events, start, end)


def project_actual(
    accounts: Iterable[Mapping[str, Any]],
    transactions: Iterable[Mapping[str, Any]],
    start: DateLike,
    end: DateLike,
) -> Dict[Any, AccountProjection]:
    """Projection from posted transactions, opening at the true balance."""
    accounts = list(accounts)
    transactions = list(transactions)
    opening = opening_balances(accounts, transactions, start)
    return project_balances(accounts, posted_events(transactions, start, end), start, end, opening)


def combine_projections(
    projections: Mapping[Any, AccountProjection],
    start: DateLike,
    end: DateLike,
    name: str = 'All accounts',
) -> AccountProjection:
    """Sum per-account series into a single total series."""
    days = date_range(_day(start), _day(end))
    total = AccountProjection(
        account_id=TOTAL_ACCOUNT_ID,
        account_name=name,
        account_type=None,
        starting_balance=sum(p.starting_balance for p in projections.values()),
    )
    for position, day in enumerate(days):
        point = BalancePoint(day, 0.0)
        for projection in projections.values():
            source = projection.points[position]
            point.balance += source.balance
            point.income += source.income
            point.expenses += source.expenses
            point.net_change += source.net_change
        if not projections:
            point.balance = total.starting_balance
        total.points.append(point)
    return total


def projections_frame(projections: Mapping[Any, AccountProjection]) -> pd.DataFrame:
    """Stack several projections into one long DataFrame for plotting."""
    frames = [projection.to_frame() for projection in projections.values()]
    if not frames:
        return pd.DataFrame(
            columns=['date', 'balance', 'income', 'expenses', 'net_change', 'account_id', 'account_name']
        )
    return pd.concat(frames, ignore_index=True)
