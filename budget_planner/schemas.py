"""Record schemas for every table in the budget database.

Each table has an insert model and a partial update model.  The store runs
every write through :func:`validate` and refuses anything that does not fit,
so nothing malformed ever reaches SQLite.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Type

from pydantic import AfterValidator, BaseModel, BeforeValidator, Field, ValidationError, model_validator

from .results import Result, VALIDATION_ERROR

DATE_PATTERN = r'^\d{4}-\d{2}-\d{2}$'
COLOR_PATTERN = r'^#[0-9A-Fa-f]{6}$'

AccountType = Literal['checking', 'savings', 'credit', 'ira', 'other']
IncomeType = Literal['w2', '1099', 'investment', 'rental', 'other']
TransactionType = Literal['income', 'expense']

ACCOUNT_TYPES = ('checking', 'savings', 'credit', 'ira', 'other')
INCOME_TYPES = ('w2', '1099', 'investment', 'rental', 'other')
TRANSACTION_TYPES = ('income', 'expense')


def _encode_date_list(value: Any) -> Any:
    """Accept a Python list of dates and store it as a JSON array string."""
    if isinstance(value, (list, tuple)):
        return json.dumps([str(v)[:10] for v in value])
    return value


def _check_date_list(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        parsed = json.loads(value)
    except ValueError as exc:
        raise ValueError('Must be a valid JSON array string') from exc
    if not isinstance(parsed, list):
        raise ValueError('Must be a valid JSON array string')
    return value


# Date lists arrive as Python lists or JSON text and are stored as JSON text.
DateListStr = Annotated[str, BeforeValidator(_encode_date_list), AfterValidator(_check_date_list)]


# ------------------------------------------------------------------
# Accounts
# ------------------------------------------------------------------

class AccountSchema(BaseModel):
    bank_name: str = Field(min_length=1)
    account_type: AccountType
    starting_balance: float
    starting_balance_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    effective_from: Optional[str] = Field(default=None, pattern=DATE_PATTERN)


class AccountUpdateSchema(BaseModel):
    bank_name: Optional[str] = Field(default=None, min_length=1)
    account_type: Optional[AccountType] = None
    starting_balance: Optional[float] = None
    starting_balance_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)


# ------------------------------------------------------------------
# Income sources
# ------------------------------------------------------------------

class IncomeSourceSchema(BaseModel):
    source_name: str = Field(min_length=1)
    income_type: IncomeType
    amount: float = Field(gt=0)
    account_id: int = Field(gt=0)
    pay_dates: DateListStr
    effective_from: Optional[str] = Field(default=None, pattern=DATE_PATTERN)


class IncomeSourceUpdateSchema(BaseModel):
    source_name: Optional[str] = Field(default=None, min_length=1)
    income_type: Optional[IncomeType] = None
    amount: Optional[float] = Field(default=None, gt=0)
    account_id: Optional[int] = Field(default=None, gt=0)
    pay_dates: Optional[DateListStr] = None


# ------------------------------------------------------------------
# Buckets (seeded, rename/recolour only)
# ------------------------------------------------------------------

class BucketSchema(BaseModel):
    name: str = Field(min_length=1)
    bucket_key: str = Field(min_length=1)
    color: str = Field(pattern=COLOR_PATTERN)
    sort_order: int


class BucketUpdateSchema(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    color: Optional[str] = Field(default=None, pattern=COLOR_PATTERN)


# ------------------------------------------------------------------
# Categories
# ------------------------------------------------------------------

class CategorySchema(BaseModel):
    name: str = Field(min_length=1)
    bucket_id: int = Field(gt=0)
    effective_from: Optional[str] = Field(default=None, pattern=DATE_PATTERN)


class CategoryUpdateSchema(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    bucket_id: Optional[int] = Field(default=None, gt=0)


# ------------------------------------------------------------------
# Planned expenses
# ------------------------------------------------------------------

class PlannedExpenseSchema(BaseModel):
    description: str = Field(min_length=1)
    amount: float = Field(gt=0)
    bucket_id: int = Field(gt=0)
    category_id: int = Field(gt=0)
    account_id: int = Field(gt=0)
    due_dates: DateListStr
    is_recurring: int = Field(default=0, ge=0, le=1)
    recurrence_end_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    effective_from: Optional[str] = Field(default=None, pattern=DATE_PATTERN)


class PlannedExpenseUpdateSchema(BaseModel):
    description: Optional[str] = Field(default=None, min_length=1)
    amount: Optional[float] = Field(default=None, gt=0)
    bucket_id: Optional[int] = Field(default=None, gt=0)
    category_id: Optional[int] = Field(default=None, gt=0)
    account_id: Optional[int] = Field(default=None, gt=0)
    due_dates: Optional[DateListStr] = None
    is_recurring: Optional[int] = Field(default=None, ge=0, le=1)
    recurrence_end_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)


# ------------------------------------------------------------------
# Goals
# ------------------------------------------------------------------

class GoalSchema(BaseModel):
    name: str = Field(min_length=1)
    target_amount: float = Field(gt=0)
    target_date: str = Field(pattern=DATE_PATTERN)
    funded_amount: float = Field(default=0, ge=0)
    effective_from: Optional[str] = Field(default=None, pattern=DATE_PATTERN)


class GoalUpdateSchema(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    target_amount: Optional[float] = Field(default=None, gt=0)
    target_date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    funded_amount: Optional[float] = Field(default=None, ge=0)


# ------------------------------------------------------------------
# Transactions
# ------------------------------------------------------------------

class TransactionSchema(BaseModel):
    date: str = Field(pattern=DATE_PATTERN)
    type: TransactionType
    amount: float = Field(gt=0)
    description: Optional[str] = None
    account_id: int = Field(gt=0)
    bucket_id: Optional[int] = Field(default=None, gt=0)
    category_id: Optional[int] = Field(default=None, gt=0)
    income_source_id: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode='after')
    def expense_needs_category(self) -> 'TransactionSchema':
        if self.type == 'expense' and (self.bucket_id is None or self.category_id is None):
            raise ValueError('Expense transactions require bucket_id and category_id')
        return self


class TransactionUpdateSchema(BaseModel):
    date: Optional[str] = Field(default=None, pattern=DATE_PATTERN)
    type: Optional[TransactionType] = None
    amount: Optional[float] = Field(default=None, gt=0)
    description: Optional[str] = None
    account_id: Optional[int] = Field(default=None, gt=0)
    bucket_id: Optional[int] = Field(default=None, gt=0)
    category_id: Optional[int] = Field(default=None, gt=0)
    income_source_id: Optional[int] = Field(default=None, gt=0)


# ------------------------------------------------------------------
# Planning scenarios
# ------------------------------------------------------------------

class PlanningScenarioSchema(BaseModel):
    name: str = Field(min_length=1)
    data: str


class PlanningScenarioUpdateSchema(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    data: Optional[str] = None


SCHEMAS: Dict[str, Dict[str, Type[BaseModel]]] = {
    'accounts': {'insert': AccountSchema, 'update': AccountUpdateSchema},
    'income_sources': {'insert': IncomeSourceSchema, 'update': IncomeSourceUpdateSchema},
    'buckets': {'insert': BucketSchema, 'update': BucketUpdateSchema},
    'categories': {'insert': CategorySchema, 'update': CategoryUpdateSchema},
    'planned_expenses': {'insert': PlannedExpenseSchema, 'update': PlannedExpenseUpdateSchema},
    'goals': {'insert': GoalSchema, 'update': GoalUpdateSchema},
    'transactions': {'insert': TransactionSchema, 'update': TransactionUpdateSchema},
    'planning_scenarios': {'insert': PlanningScenarioSchema, 'update': PlanningScenarioUpdateSchema},
}


def columns_for(table: str) -> List[str]:
    """Writable columns of ``table`` according to its insert schema."""
    return list(SCHEMAS[table]['insert'].model_fields)


def _format_errors(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        path = '.'.join(str(part) for part in error.get('loc', ()))
        message = error.get('msg', 'Invalid value')
        messages.append(f"{path}: {message}" if path else message)
    return '; '.join(messages)


def validate(table: str, operation: str, data: Dict[str, Any]) -> Result:
    """Validate ``data`` for an insert or update on ``table``.

    Returns:
        ``Result.success`` holding the cleaned record (unknown keys dropped),
        or a ``VALIDATION_ERROR`` failure describing every problem found.
    """
    table_schemas = SCHEMAS.get(table)
    if table_schemas is None:
        return Result.failure(VALIDATION_ERROR, f"Unknown table: {table}")
    schema = table_schemas.get(operation)
    if schema is None:
        return Result.failure(VALIDATION_ERROR, f"Unknown operation: {operation}")

    try:
        model = schema.model_validate(data or {})
    except ValidationError as exc:
        return Result.failure(VALIDATION_ERROR, _format_errors(exc))

    if operation == 'insert':
        cleaned = model.model_dump(exclude_none=True)
    else:
        cleaned = model.model_dump(exclude_unset=True)
    return Result.success(cleaned)
