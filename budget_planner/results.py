"""Structured result values returned by the store and the services.

Nothing in the core raises for an expected failure (a missing row, a
rejected record, a broken query).  Every operation returns a ``Result``
and the caller decides how to surface it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

VALIDATION_ERROR = "VALIDATION_ERROR"
NOT_FOUND = "NOT_FOUND"
INVALID_FILTER = "INVALID_FILTER"
INVALID_TABLE = "INVALID_TABLE"
DATABASE_ERROR = "DATABASE_ERROR"
CORRUPT_SCENARIO = "CORRUPT_SCENARIO"
IO_ERROR = "IO_ERROR"


@dataclass(frozen=True)
class StoreError:
    code: str
    message: str


@dataclass(frozen=True)
class Result:
    """Either ``ok`` with ``data`` or not ``ok`` with an ``error``."""

    ok: bool
    data: Any = None
    error: Optional[StoreError] = None

    @classmethod
    def success(cls, data: Any = None) -> "Result":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, code: str, message: str) -> "Result":
        return cls(ok=False, error=StoreError(code, message))

    @property
    def code(self) -> Optional[str]:
        return self.error.code if self.error else None
