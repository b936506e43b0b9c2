"""Configuration management for the budget planner.

This module centralizes all configuration values including paths,
defaults, and environment variable overrides.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

# Base project root - assumes this file is in budget_planner/
_PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = Path(os.getenv("BUDGET_PLANNER_DATA_DIR", _PROJECT_ROOT / "data"))
SCENARIOS_DIR = Path(
    os.getenv("BUDGET_PLANNER_SCENARIOS_DIR", DATA_DIR / "scenarios")
)

# Database
DB_PATH = Path(
    os.getenv("BUDGET_PLANNER_DB_PATH", DATA_DIR / "budget.db")
).resolve()

# Logging
LOG_LEVEL = os.getenv("BUDGET_PLANNER_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Buckets seeded into every new database (name, key, colour, sort order)
DEFAULT_BUCKETS = (
    ("Major Fixed Expense", "major_fixed", "#3B82F6", 1),
    ("Major Variable Expense", "major_variable", "#8B5CF6", 2),
    ("Minor Fixed Expense", "minor_fixed", "#10B981", 3),
    ("Minor Variable Expense", "minor_variable", "#F59E0B", 4),
    ("Non-Standard Expense/Goals", "goals", "#EC4899", 5),
)

# Buckets that count as spending on the budget-vs-expense chart
EXPENSE_BUCKET_KEYS = ("major_fixed", "major_variable", "minor_fixed", "minor_variable")


def ensure_data_directories() -> None:
    """Create all required data directories if they don't exist."""
    for directory in [DATA_DIR, SCENARIOS_DIR]:
        directory.mkdir(parents=True, exist_ok=True)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for the app and command-line scripts.

    Args:
        level: Log level name. Defaults to ``BUDGET_PLANNER_LOG_LEVEL``.
    """
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
