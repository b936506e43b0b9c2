"""Top-level package for the Budget Planner.

The primary modules are:

* ``db`` - the SQLite record store
* ``months`` - month resolution and carry-forward
* ``sandbox`` - the what-if planning session, undo/redo and scenarios
* ``projection`` - day-by-day balance projection
* ``visualization`` - functions that generate Plotly figures
* ``app`` - a Streamlit app that ties everything together

To run the app from the command line you can execute:

```bash
python run_planner.py
```
"""

from . import projection  # noqa: F401  # re-exported for convenience
from . import visualization  # noqa: F401  # re-exported for convenience
from .db import Store
from .events import EventBus
from .months import MonthResolver, MonthSnapshot
from .results import Result, StoreError
from .sandbox import SandboxSession, SandboxSessionManager

__all__ = [
    "EventBus",
    "MonthResolver",
    "MonthSnapshot",
    "Result",
    "SandboxSession",
    "SandboxSessionManager",
    "Store",
    "StoreError",
    "projection",
    "visualization",
]
