"""
Orchestrator Package - Scheduler Loop and Wiring.

============================================================
PACKAGE OVERVIEW
============================================================
The periodic driver of the indicator engine and its
command-line entrypoint.

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                 SchedulerApplication                |
    |-----------------------------------------------------|
    |  SchedulerLoop   |  tick, scan, run due (bounded)   |
    |  Execution       |  IndicatorExecutionService       |
    |  Stores          |  SQL indicator/history/alerts    |
    |  CLI             |  run, once, status, upcoming ... |
    +-----------------------------------------------------+

============================================================
USAGE
============================================================

    from orchestrator import create_application

    app = create_application()
    await app.run()

============================================================
"""

from .models import (
    IndicatorStatusReport,
    SchedulerConfig,
    TickResult,
    UpcomingExecution,
)
from .scheduler import SchedulerLoop
from .core import (
    SchedulerApplication,
    build_collection_action,
    build_notifier,
    create_application,
    load_collector_queries,
    setup_logging,
)
from .cli import main


__all__ = [
    "IndicatorStatusReport",
    "SchedulerConfig",
    "TickResult",
    "UpcomingExecution",
    "SchedulerLoop",
    "SchedulerApplication",
    "build_collection_action",
    "build_notifier",
    "create_application",
    "load_collector_queries",
    "setup_logging",
    "main",
]
