"""
Execution Engine - Adapters Package.

============================================================
PURPOSE
============================================================
Concrete implementations of the engine's collaborator
interfaces.

STORES:
- InMemoryIndicatorStore / InMemoryHistoryWriter / InMemoryAlertStore:
  single-process and tests
- SqlIndicatorStore / SqlHistoryWriter / SqlAlertStore:
  SQLAlchemy repositories, safe across processes

COLLECTORS:
- CallableCollectionAction: wraps an async function
- SqlCollectionAction: registered SQL collector queries
- HttpCollectionAction: collector service over HTTP

============================================================
"""

from .collectors import (
    CallableCollectionAction,
    HttpCollectionAction,
    SqlCollectionAction,
    parse_collection_payload,
    parse_statistic,
)
from .memory import InMemoryAlertStore, InMemoryHistoryWriter, InMemoryIndicatorStore
from .sql import (
    SqlAlertStore,
    SqlHistoryWriter,
    SqlIndicatorStore,
    indicator_to_row,
    row_to_indicator,
    row_to_schedule,
    schedule_to_row,
)

__all__ = [
    # Collectors
    "CallableCollectionAction",
    "HttpCollectionAction",
    "SqlCollectionAction",
    "parse_collection_payload",
    "parse_statistic",
    # In-memory
    "InMemoryAlertStore",
    "InMemoryHistoryWriter",
    "InMemoryIndicatorStore",
    # SQL
    "SqlAlertStore",
    "SqlHistoryWriter",
    "SqlIndicatorStore",
    "indicator_to_row",
    "row_to_indicator",
    "row_to_schedule",
    "schedule_to_row",
]
