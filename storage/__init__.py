"""
Storage Package.

This package manages all indicator engine persistence.

Modules:
- database: Engine, sessions and schema initialization
- models/: ORM models
- repositories/: Data access layer
"""

from storage.database import (
    create_database_engine,
    get_session_factory,
    initialize_database,
    session_scope,
)

__all__ = [
    "create_database_engine",
    "get_session_factory",
    "initialize_database",
    "session_scope",
]
