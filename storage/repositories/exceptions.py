"""
Repository Layer Exceptions.

Repositories never let a raw SQLAlchemy error escape. They log it
and raise one of these instead; SqlIndicatorStore and friends then
turn any RepositoryException into the engine's PersistenceError.
"""

from typing import Optional


class RepositoryException(Exception):
    """A repository statement failed."""

    def __init__(
        self,
        message: str,
        repository_name: str,
        operation: str,
        original_error: Optional[str] = None,
    ) -> None:
        self.message = message
        self.repository_name = repository_name
        self.operation = operation
        self.original_error = original_error
        super().__init__(f"[{repository_name}] {operation}: {message}")


class RepositoryConnectionError(RepositoryException):
    """
    The database could not be reached or rejected the statement
    at the driver level (SQLAlchemy OperationalError). SQLite also
    reports a missing table this way.
    """


class IntegrityError(RepositoryException):
    """Duplicate key or foreign key violation, e.g. an unknown indicator_id."""


class QueryError(RepositoryException):
    """Any other statement failure."""
