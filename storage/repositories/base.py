"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Shared plumbing for the indicator engine repositories:

- Statement helpers that wrap SQLAlchemy errors
- One logger per repository

Sessions are injected and owned by the caller (session_scope);
repositories flush but never commit.

============================================================
"""

import logging
from abc import ABC
from typing import Any, Generic, List, NoReturn, Optional, Type, TypeVar

from sqlalchemy.exc import (
    IntegrityError as SQLAlchemyIntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session

from storage.models.base import Base
from storage.repositories.exceptions import (
    IntegrityError,
    QueryError,
    RepositoryConnectionError,
)


T = TypeVar("T", bound=Base)


class BaseRepository(ABC, Generic[T]):
    """
    Subclasses pass their row class and a name used in logs
    and exceptions:

        class ScheduleRepository(BaseRepository[ScheduleRow]):
            def __init__(self, session: Session) -> None:
                super().__init__(session, ScheduleRow, "ScheduleRepository")
    """

    def __init__(
        self,
        session: Session,
        model_class: Type[T],
        repository_name: str,
    ) -> None:
        self._session = session
        self._model_class = model_class
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")

    @property
    def session(self) -> Session:
        return self._session

    # =========================================================
    # ERROR MAPPING
    # =========================================================

    def _raise_repository_error(self, error: SQLAlchemyError, operation: str) -> NoReturn:
        self._logger.error(
            f"{operation} failed: {error}",
            extra={"repository": self._repository_name, "operation": operation},
        )

        if isinstance(error, SQLAlchemyIntegrityError):
            raise IntegrityError(
                f"constraint violated: {error.orig}",
                self._repository_name,
                operation,
                original_error=str(error.orig),
            ) from error

        if isinstance(error, OperationalError):
            raise RepositoryConnectionError(
                f"database unavailable: {error.orig}",
                self._repository_name,
                operation,
                original_error=str(error.orig),
            ) from error

        raise QueryError(
            str(error),
            self._repository_name,
            operation,
            original_error=str(error),
        ) from error

    # =========================================================
    # STATEMENT HELPERS
    # =========================================================

    def _add(self, row: T) -> T:
        """Insert and flush, so generated keys are populated on ``row``."""
        try:
            self._session.add(row)
            self._session.flush()
        except SQLAlchemyError as e:
            self._raise_repository_error(e, f"add {type(row).__name__}")
        return row

    def _get_by_id(self, record_id: int) -> Optional[T]:
        try:
            return self._session.get(self._model_class, record_id)
        except SQLAlchemyError as e:
            self._raise_repository_error(e, f"get {record_id}")

    def _execute_query(self, stmt: Any) -> List[T]:
        try:
            return list(self._session.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self._raise_repository_error(e, "query")

    def _execute_scalar(self, stmt: Any) -> Optional[Any]:
        try:
            return self._session.execute(stmt).scalars().first()
        except SQLAlchemyError as e:
            self._raise_repository_error(e, "query_scalar")

    def _execute_update(self, stmt: Any, operation: str) -> int:
        """Rows matched by a conditional UPDATE; 0 means the guard failed."""
        try:
            return self._session.execute(stmt).rowcount
        except SQLAlchemyError as e:
            self._raise_repository_error(e, operation)
