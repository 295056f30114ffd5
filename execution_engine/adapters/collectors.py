"""
Execution Engine - Collection Actions.

============================================================
PURPOSE
============================================================
Concrete CollectionAction implementations.

    CallableCollectionAction  wraps an async function (tests,
                              embedded collectors)
    SqlCollectionAction       runs a named, pre-registered SQL
                              query against a collector database
    HttpCollectionAction      POSTs the request to a collector
                              service and parses its JSON answer

Collectors answer with per-item statistics:

    item_name | total | marked | marked_percent

Column and key names are matched case-insensitively with
underscores ignored, so ``ItemName`` and ``item_name`` are the
same column.

============================================================
"""

import asyncio
import logging
from decimal import InvalidOperation
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional

import aiohttp
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from core.exceptions import CollectionError, CollectionFailureReason

from ..interfaces import CollectionAction
from ..types import CollectionPayload, CollectionRequest, CollectorStatistic, to_decimal


logger = logging.getLogger(__name__)


# ============================================================
# PAYLOAD PARSING
# ============================================================

def _normalize_key(key: str) -> str:
    return str(key).replace("_", "").lower()


def _normalized(mapping: Mapping[str, Any]) -> Dict[str, Any]:
    return {_normalize_key(k): v for k, v in mapping.items()}


def parse_statistic(row: Mapping[str, Any]) -> CollectorStatistic:
    """
    Build a CollectorStatistic from a row or JSON object.

    Raises:
        CollectionError: MALFORMED on missing item name or non-numeric value
    """
    values = _normalized(row)
    item_name = values.get("itemname")
    if item_name is None:
        raise CollectionError(
            f"Collector row has no item name: {dict(row)}",
            reason=CollectionFailureReason.MALFORMED,
        )
    try:
        return CollectorStatistic(
            item_name=str(item_name),
            total=to_decimal(values.get("total")),
            marked=to_decimal(values.get("marked")),
            marked_percent=to_decimal(values.get("markedpercent")),
            timestamp=values.get("timestamp"),
        )
    except (InvalidOperation, ValueError, TypeError) as e:
        raise CollectionError(
            f"Collector row for '{item_name}' has a non-numeric value",
            reason=CollectionFailureReason.MALFORMED,
            cause=e,
        ) from e


def parse_collection_payload(data: Any) -> CollectionPayload:
    """
    Parse a collector answer.

    Accepted shapes:
        [ {item}, ... ]
        { "items": [ {item}, ... ], "historical_value": ..., "record_count": ... }
        { "current_value": ..., "historical_value": ..., "record_count": ... }

    Raises:
        CollectionError: MALFORMED for any other shape
    """
    if isinstance(data, list):
        return CollectionPayload(items=[parse_statistic(row) for row in data])

    if not isinstance(data, Mapping):
        raise CollectionError(
            f"Unexpected collector answer of type {type(data).__name__}",
            reason=CollectionFailureReason.MALFORMED,
        )

    values = _normalized(data)
    items = values.get("items") or []
    if not isinstance(items, list):
        raise CollectionError(
            "Collector 'items' must be a list",
            reason=CollectionFailureReason.MALFORMED,
        )

    try:
        record_count = values.get("recordcount")
        return CollectionPayload(
            items=[parse_statistic(row) for row in items],
            current_value=to_decimal(values.get("currentvalue")),
            historical_value=to_decimal(values.get("historicalvalue")),
            record_count=int(record_count) if record_count is not None else None,
        )
    except (InvalidOperation, ValueError, TypeError) as e:
        raise CollectionError(
            f"Collector answer has a non-numeric value: {e}",
            reason=CollectionFailureReason.MALFORMED,
            cause=e,
        ) from e


def _bound(query: str, params: Dict[str, Any]) -> Dict[str, Any]:
    """Only the parameters the statement references."""
    return {k: v for k, v in params.items() if f":{k}" in query}


# ============================================================
# CALLABLE
# ============================================================

class CallableCollectionAction(CollectionAction):
    """Delegates to an async function returning a payload or raw answer."""

    def __init__(self, func: Callable[[CollectionRequest], Awaitable[Any]]) -> None:
        self._func = func
        self.calls: list = []

    async def invoke(self, request: CollectionRequest) -> CollectionPayload:
        self.calls.append(request)
        result = await self._func(request)
        if result is None or isinstance(result, CollectionPayload):
            return result
        return parse_collection_payload(result)


# ============================================================
# SQL
# ============================================================

class SqlCollectionAction(CollectionAction):
    """
    Runs registered collector queries.

    ``queries`` maps a collector reference to a SQL statement
    returning item rows. ``baseline_queries`` optionally maps
    the same reference to a statement returning one numeric
    column: the historical average. Only registered statements
    are ever executed; the collector reference is never spliced
    into SQL.

    Bound parameters:
        :window_minutes, :item_name, :baseline_days, :baseline_hour
    """

    def __init__(
        self,
        engine: Engine,
        queries: Dict[str, str],
        baseline_queries: Optional[Dict[str, str]] = None,
    ) -> None:
        self._engine = engine
        self._queries = dict(queries)
        self._baseline_queries = dict(baseline_queries or {})

    @property
    def collectors(self) -> Iterable[str]:
        return self._queries.keys()

    async def invoke(self, request: CollectionRequest) -> CollectionPayload:
        query = self._queries.get(request.procedure_ref)
        if query is None:
            raise CollectionError(
                f"Unknown collector '{request.procedure_ref}'",
                reason=CollectionFailureReason.EXTERNAL,
                indicator_id=request.indicator_id,
            )
        baseline_query = None
        if request.baseline_days is not None:
            baseline_query = self._baseline_queries.get(request.procedure_ref)

        try:
            return await asyncio.to_thread(self._run, request, query, baseline_query)
        except OperationalError as e:
            raise CollectionError(
                f"Collector database unreachable: {e}",
                reason=CollectionFailureReason.CONNECTIVITY,
                indicator_id=request.indicator_id,
                cause=e,
            ) from e

    def _run(
        self,
        request: CollectionRequest,
        query: str,
        baseline_query: Optional[str],
    ) -> CollectionPayload:
        params = {
            "window_minutes": request.window_minutes,
            "item_name": request.item_name,
            "baseline_days": request.baseline_days,
            "baseline_hour": request.baseline_hour,
        }
        with self._engine.connect() as conn:
            rows = conn.execute(text(query), _bound(query, params)).mappings().all()
            payload = CollectionPayload(items=[parse_statistic(row) for row in rows])

            if baseline_query is not None:
                historical = conn.execute(text(baseline_query), _bound(baseline_query, params)).scalar()
                try:
                    payload.historical_value = to_decimal(historical)
                except (InvalidOperation, ValueError, TypeError) as e:
                    raise CollectionError(
                        f"Baseline query returned a non-numeric value: {historical!r}",
                        reason=CollectionFailureReason.MALFORMED,
                        indicator_id=request.indicator_id,
                        cause=e,
                    ) from e

        logger.debug(
            f"Collector {request.procedure_ref} returned {len(payload.items)} rows"
        )
        return payload


# ============================================================
# HTTP
# ============================================================

class HttpCollectionAction(CollectionAction):
    """
    Collector service client.

    POST {base_url}/{procedure_ref} with the request as JSON.
    HTTP errors map to EXTERNAL, transport errors to
    CONNECTIVITY (via the collection executor).
    """

    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = headers or {}
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers={"Accept": "application/json", **self._headers},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def invoke(self, request: CollectionRequest) -> CollectionPayload:
        session = await self._get_session()
        url = f"{self._base_url}/{request.procedure_ref}"
        body = {
            "indicator_id": request.indicator_id,
            "window_minutes": request.window_minutes,
            "item_name": request.item_name,
            "field": request.field.value,
            "baseline_days": request.baseline_days,
            "baseline_hour": request.baseline_hour,
        }

        async with session.post(url, json=body) as response:
            if response.status >= 400:
                detail = await response.text()
                raise CollectionError(
                    f"Collector returned HTTP {response.status}: {detail[:500]}",
                    reason=CollectionFailureReason.EXTERNAL,
                    indicator_id=request.indicator_id,
                )
            try:
                data = await response.json(content_type=None)
            except ValueError as e:
                raise CollectionError(
                    "Collector returned invalid JSON",
                    reason=CollectionFailureReason.MALFORMED,
                    indicator_id=request.indicator_id,
                    cause=e,
                ) from e

        return parse_collection_payload(data)
