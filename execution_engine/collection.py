"""
Execution Engine - Collection Executor.

============================================================
PURPOSE
============================================================
Runs an indicator's external collection action and turns its
raw answer into a validated CollectionResult.

RULES:
- Every call is bounded by the collection timeout
- The watched item is selected by name, the watched value by
  the indicator's threshold field
- Timeouts, connectivity failures and malformed answers are
  raised as CollectionError; nothing is defaulted to zero

============================================================
"""

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import aiohttp

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import (
    CollectionError,
    CollectionFailureReason,
    ConfigurationError,
)
from .config import EngineConfig
from .interfaces import CollectionAction
from .types import (
    CollectionPayload,
    CollectionRequest,
    CollectionResult,
    Indicator,
    to_decimal,
)


logger = logging.getLogger(__name__)


class CollectionExecutor:
    """Bounded, typed wrapper around a CollectionAction."""

    def __init__(
        self,
        action: CollectionAction,
        config: Optional[EngineConfig] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._action = action
        self._config = config or EngineConfig()
        self._clock = clock or ClockFactory.get_clock()

    def build_request(
        self,
        indicator: Indicator,
        window_minutes: Optional[int] = None,
    ) -> CollectionRequest:
        """
        Derive the collection parameters from the indicator.

        Raises:
            ConfigurationError: no collector configured
        """
        if not indicator.collector_ref:
            raise ConfigurationError(
                "No collector configured for this indicator",
                config_key="collector_ref",
                indicator_id=indicator.indicator_id,
            )

        window = window_minutes or indicator.window_minutes or self._config.default_window_minutes
        needs_baseline = indicator.threshold.needs_baseline

        return CollectionRequest(
            indicator_id=indicator.indicator_id,
            procedure_ref=indicator.collector_ref,
            window_minutes=window,
            item_name=indicator.collector_item_name,
            field=indicator.threshold.field,
            baseline_days=indicator.average_last_days if needs_baseline else None,
            baseline_hour=self._clock.now().hour if needs_baseline else None,
        )

    async def collect(
        self,
        indicator: Indicator,
        window_minutes: Optional[int] = None,
    ) -> CollectionResult:
        """
        Collect the current value (and baseline if needed).

        Raises:
            CollectionError: timeout, connectivity, malformed or external failure
            ConfigurationError: no collector configured
        """
        request = self.build_request(indicator, window_minutes)
        timeout = self._config.collection_timeout_seconds

        logger.debug(
            f"Collecting indicator {indicator.indicator_id} via {request.procedure_ref} "
            f"(window={request.window_minutes}m)"
        )

        try:
            payload = await asyncio.wait_for(self._action.invoke(request), timeout=timeout)
        except CollectionError:
            raise
        except asyncio.TimeoutError as e:
            raise CollectionError(
                f"Collection timed out after {timeout:g}s",
                reason=CollectionFailureReason.TIMEOUT,
                indicator_id=indicator.indicator_id,
                cause=e,
            ) from e
        except (ConnectionError, OSError, aiohttp.ClientError) as e:
            raise CollectionError(
                f"Collector unreachable: {e}",
                reason=CollectionFailureReason.CONNECTIVITY,
                indicator_id=indicator.indicator_id,
                cause=e,
            ) from e
        except Exception as e:
            raise CollectionError(
                f"Collector failed: {e}",
                reason=CollectionFailureReason.EXTERNAL,
                indicator_id=indicator.indicator_id,
                cause=e,
            ) from e

        return self._to_result(indicator, request, payload)

    # =========================================================
    # RESULT EXTRACTION
    # =========================================================

    def _to_result(
        self,
        indicator: Indicator,
        request: CollectionRequest,
        payload: Optional[CollectionPayload],
    ) -> CollectionResult:
        if payload is None:
            raise self._malformed(indicator, "Collector returned no result")

        try:
            current = self._select_current(indicator, request, payload)
            historical = to_decimal(payload.historical_value)
        except (InvalidOperation, ValueError, TypeError) as e:
            raise self._malformed(indicator, f"Collector returned a non-numeric value: {e}") from e

        if current is None:
            raise self._malformed(
                indicator,
                f"Collector returned no '{request.field.value}' value",
            )

        if request.baseline_days is not None and historical is None:
            logger.warning(
                f"Indicator {indicator.indicator_id}: no historical baseline returned"
            )

        record_count = payload.record_count
        if record_count is None:
            record_count = len(payload.items)

        return CollectionResult(
            current_value=current,
            historical_value=historical,
            record_count=int(record_count),
        )

    def _select_current(
        self,
        indicator: Indicator,
        request: CollectionRequest,
        payload: CollectionPayload,
    ) -> Optional[Decimal]:
        if request.item_name:
            for item in payload.items:
                if item.item_name == request.item_name:
                    return to_decimal(item.value_for(request.field))
            if payload.items or payload.current_value is None:
                available = ", ".join(f"'{item.item_name}'" for item in payload.items)
                raise self._malformed(
                    indicator,
                    f"Item '{request.item_name}' not found in collector results. "
                    f"Available items: [{available}]",
                )

        if payload.current_value is not None:
            return to_decimal(payload.current_value)

        if len(payload.items) == 1:
            return to_decimal(payload.items[0].value_for(request.field))

        raise self._malformed(
            indicator,
            f"Collector returned {len(payload.items)} items and no item name is configured",
        )

    @staticmethod
    def _malformed(indicator: Indicator, message: str) -> CollectionError:
        return CollectionError(
            message,
            reason=CollectionFailureReason.MALFORMED,
            indicator_id=indicator.indicator_id,
        )
