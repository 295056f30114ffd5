"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Wires the indicator engine together and runs it.

- Logging setup (json or text)
- Builds the collection action, notifiers and SQL stores
  from SchedulerConfig
- Owns the scheduler loop lifecycle: signal handlers,
  graceful shutdown, closing network sessions

============================================================
ARCHITECTURAL POSITION
============================================================
- No business logic lives here
- Everything it builds can be replaced by passing an
  instance in (tests use in-memory stores)

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from core.exceptions import ConfigurationError
from execution_engine.adapters.collectors import HttpCollectionAction, SqlCollectionAction
from execution_engine.adapters.sql import SqlAlertStore, SqlHistoryWriter, SqlIndicatorStore
from execution_engine.config import EngineConfig
from execution_engine.execution_service import IndicatorExecutionService
from execution_engine.interfaces import CollectionAction, IndicatorStore, Notifier
from monitoring.notifications import CompositeNotifier, LoggingNotifier, TelegramNotifier
from storage.database import create_database_engine, get_session_factory

from .models import SchedulerConfig
from .scheduler import SchedulerLoop


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(level: str = "INFO", log_format: str = "json") -> logging.Logger:
    """
    Set up structured logging.

    Args:
        level: Log level
        log_format: Output format (json or text)

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
            })
        )
    else:
        formatter = logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


logger = logging.getLogger(__name__)


# ============================================================
# BUILDERS
# ============================================================

def load_collector_queries(path: str) -> Tuple[Dict[str, str], Dict[str, str]]:
    """
    Read the collector query registry.

    Format::

        {"<collector_ref>": {"query": "...", "baseline_query": "..."}}

    Returns:
        (queries, baseline_queries)
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigurationError(
            f"Cannot read collector queries file {path}: {e}",
            config_key="collector_queries_file",
        ) from e

    if not isinstance(raw, dict):
        raise ConfigurationError(
            "Collector queries file must contain a JSON object",
            config_key="collector_queries_file",
        )

    queries: Dict[str, str] = {}
    baselines: Dict[str, str] = {}
    for ref, entry in raw.items():
        if isinstance(entry, str):
            queries[ref] = entry
            continue
        if not isinstance(entry, dict) or not entry.get("query"):
            raise ConfigurationError(
                f"Collector '{ref}' has no query",
                config_key="collector_queries_file",
            )
        queries[ref] = entry["query"]
        if entry.get("baseline_query"):
            baselines[ref] = entry["baseline_query"]

    logger.info(f"Loaded {len(queries)} collector queries from {path}")
    return queries, baselines


def build_collection_action(config: SchedulerConfig) -> CollectionAction:
    """Collection action for the configured collector mode."""
    errors = config.validate_wiring()
    if errors:
        raise ConfigurationError(
            "Invalid collector configuration: " + "; ".join(errors),
            context={"errors": errors},
        )

    if config.collector_mode == "sql":
        queries, baselines = load_collector_queries(config.collector_queries_file)
        engine = create_database_engine(config.collector_database_url or config.database_url)
        return SqlCollectionAction(engine, queries, baselines)

    return HttpCollectionAction(config.collector_base_url)


def build_notifier(config: SchedulerConfig) -> Notifier:
    """Logging notifier, plus Telegram when enabled and configured."""
    notifiers: List[Notifier] = [LoggingNotifier()]

    if config.telegram_enabled:
        telegram = TelegramNotifier(send_execution_events=config.telegram_send_execution_events)
        if telegram.enabled:
            notifiers.append(telegram)

    if len(notifiers) == 1:
        return notifiers[0]
    return CompositeNotifier(notifiers)


# ============================================================
# APPLICATION
# ============================================================

class SchedulerApplication:
    """
    The assembled engine: store, service and scheduler loop.

    run() installs SIGINT/SIGTERM handlers that stop the loop
    gracefully, and closes network sessions on exit.
    """

    def __init__(
        self,
        loop: SchedulerLoop,
        service: IndicatorExecutionService,
        store: IndicatorStore,
        closeables: Optional[List[Any]] = None,
    ):
        self.loop = loop
        self.service = service
        self.store = store
        self._closeables = list(closeables or [])
        self._signals_installed: List[signal.Signals] = []

    async def run(self) -> None:
        """Run the scheduler loop until a signal or a fatal store error."""
        self._install_signal_handlers()
        try:
            await self.loop.run_forever()
        finally:
            self._restore_signal_handlers()
            await self.close()

    async def close(self) -> None:
        """Close network sessions held by collectors and notifiers."""
        for item in self._closeables:
            close = getattr(item, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"Error closing {type(item).__name__}: {e}")
        self._closeables = []

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        if sys.platform == "win32":
            # add_signal_handler is not available on Windows loops
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.create_task(self._async_signal_handler(s)),
            )
            self._signals_installed.append(sig)

    def _restore_signal_handlers(self) -> None:
        """Restore original signal handlers."""
        if not self._signals_installed:
            return
        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed = []

    async def _async_signal_handler(self, sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}")
        await self.loop.stop()


def create_application(
    config: Optional[SchedulerConfig] = None,
    engine_config: Optional[EngineConfig] = None,
    session_factory: Optional[sessionmaker] = None,
    collection_action: Optional[CollectionAction] = None,
    notifier: Optional[Notifier] = None,
) -> SchedulerApplication:
    """
    Build the engine from configuration.

    Args:
        config: Scheduler configuration (default: from env)
        engine_config: Pipeline configuration (default: from env)
        session_factory: Session factory for the engine database
            (default: built from config.database_url)
        collection_action: Override the configured collector
        notifier: Override the configured notifiers

    Raises:
        ConfigurationError: invalid configuration
    """
    config = config or SchedulerConfig.from_env()
    engine_config = engine_config or EngineConfig.from_env()

    if session_factory is None:
        session_factory = get_session_factory(create_database_engine(config.database_url))

    if collection_action is None:
        collection_action = build_collection_action(config)
    if notifier is None:
        notifier = build_notifier(config)

    store = SqlIndicatorStore(session_factory)
    service = IndicatorExecutionService(
        store=store,
        history_writer=SqlHistoryWriter(session_factory),
        alert_store=SqlAlertStore(session_factory),
        collection_action=collection_action,
        notifier=notifier,
        config=engine_config,
    )
    loop = SchedulerLoop(store, service, config)

    closeables: List[Any] = [collection_action]
    if isinstance(notifier, CompositeNotifier):
        closeables.extend(notifier.notifiers)
    else:
        closeables.append(notifier)

    logger.info(
        f"Scheduler assembled | collector={config.collector_mode} "
        f"tick={config.tick_interval_seconds}s parallel={config.max_parallel_indicators}"
    )
    return SchedulerApplication(loop, service, store, closeables)


__all__ = [
    "setup_logging",
    "load_collector_queries",
    "build_collection_action",
    "build_notifier",
    "SchedulerApplication",
    "create_application",
]
