"""
Wiring and CLI tests.

Configuration loading, collector/notifier builders, application
assembly over SQLite and the command-line entry point.
"""

import json
import logging
from datetime import timedelta

import pytest

from core.exceptions import ConfigurationError
from execution_engine.adapters import (
    CallableCollectionAction,
    HttpCollectionAction,
    SqlCollectionAction,
    SqlIndicatorStore,
)
from execution_engine.config import EngineConfig, ReleaseRetryConfig
from execution_engine.types import ExecutionContext
from monitoring.notifications import CompositeNotifier, LoggingNotifier
from orchestrator.cli import create_parser, main, validate_args
from orchestrator.core import (
    build_collection_action,
    build_notifier,
    create_application,
    load_collector_queries,
    setup_logging,
)
from orchestrator.models import SchedulerConfig
from storage.database import create_database_engine, get_session_factory, initialize_database


ENV_KEYS = [
    "TICK_INTERVAL_SECONDS",
    "MAX_PARALLEL_INDICATORS",
    "DATABASE_URL",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "COLLECTOR_MODE",
    "COLLECTOR_BASE_URL",
    "COLLECTOR_QUERIES_FILE",
    "TELEGRAM_ENABLED",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def queries_file(tmp_path):
    path = tmp_path / "collectors.json"
    path.write_text(json.dumps({
        "order_volume": "SELECT 'orders' AS ItemName, 1 AS Total",
        "refunds": {
            "query": "SELECT 'refunds' AS ItemName, 2 AS Total",
            "baseline_query": "SELECT 2",
        },
    }))
    return path


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


# ============================================================
# CONFIGURATION
# ============================================================

class TestSchedulerConfig:

    def test_defaults_are_valid(self):
        assert SchedulerConfig().validate() == []

    def test_from_env(self, clean_env):
        clean_env.setenv("TICK_INTERVAL_SECONDS", "15")
        clean_env.setenv("MAX_PARALLEL_INDICATORS", "3")
        clean_env.setenv("LOG_LEVEL", "debug")
        clean_env.setenv("COLLECTOR_MODE", "SQL")
        clean_env.setenv("TELEGRAM_ENABLED", "true")

        config = SchedulerConfig.from_env()

        assert config.tick_interval_seconds == 15
        assert config.max_parallel_indicators == 3
        assert config.log_level == "DEBUG"
        assert config.collector_mode == "sql"
        assert config.telegram_enabled is True

    def test_validate_reports_each_problem(self):
        errors = SchedulerConfig(
            tick_interval_seconds=0,
            max_parallel_indicators=0,
            log_level="LOUD",
            log_format="xml",
        ).validate()
        assert len(errors) == 4

    def test_wiring_requires_collector_settings(self):
        assert SchedulerConfig().validate_wiring() == [
            "collector_base_url required for http collector mode"
        ]
        assert SchedulerConfig(collector_mode="sql").validate_wiring() == [
            "collector_queries_file required for sql collector mode"
        ]
        assert SchedulerConfig(collector_mode="ftp").validate_wiring()
        assert SchedulerConfig(collector_base_url="http://c").validate_wiring() == []


class TestEngineConfig:

    def test_defaults_are_valid(self):
        assert EngineConfig().validate() == []
        assert EngineConfig.for_testing().validate() == []

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("COLLECTION_TIMEOUT_SECONDS", "20")
        monkeypatch.setenv("STALE_EXECUTION_SECONDS", "900")
        monkeypatch.setenv("RELEASE_RETRY_ATTEMPTS", "5")
        monkeypatch.setenv("NOTIFY_ON_START", "false")

        config = EngineConfig.from_env()

        assert config.collection_timeout_seconds == 20.0
        assert config.stale_after_seconds == 900.0
        assert config.release_retry.max_attempts == 5
        assert config.notify_on_start is False

    def test_stale_ceiling_must_exceed_timeouts(self):
        errors = EngineConfig(
            collection_timeout_seconds=60,
            pipeline_timeout_seconds=20,
            stale_after_seconds=30,
        ).validate()
        assert errors == ["stale_after_seconds must exceed collection_timeout_seconds"]

        errors = EngineConfig(pipeline_timeout_seconds=7200).validate()
        assert errors == ["stale_after_seconds must exceed pipeline_timeout_seconds"]

    def test_pipeline_timeout_from_env(self, monkeypatch):
        monkeypatch.setenv("PIPELINE_TIMEOUT_SECONDS", "90")
        assert EngineConfig.from_env().pipeline_timeout_seconds == 90.0

    def test_release_needs_an_attempt(self):
        config = EngineConfig(release_retry=ReleaseRetryConfig(max_attempts=0))
        assert config.validate() == ["release_retry.max_attempts must be at least 1"]


# ============================================================
# BUILDERS
# ============================================================

class TestBuilders:

    def test_load_collector_queries(self, queries_file):
        queries, baselines = load_collector_queries(str(queries_file))

        assert set(queries) == {"order_volume", "refunds"}
        assert baselines == {"refunds": "SELECT 2"}

    def test_missing_queries_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_collector_queries(str(tmp_path / "absent.json"))
        assert exc_info.value.context["config_key"] == "collector_queries_file"

    def test_entry_without_query(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"order_volume": {"baseline_query": "SELECT 1"}}))
        with pytest.raises(ConfigurationError):
            load_collector_queries(str(path))

    def test_http_collection_action(self):
        action = build_collection_action(SchedulerConfig(collector_base_url="http://collector"))
        assert isinstance(action, HttpCollectionAction)

    def test_sql_collection_action(self, tmp_path, queries_file):
        config = SchedulerConfig(
            collector_mode="sql",
            collector_queries_file=str(queries_file),
            collector_database_url=f"sqlite:///{tmp_path / 'collector.db'}",
        )
        action = build_collection_action(config)

        assert isinstance(action, SqlCollectionAction)
        assert sorted(action.collectors) == ["order_volume", "refunds"]

    def test_collection_action_rejects_bad_wiring(self):
        with pytest.raises(ConfigurationError):
            build_collection_action(SchedulerConfig())

    def test_notifier_without_telegram(self):
        assert isinstance(build_notifier(SchedulerConfig()), LoggingNotifier)

    def test_telegram_enabled_but_unconfigured(self, clean_env):
        assert isinstance(build_notifier(SchedulerConfig(telegram_enabled=True)), LoggingNotifier)

    def test_telegram_enabled(self, clean_env):
        clean_env.setenv("TELEGRAM_BOT_TOKEN", "abc")
        clean_env.setenv("TELEGRAM_CHAT_ID", "1")

        notifier = build_notifier(SchedulerConfig(telegram_enabled=True))

        assert isinstance(notifier, CompositeNotifier)
        assert len(notifier.notifiers) == 2

    def test_setup_logging_formats(self):
        setup_logging("DEBUG", "text")
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert "|" in root.handlers[0].formatter._fmt

        setup_logging("WARNING", "json")
        assert json.loads(root.handlers[0].formatter._fmt)["level"] == "%(levelname)s"


# ============================================================
# APPLICATION
# ============================================================

@pytest.fixture
def session_factory(tmp_path):
    engine = create_database_engine(f"sqlite:///{tmp_path / 'app.db'}")
    initialize_database(engine)
    yield get_session_factory(engine)
    engine.dispose()


class TestApplication:

    @pytest.mark.asyncio
    async def test_tick_over_sqlite(self, session_factory, engine_config, make_indicator, collector):
        await SqlIndicatorStore(session_factory).add_indicator(make_indicator())
        app = create_application(
            config=SchedulerConfig(),
            engine_config=engine_config,
            session_factory=session_factory,
            collection_action=CallableCollectionAction(collector),
            notifier=LoggingNotifier(),
        )

        result = await app.loop.run_once()
        await app.close()

        assert result.executed == 1
        assert result.alerts == 1
        history = await app.service.get_history(1)
        assert len(history) == 1
        assert history[0].execution_context == ExecutionContext.SCHEDULED

    @pytest.mark.asyncio
    async def test_manual_run_then_status(self, session_factory, engine_config, make_indicator, collector):
        await SqlIndicatorStore(session_factory).add_indicator(make_indicator())
        app = create_application(
            config=SchedulerConfig(),
            engine_config=engine_config,
            session_factory=session_factory,
            collection_action=CallableCollectionAction(collector),
            notifier=LoggingNotifier(),
        )

        outcome = await app.service.execute_by_id(1)
        report = await app.loop.get_indicator_status(1)

        assert outcome.success
        assert report.last_run == outcome.started_at
        assert report.next_run == outcome.started_at + timedelta(minutes=30)


# ============================================================
# CLI
# ============================================================

class TestParser:

    def test_commands(self):
        parser = create_parser()

        assert parser.parse_args(["run", "--tick-interval", "30"]).tick_interval == 30
        assert parser.parse_args(["execute", "12"]).indicator_id == 12
        args = parser.parse_args(["--log-format", "text", "test", "3", "--window-minutes", "120"])
        assert args.log_format == "text"
        assert args.window_minutes == 120

    def test_command_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args([])

    def test_validate_args(self):
        parser = create_parser()
        assert validate_args(parser.parse_args(["run", "--tick-interval", "0"]))
        assert validate_args(parser.parse_args(["history", "1", "--limit", "0"]))
        assert validate_args(parser.parse_args(["test", "1", "--window-minutes", "0"]))
        assert validate_args(parser.parse_args(["once"])) == []


class TestMain:

    def test_invalid_args(self, clean_env, capsys):
        assert main(["run", "--tick-interval", "0"]) == 1
        assert "--tick-interval" in capsys.readouterr().err

    def test_invalid_environment(self, clean_env, capsys):
        clean_env.setenv("MAX_PARALLEL_INDICATORS", "0")
        assert main(["--log-level", "CRITICAL", "once"]) == 1

    def test_missing_collector_settings(self, clean_env, tmp_path, capsys):
        clean_env.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
        assert main(["--log-level", "CRITICAL", "once"]) == 1
        assert "collector_base_url" in capsys.readouterr().err

    def test_init_db_then_commands(self, clean_env, tmp_path, capsys):
        clean_env.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
        clean_env.setenv("COLLECTOR_BASE_URL", "http://127.0.0.1:9")

        assert main(["--log-level", "CRITICAL", "--log-format", "text", "init-db"]) == 0
        assert (tmp_path / "cli.db").exists()
        capsys.readouterr()

        assert main(["--log-level", "CRITICAL", "--log-format", "text", "status"]) == 0
        assert json.loads(capsys.readouterr().out) == []

        assert main(["--log-level", "CRITICAL", "--log-format", "text", "cancel", "7"]) == 1
        assert "not running" in capsys.readouterr().out

        assert main(["--log-level", "CRITICAL", "--log-format", "text", "status", "--indicator-id", "7"]) == 1
