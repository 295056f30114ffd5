"""
Collection Action Tests.

============================================================
PURPOSE
============================================================
Payload parsing and the SQL/HTTP collection actions.

TEST CATEGORIES:
- Payload shapes and key normalization
- Registered SQL queries and baseline queries
- HTTP status and body handling

============================================================
"""

from decimal import Decimal

import pytest
from sqlalchemy import create_engine, text

from core.exceptions import CollectionError, CollectionFailureReason
from execution_engine.adapters import (
    CallableCollectionAction,
    HttpCollectionAction,
    SqlCollectionAction,
    parse_collection_payload,
    parse_statistic,
)
from execution_engine.adapters.collectors import _bound
from execution_engine.types import CollectionPayload, CollectionRequest, ThresholdField


def make_request(**overrides) -> CollectionRequest:
    values = dict(indicator_id=1, procedure_ref="order_volume", window_minutes=60)
    values.update(overrides)
    return CollectionRequest(**values)


# ============================================================
# PARSING
# ============================================================

class TestParseStatistic:

    def test_key_normalization(self):
        stat = parse_statistic({"ItemName": "orders", "Total": 10, "marked": "2", "Marked_Percent": 20.5})

        assert stat.item_name == "orders"
        assert stat.total == Decimal("10")
        assert stat.marked == Decimal("2")
        assert stat.marked_percent == Decimal("20.5")

    def test_missing_fields_stay_none(self):
        stat = parse_statistic({"item_name": "orders"})
        assert stat.total is None
        assert stat.value_for(ThresholdField.MARKED) is None

    def test_missing_item_name(self):
        with pytest.raises(CollectionError) as exc_info:
            parse_statistic({"Total": 5})
        assert exc_info.value.reason == CollectionFailureReason.MALFORMED

    def test_non_numeric(self):
        with pytest.raises(CollectionError) as exc_info:
            parse_statistic({"ItemName": "orders", "Total": "many"})
        assert exc_info.value.reason == CollectionFailureReason.MALFORMED


class TestParsePayload:

    def test_list_of_items(self):
        payload = parse_collection_payload([{"ItemName": "a", "Total": 1}, {"ItemName": "b", "Total": 2}])
        assert [s.item_name for s in payload.items] == ["a", "b"]
        assert payload.current_value is None

    def test_items_object(self):
        payload = parse_collection_payload({
            "items": [{"ItemName": "a", "Total": 1}],
            "HistoricalValue": "4.5",
            "RecordCount": "3",
        })
        assert len(payload.items) == 1
        assert payload.historical_value == Decimal("4.5")
        assert payload.record_count == 3

    def test_scalar_object(self):
        payload = parse_collection_payload({"current_value": 7})
        assert payload.current_value == Decimal("7")
        assert payload.items == []

    def test_items_not_a_list(self):
        with pytest.raises(CollectionError):
            parse_collection_payload({"items": "oops"})

    def test_unexpected_type(self):
        with pytest.raises(CollectionError) as exc_info:
            parse_collection_payload("42")
        assert exc_info.value.reason == CollectionFailureReason.MALFORMED

    def test_bad_record_count(self):
        with pytest.raises(CollectionError):
            parse_collection_payload({"current_value": 1, "record_count": "few"})


def test_bound_keeps_referenced_parameters():
    params = {"window_minutes": 60, "item_name": None, "baseline_days": 7}
    assert _bound("SELECT 1 WHERE m = :window_minutes", params) == {"window_minutes": 60}


class TestCallableAction:

    @pytest.mark.asyncio
    async def test_passes_payload_through(self):
        payload = CollectionPayload(current_value=Decimal("1"))

        async def func(request):
            return payload

        action = CallableCollectionAction(func)
        assert await action.invoke(make_request()) is payload
        assert len(action.calls) == 1

    @pytest.mark.asyncio
    async def test_parses_raw_answer(self):
        async def func(request):
            return {"current_value": "3"}

        result = await CallableCollectionAction(func).invoke(make_request())
        assert result.current_value == Decimal("3")


# ============================================================
# SQL
# ============================================================

ITEMS_QUERY = (
    "SELECT item_name AS ItemName, total AS Total, marked AS Marked, "
    "marked_percent AS MarkedPercent FROM item_stats "
    "WHERE (:item_name IS NULL OR item_name = :item_name) ORDER BY item_name"
)
BASELINE_QUERY = "SELECT AVG(total) FROM item_history WHERE days_ago <= :baseline_days"


@pytest.fixture
def collector_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'collector.db'}")
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE item_stats (item_name TEXT, total INTEGER, marked INTEGER, marked_percent REAL)"
        ))
        conn.execute(text("CREATE TABLE item_history (days_ago INTEGER, total INTEGER)"))
        conn.execute(text(
            "INSERT INTO item_stats VALUES ('orders', 150, 15, 10.0), ('refunds', 20, 2, 10.0)"
        ))
        conn.execute(text("INSERT INTO item_history VALUES (1, 100), (2, 200), (30, 900)"))
    yield engine
    engine.dispose()


class TestSqlCollectionAction:

    @pytest.mark.asyncio
    async def test_all_items(self, collector_engine):
        action = SqlCollectionAction(collector_engine, {"order_volume": ITEMS_QUERY})

        payload = await action.invoke(make_request())

        assert [s.item_name for s in payload.items] == ["orders", "refunds"]
        assert payload.items[0].total == Decimal("150")
        assert payload.historical_value is None

    @pytest.mark.asyncio
    async def test_item_filter(self, collector_engine):
        action = SqlCollectionAction(collector_engine, {"order_volume": ITEMS_QUERY})

        payload = await action.invoke(make_request(item_name="refunds"))

        assert [s.item_name for s in payload.items] == ["refunds"]

    @pytest.mark.asyncio
    async def test_baseline_query(self, collector_engine):
        action = SqlCollectionAction(
            collector_engine,
            {"order_volume": ITEMS_QUERY},
            baseline_queries={"order_volume": BASELINE_QUERY},
        )

        payload = await action.invoke(make_request(baseline_days=7, baseline_hour=12))

        assert payload.historical_value == Decimal("150")

    @pytest.mark.asyncio
    async def test_baseline_skipped_without_days(self, collector_engine):
        action = SqlCollectionAction(
            collector_engine,
            {"order_volume": ITEMS_QUERY},
            baseline_queries={"order_volume": BASELINE_QUERY},
        )
        payload = await action.invoke(make_request())
        assert payload.historical_value is None

    @pytest.mark.asyncio
    async def test_unknown_collector(self, collector_engine):
        action = SqlCollectionAction(collector_engine, {"order_volume": ITEMS_QUERY})

        with pytest.raises(CollectionError) as exc_info:
            await action.invoke(make_request(procedure_ref="orders; DROP TABLE item_stats"))

        assert exc_info.value.reason == CollectionFailureReason.EXTERNAL
        assert list(action.collectors) == ["order_volume"]

    @pytest.mark.asyncio
    async def test_unreachable_database(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'nowhere.db'}")
        action = SqlCollectionAction(engine, {"order_volume": ITEMS_QUERY})

        with pytest.raises(CollectionError) as exc_info:
            await action.invoke(make_request())

        assert exc_info.value.reason == CollectionFailureReason.CONNECTIVITY
        engine.dispose()


# ============================================================
# HTTP
# ============================================================

class FakeResponse:

    def __init__(self, status=200, payload=None, body="", json_error=None):
        self.status = status
        self._payload = payload
        self._body = body
        self._json_error = json_error

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def text(self):
        return self._body

    async def json(self, content_type="application/json"):
        if self._json_error:
            raise self._json_error
        return self._payload


class FakeSession:

    def __init__(self, response):
        self.response = response
        self.posts = []
        self.closed = False

    def post(self, url, json=None):
        self.posts.append((url, json))
        return self.response

    async def close(self):
        self.closed = True


class TestHttpCollectionAction:

    @pytest.mark.asyncio
    async def test_posts_request(self):
        session = FakeSession(FakeResponse(payload={"current_value": "12", "record_count": 2}))
        action = HttpCollectionAction("http://collector.local/api/", session=session)

        payload = await action.invoke(make_request(item_name="orders", baseline_days=7, baseline_hour=9))

        url, body = session.posts[0]
        assert url == "http://collector.local/api/order_volume"
        assert body["item_name"] == "orders"
        assert body["field"] == "total"
        assert body["baseline_days"] == 7
        assert payload.current_value == Decimal("12")
        assert payload.record_count == 2

    @pytest.mark.asyncio
    async def test_http_error_is_external(self):
        session = FakeSession(FakeResponse(status=503, body="maintenance"))
        action = HttpCollectionAction("http://collector.local", session=session)

        with pytest.raises(CollectionError) as exc_info:
            await action.invoke(make_request())

        assert exc_info.value.reason == CollectionFailureReason.EXTERNAL
        assert "503" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_invalid_json_is_malformed(self):
        session = FakeSession(FakeResponse(json_error=ValueError("not json")))
        action = HttpCollectionAction("http://collector.local", session=session)

        with pytest.raises(CollectionError) as exc_info:
            await action.invoke(make_request())

        assert exc_info.value.reason == CollectionFailureReason.MALFORMED

    @pytest.mark.asyncio
    async def test_injected_session_is_not_closed(self):
        session = FakeSession(FakeResponse(payload=[]))
        action = HttpCollectionAction("http://collector.local", session=session)

        await action.close()

        assert session.closed is False
