"""Tests for dataspine.core.logging and the events the engine emits."""

from __future__ import annotations

import json
import logging
from decimal import Decimal

import pytest
import structlog
from structlog.testing import capture_logs

from dataspine.core.logging import (
    LogContext,
    _add_service_metadata,
    _elasticsearch_compatible,
    _render_row_keys,
    bind_context,
    clear_context,
    configure_from_settings,
    configure_logging,
    get_logger,
)
from dataspine.core.settings import DataSpineSettings
from dataspine.data import where


@pytest.fixture
def restore_structlog():
    yield
    structlog.reset_defaults()
    clear_context()


class TestProcessors:
    def test_elasticsearch_field_names(self):
        event = _elasticsearch_compatible(None, "info", {"timestamp": "t", "level": "info", "event": "e"})
        assert event == {"@timestamp": "t", "log.level": "info", "event": "e"}

    def test_service_name_added(self):
        assert "service.name" in _add_service_metadata(None, "info", {"event": "e"})

    def test_sync_context_is_namespaced(self):
        event = _elasticsearch_compatible(
            None, "info", {"event": "e", "container": "orders", "logger": "x", "inserted": 2}
        )
        assert event == {
            "event": "e",
            "dataspine.container": "orders",
            "log.logger": "x",
            "inserted": 2,
        }

    def test_composite_and_decimal_keys_render_as_strings(self):
        assert _render_row_keys(None, "info", {"key": (1, "SKU-A")})["key"] == "1|SKU-A"
        assert _render_row_keys(None, "info", {"key": Decimal("2.50")})["key"] == "2.50"
        assert _render_row_keys(None, "info", {"key": 7})["key"] == 7
        assert "key" not in _render_row_keys(None, "info", {"event": "e"})


class TestContext:
    def test_log_context_binds_and_unbinds(self, restore_structlog):
        with LogContext(dataset="order_book", operation="sync_all", container=None):
            bound = structlog.contextvars.get_contextvars()
            assert bound == {"dataset": "order_book", "operation": "sync_all"}
        assert structlog.contextvars.get_contextvars() == {}

    def test_bind_context(self, restore_structlog):
        bind_context(request_id="r1")
        assert structlog.contextvars.get_contextvars()["request_id"] == "r1"


class TestConfigure:
    def test_json_output(self, restore_structlog, caplog):
        caplog.set_level(logging.INFO)
        configure_logging(level="INFO", json_format=True, service="orders-app")
        get_logger("test").info("sync_completed", inserted=2)
        record = json.loads(caplog.records[-1].getMessage())
        assert record["event"] == "sync_completed"
        assert record["inserted"] == 2
        assert record["service.name"] == "orders-app"
        assert record["log.level"] == "info"

    def test_debug_suppressed_at_info(self, restore_structlog, caplog):
        caplog.set_level(logging.DEBUG)
        configure_logging(level="INFO", json_format=True)
        get_logger("test").debug("noise")
        assert not any("noise" in r.getMessage() for r in caplog.records)


class TestEngineEvents:
    def test_read_and_sync_events(self, engine, orders, orders_binding):
        with capture_logs() as logs:
            engine.read(orders, orders_binding, where("order_no").eq(1))
            orders.find(1)["status"] = "shipped"
            engine.update(orders, orders_binding)
        events = [entry["event"] for entry in logs]
        assert "read_completed" in events
        completed = next(e for e in logs if e["event"] == "sync_completed")
        assert completed["updated"] == 1

    def test_rejected_row_is_logged(self, engine, orders, orders_binding):
        orders.add_new(order_no=-1, customer="", total="1")
        with capture_logs() as logs:
            engine.create(
                orders, orders_binding, validators=[lambda c: (bool(c.current["customer"]), "customer is required")]
            )
        rejected = [e for e in logs if e["event"] == "row_rejected"]
        assert rejected[0]["kind"] == "ValidationFailed"
        assert rejected[0]["log_level"] == "warning"

    def test_from_settings(self, restore_structlog, caplog):
        caplog.set_level(logging.INFO)
        configure_from_settings(DataSpineSettings(service_name="books", log_level="WARNING"))
        log = get_logger("test")
        log.info("quiet")
        log.warning("loud")
        messages = [json.loads(r.getMessage()) for r in caplog.records if "loud" in r.getMessage()]
        assert messages[0]["service.name"] == "books"
        assert not any("quiet" in r.getMessage() for r in caplog.records)

    def test_bound_context_lands_under_namespace(self, restore_structlog, caplog):
        caplog.set_level(logging.INFO)
        configure_logging(level="INFO", json_format=True)
        with LogContext(dataset="order_book", operation="sync_all"):
            get_logger("test").info("sync_completed")
        record = json.loads(caplog.records[-1].getMessage())
        assert record["dataspine.dataset"] == "order_book"
        assert record["dataspine.operation"] == "sync_all"
        assert "dataset" not in record

    def test_driver_loggers_held_at_warning(self, restore_structlog):
        sa_logger = logging.getLogger("sqlalchemy.engine")
        previous = sa_logger.level
        try:
            configure_logging(level="INFO", json_format=True)
            assert sa_logger.level == logging.WARNING
            configure_logging(level="DEBUG", json_format=True)
            assert sa_logger.level == logging.DEBUG
        finally:
            sa_logger.setLevel(previous)
