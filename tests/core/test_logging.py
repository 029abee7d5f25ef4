"""Tests for relay.core.logging."""

import io
import json

import pytest
import structlog

from relay.core.logging import LogContext, configure_logging, get_logger


@pytest.fixture
def stream():
    buffer = io.StringIO()
    yield buffer
    structlog.reset_defaults()


def _events(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


class TestConfigureLogging:
    def test_json_event_after_configure(self, stream):
        configure_logging(level="INFO", json_format=True, service="relay-test", stream=stream)
        get_logger("relay.tests").info("run_submitted", run_id="r-1")

        (event,) = _events(stream)
        assert event["event"] == "run_submitted"
        assert event["run_id"] == "r-1"
        assert event["logger"] == "relay.tests"
        assert event["log.level"] == "info"
        assert event["service.name"] == "relay-test"
        assert "@timestamp" in event

    def test_level_filters(self, stream):
        configure_logging(level="WARNING", json_format=True, stream=stream)
        log = get_logger(__name__)
        log.info("quiet")
        log.warning("loud")
        assert [e["event"] for e in _events(stream)] == ["loud"]

    def test_console_renderer(self, stream):
        configure_logging(level="INFO", json_format=False, stream=stream)
        get_logger(__name__).info("batch_finished", batch_id="b-1")
        assert "batch_finished" in stream.getvalue()

    def test_exception_is_rendered(self, stream):
        configure_logging(level="INFO", json_format=True, stream=stream)
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            get_logger(__name__).exception("op_failed")
        (event,) = _events(stream)
        assert "RuntimeError: boom" in event["exception"]


class TestLogContext:
    def test_binds_for_block_only(self, stream):
        configure_logging(level="INFO", json_format=True, stream=stream)
        log = get_logger(__name__)
        with LogContext(batch_id="b-7"):
            log.info("inside")
        log.info("outside")
        inside, outside = _events(stream)
        assert inside["batch_id"] == "b-7"
        assert "batch_id" not in outside
