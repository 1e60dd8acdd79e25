"""Tests for setup_logging — renderers and the alert audit file."""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from complywatch.core.config import reset_settings
from complywatch.core.logging import ALERT_LOG, setup_logging
from complywatch.core.types import Severity


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    reset_settings()
    yield
    for name in (ALERT_LOG, ""):
        target = logging.getLogger(name or None)
        for handler in target.handlers:
            handler.close()
        target.handlers.clear()
    structlog.reset_defaults()
    reset_settings()


class TestSetupLogging:
    def test_json_renderer(self) -> None:
        stream = io.StringIO()
        setup_logging(level="INFO", fmt="json", stream=stream, alert_log_path="")
        structlog.get_logger("complywatch.test").info("something_happened", count=3)

        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert record["event"] == "something_happened"
        assert record["count"] == 3
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_level_filters(self) -> None:
        stream = io.StringIO()
        setup_logging(level="WARNING", fmt="json", stream=stream, alert_log_path="")
        structlog.get_logger("complywatch.test").info("too_quiet")
        assert stream.getvalue() == ""

    def test_enums_rendered_by_name(self) -> None:
        stream = io.StringIO()
        setup_logging(level="INFO", fmt="json", stream=stream, alert_log_path="")
        structlog.get_logger("complywatch.test").info("graded", severity=Severity.HIGH)
        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert record["severity"] == "high"


class TestAlertAuditFile:
    def test_alert_events_written_as_json_lines(self, tmp_path: Path) -> None:
        path = tmp_path / "logs" / "alerts.jsonl"
        setup_logging(level="INFO", fmt="json", stream=io.StringIO(), alert_log_path=str(path))

        alert_log = structlog.get_logger(ALERT_LOG)
        alert_log.info("alert_created", alert_id="alert_1", severity=Severity.CRITICAL)
        alert_log.info("alert_resolved", alert_id="alert_1")
        structlog.get_logger("complywatch.other").info("unrelated_event")

        lines = path.read_text(encoding="utf-8").strip().splitlines()
        events = [json.loads(line) for line in lines]
        assert [e["event"] for e in events] == ["alert_created", "alert_resolved"]
        assert events[0]["severity"] == "critical"
        assert events[0]["logger"] == ALERT_LOG

    def test_alert_events_still_reach_main_stream(self, tmp_path: Path) -> None:
        stream = io.StringIO()
        setup_logging(
            level="INFO", fmt="json", stream=stream,
            alert_log_path=str(tmp_path / "alerts.jsonl"),
        )
        structlog.get_logger(ALERT_LOG).info("alert_created", alert_id="alert_1")
        assert "alert_created" in stream.getvalue()

    def test_disabled_by_default(self) -> None:
        setup_logging(level="INFO", fmt="json", stream=io.StringIO())
        assert logging.getLogger(ALERT_LOG).handlers == []
