"""Tests for logging setup."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from cvr.config import Settings
from cvr.logging import setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


class TestSetupLogging:
    """Service loggers and structlog events share one JSON handler."""

    def test_stdlib_messages_render_as_json(self, capsys, restore_logging):
        setup_logging(Settings(log_format="json", log_level="INFO"))
        logging.getLogger("cvr.gamification.streak_service").info("User %d reached %d-day streak", 3, 7)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "User 3 reached 7-day streak"
        assert record["level"] == "info"
        assert record["logger"] == "cvr.gamification.streak_service"

    def test_structlog_events_keep_fields(self, capsys, restore_logging):
        setup_logging(Settings(log_format="json", log_level="INFO"))
        structlog.get_logger("cvr.gamification.orchestrator").info("completion_applied", user_id=1, coins=31)

        record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert record["event"] == "completion_applied"
        assert record["user_id"] == 1
        assert record["coins"] == 31

    def test_sql_logger_quiet_by_default(self, restore_logging):
        setup_logging(Settings(log_format="console", log_level="DEBUG"))
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
