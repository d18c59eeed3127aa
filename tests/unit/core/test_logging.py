#!/usr/bin/env python3
"""
Unit Tests for Logging Configuration
Tests for lms_backend/core/logging.py
"""

import json
import logging
import sys
from unittest.mock import patch

import pytest
from loguru import logger as loguru_logger

from lms_backend.core.logging import InterceptHandler, get_logger, setup_logging


@pytest.fixture
def restore_logging():
    """Put loguru and the stdlib root logger back after the test"""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    loguru_logger.remove()
    loguru_logger.add(sys.stderr)
    root.handlers, root.level = handlers, level


@pytest.fixture
def captured(restore_logging):
    """Collect formatted loguru messages in a list"""
    messages = []
    setup_logging()
    loguru_logger.add(messages.append, format="{extra[name]}|{level}|{message}")
    return messages


class TestSetupLogging:
    """Test sink configuration"""

    def test_stdlib_routed_through_loguru(self, captured):
        logging.getLogger("uvicorn.error").warning("port in use")
        assert any(m.startswith("uvicorn.error|WARNING|port in use") for m in captured)

    def test_intercept_handler_installed(self, restore_logging):
        setup_logging()
        assert any(isinstance(h, InterceptHandler) for h in logging.getLogger().handlers)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_file_sink(self, restore_logging, tmp_path):
        log_file = tmp_path / "lms.log"
        with patch("lms_backend.core.logging.settings.LOG_FILE", str(log_file)):
            setup_logging()

        get_logger("tests").warning("written to file")
        loguru_logger.remove()

        record = json.loads(log_file.read_text().splitlines()[-1])
        assert record["record"]["message"] == "written to file"


class TestGetLogger:
    """Test bound loggers"""

    def test_name_is_bound(self, captured):
        get_logger("lms_backend.services.calendar").info("series created")
        assert "lms_backend.services.calendar|INFO|series created" in "".join(captured)

    def test_context_is_bound(self, restore_logging):
        records = []
        loguru_logger.remove()
        loguru_logger.add(lambda m: records.append(m.record), level="DEBUG")

        get_logger("tests", user_id="u-1").debug("denied")

        assert records[0]["extra"] == {"name": "tests", "user_id": "u-1"}
