"""
Tests for structured logging
"""

import json
import logging

from loan_engine.config import LoanEngineConfig
from loan_engine.logging_config import (
    JSONFormatter, setup_logging, configure_from, get_logger, log_action
)


class CaptureHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestJSONFormatter:
    """Test JSON log lines"""

    def test_structured_fields(self):
        record = logging.LogRecord("loan_engine.service", logging.INFO, __file__, 1,
                                   "Loan funded", (), None)
        record.action = "fund"
        record.resource = "loan:abc"
        record.extra = {"remaining": "0.00"}

        entry = json.loads(JSONFormatter().format(record))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "loan_engine.service"
        assert entry["message"] == "Loan funded"
        assert entry["action"] == "fund"
        assert entry["resource"] == "loan:abc"
        assert entry["extra"] == {"remaining": "0.00"}
        assert "correlation_id" not in entry

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            import sys
            record = logging.LogRecord("loan_engine", logging.ERROR, __file__, 1,
                                       "failed", (), sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]


class TestSetupLogging:
    """Test logger configuration"""

    def test_setup_replaces_handlers(self):
        logger = setup_logging("DEBUG", logger_name="loan_engine.test_setup")
        setup_logging("WARNING", logger_name="loan_engine.test_setup")
        assert len(logger.handlers) == 1
        assert logger.level == logging.WARNING
        assert not logger.propagate
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_text_format(self):
        logger = setup_logging("INFO", logger_name="loan_engine.test_text", log_format="text")
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_log_file(self, tmp_path):
        path = tmp_path / "engine.log"
        logger = setup_logging("INFO", logger_name="loan_engine.test_file", log_file=str(path))
        logger.info("written")
        logger.handlers[0].flush()
        assert json.loads(path.read_text().strip())["message"] == "written"

    def test_configure_from(self):
        config = LoanEngineConfig(log_level="ERROR", log_format="text")
        logger = configure_from(config)
        assert logger.name == "loan_engine"
        assert logger.level == logging.ERROR

        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)
        logger.propagate = True


class TestLogAction:
    """Test structured action logging"""

    def test_fields_attached(self):
        logger = get_logger("loan_engine.test_action")
        logger.setLevel(logging.INFO)
        capture = CaptureHandler()
        logger.addHandler(capture)
        try:
            log_action(logger, "info", "Loan approved", action="approve",
                       resource="loan:1", extra={"risk_level": "low"})
        finally:
            logger.removeHandler(capture)

        record = capture.records[0]
        assert record.getMessage() == "Loan approved"
        assert record.action == "approve"
        assert record.resource == "loan:1"
        assert record.extra == {"risk_level": "low"}

    def test_disabled_level_skipped(self):
        logger = get_logger("loan_engine.test_quiet")
        logger.setLevel(logging.ERROR)
        capture = CaptureHandler()
        logger.addHandler(capture)
        try:
            log_action(logger, "info", "ignored", action="noop")
        finally:
            logger.removeHandler(capture)
        assert capture.records == []
