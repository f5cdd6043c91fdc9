"""
Tests for structured logging configuration.
"""

import json
import logging
import os
import sys
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from logging_config import (
    LOG_FILE_NAME,
    JSONFormatter,
    TextFormatter,
    get_log_format,
    get_log_level,
    setup_logging,
)


def make_record(msg="Added article", **extra):
    record = logging.LogRecord("scraper", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    """Tests for JSON and text formatters."""

    def test_json_includes_context(self):
        data = json.loads(JSONFormatter().format(make_record(url="https://a.example.com/1")))

        assert data["level"] == "INFO"
        assert data["logger"] == "scraper"
        assert data["message"] == "Added article"
        assert data["url"] == "https://a.example.com/1"

    def test_json_stringifies_unserializable(self):
        data = json.loads(JSONFormatter().format(make_record(path=Path("data/articles.db"))))
        assert data["path"] == "data/articles.db"

    def test_text_format(self):
        line = TextFormatter().format(make_record(url="https://a.example.com/1", articles=2))

        assert " - scraper - INFO - Added article" in line
        assert line.endswith("[url=https://a.example.com/1, articles=2]")


class TestEnvironment:
    """Tests for environment-driven settings."""

    def test_level_from_env(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "debug"}):
            assert get_log_level() == logging.DEBUG

    def test_unknown_level_defaults_to_info(self):
        with patch.dict(os.environ, {"LOG_LEVEL": "chatty"}):
            assert get_log_level() == logging.INFO

    def test_format_from_env(self):
        with patch.dict(os.environ, {"LOG_FORMAT": "JSON"}):
            assert get_log_format() == "json"


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_creates_log_file(self, tmp_path):
        setup_logging(log_dir=str(tmp_path / "logs"), log_format="json")
        logging.getLogger("test").info("hello", extra={"sites": 1})

        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = (tmp_path / "logs" / LOG_FILE_NAME).read_text().splitlines()
        assert json.loads(lines[-1])["sites"] == 1

    def test_noisy_libraries_quieted(self, tmp_path):
        setup_logging(log_dir=str(tmp_path))
        assert logging.getLogger("urllib3").level == logging.WARNING
