"""
Unit tests for logging setup.
"""

import logging

import json_log_formatter
import pytest

from historian.config import HistorianConfig, ObservabilityConfig
from historian.observability import TEXT_FORMAT, setup_logging


class TestSetupLogging:
    """Tests for setup_logging()."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        setup_logging(HistorianConfig(observability=ObservabilityConfig(log_level="DEBUG")))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)

    def test_text_format(self):
        setup_logging(HistorianConfig(observability=ObservabilityConfig(log_format="text")))

        root = logging.getLogger()
        assert root.level == logging.INFO
        assert root.handlers[0].formatter._fmt == TEXT_FORMAT

    def test_unknown_level_falls_back_to_info(self):
        setup_logging(HistorianConfig(observability=ObservabilityConfig(log_level="CHATTY")))
        assert logging.getLogger().level == logging.INFO
