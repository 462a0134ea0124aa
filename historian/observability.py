"""
Logging setup for Historian.

Library modules only ever call logging.getLogger(__name__) and attach
structured context through ``extra``. Hosts that want Historian's own
output format call setup_logging() once at startup.
"""

from __future__ import annotations

import logging

import json_log_formatter

from .config import HistorianConfig

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: HistorianConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Historian configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]
