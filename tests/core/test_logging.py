"""Tests for logging setup."""

import logging

from kvl.core.logging import setup_logging


def test_console_only():
    logger = setup_logging(level="INFO")
    assert logger.name == "kvl"
    assert len(logger.handlers) == 1
    assert logger.handlers[0].level == logging.INFO


def test_file_handler(tmp_path):
    logger = setup_logging(level=logging.ERROR, log_dir=tmp_path / "logs")
    assert len(logger.handlers) == 2
    assert any(isinstance(h, logging.FileHandler) for h in logger.handlers)
    assert list((tmp_path / "logs").glob("kvl_*.log"))
    for h in logger.handlers:
        h.close()
    logger.handlers = []


def test_unknown_level_falls_back_to_warning():
    logger = setup_logging(level="chatty")
    assert logger.handlers[0].level == logging.WARNING
    logger.handlers = []
