"""Tests for root logger configuration."""

from __future__ import annotations

import logging

import pytest

from tileserver.core import logging as logging_setup


@pytest.fixture
def bare_root(monkeypatch: pytest.MonkeyPatch) -> logging.Logger:
    """Root logger without handlers, restored after the test."""
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(root, "level", root.level)
    return root


def test_configure_logging_installs_handler(bare_root: logging.Logger) -> None:
    """Test that an unconfigured root gets one formatted stream handler."""
    logging_setup.configure_logging("DEBUG")
    (handler,) = bare_root.handlers
    assert isinstance(handler, logging.StreamHandler)
    assert handler.formatter is not None
    assert handler.formatter._fmt == logging_setup.LOG_FORMAT
    assert bare_root.level == logging.DEBUG


def test_configure_logging_is_idempotent(bare_root: logging.Logger) -> None:
    """Test that repeated configuration only adjusts the level."""
    logging_setup.configure_logging("DEBUG")
    handlers = list(bare_root.handlers)
    logging_setup.configure_logging("WARNING")
    assert bare_root.handlers == handlers
    assert bare_root.level == logging.WARNING


def test_configure_logging_unknown_level(bare_root: logging.Logger) -> None:
    """Test that unknown level names fall back to INFO."""
    logging_setup.configure_logging("chatty")
    assert bare_root.level == logging.INFO
