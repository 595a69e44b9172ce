"""Tests for logging setup."""
from __future__ import annotations

import logging

import pytest
from rich.logging import RichHandler

from remotefs.core import logging as remotefs_logging
from remotefs.core.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_loggers():
    package = logging.getLogger("remotefs")
    transport = logging.getLogger("paramiko")
    saved = (package.level, package.propagate, list(package.handlers), transport.level, list(transport.handlers))
    yield
    for handler in remotefs_logging._installed:
        handler.close()
    remotefs_logging._installed.clear()
    package.setLevel(saved[0])
    package.propagate = saved[1]
    package.handlers[:] = saved[2]
    transport.setLevel(saved[3])
    transport.handlers[:] = saved[4]


def test_file_log_and_levels(tmp_path):
    log_file = tmp_path / "logs" / "remotefs.log"
    setup_logging("debug", log_file, rich_tracebacks=False)

    get_logger("remotefs.domain.connection.pool").debug("opened web")
    for handler in logging.getLogger("remotefs").handlers:
        handler.flush()

    assert logging.getLogger("remotefs").level == logging.DEBUG
    assert logging.getLogger("paramiko").level == logging.WARNING
    assert "opened web" in log_file.read_text()
    assert "remotefs.domain.connection.pool" in log_file.read_text()


def test_repeated_setup_replaces_handlers():
    setup_logging(rich_tracebacks=False)
    setup_logging("nonsense", rich_tracebacks=False)

    package = logging.getLogger("remotefs")
    rich_handlers = [h for h in package.handlers if isinstance(h, RichHandler)]
    assert len(rich_handlers) == 1
    assert package.level == logging.INFO
    assert len([h for h in logging.getLogger("paramiko").handlers if isinstance(h, RichHandler)]) == 1
