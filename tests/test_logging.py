"""Tests for the nodal logger configuration"""

import io
import logging

import pytest

from nodal import solve_dc
from nodal.logging import (
    ElapsedFormatter,
    TraceHandler,
    enable_tracing,
    logger,
    set_log_level,
)


@pytest.fixture
def restore_logger():
    handlers = logger.handlers[:]
    level = logger.level
    yield
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)


class TestLogger:
    def test_quiet_by_default(self):
        assert logger.name == "nodal"
        assert logger.level == logging.WARNING

    def test_tracing_logs_newton_iterations(self, restore_logger, capsys, divider):
        handler = enable_tracing()
        assert logger.level == logging.DEBUG
        assert logger.handlers == [handler]
        assert isinstance(handler, TraceHandler)
        solve_dc(divider)
        assert "NR iter" in capsys.readouterr().out

    def test_elapsed_prefix(self, restore_logger):
        stream = io.StringIO()
        handler = enable_tracing(timestamps=True, stream=stream)
        assert isinstance(handler.formatter, ElapsedFormatter)
        logger.info("hello")
        line = stream.getvalue().strip()
        assert line.startswith("[+")
        assert line.endswith("s] hello")

    def test_record_left_untouched(self, restore_logger):
        # A second handler sees the plain message, without the prefix
        enable_tracing(timestamps=True, stream=io.StringIO())
        plain = io.StringIO()
        extra = logging.StreamHandler(plain)
        extra.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(extra)
        logger.info("step accepted")
        assert plain.getvalue() == "step accepted\n"

    def test_set_log_level(self, restore_logger):
        set_log_level(logging.ERROR)
        assert logger.level == logging.ERROR
        assert all(h.level == logging.ERROR for h in logger.handlers)
