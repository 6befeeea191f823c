"""The nodal logger.

Solvers report through a single ``nodal`` logger. It is quiet by default:
only warnings (a convergence aid taking over, a rejected transient step
retried with backward Euler, an exhausted budget) reach stdout.

``enable_tracing`` switches to DEBUG, which logs every Newton iteration
(residual norm, update norm, damping, limited junctions) and every accepted
time step. Each record is flushed as it is written so a trace survives a
hung or killed run:

    from nodal.logging import enable_tracing

    enable_tracing(timestamps=True)
    solve_transient(circuit, 0.0, 1e-6)
    # [+0.000412s] NR iter 1: |F|=2.113e-03 |dx|=6.500e-01 ...
"""

import logging
import sys
import time
from typing import Optional, TextIO

logger = logging.getLogger("nodal")
logger.setLevel(logging.WARNING)

if not logger.handlers:
    _default_handler = logging.StreamHandler(sys.stdout)
    _default_handler.setLevel(logging.WARNING)
    _default_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(_default_handler)


class TraceHandler(logging.StreamHandler):
    """StreamHandler that flushes after every record"""

    def emit(self, record):
        super().emit(record)
        self.flush()


class ElapsedFormatter(logging.Formatter):
    """Prefix each message with the seconds elapsed since the formatter was made"""

    def __init__(self, fmt: str = "%(message)s"):
        super().__init__(fmt)
        self.start = time.perf_counter()

    def format(self, record):
        return f"[+{time.perf_counter() - self.start:.6f}s] {super().format(record)}"


def enable_tracing(timestamps: bool = False, stream: Optional[TextIO] = None) -> TraceHandler:
    """Log every Newton iteration and time step at DEBUG level

    Replaces the logger's handlers with a single flushing handler.

    Args:
        timestamps: Prefix records with the time elapsed since this call
        stream: Destination (stdout when None)

    Returns:
        The installed handler
    """
    logger.setLevel(logging.DEBUG)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = TraceHandler(stream if stream is not None else sys.stdout)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(ElapsedFormatter() if timestamps else logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    return handler


def set_log_level(level: int):
    """Set the level of the logger and all of its handlers"""
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
