"""
Unified logging utility.

• console (default) → colourised RichHandler
• json              → machine-friendly logs for Docker/K8s

Records carry the id of the interview session being served (``-`` outside
one); bind it with ``session_context(session_id)``.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from functools import lru_cache
from typing import Iterator, Optional

from rich.console import Console
from rich.logging import RichHandler
from pythonjsonlogger import jsonlogger

from interview_coach.config import get_settings

_session_id: ContextVar[Optional[str]] = ContextVar("session_id", default=None)


class SessionContextFilter(logging.Filter):
    """Stamps ``record.session_id`` from the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "session_id"):
            record.session_id = _session_id.get() or "-"
        return True


@contextmanager
def session_context(session_id: str) -> Iterator[None]:
    token = _session_id.set(session_id)
    try:
        yield
    finally:
        _session_id.reset(token)


def current_session_id() -> Optional[str]:
    return _session_id.get()


# ---------------------------- #
# Handlers
# ---------------------------- #


def _console_handler() -> logging.Handler:
    handler = RichHandler(
        console=Console(stderr=True),
        show_time=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("[%(session_id)s] %(message)s"))
    return handler


def _json_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(session_id)s %(message)s")
    )
    return handler


def setup_logging(force: bool = False) -> None:
    """
    Install one handler on the root and uvicorn loggers.
    Already-configured roots are left alone unless ``force`` is set.
    """
    root = logging.getLogger()

    if root.handlers and not force:
        return

    for h in list(root.handlers):
        root.removeHandler(h)

    settings = get_settings()
    log_level = (settings.log_level or "INFO").upper()
    root.setLevel(log_level)

    handler = _json_handler() if settings.log_format.lower() == "json" else _console_handler()
    handler.addFilter(SessionContextFilter())
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers = [handler]
        logger.setLevel(log_level)

    # SDK chatter
    logging.getLogger("httpx").setLevel(logging.WARNING)


@lru_cache()
def get_logger(name: str | None = None) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name or "interview-coach")
