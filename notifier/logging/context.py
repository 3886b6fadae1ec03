"""Scoped logging context backed by contextvars.

Fields bound here (job name, run id, organization, notification or queue
entry id) are merged into every record emitted inside the scope. Scheduler
jobs run on worker threads; each thread starts from an empty context.
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Dict, Iterator

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the fields bound in the current scope."""
    return dict(_log_context.get())


def bind_log_context(**fields: Any) -> Token:
    """Merge fields into the current context.

    Args:
        **fields: Key-value pairs to add

    Returns:
        Token for :func:`reset_log_context`
    """
    return _log_context.set({**_log_context.get(), **fields})


def reset_log_context(token: Token) -> None:
    """Restore the context captured by ``token``."""
    _log_context.reset(token)


def clear_log_context() -> None:
    """Drop every bound field. Mostly useful in tests."""
    _log_context.set({})


@contextmanager
def log_context(**fields: Any) -> Iterator[Dict[str, Any]]:
    """Bind fields for the duration of a ``with`` block.

    Example:
        >>> with log_context(job_name="meeting-reminders", run_id="a1b2"):
        ...     logger.info("Scan started")  # carries job_name and run_id
    """
    token = bind_log_context(**fields)
    try:
        yield get_log_context()
    finally:
        reset_log_context(token)
