"""Logging setup and secret redaction.

Secret values registered through :func:`secret_scope` are masked in every log
record emitted while the scope is open, and in any text passed to
:func:`redact`. The registry is emptied when the scope closes, so a token
never outlives the job that registered it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from rich.console import Console
from rich.logging import RichHandler

MASK = "***"

_lock = threading.Lock()
_secrets: dict[str, int] = {}


@contextmanager
def secret_scope(*values: str) -> Iterator[None]:
    """Register secret values for redaction for the duration of the block."""
    active = [v for v in values if v]
    with _lock:
        for value in active:
            _secrets[value] = _secrets.get(value, 0) + 1
    try:
        yield
    finally:
        with _lock:
            for value in active:
                remaining = _secrets.get(value, 0) - 1
                if remaining > 0:
                    _secrets[value] = remaining
                else:
                    _secrets.pop(value, None)


def active_secret_count() -> int:
    with _lock:
        return len(_secrets)


def redact(text: str) -> str:
    """Mask every registered secret value in ``text``."""
    if not text:
        return text
    with _lock:
        values = sorted(_secrets, key=len, reverse=True)
    for value in values:
        text = text.replace(value, MASK)
    return text


class RedactingFilter(logging.Filter):
    """Log filter that masks registered secrets in the message and traceback.

    The traceback is rendered into ``exc_text`` here, which formatters reuse
    instead of formatting ``exc_info`` again.
    """

    _formatter = logging.Formatter()

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = redact(message)
        if masked != message:
            record.msg = masked
            record.args = None
        if record.exc_info and record.exc_info[0] is not None and not record.exc_text:
            record.exc_text = self._formatter.formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = redact(record.exc_text)
        if record.stack_info:
            record.stack_info = redact(record.stack_info)
        return True


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Install a redacting rich handler on the ``nixci`` logger."""
    logger = logging.getLogger("nixci")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )
    handler.addFilter(RedactingFilter())
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
