"""Logging setup for sync runs: correlation ids, JSON lines and short exception chains."""

import contextvars
import logging
import logging.config
import traceback
import uuid
from collections.abc import Iterator
from pathlib import Path
from types import TracebackType
from typing import Any

from pythonjsonlogger import jsonlogger

# Hey future me, every background sync is its own asyncio task and every task gets its own copy
# of this var. The coordinator sets "sync-<track id>" when a run starts, so one grep pulls out a
# whole run: cache check, each adapter, each poll tick. Startup logs simply have no id.
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

# Third-party loggers that are chatty at INFO (one line per HTTP request or SQLite call)
NOISY_LOGGERS = ("httpx", "httpcore", "hpack", "asyncio", "aiosqlite")

_TEXT_FORMAT = "%(asctime)s │ %(levelname)-7s │ %(name)s:%(lineno)d │ %(message)s"
_JSON_FORMAT = "%(message)s"


def get_correlation_id() -> str:
    """Correlation id of the current task ("" outside a sync run)."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind a correlation id to the current task.

    Args:
        correlation_id: Id to bind; a random UUID when omitted

    Returns:
        The bound id
    """
    value = correlation_id if correlation_id is not None else str(uuid.uuid4())
    correlation_id_var.set(value)
    return value


class CorrelationIdFilter(logging.Filter):
    """Stamps each record with the task's correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        return True


def _exception_chain(exc: BaseException) -> list[BaseException]:
    """Exceptions from root cause to the one that was logged."""
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain[::-1]


def _own_frames(tb: TracebackType | None) -> Iterator[str]:
    """Frames from tracksync's own modules, two lines each."""
    for frame in traceback.extract_tb(tb):
        if "tracksync" not in frame.filename or "/site-packages/" in frame.filename:
            continue
        yield f'    File "{Path(frame.filename).name}", line {frame.lineno}, in {frame.name}'
        if frame.line:
            yield f"      {frame.line.strip()}"


class CompactExceptionFormatter(logging.Formatter):
    """Text formatter printing exception chains root cause first.

    A mirror timeout during a race reads as:

        WARNING │ tracksync.infrastructure.integrations.mirror_client:141 │ Mirror failed
        ╰─► ReadTimeout: timed out
            File "mirror_client.py", line 140, in _fetch
              response = await client.get(url, headers=self._headers)
        ╰─► SourceUnreachableError: squidwtf: no mirror answered
    """

    def formatException(self, ei: Any) -> str:
        exc = ei[1]
        if exc is None:
            return ""
        lines: list[str] = []
        for link in _exception_chain(exc):
            lines.append(f"╰─► {type(link).__name__}: {link}")
            lines.extend(_own_frames(link.__traceback__))
        return "\n".join(lines)


class CustomJsonFormatter(jsonlogger.JsonFormatter):  # type: ignore[name-defined,misc]
    """One JSON object per line, with source location and correlation id."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.update(
            timestamp=self.formatTime(record, self.datefmt),
            level=record.levelname,
            logger=record.name,
            function=record.funcName,
            line=record.lineno,
        )
        if not log_record.get("correlation_id"):
            log_record.pop("correlation_id", None)
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)


# Listen future me, call this ONCE from the embedding application (bootstrap does it). It
# replaces the root handlers, which also throws out pytest's caplog handler, so tests that
# read caplog must not call it.
def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    app_name: str = "tracksync",
) -> None:
    """Configure root logging for the sync engine.

    Args:
        log_level: Level name; unknown names fall back to INFO
        json_format: JSON lines (log shippers) instead of the compact text format
        app_name: Reported in the startup line
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if json_format:
        formatter: dict[str, Any] = {
            "()": CustomJsonFormatter,
            "fmt": _JSON_FORMAT,
            "datefmt": "%Y-%m-%d %H:%M:%S",
        }
    else:
        formatter = {"()": CompactExceptionFormatter, "fmt": _TEXT_FORMAT, "datefmt": "%H:%M:%S"}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"correlation": {"()": CorrelationIdFilter}},
            "formatters": {"default": formatter},
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                    "level": level,
                    "filters": ["correlation"],
                    "formatter": "default",
                }
            },
            "root": {"level": level, "handlers": ["stdout"]},
            "loggers": {name: {"level": "WARNING"} for name in NOISY_LOGGERS},
        }
    )

    logging.getLogger(__name__).info(
        "Logging configured for %s (level=%s, json=%s)",
        app_name,
        logging.getLevelName(level),
        json_format,
    )
