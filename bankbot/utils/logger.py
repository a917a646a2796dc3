"""Structured logging for BankBot.

Every entry is one JSON object on stdout (console rendering for local runs)
with an ISO-8601 UTC ``timestamp``, the ``level`` and, when a request is in
flight, its ``request_id``. Event names are snake_case (``upload_staged``,
``verdict_clean``); context goes in keyword fields, never in the message.
"""

import logging
import sys
import time
from contextvars import ContextVar
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

# Bound by RequestIdMiddleware for the lifetime of one HTTP request.
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def add_request_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Copy the in-flight request id onto the entry, if one is bound."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """(Re)configure structlog for the whole process.

    Args:
        log_level:   Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: JSON lines when True; coloured console output otherwise.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "bankbot") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class PerformanceLogger:
    """Times one outbound call and logs ``<operation>_completed`` / ``_failed``.

    Wraps the verdict-service submission and the OCR request. A call slower
    than ``slow_threshold_ms`` is logged at WARNING with ``slow=True``; extra
    keyword arguments are attached to every entry.
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
        slow_threshold_ms: float = 5000.0,
        **context: Any,
    ):
        self.operation = operation
        self.logger = logger or get_logger()
        self.slow_threshold_ms = slow_threshold_ms
        self.context = context
        self._started: Optional[float] = None
        self._finished: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self._finished = time.perf_counter()
        elapsed = round(self.duration_ms, 1)

        if exc_type is not None:
            self.logger.error(
                f"{self.operation}_failed",
                duration_ms=elapsed,
                error_type=exc_type.__name__,
                error=str(exc_val),
                **self.context,
            )
        elif elapsed > self.slow_threshold_ms:
            self.logger.warning(
                f"{self.operation}_completed", duration_ms=elapsed, slow=True, **self.context
            )
        else:
            self.logger.debug(f"{self.operation}_completed", duration_ms=elapsed, **self.context)

    @property
    def duration_ms(self) -> float:
        """Elapsed milliseconds; still running if read inside the block."""
        if self._started is None:
            return 0.0
        end = self._finished if self._finished is not None else time.perf_counter()
        return (end - self._started) * 1000


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def clear_request_id() -> None:
    request_id_var.set(None)


# Defaults until main.py applies LOG_LEVEL / JSON_LOGS.
configure_logging()
