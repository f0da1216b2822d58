"""
Logging for the agent platform.

Every record carries the correlation ids bound in the current async context:
`request_id` for HTTP requests and `generation_id` for generation jobs and
their event streams. Production emits one JSON object per line; other
environments use a readable single-line format.
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

from agent_platform.config import get_settings

ROOT_LOGGER = "agent_platform"

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_generation_id: ContextVar[Optional[str]] = ContextVar("generation_id", default=None)

_CORRELATION_VARS: Dict[str, ContextVar] = {
    "request_id": _request_id,
    "generation_id": _generation_id,
}

# Chatty third-party loggers, capped at WARNING
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "qdrant_client", "multipart")

# Attributes every LogRecord has; anything else arrived through `extra=`
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "extra_fields",
}

_configured: Optional[logging.Logger] = None


def correlation_ids() -> Dict[str, str]:
    """The correlation ids bound in the current context, unset ones omitted."""
    return {name: var.get() for name, var in _CORRELATION_VARS.items() if var.get()}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
            **correlation_ids(),
        }
        payload.update(getattr(record, "extra_fields", None) or {})
        payload.update(
            {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """`time LEVEL logger [req=.. gen=..] message`"""

    _SHORT = {"request_id": "req", "generation_id": "gen"}

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s %(name)s [%(correlation)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        ids = correlation_ids()
        record.correlation = " ".join(f"{self._SHORT[k]}={v}" for k, v in ids.items()) or "-"
        return super().format(record)


def setup_logging() -> logging.Logger:
    """Configure the `agent_platform` logger tree once per process."""
    global _configured
    if _configured is not None:
        return _configured

    settings = get_settings()
    level = getattr(logging, settings.log_level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else ConsoleFormatter())

    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database.echo else logging.WARNING
    )

    _configured = root
    root.info(
        f"Logging configured: level={settings.log_level}, "
        f"environment={settings.environment.value}, "
        f"format={'json' if settings.is_production else 'console'}"
    )
    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}" if name else ROOT_LOGGER)


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


@contextmanager
def log_context(**ids: Optional[str]) -> Iterator[None]:
    """
    Bind correlation ids for the duration of a block.

    Example:
        with log_context(generation_id=generation_id):
            await client.stream(prompt)
    """
    tokens = [
        (_CORRELATION_VARS[name], _CORRELATION_VARS[name].set(value))
        for name, value in ids.items()
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def log_request(
    method: str, path: str, status_code: int, duration_ms: float, **fields: Any
) -> None:
    """Access-log line for one HTTP request."""
    get_logger("http").info(
        f"{method} {path} - {status_code} - {duration_ms:.2f}ms",
        extra={
            "extra_fields": {
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
                **fields,
            }
        },
    )


def log_error(error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
    """Log an exception with its traceback, its error code if it has one, and caller context."""
    fields: Dict[str, Any] = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context or {},
    }
    code = getattr(error, "code", None)
    if code:
        fields["error_code"] = code
    get_logger("error").error(
        f"{type(error).__name__}: {error}",
        exc_info=error,
        extra={"extra_fields": fields},
    )
