# ============================================================================
# STRUCTURED LOGGING
# ============================================================================
# EPOCH: 1 - FLEET SCHEDULING
# STATUS: Core - Structured logging with context
# PURPOSE: Tag every log line with the host/node/group it concerns
# CREATED: 28 SEP 2026
# ============================================================================
"""
Structured Logging

The scheduler, the reconciler loops and the API handlers all interleave
on one event loop, so the "current node" is carried in a ContextVar and
each asyncio task sees only its own. A handler filter copies it onto
every record; the formatters render it as JSON (LOG_FORMAT=json) or as
an inline [host=.. node=..] tag.

Checkpoints are named lifecycle markers (placement_decided,
placement_infeasible, host_offline, host_online, node_transitioned)
written to the "checkpoint" logger, so a node's history can be
reconstructed with one filter on the aggregated logs.

Usage:
    import logging
    from core.logging import log_context, log_checkpoint

    logger = logging.getLogger(__name__)

    with log_context(node_id="n-1", component="scheduler"):
        logger.info("Ranking hosts")
        log_checkpoint("placement_decided", {"host_id": "h-1"})
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

# Fields shown inline by HumanFormatter, in this order
_INLINE_FIELDS = (("host_id", "host"), ("node_id", "node"), ("group_key", "group"), ("operation", "op"))

# Third-party loggers that are chatty at INFO
_QUIET_LOGGERS = ("psycopg.pool", "uvicorn.access", "httpx")


@dataclass(frozen=True)
class LogContext:
    """Fields attached to every record logged inside a log_context block."""
    host_id: Optional[str] = None
    node_id: Optional[str] = None
    group_key: Optional[str] = None
    correlation_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def merged(self, **kwargs) -> "LogContext":
        """New context with kwargs layered over this one; unknown keys go to extra."""
        known = {f.name for f in fields(self)} - {"extra"}
        updates = {k: v for k, v in kwargs.items() if k in known}
        extra = {**self.extra, **kwargs.get("extra", {})}
        extra.update({k: v for k, v in kwargs.items() if k not in known and k != "extra"})
        return replace(self, extra=extra, **updates)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name) is not None
        }
        result.update(self.extra)
        return result


_current: ContextVar[LogContext] = ContextVar("fleet_log_context", default=LogContext())


def get_current_context() -> LogContext:
    return _current.get()


@contextmanager
def log_context(**kwargs):
    """
    Layer fields over the current logging context for the enclosed block.

    Nested blocks inherit what they do not override. Tasks created inside
    the block start with a copy of it.

    Example:
        with log_context(host_id="h-1"):
            with log_context(node_id="n-1", operation="release"):
                logger.info("Releasing reservation")   # host=h-1 node=n-1
    """
    token = _current.set(_current.get().merged(**kwargs))
    try:
        yield _current.get()
    finally:
        _current.reset(token)


class ContextFilter(logging.Filter):
    """Stamps the current LogContext onto each record as record.fleet_context."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "fleet_context"):
            record.fleet_context = _current.get().to_dict()
        return True


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": _record_time(record).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "fleet_context", None)
        if context:
            entry["context"] = context

        data = getattr(record, "data", None)
        if data:
            entry["data"] = data

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        entry["source"] = f"{record.filename}:{record.lineno}"
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Single-line development format with the fleet context inline."""

    def format(self, record: logging.LogRecord) -> str:
        context = getattr(record, "fleet_context", None) or {}
        tags = [f"{label}={context[key]}" for key, label in _INLINE_FIELDS if context.get(key)]
        tag = f" [{' '.join(tags)}]" if tags else ""

        line = (
            f"{_record_time(record):%Y-%m-%d %H:%M:%S} {record.levelname:<8} "
            f"{record.name}{tag}: {record.getMessage()}"
        )

        data = getattr(record, "data", None)
        if data:
            line += f" {data}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ContextLogger(logging.LoggerAdapter):
    """
    Adapter whose extra= keywords land in the record's data payload
    instead of becoming record attributes.
    """

    def process(self, msg, kwargs):
        data = dict(self.extra or {})
        data.update(kwargs.pop("extra", None) or {})
        kwargs["extra"] = {"data": {k: v for k, v in data.items() if v is not None}}
        return msg, kwargs


def get_logger(name: str, **static_fields) -> ContextLogger:
    """Logger for name; static_fields are added to the data of every record."""
    return ContextLogger(logging.getLogger(name), static_fields)


def configure_logging(
    level: Union[str, int, None] = None,
    json_output: Optional[bool] = None,
) -> None:
    """
    Install a single stdout handler on the root logger.

    Args:
        level: Log level; defaults to LOG_LEVEL (INFO)
        json_output: JSON lines; defaults to LOG_FORMAT == "json"
    """
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "").lower() == "json"

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(StructuredFormatter() if json_output else HumanFormatter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


# ============================================================================
# CHECKPOINTS
# ============================================================================

_checkpoint_logger = logging.getLogger("checkpoint")


def log_checkpoint(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    level: int = logging.INFO,
) -> None:
    """
    Log a named lifecycle marker.

    The record's data carries the checkpoint name, the host/node/group of
    the current context and the optional payload.
    """
    context = _current.get()
    payload: Dict[str, Any] = {"checkpoint": name}
    for key in ("host_id", "node_id", "group_key"):
        value = getattr(context, key)
        if value is not None:
            payload[key] = value
    if data:
        payload["data"] = data

    _checkpoint_logger.log(level, f"CHECKPOINT: {name}", extra={"data": payload})


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "LogContext",
    "ContextFilter",
    "StructuredFormatter",
    "HumanFormatter",
    "ContextLogger",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_context",
    "log_checkpoint",
]
