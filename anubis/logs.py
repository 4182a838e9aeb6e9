"""Logging set-up: JSON logs on stderr and a filter for noisy server errors."""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import IO, Any, Mapping, MutableMapping, Optional, Tuple, Union

_LEVEL_RE = re.compile(r"^(debug|info|warn|error)([+-]\d+)?$", re.IGNORECASE)
_BASE_LEVELS = {"debug": -4, "info": 0, "warn": 4, "error": 8}


def _parse_level(text: str) -> int:
    """Parse a level such as ``INFO`` or ``warn+2`` into a logging level number."""
    match = _LEVEL_RE.match(text.strip())
    if match is None:
        raise ValueError(f"unknown name {text!r}")
    value = _BASE_LEVELS[match.group(1).lower()] + int(match.group(2) or 0)
    # -4/0/4/8 correspond to DEBUG/INFO/WARNING/ERROR.
    return int(logging.INFO + value * 5 / 2)


def _level_name(levelno: int) -> str:
    if levelno >= logging.ERROR:
        return "ERROR"
    if levelno >= logging.WARNING:
        return "WARN"
    if levelno >= logging.INFO:
        return "INFO"
    return "DEBUG"


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": _level_name(record.levelno),
            "source": {
                "function": record.funcName,
                "file": record.pathname,
                "line": record.lineno,
            },
            "msg": record.getMessage(),
        }
        payload.update(getattr(record, "attrs", {}) or {})
        if record.exc_info:
            payload["error"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class _AttrsAdapter(logging.LoggerAdapter):
    """Adapter that attaches its fields as structured attributes of every record."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        attrs = dict(self.extra or {})
        attrs.update(extra.get("attrs") or {})
        extra["attrs"] = attrs
        kwargs["extra"] = extra
        return msg, kwargs


def init_logging(level: str) -> int:
    """Send JSON logs to stderr at ``level``; an invalid level falls back to INFO.

    Returns the logging level that was applied.
    """
    try:
        program_level = _parse_level(level)
    except ValueError as err:
        print(f"invalid log level {level}: {err}, using info", file=sys.stderr)
        program_level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JSONFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(program_level)
    return program_level


def request_logger(headers: Mapping[str, str]) -> logging.LoggerAdapter:
    """A logger carrying the identifying headers of a request."""
    lowered = {k.lower(): v for k, v in headers.items()}
    return _AttrsAdapter(
        logging.getLogger("anubis"),
        {
            "user_agent": lowered.get("user-agent", ""),
            "accept_language": lowered.get("accept-language", ""),
            "priority": lowered.get("priority", ""),
            "x-forwarded-for": lowered.get("x-forwarded-for", ""),
            "x-real-ip": lowered.get("x-real-ip", ""),
        },
    )


class ErrorLogFilter:
    """Writable stream that drops "context canceled" messages from disconnected clients."""

    def __init__(self, unwrap: Optional[IO[Any]] = None) -> None:
        self.unwrap = unwrap

    def write(self, data: Union[str, bytes]) -> int:
        text = data.decode("utf-8", "replace") if isinstance(data, (bytes, bytearray)) else data
        if "context canceled" in text:
            return len(data)
        if self.unwrap is not None:
            self.unwrap.write(data)
        return len(data)

    def flush(self) -> None:
        if self.unwrap is not None:
            self.unwrap.flush()


def filtered_http_logger() -> logging.Logger:
    """Logger for the HTTP server that writes to stderr through :class:`ErrorLogFilter`."""
    logger = logging.getLogger("anubis.http")
    handler = logging.StreamHandler(ErrorLogFilter(sys.stderr))
    handler.setFormatter(logging.Formatter("%(asctime)s %(message)s", "%Y/%m/%d %H:%M:%S"))
    logger.handlers = [handler]
    logger.propagate = False
    return logger