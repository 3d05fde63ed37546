from __future__ import annotations

import json
import logging
from logging import LogRecord
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace


_STDLIB_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

# Redemption codes are bearer tokens at the counter; only the tail is logged.
_MASKED_FIELDS = frozenset({"code", "static_code"})

_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
}


def mask_code(value: Any) -> Any:
    if not isinstance(value, str) or not value:
        return value
    visible = value[-2:] if len(value) > 4 else ""
    return f"{'*' * (len(value) - len(visible))}{visible}"


class InterceptHandler(logging.Handler):
    """Forward stdlib records (uvicorn, sqlalchemy) into Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {key: value for key, value in vars(record).items() if key not in _STDLIB_RECORD_ATTRS}
        message = record.getMessage().replace("{", "{{").replace("}", "}}")
        bound = logger.bind(stdlib_logger=record.name, **extra)
        bound.opt(depth=6, exception=record.exc_info).log(level, message)


def _structured_payload(record: Dict[str, Any], metadata: Dict[str, str]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["extra"].get("stdlib_logger", record["name"]),
        **metadata,
    }

    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    for key, value in record["extra"].items():
        if key == "stdlib_logger":
            continue
        payload[key] = mask_code(value) if key in _MASKED_FIELDS else value

    if record["exception"] is not None:
        payload["exception"] = repr(record["exception"].value)
    return payload


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str = "INFO",
) -> None:
    """Emit one JSON object per line through Loguru.

    Stdlib loggers are routed through the same sink, and request spans from
    OpenTelemetry are stamped on every record when present.
    """

    metadata = {"service": service_name, "environment": environment, "version": version}

    def sink(message: "logger.Message") -> None:
        print(json.dumps(_structured_payload(message.record, metadata), default=str))

    logger.remove()
    logger.add(sink, level=level, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


__all__ = ["InterceptHandler", "configure_logging", "mask_code"]
