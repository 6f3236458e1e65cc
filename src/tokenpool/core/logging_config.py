"""Central logging configuration for the whole project."""
from __future__ import annotations

import json
import logging
import logging.handlers
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .clock import Clock, SystemClock

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

_CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}


def _ensure_directory(log_file: Path) -> None:
    log_dir = log_file.expanduser().resolve().parent
    log_dir.mkdir(parents=True, exist_ok=True)


class JsonLogFormatter(logging.Formatter):
    def __init__(self, *, clock: Clock | None = None) -> None:
        super().__init__()
        self._clock = clock or SystemClock()

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": self._clock.now().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": correlation_id_var.get(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(
    level: int | str = logging.INFO,
    log_file: str | Path | None = None,
    *,
    json_format: bool = False,
) -> None:
    """Install one console handler (and optionally a rotating file handler) on the root logger."""

    if json_format:
        formatter: logging.Formatter = JsonLogFormatter()
    else:
        formatter = logging.Formatter(_CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        destination = Path(log_file)
        try:
            _ensure_directory(destination)
        except OSError as error:
            logging.getLogger(__name__).warning("cannot create log directory: %s", error)
        else:
            file_handler = logging.handlers.RotatingFileHandler(
                destination,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

    logging.getLogger(__name__).debug("logging configured")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        corr = request.headers.get("X-Correlation-ID") or str(uuid4())
        token = correlation_id_var.set(corr)
        try:
            response = await call_next(request)
            response.headers["X-Correlation-ID"] = corr
            return response
        finally:
            correlation_id_var.reset(token)


__all__ = ["CorrelationIdMiddleware", "JsonLogFormatter", "correlation_id_var", "setup_logging"]
