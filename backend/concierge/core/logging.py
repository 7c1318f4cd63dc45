"""Configuración de logging estructurado para la aplicación."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

_MAX_BYTES = 10 * 1024 * 1024
_BACKUP_COUNT = 5


class JSONFormatter(logging.Formatter):
    """Serializa cada registro como una línea JSON con sus campos `extra`."""

    _RESERVED = frozenset(
        {
            "name",
            "msg",
            "args",
            "levelname",
            "levelno",
            "pathname",
            "filename",
            "module",
            "exc_info",
            "exc_text",
            "stack_info",
            "lineno",
            "funcName",
            "created",
            "msecs",
            "relativeCreated",
            "thread",
            "threadName",
            "processName",
            "process",
            "taskName",
        }
    )

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (key, value) for key, value in record.__dict__.items() if key not in self._RESERVED
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _file_handler(file_path: str) -> RotatingFileHandler:
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8"
    )
    handler.setFormatter(JSONFormatter())
    return handler


def configure_logging(
    level: int = logging.INFO,
    *,
    log_file: str | None = None,
    per_logger_files: dict[str, str] | None = None,
) -> None:
    """Configura el logger raíz en JSON y, opcionalmente, archivos dedicados por logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    stream = logging.StreamHandler()
    stream.setFormatter(JSONFormatter())
    root_logger.addHandler(stream)

    if log_file:
        try:
            root_logger.addHandler(_file_handler(log_file))
        except OSError:
            root_logger.exception(
                "logging.file_handler_failed", extra={"log_file": log_file}
            )

    for logger_name, file_path in (per_logger_files or {}).items():
        try:
            logging.getLogger(logger_name).addHandler(_file_handler(file_path))
        except OSError:
            root_logger.exception(
                "logging.dedicated_handler_failed",
                extra={"target_logger": logger_name, "file": file_path},
            )


def resolve_log_level(value: str | int | None, *, default: int = logging.INFO) -> int:
    """Convierte valores configurables (`"debug"`, `"20"`, `10`) a niveles numéricos."""
    if isinstance(value, int):
        return value
    if not isinstance(value, str) or not value.strip():
        return default
    candidate = value.strip()
    if candidate.isdigit():
        return int(candidate)
    mapped = logging.getLevelName(candidate.upper())
    return mapped if isinstance(mapped, int) else default


def get_logger(name: str) -> logging.Logger:
    """Retorna un logger hijo con el nombre solicitado."""
    return logging.getLogger(name)


def log_event(
    logger: logging.Logger, message: str, *, level: int = logging.INFO, **extra: Any
) -> None:
    """Helper para enviar eventos con campos adicionales en formato JSON."""
    logger.log(level, message, extra=extra or None)
