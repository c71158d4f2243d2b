# wolmgr/core/setup_logging.py
"""
Logging for the Wake-on-LAN task manager.

Everything logs through the ``wolmgr`` logger. Records go to the console and,
outside of pytest, to a rotating file in LOG_DIRECTORY and to syslog when
``/dev/log`` exists. Lifecycle events carry structured fields (``task_id``,
``mac_address``, ``operation``...) that the JSON formatter emits as
top-level keys, so a task can be followed across create, claim and report.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, SysLogHandler
from typing import Any, Dict, List, Optional

from wolmgr.core.config import config

APP_LOGGER_NAME = "wolmgr"

# Extra attributes copied into JSON log entries when present on a record
_STRUCTURED_FIELDS = ("task_id", "mac_address", "device_id", "principal", "component", "operation")

_TEXT_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(funcName)s:%(lineno)d] - %(message)s"
)
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_MAX_FILE_SIZE = 10 * 1024 * 1024
_BACKUP_COUNT = 10


class JSONFormatter(logging.Formatter):
    """One JSON object per record, structured task fields as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(
            {field: getattr(record, field) for field in _STRUCTURED_FIELDS if hasattr(record, field)}
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def task_log_extra(task: Any, operation: str, **fields: Any) -> Dict[str, Any]:
    """
    ``extra=`` mapping describing a task for lifecycle log lines.

    Example:
        logger.info("Task claimed", extra=task_log_extra(task, "claim"))
    """
    extra = {
        "task_id": task.id,
        "mac_address": task.mac_address,
        "operation": operation,
    }
    extra.update(fields)
    return extra


def _coerce_log_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(level.strip().upper(), logging.INFO)


def _running_under_pytest() -> bool:
    return os.getenv("PYTEST_CURRENT_TEST") is not None


def _resolve_log_dir() -> str:
    """LOG_DIRECTORY, or a scratch directory while the test suite runs."""
    default_dir = "/tmp/wolmgr_logs/" if _running_under_pytest() else config.LOG_DIRECTORY
    log_dir = os.getenv("PYTEST_LOG_DIR", default_dir)
    try:
        os.makedirs(log_dir, exist_ok=True)
    except OSError as e:
        raise OSError(f"Failed to create log directory {log_dir}: {e}")
    return log_dir


def _create_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return JSONFormatter()
    return logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT)


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(level)
    return handler


def _file_handler(log_path: str, level: int, max_bytes: int, backup_count: int) -> logging.Handler:
    """
    Rotating file handler for persistent logs.

    Raises:
        PermissionError: If the log file cannot be written
    """
    try:
        handler = RotatingFileHandler(
            filename=log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    except PermissionError as e:
        raise PermissionError(f"Cannot write to log file {log_path}: {e}")
    handler.setLevel(level)
    return handler


def _syslog_handler(address: str = "/dev/log") -> Optional[logging.Handler]:
    try:
        return SysLogHandler(address=address)
    except OSError as e:
        # No /dev/log in most containers
        logging.getLogger(APP_LOGGER_NAME).warning(f"Syslog handler not configured: {e}")
        return None


def setup_logging(
    name: str,
    log_file: Optional[str] = None,
    json_format: bool = False,
    log_level: int = logging.INFO,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    max_file_size: int = _MAX_FILE_SIZE,
    backup_count: int = _BACKUP_COUNT,
) -> logging.Logger:
    """
    (Re)configure the logger ``name``.

    Calling it again replaces the handlers instead of stacking new ones.

    Args:
        name: Logger name
        log_file: File name inside the log directory (defaults to ``<name>.log``)
        json_format: Emit JSON lines instead of text
        log_level: Level of the logger itself
        console_level: Level of the console handler
        file_level: Level of the rotating file handler
        max_file_size: Rotation threshold in bytes
        backup_count: Rotated files kept

    Raises:
        OSError: If the log directory cannot be created
        PermissionError: If the log file cannot be written
    """
    log_dir = _resolve_log_dir()
    log_path = os.path.join(log_dir, log_file or f'{name.lower().replace(" ", "_")}.log')

    handlers: List[logging.Handler] = [_console_handler(console_level)]
    # File and syslog handlers leak descriptors across pytest's many setups
    if not _running_under_pytest():
        handlers.append(_file_handler(log_path, file_level, max_file_size, backup_count))
        syslog = _syslog_handler()
        if syslog is not None:
            handlers.append(syslog)

    formatter = _create_formatter(json_format)
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(log_level)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.debug(
        f"Logging configured ({len(handlers)} handler(s), directory {log_dir})",
        extra={"component": name, "operation": "setup_logging"},
    )
    return logger


class LogContext:
    """
    Attach fields to every record the logger emits inside the block.

    Example:
        with LogContext(logger, task_id=task_id, component="agent"):
            logger.info("WOL sent")
    """

    def __init__(self, logger: logging.Logger, **context_fields: Any):
        self.logger = logger
        self.context_fields = context_fields

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in self.context_fields.items():
            setattr(record, key, value)
        return True

    def __enter__(self) -> "LogContext":
        self.logger.addFilter(self)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.logger.removeFilter(self)


def setup_default_logging(
    json_format: bool = False, log_level: int | str = config.LOG_LEVEL
) -> logging.Logger:
    """The application logger, at LOG_LEVEL unless told otherwise."""
    return setup_logging(
        name=APP_LOGGER_NAME, json_format=json_format, log_level=_coerce_log_level(log_level)
    )


def get_uvicorn_log_config(json_format: bool = False) -> dict:
    """
    ``log_config`` for ``uvicorn.run``: console plus a shared rotating file.

    Args:
        json_format: Use :class:`JSONFormatter` for every handler
    """
    console_formatter = "json" if json_format else "default"
    access_formatter = "json" if json_format else "access"

    def _loggers(stream_handler: str) -> dict:
        return {"handlers": [stream_handler, "file"], "level": "INFO", "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": _DATE_FORMAT,
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": '%(asctime)s - %(client_addr)s - "%(request_line)s" %(status_code)s',
                "datefmt": _DATE_FORMAT,
            },
            "json": {"()": JSONFormatter},
        },
        "handlers": {
            "default": {
                "formatter": console_formatter,
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
            },
            "access": {
                "formatter": access_formatter,
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
            "file": {
                "formatter": console_formatter,
                "class": "logging.handlers.RotatingFileHandler",
                "filename": f"{config.LOG_DIRECTORY}wolmgr_uvicorn.log",
                "maxBytes": _MAX_FILE_SIZE,
                "backupCount": _BACKUP_COUNT,
                "encoding": "utf-8",
            },
        },
        "loggers": {
            "uvicorn": _loggers("default"),
            "uvicorn.error": _loggers("default"),
            "uvicorn.access": _loggers("access"),
        },
    }
