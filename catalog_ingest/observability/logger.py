"""
Structured JSON logging for catalog-ingest

Module loggers are children of the ``catalog_ingest`` logger, which owns
the only handler. Fields bound with log_context() (upload_id, chunk_id,
task_id) are stamped on every record emitted inside the block, so a
reader or a repository call deep inside a chunk still logs which upload
it belongs to.
"""
import contextvars
import logging
import os
import sys
import time
from contextlib import contextmanager
from typing import TextIO

from pythonjsonlogger import jsonlogger

ROOT_LOGGER_NAME = "catalog_ingest"

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_bound_fields: contextvars.ContextVar[dict] = contextvars.ContextVar("log_fields", default={})


class BoundFieldsFilter(logging.Filter):
    """Copies fields bound by log_context() onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _bound_fields.get().items():
            # explicit extra= wins over the bound value
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class IngestJsonFormatter(jsonlogger.JsonFormatter):
    """
    One JSON object per line: timestamp, level, logger, function, pid,
    the message and every extra or bound field as a top-level key.
    """

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["function"] = record.funcName
        log_record["process_id"] = record.process


def configure_logging(
    level: str | None = None,
    format_type: str | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """
    (Re)configure the package logger

    Args:
        level: Log level (defaults to env var LOG_LEVEL, then INFO)
        format_type: "json" or "text" (defaults to env var LOG_FORMAT, then json)
        stream: Output stream (default: stdout)

    Returns:
        The ``catalog_ingest`` logger
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    format_type = format_type or os.getenv("LOG_FORMAT", "json")

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(LOG_LEVELS.get(level_name, logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.addFilter(BoundFieldsFilter())
    if format_type == "json":
        handler.setFormatter(IngestJsonFormatter(
            fmt="%(timestamp)s %(level)s %(logger)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        ))
    else:
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    root.addHandler(handler)
    # Celery installs its own root handlers
    root.propagate = False
    return root


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Get a logger below ``catalog_ingest``, configuring the package on first use

    Args:
        name: Logger name (usually __name__)
    """
    if not logging.getLogger(ROOT_LOGGER_NAME).handlers:
        configure_logging()
    return logging.getLogger(name)


@contextmanager
def log_context(**fields):
    """
    Bind fields to every log record emitted inside the block

    Usage:
        with log_context(upload_id=12, chunk_id=40):
            worker.process(task)
    """
    token = _bound_fields.set({**_bound_fields.get(), **fields})
    try:
        yield
    finally:
        _bound_fields.reset(token)


class log_operation:
    """
    Log start, completion or failure and duration of one pipeline step

    The keyword fields are bound for the duration of the step, so nested
    log lines carry them too.

    Usage:
        with log_operation("Processing chunk", logger=logger, chunk_id=7):
            ...
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **fields):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.fields = fields
        self._context = None
        self._started = 0.0

    def __enter__(self):
        self._context = log_context(operation=self.operation_name, **self.fields)
        self._context.__enter__()
        self._started = time.monotonic()
        self.logger.info(f"Starting: {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = round(time.monotonic() - self._started, 3)
        try:
            if exc_type is None:
                self.logger.info(
                    f"Completed: {self.operation_name}",
                    extra={"duration_seconds": duration, "status": "success"},
                )
            else:
                self.logger.error(
                    f"Failed: {self.operation_name}: {exc_val}",
                    extra={
                        "duration_seconds": duration,
                        "status": "error",
                        "error_type": exc_type.__name__,
                    },
                    exc_info=(exc_type, exc_val, exc_tb),
                )
        finally:
            self._context.__exit__(exc_type, exc_val, exc_tb)
        return False
