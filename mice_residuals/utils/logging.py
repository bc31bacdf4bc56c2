"""
Logging utilities for mice-residuals.

Library modules log key/value events through ``structlog.get_logger()``.
The storage layer uses the stdlib helpers below for timed operations.
``setup_logging()`` routes both through the root logger.
"""

import logging
import sys
import time
import traceback
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Optional

import structlog

LOGGER_NAME = "mice_residuals"

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DETAILED_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    structured: bool = True,
    console_output: bool = True
) -> logging.Logger:
    """
    Configure structlog and the stdlib handlers for a run.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: Also write records to this file
        structured: Render structlog events as JSON instead of key=value text
        console_output: Write records to stdout

    Returns:
        The package logger
    """
    log_level = getattr(logging, level.upper())

    renderer = structlog.processors.JSONRenderer() if structured \
        else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    # structlog module loggers propagate to the root logger
    root = logging.getLogger()
    root.setLevel(log_level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    formatter = logging.Formatter(PLAIN_FORMAT if structured else DETAILED_FORMAT)

    if console_output:
        stream = logging.StreamHandler(sys.stdout)
        stream.setFormatter(formatter)
        root.addHandler(stream)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(log_level)
    return package_logger


def get_logger(name: str) -> logging.Logger:
    """Child logger of the package logger, e.g. ``get_logger("db.store")``."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


class PerformanceLogger:
    """
    Time a block and log whether it completed or failed.

    The elapsed seconds are available as ``duration`` after the block.

    Example:
        with PerformanceLogger(logger, "imputed_tables", table_prefix="study") as perf:
            write_tables()
        print(perf.duration)
    """

    def __init__(self, logger: logging.Logger, operation_name: str, **context):
        self.logger = logger
        self.operation_name = operation_name
        self.context = context
        self.start_time = None
        self.duration = None

    def __enter__(self):
        self.start_time = time.time()
        self.logger.debug(
            f"Starting operation: {self.operation_name}",
            extra={"operation": self.operation_name, **self.context}
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.time() - self.start_time
        details = {
            "operation": self.operation_name,
            "duration_seconds": self.duration,
            **self.context
        }

        if exc_type is None:
            self.logger.info(
                f"Completed operation: {self.operation_name} in {self.duration:.2f}s",
                extra={"status": "completed", **details}
            )
        else:
            self.logger.error(
                f"Failed operation: {self.operation_name} after {self.duration:.2f}s: {exc_val}",
                extra={"status": "failed", "error_type": exc_type.__name__, **details}
            )
        return False


def with_logging(operation_name: Optional[str] = None, logger_name: str = "operations"):
    """
    Decorator wrapping a function call in a PerformanceLogger.

    Exceptions are logged with their traceback and re-raised.

    Args:
        operation_name: Name logged for the call (defaults to the function name)
        logger_name: Child logger below the package logger
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(logger_name)
            with PerformanceLogger(logger, operation_name or func.__name__, function=func.__name__):
                try:
                    return func(*args, **kwargs)
                except Exception:
                    logger.debug(traceback.format_exc())
                    raise
        return wrapper
    return decorator


@contextmanager
def error_context(logger: logging.Logger, operation: str, **context):
    """
    Log failures of a block together with its context; errors propagate.

    Args:
        logger: Logger instance
        operation: Name of the block
        **context: Extra fields attached to the failure record
    """
    try:
        yield
    except Exception as e:
        logger.error(
            f"Operation {operation} failed: {e}",
            extra={
                "operation": operation,
                "error_type": type(e).__name__,
                "traceback": traceback.format_exc(),
                **context
            }
        )
        raise
    logger.debug(f"Completed {operation}", extra={"operation": operation, **context})
