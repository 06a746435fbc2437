"""Logging setup shared by the CLI and the engine modules."""

from __future__ import annotations
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_DIR = Path("logs")


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = False,
    log_filename: Optional[str] = None,
) -> None:
    """Configure root logging for command-line use.

    Args:
        level: Logging level (default: INFO)
        log_to_file: Whether to also log under ``logs/``
        log_filename: Custom log filename (default: risk_YYYY-MM-DD.log)
    """
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if log_to_file:
        LOG_DIR.mkdir(exist_ok=True)
        if log_filename is None:
            log_filename = f"risk_{datetime.now().strftime('%Y-%m-%d')}.log"
        handlers.append(logging.FileHandler(LOG_DIR / log_filename))

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    logging.getLogger("matplotlib").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """Log start / completion / failure of an operation with its duration.

    Usage:
        with LogContext(logger, "Monte Carlo (100 runs)"):
            run_simulation(params)
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.start_time: Optional[float] = None

    def __enter__(self) -> "LogContext":
        self.start_time = time.perf_counter()
        self.logger.log(self.level, "%s... started", self.operation)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        elapsed = time.perf_counter() - (self.start_time or time.perf_counter())
        if exc_type is None:
            self.logger.log(self.level, "%s... completed (%.2fs)", self.operation, elapsed)
        else:
            self.logger.warning("%s... failed (%.2fs): %s", self.operation, elapsed, exc_val)
        return False


__all__ = ["setup_logging", "get_logger", "LogContext", "LOG_FORMAT"]
