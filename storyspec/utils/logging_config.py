"""Logging configuration for StorySpec."""

import logging
import sys
import time
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

DEFAULT_LOG_FILE = Path(__file__).parent.parent.parent / "output" / "logs" / "storyspec.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s"

# Max 10MB per file, 5 backups
_MAX_LOG_BYTES = 10 * 1024 * 1024
_LOG_BACKUP_COUNT = 5


class ContextFilter(logging.Filter):
    """Attach the current run's correlation id to every record."""

    def __init__(self) -> None:
        super().__init__()
        self.correlation_id: str | None = None

    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation ID to log record, '-' outside a run."""
        record.correlation_id = self.correlation_id or "-"
        return True


class FlushingRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that flushes after every record."""

    def emit(self, record: logging.LogRecord) -> None:
        super().emit(record)
        self.flush()


_context_filter = ContextFilter()


def get_correlation_id() -> str | None:
    """Return the correlation id of the active log context, if any."""
    return _context_filter.correlation_id


def setup_logging(level: str = "INFO", log_file: str | Path | None = "default") -> None:
    """Configure root logging for the application.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        log_file: File path for logs. "default" uses output/logs/storyspec.log,
            None disables file logging.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Filter must sit on handlers so records from child loggers get the field
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_context_filter)
    root_logger.addHandler(console_handler)

    if log_file == "default":
        log_path: Path | None = DEFAULT_LOG_FILE
    elif log_file:
        log_path = Path(log_file)
    else:
        log_path = None

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = FlushingRotatingFileHandler(
            log_path,
            maxBytes=_MAX_LOG_BYTES,
            backupCount=_LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_context_filter)
        root_logger.addHandler(file_handler)
        root_logger.info("Logging to file: %s (max 10MB, %d backups)", log_path, _LOG_BACKUP_COUNT)

    # Third-party transport chatter
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@contextmanager
def log_context(correlation_id: str | None = None) -> Generator[str]:
    """Set the correlation id used in log lines for the duration of a block.

    Args:
        correlation_id: Optional id. A short UUID is generated when omitted.

    Yields:
        The correlation id in effect.
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())[:8]

    previous = _context_filter.correlation_id
    _context_filter.correlation_id = correlation_id
    try:
        yield correlation_id
    finally:
        _context_filter.correlation_id = previous


@contextmanager
def log_performance(logger: logging.Logger, operation: str) -> Generator[None]:
    """Log start, duration and failure of an operation.

    Args:
        logger: Logger instance to use.
        operation: Name of the operation being timed.
    """
    start_time = time.time()
    logger.info("%s: Starting", operation)
    try:
        yield
    except Exception as e:
        logger.error("%s: Failed after %.2fs - %s", operation, time.time() - start_time, e)
        raise
    else:
        logger.info("%s: Completed in %.2fs", operation, time.time() - start_time)
