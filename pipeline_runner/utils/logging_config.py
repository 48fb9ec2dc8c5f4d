import logging
import sys
import os
import threading
from datetime import datetime

from pipeline_runner.core.constants import REDACTED


class ColoredFormatter(logging.Formatter):
    """Custom formatter to add colors to console output."""

    blue = "\x1b[38;5;39m"
    cyan = "\x1b[36m"
    green = "\x1b[32m"
    yellow = "\x1b[33m"
    red = "\x1b[31m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"

    format_str = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s"

    FORMATS = {
        logging.DEBUG: cyan + format_str + reset,
        logging.INFO: green + format_str + reset,
        logging.WARNING: yellow + format_str + reset,
        logging.ERROR: red + format_str + reset,
        logging.CRITICAL: bold_red + format_str + reset
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno)
        if not log_fmt:
            log_fmt = self.format_str
        formatter = logging.Formatter(log_fmt, datefmt="%Y-%m-%d %H:%M:%S")
        return formatter.format(record)


class SecretRedactionFilter(logging.Filter):
    """
    Masks registered secret values in every record passing through a handler.

    Secret values are registered by the SecretProvider when a run resolves
    them and released when the run ends. Values are reference counted, so a
    secret shared by concurrent runs stays masked until the last one ends.
    The filter renders the message once and replaces each value with ``***``.
    """

    _lock = threading.Lock()
    _values: dict[str, int] = {}

    @classmethod
    def register(cls, value: str) -> None:
        if value:
            with cls._lock:
                cls._values[value] = cls._values.get(value, 0) + 1

    @classmethod
    def unregister(cls, value: str) -> None:
        with cls._lock:
            count = cls._values.get(value, 0) - 1
            if count > 0:
                cls._values[value] = count
            else:
                cls._values.pop(value, None)

    @classmethod
    def clear(cls) -> None:
        with cls._lock:
            cls._values.clear()

    @classmethod
    def redact(cls, text: str) -> str:
        with cls._lock:
            values = sorted(cls._values, key=len, reverse=True)
        for value in values:
            text = text.replace(value, REDACTED)
        return text

    def filter(self, record):
        if not self._values:
            return True
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(level=logging.INFO, log_dir: str = "logs"):
    """Setup centralized logging configuration."""
    root_logger = logging.getLogger()

    # Clear existing handlers to prevent duplicate logs
    if root_logger.handlers:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    root_logger.setLevel(level)
    redaction = SecretRedactionFilter()

    # 1. Console handler (using stderr for uvicorn compatibility)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(ColoredFormatter())
    console_handler.addFilter(redaction)
    root_logger.addHandler(console_handler)

    # 2. File handler for persistence
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    file_handler = logging.FileHandler(
        os.path.join(log_dir, f"pipeline_{datetime.now().strftime('%Y%m%d')}.log")
    )
    file_fmt = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    file_handler.setFormatter(file_fmt)
    file_handler.addFilter(redaction)
    root_logger.addHandler(file_handler)

    for logger_name in ["pipeline_runner", "uvicorn", "uvicorn.error", "uvicorn.access", "main"]:
        l = logging.getLogger(logger_name)
        l.setLevel(level)
        l.propagate = True

    root_logger.info("Logging initialized (Console + File).")
