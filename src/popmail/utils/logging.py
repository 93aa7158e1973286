"""Logging utility for popmail"""

import json
import logging
import re
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional

from rich.logging import RichHandler

ROOT_LOGGER_NAME = "popmail"

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


## Formatting


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with ``extra`` fields nested under "extra"."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        extras = _record_extras(record)
        if extras:
            entry["extra"] = extras
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ContextAdapter(logging.LoggerAdapter):
    """Adds fixed context (e.g. the server) to every record."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


## Log Masking


def _partial(value: str) -> str:
    if len(value) <= 6:
        return "[REDACTED]"
    return value[:3] + "*" * (len(value) - 6) + value[-3:]


def _mask_address(match: re.Match) -> str:
    local, domain = match.group(1), match.group(2)
    return f"{local[0]}***@{domain[0]}***"


class SensitiveDataMasker:
    """Masks credentials and mailbox addresses in log data.

    Passwords reach the logs in two shapes: as the argument of a ``PASS``
    request line, and as ``password=...`` style key/value text. Addresses keep
    only their first characters.
    """

    # The secret is group 2; PASS arguments may contain spaces.
    CREDENTIAL_PATTERNS = (
        re.compile(r"(\bPASS\s+)(.+)"),
        re.compile(
            r'((?:password|passwd|secret)["\']?\s*[:=]\s*["\']?)([^"\'}\s]+)',
            re.IGNORECASE,
        ),
    )
    ADDRESS_PATTERN = re.compile(r"([a-zA-Z0-9._%+-]+)@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")

    SENSITIVE_FIELDS = {"password", "passwd", "pwd", "secret", "credential"}

    MASK_STRATEGIES = {
        "full": lambda value: "[REDACTED]",
        "partial": _partial,
    }

    def __init__(self, strategy: str = "full"):
        self.strategy = strategy
        self.mask_func = self.MASK_STRATEGIES[strategy]

    def mask_string(self, text: str) -> str:
        if not text:
            return text

        for pattern in self.CREDENTIAL_PATTERNS:
            text = pattern.sub(lambda m: m.group(1) + self.mask_func(m.group(2)), text)
        return self.ADDRESS_PATTERN.sub(_mask_address, text)

    def mask_value(self, key: str, value: Any) -> Any:
        """Mask ``value`` entirely if ``key`` names a secret, else mask its text."""
        if key.lower() in self.SENSITIVE_FIELDS:
            return self.mask_func(str(value))
        if isinstance(value, str):
            return self.mask_string(value)
        if isinstance(value, dict):
            return self.mask_dict(value)
        return value

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return {key: self.mask_value(key, value) for key, value in data.items()}


class SensitiveDataFilter(logging.Filter):
    """Logging filter that masks the message, its args and ``extra`` fields."""

    def __init__(self, strategy: str = "full"):
        super().__init__()
        self.masker = SensitiveDataMasker(strategy)

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.masker.mask_string(record.msg)

        if isinstance(record.args, tuple):
            record.args = tuple(
                self.masker.mask_string(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )

        for key, value in _record_extras(record).items():
            setattr(record, key, self.masker.mask_value(key, value))

        return True


## Main Log Manager


class LogManager:
    """Owns the handlers of the ``popmail`` logger tree.

    The console handler is a ``RichHandler`` (WARNING by default). When a log
    file is configured, a rotating handler writes JSON records to it.
    Both handlers mask sensitive data.
    """

    def __init__(
        self,
        console_level: str = "WARNING",
        log_file: Optional[Path] = None,
        file_level: str = "DEBUG",
        max_file_size: int = 5_242_880,
        backup_count: int = 5,
    ):
        self.console_level = _level(console_level)
        self.file_level = _level(file_level)
        self.log_file = Path(log_file) if log_file else None
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        self.root_logger.setLevel(logging.DEBUG)
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        from .errors import ConfigurationError

        sensitive_filter = SensitiveDataFilter(strategy="full")

        for handler in list(self.root_logger.handlers):
            self.root_logger.removeHandler(handler)
            handler.close()

        console_handler = RichHandler(
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
        console_handler.setLevel(self.console_level)
        console_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        console_handler.addFilter(sensitive_filter)
        self.root_logger.addHandler(console_handler)

        if self.log_file is None:
            return

        try:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                self.log_file,
                maxBytes=self.max_file_size,
                backupCount=self.backup_count,
                encoding="utf-8",
            )
        except OSError as e:
            raise ConfigurationError(
                f"Failed to create log file handler: {e}",
                details={"log_file": str(self.log_file)},
            ) from e

        file_handler.setLevel(self.file_level)
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(sensitive_filter)
        self.root_logger.addHandler(file_handler)

    def get_logger(
        self, name: Optional[str] = None, **context
    ) -> logging.Logger | ContextAdapter:
        """Get a logger under ``popmail``, wrapped in a ContextAdapter if context is given."""
        logger = logging.getLogger(_qualify(name))
        return ContextAdapter(logger, context) if context else logger

    def set_level(self, level: str) -> None:
        """Set the console level at runtime. The file level is unchanged."""
        self.console_level = _level(level)

        for handler in self.root_logger.handlers:
            if isinstance(handler, RichHandler):
                handler.setLevel(self.console_level)


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ValueError(f"Invalid logging level: {name}")
    return level


def _qualify(name: Optional[str]) -> str:
    if not name:
        return ROOT_LOGGER_NAME
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return name
    return f"{ROOT_LOGGER_NAME}.{name}"


## Decorators for Logging


@contextmanager
def _timed_call(func, suffix: str = ""):
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    func_name = f"{func.__module__}.{func.__qualname__}"
    logger.debug("-> Entering %s%s", func_name, suffix)
    start = time.monotonic()

    try:
        yield
    except Exception as e:
        logger.debug(
            "<- Error in %s after %.3fs: %s", func_name, time.monotonic() - start, e
        )
        raise

    logger.debug("<- Exiting %s (Duration: %.3fs)", func_name, time.monotonic() - start)


def log_call(func):
    """Decorator to log entry, exit and duration of a call at DEBUG."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        with _timed_call(func):
            return func(*args, **kwargs)

    return wrapper


def async_log_call(func):
    """Async variant of ``log_call``."""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        with _timed_call(func, " (async)"):
            return await func(*args, **kwargs)

    return wrapper


## Module-level LogManager Instance and Helper Functions

_log_manager: Optional[LogManager] = None


def init_logging(config=None, force: bool = False) -> LogManager:
    """Configure the ``popmail`` loggers once and return the LogManager.

    Args:
        config: Optional ``LoggingConfig``; defaults are used when omitted
        force: Rebuild handlers even if logging was already initialised
    """
    global _log_manager

    if _log_manager is not None and not force:
        return _log_manager

    settings = {} if config is None else config.model_dump()
    _log_manager = LogManager(**settings)
    return _log_manager


def get_logger(
    name: Optional[str] = None, **context
) -> logging.Logger | ContextAdapter:
    """Get a logger instance with optional context."""
    return init_logging().get_logger(name, **context)
