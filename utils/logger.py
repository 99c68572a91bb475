# utils/logger.py
"""
Logging utility with colored console output, optional rotating file
logging, and the diagnostic log sink used on every engine failure path.

Every engine logger shares one console handler and (after
``setup_logging(log_dir)``) one rotating file handler. ``setup_logging``
may run before or after loggers exist; existing loggers are rebound.
"""
from __future__ import annotations

import copy
import logging
import logging.handlers
import os
import sys
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Deque, Dict, List, Optional, Union

import colorama

from core.types import Severity

MAIN_LOGGER_NAME = "barcache.main"

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
CONSOLE_DATEFMT = "%H:%M:%S"

_windows_console_lock = threading.Lock()
_windows_console_ready = False


def _prepare_windows_console() -> None:
    """Enable ANSI handling on legacy Windows consoles, once."""
    global _windows_console_ready
    with _windows_console_lock:
        if not _windows_console_ready:
            colorama.just_fix_windows_console()
            _windows_console_ready = True


def _stream_supports_color(stream) -> bool:
    isatty = getattr(stream, "isatty", None)
    if not (callable(isatty) and isatty()):
        return False
    if sys.platform == "win32":
        _prepare_windows_console()
    return True


class ColorFormatter(logging.Formatter):
    """Colors the level name; formats a copy so other handlers see plain text."""

    LEVEL_COLORS = {
        logging.DEBUG: colorama.Fore.CYAN,
        logging.INFO: colorama.Fore.GREEN,
        logging.WARNING: colorama.Fore.YELLOW,
        logging.ERROR: colorama.Fore.RED,
        logging.CRITICAL: colorama.Fore.MAGENTA,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        if not color:
            return super().format(record)
        tinted = copy.copy(record)
        tinted.levelname = f"{color}{record.levelname}{colorama.Style.RESET_ALL}"
        return super().format(tinted)


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


class LoggerManager:
    """
    Thread-safe singleton owning the engine's handlers.

    Loggers never propagate to the root logger, so a host application's
    logging configuration does not duplicate engine output.
    """

    _instance: Optional[LoggerManager] = None
    _instance_lock = threading.Lock()

    def __new__(cls) -> LoggerManager:
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    inst = super().__new__(cls)
                    inst._initialized = False
                    cls._instance = inst
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Destroy singleton for testing."""
        with cls._instance_lock:
            if cls._instance is not None:
                cls._instance.teardown()
            cls._instance = None

    def __init__(self) -> None:
        if self._initialized:
            return

        self._initialized = True
        self._lock = threading.RLock()
        self._loggers: Dict[str, logging.Logger] = {}
        self._level: int = logging.INFO
        self._console: Optional[logging.Handler] = None
        self._file: Optional[logging.Handler] = None

    @property
    def level(self) -> int:
        return self._level

    @property
    def log_file(self) -> Optional[Path]:
        handler = self._file
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)
        return None

    def setup(
        self,
        log_dir: Optional[Path] = None,
        level: Union[int, str] = logging.INFO,
        max_bytes: int = 10 * 1024 * 1024,  # 10 MB
        backup_count: int = 5,
    ) -> None:
        """Set the level and (re)open the file handler; idempotent."""
        with self._lock:
            self._level = _coerce_level(level)
            previous = self._file
            if log_dir is not None and self._writes_to(log_dir):
                previous = None
            else:
                self._file = None
                if log_dir is not None:
                    self._file = self._open_file(Path(log_dir), max_bytes, backup_count)
            for logger in self._loggers.values():
                if previous is not None:
                    logger.removeHandler(previous)
                self._bind(logger)
        if previous is not None:
            previous.close()

    def get_logger(self, name: str = "barcache") -> logging.Logger:
        with self._lock:
            logger = self._loggers.get(name)
            if logger is None:
                logger = logging.getLogger(name)
                logger.propagate = False
                for stale in list(logger.handlers):
                    logger.removeHandler(stale)
                self._bind(logger)
                self._loggers[name] = logger
            return logger

    def teardown(self) -> None:
        """Detach and close every handler; cached loggers are forgotten."""
        with self._lock:
            handlers = [h for h in (self._console, self._file) if h is not None]
            for logger in self._loggers.values():
                for handler in handlers:
                    logger.removeHandler(handler)
            self._loggers.clear()
            self._console = None
            self._file = None
            self._level = logging.INFO
        for handler in handlers:
            try:
                handler.close()
            except (OSError, ValueError):
                pass

    def _writes_to(self, log_dir: Path) -> bool:
        current = self.log_file
        return current is not None and current.parent == Path(os.path.abspath(log_dir))

    def _handlers(self) -> List[logging.Handler]:
        if self._console is None:
            self._console = self._open_console()
        return [h for h in (self._console, self._file) if h is not None]

    def _bind(self, logger: logging.Logger) -> None:
        logger.setLevel(self._level)
        for handler in self._handlers():
            handler.setLevel(self._level)
            if handler not in logger.handlers:
                logger.addHandler(handler)

    @staticmethod
    def _open_console() -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        formatter_cls = ColorFormatter if _stream_supports_color(sys.stdout) else logging.Formatter
        handler.setFormatter(formatter_cls(LOG_FORMAT, datefmt=CONSOLE_DATEFMT))
        return handler

    @staticmethod
    def _open_file(log_dir: Path, max_bytes: int, backup_count: int) -> logging.Handler:
        log_dir.mkdir(parents=True, exist_ok=True)
        path = log_dir / f"barcache_{datetime.now().strftime('%Y%m%d')}.log"
        handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        return handler


# =====================================================================
# Diagnostic log sink
# =====================================================================


@dataclass(frozen=True)
class DiagnosticRecord:
    message: str
    severity: Severity
    surfaced: bool
    created_at: datetime = field(default_factory=datetime.now)


class DiagnosticLog:
    """
    Sink for engine diagnostics: ``log(message, severity, surface_to_main)``.

    Every message goes to the owning component logger. Surfaced messages
    are repeated on the main log so an operator sees them without
    enabling component logging. A bounded tail of records is kept for
    inspection.
    """

    def __init__(
        self,
        name: str = "barcache",
        max_records: int = 200,
    ) -> None:
        self._logger = get_logger(name)
        self._main = get_logger(MAIN_LOGGER_NAME)
        self._records: Deque[DiagnosticRecord] = deque(maxlen=max(0, max_records))
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._logger.name

    def log(
        self,
        message: str,
        severity: Severity = Severity.INFO,
        surface_to_main: bool = False,
    ) -> None:
        level = severity.level
        self._logger.log(level, message)
        if surface_to_main:
            self._main.log(level, "[%s] %s", self._logger.name, message)
        if self._records.maxlen:
            with self._lock:
                self._records.append(
                    DiagnosticRecord(message, severity, bool(surface_to_main))
                )

    def recent(self, severity: Optional[Severity] = None) -> List[DiagnosticRecord]:
        """Recent records, oldest first, optionally filtered by severity."""
        with self._lock:
            records = list(self._records)
        if severity is None:
            return records
        return [r for r in records if r.severity is severity]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


# =====================================================================
# Module-level convenience API
# =====================================================================

_manager = LoggerManager()


def get_logger(name: str = "barcache") -> logging.Logger:
    """Get a logger instance."""
    return _manager.get_logger(name)


def setup_logging(
    log_dir: Optional[Path] = None,
    level: Union[int, str] = logging.INFO,
) -> None:
    """Setup global logging configuration."""
    _manager.setup(log_dir, level)


def setup_logging_from_config(config=None) -> None:
    """Apply the logging section of ``config`` (default ``CONFIG``)."""
    if config is None:
        from config.settings import CONFIG

        config = CONFIG
    setup_logging(config.log_dir, config.logging.level)


def teardown_logging() -> None:
    """Tear down logging: close handlers, clear caches."""
    _manager.teardown()


# Created before setup_logging() runs; reconfigured when it does.
log: logging.Logger = get_logger("barcache")
