"""
KDAO Logging System
===================

A single logging entry point for the KDAO engines. It configures the standard
Python `logging` library once, rendering console output through `rich` and,
when enabled, persisting to a rotating log file.

Usage:
    >>> from kdao.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Proposal #1: PENDING → ACTIVE")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
    LOG_DATE_FORMAT,
    LOG_FILE_OUTPUT,
    LOG_FORMAT,
    LOG_LEVEL,
    LOG_MAX_FILE_SIZE,
)


PROJECT_ROOT = Path(__file__).parent.parent
LOG_FILE_PATH = PROJECT_ROOT / "logs" / "kdao.log"

# Format specifiers such as %(name)s
_FORMAT_SPECIFIER_RE = re.compile(r"\([a-zA-Z_][a-zA-Z0-9_]*\)[a-zA-Z]")

KDAO_THEME = Theme(
    {
        "kdao.amount":         "bold cyan",
        "kdao.arrow":          "bold yellow",
        "kdao.entity":         "bold white",
        "kdao.identity":       "magenta",
        "kdao.level_critical": "bold red reverse",
        "kdao.level_debug":    "bold dim",
        "kdao.level_error":    "bold red",
        "kdao.level_info":     "bold green",
        "kdao.level_warning":  "bold yellow",
        "kdao.logger_name":    "magenta",
        "kdao.role":           "bold blue",
        "kdao.state":          "bold green",
        "kdao.tag":            "bold magenta",
        "kdao.timestamp":      "bold cyan",
    }
)


class LogManager:
    """
    Process-wide logging setup (singleton).

    The root logger is configured exactly once per process; later calls to
    `configure` are no-ops until `reset` is called.
    """

    _instance: Optional["LogManager"] = None
    _lock: threading.Lock = threading.Lock()

    def __new__(cls) -> "LogManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._configured = False
        self._initialized = True

    @staticmethod
    def validate_log_format(log_format: str) -> str:
        """
        Return *log_format* if it formats a dummy record cleanly, otherwise
        the default format.
        """
        default = str(LOG_FORMAT.default())
        if not log_format:
            return default
        log_format = str(log_format)
        for match in _FORMAT_SPECIFIER_RE.finditer(log_format):
            if match.start() == 0 or log_format[match.start() - 1] != "%":
                print(f"kdao.logger - malformed format {log_format!r}, using default", file=sys.stderr)
                return default
        record = logging.LogRecord(
            name="probe", level=logging.INFO, pathname="", lineno=0,
            msg="probe", args=(), exc_info=None,
        )
        try:
            rendered = logging.Formatter(fmt=log_format).format(record)
        except (KeyError, ValueError, TypeError) as e:
            print(f"kdao.logger - invalid format ({e}), using default", file=sys.stderr)
            return default
        if _FORMAT_SPECIFIER_RE.search(rendered):
            return default
        return log_format

    @staticmethod
    def validate_date_format(date_format: str) -> str:
        """Return *date_format* if strftime accepts it, otherwise the default."""
        default = str(LOG_DATE_FORMAT.default())
        if not date_format or "%" not in str(date_format):
            return default
        try:
            time.strftime(str(date_format))
        except ValueError:
            return default
        return str(date_format)

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: Optional[bool] = None,
    ) -> None:
        """
        Configure the root logger with console and (optionally) file handlers.

        Args:
            log_level: Logging level name. Defaults to LOG_LEVEL from the environment.
            log_file: Log file path. Defaults to `logs/kdao.log`.
            console_output: Attach a console handler.
            file_output: Attach a rotating file handler. Defaults to LOG_FILE_OUTPUT.
        """
        with self._lock:
            if self._configured:
                return

            level = getattr(logging, (log_level or str(LOG_LEVEL)).upper(), logging.INFO)
            formatter = self._build_formatter()
            if file_output is None:
                file_output = bool(LOG_FILE_OUTPUT)

            handlers: List[logging.Handler] = []
            if console_output:
                handlers.append(self._console_handler())
            if file_output:
                handlers.append(self._file_handler(log_file or LOG_FILE_PATH))

            root = logging.getLogger()
            root.setLevel(level)
            root.handlers.clear()
            for handler in handlers:
                handler.setLevel(level)
                handler.setFormatter(formatter)
                root.addHandler(handler)

            self._configured = True

    def _build_formatter(self) -> "TerminalSafeFormatter":
        fmt = self.validate_log_format(LOG_FORMAT)
        datefmt = self.validate_date_format(LOG_DATE_FORMAT)
        # Timestamps are always UTC
        formatter = TerminalSafeFormatter(fmt=fmt, datefmt=f"{datefmt} UTC")
        formatter.converter = time.gmtime
        return formatter

    @staticmethod
    def _console_handler() -> logging.Handler:
        if not LOG_CONSOLE_HIGHLIGHTING:
            return logging.StreamHandler(sys.stderr)
        return RichHandler(
            console=Console(theme=KDAO_THEME, highlight=False, stderr=True),
            highlighter=KDAOLogHighlighter(),
            keywords=[],
            rich_tracebacks=True,
            show_path=False,
            show_time=False,
            show_level=False,
            markup=False,
        )

    @staticmethod
    def _file_handler(path: Path) -> logging.Handler:
        path.parent.mkdir(parents=True, exist_ok=True)
        return logging.handlers.RotatingFileHandler(
            str(path), maxBytes=LOG_MAX_FILE_SIZE, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"
        )

    def reset(self) -> None:
        """Allow the next `configure` call to rebuild the handlers."""
        with self._lock:
            self._configured = False

    def get_logger(self, name: str) -> logging.Logger:
        if not self._configured:
            self.configure()
        return logging.getLogger(name)

    @property
    def is_configured(self) -> bool:
        return self._configured


class TerminalSafeFormatter(logging.Formatter):
    """
    Formatter that strips ANSI escape sequences and control characters.

    Descriptions, candidate names and platforms are user supplied and end up
    in log lines verbatim (CWE-117).
    """

    _ansi_escape_re = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b[@-Z\\-_]")
    _control_chars_re = re.compile(r"[\x00-\x08\x0B\x0C\x0D\x0E-\x1F\x7F]")

    @classmethod
    def sanitize(cls, text: str) -> str:
        if not text:
            return text
        text = cls._ansi_escape_re.sub("", text)
        return cls._control_chars_re.sub("", text)

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class KDAOLogHighlighter(RegexHighlighter):
    """Colours levels, state transitions, entity ids, roles and amounts."""

    base_style = "kdao."
    highlights = [
        r"(?P<arrow>→|->)",
        r"(?P<level_critical>\bCRITICAL\b)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_info>\bINFO\b)",
        r"(?P<level_warning>\bWARNING\b)",
        r"\-\s+\w+\s+-\s+(?P<logger_name>[\w.]+)(?=\s-\s)",
        r"(?P<entity>(Proposal|Project|Election|Milestone|Stake) #\d+)",
        r"(?P<role>\b[A-Z_]+_ROLE\b)",
        r"(?P<state>\b(PENDING|ACTIVE|SUCCEEDED|DEFEATED|QUEUED|EXECUTED|CANCELLED|"
        r"PROPOSED|APPROVED|COMPLETED|FAILED|NOMINATION|CAMPAIGN|VOTING|ENDED|"
        r"LOCKED|UNLOCKING|UNLOCKED)\b)",
        r"(?P<amount>\b\d{4,}\b)",
        r"(?P<identity>\b0x[0-9A-Za-z]+\b)",
        r"(?P<tag>\[.*?\])",
        r"(?P<timestamp>^(.*?)UTC)",
    ]


_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """
    Module logger, configuring the root logger on first use.

    Args:
        name: The name of the module requesting the logger.
    """
    return _manager.get_logger(name)
