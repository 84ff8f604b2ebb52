"""Logging utilities module.

Messages may wrap values in highlight markers: `$$'title'$$` for names and
titles, `$${key: value}$$` for identifiers and counters. The console renders
them in color when the terminal allows it; every other output drops the `$$`.
"""

import logging
import re
import sys
from functools import lru_cache
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType
from typing import ClassVar

import colorama
from colorama import Fore, Style

__all__ = ["CleanFormatter", "ColorFormatter", "Logger", "get_logger"]

QUOTED_PATTERN = re.compile(r"\$\$'((?:[^']|'(?!\$\$))*)'\$\$")
BRACED_PATTERN = re.compile(r"\$\$\{(.*?)\}\$\$")

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
SIMPLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s\t%(message)s"
DEBUG_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s\t%(filename)s:%(lineno)d\t%(message)s"
)

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


class MarkerFormatter(logging.Formatter):
    """Base formatter that rewrites the `$$` highlight markers.

    Subclasses choose what a marked value turns into through the two
    replacement templates. The record is restored after formatting so other
    handlers see the original message.
    """

    quoted_template: ClassVar[str] = "'\\1'"
    braced_template: ClassVar[str] = "{\\1}"

    def render_markers(self, msg: str) -> str:
        msg = QUOTED_PATTERN.sub(self.quoted_template, msg)
        return BRACED_PATTERN.sub(self.braced_template, msg)

    def decorate_level(self, levelname: str) -> str:
        return levelname

    def format(self, record: logging.LogRecord) -> str:
        """Format a record with its markers rendered.

        Args:
            record (logging.LogRecord): Log record to format

        Returns:
            str: The formatted message
        """
        orig_msg, orig_levelname = record.msg, record.levelname
        record.levelname = self.decorate_level(record.levelname)
        if isinstance(record.msg, str):
            record.msg = self.render_markers(record.msg)
        try:
            return super().format(record)
        finally:
            record.msg, record.levelname = orig_msg, orig_levelname


class CleanFormatter(MarkerFormatter):
    """Plain-text formatter for the log file and colorless terminals."""


class ColorFormatter(MarkerFormatter):
    """Console formatter using colorama colors.

    Levels are colored by severity, quoted values are light blue and braced
    values are dimmed.
    """

    LEVEL_COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "SUCCESS": Fore.GREEN + Style.BRIGHT,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.RED + Style.BRIGHT,
    }

    quoted_template = f"{Fore.LIGHTBLUE_EX}'\\1'{Style.RESET_ALL}"
    braced_template = f"{Style.DIM}{{\\1}}{Style.RESET_ALL}"

    def decorate_level(self, levelname: str) -> str:
        color = self.LEVEL_COLORS.get(levelname)
        if color is None:
            return levelname
        return f"{color}{levelname}{Style.RESET_ALL}"


def _caller_class_name(frame: FrameType) -> str | None:
    """Name of the class whose method or classmethod owns `frame`, if any."""
    owner = frame.f_locals.get("self")
    if owner is not None:
        return None if isinstance(owner, logging.Logger) else type(owner).__name__
    owner = frame.f_locals.get("cls")
    if isinstance(owner, type):
        return owner.__name__
    return None


def _color_enabled() -> bool:
    """Enable colorama for the console and report whether colors are usable."""
    from trackbridge.utils.terminal import supports_color

    try:
        if not supports_color():
            return False
        if sys.platform == "win32":
            colorama.just_fix_windows_console()
        else:
            colorama.init()
    except (AttributeError, OSError):
        return False
    return True


class Logger(logging.Logger):
    """Logger with a SUCCESS level and automatic class name prefixes.

    Records logged from a method are prefixed with the owning class, so
    `log.info("Resolved")` inside `ServiceIdMapper` reads
    `ServiceIdMapper: Resolved`.
    """

    SUCCESS = logging.INFO + 5

    def __init__(self, name, level=logging.NOTSET):
        super().__init__(name, level)
        if logging.getLevelName(self.SUCCESS) != "SUCCESS":
            logging.addLevelName(self.SUCCESS, "SUCCESS")

    def _log(
        self,
        level,
        msg,
        args,
        exc_info=None,
        extra=None,
        stack_info=False,
        stacklevel=1,
    ):
        # Frame 2 is the code that called info(), success(), etc.
        if isinstance(msg, str):
            try:
                class_name = _caller_class_name(sys._getframe(2))
            except ValueError:
                class_name = None
            if class_name:
                msg = f"{class_name}: {msg}"

        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )

    def success(self, msg, *args, **kwargs):
        """Log a message with SUCCESS level, between INFO and WARNING."""
        if self.isEnabledFor(self.SUCCESS):
            self._log(self.SUCCESS, msg, args, **kwargs)

    def level_number(self, log_level: str) -> int:
        """Translate a level name, including SUCCESS, into its number.

        Raises:
            ValueError: If the name is not a known logging level
        """
        name = log_level.upper()
        if name == "SUCCESS":
            return self.SUCCESS
        number = logging.getLevelName(name)
        if not isinstance(number, int):
            raise ValueError(f"Unknown log level '{log_level}'")
        return number

    def setup(self, log_level: str, log_dir: str | None = None) -> None:
        """Replace the handlers with a console handler and an optional log file.

        Args:
            log_level (str): Logging level ('DEBUG', 'INFO', 'SUCCESS', etc.)
            log_dir (str | None): Directory for `<name>.<level>.log`; no file
                is written when None
        """
        level = self.level_number(log_level)
        self.setLevel(level)

        for handler in self.handlers[:]:
            self.removeHandler(handler)
            handler.close()

        log_format = DEBUG_FORMAT if level <= logging.DEBUG else SIMPLE_FORMAT

        if log_dir is not None:
            log_path = Path(log_dir)
            log_path.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_path / f"{self.name}.{log_level}.log",
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUPS,
            )
            file_handler.setFormatter(CleanFormatter(log_format, datefmt=DATE_FORMAT))
            file_handler.setLevel(level)
            self.addHandler(file_handler)

        formatter_cls = ColorFormatter if _color_enabled() else CleanFormatter
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter_cls(log_format, datefmt=DATE_FORMAT))
        console_handler.setLevel(level)
        self.addHandler(console_handler)


logging.setLoggerClass(Logger)


def _get_logger(
    log_name: str, log_level: str = "INFO", log_dir: str | Path | None = None
) -> Logger:
    """Get a configured instance of Logger.

    Args:
        log_name (str): Name of the logger and base name for the log file.
        log_level (str): Logging level. Defaults to "INFO".
        log_dir (str | Path | None): Directory where log files will be stored.

    Returns:
        Logger: Configured logger instance
    """
    logger = logging.getLogger(log_name)
    if not isinstance(logger, Logger):
        logger = Logger(log_name)

    logger.setup(log_level, str(log_dir) if log_dir is not None else None)
    return logger


@lru_cache(maxsize=1)
def get_logger() -> Logger:
    """Get the application logger, writing to `<data_path>/logs`."""
    from trackbridge.config.settings import get_config

    config = get_config()

    return _get_logger(
        log_name="TrackBridge",
        log_level=str(config.log_level),
        log_dir=config.data_path / "logs",
    )
