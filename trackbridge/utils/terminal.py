"""Terminal Utilities Module."""

import locale
import os
import sys
from functools import lru_cache

import colorama


@lru_cache(maxsize=1)
def supports_utf8() -> bool:
    """Check if stdout can encode UTF-8 box drawing characters.

    Returns:
        bool: True if the terminal encoding is a UTF variant, False otherwise
    """
    encoding = sys.stdout.encoding or locale.getpreferredencoding(False)
    return encoding.lower().startswith("utf")


@lru_cache(maxsize=1)
def supports_color() -> bool:
    """Check if ANSI color codes should be written to stdout.

    Respects the NO_COLOR convention and only enables color for interactive
    terminals. On Windows, colorama's console fix or a known ANSI-capable host
    is required.

    Returns:
        bool: True if the terminal supports color, False otherwise
    """
    if os.environ.get("NO_COLOR"):
        return False

    is_a_tty = hasattr(sys.stdout, "isatty") and sys.stdout.isatty()
    if not is_a_tty:
        return False

    if sys.platform == "win32":
        return (
            getattr(colorama, "fixed_windows_console", False)
            or "ANSICON" in os.environ
            or "WT_SESSION" in os.environ  # Windows Terminal
            or os.environ.get("TERM_PROGRAM") == "vscode"
        )

    return os.environ.get("TERM") != "dumb"
