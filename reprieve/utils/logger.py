"""Logging setup and terminal-safe output for the command line.

Detects terminal encoding and provides ASCII alternatives for the Unicode
icons we print, so non-UTF-8 terminals do not choke on them.
"""
import locale
import logging
import sys
from typing import Optional

# Unicode to ASCII icon mapping for terminals without UTF-8
ICON_MAP = {
    '✓': '[OK]',
    '✗': '[FAIL]',
    '⚠': '[WARN]',
}

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def detect_terminal_encoding() -> str:
    """Detect the terminal's encoding capability.

    Returns:
        str: Terminal encoding ('utf-8', 'cp1252', 'ascii', etc.)
    """
    if hasattr(sys.stdout, 'encoding') and sys.stdout.encoding:
        return sys.stdout.encoding.lower()

    try:
        return locale.getpreferredencoding().lower()
    except locale.Error:
        return 'ascii'


def is_utf8_capable() -> bool:
    """Check if the terminal can handle UTF-8 Unicode characters."""
    return detect_terminal_encoding().replace('_', '-') in ('utf-8', 'utf8')


def sanitize_for_terminal(text: str) -> str:
    """Replace Unicode icons with ASCII equivalents if terminal doesn't support UTF-8.

    Args:
        text: Text potentially containing Unicode icons

    Returns:
        str: Sanitized text safe for current terminal
    """
    if is_utf8_capable():
        return text

    sanitized = text
    for unicode_char, ascii_replacement in ICON_MAP.items():
        sanitized = sanitized.replace(unicode_char, ascii_replacement)
    return sanitized


class SanitizingFormatter(logging.Formatter):
    """Formatter that applies :func:`sanitize_for_terminal` to every record."""

    def format(self, record: logging.LogRecord) -> str:
        return sanitize_for_terminal(super().format(record))


def level_for(verbosity: int, quiet: bool = False, default: str = "WARNING") -> int:
    """Map ``-v`` count / ``-q`` flag to a logging level.

    Args:
        verbosity: Number of -v flags (1 = INFO, 2+ = DEBUG)
        quiet: -q given (ERROR only)
        default: Level name used with no flags

    Returns:
        logging level constant
    """
    if quiet:
        return logging.ERROR
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.getLevelName(default)


def configure_logging(verbosity: int = 0, quiet: bool = False, default: str = "WARNING",
                      stream: Optional[object] = None) -> logging.Logger:
    """Install a stderr handler on the ``reprieve`` logger.

    Calling it again replaces the previous handler, so the CLI can be invoked
    repeatedly in one process (tests do).

    Returns:
        The configured ``reprieve`` logger
    """
    logger = logging.getLogger("reprieve")
    for handler in list(logger.handlers):
        if getattr(handler, "_reprieve", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(SanitizingFormatter(LOG_FORMAT))
    handler._reprieve = True
    logger.addHandler(handler)
    logger.setLevel(level_for(verbosity, quiet, default))
    logger.propagate = False
    return logger
