"""
Logging Setup
=============
One place to switch audible_session's log output on, off or to a file.

Every module logs through a child of the "audible_session" logger
("audible_session.login", "audible_session.client", ...), so handlers are
attached once, at the root of that tree.

Handlers installed by LogConfig carry a TokenRedactor: Amazon bearer,
refresh and cookie tokens (Atna|…, Atnr|…, Atza|…) never reach the
console or the log file in full, even from a debug line that forgot to
mask them.
"""

import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

ROOT_LOGGER = "audible_session"

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

DEBUG_FORMAT = "%(asctime)s %(name)s %(message)s"
DEBUG_DATE_FORMAT = "%H:%M:%S"

# Amazon token prefixes: access (Atna), refresh (Atnr), website cookie (Atza)
_TOKEN_RE = re.compile(r"\b(Atn[ar]|Atza)\|([^\s\"',;&]{4})[^\s\"',;&]*")


def mask(value: str, show: int = 6) -> str:
    """Keep the first `show` characters of a secret, star out the rest."""
    if not value:
        return "<empty>"
    if len(value) <= show:
        return value
    return value[:show] + "***"


class TokenRedactor(logging.Filter):
    """Rewrite Amazon tokens in a record's final message to `Atna|abcd***`."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _TOKEN_RE.sub(r"\1|\2***", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class LogConfig:
    """
    Package-wide logging switches.

    Usage:
        LogConfig.configure(level="DEBUG", filename="audible.log")
        LogConfig.configure_debug()
        LogConfig.silence()
    """

    _configured: bool = False

    @classmethod
    def configure(
        cls,
        level: str = "INFO",
        format: Optional[str] = None,
        date_format: Optional[str] = None,
        filename: Optional[str] = None,
        console: bool = True,
        redact: bool = True,
        max_bytes: int = 5 * 1024 * 1024,
        backup_count: int = 3,
    ) -> logging.Logger:
        """
        (Re)install handlers on the audible_session root logger.

        Args:
            level: Level name; unknown names fall back to INFO
            format, date_format: logging.Formatter strings
            filename: Rotating log file (None = no file)
            console: Log to stderr
            redact: Attach TokenRedactor to every handler
            max_bytes, backup_count: File rotation limits

        Returns:
            The audible_session root logger
        """
        root = logging.getLogger(ROOT_LOGGER)
        root.setLevel(getattr(logging, level.upper(), logging.INFO))
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(format or DEFAULT_FORMAT, datefmt=date_format or DEFAULT_DATE_FORMAT)
        handlers = []
        if console:
            handlers.append(logging.StreamHandler(sys.stderr))
        if filename:
            handlers.append(
                RotatingFileHandler(filename, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
            )
        for handler in handlers:
            handler.setFormatter(formatter)
            if redact:
                handler.addFilter(TokenRedactor())
            root.addHandler(handler)

        # Handlers live here only; the application's root logger stays untouched
        root.propagate = False
        cls._configured = True
        return root

    @classmethod
    def configure_debug(cls, filename: Optional[str] = None) -> logging.Logger:
        """DEBUG level, short timestamps, stderr (plus `filename` if given)."""
        return cls.configure(
            level="DEBUG",
            format=DEBUG_FORMAT,
            date_format=DEBUG_DATE_FORMAT,
            filename=filename,
        )

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Logger for `name` inside the audible_session tree ("login" → "audible_session.login")."""
        if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
            name = f"{ROOT_LOGGER}.{name}"
        return logging.getLogger(name)

    @classmethod
    def set_level(cls, level: str) -> None:
        logging.getLogger(ROOT_LOGGER).setLevel(getattr(logging, level.upper(), logging.INFO))

    @classmethod
    def silence(cls) -> None:
        """Drop everything, CRITICAL included."""
        logging.getLogger(ROOT_LOGGER).setLevel(logging.CRITICAL + 1)

    @classmethod
    def is_configured(cls) -> bool:
        return cls._configured
