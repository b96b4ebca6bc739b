# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Centralized logging configuration with secret redaction.

Temporary AWS credentials are registered with ``SecretFilter`` as soon as
they are issued, so secret keys and session tokens never reach log
output even when a request or response is logged verbatim.  When a
refresh replaces them, the superseded values are unregistered, so the
redaction pattern tracks only the credentials currently in use.

Usage:
    # In entry points (CLI)
    from sigclient.logging import configure_logging
    configure_logging(level=logging.INFO)

    # In library modules
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Signing request: %s %s", method, url)
"""

import logging
import re
import threading
from typing import ClassVar


class SecretFilter(logging.Filter):
    """Logging filter that redacts registered secrets from log output.

    Secrets can be registered at runtime using register_secret().
    Any registered secret appearing in a log message will be replaced
    with '[REDACTED]'.

    Example:
        filter = SecretFilter()
        filter.register_secret("wJalrXUtnFEMI/K7MDENG")
        logger.addFilter(filter)
        logger.info("Using key: wJalrXUtnFEMI/K7MDENG")
        # Output: "Using key: [REDACTED]"
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log record by redacting any registered secrets.

        Args:
            record: The log record to filter.

        Returns:
            Always True (record is never suppressed, only modified).
        """
        pattern = self._pattern
        if pattern is not None:
            record.msg = pattern.sub("[REDACTED]", str(record.msg))
            if record.args:
                record.args = tuple(
                    pattern.sub("[REDACTED]", str(arg))
                    if isinstance(arg, str)
                    else arg
                    for arg in record.args
                )
        return True

    @classmethod
    def register_secret(cls, secret: str) -> None:
        """Register a secret to be redacted from all log output.

        Args:
            secret: The secret string to redact. Empty strings are ignored.
        """
        if not secret:
            return
        with cls._lock:
            if secret in cls._secrets:
                return
            cls._secrets.add(secret)
            cls._rebuild_pattern()

    @classmethod
    def unregister_secret(cls, secret: str) -> None:
        """Stop redacting a secret that is no longer in use.

        Args:
            secret: A previously registered secret. Unknown values are
                ignored.
        """
        with cls._lock:
            if secret not in cls._secrets:
                return
            cls._secrets.discard(secret)
            cls._rebuild_pattern()

    @classmethod
    def clear_secrets(cls) -> None:
        """Clear all registered secrets. Primarily for testing."""
        with cls._lock:
            cls._secrets.clear()
            cls._pattern = None

    @classmethod
    def _rebuild_pattern(cls) -> None:
        """Rebuild the compiled regex pattern from registered secrets."""
        if cls._secrets:
            # Longest first so a secret containing another is fully masked
            ordered = sorted(cls._secrets, key=len, reverse=True)
            escaped = [re.escape(s) for s in ordered]
            cls._pattern = re.compile("|".join(escaped))
        else:
            cls._pattern = None


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
    add_secret_filter: bool = True,
) -> None:
    """Configure logging for the application.

    Sets up the root logger with a standard format and optional
    secret redaction filter.

    Args:
        level: The logging level (e.g., logging.INFO, logging.DEBUG).
        format_string: Custom format string. If None, uses default format.
        add_secret_filter: Whether to add the SecretFilter to redact secrets.
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string))

    if add_secret_filter:
        handler.addFilter(SecretFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)

    root_logger.addHandler(handler)

    # httpx logs every request line at INFO; keep it out of normal output
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    logging.getLogger("httpcore").setLevel(max(level, logging.WARNING))
