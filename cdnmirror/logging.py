# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Logging setup for the mirror service and CLI.

The mirror handles two long-lived key pairs: the COS key used to sign
bucket uploads and the Tencent Cloud key used to sign EdgeOne analytics
queries.  ``cdnmirror.config`` registers both halves of each pair with
``SecretFilter`` as soon as they are loaded.  The filter sits on the
handler installed by ``configure_logging``, so it also covers records
from httpx and werkzeug.

Entry points (``cdnmirror serve``, ``cdnmirror sync``) call
``configure_logging`` once; library modules only do
``logger = logging.getLogger(__name__)`` and log with ``%`` arguments,
e.g. ``logger.info("Uploaded %s (%s)", storage_key, content_type)``.
"""

import logging
import re
from typing import ClassVar


#: Replacement text for a redacted credential.
REDACTED = "[REDACTED]"

#: Default record layout for the stream handler.
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

#: Transport loggers that log every request at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "werkzeug")


class SecretFilter(logging.Filter):
    """Replace registered credentials in log records with ``[REDACTED]``.

    Registration is process-wide: every instance shares the same set.

    Example:
        SecretFilter.register_secret(cos.credential.secret_key)
        handler.addFilter(SecretFilter())
        logger.warning("PUT signed with %s", cos.credential.secret_key)
        # Output: "PUT signed with [REDACTED]"
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    def filter(self, record: logging.LogRecord) -> bool:
        if self._pattern is not None:
            record.msg = self.redact(str(record.msg))
            if record.args:
                record.args = tuple(
                    self.redact(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )
        return True

    @classmethod
    def redact(cls, text: str) -> str:
        """Return *text* with every registered credential replaced."""
        if cls._pattern is None:
            return text
        return cls._pattern.sub(REDACTED, text)

    @classmethod
    def register_secret(cls, secret: str | None) -> None:
        """Add a credential value to the redaction set.

        Args:
            secret: Secret id or key.  Empty and None values are skipped.
        """
        if not secret:
            return
        cls._secrets.add(secret)
        # Longest first so a key that contains another is fully replaced.
        ordered = sorted(cls._secrets, key=len, reverse=True)
        cls._pattern = re.compile("|".join(map(re.escape, ordered)))

    @classmethod
    def clear_secrets(cls) -> None:
        """Forget all registered credentials (used by tests)."""
        cls._secrets.clear()
        cls._pattern = None


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
    add_secret_filter: bool = True,
) -> None:
    """Install a single stream handler on the root logger.

    Any existing root handlers are removed.  Above DEBUG the httpx,
    httpcore and werkzeug loggers are raised to WARNING.

    Args:
        level: Root log level.
        format_string: Record layout; defaults to ``DEFAULT_FORMAT``.
        add_secret_filter: Attach ``SecretFilter`` to the handler.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))
    if add_secret_filter:
        handler.addFilter(SecretFilter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    if level > logging.DEBUG:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for module *name* (usually ``__name__``)."""
    return logging.getLogger(name)
