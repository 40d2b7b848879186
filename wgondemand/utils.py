"""Shared logging helpers."""

import logging
import os
import re
import sys

from rich.console import Console
from rich.logging import RichHandler

logger = logging.getLogger("wgondemand")

# Env vars whose values are replaced by '***' in every log record
SECRET_ENV_VARS = ["HCLOUD_TOKEN", "AWS_SECRET_ACCESS_KEY", "AWS_SESSION_TOKEN"]

_MIN_SECRET_LENGTH = 8  # skip short values to avoid false positives

_AUTHORIZATION_LINE = re.compile(r"^.*Authorization.*$", re.MULTILINE)


def _secret_patterns() -> list[re.Pattern]:
    values = {
        os.environ[var]
        for var in SECRET_ENV_VARS
        if len(os.environ.get(var, "")) >= _MIN_SECRET_LENGTH
    }
    return [re.compile(re.escape(v)) for v in sorted(values, key=len, reverse=True)]


def redact(text: str, patterns: list[re.Pattern] | None = None) -> str:
    """Redact Authorization header lines and known secret values from text.

    SDK wire logs dump request headers verbatim, so any line mentioning
    Authorization is replaced as a whole.

    :param text: Text to redact
    :param patterns: Secret value patterns (default: built from SECRET_ENV_VARS)
    :return: Redacted text
    """
    if patterns is None:
        patterns = _secret_patterns()
    text = _AUTHORIZATION_LINE.sub("Authorization: [REDACTED]", text)
    for p in patterns:
        text = p.sub("***", text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Logging filter that scrubs credentials from log records.

    Handles both f-string messages (msg is pre-formatted) and
    %-style messages (msg + args). Secret values are read from the
    environment when the filter is created.
    """

    def __init__(self, name: str = "") -> None:
        super().__init__(name)
        self.patterns = _secret_patterns()

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact(str(record.msg), self.patterns)
        if isinstance(record.args, dict):
            record.args = {
                k: redact(v, self.patterns) if isinstance(v, str) else v
                for k, v in record.args.items()
            }
        elif isinstance(record.args, tuple):
            record.args = tuple(
                redact(a, self.patterns) if isinstance(a, str) else a
                for a in record.args
            )
        return True


def setup_logging(level: int | str = logging.INFO) -> None:
    """Set up logging with Rich handler to stderr."""
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    rich_handler = RichHandler(
        console=Console(stderr=True),
        log_time_format="[%X]",
        show_path=False,
        markup=True,
    )
    rich_handler.setLevel(level)
    rich_handler.addFilter(SecretRedactingFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.addHandler(rich_handler)

    for name, lvl in [
        ("boto3", logging.INFO),
        ("botocore", logging.WARNING),
        ("urllib3", logging.WARNING),
        ("httpx", logging.WARNING),
        ("paramiko", logging.WARNING),
        ("fabric", logging.WARNING),
        ("invoke", logging.WARNING),
    ]:
        lg = logging.getLogger(name)
        for h in lg.handlers[:]:
            lg.removeHandler(h)
        lg.setLevel(lvl)
        lg.propagate = True


def log(msg: str) -> None:
    """Log info message."""
    logger.info(msg)


def debug(msg: str) -> None:
    """Log debug message."""
    logger.debug(msg)


def warn(msg: str) -> None:
    """Log warning message."""
    logger.warning(msg)


def error(msg: str) -> None:
    """Log error message and exit."""
    logger.error(msg)
    sys.exit(1)
