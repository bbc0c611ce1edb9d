"""
Goal: Set up loguru logging to stderr and a daily log file under the Sky app dir.
Keep output friendly and never leak tokens, codes or secrets.
"""

import re
import sys
from pathlib import Path

from loguru import logger

from skybridge.settings import LOG_DIR

# long opaque runs: access/refresh tokens, auth codes, verifiers
_OPAQUE = re.compile(r"[A-Za-z0-9_\-]{32,}")
_ASSIGNED = re.compile(
    r"(access_token|refresh_token|client_secret|code_verifier|password|secret|bearer)([\s=:]+)[^\s,&\"']+",
    re.IGNORECASE,
)
_SENSITIVE_MARKERS = ("access_token=", "refresh_token=", "client_secret=", "code_verifier=", "bearer ")


def sanitize_log_message(msg: str) -> str:
    """Remove sensitive information from log messages."""
    msg = _ASSIGNED.sub(r"\1\2[REDACTED]", msg)
    return _OPAQUE.sub("[REDACTED]", msg)


def _filter_sensitive_logs(record) -> bool:
    """Drop records that carry a credential outright rather than rely on redaction in files."""
    message = record["message"].lower()
    return not any(marker in message for marker in _SENSITIVE_MARKERS)


def _stderr_sink(message) -> None:
    sys.stderr.write(sanitize_log_message(str(message)))


def configure_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(
        _stderr_sink,
        level=level,
        colorize=False,
        backtrace=False,
        diagnose=False,
    )
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(Path(LOG_DIR) / "{time:YYYY-MM-DD}.log"),
        rotation="00:00",
        retention="14 days",
        level=level,
        backtrace=False,
        diagnose=False,
        serialize=False,
        enqueue=True,
        encoding="utf-8",
        filter=_filter_sensitive_logs,
    )
