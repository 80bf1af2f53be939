"""
Error types and error logging for sandpass.

Store failures propagate unchanged to the caller. Decode failures are
isolated per record by the notes store. The CLI logs full stack traces
to a file while showing clean messages to users.
"""

import logging
import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

ERROR_LOG_NAME = "sandpass-errors.log"


class SandpassError(Exception):
    """Base class for sandpass errors."""


class StoreUnavailable(SandpassError):
    """Transport or query failure from the record store. Never retried internally."""


class DecodeFailure(SandpassError, ValueError):
    """A fetched payload does not parse as a note."""

    def __init__(self, message: str, record_id: str | None = None):
        super().__init__(message)
        self.record_id = record_id


class InvalidArgument(SandpassError, ValueError):
    """A required argument is missing; raised before any network call."""


def _error_log_path(log_dir: Optional[Path] = None) -> Path:
    if log_dir is None:
        home = os.environ.get("SANDPASS_HOME")
        log_dir = Path(home) if home else Path.home() / ".sandpass"
    return Path(log_dir) / ERROR_LOG_NAME


def log_exception(exc: BaseException, context: str = "", log_dir: Optional[Path] = None) -> Path:
    """
    Append an exception and its traceback to the error log.

    The log lives in log_dir (the config directory), falling back to
    SANDPASS_HOME and then ~/.sandpass. The file is created owner-only.
    A log that can't be written is reported through logging, not raised.

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(log_dir)
    stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
    entry = "".join([
        f"\n{'=' * 60}\n",
        f"[{stamp}] {context or '-'}: {type(exc).__name__}\n",
        *traceback.format_exception(exc),
    ])
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_path.touch(mode=0o600, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as f:
            f.write(entry)
    except OSError as e:
        logger.warning("Could not write error log %s: %s", log_path, e)
    return log_path
