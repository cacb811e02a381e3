"""Bounded retry with exponential backoff for network operations.

Errors are classified by their message text:

- quota / storage-limit errors and permission / authorization errors
  are permanent and are re-raised on the first attempt;
- everything else is treated as transient and retried.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

MAX_RETRIES = 3
BASE_DELAY = 0.5

_QUOTA_RE = re.compile(r"quota|storage limit|limit exceeded", re.IGNORECASE)
_PERMISSION_RE = re.compile(
    r"permission|forbidden|unauthorized|access denied", re.IGNORECASE
)


def _message(error: BaseException | str) -> str:
    return error if isinstance(error, str) else str(error)


def is_quota_error(error: BaseException | str) -> bool:
    """Return ``True`` for remote capacity / limit violations."""
    return bool(_QUOTA_RE.search(_message(error)))


def is_permission_error(error: BaseException | str) -> bool:
    """Return ``True`` for authorization failures."""
    return bool(_PERMISSION_RE.search(_message(error)))


def is_transient_error(error: BaseException | str) -> bool:
    return not (is_quota_error(error) or is_permission_error(error))


def retry_with_backoff(
    func: Callable[[], T],
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *func* until it succeeds or retries are exhausted.

    Makes at most ``max_retries + 1`` attempts, sleeping
    ``base_delay * 2**attempt`` between them (0.5 s, 1 s, 2 s by
    default).

    Args:
        func: Zero-argument callable performing the operation.
        max_retries: Retries after the first attempt.
        base_delay: Initial delay in seconds.
        sleep: Sleep function (injectable for tests).

    Returns:
        Whatever *func* returns.

    Raises:
        Exception: The first non-transient error, or the last error
            once retries are exhausted.
    """
    attempt = 0
    while True:
        try:
            return func()
        except Exception as exc:
            if not is_transient_error(exc):
                raise
            if attempt >= max_retries:
                raise
            delay = base_delay * (2**attempt)
            attempt += 1
            logger.warning(
                "Transient error (attempt %d/%d), retrying in %.1fs: %s",
                attempt,
                max_retries + 1,
                delay,
                exc,
            )
            sleep(delay)
