from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from ..errors import TRANSIENT_ERRORS, EmbeddingFailure, SemanticIndexError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Cancelled(Exception):
    """The operation was abandoned because its project is closing."""


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    backoff_seconds: float = 0.5
    max_backoff_seconds: float = 30.0

    def delay(self, attempt: int) -> float:
        return min(self.backoff_seconds * (2 ** (attempt - 1)), self.max_backoff_seconds)


def call_with_retry(
    fn: Callable[[], T],
    *,
    policy: RetryPolicy,
    what: str,
    cancel: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
    executor: Optional[concurrent.futures.Executor] = None,
    timeout_error: type[SemanticIndexError] = EmbeddingFailure,
) -> T:
    """Run fn, retrying transient failures with exponential backoff.

    A call that exceeds `timeout` counts as a failed attempt and raises
    `timeout_error`. Only errors in TRANSIENT_ERRORS are retried; the last
    one is re-raised once attempts are exhausted.

    Raises:
        Cancelled: If `cancel` is set before an attempt or during a backoff wait
    """
    attempt = 0
    while True:
        attempt += 1
        if cancel is not None and cancel.is_set():
            raise Cancelled(what)
        try:
            if timeout is None or executor is None:
                return fn()
            future = executor.submit(fn)
            try:
                return future.result(timeout=timeout)
            except concurrent.futures.TimeoutError as e:
                future.cancel()
                raise timeout_error(f"{what} timed out after {timeout:.1f}s") from e
        except TRANSIENT_ERRORS as e:
            if attempt >= policy.attempts:
                raise
            delay = policy.delay(attempt)
            logger.warning(f"{what} failed (attempt {attempt}/{policy.attempts}): {e}; retrying in {delay:.2f}s")
            if cancel is not None:
                if cancel.wait(delay):
                    raise Cancelled(what) from e
            else:
                time.sleep(delay)
