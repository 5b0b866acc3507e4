from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .errors import AnalysisCancelled, UpstreamUnavailable

T = TypeVar("T")


class TransientError(Exception):
    """Raised by backends for failures worth another attempt (timeouts, resets, 5xx)."""


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    base_delay: float = 1.0
    jitter: float = 0.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based): 1s, 2s, 4s, ..."""
        base = min(self.max_delay, self.base_delay * (2.0 ** attempt))
        if self.jitter > 0:
            base += random.uniform(0.0, self.jitter)
        return base

    def run(
        self,
        call: Callable[[], T],
        *,
        log: logging.Logger,
        label: str,
        cancel: Optional[threading.Event] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        """Run ``call``, retrying ``TransientError`` with exponential backoff.

        Any other exception propagates untouched. Once retries are exhausted the
        last transient failure is wrapped in ``UpstreamUnavailable``.
        """
        attempts = self.max_retries + 1
        last_exc: Optional[Exception] = None
        for attempt in range(attempts):
            if cancel is not None and cancel.is_set():
                raise AnalysisCancelled(f"{label} cancelled before attempt {attempt + 1}")
            try:
                return call()
            except TransientError as exc:
                last_exc = exc
                if attempt >= self.max_retries:
                    break
                wait_seconds = self.delay_for(attempt)
                log.warning(
                    "%s failed (attempt %s/%s): %s. Retrying in %.1fs...",
                    label,
                    attempt + 1,
                    attempts,
                    exc,
                    wait_seconds,
                )
                sleep(wait_seconds)

        log.error("%s unavailable after %s attempt(s): %s", label, attempts, last_exc)
        raise UpstreamUnavailable(attempts, last_exc)
