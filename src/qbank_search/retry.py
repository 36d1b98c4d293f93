"""
Backoff policy and retry wrapper used around remote calls.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from tenacity import RetryCallState, Retrying, stop_after_attempt
from tenacity.wait import wait_base

from .errors import TransientProviderError
from .logging_utils import get_logger

T = TypeVar("T")

_logger = get_logger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Linear backoff capped at a ceiling.

    The delay before retry ``n`` (1-based) is ``min(base_delay * n, cap_delay)``
    seconds plus up to ``jitter`` seconds of random spread. A call is attempted
    at most ``max_retries + 1`` times.
    """

    max_retries: int = 5
    base_delay: float = 2.0
    cap_delay: float = 10.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.cap_delay < 0 or self.jitter < 0:
            raise ValueError("delays must be >= 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * attempt, self.cap_delay)
        if self.jitter:
            delay += random.uniform(0.0, self.jitter)
        return delay


@dataclass(frozen=True)
class _WaitLinearCapped(wait_base):
    policy: BackoffPolicy

    def __call__(self, retry_state: RetryCallState) -> float:
        # attempt_number counts the attempt that just failed, starting at 1
        return self.policy.delay_for(retry_state.attempt_number)


def call_with_retry(
    fn: Callable[[], T],
    policy: BackoffPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    logger: logging.Logger | None = None,
    description: str = "call",
) -> T:
    """Run *fn*, retrying every failure according to *policy*.

    Raises ``TransientProviderError`` chained to the last failure once the
    attempt budget is exhausted.
    """
    log = logger or _logger

    def _before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        log.warning(
            "%s failed (attempt %d/%d), retrying in %.1fs: %s",
            description,
            retry_state.attempt_number,
            policy.max_attempts,
            wait,
            exc,
        )

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=_WaitLinearCapped(policy),
        sleep=sleep,
        before_sleep=_before_sleep,
        reraise=True,
    )
    try:
        return retrying(fn)
    except Exception as exc:
        raise TransientProviderError(
            f"{description} failed after {policy.max_attempts} attempts: {exc}"
        ) from exc
