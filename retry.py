import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from config import get_settings


logger = logging.getLogger(__name__)

T = TypeVar("T")


def exponential_backoff(base_secs: float) -> Callable[[int], float]:
    """Delay after failed attempt ``n`` (1-based): base, 2 * base, 4 * base, ..."""

    def backoff(attempt: int) -> float:
        return base_secs * (2 ** (attempt - 1))

    return backoff


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    backoff: Callable[[int], float]
    retry_on: Callable[[BaseException], bool] = field(default=lambda exc: True)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        settings = get_settings()
        return cls(
            max_attempts=settings.job_max_attempts,
            backoff=exponential_backoff(settings.job_backoff_base_secs),
        )


NO_RETRY = RetryPolicy(max_attempts=1, backoff=lambda attempt: 0.0)


def run_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    name: str,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    def _wait(state: RetryCallState) -> float:
        return policy.backoff(state.attempt_number)

    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            f"retry: job={name} attempt={state.attempt_number} "
            f"next_in={state.next_action.sleep if state.next_action else 0:.1f}s error={exc!r}"
        )

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=_wait,
        retry=retry_if_exception(policy.retry_on),
        before_sleep=_before_sleep,
        sleep=sleep or time.sleep,
        reraise=True,
    )
    return retrying(fn)
