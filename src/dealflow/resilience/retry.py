"""Resilient API call decorator with tenacity retry and error notification.

Retries with exponential backoff and jitter, logs a warning before each
retry, and reports the final failure to an optional notifier before the
original exception is re-raised.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Any])


class ErrorNotifier(Protocol):
    """Anything that can tell a human an external call kept failing."""

    def post_error(self, api_name: str, attempts: int, error: str) -> None: ...


def _before_sleep_log(retry_state: RetryCallState) -> None:
    """Log a warning before each retry attempt.

    Args:
        retry_state: Tenacity retry state with attempt info.
    """
    api_name = getattr(retry_state.fn, "_api_name", "unknown") if retry_state.fn else "unknown"
    logger.warning(
        "Retrying API call",
        api_name=api_name,
        attempt=retry_state.attempt_number,
        wait=retry_state.next_action.sleep if retry_state.next_action else 0,
    )


def _final_failure_handler(
    api_name: str, notifier: ErrorNotifier | None
) -> Callable[[RetryCallState], Any]:
    def handle(retry_state: RetryCallState) -> Any:
        outcome = retry_state.outcome
        if outcome is None:
            raise RuntimeError(f"{api_name} gave up before any attempt completed")
        exception = outcome.exception()
        logger.error(
            "API call failed after all retries",
            api_name=api_name,
            attempts=retry_state.attempt_number,
            exception=str(exception),
        )
        if notifier is not None:
            try:
                notifier.post_error(api_name, retry_state.attempt_number, str(exception))
            except Exception:
                logger.exception("Failed to send error notification")
        # Re-raise the last exception; tenacity would otherwise return None.
        return outcome.result()

    return handle


def resilient_api_call(
    api_name: str,
    *,
    attempts: int = 3,
    initial_wait: float = 1,
    max_wait: float = 30,
    jitter: float = 5,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    notifier: ErrorNotifier | None = None,
) -> Callable[[F], F]:
    """Create a retry decorator for an API call.

    Returns a tenacity retry decorator configured with:
    - *attempts* attempts maximum
    - Exponential backoff with jitter (*initial_wait* initial, *max_wait* max)
    - Retries only for exceptions in *retry_on*
    - Warning log before each retry
    - Notifier call on final failure
    - Original exception re-raised after exhaustion

    Args:
        api_name: Human-readable name for the API (used in logs and alerts).
        attempts: Maximum number of attempts, including the first.
        initial_wait: First backoff interval in seconds.
        max_wait: Upper bound for any single backoff interval.
        jitter: Maximum random jitter added to each interval.
        retry_on: Exception types that trigger another attempt.
        notifier: Optional sink for the final-failure alert.

    Returns:
        A decorator that wraps the function with retry logic.
    """

    def decorator(func: F) -> F:
        # Store api_name on function for before_sleep_log access
        func._api_name = api_name  # type: ignore[attr-defined]

        wrapped = retry(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential_jitter(initial=initial_wait, max=max_wait, jitter=jitter),
            retry=retry_if_exception_type(retry_on),
            before_sleep=_before_sleep_log,
            retry_error_callback=_final_failure_handler(api_name, notifier),
            reraise=True,
        )(func)

        return wrapped  # type: ignore[return-value]

    return decorator
