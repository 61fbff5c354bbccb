"""
Retry with exponential backoff for outbound vendor calls
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ..errors import RateLimitError, RetryExhaustedError, TransientError
from ..utils.logging import get_safe_logger

logger = get_safe_logger("chargeback_connectors.retry")


@dataclass
class RetryConfig:
    """Configuration for retry behavior"""
    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 1.0


def is_retryable(exception: BaseException) -> bool:
    """Only transient failures are retried; 4xx and credential errors surface at once."""
    return isinstance(exception, TransientError)


class wait_retry_after:
    """
    Exponential backoff with jitter that defers to a vendor Retry-After hint.
    """

    def __init__(self, config: RetryConfig):
        self.config = config
        self._backoff = wait_exponential(
            multiplier=config.base_delay,
            max=config.max_delay,
            exp_base=config.exponential_base,
        )
        self._jitter = wait_random(0, config.jitter) if config.jitter else None

    def __call__(self, retry_state: RetryCallState) -> float:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exception, RateLimitError) and exception.retry_after is not None:
            return min(float(exception.retry_after), self.config.max_delay)

        delay = self._backoff(retry_state)
        if self._jitter is not None:
            delay += self._jitter(retry_state)
        return min(delay, self.config.max_delay)


def create_async_retrying(config: RetryConfig, service_name: str = "unknown") -> AsyncRetrying:
    """
    Build a tenacity controller for one logical call

    Args:
        config: RetryConfig instance
        service_name: Name of the service for logging
    """

    def log_retry_attempt(retry_state: RetryCallState):
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "retry_attempt",
            service=service_name,
            attempt=retry_state.attempt_number,
            exception=str(exception) if exception else None,
            status_code=getattr(exception, "status_code", None),
            next_sleep=getattr(retry_state.next_action, "sleep", None),
        )

    return AsyncRetrying(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_retry_after(config),
        retry=retry_if_exception(is_retryable),
        before_sleep=log_retry_attempt,
        reraise=True,
    )


async def call_with_retry(
    func: Callable[..., Awaitable[Any]],
    *args,
    config: Optional[RetryConfig] = None,
    service_name: str = "unknown",
    **kwargs,
) -> Any:
    """
    Run ``func`` under the retry policy.

    A transient error that survives every attempt is re-raised as
    RetryExhaustedError; any other error propagates from the first attempt.
    """
    config = config or RetryConfig()
    try:
        async for attempt in create_async_retrying(config, service_name):
            with attempt:
                return await func(*args, **kwargs)
    except TransientError as e:
        logger.error(
            "retry_exhausted",
            service=service_name,
            attempts=config.max_attempts,
            final_exception=str(e),
        )
        raise RetryExhaustedError(
            f"{service_name} failed after {config.max_attempts} attempts: {e}",
            attempts=config.max_attempts,
            last_error=e,
            vendor=e.vendor,
        ) from e
