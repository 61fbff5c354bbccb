"""
Circuit breaker for outbound vendor calls

State is process-local and owned by a single adapter instance. While OPEN
every call fails with CircuitOpenError before any network I/O; once the
cooldown elapses exactly one HALF_OPEN probe is admitted.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from pydantic import BaseModel

from ..errors import CircuitOpenError, RetryExhaustedError, TransientError
from ..utils.logging import get_safe_logger

logger = get_safe_logger("chargeback_connectors.circuit_breaker")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration"""
    failure_threshold: int = 5
    recovery_timeout: float = 30.0  # seconds
    expected_exception: Tuple[Type[BaseException], ...] = (TransientError, RetryExhaustedError)
    name: Optional[str] = None


class CircuitBreakerStats(BaseModel):
    """Circuit breaker statistics"""
    name: str
    state: CircuitState
    failure_count: int
    last_failure_time: Optional[datetime]
    total_requests: int
    total_failures: int
    total_successes: int
    total_rejections: int
    next_attempt_time: Optional[datetime]


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker with a single half-open probe

    Only exceptions listed in ``expected_exception`` count as failures.
    Anything else propagates without counting. An error carrying an HTTP status
    (a 404, a 422) means the vendor answered, so it ends the consecutive-failure
    run the way a success does; errors raised before any response (local
    validation) leave the count as it is.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self.name = self.config.name or f"circuit_{id(self)}"
        self._clock = clock
        self._lock = asyncio.Lock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[float] = None
        self._last_failure_wall: Optional[datetime] = None
        self._probe_in_flight = False

        self._total_requests = 0
        self._total_failures = 0
        self._total_successes = 0
        self._total_rejections = 0

        logger.debug(
            "circuit_breaker_created",
            name=self.name,
            failure_threshold=self.config.failure_threshold,
            recovery_timeout=self.config.recovery_timeout,
        )

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _cooldown_remaining(self) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self.config.recovery_timeout - (self._clock() - self._opened_at))

    def _next_attempt_time(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=self._cooldown_remaining())

    def _set_state(self, state: CircuitState):
        if state != self._state:
            logger.info(
                "circuit_breaker_state_changed",
                name=self.name,
                from_state=self._state.value,
                to_state=state.value,
            )
        self._state = state

    async def _admit(self) -> bool:
        """Admit or reject a call. Returns True when the call is the half-open probe."""
        async with self._lock:
            self._total_requests += 1

            if self._state == CircuitState.CLOSED:
                return False

            if self._state == CircuitState.OPEN and self._cooldown_remaining() <= 0:
                self._set_state(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN and not self._probe_in_flight:
                self._probe_in_flight = True
                logger.info("circuit_breaker_probe_admitted", name=self.name)
                return True

            self._total_rejections += 1
            raise CircuitOpenError(self.name, self._next_attempt_time())

    async def _on_success(self, probe: bool):
        async with self._lock:
            self._total_successes += 1
            self._failure_count = 0
            if probe:
                self._probe_in_flight = False
                self._opened_at = None
                self._set_state(CircuitState.CLOSED)
                logger.info("circuit_breaker_closed", name=self.name)

    async def _on_failure(self, exception: BaseException, probe: bool):
        async with self._lock:
            self._total_failures += 1
            self._failure_count += 1
            self._last_failure_wall = datetime.now(timezone.utc)

            if probe:
                self._probe_in_flight = False
                self._opened_at = self._clock()
                self._set_state(CircuitState.OPEN)
                logger.warning("circuit_breaker_reopened", name=self.name, exception=str(exception))
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.config.failure_threshold
            ):
                self._opened_at = self._clock()
                self._set_state(CircuitState.OPEN)
                logger.warning(
                    "circuit_breaker_opened",
                    name=self.name,
                    failure_count=self._failure_count,
                    exception=str(exception),
                )

    async def _on_vendor_answer(self):
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                self._failure_count = 0

    async def _release_probe(self):
        async with self._lock:
            self._probe_in_flight = False

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Execute ``func`` with circuit breaker protection
        """
        probe = await self._admit()
        try:
            result = await func(*args, **kwargs)
        except self.config.expected_exception as e:
            await self._on_failure(e, probe)
            raise
        except BaseException as e:
            # Not a dependency failure; a probe slot must still be freed
            if probe:
                await self._release_probe()
            if isinstance(e, Exception):
                logger.debug("circuit_breaker_unexpected_error", name=self.name, error=str(e))
                if getattr(e, "status_code", None) is not None:
                    await self._on_vendor_answer()
            raise
        await self._on_success(probe)
        return result

    def get_stats(self) -> CircuitBreakerStats:
        """Get current circuit breaker statistics"""
        return CircuitBreakerStats(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            last_failure_time=self._last_failure_wall,
            total_requests=self._total_requests,
            total_failures=self._total_failures,
            total_successes=self._total_successes,
            total_rejections=self._total_rejections,
            next_attempt_time=self._next_attempt_time() if self._state == CircuitState.OPEN else None,
        )

    async def reset(self):
        """Reset circuit breaker to closed state"""
        async with self._lock:
            self._set_state(CircuitState.CLOSED)
            self._failure_count = 0
            self._opened_at = None
            self._probe_in_flight = False
        logger.info("circuit_breaker_reset", name=self.name)
