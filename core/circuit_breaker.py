"""
Circuit Breaker for provider calls

Stops hammering the inference provider while it is down and bounds every
call with a timeout so a hung request can never stall a poll loop.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Failing, requests are rejected immediately
- HALF_OPEN: Testing recovery, limited requests allowed
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior."""
    failure_threshold: int = 5  # Consecutive failures before opening
    recovery_timeout: float = 30.0  # Seconds before trying half-open
    half_open_max_calls: int = 1
    success_threshold: int = 1  # Half-open successes needed to close
    timeout: float = 30.0  # Per-call timeout in seconds
    excluded_exceptions: tuple = ()  # Exceptions that don't count as failures


@dataclass
class CircuitBreakerStats:
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    half_open_calls: int = 0
    state_changed_at: float = field(default_factory=time.time)
    total_calls: int = 0
    total_failures: int = 0


class CircuitBreakerOpen(Exception):
    """Raised when the circuit is open and the call was not attempted."""

    def __init__(self, service_name: str, retry_after: float):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker is OPEN for {service_name}. "
            f"Retry after {retry_after:.1f} seconds."
        )


class CircuitBreaker:
    """
    Usage:
        breaker = CircuitBreaker("runpod")
        result = await breaker.call(fetch, job_id)
    """

    def __init__(self, service_name: str, config: Optional[CircuitBreakerConfig] = None):
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self.stats = CircuitBreakerStats()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self.stats.state

    def _transition_to(self, new_state: CircuitState):
        old_state = self.stats.state
        self.stats.state = new_state
        self.stats.state_changed_at = time.time()

        if new_state == CircuitState.HALF_OPEN:
            self.stats.half_open_calls = 0
            self.stats.success_count = 0

        logger.info(
            f"Circuit breaker [{self.service_name}]: {old_state.value} -> {new_state.value}"
        )

    async def _before_call(self):
        async with self._lock:
            self.stats.total_calls += 1

            if self.stats.state == CircuitState.OPEN:
                elapsed = time.time() - self.stats.state_changed_at
                if elapsed >= self.config.recovery_timeout:
                    self._transition_to(CircuitState.HALF_OPEN)
                else:
                    raise CircuitBreakerOpen(
                        self.service_name, self.config.recovery_timeout - elapsed
                    )

            if self.stats.state == CircuitState.HALF_OPEN:
                if self.stats.half_open_calls >= self.config.half_open_max_calls:
                    raise CircuitBreakerOpen(self.service_name, self.config.recovery_timeout)
                self.stats.half_open_calls += 1

    async def _on_success(self):
        async with self._lock:
            self.stats.success_count += 1
            self.stats.failure_count = 0

            if self.stats.state == CircuitState.HALF_OPEN:
                if self.stats.success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)

    async def _on_failure(self, error: BaseException):
        if isinstance(error, self.config.excluded_exceptions):
            # The service answered; only the request was wrong
            await self._on_success()
            return

        async with self._lock:
            self.stats.failure_count += 1
            self.stats.total_failures += 1

            if self.stats.state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif self.stats.failure_count >= self.config.failure_threshold:
                if self.stats.state == CircuitState.CLOSED:
                    self._transition_to(CircuitState.OPEN)

            logger.warning(
                f"Circuit breaker [{self.service_name}] failure: {error!r}. "
                f"Failure count: {self.stats.failure_count}/{self.config.failure_threshold}"
            )

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Execute a coroutine function with circuit breaker protection.

        Raises:
            CircuitBreakerOpen: If the circuit is open
            asyncio.TimeoutError: If the call exceeds the configured timeout
            Exception: Any exception from the function
        """
        await self._before_call()

        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.config.timeout)
        except Exception as e:
            await self._on_failure(e)
            raise

        await self._on_success()
        return result

    def reset(self):
        """Manually reset the circuit breaker to closed state."""
        self.stats = CircuitBreakerStats()
        logger.info(f"Circuit breaker [{self.service_name}] manually reset")

    def get_status(self) -> dict:
        return {
            "service": self.service_name,
            "state": self.stats.state.value,
            "failure_count": self.stats.failure_count,
            "total_calls": self.stats.total_calls,
            "total_failures": self.stats.total_failures,
            "state_changed_at": self.stats.state_changed_at,
        }


def get_provider_breaker(timeout: float, excluded_exceptions: tuple = ()) -> CircuitBreaker:
    """
    Breaker tuned for the inference provider's job API.

    Job API calls are short (enqueue, status, cancel); the heavy lifting
    happens on the provider's GPUs, so a modest timeout is enough and a
    short recovery window keeps polling responsive after an outage.
    """
    return CircuitBreaker(
        "runpod",
        CircuitBreakerConfig(
            failure_threshold=5,
            recovery_timeout=30.0,
            timeout=timeout,
            excluded_exceptions=excluded_exceptions,
        ),
    )
