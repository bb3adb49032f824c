"""Bounded fixed-delay retry helper for coroutine calls."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]
FailureHook = Callable[[int, Exception], None]


class RetryExhaustedError(Exception):
    """Raised once every attempt allowed by a :class:`RetryPolicy` has failed."""

    def __init__(self, attempts: int, last_error: Exception) -> None:
        super().__init__(f"gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry policy.

    ``max_attempts`` counts every call, including the first one.
    """

    max_attempts: int = 3
    delay_ms: int = 5000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"Invalid max_attempts; expected >=1 but got {self.max_attempts}")
        if self.delay_ms < 0:
            raise ValueError(f"Invalid delay_ms; expected >=0 but got {self.delay_ms}")

    @property
    def delay_seconds(self) -> float:
        return self.delay_ms / 1000.0


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: SleepFn = asyncio.sleep,
    on_failure: Optional[FailureHook] = None,
) -> T:
    """Await ``fn()`` until it succeeds or the policy runs out of attempts.

    :param fn: Zero-argument coroutine factory; called once per attempt.
    :param policy: Attempt count and delay between attempts.
    :param sleep: Awaitable sleep used between attempts (injectable for tests).
    :param on_failure: Optional hook called with ``(attempt, exc)`` after each failure.
    :return: The value produced by the first successful attempt.
    :raises RetryExhaustedError: If every attempt raised.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as exc:
            if on_failure is not None:
                on_failure(attempt, exc)
            if attempt >= policy.max_attempts:
                raise RetryExhaustedError(attempt, exc) from exc
        await sleep(policy.delay_seconds)
