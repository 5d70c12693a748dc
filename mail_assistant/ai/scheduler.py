"""Admission control for provider calls: concurrency ceiling, timeouts and transient retry."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from mail_assistant.ai.providers.base import ProviderTransportError
from mail_assistant.config import AISettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BACKOFF_BASE_SECONDS = 1.0
_BACKOFF_CAP_SECONDS = 10.0


class RequestTimeoutError(Exception):
    """A scheduled call exceeded its class timeout.

    The caller stops waiting; the remote request is not guaranteed to be aborted.
    """


class CallClass(str, Enum):
    GENERATE = "generate"
    ACTIONS = "actions"


#: Failures worth another attempt. Auth, validation and rate-limit errors are not.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    ProviderTransportError,
    RequestTimeoutError,
    ConnectionError,
    OSError,
)


class RequestScheduler:
    """Runs provider calls under one global concurrency ceiling.

    A call holds its slot for every attempt, so retries never jump the queue.
    Waiters are admitted in arrival order.

    Usage::

        scheduler = RequestScheduler(max_concurrency=2)
        text = await scheduler.run(lambda: provider.generate(system, user))
    """

    def __init__(
        self,
        max_concurrency: int = 2,
        timeouts: dict[CallClass, float] | None = None,
        max_attempts: int = 3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._max_concurrency = max_concurrency
        self._timeouts = {CallClass.GENERATE: 60.0, CallClass.ACTIONS: 90.0}
        self._timeouts.update(timeouts or {})
        self._max_attempts = max(max_attempts, 1)
        self._sleep = sleep
        self._in_flight = 0
        self._queued = 0

    @classmethod
    def from_settings(cls, settings: AISettings) -> RequestScheduler:
        return cls(
            max_concurrency=settings.max_concurrency,
            timeouts={
                CallClass.GENERATE: settings.timeout_seconds,
                CallClass.ACTIONS: settings.action_timeout_seconds,
            },
            max_attempts=settings.max_attempts,
        )

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def queued(self) -> int:
        return self._queued

    def timeout_for(self, call_class: CallClass) -> float:
        return self._timeouts[call_class]

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        call_class: CallClass = CallClass.GENERATE,
    ) -> T:
        """Run ``operation`` (a zero-argument coroutine factory) with admission control.

        Raises:
            RequestTimeoutError: every attempt timed out.
            Exception: the last transient error, or the first non-transient one.
        """
        self._queued += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._queued -= 1

        self._in_flight += 1
        try:
            return await self._attempt(operation, call_class)
        finally:
            self._in_flight -= 1
            self._semaphore.release()

    async def _attempt(
        self, operation: Callable[[], Awaitable[T]], call_class: CallClass
    ) -> T:
        timeout = self._timeouts[call_class]
        for attempt in range(1, self._max_attempts + 1):
            try:
                try:
                    return await asyncio.wait_for(operation(), timeout=timeout)
                except asyncio.TimeoutError as exc:
                    raise RequestTimeoutError(
                        f"{call_class.value} call timed out after {timeout:g}s"
                    ) from exc
            except TRANSIENT_ERRORS as exc:
                if attempt >= self._max_attempts:
                    logger.error(
                        "%s call failed after %d attempt(s): %s",
                        call_class.value,
                        attempt,
                        exc,
                    )
                    raise
                delay = min(_BACKOFF_BASE_SECONDS * 2 ** (attempt - 1), _BACKOFF_CAP_SECONDS)
                logger.warning(
                    "%s call failed (attempt %d/%d): %s; retrying in %.0fs",
                    call_class.value,
                    attempt,
                    self._max_attempts,
                    exc,
                    delay,
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")
