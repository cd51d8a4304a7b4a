"""Retry, backoff and shared cooldown for calls to the generative service.

One :class:`RequestGovernor` guards one external dependency. Every caller that
needs generated content hands it a zero-argument coroutine factory; the
governor retries throttled or flaky attempts with exponential backoff and,
once the dependency reports that its quota is exhausted, short-circuits all
callers until a fixed cooldown window has elapsed.

The governor is meant to be driven from a single asyncio event loop.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Generic, Optional, TypeVar

import openai
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY_SECONDS = 5.0
DEFAULT_COOLDOWN_SECONDS = 15 * 60

_QUOTA_ERROR_CODES = {"insufficient_quota", "billing_hard_limit_reached"}
_QUOTA_MESSAGE_MARKERS = ("insufficient_quota", "exceeded your current quota")


class FailureKind(str, enum.Enum):
    """Classification of a failed call."""

    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    QUOTA_EXHAUSTED_SIGNAL = "quota_exhausted_signal"
    QUOTA_EXHAUSTED = "quota_exhausted"

    @property
    def is_quota(self) -> bool:
        return self in (FailureKind.QUOTA_EXHAUSTED_SIGNAL, FailureKind.QUOTA_EXHAUSTED)


@dataclass(slots=True)
class GovernorFailure:
    """Typed failure returned by :meth:`RequestGovernor.execute`."""

    kind: FailureKind
    error: Optional[BaseException] = None
    attempts: int = 0


class GovernorError(RuntimeError):
    """Raised by :meth:`GovernorResult.unwrap` when the call failed."""

    def __init__(self, failure: GovernorFailure) -> None:
        detail = f": {failure.error}" if failure.error is not None else ""
        super().__init__(f"Request failed ({failure.kind.value}) after {failure.attempts} attempt(s){detail}")
        self.failure = failure


@dataclass
class GovernorResult(Generic[T]):
    """Either the operation's value or a :class:`GovernorFailure`."""

    value: Optional[T] = None
    failure: Optional[GovernorFailure] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.failure is None

    def unwrap(self) -> T:
        if self.failure is not None:
            raise GovernorError(self.failure)
        return self.value  # type: ignore[return-value]


@dataclass(slots=True)
class GovernorState:
    """Cooldown status of the guarded dependency."""

    quota_exhausted: bool = False
    cooldown_ends_at: Optional[datetime] = None


def classify_openai_error(exc: BaseException) -> FailureKind:
    """Map an exception raised by the OpenAI client to a :class:`FailureKind`."""
    is_throttled = isinstance(exc, openai.RateLimitError) or (
        isinstance(exc, openai.APIStatusError) and exc.status_code == 429
    )
    if not is_throttled:
        return FailureKind.TRANSIENT
    if _signals_quota_exhaustion(exc):
        return FailureKind.QUOTA_EXHAUSTED_SIGNAL
    return FailureKind.RATE_LIMITED


def _signals_quota_exhaustion(exc: BaseException) -> bool:
    codes = [getattr(exc, "code", None), getattr(exc, "type", None)]
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            codes.extend([error.get("code"), error.get("type")])
    if any(code in _QUOTA_ERROR_CODES for code in codes if isinstance(code, str)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _QUOTA_MESSAGE_MARKERS)


class RequestGovernor:
    """Guards a rate-limited dependency with retries and a global cooldown."""

    def __init__(
        self,
        *,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS,
        classifier: Callable[[BaseException], FailureKind] = classify_openai_error,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        clock: Optional[Callable[[], datetime]] = None,
        name: str = "openai",
    ) -> None:
        if cooldown_seconds <= 0:
            raise ValueError("cooldown_seconds must be positive.")
        _check_retry_settings(max_retries, initial_delay)
        self._cooldown_seconds = cooldown_seconds
        self._max_retries = max_retries
        self._initial_delay = initial_delay
        self._classifier = classifier
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._name = name
        self._state = GovernorState()
        self._cooldown_handle: Optional[asyncio.TimerHandle] = None

    @property
    def state(self) -> GovernorState:
        """Snapshot of the current cooldown state."""
        self.is_cooling_down()
        return replace(self._state)

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown_seconds

    def is_cooling_down(self) -> bool:
        """Return whether calls are currently short-circuited."""
        ends_at = self._state.cooldown_ends_at
        if self._state.quota_exhausted and ends_at is not None and self._clock() >= ends_at:
            self._clear_cooldown()
        return self._state.quota_exhausted

    def start_cooldown(self) -> None:
        """Enter the cooldown window, replacing any window already running."""
        if self._cooldown_handle is not None:
            self._cooldown_handle.cancel()
            self._cooldown_handle = None

        self._state.quota_exhausted = True
        self._state.cooldown_ends_at = self._clock() + timedelta(seconds=self._cooldown_seconds)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            self._cooldown_handle = loop.call_later(self._cooldown_seconds, self._clear_cooldown)

        LOGGER.warning(
            "%s quota exhausted; pausing all requests until %s.",
            self._name,
            self._state.cooldown_ends_at.isoformat(),
        )

    def _clear_cooldown(self) -> None:
        if self._cooldown_handle is not None:
            self._cooldown_handle.cancel()
            self._cooldown_handle = None
        if self._state.quota_exhausted:
            LOGGER.info("%s cooldown finished; requests are allowed again.", self._name)
        self._state.quota_exhausted = False
        self._state.cooldown_ends_at = None

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        initial_delay: Optional[float] = None,
    ) -> GovernorResult[T]:
        """Run ``operation`` with retries, returning its value or a typed failure.

        ``operation`` performs one network call per invocation and signals
        errors by raising. Quota exhaustion is never retried and starts the
        shared cooldown; rate limiting and other errors are retried after
        ``initial_delay`` seconds, doubling each time, up to ``max_retries``
        extra attempts. Cancelling the awaiting task stops further attempts.
        """
        retries = self._max_retries if max_retries is None else max_retries
        delay = self._initial_delay if initial_delay is None else initial_delay
        _check_retry_settings(retries, delay)

        if self.is_cooling_down():
            LOGGER.info("Skipping %s request: cooldown active until %s.", self._name, self._state.cooldown_ends_at)
            return GovernorResult(failure=GovernorFailure(FailureKind.QUOTA_EXHAUSTED))

        retrying = AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=wait_exponential(multiplier=delay, exp_base=2),
            retry=retry_if_exception(self._is_retryable),
            sleep=self._sleep,
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
            reraise=True,
        )

        attempts = 0
        last_error: Optional[BaseException] = None
        try:
            async for attempt in retrying:
                # Another caller may have hit the quota while this one waited.
                if attempts and self.is_cooling_down():
                    return GovernorResult(
                        failure=GovernorFailure(FailureKind.QUOTA_EXHAUSTED, last_error, attempts),
                        attempts=attempts,
                    )
                attempts = attempt.retry_state.attempt_number
                with attempt:
                    return GovernorResult(value=await operation(), attempts=attempts)
                last_error = attempt.retry_state.outcome.exception()
        except Exception as exc:
            kind = self._classifier(exc)
            if kind is FailureKind.QUOTA_EXHAUSTED_SIGNAL:
                self.start_cooldown()
            else:
                LOGGER.warning(
                    "%s request failed after %s attempt(s) (%s): %s",
                    self._name,
                    attempts,
                    kind.value,
                    exc,
                )
            return GovernorResult(failure=GovernorFailure(kind, exc, attempts), attempts=attempts)

        raise AssertionError("retry loop ended without an outcome")

    def _is_retryable(self, error: BaseException) -> bool:
        # CancelledError and other BaseExceptions propagate untouched.
        if not isinstance(error, Exception):
            return False
        return self._classifier(error) is not FailureKind.QUOTA_EXHAUSTED_SIGNAL


def _check_retry_settings(max_retries: int, initial_delay: float) -> None:
    if max_retries < 0:
        raise ValueError("max_retries must be zero or greater.")
    if initial_delay < 0:
        raise ValueError("initial_delay must be zero or greater.")
