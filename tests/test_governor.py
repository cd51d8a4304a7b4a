from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import List

import httpx
import openai
import pytest

from src.services.governor import (
    FailureKind,
    GovernorError,
    RequestGovernor,
    classify_openai_error,
)


QUOTA_BODY = {
    "message": "You exceeded your current quota, please check your plan and billing details.",
    "type": "insufficient_quota",
    "code": "insufficient_quota",
}
THROTTLE_BODY = {
    "message": "Rate limit reached for requests per min.",
    "type": "requests",
    "code": "rate_limit_exceeded",
}


def _status_error(cls: type, status: int, body: object) -> openai.APIStatusError:
    request = httpx.Request("POST", "https://api.openai.com/v1/responses")
    response = httpx.Response(status, request=request)
    return cls("request failed", response=response, body=body)


class _RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class _FailingOperation:
    """Raises the queued errors in order, then returns ``result``."""

    def __init__(self, *errors: BaseException, result: object = "ok") -> None:
        self._errors = list(errors)
        self._result = result
        self.calls = 0

    async def __call__(self) -> object:
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return self._result


class _FrozenClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def _governor(sleep: _RecordingSleep, **kwargs: object) -> RequestGovernor:
    options = {"max_retries": 3, "initial_delay": 1.0, "sleep": sleep}
    options.update(kwargs)
    return RequestGovernor(**options)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_success_returns_value_without_waiting() -> None:
    sleep = _RecordingSleep()
    governor = _governor(sleep)
    operation = _FailingOperation(result={"translation": "дом"})

    result = await governor.execute(operation)

    assert result.ok is True
    assert result.value == {"translation": "дом"}
    assert result.attempts == 1
    assert result.unwrap() == {"translation": "дом"}
    assert operation.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_transient_failures_back_off_exponentially_then_give_up() -> None:
    sleep = _RecordingSleep()
    governor = _governor(sleep)
    errors = [RuntimeError(f"boom {index}") for index in range(4)]
    operation = _FailingOperation(*errors)

    result = await governor.execute(operation)

    assert result.ok is False
    assert result.failure.kind is FailureKind.TRANSIENT
    assert result.failure.error is errors[-1]
    assert result.failure.attempts == 4
    assert operation.calls == 4
    assert sleep.delays == [1.0, 2.0, 4.0]
    assert governor.is_cooling_down() is False
    with pytest.raises(GovernorError) as excinfo:
        result.unwrap()
    assert excinfo.value.failure is result.failure


@pytest.mark.asyncio
async def test_call_level_retry_settings_override_defaults() -> None:
    sleep = _RecordingSleep()
    governor = _governor(sleep)
    operation = _FailingOperation(*[ValueError("bad json") for _ in range(3)])

    result = await governor.execute(operation, max_retries=2, initial_delay=5.0)

    assert result.failure.attempts == 3
    assert sleep.delays == [5.0, 10.0]


@pytest.mark.asyncio
async def test_recovers_after_rate_limiting() -> None:
    sleep = _RecordingSleep()
    governor = _governor(sleep)
    operation = _FailingOperation(
        _status_error(openai.RateLimitError, 429, THROTTLE_BODY),
        _status_error(openai.RateLimitError, 429, THROTTLE_BODY),
        result="example",
    )

    result = await governor.execute(operation)

    assert result.ok is True
    assert result.value == "example"
    assert result.attempts == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_exhausted_retries_do_not_start_cooldown() -> None:
    sleep = _RecordingSleep()
    governor = _governor(sleep, max_retries=1)
    operation = _FailingOperation(
        *[_status_error(openai.RateLimitError, 429, THROTTLE_BODY) for _ in range(2)]
    )

    result = await governor.execute(operation)

    assert result.failure.kind is FailureKind.RATE_LIMITED
    assert governor.is_cooling_down() is False
    assert governor.state.cooldown_ends_at is None


@pytest.mark.asyncio
async def test_quota_signal_is_not_retried_and_starts_cooldown() -> None:
    sleep = _RecordingSleep()
    clock = _FrozenClock()
    governor = _governor(sleep, clock=clock, cooldown_seconds=900)
    quota_error = _status_error(openai.RateLimitError, 429, QUOTA_BODY)
    operation = _FailingOperation(quota_error, result="never")

    result = await governor.execute(operation)

    assert operation.calls == 1
    assert sleep.delays == []
    assert result.failure.kind is FailureKind.QUOTA_EXHAUSTED_SIGNAL
    assert result.failure.error is quota_error
    assert governor.is_cooling_down() is True
    assert governor.state.cooldown_ends_at == clock.now + timedelta(seconds=900)


@pytest.mark.asyncio
async def test_quota_signal_after_a_retry_stops_the_backoff() -> None:
    sleep = _RecordingSleep()
    governor = _governor(sleep)
    operation = _FailingOperation(
        _status_error(openai.RateLimitError, 429, THROTTLE_BODY),
        _status_error(openai.RateLimitError, 429, QUOTA_BODY),
        result="never",
    )

    result = await governor.execute(operation)

    assert operation.calls == 2
    assert sleep.delays == [1.0]
    assert result.failure.kind is FailureKind.QUOTA_EXHAUSTED_SIGNAL
    assert result.failure.attempts == 2
    assert governor.is_cooling_down() is True


@pytest.mark.asyncio
async def test_each_retry_is_logged_before_sleeping(caplog: pytest.LogCaptureFixture) -> None:
    sleep = _RecordingSleep()
    governor = _governor(sleep, max_retries=2)
    operation = _FailingOperation(RuntimeError("flaky"), RuntimeError("flaky"), result="ok")

    with caplog.at_level(logging.WARNING, logger="src.services.governor"):
        result = await governor.execute(operation)

    assert result.ok is True
    retries = [record for record in caplog.records if record.getMessage().startswith("Retrying")]
    assert len(retries) == 2
    assert all(record.levelno == logging.WARNING for record in retries)

@pytest.mark.asyncio
async def test_cooldown_short_circuits_unrelated_callers() -> None:
    sleep = _RecordingSleep()
    governor = _governor(sleep)
    await governor.execute(_FailingOperation(_status_error(openai.RateLimitError, 429, QUOTA_BODY)))

    unrelated = _FailingOperation(result="value")
    result = await governor.execute(unrelated)

    assert unrelated.calls == 0
    assert result.ok is False
    assert result.failure.kind is FailureKind.QUOTA_EXHAUSTED
    assert result.failure.kind.is_quota is True
    assert result.failure.attempts == 0


@pytest.mark.asyncio
async def test_cooldown_is_cleared_by_timer() -> None:
    governor = RequestGovernor(cooldown_seconds=0.05, clock=_FrozenClock())

    governor.start_cooldown()
    assert governor.is_cooling_down() is True

    await asyncio.sleep(0.2)

    assert governor.is_cooling_down() is False
    assert governor.state.cooldown_ends_at is None
    result = await governor.execute(_FailingOperation(result="back"))
    assert result.value == "back"


def test_cooldown_expires_by_wall_clock_without_running_loop() -> None:
    clock = _FrozenClock()
    governor = RequestGovernor(cooldown_seconds=60, clock=clock)

    governor.start_cooldown()
    clock.now += timedelta(seconds=59)
    assert governor.is_cooling_down() is True

    clock.now += timedelta(seconds=1)
    assert governor.is_cooling_down() is False


@pytest.mark.asyncio
async def test_restarting_cooldown_replaces_the_running_timer() -> None:
    clock = _FrozenClock()
    governor = RequestGovernor(cooldown_seconds=900, clock=clock)

    governor.start_cooldown()
    first_handle = governor._cooldown_handle
    clock.now += timedelta(minutes=10)
    governor.start_cooldown()

    assert first_handle is not None and first_handle.cancelled() is True
    assert governor._cooldown_handle is not first_handle
    assert governor.state.cooldown_ends_at == clock.now + timedelta(seconds=900)
    assert governor.is_cooling_down() is True


@pytest.mark.asyncio
async def test_concurrent_quota_signals_leave_one_clean_cooldown() -> None:
    clock = _FrozenClock()
    governor = RequestGovernor(cooldown_seconds=900, clock=clock, sleep=_RecordingSleep())

    first, second = await asyncio.gather(
        governor.execute(_FailingOperation(_status_error(openai.RateLimitError, 429, QUOTA_BODY))),
        governor.execute(_FailingOperation(_status_error(openai.RateLimitError, 429, QUOTA_BODY))),
    )

    kinds = {first.failure.kind, second.failure.kind}
    assert kinds <= {FailureKind.QUOTA_EXHAUSTED_SIGNAL, FailureKind.QUOTA_EXHAUSTED}
    assert governor.is_cooling_down() is True
    assert governor.state.cooldown_ends_at == clock.now + timedelta(seconds=900)


@pytest.mark.asyncio
async def test_retry_stops_when_another_caller_started_cooldown() -> None:
    governor: RequestGovernor

    async def sleep_while_quota_runs_out(delay: float) -> None:
        governor.start_cooldown()

    governor = RequestGovernor(max_retries=3, initial_delay=1.0, sleep=sleep_while_quota_runs_out)
    operation = _FailingOperation(RuntimeError("flaky"), result="late")

    result = await governor.execute(operation)

    assert operation.calls == 1
    assert result.failure.kind is FailureKind.QUOTA_EXHAUSTED


@pytest.mark.asyncio
async def test_cancelling_the_caller_stops_retries() -> None:
    governor = RequestGovernor(max_retries=5, initial_delay=30.0)
    operation = _FailingOperation(*[RuntimeError("down") for _ in range(6)])

    task = asyncio.create_task(governor.execute(operation))
    while operation.calls == 0:
        await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert operation.calls == 1


def test_invalid_configuration_is_rejected() -> None:
    with pytest.raises(ValueError):
        RequestGovernor(cooldown_seconds=0)
    with pytest.raises(ValueError):
        RequestGovernor(max_retries=-1)
    with pytest.raises(ValueError):
        RequestGovernor(initial_delay=-1.0)


def test_classify_openai_errors() -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/responses")

    assert (
        classify_openai_error(_status_error(openai.RateLimitError, 429, QUOTA_BODY))
        is FailureKind.QUOTA_EXHAUSTED_SIGNAL
    )
    assert (
        classify_openai_error(_status_error(openai.RateLimitError, 429, {"error": QUOTA_BODY}))
        is FailureKind.QUOTA_EXHAUSTED_SIGNAL
    )
    assert (
        classify_openai_error(_status_error(openai.RateLimitError, 429, THROTTLE_BODY))
        is FailureKind.RATE_LIMITED
    )
    assert (
        classify_openai_error(_status_error(openai.InternalServerError, 500, None))
        is FailureKind.TRANSIENT
    )
    assert classify_openai_error(openai.APIConnectionError(request=request)) is FailureKind.TRANSIENT
    assert classify_openai_error(ValueError("malformed")) is FailureKind.TRANSIENT
