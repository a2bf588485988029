from __future__ import annotations

import pytest

from silkbot.services.retry import RetryAttempt, RetryExhaustedError, retry_fixed


class _FlakyError(Exception):
    pass


def test_retry_fixed_returns_first_accepted_value() -> None:
    values = iter([None, None, 7])
    sleeps: list[float] = []

    result = retry_fixed(lambda: next(values), attempts=5, delay_seconds=5, sleep_fn=sleeps.append)

    assert result == 7
    assert sleeps == [5, 5]


def test_retry_fixed_does_not_sleep_after_last_attempt() -> None:
    sleeps: list[float] = []
    retries: list[RetryAttempt] = []

    with pytest.raises(RetryExhaustedError) as exc_info:
        retry_fixed(
            lambda: None,
            attempts=3,
            delay_seconds=1.5,
            sleep_fn=sleeps.append,
            on_retry=retries.append,
        )

    assert exc_info.value.attempts == 3
    assert exc_info.value.last_error is None
    assert sleeps == [1.5, 1.5]
    assert [attempt.attempt for attempt in retries] == [1, 2]
    assert retries[0].delay_ms == 1500
    assert retries[0].error_type == "UnacceptedResult"


def test_retry_fixed_retries_listed_exceptions() -> None:
    calls = {"n": 0}

    def _fn() -> str:
        calls["n"] += 1
        if calls["n"] < 3:
            raise _FlakyError("not yet")
        return "ok"

    retries: list[RetryAttempt] = []
    result = retry_fixed(
        _fn,
        attempts=3,
        delay_seconds=0,
        retry_on_exceptions=(_FlakyError,),
        sleep_fn=lambda _x: None,
        on_retry=retries.append,
    )

    assert result == "ok"
    assert [attempt.error_type for attempt in retries] == ["_FlakyError", "_FlakyError"]


def test_retry_fixed_keeps_last_error_when_exhausted() -> None:
    def _fn() -> None:
        raise _FlakyError("still down")

    with pytest.raises(RetryExhaustedError) as exc_info:
        retry_fixed(
            _fn,
            attempts=2,
            delay_seconds=0,
            retry_on_exceptions=(_FlakyError,),
            sleep_fn=lambda _x: None,
        )

    assert isinstance(exc_info.value.last_error, _FlakyError)


def test_retry_fixed_propagates_unlisted_exceptions_immediately() -> None:
    calls = {"n": 0}

    def _fn() -> None:
        calls["n"] += 1
        raise KeyError("boom")

    with pytest.raises(KeyError):
        retry_fixed(
            _fn,
            attempts=5,
            delay_seconds=0,
            retry_on_exceptions=(_FlakyError,),
            sleep_fn=lambda _x: None,
        )
    assert calls["n"] == 1


def test_retry_fixed_custom_accept_predicate() -> None:
    values = iter([0, 0, 4])

    result = retry_fixed(
        lambda: next(values),
        attempts=3,
        delay_seconds=0,
        sleep_fn=lambda _x: None,
        accept=lambda value: bool(value),
    )

    assert result == 4


@pytest.mark.parametrize(("attempts", "delay"), [(0, 1.0), (1, -1.0)])
def test_retry_fixed_rejects_invalid_arguments(attempts: int, delay: float) -> None:
    with pytest.raises(ValueError):
        retry_fixed(lambda: 1, attempts=attempts, delay_seconds=delay)
