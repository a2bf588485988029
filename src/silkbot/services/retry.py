from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryAttempt:
    attempt: int
    delay_ms: int
    error_type: str


class RetryExhaustedError(RuntimeError):
    """Every attempt produced an unaccepted result."""

    def __init__(self, attempts: int, last_error: Exception | None = None) -> None:
        super().__init__(f"no usable result after {attempts} attempts")
        self.attempts = attempts
        self.last_error = last_error


def retry_fixed(  # noqa: UP047
    fn: Callable[[], T | None],
    *,
    attempts: int,
    delay_seconds: float,
    retry_on_exceptions: Sequence[type[Exception]] = (),
    sleep_fn: Callable[[float], None] | None = None,
    on_retry: Callable[[RetryAttempt], None] | None = None,
    accept: Callable[[T | None], bool] | None = None,
) -> T:
    """Call ``fn`` up to ``attempts`` times with a constant delay between calls.

    A call "fails" when it raises one of ``retry_on_exceptions`` or returns a value that
    ``accept`` rejects (by default ``None``). Other exceptions propagate immediately.
    Raises ``RetryExhaustedError`` when no attempt succeeds.
    """

    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    if delay_seconds < 0:
        raise ValueError("delay_seconds must be >= 0")

    sleep = sleep_fn or time.sleep
    retryable = tuple(retry_on_exceptions)
    is_accepted = accept or (lambda value: value is not None)
    last_error: Exception | None = None

    for attempt in range(1, attempts + 1):
        error_type = "UnacceptedResult"
        try:
            value = fn()
        except Exception as exc:
            if not retryable or not isinstance(exc, retryable):
                raise
            last_error = exc
            error_type = type(exc).__name__
        else:
            if is_accepted(value):
                return value  # type: ignore[return-value]
        if attempt >= attempts:
            break
        if on_retry is not None:
            on_retry(
                RetryAttempt(
                    attempt=attempt,
                    delay_ms=int(delay_seconds * 1000),
                    error_type=error_type,
                )
            )
        sleep(delay_seconds)

    raise RetryExhaustedError(attempts, last_error)
