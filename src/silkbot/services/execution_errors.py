from __future__ import annotations

from enum import Enum

import httpx

from silkbot.adapters.chain import BroadcastError, InvalidJsonResponseError, QueryError

INVALID_JSON_MARKER = "invalid json response"


class ExecutionErrorCategory(str, Enum):
    TRANSIENT = "transient"
    DEPENDENT = "dependent"
    INDEPENDENT = "independent"
    REJECTED = "rejected"
    FATAL = "fatal"


class TransientQueryFailure(RuntimeError):
    """A remote query returned malformed data; the run is deferred to the next invocation."""


class DependentStepFailure(RuntimeError):
    """A required step of a plan failed; the rest of the plan is abandoned."""

    def __init__(self, message: str, *, step: str, tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.step = step
        self.tx_hash = tx_hash


class IndependentStepFailure(RuntimeError):
    """A non-blocking step failed; later independent steps still run."""

    def __init__(self, message: str, *, step: str, tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.step = step
        self.tx_hash = tx_hash


class FatalFailure(RuntimeError):
    """Unclassified or unrecoverable failure that terminates the run."""


def is_transient_query_error(exc: BaseException) -> bool:
    if isinstance(exc, InvalidJsonResponseError):
        return True
    return isinstance(exc, QueryError) and INVALID_JSON_MARKER in str(exc).casefold()


def classify_chain_error(exc: BaseException) -> ExecutionErrorCategory:
    if isinstance(exc, TransientQueryFailure) or is_transient_query_error(exc):
        return ExecutionErrorCategory.TRANSIENT
    if isinstance(exc, DependentStepFailure):
        return ExecutionErrorCategory.DEPENDENT
    if isinstance(exc, IndependentStepFailure):
        return ExecutionErrorCategory.INDEPENDENT
    if isinstance(exc, httpx.TimeoutException | httpx.NetworkError):
        return ExecutionErrorCategory.TRANSIENT
    if isinstance(exc, BroadcastError | httpx.HTTPError):
        return ExecutionErrorCategory.REJECTED
    return ExecutionErrorCategory.FATAL
