from __future__ import annotations

import httpx

from silkbot.adapters.chain import BroadcastError, InvalidJsonResponseError, QueryError
from silkbot.services.execution_errors import (
    DependentStepFailure,
    ExecutionErrorCategory,
    IndependentStepFailure,
    TransientQueryFailure,
    classify_chain_error,
    is_transient_query_error,
)


def test_invalid_json_query_errors_are_transient() -> None:
    assert is_transient_query_error(InvalidJsonResponseError("bad body"))
    assert is_transient_query_error(QueryError("upstream: Invalid JSON response from node"))
    assert not is_transient_query_error(QueryError("contract not found"))


def test_classify_chain_error_categories() -> None:
    request = httpx.Request("POST", "https://gateway.test/query/batch")

    assert classify_chain_error(TransientQueryFailure("x")) is ExecutionErrorCategory.TRANSIENT
    assert classify_chain_error(InvalidJsonResponseError("x")) is ExecutionErrorCategory.TRANSIENT
    assert (
        classify_chain_error(httpx.ReadTimeout("slow", request=request))
        is ExecutionErrorCategory.TRANSIENT
    )
    assert (
        classify_chain_error(DependentStepFailure("claim", step="claim"))
        is ExecutionErrorCategory.DEPENDENT
    )
    assert (
        classify_chain_error(IndependentStepFailure("swap", step="swap"))
        is ExecutionErrorCategory.INDEPENDENT
    )
    assert (
        classify_chain_error(BroadcastError("signer offline", status_code=500))
        is ExecutionErrorCategory.REJECTED
    )
    response = httpx.Response(401, request=request)
    assert (
        classify_chain_error(httpx.HTTPStatusError("denied", request=request, response=response))
        is ExecutionErrorCategory.REJECTED
    )
    assert classify_chain_error(QueryError("contract not found")) is ExecutionErrorCategory.FATAL
    assert classify_chain_error(KeyError("x")) is ExecutionErrorCategory.FATAL


def test_step_failures_carry_step_and_hash() -> None:
    exc = DependentStepFailure("claim failed", step="claim", tx_hash="ABC")

    assert exc.step == "claim"
    assert exc.tx_hash == "ABC"
    assert str(exc) == "claim failed"
