from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from silkbot.adapters.chain import (
    BatchQuery,
    BroadcastError,
    InvalidJsonResponseError,
    QueryError,
)
from silkbot.adapters.chain_gateway import GatewayChainClient
from silkbot.domain.actions import ContractCall
from silkbot.domain.models import ContractRef, decode_b64_json, encode_json_b64

BATCH = ContractRef("secret1batch", "batch-hash")
POOL = ContractRef("secret1pool", "pool-hash")


def _client(handler, **kwargs) -> GatewayChainClient:
    return GatewayChainClient(
        "http://gateway.test",
        sender="secret1wallet",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_batch_query_encodes_ids_and_parses_responses() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "batch": {
                    "block_height": 123,
                    "responses": [
                        {
                            "id": encode_json_b64("poolInfo"),
                            "contract": BATCH.as_wire(),
                            "response": {"response": encode_json_b64({"ok": 1})},
                        },
                        {
                            "id": encode_json_b64("moneyMarket"),
                            "contract": BATCH.as_wire(),
                            "response": {"system_err": "out of gas"},
                        },
                    ],
                }
            },
        )

    client = _client(handler)
    result = client.batch_query(
        BATCH, [BatchQuery(id="poolInfo", contract=POOL, query={"get_pool_info": {}})]
    )

    assert seen["path"] == "/query/batch"
    body = seen["body"]
    assert body["contract"] == {"address": "secret1batch", "code_hash": "batch-hash"}
    wire = body["query"]["batch"]["queries"][0]
    assert decode_b64_json(wire["id"]) == "poolInfo"
    assert decode_b64_json(wire["query"]) == {"get_pool_info": {}}
    assert result is not None
    assert result.block_height == 123
    first, second = result.responses
    assert decode_b64_json(first.response) == {"ok": 1}
    assert second.response is None
    assert "out of gas" in second.error


def test_batch_query_unexpected_body_returns_none() -> None:
    client = _client(lambda request: httpx.Response(200, json={"something": "else"}))

    assert client.batch_query(BATCH, []) is None


def test_invalid_json_body_raises_transient_error() -> None:
    client = _client(lambda request: httpx.Response(200, content=b"<html>gateway</html>"))

    with pytest.raises(InvalidJsonResponseError):
        client.query_contract(POOL, {"get_pool_info": {}})


def test_http_error_mentioning_invalid_json_is_transient() -> None:
    client = _client(
        lambda request: httpx.Response(502, text="upstream: Invalid JSON response from node")
    )

    with pytest.raises(InvalidJsonResponseError) as exc_info:
        client.query_contract(POOL, {})

    assert exc_info.value.status_code == 502


def test_http_error_raises_query_error() -> None:
    client = _client(lambda request: httpx.Response(404, text="contract not found"))

    with pytest.raises(QueryError) as exc_info:
        client.query_contract(POOL, {})

    assert not isinstance(exc_info.value, InvalidJsonResponseError)


def test_transport_error_raises_query_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(QueryError, match="ConnectError"):
        _client(handler).query_contract(POOL, {})


def test_query_balance_sends_viewing_key() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"balance": {"amount": "1800"}})

    balance = _client(handler).query_balance(POOL, address="secret1wallet", viewing_key="vk")

    assert balance == Decimal("1800")
    assert seen["body"]["auth"] == {"key": "vk"}
    assert seen["body"]["address"] == "secret1wallet"


def test_query_balance_without_amount_is_none() -> None:
    client = _client(lambda request: httpx.Response(200, json={"viewing_key_error": {}}))

    assert client.query_balance(POOL, address="a", viewing_key="vk") is None


def test_broadcast_posts_messages_and_parses_result() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"transactionHash": "ABC", "code": 0, "jsonLog": [{"events": []}]}
        )

    client = _client(handler, api_token="gw-token")
    result = client.broadcast(
        [ContractCall(contract=POOL, msg={"user": {"claim_rewards": {}}})],
        gas_limit=450_000,
        fee_denom="uscrt",
    )

    assert result.succeeded
    assert result.tx_hash == "ABC"
    assert result.diagnostics() == [{"events": []}]
    assert seen["auth"] == "Bearer gw-token"
    body = seen["body"]
    assert body["gas_limit"] == 450_000
    assert body["fee_denom"] == "uscrt"
    assert body["msgs"][0]["sender"] == "secret1wallet"
    assert body["msgs"][0]["contract_address"] == "secret1pool"


def test_broadcast_nonzero_code_is_not_success() -> None:
    client = _client(
        lambda request: httpx.Response(
            200, json={"transactionHash": "DEF", "code": 5, "rawLog": "insufficient funds"}
        )
    )

    result = client.broadcast([], gas_limit=1, fee_denom="uscrt")

    assert not result.succeeded
    assert result.diagnostics() == "insufficient funds"


def test_broadcast_rejection_raises() -> None:
    client = _client(lambda request: httpx.Response(500, text="signer offline"))

    with pytest.raises(BroadcastError) as exc_info:
        client.broadcast([], gas_limit=1, fee_denom="uscrt")

    assert exc_info.value.status_code == 500
