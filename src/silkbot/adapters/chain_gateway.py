from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any

import httpx

from silkbot.adapters.chain import (
    BatchQuery,
    BatchQueryResponse,
    BatchResponseItem,
    BroadcastError,
    BroadcastResult,
    ChainClient,
    InvalidJsonResponseError,
    QueryError,
)
from silkbot.domain.actions import ContractCall
from silkbot.domain.models import ContractRef, parse_decimal
from silkbot.security.redaction import sanitize_text

logger = logging.getLogger(__name__)

_ERROR_SNIPPET_LIMIT = 240
_INVALID_JSON_MARKER = "invalid json response"


def _response_snippet(response: httpx.Response) -> str:
    text = response.text.strip().replace("\n", " ")
    return sanitize_text(text[:_ERROR_SNIPPET_LIMIT])


class GatewayChainClient(ChainClient):
    """Chain access through a signing gateway that holds the wallet and chain SDK."""

    def __init__(
        self,
        base_url: str,
        *,
        sender: str,
        timeout: float | httpx.Timeout = 30.0,
        transport: httpx.BaseTransport | None = None,
        api_token: str | None = None,
    ) -> None:
        resolved_timeout = (
            timeout
            if isinstance(timeout, httpx.Timeout)
            else httpx.Timeout(timeout=timeout, connect=5.0)
        )
        headers = {"Content-Type": "application/json"}
        if api_token:
            headers["Authorization"] = f"Bearer {api_token}"
        self.sender = sender
        self.client = httpx.Client(
            base_url=base_url,
            timeout=resolved_timeout,
            transport=transport,
            headers=headers,
        )

    def _post_query(self, path: str, payload: dict[str, Any]) -> Any:
        try:
            response = self.client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise QueryError(f"query transport error on {path}: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            snippet = _response_snippet(response)
            error_cls = (
                InvalidJsonResponseError
                if _INVALID_JSON_MARKER in snippet.casefold()
                else QueryError
            )
            raise error_cls(
                f"query failed on {path}: status={response.status_code} body={snippet}",
                status_code=response.status_code,
                payload=snippet,
            )
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise InvalidJsonResponseError(
                f"{_INVALID_JSON_MARKER} on {path}",
                status_code=response.status_code,
                payload=_response_snippet(response),
            ) from exc

    def batch_query(
        self, batch_contract: ContractRef, queries: list[BatchQuery]
    ) -> BatchQueryResponse | None:
        body = self._post_query(
            "/query/batch",
            {
                "contract": batch_contract.as_wire(),
                "query": {"batch": {"queries": [query.as_wire() for query in queries]}},
            },
        )
        if not isinstance(body, dict):
            return None
        batch = body.get("batch")
        if not isinstance(batch, dict):
            return None

        items: list[BatchResponseItem] = []
        for row in batch.get("responses") or []:
            if not isinstance(row, dict):
                continue
            query_id = str(row.get("id", ""))
            response = row.get("response")
            if isinstance(response, dict) and isinstance(response.get("response"), str):
                items.append(BatchResponseItem(id=query_id, response=response["response"]))
            else:
                items.append(
                    BatchResponseItem(
                        id=query_id,
                        error=sanitize_text(json.dumps(response, default=str)),
                    )
                )
        return BatchQueryResponse(
            block_height=int(batch.get("block_height") or 0),
            responses=tuple(items),
        )

    def query_contract(self, contract: ContractRef, query: dict[str, Any]) -> Any:
        return self._post_query(
            "/query/contract", {"contract": contract.as_wire(), "query": query}
        )

    def query_balance(
        self, token: ContractRef, *, address: str, viewing_key: str
    ) -> Decimal | None:
        body = self._post_query(
            "/query/balance",
            {"contract": token.as_wire(), "address": address, "auth": {"key": viewing_key}},
        )
        balance = body.get("balance") if isinstance(body, dict) else None
        amount = balance.get("amount") if isinstance(balance, dict) else None
        if amount is None:
            return None
        return parse_decimal(amount)

    def broadcast(
        self,
        calls: list[ContractCall],
        *,
        gas_limit: int,
        fee_denom: str,
    ) -> BroadcastResult:
        payload = {
            "msgs": [call.as_wire(self.sender) for call in calls],
            "gas_limit": gas_limit,
            "fee_denom": fee_denom,
        }
        try:
            response = self.client.post("/tx/broadcast", json=payload)
        except httpx.HTTPError as exc:
            raise BroadcastError(f"broadcast transport error: {type(exc).__name__}") from exc
        if response.status_code >= 400:
            raise BroadcastError(
                f"broadcast rejected: status={response.status_code} "
                f"body={_response_snippet(response)}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except json.JSONDecodeError as exc:
            raise BroadcastError("broadcast returned a non-JSON body") from exc

        tx_hash = body.get("transactionHash") or body.get("tx_hash")
        return BroadcastResult(
            tx_hash=str(tx_hash) if tx_hash else None,
            code=int(body.get("code", 1)),
            json_log=body.get("jsonLog"),
            raw_log=body.get("rawLog"),
        )

    def close(self) -> None:
        self.client.close()
