from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from silkbot.domain.actions import ContractCall
from silkbot.domain.models import ContractRef, encode_json_b64


class QueryError(RuntimeError):
    """Raised when a contract query fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: object | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class InvalidJsonResponseError(QueryError):
    """The remote node answered with a body that is not valid JSON."""


class BroadcastError(RuntimeError):
    """Raised when a transaction could not be signed or submitted."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class BatchQuery:
    id: str
    contract: ContractRef
    query: dict[str, Any]

    def as_wire(self) -> dict[str, Any]:
        return {
            "id": encode_json_b64(self.id),
            "contract": self.contract.as_wire(),
            "query": encode_json_b64(self.query),
        }


@dataclass(frozen=True)
class BatchResponseItem:
    id: str
    response: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class BatchQueryResponse:
    block_height: int
    responses: tuple[BatchResponseItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class BroadcastResult:
    tx_hash: str | None
    code: int
    json_log: object | None = None
    raw_log: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.code == 0

    def diagnostics(self) -> object | None:
        return self.json_log if self.succeeded else self.raw_log


class ChainClient(ABC):
    @abstractmethod
    def batch_query(
        self, batch_contract: ContractRef, queries: list[BatchQuery]
    ) -> BatchQueryResponse | None:
        """Run queries in one round trip; response ids are the encoded query ids."""
        raise NotImplementedError

    @abstractmethod
    def query_contract(self, contract: ContractRef, query: dict[str, Any]) -> Any:
        raise NotImplementedError

    @abstractmethod
    def query_balance(
        self, token: ContractRef, *, address: str, viewing_key: str
    ) -> Decimal | None:
        raise NotImplementedError

    @abstractmethod
    def broadcast(
        self,
        calls: list[ContractCall],
        *,
        gas_limit: int,
        fee_denom: str,
    ) -> BroadcastResult:
        raise NotImplementedError

    def close(self) -> None:
        """Release resources associated with the chain client."""
        return None
