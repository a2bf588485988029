from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def parse_decimal(value: object) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("Cannot parse decimal from bool")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        normalized = value.strip()
        if not normalized:
            return Decimal("0")
        try:
            return Decimal(normalized)
        except InvalidOperation as exc:
            raise ValueError(f"Invalid decimal value {value!r}") from exc
    raise TypeError(f"Cannot parse decimal from {type(value)!r}")


def encode_json_b64(value: Any) -> str:
    return base64.b64encode(json.dumps(value, separators=(",", ":")).encode("utf-8")).decode(
        "ascii"
    )


def decode_b64_json(encoded: str) -> Any:
    """Decode a base64 payload carrying JSON. Raises ValueError on any malformed input."""
    try:
        raw = base64.b64decode(encoded, validate=True)
        return json.loads(raw.decode("utf-8"))
    except (ValueError, UnicodeDecodeError, TypeError) as exc:
        raise ValueError("payload is not base64-encoded JSON") from exc


@dataclass(frozen=True)
class ContractRef:
    address: str
    code_hash: str

    def as_wire(self) -> dict[str, str]:
        return {"address": self.address, "code_hash": self.code_hash}


@dataclass(frozen=True, eq=False)
class TokenRef:
    address: str
    code_hash: str = ""
    decimals: int = 6
    price_oracle_ids: tuple[str, ...] = field(default_factory=tuple)
    symbol: str | None = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TokenRef):
            return NotImplemented
        return self.address == other.address

    def __hash__(self) -> int:
        return hash(self.address)

    @property
    def contract(self) -> ContractRef:
        return ContractRef(address=self.address, code_hash=self.code_hash)


@dataclass(frozen=True)
class ClaimableReward:
    token: TokenRef
    amount: Decimal


@dataclass(frozen=True)
class PositionSnapshot:
    debt_owed: Decimal
    pool_share: Decimal
    pool_total_deposited: Decimal
    claimable_rewards: tuple[ClaimableReward, ...]
    fetched_at_block: int
    pool_total_from_fallback: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "claimable_rewards", tuple(self.claimable_rewards))

    @property
    def nonzero_rewards(self) -> tuple[ClaimableReward, ...]:
        return tuple(reward for reward in self.claimable_rewards if reward.amount > 0)

    @property
    def claimable_reward_count(self) -> int:
        return len(self.nonzero_rewards)


class WireContract(BaseModel):
    model_config = ConfigDict(extra="ignore")

    address: str
    code_hash: str = ""


class WireRewardAsset(BaseModel):
    model_config = ConfigDict(extra="ignore")

    contract: WireContract
    decimals: int = 6
    quote_symbol: str | None = None

    def to_token_ref(self) -> TokenRef:
        return TokenRef(
            address=self.contract.address,
            code_hash=self.contract.code_hash,
            decimals=self.decimals,
            symbol=self.quote_symbol,
        )


class StabilityPoolUserData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    claimable_rewards: list[tuple[WireRewardAsset, Decimal]] = Field(default_factory=list)
    remaining_silk: Decimal


class StabilityPoolUserResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_data: StabilityPoolUserData


class MoneyMarketDebt(BaseModel):
    model_config = ConfigDict(extra="ignore")

    token: str
    principal: Decimal = Decimal("0")
    interest_accrued: Decimal = Decimal("0")

    @property
    def total(self) -> Decimal:
        return self.principal + self.interest_accrued


class MoneyMarketPosition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    debt: list[MoneyMarketDebt] = Field(default_factory=list)


class StabilityPoolInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    total_silk_deposited: Decimal


class StabilityPoolInfoResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    pool_info: StabilityPoolInfo
