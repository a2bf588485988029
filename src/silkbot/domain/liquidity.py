from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from types import MappingProxyType


class PoolKind(StrEnum):
    CONSTANT_PRODUCT = "constant_product"
    STABLE = "stable"


@dataclass(frozen=True)
class IterationControls:
    epsilon: Decimal = Decimal("1e-16")
    max_newton: int = 80
    max_bisect: int = 150


@dataclass(frozen=True)
class StableCurveParams:
    """Stable pool curve parameters.

    ``price_ratio`` is the oracle price of token B quoted in token A (``None`` means 1).
    ``alpha`` is the curve amplification. Minimum trade sizes are in whole tokens.
    """

    alpha: Decimal
    gamma1: Decimal = Decimal("0")
    gamma2: Decimal = Decimal("0")
    price_ratio: Decimal | None = None
    min_trade_size_a_for_b: Decimal = Decimal("0")
    min_trade_size_b_for_a: Decimal = Decimal("0")
    max_price_impact: Decimal | None = None
    iteration_controls: IterationControls = field(default_factory=IterationControls)


@dataclass(frozen=True)
class Token:
    address: str
    symbol: str
    decimals: int
    price_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class Pair:
    address: str
    code_hash: str
    token_a: str
    token_b: str
    reserve_a: Decimal
    reserve_b: Decimal
    fee_bps: Decimal
    is_stable: bool = False
    stable_params: StableCurveParams | None = None
    flags: tuple[str, ...] = ()
    decimals_a: int = 6
    decimals_b: int = 6

    @property
    def kind(self) -> PoolKind:
        if self.is_stable and self.stable_params is not None:
            return PoolKind.STABLE
        return PoolKind.CONSTANT_PRODUCT

    @property
    def is_derivative_or_stable(self) -> bool:
        lowered = {flag.casefold() for flag in self.flags}
        return self.is_stable or "derivative" in lowered or "stable" in lowered

    def has_token(self, token: str) -> bool:
        return token in (self.token_a, self.token_b)

    def other_token(self, token: str) -> str:
        if token == self.token_a:
            return self.token_b
        if token == self.token_b:
            return self.token_a
        raise ValueError(f"token {token} is not part of pair {self.address}")


class LiquidityGraph:
    """Read-only pair graph; adjacency preserves the pair order it was built from."""

    def __init__(self, pairs: Iterable[Pair], tokens: Iterable[Token] = ()) -> None:
        self._pairs: tuple[Pair, ...] = tuple(pairs)
        self._tokens = MappingProxyType({token.address: token for token in tokens})
        adjacency: dict[str, list[Pair]] = {}
        for pair in self._pairs:
            adjacency.setdefault(pair.token_a, []).append(pair)
            if pair.token_b != pair.token_a:
                adjacency.setdefault(pair.token_b, []).append(pair)
        self._adjacency = MappingProxyType(
            {token: tuple(items) for token, items in adjacency.items()}
        )
        self._by_address = MappingProxyType({pair.address: pair for pair in self._pairs})

    @property
    def pairs(self) -> tuple[Pair, ...]:
        return self._pairs

    @property
    def tokens(self) -> MappingProxyType[str, Token]:
        return self._tokens

    def pairs_for(self, token: str) -> tuple[Pair, ...]:
        return self._adjacency.get(token, ())

    def pair(self, address: str) -> Pair | None:
        return self._by_address.get(address)

    def token(self, address: str) -> Token | None:
        return self._tokens.get(address)

    def __iter__(self) -> Iterator[Pair]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)
