from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

from silkbot.domain.liquidity import LiquidityGraph, Pair, PoolKind
from silkbot.domain.pool_math import DEFAULT_PRICERS, PoolPricer, PricingError, quote_pair

logger = logging.getLogger(__name__)

DEFAULT_MAX_HOPS = 3


@dataclass(frozen=True)
class Route:
    pairs: tuple[Pair, ...]
    tokens: tuple[str, ...]
    input_amount: Decimal
    quote_output_amount: Decimal

    @property
    def hops(self) -> int:
        return len(self.pairs)

    @property
    def input_token(self) -> str:
        return self.tokens[0]

    @property
    def output_token(self) -> str:
        return self.tokens[-1]

    def min_output(self, slippage_tolerance: Decimal) -> Decimal:
        if slippage_tolerance < 0 or slippage_tolerance >= 1:
            raise ValueError("slippage_tolerance must be in [0, 1)")
        guarded = self.quote_output_amount * (Decimal("1") - slippage_tolerance)
        return guarded.to_integral_value(rounding=ROUND_DOWN)


def iter_paths(
    graph: LiquidityGraph,
    start: str,
    target: str,
    *,
    max_hops: int = DEFAULT_MAX_HOPS,
) -> Iterator[tuple[tuple[Pair, ...], tuple[str, ...]]]:
    """Depth-first enumeration of simple pair paths from ``start`` to ``target``."""

    if max_hops < 1 or start == target:
        return
    yield from _walk(graph, start, target, (), (start,), max_hops)


def _walk(
    graph: LiquidityGraph,
    token: str,
    target: str,
    path: tuple[Pair, ...],
    visited: tuple[str, ...],
    max_hops: int,
) -> Iterator[tuple[tuple[Pair, ...], tuple[str, ...]]]:
    for pair in graph.pairs_for(token):
        following = pair.other_token(token)
        # A revisited token would also mean a reused pair.
        if following in visited:
            continue
        next_path = path + (pair,)
        next_tokens = visited + (following,)
        if following == target:
            yield next_path, next_tokens
        elif len(next_path) < max_hops:
            yield from _walk(graph, following, target, next_path, next_tokens, max_hops)


def quote_path(
    pairs: tuple[Pair, ...],
    tokens: tuple[str, ...],
    amount_in: Decimal,
    pricers: Mapping[PoolKind, PoolPricer] = DEFAULT_PRICERS,
) -> Decimal:
    amount = amount_in
    for pair, token_in in zip(pairs, tokens, strict=False):
        amount = quote_pair(pair, token_in, amount, pricers)
        if amount <= 0:
            raise PricingError(f"pair {pair.address} quoted no output")
    return amount


def find_routes(
    graph: LiquidityGraph,
    *,
    input_token: str,
    output_token: str,
    amount_in: Decimal,
    max_hops: int = DEFAULT_MAX_HOPS,
    pricers: Mapping[PoolKind, PoolPricer] = DEFAULT_PRICERS,
) -> list[Route]:
    """Ranked candidate routes, best quoted output first; ties keep discovery order."""

    if amount_in <= 0:
        return []

    candidates: list[Route] = []
    for pairs, tokens in iter_paths(graph, input_token, output_token, max_hops=max_hops):
        try:
            output = quote_path(pairs, tokens, amount_in, pricers)
        except PricingError as exc:
            logger.debug(
                "route_candidate_unpriced",
                extra={
                    "extra": {
                        "path": [pair.address for pair in pairs],
                        "reason": str(exc),
                    }
                },
            )
            continue
        candidates.append(
            Route(
                pairs=pairs,
                tokens=tokens,
                input_amount=amount_in,
                quote_output_amount=output,
            )
        )

    return sorted(candidates, key=lambda route: route.quote_output_amount, reverse=True)


def best_route(
    graph: LiquidityGraph,
    *,
    input_token: str,
    output_token: str,
    amount_in: Decimal,
    max_hops: int = DEFAULT_MAX_HOPS,
    pricers: Mapping[PoolKind, PoolPricer] = DEFAULT_PRICERS,
) -> Route | None:
    routes = find_routes(
        graph,
        input_token=input_token,
        output_token=output_token,
        amount_in=amount_in,
        max_hops=max_hops,
        pricers=pricers,
    )
    return routes[0] if routes else None
