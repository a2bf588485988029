from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from silkbot.domain.liquidity import (
    IterationControls,
    LiquidityGraph,
    Pair,
    StableCurveParams,
    Token,
)
from silkbot.domain.models import parse_decimal

logger = logging.getLogger(__name__)

POOLS_QUERY = """
query Pools {
  pools(query: {}) {
    id
    contractAddress
    codeHash
    lpTokenId
    lpTokenAmount
    token0Id
    token0Amount
    token1Id
    token1Amount
    daoFee
    lpFee
    flags
    isEnabled
    liquidityUsd
    StableParams {
      id
      priceRatio
      alpha
      gamma1
      gamma2
      minTradeSize0For1
      minTradeSize1For0
      maxPriceImpact
    }
  }
}
"""

TOKENS_QUERY = """
query Tokens {
  tokens(query: { where: { flags: { has: SNIP20 } } }) {
    id
    contractAddress
    symbol
    Asset {
      decimals
    }
    PriceToken {
      priceId
    }
  }
}
"""

PRICES_QUERY = """
query Prices {
  prices(query: {}) {
    id
    value
  }
}
"""

_FLAG_SPLIT = re.compile(r"[\s,|]+")
_BPS = Decimal("10000")


class GraphQLLiquiditySource:
    """Pools, tokens and prices from the protocol's GraphQL API.

    Any transport, HTTP or GraphQL error yields ``None``: the caller treats it as
    "no data this run".
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self.client = httpx.Client(
            timeout=httpx.Timeout(timeout=timeout, connect=5.0),
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def _execute(self, operation: str, query: str) -> dict[str, Any] | None:
        try:
            response = self.client.post(self.url, json={"query": query})
        except httpx.HTTPError as exc:
            logger.warning(
                "graphql_transport_error",
                extra={"extra": {"operation": operation, "error_type": type(exc).__name__}},
            )
            return None
        try:
            body = response.json()
        except json.JSONDecodeError:
            logger.warning(
                "graphql_invalid_body",
                extra={"extra": {"operation": operation, "status": response.status_code}},
            )
            return None
        if not isinstance(body, dict):
            return None
        errors = body.get("errors")
        data = body.get("data")
        if errors or not isinstance(data, dict):
            logger.warning(
                "graphql_errors",
                extra={
                    "extra": {
                        "operation": operation,
                        "status": response.status_code,
                        "errors": [
                            error.get("message")
                            for error in errors or []
                            if isinstance(error, dict)
                        ],
                    }
                },
            )
            return None
        return data

    def fetch_pools(self) -> list[dict[str, Any]] | None:
        data = self._execute("Pools", POOLS_QUERY)
        pools = data.get("pools") if data is not None else None
        return pools if isinstance(pools, list) else None

    def fetch_tokens(self) -> list[dict[str, Any]] | None:
        data = self._execute("Tokens", TOKENS_QUERY)
        tokens = data.get("tokens") if data is not None else None
        return tokens if isinstance(tokens, list) else None

    def fetch_prices(self) -> dict[str, Decimal] | None:
        data = self._execute("Prices", PRICES_QUERY)
        rows = data.get("prices") if data is not None else None
        if not isinstance(rows, list):
            return None
        prices: dict[str, Decimal] = {}
        for row in rows:
            if not isinstance(row, dict) or row.get("value") is None:
                continue
            try:
                prices[str(row["id"])] = parse_decimal(row["value"])
            except (KeyError, TypeError, ValueError):
                continue
        return prices

    def close(self) -> None:
        self.client.close()


def _optional_decimal(value: object) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return parse_decimal(value)
    except (TypeError, ValueError, InvalidOperation):
        return None


def _parse_flags(raw: object) -> tuple[str, ...]:
    if isinstance(raw, list):
        return tuple(str(flag) for flag in raw if flag)
    if isinstance(raw, str):
        return tuple(part for part in _FLAG_SPLIT.split(raw) if part)
    return ()


def parse_tokens(rows: list[Mapping[str, Any]]) -> dict[str, Token]:
    """Token metadata keyed by GraphQL token id."""

    tokens: dict[str, Token] = {}
    for row in rows:
        address = row.get("contractAddress")
        asset = row.get("Asset") or {}
        if not address or not isinstance(asset, Mapping) or asset.get("decimals") is None:
            continue
        price_tokens = row.get("PriceToken") or []
        tokens[str(row.get("id"))] = Token(
            address=str(address),
            symbol=str(row.get("symbol") or address),
            decimals=int(asset["decimals"]),
            price_ids=tuple(
                str(entry["priceId"])
                for entry in price_tokens
                if isinstance(entry, Mapping) and entry.get("priceId") is not None
            ),
        )
    return tokens


def _stable_params(
    raw: Mapping[str, Any], controls: IterationControls
) -> StableCurveParams | None:
    alpha = _optional_decimal(raw.get("alpha"))
    if alpha is None:
        return None
    return StableCurveParams(
        alpha=alpha,
        gamma1=_optional_decimal(raw.get("gamma1")) or Decimal("0"),
        gamma2=_optional_decimal(raw.get("gamma2")) or Decimal("0"),
        price_ratio=_optional_decimal(raw.get("priceRatio")),
        min_trade_size_a_for_b=_optional_decimal(raw.get("minTradeSize0For1")) or Decimal("0"),
        min_trade_size_b_for_a=_optional_decimal(raw.get("minTradeSize1For0")) or Decimal("0"),
        max_price_impact=_optional_decimal(raw.get("maxPriceImpact")),
        iteration_controls=controls,
    )


def build_liquidity_graph(
    pools: list[Mapping[str, Any]],
    tokens: list[Mapping[str, Any]],
    *,
    controls: IterationControls | None = None,
) -> LiquidityGraph:
    resolved_controls = controls or IterationControls()
    token_by_id = parse_tokens(tokens)
    pairs: list[Pair] = []
    for pool in pools:
        if pool.get("isEnabled") is False:
            continue
        token0 = token_by_id.get(str(pool.get("token0Id")))
        token1 = token_by_id.get(str(pool.get("token1Id")))
        address = pool.get("contractAddress")
        if token0 is None or token1 is None or not address:
            logger.debug(
                "graphql_pool_skipped",
                extra={"extra": {"pool_id": pool.get("id"), "reason": "unresolved_tokens"}},
            )
            continue
        lp_fee = _optional_decimal(pool.get("lpFee")) or Decimal("0")
        dao_fee = _optional_decimal(pool.get("daoFee")) or Decimal("0")
        raw_stable = pool.get("StableParams")
        stable = (
            _stable_params(raw_stable, resolved_controls)
            if isinstance(raw_stable, Mapping)
            else None
        )
        pairs.append(
            Pair(
                address=str(address),
                code_hash=str(pool.get("codeHash") or ""),
                token_a=token0.address,
                token_b=token1.address,
                reserve_a=_optional_decimal(pool.get("token0Amount")) or Decimal("0"),
                reserve_b=_optional_decimal(pool.get("token1Amount")) or Decimal("0"),
                fee_bps=(lp_fee + dao_fee) * _BPS,
                is_stable=stable is not None,
                stable_params=stable,
                flags=_parse_flags(pool.get("flags")),
                decimals_a=token0.decimals,
                decimals_b=token1.decimals,
            )
        )
    return LiquidityGraph(pairs, token_by_id.values())
