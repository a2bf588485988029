from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ValidationError

from silkbot.adapters.chain import BatchQuery, BatchResponseItem, ChainClient, QueryError
from silkbot.domain.engine_config import EngineConfig
from silkbot.domain.models import (
    ClaimableReward,
    MoneyMarketPosition,
    PositionSnapshot,
    StabilityPoolInfoResponse,
    StabilityPoolUserResponse,
    decode_b64_json,
)
from silkbot.domain.run_state import RunState
from silkbot.services.execution_errors import (
    FatalFailure,
    TransientQueryFailure,
    is_transient_query_error,
)

logger = logging.getLogger(__name__)

STABILITY_POOL_TAG = "stabilityPool"
MONEY_MARKET_TAG = "moneyMarket"
POOL_INFO_TAG = "poolInfo"
REQUIRED_TAGS = (STABILITY_POOL_TAG, MONEY_MARKET_TAG)


class SnapshotShapeError(FatalFailure):
    """A required query decoded cleanly but its payload does not match the expected model."""


@dataclass(frozen=True)
class Decoded:
    payload: Any


@dataclass(frozen=True)
class WrongShape:
    reason: str


@dataclass(frozen=True)
class TransportError:
    message: str


QueryOutcome = Decoded | WrongShape | TransportError


def decode_response(item: BatchResponseItem) -> QueryOutcome:
    if item.error is not None:
        return TransportError(item.error)
    if item.response is None:
        return WrongShape("empty response")
    try:
        return Decoded(decode_b64_json(item.response))
    except ValueError as exc:
        return WrongShape(str(exc))


def decode_tag(raw_id: str) -> str | None:
    try:
        tag = decode_b64_json(raw_id)
    except ValueError:
        return None
    return tag if isinstance(tag, str) else None


def build_position_queries(config: EngineConfig) -> list[BatchQuery]:
    contracts = config.contracts
    return [
        BatchQuery(
            id=STABILITY_POOL_TAG,
            contract=contracts.stability_pool,
            query={
                "with_permit": {
                    "permit": dict(contracts.lend_permit),
                    "query": {"get_user_data": {}},
                }
            },
        ),
        BatchQuery(
            id=MONEY_MARKET_TAG,
            contract=contracts.money_market,
            query={"user_position": {"authentication": {"permit": dict(contracts.master_permit)}}},
        ),
        BatchQuery(
            id=POOL_INFO_TAG,
            contract=contracts.stability_pool,
            query={"get_pool_info": {}},
        ),
    ]


def _validate(model: type[BaseModel], tag: str, payload: Any) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise SnapshotShapeError(
            f"{tag} payload has an unexpected shape: {exc.error_count()} validation errors"
        ) from exc


class PositionSnapshotBuilder:
    """Turns one batched chain query into a ``PositionSnapshot``."""

    def __init__(
        self,
        client: ChainClient,
        config: EngineConfig,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.config = config
        self.clock = clock

    def fetch_outcomes(self, state: RunState) -> tuple[int, dict[str, QueryOutcome]]:
        started = self.clock()
        try:
            response = self.client.batch_query(
                self.config.contracts.batch_query, build_position_queries(self.config)
            )
        except QueryError as exc:
            if is_transient_query_error(exc):
                raise TransientQueryFailure(str(exc)) from exc
            raise
        if response is None or not response.responses:
            raise TransientQueryFailure("batch query returned no responses")
        state.record_query_latency(self.clock() - started)

        outcomes: dict[str, QueryOutcome] = {}
        for item in response.responses:
            tag = decode_tag(item.id)
            if tag is None:
                logger.warning("batch_response_unknown_id", extra={"extra": {"id": item.id}})
                continue
            outcomes[tag] = decode_response(item)
        return response.block_height, outcomes

    def build(self, state: RunState) -> PositionSnapshot:
        block_height, outcomes = self.fetch_outcomes(state)

        if not any(isinstance(outcome, Decoded) for outcome in outcomes.values()):
            raise TransientQueryFailure("no batch response could be decoded")
        for tag in REQUIRED_TAGS:
            outcome = outcomes.get(tag)
            if not isinstance(outcome, Decoded):
                logger.warning(
                    "batch_response_unusable",
                    extra={"extra": {"tag": tag, "outcome": repr(outcome)}},
                )
                raise TransientQueryFailure(f"required query {tag} is missing or undecodable")

        pool_user = _validate(
            StabilityPoolUserResponse, STABILITY_POOL_TAG, outcomes[STABILITY_POOL_TAG].payload
        ).user_data
        position = _validate(
            MoneyMarketPosition, MONEY_MARKET_TAG, outcomes[MONEY_MARKET_TAG].payload
        )

        debt_token = self.config.debt_token
        debt_owed = next(
            (entry.total for entry in position.debt if entry.token == debt_token.address),
            Decimal("0"),
        )
        rewards = tuple(
            ClaimableReward(token=asset.to_token_ref(), amount=amount)
            for asset, amount in pool_user.claimable_rewards
        )
        pool_total, from_fallback = self._pool_total(outcomes.get(POOL_INFO_TAG), state)

        snapshot = PositionSnapshot(
            debt_owed=debt_owed,
            pool_share=pool_user.remaining_silk,
            pool_total_deposited=pool_total,
            claimable_rewards=rewards,
            fetched_at_block=block_height,
            pool_total_from_fallback=from_fallback,
        )
        logger.info(
            "position_snapshot_built",
            extra={
                "extra": {
                    "block_height": block_height,
                    "debt_owed": str(snapshot.debt_owed),
                    "pool_share": str(snapshot.pool_share),
                    "pool_total": str(snapshot.pool_total_deposited),
                    "claimable_reward_count": snapshot.claimable_reward_count,
                    "pool_total_from_fallback": from_fallback,
                }
            },
        )
        return snapshot

    def _pool_total(self, outcome: QueryOutcome | None, state: RunState) -> tuple[Decimal, bool]:
        if isinstance(outcome, Decoded):
            try:
                info = StabilityPoolInfoResponse.model_validate(outcome.payload)
            except ValidationError:
                logger.warning("pool_info_unexpected_shape")
            else:
                shift = self.config.debt_token.decimals - self.config.contracts.pool_total_decimals
                return info.pool_info.total_silk_deposited.scaleb(shift), False
        else:
            logger.warning("pool_info_unavailable", extra={"extra": {"outcome": repr(outcome)}})
        return state.tracked_pool_amount, True
