from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum

from silkbot.domain.actions import (
    ActionPlan,
    ClaimStep,
    DepositStep,
    HarvestCycle,
    NoOp,
    RepayDebt,
    SwapStep,
    swap_gas_limit,
)
from silkbot.domain.engine_config import DecisionPolicy, EngineConfig
from silkbot.domain.liquidity import LiquidityGraph
from silkbot.domain.models import ClaimableReward, PositionSnapshot
from silkbot.domain.routing import best_route


class PolicyChoice(StrEnum):
    REPAY = "repay"
    HARVEST = "harvest"
    NONE = "none"


@dataclass(frozen=True)
class PolicySelection:
    choice: PolicyChoice
    reason: str


def repay_policy_fires(snapshot: PositionSnapshot, policy: DecisionPolicy) -> bool:
    return (
        snapshot.debt_owed > 0
        and snapshot.pool_share >= snapshot.debt_owed
        and snapshot.claimable_reward_count <= policy.repay_max_claimable_rewards
    )


def harvest_policy_fires(snapshot: PositionSnapshot, policy: DecisionPolicy) -> bool:
    # The native reward token is always listed, so the floor is 2 by default.
    return snapshot.claimable_reward_count >= policy.harvest_min_claimable_rewards


def select_policy(snapshot: PositionSnapshot, policy: DecisionPolicy) -> PolicySelection:
    if snapshot.debt_owed <= 0 and not policy.harvest_without_debt:
        return PolicySelection(PolicyChoice.NONE, "no_debt")
    if repay_policy_fires(snapshot, policy):
        return PolicySelection(PolicyChoice.REPAY, "repay_thresholds_met")
    if harvest_policy_fires(snapshot, policy):
        return PolicySelection(PolicyChoice.HARVEST, "harvest_thresholds_met")
    if snapshot.claimable_reward_count == 0:
        return PolicySelection(PolicyChoice.NONE, "no_claimable_rewards")
    return PolicySelection(PolicyChoice.NONE, "thresholds_not_met")


def build_harvest_cycle(
    snapshot: PositionSnapshot,
    config: EngineConfig,
    graph: LiquidityGraph,
) -> HarvestCycle:
    debt_token = config.debt_token
    claimed_debt = Decimal("0")
    expected_proceeds = Decimal("0")
    swaps: list[SwapStep] = []
    skipped: list[ClaimableReward] = []

    for reward in snapshot.nonzero_rewards:
        if reward.token == debt_token:
            claimed_debt += reward.amount
            continue
        route = best_route(
            graph,
            input_token=reward.token.address,
            output_token=debt_token.address,
            amount_in=reward.amount,
            max_hops=config.policy.max_hops,
        )
        if route is None:
            skipped.append(reward)
            continue
        swaps.append(
            SwapStep(
                reward=reward,
                route=route,
                min_output=route.min_output(config.policy.slippage_tolerance),
                gas_limit=swap_gas_limit(route, config.gas),
            )
        )
        expected_proceeds += route.quote_output_amount

    return HarvestCycle(
        claim=ClaimStep(gas_limit=config.gas.claim),
        swaps=tuple(swaps),
        deposit=DepositStep(
            token=debt_token,
            expected_amount=claimed_debt + expected_proceeds,
            gas_limit=config.gas.deposit,
        ),
        skipped_rewards=tuple(skipped),
    )


def decide(
    snapshot: PositionSnapshot,
    config: EngineConfig,
    graph: LiquidityGraph | None = None,
) -> ActionPlan:
    selection = select_policy(snapshot, config.policy)
    if selection.choice is PolicyChoice.REPAY:
        return RepayDebt(amount=snapshot.debt_owed, gas_limit=config.gas.repay)
    if selection.choice is PolicyChoice.HARVEST:
        if graph is None:
            return NoOp(reason="liquidity_data_unavailable")
        return build_harvest_cycle(snapshot, config, graph)
    return NoOp(reason=selection.reason)
