from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_DOWN, ROUND_UP, Decimal
from enum import StrEnum
from typing import Any

from silkbot.domain.engine_config import GasSchedule, ProtocolContracts
from silkbot.domain.models import ClaimableReward, ContractRef, TokenRef, encode_json_b64
from silkbot.domain.routing import Route


class StepKind(StrEnum):
    REPAY = "repay"
    CLAIM = "claim"
    SWAP = "swap"
    DEPOSIT = "deposit"


class TxCategory(StrEnum):
    """Tags written to the transaction log."""

    REPAY = "debtRepayer"
    CLAIM = "earnClaim"
    SWAP = "earnSwap"
    DEPOSIT = "earnDeposit"


@dataclass(frozen=True)
class ContractCall:
    contract: ContractRef
    msg: dict[str, Any]

    def as_wire(self, sender: str) -> dict[str, Any]:
        return {
            "sender": sender,
            "contract_address": self.contract.address,
            "code_hash": self.contract.code_hash,
            "msg": self.msg,
            "sent_funds": [],
        }


@dataclass(frozen=True)
class NoOp:
    reason: str


@dataclass(frozen=True)
class RepayDebt:
    amount: Decimal
    gas_limit: int


@dataclass(frozen=True)
class ClaimStep:
    gas_limit: int


@dataclass(frozen=True)
class SwapStep:
    reward: ClaimableReward
    route: Route
    min_output: Decimal
    gas_limit: int


@dataclass(frozen=True)
class DepositStep:
    token: TokenRef
    expected_amount: Decimal
    gas_limit: int


@dataclass(frozen=True)
class HarvestCycle:
    claim: ClaimStep
    swaps: tuple[SwapStep, ...]
    deposit: DepositStep
    skipped_rewards: tuple[ClaimableReward, ...] = field(default_factory=tuple)


ActionPlan = NoOp | RepayDebt | HarvestCycle


def format_amount(value: Decimal, *, rounding: str = ROUND_DOWN) -> str:
    return str(value.to_integral_value(rounding=rounding))


def swap_gas_multiplier(route: Route, gas: GasSchedule) -> Decimal:
    multiplier = Decimal("0")
    for pair in route.pairs:
        if pair.is_derivative_or_stable:
            multiplier += gas.stable_hop_multiplier
        else:
            multiplier += gas.standard_hop_multiplier
    return multiplier


def swap_gas_limit(route: Route, gas: GasSchedule) -> int:
    return int(Decimal(gas.swap_base) * swap_gas_multiplier(route, gas))


def repay_calls(plan: RepayDebt, contracts: ProtocolContracts) -> list[ContractCall]:
    amount = format_amount(plan.amount, rounding=ROUND_UP)
    debt_token = contracts.debt_token
    return [
        ContractCall(
            contract=contracts.stability_pool,
            msg={"user": {"withdraw_silk": amount}},
        ),
        ContractCall(
            contract=debt_token.contract,
            msg={
                "send": {
                    "recipient": contracts.money_market.address,
                    "recipient_code_hash": contracts.money_market.code_hash,
                    "amount": amount,
                    "msg": encode_json_b64({"repay": {}}),
                }
            },
        ),
    ]


def claim_calls(contracts: ProtocolContracts) -> list[ContractCall]:
    return [ContractCall(contract=contracts.stability_pool, msg={"user": {"claim_rewards": {}}})]


def swap_calls(step: SwapStep, contracts: ProtocolContracts) -> list[ContractCall]:
    path = [{"addr": pair.address, "code_hash": pair.code_hash} for pair in step.route.pairs]
    return [
        ContractCall(
            contract=step.reward.token.contract,
            msg={
                "send": {
                    "recipient": contracts.router.address,
                    "recipient_code_hash": contracts.router.code_hash,
                    "amount": format_amount(step.reward.amount),
                    "msg": encode_json_b64(
                        {
                            "swap_tokens_for_exact": {
                                "expected_return": format_amount(step.min_output),
                                "path": path,
                            }
                        }
                    ),
                }
            },
        )
    ]


def deposit_calls(amount: Decimal, contracts: ProtocolContracts) -> list[ContractCall]:
    return [
        ContractCall(
            contract=contracts.debt_token.contract,
            msg={
                "send": {
                    "recipient": contracts.stability_pool.address,
                    "recipient_code_hash": contracts.stability_pool.code_hash,
                    "amount": format_amount(amount),
                    "msg": encode_json_b64({"deposit_silk": {}}),
                }
            },
        )
    ]
