from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from silkbot.domain.liquidity import IterationControls
from silkbot.domain.models import ContractRef, TokenRef


@dataclass(frozen=True)
class GasSchedule:
    claim: int = 450_000
    deposit: int = 500_000
    repay: int = 1_000_000
    swap_base: int = 750_000
    standard_hop_multiplier: Decimal = Decimal("1")
    stable_hop_multiplier: Decimal = Decimal("2.7")
    fee_denom: str = "uscrt"


@dataclass(frozen=True)
class DecisionPolicy:
    repay_max_claimable_rewards: int = 1
    harvest_min_claimable_rewards: int = 2
    harvest_without_debt: bool = False
    slippage_tolerance: Decimal = Decimal("0.05")
    max_hops: int = 3


@dataclass(frozen=True)
class AlertPolicy:
    stable_collateral_symbols: tuple[str, ...] = ("USDC.axl",)
    liquidation_fee_haircut: Decimal = Decimal("0.97")
    stable_debt_ratio: Decimal = Decimal("0.95")
    volatile_debt_ratio: Decimal = Decimal("0.90")
    protocol_profit_ratio: Decimal = Decimal("0.02")


@dataclass(frozen=True)
class ProtocolContracts:
    stability_pool: ContractRef
    money_market: ContractRef
    router: ContractRef
    batch_query: ContractRef
    debt_token: TokenRef
    native_reward_token_address: str | None = None
    lend_permit: MappingProxyType[str, Any] = field(
        default_factory=lambda: MappingProxyType({})
    )
    master_permit: MappingProxyType[str, Any] = field(
        default_factory=lambda: MappingProxyType({})
    )
    pool_total_decimals: int = 18


@dataclass(frozen=True)
class EngineConfig:
    contracts: ProtocolContracts
    wallet_address: str
    policy: DecisionPolicy = field(default_factory=DecisionPolicy)
    gas: GasSchedule = field(default_factory=GasSchedule)
    alerts: AlertPolicy = field(default_factory=AlertPolicy)
    iteration_controls: IterationControls = field(default_factory=IterationControls)
    summary_interval: timedelta = timedelta(hours=2)
    balance_fetch_attempts: int = 5
    balance_fetch_delay_seconds: float = 5.0

    @property
    def debt_token(self) -> TokenRef:
        return self.contracts.debt_token
