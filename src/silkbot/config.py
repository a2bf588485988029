from __future__ import annotations

import json
from datetime import timedelta
from decimal import Decimal
from types import MappingProxyType
from typing import Annotated, Any

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from silkbot.domain.engine_config import (
    AlertPolicy,
    DecisionPolicy,
    EngineConfig,
    GasSchedule,
    ProtocolContracts,
)
from silkbot.domain.liquidity import IterationControls
from silkbot.domain.models import ContractRef, TokenRef

_REQUIRED_FIELDS = (
    "chain_gateway_url",
    "wallet_address",
    "batch_query_contract",
    "stability_pool_address",
    "money_market_address",
    "silk_token_address",
    "shade_lend_permit",
    "shade_master_permit",
)

_HARVEST_REQUIRED_FIELDS = (
    "graphql_url",
    "router_address",
    "shd_token_address",
    "silk_viewing_key",
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    node: str | None = Field(default=None, alias="NODE")
    chain_id: str | None = Field(default=None, alias="CHAIN_ID")
    chain_gateway_url: str | None = Field(default=None, alias="CHAIN_GATEWAY_URL")
    gateway_api_token: SecretStr | None = Field(default=None, alias="GATEWAY_API_TOKEN")
    gateway_timeout_seconds: float = Field(default=30.0, alias="GATEWAY_TIMEOUT_SECONDS")
    wallet_address: str | None = Field(default=None, alias="WALLET_ADDRESS")

    batch_query_contract: str | None = Field(default=None, alias="BATCH_QUERY_CONTRACT")
    batch_query_hash: str = Field(default="", alias="BATCH_QUERY_HASH")
    stability_pool_address: str | None = Field(default=None, alias="STABILITY_POOL_ADDRESS")
    stability_pool_code_hash: str = Field(default="", alias="STABILITY_POOL_CODE_HASH")
    money_market_address: str | None = Field(default=None, alias="MONEY_MARKET_ADDRESS")
    money_market_code_hash: str = Field(default="", alias="MONEY_MARKET_CODE_HASH")
    silk_token_address: str | None = Field(default=None, alias="SILK_TOKEN_ADDRESS")
    silk_token_code_hash: str = Field(default="", alias="SILK_TOKEN_CODE_HASH")
    silk_token_decimals: int = Field(default=6, alias="SILK_TOKEN_DECIMALS")
    silk_token_symbol: str = Field(default="SILK", alias="SILK_TOKEN_SYMBOL")
    shd_token_address: str | None = Field(default=None, alias="SHD_TOKEN_ADDRESS")
    router_address: str | None = Field(default=None, alias="ROUTER_ADDRESS")
    router_code_hash: str = Field(default="", alias="ROUTER_CODE_HASH")
    graphql_url: str | None = Field(default=None, alias="GRAPHQL")

    shade_lend_permit: SecretStr | None = Field(default=None, alias="SHADE_LEND_PERMIT")
    shade_master_permit: SecretStr | None = Field(default=None, alias="SHADE_MASTER_PERMIT")
    silk_viewing_key: SecretStr | None = Field(default=None, alias="SILK_VIEWING_KEY")

    bot_token: SecretStr | None = Field(default=None, alias="BOT_TOKEN")
    testing_chat_id: str | None = Field(default=None, alias="TESTING_CHAT_ID")

    state_path: str = Field(default="silkbot_state.json", alias="STATE_PATH")
    tx_log_path: str = Field(default="transactions.txt", alias="TX_LOG_PATH")

    repay_max_claimable_rewards: int = Field(default=1, alias="REPAY_MAX_CLAIMABLE_REWARDS")
    harvest_min_claimable_rewards: int = Field(default=2, alias="HARVEST_MIN_CLAIMABLE_REWARDS")
    harvest_without_debt: bool = Field(default=False, alias="HARVEST_WITHOUT_DEBT")
    slippage_tolerance: Decimal = Field(default=Decimal("0.05"), alias="SLIPPAGE_TOLERANCE")
    max_route_hops: int = Field(default=3, alias="MAX_ROUTE_HOPS")

    gas_claim: int = Field(default=450_000, alias="GAS_CLAIM")
    gas_deposit: int = Field(default=500_000, alias="GAS_DEPOSIT")
    gas_repay: int = Field(default=1_000_000, alias="GAS_REPAY")
    gas_swap_base: int = Field(default=750_000, alias="GAS_SWAP_BASE")
    gas_stable_hop_multiplier: Decimal = Field(
        default=Decimal("2.7"), alias="GAS_STABLE_HOP_MULTIPLIER"
    )
    fee_denom: str = Field(default="uscrt", alias="FEE_DENOM")

    stable_epsilon: Decimal = Field(default=Decimal("1e-16"), alias="STABLE_EPSILON")
    stable_max_newton: int = Field(default=80, alias="STABLE_MAX_NEWTON")
    stable_max_bisect: int = Field(default=150, alias="STABLE_MAX_BISECT")

    pool_total_decimals: int = Field(default=18, alias="POOL_TOTAL_DECIMALS")
    summary_interval_hours: float = Field(default=2.0, alias="SUMMARY_INTERVAL_HOURS")
    balance_fetch_attempts: int = Field(default=5, alias="BALANCE_FETCH_ATTEMPTS")
    balance_fetch_delay_seconds: float = Field(default=5.0, alias="BALANCE_FETCH_DELAY_SECONDS")

    stable_collateral_symbols: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["USDC.axl"],
        alias="STABLE_COLLATERAL_SYMBOLS",
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_timezone: str = Field(default="America/Chicago", alias="LOG_TIMEZONE")

    @field_validator("stable_collateral_symbols", mode="before")
    def parse_symbol_list(cls, value: str | list[str]) -> list[str]:
        items: list[object]
        if isinstance(value, str):
            raw = value.strip()
            if not raw:
                return []
            if raw.startswith("["):
                parsed = json.loads(raw)
                if not isinstance(parsed, list):
                    raise ValueError("STABLE_COLLATERAL_SYMBOLS JSON value must be a list")
                items = parsed
            else:
                items = raw.split(",")
        else:
            items = list(value)
        symbols: list[str] = []
        for item in items:
            cleaned = str(item).strip().strip('"').strip("'").strip()
            if cleaned and cleaned not in symbols:
                symbols.append(cleaned)
        return symbols

    @field_validator("shade_lend_permit", "shade_master_permit")
    def validate_permit(cls, value: SecretStr | None) -> SecretStr | None:
        if value is None:
            return None
        try:
            parsed = json.loads(value.get_secret_value())
        except json.JSONDecodeError as exc:
            raise ValueError("permit must be valid JSON") from exc
        if not isinstance(parsed, dict):
            raise ValueError("permit must be a JSON object")
        return value

    @field_validator("slippage_tolerance")
    def validate_slippage_tolerance(cls, value: Decimal) -> Decimal:
        if value < 0 or value >= 1:
            raise ValueError("SLIPPAGE_TOLERANCE must be >= 0 and < 1")
        return value

    @field_validator("repay_max_claimable_rewards", "pool_total_decimals", "silk_token_decimals")
    def validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("value must be >= 0")
        return value

    @field_validator(
        "harvest_min_claimable_rewards",
        "max_route_hops",
        "balance_fetch_attempts",
        "stable_max_newton",
        "stable_max_bisect",
    )
    def validate_positive_int(cls, value: int) -> int:
        if value < 1:
            raise ValueError("value must be >= 1")
        return value

    @field_validator("gas_claim", "gas_deposit", "gas_repay", "gas_swap_base")
    def validate_gas(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("gas limits must be > 0")
        return value

    @field_validator("stable_epsilon")
    def validate_stable_epsilon(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("STABLE_EPSILON must be > 0")
        return value

    @field_validator("gas_stable_hop_multiplier")
    def validate_gas_multiplier(cls, value: Decimal) -> Decimal:
        if value <= 0:
            raise ValueError("GAS_STABLE_HOP_MULTIPLIER must be > 0")
        return value

    @field_validator("summary_interval_hours", "gateway_timeout_seconds")
    def validate_positive_float(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("value must be > 0")
        return value

    @field_validator("balance_fetch_delay_seconds")
    def validate_balance_fetch_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("BALANCE_FETCH_DELAY_SECONDS must be >= 0")
        return value

    def _alias(self, field_name: str) -> str:
        alias = type(self).model_fields[field_name].alias
        return alias or field_name.upper()

    def missing_required(self, *, harvest: bool = True) -> list[str]:
        """Env names of unset values needed to run; harvest needs a few more."""

        names = _REQUIRED_FIELDS + (_HARVEST_REQUIRED_FIELDS if harvest else ())
        return [self._alias(name) for name in names if not getattr(self, name)]

    def lend_permit(self) -> dict[str, Any]:
        if self.shade_lend_permit is None:
            return {}
        return json.loads(self.shade_lend_permit.get_secret_value())

    def master_permit(self) -> dict[str, Any]:
        if self.shade_master_permit is None:
            return {}
        return json.loads(self.shade_master_permit.get_secret_value())

    def debt_token(self) -> TokenRef:
        return TokenRef(
            address=self.silk_token_address or "",
            code_hash=self.silk_token_code_hash,
            decimals=self.silk_token_decimals,
            symbol=self.silk_token_symbol,
        )

    def iteration_controls(self) -> IterationControls:
        return IterationControls(
            epsilon=self.stable_epsilon,
            max_newton=self.stable_max_newton,
            max_bisect=self.stable_max_bisect,
        )

    def known_secrets(self) -> tuple[str, ...]:
        secrets = (
            self.gateway_api_token,
            self.shade_lend_permit,
            self.shade_master_permit,
            self.silk_viewing_key,
            self.bot_token,
        )
        return tuple(secret.get_secret_value() for secret in secrets if secret is not None)

    def engine_config(self) -> EngineConfig:
        missing = self.missing_required(harvest=False)
        if missing:
            raise ValueError(f"missing required settings: {', '.join(missing)}")
        contracts = ProtocolContracts(
            stability_pool=ContractRef(
                self.stability_pool_address or "", self.stability_pool_code_hash
            ),
            money_market=ContractRef(self.money_market_address or "", self.money_market_code_hash),
            router=ContractRef(self.router_address or "", self.router_code_hash),
            batch_query=ContractRef(self.batch_query_contract or "", self.batch_query_hash),
            debt_token=self.debt_token(),
            native_reward_token_address=self.shd_token_address,
            lend_permit=MappingProxyType(self.lend_permit()),
            master_permit=MappingProxyType(self.master_permit()),
            pool_total_decimals=self.pool_total_decimals,
        )
        return EngineConfig(
            contracts=contracts,
            wallet_address=self.wallet_address or "",
            policy=DecisionPolicy(
                repay_max_claimable_rewards=self.repay_max_claimable_rewards,
                harvest_min_claimable_rewards=self.harvest_min_claimable_rewards,
                harvest_without_debt=self.harvest_without_debt,
                slippage_tolerance=self.slippage_tolerance,
                max_hops=self.max_route_hops,
            ),
            gas=GasSchedule(
                claim=self.gas_claim,
                deposit=self.gas_deposit,
                repay=self.gas_repay,
                swap_base=self.gas_swap_base,
                stable_hop_multiplier=self.gas_stable_hop_multiplier,
                fee_denom=self.fee_denom,
            ),
            alerts=AlertPolicy(stable_collateral_symbols=tuple(self.stable_collateral_symbols)),
            iteration_controls=self.iteration_controls(),
            summary_interval=timedelta(hours=self.summary_interval_hours),
            balance_fetch_attempts=self.balance_fetch_attempts,
            balance_fetch_delay_seconds=self.balance_fetch_delay_seconds,
        )
