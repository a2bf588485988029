from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from silkbot.domain.engine_config import AlertPolicy
from silkbot.domain.liquidity import Token
from silkbot.domain.models import ClaimableReward

_CENTS = Decimal("0.01")


@dataclass(frozen=True)
class CollateralExposure:
    symbol: str
    usd_value: Decimal


@dataclass(frozen=True)
class LiquidationAlert:
    created_at: datetime
    debt_symbol: str
    exposures: tuple[CollateralExposure, ...]
    debt_value: Decimal
    protocol_profit: Decimal

    def to_message(self) -> str:
        lines = [
            "*Silk Liquidation Alert*",
            "",
            f"*Time*: {self.created_at.isoformat()}",
            "*Type*: Silk Liquidation",
        ]
        for exposure in self.exposures:
            lines.append(f"*Collateral*: ${_usd(exposure.usd_value)} {exposure.symbol}")
        lines.append(f"*Debt*: ${_usd(self.debt_value)} {self.debt_symbol}")
        lines.append(f"*Protocol Profit*: ${_usd(self.protocol_profit)}")
        return "\n".join(lines) + "\n"


def _usd(value: Decimal) -> str:
    return str(value.quantize(_CENTS, rounding=ROUND_HALF_UP))


def first_positive_price(token: Token, prices: Mapping[str, Decimal]) -> Decimal | None:
    wanted = set(token.price_ids)
    for price_id, value in prices.items():
        if price_id in wanted and value is not None and value > 0:
            return value
    return None


def estimate_exposures(
    rewards: Iterable[ClaimableReward],
    *,
    tokens: Mapping[str, Token],
    prices: Mapping[str, Decimal],
    tracked_silk_amount: Decimal,
    tracked_pool_amount: Decimal,
    policy: AlertPolicy,
) -> list[CollateralExposure]:
    """Estimate liquidated collateral value from this account's reward slice.

    The account's pool share is taken from the previous run's tracked amounts; a
    reward of ``r`` at share ``s`` implies ``r / s / haircut`` collateral was seized.
    """

    if tracked_silk_amount <= 0 or tracked_pool_amount <= 0:
        return []
    share = tracked_silk_amount / tracked_pool_amount
    exposures: list[CollateralExposure] = []
    for reward in rewards:
        token = tokens.get(reward.token.address)
        if token is None:
            continue
        price = first_positive_price(token, prices)
        if price is None:
            continue
        collateral_base_units = reward.amount / share / policy.liquidation_fee_haircut
        collateral_tokens = collateral_base_units / Decimal(10) ** token.decimals
        usd_value = collateral_tokens * price
        if usd_value > 0:
            exposures.append(CollateralExposure(symbol=token.symbol, usd_value=usd_value))
    return exposures


def build_liquidation_alert(
    exposures: Iterable[CollateralExposure],
    *,
    debt_token: Token | None,
    prices: Mapping[str, Decimal],
    policy: AlertPolicy,
    now: datetime,
) -> LiquidationAlert | None:
    collected = tuple(exposures)
    if not collected or debt_token is None:
        return None
    if first_positive_price(debt_token, prices) is None:
        return None

    stable_symbols = set(policy.stable_collateral_symbols)
    debt_value = Decimal("0")
    protocol_profit = Decimal("0")
    for exposure in collected:
        protocol_profit += exposure.usd_value * policy.protocol_profit_ratio
        ratio = (
            policy.stable_debt_ratio
            if exposure.symbol in stable_symbols
            else policy.volatile_debt_ratio
        )
        debt_value += exposure.usd_value * ratio

    return LiquidationAlert(
        created_at=now,
        debt_symbol=debt_token.symbol,
        exposures=collected,
        debt_value=debt_value,
        protocol_profit=protocol_profit,
    )
