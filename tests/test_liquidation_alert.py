from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from silkbot.domain.engine_config import AlertPolicy
from silkbot.domain.liquidation_alert import (
    CollateralExposure,
    build_liquidation_alert,
    estimate_exposures,
    first_positive_price,
)
from silkbot.domain.liquidity import Token
from silkbot.domain.models import ClaimableReward, TokenRef

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
POLICY = AlertPolicy()

ATOM = Token(address="atom", symbol="ATOM", decimals=6, price_ids=("atom-usd",))
USDC = Token(address="usdc", symbol="USDC.axl", decimals=6, price_ids=("usdc-usd",))
SILK = Token(address="silk", symbol="SILK", decimals=6, price_ids=("silk-usd",))
UNPRICED = Token(address="junk", symbol="JUNK", decimals=6)
TOKENS = {token.address: token for token in (ATOM, USDC, SILK, UNPRICED)}
PRICES = {
    "atom-usd": Decimal("12"),
    "usdc-usd": Decimal("1"),
    "silk-usd": Decimal("1.05"),
}


def _reward(address: str, amount: str) -> ClaimableReward:
    return ClaimableReward(token=TokenRef(address=address), amount=Decimal(amount))


def _exposures(*rewards: ClaimableReward, silk: str = "2500", pool: str = "100000"):
    return estimate_exposures(
        rewards,
        tokens=TOKENS,
        prices=PRICES,
        tracked_silk_amount=Decimal(silk),
        tracked_pool_amount=Decimal(pool),
        policy=POLICY,
    )


def test_first_positive_price_ignores_unknown_and_zero() -> None:
    assert first_positive_price(ATOM, PRICES) == Decimal("12")
    assert first_positive_price(UNPRICED, PRICES) is None
    assert first_positive_price(ATOM, {"atom-usd": Decimal("0")}) is None


def test_exposure_scales_reward_by_pool_share_and_haircut() -> None:
    exposures = _exposures(_reward("atom", "24250"))

    assert exposures == [CollateralExposure(symbol="ATOM", usd_value=Decimal("12"))]


def test_exposures_skip_unknown_and_unpriced_tokens() -> None:
    exposures = _exposures(_reward("junk", "1000"), _reward("mystery", "1000"))

    assert exposures == []


def test_no_tracked_position_means_no_exposure() -> None:
    assert _exposures(_reward("atom", "24250"), silk="0") == []
    assert _exposures(_reward("atom", "24250"), pool="0") == []


def test_alert_applies_stable_and_volatile_debt_ratios() -> None:
    exposures = [
        CollateralExposure(symbol="ATOM", usd_value=Decimal("100")),
        CollateralExposure(symbol="USDC.axl", usd_value=Decimal("100")),
    ]

    alert = build_liquidation_alert(
        exposures, debt_token=SILK, prices=PRICES, policy=POLICY, now=NOW
    )

    assert alert is not None
    assert alert.debt_value == Decimal("185")
    assert alert.protocol_profit == Decimal("4")
    assert alert.debt_symbol == "SILK"


def test_alert_message_layout() -> None:
    alert = build_liquidation_alert(
        _exposures(_reward("atom", "24250")),
        debt_token=SILK,
        prices=PRICES,
        policy=POLICY,
        now=NOW,
    )

    assert alert is not None
    assert alert.to_message() == (
        "*Silk Liquidation Alert*\n"
        "\n"
        "*Time*: 2026-03-01T12:00:00+00:00\n"
        "*Type*: Silk Liquidation\n"
        "*Collateral*: $12.00 ATOM\n"
        "*Debt*: $10.80 SILK\n"
        "*Protocol Profit*: $0.24\n"
    )


def test_no_alert_without_exposures_or_debt_price() -> None:
    exposures = [CollateralExposure(symbol="ATOM", usd_value=Decimal("1"))]

    assert (
        build_liquidation_alert([], debt_token=SILK, prices=PRICES, policy=POLICY, now=NOW)
        is None
    )
    assert (
        build_liquidation_alert(exposures, debt_token=None, prices=PRICES, policy=POLICY, now=NOW)
        is None
    )
    assert (
        build_liquidation_alert(exposures, debt_token=SILK, prices={}, policy=POLICY, now=NOW)
        is None
    )
