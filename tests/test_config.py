from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from pathlib import Path

import pytest

from silkbot.config import Settings

PERMIT = '{"params": {"chain_id": "secret-4", "permissions": ["owner"]}, "signature": {}}'


def _complete_env() -> dict[str, str]:
    return {
        "CHAIN_GATEWAY_URL": "http://gateway.test",
        "WALLET_ADDRESS": "secret1wallet",
        "BATCH_QUERY_CONTRACT": "secret1batch",
        "BATCH_QUERY_HASH": "batch-hash",
        "STABILITY_POOL_ADDRESS": "secret1pool",
        "STABILITY_POOL_CODE_HASH": "pool-hash",
        "MONEY_MARKET_ADDRESS": "secret1mm",
        "MONEY_MARKET_CODE_HASH": "mm-hash",
        "SILK_TOKEN_ADDRESS": "secret1silk",
        "SILK_TOKEN_CODE_HASH": "silk-hash",
        "SHADE_LEND_PERMIT": PERMIT,
        "SHADE_MASTER_PERMIT": PERMIT,
        "GRAPHQL": "http://graphql.test/graphql",
        "ROUTER_ADDRESS": "secret1router",
        "ROUTER_CODE_HASH": "router-hash",
        "SHD_TOKEN_ADDRESS": "secret1shd",
        "SILK_VIEWING_KEY": "api_key_test",
    }


def test_settings_defaults() -> None:
    settings = Settings()

    assert settings.repay_max_claimable_rewards == 1
    assert settings.harvest_min_claimable_rewards == 2
    assert settings.harvest_without_debt is False
    assert settings.slippage_tolerance == Decimal("0.05")
    assert settings.max_route_hops == 3
    assert settings.gas_claim == 450_000
    assert settings.gas_deposit == 500_000
    assert settings.gas_repay == 1_000_000
    assert settings.gas_swap_base == 750_000
    assert settings.gas_stable_hop_multiplier == Decimal("2.7")
    assert settings.balance_fetch_attempts == 5
    assert settings.stable_collateral_symbols == ["USDC.axl"]


def test_missing_required_lists_env_names() -> None:
    settings = Settings(WALLET_ADDRESS="secret1wallet")

    missing = settings.missing_required()

    assert "WALLET_ADDRESS" not in missing
    assert missing[:2] == ["CHAIN_GATEWAY_URL", "BATCH_QUERY_CONTRACT"]
    assert missing[-4:] == ["GRAPHQL", "ROUTER_ADDRESS", "SHD_TOKEN_ADDRESS", "SILK_VIEWING_KEY"]
    assert "GRAPHQL" not in settings.missing_required(harvest=False)


def test_complete_settings_have_nothing_missing() -> None:
    assert Settings(**_complete_env()).missing_required() == []


def test_engine_config_maps_settings() -> None:
    settings = Settings(
        **_complete_env(),
        SILK_TOKEN_DECIMALS=6,
        SLIPPAGE_TOLERANCE="0.01",
        HARVEST_WITHOUT_DEBT="true",
        SUMMARY_INTERVAL_HOURS=1,
        GAS_STABLE_HOP_MULTIPLIER="3",
    )

    config = settings.engine_config()

    assert config.wallet_address == "secret1wallet"
    assert config.contracts.stability_pool.code_hash == "pool-hash"
    assert config.contracts.batch_query.address == "secret1batch"
    assert config.contracts.native_reward_token_address == "secret1shd"
    assert config.contracts.lend_permit["params"]["chain_id"] == "secret-4"
    assert config.debt_token.address == "secret1silk"
    assert config.debt_token.symbol == "SILK"
    assert config.policy.slippage_tolerance == Decimal("0.01")
    assert config.policy.harvest_without_debt is True
    assert config.gas.stable_hop_multiplier == Decimal("3")
    assert config.summary_interval == timedelta(hours=1)


def test_engine_config_carries_stable_iteration_bounds() -> None:
    settings = Settings(
        **_complete_env(),
        STABLE_EPSILON="1e-12",
        STABLE_MAX_NEWTON=12,
        STABLE_MAX_BISECT=40,
    )

    controls = settings.engine_config().iteration_controls

    assert controls.epsilon == Decimal("1e-12")
    assert controls.max_newton == 12
    assert controls.max_bisect == 40
    assert Settings().iteration_controls().max_newton == 80


def test_engine_config_requires_base_settings() -> None:
    with pytest.raises(ValueError, match="STABILITY_POOL_ADDRESS"):
        Settings(WALLET_ADDRESS="secret1wallet").engine_config()


def test_loads_values_from_env_file(monkeypatch, tmp_path: Path) -> None:
    env_file = tmp_path / ".env.silk"
    env_file.write_text(
        "\n".join(
            [
                "WALLET_ADDRESS=secret1fromfile",
                "HARVEST_MIN_CLAIMABLE_REWARDS=3",
                "STABLE_COLLATERAL_SYMBOLS=USDC.axl,USDT",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)

    settings = Settings(_env_file=str(env_file))

    assert settings.wallet_address == "secret1fromfile"
    assert settings.harvest_min_claimable_rewards == 3
    assert settings.stable_collateral_symbols == ["USDC.axl", "USDT"]


def test_parse_stable_symbols_json_list() -> None:
    settings = Settings(STABLE_COLLATERAL_SYMBOLS='["USDC.axl", "USDT", "USDC.axl"]')

    assert settings.stable_collateral_symbols == ["USDC.axl", "USDT"]


def test_parse_stable_symbols_from_env(monkeypatch) -> None:
    monkeypatch.setenv("STABLE_COLLATERAL_SYMBOLS", " USDC.axl , 'USDT' ")

    assert Settings().stable_collateral_symbols == ["USDC.axl", "USDT"]


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("SLIPPAGE_TOLERANCE", "1"),
        ("SLIPPAGE_TOLERANCE", "-0.1"),
        ("REPAY_MAX_CLAIMABLE_REWARDS", -1),
        ("HARVEST_MIN_CLAIMABLE_REWARDS", 0),
        ("MAX_ROUTE_HOPS", 0),
        ("GAS_CLAIM", 0),
        ("GAS_SWAP_BASE", -5),
        ("GAS_STABLE_HOP_MULTIPLIER", "0"),
        ("SUMMARY_INTERVAL_HOURS", 0),
        ("BALANCE_FETCH_ATTEMPTS", 0),
        ("BALANCE_FETCH_DELAY_SECONDS", -1),
        ("STABLE_EPSILON", "0"),
        ("STABLE_MAX_NEWTON", 0),
        ("STABLE_MAX_BISECT", -1),
        ("SHADE_LEND_PERMIT", "not json"),
        ("SHADE_MASTER_PERMIT", "[1, 2]"),
    ],
)
def test_invalid_settings_raise(field: str, value: object) -> None:
    with pytest.raises(ValueError):
        Settings(**{field: value})


def test_secrets_are_not_rendered() -> None:
    settings = Settings(**_complete_env(), BOT_TOKEN="123:abc")

    rendered = repr(settings)

    assert "api_key_test" not in rendered
    assert "123:abc" not in rendered
    assert settings.known_secrets()[-1] == "123:abc"
