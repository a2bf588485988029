from __future__ import annotations

from decimal import Decimal

import pytest

try:
    from hypothesis import given, settings
    from hypothesis import strategies as st
except ImportError:  # pragma: no cover - optional dependency
    pytestmark = pytest.mark.skip(reason="hypothesis is not installed")

    def given(*_args, **_kwargs):
        def _decorator(func):
            return func

        return _decorator

    def settings(*_args, **_kwargs):
        def _decorator(func):
            return func

        return _decorator

    class _MissingStrategies:
        @staticmethod
        def integers(*_args, **_kwargs):
            return None

        @staticmethod
        def lists(*_args, **_kwargs):
            return None

        @staticmethod
        def tuples(*_args, **_kwargs):
            return None

        @staticmethod
        def sampled_from(*_args, **_kwargs):
            return None

    st = _MissingStrategies()

from silkbot.domain.actions import RepayDebt
from silkbot.domain.decision import decide
from silkbot.domain.engine_config import EngineConfig, ProtocolContracts
from silkbot.domain.liquidity import LiquidityGraph, Pair, Token
from silkbot.domain.models import ClaimableReward, ContractRef, PositionSnapshot, TokenRef
from silkbot.domain.routing import find_routes

TOKENS = ("A", "B", "C", "D", "E")
SILK = TokenRef(address="silk", code_hash="silk-hash", decimals=6, symbol="SILK")
SHD = TokenRef(address="shd", code_hash="shd-hash", decimals=8, symbol="SHD")

CONFIG = EngineConfig(
    contracts=ProtocolContracts(
        stability_pool=ContractRef("pool", "pool-hash"),
        money_market=ContractRef("mm", "mm-hash"),
        router=ContractRef("router", "router-hash"),
        batch_query=ContractRef("batch", "batch-hash"),
        debt_token=SILK,
    ),
    wallet_address="secret1wallet",
)

_pair_specs = st.lists(
    st.tuples(
        st.sampled_from(TOKENS),
        st.sampled_from(TOKENS),
        st.integers(min_value=1_000, max_value=10_000_000),
        st.integers(min_value=1_000, max_value=10_000_000),
    ),
    min_size=1,
    max_size=8,
)


def _graph(specs) -> LiquidityGraph:
    pairs = [
        Pair(
            address=f"p{index}",
            code_hash="h",
            token_a=token_a,
            token_b=token_b,
            reserve_a=Decimal(reserve_a),
            reserve_b=Decimal(reserve_b),
            fee_bps=Decimal("30"),
        )
        for index, (token_a, token_b, reserve_a, reserve_b) in enumerate(specs)
        if token_a != token_b
    ]
    return LiquidityGraph(pairs, [Token(address=t, symbol=t, decimals=6) for t in TOKENS])


@settings(max_examples=75, deadline=None)
@given(specs=_pair_specs, amount=st.integers(min_value=1, max_value=1_000_000))
def test_routes_are_ranked_simple_and_bounded(specs, amount: int) -> None:
    graph = _graph(specs)

    routes = find_routes(graph, input_token="A", output_token="E", amount_in=Decimal(amount))

    outputs = [route.quote_output_amount for route in routes]
    assert outputs == sorted(outputs, reverse=True)
    for route in routes:
        assert 1 <= route.hops <= 3
        assert route.tokens[0] == "A"
        assert route.tokens[-1] == "E"
        assert len(set(route.tokens)) == len(route.tokens)
        assert len({pair.address for pair in route.pairs}) == route.hops
        assert route.quote_output_amount > 0
    again = find_routes(graph, input_token="A", output_token="E", amount_in=Decimal(amount))
    assert again == routes


@settings(max_examples=100, deadline=None)
@given(
    debt=st.integers(min_value=1, max_value=10**12),
    shortfall=st.integers(min_value=1, max_value=10**6),
    reward_count=st.integers(min_value=0, max_value=1),
)
def test_repay_never_fires_when_pool_share_is_below_debt(
    debt: int, shortfall: int, reward_count: int
) -> None:
    rewards = tuple(
        ClaimableReward(token=token, amount=Decimal("1"))
        for token in (SHD, SILK)[:reward_count]
    )
    snapshot = PositionSnapshot(
        debt_owed=Decimal(debt),
        pool_share=Decimal(max(debt - shortfall, 0)),
        pool_total_deposited=Decimal(10**13),
        claimable_rewards=rewards,
        fetched_at_block=1,
    )

    assert not isinstance(decide(snapshot, CONFIG), RepayDebt)


@settings(max_examples=100, deadline=None)
@given(
    debt=st.integers(min_value=1, max_value=10**12),
    surplus=st.integers(min_value=0, max_value=10**6),
)
def test_repay_amount_is_full_debt_when_share_covers_it(debt: int, surplus: int) -> None:
    snapshot = PositionSnapshot(
        debt_owed=Decimal(debt),
        pool_share=Decimal(debt + surplus),
        pool_total_deposited=Decimal(10**13),
        claimable_rewards=(ClaimableReward(token=SHD, amount=Decimal("5")),),
        fetched_at_block=1,
    )

    plan = decide(snapshot, CONFIG)

    assert isinstance(plan, RepayDebt)
    assert plan.amount == Decimal(debt)
