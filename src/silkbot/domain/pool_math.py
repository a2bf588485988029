from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, localcontext
from types import MappingProxyType
from typing import Protocol

from silkbot.domain.liquidity import IterationControls, Pair, PoolKind

_PRECISION = 60
_BPS = Decimal("10000")
_ZERO = Decimal("0")
_ONE = Decimal("1")
_BRACKET_EXPANSIONS = 64


class PricingError(ValueError):
    """Raised when a pool cannot quote a trade."""


class PoolPricer(Protocol):
    def quote(self, pair: Pair, token_in: str, amount_in: Decimal) -> Decimal:
        """Return the output amount in base units of the other token, floored."""
        ...


def _sides(pair: Pair, token_in: str) -> tuple[Decimal, Decimal, int, int, bool]:
    if token_in == pair.token_a:
        return pair.reserve_a, pair.reserve_b, pair.decimals_a, pair.decimals_b, True
    if token_in == pair.token_b:
        return pair.reserve_b, pair.reserve_a, pair.decimals_b, pair.decimals_a, False
    raise PricingError(f"token {token_in} is not part of pair {pair.address}")


def _after_fee(amount_in: Decimal, fee_bps: Decimal) -> Decimal:
    if fee_bps < 0 or fee_bps >= _BPS:
        raise PricingError(f"fee_bps out of range: {fee_bps}")
    return amount_in * (_ONE - fee_bps / _BPS)


def _floor(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_DOWN)


@dataclass(frozen=True)
class ConstantProductPricer:
    def quote(self, pair: Pair, token_in: str, amount_in: Decimal) -> Decimal:
        reserve_in, reserve_out, _, _, _ = _sides(pair, token_in)
        if amount_in <= 0:
            raise PricingError("amount_in must be > 0")
        if reserve_in <= 0 or reserve_out <= 0:
            raise PricingError(f"pair {pair.address} has no liquidity")
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            effective_in = _after_fee(amount_in, pair.fee_bps)
            amount_out = reserve_out * effective_in / (reserve_in + effective_in)
            return _floor(amount_out)


def _converged(step: Decimal, reference: Decimal, epsilon: Decimal) -> bool:
    return abs(step) <= epsilon * max(_ONE, abs(reference))


def solve_increasing_root(
    fn: Callable[[Decimal], Decimal],
    derivative: Callable[[Decimal], Decimal],
    *,
    lower: Decimal,
    upper: Decimal,
    initial: Decimal,
    controls: IterationControls,
) -> Decimal:
    """Root of an increasing function on ``[lower, upper]``.

    Newton steps run first; any step that leaves the bracket or a non-converging run
    falls back to bisection over the bracket.
    """

    if fn(lower) > 0 or fn(upper) < 0:
        raise PricingError("root is not bracketed")

    estimate = min(max(initial, lower), upper)
    for _ in range(controls.max_newton):
        slope = derivative(estimate)
        if slope <= 0:
            break
        step = fn(estimate) / slope
        candidate = estimate - step
        if candidate <= lower or candidate > upper:
            break
        if _converged(step, candidate, controls.epsilon):
            return candidate
        estimate = candidate

    lo, hi = lower, upper
    for _ in range(controls.max_bisect):
        mid = (lo + hi) / 2
        value = fn(mid)
        if value == 0 or _converged(hi - lo, mid, controls.epsilon):
            return mid
        if value < 0:
            lo = mid
        else:
            hi = mid
    raise PricingError("stable invariant solver did not converge")


def stable_invariant(x: Decimal, y: Decimal, amp: Decimal, controls: IterationControls) -> Decimal:
    """Solve the two-asset stable-swap invariant D for balances x and y."""

    if x <= 0 or y <= 0:
        raise PricingError("stable pool balances must be > 0")
    ann = amp * 4
    total = x + y
    product = 4 * x * y

    def fn(d: Decimal) -> Decimal:
        return d * d * d / product + (ann - 1) * d - ann * total

    def derivative(d: Decimal) -> Decimal:
        return 3 * d * d / product + ann - 1

    return solve_increasing_root(
        fn, derivative, lower=_ZERO, upper=total, initial=total, controls=controls
    )


def stable_balance_out(
    x_new: Decimal,
    invariant: Decimal,
    amp: Decimal,
    y_hint: Decimal,
    controls: IterationControls,
) -> Decimal:
    ann = amp * 4
    d_cubed = invariant * invariant * invariant

    def fn(y: Decimal) -> Decimal:
        return ann * (x_new + y) + invariant - ann * invariant - d_cubed / (4 * x_new * y)

    def derivative(y: Decimal) -> Decimal:
        return ann + d_cubed / (4 * x_new * y * y)

    lower = invariant * Decimal("1e-30")
    upper = max(invariant, y_hint)
    for _ in range(_BRACKET_EXPANSIONS):
        if fn(upper) >= 0:
            break
        upper *= 2
    else:
        raise PricingError("could not bracket stable balance")
    if fn(lower) > 0:
        raise PricingError("trade exhausts stable pool")
    return solve_increasing_root(
        fn, derivative, lower=lower, upper=upper, initial=y_hint, controls=controls
    )


@dataclass(frozen=True)
class StableSwapPricer:
    def quote(self, pair: Pair, token_in: str, amount_in: Decimal) -> Decimal:
        params = pair.stable_params
        if params is None:
            raise PricingError(f"pair {pair.address} has no stable parameters")
        if params.alpha <= 0:
            raise PricingError(f"pair {pair.address} has non-positive alpha")
        if amount_in <= 0:
            raise PricingError("amount_in must be > 0")
        reserve_in, reserve_out, decimals_in, decimals_out, a_to_b = _sides(pair, token_in)
        if reserve_in <= 0 or reserve_out <= 0:
            raise PricingError(f"pair {pair.address} has no liquidity")

        with localcontext() as ctx:
            ctx.prec = _PRECISION
            ratio = params.price_ratio if params.price_ratio and params.price_ratio > 0 else _ONE
            # Balances are normalized to whole tokens and token B is valued in token A.
            scale_in = ratio if not a_to_b else _ONE
            scale_out = ratio if a_to_b else _ONE
            whole_in = amount_in / Decimal(10) ** decimals_in
            min_trade = params.min_trade_size_a_for_b if a_to_b else params.min_trade_size_b_for_a
            if min_trade > 0 and whole_in < min_trade:
                raise PricingError(f"trade below minimum size for pair {pair.address}")

            x = reserve_in / Decimal(10) ** decimals_in * scale_in
            y = reserve_out / Decimal(10) ** decimals_out * scale_out
            dx = _after_fee(whole_in, pair.fee_bps) * scale_in
            controls = params.iteration_controls
            invariant = stable_invariant(x, y, params.alpha, controls)
            y_new = stable_balance_out(x + dx, invariant, params.alpha, y, controls)
            dy = y - y_new
            if dy <= 0:
                raise PricingError(f"pair {pair.address} quotes no output")
            if params.max_price_impact is not None and params.max_price_impact > 0:
                impact = _ONE - dy / dx
                if impact > params.max_price_impact:
                    raise PricingError(f"price impact {impact} exceeds pool maximum")
            amount_out = dy / scale_out * Decimal(10) ** decimals_out
            return _floor(amount_out)


DEFAULT_PRICERS: Mapping[PoolKind, PoolPricer] = MappingProxyType(
    {
        PoolKind.CONSTANT_PRODUCT: ConstantProductPricer(),
        PoolKind.STABLE: StableSwapPricer(),
    }
)


def quote_pair(
    pair: Pair,
    token_in: str,
    amount_in: Decimal,
    pricers: Mapping[PoolKind, PoolPricer] = DEFAULT_PRICERS,
) -> Decimal:
    pricer = pricers.get(pair.kind)
    if pricer is None:
        raise PricingError(f"no pricer registered for pool kind {pair.kind}")
    return pricer.quote(pair, token_in, amount_in)
