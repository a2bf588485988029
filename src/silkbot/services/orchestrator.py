from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

from silkbot.adapters.chain import ChainClient, QueryError
from silkbot.adapters.telegram_notifier import Notifier, NullNotifier
from silkbot.domain.actions import (
    ActionPlan,
    ContractCall,
    HarvestCycle,
    NoOp,
    RepayDebt,
    StepKind,
    SwapStep,
    TxCategory,
    claim_calls,
    deposit_calls,
    repay_calls,
    swap_calls,
)
from silkbot.domain.engine_config import EngineConfig
from silkbot.domain.liquidation_alert import build_liquidation_alert, estimate_exposures
from silkbot.domain.liquidity import LiquidityGraph
from silkbot.domain.models import ClaimableReward, PositionSnapshot
from silkbot.domain.run_state import RunState
from silkbot.logging_context import with_logging_context
from silkbot.services.execution_errors import (
    DependentStepFailure,
    ExecutionErrorCategory,
    FatalFailure,
    IndependentStepFailure,
    classify_chain_error,
    is_transient_query_error,
)
from silkbot.services.retry import RetryAttempt, RetryExhaustedError, retry_fixed
from silkbot.services.tx_log import TransactionLog

logger = logging.getLogger(__name__)


class StepStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepOutcome:
    kind: StepKind
    status: StepStatus
    tx_hash: str | None = None
    detail: object | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is StepStatus.SUCCEEDED


@dataclass
class ExecutionReport:
    plan: str
    outcomes: list[StepOutcome] = field(default_factory=list)
    abandoned: bool = False
    deposited_amount: Decimal | None = None
    profit: Decimal | None = None
    alert_sent: bool = False
    position_tracked: bool = False

    def steps(self, kind: StepKind) -> list[StepOutcome]:
        return [outcome for outcome in self.outcomes if outcome.kind is kind]


@dataclass(frozen=True)
class MarketContext:
    """Liquidity and price data fetched for this run."""

    graph: LiquidityGraph
    prices: Mapping[str, Decimal] = field(default_factory=dict)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TransactionOrchestrator:
    """Executes an ``ActionPlan`` one broadcast at a time and records the outcomes."""

    def __init__(
        self,
        client: ChainClient,
        config: EngineConfig,
        *,
        tx_log: TransactionLog,
        notifier: Notifier | None = None,
        viewing_key: str = "",
        sleep_fn: Callable[[float], None] = time.sleep,
        now_fn: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.client = client
        self.config = config
        self.tx_log = tx_log
        self.notifier = notifier or NullNotifier()
        self.viewing_key = viewing_key
        self.sleep_fn = sleep_fn
        self.now_fn = now_fn

    def execute(
        self,
        plan: ActionPlan,
        snapshot: PositionSnapshot,
        state: RunState,
        *,
        market: MarketContext | None = None,
    ) -> ExecutionReport:
        report = ExecutionReport(plan=type(plan).__name__)
        if isinstance(plan, NoOp):
            return report
        try:
            with with_logging_context(action=report.plan):
                if isinstance(plan, RepayDebt):
                    self._repay(plan, state, report)
                else:
                    self._harvest(plan, snapshot, state, report, market)
        except DependentStepFailure as exc:
            report.abandoned = True
            logger.warning(
                "plan_abandoned",
                extra={"extra": {"step": exc.step, "tx_hash": exc.tx_hash, "reason": str(exc)}},
            )
        return report

    def _submit(
        self,
        kind: StepKind,
        calls: list[ContractCall],
        *,
        gas_limit: int,
        category: TxCategory,
        state: RunState,
        profit: Decimal | None = None,
    ) -> StepOutcome:
        now = self.now_fn()
        with with_logging_context(step=str(kind)):
            logger.info("tx_step_attempt", extra={"extra": {"gas_limit": gas_limit}})
            try:
                result = self.client.broadcast(
                    calls, gas_limit=gas_limit, fee_denom=self.config.gas.fee_denom
                )
            except Exception as exc:
                error_category = classify_chain_error(exc)
                if error_category is ExecutionErrorCategory.FATAL:
                    raise
                state.record_tx_failure(now)
                logger.error(
                    "tx_step_submit_failed",
                    extra={
                        "extra": {
                            "category": error_category.value,
                            "error_type": type(exc).__name__,
                            "reason": str(exc),
                        }
                    },
                )
                return StepOutcome(kind=kind, status=StepStatus.FAILED, detail=str(exc))

            if result.tx_hash:
                self.tx_log.append(now, result.tx_hash, category, profit)
            if result.succeeded:
                state.record_tx_success()
                logger.info(
                    "tx_step_succeeded",
                    extra={"extra": {"tx_hash": result.tx_hash, "json_log": result.json_log}},
                )
                return StepOutcome(
                    kind=kind,
                    status=StepStatus.SUCCEEDED,
                    tx_hash=result.tx_hash,
                    detail=result.json_log,
                )
            state.record_tx_failure(now)
            logger.warning(
                "tx_step_failed",
                extra={
                    "extra": {
                        "tx_hash": result.tx_hash,
                        "code": result.code,
                        "raw_log": result.raw_log,
                    }
                },
            )
            return StepOutcome(
                kind=kind,
                status=StepStatus.FAILED,
                tx_hash=result.tx_hash,
                detail=result.raw_log,
            )

    def _repay(self, plan: RepayDebt, state: RunState, report: ExecutionReport) -> None:
        outcome = self._submit(
            StepKind.REPAY,
            repay_calls(plan, self.config.contracts),
            gas_limit=plan.gas_limit,
            category=TxCategory.REPAY,
            state=state,
        )
        report.outcomes.append(outcome)
        if not outcome.succeeded:
            raise DependentStepFailure(
                "repay transaction failed", step=StepKind.REPAY, tx_hash=outcome.tx_hash
            )

    def _harvest(
        self,
        plan: HarvestCycle,
        snapshot: PositionSnapshot,
        state: RunState,
        report: ExecutionReport,
        market: MarketContext | None,
    ) -> None:
        claim = self._submit(
            StepKind.CLAIM,
            claim_calls(self.config.contracts),
            gas_limit=plan.claim.gas_limit,
            category=TxCategory.CLAIM,
            state=state,
        )
        report.outcomes.append(claim)
        if not claim.succeeded:
            raise DependentStepFailure(
                "claim transaction failed", step=StepKind.CLAIM, tx_hash=claim.tx_hash
            )

        for step in plan.swaps:
            try:
                report.outcomes.append(self._swap(step, state))
            except IndependentStepFailure as exc:
                report.outcomes.append(
                    StepOutcome(
                        kind=StepKind.SWAP,
                        status=StepStatus.FAILED,
                        tx_hash=exc.tx_hash,
                        detail=str(exc),
                    )
                )
                logger.warning(
                    "swap_step_failed",
                    extra={
                        "extra": {
                            "reward_token": step.reward.token.address,
                            "tx_hash": exc.tx_hash,
                        }
                    },
                )
        for reward in plan.skipped_rewards:
            logger.info(
                "reward_not_swappable",
                extra={
                    "extra": {"reward_token": reward.token.address, "amount": str(reward.amount)}
                },
            )

        if market is not None:
            report.alert_sent = self._send_liquidation_alert(plan, state, market)

        balance = self._fetch_debt_balance(state)
        logger.info(
            "deposit_balance_fetched",
            extra={
                "extra": {
                    "expected_amount": str(plan.deposit.expected_amount),
                    "balance": str(balance),
                }
            },
        )
        if balance > 0:
            report.deposited_amount = balance
            report.profit = self._realized_profit(snapshot, balance, state)
            if report.profit is not None:
                state.add_profit(report.profit)
            deposit = self._submit(
                StepKind.DEPOSIT,
                deposit_calls(balance, self.config.contracts),
                gas_limit=plan.deposit.gas_limit,
                category=TxCategory.DEPOSIT,
                state=state,
                profit=report.profit,
            )
        else:
            logger.info("deposit_skipped", extra={"extra": {"reason": "zero_balance"}})
            deposit = StepOutcome(kind=StepKind.DEPOSIT, status=StepStatus.SKIPPED)
        report.outcomes.append(deposit)

        state.track_position(
            silk_amount=snapshot.pool_share + balance,
            pool_amount=snapshot.pool_total_deposited + balance,
        )
        report.position_tracked = True

    def _swap(self, step: SwapStep, state: RunState) -> StepOutcome:
        outcome = self._submit(
            StepKind.SWAP,
            swap_calls(step, self.config.contracts),
            gas_limit=step.gas_limit,
            category=TxCategory.SWAP,
            state=state,
        )
        if not outcome.succeeded:
            raise IndependentStepFailure(
                f"swap of {step.reward.token.address} failed",
                step=StepKind.SWAP,
                tx_hash=outcome.tx_hash,
            )
        return outcome

    def _fetch_debt_balance(self, state: RunState) -> Decimal:
        debt_token = self.config.debt_token

        def fetch() -> Decimal | None:
            try:
                return self.client.query_balance(
                    debt_token.contract,
                    address=self.config.wallet_address,
                    viewing_key=self.viewing_key,
                )
            except QueryError as exc:
                if is_transient_query_error(exc):
                    state.record_failed_query()
                raise

        def on_retry(attempt: RetryAttempt) -> None:
            logger.warning(
                "balance_fetch_retry",
                extra={
                    "extra": {
                        "attempt": attempt.attempt,
                        "delay_ms": attempt.delay_ms,
                        "error_type": attempt.error_type,
                    }
                },
            )

        try:
            return retry_fixed(
                fetch,
                attempts=self.config.balance_fetch_attempts,
                delay_seconds=self.config.balance_fetch_delay_seconds,
                retry_on_exceptions=(QueryError,),
                sleep_fn=self.sleep_fn,
                on_retry=on_retry,
            )
        except RetryExhaustedError as exc:
            raise FatalFailure(
                f"{debt_token.symbol or debt_token.address} balance unavailable "
                f"after {exc.attempts} attempts"
            ) from exc

    def _realized_profit(
        self, snapshot: PositionSnapshot, balance: Decimal, state: RunState
    ) -> Decimal | None:
        if state.tracked_silk_amount <= 0:
            logger.info("profit_baseline_missing")
            return None
        gained = snapshot.pool_share + balance - state.tracked_silk_amount
        return gained.scaleb(-self.config.debt_token.decimals)

    def _alert_rewards(self, plan: HarvestCycle) -> list[ClaimableReward]:
        excluded = {
            self.config.debt_token.address,
            self.config.contracts.native_reward_token_address,
        }
        return [
            step.reward for step in plan.swaps if step.reward.token.address not in excluded
        ]

    def _send_liquidation_alert(
        self, plan: HarvestCycle, state: RunState, market: MarketContext
    ) -> bool:
        exposures = estimate_exposures(
            self._alert_rewards(plan),
            tokens=market.graph.tokens,
            prices=market.prices,
            tracked_silk_amount=state.tracked_silk_amount,
            tracked_pool_amount=state.tracked_pool_amount,
            policy=self.config.alerts,
        )
        alert = build_liquidation_alert(
            exposures,
            debt_token=market.graph.token(self.config.debt_token.address),
            prices=market.prices,
            policy=self.config.alerts,
            now=self.now_fn(),
        )
        if alert is None:
            return False
        logger.info(
            "liquidation_alert",
            extra={
                "extra": {
                    "collateral": [exposure.symbol for exposure in alert.exposures],
                    "debt_value": str(alert.debt_value),
                }
            },
        )
        return self.notifier.send(alert.to_message())
