from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any, Protocol
from uuid import uuid4

from silkbot.adapters.graphql_client import build_liquidity_graph
from silkbot.domain.actions import ActionPlan, HarvestCycle, NoOp
from silkbot.domain.decision import PolicyChoice, decide, select_policy
from silkbot.domain.engine_config import EngineConfig
from silkbot.domain.run_state import RunState
from silkbot.logging_context import with_run_context
from silkbot.services.execution_errors import ExecutionErrorCategory, classify_chain_error
from silkbot.services.orchestrator import ExecutionReport, MarketContext, TransactionOrchestrator
from silkbot.services.snapshot_service import PositionSnapshotBuilder
from silkbot.services.state_store import RunStateRepository

logger = logging.getLogger(__name__)

LIQUIDITY_UNAVAILABLE = "liquidity_data_unavailable"


class LiquidityDataSource(Protocol):
    def fetch_pools(self) -> list[dict[str, Any]] | None: ...

    def fetch_tokens(self) -> list[dict[str, Any]] | None: ...

    def fetch_prices(self) -> dict[str, Decimal] | None: ...


class RunStatus(StrEnum):
    COMPLETED = "completed"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class RunOutcome:
    run_id: str
    status: RunStatus
    plan: ActionPlan | None = None
    report: ExecutionReport | None = None
    summary: str | None = None
    reason: str | None = None


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AgentRunner:
    """One scheduler invocation: snapshot, decide, execute, persist."""

    def __init__(
        self,
        *,
        config: EngineConfig,
        store: RunStateRepository,
        snapshot_builder: PositionSnapshotBuilder,
        orchestrator: TransactionOrchestrator,
        liquidity_source: LiquidityDataSource | None = None,
        now_fn: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config
        self.store = store
        self.snapshot_builder = snapshot_builder
        self.orchestrator = orchestrator
        self.liquidity_source = liquidity_source
        self.now_fn = now_fn

    def run_once(self) -> RunOutcome:
        run_id = uuid4().hex[:12]
        with with_run_context(run_id):
            state = self.store.load()
            try:
                outcome = self._run(run_id, state)
            except Exception as exc:
                if classify_chain_error(exc) is not ExecutionErrorCategory.TRANSIENT:
                    self._persist_best_effort(state)
                    raise
                state.record_failed_query()
                logger.warning(
                    "run_deferred",
                    extra={
                        "extra": {
                            "reason": str(exc),
                            "failed_query_count": state.failed_query_count,
                        }
                    },
                )
                outcome = RunOutcome(run_id=run_id, status=RunStatus.DEFERRED, reason=str(exc))
            except BaseException:
                self._persist_best_effort(state)
                raise
            self.store.save(state)
            logger.info(
                "run_completed",
                extra={"extra": {"status": str(outcome.status), "reason": outcome.reason}},
            )
            return outcome

    def _run(self, run_id: str, state: RunState) -> RunOutcome:
        summary = state.emit_summary_if_due(self.now_fn(), self.config.summary_interval)
        if summary is not None:
            logger.info("run_summary", extra={"extra": {"summary": summary}})

        snapshot = self.snapshot_builder.build(state)
        selection = select_policy(snapshot, self.config.policy)
        market: MarketContext | None = None
        if selection.choice is PolicyChoice.HARVEST:
            market = self.load_market()
            if market is None:
                state.record_failed_query()

        plan = decide(snapshot, self.config, market.graph if market is not None else None)
        logger.info(
            "plan_selected",
            extra={
                "extra": {
                    "plan": type(plan).__name__,
                    "policy_reason": selection.reason,
                    "reason": plan.reason if isinstance(plan, NoOp) else None,
                    "swap_count": len(plan.swaps) if isinstance(plan, HarvestCycle) else 0,
                }
            },
        )
        report = self.orchestrator.execute(plan, snapshot, state, market=market)
        if not isinstance(plan, HarvestCycle):
            state.track_position(
                silk_amount=snapshot.pool_share, pool_amount=snapshot.pool_total_deposited
            )

        deferred = isinstance(plan, NoOp) and plan.reason == LIQUIDITY_UNAVAILABLE
        return RunOutcome(
            run_id=run_id,
            status=RunStatus.DEFERRED if deferred else RunStatus.COMPLETED,
            plan=plan,
            report=report,
            summary=summary,
            reason=plan.reason if isinstance(plan, NoOp) else None,
        )

    def load_market(self) -> MarketContext | None:
        if self.liquidity_source is None:
            return None
        pools = self.liquidity_source.fetch_pools()
        tokens = self.liquidity_source.fetch_tokens()
        if pools is None or tokens is None:
            return None
        prices = self.liquidity_source.fetch_prices() or {}
        graph = build_liquidity_graph(
            pools, tokens, controls=self.config.iteration_controls
        )
        logger.info(
            "liquidity_graph_loaded",
            extra={"extra": {"pair_count": len(graph), "token_count": len(graph.tokens)}},
        )
        return MarketContext(graph=graph, prices=prices)

    def _persist_best_effort(self, state: RunState) -> None:
        try:
            self.store.save(state)
        except Exception:  # noqa: BLE001
            logger.warning("run_state_persist_failed", exc_info=True)
