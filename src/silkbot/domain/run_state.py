from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

LATENCY_WINDOW_SIZE = 100
SUMMARY_INTERVAL = timedelta(hours=2)


class RunStatePhase(StrEnum):
    FRESH = "fresh"
    SUMMARY_DUE = "summary_due"


class RunState(BaseModel):
    """Rolling metrics persisted between scheduler invocations."""

    model_config = ConfigDict(validate_assignment=False, extra="ignore")

    started_at: datetime | None = None
    last_summary_at: datetime | None = None
    last_failure_at: datetime | None = None
    rolling_query_latencies: list[float] = Field(default_factory=list)
    successful_tx_count: int = 0
    failed_tx_count: int = 0
    failed_query_count: int = 0
    tracked_silk_amount: Decimal = Decimal("0")
    tracked_pool_amount: Decimal = Decimal("0")
    cumulative_profit: Decimal = Decimal("0")

    @field_validator("rolling_query_latencies")
    def trim_latency_window(cls, value: list[float]) -> list[float]:
        return list(value[-LATENCY_WINDOW_SIZE:])

    def record_query_latency(self, seconds: float) -> None:
        self.rolling_query_latencies.append(seconds)
        overflow = len(self.rolling_query_latencies) - LATENCY_WINDOW_SIZE
        if overflow > 0:
            del self.rolling_query_latencies[:overflow]

    def average_query_latency(self) -> float | None:
        if not self.rolling_query_latencies:
            return None
        return sum(self.rolling_query_latencies) / len(self.rolling_query_latencies)

    def phase(self, now: datetime, interval: timedelta = SUMMARY_INTERVAL) -> RunStatePhase:
        if self.started_at is None or self.last_summary_at is None:
            return RunStatePhase.SUMMARY_DUE
        if now - self.last_summary_at > interval:
            return RunStatePhase.SUMMARY_DUE
        return RunStatePhase.FRESH

    def summary_line(self, now: datetime) -> str:
        started = self.started_at or now
        hours = int((now - started).total_seconds() // 3600)
        average = self.average_query_latency()
        average_text = f"{average:.3f}" if average is not None else "n/a"
        return (
            f"Bot running for {hours} hours"
            f"  Successful: {self.successful_tx_count}"
            f"  Failed: {self.failed_tx_count}"
            f"  Queries Failed: {self.failed_query_count}"
            f"  Running Profit: {self.cumulative_profit}"
            f"  Average Query Length: {average_text}"
        )

    def emit_summary_if_due(
        self, now: datetime, interval: timedelta = SUMMARY_INTERVAL
    ) -> str | None:
        """Return the summary line and reset query failures when a summary is due."""

        if self.phase(now, interval) is RunStatePhase.FRESH:
            return None
        if self.started_at is None:
            self.started_at = now
        line = self.summary_line(now)
        self.last_summary_at = now
        self.failed_query_count = 0
        return line

    def record_failed_query(self) -> None:
        self.failed_query_count += 1

    def record_tx_success(self) -> None:
        self.successful_tx_count += 1

    def record_tx_failure(self, now: datetime) -> None:
        self.failed_tx_count += 1
        self.last_failure_at = now

    def track_position(self, *, silk_amount: Decimal, pool_amount: Decimal) -> None:
        self.tracked_silk_amount = silk_amount
        self.tracked_pool_amount = pool_amount

    def add_profit(self, profit: Decimal) -> None:
        self.cumulative_profit += profit
