from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from silkbot.domain.actions import TxCategory

logger = logging.getLogger(__name__)


def format_tx_line(
    now: datetime, tx_hash: str, category: TxCategory, profit: Decimal | None = None
) -> str:
    timestamp_ms = int(now.timestamp() * 1000)
    fields = [str(timestamp_ms), tx_hash, str(category)]
    if profit is not None:
        fields.append(format(profit.normalize(), "f"))
    return ",".join(fields) + "\n"


class TransactionLog:
    """Append-only record of every transaction hash the agent obtained."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def append(
        self,
        now: datetime,
        tx_hash: str,
        category: TxCategory,
        profit: Decimal | None = None,
    ) -> bool:
        line = format_tx_line(now, tx_hash, category, profit)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line)
        except OSError as exc:
            logger.error(
                "tx_log_append_failed",
                extra={
                    "extra": {
                        "path": str(self.path),
                        "tx_hash": tx_hash,
                        "category": str(category),
                        "error_type": type(exc).__name__,
                    }
                },
            )
            return False
        return True

