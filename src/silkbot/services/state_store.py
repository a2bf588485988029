from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from silkbot.domain.run_state import RunState

logger = logging.getLogger(__name__)


class RunStateCorruptError(RuntimeError):
    """The persisted run state exists but cannot be parsed."""


class RunStateRepository(Protocol):
    def load(self) -> RunState: ...

    def save(self, state: RunState) -> None: ...


class JsonFileRunStateStore:
    """Run state kept in one JSON document, replaced atomically on save."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def load(self) -> RunState:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("run_state_initialized", extra={"extra": {"path": str(self.path)}})
            return RunState()
        try:
            return RunState.model_validate_json(raw)
        except ValidationError as exc:
            raise RunStateCorruptError(f"run state at {self.path} is unreadable") from exc

    def save(self, state: RunState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.{os.getpid()}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as handle:
            handle.write(state.model_dump_json(indent=2))
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, self.path)


class InMemoryRunStateStore:
    def __init__(self, state: RunState | None = None) -> None:
        self._payload = state.model_dump_json() if state is not None else None
        self.save_count = 0

    def load(self) -> RunState:
        if self._payload is None:
            return RunState()
        return RunState.model_validate_json(self._payload)

    def save(self, state: RunState) -> None:
        self._payload = state.model_dump_json()
        self.save_count += 1

    @property
    def current(self) -> RunState | None:
        if self._payload is None:
            return None
        return RunState.model_validate_json(self._payload)
