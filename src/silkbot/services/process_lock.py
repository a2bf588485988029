from __future__ import annotations

import hashlib
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO


class LockHeldError(RuntimeError):
    """Another agent process already owns the lock for this state file."""


@dataclass(frozen=True)
class ProcessLock:
    path: str
    pid: int


def _default_lock_dir() -> Path:
    if os.name == "nt":
        root = os.getenv("LOCALAPPDATA") or tempfile.gettempdir()
        return Path(root) / "silkbot" / "locks"
    return Path(tempfile.gettempdir()) / "silkbot-locks"


def get_lock_dir() -> Path:
    configured = os.getenv("SILKBOT_LOCK_DIR")
    lock_dir = Path(configured).expanduser() if configured else _default_lock_dir()
    lock_dir.mkdir(parents=True, exist_ok=True)
    if not lock_dir.is_dir():
        raise RuntimeError(f"lock directory is not a directory: {lock_dir}")
    return lock_dir.resolve()


def lock_file_path(state_path: str) -> Path:
    key = str(Path(state_path).expanduser().resolve())
    digest = hashlib.sha256(key.encode()).hexdigest()[:16]
    return get_lock_dir() / f"silkbot-{digest}.lock"


def _read_owner_pid(path: Path) -> int | None:
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return int(text) if text.isdigit() else None


@contextmanager
def single_instance_lock(*, state_path: str) -> Iterator[ProcessLock]:
    """Hold an OS file lock scoped to one run-state file.

    Intended for local filesystems; flock semantics over network mounts vary.
    """

    path = lock_file_path(state_path)
    fd = os.open(path, os.O_CREAT | os.O_RDWR)
    fh: BinaryIO = os.fdopen(fd, "r+b")
    pid = os.getpid()
    lock_acquired = False
    try:
        try:
            if os.name == "nt":
                import msvcrt

                fh.seek(0)
                msvcrt_mod: Any = msvcrt
                msvcrt_mod.locking(fh.fileno(), msvcrt_mod.LK_NBLCK, 1)
            else:
                import fcntl

                fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            lock_acquired = True
        except OSError as exc:
            owner = _read_owner_pid(path)
            owner_text = f" owner_pid={owner}" if owner is not None else ""
            raise LockHeldError(
                "LOCKED: another silkbot run is in progress "
                f"for state_path={state_path} lock_path={path}.{owner_text}"
            ) from exc

        try:
            fh.seek(0)
            fh.truncate(0)
            fh.write(f"{pid}\n".encode())
            fh.flush()
            os.fsync(fh.fileno())
        except OSError:
            pass

        yield ProcessLock(path=str(path), pid=pid)
    finally:
        try:
            if lock_acquired:
                if os.name == "nt":
                    import msvcrt

                    fh.seek(0)
                    msvcrt_mod_unlock: Any = msvcrt
                    msvcrt_mod_unlock.locking(fh.fileno(), msvcrt_mod_unlock.LK_UNLCK, 1)
                else:
                    import fcntl

                    fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
        except OSError:
            pass
        try:
            fh.close()
        except OSError:
            pass
