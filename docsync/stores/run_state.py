"""Run lock and debounce state kept under `.docsync/`."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import UTC, datetime
import json
import os
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional

from ..logging import get_logger

_STATE_VERSION = 1
LOCK_FILENAME = "run.lock"
STATE_FILENAME = "state.json"


class RunLockedError(RuntimeError):
    """Raised when another run holds the lock."""


class RunStateStore:
    """Serializes runs in one checkout and remembers when each head was last processed."""

    def __init__(
        self,
        state_dir: Path,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.state_dir = state_dir
        self._clock = clock or (lambda: datetime.now(UTC))
        self.logger = get_logger("stores.run_state")

    @property
    def lock_path(self) -> Path:
        return self.state_dir / LOCK_FILENAME

    @property
    def state_path(self) -> Path:
        return self.state_dir / STATE_FILENAME

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Hold the run lock for the duration of the block."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError as exc:
            raise RunLockedError(
                f"Another docsync run holds {self.lock_path}; remove it if that run is gone"
            ) from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(f"{os.getpid()} {self._timestamp()}\n")
            yield
        finally:
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                pass

    def seconds_since(self, head: str) -> Optional[float]:
        """Seconds since `head` was last recorded, or None when it never was."""
        entry = self._load().get(head)
        if not entry:
            return None
        try:
            recorded = datetime.fromisoformat(str(entry.get("started_at", "")).replace("Z", "+00:00"))
        except ValueError:
            return None
        return (self._clock() - recorded).total_seconds()

    def is_debounced(self, head: str, min_interval: float) -> bool:
        if min_interval <= 0:
            return False
        elapsed = self.seconds_since(head)
        return elapsed is not None and 0 <= elapsed < min_interval

    def record(self, head: str, *, commit_range: str) -> None:
        entries = self._load()
        entries[head] = {"started_at": self._timestamp(), "commit_range": commit_range}
        payload = {"version": _STATE_VERSION, "runs": entries}
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.state_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

    # ------------------------------------------------------------------
    # Internal helpers

    def _timestamp(self) -> str:
        return self._clock().isoformat().replace("+00:00", "Z")

    def _load(self) -> Dict[str, Dict[str, object]]:
        try:
            data = json.loads(self.state_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.warning("Ignoring unreadable run state %s: %s", self.state_path, exc)
            return {}
        if not isinstance(data, dict) or data.get("version") != _STATE_VERSION:
            return {}
        runs = data.get("runs")
        if not isinstance(runs, dict):
            return {}
        return {key: value for key, value in runs.items() if isinstance(key, str) and isinstance(value, dict)}


__all__ = ["LOCK_FILENAME", "RunLockedError", "RunStateStore", "STATE_FILENAME"]
