"""Progress stores and the ordered, fire-and-forget writer the engine saves through."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Dict, Protocol, Set

from pydantic import ValidationError as PydanticValidationError

from .errors import PersistenceError
from .schemas import ProgressState

logger = logging.getLogger(__name__)


class ProgressStore(Protocol):
    """Key-value persistence for :class:`ProgressState`, keyed by idea id."""

    async def load(self, idea_id: str) -> ProgressState | None:
        ...

    async def save(self, idea_id: str, state: ProgressState) -> None:
        ...


def _dump(state: ProgressState) -> dict:
    return state.model_dump(mode="json")


def _restore(idea_id: str, payload: dict) -> ProgressState:
    try:
        return ProgressState.model_validate(payload)
    except PydanticValidationError as exc:
        raise PersistenceError(f"Stored progress for idea '{idea_id}' is invalid: {exc}") from exc


class MemoryStore:
    """Keep serialised journeys in process memory."""

    def __init__(self) -> None:
        self._store: Dict[str, dict] = {}

    async def load(self, idea_id: str) -> ProgressState | None:
        payload = self._store.get(idea_id)
        if payload is None:
            return None
        return _restore(idea_id, payload)

    async def save(self, idea_id: str, state: ProgressState) -> None:
        self._store[idea_id] = _dump(state)

    def raw(self, idea_id: str) -> dict | None:
        """Return the stored payload, as written."""

        return self._store.get(idea_id)


class JsonFileStore:
    """One JSON document per idea under *root*, replaced atomically on save."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, idea_id: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]+", "_", idea_id).strip("._") or "idea"
        return self.root / f"{safe}.json"

    async def load(self, idea_id: str) -> ProgressState | None:
        return await asyncio.to_thread(self._read, idea_id)

    async def save(self, idea_id: str, state: ProgressState) -> None:
        await asyncio.to_thread(self._write, idea_id, _dump(state))

    def _read(self, idea_id: str) -> ProgressState | None:
        path = self.path_for(idea_id)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Could not read {path}: {exc}") from exc
        return _restore(idea_id, payload)

    def _write(self, idea_id: str, payload: dict) -> None:
        path = self.path_for(idea_id)
        text = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(text)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise PersistenceError(f"Could not write {path}: {exc}") from exc


class OrderedWriter:
    """Schedule saves without blocking callers, never letting an older revision win.

    Each submission snapshots the state; writes run one at a time and a
    snapshot whose revision is not newer than the last one written for the
    same idea is skipped.
    """

    def __init__(self, store: ProgressStore) -> None:
        self.store = store
        self.last_error: PersistenceError | None = None
        self._lock = asyncio.Lock()
        self._written: Dict[str, int] = {}
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, state: ProgressState) -> asyncio.Task:
        snapshot = state.model_copy(deep=True)
        task = asyncio.get_running_loop().create_task(self._write(snapshot))
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background save crashed", exc_info=exc)

    def mark_loaded(self, state: ProgressState) -> None:
        """Record that *state* is already what the store holds."""

        current = self._written.get(state.idea_id, -1)
        self._written[state.idea_id] = max(current, state.revision)

    async def _write(self, snapshot: ProgressState) -> bool:
        async with self._lock:
            last = self._written.get(snapshot.idea_id, -1)
            if snapshot.revision <= last:
                logger.debug(
                    "Skipping stale save for idea %s (revision %d <= %d)",
                    snapshot.idea_id,
                    snapshot.revision,
                    last,
                )
                return False
            try:
                await self.store.save(snapshot.idea_id, snapshot)
            except (PersistenceError, OSError) as exc:
                # The next mutation submits a newer snapshot, which retries the write.
                self.last_error = exc if isinstance(exc, PersistenceError) else PersistenceError(str(exc))
                logger.error("Saving progress for idea %s failed: %s", snapshot.idea_id, exc)
                return False
            self._written[snapshot.idea_id] = snapshot.revision
            self.last_error = None
            return True

    async def flush(self) -> None:
        """Wait for every submitted write to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks))
