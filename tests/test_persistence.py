from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import pytest

from conftest import FlakyStore
from journey_engine import progress
from journey_engine.errors import PersistenceError
from journey_engine.persistence import JsonFileStore, MemoryStore, OrderedWriter
from journey_engine.schemas import Note, ProgressState


@pytest.fixture
def state(catalog, idea) -> ProgressState:
    state = progress.new_state(idea.id, catalog.build_template(idea, 5))
    progress.advance(state)
    stage_id = state.stages[1].id
    state.notes[stage_id] = [Note(stage_id=stage_id, content="Priced out kitchens")]
    return state


@pytest.mark.asyncio
async def test_memory_store_round_trip(state: ProgressState) -> None:
    store = MemoryStore()

    await store.save(state.idea_id, state)
    loaded = await store.load(state.idea_id)

    assert loaded == state
    assert loaded is not state
    assert await store.load("unknown") is None


@pytest.mark.asyncio
async def test_json_store_round_trip_is_stable(tmp_path: Path, state: ProgressState) -> None:
    store = JsonFileStore(tmp_path)
    path = store.path_for(state.idea_id)

    await store.save(state.idea_id, state)
    first = path.read_bytes()
    await store.save(state.idea_id, await store.load(state.idea_id))
    second = path.read_bytes()

    assert first == second
    assert (await store.load(state.idea_id)) == state
    assert [entry.name for entry in tmp_path.iterdir()] == [path.name]


@pytest.mark.asyncio
async def test_json_store_sanitises_file_names(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path)

    path = store.path_for("../../etc/passwd")

    assert path.parent == tmp_path
    assert await store.load("never-saved") is None


@pytest.mark.asyncio
async def test_json_store_reports_corrupt_files(tmp_path: Path, state: ProgressState) -> None:
    store = JsonFileStore(tmp_path)
    store.path_for(state.idea_id).write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceError):
        await store.load(state.idea_id)


@pytest.mark.asyncio
async def test_json_store_reports_invalid_payloads(tmp_path: Path, state: ProgressState) -> None:
    store = JsonFileStore(tmp_path)
    payload = state.model_dump(mode="json")
    payload["current_index"] = 42
    store.path_for(state.idea_id).write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(PersistenceError):
        await store.load(state.idea_id)


@pytest.mark.asyncio
async def test_writer_saves_a_snapshot_not_the_live_state(state: ProgressState) -> None:
    store = MemoryStore()
    writer = OrderedWriter(store)

    writer.submit(state)
    progress.advance(state)
    await writer.flush()

    assert store.raw(state.idea_id)["current_index"] == 1


@pytest.mark.asyncio
async def test_writer_never_lets_an_older_revision_win(state: ProgressState) -> None:
    store = MemoryStore()
    writer = OrderedWriter(store)
    older = state.model_copy(deep=True)
    progress.advance(state)

    writer.submit(state)
    writer.submit(older)
    await writer.flush()

    assert store.raw(state.idea_id)["revision"] == state.revision
    assert store.raw(state.idea_id)["current_index"] == 2


@pytest.mark.asyncio
async def test_writer_skips_revisions_already_loaded(state: ProgressState) -> None:
    store = MemoryStore()
    writer = OrderedWriter(store)
    writer.mark_loaded(state)

    writer.submit(state)
    await writer.flush()

    assert store.raw(state.idea_id) is None


@pytest.mark.asyncio
async def test_writer_records_failures_and_recovers(state: ProgressState) -> None:
    store = FlakyStore(failures=1)
    writer = OrderedWriter(store)

    writer.submit(state)
    await writer.flush()

    assert isinstance(writer.last_error, PersistenceError)
    assert store.raw(state.idea_id) is None

    state.touch()
    writer.submit(state)
    await writer.flush()

    assert writer.last_error is None
    assert store.raw(state.idea_id)["revision"] == state.revision


class _CrashingStore(MemoryStore):
    async def save(self, idea_id, state) -> None:
        raise RuntimeError("driver bug")


@pytest.mark.asyncio
async def test_writer_logs_unexpected_save_crashes(
    state: ProgressState, caplog: pytest.LogCaptureFixture
) -> None:
    writer = OrderedWriter(_CrashingStore())

    with caplog.at_level(logging.ERROR, logger="journey_engine.persistence"):
        task = writer.submit(state)
        await asyncio.wait([task])
        await asyncio.sleep(0)

    assert any("driver bug" in str(record.exc_info[1]) for record in caplog.records if record.exc_info)
