from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest

from journey_engine.calendar_sync import LocalCalendar
from journey_engine.catalog import StageCatalog
from journey_engine.config import EngineSettings, get_engine_settings, get_llm_settings
from journey_engine.engine import JourneyEngine
from journey_engine.errors import CalendarWriteError, PersistenceError
from journey_engine.persistence import MemoryStore
from journey_engine.schemas import BusinessIdea


class FakeAIClient:
    """Returns canned stages, or raises ``error`` when set."""

    def __init__(self, stages: List[Dict[str, Any]] | None = None, error: Exception | None = None) -> None:
        self.stages = stages
        self.error = error
        self.answer = "Ship the smallest thing that proves demand this week."
        self.calls: List[int] = []
        self.questions: List[tuple[str, str]] = []

    async def generate_stages(self, idea_summary: str, desired_count: int) -> List[Dict[str, Any]]:
        self.calls.append(desired_count)
        if self.error is not None:
            raise self.error
        if self.stages is not None:
            return self.stages
        return [
            {"order": index, "title": f"AI stage {index}", "description": f"Step {index}"}
            for index in range(desired_count)
        ]

    async def answer_progress_question(self, question: str, context_summary: str) -> str:
        self.questions.append((question, context_summary))
        if self.error is not None:
            raise self.error
        return self.answer


class GatedAIClient:
    """Each generation call blocks until its gate is opened by the test."""

    def __init__(self) -> None:
        self.gates: List[asyncio.Event] = []

    async def generate_stages(self, idea_summary: str, desired_count: int) -> List[Dict[str, Any]]:
        call = len(self.gates)
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()
        return [{"title": f"Call {call} stage {index}"} for index in range(desired_count)]

    async def answer_progress_question(self, question: str, context_summary: str) -> str:
        return "ok"

    async def wait_for_calls(self, count: int) -> None:
        while len(self.gates) < count:
            await asyncio.sleep(0)


class FlakyStore(MemoryStore):
    """Fails the next ``failures`` saves, then behaves like MemoryStore."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures

    async def save(self, idea_id, state) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceError("disk full")
        await super().save(idea_id, state)


class GatedStore(MemoryStore):
    """Loads block until the test releases the idea's gate."""

    def __init__(self) -> None:
        super().__init__()
        self.gates: Dict[str, asyncio.Event] = {}

    def release(self, idea_id: str) -> None:
        self.gates.setdefault(idea_id, asyncio.Event()).set()

    async def load(self, idea_id):
        await self.gates.setdefault(idea_id, asyncio.Event()).wait()
        return await super().load(idea_id)


class BrokenCalendar(LocalCalendar):
    """Grants access but fails every write."""

    async def create_event(self, title, notes, start, end) -> str:
        raise CalendarWriteError("calendar store unavailable")

    async def delete_event(self, event_ref: str) -> None:
        raise CalendarWriteError("calendar store unavailable")


class OfflineCalendar(LocalCalendar):
    """Fails every call with an error outside the calendar hierarchy."""

    async def create_event(self, title, notes, start, end) -> str:
        raise OSError("calendar daemon gone")

    async def delete_event(self, event_ref: str) -> None:
        raise OSError("calendar daemon gone")


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    """Ensure cached settings do not leak between tests."""

    get_llm_settings.cache_clear()
    get_engine_settings.cache_clear()


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def idea() -> BusinessIdea:
    return BusinessIdea(
        id="idea-1",
        title="Plant-based meal prep",
        description="Weekly plant-based meal prep boxes for busy professionals.",
        category="Food & Beverage",
        difficulty="Medium",
        required_skills=["cooking", "logistics"],
        competition="High",
        time_to_launch="3 months",
    )


@pytest.fixture
def other_idea() -> BusinessIdea:
    return BusinessIdea(id="idea-2", title="Dog walking app", category="Pets", difficulty="Easy")


@pytest.fixture
def ai_client() -> FakeAIClient:
    return FakeAIClient()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def calendar() -> LocalCalendar:
    return LocalCalendar()


@pytest.fixture
def catalog(ai_client: FakeAIClient, settings: EngineSettings) -> StageCatalog:
    return StageCatalog(ai_client, settings)


@pytest.fixture
def engine(catalog: StageCatalog, store: MemoryStore, calendar: LocalCalendar, ai_client: FakeAIClient) -> JourneyEngine:
    return JourneyEngine(catalog, store, calendar=calendar, ai_client=ai_client)
