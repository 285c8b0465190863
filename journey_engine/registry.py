"""Keep one journey engine per idea for the lifetime of an application."""

from __future__ import annotations

from typing import Callable, Dict

from .engine import JourneyEngine

EngineFactory = Callable[[], JourneyEngine]


class JourneyRegistry:
    """Map idea ids to their engines, creating them on first open."""

    def __init__(self, factory: EngineFactory) -> None:
        self._factory = factory
        self._engines: Dict[str, JourneyEngine] = {}

    def get(self, idea_id: str) -> JourneyEngine | None:
        return self._engines.get(idea_id)

    def get_or_create(self, idea_id: str) -> JourneyEngine:
        engine = self._engines.get(idea_id)
        if engine is None:
            engine = self._factory()
            self._engines[idea_id] = engine
        return engine

    async def flush(self) -> None:
        for engine in list(self._engines.values()):
            await engine.flush()
