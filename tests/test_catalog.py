from __future__ import annotations

import pytest

from conftest import FakeAIClient
from journey_engine.catalog import StageCatalog, resolve_idea
from journey_engine.errors import MalformedResponseError, TransportError, ValidationError
from journey_engine.schemas import BusinessIdea, StageKind


@pytest.mark.parametrize("count", range(3, 11))
def test_template_has_contiguous_orders(catalog: StageCatalog, idea: BusinessIdea, count: int) -> None:
    stages = catalog.build_template(idea, count)

    assert len(stages) == count
    assert [stage.order for stage in stages] == list(range(count))
    assert len({stage.id for stage in stages}) == count
    assert stages[0].kind is StageKind.START
    assert stages[-1].kind is StageKind.TREASURE
    assert stages[-1].description == idea.title


def test_template_is_deterministic(catalog: StageCatalog, idea: BusinessIdea) -> None:
    assert catalog.build_template(idea) == catalog.build_template(idea)
    assert len(catalog.build_template(idea)) == catalog.default_count


def test_template_reflects_idea_attributes(catalog: StageCatalog, idea: BusinessIdea) -> None:
    easy = idea.model_copy(update={"difficulty": "Easy"})
    hard = idea.model_copy(update={"difficulty": "Hard"})

    easy_stages = catalog.build_template(easy, 10)
    hard_stages = catalog.build_template(hard, 10)

    assert easy_stages[1].duration != hard_stages[1].duration
    research = next(stage for stage in hard_stages if stage.title == "Market Research")
    assert any("Food & Beverage" in task for task in research.key_tasks)


@pytest.mark.parametrize("count", [0, 2, 11])
def test_counts_outside_bounds_are_rejected(catalog: StageCatalog, idea: BusinessIdea, count: int) -> None:
    with pytest.raises(ValidationError):
        catalog.build_template(idea, count)


@pytest.mark.asyncio
async def test_request_generation_orders_stages(settings, idea: BusinessIdea) -> None:
    client = FakeAIClient(
        stages=[
            {"order": 2, "title": "Launch day"},
            {"order": 0, "title": "Kickoff", "emoji": "🚀"},
            {"order": 1, "title": "Build", "key_tasks": ["Prototype"]},
        ]
    )
    catalog = StageCatalog(client, settings)

    stages = await catalog.request_generation(idea, 3)

    assert [stage.title for stage in stages] == ["Kickoff", "Build", "Launch day"]
    assert [stage.order for stage in stages] == [0, 1, 2]
    assert stages[0].kind is StageKind.START
    assert stages[2].kind is StageKind.TREASURE
    assert stages[1].key_tasks == ["Prototype"]
    assert client.calls == [3]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        [{"title": "Only one"}],
        [{"title": "A"}, {"title": "  "}, {"title": "C"}],
        [{"order": 0, "title": "A"}, {"order": 0, "title": "B"}, {"order": 1, "title": "C"}],
        [{"order": 0, "title": "A"}, {"order": 1, "title": "B"}, {"order": 3, "title": "C"}],
        [{"order": 0, "title": "A"}, {"title": "B"}, {"order": 2, "title": "C"}],
        [{"title": "A", "order": "first"}, {"title": "B"}, {"title": "C"}],
    ],
)
async def test_request_generation_rejects_malformed_payloads(settings, idea: BusinessIdea, payload) -> None:
    catalog = StageCatalog(FakeAIClient(stages=payload), settings)

    with pytest.raises(MalformedResponseError):
        await catalog.request_generation(idea, 3)


@pytest.mark.asyncio
async def test_generate_uses_ai_stages_when_valid(catalog: StageCatalog, idea: BusinessIdea) -> None:
    result = await catalog.generate(idea, 6)

    assert result.used_fallback is False
    assert result.error is None
    assert [stage.title for stage in result.stages] == [f"AI stage {index}" for index in range(6)]


@pytest.mark.asyncio
async def test_generate_falls_back_on_transport_error(settings, idea: BusinessIdea) -> None:
    catalog = StageCatalog(FakeAIClient(error=TransportError("timed out")), settings)

    result = await catalog.generate(idea, 5)

    assert result.used_fallback is True
    assert result.stages == catalog.build_template(idea)
    assert "timed out" in result.error


@pytest.mark.asyncio
async def test_generate_falls_back_on_malformed_response(settings, idea: BusinessIdea) -> None:
    catalog = StageCatalog(FakeAIClient(stages=[{"title": "Too few"}]), settings)

    result = await catalog.generate(idea, 4)

    assert result.used_fallback is True
    assert result.stages == catalog.build_template(idea)


@pytest.mark.asyncio
async def test_generate_falls_back_on_connection_failure(settings, idea: BusinessIdea) -> None:
    catalog = StageCatalog(FakeAIClient(error=ConnectionResetError("reset by peer")), settings)

    result = await catalog.generate(idea)

    assert result.used_fallback is True
    assert len(result.stages) == settings.default_stage_count


@pytest.mark.asyncio
async def test_generate_without_client_uses_template(settings, idea: BusinessIdea) -> None:
    catalog = StageCatalog(None, settings)

    result = await catalog.generate(idea)

    assert result.used_fallback is True
    assert result.stages == catalog.build_template(idea)


def test_resolve_idea_prefers_selection(idea: BusinessIdea, other_idea: BusinessIdea) -> None:
    assert resolve_idea(other_idea, [idea, other_idea]) is other_idea
    assert resolve_idea(None, [idea, other_idea]) is idea
    assert resolve_idea(None, []) is None


@pytest.mark.asyncio
async def test_unexpected_client_errors_become_transport_errors(settings, idea: BusinessIdea) -> None:
    catalog = StageCatalog(FakeAIClient(error=RuntimeError("sdk bug")), settings)

    with pytest.raises(TransportError):
        await catalog.request_generation(idea, 5)
    result = await catalog.generate(idea, 7)

    assert result.used_fallback is True
    assert result.stages == catalog.build_template(idea)
    assert "sdk bug" in result.error
