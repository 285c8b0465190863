from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError

from journey_engine.config import LLMSettings
from journey_engine.errors import MalformedResponseError, TransportError
from journey_engine.llm import OpenAIJourneyClient, _parse_structured_response


class _Completions:
    def __init__(self, content: str | None = None, error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.requests: list[dict] = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(completions: _Completions) -> OpenAIJourneyClient:
    sdk = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAIJourneyClient(LLMSettings(openai_api_key="test"), model="test-model", client=sdk)


def test_parse_structured_response_strips_code_fences() -> None:
    raw = '```json\n{"stages": [{"title": "A"}]}\n```'
    assert _parse_structured_response(raw) == {"stages": [{"title": "A"}]}
    assert _parse_structured_response("not json") is None


@pytest.mark.asyncio
async def test_generate_stages_accepts_wrapped_and_bare_lists() -> None:
    wrapped = _Completions('{"islands": [{"title": "Plan"}, {"title": "Build"}]}')
    bare = _Completions('[{"title": "Plan"}]')

    assert await _client(wrapped).generate_stages("Title: Bakery", 2) == [{"title": "Plan"}, {"title": "Build"}]
    assert await _client(bare).generate_stages("Title: Bakery", 1) == [{"title": "Plan"}]
    request = wrapped.requests[0]
    assert request["model"] == "test-model"
    assert "Title: Bakery" in request["messages"][1]["content"]
    assert "exactly 2 stages" in request["messages"][1]["content"]


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [None, "", "I cannot help", '{"stages": "soon"}', '[1, 2]'])
async def test_generate_stages_rejects_unusable_replies(content) -> None:
    with pytest.raises(MalformedResponseError):
        await _client(_Completions(content)).generate_stages("Title: Bakery", 3)


@pytest.mark.asyncio
async def test_api_errors_become_transport_errors() -> None:
    error = APIConnectionError(request=httpx.Request("POST", "https://api.example.test/v1/chat/completions"))

    with pytest.raises(TransportError):
        await _client(_Completions(error=error)).answer_progress_question("Next?", "Progress: 0%")


@pytest.mark.asyncio
async def test_missing_api_key_is_a_transport_error() -> None:
    client = OpenAIJourneyClient(LLMSettings())

    with pytest.raises(TransportError):
        await client.generate_stages("Title: Bakery", 3)


@pytest.mark.asyncio
async def test_answer_is_trimmed() -> None:
    answer = await _client(_Completions("  Talk to five customers.  ")).answer_progress_question("Next?", "")
    assert answer == "Talk to five customers."
