"""OpenAI-compatible client for stage generation and progress questions."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from textwrap import dedent
from typing import Any, Dict, List, Protocol

from openai import APIError, AsyncOpenAI

from .config import DEFAULT_MODELS, LLMSettings, get_engine_settings, get_llm_settings
from .errors import MalformedResponseError, TransportError

logger = logging.getLogger(__name__)


class AIClient(Protocol):
    """What the engine needs from a generative-AI backend.

    Implementations raise :class:`TransportError` or
    :class:`MalformedResponseError`; they never return partial results.
    """

    async def generate_stages(self, idea_summary: str, desired_count: int) -> List[Dict[str, Any]]:
        ...

    async def answer_progress_question(self, question: str, context_summary: str) -> str:
        ...


@dataclass(frozen=True)
class PromptSpec:
    """Container describing how to call the LLM for one request."""

    system_prompt: str
    user_prompt: str
    temperature: float = 0.7
    max_tokens: int = 900


def _parse_structured_response(raw_text: str) -> Any | None:
    """Attempt to coerce the model output into JSON."""

    text = raw_text.strip()
    if text.startswith("```"):
        lines = [line.rstrip() for line in text.splitlines()]
        if len(lines) >= 2:
            lines = lines[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            text = "\n".join(lines).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _extract_stage_list(payload: Any) -> List[Dict[str, Any]] | None:
    """Accept either a bare list or ``{"stages": [...]}``/``{"islands": [...]}``."""

    if isinstance(payload, dict):
        payload = payload.get("stages", payload.get("islands"))
    if not isinstance(payload, list):
        return None
    if not all(isinstance(item, dict) for item in payload):
        return None
    return payload


def _stages_prompt(idea_summary: str, desired_count: int) -> PromptSpec:
    user_prompt = dedent(
        f"""
        Create a step-by-step journey for building the business below.

        {idea_summary}

        Return exactly {desired_count} stages, in order, as JSON:
        {{
          "stages": [
            {{
              "order": integer starting at 0,
              "title": string,
              "description": string,
              "duration": string,
              "key_tasks": [string],
              "success_metrics": [string],
              "emoji": string
            }}
          ]
        }}

        The first stage starts the journey and the last stage is the launch goal.
        Keep titles short and tasks concrete.
        """
    )
    return PromptSpec(
        system_prompt="You are an expert startup coach who plans realistic business journeys.",
        user_prompt=user_prompt,
        temperature=0.7,
        max_tokens=1500,
    )


def _question_prompt(question: str, context_summary: str) -> PromptSpec:
    user_prompt = dedent(
        f"""
        The user is on a stage-by-stage journey to build their business.

        {context_summary}

        User's question: {question}

        Provide a helpful, encouraging response with specific actionable advice.
        Keep it conversational and motivating.
        """
    )
    return PromptSpec(
        system_prompt="You are a supportive business coach.",
        user_prompt=user_prompt,
        temperature=0.8,
        max_tokens=600,
    )


class OpenAIJourneyClient:
    """:class:`AIClient` backed by the ``openai`` SDK.

    Works against any OpenAI-compatible endpoint; the provider and its base URL
    come from :class:`LLMSettings`.
    """

    def __init__(
        self,
        settings: LLMSettings | None = None,
        *,
        model: str | None = None,
        timeout: float | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._settings = settings or get_llm_settings()
        engine_settings = get_engine_settings()
        provider = self._settings.primary_provider
        self.provider = provider
        self.model = model or engine_settings.llm_model or DEFAULT_MODELS.get(provider or "openai", "gpt-4o-mini")
        self._timeout = timeout if timeout is not None else engine_settings.llm_timeout
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        """Return a lazily built SDK client, or fail as a transport problem."""

        if self._client is not None:
            return self._client
        api_key = self._settings.get_api_key()
        if not api_key:
            raise TransportError("No LLM provider API key is configured.")
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=self._settings.get_base_url(),
            timeout=self._timeout,
        )
        return self._client

    async def _invoke(self, spec: PromptSpec) -> str:
        client = self._get_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": spec.system_prompt.strip()},
                    {"role": "user", "content": spec.user_prompt.strip()},
                ],
                temperature=spec.temperature,
                max_tokens=spec.max_tokens,
            )
        except APIError as exc:
            logger.warning("LLM request to %s failed: %s", self.provider, exc)
            raise TransportError(str(exc)) from exc

        message = response.choices[0].message.content if response.choices else None
        if not message:
            raise MalformedResponseError("LLM returned an empty message.")
        return message

    async def generate_stages(self, idea_summary: str, desired_count: int) -> List[Dict[str, Any]]:
        message = await self._invoke(_stages_prompt(idea_summary, desired_count))
        stages = _extract_stage_list(_parse_structured_response(message))
        if stages is None:
            raise MalformedResponseError("LLM response did not contain a stage list.")
        return stages

    async def answer_progress_question(self, question: str, context_summary: str) -> str:
        message = await self._invoke(_question_prompt(question, context_summary))
        return message.strip()
