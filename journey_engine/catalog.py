"""Stage catalogs: deterministic templates and AI-generated journeys."""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError

from .config import EngineSettings, get_engine_settings
from .errors import GenerationError, MalformedResponseError, TransportError, ValidationError
from .llm import AIClient
from .schemas import BusinessIdea, Stage, StageDraft, StageKind, new_id

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Template library
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PhaseTemplate:
    """A reusable middle stage of the template journey."""

    title: str
    description: str
    emoji: str
    base_weeks: int
    key_tasks: Tuple[str, ...]
    success_metrics: Tuple[str, ...]


PHASE_LIBRARY: Tuple[PhaseTemplate, ...] = (
    PhaseTemplate(
        title="Market Research",
        description="Identify key competitors and analyze their offerings.",
        emoji="🔍",
        base_weeks=1,
        key_tasks=("List the five closest competitors", "Interview potential customers"),
        success_metrics=("Competitor map drafted", "10 customer conversations logged"),
    ),
    PhaseTemplate(
        title="Business Plan",
        description="Draft the core business model and strategy.",
        emoji="📋",
        base_weeks=1,
        key_tasks=("Write a one-page business model", "Estimate startup costs"),
        success_metrics=("Plan reviewed by a mentor",),
    ),
    PhaseTemplate(
        title="Brand Identity",
        description="Create a logo and brand guidelines.",
        emoji="🎨",
        base_weeks=1,
        key_tasks=("Pick a name and domain", "Design a logo"),
        success_metrics=("Brand kit published",),
    ),
    PhaseTemplate(
        title="MVP Prototype",
        description="Build the minimum viable product.",
        emoji="🛠️",
        base_weeks=2,
        key_tasks=("Define the smallest useful feature set", "Build a clickable prototype"),
        success_metrics=("Prototype usable end to end",),
    ),
    PhaseTemplate(
        title="Early Users",
        description="Get feedback from 10 beta users.",
        emoji="🧪",
        base_weeks=2,
        key_tasks=("Recruit beta users", "Collect structured feedback"),
        success_metrics=("10 beta users onboarded", "Top 3 issues identified"),
    ),
    PhaseTemplate(
        title="Marketing Campaign",
        description="Start social media and email marketing.",
        emoji="📣",
        base_weeks=2,
        key_tasks=("Set up social channels", "Launch an email list"),
        success_metrics=("First 100 subscribers",),
    ),
    PhaseTemplate(
        title="First Customers",
        description="Close the first 5 paying customers.",
        emoji="🤝",
        base_weeks=3,
        key_tasks=("Define pricing", "Run sales conversations"),
        success_metrics=("5 paying customers",),
    ),
    PhaseTemplate(
        title="Iterate on Feedback",
        description="Implement user suggestions and improvements.",
        emoji="🔁",
        base_weeks=2,
        key_tasks=("Prioritise the feedback backlog", "Ship weekly improvements"),
        success_metrics=("Retention improves month over month",),
    ),
    PhaseTemplate(
        title="Scale Operations",
        description="Hire a team and expand to new markets.",
        emoji="📈",
        base_weeks=4,
        key_tasks=("Document repeatable processes", "Plan the first hires"),
        success_metrics=("Operations run without the founder in every loop",),
    ),
)

DIFFICULTY_MULTIPLIER: Dict[str, int] = {"easy": 1, "medium": 2, "hard": 3}


# ---------------------------------------------------------------------------
# Text utilities
# ---------------------------------------------------------------------------

STOP_WORDS = {
    "and",
    "the",
    "for",
    "with",
    "that",
    "this",
    "from",
    "into",
    "your",
    "their",
    "about",
    "using",
    "startup",
    "business",
    "solution",
    "platform",
    "service",
    "help",
    "helps",
    "users",
    "customer",
    "customers",
}


def _extract_keywords(*texts: str, max_terms: int = 3) -> List[str]:
    """Extract the top keywords from the provided text fragments."""

    joined = " ".join(part for part in texts if part)
    words = re.findall(r"[a-zA-Z][a-zA-Z0-9-]+", joined.lower())
    counts: Counter[str] = Counter(word for word in words if word not in STOP_WORDS and len(word) > 2)
    # Ties resolve by first appearance, which keeps templates deterministic.
    return [word for word, _ in counts.most_common(max_terms)]


def _titleize(word: str) -> str:
    return word.replace("-", " ").title()


def _duration(weeks: int) -> str:
    return f"{weeks} week" if weeks == 1 else f"{weeks} weeks"


def _template_stage_id(idea: BusinessIdea, order: int) -> str:
    return f"{idea.id}-island-{order}"


def _sample_phases(count: int) -> List[PhaseTemplate]:
    """Pick *count* phases spread evenly across the library, in library order."""

    if count <= 0:
        return []
    size = len(PHASE_LIBRARY)
    return [PHASE_LIBRARY[((2 * index + 1) * size) // (2 * count) % size] for index in range(count)]


def _tailored_tasks(phase: PhaseTemplate, idea: BusinessIdea, keywords: Sequence[str]) -> List[str]:
    tasks = list(phase.key_tasks)
    if keywords:
        tasks.append(f"Keep the {_titleize(keywords[0])} angle front and centre")
    if phase.title == "MVP Prototype" and idea.required_skills:
        tasks.append(f"Lean on your {idea.required_skills[0]} skills")
    if phase.title == "Market Research" and idea.competition.lower() == "high":
        tasks.append(f"Find an underserved niche in {idea.category}")
    return tasks


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CatalogResult:
    """A valid stage list plus whether the template fallback produced it."""

    stages: List[Stage]
    used_fallback: bool
    error: str | None = None


def resolve_idea(selected: BusinessIdea | None, available: Sequence[BusinessIdea]) -> BusinessIdea | None:
    """Pick the idea a journey should be built for.

    An explicit selection wins; with no selection the first available idea is
    used, and ``None`` is returned only when there is nothing to choose from.
    """

    if selected is not None:
        return selected
    if available:
        return available[0]
    return None


class StageCatalog:
    """Build ordered stage lists for a business idea."""

    def __init__(self, ai_client: AIClient | None = None, settings: EngineSettings | None = None) -> None:
        self._ai_client = ai_client
        self._settings = settings or get_engine_settings()

    @property
    def default_count(self) -> int:
        return self._settings.default_stage_count

    def validate_count(self, desired_count: int) -> int:
        """Return *desired_count* or raise :class:`ValidationError` if out of bounds."""

        low, high = self._settings.min_stage_count, self._settings.max_stage_count
        if isinstance(desired_count, bool) or not isinstance(desired_count, int):
            raise ValidationError(f"Stage count must be an integer, got {desired_count!r}.")
        if not low <= desired_count <= high:
            raise ValidationError(f"Stage count must be between {low} and {high}, got {desired_count}.")
        return desired_count

    def build_template(self, idea: BusinessIdea, count: int | None = None) -> List[Stage]:
        """Deterministic journey derived from the idea's attributes. Never fails."""

        total = self.validate_count(count if count is not None else self.default_count)
        multiplier = DIFFICULTY_MULTIPLIER.get(idea.difficulty.lower(), 2)
        keywords = _extract_keywords(idea.title, idea.description, idea.category)

        stages = [
            Stage(
                id=_template_stage_id(idea, 0),
                title="Launch",
                description="Begin your entrepreneurial journey!",
                kind=StageKind.START,
                order=0,
                duration=_duration(1),
                key_tasks=[f"Write down why {idea.title} matters to you", "Set a weekly time budget"],
                success_metrics=["Journey kicked off"],
                emoji="🚀",
            )
        ]
        for offset, phase in enumerate(_sample_phases(total - 2)):
            order = offset + 1
            stages.append(
                Stage(
                    id=_template_stage_id(idea, order),
                    title=phase.title,
                    description=phase.description,
                    kind=StageKind.REGULAR if offset % 2 == 0 else StageKind.MILESTONE,
                    order=order,
                    duration=_duration(phase.base_weeks * multiplier),
                    key_tasks=_tailored_tasks(phase, idea, keywords),
                    success_metrics=list(phase.success_metrics),
                    emoji=phase.emoji,
                )
            )
        stages.append(
            Stage(
                id=_template_stage_id(idea, total - 1),
                title="Success",
                description=idea.title,
                kind=StageKind.TREASURE,
                order=total - 1,
                duration=idea.time_to_launch or None,
                key_tasks=["Celebrate the launch", "Set the next big goal"],
                success_metrics=["Business is live"],
                emoji="🏆",
            )
        )
        return stages

    async def request_generation(self, idea: BusinessIdea, desired_count: int) -> List[Stage]:
        """Ask the AI client for *desired_count* stages.

        Raises :class:`TransportError` when the call fails and
        :class:`MalformedResponseError` when the drafts cannot form a journey.
        """

        self.validate_count(desired_count)
        if self._ai_client is None:
            raise TransportError("No AI client configured.")
        try:
            raw = await self._ai_client.generate_stages(idea.summary(), desired_count)
        except GenerationError:
            raise
        except Exception as exc:
            raise TransportError(f"AI request failed: {exc!r}") from exc
        return self._parse_drafts(raw, desired_count)

    async def generate(self, idea: BusinessIdea, desired_count: int | None = None) -> CatalogResult:
        """Return AI stages when possible, the template otherwise.

        Generation failures are never propagated; the result's
        ``used_fallback`` flag tells callers which list they got.
        """

        count = self.validate_count(desired_count if desired_count is not None else self.default_count)
        try:
            stages = await self.request_generation(idea, count)
        except GenerationError as exc:
            logger.warning("Stage generation for idea %s failed, using template: %s", idea.id, exc)
            return CatalogResult(stages=self.build_template(idea), used_fallback=True, error=str(exc))
        logger.info("Generated %d AI stages for idea %s", len(stages), idea.id)
        return CatalogResult(stages=stages, used_fallback=False)

    def _parse_drafts(self, raw: Any, desired_count: int) -> List[Stage]:
        if not isinstance(raw, list):
            raise MalformedResponseError("Expected a list of stages.")
        try:
            drafts = [StageDraft.model_validate(item) for item in raw]
        except PydanticValidationError as exc:
            raise MalformedResponseError(f"Stage payload failed validation: {exc}") from exc

        if len(drafts) != desired_count:
            raise MalformedResponseError(f"Expected {desired_count} stages, got {len(drafts)}.")
        if any(not draft.title.strip() for draft in drafts):
            raise MalformedResponseError("Every stage needs a title.")

        orders = [draft.order for draft in drafts]
        if all(order is None for order in orders):
            ordered = list(drafts)
        elif any(order is None for order in orders) or sorted(orders) != list(range(desired_count)):
            raise MalformedResponseError(f"Stage orders must be unique and contiguous from 0, got {orders}.")
        else:
            ordered = sorted(drafts, key=lambda draft: draft.order)

        last = desired_count - 1
        stages = []
        for order, draft in enumerate(ordered):
            if draft.kind is not None:
                kind = draft.kind
            elif order == 0:
                kind = StageKind.START
            elif order == last:
                kind = StageKind.TREASURE
            else:
                kind = StageKind.REGULAR if order % 2 == 1 else StageKind.MILESTONE
            stages.append(
                Stage(
                    id=new_id(),
                    title=draft.title.strip(),
                    description=draft.description.strip(),
                    kind=kind,
                    order=order,
                    duration=draft.duration,
                    key_tasks=draft.key_tasks,
                    success_metrics=draft.success_metrics,
                    emoji=draft.emoji,
                )
            )
        return stages
