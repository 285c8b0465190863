"""Pydantic models for business ideas, stages and persisted journey progress."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

UNSCOPED_KEY = "unscoped"


def utc_now() -> datetime:
    """Return an aware UTC timestamp."""

    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class StageKind(str, Enum):
    """Opaque island label; views map it to an icon and colour."""

    START = "start"
    REGULAR = "regular"
    MILESTONE = "milestone"
    TREASURE = "treasure"


class BusinessIdea(BaseModel):
    """The idea a journey is built for."""

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    category: str = "General"
    difficulty: str = Field(default="Medium", description="Easy, Medium or Hard.")
    estimated_revenue: str = ""
    time_to_launch: str = ""
    required_skills: List[str] = Field(default_factory=list)
    startup_cost: str = ""
    profit_margin: str = ""
    market_demand: str = Field(default="Medium", description="High, Medium or Low.")
    competition: str = Field(default="Medium", description="High, Medium or Low.")
    user_id: str = ""
    personalized_notes: str = ""
    progress: int = Field(default=0, ge=0, le=100)

    def summary(self) -> str:
        """Compact description handed to the AI client."""

        parts = [f"Title: {self.title}"]
        if self.description:
            parts.append(f"Description: {self.description}")
        parts.append(f"Category: {self.category}")
        parts.append(f"Difficulty: {self.difficulty}")
        if self.time_to_launch:
            parts.append(f"Time to launch: {self.time_to_launch}")
        if self.required_skills:
            parts.append(f"Required skills: {', '.join(self.required_skills)}")
        if self.startup_cost:
            parts.append(f"Startup cost: {self.startup_cost}")
        parts.append(f"Market demand: {self.market_demand}; competition: {self.competition}")
        return "\n".join(parts)


class Stage(BaseModel):
    """One island of the journey. Replaced wholesale on regeneration."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    kind: StageKind = StageKind.REGULAR
    order: int = Field(..., ge=0)
    duration: Optional[str] = None
    key_tasks: List[str] = Field(default_factory=list)
    success_metrics: List[str] = Field(default_factory=list)
    emoji: Optional[str] = None
    # Dashboard goals whose completion lands the user past this stage.
    goal_ids: List[str] = Field(default_factory=list)


class StageDraft(BaseModel):
    """Loosely typed stage as returned by the AI client, before validation."""

    model_config = ConfigDict(extra="ignore")

    title: str = ""
    description: str = ""
    kind: Optional[StageKind] = None
    order: Optional[int] = None
    duration: Optional[str] = None
    key_tasks: List[str] = Field(default_factory=list)
    success_metrics: List[str] = Field(default_factory=list)
    emoji: Optional[str] = None

    @field_validator("kind", mode="before")
    @classmethod
    def _ignore_unknown_kind(cls, value: object) -> object:
        if isinstance(value, str) and value.lower() in StageKind._value2member_map_:
            return value.lower()
        if isinstance(value, StageKind):
            return value
        return None


class Note(BaseModel):
    """Free-form note attached to a stage."""

    id: str = Field(default_factory=new_id)
    stage_id: str
    content: str
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None


class Reminder(BaseModel):
    """User intent to be nudged at a point in time, optionally mirrored to a calendar."""

    id: str = Field(default_factory=new_id)
    stage_id: Optional[str] = None
    title: str
    message: str = ""
    scheduled_date: datetime
    is_completed: bool = False
    notify_via_calendar: bool = False
    calendar_event_ref: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None


class ProgressState(BaseModel):
    """The persisted aggregate: catalog version, position, notes and reminders."""

    idea_id: str
    stages: List[Stage] = Field(default_factory=list)
    current_index: int = Field(default=0, ge=0)
    completed_ids: List[str] = Field(default_factory=list)
    notes: Dict[str, List[Note]] = Field(default_factory=dict)
    reminders: Dict[str, List[Reminder]] = Field(default_factory=dict)
    revision: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_invariants(self) -> "ProgressState":
        orders = [stage.order for stage in self.stages]
        if orders != list(range(len(self.stages))):
            raise ValueError("stage orders must be contiguous and sorted from 0")
        ids = [stage.id for stage in self.stages]
        if len(set(ids)) != len(ids):
            raise ValueError("stage ids must be unique")
        if self.current_index > len(self.stages):
            raise ValueError("current_index is past the end of the journey")
        known = set(ids)
        if len(set(self.completed_ids)) != len(self.completed_ids):
            raise ValueError("completed_ids contains duplicates")
        unknown = [stage_id for stage_id in self.completed_ids if stage_id not in known]
        if unknown:
            raise ValueError(f"completed_ids reference unknown stages: {unknown}")
        passed = ids[: self.current_index]
        missing = [stage_id for stage_id in passed if stage_id not in set(self.completed_ids)]
        if missing:
            raise ValueError(f"stages below current_index are not completed: {missing}")
        goals = [goal_id for stage in self.stages for goal_id in stage.goal_ids]
        if len(set(goals)) != len(goals):
            raise ValueError("a goal can be linked to only one stage")
        return self

    @property
    def stage_ids(self) -> List[str]:
        return [stage.id for stage in self.stages]

    @property
    def is_finished(self) -> bool:
        return self.current_index >= len(self.stages)

    def index_of(self, stage_id: str) -> int | None:
        for stage in self.stages:
            if stage.id == stage_id:
                return stage.order
        return None

    def stage_for_goal(self, goal_id: str) -> Stage | None:
        for stage in self.stages:
            if goal_id in stage.goal_ids:
                return stage
        return None

    def touch(self) -> None:
        """Mark a mutation: bump the revision used to order persistence writes."""

        self.revision += 1
        self.updated_at = utc_now()


class ProgressSignal(BaseModel):
    """Externally sourced progress, e.g. a dashboard goal or milestone completion.

    Exactly one of ``stage_id``, ``goal_id``, ``completed_count`` or ``percent``
    is set. A ``goal_id`` resolves through the stage the goal is linked to.
    """

    source: str = "dashboard"
    stage_id: Optional[str] = None
    goal_id: Optional[str] = None
    completed_count: Optional[int] = Field(default=None, ge=0)
    percent: Optional[int] = Field(default=None, ge=0, le=100)

    @model_validator(mode="after")
    def _exactly_one(self) -> "ProgressSignal":
        provided = [
            value
            for value in (self.stage_id, self.goal_id, self.completed_count, self.percent)
            if value is not None
        ]
        if len(provided) != 1:
            raise ValueError("provide exactly one of stage_id, goal_id, completed_count or percent")
        return self


# ---------------------------------------------------------------------------
# HTTP payloads
# ---------------------------------------------------------------------------


class OpenJourneyRequest(BaseModel):
    """Payload for opening (or switching to) the journey of an idea."""

    idea: BusinessIdea


class RegenerateRequest(BaseModel):
    """Payload for rebuilding the stage catalog."""

    idea: Optional[BusinessIdea] = Field(
        default=None,
        description="Optional updated idea; defaults to the idea the journey was opened with.",
    )
    desired_count: Optional[int] = Field(default=None, description="Number of stages to generate.")


class NoteCreate(BaseModel):
    stage_id: str
    content: str
    tags: List[str] = Field(default_factory=list)


class NoteUpdate(BaseModel):
    content: str


class GoalLink(BaseModel):
    goal_ids: List[str] = Field(default_factory=list)


class ReminderCreate(BaseModel):
    stage_id: Optional[str] = None
    title: str
    message: str = ""
    scheduled_date: datetime
    notify_via_calendar: bool = False


class QuestionRequest(BaseModel):
    question: str = Field(..., min_length=1)


class AnswerResponse(BaseModel):
    answer: str
    used_fallback: bool


class ReminderResponse(BaseModel):
    reminder: Reminder
    warning: Optional[str] = None
