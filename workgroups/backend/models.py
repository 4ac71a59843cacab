"""Domain records for sessions, participants and scores."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Phase(str, Enum):
    LOBBY = "lobby"
    INTRO = "intro"
    SCORING = "scoring"
    SUMMARY = "summary"
    ACTIONS = "actions"
    COMPLETED = "completed"


class ParticipantStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DROPPED = "dropped"


class ScaleType(str, Enum):
    BALANCE = "balance"
    MAXIMAL = "maximal"


class Color(str, Enum):
    GREEN = "green"
    AMBER = "amber"
    RED = "red"


@dataclass(frozen=True)
class Session:
    id: str
    code: str
    question_set_id: str
    phase: Phase
    current_question_index: int
    created_at: datetime
    last_activity_at: datetime
    planned_duration_minutes: int | None = None
    settings: dict[str, Any] = field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class Participant:
    id: str
    session_id: str
    name: str
    token_hash: str
    status: ParticipantStatus
    is_facilitator: bool
    is_observer: bool
    is_ready: bool
    joined_at: datetime
    last_seen_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status == ParticipantStatus.ACTIVE

    @property
    def is_scorer(self) -> bool:
        """Active participants that are expected to submit a score."""
        return self.is_active and not self.is_observer


@dataclass(frozen=True)
class Score:
    id: str
    session_id: str
    participant_id: str
    question_index: int
    value: int
    submitted_at: datetime
    revealed: bool = False


@dataclass(frozen=True)
class ScoreSummary:
    count: int
    average: float | None
    min: int | None
    max: int | None
    spread: int | None


@dataclass(frozen=True)
class IndividualScore:
    value: int
    participant_id: str
    name: str
    color: Color
