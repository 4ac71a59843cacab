"""Backend package for the workshop session engine."""

from .config import BackendSettings, load_settings
from .errors import (
    AtFirstQuestionError,
    AtLastQuestionError,
    BoundaryError,
    NotFoundError,
    PhaseError,
    ScoreLockedError,
    ScoreValidationError,
    WorkshopError,
)
from .events import EventBus, RecordingEventBus
from .orchestrator import SessionOrchestrator
from .questions import InMemoryQuestionCatalog
from .registry import ParticipantRegistry
from .scoring import ScoringEngine, combined_team_value, traffic_light_color
from .security import generate_session_code, hash_token
from .store import InMemoryWorkshopStore, PostgresWorkshopStore, WorkshopStore, create_store

__all__ = [
    "AtFirstQuestionError",
    "AtLastQuestionError",
    "BackendSettings",
    "BoundaryError",
    "combined_team_value",
    "create_store",
    "EventBus",
    "generate_session_code",
    "hash_token",
    "InMemoryQuestionCatalog",
    "InMemoryWorkshopStore",
    "load_settings",
    "NotFoundError",
    "ParticipantRegistry",
    "PhaseError",
    "PostgresWorkshopStore",
    "RecordingEventBus",
    "ScoreLockedError",
    "ScoreValidationError",
    "ScoringEngine",
    "SessionOrchestrator",
    "traffic_light_color",
    "WorkshopError",
    "WorkshopStore",
]
