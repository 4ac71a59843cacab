"""Session orchestrator: creation, lookup and phase/question progression."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
from typing import Any

from . import engine
from .errors import NotFoundError, PhaseError
from .events import SESSION_PHASE_CHANGED, EventBus
from .models import Participant, Session
from .questions import QuestionCatalog, QuestionSet
from .registry import ParticipantRegistry
from .scoring import ScoringEngine
from .security import generate_session_code, normalize_code
from .state import build_session, build_snapshot, session_payload, utc_now
from .store import WorkshopStore

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 20


@dataclass
class SessionOrchestrator:
    store: WorkshopStore
    catalog: QuestionCatalog
    registry: ParticipantRegistry
    scoring: ScoringEngine
    bus: EventBus = field(default_factory=EventBus)
    code_length: int = 6

    def create_session(
        self,
        question_set_id: str,
        planned_duration_minutes: int | None = None,
        settings: dict[str, Any] | None = None,
    ) -> Session:
        if self.catalog.get_question_set(question_set_id) is None:
            raise NotFoundError()

        for _ in range(MAX_CODE_ATTEMPTS):
            session = build_session(
                code=generate_session_code(self.code_length),
                question_set_id=question_set_id,
                planned_duration_minutes=planned_duration_minutes,
                settings=settings,
            )
            if self.store.insert_session(session):
                logger.info("Session created for %s", question_set_id, extra={"session_code": session.code})
                return session
            logger.debug("Session code collision, retrying", extra={"session_code": session.code})
        raise RuntimeError("Could not allocate a unique session code")

    def get_session(self, code: str) -> Session:
        session = self.store.get_session_by_code(normalize_code(code))
        if session is None:
            raise NotFoundError()
        return session

    def touch_session(self, session: Session) -> Session:
        touched = replace(session, last_activity_at=utc_now())
        self.store.touch_session(session.id, touched.last_activity_at)
        return touched

    def question_set(self, session: Session) -> QuestionSet:
        return self.scoring.question_set(session)

    def question_count(self, session: Session) -> int:
        return len(self.question_set(session))

    def apply_action(self, session: Session, action: dict[str, Any]) -> Session:
        """Run a facilitator action through the engine and persist its effects.

        Callers must check facilitator rights before calling this.
        """
        result = engine.apply_facilitator_action(session, action, self.question_count(session))
        if not result.changed:
            logger.debug(
                "Ignoring duplicate %s", action.get("type"), extra={"session_code": session.code}
            )
            return result.session

        updated = result.session
        if not self.store.transition_session(updated, expected=session):
            raise PhaseError("Session changed since this action was requested")
        for event in result.engine_events:
            if event["kind"] == "unreveal":
                self.scoring.unreveal(updated, event["questionIndex"])
        self.registry.reset_all_ready(updated)

        logger.info(
            "Session %s -> %s (question %s)",
            session.phase.value,
            updated.phase.value,
            updated.current_question_index,
            extra={"session_code": updated.code},
        )
        self.bus.publish(updated.code, SESSION_PHASE_CHANGED, session_payload(updated))
        return updated

    def start_session(self, session: Session) -> Session:
        return self.apply_action(session, {"type": engine.START})

    def advance_to_scoring(self, session: Session) -> Session:
        return self.apply_action(session, {"type": engine.ADVANCE_TO_SCORING})

    def advance_question(self, session: Session) -> Session:
        return self.apply_action(session, {"type": engine.ADVANCE_QUESTION})

    def advance_to_summary(self, session: Session) -> Session:
        return self.apply_action(session, {"type": engine.ADVANCE_TO_SUMMARY})

    def advance_to_actions(self, session: Session) -> Session:
        return self.apply_action(session, {"type": engine.ADVANCE_TO_ACTIONS})

    def complete_session(self, session: Session) -> Session:
        return self.apply_action(session, {"type": engine.COMPLETE})

    def go_back_question(self, session: Session) -> Session:
        return self.apply_action(session, {"type": engine.GO_BACK_QUESTION})

    def go_back_to_intro(self, session: Session) -> Session:
        return self.apply_action(session, {"type": engine.GO_BACK_TO_INTRO})

    def go_back_to_scoring(self, session: Session, last_index: int | None = None) -> Session:
        return self.apply_action(session, {"type": engine.GO_BACK_TO_SCORING, "lastQuestionIndex": last_index})

    def go_back_to_summary(self, session: Session) -> Session:
        return self.apply_action(session, {"type": engine.GO_BACK_TO_SUMMARY})

    def snapshot(self, session: Session, viewer: Participant | None = None) -> dict[str, Any]:
        index = session.current_question_index
        viewer_score = self.scoring.get_score(session, viewer, index) if viewer is not None else None
        return build_snapshot(
            session=session,
            question_set=self.question_set(session),
            participants=self.registry.list_participants(session),
            current_scores=self.scoring.list_scores_for_question(session, index),
            all_scored=self.scoring.all_scored(session, index),
            all_ready=self.registry.all_active_ready(session),
            viewer=viewer,
            viewer_score=viewer_score,
        )
