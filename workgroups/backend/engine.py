"""Reducer for facilitator-driven session transitions.

Each transition is only defined for its source phase. A request whose
target is already the current state is a no-op, so duplicate clicks are
harmless; anything else outside the source phase raises ``PhaseError``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable

from .errors import AtFirstQuestionError, AtLastQuestionError, PhaseError
from .models import Phase, Session
from .state import utc_now

START = "START"
ADVANCE_TO_SCORING = "ADVANCE_TO_SCORING"
ADVANCE_QUESTION = "ADVANCE_QUESTION"
ADVANCE_TO_SUMMARY = "ADVANCE_TO_SUMMARY"
ADVANCE_TO_ACTIONS = "ADVANCE_TO_ACTIONS"
COMPLETE = "COMPLETE"
GO_BACK_QUESTION = "GO_BACK_QUESTION"
GO_BACK_TO_INTRO = "GO_BACK_TO_INTRO"
GO_BACK_TO_SCORING = "GO_BACK_TO_SCORING"
GO_BACK_TO_SUMMARY = "GO_BACK_TO_SUMMARY"


@dataclass(frozen=True)
class TransitionResult:
    session: Session
    engine_events: list[dict[str, Any]]
    changed: bool = True


def apply_facilitator_action(session: Session, action: dict[str, Any], question_count: int) -> TransitionResult:
    """Apply a facilitator action to the session and return the new session."""
    action_type = str(action.get("type", "")).upper()
    handler = _HANDLERS.get(action_type)
    if handler is None:
        raise PhaseError(f"Unknown action type {action_type!r}")
    return handler(session, action, question_count)


def _unchanged(session: Session) -> TransitionResult:
    return TransitionResult(session=session, engine_events=[], changed=False)


def _transition(session: Session, **changes: Any) -> Session:
    return replace(session, last_activity_at=utc_now(), **changes)


def _phase_event(before: Session, after: Session) -> dict[str, Any]:
    return {
        "kind": "phase",
        "from": before.phase.value,
        "to": after.phase.value,
        "questionIndex": after.current_question_index,
    }


def _unreveal_event(question_index: int) -> dict[str, Any]:
    return {"kind": "unreveal", "questionIndex": question_index}


def _require_phase(session: Session, source: Phase, target: Phase) -> bool:
    """Return False for a duplicate request that already reached the target."""
    if session.phase == source:
        return True
    if session.phase == target:
        return False
    raise PhaseError(f"Cannot move to {target.value} from {session.phase.value}")


def _expected_index(action: dict[str, Any]) -> int | None:
    raw = action.get("questionIndex")
    if raw is None:
        return None
    return int(raw)


def _apply_start(session: Session, action: dict[str, Any], question_count: int) -> TransitionResult:
    if not _require_phase(session, Phase.LOBBY, Phase.INTRO):
        return _unchanged(session)
    now = utc_now()
    next_session = replace(session, phase=Phase.INTRO, started_at=now, last_activity_at=now)
    return TransitionResult(session=next_session, engine_events=[_phase_event(session, next_session)])


def _apply_advance_to_scoring(session: Session, action: dict[str, Any], question_count: int) -> TransitionResult:
    if not _require_phase(session, Phase.INTRO, Phase.SCORING):
        return _unchanged(session)
    next_session = _transition(session, phase=Phase.SCORING, current_question_index=0)
    return TransitionResult(session=next_session, engine_events=[_phase_event(session, next_session)])


def _apply_advance_question(session: Session, action: dict[str, Any], question_count: int) -> TransitionResult:
    if session.phase != Phase.SCORING:
        raise PhaseError(f"Cannot advance question from {session.phase.value}")

    current = session.current_question_index
    expected = _expected_index(action)
    if expected is not None and expected != current:
        if expected + 1 == current:
            return _unchanged(session)
        raise PhaseError(f"Stale request for question {expected}, session is on {current}")

    if current + 1 >= question_count:
        raise AtLastQuestionError()

    next_session = _transition(session, current_question_index=current + 1)
    return TransitionResult(session=next_session, engine_events=[_phase_event(session, next_session)])


def _apply_advance_to_summary(session: Session, action: dict[str, Any], question_count: int) -> TransitionResult:
    if not _require_phase(session, Phase.SCORING, Phase.SUMMARY):
        return _unchanged(session)
    if session.current_question_index != question_count - 1:
        raise PhaseError("Summary is only reachable from the last question")
    next_session = _transition(session, phase=Phase.SUMMARY)
    return TransitionResult(session=next_session, engine_events=[_phase_event(session, next_session)])


def _apply_advance_to_actions(session: Session, action: dict[str, Any], question_count: int) -> TransitionResult:
    if not _require_phase(session, Phase.SUMMARY, Phase.ACTIONS):
        return _unchanged(session)
    next_session = _transition(session, phase=Phase.ACTIONS)
    return TransitionResult(session=next_session, engine_events=[_phase_event(session, next_session)])


def _apply_complete(session: Session, action: dict[str, Any], question_count: int) -> TransitionResult:
    if not _require_phase(session, Phase.ACTIONS, Phase.COMPLETED):
        return _unchanged(session)
    now = utc_now()
    next_session = replace(session, phase=Phase.COMPLETED, completed_at=now, last_activity_at=now)
    return TransitionResult(session=next_session, engine_events=[_phase_event(session, next_session)])


def _apply_go_back_question(session: Session, action: dict[str, Any], question_count: int) -> TransitionResult:
    if session.phase != Phase.SCORING:
        raise PhaseError(f"Cannot go back a question from {session.phase.value}")

    current = session.current_question_index
    expected = _expected_index(action)
    if expected is not None and expected != current:
        if expected - 1 == current:
            return _unchanged(session)
        raise PhaseError(f"Stale request for question {expected}, session is on {current}")

    if current == 0:
        raise AtFirstQuestionError()

    next_session = _transition(session, current_question_index=current - 1)
    return TransitionResult(
        session=next_session,
        engine_events=[
            _phase_event(session, next_session),
            _unreveal_event(current),
            _unreveal_event(current - 1),
        ],
    )


def _apply_go_back_to_intro(session: Session, action: dict[str, Any], question_count: int) -> TransitionResult:
    if not _require_phase(session, Phase.SCORING, Phase.INTRO):
        return _unchanged(session)
    if session.current_question_index != 0:
        raise PhaseError("Intro is only reachable from the first question")
    next_session = _transition(session, phase=Phase.INTRO, current_question_index=0)
    return TransitionResult(
        session=next_session,
        engine_events=[_phase_event(session, next_session), _unreveal_event(0)],
    )


def _apply_go_back_to_scoring(session: Session, action: dict[str, Any], question_count: int) -> TransitionResult:
    raw_index = action.get("lastQuestionIndex")
    last_index = question_count - 1 if raw_index is None else int(raw_index)
    if not 0 <= last_index < question_count:
        raise PhaseError(f"Question index {last_index} is outside 0..{question_count - 1}")

    if session.phase == Phase.SCORING and session.current_question_index == last_index:
        return _unchanged(session)
    if session.phase != Phase.SUMMARY:
        raise PhaseError(f"Cannot go back to scoring from {session.phase.value}")

    next_session = _transition(session, phase=Phase.SCORING, current_question_index=last_index)
    return TransitionResult(
        session=next_session,
        engine_events=[_phase_event(session, next_session), _unreveal_event(last_index)],
    )


def _apply_go_back_to_summary(session: Session, action: dict[str, Any], question_count: int) -> TransitionResult:
    if not _require_phase(session, Phase.ACTIONS, Phase.SUMMARY):
        return _unchanged(session)
    next_session = _transition(session, phase=Phase.SUMMARY)
    return TransitionResult(session=next_session, engine_events=[_phase_event(session, next_session)])


_HANDLERS: dict[str, Callable[[Session, dict[str, Any], int], TransitionResult]] = {
    START: _apply_start,
    ADVANCE_TO_SCORING: _apply_advance_to_scoring,
    ADVANCE_QUESTION: _apply_advance_question,
    ADVANCE_TO_SUMMARY: _apply_advance_to_summary,
    ADVANCE_TO_ACTIONS: _apply_advance_to_actions,
    COMPLETE: _apply_complete,
    GO_BACK_QUESTION: _apply_go_back_question,
    GO_BACK_TO_INTRO: _apply_go_back_to_intro,
    GO_BACK_TO_SCORING: _apply_go_back_to_scoring,
    GO_BACK_TO_SUMMARY: _apply_go_back_to_summary,
}
