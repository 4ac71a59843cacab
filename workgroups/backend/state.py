"""Record builders and client payloads for session snapshots."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable
import uuid

from .models import Participant, ParticipantStatus, Phase, Score, Session
from .questions import Question, QuestionSet


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def build_session(
    code: str,
    question_set_id: str,
    planned_duration_minutes: int | None = None,
    settings: dict[str, Any] | None = None,
) -> Session:
    now = utc_now()
    return Session(
        id=str(uuid.uuid4()),
        code=code,
        question_set_id=question_set_id,
        phase=Phase.LOBBY,
        current_question_index=0,
        created_at=now,
        last_activity_at=now,
        planned_duration_minutes=planned_duration_minutes,
        settings=dict(settings or {}),
    )


def build_participant(
    session: Session,
    name: str,
    token_hash: str,
    is_facilitator: bool = False,
    is_observer: bool = False,
) -> Participant:
    now = utc_now()
    return Participant(
        id=str(uuid.uuid4()),
        session_id=session.id,
        name=name,
        token_hash=token_hash,
        status=ParticipantStatus.ACTIVE,
        is_facilitator=is_facilitator,
        is_observer=is_observer,
        is_ready=False,
        joined_at=now,
        last_seen_at=now,
    )


def build_score(session: Session, participant: Participant, question_index: int, value: int) -> Score:
    return Score(
        id=str(uuid.uuid4()),
        session_id=session.id,
        participant_id=participant.id,
        question_index=question_index,
        value=value,
        submitted_at=utc_now(),
        revealed=False,
    )


def session_payload(session: Session) -> dict[str, Any]:
    return {
        "id": session.id,
        "code": session.code,
        "questionSetId": session.question_set_id,
        "phase": session.phase.value,
        "currentQuestionIndex": session.current_question_index,
        "plannedDurationMinutes": session.planned_duration_minutes,
        "settings": dict(session.settings),
        "createdAt": _iso(session.created_at),
        "startedAt": _iso(session.started_at),
        "completedAt": _iso(session.completed_at),
        "lastActivityAt": _iso(session.last_activity_at),
    }


def participant_payload(participant: Participant) -> dict[str, Any]:
    return {
        "id": participant.id,
        "name": participant.name,
        "status": participant.status.value,
        "isFacilitator": participant.is_facilitator,
        "isObserver": participant.is_observer,
        "isReady": participant.is_ready,
        "joinedAt": _iso(participant.joined_at),
    }


def score_payload(score: Score) -> dict[str, Any]:
    """Unrevealed values stay hidden from every client, including the author."""
    return {
        "participantId": score.participant_id,
        "questionIndex": score.question_index,
        "value": score.value if score.revealed else None,
        "revealed": score.revealed,
        "submittedAt": _iso(score.submitted_at),
    }


def scores_payload(question_index: int, scores: Iterable[Score]) -> dict[str, Any]:
    items = [score_payload(score) for score in scores]
    return {
        "questionIndex": question_index,
        "revealed": bool(items) and all(item["revealed"] for item in items),
        "scores": items,
    }


def question_payload(question: Question) -> dict[str, Any]:
    return {
        "index": question.index,
        "title": question.title,
        "criterionNumber": question.criterion_number,
        "criterionName": question.criterion_name,
        "explanation": question.explanation,
        "scaleType": question.scale_type.value,
        "scaleMin": question.scale_min,
        "scaleMax": question.scale_max,
        "optimalValue": question.optimal_value,
        "discussionPrompts": list(question.discussion_prompts),
    }


def build_snapshot(
    session: Session,
    question_set: QuestionSet,
    participants: Iterable[Participant],
    current_scores: Iterable[Score],
    all_scored: bool,
    all_ready: bool,
    viewer: Participant | None = None,
    viewer_score: Score | None = None,
) -> dict[str, Any]:
    """Full state a client needs to reconcile after (re)connecting."""
    question = question_set.get(session.current_question_index)
    return {
        "session": session_payload(session),
        "questionCount": len(question_set),
        "question": question_payload(question) if question is not None else None,
        "participants": [participant_payload(participant) for participant in participants],
        "scores": scores_payload(session.current_question_index, current_scores),
        "allScored": all_scored,
        "allReady": all_ready,
        "viewer": participant_payload(viewer) if viewer is not None else None,
        # Authors may see their own hidden value.
        "viewerScore": viewer_score.value if viewer_score is not None else None,
    }
