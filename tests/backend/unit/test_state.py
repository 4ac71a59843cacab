from dataclasses import replace

from workgroups.backend.models import ParticipantStatus, Phase
from workgroups.backend.questions import SIX_CRITERIA
from workgroups.backend.state import (
    build_participant,
    build_score,
    build_session,
    build_snapshot,
    score_payload,
    scores_payload,
    session_payload,
)


def test_build_session_sets_lobby_defaults() -> None:
    session = build_session(code="ABC234", question_set_id="six-criteria", settings={"skipIntro": True})

    assert session.code == "ABC234"
    assert session.phase == Phase.LOBBY
    assert session.current_question_index == 0
    assert session.started_at is None
    assert session.completed_at is None
    assert session.created_at == session.last_activity_at
    assert session.settings == {"skipIntro": True}


def test_build_participant_starts_active_and_not_ready() -> None:
    session = build_session(code="ABC234", question_set_id="six-criteria")

    participant = build_participant(session, name="Ada", token_hash="h", is_observer=True)

    assert participant.session_id == session.id
    assert participant.status == ParticipantStatus.ACTIVE
    assert participant.is_ready is False
    assert participant.is_facilitator is False
    assert participant.is_observer is True


def test_score_payload_hides_unrevealed_values() -> None:
    session = build_session(code="ABC234", question_set_id="six-criteria")
    participant = build_participant(session, name="Ada", token_hash="h")
    score = build_score(session, participant, question_index=0, value=3)

    hidden = score_payload(score)
    shown = score_payload(replace(score, revealed=True))

    assert hidden["value"] is None
    assert hidden["revealed"] is False
    assert shown["value"] == 3


def test_scores_payload_is_revealed_only_when_every_score_is() -> None:
    session = build_session(code="ABC234", question_set_id="six-criteria")
    participant = build_participant(session, name="Ada", token_hash="h")
    score = build_score(session, participant, question_index=2, value=1)

    assert scores_payload(2, [])["revealed"] is False
    assert scores_payload(2, [score])["revealed"] is False
    assert scores_payload(2, [replace(score, revealed=True)])["revealed"] is True


def test_snapshot_contains_session_question_and_viewer_score() -> None:
    session = build_session(code="ABC234", question_set_id="six-criteria")
    participant = build_participant(session, name="Ada", token_hash="h")
    score = build_score(session, participant, question_index=0, value=-2)

    snapshot = build_snapshot(
        session=session,
        question_set=SIX_CRITERIA,
        participants=[participant],
        current_scores=[score],
        all_scored=True,
        all_ready=False,
        viewer=participant,
        viewer_score=score,
    )

    assert snapshot["session"] == session_payload(session)
    assert snapshot["questionCount"] == 8
    assert snapshot["question"]["scaleType"] == "balance"
    assert snapshot["participants"][0]["name"] == "Ada"
    assert snapshot["scores"]["scores"][0]["value"] is None
    assert snapshot["viewerScore"] == -2
    assert "tokenHash" not in snapshot["participants"][0]
