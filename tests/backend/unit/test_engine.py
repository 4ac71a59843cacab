from dataclasses import replace

import pytest

from workgroups.backend.engine import apply_facilitator_action
from workgroups.backend.errors import AtFirstQuestionError, AtLastQuestionError, BoundaryError, PhaseError
from workgroups.backend.models import Phase
from workgroups.backend.state import build_session

QUESTION_COUNT = 3


def _session(phase: Phase = Phase.LOBBY, index: int = 0):
    session = build_session(code="ABC234", question_set_id="test")
    return replace(session, phase=phase, current_question_index=index)


def _unreveals(result) -> list[int]:
    return [event["questionIndex"] for event in result.engine_events if event["kind"] == "unreveal"]


def test_start_moves_lobby_to_intro_and_records_start_time() -> None:
    result = apply_facilitator_action(_session(), {"type": "START"}, QUESTION_COUNT)

    assert result.changed is True
    assert result.session.phase == Phase.INTRO
    assert result.session.started_at is not None
    assert result.engine_events[0] == {"kind": "phase", "from": "lobby", "to": "intro", "questionIndex": 0}


def test_action_type_is_case_insensitive() -> None:
    result = apply_facilitator_action(_session(), {"type": "start"}, QUESTION_COUNT)

    assert result.session.phase == Phase.INTRO


def test_advance_to_scoring_resets_question_index() -> None:
    result = apply_facilitator_action(_session(Phase.INTRO, index=2), {"type": "ADVANCE_TO_SCORING"}, QUESTION_COUNT)

    assert result.session.phase == Phase.SCORING
    assert result.session.current_question_index == 0


def test_advance_question_increments_without_unrevealing() -> None:
    result = apply_facilitator_action(_session(Phase.SCORING, 0), {"type": "ADVANCE_QUESTION"}, QUESTION_COUNT)

    assert result.session.current_question_index == 1
    assert _unreveals(result) == []


def test_advance_question_at_last_question_is_a_boundary_error() -> None:
    session = _session(Phase.SCORING, QUESTION_COUNT - 1)

    with pytest.raises(AtLastQuestionError) as excinfo:
        apply_facilitator_action(session, {"type": "ADVANCE_QUESTION"}, QUESTION_COUNT)

    assert isinstance(excinfo.value, BoundaryError)
    assert excinfo.value.code == "at_last_question"


def test_duplicate_advance_question_is_ignored() -> None:
    session = _session(Phase.SCORING, 1)

    result = apply_facilitator_action(session, {"type": "ADVANCE_QUESTION", "questionIndex": 0}, QUESTION_COUNT)

    assert result.changed is False
    assert result.session is session
    assert result.engine_events == []


def test_stale_advance_question_is_rejected() -> None:
    session = _session(Phase.SCORING, 2)

    with pytest.raises(PhaseError):
        apply_facilitator_action(session, {"type": "ADVANCE_QUESTION", "questionIndex": 0}, QUESTION_COUNT)


def test_advance_to_summary_requires_last_question() -> None:
    with pytest.raises(PhaseError):
        apply_facilitator_action(_session(Phase.SCORING, 0), {"type": "ADVANCE_TO_SUMMARY"}, QUESTION_COUNT)

    result = apply_facilitator_action(
        _session(Phase.SCORING, QUESTION_COUNT - 1), {"type": "ADVANCE_TO_SUMMARY"}, QUESTION_COUNT
    )
    assert result.session.phase == Phase.SUMMARY


def test_complete_records_completion_time() -> None:
    result = apply_facilitator_action(_session(Phase.ACTIONS), {"type": "COMPLETE"}, QUESTION_COUNT)

    assert result.session.phase == Phase.COMPLETED
    assert result.session.completed_at is not None


def test_duplicate_phase_request_for_reached_target_is_a_no_op() -> None:
    session = _session(Phase.INTRO)

    result = apply_facilitator_action(session, {"type": "START"}, QUESTION_COUNT)

    assert result.changed is False
    assert result.session.phase == Phase.INTRO


def test_transition_from_wrong_phase_fails_loudly() -> None:
    with pytest.raises(PhaseError):
        apply_facilitator_action(_session(Phase.SCORING), {"type": "START"}, QUESTION_COUNT)
    with pytest.raises(PhaseError):
        apply_facilitator_action(_session(Phase.LOBBY), {"type": "ADVANCE_QUESTION"}, QUESTION_COUNT)
    with pytest.raises(PhaseError):
        apply_facilitator_action(_session(Phase.LOBBY), {"type": "COMPLETE"}, QUESTION_COUNT)


def test_unknown_action_type_is_rejected() -> None:
    with pytest.raises(PhaseError):
        apply_facilitator_action(_session(), {"type": "TELEPORT"}, QUESTION_COUNT)


def test_go_back_question_at_first_question_is_boundary_error_without_mutation() -> None:
    session = _session(Phase.SCORING, 0)

    with pytest.raises(AtFirstQuestionError) as excinfo:
        apply_facilitator_action(session, {"type": "GO_BACK_QUESTION"}, QUESTION_COUNT)

    assert excinfo.value.code == "at_first_question"
    assert session.current_question_index == 0
    assert session.phase == Phase.SCORING


def test_go_back_question_unreveals_left_and_landed_questions() -> None:
    result = apply_facilitator_action(_session(Phase.SCORING, 2), {"type": "GO_BACK_QUESTION"}, QUESTION_COUNT)

    assert result.session.current_question_index == 1
    assert _unreveals(result) == [2, 1]


def test_go_back_to_intro_only_from_first_question() -> None:
    with pytest.raises(PhaseError):
        apply_facilitator_action(_session(Phase.SCORING, 1), {"type": "GO_BACK_TO_INTRO"}, QUESTION_COUNT)

    result = apply_facilitator_action(_session(Phase.SCORING, 0), {"type": "GO_BACK_TO_INTRO"}, QUESTION_COUNT)

    assert result.session.phase == Phase.INTRO
    assert _unreveals(result) == [0]


def test_go_back_to_scoring_lands_on_requested_question() -> None:
    result = apply_facilitator_action(
        _session(Phase.SUMMARY, QUESTION_COUNT - 1),
        {"type": "GO_BACK_TO_SCORING", "lastQuestionIndex": 1},
        QUESTION_COUNT,
    )

    assert result.session.phase == Phase.SCORING
    assert result.session.current_question_index == 1
    assert _unreveals(result) == [1]


def test_go_back_to_scoring_defaults_to_last_question() -> None:
    result = apply_facilitator_action(_session(Phase.SUMMARY), {"type": "GO_BACK_TO_SCORING"}, QUESTION_COUNT)

    assert result.session.current_question_index == QUESTION_COUNT - 1


def test_go_back_to_scoring_rejects_out_of_range_index() -> None:
    with pytest.raises(PhaseError):
        apply_facilitator_action(
            _session(Phase.SUMMARY),
            {"type": "GO_BACK_TO_SCORING", "lastQuestionIndex": QUESTION_COUNT},
            QUESTION_COUNT,
        )


def test_go_back_to_summary_from_actions() -> None:
    result = apply_facilitator_action(_session(Phase.ACTIONS), {"type": "GO_BACK_TO_SUMMARY"}, QUESTION_COUNT)

    assert result.session.phase == Phase.SUMMARY
    assert _unreveals(result) == []


def test_question_index_stays_in_range_through_a_full_walk() -> None:
    session = _session()
    script = ["START", "ADVANCE_TO_SCORING"] + ["ADVANCE_QUESTION"] * (QUESTION_COUNT - 1)
    script += ["GO_BACK_QUESTION", "ADVANCE_QUESTION", "ADVANCE_TO_SUMMARY", "GO_BACK_TO_SCORING"]
    script += ["ADVANCE_TO_SUMMARY", "ADVANCE_TO_ACTIONS", "GO_BACK_TO_SUMMARY", "ADVANCE_TO_ACTIONS", "COMPLETE"]

    for action_type in script:
        session = apply_facilitator_action(session, {"type": action_type}, QUESTION_COUNT).session
        assert 0 <= session.current_question_index < QUESTION_COUNT

    assert session.phase == Phase.COMPLETED
