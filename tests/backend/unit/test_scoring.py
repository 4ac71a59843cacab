from dataclasses import replace

import pytest

from workgroups.backend.errors import NotFoundError, PhaseError, ScoreLockedError, ScoreValidationError
from workgroups.backend.events import RecordingEventBus
from workgroups.backend.models import Color, ParticipantStatus, Phase, ScaleType
from workgroups.backend.questions import SIX_CRITERIA, InMemoryQuestionCatalog
from workgroups.backend.registry import ParticipantRegistry
from workgroups.backend.scoring import ScoringEngine, combined_team_value, summarize_values, traffic_light_color
from workgroups.backend.state import build_session
from workgroups.backend.store import InMemoryWorkshopStore

BALANCE_Q = 0
MAXIMAL_Q = 4


def _on(session, question_index: int):
    return replace(session, phase=Phase.SCORING, current_question_index=question_index)


def _engine():
    store = InMemoryWorkshopStore()
    bus = RecordingEventBus()
    session = _on(build_session(code="ABC234", question_set_id="six-criteria"), BALANCE_Q)
    store.insert_session(session)
    registry = ParticipantRegistry(store=store, server_salt="salt", bus=bus)
    scoring = ScoringEngine(store=store, catalog=InMemoryQuestionCatalog(), bus=bus)
    return scoring, registry, session, bus


@pytest.mark.parametrize(
    ("value", "expected"),
    [(0, Color.GREEN), (1, Color.GREEN), (-1, Color.GREEN), (2, Color.AMBER), (-3, Color.AMBER), (4, Color.RED), (-5, Color.RED)],
)
def test_balance_scale_colors(value: int, expected: Color) -> None:
    assert traffic_light_color(ScaleType.BALANCE, value, 0) == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [(10, Color.GREEN), (7, Color.GREEN), (6, Color.AMBER), (4, Color.AMBER), (3, Color.RED), (0, Color.RED)],
)
def test_maximal_scale_colors(value: int, expected: Color) -> None:
    assert traffic_light_color("maximal", value) == expected


def test_balance_scale_without_optimal_centers_on_zero() -> None:
    assert traffic_light_color("balance", 1, None) == Color.GREEN


def test_combined_team_value_rewards_uniform_teams() -> None:
    assert combined_team_value([0, 2, 5], ScaleType.BALANCE, 0) == 5.0
    assert combined_team_value([0, 0, 1], ScaleType.BALANCE, 0) == 10.0
    assert combined_team_value([5, -5], ScaleType.BALANCE, 0) == 0.0
    assert combined_team_value([5, 5, 5], ScaleType.MAXIMAL) == 5.0
    assert combined_team_value([], ScaleType.MAXIMAL) is None


def test_combined_team_value_differs_from_average_for_mixed_extremes() -> None:
    uniform = combined_team_value([7, 7], ScaleType.MAXIMAL)
    extremes = combined_team_value([10, 4], ScaleType.MAXIMAL)

    assert uniform == 10.0
    assert extremes == 7.5


def test_summarize_values() -> None:
    summary = summarize_values([1, 2, 2])

    assert summary.count == 3
    assert summary.average == 1.7
    assert summary.min == 1
    assert summary.max == 2
    assert summary.spread == 1
    assert summarize_values([]).average is None
    assert summarize_values([]).spread is None


def test_resubmission_before_reveal_updates_the_same_row() -> None:
    scoring, registry, session, _ = _engine()
    ada = registry.join(session, "Ada", "t1")
    registry.join(session, "Bob", "t2")

    first = scoring.submit(session, ada, BALANCE_Q, 3)
    second = scoring.submit(session, ada, BALANCE_Q, -2)

    scores = scoring.list_scores_for_question(session, BALANCE_Q)
    assert len(scores) == 1
    assert second.id == first.id
    assert scores[0].value == -2


def test_submit_rejects_values_outside_scale_bounds() -> None:
    scoring, registry, session, bus = _engine()
    ada = registry.join(session, "Ada", "t1")

    with pytest.raises(ScoreValidationError) as excinfo:
        scoring.submit(session, ada, BALANCE_Q, 6)
    with pytest.raises(ScoreValidationError):
        scoring.submit(_on(session, MAXIMAL_Q), ada, MAXIMAL_Q, -1)

    assert (excinfo.value.scale_min, excinfo.value.scale_max) == (-5, 5)
    assert scoring.count_scores(session, BALANCE_Q) == 0
    assert "score_submitted" not in bus.types()


def test_submit_only_accepts_the_current_question() -> None:
    scoring, registry, session, bus = _engine()
    ada = registry.join(session, "Ada", "t1")

    with pytest.raises(PhaseError):
        scoring.submit(session, ada, 3, 5)

    assert scoring.count_scores(session, 3) == 0
    assert "scores_revealed" not in bus.types()

    scoring.submit(_on(session, 3), ada, 3, 5)
    assert scoring.get_score(session, ada, 3).value == 5


def test_submit_outside_scoring_phase_is_rejected() -> None:
    scoring, registry, session, _ = _engine()
    ada = registry.join(session, "Ada", "t1")

    for phase in (Phase.LOBBY, Phase.INTRO, Phase.SUMMARY):
        with pytest.raises(PhaseError):
            scoring.submit(replace(session, phase=phase), ada, BALANCE_Q, 0)

    assert scoring.count_scores(session, BALANCE_Q) == 0


def test_submit_rejects_unknown_question_index() -> None:
    scoring, registry, session, _ = _engine()
    ada = registry.join(session, "Ada", "t1")

    with pytest.raises(ScoreValidationError):
        scoring.submit(session, ada, len(SIX_CRITERIA), 5)


def test_unknown_question_set_is_not_found() -> None:
    scoring, _, _, _ = _engine()
    session = build_session(code="ZZZ234", question_set_id="missing")

    with pytest.raises(NotFoundError):
        scoring.question_set(session)


def test_last_submission_reveals_automatically() -> None:
    scoring, registry, session, bus = _engine()
    ada = registry.join(session, "Ada", "t1")
    bob = registry.join(session, "Bob", "t2")

    scoring.submit(session, ada, BALANCE_Q, 1)
    assert scoring.all_scored(session, BALANCE_Q) is False
    assert all(not score.revealed for score in scoring.list_scores_for_question(session, BALANCE_Q))

    scoring.submit(session, bob, BALANCE_Q, 2)

    assert scoring.all_scored(session, BALANCE_Q) is True
    assert all(score.revealed for score in scoring.list_scores_for_question(session, BALANCE_Q))
    assert bus.types()[-2:] == ["score_submitted", "scores_revealed"]


def test_submitting_into_revealed_slot_is_rejected_without_corruption() -> None:
    scoring, registry, session, _ = _engine()
    ada = registry.join(session, "Ada", "t1")
    scoring.submit(session, ada, BALANCE_Q, 1)

    with pytest.raises(ScoreLockedError):
        scoring.submit(session, ada, BALANCE_Q, 4)

    score = scoring.get_score(session, ada, BALANCE_Q)
    assert score.value == 1
    assert score.revealed is True


def test_observer_never_counts_toward_all_scored() -> None:
    scoring, registry, session, _ = _engine()
    scorer = registry.join(session, "Ada", "t1")
    registry.join(session, "Olive", "t2", is_observer=True)

    scoring.submit(session, scorer, BALANCE_Q, 0)

    assert scoring.all_scored(session, BALANCE_Q) is True


def test_inactive_participants_neither_block_nor_count() -> None:
    scoring, registry, session, _ = _engine()
    ada = registry.join(session, "Ada", "t1")
    bob = registry.join(session, "Bob", "t2")
    cy = registry.join(session, "Cy", "t3")
    scoring.submit(session, bob, BALANCE_Q, 0)
    registry.set_status(session, bob, ParticipantStatus.DROPPED)

    scoring.submit(session, ada, BALANCE_Q, 0)
    assert scoring.all_scored(session, BALANCE_Q) is False

    registry.set_status(session, cy, ParticipantStatus.INACTIVE)
    assert scoring.all_scored(session, BALANCE_Q) is True


def test_all_scored_is_false_without_scorers() -> None:
    scoring, registry, session, _ = _engine()
    registry.join(session, "Olive", "t1", is_observer=True)

    assert scoring.all_scored(session, BALANCE_Q) is False


def test_all_scored_is_monotonic_while_scores_arrive() -> None:
    scoring, registry, session, _ = _engine()
    session = _on(session, MAXIMAL_Q)
    people = [registry.join(session, f"P{n}", f"t{n}") for n in range(4)]
    observed = []

    for position, participant in enumerate(people):
        scoring.submit(session, participant, MAXIMAL_Q, position + 5)
        observed.append(scoring.all_scored(session, MAXIMAL_Q))

    assert observed == [False, False, False, True]


def test_reveal_is_idempotent_and_unreveal_restores_every_score() -> None:
    scoring, registry, session, _ = _engine()
    session = _on(session, MAXIMAL_Q)
    people = [registry.join(session, f"P{n}", f"t{n}") for n in range(3)]
    for participant in people[:2]:
        scoring.submit(session, participant, MAXIMAL_Q, 8)

    scoring.reveal(session, MAXIMAL_Q)
    once = scoring.list_scores_for_question(session, MAXIMAL_Q)
    scoring.reveal(session, MAXIMAL_Q)
    twice = scoring.list_scores_for_question(session, MAXIMAL_Q)

    assert once == twice
    assert all(score.revealed for score in twice)

    scoring.unreveal(session, MAXIMAL_Q)

    assert all(not score.revealed for score in scoring.list_scores_for_question(session, MAXIMAL_Q))


def test_score_summary_and_aggregates() -> None:
    scoring, registry, session, _ = _engine()
    people = [registry.join(session, f"P{n}", f"t{n}") for n in range(3)]
    for participant, value in zip(people, [0, 2, 5]):
        scoring.submit(session, participant, BALANCE_Q, value)

    summary = scoring.get_score_summary(session, BALANCE_Q)

    assert summary.count == 3
    assert summary.average == 2.3
    assert summary.spread == 5
    assert scoring.calculate_average(session, BALANCE_Q) == 2.3
    assert scoring.calculate_spread(session, BALANCE_Q) == 5
    assert scoring.combined_team_value(session, BALANCE_Q) == 5.0
    assert scoring.calculate_average(session, 1) is None


def test_all_scores_summary_covers_every_question() -> None:
    scoring, registry, session, _ = _engine()
    session = _on(session, MAXIMAL_Q)
    ada = registry.join(session, "Ada", "t1")
    scoring.submit(session, ada, MAXIMAL_Q, 9)

    summaries = scoring.get_all_scores_summary(session)

    assert len(summaries) == len(SIX_CRITERIA)
    assert summaries[MAXIMAL_Q]["color"] == "green"
    assert summaries[MAXIMAL_Q]["combinedTeamValue"] == 10.0
    assert summaries[0]["color"] is None
    assert summaries[0]["combinedTeamValue"] is None


def test_individual_scores_follow_join_order_not_submission_order() -> None:
    scoring, registry, session, _ = _engine()
    ada = registry.join(session, "Ada", "t1")
    bob = registry.join(session, "Bob", "t2")
    cy = registry.join(session, "Cy", "t3")
    scoring.submit(session, cy, BALANCE_Q, -5)
    scoring.submit(session, ada, BALANCE_Q, 0)
    scoring.submit(session, bob, BALANCE_Q, 2)

    result = scoring.all_individual_scores(session, registry.list_participants(session), SIX_CRITERIA)

    assert [item.name for item in result[BALANCE_Q]] == ["Ada", "Bob", "Cy"]
    assert [item.color for item in result[BALANCE_Q]] == [Color.GREEN, Color.AMBER, Color.RED]
    assert result[MAXIMAL_Q] == []
