"""Hidden-vote scoring: submission, reveal gating, aggregation and colors."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Iterable, Sequence

from .errors import NotFoundError, PhaseError, ScoreLockedError, ScoreValidationError
from .events import SCORE_SUBMITTED, SCORES_REVEALED, SCORES_UNREVEALED, EventBus
from .models import Color, IndividualScore, Participant, Phase, ScaleType, Score, ScoreSummary, Session
from .questions import Question, QuestionCatalog, QuestionSet
from .state import build_score, scores_payload
from .store import WorkshopStore

logger = logging.getLogger(__name__)

_GRADES = {Color.GREEN: 2, Color.AMBER: 1, Color.RED: 0}


def traffic_light_color(scale_type: ScaleType | str, value: float, optimal_value: float | None = None) -> Color:
    """Classify a value (individual score or average) as green, amber or red.

    Balance scales measure deviation from the optimum: up to 1 is green,
    up to 3 amber, beyond that red. Maximal scales: 7 and up is green,
    4 and up amber, below that red.
    """
    if ScaleType(scale_type) == ScaleType.BALANCE:
        deviation = abs(value - (optimal_value or 0))
        if deviation <= 1:
            return Color.GREEN
        if deviation <= 3:
            return Color.AMBER
        return Color.RED

    if value >= 7:
        return Color.GREEN
    if value >= 4:
        return Color.AMBER
    return Color.RED


def grade_for_color(color: Color) -> int:
    return _GRADES[color]


def combined_team_value(values: Iterable[int], scale_type: ScaleType | str, optimal_value: int | None = None) -> float | None:
    """Mean traffic-light grade scaled to 0..10.

    All green gives 10, all amber 5, all red 0, so a team with a few
    extreme scores ranks below a team where everyone is doing fine.
    """
    grades = [grade_for_color(traffic_light_color(scale_type, value, optimal_value)) for value in values]
    if not grades:
        return None
    return round(sum(grades) / len(grades) * 5, 1)


def summarize_values(values: Sequence[int]) -> ScoreSummary:
    if not values:
        return ScoreSummary(count=0, average=None, min=None, max=None, spread=None)
    low = min(values)
    high = max(values)
    return ScoreSummary(
        count=len(values),
        average=round(sum(values) / len(values), 1),
        min=low,
        max=high,
        spread=high - low,
    )


@dataclass
class ScoringEngine:
    store: WorkshopStore
    catalog: QuestionCatalog
    bus: EventBus = field(default_factory=EventBus)

    def question_set(self, session: Session) -> QuestionSet:
        question_set = self.catalog.get_question_set(session.question_set_id)
        if question_set is None:
            raise NotFoundError()
        return question_set

    def question(self, session: Session, question_index: int) -> Question:
        question = self.question_set(session).get(question_index)
        if question is None:
            raise ScoreValidationError(f"Unknown question index {question_index}")
        return question

    def submit(self, session: Session, participant: Participant, question_index: int, value: int) -> Score:
        """Record or overwrite a hidden score, then reveal if everyone has scored.

        Only the question the session is currently on collects scores.
        """
        question = self.question(session, question_index)
        if session.phase != Phase.SCORING:
            raise PhaseError(f"Scores are not collected during {session.phase.value}")
        if question_index != session.current_question_index:
            raise PhaseError(
                f"Question {question_index} is not open for scoring, session is on {session.current_question_index}"
            )
        if not question.accepts(value):
            logger.debug(
                "Rejected score %s outside %s..%s",
                value,
                question.scale_min,
                question.scale_max,
                extra={"session_code": session.code, "question_index": question_index},
            )
            raise ScoreValidationError(
                f"Score must be between {question.scale_min} and {question.scale_max}",
                scale_min=question.scale_min,
                scale_max=question.scale_max,
            )

        stored = self.store.upsert_score(build_score(session, participant, question_index, value))
        if stored is None:
            raise ScoreLockedError(f"Scores for question {question_index} are already revealed")

        self.bus.publish(session.code, SCORE_SUBMITTED, self._scores_event(session, question_index))
        self.reveal_if_complete(session, question_index)
        return stored

    def get_score(self, session: Session, participant: Participant, question_index: int) -> Score | None:
        return self.store.get_score(session.id, participant.id, question_index)

    def list_scores_for_question(self, session: Session, question_index: int) -> list[Score]:
        return self.store.list_scores(session.id, question_index)

    def count_scores(self, session: Session, question_index: int) -> int:
        return len(self.store.list_scores(session.id, question_index))

    def all_scored(self, session: Session, question_index: int) -> bool:
        """True when every active non-observer participant has a score here.

        Scores from observers or inactive participants count on neither side.
        """
        scorer_ids = {participant.id for participant in self.store.list_participants(session.id) if participant.is_scorer}
        if not scorer_ids:
            return False
        scored_ids = {score.participant_id for score in self.store.list_scores(session.id, question_index)}
        return len(scorer_ids & scored_ids) == len(scorer_ids)

    def reveal(self, session: Session, question_index: int) -> None:
        self.store.set_revealed(session.id, question_index, True)
        logger.info("Scores revealed", extra={"session_code": session.code, "question_index": question_index})
        self.bus.publish(session.code, SCORES_REVEALED, self._scores_event(session, question_index))

    def unreveal(self, session: Session, question_index: int) -> None:
        self.store.set_revealed(session.id, question_index, False)
        logger.info("Scores unrevealed", extra={"session_code": session.code, "question_index": question_index})
        self.bus.publish(session.code, SCORES_UNREVEALED, self._scores_event(session, question_index))

    def reveal_if_complete(self, session: Session, question_index: int) -> bool:
        # Recounted on every call; two racing last submissions both reveal, which is a no-op.
        if not self.all_scored(session, question_index):
            return False
        self.reveal(session, question_index)
        return True

    def calculate_average(self, session: Session, question_index: int) -> float | None:
        return self.get_score_summary(session, question_index).average

    def calculate_spread(self, session: Session, question_index: int) -> int | None:
        return self.get_score_summary(session, question_index).spread

    def get_score_summary(self, session: Session, question_index: int) -> ScoreSummary:
        return summarize_values([score.value for score in self.list_scores_for_question(session, question_index)])

    def combined_team_value(self, session: Session, question_index: int) -> float | None:
        question = self.question(session, question_index)
        values = [score.value for score in self.list_scores_for_question(session, question_index)]
        return combined_team_value(values, question.scale_type, question.optimal_value)

    def get_all_scores_summary(self, session: Session) -> list[dict[str, Any]]:
        summaries: list[dict[str, Any]] = []
        for question in self.question_set(session).questions:
            values = [score.value for score in self.list_scores_for_question(session, question.index)]
            summary = summarize_values(values)
            summaries.append(
                {
                    "questionIndex": question.index,
                    "title": question.title,
                    "scaleType": question.scale_type.value,
                    "optimalValue": question.optimal_value,
                    "count": summary.count,
                    "average": summary.average,
                    "min": summary.min,
                    "max": summary.max,
                    "spread": summary.spread,
                    "color": (
                        traffic_light_color(question.scale_type, summary.average, question.optimal_value).value
                        if summary.average is not None
                        else None
                    ),
                    "combinedTeamValue": combined_team_value(values, question.scale_type, question.optimal_value),
                }
            )
        return summaries

    def all_individual_scores(
        self,
        session: Session,
        participants_in_arrival_order: Sequence[Participant],
        question_set: QuestionSet,
    ) -> dict[int, list[IndividualScore]]:
        """Per question, every score ordered by its author's join order."""
        arrival = {participant.id: position for position, participant in enumerate(participants_in_arrival_order)}
        names = {participant.id: participant.name for participant in participants_in_arrival_order}

        by_question: dict[int, list[Score]] = {question.index: [] for question in question_set.questions}
        for score in self.store.list_scores(session.id):
            if score.participant_id in arrival and score.question_index in by_question:
                by_question[score.question_index].append(score)

        result: dict[int, list[IndividualScore]] = {}
        for question in question_set.questions:
            ordered = sorted(by_question[question.index], key=lambda score: arrival[score.participant_id])
            result[question.index] = [
                IndividualScore(
                    value=score.value,
                    participant_id=score.participant_id,
                    name=names[score.participant_id],
                    color=traffic_light_color(question.scale_type, score.value, question.optimal_value),
                )
                for score in ordered
            ]
        return result

    def _scores_event(self, session: Session, question_index: int) -> dict[str, Any]:
        return scores_payload(question_index, self.list_scores_for_question(session, question_index))
