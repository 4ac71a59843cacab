"""Read-only catalog of workshop question sets."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from .models import ScaleType

DEFAULT_QUESTION_SET_ID = "six-criteria"


@dataclass(frozen=True)
class Question:
    index: int
    title: str
    criterion_number: str
    criterion_name: str
    explanation: str
    scale_type: ScaleType
    scale_min: int
    scale_max: int
    optimal_value: int | None = None
    discussion_prompts: tuple[str, ...] = field(default_factory=tuple)

    def accepts(self, value: int) -> bool:
        return self.scale_min <= value <= self.scale_max


@dataclass(frozen=True)
class QuestionSet:
    id: str
    name: str
    questions: tuple[Question, ...]
    default_duration_minutes: int = 210

    def __post_init__(self) -> None:
        validate_question_set(self)

    def __len__(self) -> int:
        return len(self.questions)

    def get(self, index: int) -> Question | None:
        if 0 <= index < len(self.questions):
            return self.questions[index]
        return None


class QuestionCatalog(Protocol):
    def get_question_set(self, question_set_id: str) -> QuestionSet | None:
        """Return the question set or None when unknown."""


def validate_question_set(question_set: QuestionSet) -> None:
    if not question_set.questions:
        raise ValueError(f"Question set {question_set.id!r} has no questions")
    for position, question in enumerate(question_set.questions):
        if question.index != position:
            raise ValueError(f"Question {question.title!r} has index {question.index}, expected {position}")
        if question.scale_min >= question.scale_max:
            raise ValueError(f"Question {question.index}: scale_max must be greater than scale_min")
        if question.scale_type == ScaleType.BALANCE:
            if question.optimal_value is None or not question.accepts(question.optimal_value):
                raise ValueError(f"Question {question.index}: balance scale needs an optimal value within bounds")
        elif question.optimal_value is not None:
            raise ValueError(f"Question {question.index}: maximal scale has no optimal value")


def _balance(index: int, number: str, name: str, title: str, explanation: str, prompts: tuple[str, ...]) -> Question:
    return Question(
        index=index,
        title=title,
        criterion_number=number,
        criterion_name=name,
        explanation=explanation,
        scale_type=ScaleType.BALANCE,
        scale_min=-5,
        scale_max=5,
        optimal_value=0,
        discussion_prompts=prompts,
    )


def _maximal(index: int, number: str, name: str, title: str, explanation: str, prompts: tuple[str, ...]) -> Question:
    return Question(
        index=index,
        title=title,
        criterion_number=number,
        criterion_name=name,
        explanation=explanation,
        scale_type=ScaleType.MAXIMAL,
        scale_min=0,
        scale_max=10,
        discussion_prompts=prompts,
    )


SIX_CRITERIA = QuestionSet(
    id=DEFAULT_QUESTION_SET_ID,
    name="Six Criteria of Productive Work",
    questions=(
        _balance(
            0,
            "1",
            "Autonomy",
            "Elbow Room",
            "Room to make decisions about how you do your work, without being micromanaged or left without direction.",
            ("When did you last feel over-controlled?", "When did you lack direction?"),
        ),
        _balance(
            1,
            "2a",
            "Continual Learning",
            "Setting Goals",
            "Being able to set your own challenging goals, neither too easy nor unreachable.",
            ("Who sets the goals you work towards?",),
        ),
        _balance(
            2,
            "2b",
            "Continual Learning",
            "Getting Feedback",
            "Receiving timely, accurate feedback so you can learn and improve.",
            ("How long until you find out whether something worked?",),
        ),
        _balance(
            3,
            "3",
            "Variety",
            "Variety",
            "A mix of tasks that avoids both boredom and overload.",
            ("Which tasks feel repetitive?", "Where are you spread too thin?"),
        ),
        _maximal(
            4,
            "4",
            "Mutual Support and Respect",
            "Mutual Support and Respect",
            "Colleagues help each other and respect each other's contributions.",
            ("Who do you go to when you are stuck?",),
        ),
        _maximal(
            5,
            "5a",
            "Meaningfulness",
            "Socially Useful",
            "The work is worthwhile and valued beyond the team.",
            ("Who benefits from what this team produces?",),
        ),
        _maximal(
            6,
            "5b",
            "Meaningfulness",
            "Seeing the Whole Product",
            "You can see how your part fits into the finished product or service.",
            ("Where does your work go after it leaves you?",),
        ),
        _maximal(
            7,
            "6",
            "Desirable Future",
            "Desirable Future",
            "The work leads to growth in skills and to a future you want.",
            ("What skills are you building here?",),
        ),
    ),
)


class InMemoryQuestionCatalog:
    def __init__(self, question_sets: tuple[QuestionSet, ...] = (SIX_CRITERIA,)) -> None:
        self._sets = {question_set.id: question_set for question_set in question_sets}

    def get_question_set(self, question_set_id: str) -> QuestionSet | None:
        return self._sets.get(question_set_id)
