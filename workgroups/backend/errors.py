"""Error types raised by the workshop core."""

from __future__ import annotations


class WorkshopError(Exception):
    """Base class for every error raised by the workshop core."""


class NotFoundError(WorkshopError):
    """Unknown session code or participant token.

    The message never says which of the two failed.
    """

    def __init__(self) -> None:
        super().__init__("Session or participant not found")


class ScoreValidationError(WorkshopError):
    def __init__(self, message: str, scale_min: int | None = None, scale_max: int | None = None) -> None:
        super().__init__(message)
        self.scale_min = scale_min
        self.scale_max = scale_max


class ScoreLockedError(WorkshopError):
    """Submission into a score slot that has already been revealed."""


class PhaseError(WorkshopError):
    """Transition attempted from the wrong phase or on a stale precondition."""

    code = "invalid_phase"


class BoundaryError(PhaseError):
    """Question navigation ran into the first or last question."""

    code = "boundary"


class AtFirstQuestionError(BoundaryError):
    code = "at_first_question"

    def __init__(self) -> None:
        super().__init__("Already at the first question")


class AtLastQuestionError(BoundaryError):
    code = "at_last_question"

    def __init__(self) -> None:
        super().__init__("Already at the last question")
