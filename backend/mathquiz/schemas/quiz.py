from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field


class Operation(str, enum.Enum):
    addition = "addition"
    subtraction = "subtraction"
    multiplication = "multiplication"


class QuizSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    operation: Operation
    stage: int = Field(ge=1)
    timer: int = Field(ge=1)  # seconds per question


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    answer: int


class QuizResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: Question
    user_answer: int | None
    is_correct: bool
    time_taken: float


class QuizSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    settings: QuizSettings
    results: tuple[QuizResult, ...]
    score: float
    total_time: float

    @property
    def correct_count(self) -> int:
        return sum(1 for r in self.results if r.is_correct)

    @property
    def average_time(self) -> float:
        if not self.results:
            return 0.0
        return self.total_time / len(self.results)


class QuizProgress(BaseModel):
    """What the quiz screen shows for the active session."""

    model_config = ConfigDict(frozen=True)

    state: str
    question_number: int
    total_questions: int
    question_text: str | None
    time_left: int
    answered: int
    feedback: str | None = None
    last_result: QuizResult | None = None


class OperationOption(BaseModel):
    operation: Operation
    name: str
    stages: int


class QuizOptionsResponse(BaseModel):
    operations: list[OperationOption]
    timers: list[int]


class QuizAnswerRequest(BaseModel):
    # Raw input; blank or non-numeric counts as no answer.
    answer: int | str | None = None


class QuizAnswerResponse(BaseModel):
    accepted: bool
    result: QuizResult | None = None
    quiz: QuizProgress | None = None
