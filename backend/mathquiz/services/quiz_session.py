from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from typing import Any, Callable

from mathquiz.core.scheduler import Scheduler, TimerHandle
from mathquiz.schemas.quiz import Question, QuizProgress, QuizResult, QuizSettings, QuizSummary
from mathquiz.services.question_generator import generate_question

logger = logging.getLogger("mathquiz.quiz")

TOTAL_QUESTIONS = 10
REVEAL_DELAY_SECONDS = 1.5
TICK_SECONDS = 1.0


class QuizState(str, enum.Enum):
    idle = "idle"
    awaiting_answer = "awaiting_answer"
    revealed = "revealed"
    complete = "complete"
    cancelled = "cancelled"


class QuizStateError(RuntimeError):
    pass


def parse_answer(raw: Any) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    s = str(raw).strip()
    if not s:
        return None
    try:
        return int(s)
    except ValueError:
        return None


class QuizSession:
    """One timed quiz run: question, answer or timeout, reveal, next, summary.

    Time only comes from the injected scheduler. While a question is open
    exactly one one-second tick is pending; it is cancelled on reveal and a
    fresh one is created for the next question.
    """

    def __init__(
        self,
        settings: QuizSettings,
        *,
        scheduler: Scheduler,
        on_complete: Callable[[QuizSummary], Any] | None = None,
        on_change: Callable[[], None] | None = None,
        total_questions: int = TOTAL_QUESTIONS,
        reveal_delay: float = REVEAL_DELAY_SECONDS,
        generator: Callable[..., Question] = generate_question,
    ):
        if int(total_questions) < 1:
            raise ValueError("total_questions must be >= 1")
        self.settings = settings
        self.total_questions = int(total_questions)
        self.reveal_delay = float(reveal_delay)

        self._scheduler = scheduler
        self._on_complete = on_complete
        self._on_change = on_change
        self._generator = generator

        self.state = QuizState.idle
        self.question: Question | None = None
        self.question_number = 0
        self.time_left = int(settings.timer)
        self.feedback: str | None = None
        self.results: list[QuizResult] = []
        self.summary: QuizSummary | None = None
        self.completion: asyncio.Future | None = None

        self._started_at = 0.0
        self._tick_handle: TimerHandle | None = None
        self._advance_handle: TimerHandle | None = None

    # public API

    def start(self) -> None:
        if self.state != QuizState.idle:
            raise QuizStateError(f"quiz already {self.state.value}")
        self._next_question()

    def submit(self, answer: Any) -> QuizResult | None:
        """Record an answer for the open question.

        Returns None when no question is open (already answered, timed out,
        finished or cancelled); nothing is recorded in that case.
        """
        if self.state != QuizState.awaiting_answer:
            return None
        return self._reveal(parse_answer(answer))

    def cancel(self) -> None:
        if self.state in (QuizState.complete, QuizState.cancelled):
            return
        self._cancel_timers()
        self.results = []
        self.question = None
        self.feedback = None
        self.state = QuizState.cancelled
        logger.info("quiz cancelled operation=%s stage=%s", self.settings.operation.value, self.settings.stage)
        self._changed()

    @property
    def is_active(self) -> bool:
        return self.state in (QuizState.awaiting_answer, QuizState.revealed)

    def progress(self) -> QuizProgress:
        return QuizProgress(
            state=self.state.value,
            question_number=self.question_number,
            total_questions=self.total_questions,
            question_text=self.question.text if self.question is not None else None,
            time_left=self.time_left,
            answered=len(self.results),
            feedback=self.feedback,
            last_result=self.results[-1] if self.state == QuizState.revealed and self.results else None,
        )

    # transitions

    def _next_question(self) -> None:
        self.question = self._generator(self.settings.operation, self.settings.stage)
        self.question_number += 1
        self.feedback = None
        self.time_left = int(self.settings.timer)
        self._started_at = self._scheduler.now()
        self.state = QuizState.awaiting_answer
        self._schedule_tick()
        self._changed()

    def _schedule_tick(self) -> None:
        if self._tick_handle is not None:
            self._tick_handle.cancel()
        self._tick_handle = self._scheduler.call_later(TICK_SECONDS, self._on_tick)

    def _on_tick(self) -> None:
        self._tick_handle = None
        if self.state != QuizState.awaiting_answer:
            return
        self.time_left = max(0, self.time_left - 1)
        if self.time_left <= 0:
            self._reveal(None)
            return
        self._schedule_tick()
        self._changed()

    def _reveal(self, answer: int | None) -> QuizResult:
        if self.question is None:
            raise QuizStateError("no open question to reveal")
        self._cancel_timers()

        elapsed = self._scheduler.now() - self._started_at
        time_taken = min(max(0.0, elapsed), float(self.settings.timer))
        is_correct = answer is not None and answer == self.question.answer
        result = QuizResult(question=self.question, user_answer=answer, is_correct=is_correct, time_taken=time_taken)
        self.results.append(result)

        self.feedback = "Correct!" if is_correct else f"Oops! The correct answer was {self.question.answer}."
        self.state = QuizState.revealed
        self._advance_handle = self._scheduler.call_later(self.reveal_delay, self._advance)
        self._changed()
        return result

    def _advance(self) -> None:
        self._advance_handle = None
        if self.state != QuizState.revealed:
            return
        if len(self.results) < self.total_questions:
            self._next_question()
            return
        self._complete()

    def _complete(self) -> None:
        correct = sum(1 for r in self.results if r.is_correct)
        self.summary = QuizSummary(
            settings=self.settings,
            results=tuple(self.results),
            score=correct * 100 / self.total_questions,
            total_time=sum(r.time_taken for r in self.results),
        )
        self.state = QuizState.complete
        logger.info(
            "quiz complete operation=%s stage=%s score=%s total_time=%.2f",
            self.settings.operation.value,
            self.settings.stage,
            self.summary.score,
            self.summary.total_time,
        )
        self._changed()

        if self._on_complete is None:
            return
        outcome = self._on_complete(self.summary)
        if inspect.isawaitable(outcome):
            self.completion = asyncio.ensure_future(outcome)

    def _cancel_timers(self) -> None:
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None
        if self._advance_handle is not None:
            self._advance_handle.cancel()
            self._advance_handle = None

    def _changed(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change()
        except Exception:
            logger.exception("quiz change listener failed")
