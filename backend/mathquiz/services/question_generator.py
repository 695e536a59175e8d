from __future__ import annotations

import random
from dataclasses import dataclass

from mathquiz.schemas.quiz import Operation, Question


@dataclass(frozen=True)
class OperationInfo:
    name: str
    stages: int
    symbol: str


OPERATIONS: dict[Operation, OperationInfo] = {
    Operation.addition: OperationInfo(name="Addition", stages=3, symbol="+"),
    Operation.subtraction: OperationInfo(name="Subtraction", stages=2, symbol="-"),
    Operation.multiplication: OperationInfo(name="Multiplication", stages=3, symbol="×"),
}

# Seconds per question offered on the quiz setup screen.
TIMER_OPTIONS: tuple[int, ...] = (8, 4, 3)

_FALLBACK = Question(text="1 + 1 = ?", answer=2)
_rng = random.Random()


def _operands(operation: Operation, stage: int, rng: random.Random) -> tuple[int, int, int]:
    if operation == Operation.addition:
        hi = 5 if stage == 1 else 10 if stage == 2 else 20
        a, b = rng.randint(0, hi), rng.randint(0, hi)
        return a, b, a + b

    if operation == Operation.subtraction:
        a = rng.randint(1, 10) if stage == 1 else rng.randint(1, 20)
        b = rng.randint(0, a)  # subtrahend never exceeds the minuend
        return a, b, a - b

    if stage == 1:
        a, b = rng.randint(1, 5), rng.randint(1, 5)
    elif stage == 2:
        a, b = rng.randint(6, 10), rng.randint(1, 10)
    else:
        a, b = rng.randint(1, 10), rng.randint(1, 10)
    return a, b, a * b


def generate_question(operation: Operation | str, stage: int, *, rng: random.Random | None = None) -> Question:
    """Random question for an operation and difficulty stage.

    Stages past the last defined one reuse the hardest ranges. An unknown
    operation yields the fixed `1 + 1` question instead of an error.
    """
    try:
        op = Operation(getattr(operation, "value", operation))
    except ValueError:
        return _FALLBACK

    a, b, answer = _operands(op, int(stage), rng or _rng)
    return Question(text=f"{a} {OPERATIONS[op].symbol} {b} = ?", answer=answer)
