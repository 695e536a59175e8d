import random
import re

import pytest

from mathquiz.schemas.quiz import Operation
from mathquiz.services.question_generator import OPERATIONS, TIMER_OPTIONS, generate_question

SAMPLES = 10_000

_TEXT = re.compile(r"^(\d+) (\+|-|×) (\d+) = \?$")

# (operation, stage) -> ((a_lo, a_hi), (b_lo, b_hi)); subtraction's b is bounded by a.
BOUNDS = {
    (Operation.addition, 1): ((0, 5), (0, 5)),
    (Operation.addition, 2): ((0, 10), (0, 10)),
    (Operation.addition, 3): ((0, 20), (0, 20)),
    (Operation.subtraction, 1): ((1, 10), (0, 10)),
    (Operation.subtraction, 2): ((1, 20), (0, 20)),
    (Operation.multiplication, 1): ((1, 5), (1, 5)),
    (Operation.multiplication, 2): ((6, 10), (1, 10)),
    (Operation.multiplication, 3): ((1, 10), (1, 10)),
}


def _parse(text: str) -> tuple[int, str, int]:
    m = _TEXT.match(text)
    assert m is not None, text
    return int(m.group(1)), m.group(2), int(m.group(3))


@pytest.mark.parametrize("operation,stage", sorted(BOUNDS, key=lambda k: (k[0].value, k[1])))
def test_operands_stay_in_stage_bounds(operation, stage):
    (a_lo, a_hi), (b_lo, b_hi) = BOUNDS[(operation, stage)]
    rng = random.Random(1234)
    for _ in range(SAMPLES):
        q = generate_question(operation, stage, rng=rng)
        a, symbol, b = _parse(q.text)
        assert symbol == OPERATIONS[operation].symbol
        assert a_lo <= a <= a_hi
        assert b_lo <= b <= b_hi

        if operation == Operation.addition:
            assert q.answer == a + b
        elif operation == Operation.subtraction:
            assert b <= a
            assert q.answer == a - b
            assert q.answer >= 0
        else:
            assert q.answer == a * b


def test_stages_past_the_last_reuse_hardest_range():
    rng = random.Random(7)
    for _ in range(500):
        a, _, b = _parse(generate_question(Operation.subtraction, 5, rng=rng).text)
        assert 1 <= a <= 20
        assert 0 <= b <= a


def test_accepts_operation_name_string():
    q = generate_question("multiplication", 1, rng=random.Random(0))
    a, symbol, b = _parse(q.text)
    assert symbol == "×"
    assert q.answer == a * b


def test_unknown_operation_falls_back_to_fixed_question():
    q = generate_question("division", 1)
    assert q.text == "1 + 1 = ?"
    assert q.answer == 2


def test_same_seed_gives_same_questions():
    first = [generate_question(Operation.addition, 3, rng=random.Random(99)).text for _ in range(3)]
    second = [generate_question(Operation.addition, 3, rng=random.Random(99)).text for _ in range(3)]
    assert first == second


def test_catalog_and_timer_options():
    assert {op: info.stages for op, info in OPERATIONS.items()} == {
        Operation.addition: 3,
        Operation.subtraction: 2,
        Operation.multiplication: 3,
    }
    assert TIMER_OPTIONS == (8, 4, 3)
