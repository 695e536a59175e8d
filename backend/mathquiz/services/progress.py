from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

from mathquiz.schemas.progress import ProgressEntry, ProgressIndex

_STAGE_KEY = re.compile(r"^stage(\d+)$")


def stage_key(stage: int) -> str:
    return f"stage{int(stage)}"


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record[name]
    return getattr(record, name)


def normalize(records: Iterable[Any]) -> ProgressIndex:
    """Nest flat attempt records as student -> operation -> stage key -> score.

    Records are applied in iteration order, so for a repeated
    (student, operation, stage) the last record wins. Accepts row dicts or
    objects with `user_id`, `operation`, `stage`, `score`; never mutates them.
    """
    index: ProgressIndex = {}
    for record in records:
        student_id = str(_field(record, "user_id"))
        operation = _field(record, "operation")
        operation = str(getattr(operation, "value", operation))
        ops = index.setdefault(student_id, {})
        ops.setdefault(operation, {})[stage_key(_field(record, "stage"))] = int(_field(record, "score"))
    return index


def flatten(index: ProgressIndex) -> list[ProgressEntry]:
    entries: list[ProgressEntry] = []
    for student_id, ops in index.items():
        for operation, stages in ops.items():
            for key, score in stages.items():
                m = _STAGE_KEY.match(key)
                if not m:
                    continue
                entries.append(ProgressEntry(user_id=student_id, operation=operation, stage=int(m.group(1)), score=score))
    return entries


def student_progress(index: ProgressIndex, student_id: str | None) -> dict[str, dict[str, int]]:
    if not student_id:
        return {}
    return index.get(str(student_id)) or {}


def operation_average(stage_scores: Mapping[str, int] | None, *, ignore_zero: bool = False) -> float:
    """Mean score over the stage entries present.

    With `ignore_zero`, stages scored 0 still add to the total but do not count
    as completed (the class overview shown to teachers).
    """
    if not stage_scores:
        return 0.0
    scores = list(stage_scores.values())
    counted = [s for s in scores if s > 0] if ignore_zero else scores
    if not counted:
        return 0.0
    return sum(scores) / len(counted)
