from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

# student id -> operation -> "stage{N}" -> score
ProgressIndex = dict[str, dict[str, dict[str, int]]]


class ProgressEntry(BaseModel):
    user_id: str
    operation: str
    stage: int
    score: int


class AttemptRecord(ProgressEntry):
    id: int | None = None
    score: int = Field(ge=0, le=100)
    total_time: float = 0.0
    created_at: datetime | None = None


class StudentProgressResponse(BaseModel):
    student_id: str
    operations: dict[str, dict[str, int]]


class ProgressIndexResponse(BaseModel):
    items: ProgressIndex
