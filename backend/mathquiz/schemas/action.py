from __future__ import annotations

from pydantic import BaseModel, Field


class StepResult(BaseModel):
    name: str
    ok: bool
    error: str | None = None


class ActionResult(BaseModel):
    success: bool
    message: str
    steps: list[StepResult] = Field(default_factory=list)
