from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

from mathquiz.schemas.quiz import QuizProgress, QuizSettings, QuizSummary
from mathquiz.schemas.user import User
from mathquiz.services.navigation import Screen, View


class AppState(BaseModel):
    """Immutable snapshot of everything the controller owns."""

    model_config = ConfigDict(frozen=True)

    is_loading: bool
    current_user: User | None
    users: tuple[User, ...]
    progress: dict[str, dict[str, dict[str, int]]]
    view: View
    quiz_settings: QuizSettings | None = None
    quiz_summary: QuizSummary | None = None
    quiz: QuizProgress | None = None
    last_error: str | None = None


class StateResponse(BaseModel):
    screen: Screen
    state: AppState


class SetViewRequest(BaseModel):
    view: View


class OperationReport(BaseModel):
    operation: str
    name: str
    average: float
    stages: dict[str, int]


class StudentReport(BaseModel):
    student_id: str
    name: str
    has_progress: bool
    operations: list[OperationReport]


class StudentDashboard(BaseModel):
    kind: Literal["student"] = "student"
    report: StudentReport


class TeacherDashboard(BaseModel):
    kind: Literal["teacher"] = "teacher"
    students: list[StudentReport]


class ParentDashboard(BaseModel):
    kind: Literal["parent"] = "parent"
    status: Literal["ok", "no_child_linked", "child_not_found"]
    child: User | None = None
    report: StudentReport | None = None


class AdminUserRow(BaseModel):
    user: User
    can_delete: bool


class AdminDashboard(BaseModel):
    kind: Literal["admin"] = "admin"
    users: list[AdminUserRow]
    students: list[User]
