from __future__ import annotations

import enum
from typing import TYPE_CHECKING

from mathquiz.models.user import UserRole

if TYPE_CHECKING:
    from mathquiz.schemas.me import AppState


class View(str, enum.Enum):
    login = "login"
    sign_up = "sign_up"
    dashboard = "dashboard"
    select_quiz = "select_quiz"
    quiz = "quiz"
    results = "results"


class Screen(str, enum.Enum):
    loading = "loading"
    login = "login"
    sign_up = "sign_up"
    admin_dashboard = "admin_dashboard"
    teacher_dashboard = "teacher_dashboard"
    student_dashboard = "student_dashboard"
    parent_dashboard = "parent_dashboard"
    select_quiz = "select_quiz"
    quiz = "quiz"
    results = "results"


_DASHBOARDS = {
    UserRole.admin: Screen.admin_dashboard,
    UserRole.teacher: Screen.teacher_dashboard,
    UserRole.student: Screen.student_dashboard,
    UserRole.parent: Screen.parent_dashboard,
}

# Views a renderer may request directly. `quiz` only opens through start_quiz,
# `dashboard` after sign-in and `login` after sign-out.
SIGNED_OUT_VIEWS = frozenset({View.login, View.sign_up})
SIGNED_IN_VIEWS = frozenset({View.dashboard, View.select_quiz, View.results})


def can_navigate(*, signed_in: bool, target: View, has_summary: bool = False) -> bool:
    if not signed_in:
        return target in SIGNED_OUT_VIEWS
    if target == View.results:
        return has_summary
    return target in SIGNED_IN_VIEWS


def dashboard_screen(role: UserRole | str | None) -> Screen:
    try:
        return _DASHBOARDS[UserRole(getattr(role, "value", role))]
    except (KeyError, ValueError):
        return Screen.login


def resolve_screen(state: "AppState") -> Screen:
    """Screen to render for a state snapshot.

    `quiz` without settings falls back to quiz selection and `results`
    without a summary falls back to the dashboard.
    """
    if state.is_loading:
        return Screen.loading

    user = state.current_user
    if user is None:
        return Screen.sign_up if state.view == View.sign_up else Screen.login

    if state.view == View.select_quiz:
        return Screen.select_quiz
    if state.view == View.quiz:
        return Screen.quiz if state.quiz_settings is not None else Screen.select_quiz
    if state.view == View.results:
        return Screen.results if state.quiz_summary is not None else dashboard_screen(user.role)
    return dashboard_screen(user.role)
