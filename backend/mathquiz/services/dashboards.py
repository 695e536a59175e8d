from __future__ import annotations

from mathquiz.models.user import UserRole
from mathquiz.schemas.me import (
    AdminDashboard,
    AdminUserRow,
    AppState,
    OperationReport,
    ParentDashboard,
    StudentDashboard,
    StudentReport,
    TeacherDashboard,
)
from mathquiz.schemas.user import User
from mathquiz.services.progress import operation_average, student_progress
from mathquiz.services.question_generator import OPERATIONS


def student_report(student: User, progress: dict[str, dict[str, int]], *, only_attempted: bool = False) -> StudentReport:
    """Per-operation averages for one student, in catalog order.

    The student's own view and the parent view list every operation (0 when
    never attempted); the class overview lists only attempted operations and
    leaves zero-score stages out of the average.
    """
    operations: list[OperationReport] = []
    for op, info in OPERATIONS.items():
        stages = progress.get(op.value)
        if not stages and only_attempted:
            continue
        operations.append(
            OperationReport(
                operation=op.value,
                name=info.name,
                average=operation_average(stages, ignore_zero=only_attempted),
                stages=dict(stages or {}),
            )
        )
    return StudentReport(student_id=student.id, name=student.name, has_progress=bool(progress), operations=operations)


def student_dashboard(state: AppState) -> StudentDashboard:
    user = state.current_user
    if user is None:
        raise ValueError("student dashboard needs a signed-in user")
    return StudentDashboard(report=student_report(user, student_progress(state.progress, user.id)))


def teacher_dashboard(state: AppState) -> TeacherDashboard:
    students = [u for u in state.users if u.role == UserRole.student]
    return TeacherDashboard(
        students=[
            student_report(s, student_progress(state.progress, s.id), only_attempted=True)
            for s in students
        ]
    )


def parent_dashboard(state: AppState) -> ParentDashboard:
    user = state.current_user
    if user is None:
        raise ValueError("parent dashboard needs a signed-in user")

    # The cached profile row may carry a child linked after sign-in.
    own_row = next((u for u in state.users if u.id == user.id), None)
    child_id = (own_row.child_id if own_row is not None else None) or user.child_id
    if not child_id:
        return ParentDashboard(status="no_child_linked")

    child = next((u for u in state.users if u.id == child_id), None)
    if child is None:
        return ParentDashboard(status="child_not_found")

    return ParentDashboard(
        status="ok",
        child=child,
        report=student_report(child, student_progress(state.progress, child.id)),
    )


def admin_dashboard(state: AppState) -> AdminDashboard:
    me = state.current_user
    return AdminDashboard(
        users=[AdminUserRow(user=u, can_delete=(me is None or u.id != me.id)) for u in state.users],
        students=[u for u in state.users if u.role == UserRole.student],
    )


def dashboard_for(state: AppState) -> StudentDashboard | TeacherDashboard | ParentDashboard | AdminDashboard | None:
    user = state.current_user
    if user is None:
        return None
    if user.role == UserRole.admin:
        return admin_dashboard(state)
    if user.role == UserRole.teacher:
        return teacher_dashboard(state)
    if user.role == UserRole.parent:
        return parent_dashboard(state)
    return student_dashboard(state)
