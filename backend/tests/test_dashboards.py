import pytest

from mathquiz.models.user import UserRole
from mathquiz.schemas.me import AppState
from mathquiz.schemas.user import User
from mathquiz.services.dashboards import dashboard_for, parent_dashboard, student_dashboard, student_report
from mathquiz.services.navigation import View

ADMIN = User(id="a1", name="Ada", role=UserRole.admin)
TEACHER = User(id="t1", name="Tess", role=UserRole.teacher)
KID = User(id="s1", name="Sam", role=UserRole.student)
OTHER_KID = User(id="s2", name="Sue", role=UserRole.student)

PROGRESS = {"s1": {"addition": {"stage1": 80, "stage2": 0}, "multiplication": {"stage3": 60}}}


def _state(user, users, progress=PROGRESS):
    return AppState(is_loading=False, current_user=user, users=tuple(users), progress=progress, view=View.dashboard)


def test_student_sees_every_operation():
    board = dashboard_for(_state(KID, [KID]))
    assert board.kind == "student"
    ops = {o.operation: o for o in board.report.operations}
    assert list(ops) == ["addition", "subtraction", "multiplication"]
    assert ops["addition"].average == 40.0
    assert ops["subtraction"].average == 0.0
    assert ops["subtraction"].stages == {}
    assert ops["multiplication"].average == 60.0


def test_teacher_sees_attempted_operations_only():
    board = dashboard_for(_state(TEACHER, [TEACHER, KID, OTHER_KID]))
    assert board.kind == "teacher"
    reports = {r.student_id: r for r in board.students}
    assert set(reports) == {"s1", "s2"}

    sam = reports["s1"]
    assert [o.operation for o in sam.operations] == ["addition", "multiplication"]
    assert sam.operations[0].average == 80.0
    assert reports["s2"].has_progress is False
    assert reports["s2"].operations == []


def test_parent_without_child():
    parent = User(id="p1", name="Pat", role=UserRole.parent)
    board = dashboard_for(_state(parent, [parent, KID]))
    assert board.kind == "parent"
    assert board.status == "no_child_linked"


def test_parent_with_unknown_child():
    parent = User(id="p1", name="Pat", role=UserRole.parent, child_id="gone")
    board = dashboard_for(_state(parent, [parent, KID]))
    assert board.status == "child_not_found"


def test_parent_uses_fresh_link_from_users_cache():
    signed_in = User(id="p1", name="Pat", role=UserRole.parent)
    cached = User(id="p1", name="Pat", role=UserRole.parent, child_id="s1")
    board = dashboard_for(_state(signed_in, [cached, KID]))
    assert board.status == "ok"
    assert board.child.id == "s1"
    assert board.report.operations[0].stages == {"stage1": 80, "stage2": 0}


def test_admin_cannot_delete_own_row():
    board = dashboard_for(_state(ADMIN, [ADMIN, TEACHER, KID]))
    assert board.kind == "admin"
    flags = {row.user.id: row.can_delete for row in board.users}
    assert flags == {"a1": False, "t1": True, "s1": True}
    assert [u.id for u in board.students] == ["s1"]


def test_signed_out_has_no_dashboard():
    assert dashboard_for(_state(None, [])) is None


def test_report_for_student_without_progress():
    report = student_report(OTHER_KID, {})
    assert report.has_progress is False
    assert all(o.average == 0.0 for o in report.operations)


@pytest.mark.parametrize("build", [student_dashboard, parent_dashboard])
def test_role_dashboards_need_a_user(build):
    with pytest.raises(ValueError):
        build(_state(None, [KID]))
