import asyncio

import pytest

from mathquiz.models.user import UserRole
from mathquiz.schemas.quiz import Operation, QuizSettings, QuizSummary
from mathquiz.schemas.user import User, UserData
from mathquiz.services.data import DataServiceError
from mathquiz.services.navigation import View
from mathquiz.services.quiz_session import QuizState, QuizStateError

from conftest import PASSWORD


async def _login(controller, email):
    result = await controller.login(email, PASSWORD)
    assert result.success, result.message
    return controller.current_user


@pytest.mark.asyncio
async def test_starts_signed_out(controller):
    assert controller.is_loading is False
    assert controller.current_user is None
    assert controller.view == View.login


@pytest.mark.asyncio
async def test_login_loads_user_and_caches(controller, seed_account, seed_progress):
    kid = seed_account("kid@example.com", name="Kid", role=UserRole.student)
    seed_account("teach@example.com", name="Teach", role=UserRole.teacher)
    await seed_progress(kid, "addition", 1, 80)

    user = await _login(controller, "teach@example.com")

    assert user.role == UserRole.teacher
    assert user.email == "teach@example.com"
    assert controller.view == View.dashboard
    assert {u.id for u in controller.users} >= {kid, user.id}
    assert controller.progress == {kid: {"addition": {"stage1": 80}}}


@pytest.mark.asyncio
async def test_bad_credentials_surface_verbatim(controller, seed_account):
    seed_account("kid@example.com")
    result = await controller.login("kid@example.com", "wrong-password")
    assert result.success is False
    assert result.message == "Invalid login credentials"
    assert controller.current_user is None


@pytest.mark.asyncio
async def test_session_without_profile_is_treated_as_signed_out(controller, seed_account):
    seed_account("ghost@example.com", profile=False)
    await controller.login("ghost@example.com", PASSWORD)
    assert controller.current_user is None
    assert controller.view == View.login
    assert controller.last_error == "No profile found for this account."


@pytest.mark.asyncio
async def test_logout_clears_caches_and_quiz(controller, seed_account, seed_progress):
    kid = seed_account("kid@example.com")
    await seed_progress(kid, "addition", 1, 50)
    await _login(controller, "kid@example.com")
    controller.start_quiz(QuizSettings(operation=Operation.addition, stage=1, timer=8))

    await controller.logout()

    assert controller.current_user is None
    assert controller.users == []
    assert controller.progress == {}
    assert controller.quiz is None
    assert controller.quiz_settings is None
    assert controller.view == View.login


@pytest.mark.asyncio
async def test_last_auth_event_wins(controller, data_service, seed_account, monkeypatch):
    a = seed_account("a@x.com", name="A")
    b = seed_account("b@x.com", name="B")

    original = data_service.get_profile

    async def slow_get_profile(user_id):
        if user_id == a:
            await asyncio.sleep(0.05)
        return await original(user_id)

    monkeypatch.setattr(data_service, "get_profile", slow_get_profile)

    await asyncio.gather(controller.login("a@x.com", PASSWORD), controller.login("b@x.com", PASSWORD))

    user = controller.current_user
    assert user is not None
    assert (user.id, user.name, user.email) == (b, "B", "b@x.com")


@pytest.mark.asyncio
async def test_subscribers_receive_snapshots(controller, seed_account):
    seed_account("kid@example.com")
    seen = []
    unsubscribe = controller.subscribe(seen.append)

    await _login(controller, "kid@example.com")
    assert seen
    assert seen[-1].current_user is not None
    assert seen[-1].is_loading is False

    unsubscribe()
    count = len(seen)
    controller.set_view(View.select_quiz)
    assert len(seen) == count


@pytest.mark.asyncio
async def test_snapshot_is_detached_from_controller(controller, seed_account, seed_progress):
    kid = seed_account("kid@example.com")
    await seed_progress(kid, "addition", 1, 50)
    await _login(controller, "kid@example.com")

    snap = controller.snapshot()
    snap.progress[kid]["addition"]["stage1"] = 0
    assert controller.progress[kid]["addition"]["stage1"] == 50


@pytest.mark.asyncio
async def test_read_failure_keeps_previous_cache(controller, data_service, seed_account, monkeypatch):
    seed_account("admin@example.com", role=UserRole.admin)
    await _login(controller, "admin@example.com")
    before = list(controller.users)

    async def broken():
        raise DataServiceError("connection reset")

    monkeypatch.setattr(data_service, "list_profiles", broken)
    monkeypatch.setattr(data_service, "list_progress", broken)

    assert await controller.fetch_all_users() is False
    assert await controller.fetch_all_progress() is False
    assert controller.users == before


@pytest.mark.asyncio
async def test_parent_signup_with_missing_child_keeps_account(controller, data_service):
    result = await controller.sign_up(
        UserData(name="Pat", email="pat@example.com", password=PASSWORD, role=UserRole.parent, child_id="no-such-id")
    )

    assert result.success is False
    assert result.message.startswith("User created, but failed to link child: ")
    assert "foreign key" in result.message
    assert [(s.name, s.ok) for s in result.steps] == [("create_account", True), ("link_child", False)]

    parent = controller.current_user
    assert parent is not None and parent.role == UserRole.parent
    profile = await data_service.get_profile(parent.id)
    assert profile["child_id"] is None


@pytest.mark.asyncio
async def test_parent_signup_links_existing_child(controller, data_service, seed_account):
    kid = seed_account("kid@example.com", role=UserRole.student)
    result = await controller.sign_up(
        UserData(name="Pat", email="pat@example.com", password=PASSWORD, role=UserRole.parent, child_id=kid)
    )

    assert result.success is True
    assert result.message == "Sign up successful! Please check your email for a confirmation link."
    profile = await data_service.get_profile(controller.current_user.id)
    assert profile["child_id"] == kid
    own_row = next(u for u in controller.users if u.id == controller.current_user.id)
    assert own_row.child_id == kid


@pytest.mark.asyncio
async def test_duplicate_signup_fails_without_link_step(controller, seed_account):
    seed_account("kid@example.com")
    result = await controller.sign_up(UserData(name="Kid", email="kid@example.com", password=PASSWORD))
    assert result.success is False
    assert result.message == "User already registered"
    assert [s.name for s in result.steps] == ["create_account"]


@pytest.mark.asyncio
async def test_non_admin_cannot_manage_users(controller, data_service, seed_account):
    kid = seed_account("kid@example.com")
    other = seed_account("other@example.com", name="Other")
    await _login(controller, "kid@example.com")

    added = await controller.add_user(UserData(name="New", email="new@example.com", password=PASSWORD))
    updated = await controller.update_user(User(id=other, name="Renamed", role=UserRole.teacher))
    deleted = await controller.delete_user(other)

    for result in (added, updated, deleted):
        assert result.success is False
        assert result.message == "Only administrators can manage users."

    assert controller.current_user.id == kid
    profile = await data_service.get_profile(other)
    assert profile["name"] == "Other"
    assert profile["role"] == "student"
    assert len(await data_service.list_profiles()) == 2


@pytest.mark.asyncio
async def test_admin_updates_profile_fields(controller, data_service, seed_account):
    seed_account("admin@example.com", role=UserRole.admin)
    kid = seed_account("kid@example.com", name="Kid")
    await _login(controller, "admin@example.com")

    result = await controller.update_user(User(id=kid, name="Kiddo", role=UserRole.student))

    assert result.success is True
    assert result.message == "User updated successfully."
    assert next(u for u in controller.users if u.id == kid).name == "Kiddo"


@pytest.mark.asyncio
async def test_admin_add_user_switches_session(controller, seed_account):
    seed_account("admin@example.com", role=UserRole.admin)
    await _login(controller, "admin@example.com")

    result = await controller.add_user(UserData(name="New", email="new@example.com", password=PASSWORD))

    assert result.success is True
    assert result.message == "User added successfully. Admin will be logged out."
    assert controller.current_user.email == "new@example.com"


@pytest.mark.asyncio
async def test_add_user_requires_password(controller, seed_account):
    seed_account("admin@example.com", role=UserRole.admin)
    await _login(controller, "admin@example.com")
    result = await controller.add_user(UserData(name="New", email="new@example.com", password=""))
    assert result.message == "Password is required for new users."


@pytest.mark.asyncio
async def test_delete_user_removes_from_both_caches(controller, seed_account, seed_progress):
    seed_account("admin@example.com", role=UserRole.admin)
    kid = seed_account("kid@example.com")
    await seed_progress(kid, "addition", 1, 90)
    await _login(controller, "admin@example.com")
    assert kid in controller.progress

    result = await controller.delete_user(kid)

    assert result.success is True
    assert result.message == "User deleted. Their login account is kept by the auth service."
    assert kid not in {u.id for u in controller.users}
    assert kid not in controller.progress


@pytest.mark.asyncio
async def test_delete_user_reports_partial_failure(controller, data_service, seed_account, seed_progress, monkeypatch):
    seed_account("admin@example.com", role=UserRole.admin)
    kid = seed_account("kid@example.com")
    await seed_progress(kid, "addition", 1, 90)
    await _login(controller, "admin@example.com")

    async def broken(user_id):
        raise DataServiceError("permission denied for table progress")

    monkeypatch.setattr(data_service, "delete_progress_for_user", broken)

    result = await controller.delete_user(kid)

    assert result.success is False
    assert result.message == "User profile deleted, but failed to delete progress: permission denied for table progress"
    assert [(s.name, s.ok) for s in result.steps] == [("delete_profile", True), ("delete_progress", False)]
    assert kid not in {u.id for u in controller.users}
    assert kid in controller.progress


@pytest.mark.asyncio
async def test_admin_cannot_delete_self(controller, seed_account):
    admin = seed_account("admin@example.com", role=UserRole.admin)
    await _login(controller, "admin@example.com")
    result = await controller.delete_user(admin)
    assert result.success is False
    assert result.message == "You cannot delete your own account."


@pytest.mark.asyncio
async def test_finish_quiz_by_non_student_is_ignored(controller, data_service, seed_account):
    seed_account("teach@example.com", role=UserRole.teacher)
    await _login(controller, "teach@example.com")
    summary = QuizSummary(
        settings=QuizSettings(operation=Operation.addition, stage=1, timer=8),
        results=(),
        score=100,
        total_time=12.0,
    )

    await controller.finish_quiz(summary)

    assert await data_service.list_progress() == []
    assert controller.view == View.dashboard
    assert controller.quiz_summary is None


@pytest.mark.asyncio
async def test_addition_stage1_all_correct_is_saved(controller, scheduler, data_service, seed_account):
    kid = seed_account("kid@example.com")
    await _login(controller, "kid@example.com")

    quiz = controller.start_quiz(QuizSettings(operation=Operation.addition, stage=1, timer=8))
    assert controller.view == View.quiz

    while quiz.state == QuizState.awaiting_answer:
        scheduler.advance(0.5)
        assert controller.submit_answer(str(quiz.question.answer)) is not None
        scheduler.advance(quiz.reveal_delay)

    assert quiz.completion is not None
    await quiz.completion

    summary = controller.quiz_summary
    assert summary.score == 100
    assert len(summary.results) == 10
    assert controller.view == View.results
    assert controller.last_error is None

    rows = await data_service.list_progress()
    assert len(rows) == 1
    assert (rows[0]["user_id"], rows[0]["operation"], rows[0]["stage"], rows[0]["score"]) == (kid, "addition", 1, 100)
    assert rows[0]["total_time"] == pytest.approx(5.0)
    assert controller.progress[kid]["addition"]["stage1"] == 100


@pytest.mark.asyncio
async def test_failed_save_still_shows_results(controller, data_service, seed_account, monkeypatch):
    seed_account("kid@example.com")
    await _login(controller, "kid@example.com")

    async def broken(row):
        raise DataServiceError("new row violates row-level security policy")

    monkeypatch.setattr(data_service, "insert_progress", broken)
    summary = QuizSummary(
        settings=QuizSettings(operation=Operation.addition, stage=1, timer=8),
        results=(),
        score=50,
        total_time=3.0,
    )

    await controller.finish_quiz(summary)

    assert controller.view == View.results
    assert controller.last_error == "Failed to save quiz progress: new row violates row-level security policy"


@pytest.mark.asyncio
async def test_exit_quiz_discards_session(controller, scheduler, data_service, seed_account):
    seed_account("kid@example.com")
    await _login(controller, "kid@example.com")
    quiz = controller.start_quiz(QuizSettings(operation=Operation.multiplication, stage=2, timer=4))
    controller.submit_answer(quiz.question.answer)

    controller.exit_quiz()

    assert quiz.state == QuizState.cancelled
    assert controller.quiz is None
    assert controller.view == View.dashboard
    assert scheduler.pending == 0
    assert await data_service.list_progress() == []


@pytest.mark.asyncio
async def test_start_quiz_requires_sign_in(controller):
    with pytest.raises(QuizStateError):
        controller.start_quiz(QuizSettings(operation=Operation.addition, stage=1, timer=8))
    with pytest.raises(QuizStateError):
        controller.submit_answer(1)


@pytest.mark.asyncio
async def test_set_view_rules(controller, seed_account):
    assert controller.set_view(View.sign_up) is True
    assert controller.set_view(View.dashboard) is False

    seed_account("kid@example.com")
    await _login(controller, "kid@example.com")

    assert controller.set_view(View.login) is False
    assert controller.set_view(View.quiz) is False
    assert controller.set_view(View.results) is False
    assert controller.set_view(View.select_quiz) is True
    assert controller.view == View.select_quiz


@pytest.mark.asyncio
async def test_sign_out_during_save_keeps_login_view(controller, data_service, seed_account, monkeypatch):
    kid = seed_account("kid@example.com")
    await _login(controller, "kid@example.com")
    insert = data_service.insert_progress

    async def insert_then_sign_out(row):
        saved = await insert(row)
        await data_service.sign_out()
        return saved

    monkeypatch.setattr(data_service, "insert_progress", insert_then_sign_out)
    summary = QuizSummary(
        settings=QuizSettings(operation=Operation.addition, stage=1, timer=8),
        results=(),
        score=70,
        total_time=9.0,
    )

    await controller.finish_quiz(summary)

    assert controller.current_user is None
    assert controller.view == View.login
    assert controller.quiz_summary is None
    assert controller.last_error is None
    rows = await data_service.list_progress()
    assert [r["user_id"] for r in rows] == [kid]


@pytest.mark.asyncio
async def test_other_login_during_save_keeps_their_dashboard(controller, data_service, seed_account, monkeypatch):
    seed_account("kid@example.com")
    seed_account("teach@example.com", name="Teach", role=UserRole.teacher)
    await _login(controller, "kid@example.com")

    async def rejected_while_switching(row):
        await data_service.sign_in("teach@example.com", PASSWORD)
        raise DataServiceError("JWT expired")

    monkeypatch.setattr(data_service, "insert_progress", rejected_while_switching)
    summary = QuizSummary(
        settings=QuizSettings(operation=Operation.subtraction, stage=2, timer=8),
        results=(),
        score=40,
        total_time=11.0,
    )

    await controller.finish_quiz(summary)

    assert controller.current_user.email == "teach@example.com"
    assert controller.view == View.dashboard
    assert controller.quiz_summary is None
    assert controller.last_error is None


@pytest.mark.asyncio
async def test_list_students_while_signed_out(controller, seed_account):
    kid = seed_account("kid@example.com", name="Kid")
    other = seed_account("sue@example.com", name="Sue")
    seed_account("teach@example.com", name="Teach", role=UserRole.teacher)
    seed_account("mum@example.com", name="Mum", role=UserRole.parent, child_id=kid)

    students = await controller.list_students()

    assert controller.current_user is None
    assert {s.id for s in students} == {kid, other}
    assert all(s.role == UserRole.student for s in students)


@pytest.mark.asyncio
async def test_list_students_read_failure_is_empty(controller, data_service, seed_account, monkeypatch):
    seed_account("kid@example.com")

    async def broken(role):
        raise DataServiceError("permission denied for table profiles")

    monkeypatch.setattr(data_service, "list_profiles_by_role", broken)

    assert await controller.list_students() == []
    assert controller.last_error is None
