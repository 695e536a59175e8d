from __future__ import annotations

import copy
import logging
from typing import Any, Callable

from pydantic import ValidationError

from mathquiz.core.config import Settings, settings
from mathquiz.core.scheduler import AsyncioScheduler, Scheduler
from mathquiz.models.user import UserRole
from mathquiz.schemas.action import ActionResult, StepResult
from mathquiz.schemas.me import AppState
from mathquiz.schemas.progress import ProgressIndex
from mathquiz.schemas.quiz import QuizResult, QuizSettings, QuizSummary
from mathquiz.schemas.user import User, UserData
from mathquiz.services.data import INITIAL_SESSION, AuthSession, DataService, DataServiceError, Subscription
from mathquiz.services.navigation import View, can_navigate
from mathquiz.services.progress import normalize
from mathquiz.services.quiz_session import QuizSession, QuizStateError

logger = logging.getLogger("mathquiz.controller")

StateListener = Callable[[AppState], None]


class SessionController:
    """Owns who is signed in, the user/progress caches, the view cursor and
    the active quiz.

    `current_user` is written only by the auth-event handler; `login` and
    `logout` merely ask the data service to change the session. Each auth
    event gets a sequence number and work finishing after a newer event has
    arrived is dropped, so the last event to arrive decides who is signed in.
    Consumers read state through `snapshot()` or `subscribe()`.
    """

    def __init__(
        self,
        data: DataService,
        *,
        scheduler: Scheduler | None = None,
        cfg: Settings | None = None,
    ):
        cfg = cfg or settings
        self._data = data
        self._scheduler = scheduler or AsyncioScheduler()
        self._total_questions = int(cfg.quiz_total_questions)
        self._reveal_delay = float(cfg.quiz_reveal_delay_seconds)

        self.is_loading = True
        self.current_user: User | None = None
        self.users: list[User] = []
        self.progress: ProgressIndex = {}
        self.view = View.login
        self.quiz_settings: QuizSettings | None = None
        self.quiz_summary: QuizSummary | None = None
        self.quiz: QuizSession | None = None
        self.last_error: str | None = None

        self._listeners: list[StateListener] = []
        self._subscription: Subscription | None = None
        self._auth_seq = 0

    @property
    def data_service(self) -> DataService:
        return self._data

    # lifecycle

    async def start(self) -> None:
        if self._subscription is not None:
            return
        self._subscription = self._data.subscribe(self._on_auth_change)
        try:
            session = await self._data.get_session()
        except DataServiceError as e:
            logger.warning("could not restore session: %s", e)
            session = None
        await self._on_auth_change(INITIAL_SESSION, session)

    async def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._discard_quiz()
        self._listeners.clear()

    # observers

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    def snapshot(self) -> AppState:
        return AppState(
            is_loading=self.is_loading,
            current_user=self.current_user,
            users=tuple(self.users),
            progress=copy.deepcopy(self.progress),
            view=self.view,
            quiz_settings=self.quiz_settings,
            quiz_summary=self.quiz_summary,
            quiz=self.quiz.progress() if self.quiz is not None else None,
            last_error=self.last_error,
        )

    def _publish(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("state listener failed")

    # auth events

    async def _on_auth_change(self, event: str, session: AuthSession | None) -> None:
        self._auth_seq += 1
        seq = self._auth_seq

        if session is None:
            logger.info("auth event=%s signed out", event)
            self._signed_out()
            return

        try:
            profile = await self._data.get_profile(session.user.id)
        except DataServiceError as e:
            logger.warning("Error loading profile user_id=%s: %s", session.user.id, e)
            profile = None

        if seq != self._auth_seq:
            logger.info("dropping stale auth event=%s user_id=%s", event, session.user.id)
            return

        user: User | None = None
        if profile is not None:
            try:
                user = User.from_profile(profile, email=session.user.email)
            except ValidationError as e:
                logger.warning("invalid profile user_id=%s: %s", session.user.id, e)

        if user is None:
            self._signed_out(error="No profile found for this account.")
            return

        logger.info("auth event=%s user_id=%s role=%s", event, user.id, user.role.value)
        self._discard_quiz()
        self.current_user = user
        self.view = View.dashboard
        self.last_error = None
        self._publish()

        await self.fetch_all_users()
        await self.fetch_all_progress()

        if seq == self._auth_seq:
            self.is_loading = False
            self._publish()

    def _signed_out(self, *, error: str | None = None) -> None:
        self._discard_quiz()
        self.current_user = None
        self.users = []
        self.progress = {}
        self.view = View.login
        self.is_loading = False
        self.last_error = error
        self._publish()

    # cache refreshes

    async def fetch_all_users(self) -> bool:
        seq = self._auth_seq
        try:
            rows = await self._data.list_profiles()
        except DataServiceError as e:
            logger.warning("Error fetching users: %s", e)
            return False

        if seq != self._auth_seq or self.current_user is None:
            return False

        users: list[User] = []
        for row in rows:
            try:
                users.append(User.from_profile(row))
            except (KeyError, ValidationError) as e:
                logger.warning("skipping malformed profile row id=%s: %s", row.get("id"), e)
        self.users = users
        self._publish()
        return True

    async def fetch_all_progress(self) -> bool:
        seq = self._auth_seq
        try:
            rows = await self._data.list_progress()
        except DataServiceError as e:
            logger.warning("Error fetching progress data: %s", e)
            return False

        if seq != self._auth_seq or self.current_user is None:
            return False

        try:
            index = normalize(rows)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Error normalizing progress data: %s", e)
            return False
        self.progress = index
        self._publish()
        return True

    async def list_students(self) -> list[User]:
        """Students a parent can link to on the sign-up screen.

        Readable while signed out; a failed read yields an empty list.
        """
        try:
            rows = await self._data.list_profiles_by_role(UserRole.student.value)
        except DataServiceError as e:
            logger.warning("Error fetching students: %s", e)
            return []

        students: list[User] = []
        for row in rows:
            try:
                students.append(User.from_profile(row))
            except (KeyError, ValidationError) as e:
                logger.warning("skipping malformed profile row id=%s: %s", row.get("id"), e)
        return students

    # auth requests

    async def login(self, email: str, password: str) -> ActionResult:
        try:
            await self._data.sign_in(email, password)
        except DataServiceError as e:
            return ActionResult(success=False, message=e.message)
        return ActionResult(success=True, message="Login successful!")

    async def logout(self) -> ActionResult:
        try:
            await self._data.sign_out()
        except DataServiceError as e:
            logger.warning("sign-out failed: %s", e)
            return ActionResult(success=False, message=e.message)
        return ActionResult(success=True, message="Signed out.")

    async def sign_up(self, data: UserData) -> ActionResult:
        """Create the account, then (parents only) link the child.

        The two writes are independent: when the link fails the account
        still exists and the result says so.
        """
        steps: list[StepResult] = []
        try:
            auth_user = await self._data.sign_up(
                data.email,
                data.password,
                {"name": data.name, "role": data.role.value},
            )
        except DataServiceError as e:
            steps.append(StepResult(name="create_account", ok=False, error=e.message))
            return ActionResult(success=False, message=e.message, steps=steps)
        steps.append(StepResult(name="create_account", ok=True))

        if data.role == UserRole.parent and data.child_id and auth_user.id:
            try:
                await self._data.update_profile(auth_user.id, {"child_id": data.child_id})
            except DataServiceError as e:
                logger.warning("child link failed parent_id=%s child_id=%s: %s", auth_user.id, data.child_id, e)
                steps.append(StepResult(name="link_child", ok=False, error=e.message))
                return ActionResult(
                    success=False,
                    message=f"User created, but failed to link child: {e.message}",
                    steps=steps,
                )
            steps.append(StepResult(name="link_child", ok=True))
            if self.current_user is not None:
                await self.fetch_all_users()

        return ActionResult(
            success=True,
            message="Sign up successful! Please check your email for a confirmation link.",
            steps=steps,
        )

    # admin actions

    def _require_admin(self) -> ActionResult | None:
        if self.current_user is None or self.current_user.role != UserRole.admin:
            return ActionResult(success=False, message="Only administrators can manage users.")
        return None

    async def add_user(self, data: UserData) -> ActionResult:
        """Create a user through the sign-up flow.

        The hosted service signs the new account in, so the calling admin is
        signed out as a side effect; warn the admin before calling this.
        """
        denied = self._require_admin()
        if denied is not None:
            return denied
        if not data.password:
            return ActionResult(success=False, message="Password is required for new users.")

        result = await self.sign_up(data)
        if not result.success:
            return result
        await self.fetch_all_users()
        return ActionResult(
            success=True,
            message="User added successfully. Admin will be logged out.",
            steps=result.steps,
        )

    async def update_user(self, user: User) -> ActionResult:
        # Email and password belong to the auth service and are never touched here.
        denied = self._require_admin()
        if denied is not None:
            return denied

        changes: dict[str, Any] = {"name": user.name, "role": user.role.value, "child_id": user.child_id}
        try:
            await self._data.update_profile(user.id, changes)
        except DataServiceError as e:
            return ActionResult(success=False, message=e.message)

        await self.fetch_all_users()
        return ActionResult(success=True, message="User updated successfully.")

    async def delete_user(self, user_id: str) -> ActionResult:
        """Remove a user's profile and progress rows.

        The login identity stays in the auth service (removing it needs
        server-side privileges), so the person could still authenticate but
        would have no profile. Both deletes are attempted and reported.
        """
        denied = self._require_admin()
        if denied is not None:
            return denied
        if str(user_id) == self.current_user.id:
            return ActionResult(success=False, message="You cannot delete your own account.")

        steps: list[StepResult] = []
        try:
            await self._data.delete_profile(user_id)
            steps.append(StepResult(name="delete_profile", ok=True))
        except DataServiceError as e:
            logger.error("Error deleting profile user_id=%s: %s", user_id, e)
            steps.append(StepResult(name="delete_profile", ok=False, error=e.message))

        try:
            await self._data.delete_progress_for_user(user_id)
            steps.append(StepResult(name="delete_progress", ok=True))
        except DataServiceError as e:
            logger.error("Error deleting progress user_id=%s: %s", user_id, e)
            steps.append(StepResult(name="delete_progress", ok=False, error=e.message))

        await self.fetch_all_users()
        await self.fetch_all_progress()

        profile_step, progress_step = steps
        if profile_step.ok and progress_step.ok:
            message = "User deleted. Their login account is kept by the auth service."
        elif profile_step.ok:
            message = f"User profile deleted, but failed to delete progress: {progress_step.error}"
        elif progress_step.ok:
            message = f"Failed to delete user profile: {profile_step.error}"
        else:
            message = f"Failed to delete user profile: {profile_step.error}; failed to delete progress: {progress_step.error}"
        return ActionResult(success=profile_step.ok and progress_step.ok, message=message, steps=steps)

    # navigation and quiz flow

    def set_view(self, view: View | str) -> bool:
        target = View(view)
        allowed = can_navigate(
            signed_in=self.current_user is not None,
            target=target,
            has_summary=self.quiz_summary is not None,
        )
        if not allowed:
            logger.info("rejected navigation from=%s to=%s", self.view.value, target.value)
            return False

        if target not in (View.quiz, View.results):
            self._discard_quiz()
        self.view = target
        self._publish()
        return True

    def start_quiz(self, quiz_settings: QuizSettings) -> QuizSession:
        if self.current_user is None:
            raise QuizStateError("sign in before starting a quiz")

        self._discard_quiz()
        self.quiz_settings = quiz_settings
        self.quiz = QuizSession(
            quiz_settings,
            scheduler=self._scheduler,
            on_complete=self.finish_quiz,
            on_change=self._publish,
            total_questions=self._total_questions,
            reveal_delay=self._reveal_delay,
        )
        self.view = View.quiz
        self.quiz.start()
        return self.quiz

    def submit_answer(self, answer: Any) -> QuizResult | None:
        if self.quiz is None:
            raise QuizStateError("no active quiz")
        return self.quiz.submit(answer)

    def exit_quiz(self) -> None:
        """Abort the quiz without saving anything and go back to the dashboard."""
        self._discard_quiz()
        if self.current_user is not None:
            self.view = View.dashboard
        self._publish()

    async def finish_quiz(self, summary: QuizSummary) -> None:
        user = self.current_user
        if user is None or user.role != UserRole.student:
            logger.debug("ignoring quiz summary role=%s", user.role.value if user else None)
            return

        seq = self._auth_seq
        self.quiz_summary = summary
        row = {
            "user_id": user.id,
            "operation": summary.settings.operation.value,
            "stage": summary.settings.stage,
            "score": int(round(summary.score)),
            "total_time": float(summary.total_time),
        }
        save_error: str | None = None
        try:
            await self._data.insert_progress(row)
        except DataServiceError as e:
            logger.error("Failed to save quiz progress user_id=%s: %s", user.id, e)
            save_error = f"Failed to save quiz progress: {e.message}"
        else:
            await self.fetch_all_progress()

        # An auth event during the save owns the view and summary from here on.
        if seq != self._auth_seq or self.current_user is None or self.current_user.id != user.id:
            logger.info("auth changed while saving quiz user_id=%s; not showing results", user.id)
            return

        if save_error is not None:
            self.last_error = save_error
        self.view = View.results
        self._publish()

    def _discard_quiz(self) -> None:
        if self.quiz is not None:
            self.quiz.cancel()
            self.quiz = None
        self.quiz_settings = None
        self.quiz_summary = None
