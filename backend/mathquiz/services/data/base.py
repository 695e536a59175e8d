from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger("mathquiz.data")

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
INITIAL_SESSION = "INITIAL_SESSION"


class DataServiceError(Exception):
    """A remote call failed; `message` is what the service said."""

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = str(message or "request failed")
        self.status_code = status_code
        self.code = code

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str | None = None
    user_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    user: AuthUser
    refresh_token: str | None = None
    expires_at: float | None = None


AuthListener = Callable[[str, "AuthSession | None"], Awaitable[None]]


class Subscription:
    def __init__(self, service: "DataService", listener: AuthListener):
        self._service = service
        self._listener = listener

    def unsubscribe(self) -> None:
        try:
            self._service._listeners.remove(self._listener)
        except ValueError:
            pass


class DataService:
    """Auth + `profiles` + `progress` operations of the hosted data service.

    Every call is a coroutine and raises `DataServiceError` on failure. Session
    changes are pushed to subscribers and awaited before the triggering call
    (sign in, sign up with a session, sign out) returns.
    """

    def __init__(self) -> None:
        self._listeners: list[AuthListener] = []

    # auth

    def subscribe(self, listener: AuthListener) -> Subscription:
        self._listeners.append(listener)
        return Subscription(self, listener)

    async def _notify(self, event: str, session: AuthSession | None) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event, session)
            except Exception:
                logger.exception("auth listener failed event=%s", event)

    async def get_session(self) -> AuthSession | None:
        raise NotImplementedError

    async def sign_in(self, email: str, password: str) -> AuthSession:
        raise NotImplementedError

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> AuthUser:
        raise NotImplementedError

    async def sign_out(self) -> None:
        raise NotImplementedError

    # profiles

    async def list_profiles(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def list_profiles_by_role(self, role: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    async def update_profile(self, user_id: str, changes: dict[str, Any]) -> None:
        raise NotImplementedError

    async def delete_profile(self, user_id: str) -> None:
        raise NotImplementedError

    # progress

    async def list_progress(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def insert_progress(self, row: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    async def delete_progress_for_user(self, user_id: str) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
