from __future__ import annotations

import time
from dataclasses import replace
from typing import Any

import httpx

from mathquiz.services.data.base import (
    SIGNED_IN,
    SIGNED_OUT,
    AuthSession,
    AuthUser,
    DataService,
    DataServiceError,
    logger,
)


def _error_message(resp: httpx.Response) -> tuple[str, str | None]:
    try:
        payload = resp.json()
    except ValueError:
        payload = None

    code: str | None = None
    if isinstance(payload, dict):
        raw_code = payload.get("error_code") or payload.get("code") or payload.get("error")
        code = str(raw_code) if raw_code is not None else None
        # GoTrue uses msg / error_description, PostgREST uses message.
        for key in ("msg", "error_description", "message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip(), code

    text = (resp.text or "").strip()
    return (text[:300] if text else f"HTTP {resp.status_code}"), code


# Refresh this many seconds before the access token expires.
_REFRESH_MARGIN_SECONDS = 10.0


def _user_from_payload(payload: dict[str, Any]) -> AuthUser:
    return AuthUser(
        id=str(payload.get("id") or ""),
        email=payload.get("email"),
        user_metadata=dict(payload.get("user_metadata") or {}),
    )


def _session_from_payload(payload: dict[str, Any]) -> AuthSession:
    expires_at = payload.get("expires_at")
    if expires_at is None and payload.get("expires_in") is not None:
        expires_at = time.time() + float(payload["expires_in"])
    return AuthSession(
        access_token=str(payload["access_token"]),
        refresh_token=payload.get("refresh_token"),
        expires_at=float(expires_at) if expires_at is not None else None,
        user=_user_from_payload(payload.get("user") or {}),
    )


class SupabaseDataService(DataService):
    """Hosted Supabase project: GoTrue for auth, PostgREST for tables.

    Keeps the session in memory only; the anon key is used as the bearer
    token while signed out.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__()
        if not str(url or "").strip():
            raise RuntimeError("SUPABASE_URL is not configured")
        self._anon_key = str(anon_key or "")
        self._client = httpx.AsyncClient(
            base_url=str(url).rstrip("/"),
            timeout=timeout or httpx.Timeout(connect=3.0, read=12.0, write=12.0, pool=3.0),
            transport=transport,
        )
        self._session: AuthSession | None = None

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        token = self._session.access_token if self._session is not None else self._anon_key
        headers = {"apikey": self._anon_key, "Authorization": f"Bearer {token}"}
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        refresh: bool = True,
    ) -> httpx.Response:
        if refresh:
            await self._refresh_if_expiring()
        try:
            resp = await self._client.request(method, path, params=params, json=json, headers=self._headers(headers))
        except httpx.HTTPError as e:
            logger.warning("supabase: %s %s failed err=%s: %s", method, path, type(e).__name__, e)
            raise DataServiceError(str(e) or type(e).__name__) from e

        if resp.status_code >= 400:
            message, code = _error_message(resp)
            logger.info("supabase: %s %s status=%s msg=%s", method, path, resp.status_code, message)
            raise DataServiceError(message, status_code=resp.status_code, code=code)
        return resp

    # auth

    async def _refresh_if_expiring(self) -> None:
        """Swap an expiring access token for a new one using the refresh token.

        A successful refresh keeps the same user, so listeners are not told.
        When the refresh is rejected (or impossible) the session is dropped
        and listeners get `SIGNED_OUT`.
        """
        s = self._session
        if s is None or s.expires_at is None or s.expires_at - time.time() > _REFRESH_MARGIN_SECONDS:
            return

        if not s.refresh_token:
            if s.expires_at > time.time():
                return
            logger.info("supabase: session expired and no refresh token user_id=%s", s.user.id)
            self._session = None
            await self._notify(SIGNED_OUT, None)
            return

        try:
            resp = await self._request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": s.refresh_token},
                refresh=False,
            )
        except DataServiceError as e:
            logger.warning("supabase: session refresh failed user_id=%s: %s", s.user.id, e)
            self._session = None
            await self._notify(SIGNED_OUT, None)
            return

        payload = resp.json() or {}
        refreshed = _session_from_payload(payload)
        if not payload.get("user"):
            refreshed = replace(refreshed, user=s.user)
        self._session = refreshed
        logger.info("supabase: session refreshed user_id=%s", self._session.user.id)

    async def get_session(self) -> AuthSession | None:
        await self._refresh_if_expiring()
        return self._session

    async def sign_in(self, email: str, password: str) -> AuthSession:
        resp = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            refresh=False,
        )
        session = _session_from_payload(resp.json())
        self._session = session
        await self._notify(SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> AuthUser:
        resp = await self._request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": dict(metadata or {})},
            refresh=False,
        )
        payload = resp.json() or {}
        if payload.get("access_token"):
            # Auto-confirm projects sign the new user in right away.
            session = _session_from_payload(payload)
            self._session = session
            await self._notify(SIGNED_IN, session)
            return session.user

        return _user_from_payload(payload.get("user") or payload)

    async def sign_out(self) -> None:
        try:
            if self._session is not None:
                await self._request("POST", "/auth/v1/logout", refresh=False)
        except DataServiceError as e:
            logger.warning("supabase: remote sign-out failed, clearing local session: %s", e)
        finally:
            self._session = None
        await self._notify(SIGNED_OUT, None)

    # profiles

    async def list_profiles(self) -> list[dict[str, Any]]:
        resp = await self._request("GET", "/rest/v1/profiles", params={"select": "*"})
        return list(resp.json() or [])

    async def list_profiles_by_role(self, role: str) -> list[dict[str, Any]]:
        resp = await self._request("GET", "/rest/v1/profiles", params={"select": "*", "role": f"eq.{role}"})
        return list(resp.json() or [])

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        resp = await self._request("GET", "/rest/v1/profiles", params={"select": "*", "id": f"eq.{user_id}"})
        rows = resp.json() or []
        return rows[0] if rows else None

    async def update_profile(self, user_id: str, changes: dict[str, Any]) -> None:
        await self._request(
            "PATCH",
            "/rest/v1/profiles",
            params={"id": f"eq.{user_id}"},
            json=dict(changes),
            headers={"Prefer": "return=minimal"},
        )

    async def delete_profile(self, user_id: str) -> None:
        await self._request("DELETE", "/rest/v1/profiles", params={"id": f"eq.{user_id}"})

    # progress

    async def list_progress(self) -> list[dict[str, Any]]:
        resp = await self._request(
            "GET",
            "/rest/v1/progress",
            params={"select": "*", "order": "created_at.asc,id.asc"},
        )
        return list(resp.json() or [])

    async def insert_progress(self, row: dict[str, Any]) -> dict[str, Any]:
        resp = await self._request(
            "POST",
            "/rest/v1/progress",
            json=dict(row),
            headers={"Prefer": "return=representation"},
        )
        rows = resp.json() or []
        if isinstance(rows, list):
            return rows[0] if rows else dict(row)
        return rows

    async def delete_progress_for_user(self, user_id: str) -> None:
        await self._request("DELETE", "/rest/v1/progress", params={"user_id": f"eq.{user_id}"})

    async def aclose(self) -> None:
        await self._client.aclose()
