from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from mathquiz.core.config import settings
from mathquiz.models.attempt import ProgressRecord
from mathquiz.models.user import AuthIdentity, Profile, UserRole
from mathquiz.services.data.base import (
    SIGNED_IN,
    SIGNED_OUT,
    AuthSession,
    AuthUser,
    DataService,
    DataServiceError,
    logger,
)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

_PROFILE_COLUMNS = {"name", "role", "child_id"}
_PASSWORD_MIN_LENGTH = 6


def _profile_row(p: Profile) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "role": p.role.value,
        "child_id": p.child_id,
        "updated_at": p.updated_at.isoformat() if p.updated_at else None,
    }


def _progress_row(r: ProgressRecord) -> dict[str, Any]:
    return {
        "id": r.id,
        "user_id": r.user_id,
        "operation": r.operation,
        "stage": int(r.stage),
        "score": int(r.score),
        "total_time": float(r.total_time),
        "created_at": r.created_at.isoformat() if r.created_at else None,
    }


class LocalDataService(DataService):
    """SQL-backed stand-in for the hosted auth + database service.

    Mirrors the hosted behavior the controller depends on: a profile row is
    created from sign-up metadata, sign-up signs the new user in, the
    `profiles.child_id` foreign key is enforced, and errors carry the hosted
    service's messages.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        secret_key: str | None = None,
        algorithm: str | None = None,
        token_minutes: int | None = None,
    ):
        super().__init__()
        self._session_factory = session_factory
        self._secret_key = secret_key or settings.jwt_secret_key
        self._algorithm = algorithm or settings.jwt_algorithm
        self._token_minutes = int(token_minutes or settings.jwt_access_token_minutes)
        self._session: AuthSession | None = None

    @contextmanager
    def _db(self) -> Iterator[Session]:
        try:
            with self._session_factory() as db:
                yield db
        except SQLAlchemyError as e:
            logger.warning("local store error: %s", e)
            raise DataServiceError(str(getattr(e, "orig", None) or e)) from e

    def _issue_session(self, identity: AuthIdentity) -> AuthSession:
        now = int(time.time())
        expires_at = now + self._token_minutes * 60
        payload = {
            "sub": identity.id,
            "email": identity.email,
            "role": "authenticated",
            "user_metadata": dict(identity.user_metadata or {}),
            "iat": now,
            "exp": expires_at,
            "jti": str(uuid.uuid4()),
        }
        token = jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
        user = AuthUser(id=identity.id, email=identity.email, user_metadata=dict(identity.user_metadata or {}))
        return AuthSession(access_token=token, user=user, expires_at=float(expires_at))

    # auth

    async def get_session(self) -> AuthSession | None:
        if self._session is None:
            return None
        try:
            jwt.decode(self._session.access_token, self._secret_key, algorithms=[self._algorithm])
        except JWTError:
            self._session = None
            return None
        return self._session

    async def sign_in(self, email: str, password: str) -> AuthSession:
        norm = str(email or "").strip().lower()
        with self._db() as db:
            identity = db.scalar(select(AuthIdentity).where(AuthIdentity.email == norm))
        if identity is None or not pwd_context.verify(str(password or ""), identity.password_hash):
            raise DataServiceError("Invalid login credentials", status_code=400, code="invalid_credentials")

        session = self._issue_session(identity)
        self._session = session
        await self._notify(SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> AuthUser:
        norm = str(email or "").strip().lower()
        if len(str(password or "")) < _PASSWORD_MIN_LENGTH:
            raise DataServiceError(
                f"Password should be at least {_PASSWORD_MIN_LENGTH} characters.",
                status_code=422,
                code="weak_password",
            )

        meta = dict(metadata or {})
        try:
            role = UserRole(str(meta.get("role") or UserRole.student.value))
        except ValueError as e:
            raise DataServiceError("Database error saving new user", status_code=500) from e

        with self._db() as db:
            if db.scalar(select(AuthIdentity.id).where(AuthIdentity.email == norm)) is not None:
                raise DataServiceError("User already registered", status_code=422, code="user_already_exists")

            identity = AuthIdentity(email=norm, password_hash=pwd_context.hash(str(password)), user_metadata=meta)
            db.add(identity)
            db.flush()
            # The hosted service creates the profile from metadata in a trigger.
            db.add(Profile(id=identity.id, name=str(meta.get("name") or ""), role=role, child_id=None))
            db.commit()

        session = self._issue_session(identity)
        self._session = session
        await self._notify(SIGNED_IN, session)
        return session.user

    async def sign_out(self) -> None:
        self._session = None
        await self._notify(SIGNED_OUT, None)

    # profiles

    async def list_profiles(self) -> list[dict[str, Any]]:
        with self._db() as db:
            rows = db.scalars(select(Profile).order_by(Profile.name, Profile.id)).all()
            return [_profile_row(p) for p in rows]

    async def list_profiles_by_role(self, role: str) -> list[dict[str, Any]]:
        try:
            want = UserRole(str(role))
        except ValueError as e:
            raise DataServiceError(f'invalid input value for enum user_role: "{role}"', code="22P02") from e
        with self._db() as db:
            rows = db.scalars(select(Profile).where(Profile.role == want).order_by(Profile.name, Profile.id)).all()
            return [_profile_row(p) for p in rows]

    async def get_profile(self, user_id: str) -> dict[str, Any] | None:
        with self._db() as db:
            p = db.get(Profile, str(user_id))
            return _profile_row(p) if p is not None else None

    async def update_profile(self, user_id: str, changes: dict[str, Any]) -> None:
        unknown = [k for k in changes if k not in _PROFILE_COLUMNS]
        if unknown:
            raise DataServiceError(
                f"Could not find the '{unknown[0]}' column of 'profiles' in the schema cache",
                status_code=400,
                code="PGRST204",
            )

        values = dict(changes)
        if "role" in values:
            try:
                values["role"] = UserRole(str(getattr(values["role"], "value", values["role"])))
            except ValueError as e:
                raise DataServiceError(
                    f'invalid input value for enum user_role: "{values["role"]}"', code="22P02"
                ) from e

        with self._db() as db:
            child_id = values.get("child_id")
            if child_id is not None and db.get(Profile, str(child_id)) is None:
                raise DataServiceError(
                    'insert or update on table "profiles" violates foreign key constraint "profiles_child_id_fkey"',
                    status_code=409,
                    code="23503",
                )

            p = db.get(Profile, str(user_id))
            if p is None:
                # Filtered update matching no rows is not an error.
                return
            for key, value in values.items():
                setattr(p, key, value)
            p.updated_at = datetime.utcnow()
            db.commit()

    async def delete_profile(self, user_id: str) -> None:
        with self._db() as db:
            db.execute(delete(Profile).where(Profile.id == str(user_id)))
            db.commit()

    # progress

    async def list_progress(self) -> list[dict[str, Any]]:
        with self._db() as db:
            rows = db.scalars(select(ProgressRecord).order_by(ProgressRecord.created_at, ProgressRecord.id)).all()
            return [_progress_row(r) for r in rows]

    async def insert_progress(self, row: dict[str, Any]) -> dict[str, Any]:
        missing = [k for k in ("user_id", "operation", "stage", "score", "total_time") if row.get(k) is None]
        if missing:
            raise DataServiceError(
                f'null value in column "{missing[0]}" of relation "progress" violates not-null constraint',
                code="23502",
            )
        score = int(row["score"])
        if score < 0 or score > 100:
            raise DataServiceError(
                'new row for relation "progress" violates check constraint "progress_score_check"',
                code="23514",
            )

        with self._db() as db:
            record = ProgressRecord(
                user_id=str(row["user_id"]),
                operation=str(getattr(row["operation"], "value", row["operation"])),
                stage=int(row["stage"]),
                score=score,
                total_time=float(row["total_time"]),
            )
            db.add(record)
            db.commit()
            return _progress_row(record)

    async def delete_progress_for_user(self, user_id: str) -> None:
        with self._db() as db:
            db.execute(delete(ProgressRecord).where(ProgressRecord.user_id == str(user_id)))
            db.commit()
