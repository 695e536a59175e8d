from __future__ import annotations

import httpx

from mathquiz.core.config import Settings, settings
from mathquiz.services.data.base import (
    INITIAL_SESSION,
    SIGNED_IN,
    SIGNED_OUT,
    AuthSession,
    AuthUser,
    DataService,
    DataServiceError,
    Subscription,
)
from mathquiz.services.data.local import LocalDataService
from mathquiz.services.data.supabase import SupabaseDataService


def build_data_service(cfg: Settings | None = None) -> DataService:
    cfg = cfg or settings
    backend = (cfg.data_backend or "local").strip().lower()

    if backend == "supabase":
        timeout = httpx.Timeout(
            connect=float(cfg.supabase_timeout_connect),
            read=float(cfg.supabase_timeout_read),
            write=float(cfg.supabase_timeout_read),
            pool=3.0,
        )
        return SupabaseDataService(cfg.supabase_url, cfg.supabase_anon_key, timeout=timeout)

    if backend == "local":
        from mathquiz.db.session import make_engine, make_session_factory

        engine = make_engine(cfg.local_database_url)
        return LocalDataService(
            make_session_factory(engine),
            secret_key=cfg.jwt_secret_key,
            algorithm=cfg.jwt_algorithm,
            token_minutes=cfg.jwt_access_token_minutes,
        )

    raise RuntimeError(f"unknown DATA_BACKEND: {backend!r}")


__all__ = [
    "INITIAL_SESSION",
    "SIGNED_IN",
    "SIGNED_OUT",
    "AuthSession",
    "AuthUser",
    "DataService",
    "DataServiceError",
    "LocalDataService",
    "Subscription",
    "SupabaseDataService",
    "build_data_service",
]
