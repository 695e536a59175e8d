from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(default="development", validation_alias="APP_ENV")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # "supabase" talks to the hosted service, "local" keeps everything in a SQL database.
    data_backend: str = Field(default="local", validation_alias="DATA_BACKEND")

    supabase_url: str = Field(default="", validation_alias="SUPABASE_URL")
    supabase_anon_key: str = Field(default="", validation_alias="SUPABASE_ANON_KEY")
    supabase_timeout_connect: float = Field(default=3.0, validation_alias="SUPABASE_TIMEOUT_CONNECT")
    supabase_timeout_read: float = Field(default=12.0, validation_alias="SUPABASE_TIMEOUT_READ")

    local_database_url: str = Field(
        default="sqlite+pysqlite:///./mathquiz.db",
        validation_alias="LOCAL_DATABASE_URL",
    )

    jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
    jwt_access_token_minutes: int = Field(default=60, validation_alias="JWT_ACCESS_TOKEN_MINUTES")

    quiz_total_questions: int = Field(default=10, validation_alias="QUIZ_TOTAL_QUESTIONS")
    quiz_reveal_delay_seconds: float = Field(default=1.5, validation_alias="QUIZ_REVEAL_DELAY_SECONDS")

    cors_allow_origins: str = Field(default="http://localhost:3000", validation_alias="CORS_ALLOW_ORIGINS")


settings = Settings()


def _is_prod() -> bool:
    return (settings.app_env or "").strip().lower() in {"prod", "production"}


if _is_prod():
    if not settings.jwt_secret_key or settings.jwt_secret_key.strip().lower() in {"change-me", "your-secret", "secret"}:
        raise RuntimeError("JWT_SECRET_KEY must be set to a strong value in production")

    if (settings.data_backend or "").strip().lower() == "supabase":
        if not settings.supabase_url.strip():
            raise RuntimeError("SUPABASE_URL must be set in production")
        if not settings.supabase_anon_key.strip():
            raise RuntimeError("SUPABASE_ANON_KEY must be set in production")
