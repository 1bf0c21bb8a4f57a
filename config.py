import os
from datetime import timedelta
from urllib.parse import urlparse, urlunparse

DEFAULT_DATABASE_URL = "sqlite:///evergreen.db"
DEFAULT_TIMEZONE = "Asia/Kolkata"


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    text = value.strip()
    if not text:
        return default
    try:
        parsed = int(text)
    except ValueError:
        return default
    return parsed if parsed >= minimum else default


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _normalize_db_url(url: str) -> str:
    if not url:
        return DEFAULT_DATABASE_URL

    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)

    parsed = urlparse(url)

    if parsed.scheme not in {"postgresql", "postgresql+psycopg2"}:
        return url

    def _preferred_db_name() -> str | None:
        for key in ("PGDATABASE", "POSTGRES_DB", "POSTGRES_DATABASE", "DATABASE_NAME"):
            value = os.getenv(key)
            if value:
                return value
        return None

    path = (parsed.path or "").lstrip("/")
    preferred_db = _preferred_db_name()

    if preferred_db:
        if not path:
            parsed = parsed._replace(path=f"/{preferred_db}")
        elif path == "postgres" and preferred_db != "postgres":
            parsed = parsed._replace(path=f"/{preferred_db}")

    return urlunparse(parsed)


def _env_database_url() -> str | None:
    url = os.getenv("DATABASE_URL")
    return url if url and url.strip() else None


def current_database_url() -> str:
    return _normalize_db_url(_env_sqlalchemy_database_uri() or _env_database_url() or DEFAULT_DATABASE_URL)


def _env_sqlalchemy_database_uri() -> str | None:
    uri = os.getenv("SQLALCHEMY_DATABASE_URI")
    return uri if uri and uri.strip() else None


class Config:
    SQLALCHEMY_DATABASE_URI = current_database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=10)
    ENV = os.getenv("FLASK_ENV", "production")

    MILL_TIMEZONE = os.getenv("MILL_TIMEZONE", DEFAULT_TIMEZONE).strip() or DEFAULT_TIMEZONE
    ALLOW_FUTURE_DATES = _env_bool("ALLOW_FUTURE_DATES", False)
    BATCH_CODE_MAX_ATTEMPTS = _env_int("BATCH_CODE_MAX_ATTEMPTS", 10)
    TRANSACTION_MAX_ATTEMPTS = _env_int("TRANSACTION_MAX_ATTEMPTS", 3)
