import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    app_data_dir: str

    jwt_secret: str
    jwt_expires: str
    client_origin: str
    static_dir: str

    auth_rate_limit: int
    auth_rate_window: int

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _normalize_db_url(url: str) -> str:
    # Heroku/DO style URLs still use the legacy scheme.
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


def load_settings() -> Settings:
    data_dir = _getenv("APP_DATA_DIR", os.getcwd())
    default_db = f"sqlite:///{Path(data_dir) / 'kithul.db'}"
    secret_key = _getenv("SECRET_KEY", "change-me")
    return Settings(
        secret_key=secret_key,
        env=_getenv("ENV", "development"),
        database_url=_normalize_db_url(_getenv("DATABASE_URL", default_db)),
        app_data_dir=data_dir,
        jwt_secret=_getenv("JWT_SECRET", secret_key),
        jwt_expires=_getenv("JWT_EXPIRES", "7d"),
        client_origin=_getenv("CLIENT_ORIGIN", "http://localhost:5173"),
        static_dir=_getenv("STATIC_DIR", ""),
        auth_rate_limit=_getint("AUTH_RATE_LIMIT", 10),
        auth_rate_window=_getint("AUTH_RATE_WINDOW", 15 * 60),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "APP_DATA_DIR": s.app_data_dir,
        "JWT_SECRET": s.jwt_secret,
        "JWT_EXPIRES": s.jwt_expires,
        "CLIENT_ORIGIN": s.client_origin,
        "STATIC_DIR": s.static_dir,
        "AUTH_RATE_LIMIT": s.auth_rate_limit,
        "AUTH_RATE_WINDOW": s.auth_rate_window,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        # avatar uploads are the only multipart bodies; the 5MB image cap is checked per file
        "MAX_CONTENT_LENGTH": 6 * 1024 * 1024,
    }
