import json
import os
import threading
from enum import Enum
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field


load_dotenv()


class DeploymentMode(str, Enum):
    PRODUCTION = "production"
    DEVELOPMENT = "development"


class FailMode(str, Enum):
    """What the enforcement engine answers before any policy snapshot is loaded."""

    CLOSED = "closed"
    OPEN = "open"


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_SAMESITE_VALUES = {"strict", "lax", "none"}


def _parse_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, str(default)).strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean value")


def _parse_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if value <= 0:
        raise ValueError(f"{name} must be greater than 0")
    return value


def _parse_allowed_origins(raw_allowed_origins: str) -> list[str]:
    # Support both CSV format and JSON array format
    if raw_allowed_origins.startswith("["):
        try:
            parsed_list = json.loads(raw_allowed_origins)
        except json.JSONDecodeError as exc:
            raise ValueError(f"ALLOWED_ORIGINS JSON is malformed: {exc}") from exc
        if not isinstance(parsed_list, list):
            raise ValueError("ALLOWED_ORIGINS JSON must be an array")
        allowed_origins = [
            origin.strip() for origin in parsed_list if isinstance(origin, str) and origin.strip()
        ]
    else:
        allowed_origins = [
            origin.strip() for origin in raw_allowed_origins.split(",") if origin.strip()
        ]

    if not allowed_origins:
        raise ValueError("ALLOWED_ORIGINS must contain at least one origin")

    if "*" in allowed_origins:
        raise ValueError(
            "ALLOWED_ORIGINS cannot contain '*' when credentialed requests are used"
        )

    for origin in allowed_origins:
        parsed = urlparse(origin)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(
                "ALLOWED_ORIGINS must contain valid http/https origins with host"
            )
    return allowed_origins


class Settings(BaseModel):
    app_name: str = Field(default="Maritime Procurement Authorization")
    debug: bool = Field(default=False)
    deployment_mode: DeploymentMode = Field(default=DeploymentMode.PRODUCTION)
    database_url: str = Field(default="")
    redis_url: str = Field(default="redis://localhost:6379/0")
    allowed_origins: list[str] = Field(default_factory=list)
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_recycle: int = Field(default=1800)
    db_pool_pre_ping: bool = Field(default=True)
    secret_key: str | None = Field(default=None)
    refresh_secret_key: str | None = Field(default=None)
    access_token_expire_minutes: int = Field(default=30)
    refresh_token_expire_days: int = Field(default=30)
    algorithm: str = Field(default="HS256")
    enforcement_fail_mode: FailMode = Field(default=FailMode.CLOSED)
    global_domain: str = Field(default="*")
    default_domain: str = Field(default="maritime-procurement")
    login_max_attempts: int = Field(default=5)
    login_lock_minutes: int = Field(default=120)
    cookie_secure: bool = Field(default=True)
    cookie_samesite: str = Field(default="strict")
    cookie_domain: str | None = Field(default=None)
    bootstrap_operator_email: str | None = Field(default=None)
    bootstrap_operator_password: str | None = Field(default=None)
    incident_tracker_url: str | None = Field(default=None)
    incident_tracker_user: str | None = Field(default=None)
    incident_tracker_token: str | None = Field(default=None)
    incident_project_key: str = Field(default="MPE")

    @property
    def is_production(self) -> bool:
        return self.deployment_mode is DeploymentMode.PRODUCTION

    @classmethod
    def from_env(cls) -> "Settings":
        fields = cls.model_fields

        secret_key = os.getenv("SECRET_KEY", "").strip()
        if not secret_key:
            raise ValueError("SECRET_KEY environment variable must be set")

        refresh_secret_key = os.getenv("REFRESH_SECRET_KEY", "").strip()
        if not refresh_secret_key:
            raise ValueError("REFRESH_SECRET_KEY environment variable must be set")
        if refresh_secret_key == secret_key:
            raise ValueError("REFRESH_SECRET_KEY must differ from SECRET_KEY")

        raw_allowed_origins = os.getenv("ALLOWED_ORIGINS", "").strip()
        if not raw_allowed_origins:
            raise ValueError("ALLOWED_ORIGINS environment variable must be set")
        allowed_origins = _parse_allowed_origins(raw_allowed_origins)

        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL environment variable must be set")

        parsed_db = urlparse(database_url)
        if parsed_db.scheme != "postgresql+asyncpg":
            raise ValueError("DATABASE_URL must start with 'postgresql+asyncpg://'")
        if not parsed_db.hostname:
            raise ValueError("DATABASE_URL must include hostname")

        db_pool_size = _parse_positive_int("DB_POOL_SIZE", fields["db_pool_size"].default)

        db_max_overflow = int(
            os.getenv("DB_MAX_OVERFLOW", fields["db_max_overflow"].default)
        )
        if db_max_overflow < 0:
            raise ValueError("DB_MAX_OVERFLOW must be greater than or equal to 0")

        db_pool_recycle = _parse_positive_int(
            "DB_POOL_RECYCLE", fields["db_pool_recycle"].default
        )
        db_pool_pre_ping = _parse_bool("DB_POOL_PRE_PING", fields["db_pool_pre_ping"].default)

        raw_mode = os.getenv("DEPLOYMENT_MODE", DeploymentMode.PRODUCTION.value).strip().lower()
        try:
            deployment_mode = DeploymentMode(raw_mode)
        except ValueError as exc:
            raise ValueError("DEPLOYMENT_MODE must be 'production' or 'development'") from exc

        raw_fail_mode = os.getenv("ENFORCEMENT_FAIL_MODE", FailMode.CLOSED.value).strip().lower()
        try:
            fail_mode = FailMode(raw_fail_mode)
        except ValueError as exc:
            raise ValueError("ENFORCEMENT_FAIL_MODE must be 'closed' or 'open'") from exc
        if fail_mode is FailMode.OPEN and deployment_mode is DeploymentMode.PRODUCTION:
            raise ValueError("ENFORCEMENT_FAIL_MODE=open is not allowed in production")

        global_domain = os.getenv("GLOBAL_DOMAIN", fields["global_domain"].default).strip()
        default_domain = os.getenv("DEFAULT_DOMAIN", fields["default_domain"].default).strip()
        if not global_domain or not default_domain:
            raise ValueError("GLOBAL_DOMAIN and DEFAULT_DOMAIN must not be empty")
        if global_domain == default_domain:
            raise ValueError("GLOBAL_DOMAIN and DEFAULT_DOMAIN must differ")

        cookie_samesite = os.getenv("COOKIE_SAMESITE", fields["cookie_samesite"].default)
        cookie_samesite = cookie_samesite.strip().lower()
        if cookie_samesite not in _SAMESITE_VALUES:
            raise ValueError("COOKIE_SAMESITE must be one of strict, lax, none")

        bootstrap_email = os.getenv("BOOTSTRAP_OPERATOR_EMAIL", "").strip() or None
        bootstrap_password = os.getenv("BOOTSTRAP_OPERATOR_PASSWORD", "").strip() or None
        if bool(bootstrap_email) != bool(bootstrap_password):
            raise ValueError(
                "BOOTSTRAP_OPERATOR_EMAIL and BOOTSTRAP_OPERATOR_PASSWORD must be set together"
            )

        redis_url = os.getenv("REDIS_URL", fields["redis_url"].default).strip()

        return cls(
            app_name=os.getenv("APP_NAME", fields["app_name"].default),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            deployment_mode=deployment_mode,
            database_url=database_url,
            redis_url=redis_url,
            allowed_origins=allowed_origins,
            secret_key=secret_key,
            refresh_secret_key=refresh_secret_key,
            access_token_expire_minutes=_parse_positive_int(
                "ACCESS_TOKEN_EXPIRE_MINUTES", fields["access_token_expire_minutes"].default
            ),
            refresh_token_expire_days=_parse_positive_int(
                "REFRESH_TOKEN_EXPIRE_DAYS", fields["refresh_token_expire_days"].default
            ),
            algorithm=os.getenv("ALGORITHM", fields["algorithm"].default),
            enforcement_fail_mode=fail_mode,
            global_domain=global_domain,
            default_domain=default_domain,
            login_max_attempts=_parse_positive_int(
                "LOGIN_MAX_ATTEMPTS", fields["login_max_attempts"].default
            ),
            login_lock_minutes=_parse_positive_int(
                "LOGIN_LOCK_MINUTES", fields["login_lock_minutes"].default
            ),
            cookie_secure=_parse_bool("COOKIE_SECURE", fields["cookie_secure"].default),
            cookie_samesite=cookie_samesite,
            cookie_domain=os.getenv("COOKIE_DOMAIN", "").strip() or None,
            bootstrap_operator_email=bootstrap_email,
            bootstrap_operator_password=bootstrap_password,
            incident_tracker_url=os.getenv("INCIDENT_TRACKER_URL", "").strip() or None,
            incident_tracker_user=os.getenv("INCIDENT_TRACKER_USER", "").strip() or None,
            incident_tracker_token=os.getenv("INCIDENT_TRACKER_TOKEN", "").strip() or None,
            incident_project_key=os.getenv(
                "INCIDENT_PROJECT_KEY", fields["incident_project_key"].default
            ).strip(),
            db_pool_size=db_pool_size,
            db_max_overflow=db_max_overflow,
            db_pool_recycle=db_pool_recycle,
            db_pool_pre_ping=db_pool_pre_ping,
        )


# Settings are validated on first access, not at import time
_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get settings instance, creating it on first access.

    Uses double-checked locking so concurrent first accesses build exactly
    one instance.

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    global _settings_instance

    if _settings_instance is not None:
        return _settings_instance

    with _settings_lock:
        if _settings_instance is None:
            _settings_instance = Settings.from_env()

    return _settings_instance


def reset_settings() -> None:
    """Drop the cached instance so the next access re-reads the environment."""
    global _settings_instance
    with _settings_lock:
        _settings_instance = None


class _SettingsProxy:
    """Proxy to defer settings creation until first attribute access."""

    def __getattr__(self, name: str):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]
