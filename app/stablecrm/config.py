import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str
    log_level: str

    admin_vk_id: str
    vk_api_base_url: str
    vk_api_version: str
    vk_timeout_seconds: int

    calendar_feed_token: str
    public_base_url: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///stablecrm.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        admin_vk_id=_getenv("ADMIN_VK_ID", ""),
        vk_api_base_url=_getenv("VK_API_BASE_URL", "https://api.vk.com/method"),
        vk_api_version=_getenv("VK_API_VERSION", "5.131"),
        vk_timeout_seconds=_getenv_int("VK_TIMEOUT_SECONDS", 10),
        calendar_feed_token=_getenv("CALENDAR_FEED_TOKEN", ""),
        public_base_url=_getenv("PUBLIC_BASE_URL", ""),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "ADMIN_VK_ID": s.admin_vk_id,
        "VK_API_BASE_URL": s.vk_api_base_url,
        "VK_API_VERSION": s.vk_api_version,
        "VK_TIMEOUT_SECONDS": s.vk_timeout_seconds,
        "CALENDAR_FEED_TOKEN": s.calendar_feed_token,
        "PUBLIC_BASE_URL": s.public_base_url,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # JSON bodies only; 1MB is plenty
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }
