# runtime settings, read from the environment once
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """
    Everything the storefront needs to know about its environment.

    Optional integrations (feed, address suggestions, delivery origin,
    e-mail, telegram) are None when not configured; the services that
    depend on them degrade instead of failing.
    """

    db_path: str = "data/storefront.sqlite"
    cache_path: str = "data/local_cache.json"

    jwt_secret: str = "dev-secret-change-me"
    token_ttl_minutes: int = 60 * 24 * 7

    sheets_api_key: Optional[str] = None
    spreadsheet_id: Optional[str] = None
    products_sheet: str = "Материалы"
    partners_sheet: str = "Производители"
    feed_timeout: float = 10.0
    feed_retries: int = 3

    dadata_key: Optional[str] = None
    warehouse_lat: Optional[float] = None
    warehouse_lon: Optional[float] = None
    delivery_rate_per_km: int = 7

    resend_api_key: Optional[str] = None
    from_email: str = "onboarding@resend.dev"
    to_email: str = "info@example.ru"
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    notification_timeout: float = 4.0

    order_timeout: float = 15.0


def load_settings() -> Settings:
    return Settings(
        db_path=os.getenv("STORE_DB_PATH", Settings.db_path),
        cache_path=os.getenv("STORE_CACHE_PATH", Settings.cache_path),
        jwt_secret=os.getenv("STORE_JWT_SECRET", Settings.jwt_secret),
        token_ttl_minutes=_env_int(
            "STORE_TOKEN_TTL_MINUTES", Settings.token_ttl_minutes
        ),
        sheets_api_key=os.getenv("GOOGLE_SHEETS_API_KEY") or None,
        spreadsheet_id=os.getenv("SPREADSHEET_ID") or None,
        products_sheet=os.getenv("PRODUCTS_SHEET", Settings.products_sheet),
        partners_sheet=os.getenv("PARTNERS_SHEET", Settings.partners_sheet),
        feed_timeout=_env_float("FEED_TIMEOUT", Settings.feed_timeout),
        feed_retries=_env_int("FEED_RETRIES", Settings.feed_retries),
        dadata_key=os.getenv("DADATA_KEY") or None,
        warehouse_lat=_env_float("WAREHOUSE_LAT", None),
        warehouse_lon=_env_float("WAREHOUSE_LON", None),
        delivery_rate_per_km=_env_int(
            "DELIVERY_RATE_PER_KM", Settings.delivery_rate_per_km
        ),
        resend_api_key=os.getenv("RESEND_API_KEY") or None,
        from_email=os.getenv("FROM_EMAIL", Settings.from_email),
        to_email=os.getenv("TO_EMAIL", Settings.to_email),
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN") or None,
        telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID") or None,
        notification_timeout=_env_float(
            "NOTIFICATION_TIMEOUT", Settings.notification_timeout
        ),
        order_timeout=_env_float("ORDER_TIMEOUT", Settings.order_timeout),
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Forget the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
