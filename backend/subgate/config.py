from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _as_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _normalize_path(value: str | None, fallback: str) -> str:
    raw = (value or fallback).strip() or fallback
    # Some dashboards accidentally store quoted values.
    if (raw.startswith('"') and raw.endswith('"')) or (raw.startswith("'") and raw.endswith("'")):
        raw = raw[1:-1].strip()
    if not raw.startswith("/"):
        raw = f"/{raw}"
    return raw


@dataclass(frozen=True)
class Settings:
    env: str
    port: int
    access_token: str
    blob_store_dir: str
    blob_key: str
    traffic_url: str
    traffic_timeout: float
    traffic_cache_ttl_seconds: int
    traffic_user_agent: str
    download_filename: str
    subscribe_path: str
    profile_update_interval: int
    client_ip_header: str
    rate_limit_window_seconds: int
    rate_limit_max_requests: int
    auth_fail_window_seconds: int
    auth_fail_max_attempts: int
    auth_fail_ban_seconds: int
    limiter_cleanup_interval_seconds: int
    enable_prometheus_metrics: bool
    log_level: str

    @property
    def is_production(self) -> bool:
        return self.env.lower() not in {"development", "dev", "test", "testing"}

    def validate(self) -> None:
        """Raise early on limiter parameters that would disable admission control."""
        for name in (
            "rate_limit_window_seconds",
            "rate_limit_max_requests",
            "auth_fail_window_seconds",
            "auth_fail_max_attempts",
            "auth_fail_ban_seconds",
            "limiter_cleanup_interval_seconds",
        ):
            if getattr(self, name) <= 0:
                raise RuntimeError(f"{name.upper()} must be a positive integer")


def load_settings() -> Settings:
    return Settings(
        env=os.getenv("ENV", "development"),
        port=_as_int(os.getenv("PORT"), 8000),
        access_token=os.getenv("ACCESS_TOKEN", ""),
        blob_store_dir=os.getenv("BLOB_STORE_DIR", "").strip(),
        blob_key=os.getenv("BLOB_KEY", "proxy_yaml").strip() or "proxy_yaml",
        traffic_url=os.getenv("TRAFFIC_URL", "").strip(),
        traffic_timeout=max(0.3, _as_float(os.getenv("TRAFFIC_TIMEOUT"), 5.0)),
        traffic_cache_ttl_seconds=max(0, _as_int(os.getenv("TRAFFIC_CACHE_TTL_SECONDS"), 30)),
        traffic_user_agent=os.getenv("TRAFFIC_USER_AGENT", "Clash-Verge/1.0").strip(),
        download_filename=os.getenv("DOWNLOAD_FILENAME", "").strip() or "JMS",
        subscribe_path=_normalize_path(os.getenv("SUBSCRIBE_PATH"), "/subscribe"),
        profile_update_interval=max(1, _as_int(os.getenv("PROFILE_UPDATE_INTERVAL"), 24)),
        client_ip_header=os.getenv("CLIENT_IP_HEADER", "CF-Connecting-IP").strip(),
        rate_limit_window_seconds=_as_int(os.getenv("RATE_LIMIT_WINDOW_SECONDS"), 60),
        rate_limit_max_requests=_as_int(os.getenv("RATE_LIMIT_MAX_REQUESTS"), 30),
        auth_fail_window_seconds=_as_int(os.getenv("AUTH_FAIL_WINDOW_SECONDS"), 15 * 60),
        auth_fail_max_attempts=_as_int(os.getenv("AUTH_FAIL_MAX_ATTEMPTS"), 5),
        auth_fail_ban_seconds=_as_int(os.getenv("AUTH_FAIL_BAN_SECONDS"), 30 * 60),
        limiter_cleanup_interval_seconds=_as_int(os.getenv("LIMITER_CLEANUP_INTERVAL_SECONDS"), 5 * 60),
        enable_prometheus_metrics=_as_bool(os.getenv("ENABLE_PROMETHEUS_METRICS"), True),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
    )


settings = load_settings()

settings.validate()
