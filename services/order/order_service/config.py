"""
Order Service — 設定

環境変数から設定を読み込む。必須項目の欠落や形式不正は
起動時に ConfigurationFailure として即座に失敗させる (リクエスト処理中には失敗させない)。
"""

import logging
import math
import os
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

import httpx

from .errors import ConfigurationFailure

logger = logging.getLogger(__name__)

DATABASE_URL = "DATABASE_URL"
DIRECTORY_BASE_URL = "DIRECTORY_BASE_URL"
ORDER_TOTAL_CEILING = "ORDER_TOTAL_CEILING"
DIRECTORY_TIMEOUT_SECONDS = "DIRECTORY_TIMEOUT_SECONDS"
REDIS_URL = "REDIS_URL"
STORE_RETRY_ATTEMPTS = "STORE_RETRY_ATTEMPTS"
STORE_RETRY_DELAY_SECONDS = "STORE_RETRY_DELAY_SECONDS"
DB_CREATE_SCHEMA = "DB_CREATE_SCHEMA"
LOG_LEVEL = "LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    database_url: str
    directory_base_url: str
    order_total_ceiling: Decimal
    directory_timeout_seconds: float
    redis_url: str | None = None
    store_retry_attempts: int = 3
    store_retry_delay_seconds: float = 5.0
    create_schema: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        settings = cls(
            database_url=_required(env, DATABASE_URL),
            directory_base_url=_http_url(DIRECTORY_BASE_URL, _required(env, DIRECTORY_BASE_URL)),
            order_total_ceiling=_positive_decimal(
                ORDER_TOTAL_CEILING, _required(env, ORDER_TOTAL_CEILING)
            ),
            directory_timeout_seconds=_positive_float(
                DIRECTORY_TIMEOUT_SECONDS, _required(env, DIRECTORY_TIMEOUT_SECONDS)
            ),
            redis_url=env.get(REDIS_URL) or None,
            store_retry_attempts=_positive_int(
                STORE_RETRY_ATTEMPTS, env.get(STORE_RETRY_ATTEMPTS, "3")
            ),
            store_retry_delay_seconds=_non_negative_float(
                STORE_RETRY_DELAY_SECONDS, env.get(STORE_RETRY_DELAY_SECONDS, "5")
            ),
            create_schema=env.get(DB_CREATE_SCHEMA, "false").strip().lower() in ("1", "true", "yes"),
            log_level=env.get(LOG_LEVEL, "INFO").strip().upper(),
        )
        logger.info(
            "Settings loaded: directory=%s timeout=%ss ceiling=%s retry=%sx%ss",
            settings.directory_base_url,
            settings.directory_timeout_seconds,
            settings.order_total_ceiling,
            settings.store_retry_attempts,
            settings.store_retry_delay_seconds,
        )
        return settings


def _fail(key: str, message: str, **metadata) -> ConfigurationFailure:
    logger.critical("Configuration error for %s: %s", key, message)
    return ConfigurationFailure(message, key, **metadata)


def _required(env: Mapping[str, str], key: str) -> str:
    value = env.get(key)
    if value is None or not value.strip():
        raise _fail(key, f"Configuration '{key}' is required but was not set")
    return value.strip()


def _positive_decimal(key: str, raw: str) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise _fail(key, f"Configuration '{key}' must be a decimal number", actual=raw) from None
    if not value.is_finite() or value <= 0:
        raise _fail(key, f"Configuration '{key}' must be greater than 0", actual=raw)
    return value


def _non_negative_float(key: str, raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise _fail(key, f"Configuration '{key}' must be a number", actual=raw) from None
    if not math.isfinite(value) or value < 0:
        raise _fail(key, f"Configuration '{key}' must be a finite, non-negative number", actual=raw)
    return value


def _positive_float(key: str, raw: str) -> float:
    value = _non_negative_float(key, raw)
    if value == 0:
        raise _fail(key, f"Configuration '{key}' must be greater than 0", actual=raw)
    return value


def _positive_int(key: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise _fail(key, f"Configuration '{key}' must be an integer", actual=raw) from None
    if value < 1:
        raise _fail(key, f"Configuration '{key}' must be at least 1", actual=raw)
    return value


def _http_url(key: str, raw: str) -> str:
    try:
        url = httpx.URL(raw)
    except httpx.InvalidURL:
        raise _fail(key, f"Configuration '{key}' must be a valid URL", actual=raw) from None
    if url.scheme not in ("http", "https") or not url.host:
        raise _fail(key, f"Configuration '{key}' must be an absolute http(s) URL", actual=raw)
    return raw
