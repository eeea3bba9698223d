"""
Конфигурация HabitSync
Все параметры читаются из переменных окружения (с безопасными значениями по умолчанию)
"""

import logging
import os
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# === База данных ===
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./habitsync.db")

# === Аутентификация (токены выдает внешний identity-провайдер) ===
AUTH_JWT_ALGORITHM = os.getenv("AUTH_JWT_ALGORITHM", "HS256")
AUTH_JWT_EXPIRATION_MINUTES = int(os.getenv("AUTH_JWT_EXPIRATION_MINUTES", "60"))

# === Безопасность ===
RATE_LIMIT_ENABLED = _env_bool("RATE_LIMIT_ENABLED", True)
RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "100"))
MAX_SYNCED_ITEMS_PER_USER = int(os.getenv("MAX_SYNCED_ITEMS_PER_USER", "1000"))
MAX_HABITS_PER_SNAPSHOT = int(os.getenv("MAX_HABITS_PER_SNAPSHOT", "200"))
MAX_SYNCED_CONTENT_LENGTH = int(os.getenv("MAX_SYNCED_CONTENT_LENGTH", "10000"))

# === Ошибки ===
USE_RFC7807_ERRORS = _env_bool("USE_RFC7807_ERRORS", True)
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# === Аудит и логирование ===
AUDIT_LOG_ENABLED = _env_bool("AUDIT_LOG_ENABLED", True)
AUDIT_LOG_ACTIONS = [
    action.strip().upper()
    for action in os.getenv("AUDIT_LOG_ACTIONS", "CREATE,UPDATE,DELETE").split(",")
    if action.strip()
]
AUDIT_LOG_PATH = os.getenv("AUDIT_LOG_PATH", "audit.log")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# === Серии (streaks) ===
STREAK_LOOKBACK_DAYS = int(os.getenv("STREAK_LOOKBACK_DAYS", "365"))

# === Синхронизация ===
SYNC_MAX_RETRIES = int(os.getenv("SYNC_MAX_RETRIES", "0"))
SYNC_BACKOFF_BASE_SECONDS = float(os.getenv("SYNC_BACKOFF_BASE_SECONDS", "0.5"))
SYNC_BACKOFF_MAX_SECONDS = float(os.getenv("SYNC_BACKOFF_MAX_SECONDS", "8.0"))

# Локальное хранилище устройства (привычки и потребление не уходят в облако)
LOCAL_STORE_PATH = Path(
    os.getenv("LOCAL_STORE_PATH", str(Path.home() / ".habitsync" / "store.json"))
)


def setup_logging() -> logging.Logger:
    """Настройка корневого логгера приложения"""
    level = getattr(logging, LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    return logging.getLogger("habitsync")
