# tests/conftest.py
import os
import sys
import uuid
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# ВАЖНО: Установить переменные окружения ДО импорта модулей приложения
os.environ["RATE_LIMIT_ENABLED"] = "false"  # Отключаем rate limiting для тестов
os.environ["DATABASE_URL"] = "sqlite:///./test.db"  # Локальная файловая SQLite для тестов
os.environ["AUTH_JWT_SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["AUDIT_LOG_PATH"] = "./test_audit.log"

ROOT = Path(__file__).resolve().parents[1]  # корень репозитория
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Инициализация схемы БД (создание таблиц) перед тестами
from habitsync.database import create_all  # noqa: E402

create_all()


@pytest.fixture(scope="session")
def test_client():
    """Создать тестовый клиент FastAPI"""
    from habitsync.main import app

    return TestClient(app)


@pytest.fixture(scope="function")
def user_id():
    """Идентификатор пользователя identity-провайдера (уникальный для каждого теста)"""
    return f"user-{uuid.uuid4()}"


def make_auth_headers(subject: str) -> dict:
    from habitsync.auth import create_access_token

    return {"Authorization": f"Bearer {create_access_token(subject)}"}


@pytest.fixture(scope="function")
def auth_headers(user_id):
    return make_auth_headers(user_id)


@pytest.fixture(scope="function")
def authenticated_client(test_client, auth_headers):
    """Клиент с JWT токеном текущего тестового пользователя"""
    test_client.headers = {**test_client.headers, **auth_headers}

    yield test_client

    # Очистка: удаляем заголовок авторизации
    if "Authorization" in test_client.headers:
        del test_client.headers["Authorization"]


@pytest.fixture(scope="function")
def auth_headers_for():
    """Фабрика заголовков авторизации для произвольного пользователя"""
    return make_auth_headers
