# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from tests.helpers import FakeConnections  # noqa: E402


TEST_JWT_SECRET = "test-jwt-secret"


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "PROJECT_NAME": "fleet_realtime_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "LOG_LEVEL": "DEBUG",
        "LOG_FORMAT": "colored",
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "REDIS_HOST": "redis.test",
        "REDIS_PORT": 6380,
        "REDIS_DB": 1,
        "REDIS_MAX_CONNECTIONS": 10,
        "JWT_ALGORITHM": "HS256",
        "WS_HOST": "127.0.0.1",
        "WS_PORT": 9090,
        "WS_CORS_ORIGIN": "http://localhost:3000",
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ
# =============================================================================

@pytest.fixture
def fake_connections() -> FakeConnections:
    """Менеджер соединений с брокером в памяти."""
    return FakeConnections()


@pytest.fixture
def mock_connections() -> MagicMock:
    """Мок менеджера соединений (publish/ping без брокера)."""
    connections = MagicMock()
    connections.publish = AsyncMock(return_value=1)
    connections.ping = AsyncMock(return_value=True)
    connections.health_check = AsyncMock(return_value=True)
    connections.clone_for_subscription = MagicMock()
    return connections


# =============================================================================
# ФИКСТУРЫ АВТОРИЗАЦИИ
# =============================================================================

@pytest.fixture
def jwt_secret() -> str:
    """Секрет подписи тестовых токенов."""
    return TEST_JWT_SECRET


@pytest.fixture
def make_token(jwt_secret: str) -> Callable[..., str]:
    """Фабрика JWT токенов."""

    def _make(
        user_id: str = "u-1",
        role: str = "admin",
        expires_in: int = 3600,
        secret: str | None = None,
        **claims: Any,
    ) -> str:
        payload = {
            "userId": user_id,
            "role": role,
            "username": claims.pop("username", "tester"),
            "exp": int(time.time()) + expires_in,
            **claims,
        }
        return jwt.encode(payload, secret or jwt_secret, algorithm="HS256")

    return _make
