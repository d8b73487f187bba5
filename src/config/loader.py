"""
Загрузчик конфигурации проекта.
Базовые значения берутся из config/config.json (если файл есть),
переменные окружения (и .env) имеют приоритет.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, field_validator, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json; отсутствующий файл означает пустую конфигурацию."""
    config_path = get_config_path()
    if not config_path.exists():
        return {}

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    # Ключи, начинающиеся с _comment_, служат комментариями
    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


def _pick(data: dict[str, Any], key: str, default: Any) -> Any:
    """Значение из окружения, затем из config.json, затем по умолчанию."""
    env_value = os.getenv(key)
    if env_value is not None and env_value != "":
        return env_value
    return data.get(key, default)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "fleet_realtime"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "colored"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5

    @field_validator("LOG_FORMAT")
    @classmethod
    def check_format(cls, v: str) -> str:
        """Допустимы только json и colored."""
        if v not in ("json", "colored"):
            raise ValueError(f"Неизвестный формат логов: {v}")
        return v


class RedisSettings(BaseModel):
    """
    Настройки Redis.
    Либо REDIS_URL, либо тройка host/port/password; URL имеет приоритет.
    """
    REDIS_URL: str | None = None
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None
    REDIS_MAX_CONNECTIONS: int = 50
    REDIS_SOCKET_TIMEOUT: float = 10.0

    @field_validator("REDIS_URL", "REDIS_PASSWORD", mode="before")
    @classmethod
    def empty_to_none(cls, v: str | None) -> str | None:
        """Пустая строка означает отсутствие значения."""
        return v or None


class JwtSettings(BaseModel):
    """Настройки проверки JWT для realtime-подключений."""
    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"


class WebSocketSettings(BaseModel):
    """Настройки realtime-шлюза."""
    WS_HOST: str = "0.0.0.0"
    WS_PORT: int = 8080
    WS_CORS_ORIGIN: str = "*"


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    system: SystemSettings = Field(default_factory=SystemSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    jwt: JwtSettings = Field(default_factory=JwtSettings)
    websocket: WebSocketSettings = Field(default_factory=WebSocketSettings)

    @classmethod
    def from_sources(cls, config_data: dict[str, Any] | None = None) -> "Settings":
        """
        Создаёт объект Settings из config.json и переменных окружения.

        Args:
            config_data: Уже загруженный config.json (для тестов)
        """
        data = load_config_json() if config_data is None else config_data

        return cls(
            system=SystemSettings(
                PROJECT_NAME=_pick(data, "PROJECT_NAME", "fleet_realtime"),
                VERSION=_pick(data, "VERSION", "1.0.0"),
                DEBUG=_pick(data, "DEBUG", False),
                ENVIRONMENT=_pick(data, "ENVIRONMENT", "development"),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=_pick(data, "LOG_LEVEL", "INFO"),
                LOG_FORMAT=_pick(data, "LOG_FORMAT", "colored"),
                LOG_TO_FILE=_pick(data, "LOG_TO_FILE", False),
                LOG_FILE_PATH=_pick(data, "LOG_FILE_PATH", "logs/app.log"),
                LOG_MAX_BYTES=_pick(data, "LOG_MAX_BYTES", 10485760),
                LOG_BACKUP_COUNT=_pick(data, "LOG_BACKUP_COUNT", 5),
            ),
            redis=RedisSettings(
                REDIS_URL=_pick(data, "REDIS_URL", None),
                REDIS_HOST=_pick(data, "REDIS_HOST", "localhost"),
                REDIS_PORT=_pick(data, "REDIS_PORT", 6379),
                REDIS_DB=_pick(data, "REDIS_DB", 0),
                REDIS_PASSWORD=_pick(data, "REDIS_PASSWORD", None),
                REDIS_MAX_CONNECTIONS=_pick(data, "REDIS_MAX_CONNECTIONS", 50),
                REDIS_SOCKET_TIMEOUT=_pick(data, "REDIS_SOCKET_TIMEOUT", 10.0),
            ),
            jwt=JwtSettings(
                JWT_SECRET=_pick(data, "JWT_SECRET", ""),
                JWT_ALGORITHM=_pick(data, "JWT_ALGORITHM", "HS256"),
            ),
            websocket=WebSocketSettings(
                WS_HOST=_pick(data, "WS_HOST", "0.0.0.0"),
                WS_PORT=_pick(data, "WS_PORT", 8080),
                WS_CORS_ORIGIN=_pick(data, "WS_CORS_ORIGIN", "*"),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Перед чтением окружения подгружает .env из корня проекта.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_sources()


settings = get_settings()
