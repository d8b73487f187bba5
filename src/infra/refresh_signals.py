"""
Каналы сигналов обновления для realtime-клиентов.

Сигнал говорит уже подключённым клиентам «перезапросите данные» и несёт
только адресата (userId или role) и подсказку scope. Каналы независимы:
сигнал в одном канале не затрагивает подписчиков другого.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.common.constants import DEFAULT_REFRESH_SCOPE, REFRESH_TYPE
from src.common.exceptions import MalformedMessage
from src.common.logger import log_debug

if TYPE_CHECKING:
    from src.infra.redis_client import RedisConnectionManager


class RefreshChannel(str, Enum):
    """Каналы сигналов обновления."""
    DASHBOARD = "refresh.dashboard"
    NOTIFICATIONS = "refresh.notifications"
    TRIPS = "refresh.trips"
    USERS = "refresh.users"

    @property
    def short_name(self) -> str:
        """Имя без префикса (dashboard, trips, ...)."""
        return self.value.split(".", 1)[1]

    @classmethod
    def resolve(cls, value: "RefreshChannel | str") -> "RefreshChannel":
        """
        Находит канал по значению или короткому имени.

        Raises:
            ValueError: Неизвестный канал
        """
        if isinstance(value, cls):
            return value

        normalized = str(value).strip().lower()
        for channel in cls:
            if normalized in (channel.value, channel.short_name):
                return channel
        raise ValueError(f"Неизвестный канал обновлений: {value!r}")


class RefreshSignal(BaseModel):
    """Сигнал обновления {userId?, role?, scope?}."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    user_id: str | None = Field(default=None, alias="userId")
    role: str | None = None
    scope: str | None = None

    @field_validator("user_id", mode="before")
    @classmethod
    def normalize_user_id(cls, v: Any) -> str | None:
        """Числовые идентификаторы приводятся к строке."""
        if v is None or v == "":
            return None
        if isinstance(v, bool):
            raise ValueError("userId не может быть bool")
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, v: Any) -> str | None:
        """Комнаты ролей именуются в нижнем регистре."""
        if v is None or v == "":
            return None
        if isinstance(v, str):
            return v.lower()
        return v

    def to_json(self) -> str:
        """Сериализует сигнал для брокера."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, raw: str | bytes, channel: str) -> "RefreshSignal":
        """
        Десериализует сигнал.

        Raises:
            MalformedMessage: Невалидный JSON или неверные типы полей
        """
        try:
            return cls.model_validate_json(raw)
        except ValidationError as e:
            raise MalformedMessage(channel, raw, str(e)) from e

    def client_payload(self) -> dict[str, str]:
        """Payload события refresh для клиента."""
        return {"type": REFRESH_TYPE, "scope": self.scope or DEFAULT_REFRESH_SCOPE}


class RefreshPublisher:
    """Публикация сигналов обновления через командное соединение."""

    def __init__(self, connections: "RedisConnectionManager") -> None:
        self._connections = connections

    async def emit_refresh(
        self,
        channel: RefreshChannel | str,
        signal: RefreshSignal | None = None,
        *,
        user_id: str | int | None = None,
        role: str | None = None,
        scope: str | None = None,
    ) -> int:
        """
        Публикует сигнал обновления.

        Args:
            channel: Канал (RefreshChannel, "refresh.trips" или "trips")
            signal: Готовый сигнал; иначе собирается из user_id/role/scope
            user_id: Адресат-пользователь
            role: Адресат-роль
            scope: Подсказка клиенту, что обновить

        Returns:
            Количество получателей на стороне брокера

        Raises:
            ValueError: Неизвестный канал
            TransportUnavailable: Брокер недоступен
            PublishFailed: Брокер отклонил публикацию
        """
        resolved = RefreshChannel.resolve(channel)
        if signal is None:
            signal = RefreshSignal(user_id=user_id, role=role, scope=scope)

        receivers = await self._connections.publish(resolved.value, signal.to_json())
        await log_debug(
            f"Сигнал обновления {resolved.value} "
            f"(User: {signal.user_id or 'All'}, Role: {signal.role or 'All'}, Scope: {signal.scope})",
            logger_name="refresh",
        )
        return receivers
