"""
Исключения шины событий и realtime-слоя.
"""

from __future__ import annotations

from typing import Any


class EventBusError(Exception):
    """Базовая ошибка шины событий."""
    pass


class TransportUnavailable(EventBusError):
    """Брокер недоступен в момент вызова."""
    pass


class PublishFailed(EventBusError):
    """Брокер отклонил публикацию."""

    def __init__(self, channel: str, reason: str) -> None:
        self.channel = channel
        self.reason = reason
        super().__init__(f"Публикация в канал {channel} отклонена: {reason}")


class MalformedMessage(EventBusError):
    """Полученное сообщение не парсится или не содержит обязательных полей."""

    def __init__(self, channel: str, raw: Any, reason: str) -> None:
        self.channel = channel
        self.raw = raw
        self.reason = reason
        super().__init__(f"Некорректное сообщение в канале {channel}: {reason}")


class HandlerExecutionError(EventBusError):
    """Обработчик подписки упал или вернул ошибку."""

    def __init__(
        self,
        pattern: str,
        domain: str,
        action: str,
        original: BaseException,
        correlation_id: str | None = None,
    ) -> None:
        self.pattern = pattern
        self.domain = domain
        self.action = action
        self.original = original
        self.correlation_id = correlation_id
        suffix = f" [{correlation_id}]" if correlation_id else ""
        super().__init__(
            f"Ошибка в обработчике {domain}.{action} (pattern: {pattern}){suffix}: {original}"
        )


class AuthenticationError(Exception):
    """Ошибка авторизации WebSocket-подключения."""
    pass
