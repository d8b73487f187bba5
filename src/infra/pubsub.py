"""
Подписчик на каналы Redis Pub/Sub.

Каждый логический подписчик (роутер событий, каждый realtime-шлюз) владеет
ровно одним клонированным соединением и одним обработчиком сообщений,
который привязывается к каналу до отправки SUBSCRIBE.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    RedisError,
    TimeoutError as RedisTimeoutError,
)

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, log_warning
from src.infra.redis_client import reconnect_delay

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from redis.asyncio.client import PubSub

    from src.infra.redis_client import RedisConnectionManager


# Callback (channel, raw_data)
MessageCallback = Callable[[str, str], Awaitable[None]]


class ChannelSubscriber:
    """
    Подписчик на набор каналов с собственным соединением.

    Слушает сообщения в фоновой задаче и переподключается без ограничения
    числа попыток при обрыве связи с брокером.
    """

    def __init__(
        self,
        connections: "RedisConnectionManager",
        channels: Iterable[str],
        on_message: MessageCallback,
        name: str = "subscriber",
    ) -> None:
        """
        Args:
            connections: Менеджер соединений Redis
            channels: Каналы для подписки
            on_message: Callback для обработки сообщений (channel, data)
            name: Имя подписчика для логов
        """
        self._connections = connections
        self._channels = tuple(channels)
        self._on_message = on_message
        self._name = name

        self._client: "Redis | None" = None
        self._pubsub: "PubSub | None" = None
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def channels(self) -> tuple[str, ...]:
        """Каналы подписки."""
        return self._channels

    @property
    def is_running(self) -> bool:
        """Запущен ли подписчик."""
        return self._running

    async def start(self) -> None:
        """Создать соединение, подписаться на каналы и запустить прослушивание."""
        if self._running:
            return

        self._client = self._connections.clone_for_subscription()
        self._pubsub = self._client.pubsub(ignore_subscribe_messages=True)

        # Обработчик передаётся вместе с SUBSCRIBE и регистрируется до отправки команды
        await self._pubsub.subscribe(**{channel: self._handle_message for channel in self._channels})
        self._running = True

        self._task = asyncio.create_task(self._listen(), name=f"{self._name}-listener")

        await log_info(
            f"{self._name}: подписка на каналы {', '.join(self._channels)}",
            type_msg=TypeMsg.INFO,
        )

    async def stop(self) -> None:
        """Отписаться и закрыть соединение. Безопасно вызывать повторно."""
        self._running = False

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pubsub is not None:
            pubsub, self._pubsub = self._pubsub, None
            try:
                await pubsub.unsubscribe(*self._channels)
                await pubsub.aclose()
            except RedisError as e:
                await log_warning(f"{self._name}: ошибка при отписке: {e}")

        if self._client is not None:
            client, self._client = self._client, None
            try:
                await client.aclose()
            except RedisError as e:
                await log_warning(f"{self._name}: ошибка при закрытии соединения: {e}")

            await log_info(f"{self._name}: подписчик остановлен", type_msg=TypeMsg.INFO)

    async def _listen(self) -> None:
        """Слушать сообщения; при обрыве соединения переподключаться с задержкой."""
        attempt = 0
        while self._running:
            try:
                # Сообщения разбираются обработчиком канала внутри get_message
                await self._pubsub.get_message(timeout=1.0)

                if attempt:
                    await log_info(
                        f"{self._name}: соединение с Redis восстановлено",
                        type_msg=TypeMsg.INFO,
                    )
                    attempt = 0

            except asyncio.CancelledError:
                raise
            except (RedisConnectionError, RedisTimeoutError) as e:
                attempt += 1
                delay = reconnect_delay(attempt)
                await log_warning(
                    f"{self._name}: нет соединения с Redis ({e}), попытка {attempt} через {delay:.2f}с"
                )
                await asyncio.sleep(delay)
            except Exception as e:
                # Логируем ошибку, но продолжаем работу
                await log_error(f"{self._name}: ошибка подписчика: {e}", exc_info=e)
                await asyncio.sleep(reconnect_delay(1))

    async def _handle_message(self, message: dict[str, Any]) -> None:
        """Обработать сообщение из Redis."""
        channel = message.get("channel", "")
        data = message.get("data", "")

        if isinstance(channel, bytes):
            channel = channel.decode("utf-8")
        if isinstance(data, bytes):
            data = data.decode("utf-8")

        try:
            await self._on_message(channel, data)
        except Exception as e:
            await log_error(f"{self._name}: ошибка обработки сообщения из {channel}: {e}", exc_info=e)
