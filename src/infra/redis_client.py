"""
Менеджер соединений с Redis (брокер pub/sub).

Держит одно командное соединение на процесс (PUBLISH, PING и прочие команды)
и выдаёт независимые клоны для подписчиков: соединение в режиме SUBSCRIBE
не может выполнять обычные команды, поэтому командное соединение никогда
не используется для подписки.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as redis
from pydantic import BaseModel
from redis.asyncio.retry import Retry
from redis.backoff import AbstractBackoff
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    RedisError,
    TimeoutError as RedisTimeoutError,
)

from src.common.constants import (
    COMMAND_RETRIES,
    RECONNECT_MAX_DELAY_MS,
    RECONNECT_STEP_MS,
    TypeMsg,
)
from src.common.exceptions import PublishFailed, TransportUnavailable
from src.common.logger import get_logger, log_error, log_info, log_warning

logger = get_logger("redis")


def reconnect_delay(attempt: int) -> float:
    """
    Задержка перед попыткой переподключения, в секундах.

    min(attempt * 50мс, 2000мс); попытки нумеруются с 1.
    """
    return min(max(attempt, 1) * RECONNECT_STEP_MS, RECONNECT_MAX_DELAY_MS) / 1000


class ReconnectBackoff(AbstractBackoff):
    """Backoff для redis-py с линейным ростом и потолком."""

    def reset(self) -> None:
        pass

    def compute(self, failures: int) -> float:
        delay = reconnect_delay(failures)
        logger.warning(f"Redis: переподключение, попытка {failures} через {delay:.2f}с")
        return delay


class RedisConnectionManager:
    """
    Менеджер соединений с Redis.

    Поддерживает:
    - Одно командное соединение (безопасно для конкурентных publish)
    - Клоны для подписчиков с теми же параметрами
    - Публикацию JSON-сообщений с типизированными ошибками
    """

    def __init__(self) -> None:
        self._client: redis.Redis | None = None
        self._url: str | None = None
        self._connection_kwargs: dict[str, Any] = {}
        self._options: dict[str, Any] = {}

    @property
    def is_connected(self) -> bool:
        """Создано ли командное соединение."""
        return self._client is not None

    def get_command_connection(self) -> redis.Redis:
        """Возвращает общее командное соединение."""
        if self._client is None:
            raise TransportUnavailable("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    async def connect(
        self,
        url: str | None = None,
        host: str | None = None,
        port: int | None = None,
        password: str | None = None,
        db: int = 0,
        max_connections: int = 50,
        socket_timeout: float = 10.0,
    ) -> None:
        """
        Подключается к Redis.

        Принимается либо URL, либо host/port/password; URL имеет приоритет.
        Если не передано ни то ни другое, параметры берутся из конфига.

        Args:
            url: URL Redis
            host: Хост Redis
            port: Порт Redis
            password: Пароль
            db: Номер базы
            max_connections: Размер пула командного соединения
            socket_timeout: Таймаут сокета в секундах
        """
        if self._client is not None:
            return

        if url is None and host is None:
            from src.config import settings

            url = settings.redis.REDIS_URL
            host = settings.redis.REDIS_HOST
            port = settings.redis.REDIS_PORT
            password = settings.redis.REDIS_PASSWORD
            db = settings.redis.REDIS_DB
            max_connections = settings.redis.REDIS_MAX_CONNECTIONS
            socket_timeout = settings.redis.REDIS_SOCKET_TIMEOUT

        self._url = url
        self._connection_kwargs = {} if url else {
            "host": host or "localhost",
            "port": port or 6379,
            "password": password,
            "db": db,
        }
        self._options = {
            "decode_responses": True,
            "socket_timeout": socket_timeout,
            "socket_connect_timeout": socket_timeout,
            "retry": Retry(ReconnectBackoff(), COMMAND_RETRIES),
            "retry_on_error": [RedisConnectionError, RedisTimeoutError],
            "max_connections": max_connections,
        }

        if url:
            await log_info("Подключение к Redis по URL...", type_msg=TypeMsg.INFO)
        else:
            await log_info(
                f"Подключение к Redis {self._connection_kwargs['host']}:{self._connection_kwargs['port']}...",
                type_msg=TypeMsg.INFO,
            )

        self._client = self._build_client()

        # Недоступный брокер на старте не фатален: соединение восстановится при следующей команде
        try:
            await self._client.ping()
            await log_info("Подключение к Redis установлено", type_msg=TypeMsg.INFO)
        except (RedisConnectionError, RedisTimeoutError) as e:
            await log_warning(f"Redis пока недоступен: {e}")

    def _build_client(self) -> redis.Redis:
        """Создаёт новый клиент с сохранёнными параметрами."""
        if self._url:
            return redis.from_url(self._url, **self._options)
        return redis.Redis(**self._connection_kwargs, **self._options)

    def clone_for_subscription(self) -> redis.Redis:
        """
        Возвращает новое независимое соединение для подписчика.

        У клона собственный пул: его закрытие не влияет на командное
        соединение и другие клоны.
        """
        if self._client is None:
            raise TransportUnavailable("Redis клиент не инициализирован. Вызовите connect() сначала.")
        logger.debug("Создан клон соединения для подписки")
        return self._build_client()

    async def disconnect(self) -> None:
        """Закрывает командное соединение."""
        if self._client is not None:
            client, self._client = self._client, None
            try:
                await client.aclose()
            except RedisError as e:
                await log_error(f"Ошибка при закрытии соединения с Redis: {e}")
            await log_info("Соединение с Redis закрыто", type_msg=TypeMsg.INFO)

    # =========================================================================
    # PUB/SUB
    # =========================================================================

    async def publish(self, channel: str, message: str | dict[str, Any] | BaseModel) -> int:
        """
        Публикует сообщение в канал.

        Args:
            channel: Имя канала
            message: Строка, словарь или Pydantic модель (сериализуются в JSON)

        Returns:
            Количество подписчиков, получивших сообщение

        Raises:
            TransportUnavailable: Брокер недоступен
            PublishFailed: Брокер отклонил команду
        """
        if isinstance(message, BaseModel):
            payload = message.model_dump_json(by_alias=True, exclude_none=True)
        elif isinstance(message, str):
            payload = message
        else:
            payload = json.dumps(message, ensure_ascii=False)

        client = self.get_command_connection()
        try:
            receivers = await client.publish(channel, payload)
        except (RedisConnectionError, RedisTimeoutError) as e:
            await log_error(f"Redis недоступен, публикация в {channel} не выполнена: {e}")
            raise TransportUnavailable(str(e)) from e
        except RedisError as e:
            await log_error(f"Не удалось опубликовать в {channel}: {e}")
            raise PublishFailed(channel, str(e)) from e

        logger.debug(f"Опубликовано в канал {channel} (получателей: {receivers})")
        return receivers

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    async def ping(self) -> bool:
        """
        Проверяет соединение командой PING.

        Raises:
            TransportUnavailable: Брокер недоступен
        """
        try:
            return bool(await self.get_command_connection().ping())
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise TransportUnavailable(str(e)) from e

    async def health_check(self) -> bool:
        """
        Проверяет здоровье подключения к Redis.

        Returns:
            True если подключение работает
        """
        try:
            return await self.ping()
        except (TransportUnavailable, RedisError) as e:
            await log_error(f"Health check Redis failed: {e}")
            return False


_redis_manager: RedisConnectionManager | None = None


def get_redis() -> RedisConnectionManager:
    """
    Возвращает менеджер соединений процесса.

    Returns:
        RedisConnectionManager
    """
    global _redis_manager
    if _redis_manager is None:
        _redis_manager = RedisConnectionManager()
    return _redis_manager

