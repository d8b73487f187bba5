# tests/infra/test_redis_client.py
"""
Тесты для менеджера соединений Redis.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import BaseModel
from redis.exceptions import ConnectionError as RedisConnectionError, ResponseError

from src.common.exceptions import PublishFailed, TransportUnavailable
from src.infra.redis_client import (
    ReconnectBackoff,
    RedisConnectionManager,
    get_redis,
    reconnect_delay,
)


class SampleModel(BaseModel):
    """Тестовая Pydantic модель."""
    id: int
    name: str


def make_client() -> AsyncMock:
    client = AsyncMock()
    client.ping = AsyncMock(return_value=True)
    client.publish = AsyncMock(return_value=2)
    return client


class TestReconnectDelay:
    """Тесты политики переподключения."""

    def test_first_attempt(self) -> None:
        assert reconnect_delay(1) == 0.05

    def test_linear_growth(self) -> None:
        assert reconnect_delay(10) == 0.5

    def test_capped(self) -> None:
        """Задержка не превышает 2 секунд."""
        assert reconnect_delay(40) == 2.0
        assert reconnect_delay(1000) == 2.0

    def test_zero_attempt_treated_as_first(self) -> None:
        assert reconnect_delay(0) == 0.05

    def test_backoff_uses_same_policy(self) -> None:
        backoff = ReconnectBackoff()
        assert backoff.compute(3) == reconnect_delay(3)


class TestRedisConnectionManager:
    """Тесты для RedisConnectionManager."""

    @pytest.fixture
    def manager(self) -> RedisConnectionManager:
        return RedisConnectionManager()

    def test_not_connected_initially(self, manager: RedisConnectionManager) -> None:
        assert manager.is_connected is False

    def test_command_connection_not_initialized(self, manager: RedisConnectionManager) -> None:
        """Проверяет ошибку при обращении к неинициализированному клиенту."""
        with pytest.raises(TransportUnavailable, match="не инициализирован"):
            manager.get_command_connection()

    def test_clone_not_initialized(self, manager: RedisConnectionManager) -> None:
        with pytest.raises(TransportUnavailable):
            manager.clone_for_subscription()

    @pytest.mark.asyncio
    async def test_connect_by_url(self, manager: RedisConnectionManager) -> None:
        """Проверяет подключение по URL."""
        client = make_client()

        with patch("redis.asyncio.from_url", return_value=client) as mock_from_url:
            await manager.connect(url="redis://localhost:6379/0", max_connections=10)

        assert manager.is_connected
        client.ping.assert_called_once()
        args, kwargs = mock_from_url.call_args
        assert args[0] == "redis://localhost:6379/0"
        assert kwargs["decode_responses"] is True
        assert kwargs["max_connections"] == 10
        assert kwargs["retry"] is not None

    @pytest.mark.asyncio
    async def test_connect_by_host(self, manager: RedisConnectionManager) -> None:
        """Проверяет подключение по host/port/password."""
        client = make_client()

        with patch("redis.asyncio.Redis", return_value=client) as mock_redis:
            await manager.connect(host="redis.local", port=6380, password="secret")

        kwargs = mock_redis.call_args.kwargs
        assert kwargs["host"] == "redis.local"
        assert kwargs["port"] == 6380
        assert kwargs["password"] == "secret"

    @pytest.mark.asyncio
    async def test_connect_from_config(self, manager: RedisConnectionManager) -> None:
        """Без явного адреса параметры берутся из конфига."""
        from src.config import settings

        client = make_client()

        with patch.object(settings.redis, "REDIS_URL", "redis://cfg-redis:6390/1"), \
                patch("redis.asyncio.from_url", return_value=client) as mock_from_url:
            await manager.connect()

        assert mock_from_url.call_args.args[0] == "redis://cfg-redis:6390/1"
        assert manager.is_connected

    @pytest.mark.asyncio
    async def test_url_takes_precedence(self, manager: RedisConnectionManager) -> None:
        """URL важнее host/port."""
        client = make_client()

        with patch("redis.asyncio.from_url", return_value=client) as mock_from_url, \
                patch("redis.asyncio.Redis") as mock_redis:
            await manager.connect(url="redis://primary:6379/0", host="ignored", port=1)

        mock_from_url.assert_called_once()
        mock_redis.assert_not_called()

    @pytest.mark.asyncio
    async def test_connect_already_connected(self, manager: RedisConnectionManager) -> None:
        """Проверяет, что повторное подключение пропускается."""
        manager._client = make_client()

        with patch("redis.asyncio.from_url") as mock_from_url:
            await manager.connect(url="redis://localhost:6379/0")

        mock_from_url.assert_not_called()

    @pytest.mark.asyncio
    async def test_connect_unreachable_is_not_fatal(self, manager: RedisConnectionManager) -> None:
        """Недоступный брокер при старте не бросает исключение."""
        client = make_client()
        client.ping.side_effect = RedisConnectionError("refused")

        with patch("redis.asyncio.from_url", return_value=client):
            await manager.connect(url="redis://localhost:6379/0")

        assert manager.is_connected

    @pytest.mark.asyncio
    async def test_clone_is_independent(self, manager: RedisConnectionManager) -> None:
        """Клон - отдельный клиент с теми же параметрами."""
        command, clone = make_client(), make_client()

        with patch("redis.asyncio.from_url", side_effect=[command, clone]) as mock_from_url:
            await manager.connect(url="redis://localhost:6379/0")
            result = manager.clone_for_subscription()

        assert result is clone
        assert result is not manager.get_command_connection()
        first, second = mock_from_url.call_args_list
        assert first.args == second.args

        await clone.aclose()
        command.aclose.assert_not_called()

    @pytest.mark.asyncio
    async def test_disconnect(self, manager: RedisConnectionManager) -> None:
        """Проверяет отключение от Redis."""
        client = make_client()
        manager._client = client

        await manager.disconnect()

        client.aclose.assert_called_once()
        assert manager.is_connected is False

    @pytest.mark.asyncio
    async def test_disconnect_when_not_connected(self, manager: RedisConnectionManager) -> None:
        """Повторное отключение не вызывает исключений."""
        await manager.disconnect()
        await manager.disconnect()

    @pytest.mark.asyncio
    async def test_publish_string(self, manager: RedisConnectionManager) -> None:
        client = make_client()
        manager._client = client

        receivers = await manager.publish("refresh.trips", '{"scope":"TRIPS"}')

        assert receivers == 2
        client.publish.assert_called_once_with("refresh.trips", '{"scope":"TRIPS"}')

    @pytest.mark.asyncio
    async def test_publish_dict(self, manager: RedisConnectionManager) -> None:
        client = make_client()
        manager._client = client

        await manager.publish("refresh.users", {"userId": "7"})

        payload = client.publish.call_args.args[1]
        assert json.loads(payload) == {"userId": "7"}

    @pytest.mark.asyncio
    async def test_publish_model(self, manager: RedisConnectionManager) -> None:
        client = make_client()
        manager._client = client

        await manager.publish("channel", SampleModel(id=1, name="test"))

        payload = client.publish.call_args.args[1]
        assert json.loads(payload) == {"id": 1, "name": "test"}

    @pytest.mark.asyncio
    async def test_publish_transport_unavailable(self, manager: RedisConnectionManager) -> None:
        client = make_client()
        client.publish.side_effect = RedisConnectionError("connection lost")
        manager._client = client

        with pytest.raises(TransportUnavailable):
            await manager.publish("channel", "x")

    @pytest.mark.asyncio
    async def test_publish_rejected(self, manager: RedisConnectionManager) -> None:
        client = make_client()
        client.publish.side_effect = ResponseError("NOPERM")
        manager._client = client

        with pytest.raises(PublishFailed) as exc_info:
            await manager.publish("channel", "x")

        assert exc_info.value.channel == "channel"

    @pytest.mark.asyncio
    async def test_publish_not_connected(self, manager: RedisConnectionManager) -> None:
        with pytest.raises(TransportUnavailable):
            await manager.publish("channel", "x")

    @pytest.mark.asyncio
    async def test_health_check(self, manager: RedisConnectionManager) -> None:
        manager._client = make_client()
        assert await manager.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_failure(self, manager: RedisConnectionManager) -> None:
        client = make_client()
        client.ping.side_effect = RedisConnectionError("down")
        manager._client = client

        assert await manager.health_check() is False

    @pytest.mark.asyncio
    async def test_health_check_not_connected(self, manager: RedisConnectionManager) -> None:
        assert await manager.health_check() is False


class TestGetRedis:
    """Тесты для get_redis."""

    def test_returns_same_manager(self) -> None:
        assert get_redis() is get_redis()

    def test_returns_manager(self) -> None:
        assert isinstance(get_redis(), RedisConnectionManager)
