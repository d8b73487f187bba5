# tests/helpers.py
"""
Брокер в памяти и утилиты для тестов pub/sub.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable

from src.common.exceptions import TransportUnavailable


class FakePubSub:
    """PubSub в памяти с тем же контрактом, что у redis.asyncio.client.PubSub."""

    def __init__(self, broker: "FakeBroker") -> None:
        self._broker = broker
        self.handlers: dict[str, Callable] = {}
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels: str, **handlers: Callable) -> None:
        for channel in channels:
            self.handlers.setdefault(channel, None)
        self.handlers.update(handlers)
        self._broker.attach(self)

    async def unsubscribe(self, *channels: str) -> None:
        for channel in channels or tuple(self.handlers):
            self.handlers.pop(channel, None)
        if not self.handlers:
            self._broker.detach(self)

    async def get_message(self, timeout: float = 0.0, ignore_subscribe_messages: bool = False) -> dict | None:
        try:
            channel, data = await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

        message = {"type": "message", "pattern": None, "channel": channel, "data": data}
        handler = self.handlers.get(channel)
        if handler is not None:
            await handler(message)
            return None
        return message

    async def aclose(self) -> None:
        self.closed = True
        self._broker.detach(self)


class FakeClient:
    """Клон соединения, выданный подписчику."""

    def __init__(self, broker: "FakeBroker") -> None:
        self._broker = broker
        self.closed = False
        self.pubsubs: list[FakePubSub] = []

    def pubsub(self, **kwargs: Any) -> FakePubSub:
        pubsub = FakePubSub(self._broker)
        self.pubsubs.append(pubsub)
        return pubsub

    async def aclose(self) -> None:
        self.closed = True


class FakeBroker:
    """Маршрутизация сообщений между подписками в памяти."""

    def __init__(self) -> None:
        self._subscriptions: list[FakePubSub] = []
        self.published: list[tuple[str, str]] = []

    def attach(self, pubsub: FakePubSub) -> None:
        if pubsub not in self._subscriptions:
            self._subscriptions.append(pubsub)

    def detach(self, pubsub: FakePubSub) -> None:
        if pubsub in self._subscriptions:
            self._subscriptions.remove(pubsub)

    def deliver(self, channel: str, payload: str) -> int:
        self.published.append((channel, payload))
        receivers = 0
        for pubsub in self._subscriptions:
            if channel in pubsub.handlers:
                pubsub.queue.put_nowait((channel, payload))
                receivers += 1
        return receivers


class FakeConnections:
    """Замена RedisConnectionManager поверх FakeBroker."""

    def __init__(self) -> None:
        self.broker = FakeBroker()
        self.clones: list[FakeClient] = []
        self.connected = False
        self.available = True

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self, *args: Any, **kwargs: Any) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    def clone_for_subscription(self) -> FakeClient:
        client = FakeClient(self.broker)
        self.clones.append(client)
        return client

    async def publish(self, channel: str, message: Any) -> int:
        if not self.available:
            raise TransportUnavailable("broker is down")
        payload = message if isinstance(message, str) else json.dumps(message)
        return self.broker.deliver(channel, payload)

    async def ping(self) -> bool:
        if not self.available:
            raise TransportUnavailable("broker is down")
        return True

    async def health_check(self) -> bool:
        return self.available


async def drain(timeout: float = 1.0) -> None:
    """Даёт фоновым задачам подписчиков обработать доставленные сообщения."""
    deadline = time.monotonic() + timeout
    current = asyncio.current_task()
    while time.monotonic() < deadline:
        await asyncio.sleep(0.01)
        pending = [
            task for task in asyncio.all_tasks()
            if task is not current and task.get_name().startswith("dispatch-")
        ]
        if not pending:
            break
    await asyncio.sleep(0.05)


