"""
Инфраструктурный слой.
Соединения с Redis, шина доменных событий, каналы сигналов обновления.
"""

from src.infra.redis_client import RedisConnectionManager, get_redis
from src.infra.event_bus import DomainEvent, EventPattern, EventRouter
from src.infra.refresh_signals import RefreshChannel, RefreshPublisher, RefreshSignal

__all__ = [
    "RedisConnectionManager",
    "get_redis",
    "DomainEvent",
    "EventPattern",
    "EventRouter",
    "RefreshChannel",
    "RefreshPublisher",
    "RefreshSignal",
]
