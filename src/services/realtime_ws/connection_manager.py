"""
Менеджер WebSocket соединений одного пространства имён.
Управляет комнатами и рассылкой сообщений.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable
from uuid import uuid4

from fastapi import WebSocket

if TYPE_CHECKING:
    from src.services.realtime_ws.auth import AuthenticatedUser


@dataclass(eq=False)
class ConnectedClient:
    """Информация о подключённом клиенте."""
    websocket: WebSocket
    id: str = field(default_factory=lambda: uuid4().hex)
    rooms: set[str] = field(default_factory=set)
    user: "AuthenticatedUser | None" = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RoomManager:
    """
    Менеджер соединений пространства имён.

    Поддерживает:
    - Подключение/отключение клиентов
    - Комнаты (назначаются один раз при подключении)
    - Рассылку в комнату и всем клиентам
    """

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace

        # client_id -> ConnectedClient
        self._clients: dict[str, ConnectedClient] = {}

        # room -> set of client_ids
        self._rooms: dict[str, set[str]] = {}

        # Для статистики
        self._total_connections: int = 0
        self._total_messages_sent: int = 0

    @property
    def active_connections(self) -> int:
        """Количество активных соединений."""
        return len(self._clients)

    async def connect(
        self,
        websocket: WebSocket,
        rooms: Iterable[str] = (),
        user: "AuthenticatedUser | None" = None,
    ) -> ConnectedClient:
        """Принять соединение и добавить клиента в комнаты."""
        await websocket.accept()

        client = ConnectedClient(websocket=websocket, rooms=set(rooms), user=user)
        self._clients[client.id] = client
        for room in client.rooms:
            self._rooms.setdefault(room, set()).add(client.id)

        self._total_connections += 1
        return client

    def disconnect(self, client_id: str) -> None:
        """Удалить клиента вместе с его членством в комнатах."""
        client = self._clients.pop(client_id, None)
        if client is None:
            return

        for room in client.rooms:
            members = self._rooms.get(room)
            if members is None:
                continue
            members.discard(client_id)
            if not members:
                del self._rooms[room]

    async def send(self, client: ConnectedClient, event: str, data: dict[str, Any]) -> bool:
        """
        Отправить событие клиенту.

        Returns:
            True если отправлено, False если соединение разорвано
        """
        try:
            await client.websocket.send_json({"event": event, "data": data})
        except Exception:
            # Соединение разорвано
            self.disconnect(client.id)
            return False

        self._total_messages_sent += 1
        return True

    async def emit_to_room(self, room: str, event: str, data: dict[str, Any]) -> int:
        """
        Отправить событие всем клиентам комнаты.

        Returns:
            Количество успешно отправленных сообщений
        """
        client_ids = list(self._rooms.get(room, ()))
        return await self._emit(client_ids, event, data)

    async def emit_all(self, event: str, data: dict[str, Any]) -> int:
        """Отправить событие всем клиентам пространства имён."""
        return await self._emit(list(self._clients), event, data)

    async def _emit(self, client_ids: list[str], event: str, data: dict[str, Any]) -> int:
        sent_count = 0
        for client_id in client_ids:
            client = self._clients.get(client_id)
            if client is not None and await self.send(client, event, data):
                sent_count += 1
        return sent_count

    def room_members(self, room: str) -> set[str]:
        """Получить идентификаторы клиентов комнаты."""
        return self._rooms.get(room, set()).copy()

    def get_stats(self) -> dict[str, Any]:
        """Получить статистику."""
        return {
            "namespace": self.namespace,
            "active_connections": len(self._clients),
            "total_rooms": len(self._rooms),
            "total_connections_ever": self._total_connections,
            "total_messages_sent": self._total_messages_sent,
        }
