"""
Realtime-шлюзы сигналов обновления.

Каждый шлюз слушает свой канал refresh.* через собственное соединение
и пересылает сигнал клиентам своего пространства имён:
- userId задан - только в комнату пользователя
- иначе role задана - только в комнату роли (есть только у dashboard)
- иначе - всем клиентам пространства имён

Авторизация различается: /dashboard проверяет JWT, а /notifications,
/trips и /users доверяют query-параметру userId без проверки.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import WebSocket, WebSocketDisconnect

from src.common.constants import REFRESH_EVENT, WS_POLICY_VIOLATION, TypeMsg
from src.common.exceptions import AuthenticationError, MalformedMessage
from src.common.logger import log_debug, log_error, log_info, log_warning
from src.infra.pubsub import ChannelSubscriber
from src.infra.refresh_signals import RefreshChannel, RefreshSignal
from src.services.realtime_ws.auth import AuthenticatedUser, WsAuthService
from src.services.realtime_ws.connection_manager import ConnectedClient, RoomManager

if TYPE_CHECKING:
    from src.infra.redis_client import RedisConnectionManager


class RefreshGateway:
    """
    Базовый шлюз: комната пользователя из query-параметра userId.

    Подключение без userId не попадает ни в одну комнату, но получает
    сигналы для всех.
    """

    channel: RefreshChannel
    has_role_rooms: bool = False

    def __init__(self, connections: "RedisConnectionManager") -> None:
        self.namespace = self.channel.short_name
        self.rooms = RoomManager(self.namespace)
        self._subscriber = ChannelSubscriber(
            connections,
            [self.channel.value],
            self._on_signal,
            name=f"{type(self).__name__}",
        )

    def user_room(self, user_id: str) -> str:
        """Имя комнаты пользователя."""
        return f"{self.namespace}_user_{user_id}"

    def role_room(self, role: str) -> str:
        """Имя комнаты роли."""
        return f"{self.namespace}_role_{role.lower()}"

    async def start(self) -> None:
        """Подписаться на канал сигналов."""
        await self._subscriber.start()
        await log_info(f"{type(self).__name__} initialized", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Отписаться от канала."""
        await self._subscriber.stop()

    # =========================================================================
    # ПОДКЛЮЧЕНИЯ КЛИЕНТОВ
    # =========================================================================

    async def resolve_rooms(self, websocket: WebSocket) -> tuple[list[str], AuthenticatedUser | None]:
        """Определить комнаты клиента по данным подключения."""
        user_id = websocket.query_params.get("userId")
        if user_id:
            return [self.user_room(user_id)], None
        return [], None

    async def handle_connection(self, websocket: WebSocket) -> ConnectedClient | None:
        """
        Принять подключение и распределить по комнатам.

        Returns:
            Клиент или None, если подключение отклонено
        """
        try:
            rooms, user = await self.resolve_rooms(websocket)
        except AuthenticationError as e:
            await log_warning(f"Auth failed for /{self.namespace} connection: {e}")
            await websocket.close(code=WS_POLICY_VIOLATION, reason=str(e))
            return None

        client = await self.rooms.connect(websocket, rooms, user)
        await log_info(
            f"Client connected to /{self.namespace}: {client.id} (rooms: {', '.join(sorted(rooms)) or '-'})",
            type_msg=TypeMsg.INFO,
        )
        return client

    def handle_disconnect(self, client: ConnectedClient) -> None:
        """Удалить клиента и его комнаты."""
        self.rooms.disconnect(client.id)

    async def serve(self, websocket: WebSocket) -> None:
        """
        Обслуживать соединение до отключения клиента.

        Входящие сообщения:
        - {"action": "ping"}
        """
        client = await self.handle_connection(websocket)
        if client is None:
            return

        try:
            while True:
                data = await websocket.receive_json()
                if isinstance(data, dict) and data.get("action") == "ping":
                    await self.rooms.send(client, "pong", {})
        except WebSocketDisconnect:
            pass
        except Exception as e:
            await log_warning(f"Connection error on /{self.namespace} ({client.id}): {e}")
        finally:
            self.handle_disconnect(client)
            await log_info(
                f"Client disconnected from /{self.namespace}: {client.id}",
                type_msg=TypeMsg.INFO,
            )

    # =========================================================================
    # СИГНАЛЫ ОБНОВЛЕНИЯ
    # =========================================================================

    async def _on_signal(self, channel: str, raw: str) -> None:
        """Обработать сообщение из канала сигналов."""
        try:
            signal = RefreshSignal.from_json(raw, channel=channel)
        except MalformedMessage as e:
            await log_error(f"Failed to process redis message for {self.namespace}: {e}")
            return

        await self.broadcast_refresh(signal)

    async def broadcast_refresh(self, signal: RefreshSignal) -> int:
        """
        Отправить событие refresh адресатам сигнала.

        Returns:
            Количество клиентов, получивших событие
        """
        payload = signal.client_payload()

        if signal.user_id:
            sent = await self.rooms.emit_to_room(self.user_room(signal.user_id), REFRESH_EVENT, payload)
        elif signal.role and self.has_role_rooms:
            sent = await self.rooms.emit_to_room(self.role_room(signal.role), REFRESH_EVENT, payload)
        else:
            sent = await self.rooms.emit_all(REFRESH_EVENT, payload)

        await log_debug(
            f"Sent {self.namespace} refresh signal "
            f"(User: {signal.user_id or 'All'}, Role: {signal.role or 'All'}, Scope: {signal.scope}, sent: {sent})"
        )
        return sent

    def get_stats(self) -> dict[str, Any]:
        """Статистика соединений шлюза."""
        return self.rooms.get_stats()


class DashboardGateway(RefreshGateway):
    """
    Шлюз /dashboard.

    Требует JWT и добавляет клиента в комнаты:
    dashboard_all, dashboard_role_<role> (с учётом иерархии), dashboard_user_<id>.
    """

    channel = RefreshChannel.DASHBOARD
    has_role_rooms = True

    def __init__(self, connections: "RedisConnectionManager", auth: WsAuthService) -> None:
        super().__init__(connections)
        self._auth = auth

    @property
    def all_room(self) -> str:
        """Общая комната шлюза."""
        return f"{self.namespace}_all"

    async def resolve_rooms(self, websocket: WebSocket) -> tuple[list[str], AuthenticatedUser | None]:
        token = self._auth.extract_token(websocket)
        user = await self._auth.verify_connection(token)

        rooms = [self.all_room]
        rooms.extend(self.role_room(role) for role in self._auth.get_user_roles(user.role))
        rooms.append(self.user_room(user.user_id))
        return rooms, user


class NotificationsGateway(RefreshGateway):
    """Шлюз /notifications."""
    channel = RefreshChannel.NOTIFICATIONS


class TripsGateway(RefreshGateway):
    """Шлюз /trips."""
    channel = RefreshChannel.TRIPS


class UsersGateway(RefreshGateway):
    """Шлюз /users."""
    channel = RefreshChannel.USERS
