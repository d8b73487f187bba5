"""
Связка доменных событий с сигналами обновления.

Обработчики роутера превращают события NOTIFICATION.*, TRIP.*, USER.*
и APPROVAL.* в сигналы refresh.* для подключённых клиентов.
"""

from __future__ import annotations

from typing import Any

from src.common.constants import UserRole
from src.common.logger import log_debug
from src.infra.event_bus import EventRouter
from src.infra.refresh_signals import RefreshChannel, RefreshPublisher


def _get(data: Any, *keys: str) -> Any:
    """Первое непустое значение из словаря данных события."""
    if not isinstance(data, dict):
        return None
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


class RefreshBridge:
    """Обработчики доменных событий, рассылающие сигналы обновления."""

    def __init__(self, refresh: RefreshPublisher) -> None:
        self._refresh = refresh

    def register(self, router: EventRouter) -> None:
        """Подписывает обработчики на роутер."""
        router.subscribe("NOTIFICATION.*", self.on_notification)
        router.subscribe("TRIP.*", self.on_trip)
        router.subscribe("USER.*", self.on_user)
        router.subscribe("APPROVAL.*", self.on_approval)

    async def on_notification(self, data: Any, domain: str, action: str) -> None:
        """Уведомление создано/прочитано/удалено - обновить список у пользователя."""
        user_id = _get(data, "userId", "user_id")
        if user_id is None:
            await log_debug(f"{domain}.{action} без userId, сигнал не отправлен")
            return
        await self._refresh.emit_refresh(RefreshChannel.NOTIFICATIONS, user_id=user_id, scope="NOTIFICATIONS")

    async def on_trip(self, data: Any, domain: str, action: str) -> None:
        """Изменение поездки - обновить поездки и дашборд."""
        user_id = _get(data, "userId", "user_id")
        await self._refresh.emit_refresh(RefreshChannel.TRIPS, user_id=user_id, scope="TRIPS")
        await self._refresh.emit_refresh(RefreshChannel.DASHBOARD, user_id=user_id, scope="TRIPS")

    async def on_user(self, data: Any, domain: str, action: str) -> None:
        """Изменение пользователя - обновить список пользователей и дашборд администраторов."""
        await self._refresh.emit_refresh(RefreshChannel.USERS, user_id=_get(data, "userId", "user_id"), scope="USERS")
        await self._refresh.emit_refresh(RefreshChannel.DASHBOARD, role=UserRole.ADMIN.value, scope="USERS")

    async def on_approval(self, data: Any, domain: str, action: str) -> None:
        """Заявка на согласование - дашборд согласующего, иначе всех менеджеров."""
        approver_id = _get(data, "approverId", "approver_id")
        if approver_id is not None:
            await self._refresh.emit_refresh(RefreshChannel.DASHBOARD, user_id=approver_id, scope="APPROVALS")
        else:
            await self._refresh.emit_refresh(RefreshChannel.DASHBOARD, role=UserRole.MANAGER.value, scope="APPROVALS")


def register_refresh_handlers(router: EventRouter, refresh: RefreshPublisher) -> RefreshBridge:
    """Создаёт связку и регистрирует её обработчики."""
    bridge = RefreshBridge(refresh)
    bridge.register(router)
    return bridge
