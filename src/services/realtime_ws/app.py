"""
FastAPI приложение для Realtime WebSocket Gateway.

WebSocket endpoints:
- /dashboard - требует JWT (query token или заголовок Authorization)
- /notifications, /trips, /users - необязательный query-параметр userId

REST endpoints:
- GET /health - проверка здоровья
- GET /stats - статистика роутера и соединений
- POST /refresh/{channel} - отправить сигнал обновления
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from fastapi import FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from src.common.constants import TypeMsg
from src.common.exceptions import EventBusError
from src.common.logger import log_info, setup_logging
from src.config import settings
from src.core.refresh_bridge import register_refresh_handlers
from src.infra.event_bus import EventRouter
from src.infra.redis_client import RedisConnectionManager, get_redis
from src.infra.refresh_signals import RefreshChannel, RefreshPublisher, RefreshSignal
from src.services.realtime_ws.auth import WsAuthService
from src.services.realtime_ws.gateways import (
    DashboardGateway,
    NotificationsGateway,
    RefreshGateway,
    TripsGateway,
    UsersGateway,
)
from src.shared.models.common import HealthStatus


SERVICE_NAME = "realtime_ws_gateway"
SERVICE_VERSION = "1.0.0"


# === MODELS ===

class RefreshResponse(BaseModel):
    """Результат отправки сигнала обновления."""
    channel: str
    receivers: int


class StatsResponse(BaseModel):
    """Статистика роутера и шлюзов."""
    router: dict[str, Any]
    gateways: dict[str, dict[str, Any]]


# === COMPONENTS ===

@dataclass
class RealtimeComponents:
    """Компоненты процесса, создаются один раз при старте."""
    connections: RedisConnectionManager
    router: EventRouter
    refresh: RefreshPublisher
    gateways: dict[str, RefreshGateway] = field(default_factory=dict)


def build_components(
    connections: RedisConnectionManager | None = None,
    auth: WsAuthService | None = None,
) -> RealtimeComponents:
    """Создаёт роутер, издателя сигналов и четыре шлюза поверх общего соединения."""
    connections = connections or get_redis()
    auth = auth or WsAuthService()

    gateways: list[RefreshGateway] = [
        DashboardGateway(connections, auth),
        NotificationsGateway(connections),
        TripsGateway(connections),
        UsersGateway(connections),
    ]
    return RealtimeComponents(
        connections=connections,
        router=EventRouter(connections),
        refresh=RefreshPublisher(connections),
        gateways={gateway.namespace: gateway for gateway in gateways},
    )


# === APP ===

def create_app(components: RealtimeComponents | None = None) -> FastAPI:
    """Создаёт приложение шлюза."""
    components = components or build_components()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Жизненный цикл приложения."""
        setup_logging()

        try:
            # Startup
            await components.connections.connect()
            await components.router.start()
            register_refresh_handlers(components.router, components.refresh)
            for gateway in components.gateways.values():
                await gateway.start()
            app.state.started_at = time.monotonic()
            await log_info("Realtime gateway запущен", type_msg=TypeMsg.INFO)

            yield
        finally:
            # Shutdown (в том числе после частичного старта)
            for gateway in components.gateways.values():
                await gateway.stop()
            await components.router.stop()
            await components.connections.disconnect()
            await log_info("Realtime gateway остановлен", type_msg=TypeMsg.INFO)

    app = FastAPI(
        title="Realtime WebSocket Gateway",
        description="Сигналы обновления для дашборда, уведомлений, поездок и пользователей.",
        version=SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.websocket.WS_CORS_ORIGIN.split(",")],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.components = components
    app.state.started_at = None

    # === HEALTH CHECK ===

    @app.get("/health", response_model=HealthStatus, tags=["Health"])
    async def health_check() -> HealthStatus:
        """Проверка здоровья сервиса."""
        redis_ok = await components.connections.health_check()
        uptime = None
        if app.state.started_at is not None:
            uptime = time.monotonic() - app.state.started_at

        return HealthStatus(
            status="healthy" if redis_ok else "degraded",
            service=SERVICE_NAME,
            version=SERVICE_VERSION,
            uptime_seconds=uptime,
            dependencies={"redis": "healthy" if redis_ok else "unhealthy"},
        )

    # === STATS ===

    @app.get("/stats", response_model=StatsResponse, tags=["Stats"])
    async def get_stats() -> StatsResponse:
        """Получить статистику роутера и соединений."""
        return StatsResponse(
            router=components.router.get_stats(),
            gateways={name: gateway.get_stats() for name, gateway in components.gateways.items()},
        )

    # === REFRESH ===

    @app.post("/refresh/{channel}", response_model=RefreshResponse, tags=["Admin"])
    async def emit_refresh(channel: str, signal: RefreshSignal) -> RefreshResponse:
        """
        Отправить сигнал обновления.

        - `userId` - только этому пользователю
        - `role` - только этой роли (dashboard)
        - без адресата - всем подключённым
        """
        try:
            resolved = RefreshChannel.resolve(channel)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

        try:
            receivers = await components.refresh.emit_refresh(resolved, signal)
        except EventBusError as e:
            raise HTTPException(status_code=503, detail=str(e)) from e

        return RefreshResponse(channel=resolved.value, receivers=receivers)

    # === WEBSOCKET ENDPOINTS ===

    @app.websocket("/dashboard")
    async def websocket_dashboard(websocket: WebSocket) -> None:
        """WebSocket дашборда (JWT обязателен)."""
        await components.gateways["dashboard"].serve(websocket)

    @app.websocket("/notifications")
    async def websocket_notifications(websocket: WebSocket) -> None:
        """WebSocket уведомлений (?userId=...)."""
        await components.gateways["notifications"].serve(websocket)

    @app.websocket("/trips")
    async def websocket_trips(websocket: WebSocket) -> None:
        """WebSocket поездок (?userId=...)."""
        await components.gateways["trips"].serve(websocket)

    @app.websocket("/users")
    async def websocket_users(websocket: WebSocket) -> None:
        """WebSocket пользователей (?userId=...)."""
        await components.gateways["users"].serve(websocket)

    return app


app = create_app()


# === STARTUP ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.websocket.WS_HOST, port=settings.websocket.WS_PORT)
