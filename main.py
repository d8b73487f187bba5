#!/usr/bin/env python3
# main.py
"""
Главная точка входа Fleet Realtime.
Запускает realtime WebSocket шлюз (роутер событий + шлюзы сигналов обновления).
"""

from __future__ import annotations

import asyncio
import signal
import sys

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg


# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def run_realtime_ws_gateway() -> None:
    """Запускает Realtime WebSocket Gateway."""
    import uvicorn

    await log_info(
        f"Запуск Realtime WebSocket Gateway на {settings.websocket.WS_HOST}:{settings.websocket.WS_PORT}...",
        type_msg=TypeMsg.INFO,
    )

    # Подключение к Redis, роутер и шлюзы поднимаются в lifespan приложения
    config = uvicorn.Config(
        "src.services.realtime_ws.app:app",
        host=settings.websocket.WS_HOST,
        port=settings.websocket.WS_PORT,
        reload=settings.system.DEBUG,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info("Realtime WS Gateway: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


async def main() -> None:
    """Главная функция запуска."""
    setup_logging()
    setup_signal_handlers()

    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION} - запуск",
        type_msg=TypeMsg.INFO,
    )

    try:
        task = asyncio.create_task(run_realtime_ws_gateway())
        _running_tasks.append(task)
        await task
    except KeyboardInterrupt:
        await log_info("Получен сигнал остановки (Ctrl+C)", type_msg=TypeMsg.INFO)
    except asyncio.CancelledError:
        await log_info("Задача отменена, выполняется graceful shutdown", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}", exc_info=e)
        raise
    finally:
        if _running_tasks:
            for task in _running_tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*_running_tasks, return_exceptions=True)
            _running_tasks.clear()
        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print("""
Fleet Realtime - шлюз событий и сигналов обновления

Использование:
    python main.py

Переменные окружения:
    REDIS_URL / REDIS_HOST, REDIS_PORT, REDIS_PASSWORD
    JWT_SECRET, JWT_ALGORITHM
    WS_HOST, WS_PORT, WS_CORS_ORIGIN
    LOG_LEVEL, LOG_FORMAT
    """)


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1].lower() in ("--help", "-h"):
        print_usage()
        sys.exit(0)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
