# src/services/__init__.py
"""
Сервисы приложения.

Сервисы:
- realtime_ws: WebSocket-шлюзы сигналов обновления (/dashboard, /notifications, /trips, /users)
"""

__all__: list[str] = []
