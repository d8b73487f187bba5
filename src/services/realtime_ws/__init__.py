"""
Realtime WebSocket Gateway - сигналы обновления для подключённых клиентов.

Обеспечивает:
- WebSocket пространства имён /dashboard, /notifications, /trips, /users
- Комнаты по пользователю, роли и «все»
- Пересылку сигналов refresh.* из Redis Pub/Sub
"""
