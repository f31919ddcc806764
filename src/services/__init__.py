# src/services/__init__.py
"""
Сервисы приложения.

Сервисы:
- realtime_ws: WebSocket шлюз (трансляция координат, подписки, ближайший транспорт)
- realtime_location: кэш последних координат в Redis
"""

__all__: list[str] = []
