# src/services/realtime_location/__init__.py
"""
Кэш последних координат транспорта.

Обеспечивает:
- Сохранение последней позиции в Redis (хеш с TTL)
- Geo-индекс онлайн-транспорта
"""
