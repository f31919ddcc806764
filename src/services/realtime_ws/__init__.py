# src/services/realtime_ws/__init__.py
"""
WebSocket шлюз отслеживания транспорта.

Обеспечивает:
- WebSocket соединения водителей и пассажиров
- Рассылку координат подписчикам транспорта
- Событие offline при остановке трансляции или обрыве связи
- HTTP-запрос ближайшего транспорта к остановке
"""
