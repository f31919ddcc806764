# src/services/realtime_ws/connection_manager.py
"""
Менеджер WebSocket соединений.
Реализует примитив send_to для ретранслятора.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from src.common.logger import log_debug


@dataclass
class ConnectionInfo:
    """Информация о соединении."""
    websocket: WebSocket
    connection_id: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    messages_sent: int = 0


class ConnectionNotFound(LookupError):
    """Подключение закрыто или не существовало."""


class ConnectionManager:
    """
    Менеджер WebSocket соединений.

    Поддерживает:
    - Подключение/отключение клиентов по connection_id
    - Отправку события конкретному подключению (send_to)
    """

    def __init__(self) -> None:
        # connection_id -> ConnectionInfo
        self._connections: dict[str, ConnectionInfo] = {}

        self._total_connections: int = 0
        self._total_messages_sent: int = 0

    @property
    def active_connections(self) -> int:
        """Количество активных соединений."""
        return len(self._connections)

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._connections

    async def connect(self, websocket: WebSocket, connection_id: str) -> None:
        """
        Принять соединение.

        Если connection_id уже занят - старое соединение закрывается.
        """
        old_conn = self._connections.pop(connection_id, None)
        if old_conn is not None:
            await self._close_connection(old_conn)

        await websocket.accept()

        self._connections[connection_id] = ConnectionInfo(
            websocket=websocket,
            connection_id=connection_id,
        )
        self._total_connections += 1

    def disconnect(self, connection_id: str, websocket: WebSocket | None = None) -> bool:
        """
        Забыть соединение.

        Если передан websocket, удаляется только он: соединение, уже
        заменённое новым с тем же connection_id, не трогается.

        Returns:
            True если соединение было удалено
        """
        conn = self._connections.get(connection_id)
        if conn is None or (websocket is not None and conn.websocket is not websocket):
            return False
        del self._connections[connection_id]
        return True

    async def send_to(self, connection_id: str, event: str, payload: dict[str, Any]) -> None:
        """
        Отправить событие подключению.

        Raises:
            ConnectionNotFound: подключения нет
            Exception: ошибка записи в сокет
        """
        conn = self._connections.get(connection_id)
        if conn is None:
            raise ConnectionNotFound(connection_id)

        await conn.websocket.send_json({"event": event, "data": payload})
        conn.messages_sent += 1
        self._total_messages_sent += 1

    async def send_personal(self, connection_id: str, event: str, payload: dict[str, Any]) -> bool:
        """
        Отправить ответ подключению без исключений.

        Returns:
            True если сообщение отправлено
        """
        try:
            await self.send_to(connection_id, event, payload)
            return True
        except Exception as e:
            await log_debug(f"Ответ {event} подключению {connection_id} не отправлен: {e}")
            return False

    def get_stats(self) -> dict[str, Any]:
        """Получить статистику."""
        return {
            "active_connections": len(self._connections),
            "total_connections_ever": self._total_connections,
            "total_messages_sent": self._total_messages_sent,
        }

    async def _close_connection(self, conn: ConnectionInfo) -> None:
        """Закрыть соединение."""
        try:
            await conn.websocket.close()
        except Exception as e:
            await log_debug(f"Соединение {conn.connection_id} уже закрыто: {e}")
