# src/services/realtime_ws/handlers.py
"""
Разбор входящих WebSocket сообщений и вызов ретранслятора.

Формат сообщения: {"event": "<имя>", "data": {...}}.
Префиксы старого протокола (driver:, passenger:) отбрасываются.
"""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable

from src.common.constants import LEGACY_EVENT_PREFIXES, InboundEvent, OutboundEvent, TypeMsg
from src.common.logger import log_info
from src.core.tracking.errors import InvalidParameter, TrackingError, UnknownEvent
from src.core.tracking.relay import LocationRelay, RelayResult
from src.services.realtime_location.service import PositionCache
from src.services.realtime_ws.connection_manager import ConnectionManager
from src.shared.models.tracking import VehiclePayload


def normalize_event_name(name: Any) -> str:
    """driver:location-update -> location-update."""
    if not isinstance(name, str):
        return ""
    for prefix in LEGACY_EVENT_PREFIXES:
        if name.startswith(prefix):
            return name[len(prefix):]
    return name


def _vehicle_id(data: dict[str, Any]) -> str:
    """Достаёт идентификатор транспорта (vehicleId или busId старых клиентов)."""
    value = data.get("vehicleId", data.get("busId"))
    if value is None or value == "" or isinstance(value, (dict, list, bool)):
        raise InvalidParameter("vehicleId обязателен")
    return str(value)


class EventDispatcher:
    """
    Маршрутизирует входящие события одного подключения.

    Доменные ошибки отправляются только этому подключению событием error
    и не закрывают сокет.
    """

    def __init__(
        self,
        relay: LocationRelay,
        manager: ConnectionManager,
        position_cache: PositionCache | None = None,
    ) -> None:
        self._relay = relay
        self._manager = manager
        self._position_cache = position_cache

        self._handlers: dict[str, Callable[[str, dict[str, Any]], Awaitable[None]]] = {
            InboundEvent.START_SHARING.value: self._on_start_sharing,
            InboundEvent.LOCATION_UPDATE.value: self._on_location_update,
            InboundEvent.TRACK_BUS.value: self._on_track,
            InboundEvent.UNTRACK_BUS.value: self._on_untrack,
            InboundEvent.STOP_SHARING.value: self._on_stop_sharing,
            InboundEvent.PING.value: self._on_ping,
        }

    async def dispatch_text(self, connection_id: str, text: str) -> None:
        """Обработать текстовый фрейм (JSON)."""
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            error = InvalidParameter("Сообщение не является корректным JSON")
            await self._manager.send_personal(
                connection_id, OutboundEvent.ERROR.value, error.to_payload()
            )
            return

        await self.dispatch(connection_id, message)

    async def dispatch(self, connection_id: str, message: Any) -> None:
        """Обработать одно сообщение клиента."""
        try:
            if not isinstance(message, dict):
                raise InvalidParameter("Сообщение должно быть JSON-объектом")

            event = normalize_event_name(message.get("event"))
            handler = self._handlers.get(event)
            if handler is None:
                raise UnknownEvent(f"Неизвестное событие: {message.get('event')!r}")

            data = message.get("data") or {}
            if not isinstance(data, dict):
                raise InvalidParameter("Поле data должно быть объектом")

            await handler(connection_id, data)

        except TrackingError as e:
            await log_info(
                f"Событие от {connection_id} отклонено: {e.code}: {e.message}",
                type_msg=TypeMsg.WARNING,
            )
            await self._manager.send_personal(
                connection_id, OutboundEvent.ERROR.value, e.to_payload()
            )

    async def on_disconnect(self, connection_id: str) -> None:
        """Обрыв подключения."""
        released = await self._relay.on_disconnect(connection_id)
        if self._position_cache is not None:
            for vehicle_id in released:
                await self._position_cache.remove(vehicle_id)

    # =========================================================================
    # ОБРАБОТЧИКИ
    # =========================================================================

    async def _on_start_sharing(self, connection_id: str, data: dict[str, Any]) -> None:
        driver_id = data.get("driverId")
        await self._relay.start_sharing(
            connection_id,
            _vehicle_id(data),
            str(driver_id) if driver_id is not None else None,
        )

    async def _on_location_update(self, connection_id: str, data: dict[str, Any]) -> None:
        sample = {**data, "vehicleId": _vehicle_id(data)}
        result: RelayResult = await self._relay.publish_location(connection_id, sample)

        if result.accepted and self._position_cache is not None:
            snapshot = self._relay.registry.snapshot(sample["vehicleId"])
            if snapshot is not None and snapshot.last_known_position is not None:
                await self._position_cache.store(snapshot.last_known_position)

    async def _on_track(self, connection_id: str, data: dict[str, Any]) -> None:
        vehicle_id = _vehicle_id(data)
        await self._relay.track(connection_id, vehicle_id)
        await self._manager.send_personal(
            connection_id,
            OutboundEvent.SUBSCRIBED.value,
            VehiclePayload(vehicle_id=vehicle_id).to_payload(),
        )

    async def _on_untrack(self, connection_id: str, data: dict[str, Any]) -> None:
        vehicle_id = _vehicle_id(data)
        await self._relay.untrack(connection_id, vehicle_id)
        await self._manager.send_personal(
            connection_id,
            OutboundEvent.UNSUBSCRIBED.value,
            VehiclePayload(vehicle_id=vehicle_id).to_payload(),
        )

    async def _on_stop_sharing(self, connection_id: str, data: dict[str, Any]) -> None:
        vehicle_id = _vehicle_id(data)
        if await self._relay.stop_sharing(connection_id, vehicle_id):
            if self._position_cache is not None:
                await self._position_cache.remove(vehicle_id)

    async def _on_ping(self, connection_id: str, data: dict[str, Any]) -> None:
        await self._manager.send_personal(connection_id, OutboundEvent.PONG.value, {})
