# tests/services/test_event_dispatcher.py
"""
Тесты разбора входящих WebSocket событий (src/services/realtime_ws/handlers.py).
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.tracking.relay import LocationRelay
from src.services.realtime_ws.handlers import EventDispatcher, normalize_event_name


@pytest.fixture
def manager() -> MagicMock:
    """Мок менеджера соединений: нужен только send_personal."""
    manager = MagicMock()
    manager.send_personal = AsyncMock(return_value=True)
    return manager


@pytest.fixture
def position_cache() -> AsyncMock:
    cache = AsyncMock()
    cache.store = AsyncMock(return_value=True)
    cache.remove = AsyncMock(return_value=None)
    return cache


@pytest.fixture
def dispatcher(relay: LocationRelay, manager: MagicMock, position_cache: AsyncMock) -> EventDispatcher:
    return EventDispatcher(relay, manager, position_cache)


def _replies(manager: MagicMock, event: str) -> list[dict]:
    return [c.args[2] for c in manager.send_personal.await_args_list if c.args[1] == event]


class TestNormalizeEventName:
    """Тесты для normalize_event_name."""

    @pytest.mark.parametrize("raw, expected", [
        ("location-update", "location-update"),
        ("driver:location-update", "location-update"),
        ("passenger:track-bus", "track-bus"),
        ("bus:stop-sharing", "stop-sharing"),
        (None, ""),
        (42, ""),
    ])
    def test_normalize(self, raw: object, expected: str) -> None:
        assert normalize_event_name(raw) == expected


class TestDispatch:
    """Маршрутизация событий."""

    @pytest.mark.asyncio
    async def test_start_sharing(self, dispatcher: EventDispatcher, relay: LocationRelay, transport) -> None:
        """start-sharing делает подключение издателем."""
        await dispatcher.dispatch("D1", {
            "event": "start-sharing",
            "data": {"vehicleId": "BUS-1", "driverId": 7},
        })

        assert relay.registry.publisher_of("BUS-1") == "D1"
        assert transport.events_for("D1", "sharing-started") == [{"vehicleId": "BUS-1"}]

    @pytest.mark.asyncio
    async def test_legacy_location_update(
        self,
        dispatcher: EventDispatcher,
        relay: LocationRelay,
        transport,
        position_cache: AsyncMock,
    ) -> None:
        """driver:location-update со старым busId доходит до подписчиков и кэша."""
        await dispatcher.dispatch("S1", {"event": "passenger:track-bus", "data": {"busId": "BUS-1"}})

        await dispatcher.dispatch("D1", {
            "event": "driver:location-update",
            "data": {"busId": "BUS-1", "latitude": 50.45, "longitude": 30.52},
        })

        [payload] = transport.events_for("S1", "location-update")
        assert payload["vehicleId"] == "BUS-1"
        position_cache.store.assert_awaited_once()
        stored = position_cache.store.await_args.args[0]
        assert stored.vehicle_id == "BUS-1"

    @pytest.mark.asyncio
    async def test_track_and_untrack_confirmed(
        self, dispatcher: EventDispatcher, relay: LocationRelay, manager: MagicMock
    ) -> None:
        """track-bus / untrack-bus подтверждаются вызывающему."""
        await dispatcher.dispatch("S1", {"event": "track-bus", "data": {"vehicleId": "BUS-1"}})
        assert relay.registry.subscribers_of("BUS-1") == {"S1"}
        assert _replies(manager, "subscribed") == [{"vehicleId": "BUS-1"}]

        await dispatcher.dispatch("S1", {"event": "untrack-bus", "data": {"vehicleId": "BUS-1"}})
        assert relay.registry.subscribers_of("BUS-1") == set()
        assert _replies(manager, "unsubscribed") == [{"vehicleId": "BUS-1"}]

    @pytest.mark.asyncio
    async def test_stop_sharing_clears_cache(
        self, dispatcher: EventDispatcher, relay: LocationRelay, position_cache: AsyncMock
    ) -> None:
        """stop-sharing издателя убирает транспорт из кэша."""
        await dispatcher.dispatch("D1", {"event": "start-sharing", "data": {"vehicleId": "BUS-1"}})
        await dispatcher.dispatch("D1", {"event": "stop-sharing", "data": {"vehicleId": "BUS-1"}})

        assert relay.registry.is_online("BUS-1") is False
        position_cache.remove.assert_awaited_once_with("BUS-1")

    @pytest.mark.asyncio
    async def test_ping(self, dispatcher: EventDispatcher, manager: MagicMock) -> None:
        """ping -> pong."""
        await dispatcher.dispatch("C1", {"event": "ping"})
        assert _replies(manager, "pong") == [{}]


class TestErrors:
    """Ошибки уходят подключению событием error."""

    @pytest.mark.asyncio
    async def test_invalid_coordinate(self, dispatcher: EventDispatcher, manager: MagicMock) -> None:
        """Широта вне диапазона -> error InvalidCoordinate."""
        await dispatcher.dispatch("D1", {
            "event": "location-update",
            "data": {"vehicleId": "BUS-1", "latitude": 95, "longitude": 30.5},
        })

        [error] = _replies(manager, "error")
        assert error["code"] == "InvalidCoordinate"
        assert error["message"]

    @pytest.mark.asyncio
    async def test_unknown_event(self, dispatcher: EventDispatcher, manager: MagicMock) -> None:
        """Неизвестное событие -> error UnknownEvent."""
        await dispatcher.dispatch("C1", {"event": "teleport", "data": {}})
        assert _replies(manager, "error")[0]["code"] == "UnknownEvent"

    @pytest.mark.asyncio
    async def test_missing_vehicle_id(self, dispatcher: EventDispatcher, manager: MagicMock) -> None:
        """Нет vehicleId -> error InvalidParameter."""
        await dispatcher.dispatch("C1", {"event": "track-bus", "data": {}})
        assert _replies(manager, "error")[0]["code"] == "InvalidParameter"

    @pytest.mark.parametrize("message", [
        ["not", "an", "object"],
        {"event": "track-bus", "data": "BUS-1"},
    ])
    @pytest.mark.asyncio
    async def test_malformed_message(
        self, dispatcher: EventDispatcher, manager: MagicMock, message: object
    ) -> None:
        """Сообщение не-объект или data не-объект -> InvalidParameter."""
        await dispatcher.dispatch("C1", message)
        assert _replies(manager, "error")[0]["code"] == "InvalidParameter"

    @pytest.mark.asyncio
    async def test_invalid_json(self, dispatcher: EventDispatcher, manager: MagicMock) -> None:
        """Невалидный JSON -> error, соединение не рвётся."""
        await dispatcher.dispatch_text("C1", "{not json")
        assert _replies(manager, "error")[0]["code"] == "InvalidParameter"

    @pytest.mark.asyncio
    async def test_strict_publisher_error(self, manager: MagicMock, transport) -> None:
        """strict-режим: чужой сэмпл -> error UnauthorizedPublisher."""
        from src.core.tracking.registry import SubscriptionRegistry

        relay = LocationRelay(SubscriptionRegistry(strict_publisher=True), transport)
        dispatcher = EventDispatcher(relay, manager)
        await dispatcher.dispatch("D1", {"event": "start-sharing", "data": {"vehicleId": "BUS-1"}})

        await dispatcher.dispatch("D2", {
            "event": "location-update",
            "data": {"vehicleId": "BUS-1", "latitude": 50.0, "longitude": 30.0},
        })

        assert _replies(manager, "error")[0]["code"] == "UnauthorizedPublisher"


class TestOnDisconnect:
    """Обрыв подключения."""

    @pytest.mark.asyncio
    async def test_disconnect_releases_and_clears_cache(
        self,
        dispatcher: EventDispatcher,
        relay: LocationRelay,
        transport,
        position_cache: AsyncMock,
    ) -> None:
        """Транспорт уходит offline и удаляется из кэша."""
        await dispatcher.dispatch("S1", {"event": "track-bus", "data": {"vehicleId": "BUS-1"}})
        await dispatcher.dispatch("D1", {"event": "start-sharing", "data": {"vehicleId": "BUS-1"}})

        await dispatcher.on_disconnect("D1")

        assert transport.events_for("S1", "offline") == [{"vehicleId": "BUS-1"}]
        position_cache.remove.assert_awaited_once_with("BUS-1")

    @pytest.mark.asyncio
    async def test_disconnect_without_cache(self, relay: LocationRelay, manager: MagicMock) -> None:
        """Без кэша обрыв обрабатывается так же."""
        dispatcher = EventDispatcher(relay, manager)
        await relay.start_sharing("D1", "BUS-1")

        await dispatcher.on_disconnect("D1")

        assert relay.registry.is_online("BUS-1") is False
