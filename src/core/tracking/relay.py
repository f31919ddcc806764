# src/core/tracking/relay.py
"""
Ретранслятор геолокации.

Принимает координаты от издателя, обновляет реестр и рассылает
обновление всем подписчикам транспорта. Также обрабатывает начало и
конец трансляции и обрыв подключения.

Рассылка best-effort: без подтверждений и повторов. Ошибка доставки
одному подписчику логируется и не мешает остальным.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, Protocol

from src.common.constants import OutboundEvent, RejectReason, TypeMsg
from src.common.logger import log_info, log_warning
from src.core.tracking.errors import UnauthorizedPublisher
from src.core.tracking.registry import SubscriptionRegistry
from src.shared.models.tracking import (
    Coordinate,
    LocationUpdatePayload,
    PositionSample,
    VehiclePayload,
)


LOGGER_NAME = "bus_tracker.relay"

# (vehicle_id, driver_id) -> закреплён ли водитель за транспортом
AssignmentChecker = Callable[[str, str | None], Awaitable[bool]]


class Transport(Protocol):
    """Единственный примитив транспортного слоя, нужный ретранслятору."""

    async def send_to(self, connection_id: str, event: str, payload: dict[str, Any]) -> None:
        """Отправить событие подключению. Бросает исключение при неудаче."""
        ...


@dataclass(frozen=True)
class RelayResult:
    """Результат публикации координат."""
    accepted: bool
    delivered: frozenset[str] = field(default_factory=frozenset)
    failed: frozenset[str] = field(default_factory=frozenset)
    reason: RejectReason | None = None


class LocationRelay:
    """
    Ретрансляция координат и жизненный цикл подключений.

    Сначала меняется состояние реестра, затем (без удержания блокировок)
    идёт рассылка.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        transport: Transport,
        send_timeout: float = 5.0,
        assignment_checker: AssignmentChecker | None = None,
    ) -> None:
        """
        Args:
            registry: Реестр каналов (общий на процесс)
            transport: Отправка событий подключениям
            send_timeout: Таймаут отправки одному подключению, секунды
            assignment_checker: Проверка закрепления водителя за транспортом.
                Если задана, start_sharing без закрепления отклоняется.
        """
        self._registry = registry
        self._transport = transport
        self._send_timeout = send_timeout
        self._assignment_checker = assignment_checker

        self._total_published: int = 0
        self._total_delivered: int = 0
        self._total_failed: int = 0

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    # =========================================================================
    # ИЗДАТЕЛЬ
    # =========================================================================

    async def start_sharing(
        self,
        connection_id: str,
        vehicle_id: str,
        driver_id: str | None = None,
    ) -> None:
        """
        Водитель начинает трансляцию: подключение становится издателем.
        Подтверждение sharing-started уходит только вызывающему.

        Raises:
            UnauthorizedPublisher: водитель не закреплён за транспортом
        """
        if self._assignment_checker is not None:
            if not await self._assignment_checker(vehicle_id, driver_id):
                raise UnauthorizedPublisher(
                    f"Водитель {driver_id} не закреплён за транспортом {vehicle_id}"
                )

        previous = await self._registry.claim_publisher(vehicle_id, connection_id)
        if previous is not None:
            await log_warning(
                f"Издатель {vehicle_id} заменён: {previous} -> {connection_id}",
                logger_name=LOGGER_NAME,
            )

        await log_info(
            f"Водитель {driver_id} начал трансляцию {vehicle_id} ({connection_id})",
            logger_name=LOGGER_NAME,
        )

        await self._fan_out(
            [connection_id],
            OutboundEvent.SHARING_STARTED,
            VehiclePayload(vehicle_id=vehicle_id).to_payload(),
        )

    async def publish_location(
        self,
        connection_id: str,
        sample: PositionSample | Mapping[str, Any],
    ) -> RelayResult:
        """
        Публикует координаты и рассылает location-update подписчикам.

        sample может быть готовым PositionSample или сырым словарём
        {vehicleId, latitude, longitude, speed?, heading?}. Для словаря
        время всегда проставляется в момент приёма, поле timestamp
        клиента игнорируется.

        Raises:
            InvalidCoordinate: координаты некорректны (состояние не меняется)
            InvalidParameter: некорректные vehicleId/скорость/курс
            UnauthorizedPublisher: strict-режим и отправитель не издатель
        """
        sample = self._validate(sample)

        record = await self._registry.record_sample(sample, connection_id)
        if record.claimed:
            await log_info(
                f"Транспорт {sample.vehicle_id} занят первым сэмплом от {connection_id}",
                logger_name=LOGGER_NAME,
            )

        if not record.accepted:
            await log_info(
                f"Сэмпл {sample.vehicle_id} отброшен ({record.reason.value if record.reason else '-'})",
                type_msg=TypeMsg.DEBUG,
                logger_name=LOGGER_NAME,
            )
            return RelayResult(accepted=False, reason=record.reason)

        self._total_published += 1

        delivered, failed = await self._fan_out(
            record.subscribers,
            OutboundEvent.LOCATION_UPDATE,
            LocationUpdatePayload.from_sample(sample).to_payload(),
        )
        return RelayResult(accepted=True, delivered=delivered, failed=failed)

    async def stop_sharing(self, connection_id: str, vehicle_id: str) -> bool:
        """
        Водитель завершает трансляцию.

        Returns:
            True если подключение было издателем и транспорт ушёл offline
        """
        if not await self._registry.release_vehicle(vehicle_id, connection_id):
            await log_info(
                f"stop-sharing {vehicle_id} от {connection_id} проигнорирован: не издатель",
                type_msg=TypeMsg.DEBUG,
                logger_name=LOGGER_NAME,
            )
            return False

        await log_info(f"Транспорт {vehicle_id} offline", logger_name=LOGGER_NAME)
        await self._emit_offline(vehicle_id)
        return True

    # =========================================================================
    # ПОДПИСЧИК
    # =========================================================================

    async def track(self, connection_id: str, vehicle_id: str) -> None:
        """Пассажир начинает отслеживать транспорт."""
        await self._registry.subscribe(vehicle_id, connection_id)
        await log_info(
            f"Подключение {connection_id} отслеживает {vehicle_id}",
            type_msg=TypeMsg.DEBUG,
            logger_name=LOGGER_NAME,
        )

    async def untrack(self, connection_id: str, vehicle_id: str) -> None:
        """Пассажир прекращает отслеживание."""
        await self._registry.unsubscribe(vehicle_id, connection_id)

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    async def on_disconnect(self, connection_id: str) -> set[str]:
        """
        Обрыв подключения: все его транспорты уходят offline,
        подписки удаляются. Повторный вызов ничего не делает.

        Returns:
            Транспорты, для которых подключение было издателем
        """
        released = await self._registry.release_publisher(connection_id)

        for vehicle_id in sorted(released):
            await log_info(
                f"Транспорт {vehicle_id} offline (водитель отключился)",
                logger_name=LOGGER_NAME,
            )
            await self._emit_offline(vehicle_id)

        await self._registry.remove_subscriber_everywhere(connection_id)
        return released

    def get_stats(self) -> dict[str, Any]:
        """Статистика ретранслятора."""
        return {
            "total_published": self._total_published,
            "total_delivered": self._total_delivered,
            "total_failed": self._total_failed,
        }

    # =========================================================================
    # ВНУТРЕННИЕ
    # =========================================================================

    @staticmethod
    def _validate(sample: PositionSample | Mapping[str, Any]) -> PositionSample:
        if isinstance(sample, PositionSample):
            # Модель могла быть собрана через model_construct в обход валидации
            Coordinate.parse(sample.location.latitude, sample.location.longitude)
            return sample

        return PositionSample.create(
            vehicle_id=sample.get("vehicleId") or sample.get("vehicle_id"),
            latitude=sample.get("latitude"),
            longitude=sample.get("longitude"),
            speed=sample.get("speed"),
            heading=sample.get("heading"),
        )

    async def _emit_offline(self, vehicle_id: str) -> None:
        # Новый издатель успел занять канал: offline уже неактуален
        if self._registry.is_online(vehicle_id):
            await log_info(
                f"offline для {vehicle_id} пропущен: канал занят новым издателем",
                type_msg=TypeMsg.DEBUG,
                logger_name=LOGGER_NAME,
            )
            return

        await self._fan_out(
            self._registry.subscribers_of(vehicle_id),
            OutboundEvent.OFFLINE,
            VehiclePayload(vehicle_id=vehicle_id).to_payload(),
        )

    async def _fan_out(
        self,
        connection_ids: Iterable[str],
        event: OutboundEvent,
        payload: dict[str, Any],
    ) -> tuple[frozenset[str], frozenset[str]]:
        """
        Параллельно отправляет событие подключениям.

        Returns:
            (доставлено, не доставлено)
        """
        targets = sorted(connection_ids)
        if not targets:
            return frozenset(), frozenset()

        results = await asyncio.gather(
            *(self._send(connection_id, event, payload) for connection_id in targets),
            return_exceptions=True,
        )

        delivered: set[str] = set()
        failed: set[str] = set()
        for connection_id, result in zip(targets, results):
            if isinstance(result, BaseException):
                failed.add(connection_id)
                await log_warning(
                    f"Не удалось доставить {event.value} подключению {connection_id}: {result!r}",
                    logger_name=LOGGER_NAME,
                    extra={"connection_id": connection_id, "event": event.value},
                )
            else:
                delivered.add(connection_id)

        self._total_delivered += len(delivered)
        self._total_failed += len(failed)
        return frozenset(delivered), frozenset(failed)

    async def _send(self, connection_id: str, event: OutboundEvent, payload: dict[str, Any]) -> None:
        await asyncio.wait_for(
            self._transport.send_to(connection_id, event.value, payload),
            timeout=self._send_timeout,
        )
