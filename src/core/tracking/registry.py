# src/core/tracking/registry.py
"""
Реестр каналов транспорта.

Хранит для каждого транспорта издателя (подключение водителя),
множество подписчиков и последнюю известную позицию.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.common.constants import RejectReason, VehicleStatus
from src.core.tracking.errors import StaleSample, UnauthorizedPublisher
from src.core.tracking.locks import KeyedLock
from src.shared.models.tracking import PositionSample, VehicleSnapshot


@dataclass
class VehicleChannel:
    """Живое состояние транспорта. Не выходит за пределы реестра."""
    vehicle_id: str
    publisher_connection_id: str | None = None
    last_known_position: PositionSample | None = None
    subscriber_connection_ids: set[str] = field(default_factory=set)

    @property
    def is_online(self) -> bool:
        return self.publisher_connection_id is not None

    @property
    def is_empty(self) -> bool:
        return self.publisher_connection_id is None and not self.subscriber_connection_ids

    def snapshot(self) -> VehicleSnapshot:
        return VehicleSnapshot(
            vehicle_id=self.vehicle_id,
            status=VehicleStatus.ONLINE if self.is_online else VehicleStatus.OFFLINE,
            publisher_connection_id=self.publisher_connection_id,
            last_known_position=self.last_known_position,
            subscriber_count=len(self.subscriber_connection_ids),
        )


@dataclass(frozen=True)
class RecordResult:
    """Результат записи сэмпла."""
    accepted: bool
    subscribers: frozenset[str]
    reason: RejectReason | None = None
    claimed: bool = False  # канал занят этим сэмплом (авто-захват)


class SubscriptionRegistry:
    """
    Реестр подписок и издателей.

    Один экземпляр на процесс, передаётся обработчикам подключений.
    Операции над одним транспортом линеаризуемы (отдельный asyncio.Lock
    на транспорт). Внутри блокировки нет ожидания I/O.

    Если strict_publisher=True, сэмпл от подключения, не являющегося
    издателем занятого канала, отклоняется с UnauthorizedPublisher.
    """

    def __init__(self, strict_publisher: bool = False) -> None:
        self._strict_publisher = strict_publisher

        # vehicle_id -> VehicleChannel
        self._channels: dict[str, VehicleChannel] = {}

        # vehicle_id -> lock
        self._locks = KeyedLock()

        # connection_id -> vehicle_ids, где подключение издатель / подписчик
        self._published_by: dict[str, set[str]] = {}
        self._subscribed_by: dict[str, set[str]] = {}

        self._total_samples: int = 0
        self._rejected_samples: int = 0

    # =========================================================================
    # ВНУТРЕННИЕ
    # =========================================================================

    def _channel(self, vehicle_id: str) -> VehicleChannel:
        """Возвращает канал, создавая его при первом обращении."""
        channel = self._channels.get(vehicle_id)
        if channel is None:
            channel = self._channels[vehicle_id] = VehicleChannel(vehicle_id=vehicle_id)
        return channel

    def _drop_if_empty(self, channel: VehicleChannel) -> None:
        if channel.is_empty:
            self._channels.pop(channel.vehicle_id, None)

    def _set_publisher(self, channel: VehicleChannel, connection_id: str | None) -> None:
        previous = channel.publisher_connection_id
        if previous is not None:
            owned = self._published_by.get(previous)
            if owned is not None:
                owned.discard(channel.vehicle_id)
                if not owned:
                    del self._published_by[previous]

        channel.publisher_connection_id = connection_id
        if connection_id is not None:
            self._published_by.setdefault(connection_id, set()).add(channel.vehicle_id)

    def _remove_subscriber(self, channel: VehicleChannel, connection_id: str) -> None:
        channel.subscriber_connection_ids.discard(connection_id)
        vehicles = self._subscribed_by.get(connection_id)
        if vehicles is not None:
            vehicles.discard(channel.vehicle_id)
            if not vehicles:
                del self._subscribed_by[connection_id]

    # =========================================================================
    # ИЗДАТЕЛИ
    # =========================================================================

    async def claim_publisher(self, vehicle_id: str, connection_id: str) -> str | None:
        """
        Назначает издателя транспорта (последний записавший побеждает).

        Returns:
            Предыдущий издатель, если он был и отличается от нового
        """
        async with self._locks.hold(vehicle_id):
            channel = self._channel(vehicle_id)
            previous = channel.publisher_connection_id
            self._set_publisher(channel, connection_id)
            return previous if previous != connection_id else None

    async def release_publisher(self, connection_id: str) -> set[str]:
        """
        Снимает подключение с роли издателя во всех каналах.

        Возвращает только те транспорты, где подключение было издателем
        в момент снятия. Канал, уже перехваченный другим подключением,
        не затрагивается.
        """
        released: set[str] = set()

        for vehicle_id in list(self._published_by.get(connection_id, ())):
            if await self.release_vehicle(vehicle_id, connection_id):
                released.add(vehicle_id)

        return released

    async def release_vehicle(self, vehicle_id: str, connection_id: str) -> bool:
        """
        Снимает издателя одного транспорта, если им является connection_id.

        Returns:
            True если издатель был снят
        """
        async with self._locks.hold(vehicle_id):
            channel = self._channels.get(vehicle_id)
            if channel is None or channel.publisher_connection_id != connection_id:
                return False

            self._set_publisher(channel, None)
            self._drop_if_empty(channel)
            return True

    # =========================================================================
    # ПОДПИСЧИКИ
    # =========================================================================

    async def subscribe(self, vehicle_id: str, connection_id: str) -> None:
        """Подписывает подключение на транспорт (идемпотентно)."""
        async with self._locks.hold(vehicle_id):
            channel = self._channel(vehicle_id)
            channel.subscriber_connection_ids.add(connection_id)
            self._subscribed_by.setdefault(connection_id, set()).add(vehicle_id)

    async def unsubscribe(self, vehicle_id: str, connection_id: str) -> None:
        """Отписывает подключение от транспорта (идемпотентно)."""
        async with self._locks.hold(vehicle_id):
            channel = self._channels.get(vehicle_id)
            if channel is None:
                return
            self._remove_subscriber(channel, connection_id)
            self._drop_if_empty(channel)

    async def remove_subscriber_everywhere(self, connection_id: str) -> None:
        """Удаляет подключение из подписчиков всех каналов."""
        for vehicle_id in list(self._subscribed_by.get(connection_id, ())):
            await self.unsubscribe(vehicle_id, connection_id)

    # =========================================================================
    # ПОЗИЦИИ
    # =========================================================================

    async def record_sample(self, sample: PositionSample, connection_id: str) -> RecordResult:
        """
        Записывает сэмпл позиции.

        - Канала нет или нет издателя: подключение становится издателем.
        - Сэмпл старше сохранённой позиции: accepted=False, reason=stale,
          канал не захватывается.

        Returns:
            Флаг применения и снимок подписчиков для рассылки

        Raises:
            UnauthorizedPublisher: strict-режим и сэмпл не от издателя
        """
        async with self._locks.hold(sample.vehicle_id):
            channel = self._channel(sample.vehicle_id)
            self._total_samples += 1

            if (
                channel.publisher_connection_id is not None
                and channel.publisher_connection_id != connection_id
                and self._strict_publisher
            ):
                self._rejected_samples += 1
                raise UnauthorizedPublisher(
                    f"Подключение {connection_id} не является издателем {sample.vehicle_id}"
                )

            subscribers = frozenset(channel.subscriber_connection_ids)
            try:
                self._check_fresh(channel, sample)
            except StaleSample:
                self._rejected_samples += 1
                self._drop_if_empty(channel)
                return RecordResult(
                    accepted=False,
                    subscribers=subscribers,
                    reason=RejectReason.STALE,
                )

            # Захватывает канал только принятый сэмпл
            claimed = channel.publisher_connection_id is None
            if claimed:
                self._set_publisher(channel, connection_id)
            channel.last_known_position = sample

            return RecordResult(accepted=True, subscribers=subscribers, claimed=claimed)

    @staticmethod
    def _check_fresh(channel: VehicleChannel, sample: PositionSample) -> None:
        current = channel.last_known_position
        if current is not None and sample.timestamp < current.timestamp:
            raise StaleSample(
                f"Сэмпл {sample.timestamp.isoformat()} старше "
                f"{current.timestamp.isoformat()} для {channel.vehicle_id}"
            )

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    def is_online(self, vehicle_id: str) -> bool:
        """True, если у транспорта есть издатель."""
        channel = self._channels.get(vehicle_id)
        return channel is not None and channel.is_online

    def publisher_of(self, vehicle_id: str) -> str | None:
        channel = self._channels.get(vehicle_id)
        return channel.publisher_connection_id if channel else None

    def subscribers_of(self, vehicle_id: str) -> set[str]:
        channel = self._channels.get(vehicle_id)
        return set(channel.subscriber_connection_ids) if channel else set()

    def snapshot(self, vehicle_id: str) -> VehicleSnapshot | None:
        """Копия состояния канала или None, если канала нет."""
        channel = self._channels.get(vehicle_id)
        return channel.snapshot() if channel else None

    def online_vehicles(self) -> list[VehicleSnapshot]:
        """Снимки всех транспортов с издателем, по vehicle_id."""
        return [
            channel.snapshot()
            for vehicle_id, channel in sorted(self._channels.items())
            if channel.is_online
        ]

    def get_stats(self) -> dict[str, Any]:
        """Статистика реестра."""
        return {
            "channels": len(self._channels),
            "online_vehicles": sum(1 for c in self._channels.values() if c.is_online),
            "subscriptions": sum(len(c.subscriber_connection_ids) for c in self._channels.values()),
            "total_samples": self._total_samples,
            "rejected_samples": self._rejected_samples,
        }
