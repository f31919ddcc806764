# src/shared/models/tracking.py
"""
Модели отслеживания транспорта: координаты, сэмплы позиции,
остановки, снимки каналов и результаты ранжирования.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.common.constants import VehicleStatus
from src.core.tracking.errors import InvalidCoordinate, InvalidParameter


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_float(value: Any, field_name: str, error: type[Exception]) -> float:
    """Приводит значение к конечному float или бросает доменную ошибку."""
    if value is None or isinstance(value, bool):
        raise error(f"Поле {field_name} отсутствует или некорректно: {value!r}")
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise error(f"Поле {field_name} не является числом: {value!r}") from None
    if math.isnan(result) or math.isinf(result):
        raise error(f"Поле {field_name} не является конечным числом: {value!r}")
    return result


class CamelModel(BaseModel):
    """Базовая модель: сериализация в camelCase, как ждут клиенты."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_payload(self) -> dict[str, Any]:
        """JSON-совместимый словарь для отправки клиенту."""
        return self.model_dump(mode="json", by_alias=True)


class Coordinate(CamelModel):
    """Точка в десятичных градусах."""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    @classmethod
    def parse(cls, latitude: Any, longitude: Any) -> "Coordinate":
        """
        Создаёт координату из сырых значений.

        Raises:
            InvalidCoordinate: значение отсутствует, не число или вне диапазона
        """
        lat = _as_float(latitude, "latitude", InvalidCoordinate)
        lon = _as_float(longitude, "longitude", InvalidCoordinate)

        if not -90 <= lat <= 90:
            raise InvalidCoordinate(f"Широта вне диапазона [-90, 90]: {lat}")
        if not -180 <= lon <= 180:
            raise InvalidCoordinate(f"Долгота вне диапазона [-180, 180]: {lon}")

        return cls(latitude=lat, longitude=lon)


class PositionSample(CamelModel):
    """Неизменяемый сэмпл позиции транспорта."""

    vehicle_id: str
    location: Coordinate
    speed: float = Field(default=0.0, ge=0)  # км/ч
    heading: float | None = Field(default=None, ge=0, le=360)
    timestamp: datetime = Field(default_factory=_utcnow)

    @classmethod
    def create(
        cls,
        vehicle_id: str,
        latitude: Any,
        longitude: Any,
        speed: Any = None,
        heading: Any = None,
        timestamp: datetime | None = None,
    ) -> "PositionSample":
        """
        Валидирует сырые данные и создаёт сэмпл.

        Время проставляется в момент приёма, если не передано.
        Наивное время считается UTC.

        Raises:
            InvalidCoordinate: некорректные координаты
            InvalidParameter: некорректные vehicle_id, скорость или курс
        """
        if not vehicle_id:
            raise InvalidParameter("vehicleId обязателен")

        location = Coordinate.parse(latitude, longitude)

        speed_kmh = 0.0
        if speed is not None:
            speed_kmh = _as_float(speed, "speed", InvalidParameter)
            if speed_kmh < 0:
                raise InvalidParameter(f"Скорость не может быть отрицательной: {speed_kmh}")

        heading_deg = None
        if heading is not None:
            heading_deg = _as_float(heading, "heading", InvalidParameter)
            if not 0 <= heading_deg <= 360:
                raise InvalidParameter(f"Курс вне диапазона [0, 360]: {heading_deg}")

        if timestamp is None:
            timestamp = _utcnow()
        elif timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        return cls(
            vehicle_id=str(vehicle_id),
            location=location,
            speed=speed_kmh,
            heading=heading_deg,
            timestamp=timestamp,
        )


class Stop(CamelModel):
    """Остановка из внешнего хранилища (только чтение)."""

    stop_code: str
    location: Coordinate
    name: str = ""
    address: str | None = None
    is_active: bool = True


class Route(CamelModel):
    """Маршрут: упорядоченные коды остановок и закреплённый транспорт."""

    route_number: str
    name: str = ""
    stop_codes: tuple[str, ...] = ()
    vehicle_ids: tuple[str, ...] = ()
    is_active: bool = True


class DirectorySeed(CamelModel):
    """Начальное наполнение каталога остановок из JSON файла."""

    stops: list[Stop] = Field(default_factory=list)
    routes: list[Route] = Field(default_factory=list)


class VehicleSnapshot(CamelModel):
    """
    Копия состояния канала транспорта на момент чтения.

    route_stop_codes заполняется вызывающей стороной из внешнего
    хранилища маршрутов; реестр его не знает.
    """

    vehicle_id: str
    status: VehicleStatus = VehicleStatus.OFFLINE
    publisher_connection_id: str | None = None
    last_known_position: PositionSample | None = None
    subscriber_count: int = 0
    route_stop_codes: tuple[str, ...] | None = None


class RankedVehicle(CamelModel):
    """Транспорт с расстоянием и ETA относительно остановки."""

    vehicle_id: str
    distance_km: float
    eta_minutes: int
    last_known_position: PositionSample
    stop_index: int | None = None
    total_stops: int | None = None


# =============================================================================
# ИСХОДЯЩИЕ СОБЫТИЯ
# =============================================================================

class LocationUpdatePayload(CamelModel):
    """Полезная нагрузка события location-update."""

    vehicle_id: str
    location: Coordinate
    speed: float
    heading: float | None = None
    timestamp: datetime

    @classmethod
    def from_sample(cls, sample: PositionSample) -> "LocationUpdatePayload":
        return cls(
            vehicle_id=sample.vehicle_id,
            location=sample.location,
            speed=sample.speed,
            heading=sample.heading,
            timestamp=sample.timestamp,
        )


class VehiclePayload(CamelModel):
    """Полезная нагрузка событий offline и sharing-started."""

    vehicle_id: str
