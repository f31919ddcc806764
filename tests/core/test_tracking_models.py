# tests/core/test_tracking_models.py
"""
Тесты моделей отслеживания (src/shared/models/tracking.py).
"""

from __future__ import annotations

import math
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from src.common.constants import VehicleStatus
from src.core.tracking.errors import InvalidCoordinate, InvalidParameter
from src.shared.models.tracking import (
    Coordinate,
    LocationUpdatePayload,
    PositionSample,
    Stop,
    VehiclePayload,
    VehicleSnapshot,
)


class TestCoordinate:
    """Тесты для Coordinate.parse."""

    def test_parse_valid(self) -> None:
        """Корректные значения принимаются."""
        coord = Coordinate.parse(50.45, 30.52)

        assert coord.latitude == 50.45
        assert coord.longitude == 30.52

    def test_parse_numeric_strings(self) -> None:
        """Числа в строках приводятся к float."""
        coord = Coordinate.parse("50.45", "30.52")
        assert coord.latitude == pytest.approx(50.45)

    @pytest.mark.parametrize("lat, lon", [
        (90, 180),
        (-90, -180),
        (0, 0),
    ])
    def test_parse_boundaries(self, lat: float, lon: float) -> None:
        """Границы диапазона включительно."""
        coord = Coordinate.parse(lat, lon)
        assert (coord.latitude, coord.longitude) == (lat, lon)

    @pytest.mark.parametrize("lat, lon", [
        (95, 0),
        (-90.0001, 0),
        (0, 180.5),
        (0, -181),
        (None, 30.5),
        (50.4, None),
        ("abc", 30.5),
        (True, 30.5),
        (math.nan, 30.5),
        (50.4, math.inf),
    ])
    def test_parse_invalid(self, lat: object, lon: object) -> None:
        """Отсутствующие, нечисловые и вне диапазона значения отклоняются."""
        with pytest.raises(InvalidCoordinate):
            Coordinate.parse(lat, lon)

    def test_model_validation_still_applies(self) -> None:
        """Прямое создание модели тоже проверяет диапазон."""
        with pytest.raises(ValidationError):
            Coordinate(latitude=91, longitude=0)

    def test_frozen(self) -> None:
        """Координата неизменяема."""
        coord = Coordinate(latitude=1, longitude=2)
        with pytest.raises(ValidationError):
            coord.latitude = 5


class TestPositionSample:
    """Тесты для PositionSample.create."""

    def test_create_defaults(self) -> None:
        """Скорость по умолчанию 0, курс None, время проставляется."""
        before = datetime.now(timezone.utc)
        sample = PositionSample.create("BUS-1", 50.45, 30.52)

        assert sample.vehicle_id == "BUS-1"
        assert sample.speed == 0.0
        assert sample.heading is None
        assert sample.timestamp >= before
        assert sample.timestamp.tzinfo is not None

    def test_naive_timestamp_is_utc(self) -> None:
        """Наивное время считается UTC."""
        sample = PositionSample.create(
            "BUS-1", 50.45, 30.52, timestamp=datetime(2024, 1, 1, 12, 0, 0)
        )
        assert sample.timestamp == datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def test_vehicle_id_coerced_to_str(self) -> None:
        """Числовой идентификатор превращается в строку."""
        sample = PositionSample.create(42, 50.45, 30.52)
        assert sample.vehicle_id == "42"

    def test_empty_vehicle_id_rejected(self) -> None:
        """Пустой vehicle_id отклоняется."""
        with pytest.raises(InvalidParameter):
            PositionSample.create("", 50.45, 30.52)

    def test_invalid_coordinate_rejected(self) -> None:
        """Широта вне диапазона даёт InvalidCoordinate."""
        with pytest.raises(InvalidCoordinate):
            PositionSample.create("BUS-1", 95, 30.52)

    def test_negative_speed_rejected(self) -> None:
        """Отрицательная скорость отклоняется."""
        with pytest.raises(InvalidParameter):
            PositionSample.create("BUS-1", 50.45, 30.52, speed=-1)

    @pytest.mark.parametrize("heading", [-1, 360.5, "north"])
    def test_invalid_heading_rejected(self, heading: object) -> None:
        """Курс вне [0, 360] или не число отклоняется."""
        with pytest.raises(InvalidParameter):
            PositionSample.create("BUS-1", 50.45, 30.52, heading=heading)

    def test_payload_is_camel_case(self) -> None:
        """Сериализация для клиента в camelCase."""
        sample = PositionSample.create("BUS-1", 50.45, 30.52, speed=12.5, heading=90)
        payload = sample.to_payload()

        assert payload["vehicleId"] == "BUS-1"
        assert payload["location"] == {"latitude": 50.45, "longitude": 30.52}
        assert payload["speed"] == 12.5
        assert payload["heading"] == 90
        assert isinstance(payload["timestamp"], str)


class TestPayloads:
    """Тесты исходящих полезных нагрузок."""

    def test_location_update_from_sample(self) -> None:
        """location-update несёт vehicleId, координаты, скорость, курс и время."""
        sample = PositionSample.create("BUS-1", 50.45, 30.52, speed=20)
        payload = LocationUpdatePayload.from_sample(sample).to_payload()

        assert set(payload) == {"vehicleId", "location", "speed", "heading", "timestamp"}
        assert payload["vehicleId"] == "BUS-1"
        assert payload["speed"] == 20

    def test_vehicle_payload(self) -> None:
        """offline / sharing-started несут только vehicleId."""
        assert VehiclePayload(vehicle_id="BUS-1").to_payload() == {"vehicleId": "BUS-1"}

    def test_stop_accepts_camel_case(self) -> None:
        """Остановка читается из JSON хранилища в camelCase."""
        stop = Stop.model_validate({
            "stopCode": "S-1",
            "location": {"latitude": 1, "longitude": 2},
            "isActive": False,
        })

        assert stop.stop_code == "S-1"
        assert stop.is_active is False
        assert stop.name == ""

    def test_snapshot_defaults(self) -> None:
        """Снимок по умолчанию offline и без позиции."""
        snapshot = VehicleSnapshot(vehicle_id="BUS-1")

        assert snapshot.status == VehicleStatus.OFFLINE
        assert snapshot.last_known_position is None
        assert snapshot.subscriber_count == 0
