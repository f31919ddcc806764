# src/core/geo/distance.py
"""
Расстояние по формуле Haversine и оценка времени прибытия.
"""

from __future__ import annotations

import math

from src.common.constants import DEFAULT_AVERAGE_SPEED_KMH, EARTH_RADIUS_KM
from src.core.tracking.errors import InvalidParameter
from src.shared.models.tracking import Coordinate


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """
    Вычисляет расстояние между двумя точками (в км) по формуле Haversine.
    """
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = math.radians(b.latitude - a.latitude)
    dlon = math.radians(b.longitude - a.longitude)

    h = (math.sin(dlat / 2) ** 2 +
         math.cos(lat1) * math.cos(lat2) *
         math.sin(dlon / 2) ** 2)

    # min() отсекает h > 1 из-за погрешности для антиподов
    c = 2 * math.asin(math.sqrt(min(1.0, h)))

    return EARTH_RADIUS_KM * c


def eta_minutes(
    distance: float,
    average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH,
) -> int:
    """
    Время в пути (минуты) при заданной средней скорости.

    Raises:
        InvalidParameter: средняя скорость не положительна
    """
    if not average_speed_kmh > 0:
        raise InvalidParameter(
            f"Средняя скорость должна быть положительной: {average_speed_kmh}"
        )

    return round(distance / average_speed_kmh * 60)
