# src/core/tracking/ranker.py
"""
Ранжирование транспорта по удалённости от остановки.
"""

from __future__ import annotations

from typing import Iterable

from src.common.constants import DEFAULT_AVERAGE_SPEED_KMH
from src.core.geo.distance import distance_km, eta_minutes
from src.shared.models.tracking import RankedVehicle, Stop, VehicleSnapshot


def rank_vehicles_near_stop(
    stop: Stop,
    candidates: Iterable[VehicleSnapshot],
    average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH,
) -> list[RankedVehicle]:
    """
    Считает расстояние и ETA от каждого транспорта до остановки.

    Транспорт без последней позиции пропускается. Сортировка по
    расстоянию, при равенстве по vehicle_id. Список не обрезается.

    Если у кандидата задан route_stop_codes, в результат попадают
    индекс остановки на маршруте (-1, если её там нет) и число остановок.

    Raises:
        InvalidParameter: средняя скорость не положительна
    """
    ranked: list[RankedVehicle] = []

    for vehicle in candidates:
        position = vehicle.last_known_position
        if position is None:
            continue

        distance = distance_km(stop.location, position.location)

        stop_index = total_stops = None
        if vehicle.route_stop_codes is not None:
            codes = vehicle.route_stop_codes
            stop_index = codes.index(stop.stop_code) if stop.stop_code in codes else -1
            total_stops = len(codes)

        ranked.append(RankedVehicle(
            vehicle_id=vehicle.vehicle_id,
            distance_km=round(distance, 2),
            eta_minutes=eta_minutes(distance, average_speed_kmh),
            last_known_position=position,
            stop_index=stop_index,
            total_stops=total_stops,
        ))

    ranked.sort(key=lambda item: (item.distance_km, item.vehicle_id))
    return ranked
