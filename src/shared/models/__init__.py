# src/shared/models/__init__.py
"""
Общие Pydantic-модели.
"""

from src.shared.models.common import HealthStatus
from src.shared.models.tracking import (
    Coordinate,
    LocationUpdatePayload,
    PositionSample,
    RankedVehicle,
    Route,
    Stop,
    VehicleSnapshot,
    VehiclePayload,
)

__all__ = [
    "HealthStatus",
    "Coordinate",
    "LocationUpdatePayload",
    "PositionSample",
    "RankedVehicle",
    "Route",
    "Stop",
    "VehicleSnapshot",
    "VehiclePayload",
]
