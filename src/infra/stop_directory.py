# src/infra/stop_directory.py
"""
Каталог остановок - фасад внешнего хранилища маршрутов и остановок.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Protocol

from src.infra.redis_client import RedisClient
from src.shared.models.tracking import DirectorySeed, Route, Stop


class StopDirectory(Protocol):
    """Чтение остановки по коду и маршрута транспорта."""

    async def get_stop(self, stop_code: str) -> Stop | None:
        ...

    async def get_vehicle_route(self, vehicle_id: str) -> Route | None:
        """Маршрут, за которым закреплён транспорт, или None если он неизвестен."""
        ...


def load_seed(path: Path) -> DirectorySeed:
    """
    Читает файл наполнения каталога.

    Raises:
        FileNotFoundError: файла нет
        pydantic.ValidationError: содержимое не соответствует DirectorySeed
    """
    if not path.exists():
        raise FileNotFoundError(f"Файл остановок не найден: {path}")
    return DirectorySeed.model_validate_json(path.read_text(encoding="utf-8"))


class InMemoryStopDirectory:
    """Каталог в памяти (разработка и тесты)."""

    def __init__(self, stops: Iterable[Stop] = (), routes: Iterable[Route] = ()) -> None:
        self._stops: dict[str, Stop] = {stop.stop_code: stop for stop in stops}
        self._vehicle_routes: dict[str, Route] = {}
        for route in routes:
            self._assign(route)

    @classmethod
    def from_seed(cls, seed: DirectorySeed) -> "InMemoryStopDirectory":
        return cls(seed.stops, seed.routes)

    def _assign(self, route: Route) -> None:
        for vehicle_id in route.vehicle_ids:
            self._vehicle_routes[vehicle_id] = route

    async def get_stop(self, stop_code: str) -> Stop | None:
        return self._stops.get(stop_code)

    async def put_stop(self, stop: Stop) -> None:
        self._stops[stop.stop_code] = stop

    async def get_vehicle_route(self, vehicle_id: str) -> Route | None:
        return self._vehicle_routes.get(vehicle_id)

    async def put_route(self, route: Route) -> None:
        self._assign(route)


class RedisStopDirectory:
    """
    Каталог остановок в Redis.

    - stop:<code> - JSON модели Stop
    - vehicle:route:<vehicle_id> - JSON модели Route, за которым закреплён транспорт

    Наполняется внешней CRUD-частью системы.
    """

    KEY_PREFIX = "stop:"
    VEHICLE_ROUTE_PREFIX = "vehicle:route:"

    def __init__(self, redis_client: RedisClient) -> None:
        self._redis = redis_client

    async def get_stop(self, stop_code: str) -> Stop | None:
        return await self._redis.get_model(f"{self.KEY_PREFIX}{stop_code}", Stop)

    async def put_stop(self, stop: Stop) -> None:
        await self._redis.set_model(f"{self.KEY_PREFIX}{stop.stop_code}", stop)

    async def get_vehicle_route(self, vehicle_id: str) -> Route | None:
        return await self._redis.get_model(f"{self.VEHICLE_ROUTE_PREFIX}{vehicle_id}", Route)

    async def put_route(self, route: Route) -> None:
        for vehicle_id in route.vehicle_ids:
            await self._redis.set_model(f"{self.VEHICLE_ROUTE_PREFIX}{vehicle_id}", route)
