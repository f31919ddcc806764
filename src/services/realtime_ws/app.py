# src/services/realtime_ws/app.py
"""
FastAPI приложение для отслеживания транспорта в реальном времени.

WebSocket endpoints:
- /ws - водители публикуют координаты, пассажиры подписываются

REST endpoints:
- GET /health - проверка здоровья
- GET /stats - статистика соединений и реестра
- GET /api/v1/vehicles/active - транспорт онлайн
- GET /api/v1/vehicles/{vehicle_id} - состояние транспорта
- GET /api/v1/stops/{stop_code}/nearest-vehicles - ближайший транспорт к остановке
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from src.common.constants import VehicleStatus
from src.common.logger import get_logger, log_error, log_info, setup_logging
from src.core.tracking.ranker import rank_vehicles_near_stop
from src.core.tracking.registry import SubscriptionRegistry
from src.core.tracking.relay import AssignmentChecker, LocationRelay
from src.infra.redis_client import RedisClient
from src.infra.stop_directory import (
    InMemoryStopDirectory,
    RedisStopDirectory,
    StopDirectory,
    load_seed,
)
from src.services.realtime_location.service import PositionCache
from src.services.realtime_ws.connection_manager import ConnectionManager
from src.services.realtime_ws.handlers import EventDispatcher
from src.shared.models.common import HealthStatus
from src.shared.models.tracking import RankedVehicle, Stop, VehicleSnapshot


SERVICE_NAME = "bus_tracking_gateway"


# === MODELS ===

class StatsResponse(BaseModel):
    """Статистика сервиса."""
    connections: dict[str, Any]
    registry: dict[str, Any]
    relay: dict[str, Any]


class ActiveVehiclesResponse(BaseModel):
    """Транспорт онлайн."""
    count: int
    vehicles: list[dict[str, Any]]


class NearestVehiclesResponse(BaseModel):
    """Ближайший транспорт к остановке."""
    stop: dict[str, Any]
    vehicles: list[dict[str, Any]]
    count: int


# === GATEWAY ===

@dataclass
class TrackingGateway:
    """Всё состояние процесса, общее для обработчиков подключений."""
    manager: ConnectionManager
    registry: SubscriptionRegistry
    relay: LocationRelay
    dispatcher: EventDispatcher
    stop_directory: StopDirectory
    average_speed_kmh: float
    redis: RedisClient | None = None
    position_cache: PositionCache | None = None
    started_at: float = 0.0


def build_gateway(
    stop_directory: StopDirectory | None = None,
    redis_client: RedisClient | None = None,
    assignment_checker: AssignmentChecker | None = None,
    strict_publisher: bool | None = None,
    average_speed_kmh: float | None = None,
    send_timeout: float | None = None,
    last_seen_ttl: int | None = None,
    stops_file: Path | None = None,
) -> TrackingGateway:
    """
    Собирает реестр, ретранслятор и диспетчер.
    Параметры по умолчанию берутся из конфига.

    Без Redis и явного stop_directory каталог остановок и маршрутов
    заполняется из stops_file (по умолчанию directory.STOPS_FILE).
    """
    from src.config import settings

    manager = ConnectionManager()
    registry = SubscriptionRegistry(
        strict_publisher=(
            settings.tracking.STRICT_PUBLISHER if strict_publisher is None else strict_publisher
        ),
    )
    relay = LocationRelay(
        registry,
        manager,
        send_timeout=send_timeout or settings.tracking.SEND_TIMEOUT_SECONDS,
        assignment_checker=assignment_checker,
    )

    position_cache = None
    if redis_client is not None:
        position_cache = PositionCache(
            redis_client,
            last_seen_ttl=last_seen_ttl or settings.redis.LAST_SEEN_TTL,
        )
        if stop_directory is None:
            stop_directory = RedisStopDirectory(redis_client)

    if stop_directory is None:
        stop_directory = _seeded_directory(stops_file or settings.directory.stops_path)

    return TrackingGateway(
        manager=manager,
        registry=registry,
        relay=relay,
        dispatcher=EventDispatcher(relay, manager, position_cache),
        stop_directory=stop_directory,
        average_speed_kmh=average_speed_kmh or settings.tracking.AVERAGE_SPEED_KMH,
        redis=redis_client,
        position_cache=position_cache,
        started_at=time.monotonic(),
    )


def _seeded_directory(path: Path) -> InMemoryStopDirectory:
    """Каталог в памяти из файла наполнения; без файла - пустой."""
    if not path.exists():
        get_logger().warning(f"Файл остановок {path} не найден, каталог остановок пуст")
        return InMemoryStopDirectory()

    seed = load_seed(path)
    get_logger().info(
        f"Каталог остановок загружен из {path}: "
        f"{len(seed.stops)} остановок, {len(seed.routes)} маршрутов"
    )
    return InMemoryStopDirectory.from_seed(seed)


def get_gateway(app: FastAPI) -> TrackingGateway:
    """Получить состояние приложения."""
    gateway = getattr(app.state, "gateway", None)
    if gateway is None:
        raise RuntimeError("Gateway not initialized")
    return gateway


# === APP FACTORY ===

def create_app(gateway: TrackingGateway | None = None) -> FastAPI:
    """
    Создаёт приложение.

    Если gateway не передан, он собирается при старте; при
    REDIS_ENABLED=true подключается Redis.
    """
    from src.config import settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Жизненный цикл приложения."""
        setup_logging()
        redis_client: RedisClient | None = None

        if gateway is not None:
            app.state.gateway = gateway
        else:
            if settings.redis.ENABLED:
                redis_client = RedisClient(namespace=settings.redis.REDIS_NAMESPACE)
                await redis_client.connect(
                    settings.redis.url,
                    max_connections=settings.redis.REDIS_MAX_CONNECTIONS,
                )
            app.state.gateway = build_gateway(redis_client=redis_client)

        await log_info(f"{SERVICE_NAME} v{settings.system.VERSION} запущен")

        yield

        if redis_client is not None:
            await redis_client.disconnect()
        await log_info(f"{SERVICE_NAME} остановлен")

    app = FastAPI(
        title="Bus Tracking Gateway",
        description="Трансляция координат транспорта и ближайший транспорт к остановке.",
        version=settings.system.VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:

    # === HEALTH CHECK ===

    @app.get("/health", response_model=HealthStatus, tags=["Health"])
    async def health_check(request: Request) -> HealthStatus:
        """Проверка здоровья сервиса."""
        gateway = get_gateway(request.app)
        dependencies: dict[str, str] = {}
        status = "healthy"

        if gateway.redis is not None:
            redis_ok = await gateway.redis.health_check()
            dependencies["redis"] = "healthy" if redis_ok else "unhealthy"
            if not redis_ok:
                status = "degraded"

        return HealthStatus(
            service=SERVICE_NAME,
            status=status,
            version=app.version,
            uptime_seconds=round(time.monotonic() - gateway.started_at, 3),
            dependencies=dependencies,
        )

    # === STATS ===

    @app.get("/stats", response_model=StatsResponse, tags=["Stats"])
    async def get_stats(request: Request) -> StatsResponse:
        """Статистика соединений, реестра и рассылки."""
        gateway = get_gateway(request.app)
        return StatsResponse(
            connections=gateway.manager.get_stats(),
            registry=gateway.registry.get_stats(),
            relay=gateway.relay.get_stats(),
        )

    # === VEHICLES ===

    @app.get("/api/v1/vehicles/active", response_model=ActiveVehiclesResponse, tags=["Vehicles"])
    async def get_active_vehicles(request: Request) -> ActiveVehiclesResponse:
        """Транспорт, для которого сейчас есть издатель."""
        vehicles = get_gateway(request.app).registry.online_vehicles()
        return ActiveVehiclesResponse(
            count=len(vehicles),
            vehicles=[_public_snapshot(v) for v in vehicles],
        )

    @app.get(
        "/api/v1/vehicles/{vehicle_id}",
        responses={404: {"description": "Транспорт не найден"}},
        tags=["Vehicles"],
    )
    async def get_vehicle(vehicle_id: str, request: Request) -> dict[str, Any]:
        """
        Состояние канала транспорта.

        Если канала нет, отдаётся последняя позиция из кэша Redis
        (например, после перезапуска) со статусом offline.
        """
        gateway = get_gateway(request.app)
        snapshot = gateway.registry.snapshot(vehicle_id)
        if snapshot is None and gateway.position_cache is not None:
            last_seen = await gateway.position_cache.get_last_seen(vehicle_id)
            if last_seen is not None:
                snapshot = VehicleSnapshot(
                    vehicle_id=vehicle_id,
                    status=VehicleStatus.OFFLINE,
                    last_known_position=last_seen,
                )
        if snapshot is None:
            raise HTTPException(status_code=404, detail="Транспорт не найден")
        return _public_snapshot(snapshot)

    # === STOPS ===

    @app.get(
        "/api/v1/stops/{stop_code}/nearest-vehicles",
        response_model=NearestVehiclesResponse,
        responses={404: {"description": "Остановка не найдена"}},
        tags=["Stops"],
    )
    async def get_nearest_vehicles(
        stop_code: str,
        request: Request,
        average_speed_kmh: float | None = Query(default=None, gt=0, le=200),
    ) -> NearestVehiclesResponse:
        """
        Транспорт онлайн, отсортированный по расстоянию до остановки.

        Используется после сканирования QR-кода остановки. Транспорт с
        известным маршрутом, на котором нет этой остановки, исключается.
        """
        gateway = get_gateway(request.app)
        stop: Stop | None = await gateway.stop_directory.get_stop(stop_code)
        if stop is None or not stop.is_active:
            raise HTTPException(status_code=404, detail="Остановка не найдена")

        ranked: list[RankedVehicle] = rank_vehicles_near_stop(
            stop,
            await _with_routes(gateway.stop_directory, gateway.registry.online_vehicles()),
            average_speed_kmh or gateway.average_speed_kmh,
        )
        ranked = [item for item in ranked if item.stop_index != -1]
        return NearestVehiclesResponse(
            stop=stop.to_payload(),
            vehicles=[item.to_payload() for item in ranked],
            count=len(ranked),
        )

    # === WEBSOCKET ===

    @app.websocket("/ws")
    async def websocket_endpoint(
        websocket: WebSocket,
        connection_id: str | None = Query(default=None),
    ) -> None:
        """
        WebSocket для водителей и пассажиров.

        Входящие сообщения:
        - {"event": "start-sharing", "data": {"vehicleId": "...", "driverId": "..."}}
        - {"event": "location-update", "data": {"vehicleId": "...", "latitude": 50.4, "longitude": 30.5}}
        - {"event": "track-bus", "data": {"vehicleId": "..."}}
        - {"event": "untrack-bus", "data": {"vehicleId": "..."}}
        - {"event": "stop-sharing", "data": {"vehicleId": "..."}}
        - {"event": "ping"}
        """
        gateway = get_gateway(websocket.app)
        connection_id = connection_id or str(uuid4())

        await gateway.manager.connect(websocket, connection_id)
        await log_info(f"Подключение {connection_id} установлено")

        try:
            while True:
                text = await websocket.receive_text()
                await gateway.dispatcher.dispatch_text(connection_id, text)
        except WebSocketDisconnect:
            pass
        except Exception as e:
            await log_error(f"Ошибка соединения {connection_id}: {e}", exc_info=True)
        finally:
            # Соединение могло быть заменено новым с тем же connection_id
            if gateway.manager.disconnect(connection_id, websocket):
                await gateway.dispatcher.on_disconnect(connection_id)
                await log_info(f"Подключение {connection_id} закрыто")


async def _with_routes(
    directory: StopDirectory,
    snapshots: list[VehicleSnapshot],
) -> list[VehicleSnapshot]:
    """Дополняет снимки кодами остановок активного маршрута транспорта."""
    result: list[VehicleSnapshot] = []
    for snapshot in snapshots:
        route = await directory.get_vehicle_route(snapshot.vehicle_id)
        if route is not None and not route.is_active:
            continue
        if route is not None:
            snapshot = snapshot.model_copy(update={"route_stop_codes": route.stop_codes})
        result.append(snapshot)
    return result


def _public_snapshot(snapshot: VehicleSnapshot) -> dict[str, Any]:
    """Снимок без идентификатора подключения издателя."""
    payload = snapshot.to_payload()
    payload.pop("publisherConnectionId", None)
    payload.pop("routeStopCodes", None)
    return payload


app = create_app()


# === STARTUP ===

if __name__ == "__main__":
    import uvicorn
    from src.config import settings

    uvicorn.run(app, host=settings.server.HOST, port=settings.server.PORT)
