# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("REDIS_ENABLED", "false")

from src.core.tracking.registry import SubscriptionRegistry
from src.core.tracking.relay import LocationRelay
from src.shared.models.tracking import Coordinate, PositionSample, Stop


BASE_TIME = datetime(2024, 5, 1, 8, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Тестовая конфигурация",
        "PROJECT_NAME": "bus_tracker_test",
        "VERSION": "1.0.0-test",
        "DEBUG": False,
        "ENVIRONMENT": "test",
        "LOG_LEVEL": "INFO",
        "LOG_FORMAT": "json",
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_MAX_BYTES": 1024,
        "LOG_BACKUP_COUNT": 2,
        "HOST": "127.0.0.1",
        "PORT": 5050,
        "CORS_ORIGINS": ["http://localhost:3000"],
        "REDIS_ENABLED": False,
        "REDIS_HOST": "redis",
        "REDIS_PORT": 6380,
        "REDIS_DB": 2,
        "REDIS_PASSWORD": "",
        "REDIS_NAMESPACE": "bus_test",
        "REDIS_MAX_CONNECTIONS": 10,
        "LAST_SEEN_TTL": 60,
        "AVERAGE_SPEED_KMH": 30.0,
        "STRICT_PUBLISHER": True,
        "SEND_TIMEOUT_SECONDS": 2.0,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

class FakeTransport:
    """
    Транспорт в памяти: запоминает отправленные события.
    Подключения из failing бросают исключение при отправке.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self.failing: set[str] = set()

    async def send_to(self, connection_id: str, event: str, payload: dict[str, Any]) -> None:
        if connection_id in self.failing:
            raise ConnectionError(f"{connection_id} закрыт")
        self.sent.append((connection_id, event, payload))

    def events_for(self, connection_id: str, event: str | None = None) -> list[dict[str, Any]]:
        """Полезные нагрузки, отправленные подключению (опционально одного типа)."""
        return [
            payload
            for target, name, payload in self.sent
            if target == connection_id and (event is None or name == event)
        ]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def transport() -> FakeTransport:
    """Транспорт, записывающий отправленные события."""
    return FakeTransport()


@pytest.fixture
def registry() -> SubscriptionRegistry:
    """Пустой реестр."""
    return SubscriptionRegistry()


@pytest.fixture
def relay(registry: SubscriptionRegistry, transport: FakeTransport) -> LocationRelay:
    """Ретранслятор поверх пустого реестра и FakeTransport."""
    return LocationRelay(registry, transport, send_timeout=1.0)


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок RedisClient."""
    redis = AsyncMock()
    redis.get_model = AsyncMock(return_value=None)
    redis.set_model = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.geoadd = AsyncMock(return_value=1)
    redis.georem = AsyncMock(return_value=1)
    redis.hset_with_ttl = AsyncMock(return_value=None)
    redis.hgetall = AsyncMock(return_value={})
    redis.health_check = AsyncMock(return_value=True)
    return redis


# =============================================================================
# ФИКСТУРЫ МОДЕЛЕЙ
# =============================================================================

@pytest.fixture
def make_sample() -> Callable[..., PositionSample]:
    """
    Фабрика сэмплов. offset_seconds сдвигает время относительно BASE_TIME.
    """
    def _make(
        vehicle_id: str = "BUS-1",
        latitude: float = 50.4501,
        longitude: float = 30.5234,
        offset_seconds: int = 0,
        speed: float | None = None,
        heading: float | None = None,
    ) -> PositionSample:
        return PositionSample.create(
            vehicle_id=vehicle_id,
            latitude=latitude,
            longitude=longitude,
            speed=speed,
            heading=heading,
            timestamp=BASE_TIME + timedelta(seconds=offset_seconds),
        )

    return _make


@pytest.fixture
def sample_stop() -> Stop:
    """Остановка в начале координат."""
    return Stop(
        stop_code="STOP-1",
        location=Coordinate(latitude=0.0, longitude=0.0),
        name="Центральная",
        address="пл. Независимости, 1",
    )
