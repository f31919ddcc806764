# src/services/realtime_location/service.py
"""
Кэш последних координат транспорта в Redis.
"""

from __future__ import annotations

from datetime import datetime

from src.common.logger import log_warning
from src.core.tracking.errors import TrackingError
from src.core.tracking.locks import KeyedLock
from src.infra.redis_client import RedisClient
from src.shared.models.tracking import PositionSample


class PositionCache:
    """
    Зеркалирует последнюю принятую позицию транспорта в Redis.

    - vehicle:last_seen:{id} - хеш с координатами и TTL
    - vehicles:geo - geo-индекс онлайн-транспорта

    Записи по одному транспорту идут под блокировкой, сэмпл старше
    уже записанного пропускается. Ошибки Redis логируются и не
    пробрасываются: кэш не должен влиять на ретрансляцию.
    """

    GEO_KEY = "vehicles:geo"
    LAST_SEEN_PREFIX = "vehicle:last_seen:"

    def __init__(self, redis_client: RedisClient, last_seen_ttl: int = 300) -> None:
        self._redis = redis_client
        self._last_seen_ttl = last_seen_ttl

        self._locks = KeyedLock()
        # vehicle_id -> время последней записанной позиции
        self._stored_at: dict[str, datetime] = {}

        self._total_writes = 0
        self._failed_writes = 0
        self._skipped_writes = 0

    async def store(self, sample: PositionSample) -> bool:
        """Сохраняет позицию. Returns: True если запись удалась."""
        async with self._locks.hold(sample.vehicle_id):
            stored_at = self._stored_at.get(sample.vehicle_id)
            if stored_at is not None and sample.timestamp < stored_at:
                self._skipped_writes += 1
                return False

            try:
                await self._redis.geoadd(
                    self.GEO_KEY,
                    sample.location.longitude,
                    sample.location.latitude,
                    sample.vehicle_id,
                )
                await self._redis.hset_with_ttl(
                    f"{self.LAST_SEEN_PREFIX}{sample.vehicle_id}",
                    {
                        "lat": sample.location.latitude,
                        "lon": sample.location.longitude,
                        "speed": sample.speed,
                        "heading": sample.heading,
                        "timestamp": sample.timestamp.isoformat(),
                    },
                    self._last_seen_ttl,
                )
            except Exception as e:
                self._failed_writes += 1
                await log_warning(f"Не удалось сохранить позицию {sample.vehicle_id} в Redis: {e}")
                return False

            self._stored_at[sample.vehicle_id] = sample.timestamp
            self._total_writes += 1
            return True

    async def remove(self, vehicle_id: str) -> None:
        """Убирает транспорт из индекса (ушёл offline)."""
        async with self._locks.hold(vehicle_id):
            self._stored_at.pop(vehicle_id, None)
            try:
                await self._redis.georem(self.GEO_KEY, vehicle_id)
                await self._redis.delete(f"{self.LAST_SEEN_PREFIX}{vehicle_id}")
            except Exception as e:
                await log_warning(f"Не удалось удалить позицию {vehicle_id} из Redis: {e}")

    async def get_last_seen(self, vehicle_id: str) -> PositionSample | None:
        """
        Последняя сохранённая позиция или None.

        Нужна после перезапуска процесса, когда реестр ещё пуст,
        а запись в Redis не истекла. Ошибки Redis и битые записи дают None.
        """
        try:
            data = await self._redis.hgetall(f"{self.LAST_SEEN_PREFIX}{vehicle_id}")
        except Exception as e:
            await log_warning(f"Не удалось прочитать позицию {vehicle_id} из Redis: {e}")
            return None

        if not data:
            return None

        try:
            return PositionSample.create(
                vehicle_id=vehicle_id,
                latitude=data.get("lat"),
                longitude=data.get("lon"),
                speed=data.get("speed") or None,
                heading=data.get("heading") or None,
                timestamp=datetime.fromisoformat(data["timestamp"]),
            )
        except (KeyError, ValueError, TrackingError) as e:
            await log_warning(f"Битая запись позиции {vehicle_id} в Redis: {e!r}")
            return None

    def get_stats(self) -> dict[str, int]:
        return {
            "total_writes": self._total_writes,
            "failed_writes": self._failed_writes,
            "skipped_writes": self._skipped_writes,
        }
