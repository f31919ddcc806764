# src/infra/redis_client.py
"""
Клиент Redis для каталога остановок и кэша последних координат.
Поддерживает типизированные операции с Pydantic моделями.
"""

from __future__ import annotations

from typing import Any, TypeVar, Type

import redis.asyncio as redis
from pydantic import BaseModel

from src.common.logger import log_error, log_info
from src.common.constants import TypeMsg

T = TypeVar("T", bound=BaseModel)


class RedisClient:
    """
    Асинхронный клиент Redis.
    Поддерживает:
    - Типизированные get/set с Pydantic моделями
    - Hash операции с TTL
    - Geo-индекс (GEOADD / ZREM)
    """

    def __init__(self, namespace: str = "bus") -> None:
        self._client: redis.Redis | None = None
        self._namespace = namespace

    @property
    def client(self) -> redis.Redis:
        """Возвращает клиент Redis."""
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def _make_key(self, key: str) -> str:
        """Добавляет namespace к ключу."""
        return f"{self._namespace}:{key}"

    async def connect(self, url: str, max_connections: int = 50) -> None:
        """
        Подключается к Redis.

        Args:
            url: URL Redis
            max_connections: Максимальное количество соединений
        """
        if self._client is not None:
            return

        await log_info("Подключение к Redis...", type_msg=TypeMsg.INFO)

        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        await self._client.ping()

        await log_info("Подключение к Redis установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто", type_msg=TypeMsg.INFO)

    # =========================================================================
    # ТИПИЗИРОВАННЫЕ ОПЕРАЦИИ (PYDANTIC)
    # =========================================================================

    async def get_model(self, key: str, model_class: Type[T]) -> T | None:
        """
        Получает и десериализует Pydantic модель.

        Returns:
            Экземпляр модели или None (нет ключа или битые данные)
        """
        data = await self.client.get(self._make_key(key))
        if data is None:
            return None

        try:
            return model_class.model_validate_json(data)
        except Exception as e:
            await log_error(f"Ошибка десериализации модели {model_class.__name__}: {e}")
            return None

    async def set_model(self, key: str, model: BaseModel, ttl: int | None = None) -> bool:
        """Сериализует и сохраняет Pydantic модель."""
        return await self.client.set(
            self._make_key(key),
            model.model_dump_json(by_alias=True),
            ex=ttl,
        )

    async def delete(self, *keys: str) -> int:
        """Удаляет ключи."""
        return await self.client.delete(*(self._make_key(k) for k in keys))

    # =========================================================================
    # HASH / GEO
    # =========================================================================

    async def hset_with_ttl(self, name: str, mapping: dict[str, Any], ttl: int) -> None:
        """Записывает хеш и выставляет TTL одним пайплайном."""
        key = self._make_key(name)
        pipe = self.client.pipeline()
        pipe.hset(key, mapping={k: "" if v is None else str(v) for k, v in mapping.items()})
        pipe.expire(key, ttl)
        await pipe.execute()

    async def hgetall(self, name: str) -> dict[str, str]:
        """Получает все поля хеша."""
        return await self.client.hgetall(self._make_key(name))

    async def geoadd(self, key: str, longitude: float, latitude: float, member: str) -> int:
        """Добавляет точку в geo-индекс."""
        return await self.client.geoadd(self._make_key(key), (longitude, latitude, member))

    async def georem(self, key: str, member: str) -> int:
        """Удаляет участника из geo-индекса."""
        return await self.client.zrem(self._make_key(key), member)

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    async def health_check(self) -> bool:
        """True если подключение работает."""
        try:
            return bool(await self.client.ping())
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}")
            return False
