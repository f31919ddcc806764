# src/infra/__init__.py
"""
Инфраструктурный слой.
Работа с внешними сервисами: Redis и каталог остановок.
"""

from src.infra.redis_client import RedisClient
from src.infra.stop_directory import InMemoryStopDirectory, RedisStopDirectory, StopDirectory

__all__ = [
    "RedisClient",
    "StopDirectory",
    "InMemoryStopDirectory",
    "RedisStopDirectory",
]
