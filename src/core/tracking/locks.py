# src/core/tracking/locks.py
"""
Блокировки по ключу.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0  # задачи, ждущие или держащие блокировку


class KeyedLock:
    """
    Отдельный asyncio.Lock на каждый ключ.

    Запись о ключе существует, только пока блокировкой кто-то
    пользуется, поэтому произвольные ключи не накапливаются.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def users(self, key: str) -> int:
        entry = self._entries.get(key)
        return entry.users if entry else 0

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]
