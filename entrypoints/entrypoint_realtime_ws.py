#!/usr/bin/env python3
"""
Entrypoint для WebSocket шлюза отслеживания транспорта (Docker).

Запуск:
    python entrypoints/entrypoint_realtime_ws.py

Порт берётся из config/config.json (PORT) или переменной окружения PORT.
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from src.config import settings


def main() -> None:
    """Запустить шлюз с автоперезапуском в DEBUG."""
    uvicorn.run(
        "src.services.realtime_ws.app:app",
        host=settings.server.HOST,
        port=settings.server.PORT,
        reload=settings.system.DEBUG,
        log_level=settings.logging.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
