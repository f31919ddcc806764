#!/usr/bin/env python3
# main.py
"""
Главная точка входа Bus Tracker.
Запускает WebSocket шлюз отслеживания транспорта.

Примеры:
    python main.py                  # хост и порт из config/config.json
    python main.py --port 5001
"""

from __future__ import annotations

import argparse
import asyncio

import uvicorn

from src.config import settings
from src.common.logger import setup_logging, log_info
from src.common.constants import TypeMsg


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Разбор аргументов командной строки."""
    parser = argparse.ArgumentParser(description="Bus Tracker - WebSocket шлюз")
    parser.add_argument("--host", default=settings.server.HOST, help="Адрес для прослушивания")
    parser.add_argument("--port", type=int, default=settings.server.PORT, help="Порт")
    return parser.parse_args(argv)


async def run_gateway(host: str, port: int) -> None:
    """Запускает WebSocket шлюз."""
    await log_info(
        f"Bus Tracker v{settings.system.VERSION} - запуск шлюза на {host}:{port}",
        type_msg=TypeMsg.INFO,
    )

    config = uvicorn.Config(
        "src.services.realtime_ws.app:app",
        host=host,
        port=port,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info("Шлюз: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging()

    try:
        asyncio.run(run_gateway(args.host, args.port))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
