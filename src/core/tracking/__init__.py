# src/core/tracking/__init__.py
"""
Отслеживание транспорта в реальном времени.

Модули:
- errors: доменные ошибки
- registry: реестр каналов (издатель, подписчики, последняя позиция)
- relay: ретрансляция координат подписчикам и жизненный цикл подключений
- ranker: ранжирование транспорта относительно остановки
"""
