# src/shared/__init__.py
"""
Общий код между ядром и сервисами.

Модули:
- models: Pydantic-модели и полезные нагрузки событий
"""

__all__: list[str] = []
