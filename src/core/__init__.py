# src/core/__init__.py
"""
Доменный слой (Core Domain).
Чистая логика отслеживания, независимая от транспорта и хранилищ.
"""
