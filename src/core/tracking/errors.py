# src/core/tracking/errors.py
"""
Ошибки домена отслеживания транспорта.
"""

from __future__ import annotations


class TrackingError(Exception):
    """Базовая ошибка отслеживания. code уходит клиенту в событии error."""

    code: str = "TrackingError"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_payload(self) -> dict[str, str]:
        """Полезная нагрузка для исходящего события error."""
        return {"code": self.code, "message": self.message}


class InvalidCoordinate(TrackingError):
    """Широта/долгота отсутствуют или вне допустимого диапазона."""

    code = "InvalidCoordinate"


class InvalidParameter(TrackingError):
    """Некорректный параметр (скорость, курс, средняя скорость и т.п.)."""

    code = "InvalidParameter"


class UnauthorizedPublisher(TrackingError):
    """Подключение не имеет права публиковать координаты транспорта."""

    code = "UnauthorizedPublisher"


class StaleSample(TrackingError):
    """Сэмпл старше уже сохранённой позиции. Наружу не пробрасывается."""

    code = "StaleSample"


class UnknownEvent(TrackingError):
    """Неизвестное входящее событие."""

    code = "UnknownEvent"
