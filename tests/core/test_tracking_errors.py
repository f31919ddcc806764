# tests/core/test_tracking_errors.py
"""
Тесты доменных ошибок (src/core/tracking/errors.py).
"""

from __future__ import annotations

import pytest

from src.core.tracking.errors import (
    InvalidCoordinate,
    InvalidParameter,
    StaleSample,
    TrackingError,
    UnauthorizedPublisher,
    UnknownEvent,
)


class TestTrackingError:
    """Тесты иерархии ошибок."""

    @pytest.mark.parametrize("error_cls", [
        InvalidCoordinate,
        InvalidParameter,
        UnauthorizedPublisher,
        StaleSample,
        UnknownEvent,
    ])
    def test_subclasses(self, error_cls: type[TrackingError]) -> None:
        """Все ошибки наследуют TrackingError и имеют свой код."""
        error = error_cls("boom")

        assert isinstance(error, TrackingError)
        assert error.code == error_cls.__name__
        assert error.to_payload() == {"code": error_cls.__name__, "message": "boom"}

    def test_default_message_is_code(self) -> None:
        """Без сообщения в message попадает код."""
        assert InvalidCoordinate().message == "InvalidCoordinate"
        assert str(InvalidCoordinate()) == "InvalidCoordinate"
