# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class VehicleStatus(str, Enum):
    """Состояние канала транспорта."""
    OFFLINE = "offline"
    ONLINE = "online"


class InboundEvent(str, Enum):
    """Входящие события от транспортного слоя."""
    START_SHARING = "start-sharing"
    LOCATION_UPDATE = "location-update"
    TRACK_BUS = "track-bus"
    UNTRACK_BUS = "untrack-bus"
    STOP_SHARING = "stop-sharing"
    PING = "ping"


class OutboundEvent(str, Enum):
    """Исходящие события для подключений."""
    LOCATION_UPDATE = "location-update"
    OFFLINE = "offline"
    SHARING_STARTED = "sharing-started"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"
    PONG = "pong"
    ERROR = "error"


class RejectReason(str, Enum):
    """Причины, по которым сэмпл не применён."""
    STALE = "stale"


# Префиксы старого клиентского протокола (driver:location-update и т.д.)
LEGACY_EVENT_PREFIXES: tuple[str, ...] = ("driver:", "passenger:", "bus:")

# Средняя скорость в городе для расчёта ETA, км/ч
DEFAULT_AVERAGE_SPEED_KMH: float = 25.0

# Радиус Земли, км
EARTH_RADIUS_KM: float = 6371.0
