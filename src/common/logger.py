# src/common/logger.py
"""
Структурированное логирование: JSON для продакшена, цветной текст для
разработки, ротация файлов по размеру и отдельный error.log.

Асинхронные log_* кладут в запись место вызова (caller_*) и переданный
extra, форматтеры выводят их из атрибута extra_data.
"""

from __future__ import annotations

import inspect
import json
import logging
import sys
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from src.common.constants import TypeMsg


DEFAULT_LOGGER_NAME = "bus_tracker"

# Сторонние логгеры, приглушаемые при старте
QUIET_LOGGERS: dict[str, int] = {
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.INFO,
    "redis": logging.WARNING,
    "httpx": logging.WARNING,
}

_LEVELS: dict[TypeMsg, int] = {
    TypeMsg.DEBUG: logging.DEBUG,
    TypeMsg.INFO: logging.INFO,
    TypeMsg.WARNING: logging.WARNING,
    TypeMsg.ERROR: logging.ERROR,
    TypeMsg.CRITICAL: logging.CRITICAL,
}

_loggers: dict[str, logging.Logger] = {}

# путь файла -> хендлер; файлы общие для всех логгеров процесса
_file_handlers: dict[str, logging.Handler] = {}

_initialized: bool = False


@dataclass(frozen=True)
class LogConfig:
    """Секция logging конфига в виде, удобном логгеру."""
    level: str = "DEBUG"
    format: str = "colored"
    to_file: bool = False
    file_path: str = "logs/app.log"
    max_bytes: int = 10485760
    backup_count: int = 5

    @classmethod
    def from_settings(cls) -> "LogConfig":
        """Читает настройки; если конфиг недоступен, значения по умолчанию."""
        defaults = cls()
        try:
            from src.config import settings
            section = settings.logging
            values = {
                "level": section.LOG_LEVEL,
                "format": section.LOG_FORMAT,
                "to_file": section.LOG_TO_FILE,
                "file_path": section.LOG_FILE_PATH,
                "max_bytes": section.LOG_MAX_BYTES,
                "backup_count": section.LOG_BACKUP_COUNT,
            }
        except Exception:
            return defaults

        # settings может быть MagicMock в тестах
        for item in fields(cls):
            default = getattr(defaults, item.name)
            if type(values[item.name]) is not type(default):
                values[item.name] = default
        return cls(**values)


# =============================================================================
# ФОРМАТТЕРЫ
# =============================================================================

def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JsonFormatter(logging.Formatter):
    """Одна запись - одна строка JSON."""

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": _record_time(record).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        extra = getattr(record, "extra_data", None)
        if extra:
            data["extra"] = extra

        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)

        return json.dumps(data, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """
    Цветной вывод для консоли.

    Место вызова печатается серым, остальные поля extra
    дописываются в конец строки как key=value.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    GRAY = "\033[90m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.GRAY)
        timestamp = _record_time(record).astimezone().strftime("%Y-%m-%d %H:%M:%S")
        extra: dict[str, Any] = dict(getattr(record, "extra_data", None) or {})

        parts = [f"{timestamp} {color}[{record.levelname}]{self.RESET}"]
        if extra.get("caller_function"):
            parts.append(
                f"{self.GRAY}[{extra['caller_module']}.{extra['caller_function']}() "
                f"{extra['caller_file']}:{extra['caller_line']}]{self.RESET}"
            )
        parts.append(record.getMessage())

        context = {k: v for k, v in extra.items() if not k.startswith("caller_")}
        if context:
            parts.append(f"{self.GRAY}{' '.join(f'{k}={v}' for k, v in context.items())}{self.RESET}")

        message = " ".join(parts)
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


# =============================================================================
# ЛОГГЕРЫ
# =============================================================================

def _shared_file_handlers(config: LogConfig, formatter: logging.Formatter) -> list[logging.Handler]:
    """Основной файл и error.log рядом с ним, по одному экземпляру на процесс."""
    log_path = Path(config.file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handlers: list[logging.Handler] = []
    for path, level in ((log_path, logging.NOTSET), (log_path.parent / "error.log", logging.ERROR)):
        handler = _file_handlers.get(str(path))
        if handler is None:
            handler = RotatingFileHandler(
                filename=str(path),
                maxBytes=config.max_bytes,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
            handler.setLevel(level)
            handler.setFormatter(formatter)
            _file_handlers[str(path)] = handler
        handlers.append(handler)
    return handlers


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """
    Возвращает настроенный логгер. Хендлеры добавляются один раз,
    повторные вызовы отдают закэшированный экземпляр.
    """
    cached = _loggers.get(name)
    if cached is not None:
        return cached

    config = LogConfig.from_settings()
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, config.level.upper(), logging.DEBUG))

    if not logger.handlers:
        formatter = JsonFormatter() if config.format == "json" else ColoredFormatter()

        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        logger.addHandler(console)

        if config.to_file:
            for handler in _shared_file_handlers(config, formatter):
                logger.addHandler(handler)

    logger.propagate = False
    _loggers[name] = logger
    return logger


def setup_logging() -> None:
    """Создаёт логгер приложения и приглушает сторонние. Идемпотентна."""
    global _initialized

    if _initialized:
        return
    _initialized = True

    get_logger(DEFAULT_LOGGER_NAME)
    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


# =============================================================================
# АСИНХРОННЫЕ ФУНКЦИИ ЛОГИРОВАНИЯ
# =============================================================================

def _caller_info() -> dict[str, Any]:
    """Место вызова функции log_*, из которой вызвана эта функция."""
    frame = inspect.currentframe()
    try:
        caller = frame.f_back.f_back if frame is not None and frame.f_back is not None else None
        if caller is None:
            return {}
        return {
            "caller_function": caller.f_code.co_name,
            "caller_module": caller.f_globals.get("__name__", "unknown"),
            "caller_file": Path(caller.f_code.co_filename).name,
            "caller_line": caller.f_lineno,
        }
    finally:
        del frame


def _emit(
    logger_name: str,
    level: int,
    message: str,
    caller: dict[str, Any],
    extra: dict[str, Any] | None,
    exc_info: bool = False,
) -> None:
    get_logger(logger_name).log(
        level,
        message,
        extra={"extra_data": {**caller, **(extra or {})}},
        exc_info=exc_info,
    )


async def log_info(
    message: str,
    *,
    type_msg: TypeMsg = TypeMsg.INFO,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Логирование с уровнем из type_msg.

    Args:
        message: Сообщение
        type_msg: Уровень сообщения
        logger_name: Имя логгера
        extra: Поля контекста (connection_id, event и т.п.)
    """
    _emit(logger_name, _LEVELS.get(type_msg, logging.INFO), message, _caller_info(), extra)


async def log_debug(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    _emit(logger_name, logging.DEBUG, message, _caller_info(), extra)


async def log_warning(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    _emit(logger_name, logging.WARNING, message, _caller_info(), extra)


async def log_error(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
    exc_info: bool = False,
) -> None:
    """Логирование ошибки; exc_info=True добавляет трейсбек текущего исключения."""
    _emit(logger_name, logging.ERROR, message, _caller_info(), extra, exc_info=exc_info)
