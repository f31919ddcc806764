# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины - config/config.json.
Секреты и адреса переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json(path: Path | None = None) -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = path or get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


def _env_bool(name: str, default: bool) -> bool:
    """Читает булев флаг из окружения."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "bus_tracker"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_FORMAT: str = "colored"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5

    @field_validator("LOG_FORMAT")
    @classmethod
    def check_format(cls, v: str) -> str:
        """Разрешены только json и colored."""
        if v not in ("json", "colored"):
            raise ValueError(f"Неизвестный формат логов: {v}")
        return v


class ServerSettings(BaseModel):
    """Настройки HTTP/WebSocket сервера."""
    HOST: str = "0.0.0.0"
    PORT: int = 5000
    CORS_ORIGINS: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"]
    )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    ENABLED: bool = False
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "bus"
    REDIS_MAX_CONNECTIONS: int = 50
    LAST_SEEN_TTL: int = 300

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class DirectorySettings(BaseModel):
    """Каталог остановок без Redis."""
    STOPS_FILE: str = "config/stops.json"  # относительно корня проекта

    @property
    def stops_path(self) -> Path:
        path = Path(self.STOPS_FILE)
        return path if path.is_absolute() else get_project_root() / path


class TrackingSettings(BaseModel):
    """Настройки ретранслятора геолокации."""
    AVERAGE_SPEED_KMH: float = Field(default=25.0, gt=0)
    STRICT_PUBLISHER: bool = False
    SEND_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    system: SystemSettings = Field(default_factory=SystemSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    directory: DirectorySettings = Field(default_factory=DirectorySettings)

    @classmethod
    def from_config_json(cls, path: Path | None = None) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты и адреса переопределяются из переменных окружения.
        """
        config_data = load_config_json(path)

        # Ключи _comment_* используются как комментарии в JSON
        data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "bus_tracker"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", True),
                ENVIRONMENT=os.getenv("ENVIRONMENT", data.get("ENVIRONMENT", "development")),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=os.getenv("LOG_LEVEL", data.get("LOG_LEVEL", "DEBUG")),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_TO_FILE=data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
                LOG_BACKUP_COUNT=data.get("LOG_BACKUP_COUNT", 5),
            ),
            server=ServerSettings(
                HOST=os.getenv("HOST", data.get("HOST", "0.0.0.0")),
                PORT=int(os.getenv("PORT", data.get("PORT", 5000))),
                CORS_ORIGINS=data.get("CORS_ORIGINS", ["http://localhost:3000"]),
            ),
            redis=RedisSettings(
                ENABLED=_env_bool("REDIS_ENABLED", data.get("REDIS_ENABLED", False)),
                REDIS_HOST=os.getenv("REDIS_HOST", data.get("REDIS_HOST", "localhost")),
                REDIS_PORT=int(os.getenv("REDIS_PORT", data.get("REDIS_PORT", 6379))),
                REDIS_DB=data.get("REDIS_DB", 0),
                REDIS_PASSWORD=os.getenv("REDIS_PASSWORD", data.get("REDIS_PASSWORD", "")),
                REDIS_NAMESPACE=data.get("REDIS_NAMESPACE", "bus"),
                REDIS_MAX_CONNECTIONS=data.get("REDIS_MAX_CONNECTIONS", 50),
                LAST_SEEN_TTL=data.get("LAST_SEEN_TTL", 300),
            ),
            tracking=TrackingSettings(
                AVERAGE_SPEED_KMH=data.get("AVERAGE_SPEED_KMH", 25.0),
                STRICT_PUBLISHER=_env_bool("STRICT_PUBLISHER", data.get("STRICT_PUBLISHER", False)),
                SEND_TIMEOUT_SECONDS=data.get("SEND_TIMEOUT_SECONDS", 5.0),
            ),
            directory=DirectorySettings(
                STOPS_FILE=os.getenv("STOPS_FILE", data.get("STOPS_FILE", "config/stops.json")),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
