"""TrackBridge Configuration Settings."""

from __future__ import annotations

import os
from datetime import datetime
from enum import StrEnum
from functools import cached_property, lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from trackbridge.exceptions import ServiceConfigError
from trackbridge.utils.logging import _get_logger

__all__ = [
    "BusyPolicy",
    "LogLevel",
    "ServiceConfig",
    "ServicesConfig",
    "SyncConfig",
    "TrackBridgeConfig",
    "get_config",
]

_log = _get_logger(__name__)

DATA_PATH_ENV = "TB_DATA_PATH"


def get_data_path() -> Path:
    """Resolve the data directory from the environment.

    Returns:
        Path: Absolute data directory, `./data` when TB_DATA_PATH is unset.
    """
    return Path(os.getenv(DATA_PATH_ENV, "./data")).resolve()


def find_yaml_config_file() -> Path:
    """Find the YAML configuration file in the data path.

    Returns:
        Path: The path to an existing YAML configuration file or the default location.
    """
    data_path = get_data_path()

    for ext in ("yaml", "yml"):
        yaml_file = data_path / f"config.{ext}"
        if yaml_file.exists():
            _log.debug(f"Using YAML config file: {yaml_file.resolve()}")
            return yaml_file.resolve()
    return data_path / "config.yaml"


class BaseStrEnum(StrEnum):
    """Base class for string-based enumerations with case-insensitive lookup."""

    @classmethod
    def _missing_(cls, value: object) -> BaseStrEnum | None:
        """Handle case-insensitive lookup for enum values.

        Args:
            value: The value to look up in the enumeration

        Returns:
            BaseStrEnum | None: The matching enum member if found, None otherwise
        """
        value = value.lower() if isinstance(value, str) else value
        for member in cls:
            if member.lower() == value:
                return member
        return None

    def __repr__(self) -> str:
        """Return the string value of the enum member."""
        return self.value

    def __str__(self) -> str:
        """Return the string representation of the enum member."""
        return repr(self)


class LogLevel(BaseStrEnum):
    """Enumeration of available logging levels.

    Note: SUCCESS is a custom level used by this application.
    """

    DEBUG = "DEBUG"
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class BusyPolicy(BaseStrEnum):
    """What the debouncer does with a request that arrives mid-sync.

    drop: return immediately without scheduling anything
    queue: run exactly one follow-up sync once the running one finishes
    """

    DROP = "drop"
    QUEUE = "queue"


class ServiceConfig(BaseModel):
    """Credentials for a single tracking service.

    Tokens set here take precedence over tokens previously persisted in the
    database and are written back to it on startup.
    """

    token: SecretStr | None = Field(default=None, description="OAuth access token")
    refresh_token: SecretStr | None = Field(
        default=None, description="OAuth refresh token (MyAnimeList only)"
    )
    expires_at: datetime | None = Field(
        default=None, description="Expiry of the access token"
    )
    client_id: str | None = Field(
        default=None, description="API client ID (required by MyAnimeList and Simkl)"
    )

    @property
    def configured(self) -> bool:
        """Whether an access token was provided."""
        return self.token is not None and bool(self.token.get_secret_value())


class ServicesConfig(BaseModel):
    """Per-service credential blocks."""

    anilist: ServiceConfig = Field(default_factory=ServiceConfig)
    mal: ServiceConfig = Field(default_factory=ServiceConfig)
    simkl: ServiceConfig = Field(default_factory=ServiceConfig)

    def get(self, name: str) -> ServiceConfig:
        """Look up a service block by its canonical key.

        Args:
            name (str): Canonical service key ('anilist', 'mal' or 'simkl')

        Returns:
            ServiceConfig: The configuration block for that service

        Raises:
            ServiceConfigError: If no block exists for the key
        """
        if name not in self.__class__.model_fields:
            raise ServiceConfigError(f"No configuration block for service '{name}'")
        return getattr(self, name)


class SyncConfig(BaseModel):
    """Synchronization behaviour settings."""

    debounce_delay: float = Field(
        default=5.0, ge=0, description="Seconds to wait after the last sync request"
    )
    busy_policy: BusyPolicy = Field(
        default=BusyPolicy.DROP,
        description="Handling of sync requests made while a sync is running",
    )
    sync_interval: int = Field(
        default=3600, ge=0, description="Seconds between periodic syncs (0 = once)"
    )
    cache_expiration_days: int = Field(
        default=7, ge=1, description="Days a resolved service ID stays cached"
    )
    search_fallback_threshold: int = Field(
        default=-1,
        ge=-1,
        le=100,
        description="Minimum title similarity for the first-result fallback",
    )
    dry_run: bool = Field(default=False, description="Log changes without writing")
    request_timeout: float = Field(
        default=30.0, gt=0, description="Total HTTP timeout in seconds"
    )


class TrackBridgeConfig(BaseSettings):
    """Configuration for the TrackBridge application.

    Configuration is sourced from a YAML file in the data directory, optionally
    combined with parameters passed directly to the model.
    """

    log_level: LogLevel = Field(
        default=LogLevel.INFO, description="Logging level for the application"
    )
    services: ServicesConfig = Field(
        default_factory=ServicesConfig, description="Tracking service credentials"
    )
    sync: SyncConfig = Field(
        default_factory=SyncConfig, description="Synchronization settings"
    )

    @cached_property
    def data_path(self) -> Path:
        """Get the data path for TrackBridge.

        Returns:
            Path: The data path resolved from the environment or default location.
        """
        return get_data_path()

    @model_validator(mode="after")
    def validate_services(self) -> TrackBridgeConfig:
        """Warn about service blocks that cannot be used as configured.

        Returns:
            TrackBridgeConfig: Self with validated settings.
        """
        for name in ServicesConfig.model_fields:
            service = getattr(self.services, name)
            if service.refresh_token and not service.client_id:
                _log.warning(
                    f"services.{name}.refresh_token is set without a client_id; "
                    "expired tokens will not be refreshed"
                )
        if self.services.simkl.configured and not self.services.simkl.client_id:
            _log.warning(
                "services.simkl.client_id is required for Simkl API requests; "
                "Simkl calls will be rejected"
            )
        return self

    def __str__(self) -> str:
        """Creates a human-readable representation of the configuration.

        Returns:
            str: Configuration summary with the configured services.
        """
        services = ", ".join(
            name
            for name in ServicesConfig.model_fields
            if getattr(self.services, name).configured
        )
        return (
            f"TrackBridge Config: services [{services or 'none'}], "
            f"DATA_PATH: {self.data_path}, LOG_LEVEL: {self.log_level}"
        )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the order of configuration sources."""
        return (
            init_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=find_yaml_config_file()),
        )

    model_config = SettingsConfigDict(extra="ignore")


@lru_cache(maxsize=1)
def get_config() -> TrackBridgeConfig:
    """Get the singleton instance of TrackBridgeConfig.

    Returns:
        TrackBridgeConfig: The singleton configuration instance.
    """
    return TrackBridgeConfig()
