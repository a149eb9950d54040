"""Configuration management for Storewatch."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = "sqlite:///data/db/storewatch.db"
    echo: bool = False


class ScrapingConfig(BaseModel):
    """Catalog feed fetching configuration."""

    timeout: float = 30.0
    page_limit: int = 250
    max_pages: int = 200
    user_agent: str = "storewatch/1.0"


class SyncConfig(BaseModel):
    """Sync coordination configuration."""

    min_poll_interval_seconds: float = 60.0
    fleet_interval_minutes: int = 60


class RetentionConfig(BaseModel):
    """History retention configuration."""

    snapshot_days: int = 90
    event_days: Optional[int] = None


def _default_notification_types() -> Dict[str, bool]:
    return {
        "priceDropped": True,
        "priceIncreased": True,
        "backInStock": True,
        "outOfStock": True,
        "newProduct": True,
        "productRemoved": True,
        "imagesChanged": False,
    }


class NotificationsConfig(BaseModel):
    """Notification filter configuration."""

    enabled: bool = True
    types: Dict[str, bool] = Field(default_factory=_default_notification_types)
    price_drop_threshold: str = "any"
    price_increase_threshold: str = "any"
    discord: Dict[str, Any] = Field(default_factory=dict)


class ScheduleConfig(BaseModel):
    """Scheduling configuration."""

    prune_hour: int = 3
    prune_minute: int = 0
    misfire_grace_time_seconds: int = 120


class APIConfig(BaseModel):
    """API configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str = "data/logs/storewatch.log"
    rotation: str = "10 MB"
    retention: str = "30 days"
    serialize: bool = False  # JSON lines in the file sink


class Config(BaseModel):
    """Main configuration model."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scraping: ScrapingConfig = Field(default_factory=ScrapingConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class Settings(BaseSettings):
    """Environment-based settings."""

    # Database
    database_url: str = ""

    # Alerting
    discord_webhook_url: str = ""

    # Sync
    min_poll_interval_seconds: Optional[float] = None
    snapshot_retention_days: Optional[int] = None

    # Logging
    log_level: str = ""

    # API
    api_host: str = ""
    api_port: Optional[int] = None

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "STOREWATCH_",
        "extra": "ignore",
    }


class ConfigManager:
    """Configuration manager for loading and merging config sources."""

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to YAML configuration file
        """
        load_dotenv()

        if config_path is None:
            config_path = Path(__file__).parent.parent.parent / "config" / "config.yaml"

        self.config_path = config_path
        self.yaml_config = self._load_yaml()
        self.env_settings = Settings()
        self.config = self._merge_config()

    def _load_yaml(self) -> Dict[str, Any]:
        """Load YAML configuration file."""
        if not self.config_path.exists():
            return {}

        with open(self.config_path, "r") as f:
            return yaml.safe_load(f) or {}

    def _merge_config(self) -> Config:
        """Merge YAML config with environment variables."""
        merged = self.yaml_config.copy()
        env = self.env_settings

        if env.database_url:
            merged.setdefault("database", {})["url"] = env.database_url

        if env.discord_webhook_url:
            merged.setdefault("notifications", {}).setdefault("discord", {})[
                "webhook_url"
            ] = env.discord_webhook_url

        if env.min_poll_interval_seconds is not None:
            merged.setdefault("sync", {})[
                "min_poll_interval_seconds"
            ] = env.min_poll_interval_seconds

        if env.snapshot_retention_days is not None:
            merged.setdefault("retention", {})["snapshot_days"] = env.snapshot_retention_days

        if env.log_level:
            merged.setdefault("logging", {})["level"] = env.log_level

        if env.api_host:
            merged.setdefault("api", {})["host"] = env.api_host

        if env.api_port:
            merged.setdefault("api", {})["port"] = env.api_port

        return Config(**merged)


# Global config instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get configuration manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def get_config() -> Config:
    """Get global configuration instance."""
    return get_config_manager().config


def get_settings() -> Settings:
    """Get environment settings."""
    return get_config_manager().env_settings
