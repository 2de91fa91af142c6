"""
Configuration management for the hash archive.

Every setting has a default, so a missing file or a missing key is not an
error.
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

import yaml


DEFAULT_USER_AGENT = "Hash Archive (https://github.com/btrask/hash-archive)"


@dataclass
class ServerConfig:
    """Listener settings consumed by the HTTP front end."""
    key_path: str = "./server.key"
    crt_path: str = "./server.crt"
    port_tls: int = 443
    port_raw: int = 80


@dataclass
class ArchiveConfig:
    """Configuration for crawling and freshness."""
    user_agent: str = DEFAULT_USER_AGENT
    max_workers: int = 10
    request_timeout: int = 30
    max_redirects: int = 5
    freshness_ttl: int = 60 * 60 * 24
    robots_cache_ttl: int = 3600
    claim_lease_seconds: int = 0
    recent_urls_interval: int = 60
    history_limit: int = 30
    sources_limit: int = 30


@dataclass
class DatabaseConfig:
    """Configuration for database storage."""
    path: str = "./archive.db"
    pool_size: int = 16
    busy_timeout_ms: int = 5000


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/archive.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    metrics_enabled: bool = False
    prometheus_port: int = 8000


@dataclass
class Config:
    """Main configuration class."""
    server: ServerConfig = field(default_factory=ServerConfig)
    archive: ArchiveConfig = field(default_factory=ArchiveConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


T = TypeVar('T')


def _build_section(cls: Type[T], data: Optional[Dict[str, Any]]) -> T:
    """Instantiate a section, ignoring keys it does not define."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"Section for {cls.__name__} must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        logging.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**{k: v for k, v in data.items() if k in known})


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file, falling back to defaults."""
        config_data: Dict[str, Any] = {}
        if self.config_path.exists():
            with open(self.config_path, 'r') as file:
                config_data = yaml.safe_load(file) or {}
        else:
            logging.warning(f"Configuration file not found: {self.config_path}, using defaults")

        self._config = Config(
            server=_build_section(ServerConfig, config_data.get('server')),
            archive=_build_section(ArchiveConfig, config_data.get('archive')),
            database=_build_section(DatabaseConfig, config_data.get('database')),
            logging=_build_section(LoggingConfig, config_data.get('logging')),
            monitoring=_build_section(MonitoringConfig, config_data.get('monitoring'))
        )

        self._validate_config()
        return self._config

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ValueError("Configuration not loaded")

        archive = self._config.archive
        if archive.max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        if archive.max_redirects < 0:
            raise ValueError("max_redirects must be non-negative")

        if archive.freshness_ttl < 0:
            raise ValueError("freshness_ttl must be non-negative")

        if archive.claim_lease_seconds < 0:
            raise ValueError("claim_lease_seconds must be non-negative")

        if not archive.user_agent:
            raise ValueError("user_agent must not be empty")

        if self._config.database.pool_size < 1:
            raise ValueError("database pool_size must be at least 1")

        logging.info("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config_manager.config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    global config_manager
    config_manager = ConfigManager(config_path)
    return config_manager.load_config()
