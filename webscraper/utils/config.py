"""
Configuration management for the web scraper.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..crawler.fetcher import DEFAULT_USER_AGENT
from ..crawler.rate_limiter import RateLimitRule
from ..errors import ConfigurationError


@dataclass
class ScraperConfig:
    """Configuration for scheduling and fetching."""
    seed_urls: List[str] = field(default_factory=list)
    worker_count: Optional[int] = None
    request_timeout: float = 10.0
    max_retries: int = 3
    backoff_base: float = 1.0
    poll_interval: float = 5.0
    shutdown_grace_period: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT
    max_content_size: int = 10 * 1024 * 1024

    def __post_init__(self):
        if self.worker_count is None:
            self.worker_count = os.cpu_count() or 1

        if self.worker_count < 1:
            raise ConfigurationError("worker_count must be at least 1")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if self.max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")
        if self.backoff_base < 0:
            raise ConfigurationError("backoff_base must be non-negative")
        if self.poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")
        if self.shutdown_grace_period < 0:
            raise ConfigurationError("shutdown_grace_period must be non-negative")
        if self.max_content_size < 1:
            raise ConfigurationError("max_content_size must be at least 1")


@dataclass
class RateLimitSettings:
    """Default, per-domain and per-pattern rate limit rules."""
    default: RateLimitRule = field(
        default_factory=lambda: RateLimitRule(requests_per_period=5, period=5.0, min_delay=0.0)
    )
    domains: Dict[str, RateLimitRule] = field(default_factory=dict)
    patterns: List[Tuple[str, RateLimitRule]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'RateLimitSettings':
        if not data:
            return cls()

        settings = cls()
        if data.get('default'):
            settings.default = _parse_rule(data['default'])

        for domain, rule_data in (data.get('domains') or {}).items():
            settings.domains[domain] = _parse_rule(rule_data)

        for entry in data.get('patterns') or []:
            entry = dict(entry)
            pattern = entry.pop('pattern', None)
            if not pattern:
                raise ConfigurationError("Pattern rate limit is missing 'pattern'")
            settings.patterns.append((pattern, _parse_rule(entry)))

        return settings


def _parse_rule(data: Dict[str, Any]) -> RateLimitRule:
    try:
        return RateLimitRule(**data)
    except TypeError as e:
        raise ConfigurationError(f"Invalid rate limit rule {data!r}: {e}") from e


@dataclass
class ProcessingConfig:
    """Configuration for outcome post-processing."""
    max_content_length: int = 100000
    remove_empty_content: bool = True
    sanitize_content: bool = True
    filters: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.max_content_length < 1:
            raise ConfigurationError("max_content_length must be at least 1")


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = 'INFO'
    file: str = 'logs/scraper.log'
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    scraper: ScraperConfig = field(default_factory=ScraperConfig)
    rate_limits: RateLimitSettings = field(default_factory=RateLimitSettings)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Build a Config from parsed YAML. Only the scraper section is required."""
        if not isinstance(data, dict) or 'scraper' not in data:
            raise ConfigurationError("Configuration must contain a 'scraper' section")

        try:
            return cls(
                scraper=ScraperConfig(**(data.get('scraper') or {})),
                rate_limits=RateLimitSettings.from_dict(data.get('rate_limits')),
                processing=ProcessingConfig(**(data.get('processing') or {})),
                logging=LoggingConfig(**(data.get('logging') or {})),
                monitoring=MonitoringConfig(**(data.get('monitoring') or {})),
            )
        except TypeError as e:
            raise ConfigurationError(f"Unknown configuration option: {e}") from e


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            config_data = yaml.safe_load(file)

        self._config = Config.from_dict(config_data)
        self._validate_config()
        return self._config

    def _validate_config(self):
        """Validate cross-section configuration values."""
        if not self._config:
            raise ConfigurationError("Configuration not loaded")

        if not isinstance(logging.getLevelName(self._config.logging.level.upper()), int):
            raise ConfigurationError(f"Unknown log level: {self._config.logging.level}")

        if not 0 < self._config.monitoring.prometheus_port < 65536:
            raise ConfigurationError("prometheus_port must be a valid TCP port")

        logging.getLogger(__name__).info("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ConfigurationError("Configuration not loaded. Call load_config() first.")
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
