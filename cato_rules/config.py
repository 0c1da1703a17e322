"""
Configuration Management for the cATO Rules Engine
Handles environment-based configuration and collaborator time budgets.
"""
import os
import json
from typing import Optional, Dict, Any, List
from pathlib import Path
from dataclasses import dataclass, field
from dotenv import load_dotenv

from cato_rules.exceptions import ConfigurationError

# Load .env file
load_dotenv()

ENV_PREFIX = "CATO_RULES_"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class EngineConfig:
    """Evaluation and dispatch settings."""
    rule_store_timeout_seconds: float = 10.0
    history_query_timeout_seconds: float = 5.0
    action_timeout_seconds: float = 30.0
    sink_timeout_seconds: float = 10.0
    concurrent_actions: bool = False
    increment_max_attempts: int = 5
    percentage_change_threshold: float = 10.0


@dataclass
class StorageConfig:
    """Reference store settings."""
    rules_path: str = "rules"
    firings_db_path: str = "cato_firings.db"
    retention_days: int = 90


@dataclass
class NotificationConfig:
    """Notification channel settings."""
    default_channels: List[str] = field(default_factory=lambda: ["log"])
    webhook_url: Optional[str] = None
    webhook_timeout_seconds: float = 10.0
    webhook_max_retries: int = 2


@dataclass
class SystemConfig:
    """Process-wide settings."""
    environment: str = "development"
    log_level: str = "INFO"
    version: str = "1.0.0"


@dataclass
class CatoRulesConfig:
    """Complete configuration for the rules engine."""
    system: SystemConfig = field(default_factory=SystemConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    notification: NotificationConfig = field(default_factory=NotificationConfig)

    def validate(self) -> None:
        """
        Validate configuration settings.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        timeouts = {
            "rule_store_timeout_seconds": self.engine.rule_store_timeout_seconds,
            "history_query_timeout_seconds": self.engine.history_query_timeout_seconds,
            "action_timeout_seconds": self.engine.action_timeout_seconds,
            "sink_timeout_seconds": self.engine.sink_timeout_seconds,
            "webhook_timeout_seconds": self.notification.webhook_timeout_seconds,
        }
        for name, value in timeouts.items():
            if value <= 0:
                raise ConfigurationError(
                    f"{name} must be positive, got {value}",
                    component="ConfigManager"
                )

        if self.engine.increment_max_attempts < 1:
            raise ConfigurationError(
                f"increment_max_attempts must be at least 1, got {self.engine.increment_max_attempts}",
                component="ConfigManager"
            )

        if self.engine.percentage_change_threshold < 0:
            raise ConfigurationError(
                "percentage_change_threshold must be non-negative",
                component="ConfigManager"
            )

        if self.system.log_level.upper() not in VALID_LOG_LEVELS:
            raise ConfigurationError(
                f"Invalid log level: {self.system.log_level}",
                component="ConfigManager"
            )

        if self.storage.retention_days < 1:
            raise ConfigurationError(
                "retention_days must be at least 1",
                component="ConfigManager"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (excluding webhook secrets)."""
        return {
            "system": {
                "environment": self.system.environment,
                "log_level": self.system.log_level,
                "version": self.system.version
            },
            "engine": {
                "rule_store_timeout_seconds": self.engine.rule_store_timeout_seconds,
                "history_query_timeout_seconds": self.engine.history_query_timeout_seconds,
                "action_timeout_seconds": self.engine.action_timeout_seconds,
                "sink_timeout_seconds": self.engine.sink_timeout_seconds,
                "concurrent_actions": self.engine.concurrent_actions,
                "increment_max_attempts": self.engine.increment_max_attempts,
                "percentage_change_threshold": self.engine.percentage_change_threshold
            },
            "storage": {
                "rules_path": self.storage.rules_path,
                "firings_db_path": self.storage.firings_db_path,
                "retention_days": self.storage.retention_days
            },
            "notification": {
                "default_channels": list(self.notification.default_channels),
                "has_webhook_url": bool(self.notification.webhook_url),
                "webhook_timeout_seconds": self.notification.webhook_timeout_seconds,
                "webhook_max_retries": self.notification.webhook_max_retries
            }
        }


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigManager:
    """
    Manages configuration loading from environment variables and files.
    Implements fail-fast principle for invalid configurations.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Optional path to JSON config file
        """
        self.config_path = config_path
        self._config: Optional[CatoRulesConfig] = None

    def load(self) -> CatoRulesConfig:
        """
        Load configuration from environment and optional file.
        Priority: Environment Variables > Config File > Defaults

        Raises:
            ConfigurationError: If configuration is invalid
        """
        config = CatoRulesConfig()

        if self.config_path:
            config = self._load_from_file(self.config_path)

        config = self._load_from_environment(config)

        config.validate()

        self._config = config
        return config

    def _load_from_file(self, file_path: str) -> CatoRulesConfig:
        """
        Load configuration from JSON file.

        Raises:
            ConfigurationError: If file cannot be loaded
        """
        path = Path(file_path)
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {file_path}",
                component="ConfigManager"
            )

        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Invalid JSON in configuration file: {e}",
                component="ConfigManager"
            )

        config = CatoRulesConfig()
        sections = {
            "system": config.system,
            "engine": config.engine,
            "storage": config.storage,
            "notification": config.notification,
        }

        for section_name, section in sections.items():
            section_data = data.get(section_name) or {}
            for key, value in section_data.items():
                if not hasattr(section, key):
                    raise ConfigurationError(
                        f"Unknown setting '{section_name}.{key}'",
                        component="ConfigManager"
                    )
                setattr(section, key, value)

        return config

    def _load_from_environment(self, config: CatoRulesConfig) -> CatoRulesConfig:
        """
        Override configuration with environment variables.

        Args:
            config: Base configuration to override
        """
        try:
            log_level = os.getenv('LOG_LEVEL') or os.getenv(f'{ENV_PREFIX}LOG_LEVEL')
            if log_level:
                config.system.log_level = log_level.upper()

            environment = os.getenv(f'{ENV_PREFIX}ENVIRONMENT')
            if environment:
                config.system.environment = environment

            float_settings = {
                'RULE_STORE_TIMEOUT': 'rule_store_timeout_seconds',
                'HISTORY_QUERY_TIMEOUT': 'history_query_timeout_seconds',
                'ACTION_TIMEOUT': 'action_timeout_seconds',
                'SINK_TIMEOUT': 'sink_timeout_seconds',
                'PERCENTAGE_CHANGE_THRESHOLD': 'percentage_change_threshold',
            }
            for env_name, attr in float_settings.items():
                value = os.getenv(f'{ENV_PREFIX}{env_name}')
                if value:
                    setattr(config.engine, attr, float(value))

            concurrent = os.getenv(f'{ENV_PREFIX}CONCURRENT_ACTIONS')
            if concurrent:
                config.engine.concurrent_actions = _parse_bool(concurrent)

            attempts = os.getenv(f'{ENV_PREFIX}INCREMENT_MAX_ATTEMPTS')
            if attempts:
                config.engine.increment_max_attempts = int(attempts)

            rules_path = os.getenv(f'{ENV_PREFIX}RULES_PATH')
            if rules_path:
                config.storage.rules_path = rules_path

            db_path = os.getenv(f'{ENV_PREFIX}FIRINGS_DB_PATH')
            if db_path:
                config.storage.firings_db_path = db_path

            retention = os.getenv(f'{ENV_PREFIX}RETENTION_DAYS')
            if retention:
                config.storage.retention_days = int(retention)

            channels = os.getenv(f'{ENV_PREFIX}DEFAULT_CHANNELS')
            if channels:
                config.notification.default_channels = [
                    c.strip() for c in channels.split(',') if c.strip()
                ]

            webhook_url = os.getenv(f'{ENV_PREFIX}WEBHOOK_URL')
            if webhook_url:
                config.notification.webhook_url = webhook_url

        except ValueError as e:
            raise ConfigurationError(
                f"Invalid numeric environment setting: {e}",
                component="ConfigManager"
            )

        return config

    @property
    def config(self) -> CatoRulesConfig:
        """Return the loaded configuration, loading it on first access."""
        if self._config is None:
            return self.load()
        return self._config


def load_config(config_path: Optional[str] = None) -> CatoRulesConfig:
    """
    Convenience function to load configuration.

    Args:
        config_path: Optional path to JSON config file

    Returns:
        CatoRulesConfig: Validated configuration
    """
    return ConfigManager(config_path).load()
