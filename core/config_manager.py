"""
Configuration Management System for Sentinel
"""

import os
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List
from enum import Enum

import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger('sentinel.core.config_manager')


class Environment(Enum):
    """Supported deployment environments"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing"""
    pass


class TargetConfig(BaseModel):
    """A monitored target as declared in configuration"""
    name: str
    kind: str = "http"
    address: Optional[str] = None
    timeout: float = 10.0
    check_interval: float = 30.0
    check: Optional[str] = None  # custom predicate name, defaults to target name

    @field_validator('kind')
    @classmethod
    def validate_kind(cls, v):
        valid_kinds = ['http', 'tcp', 'custom', 'system']
        if v.lower() not in valid_kinds:
            raise ValueError(f'kind must be one of {valid_kinds}')
        return v.lower()


class SecretSpec(BaseModel):
    """A named secret managed by the rotation manager"""
    name: str
    kind: str

    @field_validator('kind')
    @classmethod
    def validate_kind(cls, v):
        valid_kinds = ['bot_credential', 'api_key', 'signing_secret', 'encryption_key']
        if v not in valid_kinds:
            raise ValueError(f'kind must be one of {valid_kinds}')
        return v


class ProviderConfig(BaseModel):
    """Deployment provider settings"""
    type: str
    name: Optional[str] = None
    api_key: Optional[str] = None
    team_id: Optional[str] = None
    project: Optional[str] = None
    region: str = "nyc"
    url: Optional[str] = None
    endpoint: Optional[str] = None
    restore_url: Optional[str] = None
    timeout: float = 60.0


class DnsConfig(BaseModel):
    """DNS provider settings"""
    type: str = "cloudflare"
    api_token: str
    zone_id: str
    proxied: bool = False
    ttl: int = 300


class AlertChannelConfig(BaseModel):
    """Alert delivery channel"""
    type: str
    name: Optional[str] = None
    bot_token: Optional[str] = None
    chat_id: Optional[str] = None
    url: Optional[str] = None
    token: Optional[str] = None
    secret: Optional[str] = None
    parse_mode: str = "HTML"

    @field_validator('type')
    @classmethod
    def validate_type(cls, v):
        valid_types = ['telegram', 'webhook']
        if v.lower() not in valid_types:
            raise ValueError(f'type must be one of {valid_types}')
        return v.lower()


class HostingConfig(BaseModel):
    """Where hosting descriptors live and how services are restarted"""
    env_file: str = ".env"
    compose_files: List[str] = Field(default_factory=lambda: [
        "docker-compose.frontend.yml",
        "docker-compose.bot.yml",
    ])
    restart_command: Optional[List[str]] = None


def _default_secrets() -> List[SecretSpec]:
    return [
        SecretSpec(name="TELEGRAM_BOT_TOKEN", kind="bot_credential"),
        SecretSpec(name="TELEGRAM_ALERT_BOT_TOKEN", kind="bot_credential"),
        SecretSpec(name="VERCEL_API_KEY", kind="api_key"),
        SecretSpec(name="AWS_ACCESS_KEY_ID", kind="api_key"),
        SecretSpec(name="JWT_ACCESS_SECRET", kind="signing_secret"),
        SecretSpec(name="DATA_ENCRYPTION_KEY", kind="encryption_key"),
    ]


def _default_targets() -> List[TargetConfig]:
    return [
        TargetConfig(name="System Health", kind="system", timeout=5.0),
        TargetConfig(name="Data Directory", kind="custom", check="file_system", timeout=5.0),
        TargetConfig(name="Disk Space", kind="custom", check="disk_space", timeout=5.0),
    ]


class SecurityConfiguration(BaseModel):
    """Main Sentinel configuration model with Pydantic validation"""

    # Logging Configuration
    log_level: str = "INFO"
    log_file_path: str = "./sentinel.log"
    log_max_bytes: int = 32 * 1024 * 1024  # 32MB
    log_backup_count: int = 5

    # Loop intervals (seconds)
    monitoring_interval: float = 30.0
    token_rotation_interval: float = 24 * 60 * 60
    alert_retention_seconds: float = 7 * 24 * 60 * 60
    alert_sweep_interval: float = 5.0
    alert_throttle_seconds: float = 300.0

    auto_recovery_enabled: bool = True
    # Consecutive critical checks a target needs before auto-recovery fires
    recovery_failure_threshold: int = 1

    # System check thresholds
    memory_warning_percent: float = 85.0
    memory_critical_percent: float = 95.0
    min_free_disk_bytes: int = 1024 * 1024 * 1024
    disk_path: str = "/"
    required_paths: List[str] = Field(default_factory=lambda: ["./data", "./backups", "./security"])

    # Monitored targets and managed secrets
    targets: List[TargetConfig] = Field(default_factory=_default_targets)
    secrets: List[SecretSpec] = Field(default_factory=_default_secrets)
    secret_lengths: Dict[str, int] = Field(default_factory=lambda: {
        "bot_credential": 35,
        "api_key": 64,
        "signing_secret": 128,
    })
    backup_retention_count: int = 3
    rotation_history_limit: int = 100
    bot_webhook_url: Optional[str] = None
    bot_token_secret: str = "TELEGRAM_BOT_TOKEN"

    # Recovery
    backup_dir: str = "./backups"
    backup_interval: float = 60 * 60
    scheduled_backup_retention: int = 10
    source_dir: str = "."
    restore_dir: str = "."
    archive_excludes: List[str] = Field(default_factory=lambda: ["node_modules", ".git", "backups"])
    domain_templates: Dict[str, str] = Field(default_factory=lambda: {
        "main": "vote-{timestamp}-{suffix}.vercel.app",
        "bot": "bot-{timestamp}-{suffix}.vercel.app",
        "api": "api-{timestamp}-{suffix}.vercel.app",
        "backup": "backup-{timestamp}-{suffix}.netlify.app",
    })
    recovery_history_limit: int = 50
    webhook_path: str = "/webhook"

    # Collaborators
    providers: List[ProviderConfig] = Field(default_factory=list)
    dns: Optional[DnsConfig] = None
    alert_channels: List[AlertChannelConfig] = Field(default_factory=list)
    hosting: HostingConfig = Field(default_factory=HostingConfig)
    http_timeout: float = 30.0

    # Persistence
    state_dir: str = "./security/state"
    reports_dir: str = "./security/reports"

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of {valid_levels}')
        return v.upper()

    @field_validator('monitoring_interval', 'token_rotation_interval',
                     'alert_retention_seconds', 'alert_sweep_interval', 'backup_interval')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError('intervals must be positive')
        return v

    @field_validator('backup_retention_count')
    @classmethod
    def validate_backup_count(cls, v):
        if v < 1:
            raise ValueError('backup_retention_count must be at least 1')
        return v

    @field_validator('recovery_failure_threshold', 'scheduled_backup_retention')
    @classmethod
    def validate_at_least_one(cls, v):
        if v < 1:
            raise ValueError('thresholds and retention counts must be at least 1')
        return v

    @field_validator('domain_templates')
    @classmethod
    def validate_domain_roles(cls, v):
        missing = {'main', 'bot', 'api', 'backup'} - set(v)
        if missing:
            raise ValueError(f'domain_templates missing roles: {sorted(missing)}')
        return v


class ConfigurationManager:
    """
    Centralized configuration management system.

    Layers config/default.yaml, config/<environment>.yaml, the .env file
    and process environment variables, then validates the result.
    """

    # Environment variable -> (config key, type)
    ENV_MAPPINGS = {
        'LOG_LEVEL': ('log_level', str),
        'LOG_FILE_PATH': ('log_file_path', str),
        'MONITORING_INTERVAL': ('monitoring_interval', float),
        'TOKEN_ROTATION_INTERVAL': ('token_rotation_interval', float),
        'AUTO_RECOVERY_ENABLED': ('auto_recovery_enabled', bool),
        'RECOVERY_FAILURE_THRESHOLD': ('recovery_failure_threshold', int),
        'BACKUP_INTERVAL': ('backup_interval', float),
        'BACKUP_DIR': ('backup_dir', str),
        'STATE_DIR': ('state_dir', str),
        'BOT_WEBHOOK_URL': ('bot_webhook_url', str),
    }

    def __init__(self, base_path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None):
        self.base_path = base_path or Path.cwd()
        self.config_dir = self.base_path / "config"
        self._environ = environ
        self.environment = self._detect_environment()
        self._configuration: Optional[SecurityConfiguration] = None

        logger.info(f"ConfigurationManager initialized for environment: {self.environment.value}")

    def load_configuration(self) -> SecurityConfiguration:
        """
        Load and validate configuration from all sources.

        Returns:
            Validated configuration object

        Raises:
            ConfigurationError: If configuration is invalid or missing
        """
        try:
            config_data = self._load_base_configuration()
            config_data = self._apply_environment_overrides(config_data)
            config_data = self._apply_environment_variables(config_data)

            self._configuration = SecurityConfiguration(**config_data)

            logger.info("Configuration loaded successfully")
            return self._configuration

        except (ValidationError, yaml.YAMLError, ValueError) as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}")

    def get_configuration(self) -> SecurityConfiguration:
        """Get current configuration, loading if necessary"""
        if self._configuration is None:
            return self.load_configuration()
        return self._configuration

    def reload_configuration(self) -> SecurityConfiguration:
        """Reload configuration from sources"""
        self._configuration = None
        return self.load_configuration()

    def get_config_value(self, key: str, default: Any = None) -> Any:
        """
        Get a specific configuration value with dot notation support.

        Args:
            key: Configuration key (supports dot notation like 'hosting.env_file')
            default: Default value if key not found
        """
        value: Any = self.get_configuration()
        for k in key.split('.'):
            if isinstance(value, dict):
                if k not in value:
                    return default
                value = value[k]
            elif hasattr(value, k):
                value = getattr(value, k)
            else:
                return default
        return value

    def _env(self) -> Dict[str, str]:
        return dict(os.environ) if self._environ is None else self._environ

    def _detect_environment(self) -> Environment:
        """Detect current environment from various sources"""
        env = self._env()

        env_var = env.get('SENTINEL_ENVIRONMENT', '').lower()
        if env_var:
            try:
                return Environment(env_var)
            except ValueError:
                logger.warning(f"Unknown SENTINEL_ENVIRONMENT '{env_var}', falling back to detection")

        if env.get('PRODUCTION'):
            return Environment.PRODUCTION

        return Environment.DEVELOPMENT

    def _load_base_configuration(self) -> Dict[str, Any]:
        """Load base configuration from default.yaml"""
        config_data: Dict[str, Any] = {}

        default_config_path = self.config_dir / "default.yaml"
        if default_config_path.exists():
            config_data.update(self._load_yaml_file(default_config_path))
            logger.debug(f"Loaded base configuration from {default_config_path}")

        return config_data

    def _apply_environment_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment-specific configuration overrides"""
        env_config_path = self.config_dir / f"{self.environment.value}.yaml"
        if env_config_path.exists():
            env_config = self._load_yaml_file(env_config_path)
            config_data = self._deep_merge(config_data, env_config)
            logger.debug(f"Applied environment overrides from {env_config_path}")

        return config_data

    def _apply_environment_variables(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply .env values, then process environment variables on top"""
        values: Dict[str, str] = {}

        env_file = self.base_path / '.env'
        if env_file.exists():
            values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
            logger.debug("Loaded configuration from .env file")

        values.update(self._env())

        for env_var, (config_key, value_type) in self.ENV_MAPPINGS.items():
            raw = values.get(env_var)
            if raw is None or raw == '':
                continue
            if value_type is bool:
                config_data[config_key] = raw.lower() in ('true', '1', 'yes', 'on')
            elif value_type in (int, float):
                try:
                    config_data[config_key] = value_type(raw)
                except ValueError:
                    logger.warning(f"Invalid numeric value for {env_var}: {raw}")
                    continue
            else:
                config_data[config_key] = raw
            logger.debug(f"Applied environment variable {env_var} -> {config_key}")

        self._apply_channel_shortcuts(config_data, values)
        self._apply_target_shortcuts(config_data, values)
        self._apply_provider_shortcuts(config_data, values)

        return config_data

    def _apply_channel_shortcuts(self, config_data: Dict[str, Any], values: Dict[str, str]):
        channels = list(config_data.get('alert_channels') or [])

        bot_token = values.get('TELEGRAM_ALERT_BOT_TOKEN')
        chat_id = values.get('TELEGRAM_ALERT_CHAT_ID')
        if bot_token and chat_id:
            channels.append({'type': 'telegram', 'name': 'telegram', 'bot_token': bot_token, 'chat_id': chat_id})

        webhook_url = values.get('WEBHOOK_ALERT_URL')
        if webhook_url:
            channels.append({
                'type': 'webhook',
                'name': 'webhook',
                'url': webhook_url,
                'token': values.get('WEBHOOK_ALERT_TOKEN'),
                'secret': values.get('WEBHOOK_ALERT_SECRET'),
            })

        if channels:
            config_data['alert_channels'] = channels

    def _apply_target_shortcuts(self, config_data: Dict[str, Any], values: Dict[str, str]):
        domains = {
            'Web Frontend': values.get('WEB_DOMAIN'),
            'Telegram Bot': values.get('BOT_DOMAIN'),
            'API Backend': values.get('API_DOMAIN'),
        }
        extra = [
            {'name': name, 'kind': 'http', 'address': f"https://{domain}/health", 'timeout': 10.0}
            for name, domain in domains.items() if domain
        ]
        if not extra:
            return

        targets = config_data.get('targets')
        if targets is None:
            targets = [t.model_dump() for t in _default_targets()]
        existing = {t['name'] for t in targets}
        config_data['targets'] = list(targets) + [t for t in extra if t['name'] not in existing]

    def _apply_provider_shortcuts(self, config_data: Dict[str, Any], values: Dict[str, str]):
        vercel_key = values.get('VERCEL_API_KEY')
        providers = list(config_data.get('providers') or [])
        if vercel_key and not any(p.get('type') == 'vercel' for p in providers):
            providers.append({'type': 'vercel', 'api_key': vercel_key, 'team_id': values.get('VERCEL_TEAM_ID')})
            config_data['providers'] = providers

    def _load_yaml_file(self, path: Path) -> Dict[str, Any]:
        """Load configuration from YAML file"""
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a mapping at the top level")
        return data

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


# Global configuration manager instance
_global_config_manager: Optional[ConfigurationManager] = None


def get_config_manager() -> ConfigurationManager:
    """Get the global configuration manager instance"""
    global _global_config_manager
    if _global_config_manager is None:
        _global_config_manager = ConfigurationManager()
    return _global_config_manager
