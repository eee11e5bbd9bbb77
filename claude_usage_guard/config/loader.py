"""
Configuration management and loading.

Builds the monitor configuration once at process start from defaults,
the storage environment variable and an optional YAML file.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

STORAGE_ENV_VAR = "CLAUDE_CENTRAL_STORAGE"
CONFIG_ENV_VAR = "CLAUDE_USAGE_GUARD_CONFIG"
DEFAULT_STORAGE_DIR = Path.home() / ".claude-centralized"

USAGE_FILE_NAME = "usage-tracking.json"
THRESHOLD_FILE_NAME = "threshold-learning.json"
SESSION_DIR_NAME = "sessions"
THROTTLE_DIR_NAME = "throttle-events"
CONFIG_FILE_NAME = "config.yaml"

TIER_FIELDS = {
    'name', 'daily_messages', 'daily_tokens', 'concurrent_sessions',
    'warning_threshold', 'critical_threshold'
}


@dataclass(frozen=True)
class LearningConfig:
    """Tuning constants for throttle-event learning."""
    adaptation_factor: float = 0.9
    session_margin: int = 1
    adaptive_event_threshold: int = 3
    message_confidence_step: int = 20
    token_confidence_step: int = 20
    session_confidence_step: int = 25

    def __post_init__(self):
        """Validate learning constants."""
        if not 0 < self.adaptation_factor <= 1:
            raise ValueError("adaptation_factor must be in (0, 1]")
        if self.session_margin < 0:
            raise ValueError("session_margin must be >= 0")
        if self.adaptive_event_threshold < 1:
            raise ValueError("adaptive_event_threshold must be >= 1")
        for name in ('message_confidence_step', 'token_confidence_step', 'session_confidence_step'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")


@dataclass(frozen=True)
class AlertCooldowns:
    """Minimum time between two alerts of the same category."""
    critical: timedelta = timedelta(minutes=5)
    warning: timedelta = timedelta(minutes=10)
    session: timedelta = timedelta(minutes=1)
    rate: timedelta = timedelta(minutes=5)

    def __post_init__(self):
        """Validate cooldowns are not negative."""
        for name in ('critical', 'warning', 'session', 'rate'):
            if getattr(self, name) < timedelta(0):
                raise ValueError(f"{name} cooldown cannot be negative")


@dataclass(frozen=True)
class MonitorConfig:
    """Complete monitor configuration.

    Constructed once and handed to each component; nothing below the CLI
    reads the environment directly.
    """
    storage_dir: Path = DEFAULT_STORAGE_DIR
    subscription: str = "max"
    period_hours: float = 24.0
    refresh_interval: float = 5.0
    messages_per_session_hour: float = 10.0
    history_retention_days: int = 90
    learning: LearningConfig = field(default_factory=LearningConfig)
    cooldowns: AlertCooldowns = field(default_factory=AlertCooldowns)
    tier_overrides: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self):
        """Validate monitoring values are positive."""
        if self.period_hours <= 0:
            raise ValueError("period_hours must be > 0")
        if self.refresh_interval <= 0:
            raise ValueError("refresh_interval must be > 0")
        if self.messages_per_session_hour < 0:
            raise ValueError("messages_per_session_hour must be >= 0")
        if self.history_retention_days <= 0:
            raise ValueError("history_retention_days must be > 0")

    @property
    def period_length(self) -> timedelta:
        return timedelta(hours=self.period_hours)

    @property
    def usage_file(self) -> Path:
        return self.storage_dir / USAGE_FILE_NAME

    @property
    def threshold_file(self) -> Path:
        return self.storage_dir / THRESHOLD_FILE_NAME

    @property
    def session_dir(self) -> Path:
        return self.storage_dir / SESSION_DIR_NAME

    @property
    def throttle_dir(self) -> Path:
        return self.storage_dir / THROTTLE_DIR_NAME


def resolve_storage_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    """Return the storage directory named by the environment, or the default."""
    env = os.environ if env is None else env
    value = env.get(STORAGE_ENV_VAR)
    return Path(value).expanduser() if value else DEFAULT_STORAGE_DIR


def load_monitor_config(
    path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None
) -> MonitorConfig:
    """Load and validate the monitor configuration.

    The file is looked up at ``path``, then ``$CLAUDE_USAGE_GUARD_CONFIG``,
    then ``<storage>/config.yaml``. A missing file yields the defaults; an
    explicitly named file that does not exist is an error.

    Args:
        path: Optional explicit path to a YAML configuration file
        env: Environment mapping (defaults to ``os.environ``)

    Returns:
        Validated MonitorConfig object

    Raises:
        FileNotFoundError: If an explicitly named config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    env = os.environ if env is None else env
    storage_dir = resolve_storage_dir(env)

    explicit = path or env.get(CONFIG_ENV_VAR)
    if explicit:
        config_path = Path(explicit).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Monitor config file not found: {explicit}")
    else:
        config_path = storage_dir / CONFIG_FILE_NAME
        if not config_path.exists():
            return MonitorConfig(storage_dir=storage_dir)

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {config_path}: {e}")

    if raw_config is None:
        return MonitorConfig(storage_dir=storage_dir)
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration file must contain a mapping")

    return parse_monitor_config(raw_config, storage_dir)


def parse_monitor_config(raw_config: Dict[str, Any], storage_dir: Path = DEFAULT_STORAGE_DIR) -> MonitorConfig:
    """Build a MonitorConfig from already-parsed YAML data.

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_top_keys = {'storage', 'monitoring', 'learning', 'alerts', 'tiers'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    storage_data = _section(raw_config, 'storage', {'path'})
    if 'path' in storage_data:
        if not isinstance(storage_data['path'], str) or not storage_data['path'].strip():
            raise ValueError("'path' in storage must be a non-empty string")
        storage_dir = Path(storage_data['path']).expanduser()

    monitoring_data = _section(raw_config, 'monitoring', {
        'subscription', 'period_hours', 'refresh_interval',
        'messages_per_session_hour', 'history_retention_days'
    })
    monitoring: Dict[str, Any] = {}
    if 'subscription' in monitoring_data:
        subscription = monitoring_data['subscription']
        if not isinstance(subscription, str):
            raise ValueError("'subscription' in monitoring must be a string")
        monitoring['subscription'] = subscription.lower()
    for key in ('period_hours', 'refresh_interval', 'messages_per_session_hour'):
        if key in monitoring_data:
            monitoring[key] = _number(monitoring_data[key], f"monitoring.{key}")
    if 'history_retention_days' in monitoring_data:
        monitoring['history_retention_days'] = _integer(
            monitoring_data['history_retention_days'], "monitoring.history_retention_days"
        )

    learning_data = _section(raw_config, 'learning', {
        'adaptation_factor', 'session_margin', 'adaptive_event_threshold',
        'message_confidence_step', 'token_confidence_step', 'session_confidence_step'
    })
    learning_kwargs: Dict[str, Any] = {}
    for key, value in learning_data.items():
        if key == 'adaptation_factor':
            learning_kwargs[key] = _number(value, f"learning.{key}")
        else:
            learning_kwargs[key] = _integer(value, f"learning.{key}")

    alerts_data = _section(raw_config, 'alerts', {
        'critical_cooldown', 'warning_cooldown', 'session_cooldown', 'rate_cooldown'
    })
    cooldown_kwargs = {
        key[:-len('_cooldown')]: timedelta(seconds=_number(value, f"alerts.{key}"))
        for key, value in alerts_data.items()
    }

    tiers_data = _section(raw_config, 'tiers', None)
    tier_overrides: Dict[str, Dict[str, Any]] = {}
    for tier_name, tier_data in tiers_data.items():
        if not isinstance(tier_data, dict):
            raise ValueError(f"Tier '{tier_name}' must be a dictionary")
        unknown_tier_keys = set(tier_data.keys()) - TIER_FIELDS
        if unknown_tier_keys:
            raise ValueError(f"Unknown keys in tiers.{tier_name}: {unknown_tier_keys}")
        tier_overrides[str(tier_name).lower()] = {
            key: _tier_value(key, value, f"tiers.{tier_name}.{key}") for key, value in tier_data.items()
        }

    return MonitorConfig(
        storage_dir=storage_dir,
        learning=LearningConfig(**learning_kwargs),
        cooldowns=AlertCooldowns(**cooldown_kwargs),
        tier_overrides=tier_overrides,
        **monitoring
    )


def _section(raw_config: Dict[str, Any], name: str, allowed_keys: Optional[set]) -> Dict[str, Any]:
    """Return a validated config section, or an empty dict if absent."""
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    if allowed_keys is not None:
        unknown_keys = set(data.keys()) - allowed_keys
        if unknown_keys:
            raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    return float(value)


def _integer(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{path}' must be an integer")
    return value


def _tier_value(key: str, value: Any, path: str) -> Any:
    if key == 'name':
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"'{path}' must be a non-empty string")
        return value
    if key.endswith('_threshold'):
        return _number(value, path)
    return _integer(value, path)
