"""
Configuration management and loading.

Handles service settings: database location, generator backends,
timeouts, usage log retry policy and payment conversion.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


class GeneratorBackend(Enum):
    """Available generator backends."""
    PLACEHOLDER = "placeholder"
    OPENAI = "openai"
    DISABLED = "disabled"


@dataclass(frozen=True)
class DatabaseConfig:
    """SQLite database location."""
    path: str = "avatar_studio.db"

    def __post_init__(self):
        if not self.path or not str(self.path).strip():
            raise ValueError("database path cannot be empty")


@dataclass(frozen=True)
class GeneratorConfig:
    """Generator backend selection per content kind."""
    image_backend: GeneratorBackend = GeneratorBackend.PLACEHOLDER
    video_backend: GeneratorBackend = GeneratorBackend.PLACEHOLDER
    image_model: str = "dall-e-3"
    image_size: str = "1024x1024"
    image_quality: Optional[str] = None

    def __post_init__(self):
        if self.video_backend is GeneratorBackend.OPENAI:
            raise ValueError("openai backend does not support video")


@dataclass(frozen=True)
class TimeoutConfig:
    """Per-kind generator call timeouts in seconds."""
    image: float = 30.0
    video: float = 120.0

    def __post_init__(self):
        if self.image <= 0:
            raise ValueError("image timeout must be > 0")
        if self.video <= 0:
            raise ValueError("video timeout must be > 0")


@dataclass(frozen=True)
class UsageLogRetryConfig:
    """Background retry policy for failed usage log writes."""
    max_retries: int = 5
    base_delay: float = 0.5
    max_delay: float = 30.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")


@dataclass(frozen=True)
class PaymentConfig:
    """Conversion of settled payments into credits."""
    credits_per_usd: int = 10

    def __post_init__(self):
        if self.credits_per_usd <= 0:
            raise ValueError("credits_per_usd must be > 0")


@dataclass(frozen=True)
class ServiceConfig:
    """Complete service configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    generator: GeneratorConfig = field(default_factory=GeneratorConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    usage_log_retry: UsageLogRetryConfig = field(default_factory=UsageLogRetryConfig)
    payments: PaymentConfig = field(default_factory=PaymentConfig)


def default_service_config() -> ServiceConfig:
    """Configuration used when no file is given."""
    return ServiceConfig()


def load_service_config(path: str) -> ServiceConfig:
    """Load and validate service configuration from YAML file.

    Every section is optional and falls back to its defaults, but unknown
    keys and invalid values are rejected so misconfigurations fail loudly.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ServiceConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Service config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return default_service_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'database', 'generator', 'timeouts', 'usage_log_retry', 'payments'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    database_data = _section(raw_config, 'database', {'path'})
    database = DatabaseConfig(**database_data)

    generator_data = _section(
        raw_config, 'generator',
        {'image_backend', 'video_backend', 'image_model', 'image_size', 'image_quality'}
    )
    for key in ('image_backend', 'video_backend'):
        if key in generator_data:
            generator_data[key] = _parse_backend(generator_data[key], f"generator.{key}")
    generator = GeneratorConfig(**generator_data)

    timeouts_data = _section(raw_config, 'timeouts', {'image', 'video'})
    timeouts = TimeoutConfig(**{
        key: _number(value, f"timeouts.{key}") for key, value in timeouts_data.items()
    })

    retry_data = _section(raw_config, 'usage_log_retry', {'max_retries', 'base_delay', 'max_delay'})
    if 'max_retries' in retry_data:
        retry_data['max_retries'] = _integer(retry_data['max_retries'], "usage_log_retry.max_retries")
    for key in ('base_delay', 'max_delay'):
        if key in retry_data:
            retry_data[key] = _number(retry_data[key], f"usage_log_retry.{key}")
    usage_log_retry = UsageLogRetryConfig(**retry_data)

    payments_data = _section(raw_config, 'payments', {'credits_per_usd'})
    if 'credits_per_usd' in payments_data:
        payments_data['credits_per_usd'] = _integer(
            payments_data['credits_per_usd'], "payments.credits_per_usd"
        )
    payments = PaymentConfig(**payments_data)

    return ServiceConfig(
        database=database,
        generator=generator,
        timeouts=timeouts,
        usage_log_retry=usage_log_retry,
        payments=payments
    )


def _section(raw_config: Dict[str, Any], name: str, allowed_keys: set) -> Dict[str, Any]:
    """Extract an optional section and reject unknown keys in it.

    Raises:
        ValueError: If the section is not a dictionary or has unknown keys
    """
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return dict(data)


def _parse_backend(value: Any, path: str) -> GeneratorBackend:
    if not isinstance(value, str):
        raise ValueError(f"'{path}' must be a string")
    try:
        return GeneratorBackend(value.lower())
    except ValueError:
        valid_backends = [backend.value for backend in GeneratorBackend]
        raise ValueError(f"'{path}' must be one of: {valid_backends}")


def _number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    return float(value)


def _integer(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{path}' must be an integer")
    return value
