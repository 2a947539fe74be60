"""Configuration loader and validation for engine settings."""

from pathlib import Path
from typing import Any, Optional
import logging
import os

import yaml
from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "HOMELEDGER_CONFIG"


class ConfigurationError(ValueError):
    """Error in configuration."""


class MatchingSettings(BaseModel):
    """Fuzzy matcher tunables."""

    date_window_days: int = Field(default=3, ge=0)
    acceptance_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    amount_weight: float = Field(default=0.40, ge=0.0, le=1.0)
    date_weight: float = Field(default=0.25, ge=0.0, le=1.0)
    text_weight: float = Field(default=0.35, ge=0.0, le=1.0)
    # Text similarity below this counts as no agreement at all
    min_text_score: float = Field(default=0.4, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "MatchingSettings":
        total = self.amount_weight + self.date_weight + self.text_weight
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"matching weights must sum to 1.0, got {total:.4f}")
        # Same amount on a nearby date alone must never be a match
        if self.acceptance_threshold <= self.amount_weight + self.date_weight:
            raise ValueError(
                "acceptance_threshold must exceed amount_weight + date_weight "
                f"({self.amount_weight + self.date_weight:.2f}) so that a match needs agreeing text"
            )
        return self


class RecurringSettings(BaseModel):
    """Recurring detector tunables."""

    min_occurrences: int = Field(default=3, ge=2)
    frequency_tolerance: float = Field(default=0.15, gt=0.0, lt=0.5)
    upcoming_days: int = Field(default=30, ge=1)
    link_variance_slack: float = Field(default=5.0, ge=0.0)


class ReconciliationSettings(BaseModel):
    """Account reconciliation tunables."""

    min_score: float = Field(default=0.5, ge=0.0, le=1.0)
    name_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    type_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    balance_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    balance_tolerance_percent: float = Field(default=1.0, ge=0.0)
    balance_tolerance_floor: float = Field(default=1.00, ge=0.0)
    max_workers: int = Field(default=4, ge=1)

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "ReconciliationSettings":
        total = self.name_weight + self.type_weight + self.balance_weight
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"reconciliation weights must sum to 1.0, got {total:.4f}")
        return self


class CacheSettings(BaseModel):
    """Lookup cache tunables."""

    category_ttl_seconds: float = Field(default=300.0, gt=0.0)
    max_entries: int = Field(default=1024, ge=1)


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "WARNING"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


class EngineConfig(BaseModel):
    """Main configuration model."""

    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    recurring: RecurringSettings = Field(default_factory=RecurringSettings)
    reconciliation: ReconciliationSettings = Field(default_factory=ReconciliationSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a dictionary."""
    return EngineConfig().model_dump(exclude={"config_file_path"})


def load_config(config_path: Optional[Path] = None) -> EngineConfig:
    """Load configuration from a YAML file or use defaults.

    Args:
        config_path: Path to YAML configuration file. If None, the
            HOMELEDGER_CONFIG environment variable is consulted.

    Returns:
        EngineConfig with user values merged over defaults

    Raises:
        ConfigurationError: If the file exists but holds invalid settings
    """
    if config_path is None and os.environ.get(CONFIG_ENV_VAR):
        config_path = Path(os.environ[CONFIG_ENV_VAR])

    config_dict = get_default_config()

    if config_path and config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        with open(config_path, "r", encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
        if not isinstance(user_config, dict):
            raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")

        config_dict = _deep_merge(config_dict, user_config)
        config_dict["config_file_path"] = str(config_path)
    else:
        logger.debug("Using default configuration")

    try:
        return EngineConfig(**config_dict)
    except ValueError as e:
        # pydantic's ValidationError subclasses ValueError
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def generate_default_config(output_path: Path) -> None:
    """Write the default configuration to a YAML file."""
    yaml_content = "# homeledger engine configuration\n\n"
    yaml_content += yaml.safe_dump(get_default_config(), default_flow_style=False, sort_keys=False)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(yaml_content)

    logger.info(f"Generated configuration file: {output_path}")
