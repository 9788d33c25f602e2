"""Configuration module for the churn training pipeline."""

from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError

from churn_pipeline.exceptions import ConfigurationError

from .settings import RANKING_METRICS, VALIDATION_RULES, PipelineSettings

# Project root directory
ROOT_DIR = Path(__file__).parent.parent.absolute()

# Default configuration file
CONFIG_PATH = ROOT_DIR / "config" / "config.yaml"


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Load the raw configuration mapping from a YAML file."""
    config_path = Path(path) if path is not None else CONFIG_PATH
    if not config_path.is_file():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Cannot read configuration {config_path}: {exc}") from exc

    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration {config_path} must be a mapping")
    return config


def parse_config(config: Dict[str, Any]) -> PipelineSettings:
    """Validate a raw configuration mapping."""
    try:
        return PipelineSettings.model_validate(config)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from exc


def get_config(path: Optional[Union[str, Path]] = None) -> PipelineSettings:
    """Load and validate the configuration."""
    return parse_config(load_config(path))


__all__ = [
    "CONFIG_PATH",
    "PipelineSettings",
    "RANKING_METRICS",
    "ROOT_DIR",
    "VALIDATION_RULES",
    "get_config",
    "load_config",
    "parse_config",
]
