from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from focusflow import ARGS_DIR
from focusflow.logging_config import get_logger

logger = get_logger(__name__)


# =============================================================================
# EstimationConfig (args/estimation.yaml)
# =============================================================================

class EstimatorSettingsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    minimum_observations: int = Field(default=3, ge=1)


class PipelineSettingsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    finalize_timeout_seconds: float = Field(default=10.0, gt=0)
    confirm_timeout_seconds: float = Field(default=5.0, gt=0)
    default_step_minutes: int = Field(default=15, ge=1, le=120)


class GeneratorSettingsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    provider: str = Field(default="anthropic")
    model: str = Field(default="claude-3-5-haiku-20241022")
    api_key_env: str = Field(default="ANTHROPIC_API_KEY")
    max_steps: int = Field(default=7, ge=1)
    max_tokens: int = Field(default=1024, ge=1)
    creative_temperature: float = Field(default=1.0, ge=0.0, le=1.0)
    pace: str = Field(default="average")


class StoreSettingsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    backend: str = Field(default="sqlite")
    db_path: Optional[str] = None


class EstimationConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    estimator: EstimatorSettingsConfig = Field(default_factory=EstimatorSettingsConfig)
    pipeline: PipelineSettingsConfig = Field(default_factory=PipelineSettingsConfig)
    generator: GeneratorSettingsConfig = Field(default_factory=GeneratorSettingsConfig)
    store: StoreSettingsConfig = Field(default_factory=StoreSettingsConfig)


# =============================================================================
# Loader
# =============================================================================

_CONFIG_MAP: dict[str, type[BaseModel]] = {
    "estimation": EstimationConfig,
}


def load_and_validate(
    config_name: str,
    model_class: type[BaseModel] | None = None,
    args_dir: Path | None = None,
) -> BaseModel:
    if model_class is None:
        model_class = _CONFIG_MAP.get(config_name)
        if model_class is None:
            raise ValueError(f"Unknown config: {config_name}. Available: {list(_CONFIG_MAP.keys())}")

    yaml_path = (args_dir or ARGS_DIR) / f"{config_name}.yaml"

    try:
        if yaml_path.exists():
            with open(yaml_path) as f:
                raw = yaml.safe_load(f) or {}
        else:
            raw = {}

        return model_class.model_validate(raw)
    except Exception as e:
        logger.warning("config validation failed, using defaults", config=config_name, error=str(e))
        return model_class()


def load_estimation_config(args_dir: Path | None = None) -> EstimationConfig:
    return load_and_validate("estimation", EstimationConfig, args_dir=args_dir)
