# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - YAML Configuration Loader
# ════════════════════════════════════════════════════════════════════════════════
# LearnerArguments and configuration management from YAML files.
#
# Design Principles:
# - Pydantic validation ensures type safety at load time
# - Frozen models: a built learner's configuration never changes
# - Sensible defaults allow minimal configuration
# - Environment variable interpolation for paths and secrets
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from trainloop.core.errors import (
    ConfigurationError,
    SchemaValidationError,
    YAMLParseError,
)
from trainloop.core.types import MIN_SAFE_NUM_KEEP

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════════
# Environment Variable Interpolation
# ═════════════════════════════════════════════════════════════════════════════════

ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def interpolate_env_vars(value: Any) -> Any:
    """
    Recursively interpolate environment variables in configuration values.

    Supports ${VAR_NAME} syntax with optional default: ${VAR_NAME:-default}

    Example:
        "${RUN_DIR:-./artifacts}" -> "./artifacts" if RUN_DIR not set
    """
    if isinstance(value, str):
        def replace_env_var(match: re.Match) -> str:
            var_spec = match.group(1)

            if ":-" in var_spec:
                var_name, default = var_spec.split(":-", 1)
            else:
                var_name, default = var_spec, ""

            return os.environ.get(var_name.strip(), default)

        return ENV_VAR_PATTERN.sub(replace_env_var, value)

    elif isinstance(value, dict):
        return {k: interpolate_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [interpolate_env_vars(item) for item in value]

    return value


# ═════════════════════════════════════════════════════════════════════════════════
# Nested Configuration
# ═════════════════════════════════════════════════════════════════════════════════

class CheckpointConfig(BaseModel):
    """
    File checkpointer configuration.

    A `num_keep` of 1 is accepted but unsafe: a crash during the
    asynchronous write/evict sequence can leave no valid checkpoint.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    num_keep: int = Field(
        default=MIN_SAFE_NUM_KEEP, ge=1,
        description="Checkpoints retained per component (oldest deleted)"
    )
    recorder: Literal["torch", "json"] = Field(
        default="torch",
        description="Record codec used to persist state dicts"
    )


class LoggingConfig(BaseModel):
    """
    Run log configuration.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Level of the experiment.log handler"
    )
    log_file: str = Field(
        default="experiment.log",
        description="Run log file name, relative to the learner directory"
    )


class DashboardConfig(BaseModel):
    """
    Dashboard rendering configuration.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    renderer: Literal["cli", "none"] = Field(
        default="cli",
        description="Renderer used to display metrics"
    )
    plot_points: int = Field(
        default=60, ge=2,
        description="Maximum points kept per plotted series"
    )
    refresh_every: int = Field(
        default=1, ge=1,
        description="Render the progress view every N items"
    )


# ═════════════════════════════════════════════════════════════════════════════════
# Learner Arguments - Master Configuration
# ═════════════════════════════════════════════════════════════════════════════════

class LearnerArguments(BaseModel):
    """
    Master learner configuration loaded from YAML.

    Example YAML:
    ```yaml
    learner:
      directory: ./artifacts
      num_epochs: 10
      grad_accumulation: 4
      devices: [cpu]
      checkpointer:
        num_keep: 2
        recorder: torch
    ```
    """
    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    directory: str = Field(
        default="./artifacts",
        description="Directory for checkpoints, metric logs and the run log"
    )
    num_epochs: int = Field(
        default=1, ge=1,
        description="Number of training epochs"
    )
    checkpoint: Optional[int] = Field(
        default=None, ge=1,
        description="Epoch to resume from (checkpoints must exist)"
    )
    grad_accumulation: Optional[int] = Field(
        default=None, ge=1,
        description="Forward/backward passes summed per optimizer step"
    )
    devices: List[str] = Field(
        default_factory=lambda: ["auto"],
        description="Ordered device list; the first is the primary device"
    )
    checkpointer: Optional[CheckpointConfig] = Field(
        default=None,
        description="File checkpointer settings (None disables checkpointing)"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Run log configuration"
    )
    dashboard: DashboardConfig = Field(
        default_factory=DashboardConfig,
        description="Dashboard configuration"
    )

    @field_validator("devices")
    @classmethod
    def validate_devices(cls, devices: List[str]) -> List[str]:
        if not devices:
            raise ValueError("devices must contain at least one device")
        return devices

    @model_validator(mode="after")
    def validate_arguments(self) -> "LearnerArguments":
        """Cross-field validation for configuration consistency."""
        if self.checkpoint is not None and self.checkpoint > self.num_epochs:
            raise ValueError(
                f"checkpoint ({self.checkpoint}) must not exceed num_epochs ({self.num_epochs})"
            )
        if self.checkpoint is not None and self.checkpointer is None:
            raise ValueError("checkpoint requires a checkpointer section")
        return self

    @property
    def output_path(self) -> Path:
        """Return directory as Path object."""
        return Path(self.directory)


class LearnerConfig(BaseModel):
    """
    Immutable configuration of a built learner.
    """
    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    num_epochs: int = Field(ge=1)
    checkpoint: Optional[int] = Field(default=None, ge=1)
    directory: str
    grad_accumulation: Optional[int] = Field(default=None, ge=1)
    devices: tuple = Field(min_length=1)


# ═════════════════════════════════════════════════════════════════════════════════
# YAML Loading Functions
# ═════════════════════════════════════════════════════════════════════════════════

def _validation_messages(error: Exception) -> tuple:
    errors = []
    if isinstance(error, ValidationError):
        for err in error.errors():
            loc = ".".join(str(x) for x in err.get("loc", []))
            msg = err.get("msg", "Unknown error")
            errors.append(f"{loc}: {msg}")
    return tuple(errors)


def load_learner_config(
    yaml_path: Union[str, Path],
    *,
    config_key: str = "learner",
    interpolate_env: bool = True,
) -> LearnerArguments:
    """
    Load LearnerArguments from YAML file.

    The learner config can be a dedicated file or a section within a
    larger config.

    Args:
        yaml_path: Path to YAML configuration file
        config_key: Top-level key containing learner config (default: "learner")
        interpolate_env: Whether to substitute ${VAR} with environment variables

    Raises:
        YAMLParseError: If YAML syntax is invalid
        SchemaValidationError: If configuration doesn't match schema
        ConfigurationError: For other configuration issues
    """
    yaml_path = Path(yaml_path)

    if not yaml_path.exists():
        raise ConfigurationError(
            message=f"Configuration file not found: {yaml_path}",
            yaml_file=str(yaml_path),
            remediation="Ensure the YAML file exists at the specified path"
        )

    try:
        with open(yaml_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        line = getattr(e, "problem_mark", None)
        raise YAMLParseError(
            message=f"Failed to parse YAML: {e}",
            yaml_file=str(yaml_path),
            line=line.line + 1 if line else None,
            column=line.column + 1 if line else None,
            cause=e
        )

    if raw_config is None:
        raise ConfigurationError(
            message="Empty configuration file",
            yaml_file=str(yaml_path),
            remediation="Add learner configuration to the YAML file"
        )

    if not isinstance(raw_config, dict):
        raise ConfigurationError(
            message="Configuration root must be a mapping",
            yaml_file=str(yaml_path),
            expected="mapping",
            got=type(raw_config).__name__,
        )

    learner_config = raw_config.get(config_key, raw_config)

    if interpolate_env:
        learner_config = interpolate_env_vars(learner_config)

    try:
        args = LearnerArguments.model_validate(learner_config)
    except ValidationError as e:
        raise SchemaValidationError(
            message="Learner configuration validation failed",
            yaml_file=str(yaml_path),
            validation_errors=_validation_messages(e),
            cause=e
        )

    logger.debug(f"Loaded learner configuration from {yaml_path}")
    return args


def load_learner_config_from_dict(
    config_dict: Dict[str, Any],
    *,
    interpolate_env: bool = True,
) -> LearnerArguments:
    """
    Create LearnerArguments from dictionary.

    Useful for programmatic configuration or testing.
    """
    if interpolate_env:
        config_dict = interpolate_env_vars(config_dict)

    try:
        return LearnerArguments.model_validate(config_dict)
    except ValidationError as e:
        raise SchemaValidationError(
            message="Learner configuration validation failed",
            validation_errors=_validation_messages(e),
            cause=e
        )


def merge_configs(
    base: LearnerArguments,
    overrides: Dict[str, Any],
) -> LearnerArguments:
    """
    Merge override values into base configuration.

    Example:
        ```python
        base = load_learner_config("learner.yaml")
        args = merge_configs(base, {"num_epochs": 5, "checkpointer.num_keep": 3})
        ```
    """
    base_dict = base.model_dump()

    for key, value in overrides.items():
        if "." in key:
            parts = key.split(".")
            current = base_dict
            for part in parts[:-1]:
                if current.get(part) is None:
                    current[part] = {}
                current = current[part]
            current[parts[-1]] = value
        else:
            base_dict[key] = value

    return load_learner_config_from_dict(base_dict, interpolate_env=False)


# ═════════════════════════════════════════════════════════════════════════════════
# Export
# ═════════════════════════════════════════════════════════════════════════════════

__all__ = [
    "CheckpointConfig",
    "LoggingConfig",
    "DashboardConfig",
    "LearnerArguments",
    "LearnerConfig",
    "load_learner_config",
    "load_learner_config_from_dict",
    "merge_configs",
    "interpolate_env_vars",
]
