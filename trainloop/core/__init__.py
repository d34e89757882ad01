# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Core Package
# ════════════════════════════════════════════════════════════════════════════════
# Core types, errors, and configuration for the learner.
# ════════════════════════════════════════════════════════════════════════════════

from trainloop.core.types import (
    # Constants
    MODEL_COMPONENT,
    OPTIMIZER_COMPONENT,
    SCHEDULER_COMPONENT,
    MIN_SAFE_NUM_KEEP,
    Record,
    # Result
    Ok,
    Err,
    Result,
    is_err,
    # Splits & lifecycle
    Split,
    LearnerState,
    # Events
    TrainingProgress,
    LearnerItem,
    MetricMetadata,
    MetricEntry,
    # State
    TrainOutput,
    TrainingState,
    # Devices
    default_device,
    resolve_devices,
    move_to_device,
)

from trainloop.core.errors import (
    # Base
    TrainingError,
    # Configuration
    ConfigurationError,
    YAMLParseError,
    SchemaValidationError,
    MetricRegistrationError,
    MetricAdaptError,
    # Checkpoint
    CheckpointError,
    CheckpointSaveError,
    CheckpointLoadError,
    CheckpointDeleteError,
    ResumeError,
    # Training loop
    TrainingLoopError,
    CallbackError,
)

from trainloop.core.config import (
    CheckpointConfig,
    LoggingConfig,
    DashboardConfig,
    LearnerArguments,
    LearnerConfig,
    load_learner_config,
    load_learner_config_from_dict,
    merge_configs,
    interpolate_env_vars,
)

__all__ = [
    # Types
    "MODEL_COMPONENT",
    "OPTIMIZER_COMPONENT",
    "SCHEDULER_COMPONENT",
    "MIN_SAFE_NUM_KEEP",
    "Record",
    "Ok",
    "Err",
    "Result",
    "is_err",
    "Split",
    "LearnerState",
    "TrainingProgress",
    "LearnerItem",
    "MetricMetadata",
    "MetricEntry",
    "TrainOutput",
    "TrainingState",
    "default_device",
    "resolve_devices",
    "move_to_device",
    # Errors
    "TrainingError",
    "ConfigurationError",
    "YAMLParseError",
    "SchemaValidationError",
    "MetricRegistrationError",
    "MetricAdaptError",
    "CheckpointError",
    "CheckpointSaveError",
    "CheckpointLoadError",
    "CheckpointDeleteError",
    "ResumeError",
    "TrainingLoopError",
    "CallbackError",
    # Config
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
