# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Error Hierarchy
# ════════════════════════════════════════════════════════════════════════════════
# Training error types for the learner, checkpointers and dashboard.
# All errors carry structured context for debugging.
#
# Design Principles:
# - Exception hierarchy mirrors training failure modes
# - Each error carries actionable remediation hints
# - Context dict for structured logging
# - Chaining via __cause__ for root cause analysis
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


# ═════════════════════════════════════════════════════════════════════════════════
# Base Training Error
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass
class TrainingError(Exception):
    """
    Base exception for all training-related errors.

    Carries structured context for debugging and logging.

    Attributes:
        message: Human-readable error description
        context: Structured key-value context for debugging
        cause: Original exception that caused this error
        remediation: Suggested fix or next steps
    """
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    cause: Optional[Exception] = None
    remediation: Optional[str] = None

    def __post_init__(self) -> None:
        """Chain cause exception for traceback preservation."""
        super().__init__(self.message)
        if self.cause is not None:
            self.__cause__ = self.cause

    def __str__(self) -> str:
        parts = [f"{type(self).__name__}: {self.message}"]

        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"  Context: {ctx_str}")

        if self.remediation:
            parts.append(f"  Remediation: {self.remediation}")

        if self.cause:
            parts.append(f"  Caused by: {type(self.cause).__name__}: {self.cause}")

        return "\n".join(parts)


# ═════════════════════════════════════════════════════════════════════════════════
# Configuration Errors
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass
class ConfigurationError(TrainingError):
    """
    Error in learner configuration (YAML, builder or registration).

    Raised when:
    - Required fields are missing or out of range
    - A builder option conflicts with another
    - A component is configured after it has started
    """
    field_path: Optional[str] = None
    expected: Optional[str] = None
    got: Optional[str] = None
    yaml_file: Optional[str] = None

    def __str__(self) -> str:
        parts = [f"{type(self).__name__}: {self.message}"]

        if self.yaml_file:
            parts.append(f"  File: {self.yaml_file}")

        if self.field_path:
            parts.append(f"  Field: {self.field_path}")

        if self.expected and self.got:
            parts.append(f"  Expected: {self.expected}")
            parts.append(f"  Got: {self.got}")

        if self.remediation:
            parts.append(f"  Remediation: {self.remediation}")

        return "\n".join(parts)


@dataclass
class YAMLParseError(ConfigurationError):
    """
    Error parsing YAML configuration file.

    Provides line/column info for syntax errors.
    """
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self) -> str:
        location = ""
        if self.line is not None:
            location = f" at line {self.line}"
            if self.column is not None:
                location += f", column {self.column}"

        file_info = f" in {self.yaml_file}" if self.yaml_file else ""
        return f"YAMLParseError{file_info}{location}: {self.message}"


@dataclass
class SchemaValidationError(ConfigurationError):
    """
    Pydantic schema validation failed.

    Carries full validation error details.
    """
    validation_errors: Tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        parts = [f"SchemaValidationError: {self.message}"]

        if self.yaml_file:
            parts.append(f"  File: {self.yaml_file}")

        for error in self.validation_errors:
            parts.append(f"  - {error}")

        return "\n".join(parts)


@dataclass
class MetricRegistrationError(ConfigurationError):
    """
    A metric was registered in a way its capabilities do not allow.

    Raised at registration time, e.g. when a non-numeric metric is
    registered for plotting.
    """
    metric_name: Optional[str] = None
    split: Optional[str] = None

    def __str__(self) -> str:
        where = f" [{self.split}]" if self.split else ""
        name = f" '{self.metric_name}'" if self.metric_name else ""
        return f"MetricRegistrationError{name}{where}: {self.message}"


@dataclass
class MetricAdaptError(TrainingError):
    """
    A step output could not be adapted to a metric's input type.
    """
    metric_name: Optional[str] = None
    input_type: Optional[str] = None
    item_type: Optional[str] = None

    def __str__(self) -> str:
        return (f"MetricAdaptError: {self.message}\n"
                f"  Metric: {self.metric_name}\n"
                f"  Expected input: {self.input_type}, got item: {self.item_type}")


# ═════════════════════════════════════════════════════════════════════════════════
# Checkpoint Errors
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass
class CheckpointError(TrainingError):
    """
    Base error for checkpoint operations (I/O or codec failure).
    """
    checkpoint_path: Optional[str] = None
    component: Optional[str] = None
    epoch: Optional[int] = None

    def __str__(self) -> str:
        path_info = f" [{self.checkpoint_path}]" if self.checkpoint_path else ""
        return f"{type(self).__name__}{path_info}: {self.message}"


@dataclass
class CheckpointSaveError(CheckpointError):
    """
    Failed to save checkpoint.

    Causes:
    - Disk full
    - Permission denied
    - Serialization error in the recorder
    """


@dataclass
class CheckpointLoadError(CheckpointError):
    """
    Failed to load checkpoint.

    Causes:
    - File not found (evicted by retention or never written)
    - File corrupted
    - Recorder cannot decode the payload
    """


@dataclass
class CheckpointDeleteError(CheckpointError):
    """
    Failed to delete a checkpoint. Logged by retention, never fatal.
    """


@dataclass
class ResumeError(TrainingError):
    """
    Restoring a training state component failed.

    Fatal to starting the run: the learner never continues from a
    partially restored state.
    """
    component: str = ""
    epoch: Optional[int] = None

    def __str__(self) -> str:
        parts = [f"ResumeError [{self.component} @ epoch {self.epoch}]: {self.message}"]

        if self.cause:
            parts.append(f"  Caused by: {type(self.cause).__name__}: {self.cause}")

        parts.append("  Remediation: Resume from an epoch still retained on disk "
                    "or increase num_keep")

        return "\n".join(parts)


# ═════════════════════════════════════════════════════════════════════════════════
# Training Loop Errors
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass
class TrainingLoopError(TrainingError):
    """
    Error during training loop execution.
    """
    step: Optional[int] = None
    epoch: Optional[int] = None

    def __str__(self) -> str:
        location = ""
        if self.epoch is not None:
            location = f" at epoch {self.epoch}"
        if self.step is not None:
            location += f", step {self.step}"
        return f"TrainingLoopError{location}: {self.message}"


@dataclass
class CallbackError(TrainingError):
    """
    A callback failed or was used after it was closed.
    """
    event: Optional[str] = None

    def __str__(self) -> str:
        event_info = f" during {self.event}" if self.event else ""
        return f"CallbackError{event_info}: {self.message}"


# ═════════════════════════════════════════════════════════════════════════════════
# Export
# ═════════════════════════════════════════════════════════════════════════════════

__all__ = [
    # Base
    "TrainingError",
    # Configuration
    "ConfigurationError",
    "YAMLParseError",
    "SchemaValidationError",
    "MetricRegistrationError",
    "MetricAdaptError",
    # Checkpoint
    "CheckpointError",
    "CheckpointSaveError",
    "CheckpointLoadError",
    "CheckpointDeleteError",
    "ResumeError",
    # Training loop
    "TrainingLoopError",
    "CallbackError",
]
