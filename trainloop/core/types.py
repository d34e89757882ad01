# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Core Types
# ════════════════════════════════════════════════════════════════════════════════
# Data model shared by the learner, dashboard and checkpointers.
#
# Design Principles:
# - Immutable value types via frozen dataclasses
# - Exhaustive enums for splits and learner lifecycle states
# - Rust-inspired Result for operations that report rather than raise
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    Final,
    Generic,
    List,
    Optional,
    Sequence,
    TypeVar,
    Union,
)

import torch
from torch import Tensor

# ─────────────────────────────────────────────────────────────────────────────────
# Type Variables
# ─────────────────────────────────────────────────────────────────────────────────

T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type

# An opaque serializable snapshot of a stateful component (state dict).
Record = Dict[str, Any]

# ─────────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────────

MODEL_COMPONENT: Final[str] = "model"
OPTIMIZER_COMPONENT: Final[str] = "optim"
SCHEDULER_COMPONENT: Final[str] = "scheduler"
MIN_SAFE_NUM_KEEP: Final[int] = 2


# ═════════════════════════════════════════════════════════════════════════════════
# Section 1: Result Variants
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Success variant of Result."""
    value: T

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """Error variant of Result."""
    error: E

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Union[Ok[T], Err[E]]


def is_err(result: Result[T, E]) -> bool:
    """Check if Result is Err variant."""
    return isinstance(result, Err)


# ═════════════════════════════════════════════════════════════════════════════════
# Section 2: Splits & Lifecycle
# ═════════════════════════════════════════════════════════════════════════════════

class Split(str, enum.Enum):
    """
    Data partition tracked separately for metrics and logs.
    """
    TRAIN = "train"
    VALID = "valid"


class LearnerState(str, enum.Enum):
    """
    Learner lifecycle states.

    STARTING -> RUNNING -> FINISHED | FAILED
    """
    STARTING = "starting"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"


# ═════════════════════════════════════════════════════════════════════════════════
# Section 3: Training Events
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass(slots=True, frozen=True)
class TrainingProgress:
    """
    Position of the loop within the run.

    Epochs are 1-based; iteration counts items within the current epoch.
    """
    items_processed: int = 0
    items_total: int = 0
    epoch: int = 1
    epoch_total: int = 1
    iteration: int = 0


@dataclass(slots=True, frozen=True)
class LearnerItem(Generic[T]):
    """
    One step output delivered to the training-event sink.

    Attributes:
        item: Output of the train or valid step (adapted per metric)
        progress: Loop position when the item was produced
        lr: Learning rate used for the step (training only)
    """
    item: T
    progress: TrainingProgress
    lr: Optional[float] = None


@dataclass(slots=True, frozen=True)
class MetricMetadata:
    """
    Per-step context handed to every metric update.
    """
    progress: TrainingProgress
    lr: Optional[float] = None

    @classmethod
    def from_item(cls, item: LearnerItem) -> "MetricMetadata":
        return cls(progress=item.progress, lr=item.lr)


@dataclass(slots=True, frozen=True)
class MetricEntry:
    """
    One persisted metric sample.

    Produced once per registered metric per step; immutable after creation.
    `value` is the numeric sample for numeric metrics, otherwise the
    serialized string.
    """
    name: str
    split: Split
    epoch: int
    iteration: int
    value: Union[float, str]
    formatted: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "split": self.split.value,
            "epoch": self.epoch,
            "iteration": self.iteration,
            "value": self.value,
            "formatted": self.formatted,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricEntry":
        return cls(
            name=data["name"],
            split=Split(data["split"]),
            epoch=int(data["epoch"]),
            iteration=int(data["iteration"]),
            value=data["value"],
            formatted=data.get("formatted", ""),
        )


# ═════════════════════════════════════════════════════════════════════════════════
# Section 4: Training State
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass
class TrainOutput(Generic[T]):
    """
    Output of a training step.

    Attributes:
        loss: Scalar loss tensor; the learner calls backward on it
        item: Value fed to the training metrics
    """
    loss: Tensor
    item: T


@dataclass(frozen=True)
class TrainingState:
    """
    The record triad persisted at each checkpoint.

    Each field is an independently serializable record (state dict).
    """
    model: Record
    optimizer: Record
    scheduler: Record

    def components(self) -> Dict[str, Record]:
        return {
            MODEL_COMPONENT: self.model,
            OPTIMIZER_COMPONENT: self.optimizer,
            SCHEDULER_COMPONENT: self.scheduler,
        }


# ═════════════════════════════════════════════════════════════════════════════════
# Section 5: Devices
# ═════════════════════════════════════════════════════════════════════════════════

def default_device() -> torch.device:
    """Pick the best available device (CUDA, then MPS, then CPU)."""
    if torch.cuda.is_available():
        return torch.device("cuda")
    elif hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        return torch.device("mps")
    return torch.device("cpu")


def resolve_devices(devices: Optional[Sequence[Union[str, torch.device]]]) -> List[torch.device]:
    """
    Normalize a device list; "auto" and an empty/None list select the default.
    """
    if not devices:
        return [default_device()]

    resolved = []
    for device in devices:
        if isinstance(device, str) and device == "auto":
            resolved.append(default_device())
        else:
            resolved.append(torch.device(device))
    return resolved


def move_to_device(batch: Any, device: torch.device) -> Any:
    """Move tensors nested in dicts, lists and tuples to device."""
    if isinstance(batch, Tensor):
        return batch.to(device)
    if isinstance(batch, dict):
        return {k: move_to_device(v, device) for k, v in batch.items()}
    if isinstance(batch, (list, tuple)):
        moved = [move_to_device(v, device) for v in batch]
        return type(batch)(moved) if not hasattr(batch, "_fields") else type(batch)(*moved)
    if hasattr(batch, "to") and callable(batch.to):
        return batch.to(device)
    return batch


# ═════════════════════════════════════════════════════════════════════════════════
# Export
# ═════════════════════════════════════════════════════════════════════════════════

__all__ = [
    # Constants
    "MODEL_COMPONENT",
    "OPTIMIZER_COMPONENT",
    "SCHEDULER_COMPONENT",
    "MIN_SAFE_NUM_KEEP",
    "Record",
    # Result
    "Ok",
    "Err",
    "Result",
    "is_err",
    # Splits & lifecycle
    "Split",
    "LearnerState",
    # Events
    "TrainingProgress",
    "LearnerItem",
    "MetricMetadata",
    "MetricEntry",
    # State
    "TrainOutput",
    "TrainingState",
    # Devices
    "default_device",
    "resolve_devices",
    "move_to_device",
]
