# ════════════════════════════════════════════════════════════════════════════════
# Learner Metrics - Metric Framework
# ════════════════════════════════════════════════════════════════════════════════
# Metrics consume adapted step outputs and produce displayable, loggable values.
#
# - Metric: update(input, metadata) -> MetricValue / clear() pattern
# - Numeric: capability required for plotting
# - adapt(): converts a step output into a metric's declared input type
# - Built-ins: LossMetric, AccuracyMetric, LearningRateMetric
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Optional, Type, TypeVar

from torch import Tensor

from trainloop.core.errors import MetricAdaptError
from trainloop.core.types import MetricMetadata
from trainloop.metrics.aggregate import (
    Aggregate,
    AggregateSummary,
    LearnerSummary,
    MetricAggregator,
)
from trainloop.metrics.state import FormatOptions, MetricValue, NumericMetricState

InputT = TypeVar("InputT")


# ═════════════════════════════════════════════════════════════════════════════════
# Base Classes
# ═════════════════════════════════════════════════════════════════════════════════

class Metric(abc.ABC):
    """
    Abstract base class for metrics.

    A metric declares the `input_type` it consumes; the dashboard adapts
    every step output to that type before calling `update`. `clear` is
    called at each epoch boundary.
    """

    input_type: type = object

    def __init__(self, name: str):
        self.name = name

    @abc.abstractmethod
    def update(self, item: Any, metadata: MetricMetadata) -> MetricValue:
        """Consume one adapted input and return its value."""

    @abc.abstractmethod
    def clear(self) -> None:
        """Reset epoch state."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class Numeric(abc.ABC):
    """
    Capability of metrics with a numeric value; required for plotting.
    """

    @abc.abstractmethod
    def value(self) -> float:
        """Most recent numeric value."""


def is_numeric(metric: Metric) -> bool:
    return isinstance(metric, Numeric)


def adapt(item: Any, input_type: Type[InputT], metric_name: Optional[str] = None) -> InputT:
    """
    Adapt a step output to a metric input type.

    Items already of the input type pass through; otherwise the item's
    `adapt(input_type)` method is asked for a conversion.

    Raises:
        MetricAdaptError: If the item cannot provide the input type
    """
    if isinstance(item, input_type):
        return item

    adaptor = getattr(item, "adapt", None)
    if callable(adaptor):
        adapted = adaptor(input_type)
        if isinstance(adapted, input_type):
            return adapted

    raise MetricAdaptError(
        message="Step output cannot be adapted to the metric input",
        metric_name=metric_name,
        input_type=getattr(input_type, "__name__", str(input_type)),
        item_type=type(item).__name__,
        remediation=f"Implement adapt({getattr(input_type, '__name__', input_type)}) on the step output",
    )


# ═════════════════════════════════════════════════════════════════════════════════
# Loss
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass
class LossInput:
    """Input of LossMetric: a scalar loss tensor."""
    loss: Tensor
    batch_size: int = 1


class LossMetric(Metric, Numeric):
    """Epoch running mean of the loss."""

    input_type = LossInput

    def __init__(self, name: str = "Loss"):
        super().__init__(name)
        self.state = NumericMetricState()

    def update(self, item: LossInput, metadata: MetricMetadata) -> MetricValue:
        loss = float(item.loss.detach().float().mean().item())
        return self.state.update(loss, item.batch_size, FormatOptions(self.name, precision=3))

    def clear(self) -> None:
        self.state.reset()

    def value(self) -> float:
        return self.state.value()


# ═════════════════════════════════════════════════════════════════════════════════
# Accuracy
# ═════════════════════════════════════════════════════════════════════════════════

@dataclass
class AccuracyInput:
    """
    Input of AccuracyMetric.

    Attributes:
        outputs: Logits or probabilities [B, C]
        targets: Class indices [B]
    """
    outputs: Tensor
    targets: Tensor


class AccuracyMetric(Metric, Numeric):
    """
    Classification accuracy in percent.

    Args:
        pad_token: Target index excluded from the computation
    """

    input_type = AccuracyInput

    def __init__(self, name: str = "Accuracy", pad_token: Optional[int] = None):
        super().__init__(name)
        self.pad_token = pad_token
        self.state = NumericMetricState()

    def update(self, item: AccuracyInput, metadata: MetricMetadata) -> MetricValue:
        outputs, targets = item.outputs.detach(), item.targets.detach()
        predictions = outputs.argmax(dim=-1) if outputs.dim() > targets.dim() else outputs

        if self.pad_token is not None:
            mask = targets != self.pad_token
            predictions = predictions[mask]
            targets = targets[mask]

        total = targets.numel()
        correct = (predictions == targets).sum().item()
        accuracy = 100.0 * correct / max(1, total)

        return self.state.update(
            accuracy,
            max(1, total),
            FormatOptions(self.name, unit="%", precision=2),
        )

    def clear(self) -> None:
        self.state.reset()

    def value(self) -> float:
        return self.state.value()


# ═════════════════════════════════════════════════════════════════════════════════
# Learning Rate
# ═════════════════════════════════════════════════════════════════════════════════

class LearningRateMetric(Metric, Numeric):
    """Learning rate of the step, read from the metadata."""

    input_type = object

    def __init__(self, name: str = "Learning Rate"):
        super().__init__(name)
        self._value = float("nan")

    def update(self, item: Any, metadata: MetricMetadata) -> MetricValue:
        lr = metadata.lr if metadata.lr is not None else float("nan")
        self._value = lr
        return MetricValue(
            name=self.name,
            formatted=f"{lr:.2e}",
            serialized=str(lr),
            value=lr,
        )

    def clear(self) -> None:
        self._value = float("nan")

    def value(self) -> float:
        return self._value


# ═════════════════════════════════════════════════════════════════════════════════
# Export
# ═════════════════════════════════════════════════════════════════════════════════

__all__ = [
    # Base
    "Metric",
    "Numeric",
    "is_numeric",
    "adapt",
    # State
    "MetricValue",
    "FormatOptions",
    "NumericMetricState",
    # Aggregates
    "Aggregate",
    "AggregateSummary",
    "MetricAggregator",
    "LearnerSummary",
    # Built-in
    "LossInput",
    "LossMetric",
    "AccuracyInput",
    "AccuracyMetric",
    "LearningRateMetric",
]
