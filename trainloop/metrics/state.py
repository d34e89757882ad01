# ════════════════════════════════════════════════════════════════════════════════
# Learner Metrics - Numeric Metric State
# ════════════════════════════════════════════════════════════════════════════════
# Running epoch mean shared by the built-in numeric metrics.
#
# Features:
#   - Batch-size weighted running mean over the current epoch
#   - Current (last batch) value
#   - Formatted "epoch / batch" display string
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class MetricValue:
    """
    Result of a metric update.

    Attributes:
        name: Metric name
        formatted: Display string for the dashboard
        serialized: String written to metric logs
        value: Numeric sample (None for text metrics)
    """
    name: str
    formatted: str
    serialized: str
    value: Optional[float] = None

    @property
    def is_numeric(self) -> bool:
        return self.value is not None


@dataclass(frozen=True)
class FormatOptions:
    """How a numeric metric is displayed."""
    name: str
    unit: Optional[str] = None
    precision: int = 3


@dataclass
class NumericMetricState:
    """
    Batch-size weighted running mean over the current epoch.

    Example:
        >>> state = NumericMetricState()
        >>> _ = state.update(2.0, batch_size=4, options=FormatOptions("Loss"))
        >>> _ = state.update(1.0, batch_size=4, options=FormatOptions("Loss"))
        >>> state.value()
        1.0
        >>> state.mean()
        1.5
    """

    # ───────────────────────────────────────────────────────────────────────────
    # Internal State
    # ───────────────────────────────────────────────────────────────────────────
    _sum: float = field(default=0.0, repr=False)
    _count: int = field(default=0, repr=False)
    _current: float = field(default=float("nan"), repr=False)

    def reset(self) -> None:
        """Reset accumulated values (call at epoch boundaries)."""
        self._sum = 0.0
        self._count = 0
        self._current = float("nan")

    def update(self, value: float, batch_size: int, options: FormatOptions) -> MetricValue:
        """
        Add a batch value and return the metric update for it.

        Args:
            value: Batch value (already averaged over the batch)
            batch_size: Weight of the batch in the epoch mean
            options: Display options
        """
        self._sum += value * batch_size
        self._count += batch_size
        self._current = value

        epoch_mean = self.mean()
        unit = f" {options.unit}" if options.unit else ""
        precision = options.precision
        formatted = (
            f"epoch {epoch_mean:.{precision}f}{unit} - "
            f"batch {value:.{precision}f}{unit}"
        )
        return MetricValue(
            name=options.name,
            formatted=formatted,
            serialized=str(value),
            value=value,
        )

    def value(self) -> float:
        """Value of the most recent batch."""
        return self._current

    def mean(self) -> float:
        """Weighted mean over the epoch so far."""
        if self._count == 0:
            return float("nan")
        return self._sum / self._count


__all__ = [
    "MetricValue",
    "FormatOptions",
    "NumericMetricState",
]
