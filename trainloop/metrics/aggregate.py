# ════════════════════════════════════════════════════════════════════════════════
# Learner Metrics - Epoch Aggregates
# ════════════════════════════════════════════════════════════════════════════════
# Running reductions over the numeric metric entries of one epoch and split.
#
# Features:
#   - Mean, min, max, last and count per (split, metric)
#   - NaN samples (a metric without a value for the step) are skipped
#   - Reset at epoch boundaries, summaries kept for the run history
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from trainloop.core.types import MetricEntry, Split


@dataclass(frozen=True)
class AggregateSummary:
    """Snapshot of an aggregate at an epoch boundary."""
    name: str
    split: Split
    epoch: int
    mean: float
    min: float
    max: float
    last: float
    count: int

    def to_dict(self) -> Dict[str, float]:
        return {
            "mean": self.mean,
            "min": self.min,
            "max": self.max,
            "last": self.last,
            "count": self.count,
        }


@dataclass
class Aggregate:
    """
    Running reduction over numeric samples.

    Example:
        >>> agg = Aggregate()
        >>> agg.update(2.5)
        >>> agg.update(2.3)
        >>> round(agg.mean, 2)
        2.4
    """

    # ───────────────────────────────────────────────────────────────────────────
    # Internal State
    # ───────────────────────────────────────────────────────────────────────────
    _total: float = field(default=0.0, repr=False)
    _count: int = field(default=0, repr=False)
    _min: float = field(default=math.inf, repr=False)
    _max: float = field(default=-math.inf, repr=False)
    _last: float = field(default=math.nan, repr=False)

    def reset(self) -> None:
        """Reset all accumulated values."""
        self._total = 0.0
        self._count = 0
        self._min = math.inf
        self._max = -math.inf
        self._last = math.nan

    def update(self, value: float) -> None:
        if math.isnan(value):
            return
        self._total += value
        self._count += 1
        self._min = min(self._min, value)
        self._max = max(self._max, value)
        self._last = value

    @property
    def count(self) -> int:
        return self._count

    @property
    def mean(self) -> float:
        if self._count == 0:
            return math.nan
        return self._total / self._count

    def summary(self, name: str, split: Split, epoch: int) -> AggregateSummary:
        return AggregateSummary(
            name=name,
            split=split,
            epoch=epoch,
            mean=self.mean,
            min=self._min if self._count else math.nan,
            max=self._max if self._count else math.nan,
            last=self._last,
            count=self._count,
        )


class MetricAggregator:
    """
    Aggregates per (split, metric name) for the current epoch.

    Text entries are ignored; only numeric values are reduced. Summaries
    taken at each epoch end are kept in `history`.
    """

    def __init__(self):
        self._aggregates: Dict[Tuple[Split, str], Aggregate] = {}
        self.history: List[AggregateSummary] = []

    def update(self, entry: MetricEntry) -> None:
        if isinstance(entry.value, str):
            return

        key = (entry.split, entry.name)
        aggregate = self._aggregates.get(key)
        if aggregate is None:
            aggregate = Aggregate()
            self._aggregates[key] = aggregate
        aggregate.update(float(entry.value))

    def get(self, split: Split, name: str) -> Optional[Aggregate]:
        return self._aggregates.get((split, name))

    def summaries(self, split: Split, epoch: int) -> Dict[str, AggregateSummary]:
        """Current aggregates of a split, keyed by metric name."""
        return {
            name: aggregate.summary(name, split, epoch)
            for (agg_split, name), aggregate in self._aggregates.items()
            if agg_split == split and aggregate.count > 0
        }

    def end_epoch(self, split: Split, epoch: int) -> Dict[str, AggregateSummary]:
        """Record the split's summaries for the epoch, then reset its aggregates."""
        summaries = self.summaries(split, epoch)
        self.history.extend(summaries.values())

        for (agg_split, _), aggregate in self._aggregates.items():
            if agg_split == split:
                aggregate.reset()

        return summaries


@dataclass(frozen=True)
class LearnerSummary:
    """
    Epoch aggregates of a finished (or interrupted) run.

    Attributes:
        summaries: One entry per (split, epoch, metric), in epoch order
    """
    summaries: Tuple[AggregateSummary, ...] = ()

    @classmethod
    def from_history(cls, history: List[AggregateSummary]) -> "LearnerSummary":
        return cls(summaries=tuple(history))

    @property
    def epochs(self) -> List[int]:
        return sorted({s.epoch for s in self.summaries})

    def metric(self, name: str, split: Split) -> List[AggregateSummary]:
        """Per-epoch summaries of one metric."""
        return [s for s in self.summaries if s.name == name and s.split == split]

    def last(self, name: str, split: Split) -> Optional[AggregateSummary]:
        values = self.metric(name, split)
        return values[-1] if values else None

    def __str__(self) -> str:
        lines = ["Learner summary"]
        for summary in self.summaries:
            lines.append(
                f"  [{summary.split.value}] epoch {summary.epoch} "
                f"{summary.name}: mean={summary.mean:.4f} "
                f"min={summary.min:.4f} max={summary.max:.4f}"
            )
        return "\n".join(lines)


__all__ = [
    "AggregateSummary",
    "Aggregate",
    "MetricAggregator",
    "LearnerSummary",
]
