# ════════════════════════════════════════════════════════════════════════════════
# Dashboard - Renderer Interface
# ════════════════════════════════════════════════════════════════════════════════
# The display surface behind the dashboard. Renderers receive metric views
# per step and aggregate summaries per epoch; they never see raw metrics.
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Dict, Union

from trainloop.core.types import Split, TrainingProgress
from trainloop.metrics.aggregate import AggregateSummary


@dataclass(frozen=True)
class NumericMetricView:
    """
    Numeric metric update shown by the renderer.

    Attributes:
        plot: Whether the point goes to the metric's plot
    """
    name: str
    split: Split
    formatted: str
    value: float
    progress: TrainingProgress
    plot: bool = False


@dataclass(frozen=True)
class TextMetricView:
    """Text-only metric update."""
    name: str
    split: Split
    formatted: str


MetricView = Union[NumericMetricView, TextMetricView]


class DashboardRenderer(abc.ABC):
    """
    Abstract base class for dashboard renderers.

    Calls arrive from a single thread (the dashboard's), in event order.
    """

    @abc.abstractmethod
    def update_metric(self, view: MetricView) -> None:
        """Receive the latest value of one metric."""

    @abc.abstractmethod
    def render(self, split: Split, progress: TrainingProgress) -> None:
        """Refresh the view after all metrics of a step were updated."""

    def end_epoch(
        self,
        split: Split,
        epoch: int,
        summaries: Dict[str, AggregateSummary],
    ) -> None:
        """Show the aggregates of an ended epoch."""

    def close(self) -> None:
        """Release display resources."""


class NoopRenderer(DashboardRenderer):
    """Renderer that displays nothing (headless runs, tests)."""

    def update_metric(self, view: MetricView) -> None:
        pass

    def render(self, split: Split, progress: TrainingProgress) -> None:
        pass


__all__ = [
    "NumericMetricView",
    "TextMetricView",
    "MetricView",
    "DashboardRenderer",
    "NoopRenderer",
]
