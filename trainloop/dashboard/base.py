# ════════════════════════════════════════════════════════════════════════════════
# Dashboard - Training-Event Sink
# ════════════════════════════════════════════════════════════════════════════════
# Composes metrics, the aggregator, the split loggers and a renderer into
# the learner's callback.
#
# Per step:   adapt -> metric.update -> aggregate -> log -> renderer view
# Per epoch:  clear metrics -> summarize aggregates -> flush log -> render
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from trainloop.callbacks import LearnerCallback
from trainloop.core.errors import ConfigurationError, MetricRegistrationError
from trainloop.core.types import LearnerItem, MetricEntry, MetricMetadata, Split
from trainloop.dashboard.renderer import (
    DashboardRenderer,
    MetricView,
    NumericMetricView,
    TextMetricView,
)
from trainloop.logger import MetricLogger
from trainloop.metrics import Metric, adapt, is_numeric
from trainloop.metrics.aggregate import LearnerSummary, MetricAggregator
from trainloop.metrics.state import MetricValue

logger = logging.getLogger(__name__)


@dataclass
class _Registration:
    metric: Metric
    plot: bool = False


class Dashboard(LearnerCallback):
    """
    Metric store and display of a learner run.

    Metrics are registered per split before training; registering a
    non-numeric metric for plotting is rejected immediately.

    Args:
        renderer: Display surface
        train_logger: Logger of training entries
        valid_logger: Logger of validation entries

    Example:
        ```python
        dashboard = Dashboard(NoopRenderer(), InMemoryMetricLogger(), InMemoryMetricLogger())
        dashboard.register_train_plot(LossMetric())
        dashboard.register_valid(AccuracyMetric())
        ```
    """

    def __init__(
        self,
        renderer: DashboardRenderer,
        train_logger: MetricLogger,
        valid_logger: MetricLogger,
    ):
        self.renderer = renderer
        self.aggregator = MetricAggregator()

        self._loggers: Dict[Split, MetricLogger] = {
            Split.TRAIN: train_logger,
            Split.VALID: valid_logger,
        }
        self._metrics: Dict[Split, List[_Registration]] = {
            Split.TRAIN: [],
            Split.VALID: [],
        }
        self._started = False

    # ─────────────────────────────────────────────────────────────────────────────
    # Registration
    # ─────────────────────────────────────────────────────────────────────────────

    def register(self, metric: Metric, split: Split, plot: bool = False) -> None:
        """
        Sample a metric on every step of a split.

        Raises:
            MetricRegistrationError: If plotting a non-numeric metric, or the
                name is already registered on the split
        """
        if plot and not is_numeric(metric):
            raise MetricRegistrationError(
                message=f"Metric {metric.name!r} cannot be plotted: it has no numeric value",
                metric_name=metric.name,
                split=split.value,
                expected="Numeric metric",
                got=type(metric).__name__,
                remediation="Register it with register() or implement the Numeric capability",
            )

        if any(reg.metric.name == metric.name for reg in self._metrics[split]):
            raise MetricRegistrationError(
                message=f"Metric {metric.name!r} is already registered",
                metric_name=metric.name,
                split=split.value,
            )

        self._metrics[split].append(_Registration(metric, plot))
        logger.debug(f"Registered {split.value} metric {metric.name!r} (plot={plot})")

    def register_plot(self, metric: Metric, split: Split) -> None:
        self.register(metric, split, plot=True)

    def register_train(self, metric: Metric) -> None:
        self.register(metric, Split.TRAIN)

    def register_train_plot(self, metric: Metric) -> None:
        self.register(metric, Split.TRAIN, plot=True)

    def register_valid(self, metric: Metric) -> None:
        self.register(metric, Split.VALID)

    def register_valid_plot(self, metric: Metric) -> None:
        self.register(metric, Split.VALID, plot=True)

    def metrics(self, split: Split) -> List[Metric]:
        return [reg.metric for reg in self._metrics[split]]

    def replace_loggers(self, train_logger: MetricLogger, valid_logger: MetricLogger) -> None:
        """
        Swap both split loggers.

        Raises:
            ConfigurationError: If an entry has already been logged
        """
        if self._started:
            raise ConfigurationError(
                message="Metric loggers cannot be replaced once logging has started",
                field_path="metric_loggers",
                remediation="Configure loggers on the builder before calling fit()",
            )

        self._loggers = {Split.TRAIN: train_logger, Split.VALID: valid_logger}

    def logger_for(self, split: Split) -> MetricLogger:
        return self._loggers[split]

    # ─────────────────────────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────────────────────────

    def on_train_item(self, item: LearnerItem) -> None:
        self._on_item(Split.TRAIN, item)

    def on_valid_item(self, item: LearnerItem) -> None:
        self._on_item(Split.VALID, item)

    def on_train_end_epoch(self, epoch: int) -> None:
        self._on_end_epoch(Split.TRAIN, epoch)

    def on_valid_end_epoch(self, epoch: int) -> None:
        self._on_end_epoch(Split.VALID, epoch)

    def _on_item(self, split: Split, learner_item: LearnerItem) -> None:
        self._started = True
        metadata = MetricMetadata.from_item(learner_item)
        progress = learner_item.progress

        for reg in self._metrics[split]:
            metric = reg.metric
            value = metric.update(
                adapt(learner_item.item, metric.input_type, metric.name),
                metadata,
            )

            entry = MetricEntry(
                name=metric.name,
                split=split,
                epoch=progress.epoch,
                iteration=progress.iteration,
                value=value.value if value.is_numeric else value.serialized,
                formatted=value.formatted,
            )
            self.aggregator.update(entry)
            self._loggers[split].log(entry)
            self.renderer.update_metric(self._view(split, value, reg, learner_item))

        self.renderer.render(split, progress)

    @staticmethod
    def _view(
        split: Split,
        value: MetricValue,
        reg: _Registration,
        learner_item: LearnerItem,
    ) -> MetricView:
        if value.is_numeric:
            return NumericMetricView(
                name=value.name,
                split=split,
                formatted=value.formatted,
                value=value.value,
                progress=learner_item.progress,
                plot=reg.plot,
            )
        return TextMetricView(name=value.name, split=split, formatted=value.formatted)

    def _on_end_epoch(self, split: Split, epoch: int) -> None:
        for reg in self._metrics[split]:
            reg.metric.clear()

        summaries = self.aggregator.end_epoch(split, epoch)
        self._loggers[split].end_epoch(epoch)
        self.renderer.end_epoch(split, epoch, summaries)

    # ─────────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────────

    def summary(self) -> Optional[LearnerSummary]:
        return LearnerSummary.from_history(self.aggregator.history)

    def close(self) -> None:
        for split_logger in self._loggers.values():
            split_logger.close()
        self.renderer.close()


__all__ = [
    "Dashboard",
]
