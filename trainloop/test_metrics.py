"""
Tests for metrics, adaptation and epoch aggregates.
"""

import math

import pytest
import torch

from trainloop.core.errors import MetricAdaptError
from trainloop.core.types import MetricEntry, MetricMetadata, Split, TrainingProgress
from trainloop.metrics import (
    AccuracyInput,
    AccuracyMetric,
    Aggregate,
    LearningRateMetric,
    LossInput,
    LossMetric,
    Metric,
    MetricAggregator,
    MetricValue,
    is_numeric,
    adapt,
)
from trainloop.metrics.aggregate import LearnerSummary


def metadata(lr=None, iteration=1, epoch=1):
    return MetricMetadata(TrainingProgress(iteration=iteration, epoch=epoch), lr=lr)


class StatusMetric(Metric):
    """Text-only metric."""

    def __init__(self):
        super().__init__("Status")

    def update(self, item, metadata):
        return MetricValue(self.name, formatted="ok", serialized="ok")

    def clear(self):
        pass


# ═════════════════════════════════════════════════════════════════════════════════
# Adaptation
# ═════════════════════════════════════════════════════════════════════════════════

def test_adapt_passes_through_matching_type():
    loss_input = LossInput(torch.tensor(1.0))
    assert adapt(loss_input, LossInput) is loss_input


def test_adapt_uses_item_adapt_method():
    class Output:
        def adapt(self, input_type):
            return LossInput(torch.tensor(0.5), batch_size=2)

    adapted = adapt(Output(), LossInput)
    assert isinstance(adapted, LossInput)
    assert adapted.batch_size == 2


def test_adapt_failure_names_metric():
    with pytest.raises(MetricAdaptError) as exc_info:
        adapt(object(), AccuracyInput, "Accuracy")

    assert exc_info.value.metric_name == "Accuracy"
    assert exc_info.value.input_type == "AccuracyInput"
    assert exc_info.value.item_type == "object"


def test_object_input_accepts_anything():
    item = {"anything": 1}
    assert adapt(item, object) is item


# ═════════════════════════════════════════════════════════════════════════════════
# Built-in Metrics
# ═════════════════════════════════════════════════════════════════════════════════

def test_loss_metric_weighted_epoch_mean():
    metric = LossMetric()

    metric.update(LossInput(torch.tensor(2.0), batch_size=1), metadata())
    value = metric.update(LossInput(torch.tensor(1.0), batch_size=3), metadata(iteration=2))

    assert value.value == pytest.approx(1.0)
    assert metric.state.mean() == pytest.approx(1.25)
    assert value.formatted == "epoch 1.250 - batch 1.000"
    assert metric.value() == pytest.approx(1.0)


def test_loss_metric_clear_resets_epoch():
    metric = LossMetric()
    metric.update(LossInput(torch.tensor(3.0)), metadata())
    metric.clear()

    assert math.isnan(metric.value())
    assert math.isnan(metric.state.mean())


def test_accuracy_metric_percent():
    metric = AccuracyMetric()
    outputs = torch.tensor([[0.9, 0.1], [0.2, 0.8], [0.7, 0.3], [0.4, 0.6]])
    targets = torch.tensor([0, 1, 1, 1])

    value = metric.update(AccuracyInput(outputs, targets), metadata())

    assert value.value == pytest.approx(75.0)
    assert "%" in value.formatted


def test_accuracy_metric_ignores_pad_token():
    metric = AccuracyMetric(pad_token=-100)
    outputs = torch.tensor([[0.9, 0.1], [0.2, 0.8], [0.7, 0.3]])
    targets = torch.tensor([0, 1, -100])

    value = metric.update(AccuracyInput(outputs, targets), metadata())

    assert value.value == pytest.approx(100.0)


def test_learning_rate_metric_reads_metadata():
    metric = LearningRateMetric()
    value = metric.update(object(), metadata(lr=0.001))

    assert value.value == pytest.approx(0.001)
    assert value.formatted == "1.00e-03"


def test_numeric_capability():
    assert is_numeric(LossMetric())
    assert is_numeric(AccuracyMetric())
    assert is_numeric(LearningRateMetric())
    assert not is_numeric(StatusMetric())


# ═════════════════════════════════════════════════════════════════════════════════
# Aggregates
# ═════════════════════════════════════════════════════════════════════════════════

def test_aggregate_reductions():
    aggregate = Aggregate()
    for value in (4.0, 2.0, 3.0):
        aggregate.update(value)

    summary = aggregate.summary("Loss", Split.TRAIN, 1)
    assert summary.mean == pytest.approx(3.0)
    assert summary.min == 2.0
    assert summary.max == 4.0
    assert summary.last == 3.0
    assert summary.count == 3


def test_aggregate_skips_nan_samples():
    aggregate = Aggregate()
    aggregate.update(float("nan"))
    aggregate.update(2.0)
    aggregate.update(float("nan"))

    summary = aggregate.summary("Learning Rate", Split.VALID, 1)
    assert summary.count == 1
    assert (summary.mean, summary.min, summary.max, summary.last) == (2.0, 2.0, 2.0, 2.0)


def test_aggregator_omits_metric_without_values():
    aggregator = MetricAggregator()
    for iteration in (1, 2):
        aggregator.update(MetricEntry("Learning Rate", Split.VALID, 1, iteration, float("nan")))

    assert aggregator.end_epoch(Split.VALID, 1) == {}
    assert aggregator.history == []


def test_aggregator_resets_only_ended_split():
    aggregator = MetricAggregator()
    aggregator.update(MetricEntry("Loss", Split.TRAIN, 1, 1, 2.0))
    aggregator.update(MetricEntry("Loss", Split.VALID, 1, 1, 3.0))
    aggregator.update(MetricEntry("Status", Split.TRAIN, 1, 1, "ok"))

    summaries = aggregator.end_epoch(Split.TRAIN, 1)

    assert list(summaries) == ["Loss"]
    assert aggregator.get(Split.TRAIN, "Loss").count == 0
    assert aggregator.get(Split.VALID, "Loss").count == 1
    assert aggregator.get(Split.TRAIN, "Status") is None


def test_learner_summary_from_history():
    aggregator = MetricAggregator()
    for epoch, loss in ((1, 2.0), (2, 1.0)):
        aggregator.update(MetricEntry("Loss", Split.TRAIN, epoch, 1, loss))
        aggregator.end_epoch(Split.TRAIN, epoch)

    summary = LearnerSummary.from_history(aggregator.history)

    assert summary.epochs == [1, 2]
    assert [s.mean for s in summary.metric("Loss", Split.TRAIN)] == [2.0, 1.0]
    assert summary.last("Loss", Split.TRAIN).epoch == 2
    assert summary.last("Loss", Split.VALID) is None
    assert "Loss" in str(summary)
