"""
Tests for the learner builder and the training loop.

Covers:
- Builder defaults, fluent branching and build-time validation
- End-to-end fit with metric logs, checkpoints and the run log
- Resume from a retained epoch; ResumeError naming the failed component
- Gradient accumulation (drop-remainder) and scheduler stepping
- Data-parallel steps over two CPU devices
"""

import copy
import logging

import pytest
import torch
import torch.nn.functional as F
from torch import nn

from conftest import CountingSGD, TinyClassifier, make_batches
from trainloop.callbacks import AsyncLearnerCallback, CallbackHandler, LearnerCallback
from trainloop.checkpoint import AsyncCheckpointer, FileCheckpointer
from trainloop.core.config import load_learner_config_from_dict
from trainloop.core.errors import (
    ConfigurationError,
    MetricRegistrationError,
    ResumeError,
    TrainingLoopError,
)
from trainloop.core.types import LearnerState, Split, default_device
from trainloop.dashboard import CLIDashboardRenderer, Dashboard, NoopRenderer
from trainloop.learner import CHECKPOINT_DIR, ConstantLearningRate, LearnerBuilder
from trainloop.learner.log import PACKAGE_LOGGER, install_console_handler, update_log_file
from trainloop.logger import FileMetricLogger
from trainloop.metrics import AccuracyMetric, LearningRateMetric, LossMetric, Metric, MetricValue
from trainloop.record import TorchFileRecorder


class StatusMetric(Metric):
    def __init__(self):
        super().__init__("Status")

    def update(self, item, metadata):
        return MetricValue(self.name, formatted="ok", serialized="ok")

    def clear(self):
        pass


class DivergingClassifier(TinyClassifier):
    """Reports huge losses, then fails on its third step."""

    def __init__(self):
        super().__init__()
        self.calls = 0

    def train_step(self, batch):
        self.calls += 1
        if self.calls == 3:
            raise RuntimeError("diverged")
        output = super().train_step(batch)
        output.item.loss = torch.tensor(1000.0)
        return output


class EventCounter(LearnerCallback):
    def __init__(self):
        self.train_items = 0
        self.valid_items = 0
        self.epochs = []

    def on_train_item(self, item):
        self.train_items += 1

    def on_valid_item(self, item):
        self.valid_items += 1

    def on_valid_end_epoch(self, epoch):
        self.epochs.append(epoch)


def builder(tmp_path):
    return LearnerBuilder(tmp_path).renderer(NoopRenderer()).devices(["cpu"])


def dashboard_of(learner) -> Dashboard:
    callback = learner.callback
    assert isinstance(callback, AsyncLearnerCallback)
    inner = callback.callback
    if isinstance(inner, CallbackHandler):
        inner = inner.callbacks[0]
    return inner


def file_checkpointers(tmp_path, num_keep=2):
    recorder = TorchFileRecorder()
    directory = tmp_path / CHECKPOINT_DIR
    return {
        name: FileCheckpointer(recorder, directory, name, num_keep)
        for name in ("model", "optim", "scheduler")
    }


# ═════════════════════════════════════════════════════════════════════════════════
# Builder
# ═════════════════════════════════════════════════════════════════════════════════

def test_builder_defaults(tmp_path, model, optimizer):
    learner = LearnerBuilder(tmp_path).build(model, optimizer, 0.1)
    try:
        assert learner.num_epochs == 1
        assert learner.config.checkpoint is None
        assert learner.grad_accumulation is None
        assert learner.devices == [default_device()]
        assert all(c is None for c in learner.checkpointers.values())

        dashboard = dashboard_of(learner)
        assert isinstance(dashboard.renderer, CLIDashboardRenderer)
        assert dashboard.logger_for(Split.TRAIN).path == tmp_path / "train" / "metrics.log"
        assert dashboard.logger_for(Split.VALID).path == tmp_path / "valid" / "metrics.log"
        assert isinstance(learner.scheduler, ConstantLearningRate)
        assert (tmp_path / "experiment.log").exists()
    finally:
        learner.callback.close()


def test_builder_calls_return_new_builders(tmp_path):
    base = builder(tmp_path)
    five = base.num_epochs(5)
    accumulated = five.grads_accumulation(4)

    first_model, second_model = TinyClassifier(), TinyClassifier()
    first = base.build(first_model, torch.optim.SGD(first_model.parameters(), lr=0.1), 0.1)
    second = accumulated.build(second_model, torch.optim.SGD(second_model.parameters(), lr=0.1), 0.1)
    try:
        assert first.num_epochs == 1
        assert first.grad_accumulation is None
        assert second.num_epochs == 5
        assert second.grad_accumulation == 4
    finally:
        first.callback.close()
        second.callback.close()


def test_builder_wires_three_async_file_checkpointers(tmp_path, model, optimizer):
    learner = builder(tmp_path).with_file_checkpointer(3, "json").build(model, optimizer, 0.1)
    try:
        for name, checkpointer in learner.checkpointers.items():
            assert isinstance(checkpointer, AsyncCheckpointer)
            inner = checkpointer.checkpointer
            assert isinstance(inner, FileCheckpointer)
            assert inner.name == name
            assert inner.num_keep == 3
            assert inner.directory == tmp_path / CHECKPOINT_DIR
        assert set(learner.checkpointers) == {"model", "optim", "scheduler"}
    finally:
        learner.callback.close()
        for checkpointer in learner.checkpointers.values():
            checkpointer.close()


def test_plot_registration_rejected_when_configuring(tmp_path):
    with pytest.raises(MetricRegistrationError):
        builder(tmp_path).metric_train_plot(StatusMetric())


@pytest.mark.parametrize(
    "configure",
    [
        lambda b: b.num_epochs(0),
        lambda b: b.grads_accumulation(0),
        lambda b: b.devices([]),
        lambda b: b.checkpoint(0),
        lambda b: b.with_file_checkpointer(0),
    ],
)
def test_invalid_builder_values(tmp_path, configure):
    with pytest.raises(ConfigurationError):
        configure(builder(tmp_path))


def test_build_rejects_model_without_steps(tmp_path):
    model = nn.Linear(4, 3)
    with pytest.raises(ConfigurationError):
        builder(tmp_path).build(model, torch.optim.SGD(model.parameters(), lr=0.1), 0.1)


def test_build_rejects_resume_without_checkpointer(tmp_path, model, optimizer):
    with pytest.raises(ConfigurationError):
        builder(tmp_path).num_epochs(2).checkpoint(1).build(model, optimizer, 0.1)


def test_builder_is_consumed(tmp_path, model, optimizer):
    configured = builder(tmp_path)
    learner = configured.build(model, optimizer, 0.1)
    learner.callback.close()

    with pytest.raises(ConfigurationError):
        configured.build(model, optimizer, 0.1)


def test_configuring_a_built_builder_gives_a_buildable_branch(tmp_path, model, optimizer):
    configured = builder(tmp_path)
    configured.build(model, optimizer, 0.1).callback.close()

    learner = configured.num_epochs(2).build(model, optimizer, 0.1)
    try:
        assert learner.num_epochs == 2
    finally:
        learner.callback.close()


def test_branches_do_not_share_metric_state(tmp_path):
    base = builder(tmp_path).metric_train(LossMetric())

    failing = DivergingClassifier()
    with pytest.raises(TrainingLoopError):
        base.build(failing, torch.optim.SGD(failing.parameters(), lr=0.1), 0.1).fit(make_batches(4))

    model = TinyClassifier()
    base.num_epochs(1).build(model, torch.optim.SGD(model.parameters(), lr=0.1), 0.1).fit(make_batches(1))

    entry = FileMetricLogger(tmp_path / "train").read_entries()[-1]
    assert entry.value < 1000.0
    assert entry.formatted == f"epoch {entry.value:.3f} - batch {entry.value:.3f}"


def test_from_config(tmp_path, model, optimizer):
    args = load_learner_config_from_dict({
        "directory": str(tmp_path),
        "num_epochs": 3,
        "grad_accumulation": 2,
        "devices": ["cpu"],
        "checkpointer": {"num_keep": 2},
        "dashboard": {"renderer": "none"},
        "logging": {"log_file": "run.log"},
    })
    learner = LearnerBuilder.from_config(args).build(model, optimizer, 0.1)
    try:
        assert learner.num_epochs == 3
        assert learner.grad_accumulation == 2
        assert learner.devices == [torch.device("cpu")]
        assert isinstance(dashboard_of(learner).renderer, NoopRenderer)
        assert (tmp_path / "run.log").exists()
    finally:
        learner.callback.close()
        for checkpointer in learner.checkpointers.values():
            checkpointer.close()


# ═════════════════════════════════════════════════════════════════════════════════
# Fit
# ═════════════════════════════════════════════════════════════════════════════════

def test_fit_end_to_end(tmp_path, model, optimizer, train_batches, valid_batches):
    counter = EventCounter()
    learner = (
        builder(tmp_path)
        .metric_train_plot(LossMetric())
        .metric_valid_plot(LossMetric())
        .metric_valid(AccuracyMetric())
        .with_file_checkpointer(2)
        .with_callback(counter)
        .num_epochs(3)
        .build(model, optimizer, 0.1)
    )

    trained = learner.fit(train_batches, valid_batches)

    assert trained is model
    assert learner.state == LearnerState.FINISHED
    assert optimizer.step_count == 3 * len(train_batches)

    checkpoint_dir = tmp_path / CHECKPOINT_DIR
    for component in ("model", "optim", "scheduler"):
        assert sorted(p.name for p in checkpoint_dir.glob(f"{component}-*.pt")) == [
            f"{component}-2.pt",
            f"{component}-3.pt",
        ]

    train_entries = FileMetricLogger(tmp_path / "train").read_entries()
    assert len(train_entries) == 3 * len(train_batches)
    for epoch in (1, 2, 3):
        iterations = [e.iteration for e in train_entries if e.epoch == epoch]
        assert iterations == list(range(1, len(train_batches) + 1))

    valid_entries = FileMetricLogger(tmp_path / "valid").read_entries()
    assert {e.name for e in valid_entries} == {"Loss", "Accuracy"}

    assert counter.train_items == 3 * len(train_batches)
    assert counter.valid_items == 3 * len(valid_batches)
    assert counter.epochs == [1, 2, 3]

    summary = learner.summary
    assert [s.epoch for s in summary.metric("Loss", Split.TRAIN)] == [1, 2, 3]
    assert summary.last("Accuracy", Split.VALID) is not None

    run_log = (tmp_path / "experiment.log").read_text()
    assert "Training finished" in run_log


def test_learning_rate_is_not_summarized_on_validation(tmp_path, model, optimizer, train_batches, valid_batches):
    learner = (
        builder(tmp_path)
        .metric_train(LearningRateMetric())
        .metric_valid(LearningRateMetric())
        .build(model, optimizer, 0.1)
    )
    learner.fit(train_batches, valid_batches)

    assert learner.summary.last("Learning Rate", Split.VALID) is None
    train_summary = learner.summary.last("Learning Rate", Split.TRAIN)
    assert (train_summary.min, train_summary.max) == pytest.approx((0.1, 0.1))


def test_saved_checkpoint_matches_final_model(tmp_path, model, optimizer, train_batches):
    learner = builder(tmp_path).with_file_checkpointer(2).num_epochs(2).build(model, optimizer, 0.1)
    learner.fit(train_batches)

    restored = file_checkpointers(tmp_path)["model"].restore(2)
    for name, tensor in model.state_dict().items():
        assert torch.equal(restored[name], tensor)


def test_fit_is_single_use(tmp_path, model, optimizer, train_batches):
    learner = builder(tmp_path).build(model, optimizer, 0.1)
    learner.fit(train_batches)

    with pytest.raises(TrainingLoopError):
        learner.fit(train_batches)


def test_step_failure_marks_learner_failed(tmp_path, optimizer, model, train_batches):
    def broken_step(batch):
        raise RuntimeError("boom")

    model.train_step = broken_step
    learner = builder(tmp_path).build(model, optimizer, 0.1)

    with pytest.raises(TrainingLoopError) as exc_info:
        learner.fit(train_batches)

    assert learner.state == LearnerState.FAILED
    assert exc_info.value.epoch == 1
    assert isinstance(exc_info.value.cause, RuntimeError)


# ═════════════════════════════════════════════════════════════════════════════════
# Resume
# ═════════════════════════════════════════════════════════════════════════════════

def test_resume_from_retained_epoch_and_fail_on_evicted(tmp_path, model, optimizer):
    scheduler = ConstantLearningRate(0.1, optimizer)
    checkpointers = file_checkpointers(tmp_path, num_keep=2)
    saved = {}
    for epoch in (0, 1, 2):
        with torch.no_grad():
            for param in model.parameters():
                param.fill_(float(epoch))
        saved[epoch] = copy.deepcopy(model.state_dict())
        checkpointers["model"].save(model.state_dict(), epoch)
        checkpointers["optim"].save(optimizer.state_dict(), epoch)
        checkpointers["scheduler"].save(scheduler.state_dict(), epoch)

    learner = builder(tmp_path).with_file_checkpointer(2).num_epochs(3).build(model, optimizer, scheduler)
    try:
        learner.resume(1)
        for name, tensor in model.state_dict().items():
            assert torch.equal(tensor, saved[1][name])

        with pytest.raises(ResumeError) as exc_info:
            learner.resume(0)
        assert exc_info.value.component == "model"
        assert exc_info.value.epoch == 0
        assert "model" in str(exc_info.value)
    finally:
        learner.callback.close()
        for checkpointer in learner.checkpointers.values():
            checkpointer.close()


def test_resume_names_missing_component(tmp_path, model, optimizer):
    checkpointers = file_checkpointers(tmp_path)
    checkpointers["model"].save(model.state_dict(), 1)
    checkpointers["scheduler"].save({"lr": 0.1}, 1)

    learner = builder(tmp_path).with_file_checkpointer(2).num_epochs(2).build(model, optimizer, 0.1)
    try:
        with pytest.raises(ResumeError) as exc_info:
            learner.resume(1)
        assert exc_info.value.component == "optim"
    finally:
        learner.callback.close()
        for checkpointer in learner.checkpointers.values():
            checkpointer.close()


def test_fit_resumes_and_trains_following_epochs(tmp_path, train_batches):
    first_model = TinyClassifier()
    first_optimizer = torch.optim.SGD(first_model.parameters(), lr=0.1)
    builder(tmp_path).with_file_checkpointer(2).num_epochs(2).build(
        first_model, first_optimizer, 0.1
    ).fit(train_batches)

    resumed_dir = tmp_path / "resumed"
    resumed_dir.mkdir()
    for path in (tmp_path / CHECKPOINT_DIR).iterdir():
        target = resumed_dir / CHECKPOINT_DIR
        target.mkdir(exist_ok=True)
        (target / path.name).write_bytes(path.read_bytes())

    model = TinyClassifier()
    optimizer = torch.optim.SGD(model.parameters(), lr=0.1)
    learner = (
        builder(resumed_dir)
        .metric_train(LossMetric())
        .with_file_checkpointer(2)
        .num_epochs(3)
        .checkpoint(2)
        .build(model, optimizer, 0.1)
    )
    learner.fit(train_batches)

    epochs = {e.epoch for e in FileMetricLogger(resumed_dir / "train").read_entries()}
    assert epochs == {3}
    assert learner.state == LearnerState.FINISHED


def test_fit_with_missing_checkpoint_fails_before_training(tmp_path, model, optimizer, train_batches):
    learner = (
        builder(tmp_path)
        .metric_train(LossMetric())
        .with_file_checkpointer(2)
        .num_epochs(2)
        .checkpoint(1)
        .build(model, optimizer, 0.1)
    )

    with pytest.raises(ResumeError):
        learner.fit(train_batches)

    assert learner.state == LearnerState.FAILED
    assert optimizer.step_count == 0
    assert FileMetricLogger(tmp_path / "train").read_entries() == []


# ═════════════════════════════════════════════════════════════════════════════════
# Gradient Accumulation & Scheduling
# ═════════════════════════════════════════════════════════════════════════════════

@pytest.mark.parametrize(
    "num_batches, accumulation, expected_steps, dropped",
    [
        (6, None, 6, 0),
        (6, 3, 2, 0),
        (7, 3, 2, 1),
        (2, 3, 0, 2),
    ],
)
def test_one_optimizer_step_per_accumulation_window(
    tmp_path, model, optimizer, num_batches, accumulation, expected_steps, dropped
):
    configured = builder(tmp_path)
    if accumulation is not None:
        configured = configured.grads_accumulation(accumulation)
    learner = configured.build(model, optimizer, 0.1)

    learner.fit(make_batches(num_batches))

    assert optimizer.step_count == expected_steps
    assert learner.optimizer_steps == expected_steps
    assert learner.dropped_passes == dropped
    assert all(p.grad is None or not p.grad.any() for p in model.parameters())


def test_accumulated_gradients_are_summed(tmp_path, model):
    batches = make_batches(2)
    reference = copy.deepcopy(model)
    reference_optimizer = torch.optim.SGD(reference.parameters(), lr=0.1)
    for x, y in batches:
        F.cross_entropy(reference(x), y).backward()
    reference_optimizer.step()

    optimizer = torch.optim.SGD(model.parameters(), lr=0.1)
    builder(tmp_path).grads_accumulation(2).build(model, optimizer, 0.1).fit(batches)

    for param, expected in zip(model.parameters(), reference.parameters()):
        assert torch.allclose(param, expected)


def test_scheduler_steps_once_per_optimizer_step(tmp_path, model):
    optimizer = torch.optim.SGD(model.parameters(), lr=0.1)
    scheduler = torch.optim.lr_scheduler.StepLR(optimizer, step_size=1, gamma=0.5)
    learner = (
        builder(tmp_path)
        .metric_train(LearningRateMetric())
        .grads_accumulation(2)
        .build(model, optimizer, scheduler)
    )

    learner.fit(make_batches(4))

    lrs = [e.value for e in FileMetricLogger(tmp_path / "train").read_entries()]
    assert lrs == pytest.approx([0.1, 0.1, 0.05, 0.05])
    assert optimizer.param_groups[0]["lr"] == pytest.approx(0.025)


def test_constant_learning_rate_round_trip(optimizer):
    scheduler = ConstantLearningRate(0.3, optimizer)
    assert optimizer.param_groups[0]["lr"] == pytest.approx(0.3)

    other = ConstantLearningRate(0.1, optimizer)
    other.load_state_dict(scheduler.state_dict())
    assert other.get_last_lr() == [0.3]


# ═════════════════════════════════════════════════════════════════════════════════
# Multiple Devices
# ═════════════════════════════════════════════════════════════════════════════════

def test_two_devices_match_accumulation_on_one(tmp_path, train_batches):
    torch.manual_seed(0)
    single = TinyClassifier()
    multi = copy.deepcopy(single)

    single_optimizer = CountingSGD(single.parameters(), lr=0.1)
    multi_optimizer = CountingSGD(multi.parameters(), lr=0.1)

    builder(tmp_path / "single").grads_accumulation(2).build(
        single, single_optimizer, 0.1
    ).fit(train_batches)

    learner = (
        builder(tmp_path / "multi")
        .metric_train(LossMetric())
        .devices(["cpu", "cpu"])
        .build(multi, multi_optimizer, 0.1)
    )
    learner.fit(train_batches)

    assert multi_optimizer.step_count == single_optimizer.step_count == len(train_batches) // 2
    for param, expected in zip(multi.parameters(), single.parameters()):
        assert torch.allclose(param, expected, atol=1e-6)

    entries = FileMetricLogger(tmp_path / "multi" / "train").read_entries()
    assert [e.iteration for e in entries] == list(range(1, len(train_batches) + 1))


def test_two_devices_with_uneven_last_group(tmp_path, model, optimizer):
    learner = builder(tmp_path).devices(["cpu", "cpu"]).build(model, optimizer, 0.1)
    learner.fit(make_batches(5))

    assert optimizer.step_count == 3
    assert learner.state == LearnerState.FINISHED


# ═════════════════════════════════════════════════════════════════════════════════
# Run Log
# ═════════════════════════════════════════════════════════════════════════════════

def test_run_log_follows_latest_build_and_appends(tmp_path):
    first = update_log_file(tmp_path / "a" / "experiment.log")
    logging.getLogger("trainloop.test").info("first run")
    second = update_log_file(tmp_path / "b" / "experiment.log")
    logging.getLogger("trainloop.test").info("second run")
    update_log_file(first)

    assert "second run" not in first.read_text()
    assert "second run" in second.read_text()
    assert first.read_text().count("Run log:") == 2
    assert " | INFO     | trainloop.test | first run" in first.read_text()


def test_console_handler_installed_once():
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    handler = install_console_handler()
    try:
        assert install_console_handler() is handler
        assert handler in package_logger.handlers
    finally:
        package_logger.removeHandler(handler)
