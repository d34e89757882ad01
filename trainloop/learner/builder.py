# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Builder
# ════════════════════════════════════════════════════════════════════════════════
# Fluent construction of a Learner.
#
# Every configuration call returns a new builder, so partial configurations
# can be branched. build() consumes the builder: it wires the dashboard,
# loggers and checkpointers, wraps them in their background workers and
# opens the run log at {directory}/experiment.log.
#
# Defaults: 1 epoch, default device, no checkpointing, no resume, no
# gradient accumulation, terminal dashboard, file metric logs under
# {directory}/train and {directory}/valid.
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import torch
from torch import nn

from trainloop.callbacks import AsyncLearnerCallback, CallbackHandler, LearnerCallback
from trainloop.checkpoint import AsyncCheckpointer, Checkpointer, FileCheckpointer
from trainloop.core.config import LearnerArguments, LearnerConfig
from trainloop.core.errors import ConfigurationError, MetricRegistrationError
from trainloop.core.types import (
    MODEL_COMPONENT,
    OPTIMIZER_COMPONENT,
    SCHEDULER_COMPONENT,
    Split,
    resolve_devices,
)
from trainloop.dashboard import (
    CLIDashboardRenderer,
    Dashboard,
    DashboardRenderer,
    NoopRenderer,
)
from trainloop.learner.base import Learner
from trainloop.learner.components import ConstantLearningRate, TrainStep, ValidStep
from trainloop.learner.log import update_log_file
from trainloop.logger import FileMetricLogger, MetricLogger
from trainloop.metrics import Metric, is_numeric
from trainloop.record import Recorder, create_recorder

logger = logging.getLogger(__name__)

CHECKPOINT_DIR = "checkpoint"
DEFAULT_LOG_FILE = "experiment.log"

DeviceLike = Union[str, torch.device]


class LearnerBuilder:
    """
    Accumulates learner configuration and builds the Learner.

    Example:
        ```python
        learner = (
            LearnerBuilder("./artifacts")
            .metric_train_plot(LossMetric())
            .metric_valid_plot(LossMetric())
            .with_file_checkpointer(2, "torch")
            .num_epochs(10)
            .grads_accumulation(4)
            .devices(["cuda:0", "cuda:1"])
            .build(model, optimizer, scheduler)
        )
        trained = learner.fit(train_loader, valid_loader)
        ```
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

        self._num_epochs = 1
        self._checkpoint: Optional[int] = None
        self._grad_accumulation: Optional[int] = None
        self._devices: List[DeviceLike] = ["auto"]
        self._metrics: List[Tuple[Metric, Split, bool]] = []
        self._loggers: Optional[Tuple[MetricLogger, MetricLogger]] = None
        self._renderer: Optional[DashboardRenderer] = None
        self._callbacks: List[LearnerCallback] = []
        self._checkpointer: Optional[Tuple[int, Union[str, Recorder]]] = None
        self._log_file = DEFAULT_LOG_FILE
        self._log_level: Union[int, str] = logging.INFO
        self._plot_points = 60
        self._refresh_every = 1
        self._built = False

    def __repr__(self) -> str:
        return (f"LearnerBuilder(directory={str(self.directory)!r}, "
                f"num_epochs={self._num_epochs}, checkpoint={self._checkpoint}, "
                f"grad_accumulation={self._grad_accumulation}, devices={self._devices})")

    @classmethod
    def from_config(cls, args: LearnerArguments) -> "LearnerBuilder":
        """
        Builder preconfigured from validated LearnerArguments.
        """
        builder = cls(args.output_path).num_epochs(args.num_epochs).devices(args.devices)

        if args.checkpointer is not None:
            builder = builder.with_file_checkpointer(
                args.checkpointer.num_keep,
                args.checkpointer.recorder,
            )
        if args.checkpoint is not None:
            builder = builder.checkpoint(args.checkpoint)
        if args.grad_accumulation is not None:
            builder = builder.grads_accumulation(args.grad_accumulation)
        if args.dashboard.renderer == "none":
            builder = builder.renderer(NoopRenderer())

        builder = builder._replace(
            _log_file=args.logging.log_file,
            _log_level=args.logging.log_level,
            _plot_points=args.dashboard.plot_points,
            _refresh_every=args.dashboard.refresh_every,
        )
        return builder

    # ─────────────────────────────────────────────────────────────────────────────
    # Configuration
    # ─────────────────────────────────────────────────────────────────────────────

    def _replace(self, **changes: Any) -> "LearnerBuilder":
        builder = copy.copy(self)
        builder._metrics = list(self._metrics)
        builder._callbacks = list(self._callbacks)
        builder._devices = list(self._devices)
        builder._built = False
        for name, value in changes.items():
            setattr(builder, name, value)
        return builder

    def metric_loggers(self, train: MetricLogger, valid: MetricLogger) -> "LearnerBuilder":
        """Replace the default file loggers of both splits."""
        return self._replace(_loggers=(train, valid))

    def renderer(self, renderer: DashboardRenderer) -> "LearnerBuilder":
        """Replace the default terminal renderer."""
        return self._replace(_renderer=renderer)

    def with_callback(self, callback: LearnerCallback) -> "LearnerBuilder":
        """Additional training-event sink, called after the dashboard."""
        builder = self._replace()
        builder._callbacks.append(callback)
        return builder

    def _register(self, metric: Metric, split: Split, plot: bool) -> "LearnerBuilder":
        if plot and not is_numeric(metric):
            raise MetricRegistrationError(
                message=f"Metric {metric.name!r} cannot be plotted: it has no numeric value",
                metric_name=metric.name,
                split=split.value,
                expected="Numeric metric",
                got=type(metric).__name__,
                remediation=f"Use metric_{split.value}() instead",
            )
        builder = self._replace()
        builder._metrics.append((metric, split, plot))
        return builder

    def metric_train(self, metric: Metric) -> "LearnerBuilder":
        return self._register(metric, Split.TRAIN, plot=False)

    def metric_valid(self, metric: Metric) -> "LearnerBuilder":
        return self._register(metric, Split.VALID, plot=False)

    def metric_train_plot(self, metric: Metric) -> "LearnerBuilder":
        """
        Register a training metric and plot it.

        Raises:
            MetricRegistrationError: If the metric is not numeric
        """
        return self._register(metric, Split.TRAIN, plot=True)

    def metric_valid_plot(self, metric: Metric) -> "LearnerBuilder":
        """
        Register a validation metric and plot it.

        Raises:
            MetricRegistrationError: If the metric is not numeric
        """
        return self._register(metric, Split.VALID, plot=True)

    def grads_accumulation(self, accumulation: int) -> "LearnerBuilder":
        """
        Sum gradients of `accumulation` passes per optimizer step.

        The effective batch size grows by the same factor; consider a
        proportionally smaller learning rate. Passes left over at the end
        of an epoch are dropped.
        """
        if accumulation < 1:
            raise ConfigurationError(
                message="Gradient accumulation must be at least 1",
                field_path="grad_accumulation",
                expected=">= 1",
                got=str(accumulation),
            )
        return self._replace(_grad_accumulation=accumulation)

    def num_epochs(self, num_epochs: int) -> "LearnerBuilder":
        if num_epochs < 1:
            raise ConfigurationError(
                message="num_epochs must be at least 1",
                field_path="num_epochs",
                expected=">= 1",
                got=str(num_epochs),
            )
        return self._replace(_num_epochs=num_epochs)

    def devices(self, devices: Sequence[DeviceLike]) -> "LearnerBuilder":
        """Ordered device list; the first device holds the primary model."""
        if not devices:
            raise ConfigurationError(
                message="At least one device is required",
                field_path="devices",
                expected="non-empty list",
                got="[]",
            )
        return self._replace(_devices=list(devices))

    def checkpoint(self, epoch: int) -> "LearnerBuilder":
        """Resume from the checkpoint saved at `epoch`, then train the following epochs."""
        if epoch < 1:
            raise ConfigurationError(
                message="Resume epoch must be at least 1",
                field_path="checkpoint",
                expected=">= 1",
                got=str(epoch),
            )
        return self._replace(_checkpoint=epoch)

    def with_file_checkpointer(
        self,
        num_keep: int,
        recorder: Union[str, Recorder] = "torch",
    ) -> "LearnerBuilder":
        """
        Checkpoint model, optimizer and scheduler to `{directory}/checkpoint`.

        Args:
            num_keep: Epochs retained per component (2 or more recommended)
            recorder: Recorder instance or name ("torch", "json")
        """
        if num_keep < 1:
            raise ConfigurationError(
                message="num_keep must be at least 1",
                field_path="checkpointer.num_keep",
                expected=">= 1",
                got=str(num_keep),
            )
        return self._replace(_checkpointer=(num_keep, recorder))

    # ─────────────────────────────────────────────────────────────────────────────
    # Build
    # ─────────────────────────────────────────────────────────────────────────────

    def build(
        self,
        model: nn.Module,
        optimizer: torch.optim.Optimizer,
        scheduler: Union[float, Any],
    ) -> Learner:
        """
        Assemble the learner.

        Args:
            model: Module implementing train_step and valid_step
            optimizer: Optimizer over the model parameters
            scheduler: LR scheduler, or a float for a constant learning rate

        Raises:
            ConfigurationError: On an inconsistent configuration or a model
                missing the step methods
        """
        if self._built:
            raise ConfigurationError(
                message="LearnerBuilder has already been built",
                remediation="Branch a new builder from an earlier configuration call",
            )
        self._validate(model)

        log_path = update_log_file(self.directory / self._log_file, self._log_level)

        if isinstance(scheduler, (int, float)):
            scheduler = ConstantLearningRate(scheduler, optimizer)

        config = LearnerConfig(
            num_epochs=self._num_epochs,
            checkpoint=self._checkpoint,
            directory=str(self.directory),
            grad_accumulation=self._grad_accumulation,
            devices=tuple(resolve_devices(self._devices)),
        )

        dashboard = self._build_dashboard()
        callback: LearnerCallback = dashboard
        if self._callbacks:
            callback = CallbackHandler([dashboard, *self._callbacks])

        learner = Learner(
            model=model,
            optimizer=optimizer,
            scheduler=scheduler,
            config=config,
            callback=AsyncLearnerCallback(callback),
            checkpointers=self._build_checkpointers(),
        )
        self._built = True

        logger.info(f"Built {learner!r}; run log at {log_path}")
        return learner

    def _validate(self, model: nn.Module) -> None:
        if not isinstance(model, TrainStep) or not isinstance(model, ValidStep):
            raise ConfigurationError(
                message="Model must implement train_step(batch) and valid_step(batch)",
                expected="TrainStep and ValidStep",
                got=type(model).__name__,
            )
        if self._checkpoint is not None and self._checkpoint > self._num_epochs:
            raise ConfigurationError(
                message="Resume epoch exceeds num_epochs",
                field_path="checkpoint",
                expected=f"<= {self._num_epochs}",
                got=str(self._checkpoint),
            )
        if self._checkpoint is not None and self._checkpointer is None:
            raise ConfigurationError(
                message="Resuming requires a checkpointer",
                field_path="checkpoint",
                remediation="Call with_file_checkpointer() before checkpoint()",
            )

    def _build_dashboard(self) -> Dashboard:
        renderer = self._renderer or CLIDashboardRenderer(
            plot_points=self._plot_points,
            refresh_every=self._refresh_every,
        )
        dashboard = Dashboard(
            renderer,
            FileMetricLogger(self.directory / Split.TRAIN.value),
            FileMetricLogger(self.directory / Split.VALID.value),
        )
        if self._loggers is not None:
            dashboard.replace_loggers(*self._loggers)

        # each learner owns its metric state; branches may share registrations
        for metric, split, plot in self._metrics:
            dashboard.register(copy.deepcopy(metric), split, plot=plot)
        return dashboard

    def _build_checkpointers(self) -> Dict[str, Checkpointer]:
        if self._checkpointer is None:
            return {}

        num_keep, recorder = self._checkpointer
        if isinstance(recorder, str):
            recorder = create_recorder(recorder)

        directory = self.directory / CHECKPOINT_DIR
        checkpointers: Dict[str, Checkpointer] = {}
        for component in (MODEL_COMPONENT, OPTIMIZER_COMPONENT, SCHEDULER_COMPONENT):
            checkpointer: Checkpointer = FileCheckpointer(recorder, directory, component, num_keep)
            checkpointers[component] = AsyncCheckpointer(checkpointer)
        return checkpointers


__all__ = [
    "LearnerBuilder",
    "CHECKPOINT_DIR",
]
