# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Training Loop
# ════════════════════════════════════════════════════════════════════════════════
# The Learner drives epochs over training and validation data, steps the
# model/optimizer/scheduler triad, feeds the training-event callback and
# checkpoints the training state after every epoch.
#
# Lifecycle:
#   STARTING (optional resume) -> RUNNING epoch e -> FINISHED | FAILED
#
# Per epoch:
#   train items -> [grad accumulation] -> optimizer step -> scheduler step
#   valid items (no grad, primary device)
#   checkpoint model / optim / scheduler tagged with the epoch
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

import torch
from torch import nn

from trainloop.callbacks import LearnerCallback
from trainloop.checkpoint import Checkpointer
from trainloop.core.config import LearnerConfig
from trainloop.core.errors import (
    CheckpointError,
    ResumeError,
    TrainingError,
    TrainingLoopError,
)
from trainloop.core.types import (
    MODEL_COMPONENT,
    OPTIMIZER_COMPONENT,
    SCHEDULER_COMPONENT,
    LearnerItem,
    LearnerState,
    TrainingProgress,
    TrainingState,
    move_to_device,
)
from trainloop.learner.components import MultiDeviceTrainStep, current_lr
from trainloop.metrics.aggregate import LearnerSummary

logger = logging.getLogger(__name__)


def _grouped(loader: Iterable[Any], size: int) -> Iterator[List[Any]]:
    group: List[Any] = []
    for batch in loader:
        group.append(batch)
        if len(group) == size:
            yield group
            group = []
    if group:
        yield group


def _length(loader: Iterable[Any]) -> int:
    try:
        return len(loader)  # type: ignore[arg-type]
    except TypeError:
        return 0


class Learner:
    """
    Training session assembled by LearnerBuilder.

    A learner runs once: `fit` moves it from STARTING to FINISHED (or
    FAILED), then drains and closes its callback and checkpointers.

    Attributes:
        model: Model implementing train_step / valid_step
        optimizer: torch optimizer over the model parameters
        scheduler: Learning-rate scheduler, stepped once per optimizer step
        config: Immutable run configuration
        callback: Training-event sink (usually an async-wrapped Dashboard)
        checkpointers: Component name -> checkpointer (or None)
    """

    def __init__(
        self,
        model: nn.Module,
        optimizer: torch.optim.Optimizer,
        scheduler: Any,
        config: LearnerConfig,
        callback: LearnerCallback,
        checkpointers: Optional[Dict[str, Optional[Checkpointer]]] = None,
    ):
        self.model = model
        self.optimizer = optimizer
        self.scheduler = scheduler
        self.config = config
        self.callback = callback
        self.checkpointers: Dict[str, Optional[Checkpointer]] = {
            MODEL_COMPONENT: None,
            OPTIMIZER_COMPONENT: None,
            SCHEDULER_COMPONENT: None,
        }
        self.checkpointers.update(checkpointers or {})

        self.state = LearnerState.STARTING
        self.optimizer_steps = 0
        self.dropped_passes = 0
        self._summary: Optional[LearnerSummary] = None
        self._epoch = 0
        self._iteration = 0

    def __repr__(self) -> str:
        return (f"Learner(state={self.state.value}, num_epochs={self.config.num_epochs}, "
                f"devices={[str(d) for d in self.devices]})")

    @property
    def devices(self) -> List[torch.device]:
        return list(self.config.devices)

    @property
    def num_epochs(self) -> int:
        return self.config.num_epochs

    @property
    def grad_accumulation(self) -> Optional[int]:
        return self.config.grad_accumulation

    @property
    def summary(self) -> Optional[LearnerSummary]:
        """Per-epoch metric aggregates, available once fit has returned."""
        return self._summary

    # ─────────────────────────────────────────────────────────────────────────────
    # Fit
    # ─────────────────────────────────────────────────────────────────────────────

    def fit(
        self,
        train_loader: Iterable[Any],
        valid_loader: Optional[Iterable[Any]] = None,
    ) -> nn.Module:
        """
        Train for the configured epochs and return the trained model.

        Raises:
            ResumeError: If a configured resume epoch cannot be restored
            TrainingLoopError: If a step fails or fit is called twice
        """
        if self.state != LearnerState.STARTING:
            raise TrainingLoopError(
                message=f"Learner already {self.state.value}; build a new learner to train again",
            )

        primary = self.devices[0]
        self.model.to(primary)
        step = MultiDeviceTrainStep(self.model, self.devices)

        try:
            starting_epoch = 1
            if self.config.checkpoint is not None:
                self.resume(self.config.checkpoint)
                starting_epoch = self.config.checkpoint + 1

            self.state = LearnerState.RUNNING
            logger.info(
                f"Training epochs {starting_epoch}..{self.num_epochs} on "
                f"{[str(d) for d in self.devices]}"
            )

            for epoch in range(starting_epoch, self.num_epochs + 1):
                self._epoch = epoch
                self._train_epoch(step, train_loader, epoch)
                if valid_loader is not None:
                    self._valid_epoch(valid_loader, epoch)
                self._save_checkpoint(epoch)

            self.state = LearnerState.FINISHED
            logger.info(f"Training finished after {self.optimizer_steps} optimizer steps")

        except TrainingError:
            self.state = LearnerState.FAILED
            raise
        except Exception as e:
            self.state = LearnerState.FAILED
            raise TrainingLoopError(
                message=f"Training failed: {e}",
                epoch=self._epoch,
                step=self._iteration,
                cause=e,
            )
        finally:
            step.close()
            self._shutdown()

        return self.model

    # ─────────────────────────────────────────────────────────────────────────────
    # Resume
    # ─────────────────────────────────────────────────────────────────────────────

    def resume(self, epoch: int) -> None:
        """
        Restore model, optimizer and scheduler state saved at an epoch.

        All three records are loaded before any is applied.

        Raises:
            ResumeError: Naming the first component that could not be restored
        """
        targets = {
            MODEL_COMPONENT: self.model,
            OPTIMIZER_COMPONENT: self.optimizer,
            SCHEDULER_COMPONENT: self.scheduler,
        }

        records = {}
        for component in targets:
            checkpointer = self.checkpointers.get(component)
            if checkpointer is None:
                raise ResumeError(
                    message="No checkpointer configured",
                    component=component,
                    epoch=epoch,
                )
            try:
                records[component] = checkpointer.restore(epoch)
            except CheckpointError as e:
                raise ResumeError(
                    message=f"Could not restore {component} checkpoint",
                    component=component,
                    epoch=epoch,
                    cause=e,
                )

        for component, record in records.items():
            try:
                targets[component].load_state_dict(record)
            except Exception as e:
                raise ResumeError(
                    message=f"Restored {component} record does not match the {component}",
                    component=component,
                    epoch=epoch,
                    cause=e,
                )

        logger.info(f"Resumed training state from epoch {epoch}")

    # ─────────────────────────────────────────────────────────────────────────────
    # Epochs
    # ─────────────────────────────────────────────────────────────────────────────

    def _train_epoch(
        self,
        step: MultiDeviceTrainStep,
        loader: Iterable[Any],
        epoch: int,
    ) -> None:
        self.model.train()
        self.optimizer.zero_grad()

        accumulation = self.grad_accumulation or 1
        items_total = _length(loader)
        items_processed = 0
        passes = 0
        self._iteration = 0

        for batches in _grouped(loader, step.num_devices):
            lr = current_lr(self.optimizer, self.scheduler)
            outputs = step.step(batches)
            passes += 1

            for output in outputs:
                self._iteration += 1
                items_processed += 1
                progress = TrainingProgress(
                    items_processed=items_processed,
                    items_total=items_total,
                    epoch=epoch,
                    epoch_total=self.num_epochs,
                    iteration=self._iteration,
                )
                self.callback.on_train_item(LearnerItem(output.item, progress, lr))

            if passes % accumulation == 0:
                self.optimizer.step()
                self.scheduler.step()
                self.optimizer.zero_grad()
                self.optimizer_steps += 1

        remainder = passes % accumulation
        if remainder:
            # Leftover gradients never reach the optimizer
            self.optimizer.zero_grad()
            self.dropped_passes += remainder
            logger.debug(f"Epoch {epoch}: dropped {remainder} accumulated pass(es)")

        self.callback.on_train_end_epoch(epoch)

    def _valid_epoch(self, loader: Iterable[Any], epoch: int) -> None:
        self.model.eval()
        primary = self.devices[0]
        items_total = _length(loader)
        self._iteration = 0

        with torch.no_grad():
            for batch in loader:
                self._iteration += 1
                item = self.model.valid_step(move_to_device(batch, primary))
                progress = TrainingProgress(
                    items_processed=self._iteration,
                    items_total=items_total,
                    epoch=epoch,
                    epoch_total=self.num_epochs,
                    iteration=self._iteration,
                )
                self.callback.on_valid_item(LearnerItem(item, progress))

        self.callback.on_valid_end_epoch(epoch)

    def _save_checkpoint(self, epoch: int) -> None:
        if all(c is None for c in self.checkpointers.values()):
            return

        state = TrainingState(
            model=self.model.state_dict(),
            optimizer=self.optimizer.state_dict(),
            scheduler=self.scheduler.state_dict(),
        )
        for component, record in state.components().items():
            checkpointer = self.checkpointers.get(component)
            if checkpointer is not None:
                checkpointer.save(record, epoch)

        logger.debug(f"Checkpoint submitted for epoch {epoch}")

    # ─────────────────────────────────────────────────────────────────────────────
    # Shutdown
    # ─────────────────────────────────────────────────────────────────────────────

    def _shutdown(self) -> None:
        """Deliver pending events and writes, then release workers."""
        try:
            self.callback.drain()
            self._summary = self.callback.summary()
            self.callback.close()
        finally:
            for checkpointer in self._distinct_checkpointers():
                checkpointer.close()

    def _distinct_checkpointers(self) -> Sequence[Checkpointer]:
        seen: List[Checkpointer] = []
        for checkpointer in self.checkpointers.values():
            if checkpointer is not None and not any(checkpointer is s for s in seen):
                seen.append(checkpointer)
        return seen


__all__ = [
    "Learner",
    "LearnerSummary",
]
