# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Training Components
# ════════════════════════════════════════════════════════════════════════════════
# Capabilities the learner requires from the model and scheduler, and the
# data-parallel step runner.
#
# - TrainStep / ValidStep: model.train_step(batch) -> TrainOutput,
#   model.valid_step(batch) -> item
# - ConstantLearningRate: scheduler stand-in for a fixed learning rate
# - MultiDeviceTrainStep: one batch per device, gradients summed on the
#   primary device
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import copy
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import torch
from torch import nn

from trainloop.core.types import TrainOutput, move_to_device

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════════
# Model Capabilities
# ═════════════════════════════════════════════════════════════════════════════════

@runtime_checkable
class TrainStep(Protocol):
    """Model capability: forward pass and loss of a training batch."""

    def train_step(self, batch: Any) -> TrainOutput:
        ...


@runtime_checkable
class ValidStep(Protocol):
    """Model capability: forward pass of a validation batch."""

    def valid_step(self, batch: Any) -> Any:
        ...


# ═════════════════════════════════════════════════════════════════════════════════
# Learning Rate
# ═════════════════════════════════════════════════════════════════════════════════

class ConstantLearningRate:
    """
    Scheduler keeping the optimizer at a fixed learning rate.

    Implements the subset of the torch LRScheduler interface the learner
    uses: step, get_last_lr, state_dict and load_state_dict.
    """

    def __init__(self, lr: float, optimizer: Optional[torch.optim.Optimizer] = None):
        self.lr = float(lr)
        self.optimizer = optimizer
        self._apply()

    def __repr__(self) -> str:
        return f"ConstantLearningRate(lr={self.lr})"

    def _apply(self) -> None:
        if self.optimizer is not None:
            for group in self.optimizer.param_groups:
                group["lr"] = self.lr

    def step(self) -> None:
        self._apply()

    def get_last_lr(self) -> List[float]:
        return [self.lr]

    def state_dict(self) -> Dict[str, Any]:
        return {"lr": self.lr}

    def load_state_dict(self, state_dict: Dict[str, Any]) -> None:
        self.lr = float(state_dict["lr"])
        self._apply()


def current_lr(optimizer: Any, scheduler: Any) -> Optional[float]:
    """Learning rate the next optimizer step will use."""
    get_last_lr = getattr(scheduler, "get_last_lr", None)
    if callable(get_last_lr):
        lrs = get_last_lr()
        if lrs:
            return float(lrs[0])

    groups = getattr(optimizer, "param_groups", None)
    if groups:
        return float(groups[0]["lr"])
    return None


# ═════════════════════════════════════════════════════════════════════════════════
# Data-Parallel Step
# ═════════════════════════════════════════════════════════════════════════════════

class MultiDeviceTrainStep:
    """
    Runs forward/backward passes of a batch group across devices.

    The first device holds the primary model. Every other device holds a
    replica whose parameters are copied from the primary before each
    group; after the group, replica gradients are added to the primary
    gradients. Batches are run on worker threads, one per device.

    Args:
        model: Primary model, already on `devices[0]`
        devices: Ordered device list
    """

    def __init__(self, model: nn.Module, devices: Sequence[torch.device]):
        if not devices:
            raise ValueError("MultiDeviceTrainStep requires at least one device")

        self.model = model
        self.devices = list(devices)
        self._replicas: List[nn.Module] = [
            copy.deepcopy(model).to(device) for device in self.devices[1:]
        ]
        self._executor: Optional[ThreadPoolExecutor] = None
        if len(self.devices) > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=len(self.devices),
                thread_name_prefix="train-step",
            )
            logger.info(f"Data-parallel training on {[str(d) for d in self.devices]}")

    @property
    def num_devices(self) -> int:
        return len(self.devices)

    def step(self, batches: Sequence[Any]) -> List[TrainOutput]:
        """
        Forward and backward one batch per device.

        Returns outputs in device order. Gradients accumulate on the
        primary model; the caller owns the optimizer step.
        """
        if len(batches) > len(self.devices):
            raise ValueError(
                f"Got {len(batches)} batches for {len(self.devices)} devices"
            )

        if self._executor is None or len(batches) == 1:
            return [self._forward_backward(self.model, self.devices[0], batches[0])]

        replicas = self._replicas[:len(batches) - 1]
        for replica in replicas:
            self._sync(replica)

        models = [self.model] + replicas
        futures = [
            self._executor.submit(self._forward_backward, model, device, batch)
            for model, device, batch in zip(models, self.devices, batches)
        ]
        outputs = [future.result() for future in futures]

        for replica in replicas:
            self._reduce_gradients(replica)
        return outputs

    @staticmethod
    def _forward_backward(model: nn.Module, device: torch.device, batch: Any) -> TrainOutput:
        output = model.train_step(move_to_device(batch, device))
        output.loss.backward()
        return output

    def _sync(self, replica: nn.Module) -> None:
        replica.load_state_dict(self.model.state_dict())
        replica.train(self.model.training)
        replica.zero_grad(set_to_none=True)

    def _reduce_gradients(self, replica: nn.Module) -> None:
        for param, replica_param in zip(self.model.parameters(), replica.parameters()):
            if replica_param.grad is None:
                continue
            grad = replica_param.grad.to(param.device)
            if param.grad is None:
                param.grad = grad.clone()
            else:
                param.grad.add_(grad)
            replica_param.grad = None

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


__all__ = [
    "TrainStep",
    "ValidStep",
    "ConstantLearningRate",
    "current_lr",
    "MultiDeviceTrainStep",
]
