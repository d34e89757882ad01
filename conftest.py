"""
Shared pytest fixtures.

All file I/O goes to pytest's tmp_path; models are tiny CPU classifiers.
"""

from dataclasses import dataclass
from typing import Any, List, Tuple

import pytest
import torch
import torch.nn.functional as F
from torch import Tensor, nn

from trainloop.core.types import TrainOutput
from trainloop.metrics import AccuracyInput, LossInput

Batch = Tuple[Tensor, Tensor]

IN_FEATURES = 4
NUM_CLASSES = 3


@dataclass
class ClassificationOutput:
    """Step output adaptable to the loss and accuracy metrics."""
    loss: Tensor
    logits: Tensor
    targets: Tensor

    def adapt(self, input_type: type) -> Any:
        if input_type is LossInput:
            return LossInput(self.loss, batch_size=self.targets.shape[0])
        if input_type is AccuracyInput:
            return AccuracyInput(self.logits, self.targets)
        return None


class TinyClassifier(nn.Module):
    """Linear classifier implementing train_step / valid_step."""

    def __init__(self, in_features: int = IN_FEATURES, num_classes: int = NUM_CLASSES):
        super().__init__()
        self.linear = nn.Linear(in_features, num_classes)

    def forward(self, x: Tensor) -> Tensor:
        return self.linear(x)

    def _output(self, batch: Batch) -> Tuple[Tensor, ClassificationOutput]:
        x, y = batch
        logits = self(x)
        loss = F.cross_entropy(logits, y)
        return loss, ClassificationOutput(loss.detach(), logits.detach(), y)

    def train_step(self, batch: Batch) -> TrainOutput:
        loss, output = self._output(batch)
        return TrainOutput(loss=loss, item=output)

    def valid_step(self, batch: Batch) -> ClassificationOutput:
        _, output = self._output(batch)
        return output


class CountingSGD(torch.optim.SGD):
    """SGD recording how often step() was called."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.step_count = 0

    def step(self, closure=None):
        self.step_count += 1
        return super().step(closure)


def make_batches(num_batches: int, batch_size: int = 4, seed: int = 0) -> List[Batch]:
    generator = torch.Generator().manual_seed(seed)
    return [
        (
            torch.randn(batch_size, IN_FEATURES, generator=generator),
            torch.randint(0, NUM_CLASSES, (batch_size,), generator=generator),
        )
        for _ in range(num_batches)
    ]


@pytest.fixture
def model() -> TinyClassifier:
    torch.manual_seed(0)
    return TinyClassifier()


@pytest.fixture
def optimizer(model: TinyClassifier) -> CountingSGD:
    return CountingSGD(model.parameters(), lr=0.1)


@pytest.fixture
def train_batches() -> List[Batch]:
    return make_batches(6, seed=1)


@pytest.fixture
def valid_batches() -> List[Batch]:
    return make_batches(2, seed=2)
