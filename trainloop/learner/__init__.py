# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Learner & Builder
# ════════════════════════════════════════════════════════════════════════════════

from trainloop.learner.base import Learner
from trainloop.learner.builder import CHECKPOINT_DIR, LearnerBuilder
from trainloop.learner.components import (
    ConstantLearningRate,
    MultiDeviceTrainStep,
    TrainStep,
    ValidStep,
    current_lr,
)
from trainloop.learner.log import install_console_handler, update_log_file
from trainloop.metrics.aggregate import LearnerSummary

__all__ = [
    "Learner",
    "LearnerBuilder",
    "LearnerSummary",
    "CHECKPOINT_DIR",
    "TrainStep",
    "ValidStep",
    "ConstantLearningRate",
    "MultiDeviceTrainStep",
    "current_lr",
    "update_log_file",
    "install_console_handler",
]
