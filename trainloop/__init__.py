# ════════════════════════════════════════════════════════════════════════════════
# trainloop - Learner Training Loop
# ════════════════════════════════════════════════════════════════════════════════
# Epoch-driven training orchestration for torch models.
#
# Modules:
# - core: Types, errors, configuration
# - record: Record codecs (torch, json)
# - checkpoint: File checkpointer with retention, async wrapper
# - metrics: Metric framework, built-in metrics, epoch aggregates
# - logger: Per-split metric logs
# - dashboard: Metric store, plots, terminal renderer
# - callbacks: Training-event sinks, async delivery
# - learner: Builder and training loop
# ════════════════════════════════════════════════════════════════════════════════

from trainloop.core import (
    # Types
    Split,
    LearnerState,
    TrainingProgress,
    LearnerItem,
    MetricMetadata,
    MetricEntry,
    TrainOutput,
    TrainingState,
    # Errors
    TrainingError,
    ConfigurationError,
    MetricRegistrationError,
    MetricAdaptError,
    CheckpointError,
    CheckpointSaveError,
    CheckpointLoadError,
    CheckpointDeleteError,
    ResumeError,
    TrainingLoopError,
    CallbackError,
    # Config
    LearnerArguments,
    LearnerConfig,
    load_learner_config,
)
from trainloop.record import (
    Recorder,
    TorchFileRecorder,
    JsonFileRecorder,
    create_recorder,
)
from trainloop.checkpoint import (
    Checkpointer,
    FileCheckpointer,
    AsyncCheckpointer,
)
from trainloop.metrics import (
    Metric,
    Numeric,
    adapt,
    LossInput,
    LossMetric,
    AccuracyInput,
    AccuracyMetric,
    LearningRateMetric,
)
from trainloop.logger import (
    MetricLogger,
    FileMetricLogger,
    InMemoryMetricLogger,
)
from trainloop.callbacks import (
    LearnerCallback,
    CallbackHandler,
    AsyncLearnerCallback,
)
from trainloop.dashboard import (
    Dashboard,
    DashboardRenderer,
    CLIDashboardRenderer,
    NoopRenderer,
)
from trainloop.learner import (
    Learner,
    LearnerBuilder,
    LearnerSummary,
    ConstantLearningRate,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Types
    "Split",
    "LearnerState",
    "TrainingProgress",
    "LearnerItem",
    "MetricMetadata",
    "MetricEntry",
    "TrainOutput",
    "TrainingState",
    # Errors
    "TrainingError",
    "ConfigurationError",
    "MetricRegistrationError",
    "MetricAdaptError",
    "CheckpointError",
    "CheckpointSaveError",
    "CheckpointLoadError",
    "CheckpointDeleteError",
    "ResumeError",
    "TrainingLoopError",
    "CallbackError",
    # Config
    "LearnerArguments",
    "LearnerConfig",
    "load_learner_config",
    # Records
    "Recorder",
    "TorchFileRecorder",
    "JsonFileRecorder",
    "create_recorder",
    # Checkpoints
    "Checkpointer",
    "FileCheckpointer",
    "AsyncCheckpointer",
    # Metrics
    "Metric",
    "Numeric",
    "adapt",
    "LossInput",
    "LossMetric",
    "AccuracyInput",
    "AccuracyMetric",
    "LearningRateMetric",
    # Loggers
    "MetricLogger",
    "FileMetricLogger",
    "InMemoryMetricLogger",
    # Callbacks
    "LearnerCallback",
    "CallbackHandler",
    "AsyncLearnerCallback",
    # Dashboard
    "Dashboard",
    "DashboardRenderer",
    "CLIDashboardRenderer",
    "NoopRenderer",
    # Learner
    "Learner",
    "LearnerBuilder",
    "LearnerSummary",
    "ConstantLearningRate",
]
