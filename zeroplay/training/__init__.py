"""Training module: samples, memory buffer and learner."""

from .learner import Learner, LearningReport, augment_with_symmetries
from .metrics_logger import MetricsLogger
from .replay_buffer import (
    MemoryBuffer,
    MemoryReport,
    SampleStats,
    StageReport,
    merge_by_state,
    sample_weight,
)
from .trajectory import Sample, TrainingBatch, Trajectory, TrajectoryState

__all__ = [
    "Learner",
    "LearningReport",
    "augment_with_symmetries",
    "MetricsLogger",
    "MemoryBuffer",
    "MemoryReport",
    "SampleStats",
    "StageReport",
    "merge_by_state",
    "sample_weight",
    "Sample",
    "TrainingBatch",
    "Trajectory",
    "TrajectoryState",
]
