"""zeroplay: AlphaZero-style self-play training for two-player games."""

__version__ = "0.1.0"

from .config import (
    ArenaConfig,
    ColorPolicy,
    InferenceConfig,
    LearningConfig,
    MCTSConfig,
    MemoryConfig,
    NetworkConfig,
    PROFILES,
    Params,
    SampleWeighting,
    SelfPlayConfig,
    with_updates,
)
from .errors import (
    CapabilityError,
    FatalError,
    InferenceError,
    InferenceProtocolError,
    NumericalDivergenceError,
    ResourceExhaustedError,
    SearchError,
    TrainingAborted,
    WorkerPoolError,
    ZeroPlayError,
)
from .schedule import ConstSchedule, PiecewiseLinearSchedule, StepSchedule
from .selfplay.coordinator import IterationReport, Phase, TrainingCoordinator

__all__ = [
    "ArenaConfig",
    "ColorPolicy",
    "InferenceConfig",
    "LearningConfig",
    "MCTSConfig",
    "MemoryConfig",
    "NetworkConfig",
    "PROFILES",
    "Params",
    "SampleWeighting",
    "SelfPlayConfig",
    "with_updates",
    "CapabilityError",
    "FatalError",
    "InferenceError",
    "InferenceProtocolError",
    "NumericalDivergenceError",
    "ResourceExhaustedError",
    "SearchError",
    "TrainingAborted",
    "WorkerPoolError",
    "ZeroPlayError",
    "ConstSchedule",
    "PiecewiseLinearSchedule",
    "StepSchedule",
    "IterationReport",
    "Phase",
    "TrainingCoordinator",
]
