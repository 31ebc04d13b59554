"""Configuration dataclasses for search, self-play, learning and evaluation.

All configurations are frozen. Use ``updated`` (or ``with_updates`` for
nested sections) to derive a modified copy; the original is never mutated.
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .schedule import Schedule, ConstSchedule, PiecewiseLinearSchedule, StepSchedule


class SampleWeighting(Enum):
    """Weight given to a position-averaged sample seen n times."""
    UNIFORM = "uniform"  # 1
    LOG = "log"          # log2(n) + 1
    LINEAR = "linear"    # n


class ColorPolicy(Enum):
    """Which side moves first in a duel."""
    ALTERNATE = "alternate"
    CONTENDER_FIRST = "contender_first"
    BASELINE_FIRST = "baseline_first"


class _Updatable:
    """Mixin providing record update on frozen dataclasses."""

    def updated(self, **changes: Any):
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class MCTSConfig(_Updatable):
    """Configuration for Monte Carlo Tree Search."""
    num_simulations: int = 100
    c_puct: float = 1.25
    dirichlet_alpha: float = 0.3
    dirichlet_epsilon: Union[float, Schedule] = 0.25  # keyed by iteration
    temperature: Union[float, Schedule] = StepSchedule(1.0, (30,), (0.0,))  # keyed by move
    greedy_threshold: float = 0.01
    virtual_loss: float = 1.0
    simulations_in_flight: int = 1  # Concurrent simulations per tree
    prior_floor: float = 1e-3  # Uniform mixing weight for expanded priors


@dataclass(frozen=True)
class SelfPlayConfig(_Updatable):
    """Configuration for self-play game generation."""
    num_games: int = 100
    num_workers: int = 8
    reset_mcts_every: Optional[int] = 1  # Consecutive games sharing a tree; None for all
    max_moves: int = 512  # Longer games are scored as draws
    ternary_outcome: bool = False
    max_game_failures: int = 10
    mcts: MCTSConfig = field(default_factory=MCTSConfig)


@dataclass(frozen=True)
class InferenceConfig(_Updatable):
    """Configuration for the batched inference scheduler."""
    batch_size: int = 64
    batch_timeout: float = 0.01  # Seconds before a partial batch is flushed
    min_blocked_workers: Optional[int] = None  # Blocked workers that flush a partial batch; None for all live
    use_amp: bool = True  # Only honoured on CUDA


@dataclass(frozen=True)
class MemoryConfig(_Updatable):
    """Configuration for the memory buffer."""
    capacity: Union[int, Schedule] = 100_000  # keyed by iteration
    position_averaging: bool = True
    sample_weighting: SampleWeighting = SampleWeighting.LOG
    num_game_stages: int = 5


@dataclass(frozen=True)
class NetworkConfig(_Updatable):
    """Configuration for the reference network architecture."""
    num_filters: int = 64
    num_blocks: int = 5
    policy_filters: int = 2
    value_filters: int = 1
    value_hidden: int = 64


@dataclass(frozen=True)
class LearningConfig(_Updatable):
    """Configuration for the learning phase."""
    batch_size: int = 256
    num_epochs: int = 1
    max_steps: Optional[int] = None
    learning_rate: Union[float, Schedule] = 0.02  # keyed by iteration
    momentum: float = 0.9
    weight_decay: float = 1e-4
    max_grad_norm: float = 1.0
    value_weight: float = 1.0
    nonvalidity_penalty: float = 1.0
    use_symmetries: bool = False
    use_amp: bool = True  # Only honoured on CUDA


@dataclass(frozen=True)
class ArenaConfig(_Updatable):
    """Configuration for the contender vs. best network duel."""
    num_games: int = 40
    update_threshold: float = 0.55
    flip_probability: float = 0.0
    reset_mcts_every: Optional[int] = 1
    num_workers: int = 8
    color_policy: ColorPolicy = ColorPolicy.ALTERNATE
    mcts: MCTSConfig = field(default_factory=lambda: MCTSConfig(
        dirichlet_epsilon=0.05, temperature=0.2))


@dataclass(frozen=True)
class Params(_Updatable):
    """Master configuration combining all sections."""
    selfplay: SelfPlayConfig = field(default_factory=SelfPlayConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)
    arena: Optional[ArenaConfig] = field(default_factory=ArenaConfig)  # None: always promote
    network: NetworkConfig = field(default_factory=NetworkConfig)
    num_iters: int = 10
    seed: int = 42
    device: str = "cpu"
    checkpoint_dir: Optional[str] = "checkpoints"
    log_dir: Optional[str] = None
    keep_checkpoints: int = 2
    show_progress: bool = True


def with_updates(config: Any, **changes: Any) -> Any:
    """Record update supporting nested sections.

    Keys of the form ``section__field`` update a field of a nested section:

        >>> p = with_updates(Params(), num_iters=3, selfplay__num_games=8)
        >>> p.selfplay.num_games
        8
    """
    direct = {}
    nested = {}
    for key, value in changes.items():
        if '__' in key:
            section, rest = key.split('__', 1)
            nested.setdefault(section, {})[rest] = value
        else:
            direct[key] = value

    for section, section_changes in nested.items():
        current = direct.get(section, getattr(config, section))
        if current is None:
            raise ValueError(f"Cannot update fields of unset section '{section}'")
        direct[section] = with_updates(current, **section_changes)

    return dataclasses.replace(config, **direct)


# Presets used by scripts/train.py
PROFILES = {
    'debug': Params(
        selfplay=SelfPlayConfig(
            num_games=8,
            num_workers=4,
            max_moves=64,
            mcts=MCTSConfig(num_simulations=16, simulations_in_flight=4),
        ),
        inference=InferenceConfig(batch_size=16, use_amp=False),
        memory=MemoryConfig(capacity=5_000, num_game_stages=3),
        learning=LearningConfig(batch_size=32, use_amp=False),
        arena=ArenaConfig(
            num_games=8,
            num_workers=4,
            mcts=MCTSConfig(num_simulations=16, dirichlet_epsilon=0.05,
                            temperature=0.2, simulations_in_flight=4),
        ),
        network=NetworkConfig(num_filters=16, num_blocks=1, value_hidden=16),
        num_iters=2,
    ),
    'standard': Params(
        selfplay=SelfPlayConfig(
            num_games=500,
            num_workers=32,
            mcts=MCTSConfig(
                num_simulations=400,
                dirichlet_epsilon=StepSchedule(0.25, (50,), (0.15,)),
                simulations_in_flight=8,
            ),
        ),
        inference=InferenceConfig(batch_size=128),
        memory=MemoryConfig(
            capacity=PiecewiseLinearSchedule((0, 60), (40_000, 400_000)),
        ),
        learning=LearningConfig(
            batch_size=512,
            learning_rate=StepSchedule(0.02, (30, 60), (0.01, 0.002)),
            use_symmetries=True,
        ),
        arena=ArenaConfig(num_games=100, num_workers=32, mcts=MCTSConfig(
            num_simulations=400, dirichlet_epsilon=0.05,
            temperature=ConstSchedule(0.2), simulations_in_flight=8)),
        num_iters=80,
        device="cuda",
        log_dir="logs",
    ),
}
