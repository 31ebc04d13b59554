"""Memory buffer holding self-play samples.

Samples are kept in insertion order. Capacity is read from a schedule keyed
by training iteration; once it is exceeded the oldest samples are evicted.
"""

import math
import threading
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional, Sequence

import numpy as np

from .trajectory import Sample
from ..config import MemoryConfig, SampleWeighting
from ..schedule import ScheduleLike, as_schedule

logger = logging.getLogger(__name__)

LossFunction = Callable[[List[Sample]], Dict[str, float]]


@dataclass
class SampleStats:
    """Statistics of a group of samples."""
    num_samples: int = 0
    num_distinct: int = 0
    total_weight: float = 0.0
    policy_entropy: float = 0.0  # Mean entropy of the target policies
    losses: Dict[str, float] = field(default_factory=dict)


@dataclass
class StageReport:
    """Samples whose ``moves_left`` falls in ``[min_moves_left, max_moves_left)``."""
    min_moves_left: float
    max_moves_left: float
    stats: SampleStats


@dataclass
class MemoryReport:
    """Result of ``MemoryBuffer.analyze``."""
    capacity: int
    num_games: int
    all_samples: SampleStats
    latest_batch: SampleStats
    stages: List[StageReport]


def sample_weight(count: int, weighting: SampleWeighting) -> float:
    """Weight of a position-averaged sample seen ``count`` times."""
    if weighting == SampleWeighting.UNIFORM:
        return 1.0
    if weighting == SampleWeighting.LOG:
        return math.log2(count) + 1.0
    return float(count)


def merge_by_state(samples: Sequence[Sample], weighting: SampleWeighting) -> List[Sample]:
    """Fold samples of identical states into one.

    Policy, value and moves_left are running means weighted by each input
    sample's ``count``. The output keeps first-occurrence order.
    """
    merged: Dict[object, list] = {}
    for sample in samples:
        entry = merged.get(sample.state)
        if entry is None:
            merged[sample.state] = [
                sample.count,
                sample.policy.astype(np.float64),
                float(sample.value),
                float(sample.moves_left),
            ]
            continue
        n = entry[0] + sample.count
        rate = sample.count / n
        entry[0] = n
        entry[1] = entry[1] + (sample.policy - entry[1]) * rate
        entry[2] += (sample.value - entry[2]) * rate
        entry[3] += (sample.moves_left - entry[3]) * rate

    return [
        Sample(
            state=state,
            policy=policy,
            value=value,
            moves_left=moves_left,
            weight=sample_weight(count, weighting),
            count=count,
        )
        for state, (count, policy, value, moves_left) in merged.items()
    ]


def policy_entropy(policy: np.ndarray) -> float:
    p = policy[policy > 0]
    return float(-(p * np.log(p)).sum())


class MemoryBuffer:
    """Bounded sample buffer with optional position averaging.

    Thread-safe for concurrent pushes from self-play workers.
    """

    def __init__(
        self,
        capacity: ScheduleLike = 100_000,
        position_averaging: bool = True,
        weighting: SampleWeighting = SampleWeighting.LOG,
        iteration: int = 0
    ):
        """Initialize memory buffer.

        Args:
            capacity: Maximum number of samples, or a schedule keyed by iteration
            position_averaging: Fold identical states in ``get_experience``
            weighting: Weight policy for folded samples
            iteration: Training iteration used to read the capacity schedule
        """
        self._capacity_schedule = as_schedule(capacity)
        self.position_averaging = position_averaging
        self.weighting = weighting
        self._buffer: Deque[Sample] = deque()
        self._latest: List[Sample] = []
        self._lock = threading.Lock()
        self.iteration = iteration
        self.capacity = int(self._capacity_schedule(iteration))

        # Statistics
        self._total_added = 0
        self._total_games = 0
        self._latest_games = 0

    @classmethod
    def from_config(cls, config: MemoryConfig, iteration: int = 0) -> 'MemoryBuffer':
        return cls(
            capacity=config.capacity,
            position_averaging=config.position_averaging,
            weighting=config.sample_weighting,
            iteration=iteration,
        )

    def set_iteration(self, iteration: int) -> None:
        """Read the capacity for ``iteration``, evicting if it shrank."""
        with self._lock:
            self.iteration = iteration
            self.capacity = int(self._capacity_schedule(iteration))
            self._evict()

    def push(self, samples: Sequence[Sample]) -> None:
        """Append the samples of one completed game."""
        with self._lock:
            self._buffer.extend(samples)
            self._latest.extend(samples)
            self._total_added += len(samples)
            self._total_games += 1
            self._latest_games += 1
            self._evict()

    def _evict(self) -> None:
        overflow = len(self._buffer) - self.capacity
        for _ in range(max(0, overflow)):
            self._buffer.popleft()

    def begin_batch(self) -> None:
        """Start a new batch of games (called at the start of self-play)."""
        with self._lock:
            self._latest = []
            self._latest_games = 0

    def latest_batch(self) -> List[Sample]:
        """Samples pushed since the last ``begin_batch``."""
        with self._lock:
            return list(self._latest)

    def samples(self) -> List[Sample]:
        """Raw samples, oldest first."""
        with self._lock:
            return list(self._buffer)

    def get_experience(self) -> List[Sample]:
        """Samples for the learner, position-averaged if enabled."""
        return self._prepare(self.samples())

    def _prepare(self, samples: List[Sample]) -> List[Sample]:
        if self.position_averaging:
            return merge_by_state(samples, self.weighting)
        return samples

    def analyze(self, num_game_stages: int, loss_fn: Optional[LossFunction] = None) -> MemoryReport:
        """Report statistics for the buffer, the latest batch and game stages.

        Stages are ``num_game_stages`` equal-width bins over ``moves_left``.
        Empty stages are reported with zero samples.

        Args:
            num_game_stages: Number of bins
            loss_fn: Optional function returning losses for a list of samples

        Returns:
            MemoryReport
        """
        if num_game_stages < 1:
            raise ValueError("num_game_stages must be positive")
        with self._lock:
            raw = list(self._buffer)
            latest = list(self._latest)
            num_games = self._latest_games

        experience = self._prepare(raw)
        stages = []
        if experience:
            moves_left = np.array([s.moves_left for s in experience])
            low, high = float(moves_left.min()), float(moves_left.max())
            edges = np.linspace(low, high, num_game_stages + 1)
            bins = np.clip(np.searchsorted(edges, moves_left, side='right') - 1, 0, num_game_stages - 1)
            for k in range(num_game_stages):
                members = [s for s, b in zip(experience, bins) if b == k]
                stages.append(StageReport(
                    min_moves_left=float(edges[k]),
                    max_moves_left=float(edges[k + 1]),
                    stats=self._stats(members, loss_fn),
                ))

        report = MemoryReport(
            capacity=self.capacity,
            num_games=num_games,
            all_samples=self._stats(experience, loss_fn),
            latest_batch=self._stats(self._prepare(latest), loss_fn),
            stages=stages,
        )
        logger.info(
            f"Memory: {report.all_samples.num_samples} samples "
            f"({report.all_samples.num_distinct} distinct), latest batch "
            f"{report.latest_batch.num_samples} samples from {num_games} games"
        )
        return report

    @staticmethod
    def _stats(samples: List[Sample], loss_fn: Optional[LossFunction]) -> SampleStats:
        if not samples:
            return SampleStats()
        return SampleStats(
            num_samples=len(samples),
            num_distinct=len({s.state for s in samples}),
            total_weight=float(sum(s.weight for s in samples)),
            policy_entropy=float(np.mean([policy_entropy(s.policy) for s in samples])),
            losses=dict(loss_fn(samples)) if loss_fn is not None else {},
        )

    def state_dict(self) -> dict:
        """Buffer contents for checkpointing."""
        with self._lock:
            return {
                'samples': [
                    (s.state, np.asarray(s.policy), s.value, s.moves_left, s.weight, s.count)
                    for s in self._buffer
                ],
                'iteration': self.iteration,
                'total_added': self._total_added,
                'total_games': self._total_games,
            }

    def load_state_dict(self, state: dict) -> None:
        with self._lock:
            self._buffer = deque(Sample(*fields) for fields in state['samples'])
            self._latest = []
            self._latest_games = 0
            self.iteration = state['iteration']
            self.capacity = int(self._capacity_schedule(self.iteration))
            self._total_added = state['total_added']
            self._total_games = state['total_games']
            self._evict()

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def total_added(self) -> int:
        return self._total_added

    @property
    def total_games(self) -> int:
        return self._total_games
