"""Trajectory and sample data structures.

A self-play game records one ``TrajectoryState`` placeholder per move. When
the game ends the outcome is back-filled and the trajectory is converted to
immutable ``Sample`` records for the memory buffer.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional

import numpy as np

from ..games.base import Game


@dataclass(frozen=True, eq=False)
class Sample:
    """A training sample.

    - state: Game state (hashable)
    - policy: Target move distribution over the full action space
    - value: Target value for the player to move in ``state``
    - moves_left: Number of moves from this position to the end of the game
    - weight: Sample weight used by the learner
    - count: Number of occurrences folded into this sample
    """
    state: Any
    policy: np.ndarray
    value: float
    moves_left: float
    weight: float = 1.0
    count: int = 1

    def __post_init__(self):
        policy = np.array(self.policy, dtype=np.float32)
        policy.setflags(write=False)
        object.__setattr__(self, 'policy', policy)


@dataclass
class TrajectoryState:
    """A recorded position waiting for its value."""
    state: Any
    policy: np.ndarray  # MCTS visit distribution
    player: int         # Player to move
    action: int         # Action played
    value: float = 0.0  # Set when the game ends


@dataclass
class Trajectory:
    """All positions of one game."""
    states: List[TrajectoryState] = field(default_factory=list)
    result: Optional[float] = None  # Outcome for result_player
    result_player: Optional[int] = None

    def add_state(self, state: Any, policy: np.ndarray, player: int, action: int) -> None:
        """Record a position. Its value is set by ``set_result``."""
        self.states.append(TrajectoryState(state=state, policy=policy, player=player, action=action))

    def set_result(self, outcome: float, player: int, ternary: bool = False) -> None:
        """Back-fill the outcome into every recorded position.

        Args:
            outcome: Final outcome from the perspective of ``player``
            player: Player to move in the final state
            ternary: Map outcomes to {-1, 0, 1}
        """
        if ternary:
            outcome = float(np.sign(outcome))
        self.result = outcome
        self.result_player = player
        for recorded in self.states:
            recorded.value = outcome if recorded.player == player else -outcome

    def to_samples(self) -> List[Sample]:
        if self.result is None:
            raise ValueError("Trajectory has no result yet")
        n = len(self.states)
        return [
            Sample(state=s.state, policy=s.policy, value=s.value, moves_left=float(n - i))
            for i, s in enumerate(self.states)
        ]

    def __len__(self) -> int:
        return len(self.states)


@dataclass
class TrainingBatch:
    """Arrays for a minibatch of samples."""
    observations: np.ndarray  # (batch, *observation_shape)
    legal_masks: np.ndarray   # (batch, num_actions)
    policies: np.ndarray      # (batch, num_actions)
    values: np.ndarray        # (batch,)
    weights: np.ndarray       # (batch,)

    @classmethod
    def from_samples(cls, samples: List[Sample], game: Game) -> 'TrainingBatch':
        return cls(
            observations=np.stack([game.encode(s.state) for s in samples]).astype(np.float32),
            legal_masks=np.stack([game.legal_mask(s.state) for s in samples]),
            policies=np.stack([s.policy for s in samples]).astype(np.float32),
            values=np.array([s.value for s in samples], dtype=np.float32),
            weights=np.array([s.weight for s in samples], dtype=np.float32),
        )

    def __len__(self) -> int:
        return len(self.values)
