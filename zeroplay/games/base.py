"""Game interface consumed by the search engine.

States are opaque to the engine but must be immutable and hashable: the
memory buffer averages identical positions and the arena counts distinct
positions to detect duplicated games.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

State = Any


class Game(ABC):
    """Rules of a two-player (or single-player) game.

    Subclasses must define ``num_actions`` and ``observation_shape``.

    Values follow one convention everywhere: a value is expressed from the
    perspective of the player to move in the state it is attached to.
    """

    name: str = "game"
    num_actions: int
    observation_shape: Tuple[int, ...]

    @abstractmethod
    def initial_state(self) -> State:
        """Return the state a new game starts from."""
        pass

    @abstractmethod
    def legal_actions(self, state: State) -> Sequence[int]:
        """Return the legal actions in ascending order.

        Non-terminal states must have at least one legal action.
        """
        pass

    @abstractmethod
    def apply(self, state: State, action: int) -> State:
        """Return the state reached by playing ``action``."""
        pass

    @abstractmethod
    def current_player(self, state: State) -> int:
        """Return the index of the player to move."""
        pass

    @abstractmethod
    def terminal_value(self, state: State) -> Optional[float]:
        """Return the outcome for the player to move, or None if not over.

        Outcomes lie in [-1, 1]: -1 means the player to move has lost.
        """
        pass

    @abstractmethod
    def encode(self, state: State) -> np.ndarray:
        """Encode a state as a float32 array of shape ``observation_shape``."""
        pass

    def symmetries(self, state: State) -> List[Tuple[State, np.ndarray]]:
        """Return symmetric variants of ``state``.

        Each entry is ``(sym_state, perm)`` where ``perm[a]`` is the action in
        ``sym_state`` corresponding to action ``a`` in ``state``. The identity
        is not included. Games without symmetries return an empty list.
        """
        return []

    def heuristic_value(self, state: State) -> float:
        """Static evaluation for the player to move, used by minimax."""
        return 0.0

    def legal_mask(self, state: State) -> np.ndarray:
        """Return a float32 mask over the action space."""
        mask = np.zeros(self.num_actions, dtype=np.float32)
        mask[list(self.legal_actions(state))] = 1.0
        return mask

    def render(self, state: State) -> str:
        return repr(state)
