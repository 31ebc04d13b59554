"""Subtraction game: players alternately take stones, last to take wins."""

from typing import NamedTuple, Optional, Sequence

import numpy as np

from .base import Game


class NimState(NamedTuple):
    stones: int
    player: int = 0


class Nim(Game):
    """Single-pile Nim. Action ``a`` removes ``a + 1`` stones.

    Positions where ``stones % (max_take + 1) == 0`` are lost for the player
    to move under perfect play.
    """

    name = "nim"

    def __init__(self, num_stones: int = 10, max_take: int = 3):
        self.num_stones = num_stones
        self.max_take = max_take
        self.num_actions = max_take
        self.observation_shape = (1, 1, num_stones + 1)

    def initial_state(self) -> NimState:
        return NimState(stones=self.num_stones, player=0)

    def legal_actions(self, state: NimState) -> Sequence[int]:
        return list(range(min(self.max_take, state.stones)))

    def apply(self, state: NimState, action: int) -> NimState:
        take = action + 1
        if take > state.stones or take > self.max_take:
            raise ValueError(f"Cannot take {take} stones from {state.stones}")
        return NimState(stones=state.stones - take, player=1 - state.player)

    def current_player(self, state: NimState) -> int:
        return state.player

    def terminal_value(self, state: NimState) -> Optional[float]:
        if state.stones == 0:
            return -1.0
        return None

    def encode(self, state: NimState) -> np.ndarray:
        planes = np.zeros(self.observation_shape, dtype=np.float32)
        planes[0, 0, state.stones] = 1.0
        return planes

    def heuristic_value(self, state: NimState) -> float:
        if state.stones % (self.max_take + 1) == 0:
            return -0.5
        return 0.5
