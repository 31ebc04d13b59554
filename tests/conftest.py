"""Shared fixtures: small games and deterministic inference capabilities."""

import threading
import zlib
from typing import NamedTuple, Optional

import numpy as np
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from zeroplay.errors import ResourceExhaustedError
from zeroplay.games import Game, Nim, TicTacToe


class OneMoveState(NamedTuple):
    moves_played: int
    player: int = 0


class OneMoveGame(Game):
    """A game that ends after a single forced move, won by the mover."""

    name = "one-move"
    num_actions = 2
    observation_shape = (1, 1, 2)

    def initial_state(self) -> OneMoveState:
        return OneMoveState(0, 0)

    def legal_actions(self, state):
        return [] if state.moves_played else [0]

    def apply(self, state, action):
        return OneMoveState(state.moves_played + 1, 1 - state.player)

    def current_player(self, state):
        return state.player

    def terminal_value(self, state) -> Optional[float]:
        return -1.0 if state.moves_played else None

    def encode(self, state):
        planes = np.zeros(self.observation_shape, dtype=np.float32)
        planes[0, 0, state.moves_played] = 1.0
        return planes


class UniformCapability:
    """Uniform legal policy and a constant value; records batch sizes."""

    def __init__(self, game: Game, value: float = 0.0):
        self.game = game
        self.value = value
        self.batch_sizes = []
        self._lock = threading.Lock()

    def infer(self, states):
        with self._lock:
            self.batch_sizes.append(len(states))
        results = []
        for state in states:
            mask = self.game.legal_mask(state)
            results.append((mask / max(mask.sum(), 1.0), self.value))
        return results


class HashCapability:
    """Pseudo-random but reproducible output per state."""

    def __init__(self, game: Game):
        self.game = game
        self.batch_sizes = []

    def evaluate_one(self, state):
        rng = np.random.default_rng(zlib.crc32(repr(state).encode()))
        policy = rng.random(self.game.num_actions).astype(np.float32)
        return policy / policy.sum(), float(rng.uniform(-1, 1))

    def infer(self, states):
        self.batch_sizes.append(len(states))
        return [self.evaluate_one(s) for s in states]


class MemoryLimitedCapability(UniformCapability):
    """Runs out of memory on batches larger than ``limit``."""

    def __init__(self, game: Game, limit: int):
        super().__init__(game)
        self.limit = limit

    def infer(self, states):
        if len(states) > self.limit:
            raise ResourceExhaustedError(f"batch of {len(states)} > {self.limit}")
        return super().infer(states)


class ShortCapability(UniformCapability):
    """Returns one result fewer than requested."""

    def infer(self, states):
        return super().infer(states)[:-1]


@pytest.fixture
def tictactoe():
    return TicTacToe()


@pytest.fixture
def nim():
    return Nim(num_stones=7, max_take=3)


@pytest.fixture
def one_move_game():
    return OneMoveGame()
