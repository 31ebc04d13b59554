"""Arena players and the player specs used to build them.

Arena matches run on several worker threads. Players own mutable state
(search trees, random generators), so a duel is described with player
specs, and fresh players are built for every run of matches.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Protocol, Tuple

import numpy as np

from .minmax import MinMaxPlayer
from ..config import MCTSConfig
from ..games.base import Game
from ..mcts.evaluator import Evaluator, RolloutEvaluator
from ..mcts.player import MCTSPlayer


class Player(Protocol):
    """Protocol for players in the arena."""

    name: str

    def select_action(self, state: Any, move_number: int, rng: np.random.Generator) -> int:
        """Select an action for the given state."""
        ...

    def reset(self) -> None:
        """Forget any state kept between moves or games."""
        ...


class RandomPlayer:
    """Player that selects uniformly random legal moves."""

    def __init__(self, game: Game, name: str = "Random"):
        self.game = game
        self.name = name

    def select_action(self, state: Any, move_number: int, rng: np.random.Generator) -> int:
        actions = self.game.legal_actions(state)
        return int(actions[rng.integers(len(actions))])

    def reset(self) -> None:
        pass


class NetworkPlayer:
    """Plays the network's most probable legal move, without search."""

    def __init__(self, game: Game, evaluator: Evaluator, name: str = "Network"):
        self.game = game
        self.evaluator = evaluator
        self.name = name

    def select_action(self, state: Any, move_number: int, rng: np.random.Generator) -> int:
        policy, _ = self.evaluator.evaluate(state)
        actions = np.asarray(self.game.legal_actions(state))
        return int(actions[int(np.argmax(np.asarray(policy)[actions]))])

    def reset(self) -> None:
        pass


class PlayerSpec(ABC):
    """Recipe for building the player of one run of arena matches."""

    name: str

    def models(self) -> Tuple[str, ...]:
        """Names of the networks this player evaluates with."""
        return ()

    @abstractmethod
    def build(self, game: Game, evaluators: Dict[str, Evaluator], rng: np.random.Generator,
              iteration: int = 0) -> Player:
        """Create a player for one run of matches.

        Args:
            game: Game rules
            evaluators: Evaluators keyed by model name
            rng: Random generator owned by the built player
            iteration: Training iteration, for iteration-dependent search settings
        """
        pass


@dataclass(frozen=True)
class MCTSSpec(PlayerSpec):
    """MCTS guided by a network."""
    model: str
    mcts: MCTSConfig = field(default_factory=MCTSConfig)
    name: str = "MCTS"

    def models(self) -> Tuple[str, ...]:
        return (self.model,)

    def build(self, game, evaluators, rng, iteration=0):
        return MCTSPlayer(game, evaluators[self.model], self.mcts, iteration, name=self.name)


@dataclass(frozen=True)
class NetworkSpec(PlayerSpec):
    """Network policy without search."""
    model: str
    name: str = "Network"

    def models(self) -> Tuple[str, ...]:
        return (self.model,)

    def build(self, game, evaluators, rng, iteration=0):
        return NetworkPlayer(game, evaluators[self.model], name=self.name)


@dataclass(frozen=True)
class RolloutSpec(PlayerSpec):
    """MCTS with uniform priors and random-playout values."""
    mcts: MCTSConfig = field(default_factory=lambda: MCTSConfig(dirichlet_epsilon=0.0, temperature=0.0))
    max_moves: int = 512
    name: str = "Rollouts"

    def build(self, game, evaluators, rng, iteration=0):
        evaluator = RolloutEvaluator(game, np.random.default_rng(rng.integers(2 ** 32)), self.max_moves)
        return MCTSPlayer(game, evaluator, self.mcts, iteration, name=self.name)


@dataclass(frozen=True)
class MinMaxSpec(PlayerSpec):
    """Depth-limited minimax."""
    depth: int = 2
    amplify_rewards: bool = True
    temperature: float = 0.0
    name: str = "MinMax"

    def build(self, game, evaluators, rng, iteration=0):
        return MinMaxPlayer(game, self.depth, self.amplify_rewards, self.temperature, name=self.name)


@dataclass(frozen=True)
class RandomSpec(PlayerSpec):
    """Uniformly random moves."""
    name: str = "Random"

    def build(self, game, evaluators, rng, iteration=0):
        return RandomPlayer(game, name=self.name)
