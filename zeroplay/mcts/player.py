"""Move decisions with MCTS."""

import logging
from typing import Any, Tuple

import numpy as np

from .evaluator import Evaluator
from .search import SearchTree
from ..config import MCTSConfig
from ..games.base import Game
from ..schedule import as_schedule

logger = logging.getLogger(__name__)


class MCTSPlayer:
    """Plays moves by running MCTS from the current state.

    The tree persists between moves (and between games) until ``reset`` is
    called, so subtrees explored earlier are reused.
    """

    def __init__(
        self,
        game: Game,
        evaluator: Evaluator,
        config: MCTSConfig,
        iteration: int = 0,
        name: str = "MCTS"
    ):
        """Initialize player.

        Args:
            game: Game rules
            evaluator: Leaf evaluator (direct or batched)
            config: MCTS configuration
            iteration: Training iteration, used to read the noise schedule
            name: Display name
        """
        self.game = game
        self.config = config
        self.name = name
        self.tree = SearchTree(game, config, evaluator)
        self._temperature = as_schedule(config.temperature)
        self._epsilon = as_schedule(config.dirichlet_epsilon)(iteration)

    def reset(self) -> None:
        self.tree.reset()

    def think(self, state: Any, move_number: int, rng: np.random.Generator) -> Tuple[int, np.ndarray]:
        """Search from ``state`` and pick a move.

        Returns:
            Tuple of (action, policy) where policy is the root visit
            distribution over the full action space
        """
        tree = self.tree
        tree.set_root(state)
        tree.reset_stats()
        tree.add_exploration_noise(self._epsilon, self.config.dirichlet_alpha, rng)
        tree.run_simulations(self.config.num_simulations)

        temperature = self._temperature(move_number)
        action = tree.select_move(temperature, rng)
        policy = tree.policy_target()

        stats = tree.stats
        logger.debug(
            f"{self.name} move {move_number}: action={action} "
            f"value={stats.root_value:+.3f} depth={stats.max_depth} "
            f"requests={stats.inference_requests}"
        )
        return action, policy

    def select_action(self, state: Any, move_number: int, rng: np.random.Generator) -> int:
        action, _ = self.think(state, move_number, rng)
        return action

    def __repr__(self) -> str:
        return f"MCTSPlayer(name={self.name!r}, simulations={self.config.num_simulations})"
