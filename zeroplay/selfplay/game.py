"""Single self-play game execution.

Plays a complete game with MCTS and collects training data.
"""

import logging
from typing import Optional

import numpy as np

from ..config import SelfPlayConfig
from ..games.base import Game
from ..mcts.player import MCTSPlayer
from ..training.trajectory import Trajectory

logger = logging.getLogger(__name__)


class SelfPlayGame:
    """Executes a single self-play game."""

    def __init__(self, game: Game, player: MCTSPlayer, config: Optional[SelfPlayConfig] = None):
        """Initialize self-play game.

        Args:
            game: Game rules
            player: MCTS player making the moves for both sides
            config: Self-play configuration
        """
        self.game = game
        self.player = player
        self.config = config or SelfPlayConfig()

    def play(self, rng: np.random.Generator) -> Trajectory:
        """Play a complete game.

        Games reaching ``max_moves`` are scored as draws.

        Returns:
            Trajectory with back-filled values
        """
        game = self.game
        trajectory = Trajectory()
        state = game.initial_state()
        move_number = 0

        outcome = game.terminal_value(state)
        while outcome is None and move_number < self.config.max_moves:
            action, policy = self.player.think(state, move_number, rng)
            trajectory.add_state(state, policy, game.current_player(state), action)
            state = game.apply(state, action)
            self.player.tree.advance(action)
            move_number += 1
            outcome = game.terminal_value(state)

        if outcome is None:
            outcome = 0.0
        trajectory.set_result(outcome, game.current_player(state), self.config.ternary_outcome)

        logger.debug(f"Game finished after {move_number} moves, outcome {outcome:+.2f}")
        return trajectory
