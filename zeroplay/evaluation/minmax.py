"""Depth-limited minimax baseline."""

from typing import Any, Tuple

import numpy as np

from ..games.base import Game

# Terminal rewards are scaled far above any heuristic value so that a
# winning line always dominates.
WIN_AMPLIFICATION = 100.0


class MinMaxPlayer:
    """Negamax search to a fixed depth, with heuristic leaf values.

    Terminal outcomes are amplified and reduced with depth, so the player
    prefers faster wins and slower losses, and never overlooks a winning
    move within its horizon. Moves are sampled from a softmax over action
    values at ``temperature``; at temperature 0 ties are broken at random.
    """

    def __init__(
        self,
        game: Game,
        depth: int = 2,
        amplify_rewards: bool = True,
        temperature: float = 0.0,
        name: str = "MinMax"
    ):
        self.game = game
        self.depth = depth
        self.amplify_rewards = amplify_rewards
        self.temperature = temperature
        self.name = name

    def reset(self) -> None:
        pass

    def action_values(self, state: Any) -> Tuple[list, np.ndarray]:
        """Negamax value of every legal action, for the player to move."""
        actions = list(self.game.legal_actions(state))
        player = self.game.current_player(state)
        values = np.empty(len(actions))
        for i, action in enumerate(actions):
            child = self.game.apply(state, action)
            value = self._negamax(child, self.depth - 1, 1)
            values[i] = value if self.game.current_player(child) == player else -value
        return actions, values

    def _terminal_reward(self, outcome: float, ply: int) -> float:
        if not self.amplify_rewards or outcome == 0:
            return outcome
        # Earlier results count more: win fast, lose slow
        return outcome * (WIN_AMPLIFICATION - ply)

    def _negamax(self, state: Any, depth: int, ply: int) -> float:
        """Value of ``state`` for its player to move."""
        game = self.game
        outcome = game.terminal_value(state)
        if outcome is not None:
            return self._terminal_reward(outcome, ply)
        if depth <= 0:
            return game.heuristic_value(state)

        player = game.current_player(state)
        best = -np.inf
        for action in game.legal_actions(state):
            child = game.apply(state, action)
            value = self._negamax(child, depth - 1, ply + 1)
            if game.current_player(child) != player:
                value = -value
            best = max(best, value)
        return best

    def select_action(self, state: Any, move_number: int, rng: np.random.Generator) -> int:
        actions, values = self.action_values(state)
        if self.temperature <= 0:
            best = np.flatnonzero(values == values.max())
            return int(actions[rng.choice(best)])
        logits = (values - values.max()) / self.temperature
        probs = np.exp(logits)
        probs /= probs.sum()
        return int(actions[rng.choice(len(actions), p=probs)])

    def __repr__(self) -> str:
        return f"MinMaxPlayer(depth={self.depth}, temperature={self.temperature})"
