"""MCTS node with per-edge statistics and virtual loss.

Each node stores, for every legal action a:
    - N(s,a): Visit count
    - W(s,a): Total value, from the perspective of the player to move in s
    - P(s,a): Prior probability
    - VL(s,a): Number of in-flight simulations currently through this edge

Children are created lazily the first time an edge is traversed. The visit
count of a node is the sum of its edge visit counts (plus a seed, root only).

Virtual Loss:
    While a simulation is in flight its path carries a virtual loss so that
    concurrent simulations see a worse value and choose other paths:

        score(a) = Q(s,a) - virtual_loss * VL(s,a)
                   + c_puct * P(s,a) * sqrt(N(s)) / (1 + N(s,a))
"""

from typing import Any, List, Optional

import numpy as np

from ..errors import CapabilityError, SearchError


class MCTSNode:
    """A search tree node.

    Nodes are not thread-safe on their own; ``SearchTree`` serializes all
    mutation through its lock.
    """

    __slots__ = [
        'state',
        'player',
        'terminal_value',
        'actions',
        'priors',
        'visit_counts',
        'value_sums',
        'virtual_losses',
        'children',
        'pending',
        'seed',
    ]

    def __init__(self, state: Any, player: int, terminal_value: Optional[float] = None):
        """Initialize an unexpanded node.

        Args:
            state: Game state at this node
            player: Player to move in ``state``
            terminal_value: Outcome for ``player`` if the state is terminal
        """
        self.state = state
        self.player = player
        self.terminal_value = terminal_value
        self.actions: Optional[np.ndarray] = None
        self.priors: Optional[np.ndarray] = None
        self.visit_counts: Optional[np.ndarray] = None
        self.value_sums: Optional[np.ndarray] = None
        self.virtual_losses: Optional[np.ndarray] = None
        self.children: List[Optional['MCTSNode']] = []
        self.pending = None  # Future of an outstanding evaluation
        self.seed: int = 0

    def is_expanded(self) -> bool:
        return self.actions is not None

    def is_terminal(self) -> bool:
        return self.terminal_value is not None

    @property
    def visit_count(self) -> int:
        """N(s): seed plus the sum of edge visit counts."""
        if self.visit_counts is None:
            return self.seed
        return self.seed + int(self.visit_counts.sum())

    def q_values(self) -> np.ndarray:
        """Q(s,a) = W(s,a) / N(s,a), 0 for unvisited edges."""
        return self.value_sums / np.maximum(self.visit_counts, 1)

    def expand(self, legal_actions, policy: np.ndarray, num_actions: int, prior_floor: float = 0.0) -> None:
        """Create the edges of this node.

        The policy is restricted to the legal actions and renormalized. If
        it puts no mass on any legal action the prior is uniform. Finally
        ``prior_floor`` of uniform mass is mixed in so that no legal action
        has zero prior.

        Args:
            legal_actions: Legal actions in ascending order
            policy: Policy over the full action space (num_actions,)
            num_actions: Size of the action space
            prior_floor: Uniform mixing weight in [0, 1]

        Raises:
            CapabilityError: If the game or the policy is malformed
        """
        actions = np.asarray(legal_actions, dtype=np.int64)
        if actions.size == 0:
            raise CapabilityError("Non-terminal state has no legal actions", self.state)
        if actions.min() < 0 or actions.max() >= num_actions:
            raise CapabilityError(
                f"Legal action out of range [0, {num_actions})", self.state)

        policy = np.asarray(policy, dtype=np.float64)
        if policy.shape != (num_actions,):
            raise CapabilityError(
                f"Policy has shape {policy.shape}, expected ({num_actions},)", self.state)
        if not np.all(np.isfinite(policy)) or np.any(policy < 0):
            raise CapabilityError("Policy contains negative or non-finite entries", self.state)

        priors = policy[actions]
        total = priors.sum()
        if total > 0:
            priors = priors / total
        else:
            priors = np.full(actions.size, 1.0 / actions.size)
        if prior_floor > 0:
            priors = (1.0 - prior_floor) * priors + prior_floor / actions.size

        self.actions = actions
        self.priors = priors
        self.visit_counts = np.zeros(actions.size, dtype=np.int64)
        self.value_sums = np.zeros(actions.size, dtype=np.float64)
        self.virtual_losses = np.zeros(actions.size, dtype=np.int64)
        self.children = [None] * actions.size

    def select(
        self,
        c_puct: float,
        virtual_loss: float,
        priors: Optional[np.ndarray] = None
    ) -> int:
        """Return the index of the edge with the best PUCT score.

        Ties go to the first edge in legal-action order.

        Args:
            c_puct: Exploration constant
            virtual_loss: Penalty per in-flight simulation
            priors: Priors to use instead of the stored ones (root noise)
        """
        if self.actions is None:
            raise SearchError("Cannot select from an unexpanded node")
        if priors is None:
            priors = self.priors
        q = self.q_values() - virtual_loss * self.virtual_losses
        u = c_puct * priors * np.sqrt(self.visit_count) / (1 + self.visit_counts)
        return int(np.argmax(q + u))

    def index_of(self, action: int) -> int:
        """Edge index of ``action``, or -1 if it is not legal here."""
        if self.actions is None:
            return -1
        matches = np.flatnonzero(self.actions == action)
        if matches.size == 0:
            return -1
        return int(matches[0])

    def add_virtual_loss(self, idx: int) -> None:
        self.virtual_losses[idx] += 1

    def remove_virtual_loss(self, idx: int) -> None:
        if self.virtual_losses[idx] <= 0:
            raise SearchError(f"Virtual loss underflow on action {self.actions[idx]}")
        self.virtual_losses[idx] -= 1

    def update(self, idx: int, value: float) -> None:
        """Record a completed simulation through edge ``idx``.

        Args:
            idx: Edge index
            value: Value from the perspective of ``self.player``
        """
        self.remove_virtual_loss(idx)
        self.visit_counts[idx] += 1
        self.value_sums[idx] += value

    def __repr__(self) -> str:
        if self.actions is None:
            return f"MCTSNode(player={self.player}, expanded=False)"
        return (
            f"MCTSNode(player={self.player}, N={self.visit_count}, "
            f"actions={len(self.actions)}, in_flight={int(self.virtual_losses.sum())})"
        )
