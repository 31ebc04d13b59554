"""Monte Carlo Tree Search with virtual loss and asynchronous leaf evaluation.

A ``SearchTree`` keeps up to ``simulations_in_flight`` simulations outstanding
at once. Each simulation:

    1. Selection: follow the best PUCT edge from the root, adding a virtual
       loss to every traversed edge, until reaching an unexpanded or
       terminal node.
    2. Evaluation: terminal nodes use their known outcome; other leaves are
       submitted to the evaluator. Simulations reaching a leaf that is
       already pending share its request.
    3. Expansion: once the result arrives, the leaf's edges are created.
    4. Backup: the value is propagated to the root, flipping sign whenever
       the player to move changes, and the virtual losses are removed.

All tree mutation happens under the tree lock, so no reader can observe an
edge with a half-applied update.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Tuple

import numpy as np

from .base import MCTSStats, apply_temperature, dirichlet_noise
from .evaluator import Evaluator, InferenceFuture
from .node import MCTSNode
from ..config import MCTSConfig
from ..games.base import Game

logger = logging.getLogger(__name__)


@dataclass
class PendingSimulation:
    """A simulation waiting for its leaf to be evaluated."""
    path: List[Tuple[MCTSNode, int]]  # (node, edge index) pairs
    leaf: MCTSNode
    future: InferenceFuture


class SearchTree:
    """Search tree rooted at the current game state.

    A tree is owned by a single search and must not be shared between
    concurrently running games.
    """

    def __init__(self, game: Game, config: MCTSConfig, evaluator: Evaluator):
        """Initialize an empty tree.

        Args:
            game: Game rules
            config: MCTS configuration
            evaluator: Source of leaf evaluations
        """
        self.game = game
        self.config = config
        self.evaluator = evaluator
        self.root: Optional[MCTSNode] = None
        self._top: Optional[MCTSNode] = None
        self._root_priors: Optional[np.ndarray] = None
        self._lock = threading.RLock()
        self.stats = MCTSStats()

    # ------------------------------------------------------------------
    # Root management
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Discard the whole tree."""
        with self._lock:
            self.root = None
            self._top = None
            self._root_priors = None

    def set_root(self, state: Any) -> None:
        """Move the root to ``state``, reusing an existing subtree if possible.

        The current root, its children and grandchildren, and the node the
        tree was first created for are searched for an equal state.
        """
        with self._lock:
            node = self._find(state)
            if node is None:
                node = self._new_node(state)
                if self._top is None:
                    self._top = node
            self._set_root_node(node)

    def advance(self, action: int) -> None:
        """Move the root along ``action``."""
        with self._lock:
            if self.root is None:
                raise ValueError("Tree has no root")
            idx = self.root.index_of(action)
            if idx < 0:
                child = self._new_node(self.game.apply(self.root.state, action))
            else:
                child = self._child(self.root, idx)
            self._set_root_node(child)

    def reset_stats(self) -> None:
        self.stats = MCTSStats()

    def _set_root_node(self, node: MCTSNode) -> None:
        self.root = node
        self._root_priors = None

    def _find(self, state: Any) -> Optional[MCTSNode]:
        root = self.root
        if root is not None:
            if root.state == state:
                return root
            for child in root.children:
                if child is None:
                    continue
                if child.state == state:
                    return child
                for grandchild in child.children:
                    if grandchild is not None and grandchild.state == state:
                        return grandchild
        if self._top is not None and self._top.state == state:
            return self._top
        return None

    def _new_node(self, state: Any) -> MCTSNode:
        self.stats.nodes_created += 1
        return MCTSNode(
            state,
            self.game.current_player(state),
            self.game.terminal_value(state),
        )

    def _child(self, node: MCTSNode, idx: int) -> MCTSNode:
        child = node.children[idx]
        if child is None:
            child = self._new_node(self.game.apply(node.state, int(node.actions[idx])))
            node.children[idx] = child
        return child

    # ------------------------------------------------------------------
    # Root preparation
    # ------------------------------------------------------------------

    def expand_root(self) -> None:
        """Evaluate and expand the root if it is not expanded yet."""
        root = self.root
        if root is None:
            raise ValueError("Tree has no root")
        if root.is_expanded() or root.is_terminal():
            return
        with self._lock:
            if root.pending is None:
                root.pending = self.evaluator.submit(root.state)
                self.stats.inference_requests += 1
            future = root.pending
        try:
            (policy, _), = self.evaluator.wait([future])
        except BaseException:
            with self._lock:
                if root.pending is future:
                    root.pending = None
            raise
        with self._lock:
            if not root.is_expanded():
                self._expand(root, policy)

    def add_exploration_noise(self, epsilon: float, alpha: float, rng: np.random.Generator) -> None:
        """Mix Dirichlet noise into the root priors for the current move.

        The stored priors are left untouched; the noisy priors are used for
        selection at the root until the root changes.
        """
        self.expand_root()
        root = self.root
        if epsilon <= 0 or not root.is_expanded():
            self._root_priors = None
            return
        noise = dirichlet_noise(len(root.actions), alpha, rng)
        self._root_priors = (1 - epsilon) * root.priors + epsilon * noise

    def _expand(self, node: MCTSNode, policy: np.ndarray) -> None:
        node.expand(
            self.game.legal_actions(node.state),
            policy,
            self.game.num_actions,
            self.config.prior_floor,
        )
        node.pending = None

    # ------------------------------------------------------------------
    # Simulations
    # ------------------------------------------------------------------

    def run_simulation(self) -> None:
        """Run one complete simulation."""
        self.run_simulations(1)

    def run_simulations(self, num_simulations: int) -> MCTSStats:
        """Run ``num_simulations`` simulations from the root.

        Up to ``config.simulations_in_flight`` simulations are selected before
        waiting on the evaluator, so their leaves can be evaluated together.

        Returns:
            Statistics accumulated since the last ``reset_stats``
        """
        self.expand_root()
        if self.root.is_terminal():
            return self.stats

        in_flight = max(1, self.config.simulations_in_flight)
        done = 0
        while done < num_simulations:
            count = min(in_flight, num_simulations - done)
            pending = []
            try:
                for _ in range(count):
                    simulation = self._start_simulation()
                    if simulation is not None:
                        pending.append(simulation)
                self._finish_simulations(pending)
            except BaseException:
                self._abort(pending)
                raise
            done += count

        self.stats.num_simulations += done
        self.stats.root_value = self.root_value()
        return self.stats

    def _start_simulation(self) -> Optional[PendingSimulation]:
        """Select a leaf, applying virtual loss along the path.

        Terminal leaves are backed up immediately and None is returned.
        """
        with self._lock:
            node = self.root
            path = []
            try:
                while node.is_expanded() and not node.is_terminal():
                    priors = self._root_priors if node is self.root else None
                    idx = node.select(self.config.c_puct, self.config.virtual_loss, priors)
                    node.add_virtual_loss(idx)
                    path.append((node, idx))
                    node = self._child(node, idx)

                if not node.is_terminal() and node.pending is None:
                    node.pending = self.evaluator.submit(node.state)
                    self.stats.inference_requests += 1
            except BaseException:
                for parent, idx in path:
                    parent.remove_virtual_loss(idx)
                raise

            self.stats.max_depth = max(self.stats.max_depth, len(path))

            if node.is_terminal():
                self.stats.terminal_hits += 1
                self._backup(path, node.player, node.terminal_value)
                return None
            return PendingSimulation(path=path, leaf=node, future=node.pending)

    def _finish_simulations(self, pending: List[PendingSimulation]) -> None:
        if not pending:
            return
        futures = []
        seen = set()
        for simulation in pending:
            if id(simulation.future) not in seen:
                seen.add(id(simulation.future))
                futures.append(simulation.future)
        self.evaluator.wait(futures)

        with self._lock:
            while pending:
                simulation = pending[0]
                policy, value = simulation.future.result()
                leaf = simulation.leaf
                if not leaf.is_expanded():
                    self._expand(leaf, policy)
                self._backup(simulation.path, leaf.player, value)
                pending.pop(0)

    def _backup(self, path: List[Tuple[MCTSNode, int]], player: int, value: float) -> None:
        """Propagate ``value``, given for ``player``, up the path."""
        for node, idx in reversed(path):
            if node.player != player:
                value = -value
                player = node.player
            node.update(idx, value)

    def _abort(self, pending: List[PendingSimulation]) -> None:
        """Reclaim the virtual losses of simulations that will not complete."""
        with self._lock:
            for simulation in pending:
                for node, idx in simulation.path:
                    node.remove_virtual_loss(idx)
                if simulation.leaf.pending is simulation.future:
                    simulation.leaf.pending = None
            pending.clear()

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def visit_counts(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(actions, counts)`` at the root."""
        root = self.root
        if root is None or not root.is_expanded():
            return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)
        with self._lock:
            return root.actions.copy(), root.visit_counts.copy()

    def root_value(self) -> float:
        """Visit-weighted mean value of the root for the player to move."""
        root = self.root
        if root is None or not root.is_expanded():
            return 0.0
        total = root.visit_counts.sum()
        if total == 0:
            return 0.0
        return float(root.value_sums.sum() / total)

    def policy_target(self) -> np.ndarray:
        """Visit distribution over the full action space (temperature 1)."""
        policy = np.zeros(self.game.num_actions, dtype=np.float32)
        actions, counts = self.visit_counts()
        total = counts.sum()
        if total > 0:
            policy[actions] = counts / total
        elif actions.size:
            policy[actions] = self.root.priors
        return policy

    def select_move(self, temperature: float, rng: np.random.Generator) -> int:
        """Pick a move from the root visit counts.

        Args:
            temperature: Sampling temperature; at or below
                ``config.greedy_threshold`` the most visited move is played
            rng: Random generator used for sampling
        """
        actions, counts = self.visit_counts()
        if actions.size == 0:
            raise ValueError("Cannot select a move from a terminal or unexpanded root")
        if counts.sum() == 0:
            # No simulations were run: fall back to the priors
            counts = self.root.priors
        probs = apply_temperature(counts, temperature, self.config.greedy_threshold)
        if temperature <= self.config.greedy_threshold:
            return int(actions[int(np.argmax(probs))])
        return int(actions[rng.choice(len(actions), p=probs)])

    def iter_nodes(self) -> Iterator[MCTSNode]:
        """Iterate over every node reachable from the root."""
        if self.root is None:
            return
        stack = [self.root]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(child for child in node.children if child is not None)

    def total_virtual_loss(self) -> int:
        """Number of virtual losses currently applied anywhere in the tree."""
        with self._lock:
            return sum(
                int(node.virtual_losses.sum())
                for node in self.iter_nodes()
                if node.virtual_losses is not None
            )
