"""Tests for the MCTS module."""

import numpy as np
import pytest

from conftest import HashCapability, UniformCapability
from zeroplay.config import MCTSConfig
from zeroplay.errors import CapabilityError, SearchError
from zeroplay.games import Nim
from zeroplay.mcts import (
    DirectEvaluator,
    Evaluator,
    InferenceFuture,
    MCTSNode,
    MCTSPlayer,
    SearchTree,
    UniformEvaluator,
    apply_temperature,
)


def play(game, actions):
    state = game.initial_state()
    for action in actions:
        state = game.apply(state, action)
    return state


def make_tree(game, evaluator=None, **config):
    config = MCTSConfig(**config)
    evaluator = evaluator or DirectEvaluator(HashCapability(game))
    tree = SearchTree(game, config, evaluator)
    tree.set_root(game.initial_state())
    return tree


class TestMCTSNode:
    """Tests for MCTSNode."""

    def test_initial_state(self):
        node = MCTSNode("s", player=0)
        assert node.visit_count == 0
        assert not node.is_expanded()
        assert not node.is_terminal()

    def test_expand_renormalizes_over_legal_actions(self):
        node = MCTSNode("s", player=0)
        node.expand([0, 2], np.array([0.2, 0.5, 0.2, 0.1]), num_actions=4)
        np.testing.assert_array_equal(node.actions, [0, 2])
        np.testing.assert_allclose(node.priors, [0.5, 0.5])
        assert node.visit_counts.sum() == 0

    def test_prior_floor(self):
        """Legal actions with zero policy mass keep a small prior."""
        node = MCTSNode("s", player=0)
        node.expand([0, 1], np.array([1.0, 0.0]), num_actions=2, prior_floor=0.01)
        assert node.priors[1] == pytest.approx(0.005)
        assert node.priors.sum() == pytest.approx(1.0)

    def test_uniform_when_no_mass_on_legal_actions(self):
        node = MCTSNode("s", player=0)
        node.expand([1, 2], np.array([1.0, 0.0, 0.0]), num_actions=3)
        np.testing.assert_allclose(node.priors, [0.5, 0.5])

    @pytest.mark.parametrize("legal, policy", [
        ([], np.ones(3) / 3),
        ([0, 3], np.ones(3) / 3),
        ([0, 1], np.ones(4) / 4),
        ([0, 1], np.array([0.5, -0.5, 1.0])),
        ([0, 1], np.array([np.nan, 0.5, 0.5])),
    ])
    def test_malformed_input(self, legal, policy):
        node = MCTSNode("bad-state", player=0)
        with pytest.raises(CapabilityError) as info:
            node.expand(legal, policy, num_actions=3)
        assert info.value.state == "bad-state"
        assert "bad-state" in str(info.value)

    def test_select_ties_go_to_first_action(self):
        node = MCTSNode("s", player=0)
        node.expand([0, 1, 2], np.ones(3) / 3, num_actions=3)
        assert node.select(c_puct=1.0, virtual_loss=1.0) == 0

    def test_select_prefers_prior(self):
        node = MCTSNode("s", player=0)
        node.expand([0, 1, 2], np.array([0.1, 0.7, 0.2]), num_actions=3)
        node.seed = 1
        assert node.select(c_puct=1.0, virtual_loss=1.0) == 1

    def test_virtual_loss_diverts_selection(self):
        node = MCTSNode("s", player=0)
        node.expand([0, 1], np.array([0.6, 0.4]), num_actions=2)
        node.seed = 1
        first = node.select(c_puct=1.0, virtual_loss=1.0)
        node.add_virtual_loss(first)
        second = node.select(c_puct=1.0, virtual_loss=1.0)
        assert first == 0 and second == 1

    def test_update(self):
        node = MCTSNode("s", player=0)
        node.expand([0, 1], np.array([0.5, 0.5]), num_actions=2)
        node.add_virtual_loss(1)
        node.update(1, 0.5)
        assert node.visit_count == 1
        assert node.virtual_losses[1] == 0
        assert node.q_values()[1] == pytest.approx(0.5)

    def test_virtual_loss_underflow(self):
        node = MCTSNode("s", player=0)
        node.expand([0], np.array([1.0]), num_actions=1)
        with pytest.raises(SearchError):
            node.update(0, 1.0)

    def test_index_of(self):
        node = MCTSNode("s", player=0)
        assert node.index_of(0) == -1
        node.expand([1, 4], np.ones(5) / 5, num_actions=5)
        assert node.index_of(4) == 1
        assert node.index_of(2) == -1


class TestApplyTemperature:
    """Tests for apply_temperature."""

    def test_greedy(self):
        probs = apply_temperature(np.array([3, 7, 7]), temperature=0.0)
        np.testing.assert_array_equal(probs, [0, 1, 0])

    def test_below_threshold_is_greedy(self):
        probs = apply_temperature(np.array([3, 7]), temperature=0.005, greedy_threshold=0.01)
        np.testing.assert_array_equal(probs, [0, 1])

    def test_temperature_one_is_proportional(self):
        probs = apply_temperature(np.array([1, 3, 0]), temperature=1.0)
        np.testing.assert_allclose(probs, [0.25, 0.75, 0.0])

    def test_low_temperature_does_not_overflow(self):
        probs = apply_temperature(np.array([1000, 999]), temperature=0.02)
        assert np.all(np.isfinite(probs))
        assert probs.sum() == pytest.approx(1.0)
        assert probs[0] > 0.99


class TestSearchTree:
    """Tests for SearchTree."""

    def test_root_visits_match_simulations(self, tictactoe):
        tree = make_tree(tictactoe)
        tree.run_simulations(50)
        assert tree.root.visit_count == 50
        assert tree.stats.num_simulations == 50

    def test_child_visits_account_for_parent_edges(self, tictactoe):
        """Each edge into an expanded child counts the child's own visits plus its expansion."""
        tree = make_tree(tictactoe)
        tree.run_simulations(200)
        for node in tree.iter_nodes():
            if not node.is_expanded():
                continue
            assert node.visit_count == node.seed + node.visit_counts.sum()
            for idx, child in enumerate(node.children):
                if child is not None and child.is_expanded():
                    assert node.visit_counts[idx] == child.visit_count + 1

    @pytest.mark.parametrize("in_flight", [1, 4, 16])
    def test_no_virtual_loss_leak(self, tictactoe, in_flight):
        tree = make_tree(tictactoe, simulations_in_flight=in_flight)
        tree.run_simulations(100)
        assert tree.total_virtual_loss() == 0
        assert tree.root.visit_count == 100

    def test_concurrent_simulations_diverge(self, tictactoe):
        """Simulations selected together spread over different edges."""
        tree = make_tree(tictactoe, evaluator=UniformEvaluator(tictactoe), simulations_in_flight=9)
        tree.run_simulations(9)
        np.testing.assert_array_equal(tree.root.visit_counts, np.ones(9))

    def test_terminal_value_is_used_directly(self):
        """Taking the last stone wins: the root value is +1 for the mover."""
        game = Nim(num_stones=1, max_take=3)
        capability = UniformCapability(game, value=0.5)
        tree = make_tree(game, evaluator=DirectEvaluator(capability))
        tree.run_simulations(10)
        assert tree.root.q_values()[0] == pytest.approx(1.0)
        assert tree.stats.terminal_hits == 10
        assert capability.batch_sizes == [1]  # Root only

    def test_finds_winning_move(self, tictactoe):
        """X holds 0 and 1 and must complete the row at 2."""
        tree = SearchTree(tictactoe, MCTSConfig(), UniformEvaluator(tictactoe))
        tree.set_root(play(tictactoe, [0, 3, 1, 4]))
        tree.run_simulations(200)
        assert tree.select_move(0.0, np.random.default_rng(0)) == 2

    def test_exploration_noise_leaves_priors(self, tictactoe):
        tree = make_tree(tictactoe)
        tree.expand_root()
        priors = tree.root.priors.copy()
        tree.add_exploration_noise(0.25, 0.3, np.random.default_rng(0))
        np.testing.assert_array_equal(tree.root.priors, priors)
        assert tree._root_priors.sum() == pytest.approx(1.0)
        assert not np.allclose(tree._root_priors, priors)

    def test_policy_target(self, tictactoe):
        tree = SearchTree(tictactoe, MCTSConfig(), DirectEvaluator(HashCapability(tictactoe)))
        tree.set_root(play(tictactoe, [4]))
        tree.run_simulations(30)
        policy = tree.policy_target()
        assert policy.shape == (9,)
        assert policy.sum() == pytest.approx(1.0)
        assert policy[4] == 0.0

    def test_select_move_greedy_is_most_visited(self, tictactoe):
        tree = make_tree(tictactoe)
        tree.run_simulations(40)
        actions, counts = tree.visit_counts()
        assert tree.select_move(0.0, np.random.default_rng(0)) == actions[int(np.argmax(counts))]

    def test_tree_reuse(self, tictactoe):
        """Moving the root keeps the statistics of the subtree."""
        tree = make_tree(tictactoe)
        tree.run_simulations(100)
        action = tree.select_move(0.0, np.random.default_rng(0))
        idx = tree.root.index_of(action)
        child = tree.root.children[idx]

        tree.advance(action)
        assert tree.root is child
        tree.set_root(tictactoe.apply(tictactoe.initial_state(), action))
        assert tree.root is child

        tree.set_root(tictactoe.initial_state())
        assert tree.root.visit_count == 100

    def test_unknown_state_gets_a_fresh_root(self, tictactoe):
        tree = make_tree(tictactoe)
        tree.run_simulations(20)
        state = play(tictactoe, [0, 1, 2, 3])
        tree.set_root(state)
        assert tree.root.state == state
        assert tree.root.visit_count == 0

    def test_failed_evaluation_releases_virtual_loss(self, tictactoe):
        class FailingEvaluator(Evaluator):
            """Answers the root, then never resolves anything."""

            def __init__(self):
                self.inner = UniformEvaluator(tictactoe)
                self.calls = 0

            def submit(self, state):
                self.calls += 1
                if self.calls == 1:
                    return self.inner.submit(state)
                return InferenceFuture()

            def wait(self, futures):
                if not all(f.done() for f in futures):
                    raise RuntimeError("evaluation failed")
                return [f.result() for f in futures]

        tree = make_tree(tictactoe, evaluator=FailingEvaluator(), simulations_in_flight=4)
        with pytest.raises(RuntimeError):
            tree.run_simulations(8)
        assert tree.total_virtual_loss() == 0
        assert all(child is None or child.pending is None for child in tree.root.children)

    def test_failed_root_evaluation_is_resubmitted(self, tictactoe):
        class FailsOnce(Evaluator):
            def __init__(self):
                self.inner = UniformEvaluator(tictactoe)
                self.calls = 0

            def submit(self, state):
                self.calls += 1
                if self.calls == 1:
                    future = InferenceFuture()
                    future.set_exception(RuntimeError("evaluation failed"))
                    return future
                return self.inner.submit(state)

        evaluator = FailsOnce()
        tree = make_tree(tictactoe, evaluator=evaluator)
        with pytest.raises(RuntimeError):
            tree.expand_root()
        assert tree.root.pending is None
        assert not tree.root.is_expanded()

        tree.expand_root()
        assert evaluator.calls == 2
        assert tree.root.is_expanded()

    def test_malformed_policy_is_fatal(self, tictactoe):
        class WrongShape:
            def infer(self, states):
                return [(np.ones(4) / 4, 0.0) for _ in states]

        tree = make_tree(tictactoe, evaluator=DirectEvaluator(WrongShape()))
        with pytest.raises(CapabilityError):
            tree.run_simulations(1)


class TestMCTSPlayer:
    """Tests for MCTSPlayer."""

    def test_think(self, tictactoe):
        player = MCTSPlayer(tictactoe, DirectEvaluator(HashCapability(tictactoe)),
                            MCTSConfig(num_simulations=25))
        state = play(tictactoe, [4])
        action, policy = player.think(state, move_number=1, rng=np.random.default_rng(0))
        assert action in tictactoe.legal_actions(state)
        assert policy.sum() == pytest.approx(1.0)
        assert player.tree.stats.num_simulations == 25

    def test_greedy_after_temperature_drop(self, tictactoe):
        """Past the temperature breakpoint the most visited move is played."""
        player = MCTSPlayer(tictactoe, DirectEvaluator(HashCapability(tictactoe)),
                            MCTSConfig(num_simulations=30, dirichlet_epsilon=0.0))
        state = tictactoe.initial_state()
        action = player.select_action(state, move_number=100, rng=np.random.default_rng(1))
        actions, counts = player.tree.visit_counts()
        assert action == actions[int(np.argmax(counts))]
