"""Tests for self-play games and the worker pool."""

import threading

import numpy as np
import pytest

from conftest import HashCapability, UniformCapability
from zeroplay.config import MCTSConfig, SelfPlayConfig
from zeroplay.errors import SearchError, WorkerPoolError
from zeroplay.mcts import DirectEvaluator, MCTSPlayer
from zeroplay.selfplay import (
    ActorPool,
    BatchedEvaluator,
    InferenceScheduler,
    SelfPlayActor,
    SelfPlayGame,
    game_rng,
    job_chunks,
    run_self_play,
)
from zeroplay.training import MemoryBuffer


def selfplay_config(**kwargs):
    mcts = MCTSConfig(num_simulations=kwargs.pop('num_simulations', 8), simulations_in_flight=2)
    return SelfPlayConfig(mcts=mcts, **kwargs)


class TestSelfPlayGame:
    """Tests for SelfPlayGame."""

    def test_one_move_game(self, one_move_game):
        """The game ends after one move and yields one sample with a known value."""
        config = selfplay_config(num_simulations=1)
        player = MCTSPlayer(one_move_game, DirectEvaluator(UniformCapability(one_move_game)), config.mcts)
        trajectory = SelfPlayGame(one_move_game, player, config).play(np.random.default_rng(0))

        assert len(trajectory) == 1
        samples = trajectory.to_samples()
        assert len(samples) == 1
        assert samples[0].state == one_move_game.initial_state()
        assert samples[0].value == 1.0  # The mover won
        assert samples[0].moves_left == 1
        np.testing.assert_allclose(samples[0].policy, [1.0, 0.0])

        memory = MemoryBuffer(capacity=10)
        memory.push(samples)
        assert len(memory) == 1

    def test_values_alternate(self, tictactoe):
        config = selfplay_config()
        player = MCTSPlayer(tictactoe, DirectEvaluator(UniformCapability(tictactoe)), config.mcts)
        trajectory = SelfPlayGame(tictactoe, player, config).play(np.random.default_rng(3))
        values = [s.value for s in trajectory.to_samples()]
        assert values[0] in (-1.0, 0.0, 1.0)
        for a, b in zip(values, values[1:]):
            assert a == -b

    def test_max_moves_is_a_draw(self, tictactoe):
        config = selfplay_config(max_moves=2)
        player = MCTSPlayer(tictactoe, DirectEvaluator(UniformCapability(tictactoe)), config.mcts)
        trajectory = SelfPlayGame(tictactoe, player, config).play(np.random.default_rng(0))
        assert len(trajectory) == 2
        assert all(s.value == 0.0 for s in trajectory.to_samples())

    def test_actor_replays_runs_on_a_fresh_tree(self, tictactoe):
        """A run of games does not depend on what the actor played before."""
        config = selfplay_config(reset_mcts_every=2)
        actor = SelfPlayActor(tictactoe, DirectEvaluator(HashCapability(tictactoe)), config)

        def states(trajectories):
            return [(s.state, s.value) for t in trajectories for s in t.to_samples()]

        first = actor.play_games(seed=0, game_indices=range(2))
        assert len(first) == 2
        assert actor.player.tree.root is not None
        actor.play_games(seed=0, game_indices=[5])
        assert states(actor.play_games(seed=0, game_indices=range(2))) == states(first)

    def test_job_chunks(self):
        assert job_chunks(7, 3) == [range(0, 3), range(3, 6), range(6, 7)]
        assert job_chunks(3, 1) == [range(0, 1), range(1, 2), range(2, 3)]
        assert job_chunks(4, None) == [range(0, 4)]
        assert job_chunks(0, 2) == []


class TestActorPool:
    """Tests for ActorPool."""

    def test_runs_every_job(self):
        results = {}
        pool = ActorPool(num_workers=3, show_progress=False)
        report = pool.run(10, lambda worker_id: worker_id, lambda w, i, attempt: i * i,
                          lambda i, r: results.__setitem__(i, r))
        assert report.completed == 10
        assert results == {i: i * i for i in range(10)}

    def test_failed_jobs_are_replayed(self):
        """A failing job is retried with the next attempt; other jobs are unaffected."""
        resets = []
        attempts = {}
        lock = threading.Lock()

        class Worker:
            def reset(self):
                with lock:
                    resets.append(1)

        def job(worker, index, attempt):
            with lock:
                attempts.setdefault(index, []).append(attempt)
            if index % 3 == 0 and attempt == 0:
                raise RuntimeError("flaky game")
            return index

        results = {}
        pool = ActorPool(num_workers=2, max_failures=10, show_progress=False)
        report = pool.run(9, lambda worker_id: Worker(), job, lambda i, r: results.__setitem__(i, r))

        assert sorted(results) == list(range(9))
        assert report.failures == 3
        assert len(resets) == 3
        assert attempts[3] == [0, 1]
        assert attempts[1] == [0]

    def test_too_many_failures(self):
        def job(worker, index, attempt):
            raise RuntimeError("always fails")

        pool = ActorPool(num_workers=2, max_failures=3, show_progress=False)
        with pytest.raises(WorkerPoolError):
            pool.run(5, lambda worker_id: None, job)

    def test_fatal_error_stops_the_pool(self):
        def job(worker, index, attempt):
            if index == 2:
                raise SearchError("broken tree")
            return index

        pool = ActorPool(num_workers=1, show_progress=False)
        completed = []
        with pytest.raises(SearchError):
            pool.run(6, lambda worker_id: None, job, lambda i, r: completed.append(i))
        assert completed == [0, 1]

    def test_invalid_worker_count(self):
        with pytest.raises(ValueError):
            ActorPool(num_workers=0)


class TestRunSelfPlay:
    """Tests for run_self_play."""

    def test_batched_self_play(self, tictactoe):
        capability = UniformCapability(tictactoe)
        config = selfplay_config(num_games=6, num_workers=3)
        memory = MemoryBuffer(capacity=10_000, position_averaging=False)

        with InferenceScheduler({"best": capability}, batch_size=8, batch_timeout=0.5) as scheduler:
            report = run_self_play(tictactoe, BatchedEvaluator(scheduler, "best"), config, memory,
                                   iteration=0, seed=1, scheduler=scheduler, show_progress=False)

        assert report.num_games == 6
        assert memory.total_games == 6
        assert report.num_samples == len(memory)
        assert 5 <= report.avg_game_length <= 9
        assert report.inference_batches > 0
        for sample in memory.samples():
            assert sample.value in (-1.0, 0.0, 1.0)
            assert sample.policy.sum() == pytest.approx(1.0, abs=1e-5)

    def test_reproducible(self, tictactoe):
        """Games depend only on the seed and their coordinates."""
        def generate():
            memory = MemoryBuffer(capacity=10_000, position_averaging=False)
            run_self_play(tictactoe, DirectEvaluator(UniformCapability(tictactoe)),
                          selfplay_config(num_games=3, num_workers=1), memory,
                          iteration=2, seed=5, show_progress=False)
            return [(s.state, s.value) for s in memory.samples()]

        assert generate() == generate()

    def test_game_rng(self):
        a = game_rng(1, 2, 3).random()
        assert a == game_rng(1, 2, 3).random()
        assert a != game_rng(1, 2, 3, attempt=1).random()
        assert a != game_rng(1, 2, 4).random()

    @pytest.mark.parametrize("reset_mcts_every", [1, 3, None])
    def test_reproducible_across_worker_counts(self, tictactoe, reset_mcts_every):
        """The same games are generated whatever the number of workers."""
        def generate(num_workers):
            memory = MemoryBuffer(capacity=10_000, position_averaging=False)
            config = selfplay_config(num_games=8, num_workers=num_workers, reset_mcts_every=reset_mcts_every)
            report = run_self_play(tictactoe, DirectEvaluator(HashCapability(tictactoe)), config, memory,
                                   iteration=1, seed=4, show_progress=False)
            assert report.num_games == 8
            return sorted(
                (repr(s.state), s.value, s.moves_left, tuple(s.policy.tolist()))
                for s in memory.samples()
            )

        assert generate(1) == generate(4)

    def test_failed_games_are_replayed_whole(self, tictactoe):
        """Inference failures discard the game in progress and never leave partial games."""
        class FlakyCapability(HashCapability):
            def __init__(self, game, failing_calls):
                super().__init__(game)
                self.failing_calls = set(failing_calls)
                self.calls = 0
                self.lock = threading.Lock()

            def infer(self, states):
                with self.lock:
                    self.calls += 1
                    call = self.calls
                if call in self.failing_calls:
                    raise RuntimeError(f"inference call {call} failed")
                return super().infer(states)

        memory = MemoryBuffer(capacity=10_000, position_averaging=False)
        config = selfplay_config(num_games=8, num_workers=3, reset_mcts_every=2)
        report = run_self_play(tictactoe, DirectEvaluator(FlakyCapability(tictactoe, [3, 30])), config, memory,
                               seed=2, show_progress=False)

        assert report.failures == 2
        assert report.num_games == 8
        assert memory.total_games == 8
        samples = memory.samples()
        assert report.num_samples == len(samples)
        # Each stored game starts from the initial position and runs to its end
        assert sum(s.state == tictactoe.initial_state() for s in samples) == 8
        assert sum(s.moves_left == 1 for s in samples) == 8

    def test_too_many_failed_games(self, tictactoe):
        class BrokenCapability:
            def infer(self, states):
                raise RuntimeError("inference unavailable")

        config = selfplay_config(num_games=4, num_workers=2, max_game_failures=3)
        with pytest.raises(WorkerPoolError):
            run_self_play(tictactoe, DirectEvaluator(BrokenCapability()), config,
                          MemoryBuffer(capacity=100), show_progress=False)
