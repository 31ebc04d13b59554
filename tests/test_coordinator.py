"""Tests for the training coordinator and checkpoint helpers."""

import json

import pytest
import torch

from zeroplay import Phase, TrainingAborted, TrainingCoordinator
from zeroplay.config import (
    ArenaConfig,
    InferenceConfig,
    LearningConfig,
    MCTSConfig,
    MemoryConfig,
    NetworkConfig,
    Params,
    SelfPlayConfig,
)
from zeroplay.evaluation import Duel, MCTSSpec, RandomSpec
from zeroplay.utils import (
    atomic_save,
    checkpoint_name,
    find_latest_checkpoint,
    list_checkpoints,
    parse_checkpoint_iteration,
    prune_checkpoints,
)


def tiny_params(tmp_path, **changes):
    mcts = MCTSConfig(num_simulations=4, simulations_in_flight=2)
    params = Params(
        selfplay=SelfPlayConfig(num_games=4, num_workers=2, mcts=mcts),
        inference=InferenceConfig(batch_size=8, batch_timeout=0.001),
        memory=MemoryConfig(capacity=1000, num_game_stages=3),
        learning=LearningConfig(batch_size=8, num_epochs=4, max_steps=2),
        arena=ArenaConfig(num_games=2, num_workers=2, mcts=mcts.updated(dirichlet_epsilon=0.0, temperature=0.0)),
        network=NetworkConfig(num_filters=8, num_blocks=1, value_hidden=8),
        num_iters=2,
        seed=0,
        checkpoint_dir=str(tmp_path / "checkpoints"),
        log_dir=str(tmp_path / "logs"),
        keep_checkpoints=1,
        show_progress=False,
    )
    return params.updated(**changes)


def same_weights(a: torch.nn.Module, b: torch.nn.Module) -> bool:
    sa, sb = a.state_dict(), b.state_dict()
    return all(torch.equal(sa[k], sb[k]) for k in sa)


class TestCheckpointHelpers:
    """Tests for checkpoint file helpers."""

    def test_names(self):
        assert checkpoint_name(7) == "checkpoint_iter0007.pt"
        assert parse_checkpoint_iteration("/some/dir/checkpoint_iter0012.pt") == 12
        assert parse_checkpoint_iteration("model.pt") is None

    def test_list_and_prune(self, tmp_path):
        for i in (10, 2, 5):
            atomic_save({'iteration': i}, tmp_path / checkpoint_name(i))
        (tmp_path / "notes.txt").write_text("ignored")

        assert [parse_checkpoint_iteration(str(p)) for p in list_checkpoints(str(tmp_path))] == [2, 5, 10]
        assert find_latest_checkpoint(str(tmp_path)).name == checkpoint_name(10)

        removed = prune_checkpoints(str(tmp_path), keep=1)
        assert len(removed) == 2
        assert [p.name for p in list_checkpoints(str(tmp_path))] == [checkpoint_name(10)]
        assert (tmp_path / "notes.txt").exists()

    def test_atomic_save_leaves_no_temporary(self, tmp_path):
        path = tmp_path / "nested" / checkpoint_name(0)
        atomic_save({'value': 3}, path)
        assert torch.load(path)['value'] == 3
        assert [p.name for p in path.parent.iterdir()] == [path.name]

    def test_missing_directory(self, tmp_path):
        assert list_checkpoints(str(tmp_path / "absent")) == []
        assert find_latest_checkpoint(str(tmp_path / "absent")) is None


class TestTrainingCoordinator:
    """Tests for TrainingCoordinator."""

    def test_run(self, tictactoe, tmp_path):
        params = tiny_params(tmp_path)
        coordinator = TrainingCoordinator(tictactoe, params)
        history = coordinator.run()

        assert len(history) == 2
        assert coordinator.iteration == 2
        assert coordinator.phase == Phase.DONE
        report = history[0]
        assert report.self_play.num_games == 4
        assert len(report.memory.stages) == 3
        assert report.learning.num_steps == 2
        assert report.arena['wins'] + report.arena['draws'] + report.arena['losses'] == 2

        # Only the newest checkpoint is kept
        assert [p.name for p in list_checkpoints(params.checkpoint_dir)] == [checkpoint_name(1)]

        lines = (tmp_path / "logs" / "iterations.jsonl").read_text().splitlines()
        assert [json.loads(line)['iteration'] for line in lines] == [0, 1]

    def test_without_arena_always_promotes(self, tictactoe, tmp_path):
        coordinator = TrainingCoordinator(tictactoe, tiny_params(tmp_path, arena=None, num_iters=1))
        report = coordinator.run_iteration()
        assert report.promoted
        assert report.arena is None
        assert same_weights(coordinator.best_network, coordinator.current_network)

    def test_rejected_contender_keeps_best(self, tictactoe, tmp_path):
        params = tiny_params(tmp_path, num_iters=1)
        params = params.updated(arena=params.arena.updated(update_threshold=1.0))
        coordinator = TrainingCoordinator(tictactoe, params)
        initial = {k: v.clone() for k, v in coordinator.best_network.state_dict().items()}

        report = coordinator.run_iteration()
        assert not report.promoted
        assert all(torch.equal(initial[k], v) for k, v in coordinator.best_network.state_dict().items())
        assert not same_weights(coordinator.best_network, coordinator.current_network)

    def test_self_play_uses_best_network(self, tictactoe, tmp_path, monkeypatch):
        coordinator = TrainingCoordinator(tictactoe, tiny_params(tmp_path, num_iters=1))
        served = []
        original = coordinator._inference

        def spy(network):
            if coordinator.phase == Phase.SELF_PLAY:
                served.append(network)
            return original(network)

        monkeypatch.setattr(coordinator, '_inference', spy)
        coordinator.run_iteration()
        assert served and all(n is coordinator.best_network for n in served)

    def test_failure_aborts_with_phase(self, tictactoe, tmp_path, monkeypatch):
        params = tiny_params(tmp_path)
        coordinator = TrainingCoordinator(tictactoe, params)

        def broken(iteration):
            raise RuntimeError("boom")

        monkeypatch.setattr(coordinator, 'learn', broken)
        with pytest.raises(TrainingAborted) as excinfo:
            coordinator.run()

        assert excinfo.value.iteration == 0
        assert excinfo.value.phase == "LEARNING"
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert coordinator.iteration == 0
        assert list_checkpoints(params.checkpoint_dir) == []

    def test_request_stop(self, tictactoe, tmp_path, monkeypatch):
        coordinator = TrainingCoordinator(tictactoe, tiny_params(tmp_path, num_iters=3))
        original = coordinator.self_play

        def stop_after_first(iteration):
            coordinator.request_stop()
            return original(iteration)

        monkeypatch.setattr(coordinator, 'self_play', stop_after_first)
        history = coordinator.run()
        assert len(history) == 1
        assert coordinator.iteration == 1
        assert coordinator.phase != Phase.DONE

    def test_resume(self, tictactoe, tmp_path):
        params = tiny_params(tmp_path, num_iters=1)
        first = TrainingCoordinator(tictactoe, params)
        first.run()

        second = TrainingCoordinator(tictactoe, params.updated(num_iters=2))
        assert second.resume() == 1
        assert len(second.memory) == len(first.memory)
        assert second.memory.total_games == first.memory.total_games
        assert same_weights(second.best_network, first.best_network)
        assert same_weights(second.current_network, first.current_network)
        assert second.learner.global_step == first.learner.global_step

        history = second.run()
        assert [r.iteration for r in history] == [1]

    def test_resume_without_checkpoint(self, tictactoe, tmp_path):
        coordinator = TrainingCoordinator(tictactoe, tiny_params(tmp_path))
        with pytest.raises(FileNotFoundError):
            coordinator.resume()

    def test_benchmarks(self, tictactoe, tmp_path):
        benchmark = Duel("vs-random", MCTSSpec("current", MCTSConfig(num_simulations=4)), RandomSpec(),
                         num_games=2, num_workers=2)
        coordinator = TrainingCoordinator(tictactoe, tiny_params(tmp_path, num_iters=1), benchmarks=[benchmark])
        report = coordinator.run_iteration()
        assert len(report.benchmarks) == 1
        assert report.benchmarks[0]['name'] == "vs-random"
