"""Training loop orchestration.

Each iteration goes through the phases

    SELF_PLAY -> MEMORY_ANALYSIS -> LEARNING -> ARENA_EVAL -> CHECKPOINT

Self-play always uses the best network. Learning updates a separate current
network, which replaces the best one only when it wins the arena duel.
"""

import copy
import dataclasses
import logging
import signal
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import torch

from .actor import SelfPlayReport, run_self_play
from .inference_server import BatchedEvaluator, InferenceScheduler
from ..config import Params
from ..errors import TrainingAborted
from ..evaluation.arena import Arena, Duel, should_promote
from ..evaluation.players import MCTSSpec
from ..games.base import Game
from ..neural.inference import NetworkInference
from ..neural.network import create_network
from ..training.learner import Learner, LearningReport
from ..training.metrics_logger import MetricsLogger
from ..training.replay_buffer import MemoryBuffer, MemoryReport
from ..utils import atomic_save, checkpoint_name, find_latest_checkpoint, prune_checkpoints

logger = logging.getLogger(__name__)

BEST = "best"
CURRENT = "current"
_LEARNING_STREAM = 1


class Phase(Enum):
    INIT = "init"
    SELF_PLAY = "self_play"
    MEMORY_ANALYSIS = "memory_analysis"
    LEARNING = "learning"
    ARENA_EVAL = "arena_eval"
    CHECKPOINT = "checkpoint"
    DONE = "done"


@dataclass
class IterationReport:
    """Everything measured during one training iteration."""
    iteration: int
    self_play: Optional[SelfPlayReport] = None
    memory: Optional[MemoryReport] = None
    learning: Optional[LearningReport] = None
    arena: Optional[Dict[str, Any]] = None
    promoted: bool = False
    benchmarks: List[Dict[str, Any]] = field(default_factory=list)
    checkpoint: Optional[str] = None
    elapsed: float = 0.0


class TrainingCoordinator:
    """Runs the self-play / learning / evaluation loop."""

    def __init__(
        self,
        game: Game,
        params: Optional[Params] = None,
        network: Optional[torch.nn.Module] = None,
        benchmarks: Sequence[Duel] = (),
        metrics_logger: Optional[MetricsLogger] = None
    ):
        """Initialize coordinator.

        Args:
            game: Game rules
            params: Training parameters
            network: Initial network; a fresh one is built from
                ``params.network`` when omitted
            benchmarks: Extra duels run after the arena each iteration. Their
                player specs may use the models "best" and "current".
            metrics_logger: Destination of iteration reports; created from
                ``params.log_dir`` when omitted
        """
        self.game = game
        self.params = params or Params()
        device = self.params.device

        if network is None:
            network = create_network(game, self.params.network, device)
        self.best_network = network.to(device)
        self.current_network = copy.deepcopy(self.best_network)
        self.learner = Learner(
            self.current_network, game, self.params.learning, device,
            show_progress=self.params.show_progress,
        )
        self.memory = MemoryBuffer.from_config(self.params.memory)
        self.arena = Arena(game, self.params.inference, self.params.seed, self.params.show_progress)
        self.benchmarks = list(benchmarks)

        if metrics_logger is None and self.params.log_dir:
            metrics_logger = MetricsLogger(self.params.log_dir)
        self.metrics_logger = metrics_logger

        self.iteration = 0  # Next iteration to run
        self.phase = Phase.INIT
        self.history: List[IterationReport] = []
        self._stop_requested = threading.Event()

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """Stop after the running iteration completes."""
        self._stop_requested.set()

    def run(self) -> List[IterationReport]:
        """Run iterations until ``num_iters`` is reached or a stop is requested.

        Raises:
            TrainingAborted: If an iteration fails
        """
        in_main_thread = threading.current_thread() is threading.main_thread()
        if in_main_thread:
            original_sigint = signal.getsignal(signal.SIGINT)
            original_sigterm = signal.getsignal(signal.SIGTERM)

            def signal_handler(signum, frame):
                logger.info(f"Received signal {signum}, stopping after the current iteration...")
                self.request_stop()

            signal.signal(signal.SIGINT, signal_handler)
            signal.signal(signal.SIGTERM, signal_handler)

        try:
            while self.iteration < self.params.num_iters:
                if self._stop_requested.is_set():
                    logger.info(f"Stop requested, leaving before iteration {self.iteration}")
                    break
                self.run_iteration()
            else:
                self.phase = Phase.DONE
                logger.info(f"Training finished after {self.iteration} iterations")
        finally:
            if in_main_thread:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
        return self.history

    def run_iteration(self) -> IterationReport:
        """Run every phase of the next iteration.

        Raises:
            TrainingAborted: Chained to the exception that failed the phase
        """
        iteration = self.iteration
        report = IterationReport(iteration=iteration)
        start_time = time.time()
        logger.info(f"===== Iteration {iteration + 1}/{self.params.num_iters} =====")

        try:
            self.phase = Phase.SELF_PLAY
            report.self_play = self.self_play(iteration)

            self.phase = Phase.MEMORY_ANALYSIS
            report.memory = self.analyze_memory()

            self.phase = Phase.LEARNING
            report.learning = self.learn(iteration)

            self.phase = Phase.ARENA_EVAL
            report.arena, report.promoted = self.evaluate(iteration)
            report.benchmarks = self.run_benchmarks(iteration)

            self.phase = Phase.CHECKPOINT
            path = self.save_checkpoint(iteration)
            report.checkpoint = str(path) if path is not None else None
        except Exception as e:
            logger.error(f"Iteration {iteration} failed during {self.phase.name}: {e}")
            raise TrainingAborted(iteration, self.phase.name, e) from e

        self.iteration = iteration + 1
        report.elapsed = time.time() - start_time
        self.history.append(report)
        if self.metrics_logger is not None:
            self.metrics_logger.log_iteration(iteration, report)
        logger.info(f"Iteration {iteration + 1} done in {report.elapsed:.1f}s (promoted: {report.promoted})")
        return report

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _inference(self, network: torch.nn.Module) -> NetworkInference:
        return NetworkInference(network, self.game, self.params.device, self.params.inference.use_amp)

    def self_play(self, iteration: int) -> SelfPlayReport:
        """Generate games with the best network into the memory buffer."""
        self.memory.set_iteration(iteration)
        self.memory.begin_batch()
        inference = self.params.inference
        with InferenceScheduler({BEST: self._inference(self.best_network)}, inference.batch_size,
                                inference.batch_timeout, name="selfplay-inference",
                                min_blocked_workers=inference.min_blocked_workers) as scheduler:
            report = run_self_play(
                self.game,
                BatchedEvaluator(scheduler, BEST),
                self.params.selfplay,
                self.memory,
                iteration=iteration,
                seed=self.params.seed,
                scheduler=scheduler,
                show_progress=self.params.show_progress,
            )
        logger.info(
            f"Self-play: {report.num_games} games, {report.num_samples} samples, "
            f"avg length {report.avg_game_length:.1f}, {report.games_per_second:.2f} games/s"
        )
        return report

    def analyze_memory(self) -> MemoryReport:
        """Loss and statistics of the buffer, as seen by the current network."""
        return self.memory.analyze(self.params.memory.num_game_stages, loss_fn=self.learner.evaluate)

    def learn(self, iteration: int) -> LearningReport:
        rng = np.random.default_rng([self.params.seed, iteration, _LEARNING_STREAM])
        return self.learner.fit(self.memory.get_experience(), iteration, rng)

    def evaluate(self, iteration: int):
        """Duel the current network against the best one and promote on success.

        Returns:
            Tuple of (duel summary or None, promoted)
        """
        arena_config = self.params.arena
        if arena_config is None:
            self.promote()
            return None, True

        duel = Duel(
            name="arena",
            contender=MCTSSpec(CURRENT, arena_config.mcts, name=CURRENT),
            baseline=MCTSSpec(BEST, arena_config.mcts, name=BEST),
            num_games=arena_config.num_games,
            color_policy=arena_config.color_policy,
            flip_probability=arena_config.flip_probability,
            reset_every=arena_config.reset_mcts_every,
            num_workers=arena_config.num_workers,
            max_moves=self.params.selfplay.max_moves,
        )
        outcome = self.arena.run_duel(duel, self._capabilities(), iteration)
        promoted = should_promote(outcome, arena_config.update_threshold)
        if promoted:
            self.promote()
        else:
            logger.info(
                f"Contender rejected: win rate {outcome.win_rate:.3f} "
                f"<= threshold {arena_config.update_threshold:.3f}"
            )
        return outcome.summary(), promoted

    def promote(self) -> None:
        """Copy the current network's weights into the best network."""
        self.best_network.load_state_dict(self.current_network.state_dict())
        logger.info("Current network promoted to best")

    def run_benchmarks(self, iteration: int) -> List[Dict[str, Any]]:
        """Run the benchmark duels. Their results never affect promotion."""
        results = []
        for duel in self.benchmarks:
            outcome = self.arena.run_duel(duel, self._capabilities(), iteration)
            results.append(outcome.summary())
        return results

    def _capabilities(self) -> Dict[str, NetworkInference]:
        return {
            BEST: self._inference(self.best_network),
            CURRENT: self._inference(self.current_network),
        }

    # ------------------------------------------------------------------
    # Checkpointing
    # ------------------------------------------------------------------

    def save_checkpoint(self, iteration: int) -> Optional[Path]:
        """Atomically write the session after ``iteration`` and prune old files."""
        checkpoint_dir = self.params.checkpoint_dir
        if not checkpoint_dir:
            return None

        state = {
            'iteration': iteration + 1,
            'seed': self.params.seed,
            'best_network_state_dict': self.best_network.state_dict(),
            'current_network_state_dict': self.current_network.state_dict(),
            'learner_state_dict': self.learner.state_dict(),
            'memory_state_dict': self.memory.state_dict(),
            'network_config': dataclasses.asdict(self.params.network),
        }
        path = Path(checkpoint_dir) / checkpoint_name(iteration)
        atomic_save(state, path)
        prune_checkpoints(checkpoint_dir, self.params.keep_checkpoints)
        logger.info(f"Saved checkpoint to {path}")
        return path

    def resume(self, path: Optional[str] = None) -> int:
        """Restore a session saved by ``save_checkpoint``.

        Args:
            path: Checkpoint file; defaults to the latest one in
                ``params.checkpoint_dir``

        Returns:
            Index of the next iteration to run
        """
        if path is None:
            if not self.params.checkpoint_dir:
                raise FileNotFoundError("No checkpoint directory configured")
            path = find_latest_checkpoint(self.params.checkpoint_dir)
            if path is None:
                raise FileNotFoundError(f"No checkpoint in {self.params.checkpoint_dir}")

        # Memory contents hold arbitrary game states
        state = torch.load(path, map_location=self.params.device, weights_only=False)
        if state['seed'] != self.params.seed:
            logger.warning(f"Checkpoint seed {state['seed']} differs from configured seed {self.params.seed}")

        self.best_network.load_state_dict(state['best_network_state_dict'])
        self.current_network.load_state_dict(state['current_network_state_dict'])
        self.learner.load_state_dict(state['learner_state_dict'])
        self.memory.load_state_dict(state['memory_state_dict'])
        self.iteration = state['iteration']
        self.phase = Phase.INIT
        logger.info(f"Resumed from {path} at iteration {self.iteration}")
        return self.iteration
