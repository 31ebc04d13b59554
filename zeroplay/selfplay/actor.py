"""Search worker pool and self-play actors.

``ActorPool`` runs a number of jobs (self-play games or arena matches) on a
pool of worker threads. Each worker is registered with the inference
scheduler for its whole lifetime, so the scheduler knows when every live
worker is waiting on it. Workers pull the next unstarted job as soon as
they finish one.

A job raising a ``FatalError`` stops the pool. Any other exception only
discards that job: the worker resets its state and the job is replayed
with the next attempt number, up to ``max_failures`` failures per run.
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Callable, Deque, List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from .game import SelfPlayGame
from .inference_server import InferenceScheduler
from ..config import SelfPlayConfig
from ..errors import FatalError, WorkerPoolError
from ..games.base import Game
from ..mcts.evaluator import Evaluator
from ..mcts.player import MCTSPlayer
from ..training.replay_buffer import MemoryBuffer
from ..training.trajectory import Trajectory

logger = logging.getLogger(__name__)


@dataclass
class PoolReport:
    """Summary of an ``ActorPool.run`` call."""
    num_jobs: int = 0
    completed: int = 0
    failures: int = 0
    elapsed: float = 0.0


class ActorPool:
    """Runs jobs concurrently on worker threads."""

    def __init__(
        self,
        num_workers: int,
        scheduler: Optional[InferenceScheduler] = None,
        max_failures: int = 10,
        desc: str = "Self-play",
        show_progress: bool = True
    ):
        """Initialize pool.

        Args:
            num_workers: Number of worker threads
            scheduler: Inference scheduler the workers submit to, if any
            max_failures: Failed jobs tolerated before the run is aborted
            desc: Progress bar label
            show_progress: Display a progress bar
        """
        if num_workers < 1:
            raise ValueError("num_workers must be positive")
        self.num_workers = num_workers
        self.scheduler = scheduler
        self.max_failures = max_failures
        self.desc = desc
        self.show_progress = show_progress

    def run(
        self,
        num_jobs: int,
        make_worker: Callable[[int], Any],
        job: Callable[[Any, int, int], Any],
        on_result: Optional[Callable[[int, Any], None]] = None,
        job_sizes: Optional[Sequence[int]] = None
    ) -> PoolReport:
        """Run ``num_jobs`` jobs.

        Args:
            num_jobs: Number of jobs
            make_worker: Builds the per-thread worker state from a worker id
            job: Called as ``job(worker, job_index, attempt)``
            on_result: Called as ``on_result(job_index, result)`` in
                completion order, serialized across workers
            job_sizes: Items (e.g. games) per job, for the progress bar

        Returns:
            PoolReport

        Raises:
            FatalError: If a job raised one, or too many jobs failed
        """
        queue: Deque[Tuple[int, int]] = deque((i, 0) for i in range(num_jobs))
        lock = threading.Lock()
        stop = threading.Event()
        report = PoolReport(num_jobs=num_jobs)
        start_time = time.time()

        if job_sizes is None:
            job_sizes = [1] * num_jobs
        pbar = tqdm(total=sum(job_sizes), desc=self.desc, unit="game", disable=not self.show_progress)

        def next_job() -> Optional[Tuple[int, int]]:
            with lock:
                if stop.is_set() or not queue:
                    return None
                return queue.popleft()

        def worker_loop(worker_id: int) -> None:
            context = self.scheduler.worker() if self.scheduler is not None else nullcontext()
            with context:
                worker = make_worker(worker_id)
                while True:
                    item = next_job()
                    if item is None:
                        return
                    job_index, attempt = item
                    try:
                        result = job(worker, job_index, attempt)
                    except FatalError:
                        stop.set()
                        raise
                    except Exception as e:
                        self._handle_failure(e, worker, worker_id, job_index, attempt,
                                             queue, lock, stop, report)
                        continue
                    with lock:
                        report.completed += 1
                        if on_result is not None:
                            on_result(job_index, result)
                        pbar.update(job_sizes[job_index])

        errors: List[BaseException] = []
        try:
            with ThreadPoolExecutor(max_workers=self.num_workers, thread_name_prefix="worker") as executor:
                futures = [executor.submit(worker_loop, i) for i in range(min(self.num_workers, max(num_jobs, 1)))]
                for future in futures:
                    try:
                        future.result()
                    except BaseException as e:
                        stop.set()
                        errors.append(e)
        finally:
            pbar.close()

        report.elapsed = time.time() - start_time
        if errors:
            raise errors[0]
        logger.info(
            f"{self.desc}: {report.completed}/{num_jobs} jobs in {report.elapsed:.1f}s "
            f"({report.failures} failures)"
        )
        return report

    def _handle_failure(self, error, worker, worker_id, job_index, attempt, queue, lock, stop, report) -> None:
        logger.warning(
            f"Worker {worker_id}: job {job_index} (attempt {attempt}) failed: "
            f"{type(error).__name__}: {error}"
        )
        logger.debug("Job failure traceback", exc_info=error)
        reset = getattr(worker, 'reset', None)
        if reset is not None:
            reset()
        with lock:
            report.failures += 1
            if report.failures > self.max_failures:
                stop.set()
                raise WorkerPoolError(
                    f"{report.failures} failed jobs exceed the limit of {self.max_failures}") from error
            queue.append((job_index, attempt + 1))


class SelfPlayActor:
    """A worker's self-play state: one MCTS player, rebuilt for every run of games.

    The tree is kept between the games of a run, so with ``reset_mcts_every``
    greater than one the games of a run are played in order on the same
    worker. Which runs a worker picks up does not affect the samples.
    """

    def __init__(
        self,
        game: Game,
        evaluator: Evaluator,
        config: SelfPlayConfig,
        iteration: int = 0,
        actor_id: int = 0
    ):
        self.game = game
        self.config = config
        self.iteration = iteration
        self.actor_id = actor_id
        self.player = MCTSPlayer(game, evaluator, config.mcts, iteration, name=f"actor-{actor_id}")

    def play_game(self, rng: np.random.Generator) -> Trajectory:
        """Play one game on the current tree."""
        return SelfPlayGame(self.game, self.player, self.config).play(rng)

    def play_games(self, seed: int, game_indices: Sequence[int], attempt: int = 0) -> List[Trajectory]:
        """Play a run of games on a fresh tree, each seeded by its own index."""
        self.player.reset()
        return [
            self.play_game(game_rng(seed, self.iteration, game_index, attempt))
            for game_index in game_indices
        ]

    def reset(self) -> None:
        self.player.reset()


def job_chunks(num_items: int, chunk_size: Optional[int]) -> List[range]:
    """Split ``range(num_items)`` into consecutive runs of ``chunk_size``.

    A chunk size of None or 0 puts every item in a single run.
    """
    size = chunk_size or max(num_items, 1)
    return [range(start, min(start + size, num_items)) for start in range(0, num_items, size)]


@dataclass
class SelfPlayReport:
    """Summary of one self-play phase."""
    num_games: int = 0
    num_samples: int = 0
    avg_game_length: float = 0.0
    failures: int = 0
    elapsed: float = 0.0
    games_per_second: float = 0.0
    inference_batches: int = 0
    avg_batch_size: float = 0.0


def game_rng(seed: int, iteration: int, game_index: int, attempt: int = 0) -> np.random.Generator:
    """Random generator of one game, reproducible from its coordinates."""
    return np.random.default_rng([seed, iteration, game_index, attempt])


def run_self_play(
    game: Game,
    evaluator: Evaluator,
    config: SelfPlayConfig,
    memory: MemoryBuffer,
    iteration: int = 0,
    seed: int = 0,
    scheduler: Optional[InferenceScheduler] = None,
    show_progress: bool = True
) -> SelfPlayReport:
    """Play ``config.num_games`` games and push their samples to ``memory``.

    Games are grouped into runs of ``config.reset_mcts_every`` consecutive
    indices. A run is one pool job: it starts from an empty tree and is
    replayed as a whole if any of its games fails.

    Args:
        game: Game rules
        evaluator: Evaluator shared by all workers (e.g. a BatchedEvaluator)
        config: Self-play configuration
        memory: Destination of the samples
        iteration: Training iteration (noise schedule and seeds)
        seed: Base random seed
        scheduler: Scheduler the evaluator submits to, if any
        show_progress: Display a progress bar

    Returns:
        SelfPlayReport
    """
    chunks = job_chunks(config.num_games, config.reset_mcts_every)
    lengths: List[int] = []

    def make_worker(worker_id: int) -> SelfPlayActor:
        return SelfPlayActor(game, evaluator, config, iteration, worker_id)

    def play(actor: SelfPlayActor, chunk_index: int, attempt: int) -> List[Trajectory]:
        return actor.play_games(seed, chunks[chunk_index], attempt)

    def store(chunk_index: int, trajectories: List[Trajectory]) -> None:
        for trajectory in trajectories:
            memory.push(trajectory.to_samples())
            lengths.append(len(trajectory))

    pool = ActorPool(
        config.num_workers,
        scheduler=scheduler,
        max_failures=config.max_game_failures,
        desc="Self-play",
        show_progress=show_progress,
    )
    pool_report = pool.run(len(chunks), make_worker, play, store, job_sizes=[len(c) for c in chunks])

    report = SelfPlayReport(
        num_games=len(lengths),
        num_samples=sum(lengths),
        avg_game_length=float(np.mean(lengths)) if lengths else 0.0,
        failures=pool_report.failures,
        elapsed=pool_report.elapsed,
        games_per_second=len(lengths) / pool_report.elapsed if pool_report.elapsed > 0 else 0.0,
    )
    if scheduler is not None:
        report.inference_batches = scheduler.stats.total_batches
        report.avg_batch_size = scheduler.stats.avg_batch_size
    return report
