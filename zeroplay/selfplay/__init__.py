"""Self-play: batched inference, worker pool and game generation.

``TrainingCoordinator`` lives in ``zeroplay.selfplay.coordinator``; it is not
imported here because it depends on ``zeroplay.evaluation``, which itself
runs on the worker pool.
"""

from .actor import ActorPool, PoolReport, SelfPlayActor, SelfPlayReport, game_rng, job_chunks, run_self_play
from .game import SelfPlayGame
from .inference_server import BatchedEvaluator, InferenceRequest, InferenceScheduler, SchedulerStats

__all__ = [
    "ActorPool",
    "PoolReport",
    "SelfPlayActor",
    "SelfPlayReport",
    "game_rng",
    "job_chunks",
    "run_self_play",
    "SelfPlayGame",
    "BatchedEvaluator",
    "InferenceRequest",
    "InferenceScheduler",
    "SchedulerStats",
]
