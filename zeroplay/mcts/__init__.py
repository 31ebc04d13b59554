"""Monte Carlo Tree Search."""

from .base import MCTSStats, apply_temperature, dirichlet_noise
from .evaluator import (
    DirectEvaluator,
    Evaluator,
    InferenceFuture,
    RolloutEvaluator,
    UniformEvaluator,
)
from .node import MCTSNode
from .player import MCTSPlayer
from .search import PendingSimulation, SearchTree

__all__ = [
    "MCTSStats",
    "apply_temperature",
    "dirichlet_noise",
    "DirectEvaluator",
    "Evaluator",
    "InferenceFuture",
    "RolloutEvaluator",
    "UniformEvaluator",
    "MCTSNode",
    "MCTSPlayer",
    "PendingSimulation",
    "SearchTree",
]
