"""Shared MCTS helpers: search statistics, temperature and root noise."""

from dataclasses import dataclass

import numpy as np


@dataclass
class MCTSStats:
    """Statistics from one move decision."""
    num_simulations: int = 0
    inference_requests: int = 0
    terminal_hits: int = 0
    max_depth: int = 0
    nodes_created: int = 0
    root_value: float = 0.0


def apply_temperature(
    counts: np.ndarray,
    temperature: float,
    greedy_threshold: float = 0.01
) -> np.ndarray:
    """Turn visit counts into a move distribution.

    pi(a) ∝ N(a)^(1/τ)

    At or below ``greedy_threshold`` the distribution is one-hot on the most
    visited action; ties go to the lowest index.

    Args:
        counts: Visit counts (num_legal,)
        temperature: Temperature τ
        greedy_threshold: Temperatures at or below this are treated as 0

    Returns:
        Probability distribution with the same shape as ``counts``
    """
    counts = np.asarray(counts, dtype=np.float64)
    probs = np.zeros_like(counts)
    if counts.size == 0:
        return probs

    if temperature <= greedy_threshold or counts.sum() <= 0:
        probs[int(np.argmax(counts))] = 1.0
        return probs

    # Work in log space so large exponents do not overflow
    visited = counts > 0
    logits = np.log(counts[visited]) / temperature
    logits -= logits.max()
    weights = np.exp(logits)
    probs[visited] = weights / weights.sum()
    return probs


def dirichlet_noise(size: int, alpha: float, rng: np.random.Generator) -> np.ndarray:
    """Sample Dir(alpha) noise for ``size`` legal actions."""
    return rng.dirichlet([alpha] * size)
