"""Evaluation: arena duels and baseline players."""

from .arena import Arena, Duel, DuelOutcome, MatchResult, compute_redundancy, should_promote
from .minmax import MinMaxPlayer
from .players import (
    MCTSSpec,
    MinMaxSpec,
    NetworkPlayer,
    NetworkSpec,
    Player,
    PlayerSpec,
    RandomPlayer,
    RandomSpec,
    RolloutSpec,
)

__all__ = [
    'Arena',
    'Duel',
    'DuelOutcome',
    'MatchResult',
    'compute_redundancy',
    'should_promote',
    'MinMaxPlayer',
    'Player',
    'PlayerSpec',
    'RandomPlayer',
    'NetworkPlayer',
    'MCTSSpec',
    'NetworkSpec',
    'RolloutSpec',
    'MinMaxSpec',
    'RandomSpec',
]
