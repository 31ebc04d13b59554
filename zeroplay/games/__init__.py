"""Game rules consumed by the search engine."""

from .base import Game, State
from .nim import Nim, NimState
from .tictactoe import TicTacToe, TicTacToeState

# Name lookup for command-line scripts
AVAILABLE_GAMES = {
    'tictactoe': TicTacToe,
    'nim': Nim,
}

__all__ = [
    "Game",
    "State",
    "Nim",
    "NimState",
    "TicTacToe",
    "TicTacToeState",
    "AVAILABLE_GAMES",
]
