"""Tic-tac-toe on a 3x3 board."""

from typing import List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .base import Game

EMPTY = 0

LINES = (
    (0, 1, 2), (3, 4, 5), (6, 7, 8),  # rows
    (0, 3, 6), (1, 4, 7), (2, 5, 8),  # columns
    (0, 4, 8), (2, 4, 6),             # diagonals
)


class TicTacToeState(NamedTuple):
    board: Tuple[int, ...]  # 0 empty, 1 first player, 2 second player
    player: int = 0


def _board_transforms() -> List[np.ndarray]:
    """Action permutations for the 7 non-identity symmetries of the square."""
    coords = [(r, c) for r in range(3) for c in range(3)]
    maps = [
        lambda r, c: (c, 2 - r),      # rotate 90
        lambda r, c: (2 - r, 2 - c),  # rotate 180
        lambda r, c: (2 - c, r),      # rotate 270
        lambda r, c: (r, 2 - c),      # horizontal flip
        lambda r, c: (2 - r, c),      # vertical flip
        lambda r, c: (c, r),          # main diagonal
        lambda r, c: (2 - c, 2 - r),  # anti diagonal
    ]
    perms = []
    for f in maps:
        perm = np.array([3 * f(r, c)[0] + f(r, c)[1] for r, c in coords], dtype=np.int64)
        perms.append(perm)
    return perms


class TicTacToe(Game):
    """Classic tic-tac-toe. Action ``a`` marks cell ``a`` (row-major)."""

    name = "tictactoe"
    num_actions = 9
    observation_shape = (3, 3, 3)

    def __init__(self):
        self._perms = _board_transforms()

    def initial_state(self) -> TicTacToeState:
        return TicTacToeState(board=(EMPTY,) * 9, player=0)

    def legal_actions(self, state: TicTacToeState) -> Sequence[int]:
        if self._winner(state.board) is not None:
            return []
        return [i for i, cell in enumerate(state.board) if cell == EMPTY]

    def apply(self, state: TicTacToeState, action: int) -> TicTacToeState:
        if state.board[action] != EMPTY:
            raise ValueError(f"Cell {action} is already occupied")
        board = list(state.board)
        board[action] = state.player + 1
        return TicTacToeState(board=tuple(board), player=1 - state.player)

    def current_player(self, state: TicTacToeState) -> int:
        return state.player

    def terminal_value(self, state: TicTacToeState) -> Optional[float]:
        if self._winner(state.board) is not None:
            # The previous mover completed a line
            return -1.0
        if EMPTY not in state.board:
            return 0.0
        return None

    def encode(self, state: TicTacToeState) -> np.ndarray:
        board = np.array(state.board).reshape(3, 3)
        planes = np.zeros(self.observation_shape, dtype=np.float32)
        planes[0] = board == state.player + 1
        planes[1] = board == 2 - state.player
        planes[2] = float(state.player == 0)
        return planes

    def symmetries(self, state: TicTacToeState) -> List[Tuple[TicTacToeState, np.ndarray]]:
        result = []
        for perm in self._perms:
            board = [EMPTY] * 9
            for i, cell in enumerate(state.board):
                board[perm[i]] = cell
            result.append((TicTacToeState(tuple(board), state.player), perm))
        return result

    def heuristic_value(self, state: TicTacToeState) -> float:
        """Difference in open lines, scaled well below a terminal reward."""
        me, opponent = state.player + 1, 2 - state.player
        score = 0
        for line in LINES:
            cells = [state.board[i] for i in line]
            if opponent not in cells:
                score += cells.count(me)
            if me not in cells:
                score -= cells.count(opponent)
        return float(np.tanh(score / 8.0)) * 0.5

    def render(self, state: TicTacToeState) -> str:
        symbols = {0: '.', 1: 'X', 2: 'O'}
        rows = [''.join(symbols[c] for c in state.board[r * 3:r * 3 + 3]) for r in range(3)]
        return '\n'.join(rows)

    @staticmethod
    def _winner(board: Tuple[int, ...]) -> Optional[int]:
        for a, b, c in LINES:
            if board[a] != EMPTY and board[a] == board[b] == board[c]:
                return board[a]
        return None
