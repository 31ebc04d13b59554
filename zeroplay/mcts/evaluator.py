"""Evaluator interface between tree search and state evaluation.

A search submits leaf states and later waits for their results. Submission
never blocks on inference; waiting is the only point where a search thread
suspends. Evaluators that can answer immediately return completed futures.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import InferenceProtocolError
from ..games.base import Game


class InferenceFuture:
    """Single-assignment response slot for one evaluation request."""

    __slots__ = ['request_id', '_event', '_lock', '_result', '_exception']

    def __init__(self, request_id: int = -1):
        self.request_id = request_id
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._result: Optional[Tuple[np.ndarray, float]] = None
        self._exception: Optional[BaseException] = None

    @classmethod
    def completed(cls, policy: np.ndarray, value: float) -> 'InferenceFuture':
        future = cls()
        future.set_result(policy, value)
        return future

    def set_result(self, policy: np.ndarray, value: float) -> None:
        """Fulfil the request.

        Raises:
            InferenceProtocolError: If the request was already resolved
        """
        with self._lock:
            if self._event.is_set():
                raise InferenceProtocolError(f"Request {self.request_id} resolved twice")
            self._result = (policy, float(value))
            self._event.set()

    def set_exception(self, exc: BaseException) -> bool:
        """Fail the request. Returns False if it was already resolved."""
        with self._lock:
            if self._event.is_set():
                return False
            self._exception = exc
            self._event.set()
            return True

    def done(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def result(self, timeout: Optional[float] = None) -> Tuple[np.ndarray, float]:
        """Return ``(policy, value)``, re-raising the failure if there was one."""
        if not self._event.wait(timeout):
            raise TimeoutError(f"Request {self.request_id} not resolved within {timeout}s")
        if self._exception is not None:
            raise self._exception
        return self._result


class Evaluator(ABC):
    """Source of (policy, value) estimates for leaf states.

    Policies cover the full action space; values are from the perspective
    of the player to move.
    """

    @abstractmethod
    def submit(self, state: Any) -> InferenceFuture:
        """Queue ``state`` for evaluation without blocking on the result."""
        pass

    def wait(self, futures: Sequence[InferenceFuture]) -> List[Tuple[np.ndarray, float]]:
        """Block until every future is resolved and return their results."""
        return [future.result() for future in futures]

    def evaluate(self, state: Any) -> Tuple[np.ndarray, float]:
        """Evaluate a single state synchronously."""
        return self.wait([self.submit(state)])[0]


class DirectEvaluator(Evaluator):
    """Calls an inference capability immediately, one state at a time.

    Useful for single-threaded play and tests. Self-play goes through the
    batched scheduler instead.
    """

    def __init__(self, capability):
        self.capability = capability

    def submit(self, state: Any) -> InferenceFuture:
        (policy, value), = self.capability.infer([state])
        return InferenceFuture.completed(policy, value)


class UniformEvaluator(Evaluator):
    """Uniform policy over legal actions and zero value."""

    def __init__(self, game: Game):
        self.game = game

    def submit(self, state: Any) -> InferenceFuture:
        policy = self.game.legal_mask(state)
        total = policy.sum()
        if total > 0:
            policy = policy / total
        return InferenceFuture.completed(policy, 0.0)


class RolloutEvaluator(Evaluator):
    """Uniform policy, value estimated by a random playout.

    Not thread-safe: give each worker its own instance.
    """

    def __init__(self, game: Game, rng: Optional[np.random.Generator] = None, max_moves: int = 512):
        self.game = game
        self.rng = rng if rng is not None else np.random.default_rng()
        self.max_moves = max_moves

    def submit(self, state: Any) -> InferenceFuture:
        policy = self.game.legal_mask(state)
        policy = policy / max(policy.sum(), 1.0)
        return InferenceFuture.completed(policy, self.rollout(state))

    def rollout(self, state: Any) -> float:
        """Play uniformly random moves to the end; value for the player to move in ``state``."""
        game = self.game
        player = game.current_player(state)
        for _ in range(self.max_moves):
            outcome = game.terminal_value(state)
            if outcome is not None:
                return outcome if game.current_player(state) == player else -outcome
            actions = game.legal_actions(state)
            state = game.apply(state, actions[self.rng.integers(len(actions))])
        outcome = game.terminal_value(state)
        if outcome is None:
            return 0.0
        return outcome if game.current_player(state) == player else -outcome
