"""Batched inference scheduler shared by concurrent searches.

Many search threads submit leaf states; one scheduler thread groups them
into batches and runs the inference capability once per batch.

Architecture:
    Worker 1 ──┐
    Worker 2 ──┼──► Pending queues ──► InferenceScheduler ──► Futures
    Worker 3 ──┤         (per model)            │
    Worker 4 ──┘                                ▼
                                       Batched forward pass

A batch is fired when:
    - a model has ``batch_size`` pending requests, or
    - every registered worker is blocked in ``wait`` (no further request can
      arrive, e.g. at the end of a wave of games), or ``min_blocked_workers``
      of them are, or
    - requests have been pending for ``batch_timeout`` seconds.
"""

import itertools
import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import (
    CapabilityError,
    FatalError,
    InferenceError,
    InferenceProtocolError,
    ResourceExhaustedError,
)
from ..mcts.evaluator import Evaluator, InferenceFuture

logger = logging.getLogger(__name__)


@dataclass
class InferenceRequest:
    """Request for a single state evaluation."""
    request_id: int
    model: str
    state: Any
    future: InferenceFuture


@dataclass
class SchedulerStats:
    """Counters reported when the scheduler stops."""
    total_requests: int = 0
    total_batches: int = 0
    retries: int = 0
    full_batches: int = 0
    blocked_batches: int = 0
    timeout_batches: int = 0

    @property
    def avg_batch_size(self) -> float:
        if self.total_batches == 0:
            return 0.0
        return self.total_requests / self.total_batches


class InferenceScheduler:
    """Single-consumer batching scheduler.

    Example:
        >>> with InferenceScheduler({"best": capability}, batch_size=64) as scheduler:
        ...     evaluator = BatchedEvaluator(scheduler, "best")
        ...     with scheduler.worker():
        ...         policy, value = evaluator.evaluate(state)
    """

    def __init__(
        self,
        capabilities: Dict[str, Any],
        batch_size: int = 64,
        batch_timeout: float = 0.01,
        name: str = "inference",
        min_blocked_workers: Optional[int] = None
    ):
        """Initialize scheduler.

        Args:
            capabilities: Inference capabilities keyed by model name
            batch_size: Target batch size
            batch_timeout: Seconds a partial batch may wait before it is fired
            name: Name of the scheduler thread
            min_blocked_workers: Blocked workers that fire a partial batch
                (capped at the live worker count); None waits for all live
                workers
        """
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        if min_blocked_workers is not None and min_blocked_workers < 1:
            raise ValueError("min_blocked_workers must be positive")
        self.capabilities = dict(capabilities)
        self.batch_size = batch_size
        self.batch_timeout = batch_timeout
        self.name = name
        self.min_blocked_workers = min_blocked_workers
        self.stats = SchedulerStats()

        self._cond = threading.Condition()
        self._pending: Dict[str, Deque[InferenceRequest]] = {
            model: deque() for model in self.capabilities
        }
        self._num_pending = 0
        self._live_workers = 0
        self._blocked_workers = 0
        self._max_batch = batch_size
        self._request_ids = itertools.count()
        self._running = False
        self._error: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> 'InferenceScheduler':
        with self._cond:
            if self._running:
                return self
            self._running = True
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.debug(f"Scheduler '{self.name}' started for models {list(self.capabilities)}")
        return self

    def stop(self) -> None:
        """Stop the scheduler thread and fail any request still pending."""
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._fail_pending(InferenceError(f"Scheduler '{self.name}' stopped"))
        logger.info(
            f"Scheduler '{self.name}': {self.stats.total_requests} requests in "
            f"{self.stats.total_batches} batches (avg {self.stats.avg_batch_size:.1f}, "
            f"retries {self.stats.retries})"
        )

    def __enter__(self) -> 'InferenceScheduler':
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def effective_batch_size(self) -> int:
        return self._max_batch

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def submit(self, state: Any, model: str) -> InferenceFuture:
        """Queue a request. Never blocks on inference.

        Raises:
            FatalError: If the scheduler failed earlier
            InferenceError: If the scheduler is not running
            KeyError: If ``model`` is unknown
        """
        with self._cond:
            if self._error is not None:
                raise self._error
            if not self._running:
                raise InferenceError(f"Scheduler '{self.name}' is not running")
            if model not in self._pending:
                raise KeyError(f"Unknown model '{model}'")
            future = InferenceFuture(next(self._request_ids))
            self._pending[model].append(InferenceRequest(future.request_id, model, state, future))
            self._num_pending += 1
            if self._num_pending == 1 or len(self._pending[model]) >= self._max_batch:
                self._cond.notify_all()
            return future

    @contextmanager
    def worker(self):
        """Register the calling thread as a live worker for the block."""
        with self._cond:
            self._live_workers += 1
        try:
            yield self
        finally:
            with self._cond:
                self._live_workers -= 1
                self._cond.notify_all()

    def wait(self, futures: Sequence[InferenceFuture]) -> List[Tuple[np.ndarray, float]]:
        """Block until all ``futures`` are resolved; the caller counts as blocked."""
        with self._cond:
            self._blocked_workers += 1
            self._cond.notify_all()
        try:
            for future in futures:
                future.wait()
        finally:
            with self._cond:
                self._blocked_workers -= 1
        return [future.result() for future in futures]

    # ------------------------------------------------------------------
    # Scheduler thread
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            with self._cond:
                model, trigger = self._next_batch()
                if model is None:
                    return
                queue = self._pending[model]
                batch = [queue.popleft() for _ in range(min(self._max_batch, len(queue)))]
                self._num_pending -= len(batch)

            if trigger == 'full':
                self.stats.full_batches += 1
            elif trigger == 'blocked':
                self.stats.blocked_batches += 1
            else:
                self.stats.timeout_batches += 1

            try:
                self._process(model, batch)
            except FatalError as e:
                self._fail(e, batch)
                return
            except Exception as e:
                error = InferenceError(f"Inference on model '{model}' failed: {e}")
                error.__cause__ = e
                self._fail(error, batch)
                return

    def _next_batch(self) -> Tuple[Optional[str], Optional[str]]:
        """Wait (holding the condition) until a batch should be fired."""
        deadline = None
        while True:
            if not self._running:
                return None, None

            full = [m for m, q in self._pending.items() if len(q) >= self._max_batch]
            if full:
                return full[0], 'full'

            if self._num_pending > 0:
                largest = max(self._pending, key=lambda m: len(self._pending[m]))
                if self._blocked_workers >= self._blocked_threshold():
                    return largest, 'blocked'
                now = time.monotonic()
                if deadline is None:
                    deadline = now + self.batch_timeout
                elif now >= deadline:
                    return largest, 'timeout'
                self._cond.wait(deadline - now)
            else:
                deadline = None
                self._cond.wait()

    def _blocked_threshold(self) -> int:
        if self.min_blocked_workers is None:
            return self._live_workers
        return min(self.min_blocked_workers, self._live_workers)

    def _process(self, model: str, batch: List[InferenceRequest]) -> None:
        states = [request.state for request in batch]
        results = self._infer_with_retry(model, states)

        for request, (policy, value) in zip(batch, results):
            request.future.set_result(policy, value)

        unresolved = [request.request_id for request in batch if not request.future.done()]
        if unresolved:
            raise InferenceProtocolError(f"Requests {unresolved} left unresolved after their batch")

        self.stats.total_requests += len(batch)
        self.stats.total_batches += 1
        logger.debug(f"Model '{model}': batch of {len(batch)}")

    def _infer_with_retry(self, model: str, states: List[Any]) -> List[Tuple[np.ndarray, float]]:
        """Run inference, retrying once with smaller batches on memory pressure."""
        try:
            return self._infer(model, states)
        except ResourceExhaustedError as e:
            if len(states) <= 1:
                raise InferenceError(
                    f"Model '{model}' out of memory on a single state") from e
            half = (len(states) + 1) // 2
            self._max_batch = max(1, min(self._max_batch, half))
            self.stats.retries += 1
            logger.warning(
                f"Model '{model}' out of memory on a batch of {len(states)}, "
                f"retrying in batches of {half}"
            )
        try:
            return self._infer(model, states[:half]) + self._infer(model, states[half:])
        except ResourceExhaustedError as e:
            raise InferenceError(
                f"Model '{model}' out of memory after retrying with batch size {half}") from e

    def _infer(self, model: str, states: List[Any]) -> List[Tuple[np.ndarray, float]]:
        results = list(self.capabilities[model].infer(states))
        if len(results) != len(states):
            raise CapabilityError(
                f"Model '{model}' returned {len(results)} results for {len(states)} states")

        checked = []
        for state, result in zip(states, results):
            try:
                policy, value = result
            except (TypeError, ValueError) as e:
                raise CapabilityError(f"Malformed inference result: {e}", state) from e
            policy = np.asarray(policy, dtype=np.float32)
            if policy.ndim != 1:
                raise CapabilityError(f"Policy has shape {policy.shape}", state)
            if not np.all(np.isfinite(policy)) or np.any(policy < 0):
                raise CapabilityError("Policy contains negative or non-finite entries", state)
            value = float(value)
            if not np.isfinite(value):
                raise CapabilityError(f"Value {value} is not finite", state)
            checked.append((policy, value))
        return checked

    def _fail(self, error: BaseException, batch: List[InferenceRequest]) -> None:
        logger.error(f"Scheduler '{self.name}' failed: {error}")
        with self._cond:
            self._error = error
            self._running = False
            self._cond.notify_all()
        for request in batch:
            request.future.set_exception(error)
        self._fail_pending(error)

    def _fail_pending(self, error: BaseException) -> None:
        with self._cond:
            requests = [r for queue in self._pending.values() for r in queue]
            for queue in self._pending.values():
                queue.clear()
            self._num_pending = 0
        for request in requests:
            request.future.set_exception(error)


class BatchedEvaluator(Evaluator):
    """Evaluator that routes requests through an ``InferenceScheduler``.

    Stateless apart from the scheduler reference, so one instance can be
    shared by all workers.
    """

    def __init__(self, scheduler: InferenceScheduler, model: str):
        self.scheduler = scheduler
        self.model = model

    def submit(self, state: Any) -> InferenceFuture:
        return self.scheduler.submit(state, self.model)

    def wait(self, futures: Sequence[InferenceFuture]) -> List[Tuple[np.ndarray, float]]:
        return self.scheduler.wait(futures)
