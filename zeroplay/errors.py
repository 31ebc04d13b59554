"""Exception hierarchy for the search and training pipeline.

Errors deriving from ``FatalError`` abort the current training iteration.
Everything else raised inside a self-play worker is treated as a local
failure: the game is discarded and replayed.
"""

from typing import Any, Optional


class ZeroPlayError(Exception):
    """Base class for all errors raised by zeroplay."""


class FatalError(ZeroPlayError):
    """An error that must abort the current iteration."""


class CapabilityError(FatalError):
    """A game or inference capability returned malformed data.

    Attributes:
        state: The state being processed when the violation was detected
    """

    def __init__(self, message: str, state: Any = None):
        super().__init__(message)
        self.state = state

    def __str__(self) -> str:
        message = super().__str__()
        if self.state is None:
            return message
        return f"{message} (state={self.state!r})"


class ResourceExhaustedError(ZeroPlayError):
    """Inference failed because the accelerator ran out of memory."""


class InferenceError(FatalError):
    """Inference could not be completed (including a failed retry)."""


class InferenceProtocolError(FatalError):
    """A request was resolved twice, or left unresolved after its batch."""


class NumericalDivergenceError(FatalError):
    """The training loss became NaN or infinite."""


class SearchError(FatalError):
    """Tree statistics are inconsistent (e.g. virtual loss underflow)."""


class WorkerPoolError(FatalError):
    """Too many games failed inside the worker pool."""


class TrainingAborted(ZeroPlayError):
    """A training iteration failed.

    The last checkpoint on disk is left untouched; resume from it with
    ``TrainingCoordinator.resume``.

    Attributes:
        iteration: Index of the iteration that failed
        phase: Name of the phase the coordinator was in
    """

    def __init__(self, iteration: int, phase: str, cause: Optional[BaseException] = None):
        message = f"Training aborted in iteration {iteration} during {phase}"
        if cause is not None:
            message = f"{message}: {type(cause).__name__}: {cause}"
        super().__init__(message)
        self.iteration = iteration
        self.phase = phase
