"""Schedules: values that vary with an integer index.

A schedule is a pure function of an index. Depending on where it is used the
index is the training iteration (buffer capacity, exploration noise,
learning rate) or the move number inside a game (temperature).
"""

import bisect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Tuple, Union


class Schedule(ABC):
    """Base class for all schedules."""

    @abstractmethod
    def __call__(self, index: int) -> Any:
        pass


@dataclass(frozen=True)
class ConstSchedule(Schedule):
    """A schedule that always returns the same value."""
    value: Any

    def __call__(self, index: int) -> Any:
        return self.value


@dataclass(frozen=True)
class StepSchedule(Schedule):
    """Piecewise-constant schedule.

    Returns ``start`` before the first breakpoint, then ``values[k]`` once
    the index reaches ``change_at[k]``.

    Example:
        >>> s = StepSchedule(start=1.0, change_at=(10,), values=(0.5,))
        >>> s(9), s(10), s(100)
        (1.0, 0.5, 0.5)
    """
    start: Any
    change_at: Tuple[int, ...] = ()
    values: Tuple[Any, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'change_at', tuple(self.change_at))
        object.__setattr__(self, 'values', tuple(self.values))
        if len(self.change_at) != len(self.values):
            raise ValueError("change_at and values must have the same length")
        if list(self.change_at) != sorted(self.change_at):
            raise ValueError("change_at must be sorted")

    def __call__(self, index: int) -> Any:
        k = bisect.bisect_right(self.change_at, index)
        if k == 0:
            return self.start
        return self.values[k - 1]


@dataclass(frozen=True)
class PiecewiseLinearSchedule(Schedule):
    """Linear interpolation between control points.

    Outside the control points the first and last values are held constant.
    When every control value is an integer the result is rounded to an
    integer (so it can be used for buffer capacities).
    """
    xs: Tuple[int, ...]
    ys: Tuple[Any, ...]

    def __post_init__(self):
        object.__setattr__(self, 'xs', tuple(self.xs))
        object.__setattr__(self, 'ys', tuple(self.ys))
        if not self.xs or len(self.xs) != len(self.ys):
            raise ValueError("xs and ys must be non-empty and of equal length")
        if any(b <= a for a, b in zip(self.xs, self.xs[1:])):
            raise ValueError("xs must be strictly increasing")

    def __call__(self, index: int) -> Any:
        xs, ys = self.xs, self.ys
        if index <= xs[0]:
            value = ys[0]
        elif index >= xs[-1]:
            value = ys[-1]
        else:
            k = bisect.bisect_right(xs, index)
            x0, x1 = xs[k - 1], xs[k]
            y0, y1 = ys[k - 1], ys[k]
            value = y0 + (y1 - y0) * (index - x0) / (x1 - x0)
        if all(isinstance(y, int) for y in ys):
            return int(round(value))
        return value


ScheduleLike = Union[Schedule, int, float]


def as_schedule(value: ScheduleLike) -> Schedule:
    """Wrap a plain number into a ``ConstSchedule``."""
    if isinstance(value, Schedule):
        return value
    return ConstSchedule(value)
