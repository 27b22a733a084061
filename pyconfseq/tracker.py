"""
Running mean and variance of a score stream.

Welford's algorithm keeps the mean and the sum of squared deviations
(``m2``) instead of raw sums, avoiding catastrophic cancellation over long
streams. States are immutable; the tracker keeps the whole history and is
queried by time, never rewound.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List

import numpy as np

from .exceptions import InsufficientDataError, NumericalInstabilityError


@dataclass(frozen=True)
class RunningState:
    """Count, mean and sum of squared deviations after ``n`` scores."""
    n: int = 0
    mean: float = 0.0
    m2: float = 0.0

    @property
    def variance(self) -> float:
        """Sample variance ``m2 / (n - 1)``; NaN below two scores."""
        if self.n < 2:
            return math.nan
        return self.m2 / (self.n - 1)


def update(state: RunningState, score: float) -> RunningState:
    """
    Fold one score into the running state (Welford step).

    Raises
    ------
    NumericalInstabilityError
        If the score is non-finite or the accumulated statistics become
        negative or non-finite.
    """
    score = float(score)
    if not math.isfinite(score):
        raise NumericalInstabilityError(f"non-finite score {score} at time {state.n + 1}")

    n = state.n + 1
    delta = score - state.mean
    mean = state.mean + delta / n
    m2 = state.m2 + delta * (score - mean)

    if not (math.isfinite(mean) and math.isfinite(m2)):
        raise NumericalInstabilityError(f"running statistics overflowed at time {n}")
    if m2 < 0:
        raise NumericalInstabilityError(f"negative sum of squared deviations at time {n}")

    return RunningState(n=n, mean=mean, m2=m2)


class SequentialTracker:
    """
    Append-only record of running states.

    ``state_at(t)`` returns the state after the first ``t`` scores. Replaying
    the same scores always gives identical states.
    """

    def __init__(self, scores: Iterable[float] = ()):
        self._states: List[RunningState] = [RunningState()]
        self.extend(scores)

    @property
    def n(self) -> int:
        return self._states[-1].n

    @property
    def state(self) -> RunningState:
        return self._states[-1]

    def push(self, score: float) -> RunningState:
        state = update(self._states[-1], score)
        self._states.append(state)
        return state

    def extend(self, scores: Iterable[float]) -> RunningState:
        for score in scores:
            self.push(score)
        return self._states[-1]

    def state_at(self, t: int) -> RunningState:
        if t < 0:
            raise InsufficientDataError(f"time must be non-negative, got {t}")
        if t > self.n:
            raise InsufficientDataError(f"time {t} exceeds the {self.n} scores observed")
        return self._states[t]

    @property
    def means(self) -> np.ndarray:
        """Running mean at times 1..n."""
        return np.array([s.mean for s in self._states[1:]])

    @property
    def variances(self) -> np.ndarray:
        """Running variance at times 1..n (NaN at time 1)."""
        return np.array([s.variance for s in self._states[1:]])

    def __len__(self):
        return self.n

    def __repr__(self):
        return f"SequentialTracker(n={self.n}, mean={self.state.mean:.6g})"
