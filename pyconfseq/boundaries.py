"""
Anytime-valid confidence sequences from a running score mean.

The boundary is the two-sided Gaussian-mixture (predictable mixture)
boundary applied to the variance-standardised sum of scores. Mixing the
exponential supermartingale ``exp(lambda * S_t - lambda^2 * t / 2)`` over
``lambda ~ N(0, rho2)`` gives a nonnegative supermartingale, and Ville's
inequality turns it into a radius valid at all times simultaneously:

    g(t)  = 2 (t rho2 + 1) / (t rho2) * log( sqrt(t rho2 + 1) / alpha )
    r(t)  = sqrt( v_hat(t) * g(t) / t )

``rho2`` is tuned once so that ``r(t_opt)`` is as small as possible.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

import numpy as np
from scipy.special import lambertw

from .constants import DEFAULT_ALPHA
from .exceptions import ConfigurationError, InsufficientDataError, NumericalInstabilityError
from .tracker import SequentialTracker


@dataclass(frozen=True)
class ConfSeqPoint:
    """Interval reported at one time."""
    time: int
    center: float
    radius: float
    lower: float
    upper: float

    @classmethod
    def from_radius(cls, time: int, center: float, radius: float) -> "ConfSeqPoint":
        return cls(time=time, center=center, radius=radius, lower=center - radius, upper=center + radius)

    @property
    def width(self) -> float:
        return self.upper - self.lower

    def covers(self, value: float) -> bool:
        return self.lower <= value <= self.upper


def _check_alpha(alpha: float) -> None:
    if not 0 < alpha < 1:
        raise ConfigurationError(f"alpha must be in (0, 1), got {alpha}")


def optimal_rho2(t_opt: float, alpha: float = DEFAULT_ALPHA) -> float:
    """
    Mixture variance minimising the radius at ``t_opt``.

    With ``u = t_opt * rho2`` the radius at ``t_opt`` is proportional to
    ``(u + 1) / u * (log(u + 1) / 2 - log(alpha))``, which is minimised where
    ``u - log(1 + u) = -2 log(alpha)``, i.e.
    ``u = -W_{-1}(-alpha^2 / e) - 1`` with ``W_{-1}`` the lower branch of
    the Lambert W function.

    Parameters
    ----------
    t_opt : float
        Time at which the width is minimised.
    alpha : float
        Miscoverage budget.

    Returns
    -------
    float
        ``rho2 > 0``.
    """
    _check_alpha(alpha)
    if not t_opt > 0:
        raise ConfigurationError(f"t_opt must be positive, got {t_opt}")
    u = -float(np.real(lambertw(-alpha ** 2 / math.e, k=-1))) - 1.0
    return u / t_opt


def mixture_log_factor(t, alpha: float, rho2: float):
    """``g(t, alpha, rho2)``; vectorised over ``t``."""
    t_rho2 = np.asarray(t, dtype=float) * rho2
    return 2.0 * (t_rho2 + 1.0) / t_rho2 * np.log(np.sqrt(t_rho2 + 1.0) / alpha)


def mixture_radius(t, variance, alpha: float, rho2: float):
    """Radius ``sqrt(variance * g(t) / t)``; vectorised over ``t`` and ``variance``."""
    t = np.asarray(t, dtype=float)
    return np.sqrt(np.asarray(variance, dtype=float) * mixture_log_factor(t, alpha, rho2) / t)


def validate_times(times: Iterable[int], n: int, allow_small: bool = False) -> List[int]:
    """
    Check reporting times against a stream of ``n`` scores.

    Raises
    ------
    ConfigurationError
        If ``times`` is empty, contains non-integers or values below 1, or
        is not strictly increasing.
    InsufficientDataError
        If a time exceeds ``n``, or is below 2 while ``allow_small`` is off.
    """
    times = list(times)
    if not times:
        raise ConfigurationError("times must contain at least one time")

    checked = []
    for t in times:
        try:
            integral = not isinstance(t, bool) and float(t).is_integer()
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"times must be integers, got {t!r}") from exc
        if not integral:
            raise ConfigurationError(f"times must be integers, got {t!r}")
        checked.append(int(t))

    if checked[0] < 1:
        raise ConfigurationError(f"times must be positive, got {checked[0]}")
    if any(b <= a for a, b in zip(checked, checked[1:])):
        raise ConfigurationError("times must be strictly increasing")
    if checked[-1] > n:
        raise InsufficientDataError(f"time {checked[-1]} exceeds the {n} scores observed")
    if not allow_small and checked[0] < 2:
        raise InsufficientDataError("variance is undefined before time 2; set max_radius to report it")
    return checked


class ConfidenceSequenceEngine:
    """
    Turn running statistics into anytime-valid intervals.

    Parameters
    ----------
    alpha : float
        Miscoverage budget: the true mean lies outside the reported
        interval at some time with probability at most ``alpha``.
    t_opt : float
        Time at which the width is minimised.
    max_radius : float, optional
        Radius at times where the variance is undefined (t < 2). Later
        radii are never capped by it. ``None`` makes such times an
        ``InsufficientDataError``.
    rho2 : float, optional
        Mixture variance; defaults to ``optimal_rho2(t_opt, alpha)``.
    """

    def __init__(self, alpha: float = DEFAULT_ALPHA, t_opt: float = 1.0,
                 max_radius: Optional[float] = None, rho2: Optional[float] = None):
        _check_alpha(alpha)
        if rho2 is not None and not rho2 > 0:
            raise ConfigurationError(f"rho2 must be positive, got {rho2}")
        if max_radius is not None and not max_radius > 0:
            raise ConfigurationError(f"max_radius must be positive, got {max_radius}")

        self.alpha = alpha
        self.t_opt = t_opt
        self.max_radius = max_radius
        self.rho2 = optimal_rho2(t_opt, alpha) if rho2 is None else float(rho2)

    def radius(self, t: int, variance: float) -> float:
        """Radius at time ``t`` for running variance ``variance``."""
        if t < 2:
            if self.max_radius is None:
                raise InsufficientDataError(f"variance is undefined at time {t}")
            return self.max_radius

        if not math.isfinite(variance) or variance < 0:
            raise NumericalInstabilityError(f"invalid variance estimate {variance} at time {t}")

        return float(mixture_radius(t, variance, self.alpha, self.rho2))

    def point(self, tracker: SequentialTracker, t: int) -> ConfSeqPoint:
        state = tracker.state_at(t)
        return ConfSeqPoint.from_radius(t, state.mean, self.radius(t, state.variance))

    def points(self, tracker: SequentialTracker, times: Optional[Sequence[int]] = None) -> List[ConfSeqPoint]:
        """
        Intervals at each requested time; every time from the first
        reportable one to ``tracker.n`` when ``times`` is None.
        """
        allow_small = self.max_radius is not None
        if times is None:
            times = range(1 if allow_small else 2, tracker.n + 1)
            if not times:
                raise InsufficientDataError(f"no reportable time among {tracker.n} scores")
        times = validate_times(times, tracker.n, allow_small)
        return [self.point(tracker, t) for t in times]

    def __repr__(self):
        return f"ConfidenceSequenceEngine(alpha={self.alpha}, t_opt={self.t_opt}, rho2={self.rho2:.6g})"
