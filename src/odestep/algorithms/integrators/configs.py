"""Provide configuration classes for the integrators.

All configurations are frozen dataclasses validated on construction; an
invalid value raises
:class:`~odestep.algorithms.utils.exceptions.ConfigurationError`.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from odestep.algorithms.utils.config import MAX_STEPS, TOL
from odestep.algorithms.utils.exceptions import ConfigurationError


@dataclass(frozen=True)
class _EventConfig:
    """Configuration for a scalar event function g(t, y).

    Parameters
    ----------
    direction : int, default 0
        Crossing direction to detect:
        - 0: any sign change (g0 * g1 <= 0)
        - +1: only increasing crossings (g0 <= 0 and g1 >= 0)
        - -1: only decreasing crossings (g0 >= 0 and g1 <= 0)
    terminal : bool, default True
        When True, integration should stop at the first event.
    tol : float, default 1e-12
        Absolute time tolerance for root bracketing refinement.
    max_iter : int, default 50
        Maximum iterations of the bracketing refinement.
    """

    direction: int = 0
    terminal: bool = True
    tol: float = 1e-12
    max_iter: int = 50

    def __post_init__(self):
        if self.direction not in (-1, 0, 1):
            raise ConfigurationError(f"Event direction must be -1, 0 or +1, got {self.direction}")
        if not self.tol > 0.0:
            raise ConfigurationError(f"Event tolerance must be positive, got {self.tol}")
        if self.max_iter < 1:
            raise ConfigurationError(f"Event max_iter must be at least 1, got {self.max_iter}")


@dataclass(frozen=True)
class _FixedStepConfig:
    """Configuration of a fixed-step run.

    Parameters
    ----------
    step : float
        Magnitude of the step size.  The sign is taken from the integration
        direction; the last step is shortened to land on the final time.
    max_steps : int, default :data:`~odestep.algorithms.utils.config.MAX_STEPS`
        Maximum number of accepted steps.
    """

    step: float
    max_steps: int = MAX_STEPS

    def __post_init__(self):
        if not (np.isfinite(self.step) and self.step > 0.0):
            raise ConfigurationError(f"Fixed step must be positive and finite, got {self.step}")
        if self.max_steps < 1:
            raise ConfigurationError(f"max_steps must be at least 1, got {self.max_steps}")


@dataclass(frozen=True)
class _AdaptiveStepConfig:
    """Configuration of an adaptive run.

    Parameters
    ----------
    rtol, atol : float, default :data:`~odestep.algorithms.utils.config.TOL`
        Relative and absolute error tolerances.
    min_step : float or None, default None
        Lower bound on the step magnitude.  When *None* the bound is derived
        from machine precision at the current time.  A rejected step that
        would go below it raises
        :class:`~odestep.algorithms.utils.exceptions.ConvergenceError`.
    max_step : float, default inf
        Upper bound on the step magnitude.
    max_steps : int, default :data:`~odestep.algorithms.utils.config.MAX_STEPS`
        Maximum number of accepted steps.
    initial_step : float or None, default None
        First trial step magnitude.  Estimated from the problem when *None*.
    """

    rtol: float = TOL
    atol: float = TOL
    min_step: Optional[float] = None
    max_step: float = np.inf
    max_steps: int = MAX_STEPS
    initial_step: Optional[float] = None

    def __post_init__(self):
        if not (self.rtol > 0.0 and self.atol >= 0.0):
            raise ConfigurationError(f"Tolerances must satisfy rtol > 0 and atol >= 0, got rtol={self.rtol}, atol={self.atol}")
        if not self.max_step > 0.0:
            raise ConfigurationError(f"max_step must be positive, got {self.max_step}")
        if self.min_step is not None and not (0.0 <= self.min_step <= self.max_step):
            raise ConfigurationError(f"min_step must lie in [0, max_step], got {self.min_step}")
        if self.initial_step is not None and not (np.isfinite(self.initial_step) and self.initial_step > 0.0):
            raise ConfigurationError(f"initial_step must be positive and finite, got {self.initial_step}")
        if self.max_steps < 1:
            raise ConfigurationError(f"max_steps must be at least 1, got {self.max_steps}")
