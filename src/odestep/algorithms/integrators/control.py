"""Provide step-size controllers for the integration loop.

A controller owns the step-size policy of a run: it proposes the first trial
step, measures the local error of a trial step against the tolerances,
decides acceptance and proposes the next trial step.  The integration loop
only talks to the :class:`~odestep.algorithms.integrators.control._StepController`
interface.

References
----------
Hairer, E.; Norsett, S.; Wanner, G. (1993). "Solving Ordinary Differential
Equations I", section II.4.

Gustafsson, K. (1991). "Control theoretic techniques for stepsize selection
in explicit Runge-Kutta methods".
"""

from abc import ABC, abstractmethod
from typing import Callable

import numba
import numpy as np

from odestep.algorithms.integrators.configs import (_AdaptiveStepConfig,
                                                    _FixedStepConfig)
from odestep.algorithms.utils.config import (FASTMATH, MAX_FACTOR, MIN_FACTOR,
                                             SAFETY)
from odestep.algorithms.utils.exceptions import ConvergenceError


@numba.njit(cache=False, fastmath=FASTMATH)
def _rms_error_norm(err_vec, y_old, y_new, rtol, atol):
    n = err_vec.size
    acc = 0.0
    for i in range(n):
        scale = atol + rtol * max(abs(y_old[i]), abs(y_new[i]))
        r = err_vec[i] / scale
        acc += r * r
    return np.sqrt(acc / n)


class _StepController(ABC):
    """Define the step-size policy contract used by the integration loop."""

    @property
    @abstractmethod
    def is_adaptive(self) -> bool:
        pass

    @property
    @abstractmethod
    def max_steps(self) -> int:
        pass

    @property
    def max_step(self) -> float:
        return np.inf

    def reset(self) -> None:
        """Forget the history of a previous run."""

    @abstractmethod
    def initial_step(
        self,
        f: Callable[[float, np.ndarray], np.ndarray],
        t0: float,
        y0: np.ndarray,
        f0: np.ndarray,
        order: int,
    ) -> float:
        """Return the magnitude of the first trial step."""

    @abstractmethod
    def error_norm(self, err_vec: np.ndarray, y_old: np.ndarray, y_new: np.ndarray) -> float:
        """Return the scaled error norm of a trial step; <= 1 means acceptable."""

    def accept(self, err_norm: float) -> bool:
        return err_norm <= 1.0

    @abstractmethod
    def next_step(self, h: float, err_norm: float, order: int, t: float) -> float:
        """Return the magnitude of the trial step following an accepted step of size *h*."""

    @abstractmethod
    def reject(self, h: float, err_norm: float, order: int, t: float) -> float:
        """Return the reduced magnitude after a rejected step of size *h*.

        Raises
        ------
        :class:`~odestep.algorithms.utils.exceptions.ConvergenceError`
            If the reduced step falls under the minimum step size.
        """


class _FixedStepController(_StepController):
    """Always accept, always propose the configured step.

    Parameters
    ----------
    config : :class:`~odestep.algorithms.integrators.configs._FixedStepConfig`
        Step magnitude and step budget.
    """

    def __init__(self, config: _FixedStepConfig):
        self._config = config

    @property
    def is_adaptive(self) -> bool:
        return False

    @property
    def max_steps(self) -> int:
        return self._config.max_steps

    @property
    def step(self) -> float:
        return self._config.step

    def initial_step(self, f, t0, y0, f0, order) -> float:
        return self._config.step

    def error_norm(self, err_vec, y_old, y_new) -> float:
        return 0.0

    def next_step(self, h, err_norm, order, t) -> float:
        return self._config.step

    def reject(self, h, err_norm, order, t) -> float:
        raise ConvergenceError(f"Fixed-step controller cannot reject a step (t={t!r}, h={h!r})")


class _PIController(_StepController):
    """Proportional-integral step-size controller.

    Parameters
    ----------
    config : :class:`~odestep.algorithms.integrators.configs._AdaptiveStepConfig`
        Tolerances and step bounds.

    Attributes
    ----------
    SAFETY, MIN_FACTOR, MAX_FACTOR : float
        Magic constants used by the PI controller.  They follow SciPy's
        implementation and the recommendations by Hairer et al.

    Notes
    -----
    After a rejection the following accepted step is not allowed to grow.
    """

    SAFETY = SAFETY
    MIN_FACTOR = MIN_FACTOR
    MAX_FACTOR = MAX_FACTOR

    def __init__(self, config: _AdaptiveStepConfig):
        self._config = config
        self._err_prev = -1.0
        self._rejected = False

    @property
    def is_adaptive(self) -> bool:
        return True

    @property
    def max_steps(self) -> int:
        return self._config.max_steps

    @property
    def max_step(self) -> float:
        return self._config.max_step

    @property
    def rtol(self) -> float:
        return self._config.rtol

    @property
    def atol(self) -> float:
        return self._config.atol

    def reset(self) -> None:
        self._err_prev = -1.0
        self._rejected = False

    def min_step(self, t: float) -> float:
        if self._config.min_step is not None:
            return self._config.min_step
        return 10.0 * np.finfo(float).eps * max(1.0, abs(t))

    def initial_step(self, f, t0, y0, f0, order) -> float:
        if self._config.initial_step is not None:
            return min(self._config.initial_step, self._config.max_step)
        # simple heuristic (Hairer et al., without the extra Euler evaluation)
        scale0 = self._config.atol + self._config.rtol * np.abs(y0)
        d0 = np.linalg.norm(y0 / scale0) / np.sqrt(y0.size)
        d1 = np.linalg.norm(f0 / scale0) / np.sqrt(y0.size)
        h = 1e-6 if (d0 < 1e-5 or d1 < 1e-5) else 0.01 * d0 / d1
        h = min(h, self._config.max_step)
        return max(h, self.min_step(t0))

    def error_norm(self, err_vec, y_old, y_new) -> float:
        return float(_rms_error_norm(err_vec, y_old, y_new, self._config.rtol, self._config.atol))

    def next_step(self, h, err_norm, order, t) -> float:
        beta = 1.0 / (order + 1)
        alpha = 0.4 * beta
        if err_norm == 0.0:
            factor = self.MAX_FACTOR
        elif self._err_prev < 0:
            factor = self.SAFETY * (err_norm ** (-beta))
        else:
            factor = self.SAFETY * (err_norm ** (-beta)) * (self._err_prev ** alpha)
        factor = min(max(factor, self.MIN_FACTOR), self.MAX_FACTOR)
        if self._rejected:
            factor = min(factor, 1.0)
            self._rejected = False
        self._err_prev = max(err_norm, 1e-4)
        h_new = min(h * factor, self._config.max_step)
        h_min = self.min_step(t)
        if h_new < h_min:
            raise ConvergenceError(
                f"Step size underflow at t={t!r}: proposed step {h_new:.3e} < minimum {h_min:.3e}"
            )
        return h_new

    def reject(self, h, err_norm, order, t) -> float:
        err_exp = 1.0 / (order + 1)
        factor = max(self.MIN_FACTOR, self.SAFETY * (err_norm ** (-err_exp))) if np.isfinite(err_norm) else self.MIN_FACTOR
        self._rejected = True
        h_new = h * factor
        h_min = self.min_step(t)
        if h_new < h_min:
            raise ConvergenceError(
                f"Step size underflow at t={t!r}: required step {h_new:.3e} < minimum {h_min:.3e} "
                f"(error norm {err_norm:.3e})"
            )
        return h_new
