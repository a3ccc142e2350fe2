"""Provide continuous extensions of explicit Runge-Kutta schemes.

Every scheme defines a weight polynomial ``w_i(theta)`` per stage, with
``w_i(1) = b_i``, stored as a coefficient table ``P`` where
``w_i(theta) = sum_j P[i, j] * theta**(j + 1)``.  The dense output is
evaluated backward from the end of the step::

    y(theta) = y_end - h * sum_i (w_i(1) - w_i(theta)) * k_i

so the end-of-step state is reproduced exactly at ``theta = 1``.

References
----------
Hairer, E.; Norsett, S.; Wanner, G. (1993). "Solving Ordinary Differential
Equations I", section II.6.
"""

from typing import List, Optional

import numba
import numpy as np

from odestep.algorithms.coefficients.euler import P as EULER_P
from odestep.algorithms.coefficients.midpoint import \
    P as MIDPOINT_P
from odestep.algorithms.coefficients.rk4 import P as RK4_P
from odestep.algorithms.coefficients.rk45 import P as RK45_P
from odestep.algorithms.interpolators.base import _StepData, _StepInterpolator
from odestep.algorithms.utils.config import FASTMATH
from odestep.algorithms.utils.exceptions import ConfigurationError


@numba.njit(cache=False, fastmath=FASTMATH)
def rk_dense_jit_kernel(y_end, K, P, h, theta, out_state, out_deriv):
    s = P.shape[0]
    m = P.shape[1]
    n = y_end.size
    for d in range(n):
        out_state[d] = y_end[d]
        out_deriv[d] = 0.0
    for i in range(s):
        remaining = 0.0
        slope = 0.0
        pw = 1.0
        for c in range(m):
            coeff = P[i, c]
            slope += coeff * (c + 1) * pw
            pw *= theta
            remaining += coeff * (1.0 - pw)
        if remaining != 0.0 or slope != 0.0:
            for d in range(n):
                out_state[d] -= h * remaining * K[i, d]
                out_deriv[d] += slope * K[i, d]


class _RungeKuttaStepInterpolator(_StepInterpolator):
    """Interpolate with the continuous extension of a Runge-Kutta scheme.

    The stage derivatives of the accepted step are copied into an ``(s, n)``
    array which is reused across steps of the same run.

    Attributes
    ----------
    _P : numpy.ndarray of shape (s, m)
        Weight polynomial coefficients of the scheme.
    """

    _P: np.ndarray = None

    def __init__(self, *, extrapolate: bool = True):
        super().__init__(extrapolate=extrapolate)
        self._K: Optional[np.ndarray] = None

    @property
    def n_stages(self) -> int:
        return self._P.shape[0]

    def _bind_step(self, step: _StepData) -> None:
        if step.stages is None:
            raise ConfigurationError(f"{type(self).__name__} needs the stage derivatives of the step")
        stages = np.asarray(step.stages, dtype=np.float64)
        expected = (self.n_stages, self._current_state.size)
        if stages.shape != expected:
            raise ConfigurationError(
                f"{type(self).__name__} expects stages of shape {expected}, got {stages.shape}"
            )
        if self._K is None or self._K.shape != expected:
            self._K = stages.copy()
        else:
            np.copyto(self._K, stages)

    def _compute_interpolated_state(self, theta: float, one_minus_theta_h: float) -> None:
        rk_dense_jit_kernel(
            self._current_state, self._K, self._P, self._h, theta,
            self._interpolated_state, self._interpolated_derivatives,
        )

    def _copy_from(self, other: "_RungeKuttaStepInterpolator") -> None:
        super()._copy_from(other)
        self._K = None if other._K is None else other._K.copy()

    def _payload(self) -> List[np.ndarray]:
        return [] if self._K is None or not self._finalized else [self._K]

    def _restore_payload(self, arrays: List[np.ndarray]) -> None:
        if not arrays:
            if self._finalized:
                raise ValueError("Stage payload is missing for a finalized step")
            return
        if self._current_state is None:
            raise ValueError("Stage payload given without a state")
        if len(arrays) != 1:
            raise ValueError(f"Runge-Kutta payload must hold 1 array, got {len(arrays)}")
        expected = (self.n_stages, self._current_state.size)
        if arrays[0].shape != expected:
            raise ValueError(f"Stage array has shape {arrays[0].shape}, expected {expected}")
        self._K = np.array(arrays[0], dtype=np.float64)


class _EulerStepInterpolator(_RungeKuttaStepInterpolator):
    """Linear interpolation between the ends of an Euler step."""
    _tag = "euler"
    _P = EULER_P


class _MidpointStepInterpolator(_RungeKuttaStepInterpolator):
    """Quadratic continuous extension of the explicit midpoint method."""
    _tag = "midpoint"
    _P = MIDPOINT_P


class _RK4StepInterpolator(_RungeKuttaStepInterpolator):
    """Cubic continuous extension of the classical fourth-order method."""
    _tag = "rk4"
    _P = RK4_P


class _DormandPrince54StepInterpolator(_RungeKuttaStepInterpolator):
    """Fourth-order dense output of the Dormand-Prince 5(4) pair.

    Uses the seven stages of the step, the last being the first-same-as-last
    evaluation at the end of the step.
    """
    _tag = "dopri5"
    _P = RK45_P
