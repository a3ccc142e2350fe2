"""Provide a cubic Hermite step interpolator.

The interpolant matches the state and its derivative at both ends of the
step.  It is third-order accurate and works with any one-step scheme, which
makes it the natural dense output for fixed-step methods whose own
continuous extension is unknown or too coarse.
"""

from typing import List, Optional

import numba
import numpy as np

from odestep.algorithms.interpolators.base import _StepData, _StepInterpolator
from odestep.algorithms.utils.config import FASTMATH
from odestep.algorithms.utils.exceptions import (ConfigurationError,
                                                 EvaluationError)


@numba.njit(cache=False, fastmath=FASTMATH)
def _hermite_kernel(y0, f0, y1, f1, h, s, out_state, out_deriv):
    s2 = s * s
    s3 = s2 * s
    h00 = 2.0 * s3 - 3.0 * s2 + 1.0
    h10 = s3 - 2.0 * s2 + s
    h01 = -2.0 * s3 + 3.0 * s2
    h11 = s3 - s2
    d00 = 6.0 * s2 - 6.0 * s
    d10 = 3.0 * s2 - 4.0 * s + 1.0
    d11 = 3.0 * s2 - 2.0 * s
    for i in range(y1.size):
        out_state[i] = h00 * y0[i] + h10 * h * f0[i] + h01 * y1[i] + h11 * h * f1[i]
        if h != 0.0:
            out_deriv[i] = d00 * (y0[i] - y1[i]) / h + d10 * f0[i] + d11 * f1[i]
        else:
            out_deriv[i] = f1[i]


class _HermiteStepInterpolator(_StepInterpolator):
    """Interpolate with a cubic Hermite polynomial through both step ends.

    Parameters
    ----------
    extrapolate : bool, default False
        Hermite polynomials degrade quickly outside the step, so queries
        outside ``[previous_time, current_time]`` are rejected by default.

    Notes
    -----
    The derivative at the end of the step may be omitted from the step data.
    It is then evaluated from the derivative provider on the first query or
    in :func:`~odestep.algorithms.interpolators.base._StepInterpolator.finalize_step`,
    and any exception raised by the provider propagates to the caller.
    """

    _tag = "hermite"

    def __init__(self, *, extrapolate: bool = False):
        super().__init__(extrapolate=extrapolate)
        self._y0: Optional[np.ndarray] = None
        self._f0: Optional[np.ndarray] = None
        self._f1: Optional[np.ndarray] = None
        self._f1_known = False
        self._rhs = None

    def _bind_step(self, step: _StepData) -> None:
        if step.start_state is None or step.start_derivative is None:
            raise ConfigurationError(
                "Hermite interpolation needs the start state and start derivative of the step"
            )
        if step.end_derivative is None and step.rhs is None:
            raise ConfigurationError(
                "Hermite interpolation needs the end derivative or a derivative provider"
            )
        n = self._current_state.size
        self._y0 = _store(self._y0, step.start_state, n)
        self._f0 = _store(self._f0, step.start_derivative, n)
        if self._f1 is None or self._f1.size != n:
            self._f1 = np.empty(n, dtype=np.float64)
        if step.end_derivative is not None:
            self._f1 = _store(self._f1, step.end_derivative, n)
            self._f1_known = True
            self._rhs = None
        else:
            self._f1_known = False
            self._rhs = step.rhs

    def _ensure_end_derivative(self) -> None:
        if self._f1_known:
            return
        f1 = np.asarray(self._rhs(self._current_time, self._current_state.copy()), dtype=np.float64)
        if f1.shape != self._current_state.shape:
            raise EvaluationError(
                f"End-of-step derivative has shape {f1.shape}, expected {self._current_state.shape}"
            )
        np.copyto(self._f1, f1)
        self._f1_known = True
        self._rhs = None

    def _do_finalize(self) -> None:
        self._ensure_end_derivative()

    def _compute_interpolated_state(self, theta: float, one_minus_theta_h: float) -> None:
        self._ensure_end_derivative()
        _hermite_kernel(
            self._y0, self._f0, self._current_state, self._f1, self._h, theta,
            self._interpolated_state, self._interpolated_derivatives,
        )

    def _copy_from(self, other: "_HermiteStepInterpolator") -> None:
        super()._copy_from(other)
        self._y0 = None if other._y0 is None else other._y0.copy()
        self._f0 = None if other._f0 is None else other._f0.copy()
        self._f1 = None if other._f1 is None else other._f1.copy()
        self._f1_known = other._f1_known
        self._rhs = other._rhs

    def _payload(self) -> List[np.ndarray]:
        if not self._finalized:
            return []
        self._ensure_end_derivative()
        return [self._y0, self._f0, self._f1]

    def _restore_payload(self, arrays: List[np.ndarray]) -> None:
        if not arrays:
            if self._finalized:
                raise ValueError("Hermite payload is missing for a finalized step")
            return
        if self._current_state is None:
            raise ValueError("Hermite payload given without a state")
        if len(arrays) != 3:
            raise ValueError(f"Hermite payload must hold 3 arrays, got {len(arrays)}")
        n = self._current_state.size
        for arr in arrays:
            if arr.shape != (n,):
                raise ValueError(f"Hermite payload array has shape {arr.shape}, expected ({n},)")
        self._y0, self._f0, self._f1 = (np.array(a, dtype=np.float64) for a in arrays)
        self._f1_known = True
        self._rhs = None


def _store(buf: Optional[np.ndarray], values, n: int) -> np.ndarray:
    values = np.asarray(values, dtype=np.float64)
    if values.shape != (n,):
        raise ConfigurationError(f"Step data has shape {values.shape}, expected ({n},)")
    if buf is None or buf.size != n:
        return values.copy()
    np.copyto(buf, values)
    return buf
