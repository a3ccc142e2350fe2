"""Provide a step interpolator that does not interpolate."""

import numpy as np

from odestep.algorithms.interpolators.base import _StepInterpolator


class _DummyStepInterpolator(_StepInterpolator):
    """Return the end-of-step state for every requested time.

    This zero-order hold is meant for step handlers that only inspect step
    endpoints.  The interpolated state is never recomputed: it is the state
    at the end of the current step whatever the interpolated time, including
    times far outside the step.  No clamping is applied and extrapolation is
    always permitted.
    """

    _tag = "dummy"
    _interpolates = False

    def __init__(self, *, extrapolate: bool = True):
        super().__init__(extrapolate=True)

    def _compute_interpolated_state(self, theta: float, one_minus_theta_h: float) -> None:
        np.copyto(self._interpolated_state, self._current_state)
        self._interpolated_derivatives.fill(0.0)
