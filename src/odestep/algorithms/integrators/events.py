"""Event detection on accepted steps.

Notes
-----
Detection is cheap: the event function is evaluated at both ends of every
accepted step and root refinement only starts when a sign change matching
the requested direction is found.  Refinement bisects the step using the
step interpolator, so no extra derivative evaluations are needed and the
accuracy of the located state is the accuracy of the dense output.  The
zero-order hold interpolator carries no interior information, so no
refinement is attempted and the event is reported at the end of the step
with the end-of-step state.
"""
from typing import Callable

import numpy as np
from numba import njit

from odestep.algorithms.integrators.configs import _EventConfig
from odestep.algorithms.integrators.types import EventResult
from odestep.algorithms.interpolators.base import _StepInterpolator


@njit(cache=False)
def _direction_allows(g0: float, g1: float, direction: int) -> bool:
    """Return True if the sign change (g0 -> g1) matches desired direction.

    direction = 0 allows any sign change; +1 requires increasing; -1 decreasing.
    A zero at the start of the step is not a new crossing: it was reported as
    the end of the previous step.
    """
    if g0 == 0.0:
        return False
    if g0 * g1 > 0.0:
        return False
    if direction == 0:
        return True
    # increasing crossing: g0 < 0 <= g1
    if direction > 0:
        return g0 < 0.0
    # decreasing crossing: g0 > 0 >= g1
    return g0 > 0.0


def _state_at(interp: _StepInterpolator, t: float) -> np.ndarray:
    interp.set_interpolated_time(t)
    return np.array(interp.interpolated_state)


def _refine_bisection(
    g: Callable[[float, np.ndarray], float],
    interp: _StepInterpolator,
    ta: float,
    ga: float,
    tb: float,
    gb: float,
    tol: float,
    max_iter: int,
):
    """Refine an event time by bisection within [ta, tb] using dense output."""
    if gb == 0.0:
        return tb, _state_at(interp, tb), gb

    for _ in range(max_iter):
        if abs(tb - ta) <= tol:
            break
        mid_t = 0.5 * (ta + tb)
        y_mid = _state_at(interp, mid_t)
        g_mid = float(g(mid_t, y_mid))
        if g_mid == 0.0:
            return mid_t, y_mid, g_mid
        if ga * g_mid < 0.0:
            tb, gb = mid_t, g_mid
        else:
            ta, ga = mid_t, g_mid

    # the right end of the bracket lies past the root, where the sign has flipped
    y_b = _state_at(interp, tb)
    return tb, y_b, float(g(tb, y_b))


def check_and_refine_event(
    g: Callable[[float, np.ndarray], float],
    interp: _StepInterpolator,
    y_start: np.ndarray,
    cfg: _EventConfig,
) -> EventResult:
    """Detect a sign change of *g* across the step held by *interp*.

    Parameters
    ----------
    g : Callable[[float, numpy.ndarray], float]
        Scalar event function.
    interp : :class:`~odestep.algorithms.interpolators.base._StepInterpolator`
        Interpolator bound to the accepted step.
    y_start : numpy.ndarray
        Exact state at the beginning of the step.
    cfg : :class:`~odestep.algorithms.integrators.configs._EventConfig`
        Direction and refinement settings.

    Returns
    -------
    :class:`~odestep.algorithms.integrators.types.EventResult`
        Located event, or a result with ``hit=False``.
    """
    t0 = interp.previous_time
    t1 = interp.current_time
    g0 = float(g(t0, y_start))
    g1 = float(g(t1, np.array(interp.current_state)))

    if not _direction_allows(g0, g1, int(cfg.direction)):
        return EventResult(False, None, None, None)

    if not interp.interpolates:
        return EventResult(True, float(t1), np.array(interp.current_state), g1)

    saved = interp.interpolated_time
    te, ye, ge = _refine_bisection(g, interp, t0, g0, t1, g1, float(cfg.tol), int(cfg.max_iter))
    interp.set_interpolated_time(saved)
    return EventResult(True, float(te), ye, float(ge))
