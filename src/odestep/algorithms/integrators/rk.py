"""Provide explicit Runge-Kutta integrators.

Both fixed and adaptive step-size variants are provided together with small
convenience factories that select an appropriate implementation given the
desired formal order of accuracy.  All of them drive the stepping loop of
:class:`~odestep.algorithms.integrators.base._Integrator` and publish their
own continuous extension as dense output.

References
----------
Hairer, E.; Norsett, S.; Wanner, G. (1993). "Solving Ordinary Differential
Equations I".

Dormand, J. R.; Prince, P. J. (1980). "A family of embedded Runge-Kutta
formulas".
"""

from typing import Optional, Type

import numba
import numpy as np

from odestep.algorithms.coefficients.euler import A as EULER_A
from odestep.algorithms.coefficients.euler import B as EULER_B
from odestep.algorithms.coefficients.euler import C as EULER_C
from odestep.algorithms.coefficients.midpoint import A as MIDPOINT_A
from odestep.algorithms.coefficients.midpoint import B as MIDPOINT_B
from odestep.algorithms.coefficients.midpoint import C as MIDPOINT_C
from odestep.algorithms.coefficients.rk4 import A as RK4_A
from odestep.algorithms.coefficients.rk4 import B as RK4_B
from odestep.algorithms.coefficients.rk4 import C as RK4_C
from odestep.algorithms.coefficients.rk45 import B_HIGH as RK45_B_HIGH
from odestep.algorithms.coefficients.rk45 import A as RK45_A
from odestep.algorithms.coefficients.rk45 import C as RK45_C
from odestep.algorithms.coefficients.rk45 import E as RK45_E
from odestep.algorithms.integrators.base import _Integrator
from odestep.algorithms.integrators.configs import (_AdaptiveStepConfig,
                                                    _FixedStepConfig)
from odestep.algorithms.integrators.control import (_FixedStepController,
                                                    _PIController,
                                                    _StepController)
from odestep.algorithms.integrators.types import _StepAttempt
from odestep.algorithms.interpolators.base import _StepInterpolator
from odestep.algorithms.interpolators.rk import (
    _DormandPrince54StepInterpolator, _EulerStepInterpolator,
    _MidpointStepInterpolator, _RK4StepInterpolator)
from odestep.algorithms.utils.config import FASTMATH, MAX_STEPS, TOL
from odestep.algorithms.utils.exceptions import ConfigurationError


@numba.njit(cache=False, fastmath=FASTMATH)
def rk_combine_jit_kernel(y, h, weights, K, n_terms):
    """Return ``y + h * sum_j weights[j] * K[j]`` over the first *n_terms* stages."""
    out = y.copy()
    for j in range(n_terms):
        w = weights[j]
        if w != 0.0:
            for d in range(y.size):
                out[d] += h * w * K[j, d]
    return out


class _RungeKuttaBase(_Integrator):
    """Provide shared functionality of explicit Runge-Kutta schemes.

    The class stores a Butcher tableau and provides a single low level helper
    :func:`~odestep.algorithms.integrators.rk._RungeKuttaBase._rk_stages` that
    evaluates the stages of one trial step.

    Attributes
    ----------
    _A : numpy.ndarray of shape (s, s)
        Strictly lower triangular array of stage coefficients a_ij.
    _B_HIGH : numpy.ndarray of shape (s,)
        Weights of the propagated solution.
    _C : numpy.ndarray of shape (s,)
        Nodes c_i measured in units of the step size.
    _p : int
        Formal order of accuracy of the propagated solution.
    _interpolator_cls : type
        Continuous extension of the scheme.

    Notes
    -----
    The class is **not** intended to be used directly.  Concrete subclasses
    define the specific coefficients and the step-size policy.
    """

    _A: np.ndarray = None
    _B_HIGH: np.ndarray = None
    _C: np.ndarray = None
    _p: int = 0
    _interpolator_cls: Type[_StepInterpolator] = None

    @property
    def order(self) -> int:
        """Return the formal order of accuracy of the method.

        Returns
        -------
        int
            The order of accuracy of the Runge-Kutta method.
        """
        return self._p

    def _default_interpolator(self) -> _StepInterpolator:
        return self._interpolator_cls()

    def _rk_stages(self, f, t, y, f0, h, n_extra=0):
        """Evaluate the stages of a trial step of signed size *h*.

        Returns the stage array of shape ``(s + n_extra, n)`` (extra rows are
        left for the caller) and the propagated state.
        """
        s = self._B_HIGH.size
        K = np.empty((s + n_extra, y.size), dtype=np.float64)
        K[0] = f0
        for i in range(1, s):
            y_stage = rk_combine_jit_kernel(y, h, self._A[i], K, i)
            K[i] = f(t + self._C[i] * h, y_stage)
        y_new = rk_combine_jit_kernel(y, h, self._B_HIGH, K, s)
        return K, y_new


class _FixedStepRK(_RungeKuttaBase):
    """Implement an explicit fixed-step Runge-Kutta scheme.

    Parameters
    ----------
    name : str
        Human readable identifier of the scheme (e.g. ``"_RK4"``).
    step : float
        Magnitude of the step size.  The last step of a run is shortened so
        that it lands exactly on the final time.
    max_steps : int, optional
        Maximum number of accepted steps.
    **options
        Additional keyword options forwarded to the base :class:`~odestep.algorithms.integrators.base._Integrator`.
    """

    def __init__(self, name: str, step: float, max_steps: int = MAX_STEPS, **options):
        super().__init__(name, **options)
        self._config = _FixedStepConfig(step=step, max_steps=max_steps)

    @property
    def step(self) -> float:
        return self._config.step

    def _make_controller(self) -> _StepController:
        return _FixedStepController(self._config)

    def _attempt_step(self, f, controller, t, y, f0, h) -> _StepAttempt:
        K, y_new = self._rk_stages(f, t, y, f0, h)
        return _StepAttempt(y_new=y_new, err_norm=0.0, stages=K)


class _Euler(_FixedStepRK):
    """Implement the explicit Euler method with its linear dense output."""
    _A = EULER_A
    _B_HIGH = EULER_B
    _C = EULER_C
    _p = 1
    _interpolator_cls = _EulerStepInterpolator

    def __init__(self, step: float, **opts):
        super().__init__("_Euler", step, **opts)


class _Midpoint(_FixedStepRK):
    """Implement the explicit midpoint method."""
    _A = MIDPOINT_A
    _B_HIGH = MIDPOINT_B
    _C = MIDPOINT_C
    _p = 2
    _interpolator_cls = _MidpointStepInterpolator

    def __init__(self, step: float, **opts):
        super().__init__("_Midpoint", step, **opts)


class _RK4(_FixedStepRK):
    """Implement the classical 4th-order Runge-Kutta method.

    This is the standard 4th-order explicit Runge-Kutta method, also known
    as RK4 or the "classical" Runge-Kutta method. It uses 4 function
    evaluations per step and has order 4.
    """
    _A = RK4_A
    _B_HIGH = RK4_B
    _C = RK4_C
    _p = 4
    _interpolator_cls = _RK4StepInterpolator

    def __init__(self, step: float, **opts):
        super().__init__("_RK4", step, **opts)


class _AdaptiveStepRK(_RungeKuttaBase):
    """Implement an embedded adaptive Runge-Kutta integrator with PI controller.

    Parameters
    ----------
    name : str, default "AdaptiveRK"
        Identifier passed to the :class:`~odestep.algorithms.integrators.base._Integrator` base class.
    rtol, atol : float, optional
        Relative and absolute error tolerances.  Defaults are read from
        :data:`~odestep.algorithms.utils.config.TOL`.
    max_step : float, optional
        Upper bound on the step size.  infinity by default.
    min_step : float or None, optional
        Lower bound on the step size.  When *None* the value is derived from
        machine precision at the current time.
    max_steps : int, optional
        Maximum number of accepted steps.
    initial_step : float or None, optional
        First trial step.  Estimated from the problem when *None*.

    Raises
    ------
    :class:`~odestep.algorithms.utils.exceptions.ConvergenceError`
        If the step size underflows while trying to satisfy the error
        tolerance (raised during :func:`integrate`).
    """

    def __init__(self,
                 name: str = "AdaptiveRK",
                 rtol: float = TOL,
                 atol: float = TOL,
                 max_step: float = np.inf,
                 min_step: Optional[float] = None,
                 max_steps: int = MAX_STEPS,
                 initial_step: Optional[float] = None,
                 **options):
        super().__init__(name, **options)
        self._config = _AdaptiveStepConfig(
            rtol=rtol, atol=atol, min_step=min_step, max_step=max_step,
            max_steps=max_steps, initial_step=initial_step,
        )

    @property
    def rtol(self) -> float:
        return self._config.rtol

    @property
    def atol(self) -> float:
        return self._config.atol

    def _make_controller(self) -> _StepController:
        return _PIController(self._config)


class _RK45(_AdaptiveStepRK):
    """Implement the Dormand-Prince 5(4) adaptive Runge-Kutta method.

    The fifth-order solution is propagated and the embedded fourth-order one
    only serves the error estimate.  The last stage is evaluated at the end
    of the step and reused as the first stage of the next step (FSAL).
    """
    _A = RK45_A
    _B_HIGH = RK45_B_HIGH
    _C = RK45_C
    _E = RK45_E
    _p = 5
    _interpolator_cls = _DormandPrince54StepInterpolator

    def __init__(self, **opts):
        super().__init__("_RK45", **opts)

    @property
    def error_order(self) -> int:
        return 4

    def _attempt_step(self, f, controller, t, y, f0, h) -> _StepAttempt:
        K, y_new = self._rk_stages(f, t, y, f0, h, n_extra=1)
        K[-1] = f(t + h, y_new)
        err_vec = h * (self._E @ K)
        err_norm = controller.error_norm(err_vec, y, y_new)
        return _StepAttempt(y_new=y_new, err_norm=err_norm, stages=K, end_derivative=K[-1])


class RungeKutta:
    """Implement a factory class for creating fixed-step Runge-Kutta integrators.

    This factory provides convenient access to fixed-step Runge-Kutta methods
    of different orders. The available orders are 1, 2 and 4.

    Examples
    --------
    >>> euler = RungeKutta(order=1, step=1e-3)
    >>> rk4 = RungeKutta(order=4, step=0.1)
    """
    _map = {1: _Euler, 2: _Midpoint, 4: _RK4}

    def __new__(cls, order=4, step=None, **opts):
        """Create a fixed-step Runge-Kutta integrator of specified order.

        Parameters
        ----------
        order : int, default 4
            Order of the Runge-Kutta method. Must be 1, 2, or 4.
        step : float
            Magnitude of the step size.
        **opts
            Additional options passed to the integrator constructor.

        Returns
        -------
        :class:`~odestep.algorithms.integrators.rk._FixedStepRK`
            A fixed-step Runge-Kutta integrator instance.

        Raises
        ------
        :class:`~odestep.algorithms.utils.exceptions.ConfigurationError`
            If the specified order is not supported or *step* is missing.
        """
        if order not in cls._map:
            raise ConfigurationError("RK order must be 1, 2, or 4")
        if step is None:
            raise ConfigurationError("Fixed-step Runge-Kutta integrators need a step size")
        return cls._map[order](step, **opts)


class AdaptiveRK:
    """Implement a factory class for creating adaptive step-size Runge-Kutta integrators.

    The available order is 5 (Dormand-Prince 5(4)).

    Examples
    --------
    >>> rk45 = AdaptiveRK(order=5, rtol=1e-9, atol=1e-12)
    """
    _map = {5: _RK45}

    def __new__(cls, order=5, **opts):
        """Create an adaptive step-size Runge-Kutta integrator of specified order.

        Parameters
        ----------
        order : int, default 5
            Order of the Runge-Kutta method. Must be 5.
        **opts
            Additional options passed to the integrator constructor.

        Returns
        -------
        :class:`~odestep.algorithms.integrators.rk._AdaptiveStepRK`
            An adaptive step-size Runge-Kutta integrator instance.

        Raises
        ------
        :class:`~odestep.algorithms.utils.exceptions.ConfigurationError`
            If the specified order is not supported.
        """
        if order not in cls._map:
            raise ConfigurationError("Adaptive RK order not supported")
        return cls._map[order](**opts)
