"""Provide step handlers: the consumers of accepted integration steps.

A step handler is called once per accepted step with the interpolator bound
to that step and a flag telling whether the step is the last one.  It may
query the interpolator at any time (inside the step, or outside when the
variant extrapolates) and may return ``True`` or
:attr:`~odestep.algorithms.integrators.types.StepAction.STOP` to end the run.

The interpolator passed to a handler is the integrator's working instance:
it is reinitialized at the next accepted step.  Handlers that keep it after
returning must store ``interpolator.copy()``, as
:class:`~odestep.algorithms.integrators.handlers._ContinuousOutputModel` does.
"""

import bisect
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from odestep.algorithms.integrators.types import StepAction
from odestep.algorithms.interpolators.base import _StepInterpolator
from odestep.algorithms.utils.exceptions import ConfigurationError

HandlerResult = Union[None, bool, StepAction]


class _StepHandler(ABC):
    """Define the interface of step consumers."""

    def reset(self, t0: float, y0: np.ndarray, tf: float) -> None:
        """Prepare for a new run starting at ``(t0, y0)`` and ending at *tf*."""

    @abstractmethod
    def handle_step(self, interpolator: _StepInterpolator, is_last: bool) -> HandlerResult:
        """Consume one accepted step."""

    @property
    def requires_dense_output(self) -> bool:
        """Whether the handler queries interior times of the steps."""
        return True


class _DummyStepHandler(_StepHandler):
    """Ignore every step."""

    def handle_step(self, interpolator, is_last) -> HandlerResult:
        return None

    @property
    def requires_dense_output(self) -> bool:
        return False


class _CallbackStepHandler(_StepHandler):
    """Adapt a plain ``(interpolator, is_last)`` callable to the handler interface."""

    def __init__(self, callback: Callable[[_StepInterpolator, bool], HandlerResult]):
        if not callable(callback):
            raise ConfigurationError(f"Step handler must be callable, got {type(callback).__name__}")
        self._callback = callback

    def handle_step(self, interpolator, is_last) -> HandlerResult:
        return self._callback(interpolator, is_last)


def _as_handler(handler) -> _StepHandler:
    if handler is None:
        return _DummyStepHandler()
    if isinstance(handler, _StepHandler):
        return handler
    return _CallbackStepHandler(handler)


def _wants_stop(result: HandlerResult) -> bool:
    return result is True or result is StepAction.STOP


class _StepNormalizer(_StepHandler):
    """Turn variable integration steps into a fixed sampling grid.

    Parameters
    ----------
    h : float
        Magnitude of the sampling step.  Its sign follows the integration
        direction.
    handler : Callable[[float, numpy.ndarray, bool], Any]
        Called with ``(t, y, is_last)`` at ``t0``, ``t0 + h``, ``t0 + 2h``,
        ... and finally at the end of the run (``is_last=True``).

    Notes
    -----
    Grid points are computed as ``t0 + k * h`` to avoid accumulating
    rounding errors.  The handler receives copies of the states.
    """

    def __init__(self, h: float, handler: Callable[[float, np.ndarray, bool], object]):
        if not (np.isfinite(h) and h > 0.0):
            raise ConfigurationError(f"Normalizer step must be positive and finite, got {h}")
        self._h = float(h)
        self._handler = handler
        self._t0 = None
        self._y0 = None
        self._k = 0

    def reset(self, t0, y0, tf) -> None:
        self._t0 = None
        self._y0 = np.array(y0, dtype=np.float64)
        self._k = 0

    def handle_step(self, interpolator, is_last) -> HandlerResult:
        sign = 1.0 if interpolator.forward else -1.0
        saved = interpolator.interpolated_time
        if self._t0 is None:
            self._t0 = interpolator.previous_time
            self._k = 0
            if not (is_last and interpolator.previous_time == interpolator.current_time):
                if self._y0 is not None:
                    self._handler(self._t0, self._y0.copy(), False)
                else:
                    self._emit(interpolator, self._t0, False)
            self._k = 1

        t_end = interpolator.current_time
        while True:
            t_next = self._t0 + sign * self._k * self._h
            if (t_next - t_end) * sign > 0.0:
                break
            if is_last and t_next == t_end:
                break
            self._emit(interpolator, t_next, False)
            self._k += 1

        if is_last:
            self._emit(interpolator, t_end, True)
        interpolator.set_interpolated_time(saved)
        return None

    def _emit(self, interpolator, t, is_last) -> None:
        interpolator.set_interpolated_time(t)
        self._handler(t, np.array(interpolator.interpolated_state), is_last)


class _SamplingHandler(_StepHandler):
    """Record the dense output at prescribed times.

    Parameters
    ----------
    t_vals : numpy.ndarray
        Monotonic sampling times, in the integration direction.  The first
        one must be the initial time.
    """

    def __init__(self, t_vals: np.ndarray):
        self._t_vals = np.asarray(t_vals, dtype=np.float64)
        self._idx = 0
        self.times: List[float] = []
        self.states: List[np.ndarray] = []
        self.derivatives: List[np.ndarray] = []

    def reset(self, t0, y0, tf) -> None:
        self._idx = 0
        self.times = []
        self.states = []
        self.derivatives = []

    def handle_step(self, interpolator, is_last) -> HandlerResult:
        sign = 1.0 if interpolator.forward else -1.0
        t_end = interpolator.current_time
        saved = interpolator.interpolated_time
        while self._idx < self._t_vals.size:
            t = self._t_vals[self._idx]
            if (t - t_end) * sign > 0.0:
                break
            interpolator.set_interpolated_time(t)
            self.times.append(float(t))
            self.states.append(np.array(interpolator.interpolated_state))
            self.derivatives.append(np.array(interpolator.interpolated_derivatives))
            self._idx += 1
        interpolator.set_interpolated_time(saved)
        return None


class _ContinuousOutputModel(_StepHandler):
    """Keep a copy of every step to provide dense output over a whole run.

    After (or during) integration, the model behaves like an interpolator
    spanning the entire integration range: set a time with
    :func:`set_interpolated_time` and read :attr:`interpolated_state`.

    Notes
    -----
    Each step is stored with :func:`~odestep.algorithms.interpolators.base._StepInterpolator.copy`,
    so the model is independent of later reinitializations of the
    integrator's working interpolator.
    """

    def __init__(self):
        self._steps: List[_StepInterpolator] = []
        self._ends: List[float] = []
        self._forward: Optional[bool] = None
        self._index = 0
        self._interpolated_time = 0.0

    def reset(self, t0, y0, tf) -> None:
        self._steps = []
        self._ends = []
        self._forward = None
        self._index = 0

    def handle_step(self, interpolator, is_last) -> HandlerResult:
        self._append_step(interpolator.copy())
        return None

    def _append_step(self, step: _StepInterpolator) -> None:
        if self._forward is None:
            self._forward = step.forward
            self._interpolated_time = step.previous_time
        elif step.forward != self._forward:
            raise ConfigurationError("Cannot mix forward and backward steps in a continuous output model")
        elif self._steps and step.dimension != self._steps[0].dimension:
            raise ConfigurationError(
                f"Step dimension {step.dimension} differs from model dimension {self._steps[0].dimension}"
            )
        self._steps.append(step)
        # stored in increasing order of the direction-signed time for bisection
        self._ends.append(step.current_time if self._forward else -step.current_time)

    def append(self, other: "_ContinuousOutputModel") -> None:
        """Append all steps of *other*, which must continue this model.

        Raises
        ------
        :class:`~odestep.algorithms.utils.exceptions.ConfigurationError`
            If the directions differ, the dimensions differ, or *other* does
            not start where this model ends.
        """
        if not other._steps:
            return
        if self._steps:
            if other._forward != self._forward:
                raise ConfigurationError("Cannot append a model integrated in the opposite direction")
            gap = other.initial_time - self.final_time
            slack = 1e-12 * max(abs(self.final_time), abs(self.final_time - self.initial_time), 1.0)
            if abs(gap) > slack:
                raise ConfigurationError(f"Models are not contiguous: gap of {gap!r} between them")
        for step in other._steps:
            self._append_step(step.copy())

    @property
    def steps(self) -> List[_StepInterpolator]:
        """Stored step interpolators, in integration order."""
        return list(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    @property
    def forward(self) -> Optional[bool]:
        return self._forward

    @property
    def initial_time(self) -> float:
        self._require_steps()
        return self._steps[0].previous_time

    @property
    def final_time(self) -> float:
        self._require_steps()
        return self._steps[-1].current_time

    @property
    def interpolated_time(self) -> float:
        return self._interpolated_time

    def set_interpolated_time(self, time: float) -> None:
        """Select the step containing *time* and forward the query to it.

        Times before the first step (after the last step) are handled by the
        first (last) step, which extrapolates when its variant allows it.
        """
        self._require_steps()
        self._interpolated_time = float(time)
        key = self._interpolated_time if self._forward else -self._interpolated_time
        idx = bisect.bisect_left(self._ends, key)
        self._index = min(idx, len(self._steps) - 1)
        self._steps[self._index].set_interpolated_time(self._interpolated_time)

    @property
    def interpolated_state(self) -> np.ndarray:
        self._require_steps()
        return self._steps[self._index].interpolated_state

    @property
    def interpolated_derivatives(self) -> np.ndarray:
        self._require_steps()
        return self._steps[self._index].interpolated_derivatives

    def sample(self, times: Sequence[float]) -> np.ndarray:
        """Return the dense output at every time of *times*, shape ``(len(times), n)``."""
        out = []
        for t in times:
            self.set_interpolated_time(t)
            out.append(np.array(self.interpolated_state))
        return np.asarray(out)

    def to_df(self, times: Optional[Sequence[float]] = None, columns=None) -> pd.DataFrame:
        """Return the dense output sampled at *times* (default: step ends) as a DataFrame."""
        self._require_steps()
        if times is None:
            times = [self.initial_time] + [s.current_time for s in self._steps]
        states = self.sample(times)
        if columns is None:
            columns = [f"y{i}" for i in range(states.shape[1])]
        df = pd.DataFrame(states, columns=list(columns))
        df.insert(0, "time", np.asarray(times, dtype=np.float64))
        return df

    def _require_steps(self) -> None:
        if not self._steps:
            raise ConfigurationError("Continuous output model holds no step")
