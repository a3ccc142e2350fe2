"""Provide the abstract step interpolator shared by every dense-output scheme.

A step interpolator encapsulates one accepted integration step and answers
"what is the state at time *t*" for *t* inside (and, when the concrete
scheme allows it, outside) the step bounds.  The base class owns all the
bookkeeping (time bounds, direction, end-of-step state, interpolation cache)
so that concrete variants only implement
:func:`~odestep.algorithms.interpolators.base._StepInterpolator._compute_interpolated_state`.

Instances are produced from an uninitialized template through
:func:`~odestep.algorithms.interpolators.base._StepInterpolator.clone` and
bound to a step through
:func:`~odestep.algorithms.interpolators.base._StepInterpolator.reinitialize`.
The integrator reuses its working instance from one step to the next, so a
consumer that needs an interpolator after its callback returns must call
:func:`~odestep.algorithms.interpolators.base._StepInterpolator.copy`.

References
----------
Hairer, E., Norsett, S. P., & Wanner, G. (1993). "Solving Ordinary
Differential Equations I: Non-stiff Problems", section II.6.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Type

import numpy as np

from odestep.algorithms.utils.config import BOUNDS_RTOL
from odestep.algorithms.utils.exceptions import ConfigurationError

_VARIANTS: Dict[str, Type["_StepInterpolator"]] = {}
"""Registry of concrete interpolator classes keyed by their variant tag."""


@dataclass
class _StepData:
    """Auxiliary data describing one accepted step.

    The integrator fills every field it has available; each interpolator
    variant picks the members it needs and ignores the rest.

    Attributes
    ----------
    start_state : numpy.ndarray or None
        State at the beginning of the step.
    start_derivative : numpy.ndarray or None
        Derivative at the beginning of the step.
    end_derivative : numpy.ndarray or None
        Derivative at the end of the step, when already known (FSAL schemes).
    stages : numpy.ndarray or None
        Stage derivatives of a Runge-Kutta step, shape ``(s, n)``.
    rhs : callable or None
        Derivative provider, used by variants that evaluate lazily.
    """
    start_state: Optional[np.ndarray] = None
    start_derivative: Optional[np.ndarray] = None
    end_derivative: Optional[np.ndarray] = None
    stages: Optional[np.ndarray] = None
    rhs: Optional[Callable[[float, np.ndarray], np.ndarray]] = None


def _resolve_variant(tag: str) -> Type["_StepInterpolator"]:
    """Return the interpolator class registered under *tag*.

    Raises
    ------
    :class:`~odestep.algorithms.utils.exceptions.ConfigurationError`
        If no variant is registered under *tag*.
    """
    if tag not in _VARIANTS:
        # importing the package registers the built-in variants
        import odestep.algorithms.interpolators  # noqa: F401
    try:
        return _VARIANTS[tag]
    except KeyError:
        raise ConfigurationError(
            f"Unknown interpolator variant '{tag}'. Known variants: {sorted(_VARIANTS)}"
        ) from None


class _StepInterpolator(ABC):
    """Define the dense-output contract and the bookkeeping common to all variants.

    Parameters
    ----------
    extrapolate : bool, default True
        When False, querying a time outside ``[previous_time, current_time]``
        raises :class:`~odestep.algorithms.utils.exceptions.ConfigurationError`.

    Notes
    -----
    The constructor builds a template: it holds no step data and is not
    usable for queries until
    :func:`~odestep.algorithms.interpolators.base._StepInterpolator.reinitialize`
    has bound it to a complete step.

    Subclasses declaring a ``_tag`` class attribute are registered so that
    persisted interpolators can be decoded by tag lookup.
    """

    _tag: Optional[str] = None
    _interpolates = True

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        tag = cls.__dict__.get("_tag")
        if tag is not None:
            _VARIANTS[tag] = cls

    def __init__(self, *, extrapolate: bool = True):
        self._extrapolate = bool(extrapolate)
        self._forward = True
        self._previous_time = 0.0
        self._current_time = 0.0
        self._h = 0.0
        self._current_state: Optional[np.ndarray] = None
        self._interpolated_time = 0.0
        self._interpolated_state: Optional[np.ndarray] = None
        self._interpolated_derivatives: Optional[np.ndarray] = None
        self._finalized = False
        self._step_finalized = False
        self._dirty = True

    @property
    def tag(self) -> Optional[str]:
        """Variant tag used for persistence."""
        return self._tag

    @property
    def extrapolate(self) -> bool:
        """Whether queries outside the step bounds are permitted."""
        return self._extrapolate

    @property
    def interpolates(self) -> bool:
        """False for variants whose state does not depend on the query time."""
        return self._interpolates

    @property
    def forward(self) -> bool:
        """Integration direction of the run this step belongs to."""
        return self._forward

    @property
    def previous_time(self) -> float:
        """Time at the beginning of the step."""
        return self._previous_time

    @property
    def current_time(self) -> float:
        """Time at the end of the step."""
        return self._current_time

    @property
    def step_size(self) -> float:
        """Signed step size ``current_time - previous_time``."""
        return self._h

    @property
    def interpolated_time(self) -> float:
        """Time of the last interpolation query."""
        return self._interpolated_time

    @property
    def current_state(self) -> np.ndarray:
        """Read-only view of the state at the end of the step."""
        self._require_finalized()
        return _readonly(self._current_state)

    @property
    def dimension(self) -> int:
        """Length of the state vector, 0 for an unbound template."""
        return 0 if self._current_state is None else self._current_state.size

    @property
    def is_finalized(self) -> bool:
        """True once the instance is bound to a complete step."""
        return self._finalized

    def reinitialize(
        self,
        current_state: np.ndarray,
        forward: bool,
        previous_time: Optional[float] = None,
        current_time: Optional[float] = None,
        *,
        step: Optional[_StepData] = None,
    ) -> None:
        """Bind the instance to new step data without reallocating storage.

        Parameters
        ----------
        current_state : numpy.ndarray
            State at the end of the step.  The values are copied into the
            backing array, which is reused when its length matches.
        forward : bool
            Integration direction.
        previous_time, current_time : float, optional
            Step bounds.  When omitted the instance only binds its storage
            and direction and stays unusable for queries.
        step : :class:`~odestep.algorithms.interpolators.base._StepData`, optional
            Scheme-specific auxiliary data.

        Raises
        ------
        :class:`~odestep.algorithms.utils.exceptions.ConfigurationError`
            If the state is not a non-empty 1-D array, if only one of the
            bounds is given, or if the step direction contradicts *forward*.
        """
        state = np.asarray(current_state, dtype=np.float64)
        if state.ndim != 1 or state.size == 0:
            raise ConfigurationError(
                f"State must be a non-empty 1-D array, got shape {state.shape}"
            )
        if (previous_time is None) != (current_time is None):
            raise ConfigurationError("previous_time and current_time must be given together")
        forward = bool(forward)
        if previous_time is not None:
            h = float(current_time) - float(previous_time)
            if h != 0.0 and (h > 0.0) != forward:
                raise ConfigurationError(
                    f"Step [{previous_time!r}, {current_time!r}] contradicts the "
                    f"{'forward' if forward else 'backward'} integration direction"
                )

        # unusable until the new step data is fully bound
        self._finalized = False
        if self._current_state is None or self._current_state.shape != state.shape:
            self._current_state = state.copy()
            self._interpolated_state = np.empty_like(state)
            self._interpolated_derivatives = np.empty_like(state)
        else:
            np.copyto(self._current_state, state)

        self._forward = forward
        self._dirty = True
        self._step_finalized = False

        if previous_time is None:
            self._previous_time = 0.0
            self._current_time = 0.0
            self._h = 0.0
            return

        self._previous_time = float(previous_time)
        self._current_time = float(current_time)
        self._h = h
        self._bind_step(step if step is not None else _StepData())
        self._finalized = True
        self._interpolated_time = self._current_time

    def set_interpolated_time(self, time: float) -> None:
        """Record the time of the next interpolation query.

        The interpolated state is recomputed lazily when it is next read.
        """
        self._interpolated_time = float(time)
        self._dirty = True

    @property
    def interpolated_state(self) -> np.ndarray:
        """Read-only view of the state at :attr:`interpolated_time`.

        Raises
        ------
        :class:`~odestep.algorithms.utils.exceptions.ConfigurationError`
            If the instance is not bound to a step, or if the query time lies
            outside the step and the variant does not extrapolate.
        """
        self._refresh()
        return _readonly(self._interpolated_state)

    @property
    def interpolated_derivatives(self) -> np.ndarray:
        """Read-only view of the time derivative of the dense output at :attr:`interpolated_time`."""
        self._refresh()
        return _readonly(self._interpolated_derivatives)

    def _refresh(self) -> None:
        self._require_finalized()
        if not self._dirty:
            return
        t = self._interpolated_time
        if not self._extrapolate:
            self._check_bounds(t)
        one_minus_theta_h = self._current_time - t
        theta = 1.0 if self._h == 0.0 else (t - self._previous_time) / self._h
        self._compute_interpolated_state(theta, one_minus_theta_h)
        if one_minus_theta_h == 0.0:
            np.copyto(self._interpolated_state, self._current_state)
        self._dirty = False

    def _check_bounds(self, t: float) -> None:
        lo, hi = sorted((self._previous_time, self._current_time))
        slack = BOUNDS_RTOL * max(abs(self._h), abs(lo), abs(hi), 1.0)
        if t < lo - slack or t > hi + slack:
            raise ConfigurationError(
                f"{type(self).__name__} does not extrapolate: t={t!r} outside "
                f"[{self._previous_time!r}, {self._current_time!r}]"
            )

    def _require_finalized(self) -> None:
        if not self._finalized:
            raise ConfigurationError(
                f"{type(self).__name__} is not bound to a step; call reinitialize() first"
            )

    def finalize_step(self) -> None:
        """Complete any deferred per-step computation.

        Called before copying or serializing the instance.  Variants that
        evaluate the derivative provider lazily do it here; the provider's
        exception propagates to the caller.
        """
        if self._finalized and not self._step_finalized:
            self._do_finalize()
            self._step_finalized = True

    def _do_finalize(self) -> None:
        pass

    def clone(self) -> "_StepInterpolator":
        """Return a data-empty template of the same variant and configuration."""
        return type(self)(**self._clone_kwargs())

    def _clone_kwargs(self) -> dict:
        return {"extrapolate": self._extrapolate}

    def copy(self) -> "_StepInterpolator":
        """Return an independent deep copy of this interpolator.

        The copy has its own backing arrays, so later reinitialization of
        this instance by the integrator does not affect it.
        """
        self.finalize_step()
        other = self.clone()
        other._copy_from(self)
        return other

    def _copy_from(self, other: "_StepInterpolator") -> None:
        self._forward = other._forward
        self._previous_time = other._previous_time
        self._current_time = other._current_time
        self._h = other._h
        self._interpolated_time = other._interpolated_time
        self._finalized = other._finalized
        self._step_finalized = other._step_finalized
        self._dirty = True
        if other._current_state is None:
            self._current_state = None
            self._interpolated_state = None
            self._interpolated_derivatives = None
        else:
            self._current_state = other._current_state.copy()
            self._interpolated_state = np.empty_like(self._current_state)
            self._interpolated_derivatives = np.empty_like(self._current_state)

    def _restore_base(
        self,
        forward: bool,
        finalized: bool,
        previous_time: float,
        current_time: float,
        state: Optional[np.ndarray],
    ) -> None:
        """Restore the shared bookkeeping read back from persisted data."""
        self._forward = bool(forward)
        self._previous_time = float(previous_time)
        self._current_time = float(current_time)
        self._h = self._current_time - self._previous_time
        if state is None:
            self._current_state = None
            self._interpolated_state = None
            self._interpolated_derivatives = None
        else:
            self._current_state = np.array(state, dtype=np.float64)
            self._interpolated_state = np.empty_like(self._current_state)
            self._interpolated_derivatives = np.empty_like(self._current_state)
        self._finalized = bool(finalized) and state is not None
        self._step_finalized = self._finalized
        self._interpolated_time = self._current_time
        self._dirty = True

    def _bind_step(self, step: _StepData) -> None:
        """Store the variant-specific part of *step*.  Default: nothing."""

    def _payload(self) -> List[np.ndarray]:
        """Return the variant-specific arrays to persist."""
        return []

    def _restore_payload(self, arrays: List[np.ndarray]) -> None:
        """Restore the variant-specific arrays produced by :func:`_payload`."""
        if arrays:
            raise ValueError(f"{type(self).__name__} expects no payload, got {len(arrays)} arrays")

    @abstractmethod
    def _compute_interpolated_state(self, theta: float, one_minus_theta_h: float) -> None:
        """Fill ``_interpolated_state`` and ``_interpolated_derivatives``.

        Parameters
        ----------
        theta : float
            Normalized abscissa, 0 at ``previous_time`` and 1 at
            ``current_time``.  Values outside ``[0, 1]`` mean extrapolation.
        one_minus_theta_h : float
            Time gap ``current_time - interpolated_time``.
        """

    def __reduce__(self):
        from odestep.utils.io.interpolator import (decode_interpolator,
                                                   encode_interpolator)
        return (decode_interpolator, (encode_interpolator(self),))

    def __repr__(self) -> str:
        if not self._finalized:
            return f"{type(self).__name__}(unbound, extrapolate={self._extrapolate})"
        return (
            f"{type(self).__name__}(previous_time={self._previous_time!r}, "
            f"current_time={self._current_time!r}, forward={self._forward}, "
            f"dim={self.dimension})"
        )


def _readonly(arr: np.ndarray) -> np.ndarray:
    view = arr.view()
    view.flags.writeable = False
    return view
