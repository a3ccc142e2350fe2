"""Provide the prototype-based factory that feeds step interpolators to integrators.

Building a fully configured interpolator for every accepted step repeats
allocation and configuration work, which is significant for high order
schemes carrying many stage arrays.  The factory keeps one data-empty
template per run and hands out a single working clone that is reinitialized
in place at each accepted step.  Cloning is self-type-preserving, so the
integrator loop never needs to know which dense-output variant is in use.
"""

from typing import Optional, Union

import numpy as np

from odestep.algorithms.interpolators.base import (_resolve_variant,
                                                   _StepData,
                                                   _StepInterpolator)
from odestep.algorithms.utils.exceptions import ConfigurationError


class _StepPrototypeFactory:
    """Produce reinitialized step interpolators from a template.

    Parameters
    ----------
    prototype : :class:`~odestep.algorithms.interpolators.base._StepInterpolator` or str
        Template instance, or a variant tag (``"dummy"``, ``"hermite"``,
        ``"rk4"``, ...) resolved through the variant registry.  A bound
        instance is accepted; only its variant and configuration are used.

    Examples
    --------
    >>> factory = _StepPrototypeFactory("dummy")
    >>> factory.start(np.zeros(2), forward=True)
    >>> interp = factory.reinitialize(0.0, 0.1, np.ones(2))
    >>> interp.interpolated_state
    array([1., 1.])
    """

    def __init__(self, prototype: Union[_StepInterpolator, str]):
        if isinstance(prototype, str):
            prototype = _resolve_variant(prototype)()
        if not isinstance(prototype, _StepInterpolator):
            raise ConfigurationError(
                f"Interpolator prototype must be a _StepInterpolator or a variant tag, got {type(prototype).__name__}"
            )
        self._template = prototype.clone()
        self._working: Optional[_StepInterpolator] = None
        self._forward: Optional[bool] = None
        self._dim = 0

    @property
    def template(self) -> _StepInterpolator:
        """The data-empty template instance."""
        return self._template

    @property
    def forward(self) -> Optional[bool]:
        """Direction of the current run, None before :func:`start`."""
        return self._forward

    def start(self, initial_state: np.ndarray, forward: bool) -> None:
        """Begin a run: fix its direction and bind a fresh working clone.

        Parameters
        ----------
        initial_state : numpy.ndarray
            Initial state of the run, used to size the working storage.
        forward : bool
            Direction of the run.
        """
        self._forward = bool(forward)
        self._dim = np.asarray(initial_state).size
        self._working = self._template.clone()
        self._working.reinitialize(initial_state, self._forward)

    def fresh(self) -> _StepInterpolator:
        """Return a new data-empty clone of the template."""
        return self._template.clone()

    def reinitialize(
        self,
        previous_time: float,
        current_time: float,
        state: np.ndarray,
        forward: Optional[bool] = None,
        step: Optional[_StepData] = None,
    ) -> _StepInterpolator:
        """Bind the working instance to an accepted step and return it.

        Raises
        ------
        :class:`~odestep.algorithms.utils.exceptions.ConfigurationError`
            If no run was started, if *forward* differs from the run
            direction, or if the state length changed during the run.
        """
        if self._working is None:
            raise ConfigurationError("start() must be called before reinitialize()")
        if forward is not None and bool(forward) != self._forward:
            raise ConfigurationError(
                f"Direction mismatch: run is {'forward' if self._forward else 'backward'}, "
                f"step requested {'forward' if forward else 'backward'}"
            )
        if np.asarray(state).size != self._dim:
            raise ConfigurationError(
                f"State length changed during the run: {np.asarray(state).size} != {self._dim}"
            )
        self._working.reinitialize(state, self._forward, previous_time, current_time, step=step)
        return self._working
