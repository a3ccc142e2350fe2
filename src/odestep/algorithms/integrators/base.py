"""Provide the abstract integrator and its adaptive stepping loop.

The loop is a small state machine (:class:`~odestep.algorithms.integrators.types.IntegratorState`)::

    INITIALIZED -> STEPPING (PROPOSE -> EVALUATE_ERROR -> ACCEPT | REJECT)
                -> COMPLETED | FAILED

Concrete schemes only implement
:func:`~odestep.algorithms.integrators.base._Integrator._attempt_step`; step
size policy lives in a :mod:`~odestep.algorithms.integrators.control`
controller and dense output in a step interpolator obtained from a
:class:`~odestep.algorithms.interpolators.factory._StepPrototypeFactory`.

References
----------
Hairer, E., Norsett, S. P., & Wanner, G. (1993). "Solving Ordinary
Differential Equations I: Non-stiff Problems".
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Union

import numpy as np

from odestep.algorithms.dynamics.base import (_CountingRHS,
                                              _DynamicalSystemProtocol)
from odestep.algorithms.integrators.configs import _EventConfig
from odestep.algorithms.integrators.control import _StepController
from odestep.algorithms.integrators.events import check_and_refine_event
from odestep.algorithms.integrators.handlers import (_as_handler,
                                                     _SamplingHandler,
                                                     _StepHandler, _wants_stop)
from odestep.algorithms.integrators.types import (IntegratorState,
                                                  _Solution, _StepAttempt)
from odestep.algorithms.interpolators.base import _StepData, _StepInterpolator
from odestep.algorithms.interpolators.dummy import _DummyStepInterpolator
from odestep.algorithms.interpolators.factory import _StepPrototypeFactory
from odestep.algorithms.utils.exceptions import (ConfigurationError,
                                                 ConvergenceError)
from odestep.utils.log_config import logger

# Relative tolerance under which the remaining span is merged into the last step
_END_RTOL = 100.0 * np.finfo(float).eps


class _Integrator(ABC):
    """Define the minimal interface that every concrete integrator must satisfy.

    Parameters
    ----------
    name : str
        Human-readable identifier of the method.
    interpolator : :class:`~odestep.algorithms.interpolators.base._StepInterpolator` or str, optional
        Dense-output template (or variant tag) overriding the scheme's own
        continuous extension.
    **options
        Extra keyword arguments left untouched and stored in
        :attr:`~odestep.algorithms.integrators.base._Integrator.options` for later use by subclasses.

    Notes
    -----
    Subclasses *must* implement :func:`order`, :func:`_make_controller`,
    :func:`_default_interpolator` and :func:`_attempt_step`.

    When neither a handler nor an event function needs interior dense
    output and no interpolator was requested, the loop uses the
    zero-order hold :class:`~odestep.algorithms.interpolators.dummy._DummyStepInterpolator`.

    Attributes
    ----------
    status : :class:`~odestep.algorithms.integrators.types.IntegratorState`
        State of the last run.
    last_time, last_state
        Last committed time and state; still readable after a failed run.
    n_accepted, n_rejected, n_evaluations : int
        Statistics of the last run.
    """

    def __init__(self, name: str, *, interpolator: Union[_StepInterpolator, str, None] = None, **options):
        self.name = name
        self.options = options
        self._interpolator = interpolator
        self.status = IntegratorState.INITIALIZED
        self.last_time: Optional[float] = None
        self.last_state: Optional[np.ndarray] = None
        self.n_accepted = 0
        self.n_rejected = 0
        self.n_evaluations = 0

    @property
    @abstractmethod
    def order(self) -> Optional[int]:
        """Order of accuracy of the integrator.

        Returns
        -------
        int or None
            Order of the method, or None if not applicable
        """
        pass

    @abstractmethod
    def _make_controller(self) -> _StepController:
        """Return the step-size controller of a new run."""

    @abstractmethod
    def _default_interpolator(self) -> _StepInterpolator:
        """Return a template of the scheme's own dense output."""

    @property
    def error_order(self) -> int:
        """Order of the local error estimate driving the step-size controller."""
        return self.order

    @abstractmethod
    def _attempt_step(
        self,
        f: Callable[[float, np.ndarray], np.ndarray],
        controller: _StepController,
        t: float,
        y: np.ndarray,
        f0: np.ndarray,
        h: float,
    ) -> _StepAttempt:
        """Advance *y* trially by the signed step *h* and estimate the local error."""

    def validate_system(self, system: _DynamicalSystemProtocol) -> None:
        """Check that *system* complies with :class:`~odestep.algorithms.dynamics.base._DynamicalSystemProtocol`.

        Raises
        ------
        :class:`~odestep.algorithms.utils.exceptions.ConfigurationError`
            If the required attribute ``rhs`` or ``dim`` is absent.
        """
        if not hasattr(system, 'rhs') or not hasattr(system, 'dim'):
            raise ConfigurationError(f"System must implement 'rhs' and 'dim' for {self.name}")

    def validate_inputs(
        self,
        system: _DynamicalSystemProtocol,
        y0: np.ndarray,
        t_vals: np.ndarray
    ) -> None:
        """Validate that the input arguments form a consistent integration task.

        Parameters
        ----------
        system : :class:`~odestep.algorithms.dynamics.base._DynamicalSystemProtocol`
            System to be integrated.
        y0 : numpy.ndarray
            Initial state vector of length ``system.dim``.
        t_vals : numpy.ndarray
            Monotonic array of time nodes with at least two entries.

        Raises
        ------
        :class:`~odestep.algorithms.utils.exceptions.ConfigurationError`
            If any of the following conditions holds:
            - ``y0`` is empty, not 1-D or holds non-finite values.
            - ``len(y0)`` differs from ``system.dim``.
            - ``t_vals`` contains fewer than two points or non-finite values.
            - ``t_vals`` is not strictly monotonic.
        """
        self.validate_system(system)

        if y0.ndim != 1 or y0.size == 0:
            raise ConfigurationError(f"Initial state must be a non-empty 1-D array, got shape {y0.shape}")
        if not np.all(np.isfinite(y0)):
            raise ConfigurationError("Initial state contains non-finite values")
        if len(y0) != system.dim:
            raise ConfigurationError(
                f"Initial state dimension {len(y0)} != system dimension {system.dim}"
            )

        if len(t_vals) < 2:
            raise ConfigurationError("Must provide at least 2 time points")
        if not np.all(np.isfinite(t_vals)):
            raise ConfigurationError("Time values must be finite")

        # Check that time values are monotonic (either strictly increasing or decreasing)
        dt = np.diff(t_vals)
        # Allow zero-span intervals (all times equal) for short-circuit handling
        if np.all(dt == 0.0):
            return
        if not (np.all(dt > 0) or np.all(dt < 0)):
            raise ConfigurationError("Time values must be strictly monotonic (either increasing or decreasing)")

    def __str__(self):
        return f"ODESTEP-{self.name}"

    def __repr__(self):
        return f"{self.__class__.__name__}(name='{self.name}', options={self.options})"

    def integrate(
        self,
        system: _DynamicalSystemProtocol,
        y0: np.ndarray,
        t_vals: np.ndarray,
        *,
        handler: "_StepHandler | Callable | None" = None,
        event_fn: "Callable[[float, np.ndarray], float] | None" = None,
        event_cfg: "_EventConfig | None" = None,
    ) -> _Solution:
        """Integrate the dynamical system from initial conditions.

        Parameters
        ----------
        system : _DynamicalSystemProtocol
            The dynamical system to integrate.
        y0 : numpy.ndarray
            Initial state vector, shape (system.dim,).
        t_vals : numpy.ndarray
            Time nodes.  With two entries ``(t0, tf)`` the solution holds the
            accepted step ends; with more entries the dense output is sampled
            at every node.
        handler : _StepHandler or callable, optional
            Consumer invoked as ``handler(interpolator, is_last)`` once per
            accepted step.  Returning ``True`` or ``StepAction.STOP`` ends
            the run early.
        event_fn : callable, optional
            Scalar event function ``g(t, y)``.
        event_cfg : _EventConfig, optional
            Event direction and refinement settings.

        Returns
        -------
        :class:`~odestep.algorithms.integrators.types._Solution`
            Integration results containing times, states and statistics.

        Raises
        ------
        :class:`~odestep.algorithms.utils.exceptions.ConfigurationError`
            If the inputs are inconsistent.
        :class:`~odestep.algorithms.utils.exceptions.ConvergenceError`
            If the step size underflows or the step budget is exhausted.
        :class:`~odestep.algorithms.utils.exceptions.EvaluationError`
            If a derivative evaluation returns unusable data.  Exceptions
            raised by the derivative provider or the handler propagate
            unchanged.
        """
        y0 = np.array(y0, dtype=np.float64)
        t_vals = np.asarray(t_vals, dtype=np.float64)
        self.validate_inputs(system, y0, t_vals)
        if event_fn is not None and event_cfg is None:
            event_cfg = _EventConfig()

        user_handler = _as_handler(handler)
        sampler = _SamplingHandler(t_vals) if t_vals.size > 2 else None
        handlers: List[_StepHandler] = [h for h in (sampler, user_handler) if h is not None]

        prototype = self._interpolator
        if prototype is None:
            dense = event_fn is not None or any(h.requires_dense_output for h in handlers)
            prototype = self._default_interpolator() if dense else _DummyStepInterpolator()
        factory = _StepPrototypeFactory(prototype)

        rhs = _CountingRHS(system.rhs, system.dim)
        self.status = IntegratorState.INITIALIZED
        self.n_accepted = 0
        self.n_rejected = 0
        self.n_evaluations = 0
        self.last_time = float(t_vals[0])
        self.last_state = y0.copy()

        try:
            nodes_t, nodes_y, nodes_f, t_events, y_events = self._run(
                rhs, y0, float(t_vals[0]), float(t_vals[-1]), factory, handlers, event_fn, event_cfg
            )
        except Exception:
            self.status = IntegratorState.FAILED
            self.n_evaluations = rhs.n_evaluations
            logger.error(f"{self.name}: integration failed at t={self.last_time!r}")
            raise
        self.n_evaluations = rhs.n_evaluations

        if sampler is not None:
            times = np.asarray(sampler.times, dtype=np.float64)
            states = np.asarray(sampler.states, dtype=np.float64).reshape(times.size, y0.size)
            derivs = np.asarray(sampler.derivatives, dtype=np.float64).reshape(times.size, y0.size)
        else:
            times = np.asarray(nodes_t, dtype=np.float64)
            states = np.asarray(nodes_y, dtype=np.float64)
            derivs = np.asarray(nodes_f, dtype=np.float64)

        return _Solution(
            times=times,
            states=states,
            derivatives=derivs,
            status=self.status,
            t_events=np.asarray(t_events, dtype=np.float64),
            y_events=np.asarray(y_events, dtype=np.float64).reshape(len(y_events), y0.size),
            n_accepted=self.n_accepted,
            n_rejected=self.n_rejected,
            n_evaluations=self.n_evaluations,
        )

    def _run(self, rhs, y0, t0, tf, factory, handlers, event_fn, event_cfg):
        forward = tf >= t0
        sign = 1.0 if forward else -1.0
        controller = self._make_controller()
        controller.reset()
        factory.start(y0, forward)
        for h in handlers:
            h.reset(t0, y0, tf)

        t = t0
        y = y0.copy()
        f0 = rhs(t, y)
        nodes_t, nodes_y, nodes_f = [t], [y.copy()], [f0.copy()]
        t_events: List[float] = []
        y_events: List[np.ndarray] = []

        if t0 == tf:
            # zero-span run: one degenerate step
            n_stages = factory.template.n_stages if hasattr(factory.template, "n_stages") else 1
            step = _StepData(start_state=y, start_derivative=f0, end_derivative=f0,
                             stages=np.tile(f0, (n_stages, 1)), rhs=rhs)
            interp = factory.reinitialize(t, t, y, forward, step=step)
            self.status = IntegratorState.STEPPING
            self._notify(handlers, interp, True)
            self.status = IntegratorState.COMPLETED
            return nodes_t, nodes_y, nodes_f, t_events, y_events

        self.status = IntegratorState.STEPPING
        h = controller.initial_step(rhs, t, y, f0, self.error_order)
        target = tf
        event_pending = False

        while True:
            # PROPOSE
            h = min(h, controller.max_step)
            remaining = abs(target - t)
            last = h >= remaining or remaining - h <= _END_RTOL * max(abs(t), abs(target))
            t_new = target if last else t + sign * h
            hs = t_new - t

            # EVALUATE_ERROR
            attempt = self._attempt_step(rhs, controller, t, y, f0, hs)
            if not controller.accept(attempt.err_norm):
                # REJECT
                self.n_rejected += 1
                h = controller.reject(abs(hs), attempt.err_norm, self.error_order, t)
                logger.debug(f"{self.name}: step rejected at t={t!r} (err={attempt.err_norm:.3e}), retrying with h={h:.3e}")
                continue

            # ACCEPT
            y_new = attempt.y_new
            if attempt.end_derivative is not None:
                f_new = attempt.end_derivative
            else:
                f_new = rhs(t_new, y_new)
            step = _StepData(start_state=y, start_derivative=f0, end_derivative=f_new,
                             stages=attempt.stages, rhs=rhs)
            interp = factory.reinitialize(t, t_new, y_new, forward, step=step)

            if event_fn is not None and not event_pending:
                ev = check_and_refine_event(event_fn, interp, y, event_cfg)
                if ev.hit:
                    t_end_slack = event_cfg.tol + _END_RTOL * max(abs(t_new), 1.0)
                    if event_cfg.terminal and abs(ev.t_event - t_new) > t_end_slack:
                        # retry the step so that it ends on the event
                        target = ev.t_event
                        event_pending = True
                        h = abs(ev.t_event - t)
                        logger.debug(f"{self.name}: terminal event bracketed in [{t!r}, {t_new!r}], landing on t={ev.t_event!r}")
                        continue
                    t_events.append(ev.t_event)
                    y_events.append(ev.y_event)
                    if event_cfg.terminal:
                        last = True
            elif event_pending and last:
                t_events.append(t_new)
                y_events.append(np.array(y_new))

            self.n_accepted += 1
            prev_err = attempt.err_norm
            t, y = t_new, np.array(y_new)
            self.last_time, self.last_state = t, y.copy()
            f0 = np.array(f_new)
            nodes_t.append(t)
            nodes_y.append(y.copy())
            nodes_f.append(f0.copy())

            stop = self._notify(handlers, interp, last)
            if stop and not last:
                logger.warning(f"{self.name}: integration stopped by step handler at t={t!r}")
            if last and target != tf:
                logger.warning(f"{self.name}: terminal event stopped integration at t={t!r}")
            if last or stop:
                break

            if self.n_accepted >= controller.max_steps:
                raise ConvergenceError(
                    f"{self.name}: maximum number of steps ({controller.max_steps}) reached at t={t!r} before tf={tf!r}"
                )
            h = controller.next_step(abs(hs), prev_err, self.error_order, t)

        self.status = IntegratorState.COMPLETED
        logger.info(
            f"{self.name}: reached t={t!r} after {self.n_accepted} accepted / "
            f"{self.n_rejected} rejected steps, {rhs.n_evaluations} evaluations"
        )
        return nodes_t, nodes_y, nodes_f, t_events, y_events

    @staticmethod
    def _notify(handlers: List[_StepHandler], interp: _StepInterpolator, is_last: bool) -> bool:
        stop = False
        for h in handlers:
            if _wants_stop(h.handle_step(interp, is_last)):
                stop = True
        return stop
