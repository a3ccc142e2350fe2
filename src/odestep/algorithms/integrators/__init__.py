"""Explicit Runge-Kutta integrators with dense output, step handlers and events."""

from .base import _Integrator
from .configs import _AdaptiveStepConfig as AdaptiveStepConfig
from .configs import _EventConfig as EventConfig
from .configs import _FixedStepConfig as FixedStepConfig
from .handlers import _ContinuousOutputModel as ContinuousOutputModel
from .handlers import _DummyStepHandler as DummyStepHandler
from .handlers import _StepHandler as StepHandler
from .handlers import _StepNormalizer as StepNormalizer
from .rk import AdaptiveRK, RungeKutta
from .types import EventResult, IntegratorState, StepAction, _Solution

Integrator = _Integrator
Solution = _Solution

__all__ = [
    "Integrator",
    "RungeKutta",
    "AdaptiveRK",
    "Solution",
    "IntegratorState",
    "StepAction",
    "EventResult",
    "EventConfig",
    "FixedStepConfig",
    "AdaptiveStepConfig",
    "StepHandler",
    "DummyStepHandler",
    "StepNormalizer",
    "ContinuousOutputModel",
]
