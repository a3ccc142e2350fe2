""" Public API for the :mod:`~odestep.algorithms` package.
"""

from .dynamics import DynamicalSystem, create_rhs_system
from .integrators import (AdaptiveRK, ContinuousOutputModel, EventConfig,
                          RungeKutta, StepAction, StepHandler, StepNormalizer)
from .interpolators import (DormandPrince54StepInterpolator,
                            DummyStepInterpolator, HermiteStepInterpolator,
                            StepInterpolator, StepPrototypeFactory)

__all__ = [
    "DynamicalSystem",
    "create_rhs_system",
    "RungeKutta",
    "AdaptiveRK",
    "EventConfig",
    "StepAction",
    "StepHandler",
    "StepNormalizer",
    "ContinuousOutputModel",
    "StepInterpolator",
    "DummyStepInterpolator",
    "HermiteStepInterpolator",
    "DormandPrince54StepInterpolator",
    "StepPrototypeFactory",
]
