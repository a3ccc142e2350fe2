"""Dense-output step interpolators and the prototype factory producing them."""

from .base import _StepData, _StepInterpolator
from .dummy import _DummyStepInterpolator as DummyStepInterpolator
from .factory import _StepPrototypeFactory as StepPrototypeFactory
from .hermite import _HermiteStepInterpolator as HermiteStepInterpolator
from .rk import _DormandPrince54StepInterpolator as DormandPrince54StepInterpolator
from .rk import _EulerStepInterpolator as EulerStepInterpolator
from .rk import _MidpointStepInterpolator as MidpointStepInterpolator
from .rk import _RK4StepInterpolator as RK4StepInterpolator

StepInterpolator = _StepInterpolator
StepData = _StepData

__all__ = [
    "StepInterpolator",
    "StepData",
    "DummyStepInterpolator",
    "HermiteStepInterpolator",
    "EulerStepInterpolator",
    "MidpointStepInterpolator",
    "RK4StepInterpolator",
    "DormandPrince54StepInterpolator",
    "StepPrototypeFactory",
]
