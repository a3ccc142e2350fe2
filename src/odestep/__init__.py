"""Adaptive Runge-Kutta integration with reusable dense-output step interpolators."""

from odestep.algorithms import *  # noqa: F401,F403
from odestep.algorithms import __all__ as _algorithms_all
from odestep.algorithms.utils.exceptions import (ConfigurationError,
                                                 ConvergenceError,
                                                 EvaluationError,
                                                 OdeStepError,
                                                 SerializationError)
from odestep.utils.io.interpolator import (decode_interpolator,
                                           encode_interpolator,
                                           load_continuous_output,
                                           load_interpolator, read_header,
                                           save_continuous_output,
                                           save_interpolator)

__version__ = "0.1.0"

__all__ = list(_algorithms_all) + [
    "OdeStepError",
    "ConfigurationError",
    "ConvergenceError",
    "EvaluationError",
    "SerializationError",
    "encode_interpolator",
    "decode_interpolator",
    "read_header",
    "save_interpolator",
    "load_interpolator",
    "save_continuous_output",
    "load_continuous_output",
]
