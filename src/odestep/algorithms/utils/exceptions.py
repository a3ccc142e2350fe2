"""
Custom exceptions for the algorithms package.
"""

class OdeStepError(Exception):
    """Base exception for odestep errors.

    Parameters
    ----------
    message : str
        The error message.
    """

    def __init__(self, message: str):
        super().__init__(message)


class EvaluationError(OdeStepError):
    """Raised when a derivative evaluation fails or returns unusable data.

    Derivative providers may raise it themselves; the integrator also raises
    it when a provider returns an array of the wrong shape. It is fatal to
    the current run.

    Parameters
    ----------
    message : str
        The error message.
    """

    def __init__(self, message: str):
        super().__init__(message)


class ConfigurationError(OdeStepError, ValueError):
    """Raised when an integration run or an interpolator is misconfigured.

    Covers mismatched vector lengths, empty or non-finite initial states,
    direction mismatches, queries on unfinalized interpolators and
    out-of-bounds queries on non-extrapolating interpolators.

    Parameters
    ----------
    message : str
        The error message.
    """

    def __init__(self, message: str):
        super().__init__(message)


class ConvergenceError(ConfigurationError):
    """Raised when the step size underflows or the step budget is exhausted.

    Parameters
    ----------
    message : str
        The error message.
    """

    def __init__(self, message: str):
        super().__init__(message)


class SerializationError(OdeStepError, IOError):
    """Raised when persisted interpolator data is corrupt or truncated.

    Parameters
    ----------
    message : str
        The error message.
    """

    def __init__(self, message: str):
        super().__init__(message)
