"""Provide the derivative-provider abstraction consumed by the integrators.

A dynamical system exposes its dimension and a right-hand side callable
``rhs(t, y)`` returning ``dy/dt``.  Integrators only depend on the
:class:`~odestep.algorithms.dynamics.base._DynamicalSystemProtocol`
interface, so any object with these two members can be integrated.
"""

from abc import ABC, abstractmethod
from typing import Callable, Protocol, runtime_checkable

import numpy as np

from odestep.algorithms.utils.exceptions import (ConfigurationError,
                                                 EvaluationError)


@runtime_checkable
class _DynamicalSystemProtocol(Protocol):
    """Define the interface every dynamical system must satisfy.

    Attributes
    ----------
    dim : int
        Dimension of the state space.
    rhs : Callable[[float, numpy.ndarray], numpy.ndarray]
        Right-hand side ``f(t, y)``.  Must not mutate ``y`` and must be
        deterministic for identical inputs.
    """

    @property
    def dim(self) -> int:
        ...

    @property
    def rhs(self) -> Callable[[float, np.ndarray], np.ndarray]:
        ...


class _DynamicalSystem(ABC):
    """Provide common functionality for dynamical systems.

    Parameters
    ----------
    dim : int
        Dimension of the state space.  Must be positive.

    Raises
    ------
    :class:`~odestep.algorithms.utils.exceptions.ConfigurationError`
        If *dim* is not positive.
    """

    def __init__(self, dim: int):
        if dim <= 0:
            raise ConfigurationError(f"Dimension must be positive, got {dim}")
        self._dim = int(dim)

    @property
    def dim(self) -> int:
        """Dimension of the state space."""
        return self._dim

    @property
    @abstractmethod
    def rhs(self) -> Callable[[float, np.ndarray], np.ndarray]:
        pass

    def validate_state(self, y: np.ndarray) -> None:
        """Check that *y* has the dimension of the system.

        Raises
        ------
        :class:`~odestep.algorithms.utils.exceptions.ConfigurationError`
            If the state vector has incorrect dimension.
        """
        if len(y) != self.dim:
            raise ConfigurationError(f"State vector dimension {len(y)} != system dimension {self.dim}")


class _RHSSystem(_DynamicalSystem):
    """Wrap an arbitrary right-hand side callable into a dynamical system.

    Parameters
    ----------
    rhs_func : Callable[[float, numpy.ndarray], numpy.ndarray]
        Function returning the time derivative of the state.
    dim : int
        Dimension of the state space.
    name : str, default "Generic RHS"
        Human-readable identifier.
    """

    def __init__(self, rhs_func: Callable[[float, np.ndarray], np.ndarray], dim: int, name: str = "Generic RHS"):
        super().__init__(dim)
        if not callable(rhs_func):
            raise ConfigurationError("rhs_func must be callable")
        self._rhs_func = rhs_func
        self.name = name

    @property
    def rhs(self) -> Callable[[float, np.ndarray], np.ndarray]:
        return self._rhs_func

    def __repr__(self) -> str:
        return f"_RHSSystem(name='{self.name}', dim={self.dim})"


def create_rhs_system(rhs_func: Callable[[float, np.ndarray], np.ndarray], dim: int, name: str = "Generic RHS") -> _RHSSystem:
    """Create a dynamical system from a plain ``(t, y)`` callable."""
    return _RHSSystem(rhs_func, dim, name)


class _CountingRHS:
    """Evaluate a system right-hand side while counting calls and checking shapes.

    Exceptions raised by the wrapped callable propagate unchanged.  A result
    whose shape differs from the state raises
    :class:`~odestep.algorithms.utils.exceptions.EvaluationError`.
    """

    def __init__(self, rhs: Callable[[float, np.ndarray], np.ndarray], dim: int):
        self._rhs = rhs
        self._dim = dim
        self.n_evaluations = 0

    def __call__(self, t: float, y: np.ndarray) -> np.ndarray:
        self.n_evaluations += 1
        ydot = np.asarray(self._rhs(t, y), dtype=np.float64)
        if ydot.shape != (self._dim,):
            raise EvaluationError(
                f"Derivative at t={t!r} has shape {ydot.shape}, expected ({self._dim},)"
            )
        return ydot
