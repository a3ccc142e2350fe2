"""Derivative providers for the integrators."""

from .base import _DynamicalSystem as DynamicalSystem
from .base import _DynamicalSystemProtocol as DynamicalSystemProtocol
from .base import create_rhs_system

__all__ = [
    "DynamicalSystem",
    "DynamicalSystemProtocol",
    "create_rhs_system",
]
