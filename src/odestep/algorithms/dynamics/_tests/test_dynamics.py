import numpy as np
import pytest

from odestep.algorithms.dynamics import (DynamicalSystem,
                                         DynamicalSystemProtocol,
                                         create_rhs_system)
from odestep.algorithms.dynamics.base import _CountingRHS
from odestep.algorithms.integrators import RungeKutta
from odestep.algorithms.utils.exceptions import (ConfigurationError,
                                                 EvaluationError)


class _Decay(DynamicalSystem):
    def __init__(self, rate):
        super().__init__(1)
        self._rate = rate

    @property
    def rhs(self):
        return lambda t, y: -self._rate * y


def test_rhs_system_satisfies_protocol():
    system = create_rhs_system(lambda t, y: -y, dim=3, name="decay")
    assert isinstance(system, DynamicalSystemProtocol)
    assert system.dim == 3
    assert np.array_equal(system.rhs(0.0, np.ones(3)), -np.ones(3))
    assert "decay" in repr(system)


def test_invalid_systems():
    with pytest.raises(ConfigurationError):
        create_rhs_system(lambda t, y: y, dim=0)
    with pytest.raises(ConfigurationError):
        create_rhs_system("not callable", dim=1)


def test_validate_state():
    system = _Decay(2.0)
    system.validate_state(np.zeros(1))
    with pytest.raises(ConfigurationError):
        system.validate_state(np.zeros(2))


def test_subclassed_system_integrates():
    sol = RungeKutta(order=4, step=0.01).integrate(_Decay(2.0), np.array([1.0]), np.array([0.0, 1.0]))
    assert abs(sol.states[-1, 0] - np.exp(-2.0)) < 1e-8


def test_counting_rhs():
    calls = _CountingRHS(lambda t, y: 2.0 * y, 2)
    assert np.array_equal(calls(0.0, np.ones(2)), [2.0, 2.0])
    calls(1.0, np.ones(2))
    assert calls.n_evaluations == 2

    bad = _CountingRHS(lambda t, y: np.ones(5), 2)
    with pytest.raises(EvaluationError):
        bad(0.0, np.ones(2))
