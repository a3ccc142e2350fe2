import numba
import numpy as np
import pytest

from odestep.algorithms.dynamics import create_rhs_system
from odestep.algorithms.integrators import AdaptiveRK, RungeKutta
from odestep.algorithms.integrators.configs import _EventConfig
from odestep.algorithms.integrators.events import check_and_refine_event
from odestep.algorithms.interpolators import HermiteStepInterpolator, StepData
from odestep.algorithms.utils.exceptions import ConfigurationError


def _slope(value, name):
    return create_rhs_system(lambda t, y: np.array([value]), dim=1, name=name)


def _level(t, y):
    return float(y[0] - 1.0)


def test_rk45_event_positive_crossing():
    # dy/dt = 1, y(t) = y0 + t; event at y = 1 -> t_hit = 1 - y0
    sol = AdaptiveRK(order=5).integrate(
        _slope(1.0, "unit_slope"), np.array([0.0]), np.array([0.0, 2.0]),
        event_fn=_level, event_cfg=_EventConfig(direction=+1, terminal=True),
    )

    # early termination exactly at the event
    t_hit = sol.times[-1]
    assert abs(t_hit - 1.0) < 1e-10
    assert abs(sol.states[-1, 0] - 1.0) < 1e-10
    assert sol.t_events.shape == (1,)
    assert sol.t_events[0] == t_hit
    assert np.array_equal(sol.y_events[0], sol.states[-1])


def test_rk45_event_negative_crossing():
    # dy/dt = -1, y(t) = y0 - t; event at y = 1 -> t_hit = y0 - 1
    sol = AdaptiveRK(order=5).integrate(
        _slope(-1.0, "neg_slope"), np.array([1.5]), np.array([0.0, 2.0]),
        event_fn=_level, event_cfg=_EventConfig(direction=-1, terminal=True),
    )
    assert abs(sol.times[-1] - 0.5) < 1e-10
    assert abs(sol.states[-1, 0] - 1.0) < 1e-10


def test_event_strict_direction_no_hit():
    # increasing trajectory, decreasing crossing requested -> no hit
    sol = AdaptiveRK(order=5).integrate(
        _slope(1.0, "unit_slope_nohit"), np.array([0.0]), np.array([0.0, 1.5]),
        event_fn=_level, event_cfg=_EventConfig(direction=-1, terminal=True),
    )
    assert sol.times[-1] == 1.5
    assert abs(sol.states[-1, 0] - 1.5) < 1e-8
    assert sol.t_events.size == 0


def test_start_on_surface_moving_away_no_hit():
    sol = AdaptiveRK(order=5).integrate(
        _slope(1.0, "start_on_plane"), np.array([1.0]), np.array([0.0, 0.5]),
        event_fn=_level, event_cfg=_EventConfig(direction=+1, terminal=True),
    )
    assert sol.times[-1] == 0.5
    assert sol.t_events.size == 0


def test_event_any_direction_with_fixed_step():
    sol = RungeKutta(order=4, step=0.1).integrate(
        _slope(1.0, "any_dir"), np.array([0.25]), np.array([0.0, 5.0]),
        event_fn=_level, event_cfg=_EventConfig(direction=0, terminal=True),
    )
    assert abs(sol.times[-1] - 0.75) < 1e-10
    assert abs(sol.states[-1, 0] - 1.0) < 1e-10


def test_event_never_changes_sign():
    sol = AdaptiveRK(order=5).integrate(
        _slope(0.0, "always_pos"), np.array([2.0]), np.array([0.0, 1.0]),
        event_fn=_level, event_cfg=_EventConfig(direction=0, terminal=True),
    )
    assert sol.times[-1] == 1.0
    assert sol.states[-1, 0] == 2.0
    assert sol.t_events.size == 0


def test_event_numba_compiled_function():
    @numba.njit(cache=False)
    def g(t, y):
        return y[0] - 1.5

    sol = AdaptiveRK(order=5).integrate(
        _slope(1.0, "numba_evt"), np.array([0.0]), np.array([0.0, 3.0]),
        event_fn=g, event_cfg=_EventConfig(direction=+1, terminal=True),
    )
    assert abs(sol.times[-1] - 1.5) < 1e-9
    assert abs(sol.states[-1, 0] - 1.5) < 1e-9


def test_backward_terminal_event():
    sol = AdaptiveRK(order=5).integrate(
        _slope(1.0, "backward"), np.array([3.0]), np.array([3.0, 0.0]),
        event_fn=_level, event_cfg=_EventConfig(direction=-1, terminal=True),
    )
    # going backward in time y decreases through 1 at t = 1
    assert abs(sol.times[-1] - 1.0) < 1e-10
    assert np.all(np.diff(sol.times) < 0)


def test_non_terminal_events_are_all_recorded():
    system = create_rhs_system(lambda t, y: np.array([y[1], -y[0]]), dim=2, name="oscillator")
    sol = AdaptiveRK(order=5, rtol=1e-10, atol=1e-12).integrate(
        system, np.array([1.0, 0.0]), np.array([0.0, 10.0]),
        event_fn=lambda t, y: float(y[0]), event_cfg=_EventConfig(direction=0, terminal=False),
    )

    expected = np.array([0.5, 1.5, 2.5]) * np.pi
    assert sol.times[-1] == 10.0
    assert np.allclose(sol.t_events, expected, atol=1e-7)
    assert np.allclose(sol.y_events[:, 0], 0.0, atol=1e-7)
    assert np.allclose(np.abs(sol.y_events[:, 1]), 1.0, atol=1e-7)


def test_refinement_uses_dense_output():
    # y(t) = t^3 on [0, 2]; root of y - 1 at t = 1
    interp = HermiteStepInterpolator()
    step = StepData(start_state=np.array([0.0]), start_derivative=np.array([0.0]),
                    end_derivative=np.array([12.0]))
    interp.reinitialize(np.array([8.0]), True, 0.0, 2.0, step=step)
    interp.set_interpolated_time(0.7)

    res = check_and_refine_event(_level, interp, np.array([0.0]), _EventConfig(tol=1e-13))

    assert res.hit
    assert abs(res.t_event - 1.0) < 1e-12
    assert abs(res.y_event[0] - 1.0) < 1e-11
    # the caller's query time is left untouched
    assert interp.interpolated_time == 0.7


@pytest.mark.parametrize("kwargs", [{"direction": 2}, {"tol": 0.0}, {"max_iter": 0}])
def test_event_config_validation(kwargs):
    with pytest.raises(ConfigurationError):
        _EventConfig(**kwargs)


def test_zero_order_hold_reports_event_at_step_end():
    # y = 0.25 + t crosses 1 inside the step [0.7, 0.8]
    sol = RungeKutta(order=4, step=0.1, interpolator="dummy").integrate(
        _slope(1.0, "held"), np.array([0.25]), np.array([0.0, 5.0]),
        event_fn=_level, event_cfg=_EventConfig(direction=+1, terminal=True),
    )
    assert abs(sol.times[-1] - 0.8) < 1e-12
    assert sol.t_events[0] == sol.times[-1]
    assert np.array_equal(sol.y_events[0], sol.states[-1])
    assert abs(sol.states[-1, 0] - 1.05) < 1e-12
