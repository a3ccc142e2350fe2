import numpy as np
import pytest

from odestep.algorithms.interpolators import (DormandPrince54StepInterpolator,
                                              DummyStepInterpolator,
                                              EulerStepInterpolator,
                                              HermiteStepInterpolator,
                                              MidpointStepInterpolator,
                                              RK4StepInterpolator, StepData)
from odestep.algorithms.interpolators.base import _resolve_variant
from odestep.algorithms.utils.exceptions import (ConfigurationError,
                                                 EvaluationError)


def _cubic_step(t0=1.0, t1=2.0):
    # y(t) = t^3 is reproduced exactly by a cubic Hermite polynomial
    return StepData(
        start_state=np.array([t0 ** 3]),
        start_derivative=np.array([3.0 * t0 ** 2]),
        end_derivative=np.array([3.0 * t1 ** 2]),
    )


def _bound_hermite(**kwargs):
    interp = HermiteStepInterpolator(**kwargs)
    interp.reinitialize(np.array([8.0]), True, 1.0, 2.0, step=_cubic_step())
    return interp


def _bound_rk4(y_end, K, t0=0.0, t1=0.5):
    interp = RK4StepInterpolator()
    interp.reinitialize(y_end, t1 >= t0, t0, t1, step=StepData(stages=K))
    return interp


def test_dummy_returns_end_state_everywhere():
    interp = DummyStepInterpolator()
    state = np.array([1.0, -2.0, 3.5])
    interp.reinitialize(state, True, 0.0, 1.0)

    for t in (0.0, 0.3, 1.0, -7.0, 42.0):
        interp.set_interpolated_time(t)
        assert np.array_equal(interp.interpolated_state, state)
        assert np.array_equal(interp.interpolated_derivatives, np.zeros(3))


def test_dummy_always_extrapolates():
    assert DummyStepInterpolator(extrapolate=False).extrapolate is True


@pytest.mark.parametrize("make", [
    lambda: _bound_hermite(),
    lambda: _bound_rk4(np.array([0.3, -1.1]), np.arange(8, dtype=float).reshape(4, 2)),
])
def test_end_of_step_state_is_exact(make):
    interp = make()
    expected = np.array(interp.current_state)
    interp.set_interpolated_time(interp.current_time)
    assert np.array_equal(interp.interpolated_state, expected)


def test_hermite_reproduces_cubic():
    interp = _bound_hermite()
    for t in (1.0, 1.25, 1.5, 1.9):
        interp.set_interpolated_time(t)
        assert abs(interp.interpolated_state[0] - t ** 3) < 1e-12
        assert abs(interp.interpolated_derivatives[0] - 3.0 * t ** 2) < 1e-12


def test_euler_extension_is_linear():
    y0, f0, h = np.array([1.0, 2.0]), np.array([0.5, -1.0]), 0.2
    interp = EulerStepInterpolator()
    interp.reinitialize(y0 + h * f0, True, 0.0, h, step=StepData(stages=f0[None, :]))

    interp.set_interpolated_time(0.05)
    assert np.allclose(interp.interpolated_state, y0 + 0.05 * f0, rtol=0, atol=1e-14)
    assert np.allclose(interp.interpolated_derivatives, f0, rtol=0, atol=1e-14)


@pytest.mark.parametrize("cls", [EulerStepInterpolator, MidpointStepInterpolator,
                                 RK4StepInterpolator, DormandPrince54StepInterpolator])
def test_constant_derivative_gives_linear_dense_output(cls):
    # every stage equal to f means y(t) = y_end - (t_end - t) f for a consistent scheme
    f = np.array([2.0, -3.0])
    y_end = np.array([1.0, 1.0])
    interp = cls()
    interp.reinitialize(y_end, True, 0.0, 0.5, step=StepData(stages=np.tile(f, (interp.n_stages, 1))))

    interp.set_interpolated_time(0.2)
    assert np.allclose(interp.interpolated_state, y_end - 0.3 * f, rtol=0, atol=1e-8)
    assert np.allclose(interp.interpolated_derivatives, f, rtol=0, atol=1e-8)


def test_copy_is_independent_of_later_reinitialization():
    K = np.ones((4, 2))
    interp = _bound_rk4(np.array([1.0, 2.0]), K)
    interp.set_interpolated_time(0.25)
    snapshot = np.array(interp.interpolated_state)

    dup = interp.copy()
    interp.reinitialize(np.array([10.0, 20.0]), True, 0.5, 1.0, step=StepData(stages=5.0 * K))

    assert dup.previous_time == 0.0 and dup.current_time == 0.5
    dup.set_interpolated_time(0.25)
    assert np.array_equal(dup.interpolated_state, snapshot)


def test_reinitialize_reuses_backing_storage():
    interp = _bound_rk4(np.array([1.0, 2.0]), np.ones((4, 2)))
    buf = interp._current_state
    interp.reinitialize(np.array([3.0, 4.0]), True, 0.5, 1.0, step=StepData(stages=np.ones((4, 2))))
    assert interp._current_state is buf


def test_non_extrapolating_query_outside_step_raises():
    interp = _bound_hermite()
    interp.set_interpolated_time(2.5)
    with pytest.raises(ConfigurationError):
        interp.interpolated_state


def test_extrapolating_query_outside_step_is_allowed():
    interp = _bound_hermite(extrapolate=True)
    interp.set_interpolated_time(2.5)
    assert abs(interp.interpolated_state[0] - 2.5 ** 3) < 1e-10


def test_query_before_binding_raises():
    interp = HermiteStepInterpolator()
    with pytest.raises(ConfigurationError):
        interp.interpolated_state

    # binding the storage alone does not make it usable
    interp.reinitialize(np.zeros(2), True)
    assert not interp.is_finalized
    with pytest.raises(ConfigurationError):
        interp.interpolated_state


def test_direction_mismatch_raises():
    interp = DummyStepInterpolator()
    with pytest.raises(ConfigurationError):
        interp.reinitialize(np.zeros(1), True, 1.0, 0.0)


def test_direction_mismatch_keeps_previous_step():
    interp = DummyStepInterpolator()
    interp.reinitialize(np.array([1.0, 2.0]), True, 0.0, 1.0)
    with pytest.raises(ConfigurationError):
        interp.reinitialize(np.array([9.0, 9.0]), True, 1.0, 0.5)

    assert interp.is_finalized
    assert interp.previous_time == 0.0 and interp.current_time == 1.0
    interp.set_interpolated_time(1.0)
    assert np.array_equal(interp.interpolated_state, [1.0, 2.0])
    assert np.array_equal(interp.current_state, [1.0, 2.0])


def test_failed_step_binding_leaves_instance_unusable():
    interp = _bound_hermite()
    with pytest.raises(ConfigurationError):
        interp.reinitialize(np.array([27.0]), True, 2.0, 3.0, step=StepData())

    assert not interp.is_finalized
    interp.set_interpolated_time(3.0)
    with pytest.raises(ConfigurationError):
        interp.interpolated_state

    # a complete step makes it usable again
    step = StepData(start_state=np.array([8.0]), start_derivative=np.array([12.0]),
                    end_derivative=np.array([27.0]))
    interp.reinitialize(np.array([27.0]), True, 2.0, 3.0, step=step)
    interp.set_interpolated_time(2.5)
    assert abs(interp.interpolated_state[0] - 2.5 ** 3) < 1e-12


def test_backward_step():
    interp = HermiteStepInterpolator()
    step = StepData(start_state=np.array([8.0]), start_derivative=np.array([12.0]),
                    end_derivative=np.array([3.0]))
    interp.reinitialize(np.array([1.0]), False, 2.0, 1.0, step=step)

    assert interp.step_size == -1.0
    interp.set_interpolated_time(1.5)
    assert abs(interp.interpolated_state[0] - 1.5 ** 3) < 1e-12


def test_zero_length_step_returns_end_state():
    interp = _bound_rk4(np.array([4.0]), np.full((4, 1), 7.0), t0=1.0, t1=1.0)
    interp.set_interpolated_time(1.0)
    assert np.array_equal(interp.interpolated_state, [4.0])


def test_invalid_state_shape_raises():
    with pytest.raises(ConfigurationError):
        DummyStepInterpolator().reinitialize(np.zeros((2, 2)), True, 0.0, 1.0)
    with pytest.raises(ConfigurationError):
        DummyStepInterpolator().reinitialize(np.zeros(0), True, 0.0, 1.0)


def test_stage_shape_mismatch_raises():
    with pytest.raises(ConfigurationError):
        _bound_rk4(np.zeros(2), np.zeros((3, 2)))


@pytest.mark.parametrize("interp", [
    DummyStepInterpolator(),
    HermiteStepInterpolator(extrapolate=True),
    EulerStepInterpolator(extrapolate=False),
    DormandPrince54StepInterpolator(),
])
def test_clone_preserves_variant_and_configuration(interp):
    interp.reinitialize(np.zeros(1), True)
    dup = interp.clone()
    assert type(dup) is type(interp)
    assert dup.extrapolate == interp.extrapolate
    assert not dup.is_finalized
    assert dup.dimension == 0


def test_read_only_views():
    interp = _bound_hermite()
    with pytest.raises(ValueError):
        interp.current_state[0] = 1.0
    with pytest.raises(ValueError):
        interp.interpolated_state[0] = 1.0


def test_hermite_end_derivative_is_evaluated_lazily():
    calls = []

    def rhs(t, y):
        calls.append(t)
        return 3.0 * np.array([t ** 2])

    interp = HermiteStepInterpolator()
    step = StepData(start_state=np.array([1.0]), start_derivative=np.array([3.0]), rhs=rhs)
    interp.reinitialize(np.array([8.0]), True, 1.0, 2.0, step=step)
    assert calls == []

    interp.set_interpolated_time(1.5)
    assert abs(interp.interpolated_state[0] - 1.5 ** 3) < 1e-12
    interp.finalize_step()
    interp.copy()
    assert calls == [2.0]


def test_hermite_lazy_failure_propagates_from_copy():
    def rhs(t, y):
        raise RuntimeError("provider failure")

    interp = HermiteStepInterpolator()
    step = StepData(start_state=np.array([1.0]), start_derivative=np.array([3.0]), rhs=rhs)
    interp.reinitialize(np.array([8.0]), True, 1.0, 2.0, step=step)
    with pytest.raises(RuntimeError, match="provider failure"):
        interp.copy()


def test_hermite_lazy_wrong_shape_raises_evaluation_error():
    interp = HermiteStepInterpolator()
    step = StepData(start_state=np.array([1.0]), start_derivative=np.array([3.0]),
                    rhs=lambda t, y: np.zeros(3))
    interp.reinitialize(np.array([8.0]), True, 1.0, 2.0, step=step)
    with pytest.raises(EvaluationError):
        interp.finalize_step()


def test_hermite_needs_start_data():
    with pytest.raises(ConfigurationError):
        HermiteStepInterpolator().reinitialize(np.zeros(1), True, 0.0, 1.0, step=StepData())


def test_variant_registry():
    assert _resolve_variant("hermite") is HermiteStepInterpolator
    assert _resolve_variant("dopri5") is DormandPrince54StepInterpolator
    with pytest.raises(ConfigurationError):
        _resolve_variant("no-such-variant")
