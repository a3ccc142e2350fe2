import pickle

import h5py
import numpy as np
import pytest

from odestep.algorithms.dynamics import create_rhs_system
from odestep.algorithms.integrators import (AdaptiveRK, ContinuousOutputModel)
from odestep.algorithms.interpolators import (DormandPrince54StepInterpolator,
                                              DummyStepInterpolator,
                                              HermiteStepInterpolator,
                                              RK4StepInterpolator, StepData)
from odestep.algorithms.utils.exceptions import SerializationError
from odestep.utils.io.interpolator import (HDF5_VERSION, decode_interpolator,
                                           encode_interpolator,
                                           load_continuous_output,
                                           load_interpolator, read_header,
                                           save_continuous_output,
                                           save_interpolator)


def _rk4(forward=True):
    rng = np.random.default_rng(7)
    interp = RK4StepInterpolator(extrapolate=False)
    t0, t1 = (0.0, 0.5) if forward else (0.5, 0.0)
    interp.reinitialize(rng.normal(size=3), forward, t0, t1, step=StepData(stages=rng.normal(size=(4, 3))))
    return interp


def _dopri5():
    rng = np.random.default_rng(11)
    interp = DormandPrince54StepInterpolator()
    interp.reinitialize(rng.normal(size=2), True, 1.0, 1.25, step=StepData(stages=rng.normal(size=(7, 2))))
    return interp


def _hermite(rhs=None):
    interp = HermiteStepInterpolator()
    step = StepData(start_state=np.array([1.0]), start_derivative=np.array([3.0]),
                    end_derivative=None if rhs else np.array([12.0]), rhs=rhs)
    interp.reinitialize(np.array([8.0]), True, 1.0, 2.0, step=step)
    return interp


def _assert_same_dense_output(a, b, times):
    assert type(a) is type(b)
    assert a.forward == b.forward
    assert a.previous_time == b.previous_time
    assert a.current_time == b.current_time
    assert a.extrapolate == b.extrapolate
    for t in times:
        a.set_interpolated_time(t)
        b.set_interpolated_time(t)
        assert np.array_equal(a.interpolated_state, b.interpolated_state)
        assert np.array_equal(a.interpolated_derivatives, b.interpolated_derivatives)


def test_byte_layout_of_dummy():
    interp = DummyStepInterpolator()
    interp.reinitialize(np.array([1.0, 2.0]), True, 0.0, 1.0)
    data = encode_interpolator(interp)

    # flags, current time, previous time, length, state, tag length, tag, options, payload size
    assert len(data) == 1 + 8 + 8 + 4 + 16 + 4 + 5 + 1 + 4
    assert data[0] == 0x03
    assert np.frombuffer(data[1:9], dtype="<f8")[0] == 1.0
    assert np.frombuffer(data[9:17], dtype="<f8")[0] == 0.0
    assert np.frombuffer(data[17:21], dtype="<i4")[0] == 2
    assert data[41:46] == b"dummy"


@pytest.mark.parametrize("make, times", [
    (lambda: _rk4(), (0.0, 0.1, 0.37, 0.5)),
    (lambda: _rk4(forward=False), (0.5, 0.2, 0.0)),
    (_dopri5, (1.0, 1.1, 1.25)),
    (_hermite, (1.0, 1.5, 2.0)),
])
def test_bytes_preserve_dense_output(make, times):
    interp = make()
    restored = decode_interpolator(encode_interpolator(interp))
    _assert_same_dense_output(interp, restored, times)
    assert restored.interpolated_time == restored.current_time


def test_unbound_template_round_trip():
    restored = decode_interpolator(encode_interpolator(HermiteStepInterpolator(extrapolate=True)))
    assert isinstance(restored, HermiteStepInterpolator)
    assert not restored.is_finalized
    assert restored.extrapolate is True
    assert restored.dimension == 0

    storage_only = RK4StepInterpolator()
    storage_only.reinitialize(np.zeros(3), False)
    header = read_header(encode_interpolator(storage_only))
    assert not header.finalized
    assert header.previous_time is None
    assert header.state.shape == (3,)


def test_lazy_data_is_persisted():
    calls = []

    def rhs(t, y):
        calls.append(t)
        return np.array([3.0 * t ** 2])

    restored = decode_interpolator(encode_interpolator(_hermite(rhs)))
    assert calls == [2.0]
    restored.set_interpolated_time(1.5)
    assert abs(restored.interpolated_state[0] - 1.5 ** 3) < 1e-12


def test_truncated_data_raises():
    data = encode_interpolator(_rk4())
    for cut in (0, 1, 9, 20, 30, len(data) // 2, len(data) - 1):
        with pytest.raises(SerializationError):
            decode_interpolator(data[:cut])


def test_trailing_bytes_raise():
    data = encode_interpolator(_rk4())
    with pytest.raises(SerializationError):
        decode_interpolator(data + b"\x00")


def test_direction_flag_contradicting_bounds_raises():
    interp = DummyStepInterpolator()
    interp.reinitialize(np.array([1.0, 2.0]), True, 0.0, 1.0)
    data = bytearray(encode_interpolator(interp))
    data[0] &= ~0x01

    with pytest.raises(SerializationError):
        decode_interpolator(bytes(data))
    with pytest.raises(SerializationError):
        read_header(bytes(data))


def test_zero_length_step_accepts_either_direction_flag():
    interp = DummyStepInterpolator()
    interp.reinitialize(np.array([1.0]), False, 2.0, 2.0)
    restored = decode_interpolator(encode_interpolator(interp))
    assert restored.forward is False
    assert restored.step_size == 0.0


def test_payload_without_state_raises():
    # unbound template: no state and an empty payload
    data = encode_interpolator(RK4StepInterpolator())
    assert data[-4:] == np.array(0, dtype="<i4").tobytes()
    array = np.array([1, 1, 1], dtype="<i4").tobytes() + np.array([0.5], dtype="<f8").tobytes()

    with pytest.raises(SerializationError):
        decode_interpolator(data[:-4] + array)


def test_hermite_payload_without_state_raises():
    data = encode_interpolator(HermiteStepInterpolator())
    one_array = np.array([1, 1], dtype="<i4").tobytes() + np.array([0.5], dtype="<f8").tobytes()
    payload = np.array([3], dtype="<i4").tobytes() + 3 * one_array

    with pytest.raises(SerializationError):
        decode_interpolator(data[:-4] + payload)


def test_unknown_variant_keeps_header_readable():
    interp = DummyStepInterpolator()
    interp.reinitialize(np.array([4.0, 5.0]), False, 3.0, 2.5)
    data = encode_interpolator(interp).replace(b"dummy", b"mystr")

    with pytest.raises(SerializationError):
        decode_interpolator(data)

    header = read_header(data)
    assert header.forward is False
    assert header.finalized is True
    assert header.previous_time == 3.0
    assert header.current_time == 2.5
    assert np.array_equal(header.state, [4.0, 5.0])


def test_pickle_round_trip():
    interp = _dopri5()
    restored = pickle.loads(pickle.dumps(interp))
    _assert_same_dense_output(interp, restored, (1.0, 1.2, 1.25))


def test_hdf5_round_trip(tmp_path):
    interp = _rk4()
    path = tmp_path / "nested" / "step.h5"
    save_interpolator(interp, path)

    with h5py.File(path, "r") as f:
        assert f.attrs["format_version"] == HDF5_VERSION
        assert f.attrs["variant"] == "rk4"

    restored = load_interpolator(path)
    _assert_same_dense_output(interp, restored, (0.0, 0.25, 0.5))


def test_hdf5_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_interpolator(tmp_path / "absent.h5")


def test_hdf5_unknown_variant(tmp_path):
    path = tmp_path / "step.h5"
    save_interpolator(_hermite(), path)
    with h5py.File(path, "r+") as f:
        f.attrs["variant"] = "unknown"
    with pytest.raises(SerializationError):
        load_interpolator(path)


def test_hdf5_direction_flag_contradicting_bounds(tmp_path):
    path = tmp_path / "step.h5"
    save_interpolator(_rk4(), path)
    with h5py.File(path, "r+") as f:
        f["header"].attrs["forward"] = False
    with pytest.raises(SerializationError):
        load_interpolator(path)


def test_continuous_output_round_trip(tmp_path):
    system = create_rhs_system(lambda t, y: np.array([y[1], -y[0]]), dim=2, name="oscillator")
    model = ContinuousOutputModel()
    AdaptiveRK(order=5, rtol=1e-8, atol=1e-10).integrate(
        system, np.array([1.0, 0.0]), np.array([0.0, 3.0]), handler=model
    )

    path = tmp_path / "run.h5"
    save_continuous_output(model, path)
    restored = load_continuous_output(path)

    assert len(restored) == len(model)
    times = np.linspace(0.0, 3.0, 31)
    assert np.array_equal(restored.sample(times), model.sample(times))
