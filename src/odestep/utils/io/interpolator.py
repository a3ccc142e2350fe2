"""Input/output utilities for step interpolators.

Two persistence formats are provided.

Byte stream (:func:`encode_interpolator` / :func:`decode_interpolator`),
little-endian, written in two phases.  The header is shared by every
variant::

    flags          uint8      bit 0: forward, bit 1: finalized
    current_time   float64
    previous_time  float64    only when finalized
    state_length   int32      -1 when no state is bound
    state          float64[state_length]

It is followed by the variant section::

    tag_length     int32
    tag            utf-8 bytes
    options        uint8      bit 0: extrapolate
    n_arrays       int32
    per array:     ndim int32, shape int32[ndim], data float64[...]

A reader that does not know a variant can still recover the time bounds,
direction and end state with :func:`read_header`.

HDF5 files (:func:`save_interpolator` / :func:`load_interpolator`) store the
same information with a ``header`` group, a ``payload`` group and a
``variant`` attribute.

Notes
-----
Interpolators are finalized (see
:func:`~odestep.algorithms.interpolators.base._StepInterpolator.finalize_step`)
before being written, so lazily evaluated data is always persisted.  After
reading, the interpolated time is set to the current time.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

import h5py
import numpy as np

from odestep.algorithms.interpolators.base import (_resolve_variant,
                                                   _StepInterpolator)
from odestep.algorithms.utils.exceptions import (ConfigurationError,
                                                 SerializationError)
from odestep.utils.io.common import _ensure_dir, _write_dataset

if TYPE_CHECKING:
    from odestep.algorithms.integrators.handlers import _ContinuousOutputModel

HDF5_VERSION = "1.0"
"""HDF5 format version for interpolator data."""

_FLAG_FORWARD = 0x01
_FLAG_FINALIZED = 0x02
_OPT_EXTRAPOLATE = 0x01

_U1 = np.dtype("u1")
_I4 = np.dtype("<i4")
_F8 = np.dtype("<f8")


@dataclass(frozen=True)
class _InterpolatorHeader:
    """Variant-independent part of a persisted interpolator.

    Attributes
    ----------
    forward : bool
        Integration direction.
    finalized : bool
        Whether the interpolator was bound to a complete step.
    current_time : float
        Time at the end of the step.
    previous_time : float or None
        Time at the beginning of the step, None when not finalized.
    state : numpy.ndarray or None
        End-of-step state, None when no state was bound.
    """
    forward: bool
    finalized: bool
    current_time: float
    previous_time: Optional[float]
    state: Optional[np.ndarray]


class _ByteWriter:
    def __init__(self):
        self._parts: List[bytes] = []

    def scalar(self, value, dtype: np.dtype) -> None:
        self._parts.append(np.array(value, dtype=dtype).tobytes())

    def array(self, arr: np.ndarray) -> None:
        self._parts.append(np.ascontiguousarray(arr, dtype=_F8).tobytes())

    def raw(self, data: bytes) -> None:
        self._parts.append(data)

    def getvalue(self) -> bytes:
        return b"".join(self._parts)


class _ByteReader:
    def __init__(self, data: bytes):
        self._data = memoryview(bytes(data))
        self._pos = 0

    @property
    def exhausted(self) -> bool:
        return self._pos == len(self._data)

    def _take(self, nbytes: int, what: str) -> memoryview:
        end = self._pos + nbytes
        if nbytes < 0 or end > len(self._data):
            raise SerializationError(
                f"Truncated interpolator data while reading {what} "
                f"(need {nbytes} bytes at offset {self._pos}, have {len(self._data) - self._pos})"
            )
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def scalar(self, dtype: np.dtype, what: str):
        return np.frombuffer(self._take(dtype.itemsize, what), dtype=dtype)[0].item()

    def array(self, shape, what: str) -> np.ndarray:
        count = int(np.prod(shape, dtype=np.int64))
        buf = self._take(count * _F8.itemsize, what)
        return np.frombuffer(buf, dtype=_F8).reshape(shape).copy()

    def raw(self, nbytes: int, what: str) -> bytes:
        return bytes(self._take(nbytes, what))


def _write_header(w: _ByteWriter, interp: _StepInterpolator) -> None:
    flags = (_FLAG_FORWARD if interp.forward else 0) | (_FLAG_FINALIZED if interp.is_finalized else 0)
    w.scalar(flags, _U1)
    w.scalar(interp.current_time, _F8)
    if interp.is_finalized:
        w.scalar(interp.previous_time, _F8)
    state = interp._current_state
    if state is None:
        w.scalar(-1, _I4)
    else:
        w.scalar(state.size, _I4)
        w.array(state)


def _read_header(r: _ByteReader) -> _InterpolatorHeader:
    flags = r.scalar(_U1, "flags")
    if flags & ~(_FLAG_FORWARD | _FLAG_FINALIZED):
        raise SerializationError(f"Corrupt interpolator header: unknown flags 0x{flags:02x}")
    finalized = bool(flags & _FLAG_FINALIZED)
    current_time = r.scalar(_F8, "current time")
    previous_time = r.scalar(_F8, "previous time") if finalized else None
    n = r.scalar(_I4, "state length")
    if n < -1 or n == 0:
        raise SerializationError(f"Corrupt interpolator header: state length {n}")
    state = None if n == -1 else r.array((n,), "state")
    if finalized and state is None:
        raise SerializationError("Corrupt interpolator header: finalized step without state")
    header = _InterpolatorHeader(
        forward=bool(flags & _FLAG_FORWARD),
        finalized=finalized,
        current_time=current_time,
        previous_time=previous_time,
        state=state,
    )
    _check_direction(header, "interpolator header")
    return header


def _check_direction(header: _InterpolatorHeader, where: str) -> None:
    if not header.finalized:
        return
    h = header.current_time - header.previous_time
    if h != 0.0 and (h > 0.0) != header.forward:
        raise SerializationError(
            f"Corrupt {where}: step [{header.previous_time!r}, {header.current_time!r}] "
            f"contradicts the {'forward' if header.forward else 'backward'} flag"
        )


def _instantiate(tag: str, extrapolate: bool, header: _InterpolatorHeader, arrays: List[np.ndarray]) -> _StepInterpolator:
    try:
        cls = _resolve_variant(tag)
    except ConfigurationError as exc:
        raise SerializationError(str(exc)) from exc
    interp = cls(extrapolate=extrapolate)
    interp._restore_base(
        header.forward,
        header.finalized,
        header.previous_time if header.previous_time is not None else header.current_time,
        header.current_time,
        header.state,
    )
    try:
        interp._restore_payload(arrays)
    except ValueError as exc:
        raise SerializationError(f"Corrupt '{tag}' payload: {exc}") from exc
    interp.set_interpolated_time(header.current_time)
    return interp


def encode_interpolator(interp: _StepInterpolator) -> bytes:
    """Serialize *interp* to bytes (header, then variant section).

    Raises
    ------
    :class:`~odestep.algorithms.utils.exceptions.SerializationError`
        If the interpolator class has no variant tag.
    """
    if interp.tag is None:
        raise SerializationError(f"{type(interp).__name__} has no variant tag and cannot be serialized")
    interp.finalize_step()
    w = _ByteWriter()
    _write_header(w, interp)

    tag = interp.tag.encode("utf-8")
    w.scalar(len(tag), _I4)
    w.raw(tag)
    w.scalar(_OPT_EXTRAPOLATE if interp.extrapolate else 0, _U1)
    arrays = [np.asarray(a, dtype=np.float64) for a in interp._payload()]
    w.scalar(len(arrays), _I4)
    for arr in arrays:
        w.scalar(arr.ndim, _I4)
        for dim in arr.shape:
            w.scalar(dim, _I4)
        w.array(arr)
    return w.getvalue()


def read_header(data: bytes) -> _InterpolatorHeader:
    """Decode only the variant-independent header of serialized interpolator *data*."""
    return _read_header(_ByteReader(data))


def decode_interpolator(data: bytes) -> _StepInterpolator:
    """Rebuild an interpolator from bytes produced by :func:`encode_interpolator`.

    Raises
    ------
    :class:`~odestep.algorithms.utils.exceptions.SerializationError`
        If the data is truncated, corrupt, carries trailing bytes or names an
        unknown variant.
    """
    r = _ByteReader(data)
    header = _read_header(r)

    tag_len = r.scalar(_I4, "tag length")
    if tag_len <= 0:
        raise SerializationError(f"Corrupt variant section: tag length {tag_len}")
    try:
        tag = r.raw(tag_len, "tag").decode("utf-8")
    except UnicodeDecodeError as exc:
        raise SerializationError("Corrupt variant section: tag is not valid utf-8") from exc
    options = r.scalar(_U1, "options")
    n_arrays = r.scalar(_I4, "payload size")
    if n_arrays < 0:
        raise SerializationError(f"Corrupt variant section: {n_arrays} arrays")
    arrays = []
    for idx in range(n_arrays):
        ndim = r.scalar(_I4, f"array {idx} rank")
        if ndim < 0:
            raise SerializationError(f"Corrupt variant section: array {idx} has rank {ndim}")
        shape = tuple(r.scalar(_I4, f"array {idx} shape") for _ in range(ndim))
        if any(dim < 0 for dim in shape):
            raise SerializationError(f"Corrupt variant section: array {idx} has shape {shape}")
        arrays.append(r.array(shape, f"array {idx}"))
    if not r.exhausted:
        raise SerializationError("Trailing bytes after interpolator data")

    return _instantiate(tag, bool(options & _OPT_EXTRAPOLATE), header, arrays)


def _write_interpolator_group(
    grp: h5py.Group,
    interp: _StepInterpolator,
    *,
    compression: Optional[str] = "gzip",
    level: int = 4,
) -> None:
    if interp.tag is None:
        raise SerializationError(f"{type(interp).__name__} has no variant tag and cannot be serialized")
    interp.finalize_step()
    grp.attrs["variant"] = interp.tag
    grp.attrs["extrapolate"] = bool(interp.extrapolate)

    hdr = grp.create_group("header")
    hdr.attrs["forward"] = bool(interp.forward)
    hdr.attrs["finalized"] = bool(interp.is_finalized)
    hdr.attrs["current_time"] = float(interp.current_time)
    if interp.is_finalized:
        hdr.attrs["previous_time"] = float(interp.previous_time)
    if interp._current_state is not None:
        _write_dataset(hdr, "state", interp._current_state)

    payload = grp.create_group("payload")
    for idx, arr in enumerate(interp._payload()):
        _write_dataset(payload, f"{idx:d}", np.asarray(arr, dtype=np.float64), compression=compression, level=level)


def _read_interpolator_group(grp: h5py.Group) -> _StepInterpolator:
    try:
        tag = grp.attrs["variant"]
        if isinstance(tag, bytes):
            tag = tag.decode("utf-8")
        extrapolate = bool(grp.attrs.get("extrapolate", True))
        hdr = grp["header"]
        finalized = bool(hdr.attrs["finalized"])
        header = _InterpolatorHeader(
            forward=bool(hdr.attrs["forward"]),
            finalized=finalized,
            current_time=float(hdr.attrs["current_time"]),
            previous_time=float(hdr.attrs["previous_time"]) if finalized else None,
            state=np.asarray(hdr["state"][()], dtype=np.float64) if "state" in hdr else None,
        )
        payload = grp["payload"]
        arrays = [np.asarray(payload[str(i)][()], dtype=np.float64) for i in range(len(payload))]
    except KeyError as exc:
        raise SerializationError(f"Corrupt interpolator group '{grp.name}': {exc}") from exc
    if header.finalized and header.state is None:
        raise SerializationError(f"Corrupt interpolator group '{grp.name}': finalized step without state")
    _check_direction(header, f"interpolator group '{grp.name}'")
    return _instantiate(str(tag), extrapolate, header, arrays)


def save_interpolator(
    interp: _StepInterpolator,
    path: str | Path,
    *,
    compression: str = "gzip",
    level: int = 4,
) -> None:
    """Serialize a step interpolator to an HDF5 file.

    Parameters
    ----------
    interp : :class:`~odestep.algorithms.interpolators.base._StepInterpolator`
        Interpolator to serialize.
    path : str or pathlib.Path
        File path where to save the interpolator.
    compression : str, default "gzip"
        Compression algorithm used for payload arrays.
    level : int, default 4
        Compression level (0-9).
    """
    path = Path(path)
    _ensure_dir(path.parent)

    with h5py.File(path, "w") as f:
        f.attrs["format_version"] = HDF5_VERSION
        f.attrs["class"] = interp.__class__.__name__
        _write_interpolator_group(f, interp, compression=compression, level=level)


def load_interpolator(path: str | Path) -> _StepInterpolator:
    """Load a step interpolator from an HDF5 file.

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    :class:`~odestep.algorithms.utils.exceptions.SerializationError`
        If the file content is incomplete or names an unknown variant.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)

    with h5py.File(path, "r") as f:
        return _read_interpolator_group(f)


def save_continuous_output(
    model: "_ContinuousOutputModel",
    path: str | Path,
    *,
    compression: str = "gzip",
    level: int = 4,
) -> None:
    """Serialize every step retained by a continuous output model to HDF5."""
    path = Path(path)
    _ensure_dir(path.parent)

    with h5py.File(path, "w") as f:
        f.attrs["format_version"] = HDF5_VERSION
        f.attrs["class"] = model.__class__.__name__
        f.attrs["n_steps"] = len(model)
        steps = f.create_group("steps")
        for idx, interp in enumerate(model.steps):
            _write_interpolator_group(steps.create_group(f"{idx:06d}"), interp, compression=compression, level=level)


def load_continuous_output(path: str | Path) -> "_ContinuousOutputModel":
    """Load a continuous output model written by :func:`save_continuous_output`."""
    from odestep.algorithms.integrators.handlers import _ContinuousOutputModel

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)

    model = _ContinuousOutputModel()
    with h5py.File(path, "r") as f:
        try:
            n_steps = int(f.attrs["n_steps"])
            steps = f["steps"]
            names = sorted(steps.keys())
        except KeyError as exc:
            raise SerializationError(f"Corrupt continuous output file '{path}': {exc}") from exc
        if len(names) != n_steps:
            raise SerializationError(
                f"Corrupt continuous output file '{path}': expected {n_steps} steps, found {len(names)}"
            )
        for name in names:
            model._append_step(_read_interpolator_group(steps[name]))
    return model
