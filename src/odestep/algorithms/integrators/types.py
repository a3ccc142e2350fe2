"""Types shared by the integrators."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd


class IntegratorState(Enum):
    """Lifecycle of an integration run."""
    INITIALIZED = "initialized"
    STEPPING = "stepping"
    COMPLETED = "completed"
    FAILED = "failed"


class StepAction(Enum):
    """Value a step handler may return to steer the integrator."""
    CONTINUE = "continue"
    STOP = "stop"


@dataclass
class EventResult:
    """Outcome of an event search across one step."""
    hit: bool
    t_event: Optional[float]
    y_event: Optional[np.ndarray]
    g_event: Optional[float]


@dataclass
class _StepAttempt:
    """Trial step produced by a scheme before error control.

    Attributes
    ----------
    y_new : numpy.ndarray
        Candidate state at the end of the step.
    err_norm : float
        Scaled RMS error norm; the step is acceptable when it is <= 1.
    stages : numpy.ndarray
        Stage derivatives, shape ``(s, n)``.
    end_derivative : numpy.ndarray or None
        Derivative at the end of the step when the scheme computed it.
    """
    y_new: np.ndarray
    err_norm: float
    stages: np.ndarray
    end_derivative: Optional[np.ndarray] = None


@dataclass
class _Solution:
    """Container for integration results.

    Attributes
    ----------
    times : numpy.ndarray
        Array of time points, shape (n_points,)
    states : numpy.ndarray
        Array of state vectors, shape (n_points, n_dim)
    derivatives : numpy.ndarray or None, optional
        Array of time derivatives at the stored time points,
        shape (n_points, n_dim).
    status : :class:`~odestep.algorithms.integrators.types.IntegratorState`
        Final state of the run.
    t_events, y_events : numpy.ndarray
        Times and states of the detected events.
    n_accepted, n_rejected, n_evaluations : int
        Run statistics.
    """
    times: np.ndarray
    states: np.ndarray
    derivatives: Optional[np.ndarray] = None
    status: IntegratorState = IntegratorState.COMPLETED
    t_events: np.ndarray = field(default_factory=lambda: np.empty(0))
    y_events: np.ndarray = field(default_factory=lambda: np.empty((0, 0)))
    n_accepted: int = 0
    n_rejected: int = 0
    n_evaluations: int = 0

    def __post_init__(self):
        if len(self.times) != len(self.states):
            raise ValueError(
                f"Times and states must have same length: "
                f"{len(self.times)} != {len(self.states)}"
            )
        if self.derivatives is not None and len(self.derivatives) != len(self.times):
            raise ValueError(
                "If provided, derivatives must have the same length as times "
                f"({len(self.derivatives)} != {len(self.times)})"
            )

    def to_df(self, columns=None) -> pd.DataFrame:
        """Return the sampled trajectory as a DataFrame with a ``time`` column.

        Parameters
        ----------
        columns : sequence of str, optional
            Names of the state components.  Defaults to ``y0, y1, ...``.
        """
        n_dim = self.states.shape[1] if self.states.ndim == 2 else 0
        if columns is None:
            columns = [f"y{i}" for i in range(n_dim)]
        if len(columns) != n_dim:
            raise ValueError(f"Expected {n_dim} column names, got {len(columns)}")
        df = pd.DataFrame(self.states, columns=list(columns))
        df.insert(0, "time", self.times)
        return df
