"""Example script: dense output of an adaptive Runge-Kutta run on the Van der Pol
oscillator, with a fixed output grid, a terminal event and persisted steps.

Run with
    python examples/dense_output.py
"""

import os
import sys

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

import numpy as np

from odestep import (AdaptiveRK, ContinuousOutputModel, EventConfig,
                     StepNormalizer, create_rhs_system,
                     load_continuous_output, save_continuous_output)
from odestep.utils.io.common import _ensure_dir
from odestep.utils.log_config import logger

_ensure_dir("results")
_MODEL_PATH = os.path.join("results", "vdp_steps.h5")


def _van_der_pol(t, y, mu=2.0):
    return np.array([y[1], mu * (1.0 - y[0] ** 2) * y[1] - y[0]])


def main() -> None:
    system = create_rhs_system(_van_der_pol, dim=2, name="van_der_pol")
    integrator = AdaptiveRK(order=5, rtol=1e-9, atol=1e-12)
    y0 = np.array([2.0, 0.0])

    # Sample the solution on a regular grid, independently of the step sizes
    grid = []
    integrator.integrate(
        system, y0, np.array([0.0, 10.0]),
        handler=StepNormalizer(0.5, lambda t, y, last: grid.append((t, y[0]))),
    )
    for t, x in grid:
        logger.info("t = %5.2f  x = % .8f", t, x)

    # Keep every step and query the whole run afterwards
    model = ContinuousOutputModel()
    sol = integrator.integrate(system, y0, np.array([0.0, 10.0]), handler=model)
    logger.info("%d accepted steps, %d rejected, %d evaluations",
                sol.n_accepted, sol.n_rejected, sol.n_evaluations)

    save_continuous_output(model, _MODEL_PATH)
    restored = load_continuous_output(_MODEL_PATH)
    restored.set_interpolated_time(7.3)
    logger.info("x(7.3) from the restored model: %s", restored.interpolated_state)

    # Stop at the first downward zero crossing of x
    sol = integrator.integrate(
        system, y0, np.array([0.0, 10.0]),
        event_fn=lambda t, y: float(y[0]),
        event_cfg=EventConfig(direction=-1, terminal=True),
    )
    logger.info("First downward crossing of x = 0 at t = %.12f", sol.t_events[0])


if __name__ == "__main__":
    main()
