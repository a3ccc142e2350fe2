"""Butcher tableau of the classical fourth-order Runge-Kutta method.

``P`` holds the cubic continuous extension: the weight of stage ``i`` at
normalized time ``theta`` is ``sum_j P[i, j] * theta**(j + 1)``.
"""

import numpy as np

A = np.array([
    [0.0, 0.0, 0.0, 0.0],
    [0.5, 0.0, 0.0, 0.0],
    [0.0, 0.5, 0.0, 0.0],
    [0.0, 0.0, 1.0, 0.0],
], dtype=np.float64)

B = np.array([1.0 / 6.0, 1.0 / 3.0, 1.0 / 3.0, 1.0 / 6.0], dtype=np.float64)

C = np.array([0.0, 0.5, 0.5, 1.0], dtype=np.float64)

P = np.array([
    [1.0, -1.5, 2.0 / 3.0],
    [0.0, 1.0, -2.0 / 3.0],
    [0.0, 1.0, -2.0 / 3.0],
    [0.0, -0.5, 2.0 / 3.0],
], dtype=np.float64)
