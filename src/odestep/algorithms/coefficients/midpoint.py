"""Butcher tableau of the explicit midpoint method with its quadratic continuous extension."""

import numpy as np

A = np.array([
    [0.0, 0.0],
    [0.5, 0.0],
], dtype=np.float64)

B = np.array([0.0, 1.0], dtype=np.float64)

C = np.array([0.0, 0.5], dtype=np.float64)

# w1(theta) = theta - theta^2, w2(theta) = theta^2
P = np.array([
    [1.0, -1.0],
    [0.0, 1.0],
], dtype=np.float64)
