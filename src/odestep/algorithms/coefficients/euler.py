"""Butcher tableau of the explicit Euler method with its linear continuous extension."""

import numpy as np

A = np.array([[0.0]], dtype=np.float64)

B = np.array([1.0], dtype=np.float64)

C = np.array([0.0], dtype=np.float64)

# w(theta) = theta
P = np.array([[1.0]], dtype=np.float64)
