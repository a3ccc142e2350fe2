# Default tolerances
TOL = 1e-10

FASTMATH = False  # Global flag for Numba's fastmath option

# Step-size control (PI controller constants, Hairer et al.)
SAFETY = 0.9
MIN_FACTOR = 0.2
MAX_FACTOR = 10.0

MAX_STEPS = 100_000

# Relative slack used when checking that a query time lies inside a step
BOUNDS_RTOL = 1e-12
