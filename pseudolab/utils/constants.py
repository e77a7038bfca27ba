from typing import TypeAlias


_Tolerance: TypeAlias = float
_Duration: TypeAlias = float

# Primary tolerance hierarchy
ZERO_TOLERANCE: _Tolerance = 1e-14
"""Tolerance for considering floating point values as zero."""

MINIMUM_TIME_INTERVAL: _Duration = 1e-6
"""Minimum duration enforced on phases whose horizon is free."""

# Scaling limits
MINIMUM_SCALE_FACTOR: float = 1e-12
MAXIMUM_SCALE_FACTOR: float = 1e12

MAXIMUM_ROW_SCALE: float = 1e3
"""Cap on Jacobian-norm constraint row scales; differentiation matrices grow like N^2."""

# Finite-difference step for engine-side derivative evaluation
FINITE_DIFFERENCE_STEP: float = 1e-6

# NLP solver defaults
DEFAULT_NLP_MAX_ITERATIONS: int = 1000
DEFAULT_NLP_TOLERANCE: float = 1e-6

# Node-count limits per collocation scheme
MINIMUM_PSEUDOSPECTRAL_NODES: int = 3
MINIMUM_TRAPEZOIDAL_NODES: int = 2

DEFAULT_IPOPT_OPTIONS: dict[str, object] = {
    "ipopt.sb": "yes",
    "print_time": 0,
}
"""Options applied to every IPOPT solve before the algorithm-specific ones."""

DEFAULT_SQP_OPTIONS: dict[str, object] = {
    "qpsol": "qpoases",
    "qpsol_options": {"printLevel": "none", "error_on_fail": False},
    "convexify_strategy": "regularize",
    "min_step_size": 1e-12,
    "print_header": False,
    "print_iteration": False,
    "print_status": False,
    "print_time": 0,
}
"""Options applied to every SQP solve before the algorithm-specific ones."""
