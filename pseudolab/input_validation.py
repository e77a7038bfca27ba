import logging
import math
from typing import TYPE_CHECKING, Any

import numpy as np

from .exceptions import ConfigurationError, DataIntegrityError
from .pl_types import FloatArray
from .utils.constants import MINIMUM_PSEUDOSPECTRAL_NODES, MINIMUM_TRAPEZOIDAL_NODES


if TYPE_CHECKING:
    from .problem.algorithm import Algorithm
    from .problem.core_problem import Phase, Problem


logger = logging.getLogger(__name__)


# ============================================================================
# CORE VALIDATION PRIMITIVES - Used everywhere, defined once
# ============================================================================


def validate_positive_integer(value: Any, name: str, min_value: int = 1) -> None:
    """Single source for positive integer validation."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigurationError(f"{name} must be integer, got {type(value)}")
    if value < min_value:
        raise ConfigurationError(f"{name} must be >= {min_value}, got {value}")


def validate_non_negative_integer(value: Any, name: str) -> None:
    """Single source for dimension counts that may be zero."""
    validate_positive_integer(value, name, min_value=0)


def validate_positive_number(value: Any, name: str) -> None:
    """Single source for positive number validation."""
    if not isinstance(value, int | float) or isinstance(value, bool):
        raise ConfigurationError(f"{name} must be numeric, got {type(value)}")
    if math.isnan(value) or math.isinf(value):
        raise ConfigurationError(f"{name} cannot be NaN or infinite, got {value}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")


def validate_string_not_empty(value: Any, name: str) -> None:
    """Single source for non-empty string validation."""
    if not isinstance(value, str):
        raise ConfigurationError(f"{name} must be string, got {type(value)}")
    if not value.strip():
        raise ConfigurationError(f"{name} cannot be empty")


def validate_array_numerical_integrity(
    array: FloatArray, name: str, context: str = "validation"
) -> None:
    """Single source for NaN/Inf validation."""
    if np.any(np.isnan(array)) or np.any(np.isinf(array)):
        raise DataIntegrityError(
            f"{name} contains NaN or Inf values", f"Numerical corruption in {context}"
        )


def validate_array_shape(
    array: FloatArray, expected_shape: tuple[int, ...], name: str, context: str = "validation"
) -> None:
    """Single source for shape validation."""
    if array.shape != expected_shape:
        raise DataIntegrityError(
            f"{name} has shape {array.shape}, expected {expected_shape}",
            f"Shape mismatch in {context}",
        )


def validate_bound_pair(
    lower: FloatArray, upper: FloatArray, name: str, context: str = "bounds"
) -> None:
    """Single source for lower <= upper validation. Inverted bounds are never swapped."""
    if lower.shape != upper.shape:
        raise ConfigurationError(
            f"{name} lower/upper bounds have shapes {lower.shape} and {upper.shape}", context
        )
    if np.any(np.isnan(lower)) or np.any(np.isnan(upper)):
        raise ConfigurationError(f"{name} bounds cannot be NaN", context)
    inverted = np.flatnonzero(lower > upper)
    if inverted.size > 0:
        i = int(inverted[0])
        raise ConfigurationError(
            f"Lower {name} bound [{i}] ({lower[i]}) > upper bound ({upper[i]})", context
        )


# ============================================================================
# NODE SEQUENCE VALIDATION
# ============================================================================


def minimum_nodes_for(collocation_method: str) -> int:
    if collocation_method == "trapezoidal":
        return MINIMUM_TRAPEZOIDAL_NODES
    return MINIMUM_PSEUDOSPECTRAL_NODES


def validate_node_sequence(phase: "Phase", collocation_method: str) -> None:
    """SINGLE SOURCE for node-count sequence validation."""
    if not phase.nodes:
        raise ConfigurationError(
            f"Phase {phase.phase_id} node sequence must be set - assign phase.nodes"
        )

    minimum = minimum_nodes_for(collocation_method)
    for i, count in enumerate(phase.nodes):
        if count < minimum:
            raise ConfigurationError(
                f"Phase {phase.phase_id} node count {count} (entry {i}) is below the "
                f"minimum of {minimum} for {collocation_method} collocation"
            )


# ============================================================================
# PROBLEM VALIDATION - Complete problem structure validation
# ============================================================================


def validate_phase_configuration(
    problem: "Problem", phase: "Phase", algorithm: "Algorithm"
) -> None:
    """SINGLE SOURCE for phase configuration validation."""
    context = f"problem '{problem.name}'"
    if not phase.is_setup:
        raise ConfigurationError(
            f"Phase {phase.phase_id} dimensions must be declared - call phase.setup()", context
        )

    validate_node_sequence(phase, algorithm.collocation_method)

    for name in ("states", "controls", "parameters", "events", "path", "start_time", "end_time"):
        lower, upper = phase.bounds.pair(name)
        validate_bound_pair(lower, upper, name, f"phase {phase.phase_id} bounds")

    if phase.nevents > 0 and problem.events is None:
        raise ConfigurationError(
            f"Phase {phase.phase_id} declares {phase.nevents} events but problem.events is not set",
            context,
        )

    phase.guess.validate_sample_counts()


def validate_problem_ready_for_solving(problem: "Problem", algorithm: "Algorithm") -> None:
    """SINGLE SOURCE - MASTER validation for solve readiness."""
    context = f"problem '{problem.name}'"
    if problem.dae is None:
        raise ConfigurationError("Problem dynamics must be defined - assign problem.dae", context)

    for phase in problem.phases:
        validate_phase_configuration(problem, phase, algorithm)

    # Raises when the phases disagree on the refinement sequence length
    num_iterations = problem.num_mesh_iterations
    logger.debug("Problem '%s' has %d mesh iteration(s)", problem.name, num_iterations)

    if problem.nlinkages > 0:
        if problem.linkages is None:
            raise ConfigurationError(
                f"Problem declares {problem.nlinkages} linkages but problem.linkages is not set",
                context,
            )
        lower, upper = problem.bounds.pair()
        validate_bound_pair(lower, upper, "linkage", "linkage bounds")

    if not callable(problem.dae):
        raise ConfigurationError("problem.dae must be callable", context)
    for name in ("endpoint_cost", "integrand_cost", "events", "linkages"):
        callback = getattr(problem, name)
        if callback is not None and not callable(callback):
            raise ConfigurationError(f"problem.{name} must be callable or None", context)
