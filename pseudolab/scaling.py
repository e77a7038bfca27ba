"""
Affine scaling of NLP unknowns, constraints and objective.

Every unknown and every constraint row gets ``scaled = (raw - shift) / scale``.
The solver iterates entirely in scaled space; the adapter maps its results
back with the exact inverse.

Automatic rules for a bound pair ``[lower, upper]``:

- ``B``: both finite and ``lower < upper``: ``shift`` is the midpoint and
  ``scale`` the half-width, so the legal range maps exactly onto ``[-1, 1]``.
- ``E``: ``lower == upper``: ``scale = 1`` and ``shift = lower``; the scaled
  value is 0.
- ``U``: unbounded or half-bounded: ``scale = 1`` and ``shift = 0``.

Constraint rows that fall under ``E`` or ``U`` are instead scaled by the
infinity norm of their Jacobian row at the initial guess, clipped to
``[1, MAXIMUM_ROW_SCALE]``.
Inverted bounds are rejected, never swapped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy import sparse

from .autodiff import DifferentiableFunction
from .direct_solver.types_solver import DiscreteNLP
from .exceptions import ConfigurationError, NumericalFailure
from .input_validation import validate_bound_pair
from .pl_types import FloatArray
from .problem.algorithm import Algorithm
from .problem.core_problem import Problem
from .utils.constants import MAXIMUM_ROW_SCALE, MAXIMUM_SCALE_FACTOR, MINIMUM_SCALE_FACTOR


logger = logging.getLogger(__name__)

RULE_BOUNDED = "B"
RULE_EQUAL = "E"
RULE_UNBOUNDED = "U"


@dataclass(frozen=True)
class ScalingFactors:
    """
    Immutable scaling transformation parameters for one discrete NLP.

    Transformation: scaled = (raw - shift) / scale
    Inverse: raw = shift + scale * scaled
    """

    mode: str
    variable_scale: FloatArray
    variable_shift: FloatArray
    constraint_scale: FloatArray
    constraint_shift: FloatArray
    objective_scale: float = 1.0

    def __post_init__(self) -> None:
        for name in ("variable_scale", "constraint_scale"):
            values = getattr(self, name)
            if not np.all(np.isfinite(values)) or np.any(values <= 0.0):
                raise NumericalFailure(f"Scale factors in {name} must be finite and positive")
        for name in ("variable_shift", "constraint_shift"):
            if not np.all(np.isfinite(getattr(self, name))):
                raise NumericalFailure(f"Shift values in {name} must be finite")
        if not np.isfinite(self.objective_scale) or self.objective_scale <= 0.0:
            raise NumericalFailure(f"Objective scale {self.objective_scale} must be finite and positive")

    def scale_values(self, values: FloatArray) -> FloatArray:
        """Raw unknowns to scaled unknowns."""
        return (np.asarray(values, dtype=np.float64) - self.variable_shift) / self.variable_scale

    def unscale_values(self, values: FloatArray) -> FloatArray:
        """Scaled unknowns back to raw unknowns."""
        return self.variable_shift + self.variable_scale * np.asarray(values, dtype=np.float64)

    def scale_constraints(self, values: FloatArray) -> FloatArray:
        return (np.asarray(values, dtype=np.float64) - self.constraint_shift) / self.constraint_scale

    def unscale_constraints(self, values: FloatArray) -> FloatArray:
        return self.constraint_shift + self.constraint_scale * np.asarray(values, dtype=np.float64)

    def scale_variable_bounds(
        self, lower: FloatArray, upper: FloatArray
    ) -> tuple[FloatArray, FloatArray]:
        return self.scale_values(lower), self.scale_values(upper)

    def scale_constraint_bounds(
        self, lower: FloatArray, upper: FloatArray
    ) -> tuple[FloatArray, FloatArray]:
        return self.scale_constraints(lower), self.scale_constraints(upper)


def identity_scaling(num_unknowns: int, num_constraints: int, mode: str = "none") -> ScalingFactors:
    return ScalingFactors(
        mode=mode,
        variable_scale=np.ones(num_unknowns),
        variable_shift=np.zeros(num_unknowns),
        constraint_scale=np.ones(num_constraints),
        constraint_shift=np.zeros(num_constraints),
    )


def determine_bound_scaling(
    lower: FloatArray, upper: FloatArray, name: str = "bounds"
) -> tuple[FloatArray, FloatArray, FloatArray]:
    """
    Apply the bound rules elementwise.

    Args:
        lower: Lower bounds (may contain ``-inf``)
        upper: Upper bounds (may contain ``+inf``)
        name: Quantity name for error reporting

    Returns:
        ``(scale, shift, rules)`` with ``rules`` holding ``"B"``, ``"E"`` or ``"U"``
        per entry.

    Raises:
        ConfigurationError: If any ``lower > upper``
    """
    lower = np.asarray(lower, dtype=np.float64).flatten()
    upper = np.asarray(upper, dtype=np.float64).flatten()
    validate_bound_pair(lower, upper, name, "scaling")

    bounded = np.isfinite(lower) & np.isfinite(upper)
    equal = bounded & (lower == upper)
    ranged = bounded & ~equal

    scale = np.ones_like(lower)
    shift = np.zeros_like(lower)
    scale[ranged] = (upper[ranged] - lower[ranged]) / 2.0
    shift[ranged] = (upper[ranged] + lower[ranged]) / 2.0
    shift[equal] = lower[equal]

    rules = np.full(lower.shape, RULE_UNBOUNDED, dtype="<U1")
    rules[ranged] = RULE_BOUNDED
    rules[equal] = RULE_EQUAL
    return np.clip(scale, MINIMUM_SCALE_FACTOR, MAXIMUM_SCALE_FACTOR), shift, rules


def _nlp_derivatives(
    nlp: DiscreteNLP, algorithm: Algorithm
) -> tuple[sparse.csc_matrix, sparse.csc_matrix]:
    """Constraint Jacobian and objective gradient at the raw initial guess."""
    function = DifferentiableFunction(
        "nlp_scaling_derivatives", [nlp.unknowns], [nlp.constraints, nlp.objective], ["w"], ["g", "f"]
    )
    function.evaluate(nlp.w0)
    if algorithm.uses_finite_differences:
        return (
            function.finite_difference_jacobian(nlp.w0, output=0),
            function.finite_difference_jacobian(nlp.w0, output=1),
        )

    pattern = function.jacobian_sparsity(output=0)
    logger.debug(
        "Constraint Jacobian: %d x %d, %d structural nonzeros (%.3f%% dense)",
        pattern.shape[0],
        pattern.shape[1],
        pattern.nnz,
        100.0 * pattern.nnz / max(1, pattern.shape[0] * pattern.shape[1]),
    )
    return function.jacobian(nlp.w0, output=0), function.jacobian(nlp.w0, output=1)


def _row_infinity_norms(matrix: sparse.csc_matrix) -> FloatArray:
    if matrix.shape[0] == 0:
        return np.zeros(0)
    if matrix.shape[1] == 0 or matrix.nnz == 0:
        return np.zeros(matrix.shape[0])
    return np.asarray(abs(matrix).max(axis=1).toarray(), dtype=np.float64).flatten()


def compute_automatic_scaling(nlp: DiscreteNLP, algorithm: Algorithm) -> ScalingFactors:
    """Bound-based scaling with Jacobian-norm fallback for degenerate constraint rows."""
    variable_scale, variable_shift, variable_rules = determine_bound_scaling(
        nlp.lbw, nlp.ubw, "variable"
    )
    constraint_scale, constraint_shift, constraint_rules = determine_bound_scaling(
        nlp.lbg, nlp.ubg, "constraint"
    )

    jacobian, gradient = _nlp_derivatives(nlp, algorithm)
    # Derivatives with respect to the scaled unknowns
    variable_diagonal = sparse.diags(variable_scale)
    scaled_jacobian = sparse.csc_matrix(jacobian @ variable_diagonal)
    scaled_gradient = sparse.csc_matrix(gradient @ variable_diagonal)

    degenerate = constraint_rules != RULE_BOUNDED
    row_norms = _row_infinity_norms(scaled_jacobian)
    constraint_scale[degenerate] = np.clip(row_norms[degenerate], 1.0, MAXIMUM_ROW_SCALE)
    constraint_scale = np.clip(constraint_scale, MINIMUM_SCALE_FACTOR, MAXIMUM_SCALE_FACTOR)

    gradient_norm = _row_infinity_norms(scaled_gradient)
    objective_scale = float(
        np.clip(max(1.0, *gradient_norm) if gradient_norm.size else 1.0, 1.0, MAXIMUM_SCALE_FACTOR)
    )

    logger.debug(
        "Automatic scaling: variables %s, constraints %s, objective scale %.3e",
        {rule: int(np.sum(variable_rules == rule)) for rule in ("B", "E", "U")},
        {rule: int(np.sum(constraint_rules == rule)) for rule in ("B", "E", "U")},
        objective_scale,
    )
    return ScalingFactors(
        mode="automatic",
        variable_scale=variable_scale,
        variable_shift=variable_shift,
        constraint_scale=constraint_scale,
        constraint_shift=constraint_shift,
        objective_scale=objective_scale,
    )


def compute_manual_scaling(nlp: DiscreteNLP, problem: Problem) -> ScalingFactors:
    """User-supplied factors from ``phase.scale`` and ``problem.scale``; shifts are zero."""
    variable_scale = np.ones(nlp.num_unknowns)
    for phase in problem.phases:
        phase_layout = nlp.layout.phase(phase.phase_id)
        num_nodes = phase_layout.num_nodes
        variable_scale[phase_layout.states] = np.tile(phase.scale.states, num_nodes)
        variable_scale[phase_layout.controls] = np.tile(phase.scale.controls, num_nodes)
        variable_scale[phase_layout.parameters] = phase.scale.parameters
        variable_scale[phase_layout.t0] = phase.scale.time
        variable_scale[phase_layout.tf] = phase.scale.time

    constraint_scale = np.ones(nlp.num_constraints)
    for block in nlp.blocks:
        if block.phase_id is None:
            if block.name == "linkages":
                constraint_scale[block.rows] = problem.scale.linkage
            continue

        phase_scale = problem.phase(block.phase_id).scale
        if block.name == "defects":
            constraint_scale[block.rows] = np.tile(phase_scale.defects, block.shape[1])
        elif block.name == "path":
            constraint_scale[block.rows] = np.tile(phase_scale.path, block.shape[1])
        elif block.name == "events":
            constraint_scale[block.rows] = phase_scale.events
        elif block.name == "duration":
            constraint_scale[block.rows] = phase_scale.time

    logger.debug("Manual scaling applied to %d unknowns", nlp.num_unknowns)
    return ScalingFactors(
        mode="manual",
        variable_scale=variable_scale,
        variable_shift=np.zeros(nlp.num_unknowns),
        constraint_scale=constraint_scale,
        constraint_shift=np.zeros(nlp.num_constraints),
        objective_scale=problem.scale.objective,
    )


def compute_scaling(nlp: DiscreteNLP, problem: Problem, algorithm: Algorithm) -> ScalingFactors:
    """
    Scaling factors for ``nlp`` according to ``algorithm.scaling``.

    Raises:
        ConfigurationError: If a bound pair is inverted or the mode is unknown
        NumericalFailure: If the initial guess produces non-finite derivatives
    """
    if algorithm.scaling == "none":
        return identity_scaling(nlp.num_unknowns, nlp.num_constraints)
    if algorithm.scaling == "manual":
        return compute_manual_scaling(nlp, problem)
    if algorithm.scaling == "automatic":
        return compute_automatic_scaling(nlp, algorithm)
    raise ConfigurationError(f"Unknown scaling mode '{algorithm.scaling}'")
