"""
Adapter between a scaled ``DiscreteNLP`` and CasADi's NLP solvers.

The solver only ever sees scaled unknowns ``z``; the raw unknowns are
``w = shift + scale * z``. Results come back in raw space.

Solver tolerances are tightened by the scale factors so that a converged
result keeps the raw constraint violation and the raw stationarity error
within ``nlp_tolerance``. The raw violation is checked again after the solve.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import casadi as ca
import numpy as np

from .direct_solver.types_solver import DiscreteNLP
from .exceptions import DataIntegrityError
from .input_validation import validate_array_shape
from .pl_types import FloatArray, NLPStatus
from .problem.algorithm import Algorithm
from .scaling import ScalingFactors
from .utils.constants import DEFAULT_IPOPT_OPTIONS, DEFAULT_SQP_OPTIONS


logger = logging.getLogger(__name__)

_SOLVER_PLUGINS = {"ipopt": "ipopt", "sqp": "sqpmethod"}

STEP_TOO_SMALL = "Search_Direction_Becomes_Too_Small"

_IPOPT_STATUSES = {
    "Solve_Succeeded": NLPStatus.CONVERGED,
    "Solved_To_Acceptable_Level": NLPStatus.CONVERGED,
    "Feasible_Point_Found": NLPStatus.CONVERGED,
    "Maximum_Iterations_Exceeded": NLPStatus.MAX_ITERATIONS_REACHED,
    "Maximum_CpuTime_Exceeded": NLPStatus.MAX_ITERATIONS_REACHED,
    "Maximum_WallTime_Exceeded": NLPStatus.MAX_ITERATIONS_REACHED,
    "Infeasible_Problem_Detected": NLPStatus.INFEASIBLE,
}

_SQP_STATUSES = {
    "Solve_Succeeded": NLPStatus.CONVERGED,
    "Maximum_Iterations_Exceeded": NLPStatus.MAX_ITERATIONS_REACHED,
    "Infeasible_Problem_Detected": NLPStatus.INFEASIBLE,
}


@dataclass(frozen=True)
class NLPResult:
    """Outcome of one NLP solve, in raw (unscaled) space."""

    status: NLPStatus
    return_status: str
    message: str
    unknowns: FloatArray
    constraints: FloatArray
    objective: float
    iterations: int
    constraint_violation: float
    solve_time: float
    stationarity: float = 0.0

    def __post_init__(self) -> None:
        for name in ("unknowns", "constraints"):
            frozen = np.array(getattr(self, name), dtype=np.float64, copy=True)
            frozen.setflags(write=False)
            object.__setattr__(self, name, frozen)

    @property
    def converged(self) -> bool:
        return self.status is NLPStatus.CONVERGED


def map_return_status(
    return_status: str, success: bool = False, nlp_method: str = "ipopt"
) -> NLPStatus:
    """
    Translate a solver ``return_status`` string into an ``NLPStatus``.

    Names are matched exactly against the table of the solver that produced
    them. Unknown names fall back to the solver's ``success`` flag.
    ``Search_Direction_Becomes_Too_Small`` maps to ``NUMERICAL_FAILURE`` here;
    the adapter accepts it for SQP when the iterate meets the tolerances.
    """
    table = _SQP_STATUSES if nlp_method == "sqp" else _IPOPT_STATUSES
    if return_status in table:
        return table[return_status]
    if success:
        return NLPStatus.CONVERGED
    return NLPStatus.NUMERICAL_FAILURE


def bound_violation(values: FloatArray, lower: FloatArray, upper: FloatArray) -> float:
    """Largest amount by which ``values`` leave ``[lower, upper]``; 0.0 when inside."""
    if values.size == 0:
        return 0.0
    if not np.all(np.isfinite(values)):
        return float("inf")
    excess = np.maximum(lower - values, values - upper)
    return float(max(0.0, np.max(excess)))


def scaled_tolerances(
    tolerance: float, scaling: ScalingFactors | None = None
) -> tuple[float, float]:
    """
    Primal and dual tolerances in scaled space.

    A scaled constraint residual below the primal tolerance is a raw residual
    below ``tolerance`` for every row; likewise the dual tolerance bounds the
    stationarity error of the raw objective.
    """
    if scaling is None:
        return tolerance, tolerance
    row_scale = float(np.max(scaling.constraint_scale)) if scaling.constraint_scale.size else 1.0
    return tolerance / max(1.0, row_scale), tolerance / max(1.0, scaling.objective_scale)


def build_solver_options(
    algorithm: Algorithm, scaling: ScalingFactors | None = None
) -> dict[str, Any]:
    """CasADi ``nlpsol`` options for the configured method, user options merged last."""
    primal_tolerance, dual_tolerance = scaled_tolerances(algorithm.nlp_tolerance, scaling)

    if algorithm.nlp_method == "ipopt":
        options: dict[str, Any] = dict(DEFAULT_IPOPT_OPTIONS)
        options.update(
            {
                "error_on_fail": False,
                "ipopt.max_iter": algorithm.nlp_iter_max,
                "ipopt.tol": algorithm.nlp_tolerance,
                "ipopt.constr_viol_tol": primal_tolerance,
                "ipopt.dual_inf_tol": dual_tolerance,
                "ipopt.compl_inf_tol": algorithm.nlp_tolerance,
                # An "acceptable" exit must still meet the raw tolerances
                "ipopt.acceptable_constr_viol_tol": primal_tolerance,
                "ipopt.acceptable_dual_inf_tol": dual_tolerance,
                "ipopt.print_level": algorithm.print_level,
            }
        )
        if algorithm.hessian == "limited-memory" or algorithm.uses_finite_differences:
            options["ipopt.hessian_approximation"] = "limited-memory"
        if algorithm.uses_finite_differences:
            options["ipopt.gradient_approximation"] = "finite-difference-values"
            options["ipopt.jacobian_approximation"] = "finite-difference-values"
    else:
        options = dict(DEFAULT_SQP_OPTIONS)
        options["qpsol_options"] = dict(DEFAULT_SQP_OPTIONS["qpsol_options"])
        options.update(
            {
                "error_on_fail": False,
                "max_iter": algorithm.nlp_iter_max,
                "tol_pr": primal_tolerance,
                "tol_du": dual_tolerance,
                "hessian_approximation": (
                    "limited-memory" if algorithm.hessian == "limited-memory" else "exact"
                ),
            }
        )
        if algorithm.print_level > 0:
            options.update({"print_header": True, "print_iteration": True, "print_status": True})

    options.update(algorithm.nlp_options)
    return options


class NLPSolverAdapter:
    """
    Drives one NLP solve over the scaled unknowns.

    ``state`` moves ``INITIALIZING -> ITERATING -> terminal`` and an adapter
    solves exactly once; every mesh iteration builds its own adapter.
    """

    def __init__(self, nlp: DiscreteNLP, scaling: ScalingFactors, algorithm: Algorithm) -> None:
        validate_array_shape(
            scaling.variable_scale, (nlp.num_unknowns,), "Variable scale", "NLP adapter setup"
        )
        validate_array_shape(
            scaling.constraint_scale, (nlp.num_constraints,), "Constraint scale", "NLP adapter setup"
        )

        self._nlp = nlp
        self._scaling = scaling
        self._algorithm = algorithm
        self._state = NLPStatus.INITIALIZING
        self._result: NLPResult | None = None

        self._raw_function = ca.Function(
            "nlp_raw", [nlp.unknowns], [nlp.objective, nlp.constraints], ["w"], ["f", "g"]
        )
        self.options = build_solver_options(algorithm, scaling)
        self._solver = self._build_solver()

    @property
    def state(self) -> NLPStatus:
        return self._state

    @property
    def result(self) -> NLPResult | None:
        return self._result

    def _build_solver(self) -> ca.Function:
        scaling = self._scaling
        scaled = ca.SX.sym("z", self._nlp.num_unknowns)
        raw = ca.DM(scaling.variable_shift) + ca.DM(scaling.variable_scale) * scaled
        objective, constraints = self._raw_function(raw)

        scaled_objective = objective / scaling.objective_scale
        scaled_constraints = (constraints - ca.DM(scaling.constraint_shift)) / ca.DM(
            scaling.constraint_scale
        )

        # Gradient of f + lam_g' g in scaled space; casadi's lam_x closes the residual
        multipliers = ca.SX.sym("lam_g", self._nlp.num_constraints)
        lagrangian = scaled_objective + ca.dot(multipliers, scaled_constraints)
        self._lagrangian_gradient = ca.Function(
            "nlp_lagrangian_gradient",
            [scaled, multipliers],
            [ca.gradient(lagrangian, scaled)],
        )

        problem = {"x": scaled, "f": scaled_objective, "g": scaled_constraints}
        plugin = _SOLVER_PLUGINS[self._algorithm.nlp_method]
        logger.debug("Building nlpsol '%s' with options: %s", plugin, self.options)
        return ca.nlpsol("pseudolab_nlp", plugin, problem, self.options)

    def _evaluate_raw(self, unknowns: FloatArray) -> tuple[float, FloatArray]:
        objective, constraints = self._raw_function(unknowns)
        return float(objective), np.array(constraints, dtype=np.float64).flatten()

    def _stationarity(self, output: dict[str, ca.DM]) -> float:
        """Infinity norm of the Lagrangian gradient, measured on the raw objective."""
        residual = self._lagrangian_gradient(output["x"], output["lam_g"]) + output["lam_x"]
        residual = np.array(residual, dtype=np.float64).flatten()
        if residual.size == 0:
            return 0.0
        if not np.all(np.isfinite(residual)):
            return float("inf")
        return float(np.max(np.abs(residual))) * self._scaling.objective_scale

    def _check_termination(
        self, status: NLPStatus, return_status: str, violation: float, stationarity: float
    ) -> tuple[NLPStatus, str]:
        """Re-check the solver's verdict against the raw residuals."""
        tolerance = self._algorithm.nlp_tolerance
        message = return_status

        if (
            status is NLPStatus.NUMERICAL_FAILURE
            and self._algorithm.nlp_method == "sqp"
            and return_status == STEP_TOO_SMALL
            and violation <= tolerance
            and stationarity <= tolerance
        ):
            status = NLPStatus.CONVERGED
            message = f"{return_status} at a point within nlp_tolerance"

        if status is NLPStatus.CONVERGED and not violation <= tolerance:
            status = NLPStatus.NUMERICAL_FAILURE
            message = (
                f"{return_status} but the raw constraint violation {violation:.3e} "
                f"exceeds nlp_tolerance {tolerance:.1e}"
            )

        if status is NLPStatus.CONVERGED and stationarity > tolerance:
            logger.warning(
                "Converged NLP has raw stationarity error %.3e above nlp_tolerance %.1e",
                stationarity,
                tolerance,
            )
        return status, message

    def solve(self) -> NLPResult:
        """
        Run the solver from the scaled initial guess.

        Solver-reported failures are returned as a terminal status, not raised.
        """
        if self._state is not NLPStatus.INITIALIZING:
            raise DataIntegrityError("NLP adapter has already been used", f"state={self._state.name}")

        nlp = self._nlp
        scaling = self._scaling
        lbz, ubz = scaling.scale_variable_bounds(nlp.lbw, nlp.ubw)
        lbg, ubg = scaling.scale_constraint_bounds(nlp.lbg, nlp.ubg)
        z0 = scaling.scale_values(nlp.w0)

        logger.info(
            "Solving NLP with %s: %d unknowns, %d constraints",
            self._algorithm.nlp_method.upper(),
            nlp.num_unknowns,
            nlp.num_constraints,
        )
        self._state = NLPStatus.ITERATING
        start = time.perf_counter()
        try:
            output = self._solver(x0=z0, lbx=lbz, ubx=ubz, lbg=lbg, ubg=ubg)
            stats = self._solver.stats()
            unknowns = scaling.unscale_values(np.array(output["x"], dtype=np.float64).flatten())
            return_status = str(stats.get("return_status", "unknown"))
            status = map_return_status(
                return_status, bool(stats.get("success", False)), self._algorithm.nlp_method
            )
            iterations = int(stats.get("iter_count", 0))
            stationarity = self._stationarity(output)
        except RuntimeError as e:
            logger.warning("NLP solver raised during iteration: %s", e)
            unknowns = np.array(nlp.w0, dtype=np.float64)
            return_status = "runtime_error"
            status = NLPStatus.NUMERICAL_FAILURE
            iterations = 0
            stationarity = float("inf")
            message = f"NLP solver runtime error: {e}"
        solve_time = time.perf_counter() - start

        objective, constraints = self._evaluate_raw(unknowns)
        violation = max(
            bound_violation(constraints, nlp.lbg, nlp.ubg),
            bound_violation(unknowns, nlp.lbw, nlp.ubw),
        )

        finite = bool(np.all(np.isfinite(unknowns)) and np.isfinite(objective))
        if status is NLPStatus.CONVERGED and not finite:
            status = NLPStatus.NUMERICAL_FAILURE
            message = f"{return_status} with non-finite solution values"
        elif return_status != "runtime_error":
            status, message = self._check_termination(
                status, return_status, violation, stationarity
            )

        self._state = status
        self._result = NLPResult(
            status=status,
            return_status=return_status,
            message=message,
            unknowns=unknowns,
            constraints=constraints,
            objective=objective,
            iterations=iterations,
            constraint_violation=violation,
            solve_time=solve_time,
            stationarity=stationarity,
        )

        log = logger.info if status is NLPStatus.CONVERGED else logger.warning
        log(
            "NLP finished: %s (%s) after %d iterations in %.3fs, objective=%.6e, "
            "violation=%.3e, stationarity=%.3e",
            status.name,
            return_status,
            iterations,
            solve_time,
            objective,
            violation,
            stationarity,
        )
        return self._result
