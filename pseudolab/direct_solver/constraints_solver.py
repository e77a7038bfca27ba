# pseudolab/direct_solver/constraints_solver.py
"""
Per-phase constraint and objective construction.

Every phase contributes, in this order: dynamics defects, path constraints,
event constraints, integral definitions and (for a free horizon) a minimum
duration. A block with zero rows is never emitted, so phases without path
constraints or events leave no trace in the constraint vector.
"""

from __future__ import annotations

import logging

import casadi as ca
import numpy as np

from ..autodiff import to_sx_column, trace_callback
from ..exceptions import ConfigurationError, DataIntegrityError
from ..pl_types import FloatArray, PhaseID
from ..problem.algorithm import Algorithm
from ..problem.core_problem import Phase, Problem
from ..utils.constants import MINIMUM_TIME_INTERVAL
from .integrals_solver import integral_residuals, quadrature, trace_phase_events
from .types_solver import ConstraintBlock, PhaseFunctions, PhaseSymbols


logger = logging.getLogger(__name__)


class ConstraintAssembler:
    """Accumulates named constraint blocks and their bounds in insertion order."""

    def __init__(self) -> None:
        self._expressions: list[ca.SX] = []
        self._blocks: list[ConstraintBlock] = []
        self._num_rows = 0

    def add(
        self,
        name: str,
        phase_id: PhaseID | None,
        expression: ca.SX,
        lower: FloatArray,
        upper: FloatArray,
    ) -> ConstraintBlock | None:
        """Append ``expression`` (any shape, flattened column-major). Empty blocks are skipped."""
        size = int(expression.numel())
        if size == 0:
            return None

        lower = np.asarray(lower, dtype=np.float64).flatten()
        upper = np.asarray(upper, dtype=np.float64).flatten()
        if lower.size != size or upper.size != size:
            raise DataIntegrityError(
                f"Constraint block '{name}' has {size} rows but bounds of sizes "
                f"{lower.size} and {upper.size}",
                f"phase {phase_id}" if phase_id is not None else "problem",
            )

        block = ConstraintBlock(
            name=name,
            phase_id=phase_id,
            rows=slice(self._num_rows, self._num_rows + size),
            lower=lower,
            upper=upper,
            shape=(int(expression.size1()), int(expression.size2())),
        )
        self._expressions.append(ca.vec(expression))
        self._blocks.append(block)
        self._num_rows += size
        logger.debug("Constraint block '%s' (phase %s): %d rows", name, phase_id, size)
        return block

    @property
    def blocks(self) -> tuple[ConstraintBlock, ...]:
        return tuple(self._blocks)

    def expression(self) -> ca.SX:
        return ca.vertcat(*self._expressions) if self._expressions else ca.SX(0, 1)

    def bounds(self) -> tuple[FloatArray, FloatArray]:
        if not self._blocks:
            return np.array([], dtype=np.float64), np.array([], dtype=np.float64)
        return (
            np.concatenate([block.lower for block in self._blocks]),
            np.concatenate([block.upper for block in self._blocks]),
        )


def _node_symbols(phase: Phase) -> tuple[ca.SX, ca.SX, ca.SX, ca.SX]:
    return (
        ca.SX.sym("x", phase.nstates),
        ca.SX.sym("u", phase.ncontrols),
        ca.SX.sym("p", phase.nparameters),
        ca.SX.sym("t"),
    )


def _endpoint_symbols(phase: Phase) -> tuple[ca.SX, ca.SX, ca.SX, ca.SX, ca.SX]:
    return (
        ca.SX.sym("x0", phase.nstates),
        ca.SX.sym("xf", phase.nstates),
        ca.SX.sym("p", phase.nparameters),
        ca.SX.sym("t0"),
        ca.SX.sym("tf"),
    )


def trace_phase_functions(problem: Problem, phase: Phase) -> PhaseFunctions:
    """Trace every callback of ``phase`` once into CasADi functions."""
    phase_id = phase.phase_id
    node_symbols = _node_symbols(phase)
    endpoint_symbols = _endpoint_symbols(phase)

    raw = trace_callback("dae", problem.dae, *node_symbols, phase_id)
    if not isinstance(raw, tuple) or len(raw) != 2:
        raise ConfigurationError(
            "dae must return a (derivatives, path) tuple; use (derivatives, None) without "
            "path constraints",
            f"phase {phase_id}",
        )
    derivatives = to_sx_column(raw[0], f"dae derivatives (phase {phase_id})", phase.nstates)
    path = to_sx_column(raw[1], f"dae path (phase {phase_id})", phase.npath)
    functions = PhaseFunctions(
        phase_id=phase_id,
        dae=ca.Function(
            f"dae_p{phase_id}",
            list(node_symbols),
            [derivatives, path],
            ["x", "u", "p", "t"],
            ["xdot", "path"],
        ),
    )

    if problem.integrand_cost is not None:
        raw = trace_callback("integrand_cost", problem.integrand_cost, *node_symbols, phase_id)
        functions.integrand_cost = ca.Function(
            f"integrand_cost_p{phase_id}",
            list(node_symbols),
            [to_sx_column(raw, f"integrand_cost (phase {phase_id})", 1)],
            ["x", "u", "p", "t"],
            ["L"],
        )

    if problem.endpoint_cost is not None:
        raw = trace_callback("endpoint_cost", problem.endpoint_cost, *endpoint_symbols, phase_id)
        functions.endpoint_cost = ca.Function(
            f"endpoint_cost_p{phase_id}",
            list(endpoint_symbols),
            [to_sx_column(raw, f"endpoint_cost (phase {phase_id})", 1)],
            ["x0", "xf", "p", "t0", "tf"],
            ["E"],
        )

    if phase.nevents > 0 and problem.events is not None:
        events, integrands = trace_phase_events(
            problem.events, phase_id, phase.nevents, endpoint_symbols, node_symbols
        )
        functions.events = events
        functions.integrands = integrands

    logger.debug(
        "Phase %d callbacks traced: integrand_cost=%s, endpoint_cost=%s, events=%s, integrals=%d",
        phase_id,
        functions.integrand_cost is not None,
        functions.endpoint_cost is not None,
        functions.events is not None,
        functions.num_integrals,
    )
    return functions


def map_over_nodes(function: ca.Function, num_nodes: int, algorithm: Algorithm) -> ca.Function:
    """Evaluate ``function`` at every node, in parallel threads when configured."""
    if algorithm.parallelization == "thread" and num_nodes > 1:
        return function.map(num_nodes, "thread", algorithm.num_threads)
    return function.map(num_nodes, "serial")


def _node_arguments(symbols: PhaseSymbols) -> tuple[ca.SX, ca.SX, ca.SX, ca.SX]:
    num_nodes = symbols.components.num_nodes
    return (
        symbols.states,
        symbols.controls,
        ca.repmat(symbols.parameters, 1, num_nodes),
        symbols.time,
    )


def add_phase_constraints(
    assembler: ConstraintAssembler,
    phase: Phase,
    symbols: PhaseSymbols,
    functions: PhaseFunctions,
    algorithm: Algorithm,
) -> None:
    """Append the defect, path, event, integral and duration blocks of one phase."""
    phase_id = phase.phase_id
    components = symbols.components
    num_nodes = components.num_nodes
    node_arguments = _node_arguments(symbols)

    dynamics, path = map_over_nodes(functions.dae, num_nodes, algorithm)(*node_arguments)

    # X D^T - (tf - t0)/2 F A^T = 0, one column per collocation equation
    defects = ca.mtimes(symbols.states, ca.DM(components.state_operator.T)) - (
        (symbols.tf - symbols.t0) / 2.0
    ) * ca.mtimes(dynamics, ca.DM(components.dynamics_operator.T))
    num_defect_rows = phase.nstates * components.num_defects
    assembler.add(
        "defects", phase_id, defects, np.zeros(num_defect_rows), np.zeros(num_defect_rows)
    )

    if phase.npath > 0:
        lower, upper = phase.bounds.pair("path")
        assembler.add(
            "path", phase_id, path, np.tile(lower, num_nodes), np.tile(upper, num_nodes)
        )

    if functions.events is not None:
        events = functions.events(
            symbols.states[:, 0],
            symbols.states[:, num_nodes - 1],
            symbols.parameters,
            symbols.t0,
            symbols.tf,
            symbols.integrals,
        )
        lower, upper = phase.bounds.pair("events")
        assembler.add("events", phase_id, events, lower, upper)

    if functions.num_integrals > 0:
        integrand_maps = [
            map_over_nodes(integrand, num_nodes, algorithm) for integrand in functions.integrands
        ]
        residuals = integral_residuals(
            integrand_maps,
            symbols.integrals,
            node_arguments,
            components,
            symbols.t0,
            symbols.tf,
        )
        zeros = np.zeros(functions.num_integrals)
        assembler.add("integrals", phase_id, residuals, zeros, zeros)

    if not phase.bounds.time_is_fixed():
        assembler.add(
            "duration",
            phase_id,
            symbols.tf - symbols.t0,
            np.array([MINIMUM_TIME_INTERVAL]),
            np.array([np.inf]),
        )


def phase_objective(
    symbols: PhaseSymbols, functions: PhaseFunctions, algorithm: Algorithm
) -> ca.SX:
    """Endpoint cost plus quadrature of the integrand cost for one phase."""
    objective = ca.SX(0)
    num_nodes = symbols.components.num_nodes

    if functions.endpoint_cost is not None:
        objective += functions.endpoint_cost(
            symbols.states[:, 0],
            symbols.states[:, num_nodes - 1],
            symbols.parameters,
            symbols.t0,
            symbols.tf,
        )

    if functions.integrand_cost is not None:
        integrand_map = map_over_nodes(functions.integrand_cost, num_nodes, algorithm)
        values = integrand_map(*_node_arguments(symbols))
        objective += quadrature(values, symbols.components, symbols.t0, symbols.tf)

    return objective
