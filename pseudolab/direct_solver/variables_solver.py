# pseudolab/direct_solver/variables_solver.py
"""
Flat unknown vector: layout, bounds and per-phase symbolic views.
"""

from __future__ import annotations

import logging

import casadi as ca
import numpy as np

from ..collocation import CollocationComponents
from ..exceptions import DataIntegrityError
from ..pl_types import FloatArray, PhaseID
from ..problem.core_problem import Problem
from .types_solver import PhaseSymbols, PhaseVariableLayout, VariableLayout


logger = logging.getLogger(__name__)


def build_variable_layout(
    problem: Problem, node_counts: dict[PhaseID, int], integral_counts: dict[PhaseID, int]
) -> VariableLayout:
    """Place every phase's unknowns in the flat vector, phases in phase order."""
    phases: dict[PhaseID, PhaseVariableLayout] = {}
    offset = 0
    for phase in problem.phases:
        layout = PhaseVariableLayout(
            phase_id=phase.phase_id,
            num_states=phase.nstates,
            num_controls=phase.ncontrols,
            num_parameters=phase.nparameters,
            num_nodes=node_counts[phase.phase_id],
            num_integrals=integral_counts.get(phase.phase_id, 0),
            offset=offset,
        )
        phases[phase.phase_id] = layout
        offset = layout.end

        logger.debug(
            "Phase %d unknowns: states=%d x %d, controls=%d x %d, parameters=%d, "
            "integrals=%d, slice=[%d, %d)",
            phase.phase_id,
            layout.num_states,
            layout.num_nodes,
            layout.num_controls,
            layout.num_nodes,
            layout.num_parameters,
            layout.num_integrals,
            layout.offset,
            layout.end,
        )

    return VariableLayout(phases=phases, size=offset)


def build_variable_bounds(
    problem: Problem, layout: VariableLayout
) -> tuple[FloatArray, FloatArray]:
    """Lower and upper bounds on the flat unknown vector."""
    lbw = np.full(layout.size, -np.inf, dtype=np.float64)
    ubw = np.full(layout.size, np.inf, dtype=np.float64)

    for phase in problem.phases:
        phase_layout = layout.phase(phase.phase_id)
        bounds = phase.bounds
        num_nodes = phase_layout.num_nodes

        for name, target in (("states", phase_layout.states), ("controls", phase_layout.controls)):
            lower, upper = bounds.pair(name)
            # Node-major ordering repeats the per-variable bounds once per node
            lbw[target] = np.tile(lower, num_nodes)
            ubw[target] = np.tile(upper, num_nodes)

        lbw[phase_layout.parameters], ubw[phase_layout.parameters] = bounds.pair("parameters")

        t0_lower, t0_upper = bounds.pair("start_time")
        tf_lower, tf_upper = bounds.pair("end_time")
        lbw[phase_layout.t0], ubw[phase_layout.t0] = t0_lower[0], t0_upper[0]
        lbw[phase_layout.tf], ubw[phase_layout.tf] = tf_lower[0], tf_upper[0]

    if np.any(lbw > ubw):
        raise DataIntegrityError(
            "Assembled variable bounds are inverted", "variable bound assembly"
        )
    return lbw, ubw


def build_phase_symbols(
    unknowns: ca.SX,
    phase_layout: PhaseVariableLayout,
    components: CollocationComponents,
) -> PhaseSymbols:
    """Slice one phase's unknowns out of ``w`` as node matrices and scalars."""
    num_nodes = phase_layout.num_nodes
    # casadi reshapes column-major, matching the node-by-node storage order
    states = ca.reshape(
        unknowns[phase_layout.states.start : phase_layout.states.stop],
        phase_layout.num_states,
        num_nodes,
    )
    controls = ca.reshape(
        unknowns[phase_layout.controls.start : phase_layout.controls.stop],
        phase_layout.num_controls,
        num_nodes,
    )
    parameters = unknowns[phase_layout.parameters.start : phase_layout.parameters.stop]
    t0 = unknowns[phase_layout.t0]
    tf = unknowns[phase_layout.tf]
    integrals = unknowns[phase_layout.integrals.start : phase_layout.integrals.stop]

    tau = ca.DM(components.nodes.reshape(1, -1))
    time = (tf - t0) / 2.0 * tau + (tf + t0) / 2.0

    return PhaseSymbols(
        phase_id=phase_layout.phase_id,
        states=states,
        controls=controls,
        parameters=parameters,
        t0=t0,
        tf=tf,
        integrals=integrals,
        time=time,
        components=components,
    )


def node_times(components: CollocationComponents, t0: float, tf: float) -> FloatArray:
    """Physical times of the nodes for a numeric horizon."""
    return (tf - t0) / 2.0 * components.nodes + (tf + t0) / 2.0
