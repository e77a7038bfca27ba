"""
Slicing of raw NLP results into per-phase trajectories and mesh snapshots.
"""

import logging

import numpy as np

from .direct_solver.types_solver import (
    ConstraintBlock,
    DiscreteNLP,
    MeshIterationSnapshot,
    PhaseTrajectory,
)
from .direct_solver.variables_solver import node_times
from .exceptions import SolutionExtractionError
from .nlp_adapter import NLPResult
from .pl_types import FloatArray, PhaseID


logger = logging.getLogger(__name__)


def _block_values(
    block: ConstraintBlock | None, constraints: FloatArray, empty_shape: tuple[int, int]
) -> FloatArray:
    """Rows of ``block`` reshaped column-major to the block shape; empty when absent."""
    if block is None:
        return np.zeros(empty_shape, dtype=np.float64)

    values = constraints[block.rows]
    try:
        return values.reshape(block.shape, order="F")
    except ValueError as e:
        raise SolutionExtractionError(
            f"Cannot reshape {values.size} '{block.name}' values into {block.shape}",
            f"phase {block.phase_id}",
        ) from e


def extract_phase_trajectories(
    nlp: DiscreteNLP, result: NLPResult
) -> dict[PhaseID, PhaseTrajectory]:
    """
    Per-phase trajectories on the solver's node grid.

    ``result`` is already in raw space; nothing is resampled.

    Raises:
        SolutionExtractionError: If the result vectors do not match the layout
    """
    if result.unknowns.size != nlp.num_unknowns:
        raise SolutionExtractionError(
            f"Solver returned {result.unknowns.size} unknowns, layout has {nlp.num_unknowns}",
            nlp.problem_name,
        )
    if result.constraints.size != nlp.num_constraints:
        raise SolutionExtractionError(
            f"Solver returned {result.constraints.size} constraint values, "
            f"NLP has {nlp.num_constraints}",
            nlp.problem_name,
        )

    w = result.unknowns
    g = result.constraints
    trajectories: dict[PhaseID, PhaseTrajectory] = {}

    for phase_id, layout in nlp.layout.phases.items():
        components = nlp.components[phase_id]
        num_nodes = layout.num_nodes
        t0 = float(w[layout.t0])
        tf = float(w[layout.tf])

        events = _block_values(nlp.block("events", phase_id), g, (0, 1)).flatten()
        trajectories[phase_id] = PhaseTrajectory(
            phase_id=phase_id,
            time=node_times(components, t0, tf),
            states=w[layout.states].reshape((layout.num_states, num_nodes), order="F"),
            controls=w[layout.controls].reshape((layout.num_controls, num_nodes), order="F"),
            parameters=w[layout.parameters],
            integrals=w[layout.integrals],
            t0=t0,
            tf=tf,
            events=events,
            defects=_block_values(
                nlp.block("defects", phase_id), g, (layout.num_states, components.num_defects)
            ),
            path=_block_values(nlp.block("path", phase_id), g, (0, num_nodes)),
        )
        logger.debug(
            "Phase %d extracted: %d nodes, horizon [%.6g, %.6g]", phase_id, num_nodes, t0, tf
        )

    return trajectories


def build_mesh_snapshot(
    iteration: int, nlp: DiscreteNLP, result: NLPResult
) -> MeshIterationSnapshot:
    """Immutable record of one finished mesh iteration."""
    linkage_block = nlp.block("linkages")
    linkages = (
        np.zeros(0) if linkage_block is None else result.constraints[linkage_block.rows]
    )
    return MeshIterationSnapshot(
        iteration=iteration,
        node_counts=nlp.node_counts,
        collocation_method=nlp.collocation_method,
        status=result.status,
        message=result.message,
        nlp_iterations=result.iterations,
        objective=result.objective,
        constraint_violation=result.constraint_violation,
        solve_time=result.solve_time,
        trajectories=extract_phase_trajectories(nlp, result),
        linkages=linkages,
        components=nlp.components,
    )
