import logging

import casadi as ca

from ..collocation import CollocationComponents, compute_collocation_components
from ..exceptions import DataIntegrityError
from ..pl_types import PhaseID
from ..problem.algorithm import Algorithm
from ..problem.core_problem import Problem
from .constraints_solver import (
    ConstraintAssembler,
    add_phase_constraints,
    phase_objective,
    trace_phase_functions,
)
from .initial_guess_solver import build_initial_guess
from .linkages_solver import add_linkage_constraints
from .types_solver import DiscreteNLP, MeshIterationSnapshot, PhaseFunctions, PhaseSymbols
from .variables_solver import build_phase_symbols, build_variable_bounds, build_variable_layout


logger = logging.getLogger(__name__)


def _validate_assembly(nlp: DiscreteNLP) -> None:
    """Check that layout, constraint blocks and bound vectors agree."""
    if nlp.unknowns.numel() != nlp.layout.size:
        raise DataIntegrityError(
            f"Unknown vector has {nlp.unknowns.numel()} entries, layout expects {nlp.layout.size}",
            "transcription assembly",
        )
    for name, vector in (("lbw", nlp.lbw), ("ubw", nlp.ubw), ("w0", nlp.w0)):
        if vector.size != nlp.layout.size:
            raise DataIntegrityError(
                f"{name} has {vector.size} entries for {nlp.layout.size} unknowns",
                "transcription assembly",
            )

    num_rows = sum(block.size for block in nlp.blocks)
    if num_rows != nlp.num_constraints or nlp.lbg.size != num_rows or nlp.ubg.size != num_rows:
        raise DataIntegrityError(
            f"Constraint blocks cover {num_rows} rows, constraint vector has "
            f"{nlp.num_constraints}, bounds have {nlp.lbg.size}/{nlp.ubg.size}",
            "transcription assembly",
        )
    if any(block.size == 0 for block in nlp.blocks):
        raise DataIntegrityError("Zero-size constraint block assembled", "transcription assembly")


def build_discrete_nlp(
    problem: Problem,
    algorithm: Algorithm,
    node_counts: dict[PhaseID, int],
    snapshot: MeshIterationSnapshot | None = None,
) -> DiscreteNLP:
    """
    Transcribe ``problem`` on the given node counts into a ``DiscreteNLP``.

    Args:
        problem: Validated problem description
        algorithm: Validated algorithm configuration
        node_counts: Node count per phase for this mesh iteration
        snapshot: Previous mesh iteration, used to warm start the initial point

    Returns:
        The assembled NLP in raw (unscaled) variables.
    """
    method = algorithm.collocation_method

    # Callbacks are traced first: the events decide how many integral unknowns exist
    components: dict[PhaseID, CollocationComponents] = {}
    functions: dict[PhaseID, PhaseFunctions] = {}
    for phase in problem.phases:
        components[phase.phase_id] = compute_collocation_components(
            method, node_counts[phase.phase_id]
        )
        functions[phase.phase_id] = trace_phase_functions(problem, phase)

    integral_counts = {phase_id: f.num_integrals for phase_id, f in functions.items()}
    layout = build_variable_layout(problem, node_counts, integral_counts)
    unknowns = ca.SX.sym("w", layout.size)

    symbols: dict[PhaseID, PhaseSymbols] = {
        phase_id: build_phase_symbols(unknowns, layout.phase(phase_id), components[phase_id])
        for phase_id in layout.phases
    }

    assembler = ConstraintAssembler()
    objective = ca.SX(0)
    for phase in problem.phases:
        phase_id = phase.phase_id
        add_phase_constraints(
            assembler, phase, symbols[phase_id], functions[phase_id], algorithm
        )
        objective += phase_objective(symbols[phase_id], functions[phase_id], algorithm)

    add_linkage_constraints(assembler, problem, symbols)

    lbw, ubw = build_variable_bounds(problem, layout)
    lbg, ubg = assembler.bounds()
    w0 = build_initial_guess(problem, layout, components, functions, lbw, ubw, snapshot)

    nlp = DiscreteNLP(
        problem_name=problem.name,
        collocation_method=method,
        node_counts=dict(node_counts),
        unknowns=unknowns,
        objective=objective,
        constraints=assembler.expression(),
        lbw=lbw,
        ubw=ubw,
        w0=w0,
        lbg=lbg,
        ubg=ubg,
        layout=layout,
        blocks=assembler.blocks,
        components=components,
        phase_functions=functions,
    )
    _validate_assembly(nlp)

    logger.info(
        "Transcribed '%s' (%s, nodes=%s): %d unknowns, %d constraints",
        problem.name,
        method,
        list(node_counts.values()),
        nlp.num_unknowns,
        nlp.num_constraints,
    )
    logger.debug("Constraint blocks: %s", nlp.block_sizes())
    return nlp
