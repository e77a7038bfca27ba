"""Plain-text summary of a solved problem, printed after ``solve``."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np


if TYPE_CHECKING:
    from .solution import Solution


def print_solution_summary(solution: Solution) -> None:
    """
    Present factual solution data without analysis or interpretation.

    Args:
        solution: Solution object containing multiphase optimization results
    """
    print("\n" + "=" * 80)
    print("PSEUDOLAB SOLUTION DATA")
    print("=" * 80)

    _print_problem_structure_section(solution)
    _print_solution_status_section(solution)
    _print_phase_data_section(solution)
    _print_linkage_section(solution)
    _print_mesh_history_section(solution)

    print("=" * 80)
    print("END SOLUTION DATA")
    print("=" * 80 + "\n")


def _print_problem_structure_section(solution: Solution) -> None:
    print("\n┌─ PROBLEM STRUCTURE")
    print("│")
    print(f"│  Name: {solution.problem_name}")
    print(f"│  Phases: {len(solution.phase_ids)}")

    total_states = 0
    total_controls = 0
    for phase_id in solution.phase_ids:
        total_states += solution.get_states_in_phase(phase_id).shape[0]
        total_controls += solution.get_controls_in_phase(phase_id).shape[0]
    print(f"│  Total State Variables: {total_states}")
    print(f"│  Total Control Variables: {total_controls}")
    print(f"│  Linkage Constraints: {solution.get_linkages().size}")
    print("│")


def _print_solution_status_section(solution: Solution) -> None:
    print("┌─ SOLUTION STATUS")
    print("│")
    print(f"│  Status: {solution.status.name}")
    print(f"│  Error Flag: {solution.error_flag}")
    print(f"│  Message: {solution.message}")
    print(f"│  NLP Method: {solution.nlp_method.upper()}")
    print(f"│  Collocation: {solution.collocation_method}")
    print(f"│  Objective: {solution.objective:.12e}")
    print(f"│  Max Constraint Violation: {solution.constraint_violation:.3e}")
    print(f"│  NLP Iterations (final mesh): {solution.iterations}")
    print(f"│  NLP Iterations (total): {solution.total_iterations}")
    print(f"│  Solve Time: {solution.solve_time:.3f} s")
    print("│")


def _print_phase_data_section(solution: Solution) -> None:
    print("┌─ PHASE DATA")
    print("│")

    for phase_id in solution.phase_ids:
        t0, tf = solution.get_phase_horizon(phase_id)
        states = solution.get_states_in_phase(phase_id)
        controls = solution.get_controls_in_phase(phase_id)
        defects = solution.get_dynamics_defects_in_phase(phase_id)

        print(f"│  Phase {phase_id}:")
        print(f"│    Initial Time: {t0:.12e}")
        print(f"│    Final Time: {tf:.12e}")
        print(f"│    Duration: {tf - t0:.12e}")
        print(f"│    States: {states.shape[0]}  Controls: {controls.shape[0]}  Nodes: {states.shape[1]}")

        parameters = solution.get_parameters_in_phase(phase_id)
        if parameters.size > 0:
            print(f"│    Parameters: {parameters}")

        integrals = solution.get_integrals_in_phase(phase_id)
        if integrals.size > 0:
            print(f"│    Integrals: {integrals}")

        events = solution.get_events_in_phase(phase_id)
        if events.size > 0:
            print(f"│    Events: {events}")

        if defects.size > 0:
            print(f"│    Max |Defect|: {np.max(np.abs(defects)):.3e}")
        print("│")


def _print_linkage_section(solution: Solution) -> None:
    linkages = solution.get_linkages()
    if linkages.size == 0:
        return

    print("┌─ LINKAGES")
    print("│")
    for i, value in enumerate(linkages):
        print(f"│    Linkage {i + 1}: {value:.12e}")
    print("│")


def _print_mesh_history_section(solution: Solution) -> None:
    print("┌─ MESH HISTORY")
    print("│")
    print("│  ┌───────────┬──────────────────┬──────────────────────────┬────────────┬──────────────────────")
    print("│  │ Iteration │ Nodes            │ Status                   │ NLP Iters  │ Objective            ")
    print("│  ├───────────┼──────────────────┼──────────────────────────┼────────────┼──────────────────────")

    for snapshot in solution.mesh_history:
        nodes = str(list(snapshot.node_counts.values()))
        print(
            f"│  │ {snapshot.iteration:9d} │ {nodes:16s} │ {snapshot.status.name:24s} "
            f"│ {snapshot.nlp_iterations:10d} │ {snapshot.objective:.12e}"
        )

    print("│  └───────────┴──────────────────┴──────────────────────────┴────────────┴──────────────────────")
    print(f"│  Mesh Iterations: {len(solution.mesh_history)}")
    print("│")
