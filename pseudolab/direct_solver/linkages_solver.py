# pseudolab/direct_solver/linkages_solver.py
"""
Cross-phase linkage constraints.
"""

from __future__ import annotations

import logging

import casadi as ca

from ..autodiff import to_sx_column, trace_callback
from ..exceptions import ConfigurationError
from ..pl_types import PhaseID
from ..problem.core_problem import Problem
from .constraints_solver import ConstraintAssembler
from .types_solver import PhaseSymbols


logger = logging.getLogger(__name__)


class PhaseUnknowns:
    """
    Read-only view of every phase's unknowns, handed to the linkages callback.

    All accessors return differentiable CasADi expressions taken directly
    from the NLP unknown vector.
    """

    def __init__(self, symbols: dict[PhaseID, PhaseSymbols]) -> None:
        self._symbols = symbols

    @property
    def phase_ids(self) -> list[PhaseID]:
        return sorted(self._symbols)

    def _phase(self, phase_id: PhaseID) -> PhaseSymbols:
        if phase_id not in self._symbols:
            raise ConfigurationError(
                f"Linkage refers to phase {phase_id}; available phases are {self.phase_ids}",
                "linkages",
            )
        return self._symbols[phase_id]

    def states(self, phase_id: PhaseID) -> ca.SX:
        """``nstates x N`` state matrix of ``phase_id``."""
        return self._phase(phase_id).states

    def controls(self, phase_id: PhaseID) -> ca.SX:
        return self._phase(phase_id).controls

    def time(self, phase_id: PhaseID) -> ca.SX:
        return self._phase(phase_id).time

    def initial_states(self, phase_id: PhaseID) -> ca.SX:
        return self._phase(phase_id).states[:, 0]

    def final_states(self, phase_id: PhaseID) -> ca.SX:
        states = self._phase(phase_id).states
        return states[:, states.size2() - 1]

    def initial_controls(self, phase_id: PhaseID) -> ca.SX:
        return self._phase(phase_id).controls[:, 0]

    def final_controls(self, phase_id: PhaseID) -> ca.SX:
        controls = self._phase(phase_id).controls
        return controls[:, controls.size2() - 1]

    def parameters(self, phase_id: PhaseID) -> ca.SX:
        return self._phase(phase_id).parameters

    def initial_time(self, phase_id: PhaseID) -> ca.SX:
        return self._phase(phase_id).t0

    def final_time(self, phase_id: PhaseID) -> ca.SX:
        return self._phase(phase_id).tf

    def integrals(self, phase_id: PhaseID) -> ca.SX:
        return self._phase(phase_id).integrals


def auto_link(view: PhaseUnknowns, phase_a: PhaseID, phase_b: PhaseID) -> ca.SX:
    """
    Standard continuity residuals between the end of ``phase_a`` and the start of ``phase_b``.

    Returns ``nstates + 1`` residuals: state continuity followed by time
    continuity. Both phases must have the same number of states.
    """
    final_states = view.final_states(phase_a)
    initial_states = view.initial_states(phase_b)
    if final_states.numel() != initial_states.numel():
        raise ConfigurationError(
            f"auto_link needs equal state counts, phase {phase_a} has {final_states.numel()} "
            f"and phase {phase_b} has {initial_states.numel()}",
            "linkages",
        )
    return ca.vertcat(
        final_states - initial_states,
        view.initial_time(phase_b) - view.final_time(phase_a),
    )


def add_linkage_constraints(
    assembler: ConstraintAssembler,
    problem: Problem,
    symbols: dict[PhaseID, PhaseSymbols],
) -> None:
    """Append the linkage block. Problems without linkages add nothing."""
    if problem.nlinkages == 0 or problem.linkages is None:
        return

    view = PhaseUnknowns(symbols)
    raw = trace_callback("linkages", problem.linkages, view)
    residuals = to_sx_column(raw, "linkages", expected_size=problem.nlinkages)
    lower, upper = problem.bounds.pair()
    assembler.add("linkages", None, residuals, lower, upper)
    logger.debug("Linkage block: %d residuals across phases %s", problem.nlinkages, view.phase_ids)
