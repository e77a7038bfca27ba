# pseudolab/direct_solver/types_solver.py
"""
Type definitions and data structure containers for the transcription engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import casadi as ca
import numpy as np

from ..collocation import CollocationComponents
from ..pl_types import FloatArray, NLPStatus, PhaseID


@dataclass(frozen=True)
class PhaseVariableLayout:
    """
    Position of one phase's unknowns inside the flat NLP vector.

    Per phase the order is: states node by node, controls node by node,
    parameters, start time, end time, integral unknowns.
    """

    phase_id: PhaseID
    num_states: int
    num_controls: int
    num_parameters: int
    num_nodes: int
    num_integrals: int
    offset: int

    @property
    def states(self) -> slice:
        return slice(self.offset, self.offset + self.num_states * self.num_nodes)

    @property
    def controls(self) -> slice:
        start = self.states.stop
        return slice(start, start + self.num_controls * self.num_nodes)

    @property
    def parameters(self) -> slice:
        start = self.controls.stop
        return slice(start, start + self.num_parameters)

    @property
    def t0(self) -> int:
        return self.parameters.stop

    @property
    def tf(self) -> int:
        return self.t0 + 1

    @property
    def integrals(self) -> slice:
        return slice(self.tf + 1, self.tf + 1 + self.num_integrals)

    @property
    def end(self) -> int:
        return self.integrals.stop

    @property
    def size(self) -> int:
        return self.end - self.offset


@dataclass(frozen=True)
class VariableLayout:
    """Layout of the flat unknown vector; phases are concatenated in phase order."""

    phases: dict[PhaseID, PhaseVariableLayout]
    size: int

    def phase(self, phase_id: PhaseID) -> PhaseVariableLayout:
        return self.phases[phase_id]


@dataclass(frozen=True)
class ConstraintBlock:
    """
    Named, contiguous rows of the constraint vector.

    ``phase_id`` is ``None`` for problem-level blocks (linkages).
    ``shape`` gives the matrix the rows reshape into (column-major), for
    example ``(nstates, num_defects)`` for dynamics defects.
    """

    name: str
    phase_id: PhaseID | None
    rows: slice
    lower: FloatArray
    upper: FloatArray
    shape: tuple[int, int]

    @property
    def size(self) -> int:
        return self.rows.stop - self.rows.start


@dataclass
class PhaseSymbols:
    """Views of one phase's unknowns as CasADi expressions sliced from ``w``."""

    phase_id: PhaseID
    states: ca.SX
    controls: ca.SX
    parameters: ca.SX
    t0: ca.SX
    tf: ca.SX
    integrals: ca.SX
    time: ca.SX
    components: CollocationComponents


@dataclass
class PhaseFunctions:
    """
    Callbacks of one phase traced into CasADi functions of node-local arguments.

    ``dae``, ``integrand_cost`` and ``integrands`` take ``(x, u, p, t)``;
    ``endpoint_cost`` and ``events`` take ``(x0, xf, p, t0, tf)``, with
    ``events`` taking the integral unknowns as a sixth argument.
    """

    phase_id: PhaseID
    dae: ca.Function
    integrand_cost: ca.Function | None = None
    endpoint_cost: ca.Function | None = None
    events: ca.Function | None = None
    integrands: list[ca.Function] = field(default_factory=list)

    @property
    def num_integrals(self) -> int:
        return len(self.integrands)


@dataclass(frozen=True)
class DiscreteNLP:
    """
    One mesh iteration's transcribed problem.

    Built fresh for every node-count entry and never mutated afterwards.
    """

    problem_name: str
    collocation_method: str
    node_counts: dict[PhaseID, int]
    unknowns: ca.SX
    objective: ca.SX
    constraints: ca.SX
    lbw: FloatArray
    ubw: FloatArray
    w0: FloatArray
    lbg: FloatArray
    ubg: FloatArray
    layout: VariableLayout
    blocks: tuple[ConstraintBlock, ...]
    components: dict[PhaseID, CollocationComponents]
    phase_functions: dict[PhaseID, PhaseFunctions]

    @property
    def num_unknowns(self) -> int:
        return self.layout.size

    @property
    def num_constraints(self) -> int:
        return int(self.constraints.numel())

    def block(self, name: str, phase_id: PhaseID | None = None) -> ConstraintBlock | None:
        for block in self.blocks:
            if block.name == name and block.phase_id == phase_id:
                return block
        return None

    def block_sizes(self) -> dict[str, int]:
        """Total rows per block name across phases."""
        sizes: dict[str, int] = {}
        for block in self.blocks:
            sizes[block.name] = sizes.get(block.name, 0) + block.size
        return sizes


def _frozen(array: FloatArray) -> FloatArray:
    frozen = np.array(array, dtype=np.float64, copy=True)
    frozen.setflags(write=False)
    return frozen


@dataclass(frozen=True)
class PhaseTrajectory:
    """
    Solver output for one phase on its node grid (never resampled).

    Arrays are read-only; ``states`` is ``(nstates, N)``, ``controls`` is
    ``(ncontrols, N)``, ``defects`` is ``(nstates, K)`` and ``path`` is
    ``(npath, N)``.
    """

    phase_id: PhaseID
    time: FloatArray
    states: FloatArray
    controls: FloatArray
    parameters: FloatArray
    integrals: FloatArray
    t0: float
    tf: float
    events: FloatArray
    defects: FloatArray
    path: FloatArray

    def __post_init__(self) -> None:
        arrays = ("time", "states", "controls", "parameters", "integrals", "events", "defects", "path")
        for name in arrays:
            object.__setattr__(self, name, _frozen(getattr(self, name)))

    @property
    def num_nodes(self) -> int:
        return self.states.shape[1]


@dataclass(frozen=True)
class MeshIterationSnapshot:
    """Immutable record of one finished mesh iteration, handed to the next one."""

    iteration: int
    node_counts: dict[PhaseID, int]
    collocation_method: str
    status: NLPStatus
    message: str
    nlp_iterations: int
    objective: float
    constraint_violation: float
    solve_time: float
    trajectories: dict[PhaseID, PhaseTrajectory]
    linkages: FloatArray
    components: dict[PhaseID, CollocationComponents]

    def __post_init__(self) -> None:
        object.__setattr__(self, "node_counts", dict(self.node_counts))
        object.__setattr__(self, "linkages", _frozen(self.linkages))

    @property
    def converged(self) -> bool:
        return self.status is NLPStatus.CONVERGED
