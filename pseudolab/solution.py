"""
Solution interface for optimal control problem results.

A ``Solution`` is built once from the mesh history of a ``solve`` call and is
read-only afterwards. Every array it hands out is a copy.
"""

import logging
from collections.abc import Sequence

import numpy as np

from .direct_solver.types_solver import MeshIterationSnapshot, PhaseTrajectory
from .exceptions import ConfigurationError, DataIntegrityError
from .pl_types import FloatArray, FloatMatrix, NLPStatus, PhaseID
from .problem.core_problem import Problem


logger = logging.getLogger(__name__)


class Solution:
    """
    Result of solving a multiphase optimal control problem.

    The final mesh iteration provides the trajectories; earlier iterations are
    kept in ``mesh_history``. Solver-reported failures do not raise: they set
    ``error_flag`` and leave the best-effort trajectories of the failed
    iteration in place.
    """

    def __init__(
        self,
        problem_name: str,
        mesh_history: Sequence[MeshIterationSnapshot],
        nlp_method: str = "ipopt",
    ) -> None:
        if not mesh_history:
            raise DataIntegrityError("A solution needs at least one mesh iteration", problem_name)

        self._problem_name = problem_name
        self._nlp_method = nlp_method
        self._mesh_history = tuple(mesh_history)
        self._final = self._mesh_history[-1]

    @property
    def problem_name(self) -> str:
        return self._problem_name

    @property
    def nlp_method(self) -> str:
        return self._nlp_method

    @property
    def error_flag(self) -> bool:
        """True when the final mesh iteration did not converge."""
        return not self._final.converged

    @property
    def status(self) -> NLPStatus:
        return self._final.status

    @property
    def message(self) -> str:
        return self._final.message

    @property
    def iterations(self) -> int:
        """NLP iterations of the final mesh iteration."""
        return self._final.nlp_iterations

    @property
    def total_iterations(self) -> int:
        return sum(snapshot.nlp_iterations for snapshot in self._mesh_history)

    @property
    def objective(self) -> float:
        return self._final.objective

    @property
    def constraint_violation(self) -> float:
        return self._final.constraint_violation

    @property
    def solve_time(self) -> float:
        """Wall time spent inside the NLP solver, summed over mesh iterations."""
        return sum(snapshot.solve_time for snapshot in self._mesh_history)

    @property
    def node_counts(self) -> dict[PhaseID, int]:
        return dict(self._final.node_counts)

    @property
    def collocation_method(self) -> str:
        return self._final.collocation_method

    @property
    def mesh_history(self) -> tuple[MeshIterationSnapshot, ...]:
        return self._mesh_history

    @property
    def phase_ids(self) -> list[PhaseID]:
        return sorted(self._final.trajectories)

    def _trajectory(self, phase_id: PhaseID) -> PhaseTrajectory:
        if phase_id not in self._final.trajectories:
            raise ConfigurationError(
                f"Phase {phase_id} does not exist; solution has phases {self.phase_ids}",
                f"solution of '{self._problem_name}'",
            )
        return self._final.trajectories[phase_id]

    def get_states_in_phase(self, phase_id: PhaseID) -> FloatMatrix:
        """States at the nodes, shape ``(nstates, N)``."""
        return np.array(self._trajectory(phase_id).states)

    def get_controls_in_phase(self, phase_id: PhaseID) -> FloatMatrix:
        """Controls at the nodes, shape ``(ncontrols, N)``."""
        return np.array(self._trajectory(phase_id).controls)

    def get_time_in_phase(self, phase_id: PhaseID) -> FloatMatrix:
        """Node times, shape ``(1, N)``."""
        return np.array(self._trajectory(phase_id).time).reshape(1, -1)

    def get_parameters_in_phase(self, phase_id: PhaseID) -> FloatArray:
        return np.array(self._trajectory(phase_id).parameters)

    def get_integrals_in_phase(self, phase_id: PhaseID) -> FloatArray:
        """Values of the integral unknowns requested through ``workspace.integrate``."""
        return np.array(self._trajectory(phase_id).integrals)

    def get_events_in_phase(self, phase_id: PhaseID) -> FloatArray:
        return np.array(self._trajectory(phase_id).events)

    def get_dynamics_defects_in_phase(self, phase_id: PhaseID) -> FloatMatrix:
        """Collocation defect residuals, shape ``(nstates, K)``."""
        return np.array(self._trajectory(phase_id).defects)

    def get_path_in_phase(self, phase_id: PhaseID) -> FloatMatrix:
        """Path constraint values at the nodes, shape ``(npath, N)``."""
        return np.array(self._trajectory(phase_id).path)

    def get_phase_horizon(self, phase_id: PhaseID) -> tuple[float, float]:
        trajectory = self._trajectory(phase_id)
        return trajectory.t0, trajectory.tf

    def get_linkages(self) -> FloatArray:
        return np.array(self._final.linkages)

    def to_guess(self, problem: Problem) -> None:
        """
        Copy the final trajectories into the phase guesses of ``problem``.

        Used to warm start a later solve, typically on a finer node count.

        Raises:
            ConfigurationError: If ``problem`` has phases this solution does not
        """
        for phase in problem.phases:
            trajectory = self._trajectory(phase.phase_id)
            if trajectory.states.shape[0] != phase.nstates:
                raise ConfigurationError(
                    f"Phase {phase.phase_id} has {phase.nstates} states, "
                    f"solution has {trajectory.states.shape[0]}",
                    "to_guess",
                )
            phase.guess.time = trajectory.time
            phase.guess.states = trajectory.states
            phase.guess.controls = trajectory.controls
            if phase.nparameters > 0:
                phase.guess.parameters = trajectory.parameters

        logger.debug("Solution of '%s' copied into problem guesses", self._problem_name)

    def summary(self) -> None:
        """Print the plain-text solution report."""
        from .summary import print_solution_summary

        print_solution_summary(self)

    def __repr__(self) -> str:
        return (
            f"Solution(problem={self._problem_name!r}, status={self.status.name}, "
            f"objective={self.objective:.6e}, error_flag={self.error_flag})"
        )
