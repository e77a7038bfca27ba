# pseudolab/pl_types.py
"""
Core type definitions for the pseudolab multiphase optimal control framework.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, TypeAlias

import casadi as ca
import numpy as np
from numpy.typing import NDArray


if TYPE_CHECKING:
    from .direct_solver.integrals_solver import EventWorkspace
    from .direct_solver.linkages_solver import PhaseUnknowns


# --- NUMERICAL TYPES ---
FloatArray: TypeAlias = NDArray[np.float64]
FloatMatrix: TypeAlias = NDArray[np.float64]
NumericArrayLike: TypeAlias = (
    NDArray[np.floating[Any]]
    | NDArray[np.integer[Any]]
    | Sequence[float]
    | Sequence[int]
    | list[float]
    | list[int]
)

PhaseID: TypeAlias = int
"""Phase identifier (1-based) for multiphase problems."""

SymExpr: TypeAlias = ca.SX | ca.MX
"""Differentiable expression handed to or returned from callbacks."""

CallbackOutput: TypeAlias = ca.SX | float | int | Sequence[ca.SX | float | int] | NDArray[Any]
"""Anything a callback may return where a residual vector is expected."""


class NLPStatus(Enum):
    """Lifecycle states of one NLP solve."""

    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    INFEASIBLE = "infeasible"
    NUMERICAL_FAILURE = "numerical_failure"

    @property
    def is_terminal(self) -> bool:
        return self not in (NLPStatus.INITIALIZING, NLPStatus.ITERATING)


# --- USER CALLBACK PROTOCOLS ---
class EndpointCostFunction(Protocol):
    def __call__(
        self,
        initial_states: ca.SX,
        final_states: ca.SX,
        parameters: ca.SX,
        t0: ca.SX,
        tf: ca.SX,
        phase: PhaseID,
    ) -> ca.SX | float: ...


class IntegrandFunction(Protocol):
    """Shape shared by the Lagrange cost and by integral-constraint integrands."""

    def __call__(
        self,
        states: ca.SX,
        controls: ca.SX,
        parameters: ca.SX,
        time: ca.SX,
        phase: PhaseID,
    ) -> ca.SX | float: ...


class DaeFunction(Protocol):
    def __call__(
        self,
        states: ca.SX,
        controls: ca.SX,
        parameters: ca.SX,
        time: ca.SX,
        phase: PhaseID,
    ) -> tuple[CallbackOutput, CallbackOutput | None]: ...


class EventsFunction(Protocol):
    def __call__(
        self,
        initial_states: ca.SX,
        final_states: ca.SX,
        parameters: ca.SX,
        t0: ca.SX,
        tf: ca.SX,
        phase: PhaseID,
        workspace: EventWorkspace,
    ) -> CallbackOutput: ...


class LinkagesFunction(Protocol):
    def __call__(self, view: PhaseUnknowns) -> CallbackOutput: ...
