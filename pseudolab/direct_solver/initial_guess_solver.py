# pseudolab/direct_solver/initial_guess_solver.py
"""
Initial point of the flat unknown vector.

The first mesh iteration resamples the user's phase guesses onto the node
grid; later iterations resample the previous iteration's snapshot instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from ..collocation import CollocationComponents, interpolation_matrix, linear_resample
from ..exceptions import InterpolationError
from ..input_validation import validate_array_numerical_integrity
from ..pl_types import FloatArray, FloatMatrix, PhaseID
from ..problem.core_problem import Phase, Problem
from .integrals_solver import evaluate_integral_guess
from .types_solver import MeshIterationSnapshot, PhaseFunctions, VariableLayout
from .variables_solver import node_times


logger = logging.getLogger(__name__)


@dataclass
class _PhaseGuessValues:
    """Numeric guess of one phase on its node grid."""

    states: FloatMatrix
    controls: FloatMatrix
    parameters: FloatArray
    t0: float
    tf: float
    integrals: FloatArray | None = None


def _bound_midpoints(lower: FloatArray, upper: FloatArray) -> FloatArray:
    # Midpoint where both bounds are finite, otherwise 0.0 pulled inside the bounds
    midpoints = np.where(
        np.isfinite(lower) & np.isfinite(upper), (lower + upper) / 2.0, 0.0
    )
    return np.clip(midpoints, lower, upper)


def _scalar_midpoint(lower: float, upper: float, default: float) -> float:
    if np.isfinite(lower) and np.isfinite(upper):
        return (lower + upper) / 2.0
    if np.isfinite(lower):
        return max(lower, default)
    if np.isfinite(upper):
        return min(upper, default)
    return default


def _guess_horizon(phase: Phase) -> tuple[float, float]:
    time = phase.guess.time
    if time is not None:
        return float(time[0]), float(time[-1])

    t0_lower, t0_upper = phase.bounds.pair("start_time")
    tf_lower, tf_upper = phase.bounds.pair("end_time")
    t0 = _scalar_midpoint(float(t0_lower[0]), float(t0_upper[0]), 0.0)
    tf = _scalar_midpoint(float(tf_lower[0]), float(tf_upper[0]), t0 + 1.0)
    if tf <= t0:
        tf = t0 + 1.0
    return t0, tf


def _resample_guess(
    values: FloatMatrix | None,
    sample_times: FloatArray | None,
    horizon: tuple[float, float],
    targets: FloatArray,
    fallback: FloatArray,
) -> FloatMatrix:
    if values is None:
        return np.repeat(fallback.reshape(-1, 1), len(targets), axis=1)

    if sample_times is None:
        # Without a time guess the samples are spread evenly over the horizon
        sample_times = np.linspace(horizon[0], horizon[1], values.shape[1])
    return linear_resample(sample_times, values, targets)


def guess_from_problem(phase: Phase, components: CollocationComponents) -> _PhaseGuessValues:
    """Resample the user's guess of ``phase`` onto the node grid of ``components``."""
    guess = phase.guess
    t0, tf = _guess_horizon(phase)
    targets = node_times(components, t0, tf)

    states = _resample_guess(
        guess.states, guess.time, (t0, tf), targets, _bound_midpoints(*phase.bounds.pair("states"))
    )
    controls = _resample_guess(
        guess.controls,
        guess.time,
        (t0, tf),
        targets,
        _bound_midpoints(*phase.bounds.pair("controls")),
    )
    parameters = (
        guess.parameters
        if guess.parameters is not None
        else _bound_midpoints(*phase.bounds.pair("parameters"))
    )
    return _PhaseGuessValues(states, controls, parameters, t0, tf)


def guess_from_snapshot(
    snapshot: MeshIterationSnapshot, phase_id: PhaseID, components: CollocationComponents
) -> _PhaseGuessValues:
    """Resample the previous mesh iteration's trajectory onto a new node grid."""
    if phase_id not in snapshot.trajectories:
        raise InterpolationError(
            f"Previous mesh iteration has no trajectory for phase {phase_id}",
            f"mesh iteration {snapshot.iteration + 1}",
        )
    previous = snapshot.trajectories[phase_id]
    source = snapshot.components[phase_id]
    matrix = interpolation_matrix(source, components.nodes)

    return _PhaseGuessValues(
        states=previous.states @ matrix.T,
        controls=previous.controls @ matrix.T,
        parameters=np.array(previous.parameters),
        t0=previous.t0,
        tf=previous.tf,
        integrals=np.array(previous.integrals),
    )


def build_initial_guess(
    problem: Problem,
    layout: VariableLayout,
    components: dict[PhaseID, CollocationComponents],
    functions: dict[PhaseID, PhaseFunctions],
    lbw: FloatArray,
    ubw: FloatArray,
    snapshot: MeshIterationSnapshot | None = None,
) -> FloatArray:
    """Flat initial point ``w0`` for one mesh iteration."""
    w0 = np.zeros(layout.size, dtype=np.float64)

    for phase in problem.phases:
        phase_id = phase.phase_id
        phase_layout = layout.phase(phase_id)
        phase_components = components[phase_id]

        if snapshot is None:
            values = guess_from_problem(phase, phase_components)
        else:
            values = guess_from_snapshot(snapshot, phase_id, phase_components)

        w0[phase_layout.states] = values.states.flatten(order="F")
        w0[phase_layout.controls] = values.controls.flatten(order="F")
        w0[phase_layout.parameters] = values.parameters
        w0[phase_layout.t0] = values.t0
        w0[phase_layout.tf] = values.tf

        if phase_layout.num_integrals > 0:
            integrals = values.integrals
            if integrals is None or integrals.size != phase_layout.num_integrals:
                integrals = evaluate_integral_guess(
                    functions[phase_id].integrands,
                    values.states,
                    values.controls,
                    values.parameters,
                    node_times(phase_components, values.t0, values.tf),
                    phase_components,
                    phase_id,
                )
            w0[phase_layout.integrals] = integrals

        logger.debug(
            "Phase %d initial guess from %s: horizon=[%.4g, %.4g]",
            phase_id,
            "problem guess" if snapshot is None else f"mesh iteration {snapshot.iteration}",
            values.t0,
            values.tf,
        )

    # Fixed unknowns must start exactly on their value
    fixed = lbw == ubw
    w0[fixed] = lbw[fixed]
    validate_array_numerical_integrity(w0, "Initial guess", "initial guess assembly")
    return w0
