# pseudolab/direct_solver/integrals_solver.py
"""
Integral unknowns requested from inside event functions.

An event function receives an ``EventWorkspace``; each call to
``workspace.integrate(integrand)`` returns a differentiable symbol standing
for the integral of ``integrand`` over the phase. The engine turns every
distinct integrand into one extra unknown ``q`` plus an equality constraint
tying ``q`` to the quadrature of the integrand on the phase node grid, so the
integral can appear in event residuals like any other unknown. Phases whose
events never call ``integrate`` get no integral unknowns at all.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import casadi as ca
import numpy as np

from ..autodiff import to_sx_column, trace_callback
from ..collocation import CollocationComponents
from ..exceptions import ConfigurationError, NumericalFailure
from ..pl_types import FloatArray, IntegrandFunction, PhaseID


logger = logging.getLogger(__name__)


class EventWorkspace:
    """
    Records the integrands an event function asks to integrate.

    Repeated requests for the same integrand object return the same
    symbol, so each distinct integrand costs one unknown.
    """

    def __init__(self, phase_id: PhaseID) -> None:
        self.phase_id = phase_id
        self._integrands: list[IntegrandFunction] = []
        self._symbols: list[ca.SX] = []

    def integrate(self, integrand: IntegrandFunction) -> ca.SX:
        """Differentiable value of the integral of ``integrand`` over this phase."""
        if not callable(integrand):
            raise ConfigurationError(
                f"workspace.integrate() needs a callable integrand, got {type(integrand)}",
                f"phase {self.phase_id} events",
            )
        for existing, symbol in zip(self._integrands, self._symbols, strict=True):
            if existing is integrand:
                return symbol

        symbol = ca.SX.sym(f"q{self.phase_id}_{len(self._symbols)}")
        self._integrands.append(integrand)
        self._symbols.append(symbol)
        logger.debug(
            "Phase %d: integral unknown %d allocated for integrand %s",
            self.phase_id,
            len(self._symbols) - 1,
            getattr(integrand, "__name__", repr(integrand)),
        )
        return symbol

    @property
    def integrands(self) -> list[IntegrandFunction]:
        return list(self._integrands)

    @property
    def symbols(self) -> ca.SX:
        return ca.vertcat(*self._symbols) if self._symbols else ca.SX(0, 1)

    @property
    def num_integrals(self) -> int:
        return len(self._symbols)


def trace_integrand(
    integrand: Callable[..., Any],
    phase_id: PhaseID,
    index: int,
    node_symbols: tuple[ca.SX, ca.SX, ca.SX, ca.SX],
) -> ca.Function:
    """Trace one integrand into a function of ``(x, u, p, t)``."""
    name = f"integrand_p{phase_id}_{index}"
    raw = trace_callback(name, integrand, *node_symbols, phase_id)
    value = to_sx_column(raw, name, expected_size=1)
    return ca.Function(name, list(node_symbols), [value], ["x", "u", "p", "t"], ["g"])


def trace_phase_events(
    events: Callable[..., Any],
    phase_id: PhaseID,
    nevents: int,
    endpoint_symbols: tuple[ca.SX, ca.SX, ca.SX, ca.SX, ca.SX],
    node_symbols: tuple[ca.SX, ca.SX, ca.SX, ca.SX],
) -> tuple[ca.Function, list[ca.Function]]:
    """
    Trace the event function of one phase.

    Returns the event function of ``(x0, xf, p, t0, tf, q)`` and the traced
    integrands in unknown order.
    """
    workspace = EventWorkspace(phase_id)
    raw = trace_callback("events", events, *endpoint_symbols, phase_id, workspace)
    residuals = to_sx_column(raw, f"events (phase {phase_id})", expected_size=nevents)

    integrands = workspace.integrands
    integrand_functions = [
        trace_integrand(integrand, phase_id, j, node_symbols)
        for j, integrand in enumerate(integrands)
    ]
    events_function = ca.Function(
        f"events_p{phase_id}",
        [*endpoint_symbols, workspace.symbols],
        [residuals],
        ["x0", "xf", "p", "t0", "tf", "q"],
        ["e"],
    )
    return events_function, integrand_functions


def quadrature(
    values_at_nodes: ca.SX | ca.DM,
    components: CollocationComponents,
    t0: ca.SX | float,
    tf: ca.SX | float,
) -> ca.SX | ca.DM:
    """``(tf - t0) / 2 * sum_k w_k g_k`` for a ``1 x N`` row of integrand values."""
    weights = ca.DM(components.quadrature_weights.reshape(-1, 1))
    return (tf - t0) / 2.0 * ca.mtimes(values_at_nodes, weights)


def integral_residuals(
    integrand_maps: list[ca.Function],
    integrals: ca.SX,
    node_arguments: tuple[ca.SX, ca.SX, ca.SX, ca.SX],
    components: CollocationComponents,
    t0: ca.SX,
    tf: ca.SX,
) -> ca.SX:
    """Residuals ``q_j - quadrature(g_j)``, one row per integral unknown."""
    rows = []
    for j, integrand_map in enumerate(integrand_maps):
        values = integrand_map(*node_arguments)
        rows.append(integrals[j] - quadrature(values, components, t0, tf))
    return ca.vertcat(*rows) if rows else ca.SX(0, 1)


def evaluate_integral_guess(
    integrand_functions: list[ca.Function],
    states: FloatArray,
    controls: FloatArray,
    parameters: FloatArray,
    time: FloatArray,
    components: CollocationComponents,
    phase_id: PhaseID,
) -> FloatArray:
    """Quadrature of every integrand over a numeric trajectory guess."""
    if not integrand_functions:
        return np.array([], dtype=np.float64)

    num_nodes = components.num_nodes
    params = np.repeat(np.asarray(parameters, dtype=np.float64).reshape(-1, 1), num_nodes, axis=1)
    values = []
    for integrand in integrand_functions:
        mapped = integrand.map(num_nodes, "serial")
        row = mapped(states, controls, params, np.asarray(time).reshape(1, -1))
        values.append(float(quadrature(ca.DM(row), components, time[0], time[-1])))

    result = np.array(values, dtype=np.float64)
    if not np.all(np.isfinite(result)):
        raise NumericalFailure(
            "Integral guess contains NaN or Inf values; check the integrand domain at the "
            "initial guess",
            f"phase {phase_id} integrals",
        )
    return result
