"""
Algorithmic differentiation of user callbacks.

Callbacks are traced once with CasADi ``SX`` symbols, which act as the
differentiable value type: every arithmetic operation a callback performs on
them is recorded in an expression graph, and exact first and second
derivatives are obtained from that graph by forward/reverse propagation.

A callback that turns one of these values into a plain number (``float(x)``,
``math.sqrt(x)``, branching on ``x > 0``) cannot be recorded. Tracing detects
this and raises ``DifferentiationError`` instead of silently producing
derivatives that are zero.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from typing import Any

import casadi as ca
import numpy as np
from scipy import sparse

from .exceptions import (
    ConfigurationError,
    DifferentiationError,
    NumericalFailure,
    PseudoLabBaseError,
)
from .pl_types import FloatArray
from .utils.constants import FINITE_DIFFERENCE_STEP


logger = logging.getLogger(__name__)


def _is_plain_number(value: Any) -> bool:
    return isinstance(value, int | float | np.integer | np.floating) and not isinstance(value, bool)


def _as_sx_column(value: Any, name: str) -> ca.SX:
    if value is None:
        column = ca.SX(0, 1)
    elif isinstance(value, ca.SX):
        column = ca.vec(value)
    elif isinstance(value, ca.DM):
        column = ca.vec(ca.SX(value))
    elif _is_plain_number(value):
        column = ca.SX(float(value))
    elif isinstance(value, ca.MX):
        raise DifferentiationError(
            f"Callback '{name}' returned an MX expression; callbacks must compute with the "
            "SX arguments they receive",
        )
    elif isinstance(value, np.ndarray) and value.dtype != object:
        if value.dtype.kind not in "iuf":
            raise DifferentiationError(
                f"Callback '{name}' returned an array of dtype {value.dtype}"
            )
        column = ca.SX(ca.DM(np.asarray(value, dtype=np.float64).reshape(-1, 1)))
    elif isinstance(value, list | tuple | np.ndarray):
        items = value.flatten().tolist() if isinstance(value, np.ndarray) else list(value)
        entries = [_as_sx_column(item, name) for item in items]
        column = ca.vertcat(*entries) if entries else ca.SX(0, 1)
    else:
        raise DifferentiationError(
            f"Callback '{name}' returned {type(value).__name__}, expected SX expressions or numbers"
        )
    return column


def non_finite_constants(expression: ca.SX) -> list[float]:
    """Non-finite constants embedded in the expression graph of ``expression``."""
    symbols = ca.symvar(expression)
    inputs = [ca.vertcat(*symbols)] if symbols else []
    graph = ca.Function("constant_scan", inputs, [expression])
    constants = []
    for k in range(graph.n_instructions()):
        if graph.instruction_id(k) == ca.OP_CONST:
            value = graph.instruction_constant(k)
            if not np.isfinite(value):
                constants.append(value)
    return constants


def to_sx_column(value: Any, name: str, expected_size: int | None = None) -> ca.SX:
    """
    Convert a callback output into an ``SX`` column vector.

    Accepts ``SX`` expressions, plain numbers, numeric arrays and sequences
    mixing both. Anything else (``MX`` graphs, strings, objects) cannot carry
    sensitivities through this engine and is rejected.

    Depending on the CasADi release, ``float(x)`` on a symbolic value either
    raises or returns NaN. The NaN case leaves a non-finite constant in the
    traced graph, so such constants are rejected as well.
    """
    column = _as_sx_column(value, name)

    if expected_size is not None and column.numel() != expected_size:
        raise ConfigurationError(
            f"Callback '{name}' returned {column.numel()} values, expected {expected_size}"
        )
    if non_finite_constants(column):
        raise DifferentiationError(
            f"Callback '{name}' produced a non-finite constant while being traced. "
            "A differentiable argument was most likely converted to a plain number with "
            "float(), math.* or numpy scalar types; use casadi functions such as ca.sqrt instead",
        )
    return column


def trace_callback(name: str, callback: Callable[..., Any], *args: Any) -> Any:
    """
    Call ``callback`` with differentiable arguments and return its raw output.

    Failures raised while the callback runs are reported as
    ``DifferentiationError`` with the original exception chained; the most
    common cause is converting a differentiable argument to a plain number.
    """
    try:
        return callback(*args)
    except PseudoLabBaseError:
        raise
    except Exception as e:
        raise DifferentiationError(
            f"Callback '{name}' failed while being traced with differentiable arguments: {e}. "
            "Callbacks must compute with the values they receive (use casadi functions such as "
            "ca.sqrt, ca.if_else); converting them to plain numbers with float(), math.* or "
            "Python comparisons drops their sensitivities",
        ) from e


def _dm_to_csc(matrix: ca.DM) -> sparse.csc_matrix:
    rows, cols = matrix.sparsity().get_triplet()
    data = np.asarray(matrix.nonzeros(), dtype=np.float64)
    return sparse.csc_matrix((data, (rows, cols)), shape=matrix.shape)


def _sparsity_to_csc(pattern: ca.Sparsity) -> sparse.csc_matrix:
    rows, cols = pattern.get_triplet()
    data = np.ones(len(rows), dtype=bool)
    return sparse.csc_matrix((data, (rows, cols)), shape=(pattern.size1(), pattern.size2()))


def _to_dm_inputs(args: Sequence[Any], sizes: Sequence[int], name: str) -> list[ca.DM]:
    if len(args) != len(sizes):
        raise ConfigurationError(
            f"Function '{name}' takes {len(sizes)} inputs, got {len(args)}"
        )
    inputs: list[ca.DM] = []
    for i, (arg, size) in enumerate(zip(args, sizes, strict=True)):
        array = np.atleast_1d(np.asarray(arg, dtype=np.float64)).flatten()
        if array.size != size:
            raise ConfigurationError(
                f"Input {i} of function '{name}' must have {size} entries, got {array.size}"
            )
        inputs.append(ca.DM(array.reshape(-1, 1)))
    return inputs


class DifferentiableFunction:
    """
    Value, Jacobian and Hessian evaluation of a traced expression graph.

    Derivatives are taken with respect to all inputs stacked into one
    vector in input order. Jacobian sparsity is computed once per output and
    cached; derivative functions are generated lazily on first use.
    """

    def __init__(
        self,
        name: str,
        inputs: Sequence[ca.SX],
        outputs: Sequence[ca.SX],
        input_names: Sequence[str] | None = None,
        output_names: Sequence[str] | None = None,
    ) -> None:
        self.name = name
        self._inputs = [ca.vec(i) for i in inputs]
        self._outputs = [ca.vec(o) for o in outputs]
        self._stacked_inputs = ca.vertcat(*self._inputs) if self._inputs else ca.SX(0, 1)
        self.input_sizes = [int(i.numel()) for i in self._inputs]
        self.output_sizes = [int(o.numel()) for o in self._outputs]

        names_in = list(input_names) if input_names else [f"i{k}" for k in range(len(inputs))]
        names_out = list(output_names) if output_names else [f"o{k}" for k in range(len(outputs))]
        self.function = ca.Function(name, self._inputs, self._outputs, names_in, names_out)

        self._lock = threading.Lock()
        self._jacobian_functions: dict[int, ca.Function] = {}
        self._hessian_functions: dict[int, ca.Function] = {}
        self._sparsity_cache: dict[int, sparse.csc_matrix] = {}

    @property
    def num_inputs(self) -> int:
        return int(sum(self.input_sizes))

    def _check_finite(self, values: FloatArray, what: str) -> FloatArray:
        if not np.all(np.isfinite(values)):
            raise NumericalFailure(
                f"{what} of '{self.name}' contains NaN or Inf values",
                "derivative evaluation outside the NLP iteration",
            )
        return values

    def _split(self, point: Any) -> list[FloatArray]:
        flat = np.atleast_1d(np.asarray(point, dtype=np.float64)).flatten()
        if flat.size != self.num_inputs:
            raise ConfigurationError(
                f"Point for '{self.name}' must have {self.num_inputs} entries, got {flat.size}"
            )
        offsets = np.cumsum([0, *self.input_sizes])
        return [flat[offsets[k] : offsets[k + 1]] for k in range(len(self.input_sizes))]

    def evaluate(self, *args: Any) -> list[FloatArray]:
        """Numeric outputs at the given inputs, one flat array per output."""
        results = self.function.call(_to_dm_inputs(args, self.input_sizes, self.name))
        return [
            self._check_finite(np.asarray(r.full(), dtype=np.float64).flatten(), "Value")
            for r in results
        ]

    def _jacobian_function(self, output: int) -> ca.Function:
        with self._lock:
            if output not in self._jacobian_functions:
                jac = ca.jacobian(self._outputs[output], self._stacked_inputs)
                self._jacobian_functions[output] = ca.Function(
                    f"{self.name}_jac_{output}", self._inputs, [jac]
                )
            return self._jacobian_functions[output]

    def jacobian(self, *args: Any, output: int = 0) -> sparse.csc_matrix:
        """Exact Jacobian of ``output`` with respect to all stacked inputs."""
        (jac,) = self._jacobian_function(output).call(
            _to_dm_inputs(args, self.input_sizes, self.name)
        )
        matrix = _dm_to_csc(jac)
        self._check_finite(matrix.data, "Jacobian")
        return matrix

    def jacobian_sparsity(self, output: int = 0) -> sparse.csc_matrix:
        """Structural nonzero pattern of the Jacobian, computed once and cached."""
        with self._lock:
            if output not in self._sparsity_cache:
                pattern = ca.jacobian(self._outputs[output], self._stacked_inputs).sparsity()
                self._sparsity_cache[output] = _sparsity_to_csc(pattern)
                logger.debug(
                    "Jacobian sparsity of '%s' output %d: %s with %d nonzeros",
                    self.name,
                    output,
                    self._sparsity_cache[output].shape,
                    self._sparsity_cache[output].nnz,
                )
            return self._sparsity_cache[output]

    def hessian(
        self, *args: Any, output: int = 0, weights: Any = None
    ) -> sparse.csc_matrix:
        """Hessian of ``weights @ output`` (defaults to unit weights)."""
        size = self.output_sizes[output]
        multipliers = (
            np.ones(size) if weights is None else np.asarray(weights, dtype=np.float64).flatten()
        )
        if multipliers.size != size:
            raise ConfigurationError(
                f"Hessian weights for '{self.name}' need {size} entries, got {multipliers.size}"
            )

        with self._lock:
            if output not in self._hessian_functions:
                lam = ca.SX.sym("lam", size)
                hess, _ = ca.hessian(ca.dot(lam, self._outputs[output]), self._stacked_inputs)
                self._hessian_functions[output] = ca.Function(
                    f"{self.name}_hess_{output}", [*self._inputs, lam], [hess]
                )
            hessian_function = self._hessian_functions[output]

        inputs = _to_dm_inputs(args, self.input_sizes, self.name)
        (hess,) = hessian_function.call([*inputs, ca.DM(multipliers)])
        matrix = _dm_to_csc(hess)
        self._check_finite(matrix.data, "Hessian")
        return matrix

    def finite_difference_jacobian(
        self, *args: Any, output: int = 0, step: float = FINITE_DIFFERENCE_STEP
    ) -> sparse.csc_matrix:
        """Central-difference Jacobian, used when derivatives are approximated."""
        inputs = _to_dm_inputs(args, self.input_sizes, self.name)
        point = np.concatenate([np.zeros(0), *(np.asarray(i.full()).flatten() for i in inputs)])
        columns = []
        for j in range(point.size):
            h = step * max(1.0, abs(point[j]))
            forward, backward = point.copy(), point.copy()
            forward[j] += h
            backward[j] -= h
            f_plus = self.evaluate(*self._split(forward))[output]
            f_minus = self.evaluate(*self._split(backward))[output]
            columns.append((f_plus - f_minus) / (2.0 * h))

        dense = (
            np.column_stack(columns)
            if columns
            else np.zeros((self.output_sizes[output], 0), dtype=np.float64)
        )
        return sparse.csc_matrix(dense)

    def __repr__(self) -> str:
        return (
            f"DifferentiableFunction({self.name!r}, inputs={self.input_sizes}, "
            f"outputs={self.output_sizes})"
        )


def differentiate_callback(
    name: str,
    callback: Callable[..., Any],
    input_sizes: Sequence[int],
    output_size: int | None = None,
    extra_args: Sequence[Any] = (),
) -> DifferentiableFunction:
    """
    Trace a single-output callback into a ``DifferentiableFunction``.

    ``extra_args`` are passed after the symbolic inputs unchanged (for
    example the phase id).
    """
    symbols = [ca.SX.sym(f"{name}_in{k}", size) for k, size in enumerate(input_sizes)]
    raw = trace_callback(name, callback, *symbols, *extra_args)
    output = to_sx_column(raw, name, output_size)
    return DifferentiableFunction(name, symbols, [output])
