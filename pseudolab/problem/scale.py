"""
User-supplied scale factors, consumed when ``Algorithm.scaling == "manual"``.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from ..exceptions import ConfigurationError
from ..pl_types import FloatArray


def _positive_vector(values: Any, size: int, name: str, context: str) -> FloatArray:
    array = np.atleast_1d(np.asarray(values, dtype=np.float64)).flatten()
    if array.size != size:
        raise ConfigurationError(
            f"{name} scale factors must have {size} entries, got {array.size}", context
        )
    if not np.all(np.isfinite(array)) or np.any(array <= 0.0):
        raise ConfigurationError(f"{name} scale factors must be finite and positive", context)
    return array


def _positive_scalar(value: float, name: str, context: str) -> float:
    return float(_positive_vector(value, 1, name, context)[0])


class ScaleStore:
    """Named vectors of positive scale factors with validating setters."""

    def __init__(self, sizes: dict[str, int], context: str) -> None:
        self._context = context
        self._sizes = sizes
        self._values = {name: np.ones(size, dtype=np.float64) for name, size in sizes.items()}

    def _get(self, name: str) -> FloatArray:
        return self._values[name].copy()

    def _set(self, name: str, values: Any) -> None:
        self._values[name] = _positive_vector(values, self._sizes[name], name, self._context)


def _scale_property(name: str) -> property:
    return property(
        lambda self: self._get(name),
        lambda self, values: self._set(name, values),
        doc=f"Manual scale factors for {name}.",
    )


class PhaseScale(ScaleStore):
    states = _scale_property("states")
    controls = _scale_property("controls")
    parameters = _scale_property("parameters")
    events = _scale_property("events")
    path = _scale_property("path")
    defects = _scale_property("defects")

    def __init__(
        self,
        phase_id: int,
        nstates: int,
        ncontrols: int,
        nparameters: int,
        nevents: int,
        npath: int,
    ) -> None:
        super().__init__(
            {
                "states": nstates,
                "controls": ncontrols,
                "parameters": nparameters,
                "events": nevents,
                "path": npath,
                "defects": nstates,
            },
            f"phase {phase_id} scale",
        )
        self._time = 1.0

    @property
    def time(self) -> float:
        return self._time

    @time.setter
    def time(self, value: float) -> None:
        self._time = _positive_scalar(value, "time", self._context)


class ProblemScale(ScaleStore):
    linkage = _scale_property("linkage")

    def __init__(self, nlinkages: int) -> None:
        super().__init__({"linkage": nlinkages}, "problem scale")
        self._objective = 1.0

    @property
    def objective(self) -> float:
        return self._objective

    @objective.setter
    def objective(self, value: float) -> None:
        self._objective = _positive_scalar(value, "objective", self._context)
