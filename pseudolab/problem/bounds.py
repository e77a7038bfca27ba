"""
Bound storage for phases and linkages.

Every bounded quantity is held as a lower/upper pair that is allocated once
its size is known. Assignments go through the pair so that an inverted bound
is reported the moment it is written, not when the problem is solved.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

import numpy as np

from ..exceptions import ConfigurationError
from ..pl_types import FloatArray


logger = logging.getLogger(__name__)


class BoundPair:
    """Lower and upper bound arrays of one named quantity."""

    def __init__(
        self,
        name: str,
        size: int,
        default_lower: float = -np.inf,
        default_upper: float = np.inf,
        context: str = "bounds",
    ) -> None:
        self.name = name
        self.context = context
        self.lower: FloatArray = np.full(size, default_lower, dtype=np.float64)
        self.upper: FloatArray = np.full(size, default_upper, dtype=np.float64)

    @property
    def size(self) -> int:
        return len(self.lower)

    def side(self, side: str) -> FloatArray:
        return self.lower if side == "lower" else self.upper

    def assign(self, side: str, key: Any, value: Any) -> None:
        target = self.side(side)
        candidate = target.copy()
        try:
            candidate[key] = value
        except (IndexError, ValueError) as e:
            raise ConfigurationError(
                f"Cannot set {side} {self.name} bound [{key}] = {value!r}: {e}", self.context
            ) from e
        self._check(side, candidate)
        target[:] = candidate

    def assign_all(self, side: str, values: Any) -> None:
        candidate = np.atleast_1d(np.asarray(values, dtype=np.float64)).flatten()
        if candidate.size != self.size:
            raise ConfigurationError(
                f"{side.capitalize()} {self.name} bounds must have {self.size} entries, "
                f"got {candidate.size}",
                self.context,
            )
        self._check(side, candidate)
        self.side(side)[:] = candidate

    def _check(self, side: str, candidate: FloatArray) -> None:
        if np.any(np.isnan(candidate)):
            raise ConfigurationError(f"{self.name} bounds cannot be NaN", self.context)

        lower = candidate if side == "lower" else self.lower
        upper = candidate if side == "upper" else self.upper
        inverted = np.flatnonzero(lower > upper)
        if inverted.size > 0:
            i = int(inverted[0])
            raise ConfigurationError(
                f"Lower {self.name} bound [{i}] ({lower[i]}) > upper bound ({upper[i]})",
                self.context,
            )


class BoundVector:
    """Fixed-size, validating view over one side of a ``BoundPair``."""

    def __init__(self, pair: BoundPair, side: str) -> None:
        self._pair = pair
        self._side = side

    def __getitem__(self, key: Any) -> Any:
        return self._pair.side(self._side)[key]

    def __setitem__(self, key: Any, value: Any) -> None:
        self._pair.assign(self._side, key, value)

    def __len__(self) -> int:
        return self._pair.size

    def __iter__(self) -> Iterator[float]:
        return iter(self._pair.side(self._side).tolist())

    def __array__(self, dtype: Any = None, copy: Any = None) -> FloatArray:
        values = self._pair.side(self._side).copy()
        return values if dtype is None else values.astype(dtype)

    def __repr__(self) -> str:
        return f"BoundVector({self._side} {self._pair.name}={self._pair.side(self._side)!r})"


class BoundSet:
    """One side (lower or upper) of a group of bound pairs."""

    def __init__(self, pairs: dict[str, BoundPair], side: str) -> None:
        self._pairs = pairs
        self._side = side

    def _vector(self, name: str) -> BoundVector:
        return BoundVector(self._pairs[name], self._side)

    def _assign(self, name: str, values: Any) -> None:
        self._pairs[name].assign_all(self._side, values)

    def _scalar(self, name: str) -> float:
        return float(self._pairs[name].side(self._side)[0])

    def _assign_scalar(self, name: str, value: float) -> None:
        self._pairs[name].assign(self._side, 0, value)


def _vector_property(name: str, doc: str) -> property:
    return property(
        lambda self: self._vector(name),
        lambda self, values: self._assign(name, values),
        doc=doc,
    )


def _scalar_property(name: str, doc: str) -> property:
    return property(
        lambda self: self._scalar(name),
        lambda self, value: self._assign_scalar(name, value),
        doc=doc,
    )


class PhaseBoundSet(BoundSet):
    states = _vector_property("states", "State bounds, applied at every node.")
    controls = _vector_property("controls", "Control bounds, applied at every node.")
    parameters = _vector_property("parameters", "Static parameter bounds.")
    events = _vector_property("events", "Event constraint bounds.")
    path = _vector_property("path", "Path constraint bounds, applied at every node.")
    start_time = _scalar_property("start_time", "Phase start time bound.")
    end_time = _scalar_property("end_time", "Phase end time bound.")


class LinkageBoundSet(BoundSet):
    linkage = _vector_property("linkage", "Linkage constraint bounds.")


class PhaseBounds:
    """Bound storage for one phase, allocated by the phase's level-2 setup."""

    def __init__(
        self,
        phase_id: int,
        nstates: int,
        ncontrols: int,
        nparameters: int,
        nevents: int,
        npath: int,
    ) -> None:
        context = f"phase {phase_id} bounds"
        self._pairs: dict[str, BoundPair] = {
            name: BoundPair(name, size, context=context)
            for name, size in (
                ("states", nstates),
                ("controls", ncontrols),
                ("parameters", nparameters),
                ("events", nevents),
                ("path", npath),
                ("start_time", 1),
                ("end_time", 1),
            )
        }
        self.lower = PhaseBoundSet(self._pairs, "lower")
        self.upper = PhaseBoundSet(self._pairs, "upper")

    def pair(self, name: str) -> tuple[FloatArray, FloatArray]:
        """Return copies of the (lower, upper) arrays for ``name``."""
        bound_pair = self._pairs[name]
        return bound_pair.lower.copy(), bound_pair.upper.copy()

    def time_is_fixed(self) -> bool:
        """True when both start and end time have equal lower and upper bounds."""
        t0_lower, t0_upper = self.pair("start_time")
        tf_lower, tf_upper = self.pair("end_time")
        return bool(t0_lower[0] == t0_upper[0] and tf_lower[0] == tf_upper[0])


class LinkageBounds:
    """Linkage bound storage, allocated by the problem's level-1 setup."""

    def __init__(self, nlinkages: int) -> None:
        # Linkages default to equality constraints (residual == 0)
        self._pairs: dict[str, BoundPair] = {
            "linkage": BoundPair(
                "linkage", nlinkages, default_lower=0.0, default_upper=0.0, context="linkages"
            )
        }
        self.lower = LinkageBoundSet(self._pairs, "lower")
        self.upper = LinkageBoundSet(self._pairs, "upper")

    def pair(self) -> tuple[FloatArray, FloatArray]:
        bound_pair = self._pairs["linkage"]
        return bound_pair.lower.copy(), bound_pair.upper.copy()
