"""
Initial guess storage for a single phase.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np

from ..exceptions import ConfigurationError
from ..pl_types import FloatArray, FloatMatrix


logger = logging.getLogger(__name__)


def _as_trajectory(values: Any, num_rows: int, name: str, context: str) -> FloatMatrix:
    array = np.asarray(values, dtype=np.float64)
    if array.ndim == 1:
        if num_rows != 1:
            raise ConfigurationError(
                f"{name} guess for {num_rows} variables must be 2D ({num_rows} x M), "
                f"got shape {array.shape}",
                context,
            )
        array = array.reshape(1, -1)

    if array.ndim != 2 or array.shape[0] != num_rows:
        raise ConfigurationError(
            f"{name} guess must have shape ({num_rows}, M), got {array.shape}", context
        )
    if array.shape[1] < 1:
        raise ConfigurationError(f"{name} guess must contain at least one sample", context)
    if not np.all(np.isfinite(array)):
        raise ConfigurationError(f"{name} guess contains NaN or Inf values", context)
    return array.copy()


class PhaseGuess:
    """
    Initial guess for one phase, sampled at any resolution.

    States and controls are ``(n, M)`` arrays whose columns correspond to the
    entries of ``time``. They are resampled onto the solver's node grid when
    the problem is transcribed, so ``M`` is independent of the node count.
    """

    def __init__(self, phase_id: int, nstates: int, ncontrols: int, nparameters: int) -> None:
        self._context = f"phase {phase_id} guess"
        self._nstates = nstates
        self._ncontrols = ncontrols
        self._nparameters = nparameters
        self._states: FloatMatrix | None = None
        self._controls: FloatMatrix | None = None
        self._time: FloatArray | None = None
        self._parameters: FloatArray | None = None

    @property
    def states(self) -> FloatMatrix | None:
        return None if self._states is None else self._states.copy()

    @states.setter
    def states(self, values: Any) -> None:
        self._states = None if values is None else _as_trajectory(
            values, self._nstates, "State", self._context
        )

    @property
    def controls(self) -> FloatMatrix | None:
        return None if self._controls is None else self._controls.copy()

    @controls.setter
    def controls(self, values: Any) -> None:
        if values is None or self._ncontrols == 0:
            self._controls = None
            return
        self._controls = _as_trajectory(values, self._ncontrols, "Control", self._context)

    @property
    def time(self) -> FloatArray | None:
        return None if self._time is None else self._time.copy()

    @time.setter
    def time(self, values: Any) -> None:
        if values is None:
            self._time = None
            return

        array = np.asarray(values, dtype=np.float64).flatten()
        if array.size < 2:
            raise ConfigurationError("Time guess needs at least two samples", self._context)
        if not np.all(np.isfinite(array)):
            raise ConfigurationError("Time guess contains NaN or Inf values", self._context)
        if not np.all(np.diff(array) > 0):
            raise ConfigurationError("Time guess must be strictly increasing", self._context)
        self._time = array

    @property
    def parameters(self) -> FloatArray | None:
        return None if self._parameters is None else self._parameters.copy()

    @parameters.setter
    def parameters(self, values: Any) -> None:
        if values is None:
            self._parameters = None
            return

        array = np.atleast_1d(np.asarray(values, dtype=np.float64)).flatten()
        if array.size != self._nparameters:
            raise ConfigurationError(
                f"Parameter guess must have {self._nparameters} entries, got {array.size}",
                self._context,
            )
        if not np.all(np.isfinite(array)):
            raise ConfigurationError("Parameter guess contains NaN or Inf values", self._context)
        self._parameters = array

    def validate_sample_counts(self) -> None:
        """Check that the trajectory guesses share the sample count of ``time``."""
        if self._time is None:
            counts = {
                name: traj.shape[1]
                for name, traj in (("states", self._states), ("controls", self._controls))
                if traj is not None
            }
            if len(set(counts.values())) > 1:
                raise ConfigurationError(
                    f"State and control guesses have different sample counts {counts}",
                    self._context,
                )
            return

        num_samples = len(self._time)
        for name, traj in (("states", self._states), ("controls", self._controls)):
            if traj is not None and traj.shape[1] != num_samples:
                raise ConfigurationError(
                    f"{name} guess has {traj.shape[1]} samples but time guess has {num_samples}",
                    self._context,
                )
