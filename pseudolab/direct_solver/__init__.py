"""
Transcription engine: from a continuous problem description to a discrete NLP.
"""

from .core_solver import build_discrete_nlp
from .integrals_solver import EventWorkspace
from .linkages_solver import PhaseUnknowns, auto_link
from .types_solver import (
    ConstraintBlock,
    DiscreteNLP,
    MeshIterationSnapshot,
    PhaseTrajectory,
    VariableLayout,
)


__all__ = [
    "ConstraintBlock",
    "DiscreteNLP",
    "EventWorkspace",
    "MeshIterationSnapshot",
    "PhaseTrajectory",
    "PhaseUnknowns",
    "VariableLayout",
    "auto_link",
    "build_discrete_nlp",
]
