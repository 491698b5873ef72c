"""Population genetics for QTL mapping.

- distance: Haldane mapping, PopulationType and the TransitionModel base
- backcross / recombinant_inbred / advanced_intercross: population chains
- models: population type to transition model registry
- qmake: flanking-marker Q-matrices and the joint cp-matrix
"""

from qtlemm.genetics.distance import PopulationType, TransitionModel, haldane
from qtlemm.genetics.models import get_transition_model
from qtlemm.genetics.qmake import (
    QMatrixResult,
    find_flanking_markers,
    genotype_classes,
    q_make,
)

__all__ = [
    "PopulationType",
    "QMatrixResult",
    "TransitionModel",
    "find_flanking_markers",
    "genotype_classes",
    "get_transition_model",
    "haldane",
    "q_make",
]
