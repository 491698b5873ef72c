"""EM solvers for multiple interval mapping.

- em_mim: complete genotyping model
- em_mim2: model selection for selective genotyping ("n", "f", "p", "t")
- mixture: population frequencies and mixing proportions
- truncated: truncated-likelihood model
"""

from qtlemm.em.mim import em_mim
from qtlemm.em.mixture import (
    MixtureProportions,
    mixture_proportions,
    population_frequencies,
)
from qtlemm.em.selective import MODEL_NAMES, em_mim2
from qtlemm.em.state import EMResult, EMState, EMTrace
from qtlemm.em.truncated import em_truncated

__all__ = [
    "EMResult",
    "EMState",
    "EMTrace",
    "MODEL_NAMES",
    "MixtureProportions",
    "em_mim",
    "em_mim2",
    "em_truncated",
    "mixture_proportions",
    "population_frequencies",
]
