"""Registry of population transition models."""

from __future__ import annotations

from qtlemm.genetics.advanced_intercross import AdvancedIntercrossModel
from qtlemm.genetics.backcross import BackcrossModel
from qtlemm.genetics.distance import PopulationType, TransitionModel
from qtlemm.genetics.recombinant_inbred import RecombinantInbredModel

_MODELS: dict[PopulationType, type[TransitionModel]] = {
    PopulationType.BC: BackcrossModel,
    PopulationType.RI: RecombinantInbredModel,
    PopulationType.AI: AdvancedIntercrossModel,
}


def get_transition_model(population: str | PopulationType) -> TransitionModel:
    """Return the transition model for a population design.

    Args:
        population: "BC", "RI" or "AI" (case-insensitive) or a PopulationType.

    Returns:
        A TransitionModel instance. Models are stateless, so instances can be
        shared freely between calls and threads.

    Raises:
        ConfigurationError: If the population type is not supported.
    """
    return _MODELS[PopulationType.parse(population)]()
