"""Advanced intercross (AI) genotype transition model.

An AI population is produced by random mating from the F2 onwards, so the
chain runs on gamete frequencies: recombination shrinks linkage
disequilibrium by a factor (1 - r) per generation, and zygote frequencies
are products of two independent gametes. Generation ng = 2 is the F2
formed from F1 gametes; each later generation applies one gamete update.

Three-locus gametes are summarised by four symmetric frequencies:
N (no crossover), R (crossover in the right interval only), B (both
intervals) and L (left interval only).
"""

from __future__ import annotations

import numpy as np

from qtlemm.genetics.distance import PopulationType, TransitionModel, haldane
from qtlemm.genetics.recombinant_inbred import expand_triplet_states

# Zygote multiplicity and gamete pairing for the 20 reduced three-locus states
_COEF = np.array([1, 2, 1, 2, 2, 2, 2, 1, 2, 1, 2, 2, 2, 2, 2, 2, 2, 2, 2, 2])
_SPERM = "NNBNNRBRRLNNBRNRNBRL"
_EGG = "NBBRLBLRLLLRLBBLNBRL"


def _pair_zygotes(g_parental: float, g_recombinant: float) -> np.ndarray:
    C = g_parental**2
    D = g_recombinant**2
    E = 2 * g_parental * g_recombinant
    return np.array(
        [C, E, D, E, 2 * C + 2 * D, E, D, E, C], dtype=np.float64
    ).reshape(3, 3)


def _triplet_zygotes(gametes: dict[str, float]) -> np.ndarray:
    sperm = np.array([gametes[k] for k in _SPERM], dtype=np.float64)
    egg = np.array([gametes[k] for k in _EGG], dtype=np.float64)
    return _COEF * sperm * egg


class AdvancedIntercrossModel(TransitionModel):
    """Advanced intercross population; tables are 9 x 3."""

    population = PopulationType.AI
    codes = (2, 1, 0)
    min_generation = 2

    def pair_frequencies(self, d: float, ng: int) -> np.ndarray:
        r = haldane(d)
        parental, recombinant = (1 - r) / 2, r / 2
        for _ in range(ng - 2):
            parental = (1 - r) * parental + r / 4
            recombinant = (1 - r) * recombinant + r / 4
        return _pair_zygotes(parental, recombinant)

    def triplet_frequencies(self, d1: float, d2: float, ng: int) -> np.ndarray:
        r1, r2 = haldane(d1), haldane(d2)
        g = {
            "N": (1 - r1) * (1 - r2) / 2,
            "R": (1 - r1) * r2 / 2,
            "B": r1 * r2 / 2,
            "L": r1 * (1 - r2) / 2,
        }
        for _ in range(ng - 2):
            N, R, B, L = g["N"], g["R"], g["B"], g["L"]
            f23 = np.array([N + L, B + R, B + R, N + L])
            f13 = np.array([N + B, L + R, N + B, L + R])
            f12 = np.array([N + R, N + R, L + B, L + B])
            new = (
                (1 - r1) * (1 - r2) * np.array([N, R, B, L])
                + 0.5 * r1 * (1 - r2) * f23
                + 0.5 * r1 * r2 * f13
                + 0.5 * (1 - r1) * r2 * f12
            )
            g = dict(zip("NRBL", new))
        return expand_triplet_states(_triplet_zygotes(g))
