"""Recombinant inbred (RI) genotype transition model.

RI lines are produced by repeated selfing from the F1. Zygote frequencies
are tracked over symmetry-reduced state spaces (5 states for two loci, 20
for three loci) and advanced by a fixed transition matrix once per
generation: generation ng is reached after ng - 1 selfings of the F1, so
ng = 2 is the F2.

The reduced states fold mirror-image zygotes together. In the three-locus
chain states 1-16 each stand for two zygote configurations and states
17-20 for one, so the conserved mass is 2 * sum(x[:16]) + sum(x[16:]).
"""

from __future__ import annotations

import numpy as np

from qtlemm.genetics.distance import PopulationType, TransitionModel, haldane


def _pair_transition(r: float) -> np.ndarray:
    """5 x 5 selfing transition matrix for two loci (column = parent state)."""
    p = 1 - r
    return np.array(
        [
            [1, 0, 1 / 2, p**2 / 4, r**2 / 4],
            [0, 1, 1 / 2, r**2 / 4, p**2 / 4],
            [0, 0, 1 / 2, r * p / 2, r * p / 2],
            [0, 0, 0, p**2 / 2, r**2 / 2],
            [0, 0, 0, r**2 / 2, p**2 / 2],
        ],
        dtype=np.float64,
    )


def _triplet_transition(r1: float, r2: float) -> np.ndarray:
    """20 x 20 selfing transition matrix for three loci (column = parent state)."""
    p1, p2 = 1 - r1, 1 - r2
    f = r1 * p2 + r2 * p1  # recombination between the two outer loci
    g = 1 - f
    q = r1 * p1 * r2 * p2
    rows = [
        ([4, 1, 0, 1, p2**2, r2**2, 0, 0, 0, 0, 1, p1**2, r1**2, 0, g**2, f**2,
          (p1 * p2) ** 2, (r1 * r2) ** 2, (p1 * r2) ** 2, (r1 * p2) ** 2], 4),
        ([0, 1, 0, 0, r2 * p2, r2 * p2, 0, 0, 0, 0, 0, r1 * p1, r1 * p1, 0, 0, 0,
          q, q, q, q], 2),
        ([0, 1, 4, 0, r2**2, p2**2, 1, 0, 0, 0, 0, r1**2, p1**2, 1, g**2, f**2,
          (r1 * r2) ** 2, (p1 * p2) ** 2, (r1 * p2) ** 2, (p1 * r2) ** 2], 4),
        ([0, 0, 0, 1, r2 * p2, r2 * p2, 0, 0, 0, 0, 0, 0, 0, 0, f * g, f * g,
          p1**2 * r2 * p2, r1**2 * r2 * p2, p1**2 * r2 * p2, r1**2 * r2 * p2], 2),
        ([0, 0, 0, 0, p2**2, r2**2, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
          r1 * p1 * p2**2, r1 * p1 * r2**2, r1 * p1 * r2**2, r1 * p1 * p2**2], 2),
        ([0, 0, 0, 0, r2**2, p2**2, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
          r1 * p1 * r2**2, r1 * p1 * p2**2, r1 * p1 * p2**2, r1 * p1 * r2**2], 2),
        ([0, 0, 0, 0, r2 * p2, r2 * p2, 1, 0, 0, 0, 0, 0, 0, 0, f * g, f * g,
          r1**2 * r2 * p2, p1**2 * r2 * p2, r1**2 * r2 * p2, p1**2 * r2 * p2], 2),
        ([0, 0, 0, 1, r2**2, p2**2, 0, 4, 1, 0, 0, p1**2, r1**2, 1, f**2, g**2,
          (p1 * r2) ** 2, (r1 * p2) ** 2, (p1 * p2) ** 2, (r1 * r2) ** 2], 4),
        ([0, 0, 0, 0, r2 * p2, r2 * p2, 0, 0, 1, 0, 0, r1 * p1, r1 * p1, 0, 0, 0,
          q, q, q, q], 2),
        ([0, 0, 0, 0, p2**2, r2**2, 1, 0, 1, 4, 1, r1**2, p1**2, 0, f**2, g**2,
          (r1 * p2) ** 2, (p1 * r2) ** 2, (r1 * r2) ** 2, (p1 * p2) ** 2], 4),
        ([0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, r1 * p1, r1 * p1, 0, f * g, f * g,
          r1 * p1 * p2**2, r1 * p1 * r2**2, r1 * p1 * r2**2, r1 * p1 * p2**2], 2),
        ([0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, p1**2, r1**2, 0, 0, 0,
          p1**2 * r2 * p2, r1**2 * r2 * p2, p1**2 * r2 * p2, r1**2 * r2 * p2], 2),
        ([0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, r1**2, p1**2, 0, 0, 0,
          r1**2 * r2 * p2, p1**2 * r2 * p2, r1**2 * r2 * p2, p1**2 * r2 * p2], 2),
        ([0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, r1 * p1, r1 * p1, 1, f * g, f * g,
          r1 * p1 * r2**2, r1 * p1 * p2**2, r1 * p1 * p2**2, r1 * p1 * r2**2], 2),
        ([0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, g**2, f**2, q, q, q, q], 2),
        ([0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, f**2, g**2, q, q, q, q], 2),
        ([0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
          (p1 * p2) ** 2, (r1 * r2) ** 2, (p1 * r2) ** 2, (r1 * p2) ** 2], 2),
        ([0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
          (r1 * r2) ** 2, (p1 * p2) ** 2, (r1 * p2) ** 2, (p1 * r2) ** 2], 2),
        ([0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
          (p1 * r2) ** 2, (r1 * p2) ** 2, (p1 * p2) ** 2, (r1 * r2) ** 2], 2),
        ([0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
          (r1 * p2) ** 2, (p1 * r2) ** 2, (r1 * r2) ** 2, (p1 * p2) ** 2], 2),
    ]  # fmt: skip
    return np.array([np.asarray(row, dtype=np.float64) / div for row, div in rows])


def pair_state_frequencies(d: float, ng: int) -> np.ndarray:
    """Reduced two-locus state frequencies after ng - 1 selfings of the F1."""
    T = _pair_transition(haldane(d))
    freq = np.array([0, 0, 0, 1, 0], dtype=np.float64)
    for _ in range(ng - 1):
        freq = T @ freq
    return freq


def triplet_state_frequencies(d1: float, d2: float, ng: int) -> np.ndarray:
    """Reduced three-locus state frequencies after ng - 1 selfings of the F1."""
    T = _triplet_transition(haldane(d1), haldane(d2))
    freq = np.zeros(20, dtype=np.float64)
    freq[16] = 1.0
    for _ in range(ng - 1):
        freq = T @ freq
    return freq


def expand_pair_states(x: np.ndarray) -> np.ndarray:
    """Map 5 reduced two-locus states to the 3 x 3 genotype-pair table.

    Shared by the RI and AI models, whose two-locus chains use the same
    state layout.
    """
    zygotes = np.array(
        [x[0], x[2], x[1], x[2], x[3] + x[4], x[2], x[1], x[2], x[0]],
        dtype=np.float64,
    )
    return zygotes.reshape(3, 3)


def expand_triplet_states(a: np.ndarray) -> np.ndarray:
    """Map 20 reduced three-locus states to the 9 x 3 joint table.

    Rows are flanking-marker pairs (22, 21, ..., 00) and columns QTL
    genotypes (QQ, Qq, qq). Shared by the RI and AI models.
    """
    return np.array(
        [
            [a[0], a[1], a[2]],
            [a[3], a[4] + a[5], a[6]],
            [a[7], a[8], a[9]],
            [a[10], a[11] + a[12], a[13]],
            [a[14] + a[15], a[16:20].sum(), a[14] + a[15]],
            [a[13], a[11] + a[12], a[10]],
            [a[9], a[8], a[7]],
            [a[6], a[4] + a[5], a[3]],
            [a[2], a[1], a[0]],
        ],
        dtype=np.float64,
    )


class RecombinantInbredModel(TransitionModel):
    """Recombinant inbred population; tables are 9 x 3."""

    population = PopulationType.RI
    codes = (2, 1, 0)
    min_generation = 2

    def pair_frequencies(self, d: float, ng: int) -> np.ndarray:
        return expand_pair_states(pair_state_frequencies(d, ng))

    def triplet_frequencies(self, d1: float, d2: float, ng: int) -> np.ndarray:
        return expand_triplet_states(triplet_state_frequencies(d1, d2, ng))
