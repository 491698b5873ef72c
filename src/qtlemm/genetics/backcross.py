"""Backcross (BC) genotype transition model.

In a backcross only two genotypes segregate at each locus: the recurrent
parent homozygote (code 2) and the heterozygote (code 1). Frequencies are
tracked as gamete-type frequencies of the non-recurrent contribution and
advanced one backcross generation at a time (BC1 = generation 1).

Letters follow the usual convention: upper case is the recurrent-parent
allele, lower case the donor allele. Loci are ordered (marker1, QTL,
marker2) for the three-locus recursion.
"""

from __future__ import annotations

import numpy as np

from qtlemm.genetics.distance import PopulationType, TransitionModel, haldane


def _two_locus(d: float, ng: int) -> np.ndarray:
    """Frequencies [AB, Ab, aB, ab] after ``ng`` backcross generations."""
    r = haldane(d)
    AB, Ab, aB, ab = (1 - r) / 2, r / 2, r / 2, (1 - r) / 2
    for _ in range(ng - 1):
        AB, Ab, aB, ab = (
            AB + Ab / 2 + aB / 2 + (1 - r) / 2 * ab,
            Ab / 2 + r / 2 * ab,
            aB / 2 + r / 2 * ab,
            (1 - r) / 2 * ab,
        )
    return np.array([AB, Ab, aB, ab], dtype=np.float64)


def _three_locus(d1: float, d2: float, ng: int) -> dict[str, float]:
    """Three-locus frequencies after ``ng`` backcross generations.

    Returns:
        Mapping from gamete type ("ABC", "AbC", ...) to frequency.
    """
    r1, r2 = haldane(d1), haldane(d2)
    s1, s2 = 1 - r1, 1 - r2
    ABC = s1 * s2 / 2
    ABc = s1 * r2 / 2
    AbC = r1 * r2 / 2
    aBC = r1 * s2 / 2
    abC = s1 * r2 / 2
    aBc = r1 * r2 / 2
    Abc = r1 * s2 / 2
    abc = s1 * s2 / 2
    for _ in range(ng - 1):
        ABC, ABc, AbC, aBC, abC, aBc, Abc, abc = (
            ABC
            + ABc / 2
            + AbC / 2
            + aBC / 2
            + s1 / 2 * abC
            + (s1 * s2 + r1 * r2) / 2 * aBc
            + s2 / 2 * Abc
            + s1 * s2 / 2 * abc,
            ABc / 2 + (r1 * s2 + s1 * r2) / 2 * aBc + r2 / 2 * Abc + s1 * r2 / 2 * abc,
            AbC / 2 + r1 / 2 * abC + r2 / 2 * Abc + r1 * r2 / 2 * abc,
            aBC / 2 + r1 / 2 * abC + (s1 * r2 + r1 * s2) / 2 * aBc + r1 * s2 / 2 * abc,
            s1 / 2 * abC + s1 * r2 / 2 * abc,
            (s1 * s2 + r1 * r2) / 2 * aBc + r1 * r2 / 2 * abc,
            s2 / 2 * Abc + r1 * s2 / 2 * abc,
            s1 * s2 / 2 * abc,
        )
    return {
        "ABC": ABC,
        "ABc": ABc,
        "AbC": AbC,
        "aBC": aBC,
        "abC": abC,
        "aBc": aBc,
        "Abc": Abc,
        "abc": abc,
    }


class BackcrossModel(TransitionModel):
    """Backcross population; tables are 4 x 2 (rows 22, 21, 12, 11)."""

    population = PopulationType.BC
    codes = (2, 1)
    min_generation = 1

    def pair_frequencies(self, d: float, ng: int) -> np.ndarray:
        return _two_locus(d, ng).reshape(2, 2)

    def triplet_frequencies(self, d1: float, d2: float, ng: int) -> np.ndarray:
        f = _three_locus(d1, d2, ng)
        # marker1 / marker2 on the outer letters, QTL in the middle
        return np.array(
            [
                [f["ABC"], f["AbC"]],
                [f["ABc"], f["Abc"]],
                [f["aBC"], f["abC"]],
                [f["aBc"], f["abc"]],
            ],
            dtype=np.float64,
        )
