"""Genetic distance models: recombination distance to QTL genotype tables.

Every population design is a variant of one capability: given the distances
d1 (left flanking marker to QTL) and d2 (QTL to right flanking marker), in
Morgans, and a generation number ng, produce the table

    P(QTL genotype | genotypes of the two flanking markers)

with one row per flanking-marker genotype pair and one column per QTL
genotype class. Variants differ only in the Markov chain that generates the
joint genotype frequencies of the three loci (marker1, QTL, marker2) and of
two loci; the conditioning step is shared and lives in TransitionModel.

Genotype codes follow the QTLEMM convention: 2 = P1 homozygote (MM/QQ),
1 = heterozygote, 0 = P2 homozygote. Row labels are the two flanking codes
concatenated ("21" = marker1 is 2, marker2 is 1).

Reference: Kao & Zeng (1997) Biometrics 53:653-665; Kao, Zeng & Teasdale
(1999) Genetics 152:1203-1216.
"""

from __future__ import annotations

import enum
import numbers
from abc import ABC, abstractmethod
from itertools import product

import numpy as np

from qtlemm.errors import ConfigurationError, InputError


class PopulationType(str, enum.Enum):
    """Supported experimental population designs."""

    BC = "BC"  # backcross
    RI = "RI"  # recombinant inbred (selfing)
    AI = "AI"  # advanced intercross (random mating)

    @classmethod
    def parse(cls, value: str | PopulationType) -> PopulationType:
        """Coerce a string such as "ri" or "RI" to a PopulationType.

        Raises:
            ConfigurationError: If the value names no supported population.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ConfigurationError(
                f"Unsupported population type {value!r}; use 'BC', 'RI' or 'AI'."
            ) from None


def haldane(d: float | np.ndarray) -> float | np.ndarray:
    """Haldane mapping function r = (1 - exp(-2d)) / 2.

    Args:
        d: Genetic distance in Morgans (scalar or array).

    Returns:
        Recombination fraction, same shape as ``d``.
    """
    return -0.5 * np.expm1(-2.0 * np.asarray(d, dtype=np.float64))


class TransitionModel(ABC):
    """Base class for population-specific genotype transition models.

    Subclasses supply the two- and three-locus joint genotype frequencies;
    this class turns them into conditional QTL genotype tables.

    Attributes:
        population: PopulationType tag of the variant.
        codes: Genotype codes of one locus, in table order.
        min_generation: Smallest admissible generation number.
    """

    population: PopulationType
    codes: tuple[int, ...]
    min_generation: int

    @property
    def n_classes(self) -> int:
        """Number of QTL genotype classes (columns of a table)."""
        return len(self.codes)

    @property
    def row_labels(self) -> list[str]:
        """Flanking-marker genotype pair labels, in table row order."""
        return [f"{a}{b}" for a, b in product(self.codes, repeat=2)]

    @property
    def column_labels(self) -> list[str]:
        """QTL genotype class names, in table column order."""
        return ["QQ", "Qq", "qq"][: self.n_classes]

    def check_generation(self, ng: int) -> int:
        """Validate the generation number for this population.

        Raises:
            ConfigurationError: If ng is not an integer >= min_generation.
        """
        if (
            isinstance(ng, bool)
            or not isinstance(ng, numbers.Real)
            or float(ng) != round(float(ng))
            or int(round(float(ng))) < self.min_generation
        ):
            raise ConfigurationError(
                f"ng must be an integer >= {self.min_generation} for "
                f"{self.population.value} populations, got {ng!r}"
            )
        return int(round(float(ng)))

    @abstractmethod
    def pair_frequencies(self, d: float, ng: int) -> np.ndarray:
        """Joint genotype frequencies of two loci ``d`` Morgans apart.

        Returns:
            (n_classes, n_classes) array; entry [i, j] is the frequency of
            genotype codes[i] at the first locus and codes[j] at the second.
        """

    @abstractmethod
    def triplet_frequencies(self, d1: float, d2: float, ng: int) -> np.ndarray:
        """Joint frequencies of (marker1, marker2) pair and QTL genotype.

        Returns:
            (n_classes**2, n_classes) array in row_labels x column_labels
            order. Row sums are the flanking-marker pair frequencies.
        """

    def table(self, d1: float, d2: float, ng: int) -> np.ndarray:
        """Conditional QTL genotype table for one flanking interval.

        Rows whose flanking genotype pair has zero probability (possible only
        when d1 + d2 == 0, i.e. coincident markers) are filled with the
        single-marker conditional P(QTL | marker1) at distance d1.

        Args:
            d1: Distance from the left flanking marker to the QTL (Morgans).
            d2: Distance from the QTL to the right flanking marker (Morgans).
            ng: Generation number.

        Returns:
            (n_classes**2, n_classes) array whose rows each sum to 1.

        Raises:
            InputError: If a distance is negative or non-finite.
            ConfigurationError: If ng is invalid for this population.
        """
        ng = self.check_generation(ng)
        for name, d in (("d1", d1), ("d2", d2)):
            if not np.isfinite(d) or d < 0:
                raise InputError(f"{name} must be a finite distance >= 0, got {d!r}")

        joint = self.triplet_frequencies(float(d1), float(d2), ng)
        marginal = joint.sum(axis=1)
        impossible = marginal <= 0.0

        out = np.empty_like(joint)
        out[~impossible] = joint[~impossible] / marginal[~impossible, None]
        if impossible.any():
            single = self.single_marker_table(float(d1), ng)
            first_marker = np.arange(joint.shape[0]) // self.n_classes
            out[impossible] = single[first_marker[impossible]]
        return out

    def single_marker_table(self, d: float, ng: int) -> np.ndarray:
        """P(QTL genotype | one marker genotype) for a marker ``d`` away.

        Returns:
            (n_classes, n_classes) array, rows indexed by marker code.
        """
        pair = self.pair_frequencies(d, ng)
        return pair / pair.sum(axis=1, keepdims=True)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(population={self.population.value})"
