"""Mixing proportions for selective genotyping.

Under selective genotyping only a phenotype-extreme subset is genotyped.
Genotyped individuals keep their cp-matrix rows; ungenotyped individuals
all share one row of genotype-class proportions, taken either from the
population genotype frequencies (model "p") or from the frequencies left
over once the genotyped subset is accounted for (model "f"):

    freq_u = max(pop - colsum(cp) / N, 0), renormalized,

where N counts genotyped and ungenotyped individuals together.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import product
from math import comb

import numpy as np

from qtlemm.errors import InputError
from qtlemm.genetics.distance import PopulationType, haldane
from qtlemm.genetics.models import get_transition_model


@dataclass(frozen=True)
class MixtureProportions:
    """Stacked mixing proportions.

    Attributes:
        matrix: (n_genotyped + n_ungenotyped, g) prior class weights.
        ungenotyped_freq: Class proportions shared by ungenotyped rows.
    """

    matrix: np.ndarray
    ungenotyped_freq: np.ndarray


def _genotype_index(genotypes: np.ndarray) -> np.ndarray:
    """Row index of each genotype vector in (2, 1, 0)^q product order."""
    q = genotypes.shape[1]
    weights = 3 ** np.arange(q - 1, -1, -1)
    return (2 - genotypes) @ weights


def _fixation_matrix(
    classes: np.ndarray, freq: np.ndarray, segregating: int
) -> np.ndarray:
    """Transition matrix of one generation of inbreeding over joint classes.

    Loci fixed in a class stay fixed; segregating loci (code ``segregating``)
    are redistributed in proportion to ``freq`` among the classes that agree
    on the fixed loci.
    """
    n = classes.shape[0]
    G = np.zeros((n, n), dtype=np.float64)
    for i in range(n):
        fixed = classes[i] != segregating
        match = np.all(classes[:, fixed] == classes[i, fixed], axis=1)
        total = freq[match].sum()
        if total > 0:
            G[i, match] = freq[match] / total
        else:
            G[i, i] = 1.0
    return G


def _backcross_transition(
    classes: np.ndarray, pos: np.ndarray, chrom: np.ndarray
) -> np.ndarray:
    """One generation of backcrossing to P1 over joint (2, 1)^q classes.

    Code-2 loci stay fixed. The P2 alleles of a class all sit on one homolog,
    so the transmitted allele at the heterozygous loci follows a chain that
    switches homolog between consecutive heterozygous loci with their
    recombination fraction. Loci that receive the P1 allele become code 2.
    """
    n, q = classes.shape
    weights = 2 ** np.arange(q - 1, -1, -1)
    T = np.zeros((n, n), dtype=np.float64)
    for i, c in enumerate(classes):
        het = np.flatnonzero(c == 1)
        if het.size == 0:
            T[i, i] = 1.0
            continue
        r = np.where(
            chrom[het[1:]] == chrom[het[:-1]],
            haldane(pos[het[1:]] - pos[het[:-1]]),
            0.5,
        )
        for kept in product((False, True), repeat=het.size):
            kept = np.array(kept)
            child = c.copy()
            child[het[~kept]] = 2
            T[i, (2 - child) @ weights] += 0.5 * np.prod(
                np.where(kept[1:] == kept[:-1], 1 - r, r)
            )
    return T


def population_frequencies(
    qtl,
    population: str | PopulationType = "RI",
    ng: int = 2,
    cm: bool = True,
) -> np.ndarray:
    """Genotype-class frequencies of the QTLs in the whole population.

    Args:
        qtl: (q, 2) QTL table (chromosome, position), sorted by chromosome
            and position.
        population: "BC", "RI" or "AI".
        ng: Generation number.
        cm: Positions are in centiMorgans.

    Returns:
        Frequencies over the genotype classes in q_make's column order
        ((2, 1)^q for BC, (2, 1, 0)^q otherwise).
    """
    model = get_transition_model(population)
    ng = model.check_generation(ng)
    qtl = np.asarray(qtl, dtype=np.float64).reshape(-1, 2)
    q = qtl.shape[0]
    pop = model.population

    if q == 1:
        if pop is PopulationType.BC:
            return np.array([1 - 0.5**ng, 0.5**ng])
        if pop is PopulationType.RI:
            h = 0.5 ** (ng - 1)
            return np.array([(1 - h) / 2, h, (1 - h) / 2])
        return np.array([0.25, 0.5, 0.25])

    pos = qtl[:, 1] / 100.0 if cm else qtl[:, 1]
    if pop is PopulationType.BC:
        # start from the F1, heterozygous at every QTL
        classes = np.array(list(product((2, 1), repeat=q)), dtype=np.int64)
        freq = np.zeros(classes.shape[0], dtype=np.float64)
        freq[-1] = 1.0
        T = _backcross_transition(classes, pos, qtl[:, 0])
        for _ in range(ng):
            freq = T.T @ freq
        return freq

    same_chrom = qtl[1:, 0] == qtl[:-1, 0]
    r = np.where(same_chrom, haldane(np.diff(pos)), 0.5)
    if pop is PopulationType.AI and ng > 2:
        # probability of an odd number of crossovers over ng - 1 meioses
        even = sum(
            comb(ng - 1, k) * r**k * (1 - r) ** (ng - 1 - k)
            for k in range(0, ng, 2)
        )
        r = 1 - even

    gametes = np.array(list(product((1, 0), repeat=q)), dtype=np.int64)
    gamete_freq = np.prod(
        np.where(gametes[:, 1:] == gametes[:, :-1], 1 - r, r), axis=1
    )

    classes = np.array(list(product((2, 1, 0), repeat=q)), dtype=np.int64)
    pair_freq = np.outer(gamete_freq / 2, gamete_freq / 2).ravel()
    pair_geno = (gametes[:, None, :] + gametes[None, :, :]).reshape(-1, q)
    freq = np.bincount(
        _genotype_index(pair_geno), weights=pair_freq, minlength=classes.shape[0]
    )
    if pop is PopulationType.RI and ng > 2:
        G = _fixation_matrix(classes, freq, segregating=1)
        for _ in range(ng - 2):
            freq = G.T @ freq
    return freq


def mixture_proportions(
    cp_matrix: np.ndarray,
    n_ungenotyped: int,
    population_freq: np.ndarray,
    corrected: bool = True,
) -> MixtureProportions:
    """Stack genotyped cp rows with the ungenotyped class proportions.

    Args:
        cp_matrix: (n_genotyped, g) cp-matrix of the genotyped subset.
        n_ungenotyped: Number of ungenotyped individuals.
        population_freq: Population genotype-class frequencies (g,).
        corrected: Subtract the genotyped-subset frequencies (model "f");
            otherwise use the population frequencies as they are (model "p").

    Raises:
        InputError: If the frequency vector does not match the cp-matrix.
    """
    cp_matrix = np.asarray(cp_matrix, dtype=np.float64)
    population_freq = np.asarray(population_freq, dtype=np.float64).reshape(-1)
    if population_freq.size != cp_matrix.shape[1]:
        raise InputError(
            f"population frequencies cover {population_freq.size} classes but "
            f"the cp-matrix has {cp_matrix.shape[1]}"
        )
    if n_ungenotyped < 0:
        raise InputError("n_ungenotyped must be non-negative")

    n_total = cp_matrix.shape[0] + n_ungenotyped
    if corrected:
        freq_u = population_freq - cp_matrix.sum(axis=0) / n_total
    else:
        freq_u = population_freq.copy()
    freq_u = np.maximum(freq_u, 0.0)
    if freq_u.sum() > 0:
        freq_u = freq_u / freq_u.sum()

    matrix = np.vstack([cp_matrix, np.tile(freq_u, (n_ungenotyped, 1))])
    return MixtureProportions(matrix=matrix, ungenotyped_freq=freq_u)
