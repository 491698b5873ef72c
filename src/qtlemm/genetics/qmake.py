"""Conditional QTL genotype probabilities from flanking-marker data.

For each QTL the flanking marker pair is located on its chromosome and the
population's transition model turns the two distances into a Q-matrix,
P(QTL genotype | flanking genotype pair). Given marker genotypes, the
per-QTL probability vectors of every individual are combined into the
cp-matrix, whose columns are all combinations of QTL genotype classes.

Example:
    >>> import numpy as np
    >>> from qtlemm.genetics import q_make
    >>> marker = np.array([[1, 0.0], [1, 20.0], [1, 40.0]])
    >>> qtl = np.array([[1, 10.0]])
    >>> geno = np.array([[2, 2, 1], [1, 0, 0]])
    >>> result = q_make(qtl, marker, geno)
    >>> result.labels
    ['2', '1', '0']
"""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import product

import numpy as np
from loguru import logger

from qtlemm.errors import ConfigurationError, InputError
from qtlemm.genetics.distance import PopulationType, TransitionModel
from qtlemm.genetics.models import get_transition_model
from qtlemm.genetics.validate import (
    validate_genotypes,
    validate_marker_table,
    validate_qtl_table,
)


@dataclass
class QMatrixResult:
    """Output of q_make.

    Attributes:
        q_matrices: One conditional table per QTL, shape (nc**2, nc).
        flanking: (left, right) marker row indices per QTL.
        distances: (d1, d2) in Morgans per QTL.
        cp_matrix: (n_individuals, nc**q) joint conditional probabilities, or
            None when no genotypes were given.
        labels: Genotype class labels of the cp-matrix columns ("220", ...).
        row_labels: Flanking genotype pair labels of the Q-matrix rows.
        column_labels: QTL genotype labels of the Q-matrix columns.
        population: Population design the tables were built for.
    """

    q_matrices: list[np.ndarray]
    flanking: list[tuple[int, int]]
    distances: list[tuple[float, float]]
    cp_matrix: np.ndarray | None
    labels: list[str]
    row_labels: list[str] = field(default_factory=list)
    column_labels: list[str] = field(default_factory=list)
    population: PopulationType = PopulationType.RI


def genotype_classes(
    n_qtl: int, population: str | PopulationType
) -> tuple[np.ndarray, list[str]]:
    """Enumerate joint QTL genotype classes.

    Classes are the Cartesian product of per-QTL codes, (2, 1, 0) for RI/AI
    and (2, 1) for BC, with the first QTL varying slowest. Design matrices
    and population frequencies use the same row order.

    Returns:
        Tuple of (codes, labels) where codes is an (nc**q, q) int array and
        labels the concatenated digit strings.
    """
    codes = get_transition_model(population).codes
    classes = np.array(list(product(codes, repeat=n_qtl)), dtype=np.int64)
    labels = ["".join(str(c) for c in row) for row in classes]
    return classes, labels


def find_flanking_markers(
    qtl_pos: float, positions: np.ndarray, interval: bool = False
) -> tuple[int, int]:
    """Locate the flanking marker pair of one QTL on its chromosome.

    A QTL at the first marker uses the first two markers. Otherwise the left
    flank is the last marker strictly before the QTL and the right flank is
    the next marker, or with ``interval`` the first marker strictly after the
    QTL, so that a marker at the QTL position is skipped.

    Args:
        qtl_pos: QTL position.
        positions: Sorted marker positions of the chromosome.
        interval: Skip a marker that coincides with the QTL.

    Returns:
        (left, right) indices into ``positions``.

    Raises:
        InputError: If the chromosome has fewer than two markers.
        ConfigurationError: If ``interval`` is set and the QTL sits on the
            first or last marker.
    """
    if positions.size < 2:
        raise InputError(
            "a chromosome carrying a QTL needs at least two markers"
        )
    if interval and qtl_pos in (positions[0], positions[-1]):
        raise ConfigurationError(
            "with interval placement a QTL cannot sit on the first or last "
            "marker of its chromosome"
        )
    if qtl_pos == positions[0]:
        return 0, 1
    left = int(np.flatnonzero(positions < qtl_pos)[-1])
    if interval:
        right = int(np.flatnonzero(positions > qtl_pos)[0])
    else:
        right = left + 1
    return left, right


def _flanking_probabilities(
    table: np.ndarray, g1: np.ndarray, g2: np.ndarray, nc: int
) -> np.ndarray:
    """Per-individual QTL genotype probabilities for one QTL.

    Missing flanking calls are marginalised by averaging the table rows
    consistent with the observed flank, or all rows when both are missing.
    """
    n = g1.shape[0]
    cube = table.reshape(nc, nc, nc)  # [marker1, marker2, qtl]
    out = np.empty((n, nc), dtype=np.float64)

    miss1, miss2 = np.isnan(g1), np.isnan(g2)
    i1 = np.where(miss1, 0, 2 - np.nan_to_num(g1)).astype(np.int64)
    i2 = np.where(miss2, 0, 2 - np.nan_to_num(g2)).astype(np.int64)

    both = ~miss1 & ~miss2
    out[both] = cube[i1[both], i2[both]]
    left_only = ~miss1 & miss2
    out[left_only] = cube.mean(axis=1)[i1[left_only]]
    right_only = miss1 & ~miss2
    out[right_only] = cube.mean(axis=0)[i2[right_only]]
    out[miss1 & miss2] = table.mean(axis=0)
    return out


def _check_backcross_codes(geno: np.ndarray) -> np.ndarray:
    n_codes = np.array(
        [np.unique(col[~np.isnan(col)]).size for col in geno.T], dtype=np.int64
    )
    if np.any(n_codes == 3):
        logger.warning(
            f"{int(np.sum(n_codes == 3))} marker(s) show three genotype codes; "
            "the data may not come from a backcross and results may be biased"
        )
    recoded = geno.copy()
    recoded[recoded == 0] = 2
    return recoded


def build_q_matrices(
    qtl: np.ndarray,
    marker: np.ndarray,
    model: TransitionModel,
    ng: int,
    interval: bool = False,
) -> tuple[list[np.ndarray], list[tuple[int, int]], list[tuple[float, float]]]:
    """Q-matrix, flanking pair and distances for every QTL.

    Positions must already be in Morgans.
    """
    q_matrices, flanking, distances = [], [], []
    for ch, pos in qtl:
        rows = np.flatnonzero(marker[:, 0] == ch)
        left, right = find_flanking_markers(pos, marker[rows, 1], interval)
        m1, m2 = rows[left], rows[right]
        d1 = float(pos - marker[m1, 1])
        d2 = float(marker[m2, 1] - pos)
        q_matrices.append(model.table(d1, d2, ng))
        flanking.append((int(m1), int(m2)))
        distances.append((d1, d2))
    return q_matrices, flanking, distances


def q_make(
    qtl,
    marker,
    geno=None,
    interval: bool = False,
    population: str | PopulationType = "RI",
    ng: int = 2,
    cm: bool = True,
) -> QMatrixResult:
    """Build Q-matrices and, given genotypes, the cp-matrix.

    Args:
        qtl: (q, 2) table of QTL (chromosome, position).
        marker: (k, 2) marker map, sorted by chromosome and position.
        geno: Optional (n, k) genotype matrix with codes 2 (P1 homozygote),
            1 (heterozygote), 0 (P2 homozygote) and NaN for missing.
        interval: Skip a marker that coincides with a QTL when choosing
            flanking markers.
        population: "BC", "RI" or "AI".
        ng: Generation number of the population.
        cm: Positions are in centiMorgans (converted to Morgans).

    Returns:
        QMatrixResult with one Q-matrix per QTL and the cp-matrix.

    Raises:
        InputError: On malformed marker, QTL or genotype data.
        ConfigurationError: On an unknown population, invalid ``ng`` or an
            interval placement at a chromosome boundary.
    """
    marker = validate_marker_table(marker)
    qtl = validate_qtl_table(qtl, marker)
    if geno is not None:
        geno = validate_genotypes(geno, marker.shape[0])

    model = get_transition_model(population)
    ng = model.check_generation(ng)

    if cm:
        qtl = qtl.copy()
        marker = marker.copy()
        qtl[:, 1] /= 100.0
        marker[:, 1] /= 100.0

    q_matrices, flanking, distances = build_q_matrices(
        qtl, marker, model, ng, interval=interval
    )
    classes, labels = genotype_classes(qtl.shape[0], model.population)

    cp_matrix = None
    if geno is not None:
        if model.population is PopulationType.BC:
            geno = _check_backcross_codes(geno)
        nc = model.n_classes
        cp_matrix = np.ones((geno.shape[0], len(labels)), dtype=np.float64)
        column_index = 2 - classes
        for k, (table, (m1, m2)) in enumerate(zip(q_matrices, flanking)):
            probs = _flanking_probabilities(table, geno[:, m1], geno[:, m2], nc)
            cp_matrix *= probs[:, column_index[:, k]]
        logger.debug(
            f"cp-matrix built: {cp_matrix.shape[0]} individuals x "
            f"{cp_matrix.shape[1]} genotype classes"
        )

    return QMatrixResult(
        q_matrices=q_matrices,
        flanking=flanking,
        distances=distances,
        cp_matrix=cp_matrix,
        labels=labels,
        row_labels=model.row_labels,
        column_labels=model.column_labels,
        population=model.population,
    )
