"""Input checks for marker maps, QTL tables and genotype matrices.

All checks run before any numeric work and raise InputError with a message
naming the offending table, so malformed data never reaches the chains.
"""

from __future__ import annotations

import numpy as np

from qtlemm.errors import InputError

VALID_GENOTYPE_CODES = (0.0, 1.0, 2.0)


def _as_float_table(data, name: str) -> np.ndarray:
    try:
        arr = np.asarray(data, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InputError(f"{name} must be numeric: {e}") from None
    if arr.ndim == 1 and arr.size == 2:
        arr = arr.reshape(1, 2)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise InputError(
            f"{name} must be a table with 2 columns (chromosome, position), "
            f"got shape {arr.shape}"
        )
    if arr.shape[0] == 0:
        raise InputError(f"{name} is empty")
    if not np.all(np.isfinite(arr)):
        raise InputError(f"{name} contains missing or non-finite values")
    return arr


def validate_marker_table(marker) -> np.ndarray:
    """Check a k x 2 (chromosome, position) marker map.

    Markers must be sorted by chromosome, and by position within each
    chromosome. Ties in position are allowed (coincident markers).

    Returns:
        The marker table as a float64 array.

    Raises:
        InputError: On shape, finiteness or ordering problems.
    """
    marker = _as_float_table(marker, "marker")
    chrom, pos = marker[:, 0], marker[:, 1]
    if np.any(np.diff(chrom) < 0):
        raise InputError("marker table must be sorted by chromosome")
    same_chrom = np.diff(chrom) == 0
    if np.any(np.diff(pos)[same_chrom] < 0):
        raise InputError(
            "marker positions must be non-decreasing within each chromosome"
        )
    return marker


def validate_qtl_table(qtl, marker: np.ndarray) -> np.ndarray:
    """Check a q x 2 QTL table against a validated marker map.

    Every QTL must sit on a chromosome that carries markers, inside the span
    of that chromosome's marker positions.

    Raises:
        InputError: If a QTL is malformed or outside the marker span.
    """
    qtl = _as_float_table(qtl, "QTL")
    for i, (ch, pos) in enumerate(qtl):
        on_chrom = marker[marker[:, 0] == ch, 1]
        if on_chrom.size == 0:
            raise InputError(
                f"QTL {i + 1} lies on chromosome {ch:g}, which has no markers"
            )
        if pos < on_chrom.min() or pos > on_chrom.max():
            raise InputError(
                f"QTL {i + 1} at position {pos:g} is outside the marker span "
                f"[{on_chrom.min():g}, {on_chrom.max():g}] of chromosome {ch:g}"
            )
    return qtl


def validate_genotypes(geno, n_markers: int) -> np.ndarray:
    """Check an n x k genotype matrix (codes 0/1/2, NaN for missing).

    Returns:
        The genotype matrix as float64 (read-only input; never mutated).

    Raises:
        InputError: On shape mismatch or codes outside {0, 1, 2, NaN}.
    """
    try:
        geno = np.asarray(geno, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InputError(f"genotype matrix must be numeric: {e}") from None
    if geno.ndim != 2:
        raise InputError(f"genotype matrix must be 2-D, got {geno.ndim}-D")
    if geno.shape[1] != n_markers:
        raise InputError(
            f"genotype matrix has {geno.shape[1]} columns but the marker "
            f"table has {n_markers} markers"
        )
    observed = geno[~np.isnan(geno)]
    bad = ~np.isin(observed, VALID_GENOTYPE_CODES)
    if bad.any():
        raise InputError(
            f"genotype codes must be 0, 1, 2 or missing; found "
            f"{np.unique(observed[bad])[:5].tolist()}"
        )
    return geno
