"""Boundary checks and defaults for EM inputs.

Malformed inputs are rejected here with InputError before any iteration,
and missing starting values are filled with their defaults:

- effects: zeros
- X: a single intercept column
- beta: mean(y) for every column of X
- variance: sample variance of y (ddof = 1)
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from qtlemm.em.state import EMState
from qtlemm.errors import InputError


@dataclass(frozen=True)
class EMProblem:
    """Validated inputs of one EM fit."""

    y: np.ndarray
    design: np.ndarray
    cp: np.ndarray
    X: np.ndarray
    start: EMState
    effect_names: list[str]
    labels: list[str]


def _finite_array(data, name: str, ndim: int) -> np.ndarray:
    try:
        arr = np.asarray(data, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InputError(f"{name} must be numeric: {e}") from None
    if ndim == 2 and arr.ndim == 1:
        arr = arr.reshape(-1, 1)
    elif ndim == 1 and arr.ndim == 2 and arr.shape[1] == 1:
        arr = np.ravel(arr)
    if arr.ndim != ndim:
        raise InputError(f"{name} must be {ndim}-D, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise InputError(f"{name} contains missing or non-finite values")
    return arr


def check_phenotypes(y, name: str = "y") -> np.ndarray:
    """Phenotype vector: 1-D, finite, at least two values.

    A single (n, 1) column is flattened.
    """
    y = _finite_array(y, name, ndim=1)
    if y.size < 2:
        raise InputError(f"{name} needs at least two phenotype values")
    return y


def check_design(design) -> np.ndarray:
    """Design matrix: (g, e), finite. Contents are otherwise opaque."""
    design = _finite_array(design, "design matrix", ndim=2)
    if design.shape[0] == 0 or design.shape[1] == 0:
        raise InputError(f"design matrix is empty, got shape {design.shape}")
    return design


def check_cp_matrix(cp, n: int, g: int) -> np.ndarray:
    """Conditional probability matrix: (n, g), finite, non-negative."""
    cp = _finite_array(cp, "cp-matrix", ndim=2)
    if cp.shape != (n, g):
        raise InputError(
            f"cp-matrix must have shape ({n}, {g}) to match the phenotypes "
            f"and the design matrix, got {cp.shape}"
        )
    if np.any(cp < 0):
        raise InputError("cp-matrix contains negative probabilities")
    return cp


def check_covariates(X, n: int) -> np.ndarray:
    """Fixed-effect matrix X: (n, p) with full column rank."""
    if X is None:
        return np.ones((n, 1), dtype=np.float64)
    X = _finite_array(X, "X", ndim=2)
    if X.shape[0] != n:
        raise InputError(f"X must have {n} rows, got {X.shape[0]}")
    if np.linalg.matrix_rank(X) < X.shape[1]:
        raise InputError("X must have full column rank")
    return X


def initial_state(
    y: np.ndarray,
    X: np.ndarray,
    n_effects: int,
    effects0=None,
    beta0=None,
    variance0=None,
    y_all: np.ndarray | None = None,
) -> EMState:
    """Starting EM state with defaults filled in.

    Args:
        y: Phenotypes the starting mean is taken from.
        X: Fixed-effect matrix.
        n_effects: Number of design-matrix columns.
        effects0: Starting effects (default zeros).
        beta0: Scalar or per-column starting coefficients (default mean(y)).
        variance0: Starting residual variance (default var(y_all)).
        y_all: Phenotypes the default variance is taken from (default y).

    Raises:
        InputError: On shape mismatches or a non-positive variance.
    """
    if effects0 is None:
        effects = np.zeros(n_effects, dtype=np.float64)
    else:
        effects = _finite_array(effects0, "effects0", ndim=1)
        if effects.size != n_effects:
            raise InputError(
                f"effects0 must have {n_effects} entries, got {effects.size}"
            )

    p = X.shape[1]
    if beta0 is None:
        beta = np.full(p, float(np.mean(y)))
    else:
        beta = _finite_array(np.atleast_1d(beta0), "beta0", ndim=1)
        if beta.size == 1:
            beta = np.full(p, beta[0])
        elif beta.size != p:
            raise InputError(f"beta0 must have 1 or {p} entries, got {beta.size}")

    if variance0 is None:
        source = y if y_all is None else y_all
        variance = float(np.var(source, ddof=1))
    else:
        variance = float(np.asarray(variance0, dtype=np.float64).reshape(-1)[0])
    if not np.isfinite(variance) or variance <= 0:
        raise InputError(f"initial variance must be positive, got {variance!r}")

    return EMState(effects=effects, beta=beta, variance=variance)


def effect_names_for(design: np.ndarray, names=None) -> list[str]:
    """Effect names, defaulting to E1..Ee."""
    if names is None:
        return [f"E{i + 1}" for i in range(design.shape[1])]
    names = [str(n) for n in names]
    if len(names) != design.shape[1]:
        raise InputError(
            f"{len(names)} effect names given for {design.shape[1]} design columns"
        )
    return names


def class_labels_for(g: int, labels=None) -> list[str]:
    """Genotype class labels, defaulting to G1..Gg."""
    if labels is None:
        return [f"G{i + 1}" for i in range(g)]
    labels = [str(lab) for lab in labels]
    if len(labels) != g:
        raise InputError(f"{len(labels)} class labels given for {g} classes")
    return labels


def build_problem(
    design,
    cp,
    y,
    X=None,
    effects0=None,
    beta0=None,
    variance0=None,
    effect_names=None,
    labels=None,
) -> EMProblem:
    """Validate complete-genotyping inputs and fill in defaults."""
    y = check_phenotypes(y)
    design = check_design(design)
    cp = check_cp_matrix(cp, y.size, design.shape[0])
    X = check_covariates(X, y.size)
    start = initial_state(y, X, design.shape[1], effects0, beta0, variance0)
    return EMProblem(
        y=y,
        design=design,
        cp=cp,
        X=X,
        start=start,
        effect_names=effect_names_for(design, effect_names),
        labels=class_labels_for(design.shape[0], labels),
    )
