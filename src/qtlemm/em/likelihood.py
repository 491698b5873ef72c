"""Normal-mixture likelihood terms for the EM solvers (NumPy backend).

Each individual i belongs to one of g genotype classes with prior weight
cp[i, c] (conditional probability from marker data or a mixing
proportion). Given class means mu[i, c] = X[i] beta + D[c] E and a common
residual sigma, the phenotype density is the mixture

    f(y_i) = sum_c cp[i, c] * N(y_i; mu[i, c], sigma).

The truncated variant divides every component by U = 1 + Phi(tauL) -
Phi(tauR), the probability mass outside the unselected interval [tL, tR].
"""

from __future__ import annotations

import numpy as np
from scipy.stats import norm


def class_means(
    design: np.ndarray, effects: np.ndarray, Xb: np.ndarray
) -> np.ndarray:
    """Per-individual, per-class means mu[i, c] = Xb[i] + D[c] . E."""
    return Xb[:, None] + (design @ effects)[None, :]


def uniform_fallback(weights: np.ndarray) -> np.ndarray:
    """Normalize rows; rows with zero total become uniform 1/g."""
    totals = weights.sum(axis=1, keepdims=True)
    g = weights.shape[1]
    zero = totals[:, 0] <= 0.0
    out = np.empty_like(weights)
    out[~zero] = weights[~zero] / totals[~zero]
    out[zero] = 1.0 / g
    return out


def posterior(
    cp: np.ndarray, y: np.ndarray, means: np.ndarray, sigma: float
) -> np.ndarray:
    """E-step: posterior class probabilities Pi[i, c] ∝ cp[i, c] N(y_i; mu, sigma).

    Rows whose unnormalized total underflows to zero are replaced by the
    uniform distribution over classes.
    """
    weights = cp * norm.pdf(y[:, None], loc=means, scale=sigma)
    return uniform_fallback(weights)


def log_likelihood(
    cp: np.ndarray, y: np.ndarray, means: np.ndarray, sigma: float
) -> float:
    """Observed-data log-likelihood sum_i log sum_c cp N(y_i; mu[i, c], sigma)."""
    dens = cp * norm.pdf(y[:, None], loc=means, scale=sigma)
    with np.errstate(divide="ignore"):
        return float(np.sum(np.log(dens.sum(axis=1))))


def null_log_likelihood(
    cp: np.ndarray, y: np.ndarray, mean: float, sigma: float
) -> float:
    """Log-likelihood with every class sharing the mean ``mean`` (no QTL)."""
    dens = cp.sum(axis=1) * norm.pdf(y, loc=mean, scale=sigma)
    with np.errstate(divide="ignore"):
        return float(np.sum(np.log(dens)))


def truncation_terms(
    tl: float, tr: float, means: np.ndarray, sigma: float
) -> dict[str, np.ndarray]:
    """Standardized bounds and hazard terms of the truncated normal.

    Returns:
        Dict with keys ``tau_l``, ``tau_r``, ``U`` (selected mass),
        ``amy`` = (phi(tauL) - phi(tauR)) / U and
        ``bob`` = (tauL phi(tauL) - tauR phi(tauR)) / U, all shaped like
        ``means``.
    """
    tau_l = (tl - means) / sigma
    tau_r = (tr - means) / sigma
    U = 1.0 + norm.cdf(tau_l) - norm.cdf(tau_r)
    phi_l, phi_r = norm.pdf(tau_l), norm.pdf(tau_r)
    return {
        "tau_l": tau_l,
        "tau_r": tau_r,
        "U": U,
        "amy": (phi_l - phi_r) / U,
        "bob": (tau_l * phi_l - tau_r * phi_r) / U,
    }


def truncated_weights(
    cp: np.ndarray, y: np.ndarray, means: np.ndarray, sigma: float, U: np.ndarray
) -> np.ndarray:
    """Unnormalized truncated mixture components cp N(y; mu, sigma) / U."""
    return cp * norm.pdf(y[:, None], loc=means, scale=sigma) / U


def truncated_log_likelihood(
    cp: np.ndarray,
    y: np.ndarray,
    means: np.ndarray,
    sigma: float,
    tl: float,
    tr: float,
) -> float:
    """Log-likelihood of selectively genotyped phenotypes under truncation."""
    U = truncation_terms(tl, tr, means, sigma)["U"]
    dens = truncated_weights(cp, y, means, sigma, U)
    with np.errstate(divide="ignore"):
        return float(np.sum(np.log(dens.sum(axis=1))))


def truncated_null_objective(
    theta: np.ndarray, y: np.ndarray, tl: float, tr: float
) -> float:
    """Negative truncated-normal log-likelihood of (mean, sigma), no QTL.

    Returns +inf for non-positive sigma so a simplex search stays in the
    admissible region.
    """
    mu, sigma = float(theta[0]), float(theta[1])
    if not sigma > 0.0:
        return np.inf
    U = 1.0 + norm.cdf((tl - mu) / sigma) - norm.cdf((tr - mu) / sigma)
    with np.errstate(divide="ignore"):
        value = -np.sum(np.log(norm.pdf(y, loc=mu, scale=sigma) / U))
    return float(value) if np.isfinite(value) else np.inf
