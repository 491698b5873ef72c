"""JAX-compiled E-step kernels.

JIT-compiled counterparts of the NumPy posterior and log-likelihood in
qtlemm.em.likelihood, selected with QTLEMM_BACKEND=jax. They follow the same
zero-row policy (uniform 1/g) and run in 64-bit precision, so both backends
agree to floating tolerance.

Type annotations use jaxtyping for shape documentation:
    n = individuals, g = genotype classes
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import jax.numpy as jnp
import numpy as np
from jax import jit
from jax.scipy.stats import norm

from qtlemm.core.jax_config import configure_jax

# Ensure 64-bit precision
configure_jax(enable_x64=True)

if TYPE_CHECKING:
    from jaxtyping import Array, Float


@jit
def _posterior(
    cp: Float[Array, "n g"],
    y: Float[Array, " n"],
    means: Float[Array, "n g"],
    sigma: float,
) -> Float[Array, "n g"]:
    weights = cp * norm.pdf(y[:, None], loc=means, scale=sigma)
    totals = weights.sum(axis=1, keepdims=True)
    g = weights.shape[1]
    safe = jnp.where(totals > 0.0, totals, 1.0)
    return jnp.where(totals > 0.0, weights / safe, 1.0 / g)


@jit
def _log_likelihood(
    cp: Float[Array, "n g"],
    y: Float[Array, " n"],
    means: Float[Array, "n g"],
    sigma: float,
) -> float:
    dens = cp * norm.pdf(y[:, None], loc=means, scale=sigma)
    return jnp.sum(jnp.log(dens.sum(axis=1)))


def posterior_jax(
    cp: np.ndarray, y: np.ndarray, means: np.ndarray, sigma: float
) -> np.ndarray:
    """Posterior class probabilities (JAX), returned as a NumPy array."""
    return np.asarray(
        _posterior(jnp.asarray(cp), jnp.asarray(y), jnp.asarray(means), sigma)
    )


def log_likelihood_jax(
    cp: np.ndarray, y: np.ndarray, means: np.ndarray, sigma: float
) -> float:
    """Observed-data mixture log-likelihood (JAX)."""
    return float(
        _log_likelihood(jnp.asarray(cp), jnp.asarray(y), jnp.asarray(means), sigma)
    )
