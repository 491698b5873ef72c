"""JAX configuration for the optional E-step backend.

The JAX posterior and likelihood kernels must run in 64-bit precision to
agree with the NumPy path, so configure_jax() is called when
qtlemm.em.likelihood_jax is imported, and verify_jax_installation() runs
once the first time the backend is selected.
"""

from __future__ import annotations

from typing import Any

import jax
import numpy as np
from loguru import logger


def configure_jax(enable_x64: bool = True) -> None:
    """Enable (or disable) JAX 64-bit floating point.

    Args:
        enable_x64: Enable 64-bit precision. Defaults to True.
    """
    if jax.config.jax_enable_x64 != enable_x64:
        jax.config.update("jax_enable_x64", enable_x64)
    info = get_jax_info()
    logger.debug(
        f"JAX configured: version={info['version']}, backend={info['backend']}, "
        f"x64={info['x64_enabled']}"
    )


def get_jax_info() -> dict[str, Any]:
    """Version, default device platform, devices and x64 flag of JAX."""
    return {
        "version": jax.__version__,
        "backend": jax.default_backend(),
        "devices": [str(d) for d in jax.devices()],
        "x64_enabled": bool(jax.config.jax_enable_x64),
    }


def verify_jax_installation() -> bool:
    """Check that the JAX E-step kernels run and agree with NumPy.

    Evaluates both posterior kernels on a three-individual, two-class
    problem whose last row underflows, so the uniform fallback is
    exercised as well.

    Returns:
        True if verification succeeds.

    Raises:
        RuntimeError: If the kernels fail to run, do not return float64,
            or disagree.
    """
    from qtlemm.em.likelihood import posterior
    from qtlemm.em.likelihood_jax import posterior_jax

    cp = np.array([[0.5, 0.5], [0.9, 0.1], [1.0, 0.0]])
    y = np.array([0.2, -1.0, 1e4])
    means = np.array([[1.0, -1.0]] * 3)
    try:
        result = posterior_jax(cp, y, means, 1.0)
    except Exception as e:
        error_msg = f"JAX verification failed: {type(e).__name__}: {e}"
        logger.error(error_msg)
        raise RuntimeError(error_msg) from e

    expected = posterior(cp, y, means, 1.0)
    problem = None
    if result.dtype != np.float64:
        problem = f"expected float64 posterior, got {result.dtype}"
    elif not np.allclose(result, expected, rtol=1e-10, atol=1e-12):
        problem = f"posterior mismatch: {result.tolist()} vs {expected.tolist()}"
    if problem is not None:
        logger.error(f"JAX verification failed: {problem}")
        raise RuntimeError(f"JAX verification failed: {problem}")

    logger.debug("JAX installation verified: E-step kernels agree with NumPy")
    return True
