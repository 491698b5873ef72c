"""E-step backend detection and dispatch.

QTLEMM supports two backends for the per-iteration posterior and
observed-data likelihood computations:

- numpy: Plain NumPy/SciPy evaluation. Default; lowest overhead for the
  sample sizes typical of QTL experiments.

- jax: JIT-compiled JAX kernels (64-bit). Useful when the number of
  genotype classes (3^q for q QTLs) times the sample size gets large.

Backend selection is automatic (preferring numpy) but can be overridden
via the QTLEMM_BACKEND environment variable.
"""

import os
from functools import cache
from typing import Literal

from loguru import logger

from qtlemm.errors import ConfigurationError

Backend = Literal["numpy", "jax"]

BACKEND_ALIASES: dict[str, str] = {
    "np": "numpy",
    "jax.numpy": "jax",
}


def normalize_backend_name(value: str) -> str:
    """Normalize backend name to canonical form.

    Handles case-insensitivity, whitespace and short aliases.

    Args:
        value: Backend name from user input or environment.

    Returns:
        Normalized backend name.

    Examples:
        >>> normalize_backend_name(" NumPy ")
        'numpy'
        >>> normalize_backend_name("jax.numpy")
        'jax'
    """
    normalized = value.lower().strip()
    return BACKEND_ALIASES.get(normalized, normalized)


@cache
def get_compute_backend() -> Backend:
    """Detect the compute backend for the EM E-step.

    Priority:
    1. QTLEMM_BACKEND environment variable override
       ('numpy', 'jax' or 'auto')
    2. Auto-selection: numpy

    Returns:
        Backend identifier ('numpy' or 'jax').

    Raises:
        ConfigurationError: If QTLEMM_BACKEND names an unknown backend.

    Examples:
        >>> import os
        >>> os.environ["QTLEMM_BACKEND"] = "jax"
        >>> get_compute_backend.cache_clear()
        >>> get_compute_backend()
        'jax'
    """
    override = os.environ.get("QTLEMM_BACKEND", "").strip()
    if override:
        override = normalize_backend_name(override)
        if override in ("numpy", "jax"):
            logger.debug(f"Backend override via QTLEMM_BACKEND={override}")
            return override
        if override != "auto":
            raise ConfigurationError(
                f"Unknown backend {override!r} in QTLEMM_BACKEND; "
                "use 'numpy', 'jax' or 'auto'."
            )

    logger.debug("Using numpy backend (default)")
    return "numpy"


def _has_gpu() -> bool:
    """Check if a GPU is available via JAX.

    Returns:
        True if JAX can access a GPU, False otherwise.
    """
    try:
        import jax

        devices = jax.devices()
        return any(d.platform in ("gpu", "cuda", "rocm") for d in devices)
    except ImportError:
        logger.debug("JAX not installed, no GPU support")
        return False
    except RuntimeError as e:
        logger.debug(f"Error checking for GPU: {e}")
        return False


def get_backend_info() -> dict:
    """Get information about backend selection.

    Returns:
        Dictionary with keys:
        - selected: Currently selected backend ('numpy' or 'jax')
        - gpu_available: True if JAX can access a GPU
        - override: Value of QTLEMM_BACKEND env var, or None
    """
    return {
        "selected": get_compute_backend(),
        "gpu_available": _has_gpu(),
        "override": os.environ.get("QTLEMM_BACKEND", None),
    }
