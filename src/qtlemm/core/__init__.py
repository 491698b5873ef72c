"""Core infrastructure for QTLEMM.

This package contains configuration and runtime plumbing:
- config: EM and output configuration dataclasses
- backend: E-step backend selection (numpy or jax)
- jax_config: JAX configuration and verification
- progress: progress display for batches of QTL-set fits
- threading: scoped BLAS thread limits
"""

from qtlemm.core.backend import get_backend_info, get_compute_backend
from qtlemm.core.config import EMConfig, OutputConfig
from qtlemm.core.jax_config import (
    configure_jax,
    get_jax_info,
    verify_jax_installation,
)

__all__ = [
    "EMConfig",
    "OutputConfig",
    "configure_jax",
    "get_backend_info",
    "get_compute_backend",
    "get_jax_info",
    "verify_jax_installation",
]
