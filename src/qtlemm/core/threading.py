"""BLAS thread limits for EM fits.

An EM iteration is a few dense products of size n x 3^q, so for the
sample sizes of QTL experiments a multi-threaded BLAS spends more time
waking threads than multiplying. Batches of QTL-set fits therefore run
single-threaded unless QTLEMM_BLAS_THREADS says otherwise; a single large
fit may use the physical cores.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager

import psutil
from loguru import logger
from threadpoolctl import threadpool_limits


def _env_thread_count(max_threads: int) -> int | None:
    value = os.environ.get("QTLEMM_BLAS_THREADS")
    if value is None:
        return None
    try:
        n = int(value)
    except ValueError:
        logger.warning(
            f"QTLEMM_BLAS_THREADS={value!r} is not a valid integer; ignoring it"
        )
        return None
    return max(1, min(n, max_threads))


def get_blas_thread_count(n_fits: int = 1) -> int:
    """Number of BLAS threads for a run of ``n_fits`` EM fits.

    Priority:
    1. QTLEMM_BLAS_THREADS (clamped to [1, os.cpu_count()])
    2. 1 for batches (n_fits > 1)
    3. Physical core count via psutil for a single fit

    Args:
        n_fits: Number of fits the limit will cover.

    Returns:
        Positive thread count.
    """
    max_threads = os.cpu_count() or 64
    n = _env_thread_count(max_threads)
    if n is not None:
        source = "QTLEMM_BLAS_THREADS"
    elif n_fits > 1:
        n, source = 1, f"batch of {n_fits} fits"
    else:
        n = max(1, min(psutil.cpu_count(logical=False) or max_threads, max_threads))
        source = "physical core count"
    logger.debug(f"BLAS threads: {n} ({source})")
    return n


@contextmanager
def blas_threads(
    n_threads: int | None = None, n_fits: int = 1
) -> Generator[None, None, None]:
    """Limit the BLAS thread pool for the duration of the block.

    Args:
        n_threads: Thread cap. None uses get_blas_thread_count(n_fits).
        n_fits: Number of fits run inside the block.

    Example:
        >>> with blas_threads(n_fits=len(qtl_sets)):
        ...     results = [em_mim2(qtl, marker, geno, D, y) for qtl in qtl_sets]
    """
    if n_threads is None:
        n_threads = get_blas_thread_count(n_fits)
    with threadpool_limits(limits=n_threads, user_api="blas"):
        yield
