"""QTLEMM: QTL multiple interval mapping by EM.

QTLEMM estimates the effects of several quantitative trait loci at once.
Conditional QTL genotype probabilities are built from flanking markers for
backcross, recombinant inbred and advanced intercross populations, and the
QTL effects are fitted by an EM algorithm over the unobserved genotypes.

Key features:
- Q-matrices and cp-matrices for BC, RI and AI populations of any generation
- Complete genotyping model plus three selective genotyping models
- Likelihood ratio statistic and R2 for each fit

Example:
    >>> from qtlemm import em_mim, q_make
    >>> q = q_make(qtl, marker, geno, population="RI", ng=2)
    >>> result = em_mim(design, q.cp_matrix, y)
    >>> print(result.effects_by_name, result.lrt)
"""

import sys
from importlib.metadata import version

from loguru import logger

__version__ = version("qtlemm")

# Configure loguru with sensible defaults on import
# Users can override by calling logger.remove()/add()
logger.remove()  # Remove default handler
logger.add(
    sys.stdout,
    level="INFO",
    format="{time:HH:mm:ss} | <level>{level: <8}</level> | {message}",
    colorize=True,
)

from qtlemm.core.config import EMConfig  # noqa: E402
from qtlemm.em import EMResult, em_mim, em_mim2  # noqa: E402
from qtlemm.errors import (  # noqa: E402
    ConfigurationError,
    ConvergenceFailure,
    InputError,
    QTLEMMError,
)
from qtlemm.genetics import QMatrixResult, q_make  # noqa: E402

__all__ = [
    "ConfigurationError",
    "ConvergenceFailure",
    "EMConfig",
    "EMResult",
    "InputError",
    "QMatrixResult",
    "QTLEMMError",
    "__version__",
    "em_mim",
    "em_mim2",
    "q_make",
]
