"""Configuration dataclasses for QTLEMM.

This module contains dataclasses that configure the EM solvers and the
output side of the command-line interface.
"""

import numbers
from dataclasses import dataclass, field
from pathlib import Path

from qtlemm.errors import ConfigurationError


@dataclass
class EMConfig:
    """Stopping rules and failure policy for the EM solvers.

    Attributes:
        crit: Convergence criterion. Iteration stops once the largest
            absolute change across the monitored parameters falls below
            this value. Must lie strictly between 0 and 1.
        stop: Iteration ceiling. Reaching it without meeting ``crit`` is
            treated as a convergence failure. Must be a positive integer.
        strict: Failure policy. If True, a run that fails to converge
            returns zeroed estimates (log-likelihood -inf, LRT and R2 0);
            if False, the last iterate is returned. A ConvergenceFailure
            warning is emitted either way.
    """

    crit: float = 1e-5
    stop: int = 1000
    strict: bool = True

    def validate(self) -> "EMConfig":
        """Check ``crit`` and ``stop``.

        Returns:
            self, so the call can be chained.

        Raises:
            ConfigurationError: If crit is outside (0, 1) or stop is not a
                positive integer.
        """
        if (
            isinstance(self.crit, bool)
            or not isinstance(self.crit, numbers.Real)
            or not 0.0 < float(self.crit) < 1.0
        ):
            raise ConfigurationError(
                f"crit must be a number strictly between 0 and 1, got {self.crit!r}"
            )
        if (
            isinstance(self.stop, bool)
            or not isinstance(self.stop, numbers.Integral)
            or self.stop < 1
        ):
            raise ConfigurationError(
                f"stop must be a positive integer, got {self.stop!r}"
            )
        return self


@dataclass
class OutputConfig:
    """Configuration for output files and directories.

    Attributes:
        outdir: Output directory for result files. Created if it doesn't exist.
        prefix: Prefix for output filenames (e.g., "result" produces "result.log.txt").
        verbose: Enable verbose/debug output to console.
    """

    outdir: Path = field(default_factory=lambda: Path("output"))
    prefix: str = "result"
    verbose: bool = False

    @property
    def log_path(self) -> Path:
        """Path to the run log file.

        Returns:
            Path to {outdir}/{prefix}.log.txt
        """
        return self.outdir / f"{self.prefix}.log.txt"

    def path_for(self, suffix: str) -> Path:
        """Path to an output file with the given suffix.

        Args:
            suffix: File suffix without the leading dot (e.g. "cp.txt").

        Returns:
            Path to {outdir}/{prefix}.{suffix}
        """
        return self.outdir / f"{self.prefix}.{suffix}"

    def ensure_outdir(self) -> None:
        """Create output directory if it doesn't exist."""
        self.outdir.mkdir(parents=True, exist_ok=True)
