"""Value types for the EM solvers.

EMState is the working state handed from one iteration to the next; every
step returns a new state, so independent fits never share mutable data.
EMResult is the packaged output of a fit.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass(frozen=True)
class EMState:
    """Parameters of one EM iterate.

    Attributes:
        effects: QTL effect vector E, one entry per design-matrix column.
        beta: Fixed-effect coefficients, one per column of X.
        variance: Residual variance sigma^2.
        posterior: Posterior genotype-class probabilities used to produce
            this iterate (n x g), or None for the starting values.
        iteration: Number of completed updates.
    """

    effects: np.ndarray
    beta: np.ndarray
    variance: float
    posterior: np.ndarray | None = None
    iteration: int = 0

    @property
    def sigma(self) -> float:
        return float(np.sqrt(self.variance))

    def max_change(self, previous: EMState) -> float:
        """Largest absolute change in (effects, variance) from ``previous``."""
        delta = np.concatenate(
            [self.effects - previous.effects, [self.variance - previous.variance]]
        )
        return float(np.max(np.abs(delta)))

    def is_finite(self) -> bool:
        return bool(
            np.all(np.isfinite(self.effects))
            and np.all(np.isfinite(self.beta))
            and np.isfinite(self.variance)
        )


@dataclass
class EMTrace:
    """Per-iteration history of a fit."""

    effects: list[np.ndarray] = field(default_factory=list)
    beta: list[np.ndarray] = field(default_factory=list)
    variance: list[float] = field(default_factory=list)
    log_likelihood: list[float] = field(default_factory=list)

    def record(self, state: EMState, log_likelihood: float) -> None:
        self.effects.append(np.array(state.effects, copy=True))
        self.beta.append(np.array(state.beta, copy=True))
        self.variance.append(float(state.variance))
        self.log_likelihood.append(float(log_likelihood))

    def __len__(self) -> int:
        return len(self.variance)


@dataclass
class EMResult:
    """Result of an EM fit.

    Attributes:
        effects: Estimated QTL effects.
        effect_names: Names of the effects (design-matrix column names).
        beta: Fixed-effect coefficients.
        variance: Residual variance.
        posterior: Posterior genotype-class probabilities (n x g).
        labels: Genotype class labels of the posterior columns.
        log_likelihood: Observed-data log-likelihood of the fitted model.
        lrt: Likelihood ratio statistic against the no-QTL model.
        r2: Proportion of phenotypic variance explained.
        y_hat: Fitted values of the (genotyped) individuals.
        yu_hat: Fitted values of ungenotyped individuals (models f and p).
        iteration: Number of EM updates performed.
        converged: Whether the stopping criterion was met.
        model: Name of the genotyping model that was fitted.
        qtl: QTL table in the order used for the fit.
        trace: Per-iteration history.
    """

    effects: np.ndarray
    effect_names: list[str]
    beta: np.ndarray
    variance: float
    posterior: np.ndarray
    labels: list[str]
    log_likelihood: float
    lrt: float
    r2: float
    y_hat: np.ndarray
    iteration: int
    converged: bool
    yu_hat: np.ndarray | None = None
    model: str = "complete genotyping model"
    qtl: np.ndarray | None = None
    trace: EMTrace | None = None

    @property
    def effects_by_name(self) -> dict[str, float]:
        """Effects keyed by effect name."""
        return {
            name: float(value) for name, value in zip(self.effect_names, self.effects)
        }

    def summary(self) -> dict:
        """Scalar summary, suitable for logging or a results table."""
        return {
            "model": self.model,
            **self.effects_by_name,
            "variance": self.variance,
            "log_likelihood": self.log_likelihood,
            "lrt": self.lrt,
            "r2": self.r2,
            "iteration": self.iteration,
            "converged": self.converged,
        }
