"""Multiple interval mapping by EM: complete genotyping model.

Each round runs one E-step and one M-step:

1. E-step: posterior genotype-class probabilities Pi from the prior
   weights cp and the current class means mu = X beta + D E (rows that
   underflow to zero become uniform).
2. M-step: a coordinate-style update of the effects,
   E_new = r - M E, where V = D' diag(colsum Pi) D, r holds the
   per-effect weighted regressions (y - X beta)' Pi D / diag(V), and
   M = V / diag(V) with a zero diagonal; then beta by least squares on
   y - Pi D E_new, and sigma^2 from the residual sum of squares plus the
   quadratic form E' V E.

The loop is shared by the complete model and the mixing-proportion models
of selective genotyping, which only swap the prior weights and phenotypes.

Reference: Kao, Zeng & Teasdale (1999) Genetics 152:1203-1216.
"""

from __future__ import annotations

import warnings
from collections.abc import Callable
from dataclasses import replace
from functools import cache

import numpy as np
from loguru import logger

from qtlemm.core.backend import get_compute_backend, normalize_backend_name
from qtlemm.core.config import EMConfig
from qtlemm.em.likelihood import (
    class_means,
    log_likelihood,
    null_log_likelihood,
    posterior,
)
from qtlemm.em.state import EMResult, EMState, EMTrace
from qtlemm.em.validate import build_problem
from qtlemm.errors import ConfigurationError, ConvergenceFailure

Kernel = Callable[[np.ndarray, np.ndarray, np.ndarray, float], np.ndarray]


@cache
def _jax_kernels() -> tuple[Kernel, Callable]:
    from qtlemm.core.jax_config import verify_jax_installation
    from qtlemm.em.likelihood_jax import log_likelihood_jax, posterior_jax

    verify_jax_installation()
    return posterior_jax, log_likelihood_jax


def e_step_kernels(backend: str | None = None) -> tuple[Kernel, Callable]:
    """Posterior and log-likelihood functions for the selected backend.

    Raises:
        ConfigurationError: If ``backend`` is not "numpy" or "jax".
    """
    backend = normalize_backend_name(backend) if backend else get_compute_backend()
    if backend == "jax":
        return _jax_kernels()
    if backend != "numpy":
        raise ConfigurationError(
            f"Unknown backend {backend!r}; use 'numpy' or 'jax'."
        )
    return posterior, log_likelihood


def m_step(
    y: np.ndarray,
    X: np.ndarray,
    design: np.ndarray,
    post: np.ndarray,
    state: EMState,
) -> EMState:
    """One M-step from posterior ``post`` computed at ``state``.

    Returns:
        The next EMState. Degenerate inputs (an effect with zero weight)
        propagate as NaN and are caught by the caller.
    """
    n = y.shape[0]
    PD = post @ design
    V = design.T @ (post.sum(axis=0)[:, None] * design)
    diag = np.diag(V)
    with np.errstate(divide="ignore", invalid="ignore"):
        r = ((y - X @ state.beta) @ PD) / diag
        M = V / diag[:, None]
    np.fill_diagonal(M, 0.0)
    effects = r - M @ state.effects

    beta = np.linalg.solve(X.T @ X, X.T @ (y - PD @ effects))
    res = y - X @ beta
    variance = (res @ res - 2.0 * res @ (PD @ effects) + effects @ V @ effects) / n
    return EMState(
        effects=effects,
        beta=beta,
        variance=float(variance),
        posterior=post,
        iteration=state.iteration + 1,
    )


def _log_iteration(state: EMState) -> None:
    logger.debug(
        f"EM iteration {state.iteration}: variance={state.variance:.3f} "
        f"effects={np.round(state.effects, 3).tolist()}"
    )


def run_em(
    y: np.ndarray,
    X: np.ndarray,
    design: np.ndarray,
    cp: np.ndarray,
    start: EMState,
    config: EMConfig,
    backend: str | None = None,
) -> tuple[EMState, bool, EMTrace]:
    """Iterate E/M steps until the largest change in (E, sigma^2) < crit.

    An update with non-finite values (or a non-positive variance) stops the
    loop; the previous iterate is kept and the fit counts as not converged.

    Returns:
        Tuple of (final state, converged flag, trace).
    """
    posterior_fn, loglik_fn = e_step_kernels(backend)
    state = start
    trace = EMTrace()
    converged = False

    for _ in range(config.stop):
        means = class_means(design, state.effects, X @ state.beta)
        post = posterior_fn(cp, y, means, state.sigma)
        new = m_step(y, X, design, post, state)
        if not new.is_finite() or new.variance <= 0:
            logger.warning(
                f"EM update {new.iteration} produced invalid values; "
                "keeping the previous iterate"
            )
            break

        new_means = class_means(design, new.effects, X @ new.beta)
        trace.record(new, loglik_fn(cp, y, new_means, new.sigma))
        _log_iteration(new)

        change = new.max_change(state)
        state = new
        if change < config.crit:
            converged = True
            break

    return state, converged, trace


def apply_failure_policy(result: EMResult, config: EMConfig) -> EMResult:
    """Handle a fit that did not converge.

    Strict mode zeroes the estimates (log-likelihood -inf, LRT and R^2 0);
    lenient mode keeps the last iterate. A ConvergenceFailure warning is
    emitted in both cases. Converged results pass through unchanged.
    """
    if result.converged:
        return result

    message = (
        f"EM algorithm failed to converge within {config.stop} iterations "
        f"(crit={config.crit:g}); check the input data or adjust the "
        "convergence and stopping criteria"
    )
    logger.warning(message)
    warnings.warn(message, ConvergenceFailure, stacklevel=3)

    if not config.strict:
        return result
    return replace(
        result,
        effects=np.zeros_like(result.effects),
        beta=np.zeros_like(result.beta),
        variance=0.0,
        posterior=np.zeros_like(result.posterior),
        log_likelihood=-np.inf,
        lrt=0.0,
        r2=0.0,
    )


def fitted_values(
    post: np.ndarray, design: np.ndarray, state: EMState, X: np.ndarray
) -> np.ndarray:
    """Posterior-weighted fitted values Pi D E + X beta."""
    return post @ design @ state.effects + X @ state.beta


def em_mim(
    design,
    cp,
    y,
    X=None,
    effects0=None,
    beta0=None,
    variance0=None,
    config: EMConfig | None = None,
    effect_names=None,
    labels=None,
    backend: str | None = None,
) -> EMResult:
    """Fit the complete genotyping MIM model by EM.

    Args:
        design: (g, e) design matrix of QTL effect contrasts; row c holds
            the effect coefficients of genotype class c.
        cp: (n, g) conditional probabilities of the genotype classes.
        y: (n,) phenotypes; an (n, 1) column is flattened.
        X: Optional (n, p) fixed-effect matrix (default: intercept).
        effects0: Starting effects (default zeros).
        beta0: Starting fixed-effect coefficients (default mean(y)).
        variance0: Starting residual variance (default var(y)).
        config: Stopping rules and failure policy.
        effect_names: Names of the design-matrix columns.
        labels: Genotype class labels of the cp-matrix columns.
        backend: "numpy" or "jax" for the E-step (default from
            QTLEMM_BACKEND).

    Returns:
        EMResult with model "complete genotyping model".

    Raises:
        InputError: On malformed inputs.
        ConfigurationError: On invalid ``crit`` or ``stop``.
    """
    config = (config or EMConfig()).validate()
    problem = build_problem(
        design, cp, y, X, effects0, beta0, variance0, effect_names, labels
    )
    y, X, D, cp = problem.y, problem.X, problem.design, problem.cp

    state, converged, trace = run_em(y, X, D, cp, problem.start, config, backend)

    posterior_fn, loglik_fn = e_step_kernels(backend)
    Xb = X @ state.beta
    means = class_means(D, state.effects, Xb)
    post = posterior_fn(cp, y, means, state.sigma)
    L1 = loglik_fn(cp, y, means, state.sigma)
    L0 = null_log_likelihood(cp, y, float(np.mean(Xb)), state.sigma)
    y_hat = fitted_values(post, D, state, X)

    result = EMResult(
        effects=state.effects,
        effect_names=problem.effect_names,
        beta=state.beta,
        variance=state.variance,
        posterior=post,
        labels=problem.labels,
        log_likelihood=L1,
        lrt=2.0 * (L1 - L0),
        r2=float(np.var(y_hat, ddof=1) / np.var(y, ddof=1)),
        y_hat=y_hat,
        iteration=state.iteration,
        converged=converged,
        trace=trace,
    )
    logger.info(
        f"EM finished after {state.iteration} iterations "
        f"(converged={converged}): LRT={result.lrt:.3f}, R2={result.r2:.3f}"
    )
    return apply_failure_policy(result, config)
