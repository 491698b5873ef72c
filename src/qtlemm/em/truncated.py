"""Truncated-likelihood model of selective genotyping (model "t").

Genotyped phenotypes are treated as draws from a normal mixture truncated
to the tails outside [tL, tR]: every component density is divided by
U = 1 + Phi(tauL) - Phi(tauR), tau = (t - mu) / sigma. The M-step of the
complete model is corrected with the hazard terms

    Amy = (phi(tauL) - phi(tauR)) / U
    Bob = (tauL phi(tauL) - tauR phi(tauR)) / U

in the effect, mean and variance updates. The no-QTL likelihood has no
closed form and is maximised over (mean, sigma) with Nelder-Mead.

When the iteration ceiling is reached without convergence the estimates
oscillate rather than drift, so the reported estimate is the average of
the last min(120, stop) iterates.
"""

from __future__ import annotations

import numpy as np
from loguru import logger
from scipy.optimize import minimize

from qtlemm.core.config import EMConfig
from qtlemm.em.likelihood import (
    class_means,
    truncated_log_likelihood,
    truncated_null_objective,
    truncated_weights,
    truncation_terms,
    uniform_fallback,
)
from qtlemm.em.mim import apply_failure_policy, fitted_values
from qtlemm.em.state import EMResult, EMState, EMTrace
from qtlemm.em.validate import (
    check_covariates,
    check_cp_matrix,
    check_design,
    check_phenotypes,
    class_labels_for,
    effect_names_for,
    initial_state,
)
from qtlemm.errors import ConfigurationError

STAGNATION_WINDOW = 120
NULL_MAXITER = 3000


def fit_truncated_null(
    ys: np.ndarray, tl: float, tr: float, start: tuple[float, float]
) -> float:
    """Maximised no-QTL truncated log-likelihood (Nelder-Mead on mean, sigma)."""
    res = minimize(
        truncated_null_objective,
        np.asarray(start, dtype=np.float64),
        args=(ys, tl, tr),
        method="Nelder-Mead",
        options={"maxiter": NULL_MAXITER},
    )
    if not res.success:
        logger.warning(f"Truncated null model fit: {res.message}")
    return -float(res.fun)


def truncated_step(
    ys: np.ndarray,
    X: np.ndarray,
    design: np.ndarray,
    cp: np.ndarray,
    tl: float,
    tr: float,
    state: EMState,
) -> EMState | None:
    """One E/M round of the truncated model.

    Returns:
        The next state, or None if the E-step produced NaN.
    """
    sigma = state.sigma
    means = class_means(design, state.effects, X @ state.beta)
    terms = truncation_terms(tl, tr, means, sigma)
    weights = truncated_weights(cp, ys, means, sigma, terms["U"])
    if np.isnan(weights).any():
        return None
    post = uniform_fallback(weights)

    PD = post @ design
    V = design.T @ (post.sum(axis=0)[:, None] * design)
    diag = np.diag(V)
    class_resid = (ys - X @ state.beta) @ post
    class_resid += sigma * (post * terms["amy"]).sum(axis=0)
    with np.errstate(divide="ignore", invalid="ignore"):
        r = (class_resid @ design) / diag
        M = V / diag[:, None]
    np.fill_diagonal(M, 0.0)
    effects = r - M @ state.effects

    shift = sigma * (post * terms["amy"]).sum(axis=1)
    beta = np.linalg.solve(X.T @ X, X.T @ (ys - PD @ effects + shift))
    res = ys - X @ beta
    with np.errstate(divide="ignore", invalid="ignore"):
        variance = (
            res @ res - 2.0 * res @ (PD @ effects) + effects @ V @ effects
        ) / (ys.shape[0] - np.sum(post * terms["bob"]))
    return EMState(
        effects=effects,
        beta=beta,
        variance=float(variance),
        posterior=post,
        iteration=state.iteration + 1,
    )


def _max_change(new: EMState, old: EMState) -> float:
    delta = np.concatenate(
        [new.effects - old.effects, new.beta - old.beta, [new.sigma - old.sigma]]
    )
    return float(np.max(np.abs(delta)))


def _average_tail(trace: EMTrace, state: EMState, window: int) -> EMState:
    """Average of the last ``window`` iterates (sigma averaged on its own scale)."""
    effects = np.mean(trace.effects[-window:], axis=0)
    beta = np.mean(trace.beta[-window:], axis=0)
    sigma = float(np.mean(np.sqrt(trace.variance[-window:])))
    logger.debug(f"Averaging the last {window} iterates of the truncated model")
    return EMState(
        effects=effects,
        beta=beta,
        variance=sigma**2,
        posterior=state.posterior,
        iteration=state.iteration,
    )


def em_truncated(
    design,
    cp,
    ys,
    tl: float,
    tr: float,
    X=None,
    effects0=None,
    beta0=None,
    variance0=None,
    config: EMConfig | None = None,
    y_all=None,
    effect_names=None,
    labels=None,
) -> EMResult:
    """Fit the truncated model of selective genotyping.

    Args:
        design: (g, e) design matrix.
        cp: (n_s, g) cp-matrix of the genotyped individuals.
        ys: (n_s,) phenotypes of the genotyped individuals.
        tl: Lower truncation bound.
        tr: Upper truncation bound.
        X: Optional (n_s, p) fixed-effect matrix (default: intercept).
        effects0: Starting effects (default zeros).
        beta0: Starting coefficients (default mean of ``y_all``).
        variance0: Starting variance (default variance of ``y_all``).
        config: Stopping rules and failure policy.
        y_all: All phenotypes, genotyped and not, used for the starting
            values (default ``ys``).
        effect_names: Names of the design-matrix columns.
        labels: Genotype class labels.

    Returns:
        EMResult with model "truncated model of selective genotyping".

    Raises:
        InputError: On malformed inputs.
        ConfigurationError: If tl > tr or crit/stop are invalid.
    """
    config = (config or EMConfig()).validate()
    ys = check_phenotypes(ys, "y")
    y_all = ys if y_all is None else check_phenotypes(y_all, "y_all")
    if not (np.isfinite(tl) and np.isfinite(tr)) or tl > tr:
        raise ConfigurationError(
            f"truncation bounds must satisfy tL <= tR, got tL={tl!r}, tR={tr!r}"
        )
    D = check_design(design)
    cp = check_cp_matrix(cp, ys.size, D.shape[0])
    X = check_covariates(X, ys.size)
    if beta0 is None:
        beta0 = float(np.mean(y_all))
    start = initial_state(
        ys, X, D.shape[1], effects0, beta0, variance0, y_all=y_all
    )

    LL0 = fit_truncated_null(
        ys, tl, tr, (float(np.mean(y_all)), float(np.std(y_all, ddof=1)))
    )

    state = start
    trace = EMTrace()
    converged = False
    for _ in range(config.stop):
        new = truncated_step(ys, X, D, cp, tl, tr, state)
        if new is None or not new.is_finite() or new.variance <= 0:
            logger.warning(
                f"Truncated EM update {state.iteration + 1} produced invalid "
                "values; keeping the previous iterate"
            )
            break
        means = class_means(D, new.effects, X @ new.beta)
        trace.record(
            new, truncated_log_likelihood(cp, ys, means, new.sigma, tl, tr)
        )
        logger.debug(
            f"EM iteration {new.iteration}: variance={new.variance:.3f} "
            f"effects={np.round(new.effects, 3).tolist()}"
        )
        change = _max_change(new, state)
        state = new
        if change < config.crit:
            converged = True
            break

    if not converged and state.iteration == config.stop:
        state = _average_tail(
            trace, state, min(STAGNATION_WINDOW, config.stop)
        )

    means = class_means(D, state.effects, X @ state.beta)
    terms = truncation_terms(tl, tr, means, state.sigma)
    post = uniform_fallback(truncated_weights(cp, ys, means, state.sigma, terms["U"]))
    LL1 = truncated_log_likelihood(cp, ys, means, state.sigma, tl, tr)
    y_hat = fitted_values(post, D, state, X)

    result = EMResult(
        effects=state.effects,
        effect_names=effect_names_for(D, effect_names),
        beta=state.beta,
        variance=state.variance,
        posterior=post,
        labels=class_labels_for(D.shape[0], labels),
        log_likelihood=LL1,
        lrt=2.0 * LL1 - 2.0 * LL0,
        r2=float(np.var(y_hat, ddof=1) / np.var(ys, ddof=1)),
        y_hat=y_hat,
        iteration=state.iteration,
        converged=converged,
        model="truncated model of selective genotyping",
        trace=trace,
    )
    logger.info(
        f"Truncated EM finished after {state.iteration} iterations "
        f"(converged={converged}): LRT={result.lrt:.3f}"
    )
    return apply_failure_policy(result, config)
