"""EM-MIM with model selection for selective genotyping.

em_mim2 validates the marker/QTL/phenotype inputs, builds the cp-matrix
when none is supplied, and dispatches to one of four models:

- "n": complete genotyping (em_mim on the genotyped individuals)
- "f": proposed model, ungenotyped individuals weighted by the population
  frequencies corrected for the genotyped subset
- "p": population frequency-based model, ungenotyped individuals weighted
  by the raw population frequencies
- "t": truncated model, genotyped phenotypes treated as truncated to the
  tails outside [tL, tR]
"""

from __future__ import annotations

from dataclasses import replace

import numpy as np
from loguru import logger
from scipy.stats import norm

from qtlemm.core.config import EMConfig
from qtlemm.em.likelihood import class_means
from qtlemm.em.mim import (
    apply_failure_policy,
    e_step_kernels,
    em_mim,
    fitted_values,
    run_em,
)
from qtlemm.em.mixture import mixture_proportions, population_frequencies
from qtlemm.em.state import EMResult
from qtlemm.em.truncated import em_truncated
from qtlemm.em.validate import build_problem, check_phenotypes
from qtlemm.errors import ConfigurationError, InputError
from qtlemm.genetics.models import get_transition_model
from qtlemm.genetics.qmake import genotype_classes, q_make
from qtlemm.genetics.validate import (
    validate_genotypes,
    validate_marker_table,
    validate_qtl_table,
)

MODEL_NAMES = {
    "n": "complete genotyping model",
    "f": "proposed model of selective genotyping",
    "p": "population frequency-based model of selective genotyping",
    "t": "truncated model of selective genotyping",
}


def sort_qtl(qtl: np.ndarray) -> np.ndarray:
    """QTL table sorted by (chromosome, position)."""
    return qtl[np.lexsort((qtl[:, 1], qtl[:, 0]))]


def resolve_truncation_bounds(
    y: np.ndarray,
    yu: np.ndarray | None,
    tl: float | None,
    tr: float | None,
) -> tuple[float, float]:
    """Truncation bounds for model "t", defaulting to the range of ``yu``.

    Raises:
        ConfigurationError: If a bound is missing and ``yu`` is not given,
            or the bounds are not min(all) <= tL <= tR <= max(all).
    """
    if (tl is None or tr is None) and (yu is None or yu.size == 0):
        raise ConfigurationError(
            "the truncated model needs tL and tR, or the ungenotyped "
            "phenotypes yu to derive them"
        )
    tl = float(np.min(yu)) if tl is None else float(tl)
    tr = float(np.max(yu)) if tr is None else float(tr)
    y_all = y if yu is None else np.concatenate([y, yu])
    if not (y_all.min() <= tl <= tr <= y_all.max()):
        raise ConfigurationError(
            f"truncation bounds must satisfy min(y) <= tL <= tR <= max(y); "
            f"got tL={tl:g}, tR={tr:g} for phenotypes in "
            f"[{y_all.min():g}, {y_all.max():g}]"
        )
    return tl, tr


def _fit_mixture(
    design,
    mix: np.ndarray,
    y: np.ndarray,
    yu: np.ndarray,
    X,
    effects0,
    beta0,
    variance0,
    config: EMConfig,
    effect_names,
    labels,
    backend: str | None,
) -> EMResult:
    """Shared EM loop over genotyped and ungenotyped phenotypes (models f, p)."""
    y_all = np.concatenate([y, yu])
    problem = build_problem(
        design, mix, y_all, X, effects0, beta0, variance0, effect_names, labels
    )
    D, X = problem.design, problem.X
    state, converged, trace = run_em(
        y_all, X, D, problem.cp, problem.start, config, backend
    )

    posterior_fn, loglik_fn = e_step_kernels(backend)
    means = class_means(D, state.effects, X @ state.beta)
    post = posterior_fn(problem.cp, y_all, means, state.sigma)
    L1 = loglik_fn(problem.cp, y_all, means, state.sigma)
    L0 = float(
        np.sum(norm.logpdf(y_all, loc=np.mean(y_all), scale=np.std(y_all, ddof=1)))
    )
    fitted = fitted_values(post, D, state, X)

    return EMResult(
        effects=state.effects,
        effect_names=problem.effect_names,
        beta=state.beta,
        variance=state.variance,
        posterior=post,
        labels=problem.labels,
        log_likelihood=L1,
        lrt=2.0 * (L1 - L0),
        r2=float(np.var(fitted, ddof=1) / np.var(y_all, ddof=1)),
        y_hat=fitted[: y.size],
        yu_hat=fitted[y.size :],
        iteration=state.iteration,
        converged=converged,
        trace=trace,
    )


def em_mim2(
    qtl,
    marker,
    geno,
    design,
    y,
    yu=None,
    model: str = "n",
    cp_matrix=None,
    tl: float | None = None,
    tr: float | None = None,
    population: str = "RI",
    ng: int = 2,
    cm: bool = True,
    effects0=None,
    X=None,
    beta0=None,
    variance0=None,
    config: EMConfig | None = None,
    effect_names=None,
    backend: str | None = None,
) -> EMResult:
    """Fit an MIM model under complete or selective genotyping.

    Args:
        qtl: (q, 2) QTL table (chromosome, position).
        marker: (k, 2) marker map sorted by chromosome and position.
        geno: (n, k) genotypes of the genotyped individuals (may be None
            when ``cp_matrix`` is given).
        design: (g, e) design matrix; rows follow q_make's class order.
        y: (n,) phenotypes of the genotyped individuals.
        yu: Phenotypes of ungenotyped individuals (required for "f"/"p").
        model: "n", "f", "p" or "t".
        cp_matrix: Optional precomputed (n, g) cp-matrix, built from the
            sorted QTL table when omitted.
        tl: Lower truncation bound for "t" (default min(yu)).
        tr: Upper truncation bound for "t" (default max(yu)).
        population: "BC", "RI" or "AI".
        ng: Generation number.
        cm: Positions are in centiMorgans.
        effects0: Starting effects.
        X: Fixed-effect matrix; n rows for "n"/"t", n + len(yu) for "f"/"p".
        beta0: Starting fixed-effect coefficients.
        variance0: Starting residual variance.
        config: Stopping rules and failure policy.
        effect_names: Names of the design-matrix columns.
        backend: E-step backend for the mixture models.

    Returns:
        EMResult tagged with the model name and the sorted QTL table.

    Raises:
        ConfigurationError: On an unknown model, missing ``yu`` for "f"/"p",
            missing or invalid truncation bounds for "t", or invalid
            population settings.
        InputError: On malformed data.
    """
    if model not in MODEL_NAMES:
        raise ConfigurationError(
            f"Unknown genotyping model {model!r}; use one of 'n', 'f', 'p', 't'."
        )
    config = (config or EMConfig()).validate()
    transition = get_transition_model(population)
    ng = transition.check_generation(ng)

    y = check_phenotypes(y)
    if yu is not None:
        yu = np.asarray(yu, dtype=np.float64).reshape(-1)
        if not np.all(np.isfinite(yu)):
            raise InputError("yu contains missing or non-finite values")
    if model in ("f", "p") and yu is None:
        raise ConfigurationError(
            f"model {model!r} needs the phenotypes of ungenotyped individuals (yu)"
        )
    if model == "t":
        tl, tr = resolve_truncation_bounds(y, yu, tl, tr)

    marker_arr = validate_marker_table(marker)
    qtl_arr = sort_qtl(validate_qtl_table(qtl, marker_arr))

    if cp_matrix is None:
        if geno is None:
            raise InputError("genotypes are required when no cp-matrix is given")
        geno = validate_genotypes(geno, marker_arr.shape[0])
        qm = q_make(qtl_arr, marker_arr, geno, population=population, ng=ng, cm=cm)
        cp_matrix, labels = qm.cp_matrix, qm.labels
    else:
        cp_matrix = np.asarray(cp_matrix, dtype=np.float64)
        _, labels = genotype_classes(qtl_arr.shape[0], transition.population)
        if cp_matrix.ndim != 2 or cp_matrix.shape[1] != len(labels):
            labels = None

    logger.info(
        f"Fitting {MODEL_NAMES[model]}: {qtl_arr.shape[0]} QTL, {y.size} "
        f"genotyped individuals"
        + ("" if yu is None else f", {yu.size} ungenotyped")
    )

    if model == "n":
        result = em_mim(
            design,
            cp_matrix,
            y,
            X=X,
            effects0=effects0,
            beta0=beta0,
            variance0=variance0,
            config=config,
            effect_names=effect_names,
            labels=labels,
            backend=backend,
        )
    elif model == "t":
        result = em_truncated(
            design,
            cp_matrix,
            y,
            tl,
            tr,
            X=X,
            effects0=effects0,
            beta0=beta0,
            variance0=variance0,
            config=config,
            y_all=y if yu is None else np.concatenate([y, yu]),
            effect_names=effect_names,
            labels=labels,
        )
    else:
        pop_freq = population_frequencies(qtl_arr, population, ng, cm)
        mp = mixture_proportions(
            cp_matrix, yu.size, pop_freq, corrected=(model == "f")
        )
        result = apply_failure_policy(
            _fit_mixture(
                design,
                mp.matrix,
                y,
                yu,
                X,
                effects0,
                beta0,
                variance0,
                config,
                effect_names,
                labels,
                backend,
            ),
            config,
        )

    return replace(result, model=MODEL_NAMES[model], qtl=qtl_arr)
