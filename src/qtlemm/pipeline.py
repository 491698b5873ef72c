"""Pipeline orchestration for QTLEMM analyses.

Provides a PipelineRunner service class that encapsulates the file-driven
workflow shared by the CLI commands: validate inputs, load the marker map,
QTL table, genotypes and phenotypes, build the cp-matrix or fit an EM
model, and write the outputs. fit_qtl_sets runs many independent QTL sets
against the same data.

Example:
    >>> from qtlemm.pipeline import PipelineConfig, PipelineRunner
    >>> config = PipelineConfig(
    ...     qtl_file=Path("qtl.txt"), marker_file=Path("marker.txt"),
    ...     geno_file=Path("geno.txt"), pheno_file=Path("y.txt"),
    ...     design_file=Path("design.txt"))
    >>> result = PipelineRunner(config).run_mim()
    >>> print(result.em.effects_by_name)
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
from loguru import logger

from qtlemm.core.config import EMConfig, OutputConfig
from qtlemm.core.progress import fit_progress, format_qtl_set
from qtlemm.core.threading import blas_threads
from qtlemm.em.selective import MODEL_NAMES, em_mim2
from qtlemm.em.state import EMResult
from qtlemm.errors import ConfigurationError
from qtlemm.genetics.qmake import QMatrixResult, q_make
from qtlemm.io.text import (
    read_design_matrix,
    read_genotypes,
    read_locus_table,
    read_numeric_table,
    read_phenotypes,
    write_cp_matrix,
    write_em_result,
    write_q_matrices,
)


@dataclass
class PipelineConfig:
    """Configuration for a pipeline run.

    Attributes:
        qtl_file: QTL table (chromosome, position).
        marker_file: Marker map (chromosome, position), sorted.
        geno_file: Genotype matrix of the genotyped individuals.
        pheno_file: Phenotypes of the genotyped individuals (mim only).
        design_file: Design matrix with optional effect-name header (mim only).
        yu_file: Phenotypes of ungenotyped individuals (models f, p, t).
        covariate_file: Fixed-effect matrix X, or None for intercept-only.
        model: Genotyping model: "n", "f", "p" or "t".
        population: Population type: "BC", "RI" or "AI".
        ng: Generation number.
        cm: Positions are in centiMorgans.
        interval: Skip a marker coinciding with a QTL when choosing flanks.
        tl: Lower truncation bound for model "t".
        tr: Upper truncation bound for model "t".
        em: EM stopping rules and failure policy.
        output_dir: Directory for output files.
        output_prefix: Prefix for output filenames.
    """

    qtl_file: Path
    marker_file: Path
    geno_file: Path | None = None
    pheno_file: Path | None = None
    design_file: Path | None = None
    yu_file: Path | None = None
    covariate_file: Path | None = None
    model: str = "n"
    population: str = "RI"
    ng: int = 2
    cm: bool = True
    interval: bool = False
    tl: float | None = None
    tr: float | None = None
    em: EMConfig = field(default_factory=EMConfig)
    output_dir: Path = field(default_factory=lambda: Path("output"))
    output_prefix: str = "result"


@dataclass
class QMakeRunResult:
    """Result of a q_make pipeline run."""

    q: QMatrixResult
    q_path: Path
    cp_path: Path | None
    timing: dict[str, float] = field(default_factory=dict)


@dataclass
class MIMRunResult:
    """Result of an EM pipeline run."""

    em: EMResult
    paths: dict[str, Path]
    n_genotyped: int
    n_ungenotyped: int
    timing: dict[str, float] = field(default_factory=dict)


class PipelineRunner:
    """Orchestrates file-driven Q-matrix and EM runs.

    Raises exceptions (InputError, ConfigurationError, FileNotFoundError)
    rather than calling sys.exit or typer.Exit. The CLI wrapper catches
    these and converts them to user-friendly error messages.

    Args:
        config: Pipeline configuration.
    """

    def __init__(self, config: PipelineConfig) -> None:
        self.config = config

    def validate_inputs(self, require_mim: bool = False) -> None:
        """Check that the input files exist and the model is known.

        Args:
            require_mim: Also require phenotype and design files.

        Raises:
            FileNotFoundError: If a required or specified file is missing.
            ConfigurationError: If the model name is unknown.
        """
        required = {"QTL": self.config.qtl_file, "marker": self.config.marker_file}
        if require_mim:
            required["phenotype"] = self.config.pheno_file
            required["design"] = self.config.design_file
        for label, path in required.items():
            if path is None:
                raise FileNotFoundError(f"No {label} file given")
            if not Path(path).exists():
                raise FileNotFoundError(f"{label} file not found: {path}")

        for label, path in (
            ("genotype", self.config.geno_file),
            ("yu", self.config.yu_file),
            ("covariate", self.config.covariate_file),
        ):
            if path is not None and not Path(path).exists():
                raise FileNotFoundError(f"{label} file not found: {path}")

        if self.config.model not in MODEL_NAMES:
            raise ConfigurationError(
                f"Unknown genotyping model {self.config.model!r}; "
                "use one of 'n', 'f', 'p', 't'."
            )

    def load_loci(self) -> tuple[np.ndarray, np.ndarray]:
        """Load the QTL table and the marker map."""
        qtl = read_locus_table(self.config.qtl_file)
        marker = read_locus_table(self.config.marker_file)
        logger.info(f"Loaded {qtl.shape[0]} QTL and {marker.shape[0]} markers")
        return qtl, marker

    def load_genotypes(self) -> np.ndarray | None:
        if self.config.geno_file is None:
            return None
        geno = read_genotypes(self.config.geno_file)
        logger.info(
            f"Loaded genotypes: {geno.shape[0]} individuals x "
            f"{geno.shape[1]} markers"
        )
        return geno

    @property
    def output(self) -> OutputConfig:
        return OutputConfig(
            outdir=self.config.output_dir, prefix=self.config.output_prefix
        )

    def run_qmake(self) -> QMakeRunResult:
        """Build the Q-matrices (and cp-matrix when genotypes are given).

        Writes {prefix}.qmatrix.txt and, with genotypes, {prefix}.cp.txt.
        """
        t_start = time.perf_counter()
        self.validate_inputs()
        qtl, marker = self.load_loci()
        geno = self.load_genotypes()

        q = q_make(
            qtl,
            marker,
            geno,
            interval=self.config.interval,
            population=self.config.population,
            ng=self.config.ng,
            cm=self.config.cm,
        )

        self.output.ensure_outdir()
        q_path = self.output.path_for("qmatrix.txt")
        write_q_matrices(q, q_path)
        cp_path = None
        if q.cp_matrix is not None:
            cp_path = self.output.path_for("cp.txt")
            write_cp_matrix(q.cp_matrix, q.labels, cp_path)

        total_s = time.perf_counter() - t_start
        logger.info(f"Q-matrices written to {q_path} in {total_s:.2f}s")
        return QMakeRunResult(
            q=q, q_path=q_path, cp_path=cp_path, timing={"total": total_s}
        )

    def run_mim(self) -> MIMRunResult:
        """Fit the configured EM model and write effects/summary/posterior."""
        t_start = time.perf_counter()
        self.validate_inputs(require_mim=True)
        qtl, marker = self.load_loci()
        geno = self.load_genotypes()
        y = read_phenotypes(self.config.pheno_file)
        design, effect_names = read_design_matrix(self.config.design_file)
        yu = None
        if self.config.yu_file is not None:
            yu = read_phenotypes(self.config.yu_file)
        X = None
        if self.config.covariate_file is not None:
            X = read_numeric_table(self.config.covariate_file)
        load_s = time.perf_counter() - t_start

        t_fit = time.perf_counter()
        em = em_mim2(
            qtl,
            marker,
            geno,
            design,
            y,
            yu=yu,
            model=self.config.model,
            tl=self.config.tl,
            tr=self.config.tr,
            population=self.config.population,
            ng=self.config.ng,
            cm=self.config.cm,
            X=X,
            config=self.config.em,
            effect_names=effect_names,
        )
        fit_s = time.perf_counter() - t_fit

        self.output.ensure_outdir()
        paths = write_em_result(em, self.output.outdir / self.output.prefix)
        total_s = time.perf_counter() - t_start
        return MIMRunResult(
            em=em,
            paths=paths,
            n_genotyped=y.size,
            n_ungenotyped=0 if yu is None else yu.size,
            timing={"load": load_s, "fit": fit_s, "total": total_s},
        )


def fit_qtl_sets(
    qtl_sets: Sequence[np.ndarray],
    marker: np.ndarray,
    geno: np.ndarray,
    design: np.ndarray | Sequence[np.ndarray],
    y: np.ndarray,
    show_progress: bool = True,
    n_threads: int | None = None,
    **kwargs,
) -> list[EMResult]:
    """Fit em_mim2 for several independent QTL sets on the same data.

    Each fit owns its own EM state, so the sets are independent; BLAS is
    capped for the duration of the batch.

    Args:
        qtl_sets: QTL tables, one per fit.
        marker: Marker map.
        geno: Genotypes.
        design: One design matrix shared by all sets, or a list of 2-D
            arrays with one per set.
        y: Phenotypes.
        show_progress: Show a progress bar.
        n_threads: BLAS thread cap (default: QTLEMM_BLAS_THREADS, else 1 for
            batches).
        **kwargs: Passed on to em_mim2.

    Returns:
        One EMResult per QTL set, in input order.
    """
    per_set = isinstance(design, (list, tuple)) and all(
        isinstance(d, np.ndarray) and d.ndim == 2 for d in design
    )
    if per_set:
        designs = list(design)
    else:
        designs = [np.asarray(design, dtype=np.float64)] * len(qtl_sets)
    if len(designs) != len(qtl_sets):
        raise ConfigurationError(
            f"{len(designs)} design matrices given for {len(qtl_sets)} QTL sets"
        )

    indexed = enumerate(qtl_sets)
    if show_progress and len(qtl_sets) > 1:
        indexed = fit_progress(qtl_sets, total=len(qtl_sets))

    results = []
    with blas_threads(n_threads, n_fits=len(qtl_sets)):
        for i, qtl in indexed:
            logger.debug(f"Fitting QTL set {i + 1}: {format_qtl_set(qtl)}")
            results.append(em_mim2(qtl, marker, geno, designs[i], y, **kwargs))
    logger.info(f"Fitted {len(results)} QTL sets")
    return results
