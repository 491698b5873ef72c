"""QTLEMM command-line interface.

This module provides a Typer-based CLI with two commands:
- qmake: build flanking-marker Q-matrices and the cp-matrix
- mim: fit a multiple interval mapping model by EM

Global -outdir, -o and -v flags configure output location and verbosity.
"""

import sys
import time
import warnings
from pathlib import Path
from typing import Annotated

import typer

import qtlemm
from qtlemm.core import EMConfig, OutputConfig
from qtlemm.errors import ConvergenceFailure, QTLEMMError
from qtlemm.pipeline import PipelineConfig, PipelineRunner
from qtlemm.utils import setup_logging, write_run_log

app = typer.Typer(
    name="qtlemm",
    help="QTLEMM: multiple interval mapping of QTL by EM.",
    add_completion=False,
)

# Store global options set by callback
_global_config: OutputConfig | None = None


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from qtlemm.core import get_backend_info

        typer.echo(f"QTLEMM version {qtlemm.__version__}")

        info = get_backend_info()
        typer.echo(f"Backend: {info['selected']}")
        typer.echo(f"GPU available: {info['gpu_available']}")
        raise typer.Exit()


def _get_config() -> OutputConfig:
    global _global_config
    if _global_config is None:
        _global_config = OutputConfig()
    return _global_config


@app.callback()
def main(
    outdir: Annotated[
        Path,
        typer.Option("-outdir", help="Output directory"),
    ] = Path("output"),
    output: Annotated[
        str,
        typer.Option("-o", help="Output file prefix"),
    ] = "result",
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Verbose output (per-iteration log)"),
    ] = False,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = None,
) -> None:
    """QTLEMM: multiple interval mapping by EM.

    Builds conditional QTL genotype probabilities from flanking markers for
    backcross, recombinant inbred and advanced intercross populations, and
    estimates QTL effects under complete or selective genotyping.
    """
    global _global_config
    _global_config = OutputConfig(outdir=outdir, prefix=output, verbose=verbose)
    setup_logging(verbose=verbose)


QtlOpt = Annotated[
    Path, typer.Option("-qtl", help="QTL table (chromosome, position)")
]
MarkerOpt = Annotated[
    Path, typer.Option("-marker", help="Marker map (chromosome, position), sorted")
]
PopulationOpt = Annotated[
    str, typer.Option("-type", help="Population type: BC, RI or AI")
]
GenerationOpt = Annotated[int, typer.Option("-ng", help="Generation number")]
UnitOpt = Annotated[
    bool,
    typer.Option("--cm/--morgan", help="Positions in cM (default) or Morgans"),
]


@app.command("qmake")
def qmake_command(
    qtl: QtlOpt,
    marker: MarkerOpt,
    geno: Annotated[
        Path | None,
        typer.Option("-geno", help="Genotype matrix (2/1/0, NA missing)"),
    ] = None,
    population: PopulationOpt = "RI",
    ng: GenerationOpt = 2,
    cm: UnitOpt = True,
    interval: Annotated[
        bool,
        typer.Option(
            "--interval/--no-interval",
            help="Skip a marker at the QTL position when choosing flanks",
        ),
    ] = False,
) -> None:
    """Build Q-matrices and the cp-matrix.

    Writes {prefix}.qmatrix.txt and, when genotypes are given, {prefix}.cp.txt.
    """
    config = _get_config()
    config.ensure_outdir()
    command_line = " ".join(sys.argv)

    runner = PipelineRunner(
        PipelineConfig(
            qtl_file=qtl,
            marker_file=marker,
            geno_file=geno,
            population=population,
            ng=ng,
            cm=cm,
            interval=interval,
            output_dir=config.outdir,
            output_prefix=config.prefix,
        )
    )
    try:
        result = runner.run_qmake()
    except (QTLEMMError, FileNotFoundError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from None

    typer.echo(f"Q-matrices written to {result.q_path}")
    if result.cp_path is not None:
        typer.echo(f"cp-matrix written to {result.cp_path}")

    settings = {"population": population, "ng": ng, "cm": cm, "interval": interval}
    results = {
        "n_qtl": len(result.q.q_matrices),
        "n_individuals": (
            0 if result.q.cp_matrix is None else result.q.cp_matrix.shape[0]
        ),
        "n_classes": len(result.q.labels),
    }
    log_path = write_run_log(config, settings, results, result.timing, command_line)
    typer.echo(f"Log written to {log_path}")


@app.command("mim")
def mim_command(
    qtl: QtlOpt,
    marker: MarkerOpt,
    geno: Annotated[
        Path,
        typer.Option("-geno", help="Genotypes of the genotyped individuals"),
    ],
    pheno: Annotated[
        Path,
        typer.Option("-pheno", help="Phenotypes of the genotyped individuals"),
    ],
    design: Annotated[
        Path,
        typer.Option("-design", help="Design matrix, optional effect-name header"),
    ],
    yu: Annotated[
        Path | None,
        typer.Option("-yu", help="Phenotypes of ungenotyped individuals"),
    ] = None,
    covariate_file: Annotated[
        Path | None,
        typer.Option("-c", help="Fixed-effect matrix X (default: intercept)"),
    ] = None,
    model: Annotated[
        str,
        typer.Option("-model", help="Genotyping model: n, f, p or t"),
    ] = "n",
    population: PopulationOpt = "RI",
    ng: GenerationOpt = 2,
    cm: UnitOpt = True,
    tl: Annotated[
        float | None,
        typer.Option("-tl", help="Lower truncation bound (model t)"),
    ] = None,
    tr: Annotated[
        float | None,
        typer.Option("-tr", help="Upper truncation bound (model t)"),
    ] = None,
    crit: Annotated[
        float,
        typer.Option("-crit", help="Convergence criterion"),
    ] = 1e-5,
    stop: Annotated[
        int,
        typer.Option("-stop", help="Maximum number of EM iterations"),
    ] = 1000,
    strict: Annotated[
        bool,
        typer.Option(
            "--strict/--lenient",
            help="Zero the estimates when EM fails to converge (default)",
        ),
    ] = True,
) -> None:
    """Fit a multiple interval mapping model by EM.

    Writes {prefix}.effects.txt, {prefix}.summary.txt and
    {prefix}.posterior.txt.
    """
    config = _get_config()
    config.ensure_outdir()
    command_line = " ".join(sys.argv)
    start_time = time.perf_counter()

    runner = PipelineRunner(
        PipelineConfig(
            qtl_file=qtl,
            marker_file=marker,
            geno_file=geno,
            pheno_file=pheno,
            design_file=design,
            yu_file=yu,
            covariate_file=covariate_file,
            model=model,
            population=population,
            ng=ng,
            cm=cm,
            tl=tl,
            tr=tr,
            em=EMConfig(crit=crit, stop=stop, strict=strict),
            output_dir=config.outdir,
            output_prefix=config.prefix,
        )
    )
    try:
        with warnings.catch_warnings():
            # Already reported through the logger
            warnings.simplefilter("ignore", ConvergenceFailure)
            result = runner.run_mim()
    except (QTLEMMError, FileNotFoundError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from None

    em = result.em
    typer.echo(f"Model: {em.model}")
    for name, value in em.effects_by_name.items():
        typer.echo(f"  {name} = {value:.6g}")
    typer.echo(f"  variance = {em.variance:.6g}")
    typer.echo(f"LRT = {em.lrt:.4f}, R2 = {em.r2:.4f}, iterations = {em.iteration}")
    typer.echo(f"Results written to {result.paths['summary'].parent}")

    settings = {
        "model": model,
        "population": population,
        "ng": ng,
        "crit": crit,
        "stop": stop,
        "strict": strict,
    }
    results = {
        "n_genotyped": result.n_genotyped,
        "n_ungenotyped": result.n_ungenotyped,
        **em.summary(),
    }
    timing = dict(result.timing)
    timing["total"] = time.perf_counter() - start_time
    log_path = write_run_log(config, settings, results, timing, command_line)
    typer.echo(f"Log written to {log_path}")


if __name__ == "__main__":
    app()
