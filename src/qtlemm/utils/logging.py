"""Logging utilities for QTLEMM.

loguru console/file configuration, and the ##-prefixed run log written
next to the CLI outputs.
"""

import sys
from datetime import datetime
from pathlib import Path

from loguru import logger

import qtlemm


def setup_logging(
    verbose: bool = False,
    log_file: Path | None = None,
) -> None:
    """Configure loguru for QTLEMM.

    Console output goes to stdout at INFO, or DEBUG with ``verbose``, which
    adds one line per EM iteration. An optional file sink receives every
    DEBUG record serialized as JSON.

    Args:
        verbose: If True, set console logging to DEBUG level.
        log_file: Optional path of a JSON log file.
    """
    logger.remove()
    logger.add(
        sys.stdout,
        level="DEBUG" if verbose else "INFO",
        format="{time:HH:mm:ss} | <level>{level: <8}</level> | {message}",
        colorize=True,
    )
    if log_file:
        logger.add(log_file, serialize=True, level="DEBUG")


def _format_value(value) -> str:
    if isinstance(value, float):
        return f"{value:.6g}"
    return str(value)


def write_run_log(
    output_config: "qtlemm.core.config.OutputConfig",
    settings: dict,
    results: dict,
    timing: dict,
    command_line: str,
) -> Path:
    """Write {prefix}.log.txt for one CLI run.

    Example output:
        ##
        ## QTLEMM Version = 0.1.0
        ## Date = 2024-01-31T10:30:00
        ## Command Line Input = qtlemm mim -qtl qtl.txt ...
        ##
        ## Settings:
        ## population = RI
        ## ng = 2
        ##
        ## Results:
        ## model = complete genotyping model
        ## a1 = 0.982
        ## LRT = 154.2
        ##
        ## Computation Time:
        ## fit time = 0.42 seconds
        ##

    Args:
        output_config: Output directory and prefix.
        settings: Run settings (population, ng, stopping rules...).
        results: Counts and estimates to report.
        timing: Seconds per stage.
        command_line: Command line used to invoke the program.

    Returns:
        Path to the written log file.
    """
    output_config.ensure_outdir()
    log_path = output_config.log_path

    lines = [
        "##",
        f"## QTLEMM Version = {qtlemm.__version__}",
        f"## Date = {datetime.now().isoformat()}",
        f"## Command Line Input = {command_line}",
        "##",
    ]
    for title, section in (("Settings", settings), ("Results", results)):
        lines.append(f"## {title}:")
        lines.extend(f"## {k} = {_format_value(v)}" for k, v in section.items())
        lines.append("##")
    lines.append("## Computation Time:")
    lines.extend(f"## {k} time = {v:.2f} seconds" for k, v in timing.items())
    lines.append("##")

    log_path.write_text("\n".join(lines) + "\n")
    return log_path
