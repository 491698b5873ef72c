"""Whitespace-delimited text I/O for QTL mapping data.

Input format:
- Whitespace/tab/space delimited, one record per line
- Blank lines and lines starting with "#" are skipped
- Missing values encoded as "NA" (case-sensitive)
- Design matrices may start with a header row of effect names

Outputs are tab-separated with 10 significant digits.
"""

from pathlib import Path

import numpy as np

from qtlemm.em.state import EMResult
from qtlemm.errors import InputError
from qtlemm.genetics.qmake import QMatrixResult


def _read_rows(path: Path) -> list[list[str]]:
    rows: list[list[str]] = []
    with open(path) as f:
        for line in f:
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            rows.append(stripped.split())
    if not rows:
        raise InputError(f"File is empty: {path}")
    return rows


def _parse_rows(
    rows: list[list[str]], path: Path, first_line: int = 1
) -> np.ndarray:
    n_cols = len(rows[0])
    out = np.empty((len(rows), n_cols), dtype=np.float64)
    for i, row in enumerate(rows):
        if len(row) != n_cols:
            raise InputError(
                f"{path} row {i + first_line} has {len(row)} columns "
                f"but expected {n_cols} (based on first row)"
            )
        for j, val in enumerate(row):
            if val == "NA":
                out[i, j] = np.nan
                continue
            try:
                out[i, j] = float(val)
            except ValueError:
                raise InputError(
                    f"{path} row {i + first_line}, column {j + 1}: cannot parse "
                    f"'{val}' as numeric (use 'NA' for missing)"
                ) from None
    return out


def read_numeric_table(path: Path) -> np.ndarray:
    """Read a numeric table; "NA" becomes NaN.

    Raises:
        InputError: If the file is empty, ragged or holds non-numeric tokens.
    """
    path = Path(path)
    return _parse_rows(_read_rows(path), path)


def read_locus_table(path: Path) -> np.ndarray:
    """Read a (chromosome, position) table of markers or QTLs."""
    table = read_numeric_table(path)
    if table.shape[1] != 2:
        raise InputError(
            f"{path} must have 2 columns (chromosome, position), "
            f"got {table.shape[1]}"
        )
    return table


def read_genotypes(path: Path) -> np.ndarray:
    """Read an individuals x markers genotype matrix (0/1/2, NA missing)."""
    return read_numeric_table(path)


def read_phenotypes(path: Path) -> np.ndarray:
    """Read a phenotype vector stored as one column or one row."""
    table = read_numeric_table(path)
    if table.shape[1] == 1:
        return table[:, 0]
    if table.shape[0] == 1:
        return table[0]
    raise InputError(
        f"{path} must hold a single column (or row) of phenotypes, "
        f"got shape {table.shape}"
    )


def read_design_matrix(path: Path) -> tuple[np.ndarray, list[str] | None]:
    """Read a design matrix, with an optional header row of effect names.

    Returns:
        Tuple of (design, effect_names); effect_names is None without header.
    """
    path = Path(path)
    rows = _read_rows(path)
    header = None
    try:
        [float(v) for v in rows[0] if v != "NA"]
    except ValueError:
        header, rows = rows[0], rows[1:]
        if not rows:
            raise InputError(f"{path} has a header but no rows") from None
    design = _parse_rows(rows, path, first_line=2 if header else 1)
    if header is not None and len(header) != design.shape[1]:
        raise InputError(
            f"{path} header names {len(header)} effects but rows have "
            f"{design.shape[1]} columns"
        )
    return design, header


def _write_table(
    path: Path, matrix: np.ndarray, header: list[str] | None = None
) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        if header is not None:
            f.write("\t".join(header) + "\n")
        for row in np.atleast_2d(matrix):
            f.write("\t".join(f"{v:.10g}" for v in row) + "\n")


def write_cp_matrix(cp_matrix: np.ndarray, labels: list[str], path: Path) -> None:
    """Write the cp-matrix with a header row of genotype class labels."""
    _write_table(Path(path), cp_matrix, labels)


def write_q_matrices(result: QMatrixResult, path: Path) -> None:
    """Write every Q-matrix as a labelled block.

    Each block starts with "## Q.matrix<i> <left> <right> <d1> <d2>" (1-based
    marker indices, distances in Morgans) followed by a header row and one
    row per flanking genotype pair.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        for i, (table, (m1, m2), (d1, d2)) in enumerate(
            zip(result.q_matrices, result.flanking, result.distances), start=1
        ):
            f.write(f"## Q.matrix{i} {m1 + 1} {m2 + 1} {d1:.10g} {d2:.10g}\n")
            f.write("\t".join(["flank", *result.column_labels]) + "\n")
            for label, row in zip(result.row_labels, table):
                f.write("\t".join([label, *(f"{v:.10g}" for v in row)]) + "\n")


def write_em_result(result: EMResult, prefix_path: Path) -> dict[str, Path]:
    """Write effects, summary and posterior files for one EM fit.

    Args:
        result: EM fit.
        prefix_path: Output path prefix, e.g. output/result; files get the
            suffixes .effects.txt, .summary.txt and .posterior.txt.

    Returns:
        Mapping of file kind to path.
    """
    prefix_path = Path(prefix_path)
    paths = {
        "effects": prefix_path.with_name(prefix_path.name + ".effects.txt"),
        "summary": prefix_path.with_name(prefix_path.name + ".summary.txt"),
        "posterior": prefix_path.with_name(prefix_path.name + ".posterior.txt"),
    }
    prefix_path.parent.mkdir(parents=True, exist_ok=True)

    with open(paths["effects"], "w") as f:
        f.write("effect\testimate\n")
        for name, value in zip(result.effect_names, result.effects):
            f.write(f"{name}\t{value:.10g}\n")
        for j, value in enumerate(np.atleast_1d(result.beta), start=1):
            f.write(f"beta{j}\t{value:.10g}\n")

    with open(paths["summary"], "w") as f:
        f.write(f"model\t{result.model}\n")
        f.write(f"variance\t{result.variance:.10g}\n")
        f.write(f"log_likelihood\t{result.log_likelihood:.10g}\n")
        f.write(f"LRT\t{result.lrt:.10g}\n")
        f.write(f"R2\t{result.r2:.10g}\n")
        f.write(f"iteration\t{result.iteration}\n")
        f.write(f"converged\t{result.converged}\n")

    _write_table(paths["posterior"], result.posterior, result.labels)
    return paths
