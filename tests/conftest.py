"""Pytest fixtures for QTLEMM test suite."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import numpy as np
import pytest
from loguru import logger

from qtlemm.genetics import genotype_classes, haldane

# =============================================================================
# Test Tier System
# =============================================================================
#
# tier0 - Fast Unit Tests (<5s each)
#   - Closed-form genetics, input checks, single EM runs on small data
#   - Run: pytest -m tier0
#
# tier1 - Recovery Tests (<60s each)
#   - Simulated F2/BC populations; effects recovered by EM within tolerance
#   - Run: pytest -m tier1
#
# tier2 - Scale Tests
#   - Large simulations, many QTL sets
#   - Run: pytest -m tier2
#
# The existing @pytest.mark.slow is an alias for tier2.
#
# Quick reference:
#   pytest -m tier0             # Fast tests only
#   pytest -m "not tier2"       # Exclude slow tests
#   pytest                      # All tests
# =============================================================================


def _gametes(
    rng: np.random.Generator, n: int, positions_m: np.ndarray
) -> np.ndarray:
    """Haldane gametes along one chromosome; 1 = P1 allele, 0 = P2 allele."""
    r = haldane(np.diff(positions_m))
    out = np.empty((n, positions_m.size), dtype=np.int64)
    out[:, 0] = rng.integers(0, 2, size=n)
    for j in range(1, positions_m.size):
        switch = rng.random(n) < r[j - 1]
        out[:, j] = np.where(switch, 1 - out[:, j - 1], out[:, j - 1])
    return out


def simulate_population(
    rng: np.random.Generator,
    n: int,
    marker_cm: np.ndarray,
    qtl_cm: np.ndarray,
    effects: np.ndarray,
    mean: float = 10.0,
    sd: float = 0.5,
    population: str = "RI",
) -> dict[str, np.ndarray]:
    """Simulate an F2 ("RI", ng = 2) or BC1 ("BC", ng = 1) population.

    All loci sit on chromosome 1. F2 genotypes are the sum of two
    independent F1 gametes (2 = P1 homozygote); BC1 genotypes are one F1
    gamete plus a P1 allele. Phenotypes are additive in (genotype - 1).

    Returns:
        Dict with marker, qtl, geno, qtl_geno and y.
    """
    positions = np.concatenate([marker_cm, qtl_cm])
    order = np.argsort(positions, kind="stable")
    g1 = _gametes(rng, n, positions[order] / 100.0)
    if population == "BC":
        g2 = np.ones_like(g1)
    else:
        g2 = _gametes(rng, n, positions[order] / 100.0)
    geno_sorted = g1 + g2
    geno_all = np.empty_like(geno_sorted)
    geno_all[:, order] = geno_sorted

    k = marker_cm.size
    qtl_geno = geno_all[:, k:]
    y = mean + (qtl_geno - 1) @ effects + rng.normal(0.0, sd, size=n)
    return {
        "marker": np.column_stack([np.ones(k), marker_cm]),
        "qtl": np.column_stack([np.ones(qtl_cm.size), qtl_cm]),
        "geno": geno_all[:, :k].astype(np.float64),
        "qtl_geno": qtl_geno,
        "y": y,
    }


def additive_design(n_qtl: int, population: str = "RI") -> np.ndarray:
    """Additive design matrix: one column per QTL, coded genotype - 1."""
    classes, _ = genotype_classes(n_qtl, population)
    return (classes - 1).astype(np.float64)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


@pytest.fixture
def marker_map() -> np.ndarray:
    """Eleven markers on chromosome 1, every 10 cM from 0 to 100."""
    return np.column_stack([np.ones(11), np.arange(0.0, 101.0, 10.0)])


@pytest.fixture
def f2_single() -> dict[str, np.ndarray]:
    """F2 population with one additive QTL (effect 1.0) at 35 cM."""
    sim = simulate_population(
        np.random.default_rng(42),
        n=1000,
        marker_cm=np.arange(0.0, 101.0, 10.0),
        qtl_cm=np.array([35.0]),
        effects=np.array([1.0]),
    )
    sim["design"] = additive_design(1)
    return sim


@pytest.fixture
def f2_small() -> dict[str, np.ndarray]:
    """Small F2 population (n = 60) for fast EM smoke tests."""
    sim = simulate_population(
        np.random.default_rng(7),
        n=60,
        marker_cm=np.arange(0.0, 101.0, 10.0),
        qtl_cm=np.array([45.0]),
        effects=np.array([1.0]),
    )
    sim["design"] = additive_design(1)
    return sim


@pytest.fixture
def simulate() -> Callable[..., dict[str, np.ndarray]]:
    """Factory for simulated populations with custom settings."""
    return simulate_population


@pytest.fixture
def loguru_messages():
    """Capture loguru records as formatted strings."""
    messages: list[str] = []
    handler_id = logger.add(
        lambda msg: messages.append(msg), level="DEBUG", format="{level} {message}"
    )
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Create temporary output directory for test results."""
    out = tmp_path / "output"
    out.mkdir()
    return out


@pytest.fixture
def additive() -> Callable[..., np.ndarray]:
    """Factory for additive design matrices."""
    return additive_design


def write_table(
    path: Path, table: np.ndarray, header: list[str] | None = None
) -> Path:
    """Write a numeric table as whitespace-delimited text, NaN as NA."""
    table = np.atleast_2d(table)
    with open(path, "w") as f:
        if header:
            f.write(" ".join(header) + "\n")
        for row in table:
            f.write(" ".join("NA" if np.isnan(v) else f"{v:g}" for v in row) + "\n")
    return path


@pytest.fixture
def input_files(tmp_path: Path, f2_small) -> dict[str, Path]:
    """f2_small written to input files, with one missing genotype."""
    geno = f2_small["geno"].copy()
    geno[0, 3] = np.nan
    return {
        "qtl": write_table(tmp_path / "qtl.txt", f2_small["qtl"]),
        "marker": write_table(tmp_path / "marker.txt", f2_small["marker"]),
        "geno": write_table(tmp_path / "geno.txt", geno),
        "pheno": write_table(tmp_path / "y.txt", f2_small["y"][:, None]),
        "design": write_table(
            tmp_path / "D.txt", f2_small["design"], header=["add"]
        ),
        "yu": write_table(tmp_path / "yu.txt", np.linspace(9.6, 10.4, 20)[:, None]),
    }
