"""Tests for QTLEMM CLI."""

from pathlib import Path

from typer.testing import CliRunner

from qtlemm.cli import app

runner = CliRunner()


def _loci_args(files: dict[str, Path]) -> list[str]:
    return ["-qtl", str(files["qtl"]), "-marker", str(files["marker"])]


def _mim_args(files: dict[str, Path]) -> list[str]:
    return _loci_args(files) + [
        "-geno",
        str(files["geno"]),
        "-pheno",
        str(files["pheno"]),
        "-design",
        str(files["design"]),
    ]


def test_cli_help():
    """Test that --help shows usage with expected options."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "-outdir" in result.output
    assert "qmake" in result.output
    assert "mim" in result.output


def test_cli_version():
    """Test that --version shows version number."""
    import qtlemm

    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert qtlemm.__version__ in result.output
    assert "Backend:" in result.output


def test_cli_mim_help():
    """Test that mim --help lists the model and truncation options."""
    result = runner.invoke(app, ["mim", "--help"])
    assert result.exit_code == 0
    assert "-model" in result.output
    assert "-yu" in result.output
    assert "-tl" in result.output


def test_cli_qmake_writes_outputs(tmp_path: Path, input_files):
    """Test that qmake writes Q-matrices, cp-matrix and run log."""
    outdir = tmp_path / "output"

    result = runner.invoke(
        app,
        ["-outdir", str(outdir), "qmake", *_loci_args(input_files)]
        + ["-geno", str(input_files["geno"])],
    )

    assert result.exit_code == 0, result.output
    assert (outdir / "result.qmatrix.txt").exists()
    assert (outdir / "result.cp.txt").exists()
    assert "cp-matrix written to" in result.output

    log_content = (outdir / "result.log.txt").read_text()
    assert "QTLEMM" in log_content
    assert "n_qtl = 1" in log_content
    assert "n_individuals = 60" in log_content
    assert "##" in log_content


def test_cli_qmake_without_genotypes(tmp_path: Path, input_files):
    outdir = tmp_path / "output"
    result = runner.invoke(
        app, ["-outdir", str(outdir), "-o", "q", "qmake", *_loci_args(input_files)]
    )
    assert result.exit_code == 0, result.output
    assert (outdir / "q.qmatrix.txt").exists()
    assert not (outdir / "q.cp.txt").exists()


def test_cli_mim_complete_model(tmp_path: Path, input_files):
    """Test that mim fits the complete model and reports named effects."""
    outdir = tmp_path / "output"

    result = runner.invoke(
        app, ["-outdir", str(outdir), "mim", *_mim_args(input_files)]
    )

    assert result.exit_code == 0, result.output
    assert "Model: complete genotyping model" in result.output
    assert "add = " in result.output
    assert "LRT = " in result.output
    for suffix in ("effects", "summary", "posterior", "log"):
        assert (outdir / f"result.{suffix}.txt").exists()

    log_content = (outdir / "result.log.txt").read_text()
    assert "model = complete genotyping model" in log_content
    assert "n_genotyped = 60" in log_content
    assert "n_ungenotyped = 0" in log_content


def test_cli_mim_selective_model(tmp_path: Path, input_files):
    outdir = tmp_path / "output"
    result = runner.invoke(
        app,
        ["-outdir", str(outdir), "mim", *_mim_args(input_files)]
        + ["-yu", str(input_files["yu"]), "-model", "p", "--lenient"],
    )
    assert result.exit_code == 0, result.output
    assert "Model: population frequency-based model" in result.output
    assert "n_ungenotyped = 20" in (outdir / "result.log.txt").read_text()


def test_cli_mim_unknown_model(tmp_path: Path, input_files):
    """Test that an unknown model name exits with code 1."""
    result = runner.invoke(
        app,
        ["-outdir", str(tmp_path / "out"), "mim", *_mim_args(input_files)]
        + ["-model", "z"],
    )
    assert result.exit_code == 1
    assert "Unknown genotyping model" in result.output


def test_cli_missing_file(tmp_path: Path, input_files):
    """Test that a nonexistent marker file fails gracefully."""
    result = runner.invoke(
        app,
        [
            "-outdir",
            str(tmp_path / "out"),
            "qmake",
            "-qtl",
            str(input_files["qtl"]),
            "-marker",
            str(tmp_path / "nonexistent.txt"),
        ],
    )
    assert result.exit_code == 1
    assert "marker file not found" in result.output


def test_cli_interval_at_chromosome_end(tmp_path: Path, input_files):
    """Interval placement rejects a QTL on the last marker."""
    qtl = tmp_path / "qtl_end.txt"
    qtl.write_text("1 100\n")
    result = runner.invoke(
        app,
        [
            "-outdir",
            str(tmp_path / "out"),
            "qmake",
            "-qtl",
            str(qtl),
            "-marker",
            str(input_files["marker"]),
            "--interval",
        ],
    )
    assert result.exit_code == 1
    assert "Error:" in result.output
