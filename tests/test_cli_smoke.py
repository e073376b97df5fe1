import json
import shutil
import subprocess
import sys
from pathlib import Path

import pysam


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "svjoin"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def test_cli_help() -> None:
    cp = _run_cli(["--help"])
    assert cp.returncode == 0
    assert "svjoin" in cp.stdout.lower()


def test_cli_version() -> None:
    cp = _run_cli(["--version"])
    assert cp.returncode == 0
    assert cp.stdout.startswith("svjoin ")


def test_toy_data_then_call(tmp_path: Path) -> None:
    cp = _run_cli(["make-toy-data", "--outdir", str(tmp_path / "toy")])
    assert cp.returncode == 0, cp.stderr
    summary = json.loads(cp.stdout)

    outdir = tmp_path / "out"
    cp = _run_cli(["call", "--bam", summary["bam"], "--outdir", str(outdir), "-v"])
    assert cp.returncode == 0, cp.stderr
    assert cp.stdout.strip().endswith("report.html")

    vcf = outdir / "structural_variants.vcf.gz"
    assert vcf.exists()
    assert (outdir / "plots" / "sv_type_counts.png").exists()
    assert (outdir / "logs" / "call.log").exists()
    with pysam.VariantFile(str(vcf)) as f:
        types = sorted(r.info["SVTYPE"] for r in f)
    assert types == ["BND", "DEL", "DEL"]

    metadata = json.loads((outdir / "sv_metadata.json").read_text())
    assert metadata["deletion_count"] == 2
    assert metadata["translocation_count"] == 1

    cp = _run_cli(["call", "--bam", summary["bam"], "--outdir", str(outdir), "--resume"])
    assert cp.returncode == 0
    assert cp.stdout.strip().endswith("report.html")


def test_dry_run_writes_nothing(tmp_path: Path) -> None:
    toy = tmp_path / "toy"
    assert _run_cli(["make-toy-data", "--outdir", str(toy)]).returncode == 0

    outdir = tmp_path / "out"
    cp = _run_cli(["call", "--bam", str(toy / "toy.bam"), "--outdir", str(outdir), "--dry-run"])
    assert cp.returncode == 0
    assert "Planned outputs" in cp.stdout
    assert not outdir.exists()


def test_unindexed_bam_is_reported(tmp_path: Path) -> None:
    toy = tmp_path / "toy"
    assert _run_cli(["make-toy-data", "--outdir", str(toy)]).returncode == 0
    bare = tmp_path / "bare"
    bare.mkdir()
    shutil.copy(toy / "toy.bam", bare / "toy.bam")

    cp = _run_cli(["call", "--bam", str(bare / "toy.bam"), "--outdir", str(tmp_path / "out")])
    assert cp.returncode == 2
    assert "ValueError: BAM is not indexed" in cp.stderr


def test_low_coverage_is_reported(tmp_path: Path) -> None:
    toy = tmp_path / "toy"
    assert _run_cli(["make-toy-data", "--outdir", str(toy)]).returncode == 0

    cp = _run_cli(
        [
            "call",
            "--bam",
            str(toy / "toy.bam"),
            "--outdir",
            str(tmp_path / "out"),
            "--mean-coverage",
            "5",
            "--no-report",
        ]
    )
    assert cp.returncode == 2
    assert "Coverage too low" in cp.stderr
