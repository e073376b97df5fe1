from pathlib import Path

import pysam
import pytest

from svjoin.caller import SvCaller
from svjoin.config import SvCallerConfig
from svjoin.evidence import (
    collect_evidence,
    coverage_from_bins,
    estimate_library_stats,
    extract_split_read,
)
from svjoin.models import DiscordantReason, SvType
from svjoin.toy_data import make_toy_data


@pytest.fixture(scope="module")
def toy(tmp_path_factory):
    return make_toy_data(outdir=tmp_path_factory.mktemp("toy"))


@pytest.fixture(scope="module")
def evidence(toy):
    stats = estimate_library_stats(toy["bam"])
    return collect_evidence(
        toy["bam"],
        config=SvCallerConfig(),
        expected_insert_size=stats.mean_insert_size,
        insert_size_sd=stats.insert_size_sd,
        progress=False,
    )


def test_library_stats(toy) -> None:
    stats = estimate_library_stats(toy["bam"])
    assert stats.mean_read_length == pytest.approx(100.0)
    assert stats.mean_insert_size == pytest.approx(300.0, abs=5.0)
    assert 5.0 < stats.insert_size_sd < 20.0


def test_discordant_pairs_are_recorded_once(evidence) -> None:
    reasons = [p.reason for p in evidence.discordant_pairs]
    assert reasons.count(DiscordantReason.INSERT_SIZE_OUTLIER) == 8
    assert reasons.count(DiscordantReason.INTER_CHROMOSOMAL) == 6
    assert reasons.count(DiscordantReason.WRONG_ORIENTATION) == 0

    inter = evidence.inter_chromosomal_pairs
    assert {(p.chrom1, p.chrom2) for p in inter} == {("chr1", "chr2")}


def test_split_reads_parsed_from_sa_tag(evidence) -> None:
    assert evidence.total_split_reads == 4
    sr = evidence.split_reads[0]
    assert sr.primary_chrom == "chr2"
    assert sr.supplementary_pos == 25_000
    assert sr.clip_length == 50
    assert sr.map_q == 60


def test_depth_bins_and_sample(evidence) -> None:
    assert evidence.sample_name == "TOY"
    assert len(evidence.depth_bins["chr1"]) == 60
    assert len(evidence.depth_bins["chr2"]) == 30
    assert all(b == 0 for b in evidence.depth_bins["chr1"][20:35])
    assert coverage_from_bins(evidence.depth_bins, 1000, 100.0) == pytest.approx(20.0, abs=0.5)


def test_short_clip_is_not_a_split_read() -> None:
    a = pysam.AlignedSegment()
    a.query_name = "r"
    a.query_sequence = "A" * 100
    a.reference_start = 10
    a.mapping_quality = 60
    a.cigartuples = [(0, 95), (4, 5)]
    a.set_tag("SA", "chr1,501,+,95S5M,60,0;")
    assert extract_split_read(a, min_map_q=20, min_clip_length=10) is None

    a.set_tag("SA", "chr1,501,+,95S5M,5,0;")
    a.cigartuples = [(0, 50), (4, 50)]
    assert extract_split_read(a, min_map_q=20, min_clip_length=10) is None


def test_caller_on_toy_bam(toy, evidence, tmp_path: Path) -> None:
    lengths = {"chr1": 60_000, "chr2": 30_000}
    result = SvCaller().call_structural_variants(
        evidence, lengths, "GRCh38", 20.0, read_length=100.0, outdir=tmp_path
    )

    types = sorted(c.sv_type.value for c in result.sv_calls)
    assert types == ["BND", "DEL", "DEL"]

    deletion = next(c for c in result.sv_calls if c.sv_type == SvType.DEL and c.chrom == "chr1")
    assert deletion.paired_end_support == 8
    assert deletion.relative_depth is not None and deletion.relative_depth < 0.1
    assert 19_000 < deletion.start < 20_500
    assert 34_500 < deletion.end < 35_500

    bnd = next(c for c in result.sv_calls if c.sv_type == SvType.BND)
    assert bnd.mate_chrom == "chr2"

    assert result.cnv_segments == 1
    for name in (
        "structural_variants.vcf.gz",
        "structural_variants.vcf.gz.tbi",
        "depth_segments.tsv",
        "evidence_summary.txt",
        "sv_metadata.json",
    ):
        assert (tmp_path / name).exists()
    header = (tmp_path / "depth_segments.tsv").read_text().splitlines()[0]
    assert header.split("\t")[0] == "chrom"
    assert "Inter-chromosomal: 6" in (tmp_path / "evidence_summary.txt").read_text()


def test_low_coverage_is_refused(evidence) -> None:
    with pytest.raises(ValueError, match="Coverage too low"):
        SvCaller().call_structural_variants(evidence, None, "GRCh38", 5.0)
