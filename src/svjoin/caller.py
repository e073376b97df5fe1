from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple

from .clusterer import EvidenceClusterer
from .config import DEFAULT_CONFIG, SvCallerConfig
from .models import (
    FILTER_PASS,
    CachedSvInfo,
    DepthSegment,
    DiscordantReason,
    SvAnalysisResult,
    SvCall,
    SvEvidenceCollection,
    SvType,
)
from .segmenter import DepthSegmenter
from .utils import dataclass_to_jsonable, ensure_outdir, write_json
from .vcf_writer import SvVcfWriter

logger = logging.getLogger(__name__)

VCF_NAME = "structural_variants.vcf.gz"
SEGMENTS_NAME = "depth_segments.tsv"
EVIDENCE_SUMMARY_NAME = "evidence_summary.txt"
METADATA_NAME = "sv_metadata.json"

_SEGMENT_COLUMNS = ("chrom", "start", "end", "mean_depth", "log2_ratio", "z_score", "num_bins", "sv_type")


class SvCaller:
    """Runs depth segmentation, breakpoint clustering and VCF output for one sample."""

    def __init__(self, config: SvCallerConfig = DEFAULT_CONFIG) -> None:
        self.config = config
        self.segmenter = DepthSegmenter(config)
        self.clusterer = EvidenceClusterer(config)
        self.writer = SvVcfWriter(config)

    def detect(
        self,
        evidence: SvEvidenceCollection,
        contig_lengths: Optional[Mapping[str, int]],
        mean_coverage: float,
        read_length: float = 150.0,
    ) -> Tuple[List[DepthSegment], List[SvCall]]:
        """Return merged depth segments and all calls (any FILTER), sorted."""
        raw = self.segmenter.segment(evidence.depth_bins, contig_lengths, mean_coverage, read_length)
        segments = self.segmenter.merge_nearby_segments(raw)
        logger.info("Depth segments: %d raw, %d after merging", len(raw), len(segments))
        calls = self.clusterer.cluster(evidence, segments)
        return segments, calls

    def call_structural_variants(
        self,
        evidence: SvEvidenceCollection,
        contig_lengths: Optional[Mapping[str, int]],
        reference_build: str,
        mean_coverage: float,
        read_length: float = 150.0,
        outdir: Optional[str | Path] = None,
    ) -> SvAnalysisResult:
        """Call SVs from collected evidence.

        Parameters
        ----------
        evidence:
            Discordant pairs, split reads and depth bins of one sample.
        contig_lengths:
            Contig -> length; also used for the VCF ``##contig`` lines.
        reference_build:
            Build label written to the VCF header and metadata.
        mean_coverage:
            Sample coverage; runs below ``config.min_coverage`` are refused.
        read_length:
            Mean read length used for the depth model.
        outdir:
            When given, the VCF, depth segment table, evidence summary and
            metadata JSON are written here.

        Returns
        -------
        SvAnalysisResult holding PASS calls only.

        Raises
        ------
        ValueError
            If coverage is below ``config.min_coverage``.
        """
        if mean_coverage < self.config.min_coverage:
            raise ValueError(
                f"Coverage too low for SV calling ({mean_coverage:.1f}x, "
                f"minimum {self.config.min_coverage:g}x required)"
            )

        segments, calls = self.detect(evidence, contig_lengths, mean_coverage, read_length)
        passing = tuple(c for c in calls if c.filter == FILTER_PASS)
        logger.info("SV calling: %d calls, %d PASS", len(calls), len(passing))

        if outdir is not None:
            out = ensure_outdir(outdir)
            vcf_path = self.writer.write(
                calls,
                out / VCF_NAME,
                sample_name=evidence.sample_name,
                reference_build=reference_build,
                contig_lengths=contig_lengths,
            )
            write_depth_segments(out / SEGMENTS_NAME, segments)
            write_evidence_summary(out / EVIDENCE_SUMMARY_NAME, evidence)
            info = build_cached_info(vcf_path, reference_build, passing)
            write_json(out / METADATA_NAME, dataclass_to_jsonable(info))

        return SvAnalysisResult(
            sv_calls=passing,
            total_discordant_pairs=evidence.total_discordant_pairs,
            total_split_reads=evidence.total_split_reads,
            cnv_segments=len(segments),
            analysis_timestamp=_dt.datetime.now(),
            reference_build=reference_build,
            mean_coverage=float(mean_coverage),
            depth_segments=tuple(segments),
        )


# -----------------
# artifacts
# -----------------


def build_cached_info(vcf_path: Path, reference_build: str, calls: Sequence[SvCall]) -> CachedSvInfo:
    def count(sv_type: SvType) -> int:
        return sum(1 for c in calls if c.sv_type == sv_type)

    return CachedSvInfo(
        vcf_path=str(vcf_path),
        index_path=str(vcf_path) + ".tbi",
        reference_build=reference_build,
        created_at=_dt.datetime.now().isoformat(timespec="seconds"),
        sv_call_count=len(calls),
        deletion_count=count(SvType.DEL),
        duplication_count=count(SvType.DUP),
        inversion_count=count(SvType.INV),
        translocation_count=count(SvType.BND),
    )


def write_depth_segments(path: str | Path, segments: Sequence[DepthSegment]) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        f.write("\t".join(_SEGMENT_COLUMNS) + "\n")
        for seg in segments:
            f.write(
                f"{seg.chrom}\t{seg.start}\t{seg.end}\t{seg.mean_depth:.2f}\t"
                f"{seg.log2_ratio:.3f}\t{seg.z_score:.2f}\t{seg.num_bins}\t{seg.sv_type.value}\n"
            )


def write_evidence_summary(path: str | Path, evidence: SvEvidenceCollection) -> None:
    pairs = evidence.discordant_pairs
    lines = [
        "## SV EVIDENCE SUMMARY",
        f"Sample: {evidence.sample_name}",
        f"Expected insert size: {evidence.expected_insert_size:.1f}",
        f"Insert size SD: {evidence.insert_size_sd:.1f}",
        "",
        "## DISCORDANT PAIRS",
        f"Total: {evidence.total_discordant_pairs}",
        f"Inter-chromosomal: {len(evidence.inter_chromosomal_pairs)}",
        f"Insert size outliers: {sum(1 for p in pairs if p.reason == DiscordantReason.INSERT_SIZE_OUTLIER)}",
        f"Wrong orientation: {sum(1 for p in pairs if p.reason == DiscordantReason.WRONG_ORIENTATION)}",
        "",
        "## SPLIT READS",
        f"Total: {evidence.total_split_reads}",
        "",
        "## DEPTH BINS",
    ]
    for chrom in sorted(evidence.depth_bins):
        bins = evidence.depth_bins[chrom]
        non_zero = sum(1 for b in bins if b > 0)
        lines.append(f"{chrom}: {non_zero} / {len(bins)} bins with reads")

    with open(path, "wt", encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")
