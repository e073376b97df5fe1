from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple


class SvType(str, Enum):
    """Structural variant classes, named as in the VCF SVTYPE field."""

    DEL = "DEL"  # deletion
    DUP = "DUP"  # duplication
    INV = "INV"  # inversion
    INS = "INS"  # insertion
    BND = "BND"  # breakend (translocation)

    def __str__(self) -> str:
        return self.value


class DiscordantReason(str, Enum):
    """Why a read pair deviates from the expected library model."""

    INSERT_SIZE_OUTLIER = "InsertSizeOutlier"
    WRONG_ORIENTATION = "WrongOrientation"
    INTER_CHROMOSOMAL = "InterChromosomal"

    def __str__(self) -> str:
        return self.value


FILTER_PASS = "PASS"
FILTER_LOW_QUAL = "LowQual"
FILTER_LOW_SUPPORT = "LowSupport"

GT_HET = "0/1"
GT_HOM_ALT = "1/1"


@dataclass(frozen=True)
class DiscordantReadPair:
    """One read pair whose mapping deviates from the library model.

    Coordinates are 0-based. ``pos1``/``strand1`` describe the read that was
    observed, ``pos2``/``strand2`` its mate. Strands are ``'+'`` or ``'-'``.
    """

    chrom1: str
    pos1: int
    strand1: str
    chrom2: str
    pos2: int
    strand2: str
    insert_size: int
    reason: DiscordantReason
    read_name: str = ""
    map_q: int = 0

    @property
    def is_inter_chromosomal(self) -> bool:
        return self.reason == DiscordantReason.INTER_CHROMOSOMAL or self.chrom1 != self.chrom2


@dataclass(frozen=True)
class SplitRead:
    """One read whose alignment is split across two loci (SA tag)."""

    primary_chrom: str
    primary_pos: int
    primary_strand: str
    supplementary_chrom: str
    supplementary_pos: int
    supplementary_strand: str
    read_name: str = ""
    clip_length: int = 0
    map_q: int = 0


@dataclass(frozen=True)
class DepthSegment:
    """A run of depth bins with aberrant copy number.

    Attributes
    ----------
    chrom:
        Contig name.
    start, end:
        0-based half-open genomic bounds (``end > start``).
    mean_depth:
        Mean read count per bin over the segment.
    log2_ratio:
        log2(mean_depth / expected reads per bin).
    z_score:
        Mean per-bin z-score.
    num_bins:
        Number of bins in the segment (>= 1).
    sv_type:
        DEL for losses, DUP for gains.
    """

    chrom: str
    start: int
    end: int
    mean_depth: float
    log2_ratio: float
    z_score: float
    num_bins: int
    sv_type: SvType

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class BreakpointCluster:
    """Evidence grouped around a single candidate breakpoint."""

    chrom: str
    position: int
    ci_low: int
    ci_high: int
    discordant_pairs: Tuple[DiscordantReadPair, ...] = ()
    split_reads: Tuple[SplitRead, ...] = ()
    mate_chrom: Optional[str] = None
    mate_position: Optional[int] = None

    @property
    def pe_support(self) -> int:
        return len(self.discordant_pairs)

    @property
    def sr_support(self) -> int:
        return len(self.split_reads)

    @property
    def total_support(self) -> int:
        return self.pe_support + self.sr_support

    @property
    def mean_map_q(self) -> float:
        mapqs = [p.map_q for p in self.discordant_pairs] + [s.map_q for s in self.split_reads]
        if not mapqs:
            return 0.0
        return sum(mapqs) / float(len(mapqs))


@dataclass(frozen=True)
class SvCall:
    """A called structural variant; the canonical output unit.

    ``start``/``end`` are 0-based half-open. ``sv_len`` is negative for
    deletions, positive for duplications/inversions/insertions and zero for
    breakends. ``ci_pos``/``ci_end`` are (low, high) offsets.
    """

    id: str
    chrom: str
    start: int
    end: int
    sv_type: SvType
    sv_len: int
    ci_pos: Tuple[int, int]
    ci_end: Tuple[int, int]
    quality: float
    paired_end_support: int
    split_read_support: int
    relative_depth: Optional[float]
    mate_chrom: Optional[str]
    mate_pos: Optional[int]
    filter: str  # PASS, LowQual or LowSupport
    genotype: str  # '0/1' or '1/1'

    def confidence(self) -> float:
        """Evidence score in [0, 1] combining PE, SR and depth support."""
        pe_score = min(self.paired_end_support / 10.0, 1.0)
        sr_score = min(self.split_read_support / 5.0, 1.0)
        depth_score = 0.0
        if self.relative_depth is not None:
            # full credit at 50% deviation from the expected depth
            depth_score = min(abs(1.0 - self.relative_depth) / 0.5, 1.0)
        return 0.3 * pe_score + 0.4 * sr_score + 0.3 * depth_score


@dataclass(frozen=True)
class SvEvidenceCollection:
    """All discordant-pair and split-read evidence for one sample."""

    discordant_pairs: Tuple[DiscordantReadPair, ...] = ()
    split_reads: Tuple[SplitRead, ...] = ()
    depth_bins: Dict[str, Sequence[int]] = field(default_factory=dict)
    sample_name: str = "SAMPLE"
    expected_insert_size: float = 0.0
    insert_size_sd: float = 0.0

    @property
    def total_discordant_pairs(self) -> int:
        return len(self.discordant_pairs)

    @property
    def total_split_reads(self) -> int:
        return len(self.split_reads)

    @property
    def inter_chromosomal_pairs(self) -> Tuple[DiscordantReadPair, ...]:
        return tuple(p for p in self.discordant_pairs if p.is_inter_chromosomal)

    @property
    def intra_chromosomal_pairs(self) -> Tuple[DiscordantReadPair, ...]:
        return tuple(p for p in self.discordant_pairs if not p.is_inter_chromosomal)


@dataclass(frozen=True)
class LibraryStats:
    """Library-level statistics sampled from a BAM."""

    mean_read_length: float
    mean_insert_size: float
    insert_size_sd: float
    reads_sampled: int


@dataclass(frozen=True)
class SvAnalysisResult:
    """Summary of one SV calling run (PASS calls only)."""

    sv_calls: Tuple[SvCall, ...]
    total_discordant_pairs: int
    total_split_reads: int
    cnv_segments: int
    analysis_timestamp: _dt.datetime
    reference_build: str
    mean_coverage: float
    depth_segments: Tuple[DepthSegment, ...] = ()


@dataclass(frozen=True)
class CachedSvInfo:
    """Metadata describing a written SV VCF."""

    vcf_path: str
    index_path: str
    reference_build: str
    created_at: str
    sv_call_count: int
    deletion_count: int
    duplication_count: int
    inversion_count: int
    translocation_count: int
