"""Copy-number segmentation of binned read depth.

Each bin's read count is compared with the count expected from the sample's
mean coverage under a Poisson-like model, ``z = (obs - exp) / sqrt(exp)``.
Runs of bins that deviate in the same direction become DEL/DUP segments.

A segment opens on a bin with ``|z| >= min_depth_z_score`` and stays open
while following bins deviate by at least half that threshold (hysteresis).
A single weak bin does not close it when at least two of the three bins
starting at that weak bin still deviate.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from .config import DEFAULT_CONFIG, SvCallerConfig
from .models import (
    FILTER_LOW_QUAL,
    FILTER_PASS,
    GT_HET,
    GT_HOM_ALT,
    DepthSegment,
    SvCall,
    SvType,
)
from .utils import sort_key

logger = logging.getLogger(__name__)

_LOOKAHEAD_BINS = 3
_LOOKAHEAD_MIN_ABERRANT = 2
_MIN_DEPTH_RATIO = 0.001
_MAX_QUALITY = 99.0
_HOM_DEL_LOG2 = -0.9
_HIGH_GAIN_LOG2 = 0.7


def expected_reads_per_bin(mean_coverage: float, bin_size: int, read_length: float) -> float:
    if read_length <= 0:
        return 0.0
    return mean_coverage * bin_size / read_length


def bin_z_scores(bins: Sequence[int], expected: float) -> np.ndarray:
    """Per-bin z-scores under a Poisson-like variance approximation."""
    counts = np.asarray(bins, dtype=np.float64)
    if expected <= 0:
        return np.zeros(len(counts), dtype=np.float64)
    return (counts - expected) / math.sqrt(max(expected, 1.0))


class DepthSegmenter:
    """Turns per-contig depth bins into DEL/DUP segments and calls."""

    def __init__(self, config: SvCallerConfig = DEFAULT_CONFIG) -> None:
        self.config = config

    # -----------------
    # segmentation
    # -----------------

    def segment(
        self,
        depth_bins: Mapping[str, Sequence[int]],
        contig_lengths: Optional[Mapping[str, int]],
        mean_coverage: float,
        read_length: float = 150.0,
    ) -> List[DepthSegment]:
        """Segment depth bins into copy-number segments.

        Parameters
        ----------
        depth_bins:
            Contig -> read counts per bin.
        contig_lengths:
            Contig -> length in bp. Missing contigs default to
            ``len(bins) * bin_size``.
        mean_coverage:
            Sample-wide mean coverage.
        read_length:
            Mean read length, used to turn coverage into reads per bin.

        Returns
        -------
        list of DepthSegment sorted by (chrom, start).
        """
        bin_size = self.config.bin_size
        expected = expected_reads_per_bin(mean_coverage, bin_size, read_length)
        if expected <= 0:
            logger.warning(
                "Expected reads per bin is %.3f (coverage=%.3f, read_length=%.1f); "
                "no depth segments will be called.",
                expected,
                mean_coverage,
                read_length,
            )

        lengths = contig_lengths or {}
        segments: List[DepthSegment] = []
        for contig in sorted(depth_bins):
            bins = depth_bins[contig]
            contig_length = int(lengths.get(contig, len(bins) * bin_size))
            found = self._segment_contig(contig, bins, contig_length, expected)
            logger.debug("Contig %s: %d bins, %d segments", contig, len(bins), len(found))
            segments.extend(found)

        segments.sort(key=sort_key)
        logger.info("Depth segmentation produced %d segments (expected %.2f reads/bin)", len(segments), expected)
        return segments

    def _segment_contig(
        self,
        contig: str,
        bins: Sequence[int],
        contig_length: int,
        expected: float,
    ) -> List[DepthSegment]:
        z = bin_z_scores(bins, expected)
        counts = np.asarray(bins, dtype=np.float64)
        threshold = self.config.min_depth_z_score
        n = len(z)

        out: List[DepthSegment] = []
        i = 0
        while i < n:
            if abs(z[i]) < threshold:
                i += 1
                continue

            is_loss = bool(z[i] < 0)
            last = i
            while last + 1 < n:
                nxt = last + 1
                if self._keeps_open(z[nxt], is_loss):
                    last = nxt
                    continue
                window = z[nxt : min(nxt + _LOOKAHEAD_BINS, n)]
                aberrant = sum(1 for w in window if self._keeps_open(w, is_loss))
                if aberrant >= _LOOKAHEAD_MIN_ABERRANT:
                    # transient dip inside a real CNV
                    last = nxt
                    continue
                break

            seg = self._close_segment(contig, i, last, counts, z, contig_length, expected)
            if seg is not None:
                out.append(seg)
            i = last + 1
        return out

    def _keeps_open(self, z: float, is_loss: bool) -> bool:
        half = 0.5 * self.config.min_depth_z_score
        if is_loss:
            return z <= -half
        return z >= half

    def _close_segment(
        self,
        contig: str,
        first: int,
        last: int,
        counts: np.ndarray,
        z: np.ndarray,
        contig_length: int,
        expected: float,
    ) -> Optional[DepthSegment]:
        bin_size = self.config.bin_size
        start = first * bin_size
        end = min((last + 1) * bin_size, contig_length)
        if end - start < self.config.min_cnv_size or end <= start:
            return None

        num_bins = last - first + 1
        mean_depth = float(counts[first : last + 1].sum()) / num_bins
        mean_z = float(z[first : last + 1].sum()) / num_bins

        if expected > 0:
            log2_ratio = math.log2(max(mean_depth / expected, _MIN_DEPTH_RATIO))
        else:
            log2_ratio = 0.0

        return DepthSegment(
            chrom=contig,
            start=start,
            end=end,
            mean_depth=mean_depth,
            log2_ratio=log2_ratio,
            z_score=mean_z,
            num_bins=num_bins,
            sv_type=SvType.DUP if mean_z > 0 else SvType.DEL,
        )

    # -----------------
    # merging
    # -----------------

    def merge_nearby_segments(
        self,
        segments: Sequence[DepthSegment],
        max_gap: Optional[int] = None,
    ) -> List[DepthSegment]:
        """Merge consecutive same-type segments separated by at most ``max_gap`` bp.

        Depth, z-score and log2 ratio of a merged segment are averages weighted
        by ``num_bins``. Applying the merge twice gives the same result.
        """
        if not segments:
            return []
        gap = self.config.max_merge_gap if max_gap is None else int(max_gap)

        ordered = sorted(segments, key=sort_key)
        merged: List[DepthSegment] = []
        current = ordered[0]
        for nxt in ordered[1:]:
            if (
                nxt.chrom == current.chrom
                and nxt.sv_type == current.sv_type
                and nxt.start - current.end <= gap
            ):
                current = _merge_pair(current, nxt)
            else:
                merged.append(current)
                current = nxt
        merged.append(current)
        return merged

    # -----------------
    # calls
    # -----------------

    def to_sv_calls(self, segments: Sequence[DepthSegment]) -> List[SvCall]:
        """Convert depth segments into depth-only SV calls."""
        ci = max(self.config.bin_size // 2, 100)
        calls: List[SvCall] = []
        for idx, seg in enumerate(segments):
            quality = min(abs(seg.z_score) * 10.0, _MAX_QUALITY)
            length = seg.end - seg.start
            calls.append(
                SvCall(
                    id=f"CNV_{seg.chrom}_{seg.start}_{idx}",
                    chrom=seg.chrom,
                    start=seg.start,
                    end=seg.end,
                    sv_type=seg.sv_type,
                    sv_len=-length if seg.sv_type == SvType.DEL else length,
                    ci_pos=(-ci, ci),
                    ci_end=(-ci, ci),
                    quality=quality,
                    paired_end_support=0,
                    split_read_support=0,
                    relative_depth=2.0 ** seg.log2_ratio,
                    mate_chrom=None,
                    mate_pos=None,
                    filter=FILTER_PASS if quality >= self.config.min_quality else FILTER_LOW_QUAL,
                    genotype=_depth_genotype(seg),
                )
            )
        return calls


def _merge_pair(a: DepthSegment, b: DepthSegment) -> DepthSegment:
    total = a.num_bins + b.num_bins

    def weighted(x: float, y: float) -> float:
        return (x * a.num_bins + y * b.num_bins) / total

    return DepthSegment(
        chrom=a.chrom,
        start=a.start,
        end=max(a.end, b.end),
        mean_depth=weighted(a.mean_depth, b.mean_depth),
        log2_ratio=weighted(a.log2_ratio, b.log2_ratio),
        z_score=weighted(a.z_score, b.z_score),
        num_bins=total,
        sv_type=a.sv_type,
    )


def _depth_genotype(seg: DepthSegment) -> str:
    if seg.sv_type == SvType.DEL and seg.log2_ratio < _HOM_DEL_LOG2:
        return GT_HOM_ALT
    if seg.sv_type == SvType.DUP and seg.log2_ratio > _HIGH_GAIN_LOG2:
        return GT_HOM_ALT
    return GT_HET


def segments_by_contig(segments: Sequence[DepthSegment]) -> Dict[str, List[DepthSegment]]:
    out: Dict[str, List[DepthSegment]] = {}
    for seg in segments:
        out.setdefault(seg.chrom, []).append(seg)
    return out
