"""Breakpoint clustering of discordant pairs and split reads.

Evidence is reduced to positions on a chromosome and clustered greedily:
positions are visited in sorted order and a new cluster starts whenever a
position lies more than ``max_cluster_distance`` bp past the first member of
the running cluster. Inter-chromosomal pairs are clustered separately per
chromosome pair and become BND calls; everything else is typed from strand
orientation and insert size.

Depth segments passed to :meth:`EvidenceClusterer.cluster` are reconciled
with the breakpoint calls: an overlapping depth call of the same type lends
its relative depth to the breakpoint call instead of being reported twice.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

from .config import DEFAULT_CONFIG, SvCallerConfig
from .models import (
    FILTER_LOW_SUPPORT,
    FILTER_PASS,
    GT_HET,
    GT_HOM_ALT,
    BreakpointCluster,
    DepthSegment,
    DiscordantReadPair,
    DiscordantReason,
    SplitRead,
    SvCall,
    SvEvidenceCollection,
    SvType,
)
from .segmenter import DepthSegmenter
from .utils import floor_mean, group_by, overlaps, sort_key

logger = logging.getLogger(__name__)

T = TypeVar("T")
Evidence = Union[DiscordantReadPair, SplitRead]

_MAX_QUALITY = 99.0
_HOM_ALT_MIN_SUPPORT = 10
_DEL_INSERT_FACTOR = 2.0
_DUP_INSERT_FACTOR = 0.5


def greedy_cluster(items: Iterable[Tuple[int, T]], max_distance: int) -> List[List[Tuple[int, T]]]:
    """Cluster (position, item) tuples in one left-to-right pass.

    A new cluster starts when a position is more than ``max_distance`` past the
    position of the current cluster's first member.
    """
    ordered = sorted(items, key=lambda x: x[0])
    clusters: List[List[Tuple[int, T]]] = []
    current: List[Tuple[int, T]] = []
    cluster_start = 0
    for pos, item in ordered:
        if current and pos - cluster_start > max_distance:
            clusters.append(current)
            current = []
        if not current:
            cluster_start = pos
        current.append((pos, item))
    if current:
        clusters.append(current)
    return clusters


def _orient_to(pair: DiscordantReadPair, chrom: str) -> Tuple[int, int]:
    """Return (position on ``chrom``, partner position) for an inter-chromosomal pair."""
    if pair.chrom1 == chrom:
        return pair.pos1, pair.pos2
    return pair.pos2, pair.pos1


class EvidenceClusterer:
    """Clusters PE/SR evidence into SV calls and integrates depth calls."""

    def __init__(self, config: SvCallerConfig = DEFAULT_CONFIG) -> None:
        self.config = config
        self._segmenter = DepthSegmenter(config)

    def cluster(
        self,
        evidence: SvEvidenceCollection,
        depth_segments: Sequence[DepthSegment] = (),
    ) -> List[SvCall]:
        """Cluster evidence into SV calls, merged with depth calls and sorted by (chrom, start)."""
        calls: List[SvCall] = []
        index = itertools.count(1)

        for bp in self.cluster_translocations(evidence.inter_chromosomal_pairs):
            calls.append(self._to_call(bp, SvType.BND, next(index)))
        n_bnd = len(calls)

        pairs_by_chrom = group_by(evidence.intra_chromosomal_pairs, lambda p: p.chrom1)
        splits_by_chrom = group_by(evidence.split_reads, lambda s: s.primary_chrom)
        for chrom in sorted(set(pairs_by_chrom) | set(splits_by_chrom)):
            clusters = self.cluster_intra_chromosomal(
                chrom,
                pairs_by_chrom.get(chrom, []),
                splits_by_chrom.get(chrom, []),
            )
            kept = 0
            for bp in clusters:
                if bp.total_support < self.config.min_total_support:
                    continue
                sv_type = self.infer_sv_type(bp, evidence.expected_insert_size)
                calls.append(self._to_call(bp, sv_type, next(index)))
                kept += 1
            logger.debug("Chromosome %s: %d clusters, %d called", chrom, len(clusters), kept)

        logger.info(
            "Evidence clustering produced %d breakpoint calls (%d BND)",
            len(calls),
            n_bnd,
        )

        integrated = self.integrate_depth(calls, depth_segments)
        integrated.sort(key=sort_key)
        return integrated

    # -----------------
    # clustering
    # -----------------

    def cluster_translocations(self, pairs: Sequence[DiscordantReadPair]) -> List[BreakpointCluster]:
        """One cluster per positional group within each unordered chromosome pair."""
        groups: Dict[Tuple[str, str], List[DiscordantReadPair]] = group_by(
            pairs, lambda p: tuple(sorted((p.chrom1, p.chrom2)))
        )
        out: List[BreakpointCluster] = []
        for first, second in sorted(groups):
            points: List[Tuple[int, Tuple[int, DiscordantReadPair]]] = []
            for p in groups[(first, second)]:
                pos, partner = _orient_to(p, first)
                points.append((pos, (partner, p)))

            for members in greedy_cluster(points, self.config.max_cluster_distance):
                positions = [pos for pos, _ in members]
                partners = [partner for _, (partner, _) in members]
                position = floor_mean(positions)
                out.append(
                    BreakpointCluster(
                        chrom=first,
                        position=position,
                        ci_low=min(positions) - position,
                        ci_high=max(positions) - position,
                        discordant_pairs=tuple(p for _, (_, p) in members),
                        split_reads=(),
                        mate_chrom=second,
                        mate_position=floor_mean(partners),
                    )
                )
        return out

    def cluster_intra_chromosomal(
        self,
        chrom: str,
        pairs: Sequence[DiscordantReadPair],
        splits: Sequence[SplitRead],
    ) -> List[BreakpointCluster]:
        points: List[Tuple[int, Evidence]] = [(p.pos1, p) for p in pairs]
        points.extend((s.primary_pos, s) for s in splits)

        out: List[BreakpointCluster] = []
        for members in greedy_cluster(points, self.config.max_cluster_distance):
            positions = [pos for pos, _ in members]
            position = floor_mean(positions)
            out.append(
                BreakpointCluster(
                    chrom=chrom,
                    position=position,
                    ci_low=min(positions) - position,
                    ci_high=max(positions) - position,
                    discordant_pairs=tuple(e for _, e in members if isinstance(e, DiscordantReadPair)),
                    split_reads=tuple(e for _, e in members if isinstance(e, SplitRead)),
                )
            )
        return out

    # -----------------
    # classification
    # -----------------

    def infer_sv_type(self, cluster: BreakpointCluster, expected_insert_size: float = 0.0) -> SvType:
        """Infer DEL/DUP/INV from pair orientation and insert size."""
        if cluster.mate_chrom is not None:
            return SvType.BND

        pairs = cluster.discordant_pairs
        fr = rf = same_strand = 0
        for p in pairs:
            if p.strand1 == p.strand2:
                same_strand += 1
                continue
            upstream = p.pos1 < p.pos2
            # FR: leftmost read forward, rightmost reverse
            if (p.strand1 == "+") == upstream:
                fr += 1
            else:
                rf += 1

        if same_strand * 2 > len(pairs):
            return SvType.INV

        outliers = [p.insert_size for p in pairs if p.reason == DiscordantReason.INSERT_SIZE_OUTLIER]
        if outliers and expected_insert_size > 0:
            avg_insert = sum(outliers) / float(len(outliers))
            if avg_insert > _DEL_INSERT_FACTOR * expected_insert_size:
                return SvType.DEL
            if avg_insert < _DUP_INSERT_FACTOR * expected_insert_size:
                return SvType.DUP

        if rf > fr:
            return SvType.DUP
        return SvType.DEL

    # -----------------
    # calls
    # -----------------

    def _to_call(self, cluster: BreakpointCluster, sv_type: SvType, index: int) -> SvCall:
        cfg = self.config
        quality = min(cluster.total_support * 5.0 + cluster.mean_map_q * 0.5, _MAX_QUALITY)

        mate_chrom: Optional[str] = None
        mate_pos: Optional[int] = None
        if sv_type == SvType.BND:
            sv_len = 0
            end = cluster.position
            mate_chrom = cluster.mate_chrom
            mate_pos = cluster.mate_position
        else:
            mates = [p.pos2 for p in cluster.discordant_pairs if p.pos2 != cluster.position]
            if mates:
                length = abs(floor_mean(mates) - cluster.position)
            else:
                # no mate side recorded; conservative placeholder span
                length = cfg.max_cluster_distance
            end = cluster.position + length
            sv_len = -length if sv_type == SvType.DEL else length

        passes = (
            cluster.pe_support >= cfg.min_paired_end_support
            or cluster.sr_support >= cfg.min_split_read_support
        )
        return SvCall(
            id=f"{sv_type.value}_{cluster.chrom}_{cluster.position}_{index}",
            chrom=cluster.chrom,
            start=cluster.position,
            end=end,
            sv_type=sv_type,
            sv_len=sv_len,
            ci_pos=(cluster.ci_low, cluster.ci_high),
            ci_end=(cluster.ci_low, cluster.ci_high),
            quality=quality,
            paired_end_support=cluster.pe_support,
            split_read_support=cluster.sr_support,
            relative_depth=None,
            mate_chrom=mate_chrom,
            mate_pos=mate_pos,
            filter=FILTER_PASS if passes else FILTER_LOW_SUPPORT,
            genotype=GT_HOM_ALT if cluster.total_support >= _HOM_ALT_MIN_SUPPORT else GT_HET,
        )

    # -----------------
    # integration
    # -----------------

    def integrate_depth(
        self,
        breakpoint_calls: Sequence[SvCall],
        depth_segments: Sequence[DepthSegment],
    ) -> List[SvCall]:
        """Attach overlapping depth evidence to PE/SR calls; keep the rest as depth-only calls.

        Each depth call corroborates at most one PE/SR call.
        """
        if not depth_segments:
            return list(breakpoint_calls)

        depth_calls = self._segmenter.to_sv_calls(depth_segments)
        consumed = [False] * len(depth_calls)

        out: List[SvCall] = []
        for call in breakpoint_calls:
            match = _first_match(
                depth_calls,
                lambda idx, d: not consumed[idx]
                and d.chrom == call.chrom
                and d.sv_type == call.sv_type
                and overlaps(call.start, call.end, d.start, d.end),
            )
            if match is None:
                out.append(call)
                continue
            consumed[match] = True
            out.append(_with_relative_depth(call, depth_calls[match].relative_depth))

        depth_only = [d for idx, d in enumerate(depth_calls) if not consumed[idx]]
        logger.info(
            "Depth integration: %d depth calls corroborated PE/SR calls, %d kept as depth-only",
            len(depth_calls) - len(depth_only),
            len(depth_only),
        )
        out.extend(depth_only)
        return out


def _first_match(items: Sequence[T], pred: Callable[[int, T], bool]) -> Optional[int]:
    for idx, item in enumerate(items):
        if pred(idx, item):
            return idx
    return None


def _with_relative_depth(call: SvCall, relative_depth: Optional[float]) -> SvCall:
    return replace(call, relative_depth=relative_depth)
