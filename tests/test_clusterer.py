from dataclasses import replace

import pytest

from svjoin.clusterer import EvidenceClusterer, greedy_cluster
from svjoin.config import SvCallerConfig
from svjoin.models import (
    FILTER_LOW_SUPPORT,
    FILTER_PASS,
    DepthSegment,
    DiscordantReadPair,
    DiscordantReason,
    SplitRead,
    SvCall,
    SvEvidenceCollection,
    SvType,
)


def _pair(pos1, pos2, s1="+", s2="-", insert=0, chrom1="chr1", chrom2=None, reason=None):
    chrom2 = chrom2 or chrom1
    if reason is None:
        reason = DiscordantReason.INTER_CHROMOSOMAL if chrom1 != chrom2 else DiscordantReason.INSERT_SIZE_OUTLIER
    return DiscordantReadPair(
        chrom1=chrom1,
        pos1=pos1,
        strand1=s1,
        chrom2=chrom2,
        pos2=pos2,
        strand2=s2,
        insert_size=insert,
        reason=reason,
        read_name=f"r{pos1}",
        map_q=60,
    )


def _split(pos, chrom="chr1"):
    return SplitRead(
        primary_chrom=chrom,
        primary_pos=pos,
        primary_strand="+",
        supplementary_chrom=chrom,
        supplementary_pos=pos + 5000,
        supplementary_strand="+",
        read_name=f"s{pos}",
        clip_length=50,
        map_q=60,
    )


def _evidence(pairs=(), splits=(), expected=400.0):
    return SvEvidenceCollection(
        discordant_pairs=tuple(pairs),
        split_reads=tuple(splits),
        expected_insert_size=expected,
        insert_size_sd=40.0,
    )


def _call(start, end, sv_type=SvType.DEL, chrom="chr1", id="BP"):
    return SvCall(
        id=id,
        chrom=chrom,
        start=start,
        end=end,
        sv_type=sv_type,
        sv_len=end - start,
        ci_pos=(-10, 10),
        ci_end=(-10, 10),
        quality=40.0,
        paired_end_support=5,
        split_read_support=0,
        relative_depth=None,
        mate_chrom=None,
        mate_pos=None,
        filter=FILTER_PASS,
        genotype="0/1",
    )


def _segment(start, end, sv_type=SvType.DEL, chrom="chr1", log2=-1.0):
    return DepthSegment(
        chrom=chrom,
        start=start,
        end=end,
        mean_depth=10.0,
        log2_ratio=log2,
        z_score=-6.0 if sv_type == SvType.DEL else 6.0,
        num_bins=(end - start) // 1000,
        sv_type=sv_type,
    )


def test_greedy_cluster_measures_from_first_member():
    clusters = greedy_cluster([(0, "a"), (300, "b"), (500, "c"), (501, "d"), (900, "e")], 500)
    assert [[item for _, item in c] for c in clusters] == [["a", "b", "c"], ["d", "e"]]


def test_large_insert_is_deletion_with_span_from_mates():
    pairs = [_pair(1000 + 10 * i, 2200, insert=1200) for i in range(3)]
    calls = EvidenceClusterer().cluster(_evidence(pairs))

    assert len(calls) == 1
    c = calls[0]
    assert c.sv_type == SvType.DEL
    assert (c.start, c.end) == (1010, 2200)
    assert c.sv_len == -1190
    assert c.ci_pos == (-10, 10)
    assert c.paired_end_support == 3
    assert c.quality == pytest.approx(3 * 5.0 + 60 * 0.5)
    assert c.id == "DEL_chr1_1010_1"


def test_small_insert_is_duplication():
    pairs = [_pair(1000 + 10 * i, 1020, insert=120) for i in range(3)]
    calls = EvidenceClusterer().cluster(_evidence(pairs))
    assert [c.sv_type for c in calls] == [SvType.DUP]


def test_same_strand_majority_is_inversion():
    pairs = [_pair(1000 + 10 * i, 5000, s1="+", s2="+", reason=DiscordantReason.WRONG_ORIENTATION) for i in range(3)]
    clusterer = EvidenceClusterer()
    bp = clusterer.cluster_intra_chromosomal("chr1", pairs, [])[0]
    assert clusterer.infer_sv_type(bp, 400.0) == SvType.INV


def test_reverse_forward_pairs_are_duplication():
    pairs = [_pair(1000 + 10 * i, 5000, s1="-", s2="+", reason=DiscordantReason.WRONG_ORIENTATION) for i in range(3)]
    clusterer = EvidenceClusterer()
    bp = clusterer.cluster_intra_chromosomal("chr1", pairs, [])[0]
    assert clusterer.infer_sv_type(bp, 0.0) == SvType.DUP


def test_support_thresholds_decide_filter():
    cfg = SvCallerConfig(min_paired_end_support=4, min_split_read_support=2, min_total_support=3)
    clusterer = EvidenceClusterer(cfg)

    three = [_pair(1000 + i, 2200, insert=1200) for i in range(3)]
    four = [_pair(1000 + i, 2200, insert=1200) for i in range(4)]

    assert clusterer.cluster(_evidence(three))[0].filter == FILTER_LOW_SUPPORT
    assert clusterer.cluster(_evidence(four))[0].filter == FILTER_PASS


def test_split_reads_alone_pass():
    calls = EvidenceClusterer().cluster(_evidence(splits=[_split(20_000 + i) for i in range(3)]))
    assert len(calls) == 1
    assert calls[0].split_read_support == 3
    assert calls[0].filter == FILTER_PASS


def test_weak_clusters_are_dropped():
    pairs = [_pair(1000, 2200, insert=1200), _pair(1010, 2200, insert=1200)]
    assert EvidenceClusterer().cluster(_evidence(pairs)) == []


def test_translocations_group_by_unordered_chromosome_pair():
    pairs = [
        _pair(1000, 5000, chrom1="chr1", chrom2="chr2"),
        _pair(5010, 1010, chrom1="chr2", chrom2="chr1"),
    ]
    calls = EvidenceClusterer().cluster(_evidence(pairs))

    assert len(calls) == 1
    bnd = calls[0]
    assert bnd.sv_type == SvType.BND
    assert bnd.chrom == "chr1"
    assert bnd.start == 1005
    assert (bnd.mate_chrom, bnd.mate_pos) == ("chr2", 5005)
    assert bnd.sv_len == 0
    assert bnd.paired_end_support == 2


def test_overlapping_depth_call_lends_relative_depth():
    clusterer = EvidenceClusterer()
    out = clusterer.integrate_depth([_call(5000, 20_000)], [_segment(4000, 21_000)])

    assert len(out) == 1
    assert out[0].id == "BP"
    assert out[0].relative_depth == pytest.approx(0.5)


def test_depth_only_calls_are_kept():
    clusterer = EvidenceClusterer()
    out = clusterer.integrate_depth(
        [_call(5000, 20_000)],
        [_segment(50_000, 70_000), _segment(4000, 21_000, sv_type=SvType.DUP, log2=0.8)],
    )

    assert len(out) == 3
    assert out[0].relative_depth is None
    assert sorted(c.id.split("_")[0] for c in out[1:]) == ["CNV", "CNV"]


def test_each_depth_call_corroborates_one_call():
    clusterer = EvidenceClusterer()
    out = clusterer.integrate_depth(
        [_call(5000, 10_000, id="a"), _call(8000, 12_000, id="b")],
        [_segment(4000, 21_000)],
    )
    assert [(c.id, c.relative_depth is not None) for c in out] == [("a", True), ("b", False)]


def test_output_sorted_and_deterministic():
    pairs = [_pair(9000 + i, 11_000, insert=2000, chrom1="chr2") for i in range(3)]
    pairs += [_pair(3000 + i, 4500, insert=1500) for i in range(3)]
    pairs += [_pair(100 + i, 2000, insert=1900) for i in range(3)]
    evidence = _evidence(pairs)
    segments = [_segment(50_000, 70_000)]

    first = EvidenceClusterer().cluster(evidence, segments)
    second = EvidenceClusterer().cluster(evidence, segments)

    assert first == second
    assert [(c.chrom, c.start) for c in first] == sorted((c.chrom, c.start) for c in first)
    assert len(first) == 4


def test_confidence_combines_support_and_depth():
    assert _call(0, 1000).confidence() == pytest.approx(0.3 * 0.5)
    rich = replace(_call(0, 1000), paired_end_support=20, split_read_support=5, relative_depth=0.0)
    assert rich.confidence() == pytest.approx(1.0)
