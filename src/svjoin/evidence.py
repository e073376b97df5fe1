"""Single-pass BAM walker collecting SV evidence.

One pass over the alignments gathers three kinds of evidence:

- read-start counts per fixed-width bin (depth signal),
- discordant read pairs (inter-chromosomal, insert-size outlier, non-FR),
- split reads from the ``SA`` tag.

Each discordant pair is recorded once: from its leftmost mate for
intra-chromosomal pairs and from read 1 for inter-chromosomal pairs.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np
import pysam
from tqdm import tqdm

from .config import DEFAULT_CONFIG, SvCallerConfig
from .models import DiscordantReadPair, DiscordantReason, LibraryStats, SplitRead, SvEvidenceCollection

logger = logging.getLogger(__name__)

_CLIP_OPS = (4, 5)  # S, H


def _strand(is_reverse: bool) -> str:
    return "-" if is_reverse else "+"


def _is_primary(read: pysam.AlignedSegment) -> bool:
    return not (read.is_secondary or read.is_supplementary)


def sample_name_from_header(header: pysam.AlignmentHeader, default: str = "unknown") -> str:
    """Return the SM of the first read group, or ``default``."""
    read_groups = header.to_dict().get("RG", [])
    for rg in read_groups:
        sm = rg.get("SM")
        if sm:
            return str(sm)
    return default


def estimate_library_stats(bam_path: str, *, max_reads: int = 200_000) -> LibraryStats:
    """Estimate mean read length and insert-size mean/SD from the first primary reads.

    Insert sizes come from read 1 of proper pairs only.
    """
    read_lengths: List[int] = []
    inserts: List[int] = []
    with pysam.AlignmentFile(bam_path, "rb") as bam:
        for read in bam.fetch(until_eof=True):
            if read.is_unmapped or not _is_primary(read):
                continue
            length = read.infer_read_length() or read.query_length
            if length:
                read_lengths.append(int(length))
            if read.is_paired and read.is_proper_pair and read.is_read1 and read.template_length != 0:
                inserts.append(abs(int(read.template_length)))
            if len(read_lengths) >= max_reads:
                break

    if not read_lengths:
        raise ValueError(f"No mapped primary reads found in BAM: {bam_path}")

    lengths_arr = np.asarray(read_lengths, dtype=np.float64)
    if inserts:
        ins_arr = np.asarray(inserts, dtype=np.float64)
        mean_insert = float(ins_arr.mean())
        sd_insert = float(ins_arr.std())
    else:
        logger.warning("No proper pairs found in %s; insert-size outliers will not be detected.", bam_path)
        mean_insert = 0.0
        sd_insert = 0.0

    stats = LibraryStats(
        mean_read_length=float(lengths_arr.mean()),
        mean_insert_size=mean_insert,
        insert_size_sd=sd_insert,
        reads_sampled=len(read_lengths),
    )
    logger.info(
        "Library stats from %d reads: read length %.1f, insert %.1f +/- %.1f",
        stats.reads_sampled,
        stats.mean_read_length,
        stats.mean_insert_size,
        stats.insert_size_sd,
    )
    return stats


def coverage_from_bins(
    depth_bins: Mapping[str, Iterable[int]],
    bin_size: int,
    read_length: float,
) -> float:
    """Typical coverage implied by the median read-start count per bin.

    The median keeps large CNVs from shifting the baseline.
    """
    arrays = [np.asarray(list(b), dtype=np.float64) for b in depth_bins.values()]
    arrays = [a for a in arrays if a.size]
    if not arrays or bin_size <= 0:
        return 0.0
    median_count = float(np.median(np.concatenate(arrays)))
    return median_count * read_length / float(bin_size)


def _is_expected_orientation(read: pysam.AlignedSegment) -> bool:
    """True for FR pairs: the upstream mate forward, the downstream mate reverse."""
    if read.is_reverse == read.mate_is_reverse:
        return False
    if read.reference_start < read.next_reference_start:
        return not read.is_reverse
    return read.is_reverse


def detect_discordant_pair(
    read: pysam.AlignedSegment,
    *,
    min_map_q: int,
    insert_min: float,
    insert_max: float,
) -> Optional[DiscordantReadPair]:
    """Classify a primary paired read; return None if the pair looks concordant."""
    if read.mate_is_unmapped or read.mapping_quality < min_map_q:
        return None

    base = dict(
        chrom1=str(read.reference_name),
        pos1=int(read.reference_start),
        strand1=_strand(read.is_reverse),
        chrom2=str(read.next_reference_name),
        pos2=int(read.next_reference_start),
        strand2=_strand(read.mate_is_reverse),
        read_name=str(read.query_name),
        map_q=int(read.mapping_quality),
    )

    if read.reference_id != read.next_reference_id:
        if not read.is_read1:
            return None
        return DiscordantReadPair(insert_size=0, reason=DiscordantReason.INTER_CHROMOSOMAL, **base)

    # one record per pair: the leftmost mate
    if read.reference_start > read.next_reference_start or (
        read.reference_start == read.next_reference_start and not read.is_read1
    ):
        return None

    insert_size = abs(int(read.template_length))
    if insert_max > 0 and (insert_size > insert_max or (0 < insert_size < insert_min)):
        return DiscordantReadPair(insert_size=insert_size, reason=DiscordantReason.INSERT_SIZE_OUTLIER, **base)

    if not _is_expected_orientation(read):
        return DiscordantReadPair(insert_size=insert_size, reason=DiscordantReason.WRONG_ORIENTATION, **base)

    return None


def extract_split_read(
    read: pysam.AlignedSegment,
    *,
    min_map_q: int,
    min_clip_length: int,
) -> Optional[SplitRead]:
    """Parse the first ``SA`` entry (rname,pos,strand,CIGAR,mapQ,NM) of a read."""
    if not read.has_tag("SA") or read.mapping_quality < min_map_q:
        return None
    sa = str(read.get_tag("SA"))
    parts = sa.split(";")[0].split(",")
    if len(parts) < 5:
        logger.debug("Malformed SA tag on %s: %s", read.query_name, sa)
        return None
    try:
        supp_pos = int(parts[1]) - 1  # SA positions are 1-based
        supp_map_q = int(parts[4])
    except ValueError:
        logger.debug("Malformed SA tag on %s: %s", read.query_name, sa)
        return None

    clip = sum(length for op, length in (read.cigartuples or []) if op in _CLIP_OPS)
    if supp_map_q < min_map_q or clip < min_clip_length:
        return None

    return SplitRead(
        primary_chrom=str(read.reference_name),
        primary_pos=int(read.reference_start),
        primary_strand=_strand(read.is_reverse),
        supplementary_chrom=parts[0],
        supplementary_pos=supp_pos,
        supplementary_strand=parts[2][:1] or "+",
        read_name=str(read.query_name),
        clip_length=int(clip),
        map_q=min(int(read.mapping_quality), supp_map_q),
    )


def collect_evidence(
    bam_path: str,
    *,
    config: SvCallerConfig = DEFAULT_CONFIG,
    expected_insert_size: float,
    insert_size_sd: float,
    contig_lengths: Optional[Mapping[str, int]] = None,
    sample_name: Optional[str] = None,
    skip_duplicates: bool = True,
    progress: bool = True,
) -> SvEvidenceCollection:
    """Walk a BAM once and return depth bins, discordant pairs and split reads.

    Parameters
    ----------
    bam_path:
        Coordinate-sorted BAM.
    config:
        Thresholds (bin size, MAPQ, insert-size z, clip length).
    expected_insert_size, insert_size_sd:
        Library insert-size model. Pairs outside ``mean +/- z * sd`` are outliers;
        a non-positive mean disables the insert-size test.
    contig_lengths:
        Contigs to bin. Defaults to every contig in the BAM header.
    sample_name:
        Overrides the read-group sample name.
    skip_duplicates:
        Skip reads flagged as PCR/optical duplicates.
    progress:
        Show a tqdm progress bar.
    """
    bin_size = config.bin_size
    z = config.insert_size_z_threshold
    insert_max = expected_insert_size + z * insert_size_sd if expected_insert_size > 0 else 0.0
    insert_min = max(0.0, expected_insert_size - z * insert_size_sd)

    counts = {
        "reads_total": 0,
        "reads_unmapped": 0,
        "reads_skipped_duplicates": 0,
        "discordant_pairs": 0,
        "split_reads": 0,
    }
    pairs: List[DiscordantReadPair] = []
    splits: List[SplitRead] = []

    with pysam.AlignmentFile(bam_path, "rb") as bam:
        if contig_lengths is None:
            contig_lengths = dict(zip(bam.references, bam.lengths))
        sample = sample_name or sample_name_from_header(bam.header)

        depth: Dict[str, np.ndarray] = {
            contig: np.zeros((int(length) + bin_size - 1) // bin_size, dtype=np.int64)
            for contig, length in contig_lengths.items()
        }

        it: Iterable[pysam.AlignedSegment] = bam.fetch(until_eof=True)
        if progress:
            it = tqdm(it, unit="read", desc="Collecting SV evidence")

        for read in it:
            counts["reads_total"] += 1
            if read.is_unmapped:
                counts["reads_unmapped"] += 1
                continue
            if skip_duplicates and read.is_duplicate:
                counts["reads_skipped_duplicates"] += 1
                continue
            if not _is_primary(read):
                continue

            bins = depth.get(str(read.reference_name))
            if bins is not None:
                idx = read.reference_start // bin_size
                if 0 <= idx < len(bins):
                    bins[idx] += 1

            if read.is_paired:
                dp = detect_discordant_pair(
                    read,
                    min_map_q=config.min_map_q,
                    insert_min=insert_min,
                    insert_max=insert_max,
                )
                if dp is not None:
                    pairs.append(dp)

            sr = extract_split_read(read, min_map_q=config.min_map_q, min_clip_length=config.min_clip_length)
            if sr is not None:
                splits.append(sr)

    counts["discordant_pairs"] = len(pairs)
    counts["split_reads"] = len(splits)
    logger.info("Evidence collection counts: %s", counts)

    return SvEvidenceCollection(
        discordant_pairs=tuple(pairs),
        split_reads=tuple(splits),
        depth_bins={contig: bins.tolist() for contig, bins in depth.items()},
        sample_name=sample,
        expected_insert_size=float(expected_insert_size),
        insert_size_sd=float(insert_size_sd),
    )
