from __future__ import annotations

import random
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pysam

from .utils import ensure_outdir, write_json

READ_LENGTH = 100
MEAN_INSERT = 300
FRAGMENT_STEP = 10  # one fragment start every 10 bp -> 20x coverage

CONTIGS: Tuple[Tuple[str, int], ...] = (("chr1", 60_000), ("chr2", 30_000))
DELETION = ("chr1", 20_000, 35_000)

_FLAG_PAIRED = 0x1
_FLAG_PROPER = 0x2
_FLAG_REVERSE = 0x10
_FLAG_MATE_REVERSE = 0x20
_FLAG_READ1 = 0x40
_FLAG_READ2 = 0x80

_READ1_FR = _FLAG_PAIRED | _FLAG_MATE_REVERSE | _FLAG_READ1
_READ2_FR = _FLAG_PAIRED | _FLAG_REVERSE | _FLAG_READ2


def _make_read(
    name: str,
    ref_id: int,
    start0: int,
    *,
    flag: int = 0,
    mate_ref_id: int = -1,
    mate_start0: int = -1,
    tlen: int = 0,
    cigar: Optional[Sequence[Tuple[int, int]]] = None,
    tags: Sequence[Tuple[str, Any]] = (),
    mapq: int = 60,
) -> pysam.AlignedSegment:
    seq = ("ACGT" * (READ_LENGTH // 4 + 1))[:READ_LENGTH]
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = seq
    a.flag = flag
    a.reference_id = ref_id
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = list(cigar) if cigar else [(0, READ_LENGTH)]
    a.next_reference_id = mate_ref_id
    a.next_reference_start = mate_start0
    a.template_length = tlen
    a.query_qualities = pysam.qualitystring_to_array("I" * READ_LENGTH)
    a.set_tag("RG", "toy")
    for tag, value in tags:
        a.set_tag(tag, value)
    return a


def _pair(
    name: str,
    ref1: int,
    start1: int,
    ref2: int,
    start2: int,
    *,
    proper: bool,
) -> List[pysam.AlignedSegment]:
    extra = _FLAG_PROPER if proper else 0
    if ref1 == ref2:
        tlen = start2 + READ_LENGTH - start1
    else:
        tlen = 0
    return [
        _make_read(f"{name}", ref1, start1, flag=_READ1_FR | extra, mate_ref_id=ref2, mate_start0=start2, tlen=tlen),
        _make_read(f"{name}", ref2, start2, flag=_READ2_FR | extra, mate_ref_id=ref1, mate_start0=start1, tlen=-tlen),
    ]


def _in_deletion(contig: str, start: int, end: int) -> bool:
    chrom, del_start, del_end = DELETION
    return contig == chrom and start < del_end and end > del_start


def make_toy_data(*, outdir: str | Path, seed: int = 7) -> Dict[str, Any]:
    """Create a small paired-end BAM carrying three planted SVs.

    The BAM has ~20x uniform coverage with:

    - a 15 kb deletion on chr1 (no reads, plus 8 spanning discordant pairs),
    - a chr1/chr2 translocation supported by 6 inter-chromosomal pairs,
    - 4 split reads on chr2 with a supplementary alignment 5 kb downstream.

    Returns
    -------
    dict
        Paths to the generated files, library parameters and the planted truth.
    """
    outdir_p = ensure_outdir(outdir)
    rng = random.Random(seed)

    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": name, "LN": length} for name, length in CONTIGS],
        "RG": [{"ID": "toy", "SM": "TOY"}],
    }

    reads: List[pysam.AlignedSegment] = []
    for ref_id, (contig, length) in enumerate(CONTIGS):
        for s in range(0, length, FRAGMENT_STEP):
            insert = rng.randint(MEAN_INSERT - 20, MEAN_INSERT + 20)
            if s + insert > length or _in_deletion(contig, s, s + insert):
                continue
            reads.extend(_pair(f"{contig}_f{s}", ref_id, s, ref_id, s + insert - READ_LENGTH, proper=True))

    # pairs spanning the deletion
    for i in range(8):
        reads.extend(_pair(f"del_{i}", 0, 19_600 + i * 10, 0, 35_050 + i * 10, proper=False))

    # chr1:45000 joined to chr2:10000
    for i in range(6):
        reads.extend(_pair(f"tra_{i}", 0, 45_000 + i * 20, 1, 10_000 + i * 20, proper=False))

    for i in range(4):
        reads.append(
            _make_read(
                f"split_{i}",
                1,
                20_000 + i * 5,
                cigar=[(0, READ_LENGTH // 2), (4, READ_LENGTH // 2)],
                tags=[("SA", "chr2,25001,+,50S50M,60,0;")],
            )
        )

    reads.sort(key=lambda r: (r.reference_id, r.reference_start))

    bam_path = outdir_p / "toy.bam"
    with pysam.AlignmentFile(str(bam_path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)
    pysam.index(str(bam_path))

    summary = {
        "bam": str(bam_path),
        "outdir": str(outdir_p),
        "sample": "TOY",
        "read_length": READ_LENGTH,
        "mean_insert_size": MEAN_INSERT,
        "mean_coverage": 2.0 * READ_LENGTH / FRAGMENT_STEP,
        "planted": {
            "deletion": {"chrom": DELETION[0], "start": DELETION[1], "end": DELETION[2]},
            "translocation": {"chrom": "chr1", "pos": 45_000, "mate_chrom": "chr2", "mate_pos": 10_000},
            "split_read_cluster": {"chrom": "chr2", "pos": 20_000, "count": 4},
        },
    }
    write_json(outdir_p / "toy_summary.json", summary)
    return summary
