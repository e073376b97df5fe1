from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

import pysam

logger = logging.getLogger(__name__)


def check_bam_index(bam_path: str | Path) -> None:
    """Ensure a BAM has an index; raise ValueError with fix instructions."""
    bam = Path(bam_path)
    bai1 = bam.with_suffix(bam.suffix + ".bai")
    bai2 = bam.with_suffix(".bai")
    csi = bam.with_suffix(bam.suffix + ".csi")
    if bai1.exists() or bai2.exists() or csi.exists():
        return
    raise ValueError("BAM is not indexed. Run: samtools index " + str(bam))


def check_coordinate_sorted(header: Mapping[str, object], bam_path: str | Path) -> None:
    """Raise ValueError if the header declares a sort order other than coordinate."""
    hd = header.get("HD") or {}
    so = hd.get("SO") if isinstance(hd, Mapping) else None
    if so is None:
        logger.warning("BAM header has no SO tag; assuming coordinate order: %s", bam_path)
        return
    if so != "coordinate":
        raise ValueError(
            f"BAM must be coordinate-sorted (header SO={so}). Run: samtools sort -o sorted.bam {bam_path}"
        )


def bam_contig_lengths(
    bam_path: str | Path,
    *,
    contigs: Optional[Iterable[str]] = None,
) -> Dict[str, int]:
    """Contig lengths from the BAM header, optionally restricted to ``contigs``.

    Raises ValueError when a requested contig is missing from the header.
    """
    with pysam.AlignmentFile(str(bam_path), "rb") as bam:
        check_coordinate_sorted(bam.header.to_dict(), bam_path)
        lengths = dict(zip(bam.references, (int(n) for n in bam.lengths)))

    if contigs is None:
        return lengths
    wanted = list(contigs)
    missing = [c for c in wanted if c not in lengths]
    if missing:
        raise ValueError(
            f"Contigs not found in BAM header: {missing}. Available: {sorted(lengths)[:10]}..."
        )
    return {c: lengths[c] for c in wanted}


def check_positive(name: str, value: Optional[float]) -> None:
    if value is not None and value <= 0:
        raise ValueError(f"{name} must be > 0 (got {value})")
