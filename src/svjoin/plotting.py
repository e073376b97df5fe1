from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import matplotlib.pyplot as plt
import numpy as np

from .models import DepthSegment, SvCall, SvType
from .segmenter import segments_by_contig

logger = logging.getLogger(__name__)


def plot_sv_type_counts(
    *,
    calls: Sequence[SvCall],
    out_png: str | Path,
    title: str = "SV calls by type",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = [t.value for t in SvType]
    values = [sum(1 for c in calls if c.sv_type == t) for t in SvType]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Calls")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_sv_size_hist(
    *,
    calls: Sequence[SvCall],
    out_png: str | Path,
    title: str = "SV size distribution",
    nbins: int = 20,
) -> None:
    """Histogram of |SVLEN| on a log10 scale; breakends have no size and are left out."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    sizes = np.asarray([abs(c.sv_len) for c in calls if c.sv_type != SvType.BND and c.sv_len != 0], dtype=float)

    plt.figure()
    if sizes.size:
        counts, edges = np.histogram(np.log10(sizes), bins=nbins)
        widths = np.diff(edges)
        plt.bar(edges[:-1] + widths / 2.0, counts, width=widths, align="center")
    plt.xlabel("log10(|SV length| bp)")
    plt.ylabel("Calls")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_segment_log2(
    *,
    segments: Sequence[DepthSegment],
    out_png: str | Path,
    title: str = "Depth segments (log2 ratio)",
) -> None:
    """One horizontal line per segment, contigs laid end to end."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    plt.figure(figsize=(8, 3))
    offset = 0
    ticks = []
    labels = []
    for contig, segs in sorted(segments_by_contig(segments).items()):
        span = max(s.end for s in segs)
        for s in segs:
            color = "tab:red" if s.sv_type == SvType.DEL else "tab:blue"
            plt.hlines(s.log2_ratio, offset + s.start, offset + s.end, colors=color, linewidth=3)
        ticks.append(offset + span / 2.0)
        labels.append(contig)
        offset += span
    plt.axhline(0.0, color="grey", linewidth=0.8)
    if ticks:
        plt.xticks(ticks, labels, rotation=45, ha="right")
    plt.ylabel("log2(observed / expected)")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
