from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SvCallerConfig:
    """Tunable thresholds shared by every pipeline stage.

    Attributes
    ----------
    bin_size:
        Width of a depth bin in bp.
    min_depth_z_score:
        |z| needed to open a depth segment; half of it keeps a segment open.
    min_cnv_size:
        Depth segments shorter than this (bp) are discarded.
    max_merge_gap:
        Largest gap (bp) across which same-type depth segments are merged.
    max_cluster_distance:
        Span (bp) of a single breakpoint cluster, measured from its first member.
    min_total_support:
        Minimum PE+SR evidence for an intra-chromosomal cluster to be called.
    min_paired_end_support, min_split_read_support:
        A breakpoint call is PASS when either support reaches its minimum.
    min_quality:
        Depth-only calls below this quality are flagged LowQual.
    insert_size_z_threshold:
        Pairs outside ``mean +/- z * sd`` are insert-size outliers.
    min_map_q:
        Minimum mapping quality for discordant-pair and split-read evidence.
    min_clip_length:
        Minimum soft/hard clipped bases for a split read.
    min_coverage:
        Runs with lower mean coverage are refused.
    """

    bin_size: int = 1000
    min_depth_z_score: float = 2.5
    min_cnv_size: int = 10_000
    max_merge_gap: int = 50_000
    max_cluster_distance: int = 500
    min_total_support: int = 3
    min_paired_end_support: int = 2
    min_split_read_support: int = 1
    min_quality: float = 10.0
    insert_size_z_threshold: float = 4.0
    min_map_q: int = 20
    min_clip_length: int = 10
    min_coverage: float = 10.0

    def __post_init__(self) -> None:
        if self.bin_size <= 0:
            raise ValueError("bin_size must be > 0")
        if self.min_depth_z_score <= 0:
            raise ValueError("min_depth_z_score must be > 0")
        if self.max_cluster_distance < 0 or self.max_merge_gap < 0:
            raise ValueError("max_cluster_distance and max_merge_gap must be >= 0")
        if self.min_cnv_size < 0:
            raise ValueError("min_cnv_size must be >= 0")

    def with_overrides(self, **overrides: Any) -> "SvCallerConfig":
        """Return a copy with non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


DEFAULT_CONFIG = SvCallerConfig()


def config_from_mapping(data: Mapping[str, Any]) -> SvCallerConfig:
    known = {f.name: f.type for f in fields(SvCallerConfig)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ValueError(f"Unknown config keys: {unknown}. Valid keys: {sorted(known)}")
    return SvCallerConfig(**dict(data))


def load_config(path: str | Path) -> SvCallerConfig:
    """Load an ``SvCallerConfig`` from a JSON object file."""
    p = Path(path)
    with open(p, "rt", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a JSON object: {p}")
    cfg = config_from_mapping(data)
    logger.info("Loaded config from %s", p)
    return cfg
