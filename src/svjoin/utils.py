from __future__ import annotations

import json
import logging
from dataclasses import asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def floor_mean(values: Sequence[int]) -> int:
    # integer mean rounded toward -inf, stable for genomic coordinates
    return sum(values) // len(values)


def overlaps(start1: int, end1: int, start2: int, end2: int) -> bool:
    """Half-open interval intersection test."""
    return start1 < end2 and start2 < end1


def sort_key(obj: Any) -> Tuple[str, int]:
    return (obj.chrom, obj.start)


def group_by(items: Iterable[T], key) -> Dict[Any, List[T]]:
    out: Dict[Any, List[T]] = {}
    for item in items:
        out.setdefault(key(item), []).append(item)
    return out


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Mapping):
        return {str(k): _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(v) for v in obj]
    return obj


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(_jsonable(obj), f, indent=2, sort_keys=True, default=str)


def dataclass_to_jsonable(dc: Any) -> Mapping[str, Any]:
    return _jsonable(asdict(dc))
