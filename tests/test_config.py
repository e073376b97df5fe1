import json
from pathlib import Path

import pytest

from svjoin.config import DEFAULT_CONFIG, SvCallerConfig, load_config


def test_defaults() -> None:
    cfg = SvCallerConfig()
    assert cfg.bin_size == 1000
    assert cfg.min_depth_z_score == 2.5
    assert cfg.min_cnv_size == 10_000
    assert cfg.max_cluster_distance == 500
    assert cfg.min_total_support == 3


def test_overrides_ignore_none() -> None:
    cfg = DEFAULT_CONFIG.with_overrides(bin_size=500, min_map_q=None)
    assert cfg.bin_size == 500
    assert cfg.min_map_q == DEFAULT_CONFIG.min_map_q
    assert DEFAULT_CONFIG.with_overrides(bin_size=None) is DEFAULT_CONFIG


def test_invalid_values_rejected() -> None:
    with pytest.raises(ValueError):
        SvCallerConfig(bin_size=0)
    with pytest.raises(ValueError):
        SvCallerConfig(min_depth_z_score=-1.0)


def test_load_config(tmp_path: Path) -> None:
    p = tmp_path / "cfg.json"
    p.write_text(json.dumps({"min_cnv_size": 5000, "min_quality": 20.0}), encoding="utf-8")
    cfg = load_config(p)
    assert cfg.min_cnv_size == 5000
    assert cfg.min_quality == 20.0

    p.write_text(json.dumps({"min_cnv": 5000}), encoding="utf-8")
    with pytest.raises(ValueError, match="Unknown config keys"):
        load_config(p)

    p.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(p)
