"""
Pytest for candidate / camera / config loaders. Files are written to tmp_path.
"""
from __future__ import annotations
import json
from pathlib import Path

import pytest
import yaml

from rubikscan.io.ingest import (
    candidate_from_record,
    load_camera,
    load_candidates,
    load_kernel_cfg,
)

REPO_CFG = Path(__file__).resolve().parents[1] / "config" / "kernel.yaml"


def test_load_candidates_json_records(tmp_path):
    recs = [
        {"center": [10, 20], "size": 30, "angle": 5, "color": [255, 0, 0]},
        {"polygon": [[0, 0], [20, 0], [20, 20], [0, 20]]},
    ]
    p = tmp_path / "cands.json"
    p.write_text(json.dumps(recs))
    cands = load_candidates(p)
    assert len(cands) == 2
    assert cands[0].center == (10.0, 20.0)
    assert cands[0].beta == pytest.approx(95.0)
    assert cands[0].color == (255.0, 0.0, 0.0)
    assert cands[1].center == pytest.approx((10.0, 10.0))
    assert cands[1].size == pytest.approx(20.0)


def test_load_candidates_yaml_mapping(tmp_path):
    p = tmp_path / "frame.yaml"
    p.write_text(yaml.safe_dump({"candidates": [{"center": [1, 2], "size": 3}]}))
    cands = load_candidates(p)
    assert [c.center for c in cands] == [(1.0, 2.0)]


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_candidates(tmp_path / "nope.json")


@pytest.mark.parametrize("rec", [
    {"size": 3},
    {"center": [1], "size": 3},
    {"polygon": [[0, 0], [1, 1], [2, 2]]},
    ["not", "a", "mapping"],
])
def test_malformed_record_raises(rec):
    with pytest.raises(ValueError):
        candidate_from_record(rec)


def test_repo_kernel_cfg_loads():
    cfg = load_kernel_cfg(REPO_CFG)
    assert set(cfg) == {"lattice", "pose", "camera", "filter", "palette"}
    assert cfg["lattice"]["max_iterations"] >= 1
    cam = load_camera(cfg["camera"])
    assert (cam.cx, cam.cy) == (640.0, 360.0)
    assert load_camera(REPO_CFG).fx == pytest.approx(cam.fx)


def test_partial_kernel_cfg(tmp_path):
    p = tmp_path / "k.yaml"
    p.write_text("lattice:\n  debug: true\n")
    cfg = load_kernel_cfg(p)
    assert cfg["lattice"] == {"debug": True}
    assert cfg["pose"] == {}
