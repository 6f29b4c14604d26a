"""
Simple I/O helpers: candidate sets, camera intrinsics and kernel config
from YAML or JSON files.
"""

from __future__ import annotations
from pathlib import Path
from typing import Dict, List, Union
import json
import yaml

from rubikscan.core.contracts import Candidate
from rubikscan.geometry.rhombus import candidate_from_polygon
from rubikscan.pose.camera import CameraIntrinsics

PathLike = Union[str, Path]

_KERNEL_SECTIONS = ("lattice", "pose", "camera", "filter", "palette")


def _load_document(path: PathLike):
    """
    Parse a YAML or JSON file (by extension; YAML otherwise).
    Raises FileNotFoundError if not found.
    """
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Could not read file at: {path}")
    with open(p, "r") as f:
        if p.suffix.lower() == ".json":
            return json.load(f)
        return yaml.safe_load(f)


def candidate_from_record(rec: Dict) -> Candidate:
    """
    One candidate from a dict. Either a polygon:
        {"polygon": [[x, y], [x, y], [x, y], [x, y]], "color": [r, g, b]}
    or explicit metrics:
        {"center": [x, y], "size": s, "angle": deg, "beta_angle": deg,
         "gamma_ratio": g, "color": [r, g, b]}
    Raises ValueError for malformed records.
    """
    if not isinstance(rec, dict):
        raise ValueError(f"candidate record must be a mapping, got {type(rec).__name__}")
    color = rec.get("color")
    if "polygon" in rec:
        cand = candidate_from_polygon(rec["polygon"], color=color)
        if cand is None:
            raise ValueError(f"polygon is not a usable quadrilateral: {rec['polygon']}")
        return cand
    try:
        cx, cy = rec["center"]
        return Candidate(
            center=(float(cx), float(cy)),
            size=float(rec["size"]),
            angle=float(rec.get("angle", 0.0)),
            beta_angle=None if rec.get("beta_angle") is None else float(rec["beta_angle"]),
            gamma_ratio=float(rec.get("gamma_ratio", 1.0)),
            color=None if color is None else tuple(float(v) for v in color),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ValueError(f"malformed candidate record {rec!r}: {e}") from e


def load_candidates(path: PathLike) -> List[Candidate]:
    """A list of records, or a mapping with a "candidates" list."""
    doc = _load_document(path)
    if isinstance(doc, dict):
        doc = doc.get("candidates", [])
    return [candidate_from_record(r) for r in (doc or [])]


def load_kernel_cfg(path: PathLike) -> Dict:
    """Kernel config split into its sections; missing sections are empty dicts."""
    doc = _load_document(path) or {}
    return {k: dict(doc.get(k) or {}) for k in _KERNEL_SECTIONS}


def load_camera(source: Union[PathLike, Dict]) -> CameraIntrinsics:
    """Camera intrinsics from a config dict, a camera file, or a kernel config file."""
    if isinstance(source, dict):
        cfg = source
    else:
        doc = _load_document(source) or {}
        cfg = doc.get("camera", doc)
    return CameraIntrinsics.from_cfg(cfg)
