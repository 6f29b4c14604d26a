"""
Per-frame driver: candidates -> FaceModel -> CubePose.

`FrameRunner` keeps only what the kernel allows to cross frames: the last
solved fit (read-only seed), an optional pose filter and an optional profiler.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from rubikscan.core.contracts import Candidate, CubePose, FaceModel, LatticeFit
from rubikscan.core.profiler import FrameProfiler
from rubikscan.face.colors import classify_rgb, palette_from_cfg
from rubikscan.face.model import evaluate
from rubikscan.pose.camera import CameraIntrinsics
from rubikscan.pose.estimator import estimate_pose
from rubikscan.pose.kalman import PoseFilter


@dataclass
class FrameResult:
    face: FaceModel
    pose: Optional[CubePose]
    smoothed: Optional[CubePose] = None


def process_frame(
    candidates: Sequence[Candidate],
    camera: CameraIntrinsics,
    *,
    seed: Optional[LatticeFit] = None,
    cfg: Optional[Dict] = None,
    classify=None,
    profiler: Optional[FrameProfiler] = None,
) -> FrameResult:
    """One frame, no state: recognize the face and, if solved, estimate the pose."""
    cfg = cfg or {}
    if profiler is not None:
        profiler.start()
    face = evaluate(candidates, seed=seed, cfg=cfg.get("lattice"), classify=classify)
    if profiler is not None:
        profiler.mark("face")
    pose = estimate_pose(face, camera, cfg=cfg.get("pose"))
    if profiler is not None:
        profiler.mark("pose")
        profiler.finish()
    return FrameResult(face=face, pose=pose)


class FrameRunner:
    """Runs consecutive frames, seeding each fit with the last solved one."""

    def __init__(self, camera: CameraIntrinsics, cfg: Optional[Dict] = None,
                 smooth: bool = False, profiler: Optional[FrameProfiler] = None):
        self.camera = camera
        self.cfg = cfg or {}
        self.filter = PoseFilter(self.cfg.get("filter")) if smooth else None
        self.profiler = profiler
        self.last_fit: Optional[LatticeFit] = None
        palette = palette_from_cfg(self.cfg.get("palette"))
        self.classify = lambda rgb: classify_rgb(rgb, palette)

    def run(self, candidates: Sequence[Candidate], dt: float = 1.0 / 30.0) -> FrameResult:
        res = process_frame(candidates, self.camera, seed=self.last_fit, cfg=self.cfg,
                            classify=self.classify, profiler=self.profiler)
        if res.face.solved:
            self.last_fit = res.face.fit
        if self.filter is not None:
            if res.pose is not None:
                res.smoothed = self.filter.update(res.pose, dt)
            else:
                res.smoothed = self.filter.predict(dt)
        return res

    def reset(self) -> None:
        self.last_fit = None
        if self.filter is not None:
            self.filter.reset()
        if self.profiler is not None:
            self.profiler.reset()
