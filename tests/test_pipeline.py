"""
Pytest for the per-frame pipeline: projected cube face -> polygons -> candidates
-> face -> pose, plus the frame runner and profiler.
"""
from __future__ import annotations
import math

import cv2
import numpy as np
import pytest

from rubikscan.core.contracts import Candidate, FaceStatus
from rubikscan.core.profiler import FrameProfiler
from rubikscan.pipeline import FrameRunner, process_frame
from rubikscan.pose.camera import CameraIntrinsics
from rubikscan.pose.estimator import object_point, opencv_to_renderer

HALF_TILE = 0.3

# ---------- Utilities to build synthetic scenes ---------- #

def _camera() -> CameraIntrinsics:
    return CameraIntrinsics.from_fov(1280, 720, 60.0, 36.0)


def _rvec(tilt: float, spin_deg: float = 10.0) -> np.ndarray:
    """Face tilted `tilt` rad about the camera x axis, then spun clockwise on screen."""
    s = math.radians(spin_deg)
    rz = np.array([[math.cos(s), -math.sin(s), 0.0],
                   [math.sin(s), math.cos(s), 0.0],
                   [0.0, 0.0, 1.0]])
    rx, _ = cv2.Rodrigues(np.array([tilt, 0.0, 0.0]))
    rvec, _ = cv2.Rodrigues(rz @ rx)
    return rvec.ravel()


def _tile_polygons(rvec, tvec, camera):
    """Projected corner polygons of the nine tiles, row-major."""
    polys = []
    for r in range(3):
        for c in range(3):
            x, y, z = object_point(r, c)
            corners = np.array([[x - HALF_TILE, y, z - HALF_TILE],
                                [x + HALF_TILE, y, z - HALF_TILE],
                                [x + HALF_TILE, y, z + HALF_TILE],
                                [x - HALF_TILE, y, z + HALF_TILE]], np.float64)
            img, _ = cv2.projectPoints(corners.reshape(-1, 1, 3), np.asarray(rvec, np.float64),
                                       np.asarray(tvec, np.float64), camera.matrix, camera.dist_coeffs)
            polys.append(img.reshape(4, 2))
    return polys


def _candidates(rvec, tvec, camera, drop=()):
    out = []
    for k, poly in enumerate(_tile_polygons(rvec, tvec, camera)):
        if k in drop:
            continue
        cand = Candidate.from_polygon(poly, color=(0, 140, 60))
        assert cand is not None
        out.append(cand)
    return out


class _FakeClock:
    def __init__(self, step):
        self.t = 0.0
        self.step = step
    def __call__(self):
        self.t += self.step
        return self.t

# ---------- Tests ---------- #

def test_projected_face_is_solved_and_pose_recovered():
    cam = _camera()
    rvec, tvec = _rvec(1.7), np.array([0.2, -0.1, 6.0])
    res = process_frame(_candidates(rvec, tvec, cam), cam)
    assert res.face.status is FaceStatus.SOLVED
    assert res.face.fit.rms_error < 0.1 * res.face.fit.pitch
    assert res.pose is not None
    expected = opencv_to_renderer(rvec, tvec)
    assert res.pose.translation == pytest.approx(expected.translation, abs=0.05)
    assert res.pose.rotation == pytest.approx(expected.rotation, abs=2.0)


def test_incomplete_face_gives_no_pose():
    cam = _camera()
    res = process_frame(_candidates(_rvec(1.6), np.array([0.0, 0.0, 5.0]), cam, drop={4}), cam)
    assert res.face.status is FaceStatus.INCOMPLETE
    assert res.face.num_populated == 8
    assert res.pose is None


def test_runner_seeds_with_last_solved_fit_and_smooths():
    cam = _camera()
    rvec, tvec = _rvec(1.65, 20.0), np.array([0.0, 0.0, 5.0])
    runner = FrameRunner(cam, smooth=True)
    first = runner.run(_candidates(rvec, tvec, cam))
    assert first.face.solved
    assert runner.last_fit is first.face.fit
    assert first.smoothed == first.pose

    lost = runner.run([])
    assert lost.face.status is FaceStatus.INSUFFICIENT
    assert lost.pose is None
    assert lost.smoothed is not None
    assert runner.last_fit is first.face.fit

    again = runner.run(_candidates(rvec, tvec, cam))
    assert again.face.solved
    assert again.pose.translation == pytest.approx(first.pose.translation, abs=1e-6)

    runner.reset()
    assert runner.last_fit is None
    assert runner.filter.pose is None


def test_profiler_tracks_minimum_and_resets():
    prof = FrameProfiler(clock=_FakeClock(0.002))
    prof.start()
    prof.mark("face")
    prof.mark("pose")
    out = prof.finish()
    assert out["face"] == pytest.approx(0.002)
    assert out["total"] == pytest.approx(0.006)
    assert prof.minimum["pose"] == pytest.approx(0.002)
    assert "face=" in prof.report()
    prof.reset()
    assert prof.minimum == {}
    assert prof.report() is None


def test_process_frame_records_stages():
    cam = _camera()
    prof = FrameProfiler()
    process_frame(_candidates(_rvec(1.6), np.array([0.0, 0.0, 5.0]), cam), cam, profiler=prof)
    assert set(prof.last) == {"face", "pose", "total"}
    assert prof.frames == 1
