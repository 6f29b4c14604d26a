"""
Pytest for camera intrinsics and cube pose estimation.
Synthetic views are produced by projecting the tile centers with cv2.projectPoints.
"""
from __future__ import annotations
import math

import cv2
import numpy as np
import pytest

from rubikscan.core.contracts import Candidate, FaceModel, FaceStatus
from rubikscan.pose import estimator
from rubikscan.pose.camera import CameraConfigError, CameraIntrinsics
from rubikscan.pose.estimator import estimate_pose, object_point, opencv_to_renderer

# ---------- Utilities to build synthetic views ---------- #

def _camera() -> CameraIntrinsics:
    return CameraIntrinsics.from_fov(1280, 720, 60.0, 36.0)


def _project(points, rvec, tvec, camera):
    img, _ = cv2.projectPoints(np.asarray(points, np.float64).reshape(-1, 1, 3),
                               np.asarray(rvec, np.float64), np.asarray(tvec, np.float64),
                               camera.matrix, camera.dist_coeffs)
    return img.reshape(-1, 2)


def _face_from_pose(rvec, tvec, camera, keep=None, status=FaceStatus.SOLVED) -> FaceModel:
    cells = [(r, c) for r in range(3) for c in range(3) if keep is None or (r, c) in keep]
    img = _project([object_point(r, c) for r, c in cells], rvec, tvec, camera)
    face = FaceModel(status=status)
    for (r, c), (u, v) in zip(cells, img):
        face.cells[r][c] = Candidate(center=(float(u), float(v)), size=40.0)
    return face

# ---------- Tests ---------- #

def test_object_points_lie_on_face_of_edge_two_cube():
    pts = np.array([object_point(r, c) for r in range(3) for c in range(3)])
    assert np.allclose(pts[:, 1], -1.0)
    assert pts[:, 0].min() == pytest.approx(-2.0 / 3.0)
    assert pts[:, 0].max() == pytest.approx(2.0 / 3.0)
    assert object_point(1, 1) == pytest.approx((0.0, -1.0, 0.0))


def test_known_pose_is_recovered():
    # face turned squarely toward the camera, cube center 5 units ahead
    cam = _camera()
    rvec, tvec = (math.pi / 2.0, 0.0, 0.0), (0.0, 0.0, 5.0)
    pose = estimate_pose(_face_from_pose(rvec, tvec, cam), cam)
    assert pose is not None
    assert pose.translation == pytest.approx((0.0, 0.0, -5.0), abs=0.01)
    assert pose.rotation == pytest.approx((90.0, 0.0, 0.0), abs=1.0)


def test_tilted_pose_is_recovered():
    cam = _camera()
    rvec, tvec = np.array([1.3, 0.2, 0.1]), np.array([0.4, -0.3, 6.0])
    pose = estimate_pose(_face_from_pose(rvec, tvec, cam), cam)
    expected = opencv_to_renderer(rvec, tvec)
    assert pose.translation == pytest.approx(expected.translation, abs=0.01)
    assert pose.rotation == pytest.approx(expected.rotation, abs=1.0)


def test_renderer_conversion_flips_y_and_z():
    pose = opencv_to_renderer([0.1, 0.2, -0.3], [1.0, 2.0, 3.0])
    assert pose.translation == (1.0, -2.0, -3.0)
    assert pose.rotation == pytest.approx((math.degrees(0.1), -math.degrees(0.2), math.degrees(0.3)))


def test_fewer_than_four_cells_returns_no_pose(monkeypatch):
    def boom(*_a, **_k):
        raise AssertionError("solvePnP must not run")
    monkeypatch.setattr(estimator.cv2, "solvePnP", boom)
    cam = _camera()
    face = _face_from_pose((math.pi / 2.0, 0.0, 0.0), (0.0, 0.0, 5.0), cam,
                           keep={(0, 0), (1, 1), (2, 2)}, status=FaceStatus.INCOMPLETE)
    assert estimate_pose(face, cam, allow_partial=True) is None


def test_unsolved_face_is_rejected_unless_partial_allowed():
    cam = _camera()
    rvec, tvec = (1.4, 0.1, 0.0), (0.1, 0.2, 5.5)
    keep = {(0, 0), (0, 2), (1, 1), (2, 0), (2, 2)}
    face = _face_from_pose(rvec, tvec, cam, keep=keep, status=FaceStatus.INCOMPLETE)
    assert estimate_pose(face, cam) is None
    pose = estimate_pose(face, cam, allow_partial=True)
    assert pose is not None
    assert pose.translation == pytest.approx(opencv_to_renderer(rvec, tvec).translation, abs=0.01)


def test_missing_face_returns_no_pose():
    assert estimate_pose(None, _camera()) is None


def test_solver_failure_returns_no_pose(monkeypatch):
    monkeypatch.setattr(estimator.cv2, "solvePnP", lambda *a, **k: (False, None, None))
    cam = _camera()
    face = _face_from_pose((math.pi / 2.0, 0.0, 0.0), (0.0, 0.0, 5.0), cam)
    assert estimate_pose(face, cam) is None


def test_camera_from_fov():
    cam = CameraIntrinsics.from_fov(1280, 720, 90.0, 60.0)
    assert cam.fx == pytest.approx(640.0)
    assert cam.fy == pytest.approx(360.0 / math.tan(math.radians(30.0)))
    assert (cam.cx, cam.cy) == (640.0, 360.0)
    assert cam.dist_coeffs.shape == (5,)


@pytest.mark.parametrize("matrix", [
    np.zeros((3, 3)),
    np.eye(2),
    np.array([[800.0, 0, 320], [0, np.nan, 240], [0, 0, 1]]),
])
def test_malformed_camera_matrix_raises(matrix):
    with pytest.raises(CameraConfigError):
        CameraIntrinsics(matrix, np.zeros(5))


def test_camera_from_cfg():
    cam = CameraIntrinsics.from_cfg({"matrix": [[800, 0, 320], [0, 800, 240], [0, 0, 1]],
                                     "dist_coeffs": [0.1, -0.05, 0, 0]})
    assert cam.fx == 800.0
    assert cam.dist_coeffs.size == 4
    with pytest.raises(CameraConfigError):
        CameraIntrinsics.from_cfg({"width": 640, "height": 480})
    with pytest.raises(ValueError):
        CameraIntrinsics.from_fov(640, 480, 0.0, 40.0)
