"""
Cube pose from a recognized face.

The cube is centered at the origin with edge length 2.0. Tile centers of the
observed face lie in the x-z plane at y = -1; together with the tile centers
seen on screen they feed a Perspective-n-Point solve.
"""

from __future__ import annotations
from typing import Dict, Optional, Tuple
import cv2
import numpy as np

from rubikscan.core.contracts import CubePose, FaceModel, FaceStatus
from rubikscan.pose.camera import CameraIntrinsics

_DEFAULT_CFG: Dict = {
    "min_points": 4,
    "debug": False,
}

TILE_STEP = 2.0 / 3.0


def _merge_cfg(cfg: Optional[Dict]) -> Dict:
    merged = dict(_DEFAULT_CFG)
    merged.update(cfg or {})
    return merged


def object_point(row: int, col: int) -> Tuple[float, float, float]:
    """
    Tile center of cell (row, col) in cube coordinates.
    Rows advance along +x, columns along -z.
    """
    mm = 2 - row
    nn = 2 - col
    return ((1 - mm) * TILE_STEP, -1.0, -(1 - nn) * TILE_STEP)


def correspondences(face: FaceModel) -> Tuple[np.ndarray, np.ndarray]:
    """Object (N,3) and image (N,2) points, one per populated cell."""
    obj, img = [], []
    for r, c, cand in face.populated():
        obj.append(object_point(r, c))
        img.append(cand.center)
    return (np.asarray(obj, dtype=np.float64).reshape(-1, 3),
            np.asarray(img, dtype=np.float64).reshape(-1, 2))


def opencv_to_renderer(rvec, tvec) -> CubePose:
    """
    The one place where solver coordinates become renderer coordinates.

    OpenCV camera frame: x right, y down, z away from the camera.
    Renderer frame:      x right, y up,   z toward the viewer.
    Translation keeps x and negates y, z. The rotation vector likewise keeps
    its x component and negates y, z; components are reported in degrees.
    """
    r = np.asarray(rvec, dtype=np.float64).ravel()
    t = np.asarray(tvec, dtype=np.float64).ravel()
    flip = np.array([1.0, -1.0, -1.0])
    t = t * flip
    r = np.degrees(r * flip)
    return CubePose(float(t[0]), float(t[1]), float(t[2]),
                    float(r[0]), float(r[1]), float(r[2]))


def solve_pnp(object_points: np.ndarray, image_points: np.ndarray,
              camera: CameraIntrinsics) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """cv2.solvePnP wrapper: (rvec, tvec) in OpenCV convention, or None on failure."""
    if len(object_points) < 4 or len(object_points) != len(image_points):
        return None
    try:
        ok, rvec, tvec = cv2.solvePnP(
            object_points.astype(np.float64),
            image_points.astype(np.float64),
            camera.matrix,
            camera.dist_coeffs,
            flags=cv2.SOLVEPNP_ITERATIVE,
        )
    except cv2.error:
        return None
    if not ok or not (np.isfinite(rvec).all() and np.isfinite(tvec).all()):
        return None
    return rvec.reshape(3), tvec.reshape(3)


def estimate_pose(
    face: Optional[FaceModel],
    camera: CameraIntrinsics,
    *,
    allow_partial: bool = False,
    cfg: Optional[Dict] = None,
) -> Optional[CubePose]:
    """
    Deduce the cube's translation and rotation relative to the camera.

    Returns None (no pose) when the face is missing, not SOLVED (unless
    `allow_partial`), has fewer than `min_points` populated cells, or the
    PnP solve fails.
    """
    cfg = _merge_cfg(cfg)
    if face is None:
        return None
    if face.status is not FaceStatus.SOLVED and not allow_partial:
        return None

    min_points = max(4, int(cfg["min_points"]))
    if face.num_populated < min_points:
        if cfg.get("debug"):
            print(f"[pose] only {face.num_populated} cells, need {min_points}")
        return None

    obj, img = correspondences(face)
    sol = solve_pnp(obj, img, camera)
    if sol is None:
        if cfg.get("debug"):
            print("[pose] solvePnP failed")
        return None
    rvec, tvec = sol
    pose = opencv_to_renderer(rvec, tvec)
    if cfg.get("debug"):
        print(f"[pose] rvec=({rvec[0]:.3f},{rvec[1]:.3f},{rvec[2]:.3f}) -> {pose}")
    return pose
