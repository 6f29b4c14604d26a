# rubikscan/pose/camera.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Optional
import math
import numpy as np


class CameraConfigError(ValueError):
    """Camera intrinsics cannot be used for pose estimation."""


@dataclass(frozen=True)
class CameraIntrinsics:
    """
    Pinhole camera model as OpenCV expects it.

    matrix: 3x3 [[fx, 0, cx], [0, fy, cy], [0, 0, 1]], float64
    dist_coeffs: 1D distortion coefficients (k1, k2, p1, p2[, k3 ...])
    """
    matrix: np.ndarray
    dist_coeffs: np.ndarray

    def __post_init__(self):
        m = np.asarray(self.matrix, dtype=np.float64)
        if m.shape != (3, 3) or not np.isfinite(m).all():
            raise CameraConfigError(f"camera matrix must be a finite 3x3, got shape {m.shape}")
        if abs(np.linalg.det(m)) < 1e-12:
            raise CameraConfigError("camera matrix is not invertible")
        d = np.asarray(self.dist_coeffs if self.dist_coeffs is not None else np.zeros(5),
                       dtype=np.float64).ravel()
        if d.size not in (4, 5, 8, 12, 14) or not np.isfinite(d).all():
            raise CameraConfigError(f"unsupported distortion vector of length {d.size}")
        object.__setattr__(self, "matrix", m)
        object.__setattr__(self, "dist_coeffs", d)

    @property
    def fx(self) -> float:
        return float(self.matrix[0, 0])

    @property
    def fy(self) -> float:
        return float(self.matrix[1, 1])

    @property
    def cx(self) -> float:
        return float(self.matrix[0, 2])

    @property
    def cy(self) -> float:
        return float(self.matrix[1, 2])

    @classmethod
    def from_fov(cls, width: int, height: int, fov_x_deg: float, fov_y_deg: float,
                 dist_coeffs: Optional[np.ndarray] = None) -> "CameraIntrinsics":
        """Focal lengths from the field of view, principal point at the image center."""
        if width <= 0 or height <= 0 or not (0 < fov_x_deg < 180) or not (0 < fov_y_deg < 180):
            raise CameraConfigError(
                f"bad camera geometry: {width}x{height}, fov=({fov_x_deg}, {fov_y_deg})")
        fx = width / (2.0 * math.tan(0.5 * math.radians(fov_x_deg)))
        fy = height / (2.0 * math.tan(0.5 * math.radians(fov_y_deg)))
        m = np.array([[fx, 0.0, width / 2.0],
                      [0.0, fy, height / 2.0],
                      [0.0, 0.0, 1.0]], dtype=np.float64)
        return cls(m, np.zeros(5) if dist_coeffs is None else dist_coeffs)

    @classmethod
    def from_cfg(cls, cfg: Dict) -> "CameraIntrinsics":
        """
        Either {"matrix": 3x3, "dist_coeffs": [...]} or
        {"width", "height", "fov_x_deg", "fov_y_deg"[, "dist_coeffs"]}.
        """
        dist = cfg.get("dist_coeffs")
        dist = None if dist is None else np.asarray(dist, dtype=np.float64)
        if cfg.get("matrix") is not None:
            return cls(np.asarray(cfg["matrix"], dtype=np.float64),
                       np.zeros(5) if dist is None else dist)
        try:
            return cls.from_fov(int(cfg["width"]), int(cfg["height"]),
                                float(cfg["fov_x_deg"]), float(cfg["fov_y_deg"]), dist)
        except KeyError as e:
            raise CameraConfigError(f"camera config is missing {e}") from e
