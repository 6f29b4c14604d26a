# rubikscan/geometry/rhombus.py
from __future__ import annotations
from typing import Optional, Tuple
import math
import cv2
import numpy as np

from rubikscan.core.contracts import Candidate


def order_vertices_from_top(pts: np.ndarray) -> np.ndarray:
    """
    Return the 4 vertices rotated so element 0 has the minimum y (ties: smaller x)
    and the walk 0 -> 1 -> 2 -> 3 goes down the right-hand side first.

          0
         / \\
        3   1
         \\ /
          2
    """
    p = np.asarray(pts, dtype=np.float64).reshape(4, 2)
    top = int(np.lexsort((p[:, 0], p[:, 1]))[0])
    p = np.roll(p, -top, axis=0)
    # walking the other way round: mirror the order but keep vertex 0
    if p[1, 0] < p[3, 0]:
        p = p[[0, 3, 2, 1]]
    return p


def _side(a: np.ndarray, b: np.ndarray) -> float:
    return math.hypot(float(b[0] - a[0]), float(b[1] - a[1]))


def candidate_from_polygon(
    pts,
    *,
    color=None,
    area_range: Optional[Tuple[float, float]] = None,
) -> Optional[Candidate]:
    """
    Qualify a polygon as a tile candidate.

    Returns None when the polygon does not have 4 vertices, is not convex,
    is degenerate, or its area falls outside `area_range` (min, max) pixels.
    Edge directions are averaged over each pair of opposite sides.
    """
    p = np.asarray(pts, dtype=np.float64).reshape(-1, 2)
    if p.shape[0] != 4 or not np.isfinite(p).all():
        return None

    cnt = p.astype(np.float32).reshape(-1, 1, 2)
    if not cv2.isContourConvex(cnt):
        return None

    area = abs(cv2.contourArea(cnt))
    if area_range is not None:
        lo, hi = area_range
        if area < lo or area > hi:
            return None

    q = order_vertices_from_top(p)
    alpha_len = (_side(q[0], q[1]) + _side(q[3], q[2])) / 2.0
    beta_len = (_side(q[0], q[3]) + _side(q[1], q[2])) / 2.0
    if alpha_len <= 1e-6 or beta_len <= 1e-6:
        return None

    da = (q[1] - q[0]) + (q[2] - q[3])
    db = (q[2] - q[1]) + (q[3] - q[0])
    alpha = math.degrees(math.atan2(da[1], da[0]))
    beta = math.degrees(math.atan2(db[1], db[0]))

    cx, cy = p.mean(axis=0)
    rgb = None if color is None else tuple(float(v) for v in color)
    return Candidate(
        center=(float(cx), float(cy)),
        size=float(alpha_len),
        angle=float(alpha),
        beta_angle=float(beta),
        gamma_ratio=float(beta_len / alpha_len),
        color=rgb,
    )
