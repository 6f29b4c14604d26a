"""
Core contracts and simple data types shared across stages.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple
import math
import numpy as np


Point = Tuple[float, float]
Cells = Tuple[Tuple[Optional[int], ...], ...]


class FaceStatus(Enum):
    UNKNOWN = "unknown"
    INSUFFICIENT = "insufficient"    # too few candidates to attempt a fit
    BAD_METRICS = "bad_metrics"      # axis / pitch / origin estimation failed
    INCOMPLETE = "incomplete"        # did not converge to 9/9 with a low error
    INADEQUATE = "inadequate"        # some row or column has no candidate
    BLOCKED = "blocked"              # refinement revisited an earlier layout
    INVALID_MATH = "invalid_math"    # least-squares system singular / non-finite
    UNSTABLE = "unstable"            # RMS grew between iterations
    SOLVED = "solved"


class TileColor(Enum):
    RED = "R"
    ORANGE = "O"
    YELLOW = "Y"
    GREEN = "G"
    BLUE = "B"
    WHITE = "W"

    @property
    def symbol(self) -> str:
        return self.value


@dataclass(frozen=True)
class Candidate:
    """
    One detected quadrilateral that may be a cube tile.

    center:      (x, y) in image pixels, y grows downward.
    size:        length of the alpha side, pixels.
    angle:       direction of the alpha side, degrees from +x.
    beta_angle:  direction of the other side; None means angle + 90.
    gamma_ratio: beta side length / alpha side length.
    color:       optional sampled RGB triple.
    """
    center: Point
    size: float
    angle: float = 0.0
    beta_angle: Optional[float] = None
    gamma_ratio: float = 1.0
    color: Optional[Tuple[float, float, float]] = None

    @property
    def beta(self) -> float:
        return self.angle + 90.0 if self.beta_angle is None else self.beta_angle

    @property
    def xy(self) -> np.ndarray:
        return np.asarray(self.center, dtype=np.float64)

    @classmethod
    def from_polygon(cls, pts, color=None, area_range=None) -> Optional["Candidate"]:
        from rubikscan.geometry.rhombus import candidate_from_polygon
        return candidate_from_polygon(pts, color=color, area_range=area_range)


@dataclass(frozen=True)
class LatticeFit:
    """
    Result of fitting a 3x3 lattice to a candidate set.

    screen(row, col) = origin + row * basis_a + col * basis_b

    Both basis vectors point downward in screen space, so cell (0,0) is the
    top-most cell. `cells[row][col]` holds the index of the candidate assigned
    to that cell (or None); `residual_field` is NaN where nothing is assigned.
    """
    origin: Point
    basis_a: Point
    basis_b: Point
    residual_field: np.ndarray
    rms_error: float
    valid: bool
    status: FaceStatus = FaceStatus.UNKNOWN
    cells: Cells = ((None,) * 3,) * 3
    iterations: int = 0
    rms_history: Tuple[float, ...] = ()

    @property
    def basis_angle(self) -> float:
        return math.atan2(self.basis_a[1], self.basis_a[0])

    @property
    def num_assigned(self) -> int:
        return sum(1 for row in self.cells for idx in row if idx is not None)

    @property
    def pitch(self) -> float:
        """Mean lattice spacing in pixels."""
        return 0.5 * (math.hypot(*self.basis_a) + math.hypot(*self.basis_b))

    def cell_center(self, row: int, col: int) -> Point:
        o, a, b = self.origin, self.basis_a, self.basis_b
        return (o[0] + row * a[0] + col * b[0],
                o[1] + row * a[1] + col * b[1])

    def cell_centers(self) -> np.ndarray:
        out = np.zeros((3, 3, 2), dtype=np.float64)
        for r in range(3):
            for c in range(3):
                out[r, c] = self.cell_center(r, c)
        return out

    def nearest_cell(self, point) -> Optional[Tuple[int, int]]:
        """
        Nearest integer (row, col) under the lattice map; may fall outside 0..2.
        None when the fit is not valid, since its basis may be degenerate.
        """
        if not self.valid:
            return None
        m = np.array([self.basis_a, self.basis_b], dtype=np.float64).T
        rc = np.linalg.solve(m, np.asarray(point, np.float64) - np.asarray(self.origin, np.float64))
        return int(round(float(rc[0]))), int(round(float(rc[1])))


@dataclass
class FaceModel:
    """Per-frame assignment of candidates to the 3x3 face, plus status."""
    cells: List[List[Optional[Candidate]]] = field(
        default_factory=lambda: [[None] * 3 for _ in range(3)])
    status: FaceStatus = FaceStatus.UNKNOWN
    fit: Optional[LatticeFit] = None
    colors: Optional[List[List[Optional[TileColor]]]] = None
    face_hash: int = 0

    @property
    def num_populated(self) -> int:
        return sum(1 for row in self.cells for c in row if c is not None)

    @property
    def solved(self) -> bool:
        return self.status is FaceStatus.SOLVED

    def populated(self):
        """Yield (row, col, candidate) for every non-empty cell, row-major."""
        for r in range(3):
            for c in range(3):
                if self.cells[r][c] is not None:
                    yield r, c, self.cells[r][c]


@dataclass(frozen=True)
class CubePose:
    """
    Cube placement in renderer coordinates (x right, y up, z toward viewer).
    Cube edge length is 2.0; rotations are degrees.
    """
    x: float
    y: float
    z: float
    x_rotation: float
    y_rotation: float
    z_rotation: float

    @property
    def translation(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    @property
    def rotation(self) -> Tuple[float, float, float]:
        return (self.x_rotation, self.y_rotation, self.z_rotation)

    def as_array(self) -> np.ndarray:
        return np.array(self.translation + self.rotation, dtype=np.float64)

    @classmethod
    def from_array(cls, v) -> "CubePose":
        v = [float(x) for x in np.asarray(v, dtype=np.float64).ravel()[:6]]
        return cls(*v)
