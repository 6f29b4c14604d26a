"""
Face recognition for one video frame: candidates -> FaceModel.

The status is recomputed from scratch on every call; nothing is carried over
between frames except the optional read-only `seed` fit.
"""

from __future__ import annotations
from typing import Callable, Dict, Optional, Sequence

from rubikscan.core.contracts import Candidate, FaceModel, FaceStatus, LatticeFit, TileColor
from rubikscan.face.colors import classify_rgb, face_hash
from rubikscan.geometry.lattice import fit_lattice

Classifier = Callable[[Sequence[float]], TileColor]


def _tile_colors(face: FaceModel, classify: Classifier):
    colors = [[None] * 3 for _ in range(3)]
    for r, c, cand in face.populated():
        if cand.color is not None:
            colors[r][c] = classify(cand.color)
    return colors


def evaluate(
    candidates: Sequence[Candidate],
    seed: Optional[LatticeFit] = None,
    cfg: Optional[Dict] = None,
    classify: Optional[Classifier] = None,
) -> FaceModel:
    """
    Recognize the cube face in one frame's candidate set.

    Returns a new FaceModel every time. `cells` reflects the fitter's
    tentative assignment even when the face is not solved, so callers can
    still draw partial layouts. Colors and the face hash are filled only
    for a SOLVED face.
    """
    candidates = list(candidates)
    fit = fit_lattice(candidates, seed=seed, cfg=cfg)

    face = FaceModel(fit=fit)
    for r in range(3):
        for c in range(3):
            k = fit.cells[r][c]
            face.cells[r][c] = None if k is None else candidates[k]

    if fit.status is FaceStatus.SOLVED and fit.valid and face.num_populated == 9:
        face.status = FaceStatus.SOLVED
        face.colors = _tile_colors(face, classify or classify_rgb)
        face.face_hash = face_hash(face.colors)
    elif fit.status is FaceStatus.SOLVED:
        face.status = FaceStatus.INCOMPLETE
    else:
        face.status = fit.status
    return face
