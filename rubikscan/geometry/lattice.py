# rubikscan/geometry/lattice.py
from __future__ import annotations
from typing import Dict, List, Optional, Sequence, Tuple
import math
import numpy as np

from rubikscan.core.contracts import Candidate, Cells, FaceStatus, LatticeFit

# Defaults tuned for 640x480 .. 1280x720 frames with the cube filling ~1/3 of the view
_DEFAULT_CFG: Dict = {
    "min_candidates": 3,              # fewer -> INSUFFICIENT, no solve attempted
    "angle_outlier_deg": 10.0,        # edge angle further than this from the median -> dropped
    "min_axis_separation_deg": 20.0,  # alpha/beta closer than this are "parallel"
    "tile_pitch_ratio": 1.1,          # cell pitch / tile side prior (ties, single level)
    "level_merge_ratio": 0.5,         # axis values closer than this * tile side share a level
    "level_snap_ratio": 0.25,         # max distance (in pitches) from a lattice level
    "max_iterations": 8,
    "rms_tolerance": 0.5,             # px; allowed RMS growth between iterations
    "max_rms_ratio": 0.25,            # converged RMS must stay below this * mean pitch
    "min_basis_sine": 0.2,            # |sin| between fitted basis vectors
    "debug": False,
}

_EMPTY_CELLS: Cells = ((None, None, None),) * 3


# ----------------------------------------------------------------------------- #
# Config / utilities                                                            #
# ----------------------------------------------------------------------------- #

def _merge_cfg(cfg: Optional[Dict]) -> Dict:
    if not cfg:
        return dict(_DEFAULT_CFG)
    merged = dict(_DEFAULT_CFG)
    for k, v in cfg.items():
        if isinstance(v, dict) and k in merged and isinstance(merged[k], dict):
            merged[k] = {**merged[k], **v}
        else:
            merged[k] = v
    return merged


def _axial_diff(a: float, b: float) -> float:
    """Smallest angle (deg) between two undirected directions."""
    d = abs(a - b) % 180.0
    return min(d, 180.0 - d)


def _axial_mean(angles_deg: Sequence[float]) -> float:
    """Mean of undirected directions in degrees, result in [0, 180)."""
    t = np.radians(np.asarray(angles_deg, dtype=np.float64)) * 2.0
    s, c = float(np.sin(t).mean()), float(np.cos(t).mean())
    if math.hypot(s, c) < 1e-9:
        return float("nan")
    return (math.degrees(math.atan2(s, c)) / 2.0) % 180.0


def _unit(angle_deg: float) -> np.ndarray:
    r = math.radians(angle_deg)
    return np.array([math.cos(r), math.sin(r)], dtype=np.float64)


def _dump_cells(cells: Cells, xy: np.ndarray) -> None:
    print("[lattice]  r\\c |       0       |       1       |       2       |")
    for r in range(3):
        cols = []
        for c in range(3):
            k = cells[r][c]
            cols.append("     ----      " if k is None else f"{xy[k][0]:7.1f},{xy[k][1]:7.1f}")
        print(f"[lattice]   {r}  |" + "|".join(cols) + "|")


# ----------------------------------------------------------------------------- #
# Metrics: outliers, axes, pitch, origin                                        #
# ----------------------------------------------------------------------------- #

def _axial_medoid(angles_deg: Sequence[float]) -> float:
    """The member with the smallest summed axial distance to all others (axial median)."""
    a = [float(v) for v in angles_deg]
    costs = [sum(_axial_diff(x, y) for y in a) for x in a]
    return a[int(np.argmin(costs))]


def _paired_edges(candidates: Sequence[Candidate], ref: float) -> List[Tuple[float, float, float, float]]:
    """(alpha, beta, side_a, side_b) per candidate; the edge closest to `ref` is alpha."""
    out = []
    for cand in candidates:
        a, b = cand.angle, cand.beta
        la, lb = cand.size, cand.size * cand.gamma_ratio
        if _axial_diff(b, ref) < _axial_diff(a, ref):
            a, b, la, lb = b, a, lb, la
        out.append((a, b, la, lb))
    return out


def reject_angle_outliers(candidates: Sequence[Candidate], cfg: Optional[Dict] = None) -> List[int]:
    """
    Indices of the candidates whose edge directions agree with the median ones.

    A candidate is dropped when its alpha or beta edge is more than
    `angle_outlier_deg` away from the median alpha / beta of the set.
    Sets of fewer than 3 candidates are returned whole.
    """
    cfg = _merge_cfg(cfg)
    n = len(candidates)
    thr = float(cfg["angle_outlier_deg"])
    if n < 3 or thr <= 0:
        return list(range(n))

    edges = _paired_edges(candidates, _axial_medoid([c.angle for c in candidates]))
    med_a = _axial_medoid([e[0] for e in edges])
    med_b = _axial_medoid([e[1] for e in edges])
    keep = []
    for i, (a, b, _, _) in enumerate(edges):
        if _axial_diff(a, med_a) <= thr and _axial_diff(b, med_b) <= thr:
            keep.append(i)
        elif cfg.get("debug"):
            print(f"[lattice] outlier #{i}: alpha={a:.1f} beta={b:.1f} "
                  f"(median {med_a:.1f}/{med_b:.1f})")
    return keep


def estimate_axes(candidates: Sequence[Candidate], cfg: Optional[Dict] = None
                  ) -> Optional[Tuple[float, float, float, float]]:
    """
    Average the edge directions of all candidates into two lattice axes.

    Returns (alpha_deg, beta_deg, alpha_side, beta_side) with
    0 <= alpha < beta < 180, so both axes point down the screen.
    Returns None if the result is non-finite or the axes are near-parallel.
    """
    cfg = _merge_cfg(cfg)
    if not candidates:
        return None

    # pair edges across candidates against the median edge direction
    edges = _paired_edges(candidates, _axial_medoid([c.angle for c in candidates]))
    alpha = _axial_mean([e[0] for e in edges])
    beta = _axial_mean([e[1] for e in edges])
    la = float(np.mean([e[2] for e in edges]))
    lb = float(np.mean([e[3] for e in edges]))
    if not all(math.isfinite(v) for v in (alpha, beta, la, lb)) or la <= 0 or lb <= 0:
        if cfg.get("debug"):
            print(f"[lattice] bad metrics: alpha={alpha} beta={beta} la={la} lb={lb}")
        return None

    if alpha > beta:
        alpha, beta, la, lb = beta, alpha, lb, la

    sep = _axial_diff(alpha, beta)
    if sep < float(cfg["min_axis_separation_deg"]):
        if cfg.get("debug"):
            print(f"[lattice] axes near-parallel: alpha={alpha:.1f} beta={beta:.1f} sep={sep:.1f}")
        return None

    if cfg.get("debug"):
        print(f"[lattice] axes: alpha={alpha:.1f} beta={beta:.1f} side_a={la:.1f} side_b={lb:.1f}")
    return alpha, beta, la, lb


def _levels(values: np.ndarray, merge: float) -> Tuple[np.ndarray, np.ndarray]:
    """Group 1D values into levels separated by gaps larger than `merge`: (means, counts)."""
    v = np.sort(np.asarray(values, dtype=np.float64))
    groups: List[List[float]] = [[float(v[0])]]
    for x in v[1:]:
        if x - groups[-1][-1] > merge:
            groups.append([float(x)])
        else:
            groups[-1].append(float(x))
    return (np.array([np.mean(g) for g in groups], dtype=np.float64),
            np.array([len(g) for g in groups], dtype=np.int64))


def _lattice_levels(levels: np.ndarray, counts: np.ndarray, prior: float,
                    snap: float) -> Tuple[float, float]:
    """
    Pitch and index-0 position of the three evenly spaced levels that explain
    the most candidates.

    Trial pitches are the distances between any two levels and their halves
    (rows 0 and 2 seen, row 1 missing). A level counts for a trial when it is
    within `snap` pitches of one of the three lattice positions. Ties go to the
    pitch nearest `prior`, then to a window that starts on an observed level,
    then to the upper window. With one level the prior is used.

    Returns (pitch, start).
    """
    if levels.size < 2:
        return prior, float(levels[0])

    trials = set()
    for i in range(levels.size):
        for j in range(i + 1, levels.size):
            d = float(levels[j] - levels[i])
            trials.update((d, d / 2.0))

    best_key, best = None, (prior, float(levels[0]))
    for p in sorted(trials):
        if p <= 1e-6:
            continue
        closeness = abs(math.log(p / prior))
        for anchor in levels:
            k = (levels - anchor) / p
            idx = np.rint(k)
            on = np.abs(k - idx) <= snap
            for s in (-2, -1, 0):
                sel = on & (idx >= s) & (idx <= s + 2)
                start = float(anchor + s * p)
                key = (-int(counts[sel].sum()), closeness,
                       0 if np.any(on & (idx == s)) else 1, start)
                if best_key is None or key < best_key:
                    best_key, best = key, (p, start)
    return best


def estimate_lattice(
    candidates: Sequence[Candidate],
    seed: Optional[LatticeFit] = None,
    cfg: Optional[Dict] = None,
) -> Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]]:
    """
    Initial (origin, basis_a, basis_b) hypothesis from candidate metrics.
    Returns None if axis, pitch or origin estimation fails.
    """
    cfg = _merge_cfg(cfg)
    axes = estimate_axes(candidates, cfg)
    if axes is None:
        return None
    alpha, beta, side_a, side_b = axes
    ua, ub = _unit(alpha), _unit(beta)
    frame = np.column_stack([ua, ub])

    xy = np.array([c.center for c in candidates], dtype=np.float64)
    ab = np.linalg.solve(frame, xy.T).T          # coordinates along (alpha, beta)

    ratio = float(cfg["tile_pitch_ratio"])
    prior_a, prior_b = side_a * ratio, side_b * ratio
    if seed is not None and seed.valid:
        prior_a = math.hypot(*seed.basis_a)
        prior_b = math.hypot(*seed.basis_b)

    merge = float(cfg["level_merge_ratio"])
    snap = float(cfg["level_snap_ratio"])
    levels_a, counts_a = _levels(ab[:, 0], merge * side_a)
    levels_b, counts_b = _levels(ab[:, 1], merge * side_b)
    pa, start_a = _lattice_levels(levels_a, counts_a, prior_a, snap)
    pb, start_b = _lattice_levels(levels_b, counts_b, prior_b, snap)
    if not (math.isfinite(pa) and math.isfinite(pb)) or pa <= 1e-6 or pb <= 1e-6:
        if cfg.get("debug"):
            print(f"[lattice] bad pitch: pa={pa} pb={pb}")
        return None

    # lattice coordinates relative to the top corner
    ka = (ab[:, 0] - start_a) / pa
    kb = (ab[:, 1] - start_b) / pb
    ia, ib = np.rint(ka), np.rint(kb)
    on = ((np.abs(ka - ia) <= snap) & (np.abs(kb - ib) <= snap)
          & (ia >= 0) & (ia <= 2) & (ib >= 0) & (ib <= 2))

    # on-lattice candidate closest to the top corner seeds cell (0,0)
    if on.any():
        k = int(np.argmin(np.where(on, np.hypot(ka, kb), np.inf)))
        origin_ab = ab[k] - np.array([ia[k] * pa, ib[k] * pb])
    else:
        k = -1
        origin_ab = np.array([start_a, start_b])
    origin = frame @ origin_ab

    if cfg.get("debug"):
        print(f"[lattice] pitch=({pa:.1f},{pb:.1f}) levels=({levels_a.size},{levels_b.size}) "
              f"origin=({origin[0]:.1f},{origin[1]:.1f}) seeded by #{k}")
    return origin, ua * pa, ub * pb


# ----------------------------------------------------------------------------- #
# Assignment / least squares                                                    #
# ----------------------------------------------------------------------------- #

def _assign_cells(xy: np.ndarray, origin: np.ndarray, basis_a: np.ndarray,
                  basis_b: np.ndarray) -> Cells:
    """
    Nearest-cell assignment. Candidates falling outside 0..2 are dropped; when two
    claim one cell the smaller residual wins and the other stays unassigned.
    """
    m = np.column_stack([basis_a, basis_b])
    rc = np.linalg.solve(m, (xy - origin).T).T
    idx = np.rint(rc).astype(int)
    expected = origin + idx[:, :1] * basis_a + idx[:, 1:] * basis_b
    resid = np.hypot(xy[:, 0] - expected[:, 0], xy[:, 1] - expected[:, 1])

    cells: List[List[Optional[int]]] = [[None] * 3 for _ in range(3)]
    for k in np.argsort(resid, kind="stable"):
        r, c = int(idx[k, 0]), int(idx[k, 1])
        if 0 <= r <= 2 and 0 <= c <= 2 and cells[r][c] is None:
            cells[r][c] = int(k)
    return tuple(tuple(row) for row in cells)


def _covers_rows_and_cols(cells: Cells) -> bool:
    rows_ok = all(any(k is not None for k in cells[r]) for r in range(3))
    cols_ok = all(any(cells[r][c] is not None for r in range(3)) for c in range(3))
    return rows_ok and cols_ok


def _solve_lattice(xy: np.ndarray, cells: Cells, cfg: Dict):
    """
    Ordinary least squares for screen = origin + row * A + col * B.

    Each assigned candidate adds an x and a y equation; x and y share the
    design matrix [1, row, col] so both are solved in one lstsq call.
    Returns (origin, basis_a, basis_b, residual_field, rms) or None.
    """
    design, target, where = [], [], []
    for r in range(3):
        for c in range(3):
            k = cells[r][c]
            if k is not None:
                design.append([1.0, float(r), float(c)])
                target.append(xy[k])
                where.append((r, c))
    if len(design) < 3:
        return None

    A = np.asarray(design, dtype=np.float64)
    Y = np.asarray(target, dtype=np.float64)
    X, _, rank, _ = np.linalg.lstsq(A, Y, rcond=None)
    if rank < 3 or not np.isfinite(X).all():
        if cfg.get("debug"):
            print(f"[lattice] singular system: rank={rank}")
        return None

    origin, basis_a, basis_b = X[0], X[1], X[2]
    na, nb = float(np.linalg.norm(basis_a)), float(np.linalg.norm(basis_b))
    cross = float(basis_a[0] * basis_b[1] - basis_a[1] * basis_b[0])
    if na <= 1e-6 or nb <= 1e-6 or abs(cross) < float(cfg["min_basis_sine"]) * na * nb:
        if cfg.get("debug"):
            print(f"[lattice] degenerate basis: |A|={na:.2f} |B|={nb:.2f} cross={cross:.2f}")
        return None

    E = Y - A @ X
    field = np.full((3, 3, 2), np.nan, dtype=np.float64)
    for (r, c), e in zip(where, E):
        field[r, c] = e
    rms = float(np.sqrt(np.mean(np.sum(E * E, axis=1))))
    return origin, basis_a, basis_b, field, rms


# ----------------------------------------------------------------------------- #
# Public API                                                                    #
# ----------------------------------------------------------------------------- #

def _result(status: FaceStatus, *, origin=(0.0, 0.0), basis_a=(0.0, 0.0), basis_b=(0.0, 0.0),
            field=None, rms=float("nan"), cells: Cells = _EMPTY_CELLS, iterations=0,
            history=(), keep: Optional[Sequence[int]] = None) -> LatticeFit:
    if field is None:
        field = np.full((3, 3, 2), np.nan, dtype=np.float64)
    if keep is not None:
        # back to indices into the caller's candidate list
        cells = tuple(tuple(None if k is None else int(keep[k]) for k in row) for row in cells)
    return LatticeFit(
        origin=(float(origin[0]), float(origin[1])),
        basis_a=(float(basis_a[0]), float(basis_a[1])),
        basis_b=(float(basis_b[0]), float(basis_b[1])),
        residual_field=field,
        rms_error=float(rms),
        valid=status is FaceStatus.SOLVED,
        status=status,
        cells=cells,
        iterations=iterations,
        rms_history=tuple(float(v) for v in history),
    )


def fit_lattice(
    candidates: Sequence[Candidate],
    seed: Optional[LatticeFit] = None,
    cfg: Optional[Dict] = None,
) -> LatticeFit:
    """
    Fit a 3x3 lattice to the candidate set of one frame.

    Candidates whose edge directions disagree with the rest are dropped
    first (see `reject_angle_outliers`); `cells` still index `candidates`.
    Never raises for bad data: every failure is reported through
    `LatticeFit.status` and `valid=False`.

    Args:
        candidates: tile candidates for this frame (any order).
        seed: previous frame's fit; only its pitch is reused as a prior.
        cfg: overrides for _DEFAULT_CFG.
    """
    cfg = _merge_cfg(cfg)
    debug = bool(cfg.get("debug"))
    candidates = list(candidates)

    if len(candidates) < int(cfg["min_candidates"]):
        if debug:
            print(f"[lattice] insufficient: {len(candidates)} candidates")
        return _result(FaceStatus.INSUFFICIENT)

    keep = reject_angle_outliers(candidates, cfg)
    if len(keep) < int(cfg["min_candidates"]):
        if debug:
            print(f"[lattice] insufficient: {len(keep)} of {len(candidates)} candidates left after outliers")
        return _result(FaceStatus.INSUFFICIENT)
    inliers = [candidates[i] for i in keep]

    guess = estimate_lattice(inliers, seed, cfg)
    if guess is None:
        return _result(FaceStatus.BAD_METRICS, keep=keep)
    origin, basis_a, basis_b = guess

    xy = np.array([c.center for c in inliers], dtype=np.float64)
    cells = _assign_cells(xy, origin, basis_a, basis_b)
    if debug:
        _dump_cells(cells, xy)
    if not _covers_rows_and_cols(cells):
        if debug:
            print("[lattice] inadequate: a row or column is empty")
        return _result(FaceStatus.INADEQUATE, keep=keep, origin=origin, basis_a=basis_a,
                       basis_b=basis_b, cells=cells)

    seen: List[Cells] = [cells]
    history: List[float] = []
    tol = float(cfg["rms_tolerance"])
    max_iter = max(1, int(cfg["max_iterations"]))

    for it in range(1, max_iter + 1):
        sol = _solve_lattice(xy, cells, cfg)
        if sol is None:
            return _result(FaceStatus.INVALID_MATH, keep=keep, origin=origin, basis_a=basis_a,
                           basis_b=basis_b, cells=cells, iterations=it, history=history)
        origin, basis_a, basis_b, field, rms = sol
        state = dict(origin=origin, basis_a=basis_a, basis_b=basis_b, field=field,
                     rms=rms, cells=cells, iterations=it)

        if history and rms > history[-1] + tol:
            history.append(rms)
            if debug:
                print(f"[lattice] unstable: rms {history[-2]:.2f} -> {rms:.2f}")
            return _result(FaceStatus.UNSTABLE, keep=keep, history=history, **state)
        history.append(rms)
        state["history"] = history

        new_cells = _assign_cells(xy, origin, basis_a, basis_b)
        if new_cells == cells:
            break
        if new_cells in seen:
            if debug:
                print(f"[lattice] blocked: layout repeats at iteration {it}")
            return _result(FaceStatus.BLOCKED, keep=keep, **state)
        if debug:
            print(f"[lattice] iteration {it}: rms={rms:.2f}, layout changed")
            _dump_cells(new_cells, xy)
        seen.append(new_cells)
        cells = new_cells
        if not _covers_rows_and_cols(cells):
            return _result(FaceStatus.INADEQUATE, keep=keep, **{**state, "cells": cells})
    else:
        if debug:
            print(f"[lattice] incomplete: no convergence after {max_iter} iterations")
        return _result(FaceStatus.INCOMPLETE, keep=keep, **state)

    fit = _result(FaceStatus.SOLVED, keep=keep, **state)
    limit = float(cfg["max_rms_ratio"]) * fit.pitch
    if fit.num_assigned < 9 or not rms <= limit:
        if debug:
            print(f"[lattice] incomplete: {fit.num_assigned}/9 cells, rms={rms:.2f} limit={limit:.2f}")
        return _result(FaceStatus.INCOMPLETE, keep=keep, **state)

    if debug:
        print(f"[lattice] solved: origin=({origin[0]:.1f},{origin[1]:.1f}) rms={rms:.3f} "
              f"iterations={it}")
    return fit
