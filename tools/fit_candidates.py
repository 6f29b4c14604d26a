#!/usr/bin/env python3
from __future__ import annotations
import argparse, os
import sys
from datetime import datetime
import cv2
import numpy as np

from rubikscan.core.contracts import FaceStatus
from rubikscan.core.profiler import FrameProfiler
from rubikscan.io.ingest import load_candidates, load_camera, load_kernel_cfg
from rubikscan.pipeline import process_frame


class Tee:
    def __init__(self, *streams):
        self.streams = streams
    def write(self, data):
        for s in self.streams:
            s.write(data)
            s.flush()
    def flush(self):
        for s in self.streams:
            s.flush()


def draw_overlay(shape, candidates, face):
    H, W = shape
    vis = np.full((H, W, 3), 30, np.uint8)
    for cand in candidates:
        cx, cy = (int(round(v)) for v in cand.center)
        rgb = cand.color or (200, 200, 200)
        cv2.circle(vis, (cx, cy), max(3, int(cand.size / 3)), tuple(int(v) for v in rgb[::-1]), -1)

    fit = face.fit
    if fit is not None and face.num_populated:
        centers = fit.cell_centers()
        if np.isfinite(centers).all():
            for r in range(3):
                for c in range(3):
                    x, y = centers[r, c]
                    color = (0, 255, 0) if face.cells[r][c] is not None else (0, 0, 255)
                    cv2.drawMarker(vis, (int(x), int(y)), color, cv2.MARKER_CROSS, 14, 2)
                    cv2.putText(vis, f"{r}{c}", (int(x) + 6, int(y) - 6),
                                cv2.FONT_HERSHEY_PLAIN, 1.0, color, 1, cv2.LINE_AA)

    ok = face.status is FaceStatus.SOLVED
    cv2.putText(vis, face.status.name, (20, 40), cv2.FONT_HERSHEY_SIMPLEX, 1.0,
                (0, 255, 0) if ok else (0, 0, 255), 2, cv2.LINE_AA)
    return vis


def main():
    ap = argparse.ArgumentParser(description="Fit a cube-face lattice to a candidate file and estimate the pose.")
    ap.add_argument("candidates", help="JSON/YAML file with candidate records.")
    ap.add_argument("--cfg", default="config/kernel.yaml", help="Kernel config (lattice/pose/camera sections).")
    ap.add_argument("--out", default=None, help="Overlay PNG path. Default: no overlay.")
    ap.add_argument("--log", action="store_true", help="Also write stdout to a timestamped log file.")
    ap.add_argument("--debug", action="store_true", help="Enable debug prints in the fitter and pose estimator.")
    args = ap.parse_args()

    if args.log:
        logfile = f"fit_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        sys.stdout = Tee(sys.stdout, open(logfile, "w"))
        print(f"[logging] Writing debug output to: {logfile}")

    cfg = load_kernel_cfg(args.cfg)
    if args.debug:
        cfg["lattice"]["debug"] = True
        cfg["pose"]["debug"] = True
    camera = load_camera(cfg["camera"])
    candidates = load_candidates(args.candidates)
    print(f"[fit] {len(candidates)} candidates from {args.candidates}")

    prof = FrameProfiler()
    res = process_frame(candidates, camera, cfg=cfg, profiler=prof)
    face = res.face
    print(f"[fit] status={face.status.name} cells={face.num_populated}/9")
    if face.fit is not None and face.fit.rms_history:
        print(f"[fit] rms={face.fit.rms_error:.3f} history={['%.3f' % v for v in face.fit.rms_history]}")
    if face.colors is not None:
        for row in face.colors:
            print("[fit]   " + " ".join("-" if t is None else t.symbol for t in row))
        print(f"[fit] face hash={face.face_hash:#010x}")
    if res.pose is not None:
        p = res.pose
        print(f"[fit] translation=({p.x:.3f}, {p.y:.3f}, {p.z:.3f}) "
              f"rotation=({p.x_rotation:.1f}, {p.y_rotation:.1f}, {p.z_rotation:.1f})")
    else:
        print("[fit] no pose")
    print(f"[fit] timing {prof.report()}")

    if args.out:
        shape = (int(round(camera.cy * 2)), int(round(camera.cx * 2)))
        os.makedirs(os.path.dirname(args.out) or ".", exist_ok=True)
        cv2.imwrite(args.out, draw_overlay(shape, candidates, face))
        print(f"Saved visualization → {args.out}")


if __name__ == "__main__":
    main()
