"""
Temporal smoothing of per-frame cube poses.

Constant-velocity Kalman filter over twelve states: x, y, z and the three
rotation components, followed by their six rates. The six pose values are
measured directly. Startup: the first pose is adopted with zero rates, the
second pose is adopted and the rates are taken from the difference, the
filter runs normally afterwards.
"""

from __future__ import annotations
from typing import Dict, Optional
import numpy as np

from rubikscan.core.contracts import CubePose

_DEFAULT_CFG: Dict = {
    "process_noise": 50.0,       # white-acceleration spectral density
    "measurement_noise": 0.05,   # per-axis measurement variance
    "initial_rate_variance": 100.0,
}

N = 6


def _merge_cfg(cfg: Optional[Dict]) -> Dict:
    merged = dict(_DEFAULT_CFG)
    merged.update(cfg or {})
    return merged


class PoseFilter:

    def __init__(self, cfg: Optional[Dict] = None):
        self.cfg = _merge_cfg(cfg)
        self.H = np.hstack([np.eye(N), np.zeros((N, N))])
        self.R = np.eye(N) * float(self.cfg["measurement_noise"])
        self.reset()

    def reset(self) -> None:
        self.x = np.zeros(2 * N)
        self.P = np.eye(2 * N)
        self.count = 0

    @property
    def pose(self) -> Optional[CubePose]:
        return None if self.count == 0 else CubePose.from_array(self.x[:N])

    def _transition(self, dt: float):
        F = np.eye(2 * N)
        F[:N, N:] = np.eye(N) * dt
        q = float(self.cfg["process_noise"])
        Q = np.zeros((2 * N, 2 * N))
        Q[:N, :N] = np.eye(N) * (dt ** 4 / 4.0)
        Q[:N, N:] = np.eye(N) * (dt ** 3 / 2.0)
        Q[N:, :N] = np.eye(N) * (dt ** 3 / 2.0)
        Q[N:, N:] = np.eye(N) * (dt ** 2)
        return F, Q * q

    def predict(self, dt: float) -> Optional[CubePose]:
        """Extrapolate the state `dt` seconds ahead without a measurement."""
        if self.count == 0:
            return None
        F, Q = self._transition(dt)
        self.x = F @ self.x
        self.P = F @ self.P @ F.T + Q
        return self.pose

    def update(self, measured: CubePose, dt: float) -> CubePose:
        """Fold in one measured pose taken `dt` seconds after the previous one."""
        z = measured.as_array()
        r = float(self.cfg["measurement_noise"])

        if self.count == 0:
            self.x = np.concatenate([z, np.zeros(N)])
            self.P = np.diag([r] * N + [float(self.cfg["initial_rate_variance"])] * N)
        elif self.count == 1 and dt > 0:
            rates = (z - self.x[:N]) / dt
            self.x = np.concatenate([z, rates])
            self.P = np.diag([r] * N + [2.0 * r / dt ** 2] * N)
        else:
            self.predict(dt)
            y = z - self.H @ self.x
            S = self.H @ self.P @ self.H.T + self.R
            K = self.P @ self.H.T @ np.linalg.inv(S)
            self.x = self.x + K @ y
            self.P = (np.eye(2 * N) - K @ self.H) @ self.P
        self.count += 1
        return self.pose
