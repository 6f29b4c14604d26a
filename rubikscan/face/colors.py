"""
Default tile color classifier: nearest reference color in RGB.

The recognizer accepts any callable `rgb -> TileColor`; this one is what
`evaluate()` uses when none is given.
"""

from __future__ import annotations
from typing import Dict, Optional, Sequence
import numpy as np

from rubikscan.core.contracts import TileColor

# Measured tile colors under morning light
DEFAULT_PALETTE: Dict[TileColor, tuple] = {
    TileColor.RED:    (180.0,  20.0,  30.0),
    TileColor.ORANGE: (240.0, 120.0,   0.0),
    TileColor.YELLOW: (230.0, 230.0,  80.0),
    TileColor.GREEN:  (  0.0, 140.0,  60.0),
    TileColor.BLUE:   (  0.0,  60.0, 220.0),
    TileColor.WHITE:  (225.0, 255.0, 255.0),
}


def palette_from_cfg(cfg: Optional[Dict]) -> Dict[TileColor, tuple]:
    """
    Build a palette from a {"RED": [r, g, b], ...} mapping (e.g. the `palette`
    section of config/kernel.yaml). Missing colors keep their defaults.
    """
    palette = dict(DEFAULT_PALETTE)
    for name, rgb in (cfg or {}).items():
        palette[TileColor[name.upper()]] = tuple(float(v) for v in rgb)
    return palette


def classify_rgb(rgb: Sequence[float], palette: Optional[Dict[TileColor, tuple]] = None) -> TileColor:
    palette = palette or DEFAULT_PALETTE
    colors = list(palette.keys())
    refs = np.array([palette[c] for c in colors], dtype=np.float64)
    d = np.linalg.norm(refs - np.asarray(rgb, dtype=np.float64)[:3], axis=1)
    return colors[int(np.argmin(d))]


def _rotate_right(v: int, n: int = 1) -> int:
    v &= 0xFFFFFFFF
    return ((v >> n) | (v << (32 - n))) & 0xFFFFFFFF


def face_hash(colors) -> int:
    """
    Repeatable 32-bit code for a 3x3 color layout. Rotating the running value
    before each cell makes the code depend on where each color sits.
    """
    h = 0
    for row in colors:
        for tile in row:
            code = 0 if tile is None else ord(tile.symbol)
            h = code ^ _rotate_right(h, 1)
    return h
