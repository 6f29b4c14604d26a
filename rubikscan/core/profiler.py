# rubikscan/core/profiler.py
from __future__ import annotations
from typing import Dict, Optional
import time


class FrameProfiler:
    """
    Per-stage timing for the frame pipeline.

    Create one, pass it to whatever runs the frames, and call `reset()` when
    the minimum-time bookkeeping should start over. Nothing here is global.
    """

    def __init__(self, clock=time.perf_counter):
        self._clock = clock
        self.reset()

    def reset(self) -> None:
        self._marks: Dict[str, float] = {}
        self._order = []
        self.minimum: Dict[str, float] = {}
        self.last: Dict[str, float] = {}
        self.frames = 0

    def start(self) -> None:
        self._marks = {}
        self._order = []
        self.mark("start")

    def mark(self, event: str) -> None:
        self._marks[event] = self._clock()
        self._order.append(event)

    def finish(self) -> Dict[str, float]:
        """Durations (seconds) of each stage since the previous mark, plus "total"."""
        self.mark("total")
        out: Dict[str, float] = {}
        for prev, cur in zip(self._order, self._order[1:]):
            if cur == "total":
                continue
            out[cur] = self._marks[cur] - self._marks[prev]
        out["total"] = self._marks["total"] - self._marks["start"]
        for k, v in out.items():
            self.minimum[k] = min(v, self.minimum.get(k, v))
        self.last = out
        self.frames += 1
        return out

    def report(self) -> Optional[str]:
        if not self.last:
            return None
        return "  ".join(f"{k}={v * 1000.0:.1f}ms(min {self.minimum[k] * 1000.0:.1f})"
                         for k, v in self.last.items())
