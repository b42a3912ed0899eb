"""Weekly step timing.

Records the wall-clock duration of every spores / dispersal / allocation call,
plus how many spores each call handled, so slow weeks (spore blooms in wet
years) show up as a tail rather than vanishing into an average. Zero
overhead when disabled.

Usage:
    from sod_spread.perf import PerfMonitor

    perf = PerfMonitor(enabled=True)
    result = run_spread_simulation(landscape, weather, perf=perf)
    print(perf.report())
"""

import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np


@dataclass
class ComponentStats:
    """Per-call durations (s) and spore counts of one weekly-step component."""
    durations: List[float] = field(default_factory=list)
    spores: List[int] = field(default_factory=list)

    @property
    def call_count(self) -> int:
        return len(self.durations)

    @property
    def total_time(self) -> float:
        return float(np.sum(self.durations)) if self.durations else 0.0

    @property
    def mean_time(self) -> float:
        return float(np.mean(self.durations)) if self.durations else 0.0

    @property
    def max_time(self) -> float:
        return float(np.max(self.durations)) if self.durations else 0.0

    def percentile(self, q: float) -> float:
        return float(np.percentile(self.durations, q)) if self.durations else 0.0

    @property
    def spores_per_second(self) -> float:
        total = self.total_time
        return float(np.sum(self.spores)) / total if total > 0 else 0.0


class PerfMonitor:
    """Wall-clock monitor for the components of the weekly step."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._stats: Dict[str, ComponentStats] = defaultdict(ComponentStats)
        self._run_start: Optional[float] = None
        self._run_time = 0.0

    def start(self) -> None:
        if self.enabled:
            self._run_start = time.perf_counter()

    def stop(self) -> None:
        if self.enabled and self._run_start is not None:
            self._run_time = time.perf_counter() - self._run_start
            self._run_start = None

    @contextmanager
    def track(self, component: str, n_spores: int = 0):
        """Time the enclosed block as one call of `component`."""
        if not self.enabled:
            yield
            return
        t0 = time.perf_counter()
        try:
            yield
        finally:
            stats = self._stats[component]
            stats.durations.append(time.perf_counter() - t0)
            stats.spores.append(int(n_spores))

    def get_stats(self) -> Dict[str, ComponentStats]:
        return dict(self._stats)

    @property
    def run_time(self) -> float:
        """Whole-run time if start/stop were called, else the tracked sum."""
        if self._run_time:
            return self._run_time
        return sum(s.total_time for s in self._stats.values())

    def _ranked(self):
        return sorted(self._stats.items(), key=lambda kv: -kv[1].total_time)

    def summary(self) -> dict:
        """Summary dict suitable for JSON serialization."""
        run = self.run_time
        out = {}
        for name, stats in self._ranked():
            out[name] = {
                'weeks': stats.call_count,
                'total_s': round(stats.total_time, 4),
                'mean_ms': round(stats.mean_time * 1e3, 3),
                'p95_ms': round(stats.percentile(95) * 1e3, 3),
                'max_ms': round(stats.max_time * 1e3, 3),
                'spores_per_s': round(stats.spores_per_second, 1),
                'share': round(stats.total_time / run, 3) if run > 0 else 0.0,
            }
        out['_total_s'] = round(run, 4)
        return out

    def report(self, title: str = "Weekly step timing") -> str:
        run = self.run_time
        lines = [
            title,
            f"{'component':<12} {'weeks':>6} {'total s':>9} {'mean ms':>9} "
            f"{'p95 ms':>9} {'spores/s':>11} {'share':>6}",
        ]
        for name, stats in self._ranked():
            share = stats.total_time / run * 100 if run > 0 else 0.0
            lines.append(
                f"{name:<12} {stats.call_count:>6} {stats.total_time:>9.3f} "
                f"{stats.mean_time * 1e3:>9.2f} {stats.percentile(95) * 1e3:>9.2f} "
                f"{stats.spores_per_second:>11.0f} {share:>5.1f}%"
            )
        lines.append(f"{'run':<12} {'':>6} {run:>9.3f}")
        return '\n'.join(lines)

    def reset(self) -> None:
        self._stats.clear()
        self._run_start = None
        self._run_time = 0.0
