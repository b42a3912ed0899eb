"""Reported-week grid snapshots.

Records per-species susceptible / infected grids at a configurable cadence
(every Nth processed week) plus the initial and final state of a run.

Usage:
    recorder = GridSnapshotRecorder(every_n_weeks=4, species=['oak'])

    # In simulation loop:
    if recorder.should_capture(processed_week):
        recorder.capture(week, date, landscape)

    # After simulation:
    recorder.save("results/snapshots.npz")
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np

from sod_spread.types import Landscape


def infection_proportion(infected: np.ndarray,
                         abundance: np.ndarray) -> np.ndarray:
    """Infected / abundance per cell; NaN where nothing is infected or no hosts."""
    infected = np.asarray(infected, dtype=np.float64)
    abundance = np.asarray(abundance, dtype=np.float64)
    out = np.full(infected.shape, np.nan)
    present = (infected > 0) & (abundance > 0)
    out[present] = infected[present] / abundance[present]
    return out


@dataclass
class GridSnapshot:
    """Compartment grids of selected species at one week."""
    week: int                 # weekly time-step index (0 = initial state)
    date: datetime.date
    susceptible: Dict[str, np.ndarray] = field(default_factory=dict)
    infected: Dict[str, np.ndarray] = field(default_factory=dict)

    def proportion(self, name: str, abundance: np.ndarray) -> np.ndarray:
        return infection_proportion(self.infected[name], abundance)


class GridSnapshotRecorder:
    """Records grid snapshots for reporting.

    When enabled=False, all methods are no-ops.
    """

    def __init__(
        self,
        enabled: bool = True,
        every_n_weeks: int = 1,
        species: Optional[List[str]] = None,
    ):
        """
        Args:
            enabled: Master switch. False = no-ops everywhere.
            every_n_weeks: Capture every Nth processed week.
            species: Species names to capture (None = all).
        """
        if every_n_weeks < 1:
            raise ValueError(f"every_n_weeks must be >= 1, got {every_n_weeks}")
        self.enabled = enabled
        self.every_n_weeks = every_n_weeks
        self.species_filter = set(species) if species is not None else None

        # Storage: week index -> GridSnapshot
        self.snapshots: Dict[int, GridSnapshot] = {}

    def should_capture(self, processed_week: int) -> bool:
        """Check whether the Nth processed week is a reporting week."""
        if not self.enabled:
            return False
        return processed_week > 0 and processed_week % self.every_n_weeks == 0

    def capture(self, week: int, date: datetime.date,
                landscape: Landscape) -> None:
        """Store copies of the current compartment grids."""
        if not self.enabled:
            return
        snap = GridSnapshot(week=week, date=date)
        for sp in landscape.species:
            if self.species_filter is not None and sp.name not in self.species_filter:
                continue
            snap.susceptible[sp.name] = sp.susceptible.copy()
            snap.infected[sp.name] = sp.infected.copy()
        self.snapshots[week] = snap

    @property
    def weeks(self) -> List[int]:
        return sorted(self.snapshots)

    def get_snapshot(self, week: int) -> Optional[GridSnapshot]:
        return self.snapshots.get(week)

    def latest(self) -> Optional[GridSnapshot]:
        if not self.snapshots:
            return None
        return self.snapshots[self.weeks[-1]]

    def save(self, path: Union[str, Path]) -> None:
        """Save all snapshots to a compressed npz file.

        Arrays are named w{week}_{species}_S / w{week}_{species}_I, plus
        metadata arrays meta_weeks, meta_dates (ISO strings), meta_species.
        """
        if not self.snapshots:
            return
        arrays = {}
        names = set()
        for week, snap in sorted(self.snapshots.items()):
            for name, grid in snap.susceptible.items():
                arrays[f"w{week}_{name}_S"] = grid
                names.add(name)
            for name, grid in snap.infected.items():
                arrays[f"w{week}_{name}_I"] = grid
        arrays['meta_weeks'] = np.array(self.weeks, dtype=np.int32)
        arrays['meta_dates'] = np.array(
            [self.snapshots[w].date.isoformat() for w in self.weeks]
        )
        arrays['meta_species'] = np.array(sorted(names))

        Path(path).parent.mkdir(parents=True, exist_ok=True)
        np.savez_compressed(path, **arrays)

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'GridSnapshotRecorder':
        """Load snapshots from an npz file written by save()."""
        recorder = cls(enabled=False)
        with np.load(path) as data:
            species = [str(s) for s in data['meta_species']]
            for week, iso in zip(data['meta_weeks'], data['meta_dates']):
                week = int(week)
                snap = GridSnapshot(week=week,
                                    date=datetime.date.fromisoformat(str(iso)))
                for name in species:
                    key = f"w{week}_{name}_S"
                    if key in data:
                        snap.susceptible[name] = data[key]
                        snap.infected[name] = data[f"w{week}_{name}_I"]
                recorder.snapshots[week] = snap
        return recorder
