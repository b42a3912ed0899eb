"""Core data types for sod_spread.

This module is the SINGLE SOURCE OF TRUTH for:
  - Compass octants and their bearings (wind direction)
  - HostSpecies: per-species abundance + susceptible/infected grids
  - Landscape: ordered host-species list + immune pool + cell resolution
  - Dtype and saturation constants shared by the weekly step

All modules import these types from here. No other module defines grid fields.

Conventions:
  - Grids are 2-D numpy arrays indexed [row, col]; row 0 is the northern edge.
  - Counts are int64 (COUNT_DTYPE). Suitability is float64 in [0, 1].
  - Bearings are measured clockwise from north, in radians.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

COUNT_DTYPE = np.int64

# Per-cell Poisson mean above which spore production saturates.
MAX_SPORE_MEAN = 1.0e9

RESERVOIR = "reservoir"   # UMCA (bay laurel): sporulates, not killed
OAK = "oak"               # SOD-affected oaks: mortality tracked, dead-end host


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class WindDirection(Enum):
    """Predominant wind direction, one of the 8 compass octants.

    Value is the bearing in degrees clockwise from north.
    """
    N  = 0.0
    NE = 45.0
    E  = 90.0
    SE = 135.0
    S  = 180.0
    SW = 225.0
    W  = 270.0
    NW = 315.0

    @property
    def radians(self) -> float:
        return float(np.deg2rad(self.value))

    @classmethod
    def parse(cls, value) -> 'WindDirection':
        """Accept a WindDirection or an octant name ('N', 'ne', ...).

        Raises:
            ValueError: If value is not one of the 8 octants.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip().upper() in cls.__members__:
            return cls[value.strip().upper()]
        raise ValueError(
            f"wind direction must be one of {list(cls.__members__)}, got {value!r}"
        )


COMPASS_OCTANTS = tuple(WindDirection.__members__)


# ═══════════════════════════════════════════════════════════════════════
# HOST SPECIES + LANDSCAPE
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class HostSpecies:
    """One host species on the grid.

    abundance is fixed for the whole run. susceptible and infected are the
    mutable compartments; only the infection allocator writes them.
    """
    name: str
    abundance: np.ndarray          # (rows, cols) int64, static
    susceptible: np.ndarray        # (rows, cols) int64
    infected: np.ndarray           # (rows, cols) int64
    sporulates: bool = False       # infected hosts of this species produce spores
    mortality_tracked: bool = False

    @property
    def shape(self):
        return self.abundance.shape

    def copy(self) -> 'HostSpecies':
        return HostSpecies(
            name=self.name,
            abundance=self.abundance.copy(),
            susceptible=self.susceptible.copy(),
            infected=self.infected.copy(),
            sporulates=self.sporulates,
            mortality_tracked=self.mortality_tracked,
        )


@dataclass
class Landscape:
    """Grid State: every host species plus the static immune pool."""
    species: List[HostSpecies]
    immune: np.ndarray             # (rows, cols) int64, static
    resolution: float = 1.0        # cell side length (same units as kernel scale)
    names: List[str] = field(init=False, default_factory=list)

    def __post_init__(self):
        self.names = [sp.name for sp in self.species]

    @property
    def shape(self):
        return self.immune.shape

    @property
    def n_species(self) -> int:
        return len(self.species)

    def species_named(self, name: str) -> HostSpecies:
        for sp in self.species:
            if sp.name == name:
                return sp
        raise KeyError(f"No host species named '{name}'. Available: {self.names}")

    @property
    def mortality_species(self) -> List[HostSpecies]:
        return [sp for sp in self.species if sp.mortality_tracked]

    @property
    def sporulating_species(self) -> List[HostSpecies]:
        return [sp for sp in self.species if sp.sporulates]

    def total_susceptible(self) -> np.ndarray:
        return sum(sp.susceptible for sp in self.species)

    def total_infected(self) -> np.ndarray:
        return sum(sp.infected for sp in self.species)

    def susceptible_remaining(self) -> bool:
        """True while any mortality-tracked host is still susceptible.

        With no mortality-tracked species, every species counts.
        """
        tracked = self.mortality_species or self.species
        return any(bool(np.any(sp.susceptible > 0)) for sp in tracked)

    def copy(self) -> 'Landscape':
        return Landscape(
            species=[sp.copy() for sp in self.species],
            immune=self.immune.copy(),
            resolution=self.resolution,
        )


def zeros_grid(shape, dtype=COUNT_DTYPE) -> np.ndarray:
    """Allocate a zeroed count grid."""
    return np.zeros(shape, dtype=dtype)


def as_count_grid(values, name: str = "grid") -> np.ndarray:
    """Round a raster to a 2-D int64 count grid.

    Raises:
        ValueError: If the array is not 2-D or holds negative / non-finite values.
    """
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim != 2:
        raise ValueError(f"{name} must be a 2-D grid, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} contains non-finite values")
    counts = np.rint(arr).astype(COUNT_DTYPE)
    if np.any(counts < 0):
        raise ValueError(f"{name} contains negative counts")
    return counts
