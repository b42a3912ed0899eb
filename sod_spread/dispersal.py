"""Spore dispersal kernel.

Every spore produced at a source cell independently draws

  distance  d ~ |scale × Cauchy(0, 1)|            (heavy tail: rare long jumps)
  bearing   θ ~ Uniform[0, 2π)                    (isotropic)
            θ ~ VonMises(μ_wind, κ)               (wind; κ = 0 → uniform)

and lands at offset

  Δrow = −round(d · cos θ / res)     (north = up = decreasing row)
  Δcol = +round(d · sin θ / res)     (east = increasing column)

Spores whose destination falls outside the grid are lost (no wrap, no
reflection). Landing counts are accumulated with np.bincount over flat
destination indices. The reduction is order-independent, so partial
grids from separate workers can simply be summed.

Mass accounting: landed.sum() == n_dispersed − n_lost.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple, Union

import numpy as np

from sod_spread.config import SimulationConfig
from sod_spread.rng import spawn_worker_rngs
from sod_spread.types import COUNT_DTYPE, WindDirection

TWO_PI = 2.0 * np.pi

DEFAULT_SCALE = 20.57
DEFAULT_KAPPA = 2.0
DEFAULT_CHUNK_SIZE = 2_000_000


# ═══════════════════════════════════════════════════════════════════════
# SAMPLING
# ═══════════════════════════════════════════════════════════════════════

def sample_distances(n: int, scale: float,
                     rng: np.random.Generator) -> np.ndarray:
    """Half-Cauchy dispersal distances |scale × Cauchy(0, 1)|."""
    if scale <= 0:
        raise ValueError(f"kernel scale must be positive, got {scale}")
    return np.abs(scale * rng.standard_cauchy(n))


def sample_directions(
    n: int,
    rng: np.random.Generator,
    wind_direction: Optional[Union[str, WindDirection]] = None,
    kappa: float = DEFAULT_KAPPA,
) -> np.ndarray:
    """Dispersal bearings in [0, 2π), clockwise from north.

    Args:
        n: Number of bearings.
        rng: Random generator.
        wind_direction: Predominant wind octant; None = isotropic.
        kappa: von Mises concentration about the wind bearing.
    """
    if wind_direction is None:
        return rng.uniform(0.0, TWO_PI, n)
    if kappa < 0:
        raise ValueError(f"kappa must be >= 0, got {kappa}")
    mu = WindDirection.parse(wind_direction).radians
    return np.mod(rng.vonmises(mu, kappa, n), TWO_PI)


def landing_offsets(
    distance: np.ndarray,
    bearing: np.ndarray,
    resolution: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """Convert (distance, bearing) to (Δrow, Δcol) in cells.

    Returned as float arrays: extreme Cauchy draws can exceed int64, so
    callers bounds-check before casting.
    """
    with np.errstate(invalid='ignore', over='ignore'):
        drow = -np.rint(distance * np.cos(bearing) / resolution)
        dcol = np.rint(distance * np.sin(bearing) / resolution)
    return drow, dcol


def _spore_batches(
    cells: np.ndarray,
    counts: np.ndarray,
    chunk_size: int,
) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
    """Group (source cell, spore count) pairs into batches of ≤ chunk_size spores.

    Batches are cut at multiples of chunk_size along the running spore
    total, so a cell straddling a cut is split across batches. The loop runs
    once per batch, not once per cell.
    """
    keep = np.asarray(counts) > 0
    cells = np.asarray(cells, dtype=np.int64)[keep]
    counts = np.asarray(counts, dtype=np.int64)[keep]
    ends = np.cumsum(counts)
    starts = ends - counts
    total = int(ends[-1]) if ends.size else 0
    for lo in range(0, total, chunk_size):
        hi = min(lo + chunk_size, total)
        first = int(np.searchsorted(ends, lo, side='right'))
        last = int(np.searchsorted(starts, hi, side='left'))
        taken = (np.minimum(ends[first:last], hi)
                 - np.maximum(starts[first:last], lo))
        yield cells[first:last], taken


# ═══════════════════════════════════════════════════════════════════════
# KERNEL
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class DispersalResult:
    """Outcome of one week's dispersal.

    landed is the kernel's reusable landing buffer: it stays valid until the
    next call to DispersalKernel.disperse() on the same kernel.
    """
    landed: np.ndarray      # (rows, cols) int64
    n_dispersed: int        # spores released
    n_lost: int             # spores that left the grid

    @property
    def n_landed(self) -> int:
        return self.n_dispersed - self.n_lost


class DispersalKernel:
    """Cauchy distance + uniform / von Mises direction dispersal kernel.

    Holds the landing-grid buffer so repeated weekly calls on one landscape
    don't reallocate it.
    """

    def __init__(
        self,
        resolution: float,
        scale: float = DEFAULT_SCALE,
        wind_direction: Optional[Union[str, WindDirection]] = None,
        kappa: float = DEFAULT_KAPPA,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        n_workers: int = 1,
    ):
        """
        Args:
            resolution: Square cell side length (same units as scale).
            scale: Cauchy scale parameter.
            wind_direction: Predominant wind octant; None = isotropic.
            kappa: von Mises concentration (wind mode only).
            chunk_size: Max spores expanded into per-spore arrays at once.
            n_workers: Threads sharing the source cells; 1 = serial.
        """
        if resolution <= 0:
            raise ValueError(f"resolution must be positive, got {resolution}")
        if scale <= 0:
            raise ValueError(f"kernel scale must be positive, got {scale}")
        if kappa < 0:
            raise ValueError(f"kappa must be >= 0, got {kappa}")
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        if n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got {n_workers}")
        self.resolution = float(resolution)
        self.scale = float(scale)
        self.wind_direction = (None if wind_direction is None
                               else WindDirection.parse(wind_direction))
        self.kappa = float(kappa)
        self.chunk_size = int(chunk_size)
        self.n_workers = int(n_workers)
        self._landing: Optional[np.ndarray] = None

    @property
    def anisotropic(self) -> bool:
        return self.wind_direction is not None

    def __repr__(self) -> str:
        wind = self.wind_direction.name if self.anisotropic else None
        return (f"DispersalKernel(resolution={self.resolution}, "
                f"scale={self.scale}, wind_direction={wind!r}, "
                f"kappa={self.kappa})")

    def _landing_buffer(self, shape) -> np.ndarray:
        if self._landing is None or self._landing.shape != tuple(shape):
            self._landing = np.zeros(shape, dtype=COUNT_DTYPE)
        else:
            self._landing.fill(0)
        return self._landing

    def _accumulate(
        self,
        cells: np.ndarray,
        counts: np.ndarray,
        shape: Tuple[int, int],
        rng: np.random.Generator,
    ) -> Tuple[np.ndarray, int]:
        """Disperse the spores of the given source cells into a flat grid.

        Returns:
            (flat landing counts of length rows*cols, number of spores lost)
        """
        n_rows, n_cols = shape
        size = n_rows * n_cols
        landed = np.zeros(size, dtype=COUNT_DTYPE)
        n_lost = 0
        for batch_cells, batch_counts in _spore_batches(cells, counts,
                                                        self.chunk_size):
            origin = np.repeat(batch_cells, batch_counts)
            n = origin.size
            src_row, src_col = np.divmod(origin, n_cols)

            distance = sample_distances(n, self.scale, rng)
            bearing = sample_directions(n, rng, self.wind_direction,
                                        self.kappa)
            drow, dcol = landing_offsets(distance, bearing, self.resolution)

            dest_row = src_row + drow
            dest_col = src_col + dcol
            inside = ((dest_row >= 0) & (dest_row < n_rows)
                      & (dest_col >= 0) & (dest_col < n_cols))
            dest = (dest_row[inside].astype(np.int64) * n_cols
                    + dest_col[inside].astype(np.int64))
            landed += np.bincount(dest, minlength=size).astype(COUNT_DTYPE)
            n_lost += n - int(np.count_nonzero(inside))
        return landed, n_lost

    def disperse(
        self,
        spores: np.ndarray,
        rng: np.random.Generator,
    ) -> DispersalResult:
        """Redistribute this week's spores over the grid.

        Args:
            spores: (rows, cols) non-negative spore counts per source cell.
            rng: Random generator (the 'dispersal' stream).

        Returns:
            DispersalResult with the landing grid and mass accounting.
        """
        spores = np.asarray(spores)
        if spores.ndim != 2:
            raise ValueError(f"spore grid must be 2-D, got shape {spores.shape}")
        if np.any(spores < 0):
            raise ValueError("spore grid contains negative counts")
        shape = spores.shape
        landing = self._landing_buffer(shape)

        flat = spores.ravel()
        cells = np.flatnonzero(flat)
        counts = flat[cells].astype(np.int64)
        n_dispersed = int(counts.sum())
        if n_dispersed == 0:
            return DispersalResult(landed=landing, n_dispersed=0, n_lost=0)

        n_workers = min(self.n_workers, cells.size)
        if n_workers <= 1:
            partial, n_lost = self._accumulate(cells, counts, shape, rng)
            landing += partial.reshape(shape)
        else:
            worker_rngs = spawn_worker_rngs(rng, n_workers)
            cell_blocks = np.array_split(cells, n_workers)
            count_blocks = np.array_split(counts, n_workers)
            with ThreadPoolExecutor(max_workers=n_workers) as pool:
                partials = list(pool.map(
                    lambda args: self._accumulate(args[0], args[1], shape,
                                                  args[2]),
                    zip(cell_blocks, count_blocks, worker_rngs),
                ))
            # all workers have finished: merge partial grids
            n_lost = 0
            for partial, lost in partials:
                landing += partial.reshape(shape)
                n_lost += lost

        return DispersalResult(landed=landing, n_dispersed=n_dispersed,
                               n_lost=n_lost)


# ═══════════════════════════════════════════════════════════════════════
# CONSTRUCTORS
# ═══════════════════════════════════════════════════════════════════════

def isotropic_kernel(resolution: float, scale: float = DEFAULT_SCALE,
                     **kwargs) -> DispersalKernel:
    """Kernel with uniform bearings."""
    return DispersalKernel(resolution, scale=scale, wind_direction=None,
                           **kwargs)


def wind_kernel(resolution: float, wind_direction: Union[str, WindDirection],
                scale: float = DEFAULT_SCALE, kappa: float = DEFAULT_KAPPA,
                **kwargs) -> DispersalKernel:
    """Kernel with bearings concentrated about the wind octant."""
    return DispersalKernel(resolution, scale=scale,
                           wind_direction=wind_direction, kappa=kappa,
                           **kwargs)


def kernel_from_config(config: SimulationConfig,
                       resolution: float) -> DispersalKernel:
    """Build the kernel described by config.dispersal."""
    disp = config.dispersal
    return DispersalKernel(
        resolution,
        scale=disp.kernel_scale,
        wind_direction=disp.wind_direction if disp.wind else None,
        kappa=disp.kappa,
        chunk_size=disp.chunk_size,
        n_workers=disp.n_workers,
    )
