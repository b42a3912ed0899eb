"""Spore production model.

Each infected host of a sporulating species releases spores at a weekly
rate scaled by that week's weather suitability:

  λ(cell) = I(cell) × rate × W(cell)
  spores(cell) ~ Poisson(λ(cell))

Cells with I = 0 or W = 0 always produce 0. Draws are independent per cell
(no spatial correlation at this stage). Inputs are never mutated.

Means above MAX_SPORE_MEAN saturate at the cap with a RuntimeWarning rather
than overflowing the Poisson sampler.
"""

from __future__ import annotations

import warnings

import numpy as np

from sod_spread.types import COUNT_DTYPE, MAX_SPORE_MEAN, Landscape, zeros_grid


def check_suitability(suitability: np.ndarray, shape=None) -> np.ndarray:
    """Validate a weekly suitability grid (values in [0, 1]).

    Raises:
        ValueError: If the grid is misaligned, non-finite, or out of range.
    """
    W = np.asarray(suitability, dtype=np.float64)
    if shape is not None and W.shape != tuple(shape):
        raise ValueError(
            f"suitability grid has shape {W.shape}, expected {tuple(shape)}"
        )
    if not np.all(np.isfinite(W)):
        raise ValueError("suitability grid contains non-finite values")
    if np.any(W < 0.0) or np.any(W > 1.0):
        raise ValueError(
            f"suitability must lie in [0, 1], got range "
            f"[{W.min():.4g}, {W.max():.4g}]"
        )
    return W


def expected_spores(infected: np.ndarray, suitability: np.ndarray,
                    rate: float = 4.4) -> np.ndarray:
    """Mean weekly spore count per cell: I × rate × W."""
    if rate < 0:
        raise ValueError(f"spore rate must be >= 0, got {rate}")
    return np.asarray(infected, dtype=np.float64) * rate * suitability


def generate_spores(
    infected: np.ndarray,
    suitability: np.ndarray,
    rate: float,
    rng: np.random.Generator,
) -> np.ndarray:
    """Draw this week's spore count for every cell.

    Args:
        infected: (rows, cols) infected host counts.
        suitability: (rows, cols) weather suitability in [0, 1].
        rate: Spores per infected host per week (default model value 4.4).
        rng: Random generator (the 'spores' stream).

    Returns:
        (rows, cols) int64 spore counts.
    """
    W = check_suitability(suitability, np.shape(infected))
    lam = expected_spores(infected, W, rate)

    spores = zeros_grid(lam.shape)
    active = lam > 0
    if not np.any(active):
        return spores

    lam_active = lam[active]
    n_saturated = int(np.count_nonzero(lam_active > MAX_SPORE_MEAN))
    if n_saturated:
        warnings.warn(
            f"spore production mean exceeds {MAX_SPORE_MEAN:.3g} in "
            f"{n_saturated} cells (max {lam_active.max():.3g}); saturating. "
            f"Check spore_rate and suitability inputs.",
            RuntimeWarning,
            stacklevel=2,
        )
        lam_active = np.minimum(lam_active, MAX_SPORE_MEAN)

    spores[active] = rng.poisson(lam_active).astype(COUNT_DTYPE)
    return spores


def landscape_spores(
    landscape: Landscape,
    suitability: np.ndarray,
    rate: float,
    rng: np.random.Generator,
) -> np.ndarray:
    """Total spores released by every sporulating species this week."""
    total = zeros_grid(landscape.shape)
    for sp in landscape.sporulating_species:
        total += generate_spores(sp.infected, suitability, rate, rng)
    return total
