"""Infection allocation: landed spores → new infections per host species.

At each cell the L landed spores each hit one tree of the landing pool

  pool = Σ_i S_i + Σ_i I_i + immune

Spores hitting an infected or immune tree are wasted. The split across
categories [S_1, …, S_k, wasted] is proportional to category size:

  stochastic (default)  multinomial draw, via sequential conditional binomials
  expected-value        floor(L × S_i / pool)

New infections per species are capped by the susceptible supply:

  new_i = min(allocated_i, S_i);   S_i −= new_i;   I_i += new_i

A cell with no susceptible hosts absorbs no infections. This module is the
only writer of the susceptible/infected compartments.
"""

from __future__ import annotations

from typing import List, Optional

import numpy as np

from sod_spread.types import COUNT_DTYPE, Landscape, zeros_grid


def landing_pool(landscape: Landscape) -> np.ndarray:
    """Trees a spore can land on: all susceptible, infected, and immune hosts."""
    return (landscape.total_susceptible() + landscape.total_infected()
            + landscape.immune)


def allocate_infections(
    landed: np.ndarray,
    landscape: Landscape,
    rng: Optional[np.random.Generator] = None,
    stochastic: bool = True,
) -> List[np.ndarray]:
    """Split landed spores into new infections, one grid per species.

    Does not mutate the landscape (see apply_infections / infect).

    Args:
        landed: (rows, cols) landed spore counts.
        landscape: Current grid state.
        rng: Random generator (the 'allocation' stream); required if stochastic.
        stochastic: Multinomial split if True, expected-value split if False.

    Returns:
        List of (rows, cols) int64 new-infection grids, in landscape.species order.
    """
    landed = np.asarray(landed)
    if landed.shape != landscape.shape:
        raise ValueError(
            f"landed spore grid has shape {landed.shape}, expected "
            f"{landscape.shape}"
        )
    if stochastic and rng is None:
        raise ValueError("stochastic allocation requires an rng")

    new = [zeros_grid(landscape.shape) for _ in landscape.species]
    total_s = landscape.total_susceptible()
    active = (landed > 0) & (total_s > 0)
    if not np.any(active):
        return new

    L = landed[active].astype(np.int64)
    pool = landing_pool(landscape)[active].astype(np.int64)

    if stochastic:
        remaining_n = L.copy()
        remaining_pool = pool.astype(np.float64)
        for i, sp in enumerate(landscape.species):
            s = sp.susceptible[active]
            p = np.divide(s, remaining_pool,
                          out=np.zeros_like(remaining_pool),
                          where=remaining_pool > 0)
            hits = rng.binomial(remaining_n, np.clip(p, 0.0, 1.0))
            new[i][active] = np.minimum(hits, s)
            remaining_n -= hits
            remaining_pool -= s
    else:
        for i, sp in enumerate(landscape.species):
            s = sp.susceptible[active]
            allocated = (L * s) // pool
            new[i][active] = np.minimum(allocated, s)

    return new


def apply_infections(landscape: Landscape,
                     new_infections: List[np.ndarray]) -> None:
    """Move new infections from S to I for each species, in place."""
    if len(new_infections) != landscape.n_species:
        raise ValueError(
            f"expected {landscape.n_species} new-infection grids, "
            f"got {len(new_infections)}"
        )
    for sp, new in zip(landscape.species, new_infections):
        new = np.asarray(new, dtype=COUNT_DTYPE)
        if np.any(new > sp.susceptible) or np.any(new < 0):
            raise ValueError(
                f"{sp.name}: new infections must lie in [0, susceptible]"
            )
        sp.susceptible -= new
        sp.infected += new


def infect(
    landed: np.ndarray,
    landscape: Landscape,
    rng: Optional[np.random.Generator] = None,
    stochastic: bool = True,
) -> List[np.ndarray]:
    """Allocate landed spores and commit the resulting infections.

    Returns:
        The per-species new-infection grids that were applied.
    """
    new = allocate_infections(landed, landscape, rng=rng,
                              stochastic=stochastic)
    apply_infections(landscape, new)
    return new
