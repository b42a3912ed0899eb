"""Grid State: host landscape construction and alignment checks.

Builds the two-species SOD landscape from the external host rasters:

  reservoir  (UMCA / bay laurel)  — sporulates, infection not lethal
  oak        (SOD-affected oaks)  — dead-end host, mortality tracked
  immune     = live_trees − (reservoir + oak), clamped at 0

Initial infection:
  I_oak       = sources
  I_reservoir = reservoir_infection_multiplier × sources   (default 2×)
  S           = abundance − I

Both infected grids are clamped to their species abundance so that
S + I ≤ abundance holds from week 0.
"""

from __future__ import annotations

import warnings
from typing import Iterable, List, Optional, Sequence

import numpy as np

from sod_spread.types import (
    COUNT_DTYPE,
    OAK,
    RESERVOIR,
    HostSpecies,
    Landscape,
    as_count_grid,
    zeros_grid,
)


# ═══════════════════════════════════════════════════════════════════════
# ALIGNMENT + INVARIANTS
# ═══════════════════════════════════════════════════════════════════════

def check_aligned(grids: dict, shape: Optional[tuple] = None) -> tuple:
    """Verify every named grid has the same 2-D shape.

    Args:
        grids: Mapping of grid name → array.
        shape: Expected shape; defaults to the first grid's shape.

    Returns:
        The common shape.

    Raises:
        ValueError: On any mismatch (geometries are never reconciled).
    """
    for name, grid in grids.items():
        arr_shape = np.shape(grid)
        if len(arr_shape) != 2:
            raise ValueError(f"{name} must be a 2-D grid, got shape {arr_shape}")
        if shape is None:
            shape = arr_shape
        elif arr_shape != tuple(shape):
            raise ValueError(
                f"{name} has shape {arr_shape}, expected {tuple(shape)}; "
                f"all grids must share one geometry"
            )
    return tuple(shape)


def validate_landscape(landscape: Landscape) -> None:
    """Check grid alignment and compartment invariants.

    Raises:
        ValueError: If grids are misaligned, the resolution is not positive,
            or any species violates 0 ≤ S, 0 ≤ I, S + I ≤ abundance.
    """
    if not landscape.species:
        raise ValueError("landscape needs at least one host species")
    if not np.isfinite(landscape.resolution) or landscape.resolution <= 0:
        raise ValueError(
            f"cell resolution must be positive, got {landscape.resolution}"
        )
    grids = {'immune': landscape.immune}
    for sp in landscape.species:
        grids[f'{sp.name}.abundance'] = sp.abundance
        grids[f'{sp.name}.susceptible'] = sp.susceptible
        grids[f'{sp.name}.infected'] = sp.infected
    check_aligned(grids)

    if np.any(landscape.immune < 0):
        raise ValueError("immune pool contains negative counts")
    for sp in landscape.species:
        if np.any(sp.susceptible < 0) or np.any(sp.infected < 0):
            raise ValueError(f"{sp.name}: negative compartment counts")
        if np.any(sp.susceptible + sp.infected > sp.abundance):
            raise ValueError(
                f"{sp.name}: susceptible + infected exceeds abundance"
            )


# ═══════════════════════════════════════════════════════════════════════
# CONSTRUCTION
# ═══════════════════════════════════════════════════════════════════════

def derive_immune(
    live_trees: np.ndarray,
    host_abundances: Iterable[np.ndarray],
) -> np.ndarray:
    """Immune pool = all live trees minus every host species, clamped at 0."""
    hosts = sum(host_abundances)
    immune = live_trees - hosts
    n_negative = int(np.count_nonzero(immune < 0))
    if n_negative:
        warnings.warn(
            f"{n_negative} cells have fewer live trees than host trees; "
            f"immune pool clamped to 0 there",
            UserWarning,
            stacklevel=2,
        )
    return np.maximum(immune, 0).astype(COUNT_DTYPE)


def make_species(
    name: str,
    abundance,
    infected=None,
    sporulates: bool = False,
    mortality_tracked: bool = False,
) -> HostSpecies:
    """Build one HostSpecies with susceptible = abundance − infected.

    Infected counts above abundance are clamped (with a UserWarning).
    """
    abundance = as_count_grid(abundance, f"{name} abundance")
    if infected is None:
        infected = zeros_grid(abundance.shape)
    else:
        infected = as_count_grid(infected, f"{name} infected")
        check_aligned({f"{name} abundance": abundance,
                       f"{name} infected": infected})
    over = infected > abundance
    if np.any(over):
        warnings.warn(
            f"{name}: initial infection exceeds abundance in "
            f"{int(np.count_nonzero(over))} cells; clamped to abundance",
            UserWarning,
            stacklevel=2,
        )
        infected = np.minimum(infected, abundance)
    return HostSpecies(
        name=name,
        abundance=abundance,
        susceptible=abundance - infected,
        infected=infected,
        sporulates=sporulates,
        mortality_tracked=mortality_tracked,
    )


def build_landscape(
    reservoir,
    oaks,
    live_trees,
    sources,
    resolution: float,
    reservoir_infection_multiplier: float = 2.0,
) -> Landscape:
    """Build the default two-species SOD landscape from host rasters.

    Args:
        reservoir: Reservoir-host (UMCA) abundance raster.
        oaks: SOD-susceptible oak abundance raster.
        live_trees: All-live-tree abundance raster.
        sources: Initial oak infection raster.
        resolution: Square cell side length (kernel-scale units).
        reservoir_infection_multiplier: I_reservoir = multiplier × sources.

    Returns:
        Validated Landscape with species [reservoir, oak].

    Raises:
        ValueError: On misaligned or invalid rasters.
    """
    check_aligned({
        'reservoir': reservoir,
        'oaks': oaks,
        'live_trees': live_trees,
        'sources': sources,
    })
    if reservoir_infection_multiplier < 0:
        raise ValueError(
            "reservoir_infection_multiplier must be >= 0, got "
            f"{reservoir_infection_multiplier}"
        )
    reservoir_counts = as_count_grid(reservoir, "reservoir")
    oak_counts = as_count_grid(oaks, "oaks")
    live_counts = as_count_grid(live_trees, "live_trees")
    source_counts = as_count_grid(sources, "sources")

    species = [
        make_species(
            RESERVOIR,
            reservoir_counts,
            infected=np.rint(reservoir_infection_multiplier * source_counts),
            sporulates=True,
        ),
        make_species(
            OAK,
            oak_counts,
            infected=source_counts,
            mortality_tracked=True,
        ),
    ]
    immune = derive_immune(live_counts, [reservoir_counts, oak_counts])
    landscape = Landscape(species=species, immune=immune,
                          resolution=float(resolution))
    validate_landscape(landscape)
    return landscape


def build_custom_landscape(
    species: Sequence[HostSpecies],
    resolution: float = 1.0,
    immune=None,
) -> Landscape:
    """Assemble a landscape from an arbitrary ordered species list.

    Args:
        species: HostSpecies records (e.g. from make_species).
        resolution: Square cell side length.
        immune: Optional immune pool; zeros if omitted.
    """
    species = list(species)
    if not species:
        raise ValueError("landscape needs at least one host species")
    shape = species[0].shape
    if immune is None:
        immune = zeros_grid(shape)
    else:
        immune = as_count_grid(immune, "immune")
    landscape = Landscape(species=species, immune=immune,
                          resolution=float(resolution))
    validate_landscape(landscape)
    return landscape


def species_totals(landscape: Landscape) -> List[dict]:
    """Landscape-wide counts per species (for progress reporting)."""
    return [
        {
            'name': sp.name,
            'abundance': int(sp.abundance.sum()),
            'susceptible': int(sp.susceptible.sum()),
            'infected': int(sp.infected.sum()),
        }
        for sp in landscape.species
    ]
