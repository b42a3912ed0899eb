"""Weekly spread simulation.

Weekly step (one call per processed week):
  suitability W  →  spore production (sporulating species)  →  dispersal
                 →  infection allocation (S → I per species, in place)

Simulation loop over weekly dates from Jan 1 of start_year to Dec 31 of
end_year:
  - Week 0 is the initial state (captured, never stepped).
  - Before each later week: stop early (success) once no mortality-tracked
    host is susceptible anywhere.
  - Seasonal gating: weeks whose month is outside season_months are skipped
    without touching the state. Weather is read by calendar: week t uses
    the layer for the week starting on dates[t-1], by year and week-of-year
    when the series knows its years, otherwise layer t − 1.
  - Every Nth processed week is captured for reporting; the final state is
    always captured.

Week t + 1 never starts before week t's allocation has been committed.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

import numpy as np

from sod_spread.config import SimulationConfig, default_config, validate_config
from sod_spread.dispersal import DispersalKernel, kernel_from_config
from sod_spread.infection import infect
from sod_spread.landscape import build_landscape, validate_landscape
from sod_spread.perf import PerfMonitor
from sod_spread.rng import create_rng_hierarchy
from sod_spread.snapshots import GridSnapshotRecorder
from sod_spread.spores import check_suitability, landscape_spores
from sod_spread.types import Landscape
from sod_spread.weather import (
    SuitabilityProvider,
    WeatherStack,
    build_suitability_series,
    load_weather_ranking,
)


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

DAYS_PER_WEEK = 7


def weekly_timesteps(start_year: int, end_year: int) -> List[datetime.date]:
    """Weekly dates from Jan 1 of start_year through Dec 31 of end_year."""
    if start_year > end_year:
        raise ValueError(
            f"start_year ({start_year}) must be <= end_year ({end_year})"
        )
    day = datetime.date(start_year, 1, 1)
    last = datetime.date(end_year, 12, 31)
    step = datetime.timedelta(days=DAYS_PER_WEEK)
    dates = []
    while day <= last:
        dates.append(day)
        day += step
    return dates


# ═══════════════════════════════════════════════════════════════════════
# WEEKLY STEP
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class StepStats:
    """Mass accounting for one processed week."""
    n_spores: int = 0
    n_landed: int = 0
    n_lost: int = 0
    new_infections: Dict[str, int] = field(default_factory=dict)


def weekly_step(
    landscape: Landscape,
    suitability: np.ndarray,
    kernel: DispersalKernel,
    spore_rate: float,
    rngs: Dict[str, np.random.Generator],
    stochastic_allocation: bool = True,
    perf: Optional[PerfMonitor] = None,
) -> StepStats:
    """Run spore production → dispersal → allocation once, in place.

    Args:
        landscape: Grid state (compartments mutated in place).
        suitability: This week's (rows, cols) suitability in [0, 1].
        kernel: Dispersal kernel for this landscape's resolution.
        spore_rate: Spores per infected host per week.
        rngs: Hierarchy from create_rng_hierarchy() ('spores', 'dispersal',
            'allocation' streams).
        stochastic_allocation: Multinomial (True) or expected-value split.
        perf: Optional component timer.

    Returns:
        StepStats for the week.
    """
    if perf is None:
        perf = PerfMonitor(enabled=False)
    W = check_suitability(suitability, landscape.shape)

    with perf.track("spores"):
        spores = landscape_spores(landscape, W, spore_rate, rngs['spores'])
    with perf.track("dispersal", int(spores.sum())):
        dispersal = kernel.disperse(spores, rngs['dispersal'])
    with perf.track("allocation", dispersal.n_landed):
        new = infect(dispersal.landed, landscape, rng=rngs['allocation'],
                     stochastic=stochastic_allocation)

    return StepStats(
        n_spores=dispersal.n_dispersed,
        n_landed=dispersal.n_landed,
        n_lost=dispersal.n_lost,
        new_infections={sp.name: int(grid.sum())
                        for sp, grid in zip(landscape.species, new)},
    )


# ═══════════════════════════════════════════════════════════════════════
# SIMULATION
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SpreadSimResult:
    """Results from a weekly spread simulation."""
    dates: List[datetime.date] = field(default_factory=list)
    n_weeks: int = 0                  # weekly steps after the initial state
    n_weeks_elapsed: int = 0          # weeks reached before finishing/terminating
    n_processed: int = 0              # weeks actually stepped (not season-skipped)
    terminated_early: bool = False    # susceptible mortality hosts exhausted
    seed: Optional[int] = None
    # Per processed week (length = n_processed)
    processed_weeks: Optional[np.ndarray] = None
    weekly_spores: Optional[np.ndarray] = None
    weekly_landed: Optional[np.ndarray] = None
    weekly_lost: Optional[np.ndarray] = None
    weekly_new_infections: Dict[str, np.ndarray] = field(default_factory=dict)
    weekly_infected_total: Dict[str, np.ndarray] = field(default_factory=dict)
    # Final state
    final_landscape: Optional[Landscape] = None
    recorder: Optional[GridSnapshotRecorder] = None

    @property
    def total_new_infections(self) -> Dict[str, int]:
        return {name: int(v.sum()) for name, v in self.weekly_new_infections.items()}


def weather_layers(
    weather: SuitabilityProvider,
    dates: List[datetime.date],
    season: Optional[Set[int]] = None,
) -> Dict[int, int]:
    """Map each week that will be stepped to the weather layer it reads.

    Week t covers dates[t-1]..dates[t] and reads the layer for the week
    starting on dates[t-1]. Weeks outside `season` are left out.

    Raises:
        ValueError: A stepped week falls in a year the weather doesn't cover.
    """
    layers = {}
    for week in range(1, len(dates)):
        if season is not None and dates[week].month not in season:
            continue
        try:
            layers[week] = weather.layer_index(week - 1, dates[week - 1])
        except IndexError as err:
            raise ValueError(f"week {week} ({dates[week]}): {err}") from err
    return layers


def run_spread_simulation(
    landscape: Landscape,
    weather: SuitabilityProvider,
    config: Optional[SimulationConfig] = None,
    rngs: Optional[Dict[str, np.random.Generator]] = None,
    recorder: Optional[GridSnapshotRecorder] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    perf: Optional[PerfMonitor] = None,
) -> SpreadSimResult:
    """Run the weekly spread simulation over config's year range.

    The landscape is updated in place and returned as result.final_landscape.

    Args:
        landscape: Initial grid state.
        weather: Suitability provider; see weather_layers() for which layer
            each week reads.
        config: SimulationConfig; uses default if None.
        rngs: RNG hierarchy; created from config.simulation.seed if None.
        recorder: Snapshot recorder; one reporting every
            output_every_n_weeks processed weeks is created if None.
        progress_callback: Called as progress_callback(week, n_weeks) after
            each processed week.
        perf: Optional component timer.

    Returns:
        SpreadSimResult.

    Raises:
        ValueError: Invalid config, misaligned grids, or a weather series
            missing a week that will be stepped. Raised before any week runs.
    """
    if config is None:
        config = default_config()
    validate_config(config)
    validate_landscape(landscape)
    if tuple(weather.shape) != tuple(landscape.shape):
        raise ValueError(
            f"weather grid shape {tuple(weather.shape)} does not match "
            f"landscape shape {tuple(landscape.shape)}"
        )

    sim = config.simulation
    dates = weekly_timesteps(sim.start_year, sim.end_year)
    n_weeks = len(dates) - 1
    season = set(int(m) for m in sim.season_months) if sim.seasonal else None
    layers = weather_layers(weather, dates, season)
    needed = max(layers.values(), default=-1) + 1
    if len(weather) < needed:
        raise ValueError(
            f"weather series covers {len(weather)} weeks but "
            f"{sim.start_year}-{sim.end_year} needs {needed}"
        )

    if rngs is None:
        rngs = create_rng_hierarchy(sim.seed)
    if recorder is None:
        recorder = GridSnapshotRecorder(every_n_weeks=sim.output_every_n_weeks)
    if perf is None:
        perf = PerfMonitor(enabled=False)
    kernel = kernel_from_config(config, landscape.resolution)

    names = landscape.names
    processed_weeks: List[int] = []
    spores: List[int] = []
    landed: List[int] = []
    lost: List[int] = []
    new_inf: Dict[str, List[int]] = {name: [] for name in names}
    inf_total: Dict[str, List[int]] = {name: [] for name in names}

    perf.start()
    recorder.capture(0, dates[0], landscape)
    terminated_early = not landscape.susceptible_remaining()
    week = 0

    if not terminated_early:
        for week in range(1, n_weeks + 1):
            if not landscape.susceptible_remaining():
                terminated_early = True
                week -= 1
                break

            if week not in layers:
                continue

            stats = weekly_step(
                landscape,
                weather.suitability(layers[week]),
                kernel,
                config.spores.spore_rate,
                rngs,
                stochastic_allocation=config.infection.stochastic_allocation,
                perf=perf,
            )

            processed_weeks.append(week)
            spores.append(stats.n_spores)
            landed.append(stats.n_landed)
            lost.append(stats.n_lost)
            for sp in landscape.species:
                new_inf[sp.name].append(stats.new_infections[sp.name])
                inf_total[sp.name].append(int(sp.infected.sum()))

            if recorder.should_capture(len(processed_weeks)):
                recorder.capture(week, dates[week], landscape)
            if progress_callback is not None:
                progress_callback(week, n_weeks)

    if recorder.get_snapshot(week) is None:
        recorder.capture(week, dates[week], landscape)
    perf.stop()

    if config.output.save_snapshots:
        recorder.save(Path(config.output.directory) / config.output.snapshot_file)

    return SpreadSimResult(
        dates=dates,
        n_weeks=n_weeks,
        n_weeks_elapsed=week,
        n_processed=len(processed_weeks),
        terminated_early=terminated_early,
        seed=sim.seed,
        processed_weeks=np.array(processed_weeks, dtype=np.int64),
        weekly_spores=np.array(spores, dtype=np.int64),
        weekly_landed=np.array(landed, dtype=np.int64),
        weekly_lost=np.array(lost, dtype=np.int64),
        weekly_new_infections={k: np.array(v, dtype=np.int64)
                               for k, v in new_inf.items()},
        weekly_infected_total={k: np.array(v, dtype=np.int64)
                               for k, v in inf_total.items()},
        final_landscape=landscape,
        recorder=recorder,
    )


def run_from_rasters(
    reservoir,
    oaks,
    live_trees,
    sources,
    resolution: float,
    weather_stack: WeatherStack,
    config: Optional[SimulationConfig] = None,
    ranking: Optional[List[int]] = None,
    **kwargs,
) -> SpreadSimResult:
    """Build the two-species landscape and weather series, then simulate.

    Future weather years (past weather_stack.last_year) are filled by
    config.weather.scenario, sampling from `ranking` or, if None, from
    config.weather.ranking_file.

    Extra keyword arguments go to run_spread_simulation().
    """
    if config is None:
        config = default_config()
    validate_config(config)
    landscape = build_landscape(
        reservoir, oaks, live_trees, sources, resolution,
        reservoir_infection_multiplier=config.hosts.reservoir_infection_multiplier,
    )
    rngs = kwargs.pop('rngs', None) or create_rng_hierarchy(config.simulation.seed)
    if ranking is None and config.weather.ranking_file is not None:
        ranking = load_weather_ranking(config.weather.ranking_file)
    weather = build_suitability_series(
        weather_stack,
        config.simulation.start_year,
        config.simulation.end_year,
        scenario=config.weather.scenario,
        ranking=ranking,
        rng=rngs['weather'],
    )
    return run_spread_simulation(landscape, weather, config=config,
                                 rngs=rngs, **kwargs)
