"""Configuration system for sod_spread.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Sections map 1:1 to YAML top-level keys:
  simulation: year range, seed, seasonal gating, output cadence
  spores:     weekly spore production rate
  dispersal:  Cauchy kernel scale, wind toggle/direction, von Mises kappa
  hosts:      initial-infection assumptions
  infection:  allocation policy
  weather:    future weather scenario
  output:     result directory, snapshot persistence

Validation is fatal: a run never starts with undefined parameters.
"""

from __future__ import annotations

import copy
import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from sod_spread.types import COMPASS_OCTANTS, WindDirection


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Top-level simulation timing and control."""
    start_year: int = 2000
    end_year: int = 2000
    seed: int = 42
    output_every_n_weeks: int = 1    # report every Nth processed week
    seasonal: bool = True            # restrict spread to season_months
    season_months: List[int] = field(
        default_factory=lambda: [1, 2, 3, 4, 5, 6, 7, 8, 9]  # Jan–Sep
    )


@dataclass
class SporeSection:
    """Spore production."""
    spore_rate: float = 4.4          # spores / week / infected host


@dataclass
class DispersalSection:
    """Dispersal kernel.

    Distance: half-Cauchy with scale kernel_scale (same units as the
    cell resolution). Direction: uniform, or von Mises about wind_direction
    when wind=True.
    """
    kernel_scale: float = 20.57
    wind: bool = False
    wind_direction: Optional[str] = None   # N, NE, E, SE, S, SW, W, NW
    kappa: float = 2.0                     # von Mises concentration
    chunk_size: int = 2_000_000            # spores expanded per batch
    n_workers: int = 1                     # threads for landing accumulation


@dataclass
class HostSection:
    """Initial landscape assumptions."""
    # Initial reservoir (UMCA) infection = multiplier × initial oak infection.
    reservoir_infection_multiplier: float = 2.0


@dataclass
class InfectionSection:
    """Infection allocation policy.

    stochastic=True: multinomial split of landed spores (default).
    stochastic=False: expected-value split, floor(L × S_i / pool).
    """
    stochastic_allocation: bool = True


@dataclass
class WeatherSection:
    """Weather suitability scenario for years past the historical record.

    scenario: None / "historical" — only recorded years
              "random"      — future years sampled from all ranked years
              "favorable"   — sampled from the most suitable half
              "unfavorable" — sampled from the least suitable half
    """
    scenario: Optional[str] = None
    ranking_file: Optional[str] = None


@dataclass
class OutputSection:
    """Output control."""
    directory: str = "results/"
    save_snapshots: bool = False
    snapshot_file: str = "snapshots.npz"


@dataclass
class SimulationConfig:
    """Complete simulation configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    spores: SporeSection = field(default_factory=SporeSection)
    dispersal: DispersalSection = field(default_factory=DispersalSection)
    hosts: HostSection = field(default_factory=HostSection)
    infection: InfectionSection = field(default_factory=InfectionSection)
    weather: WeatherSection = field(default_factory=WeatherSection)
    output: OutputSection = field(default_factory=OutputSection)


_SECTION_MAP = {
    'simulation': SimulationSection,
    'spores': SporeSection,
    'dispersal': DispersalSection,
    'hosts': HostSection,
    'infection': InfectionSection,
    'weather': WeatherSection,
    'output': OutputSection,
}

VALID_SCENARIOS = {None, "historical", "random", "favorable", "unfavorable"}


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Merge override into base in place and return base.

    Nested mappings merge key by key; any other value (including a mapping
    replacing a scalar or vice versa) overwrites.
    """
    for key, value in override.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            deep_merge(current, value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Build one section dataclass; keys it doesn't define are dropped."""
    known = {f.name for f in dataclasses.fields(section_cls)}
    return section_cls(**{k: v for k, v in data.items() if k in known})


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Turn a merged YAML mapping into a SimulationConfig.

    Sections missing from the mapping (or not mappings) take their defaults.
    """
    return SimulationConfig(**{
        key: _dict_to_section(cls, data[key])
        if isinstance(data.get(key), dict) else cls()
        for key, cls in _SECTION_MAP.items()
    })


def config_to_dict(config: SimulationConfig) -> Dict[str, Dict[str, Any]]:
    """Plain-dict view of a config (round-trips through `_yaml_to_config`)."""
    return copy.deepcopy(dataclasses.asdict(config))


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Checks:
      - Year ordering (start ≤ end) and output cadence
      - Seasonal month mask
      - Wind direction present and valid when wind is enabled
      - Kernel scale, kappa, spore rate, reservoir multiplier ranges
      - Weather scenario name
    """
    sim = config.simulation

    # Year ordering
    if sim.start_year > sim.end_year:
        raise ValueError(
            f"start_year ({sim.start_year}) must be <= "
            f"end_year ({sim.end_year})"
        )
    if sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")
    if sim.output_every_n_weeks < 1:
        raise ValueError(
            f"simulation.output_every_n_weeks must be >= 1, "
            f"got {sim.output_every_n_weeks}"
        )

    # Seasonal gating
    if sim.seasonal:
        if not sim.season_months:
            raise ValueError(
                "simulation.season_months must list at least one month "
                "when seasonal=True"
            )
        bad = [m for m in sim.season_months if not 1 <= int(m) <= 12]
        if bad:
            raise ValueError(
                f"simulation.season_months must be in 1..12, got {bad}"
            )

    # Wind
    disp = config.dispersal
    if disp.wind:
        if disp.wind_direction is None:
            raise ValueError(
                "dispersal.wind_direction required when wind=True "
                f"(one of {list(COMPASS_OCTANTS)})"
            )
        WindDirection.parse(disp.wind_direction)
    elif disp.wind_direction is not None:
        WindDirection.parse(disp.wind_direction)
    if disp.kappa < 0:
        raise ValueError(f"dispersal.kappa must be >= 0, got {disp.kappa}")
    if disp.kernel_scale <= 0:
        raise ValueError(
            f"dispersal.kernel_scale must be positive, got {disp.kernel_scale}"
        )
    if disp.chunk_size < 1:
        raise ValueError(
            f"dispersal.chunk_size must be >= 1, got {disp.chunk_size}"
        )
    if disp.n_workers < 1:
        raise ValueError(
            f"dispersal.n_workers must be >= 1, got {disp.n_workers}"
        )

    # Positive parameters
    if config.spores.spore_rate < 0:
        raise ValueError(
            f"spores.spore_rate must be >= 0, got {config.spores.spore_rate}"
        )
    if config.hosts.reservoir_infection_multiplier < 0:
        raise ValueError(
            "hosts.reservoir_infection_multiplier must be >= 0, got "
            f"{config.hosts.reservoir_infection_multiplier}"
        )

    # Weather scenario
    if config.weather.scenario not in VALID_SCENARIOS:
        raise ValueError(
            f"weather.scenario must be one of "
            f"{sorted(s for s in VALID_SCENARIOS if s)} or None, "
            f"got '{config.weather.scenario}'"
        )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Base YAML (must exist).
        scenario_path: Scenario YAML layered on top; ignored if absent, so a
            sweep can name a scenario file that only some runs provide.
        sweep_overrides: Dict layered last (e.g. one point of a kappa sweep).

    Raises:
        FileNotFoundError: base_path is missing.
        ValueError: The merged configuration is invalid.
    """
    base_path = Path(base_path)
    if not base_path.is_file():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    layers = [_read_yaml(base_path)]
    if scenario_path is not None and Path(scenario_path).is_file():
        layers.append(_read_yaml(Path(scenario_path)))
    if sweep_overrides:
        layers.append(copy.deepcopy(sweep_overrides))

    merged: Dict = {}
    for layer in layers:
        deep_merge(merged, layer)

    config = _yaml_to_config(merged)
    validate_config(config)
    return config


def _read_yaml(path: Path) -> Dict:
    """Parse one YAML mapping; an empty file counts as {}."""
    with path.open() as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got "
                         f"{type(data).__name__}")
    return data


def save_config(config: SimulationConfig, path: Union[str, Path]) -> None:
    """Write a config as YAML (readable back with `load_config`)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w') as f:
        yaml.safe_dump(config_to_dict(config), f, sort_keys=False)


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
