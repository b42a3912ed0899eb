"""Weather suitability forcing.

Weekly suitability W = M × C, the product of a moisture coefficient M and a
temperature coefficient C, each a per-cell grid in [0, 1]. The weekly step
only ever sees W through the SuitabilityProvider interface.

Years past the recorded weather are filled by a scenario strategy that
samples recorded years from a suitability ranking (best year first):

  HistoricalWeather         recorded years only
  RandomFutureWeather       any ranked year
  FavorableFutureWeather    the most suitable half of the ranking
  UnfavorableFutureWeather  the least suitable half

Loading the weather rasters themselves is left to the caller; this module
works on in-memory arrays plus the ranking CSV.
"""

from __future__ import annotations

import csv
import datetime
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# PROVIDERS
# ═══════════════════════════════════════════════════════════════════════

class SuitabilityProvider(ABC):
    """Week-indexed source of suitability grids."""

    @property
    @abstractmethod
    def shape(self) -> tuple:
        """Grid shape (rows, cols)."""

    @abstractmethod
    def __len__(self) -> int:
        """Number of weeks available."""

    @abstractmethod
    def suitability(self, week_index: int) -> np.ndarray:
        """Suitability grid for 0-indexed week week_index."""

    def layer_index(self, week_index: int, date: datetime.date) -> int:
        """Layer to read for the week starting on `date`.

        A flat series has no calendar and reads layer week_index.
        """
        return week_index


class SuitabilitySeries(SuitabilityProvider):
    """Suitability provider backed by a (n_weeks, rows, cols) array.

    A series assembled from whole years (`year_weeks` layers per year,
    calendar years from `start_year` on) looks weeks up by year and
    week-of-year, so years with 53 weekly dates but 52 layers do not drift
    the weather against the calendar.
    """

    def __init__(
        self,
        grids: np.ndarray,
        years: Optional[Sequence[int]] = None,
        year_weeks: Optional[Sequence[int]] = None,
        start_year: Optional[int] = None,
    ):
        grids = np.asarray(grids, dtype=np.float64)
        if grids.ndim != 3:
            raise ValueError(
                f"suitability series must be (n_weeks, rows, cols), "
                f"got shape {grids.shape}"
            )
        if not np.all(np.isfinite(grids)):
            raise ValueError("suitability series contains non-finite values")
        if grids.size and (grids.min() < 0.0 or grids.max() > 1.0):
            raise ValueError(
                f"suitability must lie in [0, 1], got range "
                f"[{grids.min():.4g}, {grids.max():.4g}]"
            )
        self._grids = grids
        self.years = list(years) if years is not None else None

        self.year_weeks = None
        self.start_year = None
        if year_weeks is not None:
            year_weeks = [int(n) for n in year_weeks]
            if any(n < 1 for n in year_weeks) or sum(year_weeks) != grids.shape[0]:
                raise ValueError(
                    f"year_weeks {year_weeks} do not partition the "
                    f"{grids.shape[0]} weekly layers"
                )
            if start_year is None:
                if not self.years:
                    raise ValueError("year_weeks needs start_year or years")
                start_year = self.years[0]
            self.year_weeks = year_weeks
            self.start_year = int(start_year)
            self._offsets = np.concatenate([[0], np.cumsum(year_weeks)[:-1]])

    @classmethod
    def from_coefficients(cls, moisture: np.ndarray,
                          temperature: np.ndarray) -> 'SuitabilitySeries':
        """W = M × C for matching (n_weeks, rows, cols) coefficient stacks."""
        moisture = np.asarray(moisture, dtype=np.float64)
        temperature = np.asarray(temperature, dtype=np.float64)
        if moisture.shape != temperature.shape:
            raise ValueError(
                f"moisture {moisture.shape} and temperature "
                f"{temperature.shape} stacks differ in shape"
            )
        return cls(moisture * temperature)

    @classmethod
    def constant(cls, value: float, n_weeks: int, shape) -> 'SuitabilitySeries':
        """Uniform suitability everywhere, every week."""
        return cls(np.full((n_weeks,) + tuple(shape), float(value)))

    @property
    def shape(self) -> tuple:
        return self._grids.shape[1:]

    def __len__(self) -> int:
        return self._grids.shape[0]

    def suitability(self, week_index: int) -> np.ndarray:
        if not 0 <= week_index < len(self):
            raise IndexError(
                f"week {week_index} outside suitability series of "
                f"{len(self)} weeks"
            )
        return self._grids[week_index]

    def layer_index(self, week_index: int, date: datetime.date) -> int:
        if self.year_weeks is None:
            return week_index
        block = date.year - self.start_year
        if not 0 <= block < len(self.year_weeks):
            raise IndexError(
                f"no weather for calendar year {date.year}; series covers "
                f"{self.start_year}-{self.start_year + len(self.year_weeks) - 1}"
            )
        week_of_year = (date - datetime.date(date.year, 1, 1)).days // 7
        # the last layer of a year also covers its trailing partial week
        return int(self._offsets[block]) + min(week_of_year,
                                               self.year_weeks[block] - 1)


class WeatherStack:
    """Recorded weekly moisture and temperature coefficients, keyed by year.

    Each year maps to a (n_weeks, rows, cols) array; years may differ in
    week count but must share the grid shape.
    """

    def __init__(
        self,
        moisture: Dict[int, np.ndarray],
        temperature: Dict[int, np.ndarray],
    ):
        if set(moisture) != set(temperature):
            raise ValueError(
                "moisture and temperature stacks must cover the same years"
            )
        if not moisture:
            raise ValueError("weather stack needs at least one year")
        self._moisture = {int(y): np.asarray(a, dtype=np.float64)
                          for y, a in moisture.items()}
        self._temperature = {int(y): np.asarray(a, dtype=np.float64)
                             for y, a in temperature.items()}
        shape = None
        for year in self.years:
            m, c = self._moisture[year], self._temperature[year]
            if m.ndim != 3 or m.shape != c.shape:
                raise ValueError(
                    f"year {year}: moisture {m.shape} / temperature "
                    f"{c.shape} must be matching (n_weeks, rows, cols)"
                )
            if shape is None:
                shape = m.shape[1:]
            elif m.shape[1:] != shape:
                raise ValueError(
                    f"year {year}: grid shape {m.shape[1:]} differs from "
                    f"{shape}"
                )
        self.shape = shape

    @property
    def years(self) -> List[int]:
        return sorted(self._moisture)

    @property
    def first_year(self) -> int:
        return self.years[0]

    @property
    def last_year(self) -> int:
        return self.years[-1]

    def weeks_in(self, year: int) -> int:
        return self._moisture[year].shape[0]

    def suitability_for_years(
        self,
        years: Sequence[int],
        start_year: Optional[int] = None,
    ) -> SuitabilitySeries:
        """Concatenate M × C for the given years, in the given order.

        The i-th year stands in for calendar year start_year + i
        (start_year defaults to the first year given).
        """
        missing = [y for y in years if y not in self._moisture]
        if missing:
            raise KeyError(f"no recorded weather for years {missing}")
        grids = [self._moisture[y] * self._temperature[y] for y in years]
        return SuitabilitySeries(np.concatenate(grids, axis=0),
                                 years=list(years),
                                 year_weeks=[self.weeks_in(y) for y in years],
                                 start_year=start_year)


# ═══════════════════════════════════════════════════════════════════════
# RANKING TABLE
# ═══════════════════════════════════════════════════════════════════════

def load_weather_ranking(path: Union[str, Path]) -> List[int]:
    """Read recorded years ranked by suitability (best first).

    CSV with a header row; the first column holds the year.

    Raises:
        FileNotFoundError: If path doesn't exist.
        ValueError: If the table holds no years.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Weather ranking file not found: {path}")
    years = []
    with open(path, newline='') as f:
        reader = csv.reader(f)
        next(reader, None)  # header
        for row in reader:
            if row and row[0].strip():
                years.append(int(float(row[0])))
    if not years:
        raise ValueError(f"no ranked years in {path}")
    return years


# ═══════════════════════════════════════════════════════════════════════
# SCENARIO STRATEGIES
# ═══════════════════════════════════════════════════════════════════════

class WeatherScenario:
    """Chooses which recorded years stand in for future years."""
    name = "historical"
    samples_future = False

    def candidate_years(self, ranking: Sequence[int]) -> List[int]:
        return list(ranking)

    def future_years(
        self,
        n_years: int,
        ranking: Optional[Sequence[int]],
        rng: Optional[np.random.Generator],
    ) -> List[int]:
        """Sample n_years stand-in years, with replacement."""
        if n_years <= 0:
            return []
        if not self.samples_future:
            raise ValueError(
                f"{n_years} future years requested but the '{self.name}' "
                f"scenario uses recorded weather only"
            )
        if not ranking:
            raise ValueError(f"'{self.name}' scenario needs a weather ranking")
        if rng is None:
            raise ValueError(f"'{self.name}' scenario needs an rng")
        pool = self.candidate_years(ranking)
        return [int(y) for y in rng.choice(pool, size=n_years, replace=True)]


class HistoricalWeather(WeatherScenario):
    name = "historical"


class RandomFutureWeather(WeatherScenario):
    name = "random"
    samples_future = True


class FavorableFutureWeather(WeatherScenario):
    name = "favorable"
    samples_future = True

    def candidate_years(self, ranking: Sequence[int]) -> List[int]:
        split = max(len(ranking) // 2, 1)
        return list(ranking[:split])


class UnfavorableFutureWeather(WeatherScenario):
    name = "unfavorable"
    samples_future = True

    def candidate_years(self, ranking: Sequence[int]) -> List[int]:
        return list(ranking[len(ranking) // 2:])


_SCENARIOS = {
    None: HistoricalWeather,
    "historical": HistoricalWeather,
    "random": RandomFutureWeather,
    "favorable": FavorableFutureWeather,
    "unfavorable": UnfavorableFutureWeather,
}


def scenario_from_name(name: Optional[str]) -> WeatherScenario:
    """Map a config scenario name to its strategy."""
    if name not in _SCENARIOS:
        raise ValueError(
            f"unknown weather scenario '{name}'; expected one of "
            f"{sorted(k for k in _SCENARIOS if k)} or None"
        )
    return _SCENARIOS[name]()


def build_suitability_series(
    stack: WeatherStack,
    start_year: int,
    end_year: int,
    scenario: Union[None, str, WeatherScenario] = None,
    ranking: Optional[Sequence[int]] = None,
    rng: Optional[np.random.Generator] = None,
) -> SuitabilitySeries:
    """Weekly suitability for start_year..end_year under a scenario.

    Recorded years start_year..min(end_year, last recorded) are used as-is;
    each later year is replaced by a year sampled by the scenario.

    Raises:
        ValueError: start_year outside the recorded weather, a future scenario
            without future years, or future years without a future scenario.
    """
    if start_year > end_year:
        raise ValueError(
            f"start_year ({start_year}) must be <= end_year ({end_year})"
        )
    if not isinstance(scenario, WeatherScenario):
        scenario = scenario_from_name(scenario)

    last = stack.last_year
    if start_year < stack.first_year:
        raise ValueError(
            f"start year {start_year} precedes the recorded weather "
            f"(first year {stack.first_year})"
        )
    if start_year > last:
        raise ValueError(
            f"start year {start_year} is past the recorded weather "
            f"(last year {last})"
        )
    if scenario.samples_future and end_year <= last:
        raise ValueError(
            f"future weather scenario '{scenario.name}' given but end year "
            f"{end_year} is not past the recorded weather (last year {last})"
        )

    recorded = list(range(start_year, min(end_year, last) + 1))
    gaps = [y for y in recorded if y not in stack.years]
    if gaps:
        raise ValueError(f"recorded weather is missing years {gaps}")
    future = scenario.future_years(end_year - last if end_year > last else 0,
                                   ranking, rng)
    if ranking is not None:
        unknown = [y for y in future if y not in stack.years]
        if unknown:
            raise ValueError(f"ranked years {unknown} have no recorded weather")
    return stack.suitability_for_years(recorded + future, start_year=start_year)
