"""Tests for sod_spread.infection — proportional infection allocation."""

import numpy as np
import pytest

from sod_spread.infection import (
    allocate_infections,
    apply_infections,
    infect,
    landing_pool,
)
from sod_spread.landscape import build_custom_landscape, make_species


def _landscape(s_a, s_b, i_a=0, i_b=0, immune=0, shape=(1, 1)):
    """Two-species landscape with uniform per-cell counts."""
    a = make_species('a', np.full(shape, s_a + i_a),
                     infected=np.full(shape, i_a), sporulates=True)
    b = make_species('b', np.full(shape, s_b + i_b),
                     infected=np.full(shape, i_b), mortality_tracked=True)
    return build_custom_landscape([a, b], resolution=1.0,
                                  immune=np.full(shape, immune))


class TestLandingPool:
    def test_pool_counts_every_tree(self):
        land = _landscape(5, 15, i_a=2, i_b=1, immune=4)
        assert landing_pool(land)[0, 0] == 5 + 15 + 2 + 1 + 4


# ═══════════════════════════════════════════════════════════════════════
# EXPECTED-VALUE MODE
# ═══════════════════════════════════════════════════════════════════════

class TestExpectedValueAllocation:
    def test_proportional_split(self):
        land = _landscape(5, 15)
        new_a, new_b = allocate_infections(np.array([[8]]), land,
                                           stochastic=False)
        assert new_a[0, 0] == 2
        assert new_b[0, 0] == 6

    def test_capped_by_susceptible(self):
        land = _landscape(2, 3)
        new_a, new_b = allocate_infections(np.array([[100]]), land,
                                           stochastic=False)
        assert new_a[0, 0] == 2
        assert new_b[0, 0] == 3

    def test_infected_and_immune_waste_spores(self):
        land = _landscape(5, 5, immune=10)
        new_a, new_b = allocate_infections(np.array([[4]]), land,
                                           stochastic=False)
        # pool of 20, each species holds a quarter
        assert new_a[0, 0] == 1
        assert new_b[0, 0] == 1

    def test_floor_rounding(self):
        land = _landscape(1, 2)
        new_a, new_b = allocate_infections(np.array([[1]]), land,
                                           stochastic=False)
        assert new_a[0, 0] == 0
        assert new_b[0, 0] == 0

    def test_no_rng_needed(self):
        land = _landscape(5, 15)
        allocate_infections(np.array([[8]]), land, rng=None, stochastic=False)


# ═══════════════════════════════════════════════════════════════════════
# STOCHASTIC MODE
# ═══════════════════════════════════════════════════════════════════════

class TestStochasticAllocation:
    def test_mean_is_proportional(self):
        """20 000 independent cells with S = (5, 15), L = 8."""
        shape = (1, 20_000)
        land = _landscape(5, 15, shape=shape)
        new_a, new_b = allocate_infections(np.full(shape, 8), land,
                                           rng=np.random.default_rng(0))
        assert new_a.mean() == pytest.approx(2.0, rel=0.03)
        assert new_b.mean() == pytest.approx(6.0, rel=0.03)

    def test_never_exceeds_landed_or_susceptible(self):
        shape = (50, 50)
        rng = np.random.default_rng(1)
        land = _landscape(3, 7, i_a=1, immune=2, shape=shape)
        landed = rng.integers(0, 40, size=shape)
        new_a, new_b = allocate_infections(landed, land, rng=rng)
        assert np.all(new_a + new_b <= landed)
        assert np.all(new_a <= 3)
        assert np.all(new_b <= 7)
        assert np.all(new_a >= 0) and np.all(new_b >= 0)

    def test_caps_when_spores_flood(self):
        land = _landscape(2, 3)
        new_a, new_b = allocate_infections(np.array([[100]]), land,
                                           rng=np.random.default_rng(2))
        assert new_a[0, 0] == 2
        assert new_b[0, 0] == 3

    def test_requires_rng(self):
        land = _landscape(5, 15)
        with pytest.raises(ValueError, match="requires an rng"):
            allocate_infections(np.array([[8]]), land)

    def test_seeded_reproducibility(self):
        shape = (10, 10)
        land = _landscape(4, 9, immune=3, shape=shape)
        landed = np.full(shape, 6)
        a = allocate_infections(landed, land, rng=np.random.default_rng(3))
        b = allocate_infections(landed, land, rng=np.random.default_rng(3))
        for x, y in zip(a, b):
            np.testing.assert_array_equal(x, y)


# ═══════════════════════════════════════════════════════════════════════
# EDGE CASES / COMMIT
# ═══════════════════════════════════════════════════════════════════════

class TestEdgeCases:
    @pytest.mark.parametrize("stochastic", [True, False])
    def test_no_susceptible_absorbs_nothing(self, stochastic):
        land = _landscape(0, 0, i_a=4, i_b=6, immune=2)
        new = allocate_infections(np.array([[50]]), land,
                                  rng=np.random.default_rng(4),
                                  stochastic=stochastic)
        assert all(not grid.any() for grid in new)

    @pytest.mark.parametrize("stochastic", [True, False])
    def test_no_landed_spores(self, stochastic):
        land = _landscape(5, 15)
        new = allocate_infections(np.array([[0]]), land,
                                  rng=np.random.default_rng(5),
                                  stochastic=stochastic)
        assert all(not grid.any() for grid in new)

    def test_misaligned_landing_grid(self):
        land = _landscape(5, 15)
        with pytest.raises(ValueError, match="shape"):
            allocate_infections(np.zeros((2, 2)), land,
                                rng=np.random.default_rng(0))

    def test_allocation_does_not_mutate(self):
        land = _landscape(5, 15)
        before = land.copy()
        allocate_infections(np.array([[8]]), land, stochastic=False)
        for sp, old in zip(land.species, before.species):
            np.testing.assert_array_equal(sp.susceptible, old.susceptible)
            np.testing.assert_array_equal(sp.infected, old.infected)


class TestApplyInfections:
    def test_moves_s_to_i(self):
        land = _landscape(5, 15, i_b=1)
        apply_infections(land, [np.array([[2]]), np.array([[6]])])
        a, b = land.species
        assert (a.susceptible[0, 0], a.infected[0, 0]) == (3, 2)
        assert (b.susceptible[0, 0], b.infected[0, 0]) == (9, 7)
        # abundance is unchanged
        assert b.susceptible[0, 0] + b.infected[0, 0] == b.abundance[0, 0]

    def test_wrong_species_count(self):
        land = _landscape(5, 15)
        with pytest.raises(ValueError, match="expected 2"):
            apply_infections(land, [np.array([[1]])])

    def test_over_allocation_rejected(self):
        land = _landscape(5, 15)
        with pytest.raises(ValueError, match="susceptible"):
            apply_infections(land, [np.array([[6]]), np.array([[0]])])

    def test_infect_commits(self):
        land = _landscape(5, 15)
        new = infect(np.array([[8]]), land, stochastic=False)
        assert [int(g[0, 0]) for g in new] == [2, 6]
        assert land.species[0].susceptible[0, 0] == 3
        assert land.species[1].infected[0, 0] == 6
