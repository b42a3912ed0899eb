"""Tests for sod_spread.dispersal — Cauchy / von Mises spore dispersal.

Statistical tests use fixed seeds and generous tolerances, so they are
deterministic and not flaky.
"""

import numpy as np
import pytest
from scipy import stats

from sod_spread.config import default_config
from sod_spread.dispersal import (
    DispersalKernel,
    _spore_batches,
    isotropic_kernel,
    kernel_from_config,
    landing_offsets,
    sample_directions,
    sample_distances,
    wind_kernel,
)
from sod_spread.types import WindDirection


def _point_source(size=201, n_spores=20_000):
    spores = np.zeros((size, size), dtype=np.int64)
    spores[size // 2, size // 2] = n_spores
    return spores


# ═══════════════════════════════════════════════════════════════════════
# SAMPLING
# ═══════════════════════════════════════════════════════════════════════

class TestSampling:
    def test_distances_non_negative(self):
        d = sample_distances(10_000, 20.57, np.random.default_rng(0))
        assert d.shape == (10_000,)
        assert np.all(d >= 0)

    def test_distance_median_is_scale(self):
        """Half-Cauchy median equals the scale parameter."""
        d = sample_distances(100_000, 20.57, np.random.default_rng(1))
        assert np.median(d) == pytest.approx(20.57, rel=0.03)

    def test_distance_scale_must_be_positive(self):
        with pytest.raises(ValueError, match="scale"):
            sample_distances(10, 0.0, np.random.default_rng(0))

    def test_isotropic_bearings_uniform(self):
        theta = sample_directions(20_000, np.random.default_rng(2))
        assert np.all((theta >= 0) & (theta < 2 * np.pi))
        assert stats.kstest(theta / (2 * np.pi), 'uniform').pvalue > 1e-3

    def test_zero_kappa_is_uniform(self):
        theta = sample_directions(20_000, np.random.default_rng(3),
                                  wind_direction='E', kappa=0.0)
        assert np.all((theta >= 0) & (theta < 2 * np.pi))
        assert stats.kstest(theta / (2 * np.pi), 'uniform').pvalue > 1e-3

    @pytest.mark.parametrize("octant", ['N', 'NE', 'E', 'S', 'W', 'NW'])
    def test_wind_bearings_centred_on_octant(self, octant):
        theta = sample_directions(50_000, np.random.default_rng(4),
                                  wind_direction=octant, kappa=2.0)
        assert np.all((theta >= 0) & (theta < 2 * np.pi))
        mean = stats.circmean(theta)
        target = WindDirection.parse(octant).radians
        # wrapped angular difference
        diff = np.angle(np.exp(1j * (mean - target)))
        assert abs(diff) < 0.05

    def test_negative_kappa_rejected(self):
        with pytest.raises(ValueError, match="kappa"):
            sample_directions(10, np.random.default_rng(0),
                              wind_direction='N', kappa=-1.0)


class TestLandingOffsets:
    def test_cardinal_bearings(self):
        d = np.full(4, 10.0)
        theta = np.array([0.0, np.pi / 2, np.pi, 3 * np.pi / 2])
        drow, dcol = landing_offsets(d, theta, 1.0)
        # north is up (row decreases), east is right (col increases)
        np.testing.assert_array_equal(drow, [-10, 0, 10, 0])
        np.testing.assert_array_equal(dcol, [0, 10, 0, -10])

    def test_resolution_scales_offsets(self):
        drow, dcol = landing_offsets(np.array([100.0]), np.array([0.0]), 30.0)
        assert drow[0] == -3
        assert dcol[0] == 0

    def test_short_hops_stay_home(self):
        drow, dcol = landing_offsets(np.array([0.4]), np.array([1.0]), 1.0)
        assert drow[0] == 0 and dcol[0] == 0

    def test_offsets_stay_float(self):
        """Extreme jumps are bounds-checked before any integer cast."""
        drow, dcol = landing_offsets(np.array([1e300]), np.array([0.3]), 1.0)
        assert drow.dtype == np.float64
        assert drow[0] < -1e299


class TestSporeBatches:
    def test_large_cell_split_across_batches(self):
        batches = list(_spore_batches(np.array([0, 5]), np.array([3, 7]), 4))
        assert [b[1].sum() for b in batches] == [4, 4, 2]
        np.testing.assert_array_equal(batches[0][0], [0, 5])
        np.testing.assert_array_equal(batches[0][1], [3, 1])
        np.testing.assert_array_equal(batches[1][0], [5])

    def test_total_preserved(self):
        counts = np.array([11, 1, 0, 25])
        batches = list(_spore_batches(np.arange(4), counts, 7))
        assert sum(int(b[1].sum()) for b in batches) == counts.sum()
        assert all(b[1].sum() <= 7 for b in batches)

    def test_many_cells_expand_in_order(self):
        rng = np.random.default_rng(2)
        cells = np.arange(5_000)
        counts = rng.integers(0, 4, size=cells.size)
        batches = list(_spore_batches(cells, counts, 1_000))
        assert len(batches) == -(-int(counts.sum()) // 1_000)
        assert all(b[1].sum() == 1_000 for b in batches[:-1])
        assert all(np.all(b[1] > 0) for b in batches)
        expanded = np.concatenate([np.repeat(c, n) for c, n in batches])
        np.testing.assert_array_equal(expanded, np.repeat(cells, counts))

    def test_no_spores_no_batches(self):
        assert list(_spore_batches(np.arange(3), np.zeros(3, dtype=np.int64),
                                   10)) == []


# ═══════════════════════════════════════════════════════════════════════
# KERNEL
# ═══════════════════════════════════════════════════════════════════════

class TestDispersalKernel:
    def test_mass_accounting(self):
        rng = np.random.default_rng(5)
        spores = rng.integers(0, 50, size=(30, 40))
        kernel = isotropic_kernel(resolution=10.0)
        result = kernel.disperse(spores, np.random.default_rng(6))
        assert result.n_dispersed == spores.sum()
        assert result.landed.sum() == result.n_dispersed - result.n_lost
        assert result.n_landed == result.landed.sum()
        assert np.all(result.landed >= 0)

    def test_zero_spores(self):
        kernel = isotropic_kernel(resolution=1.0)
        result = kernel.disperse(np.zeros((4, 4), dtype=np.int64),
                                 np.random.default_rng(0))
        assert result.n_dispersed == 0
        assert result.n_lost == 0
        assert not result.landed.any()

    def test_out_of_bounds_spores_lost(self):
        """A single-cell grid keeps only the shortest hops."""
        spores = np.array([[1000]])
        kernel = isotropic_kernel(resolution=1.0)
        result = kernel.disperse(spores, np.random.default_rng(7))
        assert result.n_lost > 900
        assert result.landed[0, 0] == 1000 - result.n_lost

    def test_seeded_reproducibility(self):
        spores = _point_source(size=51, n_spores=5000)
        a = isotropic_kernel(1.0).disperse(spores, np.random.default_rng(8))
        b = isotropic_kernel(1.0).disperse(spores, np.random.default_rng(8))
        np.testing.assert_array_equal(a.landed, b.landed)
        assert a.n_lost == b.n_lost

    def test_different_seeds_differ(self):
        spores = _point_source(size=51, n_spores=5000)
        a = isotropic_kernel(1.0).disperse(spores, np.random.default_rng(8))
        a_landed = a.landed.copy()
        b = isotropic_kernel(1.0).disperse(spores, np.random.default_rng(9))
        assert not np.array_equal(a_landed, b.landed)

    def test_landing_buffer_reused(self):
        kernel = isotropic_kernel(resolution=1.0)
        spores = _point_source(size=21, n_spores=100)
        first = kernel.disperse(spores, np.random.default_rng(0))
        first_landed = first.landed.copy()
        second = kernel.disperse(spores, np.random.default_rng(1))
        assert second.landed is first.landed
        # buffer was cleared: no mass carried over from the first call
        assert second.landed.sum() == 100 - second.n_lost
        assert first_landed.sum() == 100 - first.n_lost

    def test_isotropic_no_east_west_bias(self):
        spores = _point_source()
        landed = isotropic_kernel(1.0, scale=5.0).disperse(
            spores, np.random.default_rng(10)).landed
        c = spores.shape[1] // 2
        east = int(landed[:, c + 1:].sum())
        west = int(landed[:, :c].sum())
        assert stats.binomtest(east, east + west, 0.5).pvalue > 1e-3

    def test_wind_biases_landing(self):
        spores = _point_source()
        landed = wind_kernel(1.0, 'E', scale=5.0, kappa=2.0).disperse(
            spores, np.random.default_rng(11)).landed
        c = spores.shape[1] // 2
        east = int(landed[:, c + 1:].sum())
        west = int(landed[:, :c].sum())
        assert east > 3 * west

    def test_north_wind_lands_above_source(self):
        spores = _point_source()
        landed = wind_kernel(1.0, 'N', scale=5.0, kappa=4.0).disperse(
            spores, np.random.default_rng(12)).landed
        r = spores.shape[0] // 2
        assert landed[:r, :].sum() > 3 * landed[r + 1:, :].sum()

    def test_chunking_preserves_mass(self):
        spores = _point_source(size=31, n_spores=1000)
        spores[3, 4] = 17
        kernel = isotropic_kernel(1.0, chunk_size=64)
        result = kernel.disperse(spores, np.random.default_rng(13))
        assert result.n_dispersed == 1017
        assert result.landed.sum() == 1017 - result.n_lost

    def test_multi_worker_mass_and_determinism(self):
        spores = np.random.default_rng(14).integers(0, 30, size=(40, 40))
        kernel = isotropic_kernel(2.0, n_workers=4, chunk_size=500)
        a = kernel.disperse(spores, np.random.default_rng(15))
        a_landed, a_lost = a.landed.copy(), a.n_lost
        assert a_landed.sum() == spores.sum() - a_lost

        b = isotropic_kernel(2.0, n_workers=4, chunk_size=500).disperse(
            spores, np.random.default_rng(15))
        np.testing.assert_array_equal(a_landed, b.landed)
        assert a_lost == b.n_lost

    def test_more_workers_than_cells(self):
        spores = np.zeros((5, 5), dtype=np.int64)
        spores[2, 2] = 40
        kernel = isotropic_kernel(1.0, n_workers=8)
        result = kernel.disperse(spores, np.random.default_rng(16))
        assert result.landed.sum() == 40 - result.n_lost

    def test_input_not_mutated(self):
        spores = _point_source(size=11, n_spores=50)
        before = spores.copy()
        isotropic_kernel(1.0).disperse(spores, np.random.default_rng(0))
        np.testing.assert_array_equal(spores, before)

    def test_negative_spores_rejected(self):
        with pytest.raises(ValueError, match="negative"):
            isotropic_kernel(1.0).disperse(np.array([[1, -1]]),
                                           np.random.default_rng(0))

    @pytest.mark.parametrize("kwargs, match", [
        ({'resolution': 0.0}, "resolution"),
        ({'resolution': 1.0, 'scale': -1.0}, "scale"),
        ({'resolution': 1.0, 'kappa': -0.5}, "kappa"),
        ({'resolution': 1.0, 'chunk_size': 0}, "chunk_size"),
        ({'resolution': 1.0, 'n_workers': 0}, "n_workers"),
    ])
    def test_invalid_parameters(self, kwargs, match):
        with pytest.raises(ValueError, match=match):
            DispersalKernel(**kwargs)

    def test_invalid_wind_direction(self):
        with pytest.raises(ValueError, match="wind direction"):
            DispersalKernel(1.0, wind_direction='NNE')


class TestKernelFromConfig:
    def test_isotropic_when_wind_disabled(self):
        config = default_config()
        config.dispersal.wind_direction = 'SW'
        kernel = kernel_from_config(config, resolution=30.0)
        assert not kernel.anisotropic
        assert kernel.resolution == 30.0
        assert kernel.scale == 20.57

    def test_wind_kernel(self):
        config = default_config()
        config.dispersal.wind = True
        config.dispersal.wind_direction = 'sw'
        config.dispersal.kappa = 3.5
        config.dispersal.n_workers = 2
        kernel = kernel_from_config(config, resolution=30.0)
        assert kernel.wind_direction is WindDirection.SW
        assert kernel.kappa == 3.5
        assert kernel.n_workers == 2
        assert 'SW' in repr(kernel)
