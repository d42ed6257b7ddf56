"""
Tests for period-versus-climatology anomaly maps.
"""

import numpy as np
import pytest
import xarray as xr

from conftest import make_daily_grid
from drought_index.anomaly import compute_anomaly, period_mean_difference
from drought_index.exceptions import EmptyRangeError


def _year_field(times, y, x):
    """Every layer holds (year - 2000) plus a per-cell offset."""
    years = np.asarray(times.year - 2000, dtype=float)
    offset = np.arange(len(y))[:, None] * 0.1 + np.arange(len(x))[None, :] * 0.01
    return years[:, None, None] + offset[None, :, :]


@pytest.fixture
def yearly_grid():
    return make_daily_grid("2001-01-01", "2004-01-01", ny=2, nx=2, fill=_year_field)


def test_anomaly_against_other_years(yearly_grid):
    anomaly = compute_anomaly(
        yearly_grid, "2003-06-01", "2003-06-22",
        reference_month=6, reference_day_range=(1, 21),
    )

    assert anomaly.n_target == 21
    assert anomaly.n_reference == 42
    assert anomaly.shape == (2, 2)
    # 3 - mean(1, 2)
    np.testing.assert_allclose(anomaly.values, 1.5)
    assert anomaly.crs.to_epsg() == 4326


def test_anomaly_excluding_a_year(yearly_grid):
    anomaly = compute_anomaly(
        yearly_grid, "2003-06-01", "2003-06-22",
        reference_month=6, reference_day_range=(1, 21), exclude_year=2001,
    )

    assert anomaly.n_reference == 21
    np.testing.assert_allclose(anomaly.values, 1.0)


def test_anomaly_ignores_missing_values(yearly_grid):
    data = yearly_grid.data.copy()
    times = yearly_grid.time
    # One missing target layer and every 2002 reference layer missing in cell (0, 0)
    data[np.flatnonzero(times == np.datetime64("2003-06-05"))[0], 0, 0] = np.nan
    data[np.flatnonzero((times.year == 2002) & (times.month == 6))[:21], 0, 0] = np.nan
    # Cell (1, 1) missing everywhere
    data[:, 1, 1] = np.nan
    grid = type(yearly_grid)(data, crs=yearly_grid.crs, name="t2m")

    anomaly = compute_anomaly(
        grid, "2003-06-01", "2003-06-22",
        reference_month=6, reference_day_range=(1, 21),
    )

    assert anomaly.values[0, 0] == pytest.approx(2.0)
    assert anomaly.values[0, 1] == pytest.approx(1.5)
    assert np.isnan(anomaly.values[1, 1])


def test_identical_masks_give_zero(yearly_grid):
    data = yearly_grid.data.copy()
    data[:, 0, 1] = np.nan
    grid = type(yearly_grid)(data, crs=yearly_grid.crs)

    mask = np.asarray(grid.time.month == 6)
    anomaly = period_mean_difference(grid, mask, mask)

    assert np.isnan(anomaly.values[0, 1])
    finite = np.delete(anomaly.values.ravel(), 1)
    np.testing.assert_array_equal(finite, 0.0)


def test_empty_target_raises(yearly_grid):
    with pytest.raises(EmptyRangeError):
        compute_anomaly(
            yearly_grid, "2010-06-01", "2010-06-22",
            reference_month=6, reference_day_range=(1, 21),
        )


def test_empty_reference_raises():
    grid = make_daily_grid("2003-01-01", "2004-01-01", ny=2, nx=2, fill=_year_field)

    with pytest.raises(EmptyRangeError):
        compute_anomaly(
            grid, "2003-06-01", "2003-06-22",
            reference_month=6, reference_day_range=(1, 21),
        )


def test_invalid_reference_window(yearly_grid):
    with pytest.raises(ValueError):
        compute_anomaly(yearly_grid, "2003-06-01", "2003-06-22",
                        reference_month=13, reference_day_range=(1, 21))
    with pytest.raises(ValueError):
        compute_anomaly(yearly_grid, "2003-06-01", "2003-06-22",
                        reference_month=6, reference_day_range=(21, 1))


def test_mask_length_must_match(yearly_grid):
    with pytest.raises(ValueError):
        period_mean_difference(yearly_grid, np.ones(3, dtype=bool), np.ones(3, dtype=bool))


def test_anomaly_to_netcdf(tmp_path, yearly_grid):
    anomaly = compute_anomaly(
        yearly_grid, "2003-06-01", "2003-06-22",
        reference_month=6, reference_day_range=(1, 21),
    )
    path = tmp_path / "anomaly.nc"
    anomaly.to_netcdf(path)

    ds = xr.open_dataset(path)
    assert ds['anomaly'].dims == ("y", "x")
    assert ds['anomaly'].attrs['n_target_layers'] == 21
    np.testing.assert_allclose(ds['anomaly'].values, 1.5, rtol=1e-6)
    ds.close()
