"""Shared helpers and fixtures for the drought index test suite."""

import os
import sys

import numpy as np
import pandas as pd
import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from drought_index.grid import from_array  # noqa: E402
from drought_index.sampler import SeriesRecords  # noqa: E402


def make_daily_grid(start, end, ny=3, nx=3, fill=None, name="value",
                    crs="EPSG:4326", y0=10.0, x0=100.0, step=1.0):
    """
    Daily (time, y, x) grid covering [start, end).

    fill(times, yy, xx) returns the value array; by default each cell holds
    a distinct constant (row * 10 + column) plus the day index.
    """
    times = pd.date_range(start, end, freq="D", inclusive="left")
    y = y0 + step * np.arange(ny)
    x = x0 + step * np.arange(nx)

    if fill is None:
        base = (np.arange(ny)[:, None] * 10 + np.arange(nx)[None, :]).astype(float)
        values = base[None, :, :] + np.arange(len(times))[:, None, None]
    else:
        values = fill(times, y, x)

    return from_array(values, times, y, x, crs=crs, name=name)


def make_records(variable, site_ids, times, values):
    """Long-form records for every site over the same timestamps."""
    times = pd.DatetimeIndex(times).values
    site_ids = np.asarray(site_ids)
    values = np.asarray(values, dtype=float)
    if values.ndim == 1 and len(values) == len(times):
        values = np.tile(values, len(site_ids))
    return SeriesRecords(
        variable=variable,
        site=np.repeat(site_ids, len(times)),
        time=np.tile(times, len(site_ids)),
        value=values.ravel(),
    )


@pytest.fixture
def rng():
    """Seeded random generator for reproducible synthetic data."""
    return np.random.default_rng(42)


@pytest.fixture
def daily_grid():
    """Two years of daily values on a 3x3 lat/lon grid."""
    return make_daily_grid("2000-01-01", "2002-01-01")
