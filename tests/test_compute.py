"""
Tests for the per-site index engine: missing-data policy, error policy,
ordering and worker-count independence.
"""

import numpy as np
import pandas as pd
import pytest

from conftest import make_records
from drought_index.compute import IndexEngine, IndexSeries, compute_index, index_table
from drought_index.distributions import log_logistic_normalize
from drought_index.exceptions import FitError, IncompleteSeriesError
from drought_index.water_balance import WaterBalanceSeries, build_water_balance


def rolling_mean_normalizer(values, window):
    """Stand-in normalizer: trailing rolling mean, missing until the window fills."""
    return pd.Series(values).rolling(window).mean().to_numpy()


def failing_normalizer(values, window):
    raise RuntimeError("did not converge")


def short_normalizer(values, window):
    return values[:-1]


class CountingNormalizer:
    """Records how many times it was invoked."""

    def __init__(self):
        self.calls = 0

    def __call__(self, values, window):
        self.calls += 1
        return rolling_mean_normalizer(values, window)


def _series(site, balance, start="2000-01-01"):
    times = pd.date_range(start, periods=len(balance), freq="D").values
    balance = np.asarray(balance, dtype=float)
    return WaterBalanceSeries(
        site=site, time=times, precip=balance, pet=np.zeros_like(balance),
        balance=balance,
    )


def test_all_missing_site_skips_normalizer():
    normalizer = CountingNormalizer()
    series = _series(0, np.full(1095, np.nan))

    result = compute_index([series], start_year=2000, window_length=21,
                           normalizer=normalizer)

    assert len(result) == 1
    assert len(result[0]) == 1095
    assert np.isnan(result[0].values).all()
    assert result[0].error is None
    assert normalizer.calls == 0


def test_output_length_matches_input():
    normalizer = CountingNormalizer()
    series = [_series(i, np.ones(730) * i) for i in range(3)]

    result = compute_index(series, start_year=2000, window_length=7,
                           normalizer=normalizer)

    assert normalizer.calls == 3
    for r, s in zip(result, series):
        assert r.site == s.site
        assert len(r) == len(s)
        np.testing.assert_array_equal(r.time, s.time)


def test_partial_missing_raises_incomplete_series():
    balance = np.ones(365)
    balance[50] = np.nan

    with pytest.raises(IncompleteSeriesError):
        compute_index([_series(0, balance)], start_year=2000,
                      normalizer=rolling_mean_normalizer)


def test_collect_policy_keeps_other_sites():
    broken = np.ones(365)
    broken[50] = np.nan
    series = [_series("ok", np.ones(365)), _series("broken", broken)]

    result = compute_index(series, start_year=2000, window_length=5,
                           normalizer=rolling_mean_normalizer, on_error="collect")

    assert [r.site for r in result] == ["ok", "broken"]
    assert not result[0].failed
    np.testing.assert_allclose(result[0].values[4:], 1.0)
    assert result[1].failed
    assert "IncompleteSeriesError" in result[1].error
    assert len(result[1]) == 365
    assert np.isnan(result[1].values).all()


def test_normalizer_failure_is_fit_error():
    with pytest.raises(FitError):
        compute_index([_series(0, np.ones(365))], start_year=2000,
                      normalizer=failing_normalizer)

    result = compute_index([_series(0, np.ones(365))], start_year=2000,
                           normalizer=failing_normalizer, on_error="collect")
    assert "did not converge" in result[0].error


def test_wrong_output_length_is_fit_error():
    with pytest.raises(FitError):
        compute_index([_series(0, np.ones(365))], start_year=2000,
                      normalizer=short_normalizer)


def test_engine_validation():
    with pytest.raises(ValueError):
        IndexEngine(n_workers=0)
    with pytest.raises(ValueError):
        IndexEngine(on_error="ignore")
    with pytest.raises(ValueError):
        IndexEngine(normalizer=rolling_mean_normalizer).compute(
            [_series(0, np.ones(400))], start_year=2000
        )


def test_sine_balance_is_symmetric_around_zero():
    times = pd.date_range("2000-01-01", "2002-12-31", freq="D")
    keep = ~((times.year == 2000) & (times.dayofyear == 366))
    values = np.full(len(times), np.nan)
    values[keep] = np.sin(2 * np.pi * np.arange(keep.sum()) / 365)

    precip = make_records("precip", [0, 1], times, values)
    pet = make_records("pet", [0, 1], times, np.zeros(len(times)))
    balance = build_water_balance(precip, pet)

    result = IndexEngine(normalizer=rolling_mean_normalizer).compute(
        balance, start_year=2000, window_length=21
    )

    assert len(result) == 2
    for r in result:
        assert len(r) == 1095
        assert np.datetime64("2000-12-31") not in r.time
        last_year = r.values[-365:]
        assert not np.isnan(last_year).any()
        assert abs(last_year.mean()) < 1e-9
        assert last_year.max() == pytest.approx(-last_year.min(), abs=1e-3)
    np.testing.assert_array_equal(result[0].values, result[1].values)


def _random_sites(rng, n_sites=5, n_years=10):
    n = 365 * n_years
    return [
        _series(i, rng.gamma(2.0, 3.0, n) - rng.gamma(2.0, 2.5, n))
        for i in range(n_sites)
    ]


@pytest.mark.parametrize("n_workers", [2, 4])
def test_worker_count_does_not_change_results(rng, n_workers):
    series = _random_sites(rng)
    series[2] = _series(2, np.full(365 * 10, np.nan))

    serial = compute_index(series, start_year=2000, window_length=21,
                           normalizer=log_logistic_normalize, n_workers=1)
    parallel = compute_index(series, start_year=2000, window_length=21,
                             normalizer=log_logistic_normalize, n_workers=n_workers)

    assert [r.site for r in parallel] == [s.site for s in series]
    for a, b in zip(serial, parallel):
        np.testing.assert_allclose(a.values, b.values, equal_nan=True)
    assert np.isnan(parallel[2].values).all()


def test_parallel_raise_policy_propagates_error(rng):
    series = _random_sites(rng, n_sites=3, n_years=5)
    broken = series[1].balance.copy()
    broken[10] = np.nan
    series[1] = _series(1, broken)

    with pytest.raises(IncompleteSeriesError):
        compute_index(series, start_year=2000, normalizer=log_logistic_normalize,
                      n_workers=2)

    result = compute_index(series, start_year=2000, normalizer=log_logistic_normalize,
                           n_workers=2, on_error="collect")
    assert [r.failed for r in result] == [False, True, False]


def test_index_table():
    results = [
        IndexSeries(0, pd.date_range("2000-01-01", periods=3).values, np.array([0.1, 0.2, 0.3])),
        IndexSeries(1, pd.date_range("2000-01-01", periods=3).values, np.array([np.nan] * 3)),
    ]

    table = index_table(results)

    assert list(table.columns) == ["site", "time", "index"]
    assert len(table) == 6
    assert list(table['site']) == [0, 0, 0, 1, 1, 1]
    assert table['index'].isna().sum() == 3

    empty = index_table([])
    assert list(empty.columns) == ["site", "time", "index"]
    assert len(empty) == 0
