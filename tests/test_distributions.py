"""
Tests for the log-logistic normalization.
"""

import numpy as np
import pytest
from scipy import stats

from drought_index.config import FITTED_INDEX_VALID_MAX, FITTED_INDEX_VALID_MIN
from drought_index.distributions import (
    FittingMethod,
    LogLogisticParams,
    cdf_to_standard_normal,
    compute_lmoments,
    fit_log_logistic,
    log_logistic_cdf,
    log_logistic_normalize,
    sum_to_scale,
)
from drought_index.exceptions import FitError


def test_sum_to_scale():
    values = np.arange(1.0, 7.0)
    result = sum_to_scale(values, 3)

    assert np.isnan(result[:2]).all()
    np.testing.assert_allclose(result[2:], [6.0, 9.0, 12.0, 15.0])
    np.testing.assert_array_equal(sum_to_scale(values, 1), values)


def test_sum_to_scale_propagates_missing():
    values = np.array([1.0, np.nan, 1.0, 1.0, 1.0])
    result = sum_to_scale(values, 2)
    np.testing.assert_allclose(result, [np.nan, np.nan, np.nan, 2.0, 2.0])


def test_sum_to_scale_rejects_bad_scale():
    with pytest.raises(ValueError):
        sum_to_scale(np.ones(5), 0)


def test_compute_lmoments():
    lmom = compute_lmoments(np.array([4.0, 1.0, 3.0, 2.0]), nmom=2)

    np.testing.assert_allclose(lmom, [2.5, 5.0 / 6.0])
    assert np.isnan(compute_lmoments(np.array([1.0]), nmom=2)).all()


@pytest.mark.parametrize("method", [FittingMethod.LMOMENTS, FittingMethod.MLE])
def test_fit_log_logistic_recovers_parameters(method):
    sample = stats.fisk.rvs(c=8.0, scale=50.0, size=3000, random_state=0)

    params = fit_log_logistic(sample, method)

    assert params.is_valid()
    assert params.n_samples == 3000
    assert params.shape == pytest.approx(8.0, rel=0.1)
    assert params.scale == pytest.approx(50.0, rel=0.05)


def test_fit_log_logistic_needs_enough_values():
    params = fit_log_logistic(np.array([1.0, 2.0, np.nan, -1.0]))
    assert not params.is_valid()
    assert params.n_samples == 2


def test_log_logistic_cdf():
    params = LogLogisticParams(shape=4.0, scale=10.0, n_samples=30)
    cdf = log_logistic_cdf(np.array([10.0, 0.0, np.nan, 1e6]), params)

    assert cdf[0] == pytest.approx(0.5)
    assert cdf[1] == 0.0
    assert np.isnan(cdf[2])
    assert cdf[3] == pytest.approx(1.0)

    invalid = LogLogisticParams(np.nan, np.nan, 0)
    assert np.isnan(log_logistic_cdf(np.array([1.0]), invalid)).all()


def test_cdf_to_standard_normal_is_clipped():
    result = cdf_to_standard_normal(np.array([0.0, 0.5, 1.0, np.nan]))

    assert result[0] == FITTED_INDEX_VALID_MIN
    assert result[1] == pytest.approx(0.0)
    assert result[2] == FITTED_INDEX_VALID_MAX
    assert np.isnan(result[3])


def test_log_logistic_normalize(rng):
    n_years = 20
    days = np.arange(365 * n_years)
    seasonal = 3.0 * np.sin(2 * np.pi * days / 365)
    balance = seasonal + rng.normal(0.0, 2.0, len(days))

    index = log_logistic_normalize(balance, 21)

    assert index.shape == balance.shape
    # Window filling up
    assert np.isnan(index[:20]).all()
    valid = index[~np.isnan(index)]
    assert len(valid) > 0.95 * len(index)
    assert valid.min() >= FITTED_INDEX_VALID_MIN
    assert valid.max() <= FITTED_INDEX_VALID_MAX
    # Standardized per calendar day
    assert abs(valid.mean()) < 0.1
    assert valid.std() == pytest.approx(1.0, abs=0.15)


def test_log_logistic_normalize_is_monotonic_within_a_day(rng):
    balance = rng.normal(0.0, 2.0, 365 * 10)
    index = log_logistic_normalize(balance, 1).reshape(10, 365)
    accumulated = balance.reshape(10, 365)

    day = 100
    order = np.argsort(accumulated[:, day])
    assert np.all(np.diff(index[order, day]) >= 0)


def test_log_logistic_normalize_rejects_partial_years():
    with pytest.raises(FitError):
        log_logistic_normalize(np.ones(400), 21)


def test_log_logistic_normalize_fails_without_enough_years(rng):
    # Three years give three samples per calendar day, below the fit minimum
    with pytest.raises(FitError):
        log_logistic_normalize(rng.normal(size=3 * 365), 21)
