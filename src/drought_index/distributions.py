"""
Log-logistic normalization of accumulated water balance.

This is the default normalization capability of the index engine:

1. Rolling sum of the daily water balance over the window length
2. Offset so that every accumulated value is strictly positive
3. Fit a two-parameter log-logistic (Fisk) distribution per calendar day
4. Map each value through the fitted CDF and the inverse standard normal

Any callable with the signature ``normalize(values, window) -> values``
can replace it.

References:
    - Vicente-Serrano, S.M., Beguería, S., López-Moreno, J.I. (2010).
      A Multiscalar Drought Index Sensitive to Global Warming: SPEI.
    - Hosking, J.R.M. (1990). L-moments: Analysis and estimation of
      distributions using linear combinations of order statistics.

---
Author: drought-index developers
---
"""

import warnings
from enum import Enum
from typing import NamedTuple, Tuple, Union

import numpy as np
from numba import jit
from scipy import stats
from scipy.special import gammaln

from .config import (
    DAYS_PER_YEAR,
    FITTED_INDEX_VALID_MAX,
    FITTED_INDEX_VALID_MIN,
    MIN_VALUES_FOR_FIT,
    SPEI_WATER_BALANCE_OFFSET,
)
from .exceptions import FitError

# Small value to avoid division by zero
EPSILON = 1e-10


class FittingMethod(Enum):
    """Parameter estimation method for the log-logistic fit."""
    LMOMENTS = "lmoments"
    MLE = "mle"


class LogLogisticParams(NamedTuple):
    """Fitted two-parameter log-logistic distribution (location fixed at 0)."""
    shape: float
    scale: float
    n_samples: int

    def is_valid(self) -> bool:
        return bool(
            np.isfinite(self.shape) and np.isfinite(self.scale)
            and self.shape > 0 and self.scale > 0
        )


# =============================================================================
# ROLLING ACCUMULATION
# =============================================================================

@jit(nopython=True, cache=True)
def _sum_to_scale_1d(values: np.ndarray, scale: int) -> np.ndarray:
    """
    Numba-optimized rolling sum for 1-D array.

    :param values: 1-D array of values
    :param scale: number of time steps to sum
    :return: array of rolling sums (first scale-1 values are NaN)
    """
    n = len(values)
    result = np.full(n, np.nan)

    for i in range(scale - 1, n):
        total = 0.0
        valid_count = 0

        for j in range(scale):
            val = values[i - j]
            if not np.isnan(val):
                total += val
                valid_count += 1

        # Only compute sum if all values in window are valid
        if valid_count == scale:
            result[i] = total

    return result


def sum_to_scale(values: np.ndarray, scale: int) -> np.ndarray:
    """
    Rolling sum over the specified number of days.

    :param values: 1-D array of daily values
    :param scale: number of days to accumulate
    :return: same-length array; the first (scale-1) values are NaN
    :raises ValueError: if scale < 1
    """
    if scale < 1:
        raise ValueError(f"Scale must be >= 1, got: {scale}")

    values = np.asarray(values, dtype=np.float64)
    if scale == 1:
        return values.copy()

    return _sum_to_scale_1d(values, scale)


# =============================================================================
# L-MOMENTS
# =============================================================================

def _comb(n: int, k: int) -> float:
    """Compute binomial coefficient C(n, k)."""
    if k < 0 or k > n:
        return 0.0
    if k == 0 or k == n:
        return 1.0

    # Use logarithms for numerical stability
    return np.exp(gammaln(n + 1) - gammaln(k + 1) - gammaln(n - k + 1))


def compute_lmoments(data: np.ndarray, nmom: int = 2) -> np.ndarray:
    """
    Compute sample L-moments from probability weighted moments.

    :param data: 1-D array of sample values
    :param nmom: number of L-moments to compute (1 to 4)
    :return: array of L-moments [l1, l2, ...]

    Reference: Hosking (1990)
    """
    if not 1 <= nmom <= 4:
        raise ValueError(f"nmom must be between 1 and 4, got: {nmom}")

    n = len(data)
    if n < nmom:
        return np.full(nmom, np.nan)

    x = np.sort(data)
    ranks = np.arange(n)

    # Probability weighted moments b_r
    b = np.zeros(nmom)
    for r in range(nmom):
        weights = np.array([_comb(i, r) for i in ranks]) / _comb(n - 1, r)
        b[r] = np.sum(weights * x) / n

    lmom = np.zeros(nmom)
    lmom[0] = b[0]  # L1 = mean

    if nmom >= 2:
        lmom[1] = 2 * b[1] - b[0]

    if nmom >= 3:
        lmom[2] = 6 * b[2] - 6 * b[1] + b[0]

    if nmom >= 4:
        lmom[3] = 20 * b[3] - 30 * b[2] + 12 * b[1] - b[0]

    return lmom


# =============================================================================
# LOG-LOGISTIC DISTRIBUTION
# =============================================================================

def _fit_loglogistic_lmoments(values: np.ndarray) -> Tuple[float, float]:
    """
    Log-logistic parameters from L-moments.

    With location fixed at zero:
        l1 = scale * (pi/c) / sin(pi/c)
        l2 = l1 / c
    so c = l1 / l2, which must exceed 1 for a finite mean.
    """
    l1, l2 = compute_lmoments(values, nmom=2)

    if l1 <= EPSILON or l2 <= EPSILON:
        return np.nan, np.nan

    c = l1 / l2
    if c <= 1.0:
        return np.nan, np.nan

    scale = l1 * np.sin(np.pi / c) / (np.pi / c)
    return c, scale


def _fit_loglogistic_mle(values: np.ndarray) -> Tuple[float, float]:
    """Maximum likelihood fit of the Fisk distribution with loc=0."""
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', category=RuntimeWarning)
        try:
            c, _, scale = stats.fisk.fit(values, floc=0)
        except (ValueError, RuntimeError, FloatingPointError):
            return np.nan, np.nan
    return c, scale


def fit_log_logistic(
    values: np.ndarray,
    method: FittingMethod = FittingMethod.LMOMENTS
) -> LogLogisticParams:
    """
    Fit a two-parameter log-logistic (Fisk) distribution.

    Missing and non-positive values are ignored. Fewer than
    MIN_VALUES_FOR_FIT usable values gives invalid (NaN) parameters.

    :param values: sample, typically one calendar day across years
    :param method: LMOMENTS (default) or MLE
    :return: LogLogisticParams
    """
    values = np.asarray(values, dtype=np.float64)
    positive = values[np.isfinite(values) & (values > 0)]
    n = len(positive)

    if n < MIN_VALUES_FOR_FIT:
        return LogLogisticParams(np.nan, np.nan, n)

    if method == FittingMethod.MLE:
        c, scale = _fit_loglogistic_mle(positive)
    else:
        c, scale = _fit_loglogistic_lmoments(positive)

    return LogLogisticParams(c, scale, n)


def log_logistic_cdf(values: np.ndarray, params: LogLogisticParams) -> np.ndarray:
    """
    CDF of the fitted log-logistic distribution.

    CDF(x) = 1 / (1 + (x/scale)^(-shape)), and 0 for x <= 0.

    :param values: array of values
    :param params: fitted parameters
    :return: CDF values in [0, 1], NaN where values are NaN or params invalid
    """
    values = np.asarray(values, dtype=np.float64)
    result = np.full(values.shape, np.nan)

    if not params.is_valid():
        return result

    valid = ~np.isnan(values)
    result[valid & (values <= 0)] = 0.0

    positive = valid & (values > 0)
    if np.any(positive):
        x = values[positive]
        result[positive] = 1.0 / (1.0 + (x / params.scale) ** (-params.shape))

    return result


def cdf_to_standard_normal(cdf_values: np.ndarray) -> np.ndarray:
    """
    Transform CDF values to standard normal index values.

    :param cdf_values: array of CDF values in [0, 1]
    :return: standard normal values clipped to the valid index range
    """
    # Clip to avoid infinite values at extremes
    cdf_clipped = np.clip(cdf_values, 1e-10, 1 - 1e-10)

    result = stats.norm.ppf(cdf_clipped)

    return np.clip(result, FITTED_INDEX_VALID_MIN, FITTED_INDEX_VALID_MAX)


# =============================================================================
# NORMALIZATION CAPABILITY
# =============================================================================

def log_logistic_normalize(
    values: np.ndarray,
    window: int,
    periods_per_year: int = DAYS_PER_YEAR,
    method: Union[str, FittingMethod] = FittingMethod.LMOMENTS
) -> np.ndarray:
    """
    Standardized index of a regular daily water balance series.

    Limitations:
        - Each calendar day is fitted across years, so a record needs at
          least MIN_VALUES_FOR_FIT (4) years. Shorter records raise
          FitError for every site; pass another normalizer for them.
        - December 31st of leap years has already been dropped upstream.
          Windows spanning that day are not renormalized.

    :param values: 1-D balance series, a whole number of years of
        periods_per_year samples, no interior gaps
    :param window: rolling accumulation window in days
    :param periods_per_year: samples per year (365)
    :param method: log-logistic fitting method ('lmoments' or 'mle')
    :return: same-length array of index values; NaN while the window is
        filling up and for calendar days that could not be fitted
    :raises FitError: if the series is malformed or no calendar day can be fitted
    """
    if isinstance(method, str):
        method = FittingMethod(method.lower())

    values = np.asarray(values, dtype=np.float64)
    if values.ndim != 1:
        raise FitError(f"Expected a 1-D series, got shape {values.shape}")
    if len(values) == 0 or len(values) % periods_per_year != 0:
        raise FitError(
            f"Series length {len(values)} is not a whole number of "
            f"{periods_per_year}-day years"
        )
    if window < 1 or window > len(values):
        raise FitError(
            f"Window length {window} is invalid for a series of {len(values)} values"
        )

    accumulated = sum_to_scale(values, window) + SPEI_WATER_BALANCE_OFFSET

    # Rows are years, columns calendar days
    by_period = accumulated.reshape(-1, periods_per_year)
    transformed = np.full(by_period.shape, np.nan)

    n_fitted = 0
    for period_idx in range(periods_per_year):
        period_values = by_period[:, period_idx]
        params = fit_log_logistic(period_values, method)
        if not params.is_valid():
            continue
        n_fitted += 1
        transformed[:, period_idx] = cdf_to_standard_normal(
            log_logistic_cdf(period_values, params)
        )

    if n_fitted == 0:
        raise FitError(
            f"Log-logistic fit failed for every calendar day "
            f"({by_period.shape[0]} years, window {window})"
        )

    return transformed.ravel()
