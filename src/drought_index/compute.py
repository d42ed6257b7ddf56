"""
Per-site drought index computation.

Each site's water balance series is normalized independently, either
in-process or on a fixed-size pool of worker processes. Results are always
returned in the order of the input sites.

Author: drought-index developers
"""

from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import (
    DAYS_PER_YEAR,
    DEFAULT_N_WORKERS,
    DEFAULT_WINDOW_LENGTH,
    ErrorPolicy,
    get_logger,
)
from .distributions import log_logistic_normalize
from .exceptions import DroughtIndexError, FitError, IncompleteSeriesError
from .sampler import SiteId
from .water_balance import WaterBalanceSeries

# Module logger
_logger = get_logger(__name__)

Normalizer = Callable[[np.ndarray, int], np.ndarray]


@dataclass(frozen=True)
class IndexSeries:
    """
    Drought index for one site.

    values has the same length as the site's water balance series; 0 is
    normal, negative drier, positive wetter. error is set when the site
    failed under the 'collect' policy.
    """
    site: SiteId
    time: np.ndarray
    values: np.ndarray
    error: Optional[str] = None

    def __len__(self) -> int:
        return len(self.values)

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            'site': self.site,
            'time': pd.DatetimeIndex(self.time),
            'index': self.values,
        })


# =============================================================================
# SINGLE SITE
# =============================================================================

def _compute_site(
    series: WaterBalanceSeries,
    window_length: int,
    normalizer: Normalizer
) -> np.ndarray:
    """
    Index values for one site. Module-level so worker processes can run it.

    :raises IncompleteSeriesError: if missing and present values are mixed
    :raises FitError: if the normalizer fails or returns a wrong length
    """
    balance = np.asarray(series.balance, dtype=np.float64)
    missing = np.isnan(balance)

    # Skip, don't fail: a site without data yields an all-missing index
    if missing.all():
        return np.full(len(balance), np.nan)

    if missing.any():
        first = int(np.flatnonzero(missing)[0])
        raise IncompleteSeriesError(
            f"Site {series.site!r} has {int(missing.sum())} missing of "
            f"{len(balance)} balance values (first at "
            f"{pd.Timestamp(series.time[first]).date()})"
        )

    try:
        result = normalizer(balance, window_length)
    except FitError:
        raise
    except Exception as e:
        raise FitError(
            f"Normalization failed for site {series.site!r}: {e}"
        ) from e

    result = np.asarray(result, dtype=np.float64)
    if result.shape != balance.shape:
        raise FitError(
            f"Normalizer returned {result.shape[0] if result.ndim else 0} values "
            f"for site {series.site!r}, expected {len(balance)}"
        )
    return result


def _site_result(
    series: WaterBalanceSeries,
    values: Optional[np.ndarray] = None,
    error: Optional[DroughtIndexError] = None
) -> IndexSeries:
    if error is not None:
        return IndexSeries(
            site=series.site,
            time=series.time,
            values=np.full(len(series), np.nan),
            error=f"{type(error).__name__}: {error}",
        )
    return IndexSeries(site=series.site, time=series.time, values=values)


# =============================================================================
# ENGINE
# =============================================================================

class IndexEngine:
    """
    Computes the drought index for many sites.

    Example:
        >>> engine = IndexEngine(n_workers=4, on_error='collect')
        >>> results = engine.compute(balance_series, start_year=1981,
        ...                          window_length=21)
    """

    def __init__(
        self,
        normalizer: Normalizer = log_logistic_normalize,
        n_workers: int = DEFAULT_N_WORKERS,
        on_error: Union[str, ErrorPolicy] = ErrorPolicy.abort
    ):
        """
        :param normalizer: callable (values, window) -> same-length values;
            must be picklable (module-level) when n_workers > 1
        :param n_workers: number of worker processes, 1 runs in-process
        :param on_error: 'raise' aborts the batch on the first failing site,
            'collect' keeps going and records the error on that site
        """
        if n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got: {n_workers}")
        if isinstance(on_error, str):
            on_error = ErrorPolicy.from_string(on_error)

        self.normalizer = normalizer
        self.n_workers = n_workers
        self.on_error = on_error

    def compute(
        self,
        balance_series: Sequence[WaterBalanceSeries],
        start_year: int,
        window_length: int = DEFAULT_WINDOW_LENGTH
    ) -> List[IndexSeries]:
        """
        Normalize each site's balance series into an index series.

        :param balance_series: per-site water balance, 365 days per year
        :param start_year: calendar year of the first sample of every series
        :param window_length: rolling aggregation horizon in days
        :return: one IndexSeries per input site, in input order
        :raises IncompleteSeriesError: partial missing data ('raise' policy)
        :raises FitError: normalization failure ('raise' policy)
        """
        if window_length < 1:
            raise ValueError(f"window_length must be >= 1, got: {window_length}")

        for series in balance_series:
            if len(series) % DAYS_PER_YEAR != 0:
                raise ValueError(
                    f"Site {series.site!r} has {len(series)} values, "
                    f"not a multiple of {DAYS_PER_YEAR}"
                )
            if len(series) and series.start_year != start_year:
                _logger.warning(
                    f"Site {series.site!r} starts in {series.start_year}, "
                    f"expected {start_year}"
                )

        _logger.info(
            f"Computing {window_length}-day index for {len(balance_series)} sites "
            f"(workers={self.n_workers}, on_error={self.on_error})"
        )

        if self.n_workers == 1 or len(balance_series) <= 1:
            results = self._compute_serial(balance_series, window_length)
        else:
            results = self._compute_parallel(balance_series, window_length)

        n_failed = sum(r.failed for r in results)
        if n_failed:
            _logger.warning(
                f"{n_failed} of {len(results)} sites failed and are all-missing"
            )
        return results

    def _handle_failure(
        self,
        series: WaterBalanceSeries,
        error: DroughtIndexError
    ) -> IndexSeries:
        if self.on_error == ErrorPolicy.abort:
            raise error
        _logger.warning(f"Site {series.site!r} skipped: {error}")
        return _site_result(series, error=error)

    def _compute_serial(
        self,
        balance_series: Sequence[WaterBalanceSeries],
        window_length: int
    ) -> List[IndexSeries]:
        results = []
        for series in balance_series:
            try:
                values = _compute_site(series, window_length, self.normalizer)
            except (IncompleteSeriesError, FitError) as e:
                results.append(self._handle_failure(series, e))
                continue
            _logger.debug(f"Site {series.site!r} done")
            results.append(_site_result(series, values))
        return results

    def _compute_parallel(
        self,
        balance_series: Sequence[WaterBalanceSeries],
        window_length: int
    ) -> List[IndexSeries]:
        with ProcessPoolExecutor(max_workers=self.n_workers) as executor:
            # One task per site; futures keep the input position
            futures = [
                executor.submit(_compute_site, series, window_length, self.normalizer)
                for series in balance_series
            ]

            results = []
            for series, future in zip(balance_series, futures):
                try:
                    values = future.result()
                except (IncompleteSeriesError, FitError) as e:
                    if self.on_error == ErrorPolicy.abort:
                        for pending in futures:
                            pending.cancel()
                    results.append(self._handle_failure(series, e))
                    continue
                results.append(_site_result(series, values))
        return results


def compute_index(
    balance_series: Sequence[WaterBalanceSeries],
    start_year: int,
    window_length: int = DEFAULT_WINDOW_LENGTH,
    normalizer: Normalizer = log_logistic_normalize,
    n_workers: int = DEFAULT_N_WORKERS,
    on_error: Union[str, ErrorPolicy] = ErrorPolicy.abort
) -> List[IndexSeries]:
    """
    Functional wrapper around IndexEngine.compute.

    :param balance_series: per-site water balance series
    :param start_year: calendar year of the first sample
    :param window_length: rolling aggregation horizon in days
    :param normalizer: normalization capability
    :param n_workers: number of worker processes
    :param on_error: 'raise' or 'collect'
    :return: list of IndexSeries in input order
    """
    engine = IndexEngine(normalizer=normalizer, n_workers=n_workers, on_error=on_error)
    return engine.compute(balance_series, start_year, window_length)


def index_table(series: Sequence[IndexSeries]) -> pd.DataFrame:
    """
    Stack per-site index series into one long table.

    :param series: IndexSeries list
    :return: DataFrame with columns site, time, index
    """
    if not series:
        return pd.DataFrame({
            'site': pd.Series(dtype=object),
            'time': pd.Series(dtype='datetime64[ns]'),
            'index': pd.Series(dtype=np.float64),
        })
    return pd.concat([s.to_frame() for s in series], ignore_index=True)
