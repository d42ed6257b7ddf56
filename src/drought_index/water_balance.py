"""
Water balance (precipitation minus PET) per site on a fixed 365-day calendar.

The normalization step needs exactly 365 samples per year, so the
intercalary day of leap years is removed. Following the original analysis,
the day removed is day-of-year 366, i.e. December 31st of leap years;
February 29th is kept. Windows spanning the removed day are not
renormalized.

Author: drought-index developers
"""

from dataclasses import dataclass
from typing import List

import numpy as np
import pandas as pd

from .config import DAYS_PER_YEAR, INTERCALARY_DAY_OF_YEAR, get_logger
from .exceptions import AlignmentError, IrregularCalendarError
from .sampler import SeriesRecords, SiteId

# Module logger
_logger = get_logger(__name__)


@dataclass(frozen=True)
class WaterBalanceSeries:
    """Daily precipitation, PET and balance for one site."""
    site: SiteId
    time: np.ndarray
    precip: np.ndarray
    pet: np.ndarray
    balance: np.ndarray

    def __len__(self) -> int:
        return len(self.time)

    @property
    def n_years(self) -> int:
        return len(self.time) // DAYS_PER_YEAR

    @property
    def start_year(self) -> int:
        return pd.Timestamp(self.time[0]).year

    def is_all_missing(self) -> bool:
        return bool(np.all(np.isnan(self.balance)))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            'site': self.site,
            'time': pd.DatetimeIndex(self.time),
            'precip': self.precip,
            'pet': self.pet,
            'balance': self.balance,
        })


def intercalary_day_mask(times: np.ndarray) -> np.ndarray:
    """
    Flag the intercalary day (December 31st of leap years).

    :param times: datetime64 array
    :return: boolean array, True where the timestamp is dropped
    """
    index = pd.DatetimeIndex(times)
    return np.asarray(
        index.is_leap_year & (index.dayofyear == INTERCALARY_DAY_OF_YEAR)
    )


def drop_intercalary_days(records: SeriesRecords) -> SeriesRecords:
    """
    Remove December 31st of leap years so every year has 365 days.

    :param records: records of any variable
    :return: new SeriesRecords without the intercalary days
    """
    keep = ~intercalary_day_mask(records.time)
    n_dropped = int((~keep).sum())
    if n_dropped:
        _logger.debug(f"Dropping {n_dropped} intercalary-day records")
    return SeriesRecords(
        variable=records.variable,
        site=records.site[keep],
        time=records.time[keep],
        value=records.value[keep],
    )


def _check_alignment(precip: SeriesRecords, pet: SeriesRecords) -> None:
    """Raise AlignmentError at the first (site, time) difference."""
    if len(precip) != len(pet):
        raise AlignmentError(
            f"Precipitation and PET record counts differ: "
            f"{len(precip)} vs {len(pet)}"
        )

    site_diff = precip.site != pet.site
    if np.any(site_diff):
        i = int(np.flatnonzero(site_diff)[0])
        raise AlignmentError(
            f"Site mismatch at record {i}: precipitation site {precip.site[i]!r}, "
            f"PET site {pet.site[i]!r}"
        )

    time_diff = precip.time != pet.time
    if np.any(time_diff):
        i = int(np.flatnonzero(time_diff)[0])
        raise AlignmentError(
            f"Timestamp mismatch for site {precip.site[i]!r}: precipitation "
            f"{pd.Timestamp(precip.time[i]).date()}, PET "
            f"{pd.Timestamp(pet.time[i]).date()}"
        )


def build_water_balance(
    precip_records: SeriesRecords,
    pet_records: SeriesRecords
) -> List[WaterBalanceSeries]:
    """
    Join precipitation and PET records and compute the daily water balance.

    Steps:
    1. Sort both inputs by (site, timestamp)
    2. Require identical site and timestamp alignment
    3. balance = precipitation - PET
    4. Remove December 31st of leap years
    5. Require a multiple of 365 records per site

    :param precip_records: precipitation records
    :param pet_records: PET records
    :return: one WaterBalanceSeries per site, ordered by site id
    :raises AlignmentError: if the two inputs cover different (site, time) sets
    :raises IrregularCalendarError: if a site's length is not a multiple of 365
    """
    precip = precip_records.sorted()
    pet = pet_records.sorted()
    _check_alignment(precip, pet)

    keep = ~intercalary_day_mask(precip.time)
    site = precip.site[keep]
    time = precip.time[keep]
    p = precip.value[keep]
    e = pet.value[keep]
    balance = p - e

    if len(site) == 0:
        return []

    boundaries = np.flatnonzero(site[1:] != site[:-1]) + 1
    starts = np.concatenate(([0], boundaries))
    stops = np.concatenate((boundaries, [len(site)]))

    series = []
    for start, stop in zip(starts, stops):
        n = stop - start
        if n % DAYS_PER_YEAR != 0:
            raise IrregularCalendarError(
                f"Site {site[start]!r} has {n} daily records after leap-day "
                f"removal, not a multiple of {DAYS_PER_YEAR}. "
                f"Restrict the inputs to whole calendar years."
            )
        series.append(
            WaterBalanceSeries(
                site=site[start].item() if hasattr(site[start], 'item') else site[start],
                time=time[start:stop],
                precip=p[start:stop],
                pet=e[start:stop],
                balance=balance[start:stop],
            )
        )

    _logger.info(
        f"Built water balance for {len(series)} sites "
        f"({len(series[0])} days per site)"
    )
    return series
