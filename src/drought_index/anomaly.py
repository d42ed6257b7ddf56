"""
Period-versus-climatology anomaly maps.

The anomaly of a target period is the per-cell mean over the target layers
minus the per-cell mean over a reference set of layers (the same calendar
days in other years). Missing values are ignored in both means.

Author: drought-index developers
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import numpy as np
import pandas as pd
import xarray as xr
from pyproj import CRS

from .config import TIME_DIM, X_DIM, Y_DIM, get_logger
from .exceptions import EmptyRangeError
from .grid import RasterSeries, TimeLike, save_raster_to_netcdf

# Module logger
_logger = get_logger(__name__)


@dataclass(frozen=True)
class AnomalyGrid:
    """
    Target-period mean minus reference mean, one value per cell.

    :param data: 2-D DataArray with dimensions (y, x)
    :param crs: coordinate reference system of the source grid
    :param n_target: number of layers averaged for the target period
    :param n_reference: number of layers averaged for the reference
    """
    data: xr.DataArray
    crs: Optional[CRS]
    n_target: int
    n_reference: int

    @property
    def values(self) -> np.ndarray:
        return self.data.values

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    def to_netcdf(
        self,
        filepath: Union[str, os.PathLike],
        var_name: str = "anomaly",
        compress: bool = True,
        complevel: int = 5
    ) -> str:
        """
        Write the anomaly map to NetCDF.

        :param filepath: output path
        :param var_name: variable name in the file
        :return: filepath of saved file
        """
        data = self.data.assign_attrs(
            n_target_layers=self.n_target,
            n_reference_layers=self.n_reference,
        )
        return save_raster_to_netcdf(
            data, self.crs, filepath, var_name=var_name,
            compress=compress, complevel=complevel,
        )


def _validate_day_range(
    reference_month: int,
    reference_day_range: Tuple[int, int]
) -> Tuple[int, int]:
    if not 1 <= reference_month <= 12:
        raise ValueError(f"reference_month must be 1-12, got: {reference_month}")
    first_day, last_day = reference_day_range
    if not 1 <= first_day <= last_day <= 31:
        raise ValueError(
            f"reference_day_range must satisfy 1 <= first <= last <= 31, "
            f"got: {reference_day_range}"
        )
    return first_day, last_day


def period_mean_difference(
    grid: RasterSeries,
    target_mask: np.ndarray,
    reference_mask: np.ndarray
) -> AnomalyGrid:
    """
    Mean over target layers minus mean over reference layers.

    :param grid: raster series
    :param target_mask: boolean mask over the time axis
    :param reference_mask: boolean mask over the time axis
    :return: AnomalyGrid; a cell missing in every layer of either period
        is missing
    :raises EmptyRangeError: if either mask selects no layer
    """
    target_mask = np.asarray(target_mask, dtype=bool)
    reference_mask = np.asarray(reference_mask, dtype=bool)
    for mask in (target_mask, reference_mask):
        if mask.shape != (grid.n_layers,):
            raise ValueError(
                f"Mask length {mask.shape} does not match {grid.n_layers} layers"
            )

    if not target_mask.any():
        raise EmptyRangeError("Target period selects no layers")
    if not reference_mask.any():
        raise EmptyRangeError("Reference period selects no layers")

    data = grid.data
    target_mean = data.isel({TIME_DIM: np.flatnonzero(target_mask)}).mean(
        TIME_DIM, skipna=True
    )
    reference_mean = data.isel({TIME_DIM: np.flatnonzero(reference_mask)}).mean(
        TIME_DIM, skipna=True
    )

    anomaly = (target_mean - reference_mean).transpose(Y_DIM, X_DIM)
    anomaly = anomaly.rename("anomaly").compute()

    return AnomalyGrid(
        data=anomaly,
        crs=grid.crs,
        n_target=int(target_mask.sum()),
        n_reference=int(reference_mask.sum()),
    )


def compute_anomaly(
    grid: RasterSeries,
    target_start: TimeLike,
    target_end_exclusive: TimeLike,
    reference_month: int,
    reference_day_range: Tuple[int, int],
    exclude_year: Optional[int] = None
) -> AnomalyGrid:
    """
    Anomaly of a target period against the same calendar days of other years.

    The reference set holds layers whose month equals reference_month and
    whose day falls in reference_day_range (inclusive), in any year, minus
    the target layers (symmetric difference). Layers of exclude_year are
    removed from the reference as well.

    Example:
        >>> # June 1-21 2020 against June 1-21 of every other year
        >>> anom = compute_anomaly(temp, '2020-06-01', '2020-06-22',
        ...                        reference_month=6,
        ...                        reference_day_range=(1, 21),
        ...                        exclude_year=2020)

    :param grid: raster series
    :param target_start: first target timestamp (inclusive)
    :param target_end_exclusive: end of the target period (exclusive)
    :param reference_month: calendar month of the reference days
    :param reference_day_range: (first_day, last_day), inclusive
    :param exclude_year: optional year removed from the reference
    :return: AnomalyGrid
    :raises EmptyRangeError: if the target or reference selects no layer
    """
    first_day, last_day = _validate_day_range(reference_month, reference_day_range)

    times = grid.time
    start = pd.Timestamp(target_start)
    end = pd.Timestamp(target_end_exclusive)
    target_mask = np.asarray((times >= start) & (times < end))

    in_calendar_window = np.asarray(
        (times.month == reference_month)
        & (times.day >= first_day)
        & (times.day <= last_day)
    )
    reference_mask = in_calendar_window ^ target_mask
    if exclude_year is not None:
        reference_mask &= np.asarray(times.year != exclude_year)

    if not target_mask.any():
        raise EmptyRangeError(
            f"No layers of '{grid.name}' in target period "
            f"[{target_start}, {target_end_exclusive})"
        )
    if not reference_mask.any():
        raise EmptyRangeError(
            f"No reference layers for month {reference_month}, days "
            f"{first_day}-{last_day} (exclude_year={exclude_year})"
        )

    result = period_mean_difference(grid, target_mask, reference_mask)
    _logger.info(
        f"Anomaly of '{grid.name}': {result.n_target} target layers vs "
        f"{result.n_reference} reference layers"
    )
    return result
