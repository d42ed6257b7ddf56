"""
Gridded output of regional index tables.

Author: drought-index developers
"""

import numpy as np
import pandas as pd
import xarray as xr

from .config import TIME_DIM, X_DIM, Y_DIM, get_logger, get_variable_attributes, get_variable_name
from .grid import RasterSeries

# Module logger
_logger = get_logger(__name__)


def index_to_raster(
    table: pd.DataFrame,
    grid: RasterSeries,
    window: int
) -> RasterSeries:
    """
    Place a regional index table back onto its grid.

    Site ids of a regional run are row-major cell positions of the
    (aggregated) grid the sites were built from.

    :param table: index table with columns site, time, index
    :param grid: grid used to create the cell sites
    :param window: rolling window length, for naming and attributes
    :return: RasterSeries (time, y, x) named e.g. 'spei_21_day'
    """
    n_y, n_x = grid.shape
    times = pd.DatetimeIndex(table['time'].unique()).sort_values()
    sites = table['site'].to_numpy(dtype=np.int64)
    if sites.min() < 0 or sites.max() >= n_y * n_x:
        raise ValueError(
            f"Site ids must be cell positions in [0, {n_y * n_x}), "
            f"got range [{sites.min()}, {sites.max()}]"
        )

    values = np.full((len(times), n_y * n_x), np.nan)
    values[times.get_indexer(table['time']), sites] = table['index'].to_numpy()

    name = get_variable_name(window)
    da = xr.DataArray(
        values.reshape(len(times), n_y, n_x),
        dims=(TIME_DIM, Y_DIM, X_DIM),
        coords={TIME_DIM: times, Y_DIM: grid.y, X_DIM: grid.x},
        name=name,
        attrs=get_variable_attributes(window),
    )
    _logger.info(f"Gridded '{name}': {len(times)} layers on {grid.shape} grid")
    return RasterSeries(da, crs=grid.crs, name=name)
