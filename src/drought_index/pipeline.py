"""
End-to-end analyses: PET preparation, site and regional drought index,
and anomaly maps.

Each analysis chains the building blocks in a fixed order and does not
hold any state between runs.

Author: drought-index developers
"""

import os
from typing import Optional, Sequence, Tuple, Union

import pandas as pd

from .anomaly import AnomalyGrid, compute_anomaly
from .compute import Normalizer, compute_index, index_table
from .config import PipelineConfig, get_logger
from .distributions import log_logistic_normalize
from .grid import RasterSeries, TimeLike, open_raster, open_raster_files
from .indices import index_to_raster
from .sampler import Site, extract, grid_cell_sites
from .water_balance import build_water_balance

# Module logger
_logger = get_logger(__name__)

RasterLike = Union[RasterSeries, str, os.PathLike]


def _as_raster(source: RasterLike, var_name: Optional[str] = None) -> RasterSeries:
    """Open a raster from a path, or pass a RasterSeries through."""
    if isinstance(source, RasterSeries):
        return source
    return open_raster(source, var_name=var_name)


# =============================================================================
# PET PREPARATION
# =============================================================================

def prepare_pet(
    pet_paths: Sequence[Union[str, os.PathLike]],
    reference: RasterLike,
    output_path: Optional[Union[str, os.PathLike]] = None,
    var_name: Optional[str] = None,
    method: str = "bilinear"
) -> RasterSeries:
    """
    Combine yearly PET files and regrid them onto the precipitation grid.

    :param pet_paths: PET files ordered by time (e.g. one per year)
    :param reference: precipitation grid (RasterSeries or path)
    :param output_path: optional NetCDF path; written with variable 'pet'
    :param var_name: PET variable name in the input files
    :param method: resampling method ('bilinear' or 'nearest')
    :return: PET RasterSeries on the reference grid, named 'pet'
    """
    reference = _as_raster(reference)
    pet = open_raster_files(pet_paths, var_name=var_name)

    resampled = pet.resample_to(reference, method=method)
    resampled = RasterSeries(resampled.data.rename("pet"), crs=resampled.crs, name="pet")

    _logger.info(
        f"Prepared PET: {resampled.n_layers} layers on {resampled.shape} grid "
        f"({resampled.time[0].date()} to {resampled.time[-1].date()})"
    )

    if output_path is not None:
        resampled.to_netcdf(str(output_path), var_name="pet")
    return resampled


# =============================================================================
# DROUGHT INDEX
# =============================================================================

def _index_from_grids(
    precip: RasterSeries,
    pet: RasterSeries,
    sites: Sequence[Site],
    config: PipelineConfig,
    normalizer: Normalizer,
    time_range: Optional[Tuple[TimeLike, TimeLike]]
) -> pd.DataFrame:
    precip_records = extract(
        precip, sites, time_range=time_range,
        method=config.sample_method, variable="precip",
    )
    pet_records = extract(
        pet, sites, time_range=time_range,
        method=config.sample_method, variable="pet",
    )

    balance = build_water_balance(precip_records, pet_records)
    if balance and balance[0].start_year != config.start_year:
        _logger.warning(
            f"First timestamp year {balance[0].start_year} differs from "
            f"configured start year {config.start_year}"
        )

    results = compute_index(
        balance,
        start_year=config.start_year,
        window_length=config.window_length,
        normalizer=normalizer,
        n_workers=config.n_workers,
        on_error=config.on_error,
    )
    return index_table(results)


def run_site_analysis(
    precip: RasterLike,
    pet: RasterLike,
    sites: Sequence[Site],
    config: PipelineConfig,
    normalizer: Normalizer = log_logistic_normalize
) -> pd.DataFrame:
    """
    Drought index at named sites.

    Steps:
    1. Regrid PET onto the precipitation grid
    2. Extract both variables at the sites within [start, end)
    3. Build the daily water balance on a 365-day calendar
    4. Normalize each site

    Example:
        >>> config = PipelineConfig(start='1981-01-01', end='2024-01-01',
        ...                         window_length=21, n_workers=4)
        >>> sites = load_sites('stations.geojson', label_field='name')
        >>> table = run_site_analysis('era5_tp.nc', 'pet_era5.nc', sites, config)

    :param precip: precipitation grid (RasterSeries or path)
    :param pet: PET grid (RasterSeries or path)
    :param sites: sites of interest
    :param config: analysis settings
    :param normalizer: normalization capability
    :return: DataFrame with columns site, time, index
    """
    precip = _as_raster(precip)
    pet = _as_raster(pet)

    _logger.info(
        f"Site analysis: {len(sites)} sites, {config.start} to {config.end}, "
        f"{config.window_length}-day window"
    )
    pet = pet.resample_to(precip, method=config.resample_method)
    return _index_from_grids(
        precip, pet, sites, config, normalizer, time_range=config.time_range
    )


def run_regional_analysis(
    precip: RasterLike,
    pet: RasterLike,
    config: PipelineConfig,
    normalizer: Normalizer = log_logistic_normalize,
    output_path: Optional[Union[str, os.PathLike]] = None
) -> pd.DataFrame:
    """
    Drought index for every cell of a (coarsened) grid.

    The precipitation grid is restricted to [start, end) and aggregated by
    config.aggregation_factor; PET is regridded onto the precipitation grid
    and aggregated the same way. Each resulting cell center is a site,
    numbered row-major.

    :param precip: precipitation grid (RasterSeries or path)
    :param pet: PET grid (RasterSeries or path)
    :param config: analysis settings
    :param normalizer: normalization capability
    :param output_path: optional NetCDF path for the gridded index
    :return: DataFrame with columns site, time, index
    """
    precip = _as_raster(precip)
    pet = _as_raster(pet)
    factor = config.aggregation_factor or 1

    precip = precip.restrict_to_time_range(*config.time_range)
    pet = pet.restrict_to_time_range(*config.time_range)
    pet = pet.resample_to(precip, method=config.resample_method)

    precip = precip.aggregate(factor)
    pet = pet.aggregate(factor)

    sites = grid_cell_sites(precip)
    _logger.info(
        f"Regional analysis: {len(sites)} cells (factor {factor}), "
        f"{config.start} to {config.end}, {config.window_length}-day window"
    )

    table = _index_from_grids(
        precip, pet, sites, config, normalizer, time_range=None
    )

    if output_path is not None:
        index_to_raster(table, precip, config.window_length).to_netcdf(str(output_path))
    return table


# =============================================================================
# ANOMALY
# =============================================================================

def run_anomaly_analysis(
    grid: RasterLike,
    target_start: TimeLike,
    target_end_exclusive: TimeLike,
    reference_month: int,
    reference_day_range: Tuple[int, int],
    exclude_year: Optional[int] = None,
    output_path: Optional[Union[str, os.PathLike]] = None,
    var_name: Optional[str] = None
) -> AnomalyGrid:
    """
    Anomaly map of a target period against the same days of other years.

    :param grid: raster series (RasterSeries or path)
    :param target_start: first target timestamp (inclusive)
    :param target_end_exclusive: end of the target period (exclusive)
    :param reference_month: calendar month of the reference days
    :param reference_day_range: (first_day, last_day), inclusive
    :param exclude_year: optional year removed from the reference
    :param output_path: optional NetCDF path
    :param var_name: variable to read when grid is a path
    :return: AnomalyGrid
    """
    grid = _as_raster(grid, var_name=var_name)
    anomaly = compute_anomaly(
        grid,
        target_start,
        target_end_exclusive,
        reference_month,
        reference_day_range,
        exclude_year=exclude_year,
    )
    if output_path is not None:
        anomaly.to_netcdf(output_path, var_name=f"{grid.name}_anomaly")
    return anomaly
