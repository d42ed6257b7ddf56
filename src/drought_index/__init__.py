"""
Drought Index Package - Daily water-balance drought index and anomaly maps

Turns gridded daily precipitation and potential evapotranspiration into a
standardized drought index at sites of interest or on every cell of a
coarsened grid, and computes period-versus-climatology anomaly maps.

The index is dimensionless:
- Negative values indicate drier than normal conditions
- Positive values indicate wetter than normal conditions

Author: drought-index developers

References:
    Vicente-Serrano, S.M., Beguería, S., López-Moreno, J.I. (2010). A Multiscalar
    Drought Index Sensitive to Global Warming: The Standardized Precipitation
    Evapotranspiration Index. Journal of Climate, 23(7), 1696-1718.

Example:
    >>> from drought_index import PipelineConfig, load_sites, run_site_analysis
    >>>
    >>> config = PipelineConfig(start='1981-01-01', end='2024-01-01',
    ...                         window_length=21, n_workers=4)
    >>> sites = load_sites('stations.geojson', label_field='name')
    >>> table = run_site_analysis('era5_tp.nc', 'pet_era5.nc', sites, config)
    >>>
    >>> # Anomaly of the first three weeks of June 2020
    >>> anom = run_anomaly_analysis('t2m.nc', '2020-06-01', '2020-06-22',
    ...                             reference_month=6, reference_day_range=(1, 21),
    ...                             exclude_year=2020)
"""

__version__ = "2026.1"
__author__ = "drought-index developers"

# Grids
from .grid import (
    RasterSeries,
    from_array,
    open_raster,
    open_raster_files,
    save_raster_to_netcdf,
)

# Sites and extraction
from .sampler import (
    Site,
    SeriesRecords,
    extract,
    grid_cell_sites,
    load_sites,
    sites_from_coordinates,
)

# Water balance
from .water_balance import (
    WaterBalanceSeries,
    build_water_balance,
    drop_intercalary_days,
)

# Index computation
from .compute import (
    IndexEngine,
    IndexSeries,
    compute_index,
    index_table,
)
from .distributions import log_logistic_normalize

# Anomaly
from .anomaly import (
    AnomalyGrid,
    compute_anomaly,
    period_mean_difference,
)

# Output utilities
from .indices import index_to_raster

# End-to-end analyses
from .pipeline import (
    prepare_pet,
    run_anomaly_analysis,
    run_regional_analysis,
    run_site_analysis,
)

# Configuration
from .config import (
    DEFAULT_WINDOW_LENGTH,
    ErrorPolicy,
    PipelineConfig,
    ResampleMethod,
    SampleMethod,
)

# Errors
from .exceptions import (
    AlignmentError,
    DroughtIndexError,
    EmptyRangeError,
    FitError,
    GridMismatchError,
    IncompleteSeriesError,
    IrregularCalendarError,
)

__all__ = [
    # Version
    "__version__",
    # Grids
    "RasterSeries",
    "from_array",
    "open_raster",
    "open_raster_files",
    "save_raster_to_netcdf",
    # Sites and extraction
    "Site",
    "SeriesRecords",
    "extract",
    "grid_cell_sites",
    "load_sites",
    "sites_from_coordinates",
    # Water balance
    "WaterBalanceSeries",
    "build_water_balance",
    "drop_intercalary_days",
    # Index computation
    "IndexEngine",
    "IndexSeries",
    "compute_index",
    "index_table",
    "log_logistic_normalize",
    # Anomaly
    "AnomalyGrid",
    "compute_anomaly",
    "period_mean_difference",
    # Output utilities
    "index_to_raster",
    # End-to-end analyses
    "prepare_pet",
    "run_anomaly_analysis",
    "run_regional_analysis",
    "run_site_analysis",
    # Configuration
    "DEFAULT_WINDOW_LENGTH",
    "ErrorPolicy",
    "PipelineConfig",
    "ResampleMethod",
    "SampleMethod",
    # Errors
    "AlignmentError",
    "DroughtIndexError",
    "EmptyRangeError",
    "FitError",
    "GridMismatchError",
    "IncompleteSeriesError",
    "IrregularCalendarError",
]
