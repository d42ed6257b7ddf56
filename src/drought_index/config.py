"""
Configuration module for the drought index pipeline.

Contains enums, constants, the pipeline configuration container and
logging setup.

Author: drought-index developers
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import pandas as pd


# =============================================================================
# ENUMS
# =============================================================================

class ResampleMethod(Enum):
    """
    Interpolation method used when regridding a raster onto another grid.

    'bilinear': linear interpolation along both spatial axes, the default
        for continuous fields such as precipitation or PET
    'nearest': value of the nearest source cell
    """

    bilinear = "linear"
    nearest = "nearest"

    def __str__(self):
        return self.name

    @staticmethod
    def from_string(s: str) -> 'ResampleMethod':
        """
        Convert string to ResampleMethod enum.

        :param s: string value ('bilinear' or 'nearest')
        :return: ResampleMethod enum value
        :raises ValueError: if string doesn't match any method
        """
        try:
            return ResampleMethod[s.lower()]
        except KeyError:
            raise ValueError(
                f"Invalid resample method: '{s}'. Must be 'bilinear' or 'nearest'."
            )


class SampleMethod(Enum):
    """
    Rule for taking a value at a site location.

    'nearest': value of the cell containing the site, so that a fixed
        location always maps to exactly one cell (default)
    'bilinear': linear interpolation between the four surrounding cell centers
    """

    nearest = "nearest"
    bilinear = "linear"

    def __str__(self):
        return self.name

    @staticmethod
    def from_string(s: str) -> 'SampleMethod':
        try:
            return SampleMethod[s.lower()]
        except KeyError:
            raise ValueError(
                f"Invalid sample method: '{s}'. Must be 'nearest' or 'bilinear'."
            )


class ErrorPolicy(Enum):
    """
    Batch policy for per-site failures (incomplete series, failed fits).

    'raise': abort the whole batch with the first failing site's error
    'collect': emit an all-missing series for the failing site, keep the
        error message on the result and continue with the other sites
    """

    abort = "raise"
    collect = "collect"

    def __str__(self):
        return self.value

    @staticmethod
    def from_string(s: str) -> 'ErrorPolicy':
        for policy in ErrorPolicy:
            if policy.value == s.lower():
                return policy
        raise ValueError(
            f"Invalid error policy: '{s}'. Must be 'raise' or 'collect'."
        )


# =============================================================================
# CONSTANTS
# =============================================================================

# Fixed calendar period required by the normalization step
DAYS_PER_YEAR = 365

# Day-of-year dropped from leap years (December 31st)
INTERCALARY_DAY_OF_YEAR = 366

# Rolling window of the daily index, in days (three-week index)
DEFAULT_WINDOW_LENGTH = 21

# Single worker unless the caller asks for more
DEFAULT_N_WORKERS = 1

# Coordinate reference system assumed for lat/lon grids without metadata
DEFAULT_CRS = "EPSG:4326"

# Canonical dimension names of a raster series
TIME_DIM = "time"
Y_DIM = "y"
X_DIM = "x"
RASTER_DIMS = (TIME_DIM, Y_DIM, X_DIM)

# Alternative spatial dimension names recognised when opening files
Y_DIM_ALIASES = ("lat", "latitude", "y", "rlat", "northing")
X_DIM_ALIASES = ("lon", "longitude", "x", "rlon", "easting")
GEOGRAPHIC_DIM_NAMES = ("lat", "latitude", "lon", "longitude")

# Valid range for fitted index values
# Values outside this range are clipped
FITTED_INDEX_VALID_MIN = -3.09
FITTED_INDEX_VALID_MAX = 3.09

# Fill value for missing data in NetCDF files
NC_FILL_VALUE = -9999.0

# Offset added to the accumulated water balance so that the two-parameter
# log-logistic distribution sees strictly positive values
SPEI_WATER_BALANCE_OFFSET = 1000.0

# Minimum number of years with valid values for a per-day log-logistic fit
MIN_VALUES_FOR_FIT = 4

# Variable naming pattern: spei_{window}_day
VAR_NAME_PATTERN = "spei_{window}_day"


# =============================================================================
# PIPELINE CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """
    Settings for one site-level or regional analysis.

    :param start: first timestamp of the analysis window (inclusive)
    :param end: end of the analysis window (exclusive)
    :param window_length: rolling aggregation horizon in days
    :param n_workers: size of the worker pool used for per-site fitting
    :param on_error: per-site failure policy ('raise' or 'collect')
    :param aggregation_factor: block size for regional mode (None = native grid)
    :param resample_method: method used to bring PET onto the precipitation grid
    :param sample_method: rule used to read a value at a site
    """
    start: str
    end: str
    window_length: int = DEFAULT_WINDOW_LENGTH
    n_workers: int = DEFAULT_N_WORKERS
    on_error: str = "raise"
    aggregation_factor: Optional[int] = None
    resample_method: str = "bilinear"
    sample_method: str = "nearest"

    def __post_init__(self):
        if pd.Timestamp(self.start) >= pd.Timestamp(self.end):
            raise ValueError(
                f"start must be before end, got: {self.start} >= {self.end}"
            )
        if self.window_length < 1:
            raise ValueError(f"window_length must be >= 1, got: {self.window_length}")
        if self.n_workers < 1:
            raise ValueError(f"n_workers must be >= 1, got: {self.n_workers}")
        if self.aggregation_factor is not None and self.aggregation_factor < 1:
            raise ValueError(
                f"aggregation_factor must be >= 1, got: {self.aggregation_factor}"
            )
        # Fail early on unknown names
        ErrorPolicy.from_string(self.on_error)
        ResampleMethod.from_string(self.resample_method)
        SampleMethod.from_string(self.sample_method)

    @property
    def time_range(self) -> Tuple[pd.Timestamp, pd.Timestamp]:
        """Analysis window as a (start, end) pair of timestamps."""
        return pd.Timestamp(self.start), pd.Timestamp(self.end)

    @property
    def start_year(self) -> int:
        """First calendar year presented to the normalization step."""
        return pd.Timestamp(self.start).year


# =============================================================================
# LOGGING
# =============================================================================

def get_logger(
    name: str,
    level: int = logging.INFO
) -> logging.Logger:
    """
    Set up and return a logger with consistent formatting.

    :param name: logger name (typically __name__ of calling module)
    :param level: logging level (default: logging.INFO)
    :return: configured logger instance
    """
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_variable_name(window: int) -> str:
    """
    Generate standardized variable name for index output.

    :param window: rolling window length in days
    :return: formatted variable name (e.g., 'spei_21_day')
    """
    return VAR_NAME_PATTERN.format(window=window)


def get_variable_attributes(window: int) -> dict:
    """
    Generate standard NetCDF variable attributes for the daily index.

    :param window: rolling window length in days
    :return: dictionary of attributes
    """
    return {
        'long_name': (
            f"Standardized Precipitation Evapotranspiration Index "
            f"(Log-Logistic), {window}-day"
        ),
        'units': '1',  # dimensionless
        'valid_min': FITTED_INDEX_VALID_MIN,
        'valid_max': FITTED_INDEX_VALID_MAX,
        'distribution': 'log_logistic',
        'window': window,
        'periodicity': 'daily',
    }
