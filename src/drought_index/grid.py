"""
Gridded raster series: opening, time filtering, regridding and aggregation.

A RasterSeries is a time-ordered stack of 2-D layers sharing one coordinate
reference system and extent, held as an xarray DataArray with dimensions
(time, y, x). Every operation returns a new RasterSeries; the wrapped array
is never modified in place.

Author: drought-index developers
"""

import os
from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import xarray as xr
from pyproj import CRS

from .config import (
    DEFAULT_CRS,
    GEOGRAPHIC_DIM_NAMES,
    NC_FILL_VALUE,
    RASTER_DIMS,
    TIME_DIM,
    X_DIM,
    X_DIM_ALIASES,
    Y_DIM,
    Y_DIM_ALIASES,
    ResampleMethod,
    get_logger,
)
from .exceptions import EmptyRangeError, GridMismatchError

# Module logger
_logger = get_logger(__name__)

CRSLike = Union[str, int, CRS, None]
TimeLike = Union[str, np.datetime64, pd.Timestamp]


# =============================================================================
# CRS HELPERS
# =============================================================================

def as_crs(value: CRSLike) -> Optional[CRS]:
    """
    Convert a user CRS specification to a pyproj CRS.

    :param value: EPSG code, 'EPSG:xxxx' string, WKT, pyproj CRS or None
    :return: pyproj CRS, or None when no CRS is given
    """
    if value is None:
        return None
    return CRS.from_user_input(value)


def reconcile_crs(
    source: Optional[CRS],
    target: Optional[CRS],
    context: str = "grids"
) -> Optional[CRS]:
    """
    Return the CRS two grids can share, or fail if they cannot share one.

    Equal CRSs pass unchanged. When exactly one side is unknown it adopts
    the other. Two different known CRSs raise GridMismatchError, since
    reprojection is not performed here.

    :param source: CRS of the grid being transformed
    :param target: CRS of the reference grid
    :param context: description used in messages
    :return: the reconciled CRS (None when both are unknown)
    :raises GridMismatchError: if both CRSs are known and differ
    """
    if source is None and target is None:
        return None
    if source is None or target is None:
        known = source if source is not None else target
        _logger.warning(
            f"CRS missing on one of the {context}; assuming {known.to_string()}"
        )
        return known
    if source == target:
        return target
    raise GridMismatchError(
        f"Incompatible coordinate reference systems for {context}: "
        f"{source.to_string()} vs {target.to_string()}. "
        f"Reproject one of the inputs before combining them."
    )


# =============================================================================
# RASTER SERIES
# =============================================================================

class RasterSeries:
    """
    Time-ordered stack of 2-D layers on one grid.

    :param data: DataArray with dimensions (time, y, x)
    :param crs: coordinate reference system of the x/y coordinates
    :param name: variable name used when exporting

    Example:
        >>> pet = open_raster('pet_daily.nc', var_name='pet')
        >>> precip = open_raster('era5_tp_daily.nc', var_name='tp')
        >>> pet_on_era5 = pet.resample_to(precip, method='bilinear')
        >>> coarse = precip.aggregate(4)
    """

    def __init__(
        self,
        data: xr.DataArray,
        crs: CRSLike = None,
        name: Optional[str] = None
    ):
        if tuple(data.dims) != RASTER_DIMS:
            raise ValueError(
                f"Raster series must have dimensions {RASTER_DIMS}, got: {data.dims}"
            )
        times = pd.DatetimeIndex(data[TIME_DIM].values)
        if times.has_duplicates:
            raise ValueError("Raster series timestamps contain duplicates")
        if not times.is_monotonic_increasing:
            raise ValueError("Raster series timestamps must be strictly increasing")

        self._data = data
        self._crs = as_crs(crs)
        self.name = name or data.name or "value"

    def __repr__(self) -> str:
        crs = self._crs.to_string() if self._crs is not None else None
        return (
            f"RasterSeries(name={self.name!r}, layers={self.n_layers}, "
            f"shape={self.shape}, crs={crs})"
        )

    def __len__(self) -> int:
        return self.n_layers

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def data(self) -> xr.DataArray:
        """The wrapped (time, y, x) DataArray."""
        return self._data

    @property
    def crs(self) -> Optional[CRS]:
        return self._crs

    @property
    def time(self) -> pd.DatetimeIndex:
        """Layer timestamps."""
        return pd.DatetimeIndex(self._data[TIME_DIM].values)

    @property
    def years(self) -> np.ndarray:
        """Distinct calendar years covered by the layers."""
        return np.unique(self.time.year)

    @property
    def n_layers(self) -> int:
        return self._data.sizes[TIME_DIM]

    @property
    def shape(self) -> Tuple[int, int]:
        """Spatial shape (ny, nx) of each layer."""
        return self._data.sizes[Y_DIM], self._data.sizes[X_DIM]

    @property
    def y(self) -> np.ndarray:
        return self._data[Y_DIM].values

    @property
    def x(self) -> np.ndarray:
        return self._data[X_DIM].values

    @property
    def resolution(self) -> Tuple[float, float]:
        """
        Absolute cell size (dy, dx).

        An axis with a single cell borrows the other axis's cell size; both
        are NaN on a 1x1 grid.
        """
        dy = float(np.abs(np.diff(self.y)).mean()) if self.y.size > 1 else np.nan
        dx = float(np.abs(np.diff(self.x)).mean()) if self.x.size > 1 else np.nan
        if np.isnan(dy):
            dy = dx
        if np.isnan(dx):
            dx = dy
        return dy, dx

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Outer cell edges as (xmin, ymin, xmax, ymax)."""
        dy, dx = self.resolution
        half_x = 0.0 if np.isnan(dx) else dx / 2.0
        half_y = 0.0 if np.isnan(dy) else dy / 2.0
        return (
            float(self.x.min()) - half_x,
            float(self.y.min()) - half_y,
            float(self.x.max()) + half_x,
            float(self.y.max()) + half_y,
        )

    def cell_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Cell center coordinates in row-major order.

        :return: tuple of (x, y) 1-D arrays of length ny * nx
        """
        xx, yy = np.meshgrid(self.x, self.y)
        return xx.ravel(), yy.ravel()

    def _replace(self, data: xr.DataArray, crs: CRSLike = ...) -> 'RasterSeries':
        """Build a new series sharing this one's name (and CRS unless given)."""
        return RasterSeries(
            data,
            crs=self._crs if crs is ... else crs,
            name=self.name
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def restrict_to_time_range(
        self,
        start: TimeLike,
        end: TimeLike
    ) -> 'RasterSeries':
        """
        Keep only layers with timestamp in [start, end).

        :param start: inclusive lower bound
        :param end: exclusive upper bound
        :return: new RasterSeries with the selected layers
        :raises EmptyRangeError: if no layer falls in the window
        """
        start = pd.Timestamp(start)
        end = pd.Timestamp(end)
        times = self.time
        mask = (times >= start) & (times < end)

        if not mask.any():
            raise EmptyRangeError(
                f"No layers of '{self.name}' in [{start.date()}, {end.date()}); "
                f"data covers {times[0].date()} to {times[-1].date()}"
            )

        _logger.info(
            f"Restricted '{self.name}' to [{start.date()}, {end.date()}): "
            f"{int(mask.sum())} of {len(times)} layers"
        )
        return self._replace(self._data.isel({TIME_DIM: np.flatnonzero(mask)}))

    def resample_to(
        self,
        reference: 'RasterSeries',
        method: Union[str, ResampleMethod] = ResampleMethod.bilinear
    ) -> 'RasterSeries':
        """
        Regrid onto the spatial footprint of another series.

        Interpolation is done with xarray (scipy backend); timestamps are kept
        unchanged. Target cells outside the source extent become missing.

        :param reference: series whose y/x coordinates define the target grid
        :param method: 'bilinear' (default) or 'nearest'
        :return: new RasterSeries on the reference grid
        :raises GridMismatchError: if the coordinate reference systems differ
        """
        if isinstance(method, str):
            method = ResampleMethod.from_string(method)

        crs = reconcile_crs(
            self._crs, reference.crs, context=f"'{self.name}' and '{reference.name}'"
        )

        _logger.info(
            f"Resampling '{self.name}' {self.shape} onto '{reference.name}' "
            f"{reference.shape} using {method} interpolation"
        )

        # scipy interpolation expects ascending coordinates
        source = self._data.sortby([Y_DIM, X_DIM])
        resampled = source.interp(
            {Y_DIM: reference.data[Y_DIM], X_DIM: reference.data[X_DIM]},
            method=method.value,
        )
        resampled = resampled.assign_coords({TIME_DIM: self._data[TIME_DIM].values})

        if resampled.sizes[TIME_DIM] != self.n_layers:
            raise RuntimeError(
                f"Resampling changed the layer count: "
                f"{self.n_layers} -> {resampled.sizes[TIME_DIM]}"
            )
        return self._replace(resampled.transpose(*RASTER_DIMS), crs=crs)

    def aggregate(self, factor: int) -> 'RasterSeries':
        """
        Spatially downsample by averaging factor x factor blocks of cells.

        Missing values are ignored within a block; a block that is entirely
        missing stays missing. Trailing rows/columns that do not fill a whole
        block are dropped. Timestamps are re-attached explicitly and the
        layer count is checked to be unchanged.

        :param factor: block size in cells along both axes (>= 1)
        :return: new, coarser RasterSeries
        :raises ValueError: if factor < 1 or larger than the grid
        """
        if factor < 1:
            raise ValueError(f"Aggregation factor must be >= 1, got: {factor}")
        if factor == 1:
            return self._replace(self._data.copy())

        ny, nx = self.shape
        if factor > ny or factor > nx:
            raise ValueError(
                f"Aggregation factor {factor} exceeds grid shape {self.shape}"
            )

        times = self._data[TIME_DIM].values
        coarse = self._data.coarsen(
            {Y_DIM: factor, X_DIM: factor}, boundary="trim"
        ).mean()
        coarse = coarse.assign_coords({TIME_DIM: times})

        if coarse.sizes[TIME_DIM] != len(times):
            raise RuntimeError(
                f"Aggregation changed the layer count: "
                f"{len(times)} -> {coarse.sizes[TIME_DIM]}"
            )

        _logger.info(
            f"Aggregated '{self.name}' by factor {factor}: "
            f"{self.shape} -> ({coarse.sizes[Y_DIM]}, {coarse.sizes[X_DIM]})"
        )
        return self._replace(coarse.transpose(*RASTER_DIMS))

    def to_netcdf(
        self,
        filepath: str,
        var_name: Optional[str] = None,
        compress: bool = True,
        complevel: int = 5
    ) -> str:
        """
        Write the series to a NetCDF file.

        :param filepath: output path
        :param var_name: variable name in the file (default: series name)
        :param compress: whether to use compression
        :param complevel: compression level (1-9)
        :return: filepath of saved file
        """
        return save_raster_to_netcdf(
            self._data, self._crs, filepath,
            var_name=var_name or self.name,
            compress=compress,
            complevel=complevel,
        )


# =============================================================================
# OPENING RASTERS
# =============================================================================

def _find_var(ds: xr.Dataset, var_name: Optional[str]) -> str:
    """Pick the data variable to read from a dataset."""
    if var_name is not None:
        if var_name not in ds.data_vars:
            raise KeyError(
                f"Variable '{var_name}' not found. Available: {list(ds.data_vars)}"
            )
        return var_name

    # Grid-mapping variables carry no data
    candidates = [
        v for v in ds.data_vars
        if ds[v].ndim == 3
    ]
    if len(candidates) == 1:
        return candidates[0]
    raise ValueError(
        f"Specify var_name. Available: {list(ds.data_vars)}"
    )


def _standardize_dims(da: xr.DataArray) -> xr.DataArray:
    """Rename spatial dimensions to (y, x) and order as (time, y, x)."""
    rename = {}
    for dim in da.dims:
        lower = str(dim).lower()
        if dim == TIME_DIM:
            continue
        if lower in Y_DIM_ALIASES and dim != Y_DIM:
            rename[dim] = Y_DIM
        elif lower in X_DIM_ALIASES and dim != X_DIM:
            rename[dim] = X_DIM
    if rename:
        _logger.info(f"Renaming dimensions {rename}")
        da = da.rename(rename)

    missing = [d for d in RASTER_DIMS if d not in da.dims]
    if missing:
        raise ValueError(
            f"Cannot identify dimensions {missing} in {tuple(da.dims)}"
        )
    if tuple(da.dims) != RASTER_DIMS:
        da = da.transpose(*RASTER_DIMS)
    return da


def _read_crs(ds: xr.Dataset, da: xr.DataArray) -> Optional[CRS]:
    """Read the CRS from a CF grid-mapping variable, if present."""
    grid_mapping = da.attrs.get("grid_mapping") or da.encoding.get("grid_mapping")
    candidates = [grid_mapping] if grid_mapping else []
    candidates += ["spatial_ref", "crs"]

    for name in candidates:
        if name in ds.variables:
            attrs = ds[name].attrs
            wkt = attrs.get("crs_wkt") or attrs.get("spatial_ref")
            if wkt:
                return CRS.from_wkt(wkt)
    return None


def _to_raster_series(
    ds: xr.Dataset,
    var_name: Optional[str],
    crs: CRSLike,
    source: str
) -> RasterSeries:
    """Turn an opened dataset into a RasterSeries."""
    name = _find_var(ds, var_name)
    da = ds[name]
    geographic = any(str(d).lower() in GEOGRAPHIC_DIM_NAMES for d in da.dims)
    da = _standardize_dims(da)

    # Drop coordinate variables that do not belong to the (time, y, x) grid
    extra = [c for c in da.coords if c not in RASTER_DIMS]
    if extra:
        da = da.drop_vars(extra)

    if crs is None:
        crs = _read_crs(ds, ds[name])
    if crs is None and geographic:
        _logger.info(f"No CRS metadata in {source}; assuming {DEFAULT_CRS}")
        crs = DEFAULT_CRS

    series = RasterSeries(da, crs=crs, name=name)
    _logger.info(f"Opened {source}: {series}")
    return series


def open_raster(
    path: Union[str, os.PathLike],
    var_name: Optional[str] = None,
    crs: CRSLike = None
) -> RasterSeries:
    """
    Open a NetCDF raster stack as a RasterSeries.

    :param path: NetCDF file path
    :param var_name: variable to read (required when the file holds several)
    :param crs: CRS override; otherwise read from the CF grid-mapping
        variable, or EPSG:4326 for lat/lon grids without metadata
    :return: RasterSeries
    """
    ds = xr.open_dataset(path)
    return _to_raster_series(ds, var_name, crs, source=str(path))


def open_raster_files(
    paths: Sequence[Union[str, os.PathLike]],
    var_name: Optional[str] = None,
    crs: CRSLike = None
) -> RasterSeries:
    """
    Open several NetCDF files (e.g. one per year) as a single RasterSeries.

    Files are combined lazily along time with dask, in the order given.

    :param paths: file paths, ordered by time
    :param var_name: variable to read
    :param crs: CRS override
    :return: RasterSeries spanning all files
    :raises ValueError: if no paths are given or timestamps overlap
    """
    paths = [str(p) for p in paths]
    if not paths:
        raise ValueError("No raster files given")

    _logger.info(f"Combining {len(paths)} raster files along time")
    ds = xr.open_mfdataset(
        paths,
        combine="nested",
        concat_dim=TIME_DIM,
        data_vars="minimal",
        coords="minimal",
        compat="override",
    )
    return _to_raster_series(ds, var_name, crs, source=f"{len(paths)} files")


def from_array(
    values: np.ndarray,
    times: Iterable,
    y: Sequence[float],
    x: Sequence[float],
    crs: CRSLike = DEFAULT_CRS,
    name: str = "value"
) -> RasterSeries:
    """
    Build a RasterSeries from a (time, y, x) numpy array.

    :param values: 3-D array of layer values
    :param times: layer timestamps
    :param y: y (row) coordinates of cell centers
    :param x: x (column) coordinates of cell centers
    :param crs: coordinate reference system
    :param name: variable name
    :return: RasterSeries
    """
    da = xr.DataArray(
        np.asarray(values, dtype=np.float64),
        dims=RASTER_DIMS,
        coords={
            TIME_DIM: pd.DatetimeIndex(times),
            Y_DIM: np.asarray(y, dtype=np.float64),
            X_DIM: np.asarray(x, dtype=np.float64),
        },
        name=name,
    )
    return RasterSeries(da, crs=crs, name=name)


# =============================================================================
# WRITING RASTERS
# =============================================================================

def save_raster_to_netcdf(
    data: xr.DataArray,
    crs: Optional[CRS],
    filepath: Union[str, os.PathLike],
    var_name: str,
    compress: bool = True,
    complevel: int = 5
) -> str:
    """
    Save a raster (series or single layer) to NetCDF with proper encoding.

    The CRS is stored as a CF grid-mapping variable 'spatial_ref' holding
    the WKT, which open_raster reads back.

    :param data: DataArray with spatial dims (y, x) and optionally time
    :param crs: coordinate reference system, or None
    :param filepath: output file path
    :param var_name: variable name in the file
    :param compress: whether to use compression
    :param complevel: compression level (1-9)
    :return: filepath of saved file
    """
    filepath = str(filepath)
    _logger.info(f"Saving to: {filepath}")

    # Ensure directory exists
    dir_path = os.path.dirname(os.path.abspath(filepath))
    if dir_path:
        os.makedirs(dir_path, exist_ok=True)

    da = data.rename(var_name)
    if crs is not None:
        da = da.assign_attrs(grid_mapping="spatial_ref")
    ds = da.to_dataset()
    if crs is not None:
        ds["spatial_ref"] = xr.DataArray(
            0,
            attrs={"crs_wkt": crs.to_wkt(), "spatial_ref": crs.to_wkt()},
        )

    encoding = {
        var_name: {
            'dtype': 'float32',
            '_FillValue': NC_FILL_VALUE,
        }
    }
    if compress:
        encoding[var_name]['zlib'] = True
        encoding[var_name]['complevel'] = complevel

    for coord in ds.coords:
        if coord in (Y_DIM, X_DIM):
            encoding[coord] = {'dtype': 'float64', '_FillValue': None}
        elif coord == TIME_DIM:
            encoding[coord] = {'dtype': 'float64', '_FillValue': None}

    ds.to_netcdf(filepath, encoding=encoding)
    _logger.info(f"Saved: {filepath}")

    return filepath
