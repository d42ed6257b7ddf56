"""
Site definitions and per-timestamp value extraction from raster series.

Sites are either named locations of interest (read from a vector point
file) or synthetic grid-cell centers (regional mode). Extraction produces
long-form records (site, time, value), grouped by site and ascending in
time within each site.

Author: drought-index developers
"""

import os
from dataclasses import dataclass
from typing import Iterator, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import xarray as xr
from pyproj import CRS, Transformer

from .config import TIME_DIM, X_DIM, Y_DIM, SampleMethod, get_logger
from .grid import CRSLike, RasterSeries, TimeLike, as_crs

# Module logger
_logger = get_logger(__name__)

SiteId = Union[int, str]


# =============================================================================
# SITES
# =============================================================================

@dataclass(frozen=True)
class Site:
    """A location at which series are extracted."""
    site_id: SiteId
    x: float
    y: float
    crs: Optional[CRS] = None


def sites_from_coordinates(
    coordinates: Sequence[Tuple[float, float]],
    crs: CRSLike = None,
    labels: Optional[Sequence[str]] = None
) -> List[Site]:
    """
    Build sites from (x, y) pairs.

    :param coordinates: sequence of (x, y) pairs, e.g. (lon, lat)
    :param crs: CRS of the coordinates
    :param labels: optional human-readable ids; positional indices otherwise
    :return: list of Site
    """
    if labels is not None and len(labels) != len(coordinates):
        raise ValueError(
            f"Got {len(labels)} labels for {len(coordinates)} coordinates"
        )
    crs = as_crs(crs)
    return [
        Site(
            site_id=str(labels[i]) if labels is not None else i,
            x=float(x),
            y=float(y),
            crs=crs,
        )
        for i, (x, y) in enumerate(coordinates)
    ]


def load_sites(
    path: Union[str, os.PathLike],
    label_field: Optional[str] = None
) -> List[Site]:
    """
    Read point sites from a vector file (shapefile, GeoJSON, GeoPackage).

    :param path: vector file path
    :param label_field: attribute used as site id; positional indices if None
    :return: list of Site in file order
    """
    import geopandas as gpd

    gdf = gpd.read_file(path)
    if not (gdf.geometry.geom_type == "Point").all():
        raise ValueError(f"Only point geometries are supported in {path}")

    if label_field is not None and label_field not in gdf.columns:
        raise KeyError(
            f"Field '{label_field}' not found. "
            f"Available: {[c for c in gdf.columns if c != gdf.geometry.name]}"
        )

    labels = gdf[label_field].astype(str).tolist() if label_field else None
    coords = list(zip(gdf.geometry.x, gdf.geometry.y))
    sites = sites_from_coordinates(coords, crs=gdf.crs, labels=labels)

    _logger.info(f"Loaded {len(sites)} sites from {path}")
    return sites


def grid_cell_sites(grid: RasterSeries) -> List[Site]:
    """
    One synthetic site per cell center of a grid, row-major, positional ids.

    :param grid: companion grid, usually already aggregated
    :return: list of Site in the grid's CRS
    """
    xs, ys = grid.cell_centers()
    _logger.info(f"Created {len(xs)} grid-cell sites from {grid.shape} grid")
    return [
        Site(site_id=i, x=float(x), y=float(y), crs=grid.crs)
        for i, (x, y) in enumerate(zip(xs, ys))
    ]


def _project_sites(
    sites: Sequence[Site],
    target: Optional[CRS]
) -> Tuple[np.ndarray, np.ndarray]:
    """Return site coordinates in the target CRS."""
    xs = np.array([s.x for s in sites], dtype=np.float64)
    ys = np.array([s.y for s in sites], dtype=np.float64)
    if target is None:
        return xs, ys

    # Sites sharing a CRS are transformed together
    groups = {}
    for i, site in enumerate(sites):
        if site.crs is None or site.crs == target:
            continue
        groups.setdefault(site.crs.to_wkt(), []).append(i)

    for wkt, idx in groups.items():
        transformer = Transformer.from_crs(
            CRS.from_wkt(wkt), target, always_xy=True
        )
        idx = np.asarray(idx)
        xs[idx], ys[idx] = transformer.transform(xs[idx], ys[idx])
        _logger.debug(f"Reprojected {len(idx)} sites to {target.to_string()}")

    return xs, ys


# =============================================================================
# RECORDS
# =============================================================================

class SeriesRecord(NamedTuple):
    """One extracted value."""
    site: SiteId
    time: pd.Timestamp
    value: float


@dataclass(frozen=True)
class SeriesRecords:
    """
    Long-form extraction result for one variable.

    Parallel arrays of equal length: site ids, timestamps and values
    (NaN = missing).
    """
    variable: str
    site: np.ndarray
    time: np.ndarray
    value: np.ndarray

    def __post_init__(self):
        n = len(self.site)
        if len(self.time) != n or len(self.value) != n:
            raise ValueError(
                f"Record arrays differ in length: site={n}, "
                f"time={len(self.time)}, value={len(self.value)}"
            )

    def __len__(self) -> int:
        return len(self.site)

    def __iter__(self) -> Iterator[SeriesRecord]:
        for site, time, value in zip(self.site, self.time, self.value):
            yield SeriesRecord(site, pd.Timestamp(time), float(value))

    @property
    def site_ids(self) -> list:
        """Distinct site ids in order of first appearance."""
        _, first = np.unique(self.site, return_index=True)
        return [self.site[i] for i in np.sort(first)]

    def sorted(self) -> 'SeriesRecords':
        """Return a copy sorted by (site, time)."""
        order = np.lexsort((self.time, self.site))
        return SeriesRecords(
            variable=self.variable,
            site=self.site[order],
            time=self.time[order],
            value=self.value[order],
        )

    def to_frame(self) -> pd.DataFrame:
        """Records as a DataFrame with columns site, time, <variable>."""
        return pd.DataFrame({
            'site': self.site,
            'time': pd.DatetimeIndex(self.time),
            self.variable: self.value,
        })


def validate_record_order(records: SeriesRecords) -> None:
    """
    Check that records are grouped by site and ascending in time per site.

    :param records: records to check
    :raises ValueError: if a site reappears after another site's block or
        timestamps are not strictly increasing within a site
    """
    if len(records) < 2:
        return

    site = records.site
    time = records.time
    boundaries = np.flatnonzero(site[1:] != site[:-1]) + 1

    block_ids = site[np.concatenate(([0], boundaries))]
    if len(pd.unique(block_ids)) != len(block_ids):
        raise ValueError(
            f"Records for '{records.variable}' are not grouped by site"
        )

    same_site = site[1:] == site[:-1]
    if np.any(same_site & (time[1:] <= time[:-1])):
        raise ValueError(
            f"Records for '{records.variable}' are not ascending in time within a site"
        )


# =============================================================================
# EXTRACTION
# =============================================================================

def extract(
    grid: RasterSeries,
    sites: Sequence[Site],
    time_range: Optional[Tuple[TimeLike, TimeLike]] = None,
    aggregation_factor: Optional[int] = None,
    method: Union[str, SampleMethod] = SampleMethod.nearest,
    variable: Optional[str] = None
) -> SeriesRecords:
    """
    Extract per-timestamp values at a set of sites.

    Sites are reprojected into the grid's CRS first. With the default
    'nearest' rule each site reads exactly one cell; 'bilinear'
    interpolates between surrounding cell centers. Sites outside the grid
    extent get missing values.

    :param grid: raster series to sample
    :param sites: sites to sample at
    :param time_range: optional [start, end) window applied before sampling
    :param aggregation_factor: optional block-averaging factor applied
        before sampling (regional mode)
    :param method: 'nearest' (default) or 'bilinear'
    :param variable: name stored on the records (default: grid name)
    :return: SeriesRecords grouped by site, ascending in time
    """
    if isinstance(method, str):
        method = SampleMethod.from_string(method)
    if not sites:
        raise ValueError("No sites to extract")

    if time_range is not None:
        grid = grid.restrict_to_time_range(*time_range)
    if aggregation_factor is not None:
        grid = grid.aggregate(aggregation_factor)

    xs, ys = _project_sites(sites, grid.crs)

    _logger.info(
        f"Extracting '{grid.name}' at {len(sites)} sites "
        f"({grid.n_layers} layers, {method} sampling)"
    )

    indexers = {
        X_DIM: xr.DataArray(xs, dims="site"),
        Y_DIM: xr.DataArray(ys, dims="site"),
    }
    if method == SampleMethod.nearest:
        sampled = grid.data.sel(indexers, method="nearest")
        # nearest would otherwise snap far-away sites to the edge cells
        # a 1x1 grid has no cell size, so its extent is not checked
        xmin, ymin, xmax, ymax = grid.bounds
        if np.isnan(grid.resolution[0]):
            outside = np.zeros(len(sites), dtype=bool)
        else:
            outside = (xs < xmin) | (xs > xmax) | (ys < ymin) | (ys > ymax)
        if outside.any():
            _logger.warning(
                f"{int(outside.sum())} sites fall outside the grid extent; "
                f"their values are missing"
            )
            sampled = sampled.where(xr.DataArray(~outside, dims="site"))
    else:
        sampled = grid.data.sortby([Y_DIM, X_DIM]).interp(indexers, method=method.value)

    values = np.asarray(sampled.transpose("site", TIME_DIM).values, dtype=np.float64)

    n_sites, n_time = values.shape
    site_ids = np.array([s.site_id for s in sites])
    times = grid.data[TIME_DIM].values

    records = SeriesRecords(
        variable=variable or grid.name,
        site=np.repeat(site_ids, n_time),
        time=np.tile(times, n_sites),
        value=values.ravel(),
    )
    validate_record_order(records)
    return records
