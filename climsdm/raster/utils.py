import logging
from dataclasses import dataclass
from typing import Mapping, Tuple, Union

import geopandas as gpd
import numpy as np
import rioxarray as rxr  # Required for .rio accessor, even if not directly called
import xarray as xr
from affine import Affine
from rasterio.enums import Resampling
from rasterio.transform import array_bounds, rowcol, xy
from rasterio.warp import transform_bounds

from climsdm.exceptions import GridMismatchError

logger = logging.getLogger(__name__)

Raster = Union[xr.DataArray, xr.Dataset]


@dataclass(frozen=True)
class GridSpec:
    """Geometry of the shared model grid: CRS, north-up transform and shape."""

    crs: str
    transform: Affine
    width: int
    height: int

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    @property
    def resolution(self) -> Tuple[float, float]:
        return (self.transform.a, self.transform.e)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(west, south, east, north) in grid CRS units."""
        return array_bounds(self.height, self.width, self.transform)

    @property
    def cell_area(self) -> float:
        """Area of one cell in squared CRS units."""
        return abs(self.transform.a * self.transform.e)

    def coords(self) -> Tuple[np.ndarray, np.ndarray]:
        """Cell-centre x and y coordinates."""
        x = self.transform.c + (np.arange(self.width) + 0.5) * self.transform.a
        y = self.transform.f + (np.arange(self.height) + 0.5) * self.transform.e
        return x, y

    def empty(self, name: str = "grid") -> xr.DataArray:
        """An all-NaN georeferenced array on this grid."""
        x, y = self.coords()
        grid = xr.DataArray(
            np.full(self.shape, np.nan, dtype="float32"),
            coords={"y": y, "x": x},
            dims=("y", "x"),
            name=name,
        )
        grid = grid.rio.write_crs(self.crs)
        grid = grid.rio.write_transform(self.transform)
        return grid.rio.write_nodata(np.nan)


def construct_transform_shift_bounds(
    bounds: Tuple[float, float, float, float], resolution: float
) -> Tuple[Affine, Tuple[float, float, float, float]]:
    """
    Construct a transform based on the bounds and resolution.

    The bounds are pushed outwards so each edge is a multiple of the
    resolution; grids built from the same resolution therefore share an origin.

    Parameters:
    bounds (tuple): (xmin, ymin, xmax, ymax) of the area to cover.
    resolution (float): The spatial resolution.

    Returns:
    tuple: The transform and the shifted bounds.
    """
    xmin, ymin, xmax, ymax = bounds
    xmin = np.floor(xmin / resolution) * resolution
    ymin = np.floor(ymin / resolution) * resolution
    xmax = np.ceil(xmax / resolution) * resolution
    ymax = np.ceil(ymax / resolution) * resolution

    transform = Affine.translation(xmin, ymax) * Affine.scale(resolution, -resolution)
    return transform, (float(xmin), float(ymin), float(xmax), float(ymax))


def model_grid(
    bbox: Tuple[float, float, float, float],
    crs: str,
    resolution: float,
    bbox_crs: str = "EPSG:4326",
) -> GridSpec:
    """Build the model grid covering a bounding box given in ``bbox_crs``."""
    projected = transform_bounds(bbox_crs, crs, *bbox, densify_pts=21)
    transform, (xmin, ymin, xmax, ymax) = construct_transform_shift_bounds(projected, resolution)
    width = int(round((xmax - xmin) / resolution))
    height = int(round((ymax - ymin) / resolution))
    logger.info(f"Model grid: {width} x {height} cells at {resolution} in {crs}")
    return GridSpec(crs=crs, transform=transform, width=width, height=height)


def to_float_nan(array: xr.DataArray) -> xr.DataArray:
    """Cast to float32 and replace the nodata value with NaN."""
    nodata = array.rio.nodata
    array = array.astype("float32")
    if nodata is not None and not np.isnan(nodata):
        array = array.where(array != nodata)
    return array.rio.write_nodata(np.nan)


def reproject_to_grid(
    array: xr.DataArray,
    grid: GridSpec,
    resampling: Resampling = Resampling.bilinear,
) -> xr.DataArray:
    """
    Reprojects the given array onto the model grid (CRS, transform and shape).
    """
    reprojected = to_float_nan(array).rio.reproject(
        grid.crs,
        transform=grid.transform,
        shape=grid.shape,
        resampling=resampling,
        nodata=np.nan,
    )
    return reprojected.rio.write_nodata(np.nan)


def aggregate_raster(array: xr.DataArray, scale_factor: int) -> xr.DataArray:
    """Mean-pool an array by an integer factor in x and y.

    Trailing rows and columns that do not fill a whole block are dropped.
    """
    if scale_factor <= 1:
        return array
    crs = array.rio.crs
    aggregated = to_float_nan(array).coarsen(
        x=scale_factor, y=scale_factor, boundary="trim"
    ).mean()
    aggregated = aggregated.rio.write_crs(crs)
    aggregated = aggregated.rio.write_transform(aggregated.rio.transform(recalc=True))
    return aggregated.rio.write_nodata(np.nan)


def grid_of(raster: Raster) -> GridSpec:
    """Read the grid geometry of a georeferenced array or dataset."""
    return GridSpec(
        crs=str(raster.rio.crs),
        transform=raster.rio.transform(),
        width=raster.rio.width,
        height=raster.rio.height,
    )


def check_grid_alignment(layers: Mapping[str, Raster], precision: float = 1e-6) -> None:
    """Raise if the layers do not share CRS, shape and transform.

    Raises:
        GridMismatchError: naming the first layer that differs from the first one.
    """
    items = list(layers.items())
    if len(items) < 2:
        return
    ref_name, ref = items[0]
    ref_crs = ref.rio.crs
    ref_shape = (ref.rio.height, ref.rio.width)
    ref_transform = ref.rio.transform()

    for name, layer in items[1:]:
        problems = []
        if layer.rio.crs != ref_crs:
            problems.append(f"CRS {layer.rio.crs} != {ref_crs}")
        shape = (layer.rio.height, layer.rio.width)
        if shape != ref_shape:
            problems.append(f"shape {shape} != {ref_shape}")
        elif not layer.rio.transform().almost_equals(ref_transform, precision=precision):
            problems.append(f"transform {tuple(layer.rio.transform())[:6]} != {tuple(ref_transform)[:6]}")
        if problems:
            raise GridMismatchError(
                f"Layer '{name}' is not aligned with '{ref_name}': " + "; ".join(problems)
            )


def points_to_cells(
    x: np.ndarray,
    y: np.ndarray,
    transform: Affine,
    shape: Tuple[int, int],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Convert point coordinates to row/column indices of the cell holding them.

    Returns:
        rows, cols and a boolean ``inside`` flag for points within the grid.
        Rows and cols of points outside the grid are meaningless.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if len(x) == 0:
        empty = np.array([], dtype=int)
        return empty, empty, np.array([], dtype=bool)
    rows, cols = rowcol(transform, x, y)
    rows = np.atleast_1d(np.asarray(rows, dtype=int))
    cols = np.atleast_1d(np.asarray(cols, dtype=int))
    height, width = shape
    inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
    return rows, cols, inside


def cell_centres(
    rows: np.ndarray, cols: np.ndarray, transform: Affine
) -> Tuple[np.ndarray, np.ndarray]:
    """Coordinates of the centres of the given cells."""
    if len(rows) == 0:
        return np.array([], dtype=float), np.array([], dtype=float)
    xs, ys = xy(transform, rows, cols, offset="center")
    return np.atleast_1d(np.asarray(xs, dtype=float)), np.atleast_1d(np.asarray(ys, dtype=float))


def mask_to_boundary(raster: Raster, boundary: gpd.GeoDataFrame) -> Raster:
    """Set every cell outside the boundary polygons to NaN, keeping the extent."""
    return raster.rio.clip(boundary.geometry.values, boundary.crs, drop=False)
