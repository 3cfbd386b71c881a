"""
Assembly of environmental layers into stacks on the shared model grid.
"""

import logging
from pathlib import Path
from typing import Dict, Optional

import geopandas as gpd
import numpy as np
import rioxarray as rxr  # Required for .rio accessor, even if not directly called
import xarray as xr
from pydantic import BaseModel, ConfigDict

from climsdm.config import PipelineConfig
from climsdm.data.boundaries import load_country_boundary
from climsdm.data.loaders import ClimateData, SoilData
from climsdm.raster.utils import (
    GridSpec,
    aggregate_raster,
    check_grid_alignment,
    mask_to_boundary,
    model_grid,
    reproject_to_grid,
)

logger = logging.getLogger(__name__)

STATIC_BANDS = ("elevation", "sand", "carbon")


def match_resolution(fine: xr.DataArray, coarse: xr.DataArray) -> xr.DataArray:
    """Mean-pool ``fine`` by the integer ratio of the two resolutions.

    Both arrays must be in the same (geographic) CRS.
    """
    fine_res = abs(fine.rio.resolution()[0])
    coarse_res = abs(coarse.rio.resolution()[0])
    factor = int(round(coarse_res / fine_res))
    if factor <= 1:
        return fine
    logger.info(f"Aggregating {fine.name} by a factor of {factor}")
    return aggregate_raster(fine, factor)


def assemble_stack(
    climate: xr.DataArray,
    elevation: xr.DataArray,
    sand: xr.DataArray,
    carbon: xr.DataArray,
    grid: GridSpec,
    boundary: Optional[gpd.GeoDataFrame] = None,
) -> xr.Dataset:
    """
    Reproject every layer onto ``grid`` and combine them into one Dataset.

    Args:
        climate: Bioclimatic bands with a ``band`` coordinate holding their names.
        elevation: Elevation in metres, NaN over the ocean.
        sand: Topsoil sand fraction.
        carbon: Topsoil organic carbon density.
        grid: The model grid.
        boundary: Cells outside these polygons are set to NaN.

    Returns:
        Dataset with one variable per band: climate bands in their given order,
        then elevation, sand and carbon.

    Raises:
        GridMismatchError: If any reprojected layer does not match the grid.
    """
    layers: Dict[str, xr.DataArray] = {}
    for name in climate["band"].values:
        band = climate.sel(band=name, drop=True)
        band = band.rio.write_crs(climate.rio.crs)
        layers[str(name)] = reproject_to_grid(band, grid)

    layers["elevation"] = reproject_to_grid(elevation, grid)
    layers["sand"] = reproject_to_grid(sand, grid)
    layers["carbon"] = reproject_to_grid(carbon, grid)

    reference = {"grid": grid.empty()}
    check_grid_alignment({**reference, **layers})

    # Reprojected coordinates can differ in the last bits; use the grid's own.
    x, y = grid.coords()
    stack = xr.Dataset(
        {name: (("y", "x"), layer.values.astype("float32")) for name, layer in layers.items()},
        coords={"y": y, "x": x},
    )
    stack = stack.rio.write_crs(grid.crs)
    stack = stack.rio.write_transform(grid.transform)
    for name in stack.data_vars:
        stack[name] = stack[name].rio.write_nodata(np.nan)

    if boundary is not None:
        stack = mask_to_boundary(stack, boundary)
    return stack


class EnvironmentalStacks(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    historical: xr.Dataset
    future: Dict[str, xr.Dataset]
    grid: GridSpec
    boundary: Optional[gpd.GeoDataFrame] = None


def load_environmental_stacks(config: PipelineConfig) -> EnvironmentalStacks:
    """
    Fetch every source layer and build the historical and future stacks.

    Elevation and soil layers are shared between the periods; only the
    climate bands change.
    """
    cache_dir = Path(config.cache_dir)
    bbox = config.grid.bbox

    grid = model_grid(bbox, config.grid.crs, config.grid.resolution)
    boundary = load_country_boundary(
        config.grid.country, config.boundary_url, cache_dir / "boundaries"
    )

    climate_data = ClimateData(config.climate, bbox=bbox, cache_folder=cache_dir / "climate")
    soil_data = SoilData(config.soil, bbox=bbox, cache_folder=cache_dir / "soil")

    historical_climate = climate_data.historical()
    elevation = climate_data.elevation()
    sand = match_resolution(soil_data.sand(), elevation)
    carbon = match_resolution(soil_data.carbon(), elevation)

    historical = assemble_stack(historical_climate, elevation, sand, carbon, grid, boundary)
    logger.info(f"Historical stack: {list(historical.data_vars)} on {grid.shape} grid")

    future = {}
    for period in config.climate.periods:
        future[period] = assemble_stack(
            climate_data.future(period), elevation, sand, carbon, grid, boundary
        )
    return EnvironmentalStacks(historical=historical, future=future, grid=grid, boundary=boundary)
