import geopandas as gpd
import numpy as np
import pytest
import rioxarray as rxr
import xarray as xr
from affine import Affine
from shapely.geometry import box

from climsdm.config import ClimateConfig, GridConfig, OccurrenceConfig, PipelineConfig, SoilConfig
from climsdm.data.stack import (
    STATIC_BANDS,
    assemble_stack,
    load_environmental_stacks,
    match_resolution,
)
from climsdm.exceptions import DataFetchError
from climsdm.raster.utils import model_grid

BBOX = (18.0, -34.0, 20.0, -32.0)


def geographic_layer(values: np.ndarray, resolution: float, name: str = "layer") -> xr.DataArray:
    """A lon/lat layer starting at (17.5, -31.5)."""
    height, width = values.shape
    transform = Affine(resolution, 0, 17.5, 0, -resolution, -31.5)
    x = 17.5 + (np.arange(width) + 0.5) * resolution
    y = -31.5 - (np.arange(height) + 0.5) * resolution
    layer = xr.DataArray(values.astype("float32"), coords={"y": y, "x": x}, dims=("y", "x"), name=name)
    layer = layer.rio.write_crs("EPSG:4326")
    return layer.rio.write_transform(transform)


@pytest.fixture
def source_layers():
    shape = (36, 36)  # 3 degrees at 5 arc-minutes
    rows, cols = np.indices(shape)
    bands = ["bio5", "bio1", "bio12"]
    climate = xr.concat(
        [geographic_layer(cols + 10.0 * i, 1 / 12) for i in range(len(bands))], dim="band"
    ).assign_coords(band=bands)
    elevation = geographic_layer(100.0 + rows, 1 / 12, "elevation")
    fine = np.indices((180, 180))[1].astype(float)
    sand = geographic_layer(fine, 1 / 60, "sand")
    carbon = geographic_layer(fine * 2, 1 / 60, "carbon")
    return climate, elevation, sand, carbon


def test_match_resolution(source_layers):
    climate, elevation, sand, _ = source_layers
    pooled = match_resolution(sand, elevation)
    assert pooled.shape == elevation.shape
    assert pooled.rio.resolution()[0] == pytest.approx(1 / 12)
    assert float(pooled.values[0, 0]) == pytest.approx(2.0)  # mean of columns 0..4


def test_assemble_stack_order_and_grid(source_layers):
    climate, elevation, sand, carbon = source_layers
    grid = model_grid(BBOX, "EPSG:6933", 10000)

    stack = assemble_stack(climate, elevation, sand, carbon, grid)

    assert list(stack.data_vars) == ["bio5", "bio1", "bio12", *STATIC_BANDS]
    assert stack.rio.crs == "EPSG:6933"
    assert stack.rio.transform() == grid.transform
    for name in stack.data_vars:
        assert stack[name].shape == grid.shape
        assert stack[name].dtype == np.float32
    # The grid lies inside the source extent, so nothing is missing.
    assert not np.isnan(stack["elevation"].values).any()


def test_assemble_stack_masks_outside_boundary(source_layers):
    climate, elevation, sand, carbon = source_layers
    grid = model_grid(BBOX, "EPSG:6933", 10000)
    boundary = gpd.GeoDataFrame(geometry=[box(17.0, -35.0, 19.0, -31.0)], crs="EPSG:4326")

    stack = assemble_stack(climate, elevation, sand, carbon, grid, boundary)

    values = stack["bio1"].values
    assert np.isnan(values[:, -1]).all()
    assert not np.isnan(values[:, 0]).any()


BANDS = ["bio1", "bio2", "bio5", "bio6", "bio12", "bio14", "bio15"]
PERIODS = ["2041-2060", "2061-2080"]


@pytest.fixture
def source_folder(tmp_path):
    """Local stand-ins for the WorldClim, SoilGrids and GADM downloads."""
    source = tmp_path / "source"
    source.mkdir()
    rows, cols = np.indices((36, 36))
    for index in range(1, 20):
        geographic_layer(index + 0.01 * cols, 1 / 12).rio.to_raster(source / f"bio_{index}.tif")
    for offset, period in ((100.0, PERIODS[0]), (200.0, PERIODS[1])):
        future = xr.concat(
            [geographic_layer(np.full((36, 36), offset + i), 1 / 12) for i in range(1, 20)],
            dim="band",
        ).assign_coords(band=np.arange(1, 20))
        future.rio.to_raster(source / f"future_{period}.tif")
    geographic_layer(100.0 + rows, 1 / 12).rio.to_raster(source / "elev.tif")
    fine = np.indices((180, 180))[1].astype(float)
    geographic_layer(fine, 1 / 60).rio.to_raster(source / "sand.tif")
    geographic_layer(fine * 2, 1 / 60).rio.to_raster(source / "ocd.tif")
    gpd.GeoDataFrame(
        {"GID_0": ["ZAF"]}, geometry=[box(17.0, -35.0, 19.0, -31.0)], crs="EPSG:4326"
    ).to_file(source / "ZAF.geojson", driver="GeoJSON")
    return source


def local_config(source, cache_dir, periods) -> PipelineConfig:
    return PipelineConfig(
        occurrence=OccurrenceConfig(genus="Protea", species="cynaroides"),
        grid=GridConfig(bbox=BBOX, country="ZAF", resolution=10000),
        climate=ClimateConfig(
            bands=BANDS,
            periods=periods,
            historical_url=str(source / "bio_{index}.tif"),
            future_url=str(source / "future_{period}.tif"),
            elevation_url=str(source / "elev.tif"),
        ),
        soil=SoilConfig(sand_url=str(source / "sand.tif"), carbon_url=str(source / "ocd.tif")),
        boundary_url=str(source / "{country}.geojson"),
        cache_dir=cache_dir,
    )


def test_load_environmental_stacks(source_folder, tmp_path):
    config = local_config(source_folder, tmp_path / "cache", PERIODS)

    stacks = load_environmental_stacks(config)

    grid = model_grid(BBOX, "EPSG:6933", 10000)
    assert stacks.grid == grid
    assert stacks.boundary["country"].iloc[0] == "ZAF"
    assert set(stacks.future) == set(PERIODS)

    historical = stacks.historical
    for stack in (historical, *stacks.future.values()):
        assert list(stack.data_vars) == [*BANDS, *STATIC_BANDS]
        assert stack.rio.crs == historical.rio.crs
        assert stack.rio.transform() == grid.transform
        assert stack["bio1"].shape == grid.shape

    row, col = grid.height // 2, 3
    assert float(historical["bio12"].values[row, col]) == pytest.approx(12.0, abs=0.5)
    assert float(stacks.future[PERIODS[0]]["bio12"].values[row, col]) == pytest.approx(112.0)
    assert float(stacks.future[PERIODS[1]]["bio5"].values[row, col]) == pytest.approx(205.0)

    # Soil is mean-pooled from 1/60 to 1/12 degree before reprojection, which
    # keeps a linear gradient linear: value = fine column position - 0.5.
    x, y = grid.coords()
    lon = gpd.GeoSeries(gpd.points_from_xy([x[col]], [y[row]]), crs=grid.crs).to_crs("EPSG:4326").x
    expected_sand = (float(lon.iloc[0]) - 17.5) * 60 - 0.5
    sand = float(historical["sand"].values[row, col])
    assert sand == pytest.approx(expected_sand, abs=1.0)
    assert float(historical["carbon"].values[row, col]) == pytest.approx(2 * sand, rel=1e-4)

    # The boundary stops at 19E; the eastern edge of the grid lies beyond it.
    for stack in (historical, *stacks.future.values()):
        assert np.isnan(stack["bio1"].values[:, -1]).all()
        assert np.isfinite(stack["bio1"].values[row, col])


def test_load_environmental_stacks_missing_period(source_folder, tmp_path):
    config = local_config(source_folder, tmp_path / "cache", [PERIODS[0], "2081-2100"])

    with pytest.raises(DataFetchError, match="2081-2100"):
        load_environmental_stacks(config)
