import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import rioxarray as rxr
import xarray as xr
from affine import Affine

from climsdm.raster.utils import GridSpec

GRID_CRS = "EPSG:6933"
RESOLUTION = 5000.0
SIZE = 20


def make_stack(grid: GridSpec, layers: dict) -> xr.Dataset:
    """Build a georeferenced Dataset from 2-D arrays on ``grid``."""
    x, y = grid.coords()
    stack = xr.Dataset(
        {name: (("y", "x"), np.asarray(values, dtype="float32")) for name, values in layers.items()},
        coords={"y": y, "x": x},
    )
    stack = stack.rio.write_crs(grid.crs)
    stack = stack.rio.write_transform(grid.transform)
    return stack


def cell_points(grid: GridSpec, rows, cols, crs=None) -> gpd.GeoDataFrame:
    """Points at the centres of the given cells."""
    x, y = grid.coords()
    points = gpd.GeoDataFrame(
        geometry=gpd.points_from_xy(x[np.asarray(cols)], y[np.asarray(rows)]),
        crs=grid.crs,
    )
    return points if crs is None else points.to_crs(crs)


@pytest.fixture
def grid() -> GridSpec:
    """A 20 x 20 grid of 5 km equal-area cells."""
    transform = Affine(RESOLUTION, 0.0, 0.0, 0.0, -RESOLUTION, SIZE * RESOLUTION)
    return GridSpec(crs=GRID_CRS, transform=transform, width=SIZE, height=SIZE)


@pytest.fixture
def stack(grid: GridSpec) -> xr.Dataset:
    """
    Synthetic environmental stack.

    bio1 rises west to east, bio12 north to south, elevation is noisy and the
    first column is sea (elevation 0, NaN soil).
    """
    rng = np.random.default_rng(0)
    rows, cols = np.indices(grid.shape)
    elevation = 100.0 + rng.uniform(0, 500, grid.shape)
    elevation[:, 0] = 0.0
    sand = rng.uniform(10, 80, grid.shape)
    sand[:, 0] = np.nan
    return make_stack(
        grid,
        {
            "bio1": cols.astype(float) + rng.normal(0, 0.5, grid.shape),
            "bio12": 10.0 * rows + rng.normal(0, 5, grid.shape),
            "elevation": elevation,
            "sand": sand,
        },
    )


@pytest.fixture
def presence_cells(grid: GridSpec):
    """40 distinct land cells, more likely in the east."""
    rng = np.random.default_rng(1)
    rows, cols = np.indices(grid.shape)
    land = cols.ravel() > 0
    weights = np.where(land, cols.ravel() + 1.0, 0.0)
    chosen = rng.choice(grid.width * grid.height, size=40, replace=False, p=weights / weights.sum())
    return rows.ravel()[chosen], cols.ravel()[chosen]


@pytest.fixture
def presences(grid: GridSpec, presence_cells) -> gpd.GeoDataFrame:
    rows, cols = presence_cells
    return cell_points(grid, rows, cols, crs="EPSG:4326")


@pytest.fixture
def raw_records(presences: gpd.GeoDataFrame) -> pd.DataFrame:
    """GBIF-style raw records for the presence points, plus records that fail cleaning."""
    n = len(presences)
    good = pd.DataFrame(
        {
            "decimalLongitude": presences.geometry.x.values,
            "decimalLatitude": presences.geometry.y.values,
            "eventDate": [f"1990-01-{i % 28 + 1:02d}T00:00:00" for i in range(n)],
            "year": 1990,
            "basisOfRecord": "HUMAN_OBSERVATION",
            "coordinateUncertaintyInMeters": 100.0,
            "identificationVerificationStatus": None,
            "informationWithheld": None,
        }
    )
    bad = good.iloc[:4].copy()
    bad["year"] = [1950, 2010, 1990, 1990]
    bad.loc[bad.index[2], "basisOfRecord"] = "PRESERVED_SPECIMEN"
    bad.loc[bad.index[3], "coordinateUncertaintyInMeters"] = 5000.0
    duplicate = good.iloc[[0]]
    return pd.concat([good, bad, duplicate], ignore_index=True)
