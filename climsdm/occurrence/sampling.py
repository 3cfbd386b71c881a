import logging
from typing import Optional

import geopandas as gpd
import numpy as np
import pandas as pd
import rioxarray as rxr  # Required for .rio accessor, even if not directly called
import xarray as xr

from climsdm.raster.utils import cell_centres, points_to_cells

logger = logging.getLogger(__name__)


def valid_cell_mask(stack: xr.Dataset, band: str = "elevation") -> np.ndarray:
    """Cells on land: ``band`` is present and above zero."""
    values = stack[band].values
    with np.errstate(invalid="ignore"):
        return np.nan_to_num(values, nan=0.0) > 0


def occupied_cell_mask(stack: xr.Dataset, points: gpd.GeoDataFrame) -> np.ndarray:
    """Cells that contain at least one of the points."""
    shape = (stack.rio.height, stack.rio.width)
    occupied = np.zeros(shape, dtype=bool)
    if len(points) == 0:
        return occupied
    points = points.to_crs(stack.rio.crs)
    rows, cols, inside = points_to_cells(
        points.geometry.x.values, points.geometry.y.values, stack.rio.transform(), shape
    )
    occupied[rows[inside], cols[inside]] = True
    return occupied


def sample_pseudo_absences(
    stack: xr.Dataset,
    presences: gpd.GeoDataFrame,
    n: Optional[int] = None,
    seed: Optional[int] = None,
    band: str = "elevation",
) -> gpd.GeoDataFrame:
    """
    Draw pseudo-absence points from valid cells that hold no presence.

    Args:
        stack: Environmental stack on the model grid.
        presences: Presence points in any CRS.
        n: Number of points to draw. Defaults to the number of presences.
        seed: Seed for the random generator; equal seeds give equal points.
        band: Variable defining valid (land) cells as ``band > 0``.

    Returns:
        GeoDataFrame of cell-centre points in the stack CRS with ``row`` and
        ``col`` columns. No two points share a cell.

    Raises:
        ValueError: If fewer than ``n`` candidate cells exist.
    """
    if n is None:
        n = len(presences)

    candidates = valid_cell_mask(stack, band) & ~occupied_cell_mask(stack, presences)
    candidate_idx = np.flatnonzero(candidates)
    logger.info(f"{len(candidate_idx)} candidate cells for {n} pseudo-absences")

    if len(candidate_idx) < n:
        raise ValueError(
            f"Only {len(candidate_idx)} candidate cells for {n} pseudo-absences"
        )

    rng = np.random.default_rng(seed)
    chosen = np.sort(rng.choice(candidate_idx, size=n, replace=False))
    rows, cols = np.unravel_index(chosen, candidates.shape)
    xs, ys = cell_centres(rows, cols, stack.rio.transform())

    return gpd.GeoDataFrame(
        pd.DataFrame({"row": rows.astype(int), "col": cols.astype(int)}),
        geometry=gpd.points_from_xy(xs, ys),
        crs=stack.rio.crs,
    )
