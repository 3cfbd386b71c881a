"""
Covariate extraction and fold assignment for presence/absence points.
"""

import logging
from typing import Optional

import elapid as ela
import geopandas as gpd
import numpy as np
import pandas as pd
import rioxarray as rxr  # Required for .rio accessor, even if not directly called
import xarray as xr
from sklearn.model_selection import KFold

from climsdm.raster.utils import points_to_cells

logger = logging.getLogger(__name__)

LABEL = "label"
FOLD = "fold"


def assign_folds(n: int, k: int = 5, seed: Optional[int] = None) -> np.ndarray:
    """
    Random partition of ``n`` items into ``k`` folds numbered 1..k.

    Fold sizes are floor(n/k) or ceil(n/k).

    Raises:
        ValueError: If there are fewer items than folds.
    """
    if n < k:
        raise ValueError(f"Cannot split {n} points into {k} folds")
    folds = np.zeros(n, dtype=int)
    kf = KFold(n_splits=k, shuffle=True, random_state=seed)
    for fold_idx, (_, val_idx) in enumerate(kf.split(np.arange(n))):
        folds[val_idx] = fold_idx + 1
    return folds


def extract_covariates(stack: xr.Dataset, points: gpd.GeoDataFrame) -> pd.DataFrame:
    """
    Value of every stack variable in the cell holding each point.

    Points outside the grid, or on no-data cells, get NaN.
    """
    points = points.to_crs(stack.rio.crs)
    shape = (stack.rio.height, stack.rio.width)
    rows, cols, inside = points_to_cells(
        points.geometry.x.values, points.geometry.y.values, stack.rio.transform(), shape
    )
    rows = np.where(inside, rows, 0)
    cols = np.where(inside, cols, 0)

    values = {}
    for name in stack.data_vars:
        band = stack[name].values.astype(float)
        extracted = band[rows, cols] if len(rows) else np.array([], dtype=float)
        values[name] = np.where(inside, extracted, np.nan)

    n_outside = int((~inside).sum())
    if n_outside:
        logger.warning(f"{n_outside} points fall outside the stack extent")
    return pd.DataFrame(values, index=points.index)


def build_feature_table(
    stack: xr.Dataset,
    presences: gpd.GeoDataFrame,
    absences: gpd.GeoDataFrame,
    n_folds: int = 5,
    seed: Optional[int] = None,
) -> gpd.GeoDataFrame:
    """Builds the modelling table of labelled points and their covariates.

    Presences and absences get folds from separate partitions, so every fold
    holds roughly 1/k of each class.

    Args:
        stack: Historical environmental stack.
        presences: Cleaned presence points.
        absences: Pseudo-absence points.
        n_folds: Number of folds.
        seed: Seed for both fold partitions.

    Returns:
        GeoDataFrame in the stack CRS with columns ``label`` (1/0), ``fold``
        (1..k), one column per stack variable and ``geometry``.
    """
    crs = stack.rio.crs
    presence_seed, absence_seed = np.random.default_rng(seed).integers(0, 2**31 - 1, size=2)

    presence_points = gpd.GeoDataFrame(
        {FOLD: assign_folds(len(presences), n_folds, int(presence_seed))},
        geometry=presences.to_crs(crs).geometry.values,
        crs=crs,
    )
    absence_points = gpd.GeoDataFrame(
        {FOLD: assign_folds(len(absences), n_folds, int(absence_seed))},
        geometry=absences.to_crs(crs).geometry.values,
        crs=crs,
    )

    points = ela.stack_geodataframes(presence_points, absence_points, add_class_label=True)
    points = points.rename(columns={"class": LABEL}).reset_index(drop=True)
    points[LABEL] = points[LABEL].astype(int)

    covariates = extract_covariates(stack, points)
    table = pd.concat([points[[LABEL, FOLD]], covariates], axis=1)
    table = gpd.GeoDataFrame(table, geometry=points.geometry.values, crs=crs)

    n_incomplete = int(covariates.isna().any(axis=1).sum())
    logger.info(
        f"Feature table: {len(presences)} presences, {len(absences)} absences, "
        f"{len(covariates.columns)} covariates, {n_incomplete} rows with missing values"
    )
    return table
