import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

import geopandas as gpd
import numpy as np
import pandas as pd
import rioxarray as rxr  # Required for .rio accessor, even if not directly called
import xarray as xr
from shapely import wkt

from climsdm.models.features import FOLD, LABEL

logger = logging.getLogger(__name__)


def _to_builtin(value: Any) -> Any:
    """Make numpy scalars and NaN serialisable as plain JSON."""
    if isinstance(value, dict):
        return {str(k): _to_builtin(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_builtin(v) for v in value]
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and not np.isfinite(value):
        return None
    return value


def save_json(data: Dict[str, Any], path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(_to_builtin(data), f, indent=2)
    logger.info(f"Saved {path}")
    return path


def save_csv(df: pd.DataFrame, path: Union[str, Path], index: bool = False) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=index)
    logger.info(f"Saved {path}")
    return path


def save_geojson(gdf: gpd.GeoDataFrame, path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    gdf.to_file(path, driver="GeoJSON")
    logger.info(f"Saved {path}")
    return path


def save_raster(array: xr.DataArray, path: Union[str, Path]) -> Path:
    """Write a georeferenced array as a GeoTIFF."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    array.rio.to_raster(path)
    logger.info(f"Saved {path}")
    return path


def save_feature_table(table: gpd.GeoDataFrame, path: Union[str, Path]) -> Path:
    """Save the feature table as CSV with geometry as WKT."""
    df = pd.DataFrame(table.drop(columns=table.geometry.name))
    df["geometry"] = table.geometry.to_wkt().values
    df["crs"] = table.crs.to_string()
    return save_csv(df, path)


def load_feature_table(path: Union[str, Path]) -> pd.DataFrame:
    """Load a feature table written by ``save_feature_table``.

    Returns a GeoDataFrame when the file carries geometry, otherwise a DataFrame.
    Requires ``label`` and ``fold`` columns.
    """
    df = pd.read_csv(path)
    missing = {LABEL, FOLD} - set(df.columns)
    if missing:
        raise ValueError(f"Feature table {path} is missing columns {sorted(missing)}")

    if "geometry" not in df.columns:
        return df
    crs = df["crs"].iloc[0] if "crs" in df.columns and len(df) else None
    geometry = df["geometry"].apply(wkt.loads)
    df = df.drop(columns=[c for c in ("geometry", "crs") if c in df.columns])
    return gpd.GeoDataFrame(df, geometry=geometry.values, crs=crs)


def covariate_columns(table: pd.DataFrame) -> list:
    """Covariate columns of a feature table, in table order."""
    skip = {LABEL, FOLD, "geometry", "crs"}
    if isinstance(table, gpd.GeoDataFrame):
        skip.add(table.geometry.name)
    return [c for c in table.columns if c not in skip]
