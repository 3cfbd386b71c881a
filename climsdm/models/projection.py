"""
Projection of fitted models onto environmental stacks and habitat change.
"""

import logging

import numpy as np
import pandas as pd
import rioxarray as rxr  # Required for .rio accessor, even if not directly called
import xarray as xr
from pydantic import BaseModel, ConfigDict

from climsdm.models.selection import ModelFit
from climsdm.raster.utils import check_grid_alignment

logger = logging.getLogger(__name__)


def predict_surface(fit: ModelFit, stack: xr.Dataset) -> xr.DataArray:
    """
    Probability of presence in every cell of the stack.

    Cells where a covariate of the model is missing are NaN.
    """
    missing = [name for name in fit.covariates if name not in stack.data_vars]
    if missing:
        raise KeyError(f"Stack is missing covariates {missing}")

    if fit.covariates:
        surface = fit.predict(stack[fit.covariates])
    else:
        valid = stack.to_array().notnull().all("variable")
        surface = xr.full_like(valid, float(fit.predict(stack)), dtype="float32")
        surface = surface.where(valid)

    surface = surface.astype("float32").rename("probability")
    surface = surface.rio.write_crs(stack.rio.crs)
    surface = surface.rio.write_transform(stack.rio.transform())
    return surface.rio.write_nodata(np.nan)


def binarize(surface: xr.DataArray, threshold: float) -> xr.DataArray:
    """1 where probability >= threshold, 0 below it, NaN where unknown."""
    binary = xr.where(surface >= threshold, 1.0, 0.0).where(surface.notnull())
    binary = binary.astype("float32").rename("presence")
    binary = binary.rio.write_crs(surface.rio.crs)
    binary = binary.rio.write_transform(surface.rio.transform())
    return binary.rio.write_nodata(np.nan)


class HabitatChange(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    period: str
    crosstab: pd.DataFrame
    historical_cells: int
    future_cells: int
    retained: int
    gained: int
    lost: int
    ratio: float
    cell_area_km2: float

    def summary(self) -> dict:
        return {
            "period": self.period,
            "historical_cells": self.historical_cells,
            "future_cells": self.future_cells,
            "retained": self.retained,
            "gained": self.gained,
            "lost": self.lost,
            "ratio": self.ratio,
            "historical_km2": self.historical_cells * self.cell_area_km2,
            "future_km2": self.future_cells * self.cell_area_km2,
            "retained_km2": self.retained * self.cell_area_km2,
            "gained_km2": self.gained * self.cell_area_km2,
            "lost_km2": self.lost * self.cell_area_km2,
        }


def compare_periods(
    historical: xr.DataArray, future: xr.DataArray, period: str = "future"
) -> HabitatChange:
    """Compares binary habitat surfaces of two periods cell by cell.

    The crosstab counts cells valid in both surfaces. The ratio is the number
    of future presence cells over the number of historical presence cells,
    NaN when there are no historical presence cells. Areas assume a grid in
    metres, as on the equal-area model grid.

    Raises:
        GridMismatchError: If the surfaces are on different grids.
    """
    check_grid_alignment({"historical": historical, "future": future})

    hist = historical.values
    fut = future.values
    both = ~np.isnan(hist) & ~np.isnan(fut)

    counts = np.zeros((2, 2), dtype=int)
    np.add.at(counts, (hist[both].astype(int), fut[both].astype(int)), 1)
    crosstab = pd.DataFrame(
        counts,
        index=pd.Index([0, 1], name="historical"),
        columns=pd.Index([0, 1], name="future"),
    )

    historical_cells = int(np.sum(hist == 1))
    future_cells = int(np.sum(fut == 1))
    if historical_cells == 0:
        logger.warning(f"No historical presence cells; {period} ratio is undefined")
        ratio = float("nan")
    else:
        ratio = future_cells / historical_cells

    cell_area_km2 = abs(historical.rio.transform().a * historical.rio.transform().e) / 1e6
    change = HabitatChange(
        period=period,
        crosstab=crosstab,
        historical_cells=historical_cells,
        future_cells=future_cells,
        retained=int(crosstab.loc[1, 1]),
        gained=int(crosstab.loc[0, 1]),
        lost=int(crosstab.loc[1, 0]),
        ratio=ratio,
        cell_area_km2=cell_area_km2,
    )
    logger.info(
        f"{period}: {future_cells} presence cells vs {historical_cells} historical (ratio {ratio:.3f})"
    )
    return change
